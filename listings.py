"""
Marketplace listings: generators users offer to sell to the store.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument

import audit
from database import create_document, to_object_id, utcnow
from errors import NotFound, RuleViolation
from notifications import notify
from schemas import GeneratorCondition, ListingStatus, NotificationType, UserGenerator

logger = logging.getLogger(__name__)

LISTING_TRANSITIONS = {
    ListingStatus.PENDING: {ListingStatus.APPROVED, ListingStatus.REJECTED},
    ListingStatus.APPROVED: {ListingStatus.SOLD, ListingStatus.EXPIRED, ListingStatus.REJECTED},
    ListingStatus.REJECTED: set(),
    ListingStatus.SOLD: set(),
    ListingStatus.EXPIRED: set(),
}


class ListingIn(BaseModel):
    title: str = Field(..., min_length=5)
    brand: str = Field(..., min_length=2)
    generator_model: str = Field(..., min_length=1)
    year: Optional[int] = Field(None, ge=1950)
    condition: GeneratorCondition
    power: Optional[str] = None
    fuel_type: Optional[str] = None
    running_hours: Optional[int] = Field(None, ge=0)
    serial_number: Optional[str] = None
    asking_price: float = Field(..., gt=0)
    negotiable: bool = True
    description: str = Field(..., min_length=20)
    reason_for_selling: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    contact_name: str = Field(..., min_length=2)
    contact_phone: str = Field(..., min_length=10)
    contact_email: EmailStr
    contact_city: str = Field(..., min_length=2)
    contact_address: Optional[str] = None


class ListingReview(BaseModel):
    status: ListingStatus
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    offered_price: Optional[float] = Field(None, gt=0)
    purchased_price: Optional[float] = Field(None, gt=0)


def create_listing(db, user_id: str, payload: ListingIn) -> Dict[str, Any]:
    listing = UserGenerator(user_id=user_id, **payload.model_dump())
    listing_id = create_document("usergenerator", listing, database=db)
    return db["usergenerator"].find_one({"_id": to_object_id(listing_id, "Listing")})


def list_user_listings(db, user_id: str) -> List[Dict[str, Any]]:
    return list(db["usergenerator"].find({"user_id": user_id}).sort("created_at", -1))


def list_all_listings(db, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    docs = list(db["usergenerator"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return docs, db["usergenerator"].count_documents(query)


def get_listing(db, listing_id: str) -> Dict[str, Any]:
    doc = db["usergenerator"].find_one({"_id": to_object_id(listing_id, "Listing")})
    if not doc:
        raise NotFound("Listing")
    return doc


def review_listing(db, actor_id: str, listing_id: str, review: ListingReview) -> Dict[str, Any]:
    listing = get_listing(db, listing_id)
    old_status = ListingStatus(listing["status"])
    new_status = ListingStatus(review.status)

    if new_status != old_status and new_status not in LISTING_TRANSITIONS[old_status]:
        raise RuleViolation(f"Cannot move a listing from {old_status.value} to {new_status.value}")
    if new_status == ListingStatus.REJECTED and not review.rejection_reason:
        raise RuleViolation("A rejection reason is required")
    if new_status == ListingStatus.SOLD and not review.purchased_price:
        raise RuleViolation("A purchased price is required")

    now = utcnow()
    changes: Dict[str, Any] = {
        k: v for k, v in review.model_dump(exclude={"status"}).items() if v is not None
    }
    changes.update({"status": new_status.value, "reviewed_by": actor_id, "reviewed_at": now, "updated_at": now})
    if new_status == ListingStatus.SOLD and old_status != ListingStatus.SOLD:
        changes["purchased_at"] = now

    updated = db["usergenerator"].find_one_and_update(
        {"_id": listing["_id"], "status": old_status.value},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise RuleViolation("The listing was changed by someone else, reload it and try again")

    audit.record(
        db,
        actor_id,
        "UPDATE",
        "USER_GENERATOR",
        listing_id,
        old_values={"status": old_status.value},
        new_values={"status": new_status.value, "admin_notes": review.admin_notes},
    )
    if new_status != old_status:
        notify(
            db,
            listing["user_id"],
            NotificationType.LISTING_UPDATE,
            "Listing Updated",
            f"Your listing \"{listing['title']}\" is now {new_status.value}",
            link="/account/my-generators",
        )
    return updated


def delete_listing(db, actor_id: str, listing_id: str) -> None:
    listing = get_listing(db, listing_id)
    db["usergenerator"].delete_one({"_id": listing["_id"]})
    audit.record(db, actor_id, "DELETE", "USER_GENERATOR", listing_id, old_values={"title": listing["title"]})
