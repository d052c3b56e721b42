"""
Product reviews. One review per user and product; reviews are visible as
soon as they are written and admins can hide them afterwards.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import audit
import catalog
from database import create_document, to_object_id, utcnow
from errors import NotFound, RuleViolation
from schemas import ItemType, OrderStatus, Review


class ReviewIn(BaseModel):
    item_type: ItemType
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: str = Field(..., min_length=10)


def is_verified_purchase(db, user_id: str, product_id: str) -> bool:
    return db["order"].count_documents({
        "user_id": user_id,
        "items.product_id": product_id,
        "status": OrderStatus.DELIVERED.value,
    }) > 0


def create_review(db, user_id: str, payload: ReviewIn) -> Dict[str, Any]:
    product = catalog.get_by_id(db, payload.item_type, payload.product_id)
    if not product.get("is_active", False):
        raise NotFound(catalog.FAMILY_LABELS[ItemType(payload.item_type)])

    review = Review(
        user_id=user_id,
        is_verified_purchase=is_verified_purchase(db, user_id, payload.product_id),
        **payload.model_dump(),
    )
    try:
        review_id = create_document("review", review, database=db)
    except DuplicateKeyError:
        raise RuleViolation("You have already reviewed this product")
    return db["review"].find_one({"_id": to_object_id(review_id, "Review")})


def list_reviews(db, item_type: ItemType, product_id: str, page: int = 1, limit: int = 10) -> Tuple[List[Dict[str, Any]], int, Optional[float]]:
    """Approved reviews for a product, newest first, with the total count and average rating."""
    query = {"item_type": ItemType(item_type).value, "product_id": product_id, "is_approved": True}
    docs = list(db["review"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    total = db["review"].count_documents(query)

    average = None
    rows = list(db["review"].aggregate([
        {"$match": query},
        {"$group": {"_id": None, "average": {"$avg": "$rating"}}},
    ]))
    if rows and rows[0]["average"] is not None:
        average = round(rows[0]["average"], 1)
    return docs, total, average


def set_approval(db, actor_id: str, review_id: str, is_approved: bool) -> Dict[str, Any]:
    updated = db["review"].find_one_and_update(
        {"_id": to_object_id(review_id, "Review")},
        {"$set": {"is_approved": is_approved, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("Review")
    audit.record(db, actor_id, "UPDATE", "REVIEW", review_id, new_values={"is_approved": is_approved})
    return updated
