"""
Service requests: customer repair and maintenance tickets.

A request moves PENDING -> REVIEWING -> QUOTED/QUOTE_SENT -> APPROVED ->
IN_PROGRESS -> COMPLETED. Customers may cancel while it is still PENDING;
staff may cancel from any non-terminal state.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument

import audit
from database import create_document, to_object_id, utcnow
from errors import NotFound, RuleViolation
from notifications import notify
from orders import generate_order_number
from schemas import NotificationType, ServicePriority, ServiceRequest, ServiceRequestStatus, ServiceType

logger = logging.getLogger(__name__)

STATUS_RANK = {
    ServiceRequestStatus.PENDING: 0,
    ServiceRequestStatus.REVIEWING: 1,
    ServiceRequestStatus.QUOTED: 2,
    ServiceRequestStatus.QUOTE_SENT: 2,
    ServiceRequestStatus.APPROVED: 3,
    ServiceRequestStatus.IN_PROGRESS: 4,
    ServiceRequestStatus.COMPLETED: 5,
}
TERMINAL_SERVICE_STATUSES = {ServiceRequestStatus.COMPLETED, ServiceRequestStatus.CANCELLED}


class ServiceRequestIn(BaseModel):
    contact_name: str = Field(..., min_length=2)
    contact_phone: str = Field(..., min_length=10)
    contact_email: EmailStr
    service_address: str = Field(..., min_length=5)
    service_city: str = Field(..., min_length=2)
    service_state: str = Field(..., min_length=2)
    service_type: ServiceType
    priority: ServicePriority = ServicePriority.NORMAL
    generator_brand: Optional[str] = None
    generator_model: Optional[str] = None
    generator_serial: Optional[str] = None
    problem_title: str = Field(..., min_length=5)
    problem_description: str = Field(..., min_length=20)
    images: List[str] = Field(default_factory=list)
    preferred_date: Optional[datetime] = None


class ServiceRequestUpdate(BaseModel):
    status: Optional[ServiceRequestStatus] = None
    priority: Optional[ServicePriority] = None
    admin_notes: Optional[str] = None
    diagnosis: Optional[str] = None
    estimated_cost: Optional[float] = Field(None, ge=0)
    quoted_price: Optional[float] = Field(None, ge=0)
    final_cost: Optional[float] = Field(None, ge=0)
    scheduled_date: Optional[datetime] = None
    assigned_to: Optional[str] = None


def generate_request_number() -> str:
    return "SRV-" + generate_order_number()[len("ORD-"):]


def can_transition(current: ServiceRequestStatus, target: ServiceRequestStatus, back_office: bool) -> bool:
    current, target = ServiceRequestStatus(current), ServiceRequestStatus(target)
    if current == target:
        return True
    if current in TERMINAL_SERVICE_STATUSES:
        return False
    if target == ServiceRequestStatus.CANCELLED:
        return back_office or current == ServiceRequestStatus.PENDING
    if not back_office:
        return False
    if current == ServiceRequestStatus.QUOTED and target == ServiceRequestStatus.QUOTE_SENT:
        return True
    return STATUS_RANK[target] > STATUS_RANK[current]


def create_service_request(db, user_id: str, payload: ServiceRequestIn) -> Dict[str, Any]:
    request = ServiceRequest(request_number=generate_request_number(), user_id=user_id, **payload.model_dump())
    request_id = create_document("servicerequest", request, database=db)
    logger.info("Service request %s submitted by user %s", request.request_number, user_id)

    notify(
        db,
        user_id,
        NotificationType.SERVICE_REQUEST_SUBMITTED,
        "Service Request Submitted",
        f"Your service request {request.request_number} has been received. We will contact you soon.",
        link=f"/account/services/{request_id}",
        service_request_id=request_id,
    )
    return db["servicerequest"].find_one({"_id": to_object_id(request_id, "Service request")})


def list_user_requests(db, user_id: str, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {"user_id": user_id}
    if status:
        query["status"] = status
    docs = list(db["servicerequest"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return docs, db["servicerequest"].count_documents(query)


def get_user_request(db, user_id: str, request_id: str) -> Dict[str, Any]:
    doc = db["servicerequest"].find_one({"_id": to_object_id(request_id, "Service request"), "user_id": user_id})
    if not doc:
        raise NotFound("Service request")
    return doc


def get_request(db, request_id: str) -> Dict[str, Any]:
    doc = db["servicerequest"].find_one({"_id": to_object_id(request_id, "Service request")})
    if not doc:
        raise NotFound("Service request")
    return doc


def cancel_service_request(db, user_id: str, request_id: str) -> Dict[str, Any]:
    request = get_user_request(db, user_id, request_id)
    if request["status"] != ServiceRequestStatus.PENDING:
        raise RuleViolation("Only pending service requests can be cancelled")

    now = utcnow()
    updated = db["servicerequest"].find_one_and_update(
        {"_id": request["_id"], "status": ServiceRequestStatus.PENDING.value},
        {"$set": {"status": ServiceRequestStatus.CANCELLED.value, "cancelled_at": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise RuleViolation("Only pending service requests can be cancelled")
    logger.info("Service request %s cancelled by its owner", request["request_number"])
    return updated


def list_all_requests(
    db,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    if priority:
        query["priority"] = priority
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"request_number": pattern}, {"contact_name": pattern}, {"problem_title": pattern}]
    docs = list(db["servicerequest"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return docs, db["servicerequest"].count_documents(query)


def update_service_request(db, actor_id: str, request_id: str, update: ServiceRequestUpdate) -> Dict[str, Any]:
    request = get_request(db, request_id)
    old_status = request["status"]
    now = utcnow()

    changes: Dict[str, Any] = {k: v for k, v in update.model_dump(exclude={"status"}).items() if v is not None}
    if update.priority:
        changes["priority"] = ServicePriority(update.priority).value

    new_status = ServiceRequestStatus(update.status).value if update.status else old_status
    if not can_transition(old_status, new_status, back_office=True):
        raise RuleViolation(f"Cannot move a service request from {old_status} to {new_status}")

    if new_status != old_status:
        changes["status"] = new_status
        if new_status in (ServiceRequestStatus.QUOTED, ServiceRequestStatus.QUOTE_SENT):
            changes["quoted_at"] = now
        elif new_status == ServiceRequestStatus.COMPLETED:
            changes["completed_at"] = now
        elif new_status == ServiceRequestStatus.CANCELLED:
            changes["cancelled_at"] = now
    changes["updated_at"] = now

    updated = db["servicerequest"].find_one_and_update(
        {"_id": request["_id"], "status": old_status},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise RuleViolation("The service request was changed by someone else, reload it and try again")

    audit.record(
        db,
        actor_id,
        "UPDATE",
        "SERVICE_REQUEST",
        request_id,
        old_values={"status": old_status},
        new_values={k: v for k, v in changes.items() if k != "updated_at"},
    )

    if new_status != old_status:
        notify(
            db,
            request["user_id"],
            NotificationType.SERVICE_UPDATE,
            "Service Request Updated",
            f"Your service request #{request['request_number']} status has been updated to {new_status}",
            link=f"/account/services/{request_id}",
            service_request_id=request_id,
        )
    return updated
