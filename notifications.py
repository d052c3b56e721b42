"""In-app notifications. Writing one never fails the request that triggered it."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from database import create_document, to_object_id, utcnow
from errors import NotFound
from schemas import Notification, NotificationType

logger = logging.getLogger(__name__)


def notify(
    db,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    link: Optional[str] = None,
    order_id: Optional[str] = None,
    service_request_id: Optional[str] = None,
) -> Optional[str]:
    try:
        doc = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            link=link,
            order_id=order_id,
            service_request_id=service_request_id,
        )
        return create_document("notification", doc, database=db)
    except Exception as e:
        logger.warning("Failed to create %s notification for user %s: %s", type.value, user_id, e)
        return None


def list_notifications(db, user_id: str, page: int = 1, limit: int = 20) -> Tuple[List[Dict[str, Any]], int, int]:
    query = {"user_id": user_id}
    docs = list(
        db["notification"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    )
    total = db["notification"].count_documents(query)
    unread = db["notification"].count_documents({"user_id": user_id, "is_read": False})
    return docs, total, unread


def mark_read(db, user_id: str, notification_id: str) -> Dict[str, Any]:
    updated = db["notification"].find_one_and_update(
        {"_id": to_object_id(notification_id, "Notification"), "user_id": user_id},
        {"$set": {"is_read": True, "read_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("Notification")
    return updated


def mark_all_read(db, user_id: str) -> int:
    result = db["notification"].update_many(
        {"user_id": user_id, "is_read": False},
        {"$set": {"is_read": True, "read_at": utcnow()}},
    )
    return result.modified_count
