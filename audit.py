"""Audit trail for back-office mutations."""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from database import create_document
from schemas import AuditLog

logger = logging.getLogger(__name__)


def _dump(values: Any) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(values, default=str)


def record(
    db,
    user_id: Optional[str],
    action: str,
    entity: str,
    entity_id: Optional[str] = None,
    old_values: Any = None,
    new_values: Any = None,
) -> Optional[str]:
    """Write an audit entry. The mutation it describes has already happened, so failures are only logged."""
    try:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity=entity,
            entity_id=entity_id,
            old_values=_dump(old_values),
            new_values=_dump(new_values),
        )
        return create_document("auditlog", entry, database=db)
    except Exception as e:
        logger.warning("Failed to write audit log %s %s/%s: %s", action, entity, entity_id, e)
        return None


def list_entries(
    db,
    entity: Optional[str] = None,
    entity_id: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {}
    if entity:
        query["entity"] = entity.upper()
    if entity_id:
        query["entity_id"] = entity_id
    docs = list(db["auditlog"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return docs, db["auditlog"].count_documents(query)
