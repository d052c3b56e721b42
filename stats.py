"""
Admin dashboard figures.
"""

from typing import Any, Dict

from database import utcnow
from schemas import FAMILY_COLLECTIONS, ItemType, ListingStatus, PaymentStatus, ServiceRequestStatus


def _counts_by(db, collection: str, field: str) -> Dict[str, int]:
    rows = db[collection].aggregate([{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}])
    return {r["_id"]: r["count"] for r in rows if r["_id"]}


def _paid_revenue(db, since=None) -> float:
    match: Dict[str, Any] = {"payment_status": PaymentStatus.PAID.value}
    if since is not None:
        match["created_at"] = {"$gte": since}
    rows = list(db["order"].aggregate([
        {"$match": match},
        {"$group": {"_id": None, "revenue": {"$sum": "$total"}}},
    ]))
    return round(rows[0]["revenue"], 2) if rows else 0.0


def _stock_levels(db, item_type: ItemType) -> Dict[str, int]:
    low = out = 0
    projection = {"stock": 1, "low_stock_threshold": 1}
    for product in db[FAMILY_COLLECTIONS[item_type]].find({"is_active": True}, projection):
        stock = product.get("stock", 0)
        if stock <= 0:
            out += 1
        elif stock <= product.get("low_stock_threshold", 0):
            low += 1
    return {"low_stock": low, "out_of_stock": out}


def dashboard(db) -> Dict[str, Any]:
    now = utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    services_by_status = _counts_by(db, "servicerequest", "status")

    return {
        "orders": {
            "total": db["order"].count_documents({}),
            "by_status": _counts_by(db, "order", "status"),
        },
        "revenue": {
            "total": _paid_revenue(db),
            "this_month": _paid_revenue(db, since=month_start),
        },
        "services": {
            "total": db["servicerequest"].count_documents({}),
            "pending": services_by_status.get(ServiceRequestStatus.PENDING.value, 0),
            "by_status": services_by_status,
        },
        "inventory": {
            "generators": _stock_levels(db, ItemType.GENERATOR),
            "parts": _stock_levels(db, ItemType.PART),
        },
        "listings_pending": db["usergenerator"].count_documents({"status": ListingStatus.PENDING.value}),
    }
