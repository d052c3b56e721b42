"""
Coupon evaluation and redemption.

``evaluate_coupon`` runs the applicability checks in a fixed order and stops
at the first failure. ``claim_coupon`` is what checkout calls once an order is
about to be written: the global usage counter and the per-user ledger are
each bumped with a conditional update, so concurrent checkouts cannot push a
coupon past either limit.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import as_utc, create_document, to_object_id, utcnow
from errors import NotFound, RuleViolation
from schemas import Coupon, CouponType, ItemType, OrderLine, OrderStatus

logger = logging.getLogger(__name__)

# Orders in these states no longer count against a user's coupon allowance
RELEASED_ORDER_STATUSES = [OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value]


class CouponQuote(BaseModel):
    coupon: Dict[str, Any]
    discount: float
    message: str


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def format_pkr(amount: float) -> str:
    if float(amount).is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def compute_discount(coupon: Dict[str, Any], subtotal: float) -> float:
    kind = coupon["type"]
    value = float(coupon["value"])

    if kind == CouponType.PERCENTAGE:
        discount = subtotal * value / 100
        max_discount = coupon.get("max_discount")
        if max_discount and discount > max_discount:
            discount = float(max_discount)
    elif kind == CouponType.FIXED_AMOUNT:
        discount = min(value, subtotal)
    else:
        # free shipping is applied to the shipping cost by the caller
        discount = 0.0

    return round(max(discount, 0.0), 2)


def discount_message(coupon: Dict[str, Any], discount: float) -> str:
    if coupon["type"] == CouponType.FREE_SHIPPING:
        return "Free shipping applied!"
    return f"Coupon applied! You save PKR {format_pkr(discount)}"


def coupon_summary(coupon: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(coupon["_id"]),
        "code": coupon["code"],
        "description": coupon.get("description"),
        "discount_type": coupon["type"],
        "discount_value": coupon["value"],
        "min_order_amount": coupon.get("min_order_amount"),
        "max_discount": coupon.get("max_discount"),
        "applies_to_generators": coupon.get("applies_to_generators", True),
        "applies_to_parts": coupon.get("applies_to_parts", True),
    }


def find_coupon(db, code: str) -> Optional[Dict[str, Any]]:
    code = normalize_code(code)
    if not code:
        return None
    return db["coupon"].find_one({"code": code})


def user_usage_count(db, user_id: str, code: str) -> int:
    return db["order"].count_documents({
        "user_id": user_id,
        "coupon_code": normalize_code(code),
        "status": {"$nin": RELEASED_ORDER_STATUSES},
    })


def evaluate_coupon(db, code: str, user_id: str, subtotal: float, now: Optional[datetime] = None) -> CouponQuote:
    """Decide whether ``code`` applies for ``user_id`` at ``subtotal``; raise ``RuleViolation`` with the reason if not."""
    code = normalize_code(code)
    if not code:
        raise RuleViolation("Coupon code is required")
    now = now or utcnow()

    coupon = find_coupon(db, code)
    if not coupon:
        raise RuleViolation(f'Coupon code "{code}" does not exist')

    if not coupon.get("is_active", False):
        raise RuleViolation("This coupon is no longer active")

    starts_at = coupon.get("starts_at")
    if starts_at and as_utc(starts_at) > now:
        raise RuleViolation("This coupon is not yet active")

    expires_at = coupon.get("expires_at")
    if expires_at and as_utc(expires_at) < now:
        raise RuleViolation("This coupon has expired")

    usage_limit = coupon.get("usage_limit")
    if usage_limit and coupon.get("usage_count", 0) >= usage_limit:
        raise RuleViolation("This coupon has reached its usage limit")

    per_user_limit = coupon.get("per_user_limit") or 0
    if per_user_limit > 0 and user_usage_count(db, user_id, code) >= per_user_limit:
        raise RuleViolation(f"You have already used this coupon {per_user_limit} time(s)")

    min_order_amount = coupon.get("min_order_amount")
    if min_order_amount and min_order_amount > 0 and subtotal < min_order_amount:
        raise RuleViolation(f"Minimum order amount is PKR {format_pkr(min_order_amount)}")

    discount = compute_discount(coupon, subtotal)
    return CouponQuote(
        coupon=coupon_summary(coupon),
        discount=discount,
        message=discount_message(coupon, discount),
    )


def eligible_subtotal(coupon: Dict[str, Any], lines: Iterable[OrderLine]) -> float:
    """Subtotal of the lines whose product family the coupon covers."""
    covered = set()
    if coupon.get("applies_to_generators", True):
        covered.add(ItemType.GENERATOR.value)
    if coupon.get("applies_to_parts", True):
        covered.add(ItemType.PART.value)
    return round(sum(line.total for line in lines if line.item_type in covered), 2)


# ---------------------- Redemption ----------------------

def claim_coupon(db, coupon: Dict[str, Any], user_id: str) -> None:
    """Count one redemption against the global and per-user limits, or raise without counting anything."""
    coupon_id = coupon["_id"]
    usage_limit = coupon.get("usage_limit")

    query: Dict[str, Any] = {"_id": coupon_id}
    if usage_limit:
        query["usage_count"] = {"$lt": usage_limit}
    result = db["coupon"].update_one(query, {"$inc": {"usage_count": 1}, "$set": {"updated_at": utcnow()}})
    if result.modified_count == 0:
        raise RuleViolation("This coupon has reached its usage limit")

    per_user_limit = coupon.get("per_user_limit") or 0
    if per_user_limit <= 0:
        return

    try:
        db["couponusage"].update_one(
            {"coupon_id": str(coupon_id), "user_id": user_id, "count": {"$lt": per_user_limit}},
            {"$inc": {"count": 1}, "$setOnInsert": {"created_at": utcnow()}},
            upsert=True,
        )
    except DuplicateKeyError:
        # the ledger row exists and is already at the limit
        _unclaim_global(db, coupon_id)
        raise RuleViolation(f"You have already used this coupon {per_user_limit} time(s)")


def _unclaim_global(db, coupon_id) -> None:
    db["coupon"].update_one({"_id": coupon_id, "usage_count": {"$gt": 0}}, {"$inc": {"usage_count": -1}})


def unclaim_coupon(db, coupon: Dict[str, Any], user_id: str) -> None:
    """Undo ``claim_coupon`` when the order it was claimed for was never written."""
    _unclaim_global(db, coupon["_id"])
    release_user_claim(db, str(coupon["_id"]), user_id)


def release_user_claim(db, coupon_id: Optional[str], user_id: str) -> None:
    """Give a cancelled order's redemption back to the user. The global usage count is kept."""
    if not coupon_id:
        return
    db["couponusage"].update_one(
        {"coupon_id": coupon_id, "user_id": user_id, "count": {"$gt": 0}},
        {"$inc": {"count": -1}},
    )


# ---------------------- Admin ----------------------

def list_coupons(db, page: int = 1, limit: int = 20, active: Optional[bool] = None) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {}
    if active is not None:
        query["is_active"] = active
    docs = list(db["coupon"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return docs, db["coupon"].count_documents(query)


def create_coupon(db, coupon: Coupon) -> str:
    data = coupon.model_dump()
    data["code"] = normalize_code(data["code"])
    data["usage_count"] = 0
    try:
        return create_document("coupon", data, database=db)
    except DuplicateKeyError:
        raise RuleViolation(f"Coupon code {data['code']} already exists")


def update_coupon(db, coupon_id: str, changes: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    oid = to_object_id(coupon_id, "Coupon")
    before = db["coupon"].find_one({"_id": oid})
    if not before:
        raise NotFound("Coupon")
    if "code" in changes:
        changes["code"] = normalize_code(changes["code"])
    changes.pop("usage_count", None)

    try:
        after = db["coupon"].find_one_and_update(
            {"_id": oid},
            {"$set": {**changes, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise RuleViolation(f"Coupon code {changes['code']} already exists")
    return before, after


def delete_coupon(db, coupon_id: str) -> Dict[str, Any]:
    oid = to_object_id(coupon_id, "Coupon")
    coupon = db["coupon"].find_one({"_id": oid})
    if not coupon:
        raise NotFound("Coupon")
    db["coupon"].delete_one({"_id": oid})
    return coupon
