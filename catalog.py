"""
Catalog store for the two product families (generators and parts).

Stock changes go through ``reserve_stock``/``release_stock``, each a single
conditional update, so concurrent checkouts can never drive stock negative.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, to_object_id, utcnow
from errors import NotFound, RuleViolation
from schemas import FAMILY_COLLECTIONS, Generator, ItemType, Part

logger = logging.getLogger(__name__)

SORT_OPTIONS = {
    "newest": [("created_at", -1)],
    "price-low": [("price", 1)],
    "price-high": [("price", -1)],
    "power-low": [("power_kva", 1)],
    "power-high": [("power_kva", -1)],
    "name": [("name", 1)],
}

FAMILY_LABELS = {
    ItemType.GENERATOR: "Generator",
    ItemType.PART: "Part",
}


def collection(db, item_type: ItemType):
    return db[FAMILY_COLLECTIONS[ItemType(item_type)]]


def primary_image(product: Dict[str, Any]) -> Optional[str]:
    images = sorted(product.get("images") or [], key=lambda i: (not i.get("is_primary"), i.get("sort_order", 0)))
    return images[0]["url"] if images else None


def list_products(
    db,
    item_type: ItemType,
    search: Optional[str] = None,
    brand: Optional[str] = None,
    fuel_type: Optional[str] = None,
    condition: Optional[str] = None,
    category_id: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_power: Optional[float] = None,
    max_power: Optional[float] = None,
    featured: bool = False,
    in_stock: bool = False,
    sort: str = "newest",
    page: int = 1,
    limit: int = 12,
) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {"is_active": True}

    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}, {"brand": pattern}]
    if brand:
        query["brand"] = {"$regex": f"^{re.escape(brand)}$", "$options": "i"}
    if fuel_type and item_type == ItemType.GENERATOR:
        query["fuel_type"] = fuel_type
    if condition and item_type == ItemType.GENERATOR:
        query["condition"] = condition
    if category_id:
        query["category_id"] = category_id

    price: Dict[str, float] = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        query["price"] = price

    if item_type == ItemType.GENERATOR:
        power: Dict[str, float] = {}
        if min_power is not None:
            power["$gte"] = min_power
        if max_power is not None:
            power["$lte"] = max_power
        if power:
            query["power_kva"] = power

    if featured:
        query["is_featured"] = True
    if in_stock:
        query["stock"] = {"$gt": 0}

    ordering = SORT_OPTIONS.get(sort, SORT_OPTIONS["newest"])
    coll = collection(db, item_type)
    docs = list(coll.find(query).sort(ordering).skip((page - 1) * limit).limit(limit))
    return docs, coll.count_documents(query)


def brand_counts(db, item_type: ItemType) -> List[Dict[str, Any]]:
    rows = collection(db, item_type).aggregate([
        {"$match": {"is_active": True}},
        {"$group": {"_id": "$brand", "count": {"$sum": 1}}},
        {"$sort": {"_id": 1}},
    ])
    return [{"brand": r["_id"], "count": r["count"]} for r in rows if r["_id"]]


def get_by_slug(db, item_type: ItemType, slug: str) -> Dict[str, Any]:
    doc = collection(db, item_type).find_one({"slug": slug, "is_active": True})
    if not doc:
        raise NotFound(FAMILY_LABELS[item_type])
    return doc


def get_by_id(db, item_type: ItemType, product_id: str) -> Dict[str, Any]:
    doc = collection(db, item_type).find_one({"_id": to_object_id(product_id, FAMILY_LABELS[item_type])})
    if not doc:
        raise NotFound(FAMILY_LABELS[item_type])
    return doc


def get_many(db, item_type: ItemType, product_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Batch-load products by id, keyed by id string. Unknown or malformed ids are left out."""
    oids = [ObjectId(pid) for pid in set(product_ids) if ObjectId.is_valid(pid)]
    if not oids:
        return {}
    return {str(d["_id"]): d for d in collection(db, item_type).find({"_id": {"$in": oids}})}


def _check_sku(db, item_type: ItemType, sku: Optional[str], exclude_id=None) -> None:
    if not sku:
        return
    query: Dict[str, Any] = {"sku": sku}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if collection(db, item_type).find_one(query):
        raise RuleViolation(f"SKU {sku} is already in use")


def create_product(db, item_type: ItemType, product: Union[Generator, Part]) -> str:
    _check_sku(db, item_type, product.sku)
    try:
        return create_document(FAMILY_COLLECTIONS[item_type], product, database=db)
    except DuplicateKeyError:
        raise RuleViolation(f"A {FAMILY_LABELS[item_type].lower()} with slug {product.slug} already exists")


def update_product(db, item_type: ItemType, product_id: str, changes: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Apply ``changes`` and return ``(before, after)``."""
    before = get_by_id(db, item_type, product_id)
    if "stock" in changes and changes["stock"] is not None and changes["stock"] < 0:
        raise RuleViolation("Stock cannot be negative")
    _check_sku(db, item_type, changes.get("sku"), exclude_id=before["_id"])

    try:
        after = collection(db, item_type).find_one_and_update(
            {"_id": before["_id"]},
            {"$set": {**changes, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise RuleViolation(f"A {FAMILY_LABELS[item_type].lower()} with slug {changes.get('slug')} already exists")
    return before, after


def reserve_stock(db, item_type: ItemType, product_id: str, quantity: int) -> Optional[Dict[str, Any]]:
    """Take ``quantity`` units if the product is active and has them. Returns the updated product or None."""
    if not ObjectId.is_valid(product_id):
        return None
    return collection(db, item_type).find_one_and_update(
        {"_id": ObjectId(product_id), "is_active": True, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def release_stock(db, item_type: ItemType, product_id: str, quantity: int) -> None:
    if not ObjectId.is_valid(product_id):
        return
    result = collection(db, item_type).update_one(
        {"_id": ObjectId(product_id)},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        logger.warning("Stock for %s %s could not be restored: product no longer exists", item_type.value, product_id)


def restock(db, item_type: ItemType, product_id: str, quantity: int) -> Dict[str, Any]:
    if quantity <= 0:
        raise RuleViolation("Restock quantity must be positive")
    updated = collection(db, item_type).find_one_and_update(
        {"_id": to_object_id(product_id, FAMILY_LABELS[item_type])},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound(FAMILY_LABELS[item_type])
    return updated
