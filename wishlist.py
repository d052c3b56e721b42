from typing import Any, Dict, List

from pymongo.errors import DuplicateKeyError

import catalog
from database import create_document, to_object_id
from errors import NotFound, RuleViolation
from schemas import ItemType, WishlistItem


def list_wishlist(db, user_id: str) -> List[Dict[str, Any]]:
    """Wishlist entries with the current product attached. Entries for deleted products are skipped."""
    entries = list(db["wishlistitem"].find({"user_id": user_id}).sort("created_at", -1))

    ids_by_family: Dict[ItemType, List[str]] = {}
    for entry in entries:
        ids_by_family.setdefault(ItemType(entry["item_type"]), []).append(entry["product_id"])
    products = {family: catalog.get_many(db, family, ids) for family, ids in ids_by_family.items()}

    out = []
    for entry in entries:
        product = products[ItemType(entry["item_type"])].get(entry["product_id"])
        if product:
            out.append({**entry, "product": product})
    return out


def add_to_wishlist(db, user_id: str, item_type: ItemType, product_id: str) -> Dict[str, Any]:
    catalog.get_by_id(db, item_type, product_id)
    entry = WishlistItem(user_id=user_id, item_type=item_type, product_id=product_id)
    try:
        entry_id = create_document("wishlistitem", entry, database=db)
    except DuplicateKeyError:
        raise RuleViolation("Already in your wishlist")
    return db["wishlistitem"].find_one({"_id": to_object_id(entry_id, "Wishlist item")})


def remove_from_wishlist(db, user_id: str, entry_id: str) -> None:
    result = db["wishlistitem"].delete_one({"_id": to_object_id(entry_id, "Wishlist item"), "user_id": user_id})
    if result.deleted_count == 0:
        raise NotFound("Wishlist item")
