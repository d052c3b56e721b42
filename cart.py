"""
Shopping cart.

The storefront keeps the cart in the browser; signed-in users can also keep a
copy on the server. Either way a line's quantity is clipped to the last-known
stock of its product and never drops below one.
"""

from typing import Any, Dict, List, Optional

import catalog
from database import utcnow
from errors import NotFound, RuleViolation
from schemas import Cart, CartItem, ItemType


class ShoppingCart:
    def __init__(self, items: Optional[List[CartItem]] = None):
        self.items: List[CartItem] = list(items or [])

    def find(self, item_type: ItemType, product_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.item_type == item_type and item.product_id == product_id:
                return item
        return None

    def _replace(self, old: CartItem, new: CartItem) -> None:
        self.items = [new if i is old else i for i in self.items]

    def add(self, item: CartItem) -> CartItem:
        """Add ``item``, merging with an existing line for the same product."""
        if item.max_stock < 1:
            raise RuleViolation(f"{item.name} is out of stock")

        existing = self.find(item.item_type, item.product_id)
        if existing is None:
            added = item.model_copy(update={"quantity": min(item.quantity, item.max_stock)})
            self.items.append(added)
            return added

        merged = existing.model_copy(update={
            "quantity": min(existing.quantity + item.quantity, item.max_stock),
            "max_stock": item.max_stock,
            "price": item.price,
        })
        self._replace(existing, merged)
        return merged

    def update_quantity(self, item_type: ItemType, product_id: str, quantity: int) -> CartItem:
        existing = self.find(item_type, product_id)
        if existing is None:
            raise NotFound("Cart item")
        updated = existing.model_copy(update={"quantity": max(1, min(quantity, existing.max_stock))})
        self._replace(existing, updated)
        return updated

    def remove(self, item_type: ItemType, product_id: str) -> None:
        self.items = [i for i in self.items if not (i.item_type == item_type and i.product_id == product_id)]

    def clear(self) -> None:
        self.items = []

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    @property
    def subtotal(self) -> float:
        return round(sum(i.price * i.quantity for i in self.items), 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [i.model_dump() for i in self.items],
            "item_count": self.item_count,
            "subtotal": self.subtotal,
        }


# ---------------------- Persistence ----------------------

def load_cart(db, user_id: str) -> ShoppingCart:
    doc = db["cart"].find_one({"user_id": user_id})
    if not doc:
        return ShoppingCart()
    return ShoppingCart([CartItem(**i) for i in doc.get("items", [])])


def save_cart(db, user_id: str, cart: ShoppingCart) -> None:
    now = utcnow()
    doc = Cart(user_id=user_id, items=cart.items).model_dump()
    db["cart"].update_one(
        {"user_id": user_id},
        {
            "$set": {"items": doc["items"], "updated_at": now},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )


def clear_cart(db, user_id: str) -> None:
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": utcnow()}})


def item_from_product(db, item_type: ItemType, product_id: str, quantity: int) -> CartItem:
    """Build a cart line from the live product, capturing its current price and stock."""
    product = catalog.get_by_id(db, item_type, product_id)
    if not product.get("is_active", False):
        raise NotFound(catalog.FAMILY_LABELS[item_type])
    return CartItem(
        item_type=item_type,
        product_id=str(product["_id"]),
        name=product["name"],
        price=product["price"],
        quantity=quantity,
        max_stock=product.get("stock", 0),
        sku=product.get("sku"),
        image=catalog.primary_image(product),
    )
