"""
Order placement and lifecycle.

Placement snapshots every cart line into an immutable ``OrderLine``, reserves
stock one line at a time with conditional decrements, claims the coupon and
only then writes the order. If any step fails, every reservation and claim
made so far is given back before the error propagates, so a rejected
checkout leaves no order and no stock change behind.

Status only moves forward along ``ORDER_PROGRESSION``; CANCELLED and REFUNDED
can be reached from any non-terminal state. Users may cancel PENDING orders
only; staff and admins drive everything else.
"""

import logging
import re
import secrets
import string
import time
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument

import audit
import catalog
from cart import clear_cart, load_cart
from coupons import (
    claim_coupon,
    compute_discount,
    eligible_subtotal,
    evaluate_coupon,
    find_coupon,
    format_pkr,
    release_user_claim,
    unclaim_coupon,
)
from database import create_document, to_object_id, utcnow
from errors import NotFound, RuleViolation
from notifications import notify
from schemas import (
    CouponType,
    ItemType,
    NotificationType,
    Order,
    OrderLine,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from site_settings import SiteSettings

logger = logging.getLogger(__name__)

ORDER_PROGRESSION = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]
TERMINAL_ORDER_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}

PAYMENT_METHOD_LABELS = {
    PaymentMethod.CASH_ON_DELIVERY: "Cash on delivery",
    PaymentMethod.STRIPE: "Card payment",
    PaymentMethod.BANK_TRANSFER: "Bank transfer",
}

_ALPHABET = string.ascii_uppercase + string.digits


# ---------------------- Request models ----------------------

class CheckoutItem(BaseModel):
    item_type: ItemType
    product_id: str
    quantity: int = Field(..., ge=1)


class CheckoutRequest(BaseModel):
    shipping_name: str = Field(..., min_length=2)
    shipping_phone: str = Field(..., min_length=10)
    shipping_email: EmailStr
    shipping_address_line: str = Field(..., min_length=5)
    shipping_city: str = Field(..., min_length=2)
    shipping_state: str = Field(..., min_length=2)
    shipping_postal_code: str = Field(..., min_length=4)
    shipping_country: str = "Pakistan"
    payment_method: PaymentMethod
    customer_notes: Optional[str] = None
    coupon_code: Optional[str] = None
    items: Optional[List[CheckoutItem]] = None


class OrderStatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    estimated_delivery: Optional[str] = None
    admin_notes: Optional[str] = None
    internal_notes: Optional[str] = None


# ---------------------- Numbers ----------------------

def _base36(number: int) -> str:
    digits = string.digits + string.ascii_uppercase
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_order_number() -> str:
    return f"ORD-{_base36(int(time.time() * 1000))}-{_random_suffix(4)}"


def generate_invoice_number() -> str:
    now = utcnow()
    return f"INV-{now.year}{now.month:02d}-{_random_suffix(6)}"


# ---------------------- Transitions ----------------------

def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    current, target = OrderStatus(current), OrderStatus(target)
    if current == target:
        return True
    if current in TERMINAL_ORDER_STATUSES:
        return False
    if target in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
        return True
    return ORDER_PROGRESSION.index(target) > ORDER_PROGRESSION.index(current)


# ---------------------- Placement ----------------------

def build_lines(db, items: List[CheckoutItem]) -> List[OrderLine]:
    """Snapshot each requested item from the catalog, rejecting unknown, inactive or under-stocked products."""
    ids_by_family: Dict[ItemType, List[str]] = {}
    for item in items:
        ids_by_family.setdefault(ItemType(item.item_type), []).append(item.product_id)
    products = {family: catalog.get_many(db, family, ids) for family, ids in ids_by_family.items()}

    lines = []
    for item in items:
        product = products[ItemType(item.item_type)].get(item.product_id)
        if not product:
            raise RuleViolation("Product not found")
        if not product.get("is_active", False):
            raise RuleViolation(f"{product['name']} is no longer available")
        stock = product.get("stock", 0)
        if stock < item.quantity:
            raise RuleViolation(f"{product['name']} only has {stock} items in stock")
        lines.append(OrderLine(
            item_type=item.item_type,
            product_id=item.product_id,
            name=product["name"],
            sku=product.get("sku"),
            price=product["price"],
            quantity=item.quantity,
            image_url=catalog.primary_image(product),
        ))
    return lines


def _saved_cart_items(db, user_id: str) -> List[CheckoutItem]:
    saved = load_cart(db, user_id)
    return [CheckoutItem(item_type=i.item_type, product_id=i.product_id, quantity=i.quantity) for i in saved.items]


def _out_of_stock_message(db, line: OrderLine) -> str:
    current = catalog.get_many(db, ItemType(line.item_type), [line.product_id]).get(line.product_id)
    if not current or not current.get("is_active", False):
        return f"{line.name} is no longer available"
    return f"{line.name} only has {current.get('stock', 0)} items in stock"


def restore_stock(db, order: Dict[str, Any]) -> None:
    for line in order.get("items", []):
        catalog.release_stock(db, ItemType(line["item_type"]), line["product_id"], line["quantity"])


def place_order(db, user_id: str, checkout: CheckoutRequest, settings: SiteSettings) -> Dict[str, Any]:
    requested = checkout.items or _saved_cart_items(db, user_id)
    if not requested:
        raise RuleViolation("Your cart is empty")

    method = PaymentMethod(checkout.payment_method)
    if not settings.payment_method_enabled(method):
        raise RuleViolation(f"{PAYMENT_METHOD_LABELS[method]} is not available")

    lines = build_lines(db, requested)
    subtotal = round(sum(line.total for line in lines), 2)
    if settings.min_order_amount and subtotal < settings.min_order_amount:
        raise RuleViolation(f"Minimum order amount is PKR {format_pkr(settings.min_order_amount)}")
    if settings.max_order_amount and subtotal > settings.max_order_amount:
        raise RuleViolation(f"Maximum order amount is PKR {format_pkr(settings.max_order_amount)}")

    coupon = None
    discount = 0.0
    free_shipping = False
    if checkout.coupon_code:
        evaluate_coupon(db, checkout.coupon_code, user_id, subtotal)
        coupon = find_coupon(db, checkout.coupon_code)
        base = eligible_subtotal(coupon, lines)
        if base <= 0:
            raise RuleViolation("This coupon does not apply to items in your cart")
        discount = compute_discount(coupon, base)
        free_shipping = coupon["type"] == CouponType.FREE_SHIPPING

    shipping_cost = 0.0 if free_shipping else settings.shipping_cost_for(subtotal)
    cod_fee = settings.cod_fee if method == PaymentMethod.CASH_ON_DELIVERY else 0.0
    tax = round(subtotal * settings.tax_rate / 100, 2)
    total = round(max(subtotal + shipping_cost + cod_fee + tax - discount, 0.0), 2)

    order = Order(
        order_number=generate_order_number(),
        invoice_number=generate_invoice_number(),
        user_id=user_id,
        shipping_name=checkout.shipping_name,
        shipping_phone=checkout.shipping_phone,
        shipping_email=checkout.shipping_email,
        shipping_address_line=checkout.shipping_address_line,
        shipping_city=checkout.shipping_city,
        shipping_state=checkout.shipping_state,
        shipping_postal_code=checkout.shipping_postal_code,
        shipping_country=checkout.shipping_country,
        items=lines,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        cod_fee=cod_fee,
        tax=tax,
        discount=discount,
        total=total,
        coupon_id=str(coupon["_id"]) if coupon else None,
        coupon_code=coupon["code"] if coupon else None,
        coupon_discount=discount,
        payment_method=method,
        customer_notes=checkout.customer_notes,
    )

    reserved: List[OrderLine] = []
    claimed = False
    try:
        for line in lines:
            if catalog.reserve_stock(db, ItemType(line.item_type), line.product_id, line.quantity) is None:
                raise RuleViolation(_out_of_stock_message(db, line))
            reserved.append(line)
        if coupon:
            claim_coupon(db, coupon, user_id)
            claimed = True
        order_id = create_document("order", order.to_document(), database=db)
    except Exception:
        for line in reserved:
            catalog.release_stock(db, ItemType(line.item_type), line.product_id, line.quantity)
        if claimed:
            unclaim_coupon(db, coupon, user_id)
        raise

    logger.info("Order %s placed by user %s: total %s", order.order_number, user_id, total)

    try:
        clear_cart(db, user_id)
    except Exception as e:
        logger.warning("Failed to clear saved cart for user %s: %s", user_id, e)

    notify(
        db,
        user_id,
        NotificationType.ORDER_PLACED,
        "Order Placed Successfully!",
        f"Your order {order.order_number} has been placed. Total: Rs. {format_pkr(total)}",
        link=f"/account/orders/{order_id}",
        order_id=order_id,
    )
    return db["order"].find_one({"_id": to_object_id(order_id, "Order")})


# ---------------------- Cancellation ----------------------

def _cancel(db, order: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Flip ``order`` to CANCELLED if nobody changed it meanwhile, then give stock and coupon back."""
    now = utcnow()
    payment_status = order.get("payment_status", PaymentStatus.PENDING.value)
    if payment_status == PaymentStatus.PAID:
        payment_status = PaymentStatus.REFUNDED.value

    changes = dict(extra or {})
    changes.update({
        "status": OrderStatus.CANCELLED.value,
        "payment_status": payment_status,
        "cancelled_at": now,
        "updated_at": now,
    })
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": order["status"], "payment_status": order.get("payment_status")},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        return None

    restore_stock(db, order)
    release_user_claim(db, order.get("coupon_id"), order["user_id"])
    return updated


def cancel_order(db, user_id: str, order_id: str) -> Dict[str, Any]:
    order = get_user_order(db, user_id, order_id)
    if order["status"] != OrderStatus.PENDING:
        raise RuleViolation("Only pending orders can be cancelled")

    updated = _cancel(db, order)
    if updated is None:
        raise RuleViolation("Only pending orders can be cancelled")

    logger.info("Order %s cancelled by its owner", order["order_number"])
    notify(
        db,
        user_id,
        NotificationType.ORDER_CANCELLED,
        "Order Cancelled",
        f"Your order {order['order_number']} has been cancelled.",
        link=f"/account/orders/{order_id}",
        order_id=order_id,
    )
    return updated


# ---------------------- Reads ----------------------

def list_user_orders(db, user_id: str, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {"user_id": user_id}
    if status:
        query["status"] = status
    docs = list(db["order"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return docs, db["order"].count_documents(query)


def get_user_order(db, user_id: str, order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order"), "user_id": user_id})
    if not order:
        raise NotFound("Order")
    return order


def get_order(db, order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order")})
    if not order:
        raise NotFound("Order")
    return order


def list_all_orders(
    db,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    if payment_status:
        query["payment_status"] = payment_status
    if search:
        query["$or"] = [
            {"order_number": {"$regex": re.escape(search.strip()), "$options": "i"}},
            {"shipping_name": {"$regex": re.escape(search.strip()), "$options": "i"}},
            {"shipping_email": {"$regex": re.escape(search.strip()), "$options": "i"}},
        ]
    docs = list(db["order"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return docs, db["order"].count_documents(query)


# ---------------------- Back office ----------------------

def update_order(db, actor_id: str, order_id: str, update: OrderStatusUpdate) -> Dict[str, Any]:
    order = get_order(db, order_id)
    old_status = order["status"]
    old_payment = order.get("payment_status")
    now = utcnow()

    changes: Dict[str, Any] = {
        k: v for k, v in update.model_dump(exclude={"status", "payment_status"}).items() if v is not None
    }
    if update.payment_status:
        changes["payment_status"] = PaymentStatus(update.payment_status).value
        if update.payment_status == PaymentStatus.PAID and old_payment != PaymentStatus.PAID:
            changes["paid_at"] = now

    new_status = OrderStatus(update.status).value if update.status else old_status
    if new_status != old_status and not can_transition(old_status, new_status):
        raise RuleViolation(f"Cannot move an order from {old_status} to {new_status}")

    if new_status == OrderStatus.CANCELLED and old_status != OrderStatus.CANCELLED:
        changes.pop("payment_status", None)
        updated = _cancel(db, order, extra=changes)
    else:
        changes["status"] = new_status
        changes["updated_at"] = now
        if new_status == OrderStatus.DELIVERED and old_status != OrderStatus.DELIVERED:
            changes["delivered_at"] = now
        updated = db["order"].find_one_and_update(
            {"_id": order["_id"], "status": old_status},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise RuleViolation("The order was changed by someone else, reload it and try again")
    if new_status == OrderStatus.REFUNDED and old_status != OrderStatus.REFUNDED:
        # refunded orders no longer count towards the per-user coupon limit
        release_user_claim(db, order.get("coupon_id"), order["user_id"])

    audit.record(
        db,
        actor_id,
        "UPDATE",
        "ORDER",
        order_id,
        old_values={"status": old_status, "payment_status": old_payment},
        new_values={
            "status": updated["status"],
            "payment_status": updated.get("payment_status"),
            "tracking_number": update.tracking_number,
            "admin_notes": update.admin_notes,
        },
    )

    if updated["status"] != old_status:
        notify(
            db,
            order["user_id"],
            NotificationType.ORDER_UPDATE,
            "Order Status Updated",
            f"Your order #{order['order_number']} status has been updated to {updated['status']}",
            link=f"/account/orders/{order_id}",
            order_id=order_id,
        )
    if updated.get("payment_status") == PaymentStatus.PAID and old_payment != PaymentStatus.PAID:
        notify(
            db,
            order["user_id"],
            NotificationType.PAYMENT_RECEIVED,
            "Payment Received",
            f"Payment received for your order #{order['order_number']}. Thank you!",
            link=f"/account/orders/{order_id}",
            order_id=order_id,
        )
    return updated


def delete_order(db, actor_id: str, order_id: str) -> None:
    order = get_order(db, order_id)
    if order["status"] != OrderStatus.CANCELLED:
        raise RuleViolation("Only cancelled orders can be deleted")
    db["order"].delete_one({"_id": order["_id"]})
    audit.record(db, actor_id, "DELETE", "ORDER", order_id, old_values={"order_number": order["order_number"]})
