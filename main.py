import logging
import math
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

import audit
import catalog
import coupons
import listings
import notifications
import orders
import reviews
import service_requests
import stats
import wishlist
from auth import Principal, require, require_user
from cart import ShoppingCart, item_from_product, load_cart, save_cart
from database import db, ensure_indexes, get_db
from errors import NotFound, RuleViolation, StoreError
from schemas import Coupon, CouponType, Generator, ItemType, Part
from site_settings import SiteSettings, load_settings, save_settings

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        try:
            ensure_indexes(db)
        except Exception:
            logger.exception("Failed to create indexes")
    yield


app = FastAPI(title="PakAutoSe API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------- Errors ----------------------

def _first_error(errors: List[Dict[str, Any]]) -> str:
    if not errors:
        return "Invalid request"
    err = errors[0]
    field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
    return f"{field}: {err['msg']}" if field else err["msg"]


@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": _first_error(exc.errors())})


@app.exception_handler(ValidationError)
def model_validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": _first_error(exc.errors())})


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------------------- Helpers ----------------------

def oid_to_str(doc: Any) -> Any:
    if isinstance(doc, list):
        return [oid_to_str(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    d = {**doc}
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return {k: oid_to_str(v) for k, v in d.items()}


def paginated(docs: List[Dict[str, Any]], total: int, page: int, limit: int, **extra) -> Dict[str, Any]:
    return {
        "items": oid_to_str(docs),
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
        **extra,
    }


FAMILY_PATHS = {"generators": ItemType.GENERATOR, "parts": ItemType.PART}
FAMILY_MODELS = {ItemType.GENERATOR: Generator, ItemType.PART: Part}


def family_from_path(family: str) -> ItemType:
    if family not in FAMILY_PATHS:
        raise NotFound("Product family")
    return FAMILY_PATHS[family]


# ---------------------- Schemas ----------------------

class ActionIn(BaseModel):
    action: str


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=3)
    description: Optional[str] = None
    type: Optional[CouponType] = None
    value: Optional[float] = Field(None, gt=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    per_user_limit: Optional[int] = Field(None, gt=0)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None
    applies_to_generators: Optional[bool] = None
    applies_to_parts: Optional[bool] = None


class CartItemIn(BaseModel):
    item_type: ItemType
    product_id: str
    quantity: int = Field(1, ge=1)


class RestockIn(BaseModel):
    quantity: int = Field(..., ge=1)


class WishlistIn(BaseModel):
    item_type: ItemType
    product_id: str


class ReviewModeration(BaseModel):
    is_approved: bool


# ---------------------- Root & Health ----------------------

@app.get("/")
def read_root():
    return {"message": "PakAutoSe FastAPI Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = getattr(db, "name", None) or "❌ Unknown"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
                response["connection_status"] = "Connected"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ---------------------- Settings ----------------------

@app.get("/api/settings")
def get_settings(response: Response, settings: SiteSettings = Depends(load_settings)) -> Dict[str, Any]:
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return settings.values


@app.put("/api/admin/settings")
def update_settings(
    updates: Dict[str, Dict[str, Any]] = Body(...),
    principal: Principal = Depends(require("settings", "update")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    merged = save_settings(database, updates)
    audit.record(database, principal.user_id, "UPDATE", "SETTING", new_values=updates)
    return merged


# ---------------------- Catalog ----------------------

def _catalog_listing(database, item_type: ItemType, page: int, limit: int, **filters) -> Dict[str, Any]:
    docs, total = catalog.list_products(database, item_type, page=page, limit=limit, **filters)
    return paginated(docs, total, page, limit, brands=catalog.brand_counts(database, item_type))


@app.get("/api/generators")
def list_generators(
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
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return _catalog_listing(
        database, ItemType.GENERATOR, page, limit,
        search=search, brand=brand, fuel_type=fuel_type, condition=condition, category_id=category_id,
        min_price=min_price, max_price=max_price, min_power=min_power, max_power=max_power,
        featured=featured, in_stock=in_stock, sort=sort,
    )


@app.get("/api/generators/{slug}")
def get_generator(slug: str, database=Depends(get_db)) -> Dict[str, Any]:
    return oid_to_str(catalog.get_by_slug(database, ItemType.GENERATOR, slug))


@app.get("/api/parts")
def list_parts(
    search: Optional[str] = None,
    brand: Optional[str] = None,
    category_id: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    featured: bool = False,
    in_stock: bool = False,
    sort: str = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return _catalog_listing(
        database, ItemType.PART, page, limit,
        search=search, brand=brand, category_id=category_id,
        min_price=min_price, max_price=max_price, featured=featured, in_stock=in_stock, sort=sort,
    )


@app.get("/api/parts/{slug}")
def get_part(slug: str, database=Depends(get_db)) -> Dict[str, Any]:
    return oid_to_str(catalog.get_by_slug(database, ItemType.PART, slug))


@app.post("/api/admin/inventory/{family}/{product_id}/restock")
def restock_product(
    family: str,
    product_id: str,
    body: RestockIn,
    principal: Principal = Depends(require("inventory", "restock")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    item_type = family_from_path(family)
    updated = catalog.restock(database, item_type, product_id, body.quantity)
    audit.record(database, principal.user_id, "UPDATE", item_type.value, product_id, new_values={"restock": body.quantity})
    return oid_to_str(updated)


# ---------------------- Coupons ----------------------

@app.get("/api/coupons/validate")
def validate_coupon(
    code: str = Query(""),
    subtotal: float = Query(..., ge=0),
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    quote = coupons.evaluate_coupon(database, code, principal.user_id, subtotal)
    return quote.model_dump()


@app.get("/api/admin/coupons")
def admin_list_coupons(
    active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require("coupons", "read")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total = coupons.list_coupons(database, page=page, limit=limit, active=active)
    return paginated(docs, total, page, limit)


@app.post("/api/admin/coupons")
def admin_create_coupon(
    coupon: Coupon,
    principal: Principal = Depends(require("coupons", "create")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    coupon_id = coupons.create_coupon(database, coupon)
    audit.record(database, principal.user_id, "CREATE", "COUPON", coupon_id, new_values=coupon.model_dump())
    return oid_to_str(database["coupon"].find_one({"_id": ObjectId(coupon_id)}))


@app.put("/api/admin/coupons/{coupon_id}")
def admin_update_coupon(
    coupon_id: str,
    changes: CouponUpdate,
    principal: Principal = Depends(require("coupons", "update")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    before, after = coupons.update_coupon(database, coupon_id, changes.model_dump(exclude_unset=True))
    audit.record(database, principal.user_id, "UPDATE", "COUPON", coupon_id, old_values=before, new_values=after)
    return oid_to_str(after)


@app.delete("/api/admin/coupons/{coupon_id}")
def admin_delete_coupon(
    coupon_id: str,
    principal: Principal = Depends(require("coupons", "delete")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    removed = coupons.delete_coupon(database, coupon_id)
    audit.record(database, principal.user_id, "DELETE", "COUPON", coupon_id, old_values=removed)
    return {"success": True}


# ---------------------- Cart ----------------------

@app.get("/api/cart")
def get_cart(principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    return load_cart(database, principal.user_id).to_dict()


@app.post("/api/cart")
def add_cart_item(body: CartItemIn, principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    cart = load_cart(database, principal.user_id)
    cart.add(item_from_product(database, body.item_type, body.product_id, body.quantity))
    save_cart(database, principal.user_id, cart)
    return cart.to_dict()


@app.put("/api/cart")
def update_cart_item(body: CartItemIn, principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    cart = load_cart(database, principal.user_id)
    cart.update_quantity(body.item_type, body.product_id, body.quantity)
    save_cart(database, principal.user_id, cart)
    return cart.to_dict()


@app.delete("/api/cart")
def remove_cart_item(
    item_type: Optional[ItemType] = None,
    product_id: Optional[str] = None,
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    cart = load_cart(database, principal.user_id)
    if item_type and product_id:
        cart.remove(item_type, product_id)
    else:
        cart = ShoppingCart()
    save_cart(database, principal.user_id, cart)
    return cart.to_dict()


# ---------------------- Orders ----------------------

@app.post("/api/orders")
def create_order(
    checkout: orders.CheckoutRequest,
    principal: Principal = Depends(require_user),
    settings: SiteSettings = Depends(load_settings),
    database=Depends(get_db),
) -> Dict[str, Any]:
    order = orders.place_order(database, principal.user_id, checkout, settings)
    return {
        "success": True,
        "order": {"id": str(order["_id"]), "order_number": order["order_number"], "total": order["total"]},
    }


@app.get("/api/orders")
def list_my_orders(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total = orders.list_user_orders(database, principal.user_id, status=status, page=page, limit=limit)
    return paginated(docs, total, page, limit)


@app.get("/api/orders/{order_id}")
def get_my_order(order_id: str, principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    return oid_to_str(orders.get_user_order(database, principal.user_id, order_id))


@app.put("/api/orders/{order_id}")
def act_on_my_order(
    order_id: str,
    body: ActionIn,
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    if body.action != "cancel":
        raise RuleViolation("Invalid action")
    return oid_to_str(orders.cancel_order(database, principal.user_id, order_id))


@app.get("/api/admin/orders")
def admin_list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require("orders", "read")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total = orders.list_all_orders(
        database, status=status, payment_status=payment_status, search=search, page=page, limit=limit
    )
    return paginated(docs, total, page, limit)


@app.get("/api/admin/orders/{order_id}")
def admin_get_order(
    order_id: str,
    principal: Principal = Depends(require("orders", "read")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    order = orders.get_order(database, order_id)
    history, _ = audit.list_entries(database, entity="ORDER", entity_id=order_id)
    return {**oid_to_str(order), "history": oid_to_str(history)}


@app.put("/api/admin/orders/{order_id}")
def admin_update_order(
    order_id: str,
    update: orders.OrderStatusUpdate,
    principal: Principal = Depends(require("orders", "update")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return oid_to_str(orders.update_order(database, principal.user_id, order_id, update))


@app.delete("/api/admin/orders/{order_id}")
def admin_delete_order(
    order_id: str,
    principal: Principal = Depends(require("orders", "delete")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    orders.delete_order(database, principal.user_id, order_id)
    return {"success": True}


# ---------------------- Service requests ----------------------

@app.post("/api/services")
def create_service_request(
    payload: service_requests.ServiceRequestIn,
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    request = service_requests.create_service_request(database, principal.user_id, payload)
    return {"success": True, "request": oid_to_str(request)}


@app.get("/api/services")
def list_my_service_requests(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total = service_requests.list_user_requests(database, principal.user_id, status=status, page=page, limit=limit)
    return paginated(docs, total, page, limit)


@app.get("/api/services/{request_id}")
def get_my_service_request(request_id: str, principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    return oid_to_str(service_requests.get_user_request(database, principal.user_id, request_id))


@app.put("/api/services/{request_id}")
def act_on_my_service_request(
    request_id: str,
    body: ActionIn,
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    if body.action != "cancel":
        raise RuleViolation("Invalid action")
    return oid_to_str(service_requests.cancel_service_request(database, principal.user_id, request_id))


@app.get("/api/admin/services")
def admin_list_service_requests(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require("services", "read")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total = service_requests.list_all_requests(
        database, status=status, priority=priority, search=search, page=page, limit=limit
    )
    return paginated(docs, total, page, limit)


@app.get("/api/admin/services/{request_id}")
def admin_get_service_request(
    request_id: str,
    principal: Principal = Depends(require("services", "read")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return oid_to_str(service_requests.get_request(database, request_id))


@app.put("/api/admin/services/{request_id}")
def admin_update_service_request(
    request_id: str,
    update: service_requests.ServiceRequestUpdate,
    principal: Principal = Depends(require("services", "update")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return oid_to_str(service_requests.update_service_request(database, principal.user_id, request_id, update))


# ---------------------- Marketplace ----------------------

@app.get("/api/user/generators")
def list_my_listings(principal: Principal = Depends(require_user), database=Depends(get_db)) -> List[Dict[str, Any]]:
    return oid_to_str(listings.list_user_listings(database, principal.user_id))


@app.post("/api/user/generators")
def create_listing(
    payload: listings.ListingIn,
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return oid_to_str(listings.create_listing(database, principal.user_id, payload))


@app.get("/api/admin/user-generators")
def admin_list_listings(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require("listings", "read")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total = listings.list_all_listings(database, status=status, page=page, limit=limit)
    return paginated(docs, total, page, limit)


@app.put("/api/admin/user-generators/{listing_id}")
def admin_review_listing(
    listing_id: str,
    review: listings.ListingReview,
    principal: Principal = Depends(require("listings", "update")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return oid_to_str(listings.review_listing(database, principal.user_id, listing_id, review))


@app.delete("/api/admin/user-generators/{listing_id}")
def admin_delete_listing(
    listing_id: str,
    principal: Principal = Depends(require("listings", "delete")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    listings.delete_listing(database, principal.user_id, listing_id)
    return {"success": True}


# ---------------------- Reviews ----------------------

@app.get("/api/reviews")
def list_product_reviews(
    item_type: ItemType,
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total, average = reviews.list_reviews(database, item_type, product_id, page=page, limit=limit)
    return paginated(docs, total, page, limit, average_rating=average)


@app.post("/api/reviews")
def create_review(
    payload: reviews.ReviewIn,
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return oid_to_str(reviews.create_review(database, principal.user_id, payload))


@app.put("/api/admin/reviews/{review_id}")
def admin_moderate_review(
    review_id: str,
    body: ReviewModeration,
    principal: Principal = Depends(require("reviews", "update")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    return oid_to_str(reviews.set_approval(database, principal.user_id, review_id, body.is_approved))


# ---------------------- Wishlist & notifications ----------------------

@app.get("/api/user/wishlist")
def get_wishlist(principal: Principal = Depends(require_user), database=Depends(get_db)) -> List[Dict[str, Any]]:
    return oid_to_str(wishlist.list_wishlist(database, principal.user_id))


@app.post("/api/user/wishlist")
def add_wishlist_item(body: WishlistIn, principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    return oid_to_str(wishlist.add_to_wishlist(database, principal.user_id, body.item_type, body.product_id))


@app.delete("/api/user/wishlist/{entry_id}")
def remove_wishlist_item(entry_id: str, principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    wishlist.remove_from_wishlist(database, principal.user_id, entry_id)
    return {"success": True}


@app.get("/api/user/notifications")
def get_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_user),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total, unread = notifications.list_notifications(database, principal.user_id, page=page, limit=limit)
    return paginated(docs, total, page, limit, unread_count=unread)


@app.post("/api/user/notifications/mark-all-read")
def read_all_notifications(principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    return {"success": True, "updated": notifications.mark_all_read(database, principal.user_id)}


@app.put("/api/user/notifications/{notification_id}")
def read_notification(notification_id: str, principal: Principal = Depends(require_user), database=Depends(get_db)) -> Dict[str, Any]:
    return oid_to_str(notifications.mark_read(database, principal.user_id, notification_id))


# ---------------------- Back office ----------------------

@app.get("/api/admin/stats")
def admin_stats(principal: Principal = Depends(require("stats", "read")), database=Depends(get_db)) -> Dict[str, Any]:
    return stats.dashboard(database)


@app.get("/api/admin/audit-logs")
def admin_audit_logs(
    entity: Optional[str] = None,
    entity_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(require("audit", "read")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    docs, total = audit.list_entries(database, entity=entity, entity_id=entity_id, page=page, limit=limit)
    return paginated(docs, total, page, limit)


# Registered last so the fixed /api/admin/* paths above win
@app.post("/api/admin/{family}")
def admin_create_product(
    family: str,
    payload: Dict[str, Any] = Body(...),
    principal: Principal = Depends(require("catalog", "create")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    item_type = family_from_path(family)
    product = FAMILY_MODELS[item_type](**payload)
    product_id = catalog.create_product(database, item_type, product)
    audit.record(database, principal.user_id, "CREATE", item_type.value, product_id, new_values=product.model_dump())
    return oid_to_str(catalog.get_by_id(database, item_type, product_id))


@app.put("/api/admin/{family}/{product_id}")
def admin_update_product(
    family: str,
    product_id: str,
    payload: Dict[str, Any] = Body(...),
    principal: Principal = Depends(require("catalog", "update")),
    database=Depends(get_db),
) -> Dict[str, Any]:
    item_type = family_from_path(family)
    model = FAMILY_MODELS[item_type]
    current = catalog.get_by_id(database, item_type, product_id)

    # validate the merged product, then write back only the submitted fields
    fields = {k: v for k, v in current.items() if k in model.model_fields}
    validated = model(**{**fields, **payload}).model_dump()
    changes = {k: validated[k] for k in payload if k in model.model_fields}

    before, after = catalog.update_product(database, item_type, product_id, changes)
    audit.record(
        database,
        principal.user_id,
        "UPDATE",
        item_type.value,
        product_id,
        old_values={k: before.get(k) for k in changes},
        new_values=changes,
    )
    return oid_to_str(after)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
