"""
Database Schemas for PakAutoSe (Generators & Parts Store)

Each Pydantic model represents a collection in MongoDB. The collection
name is the lowercase of the class name (e.g., Generator -> "generator").
References to other documents are stored as id strings.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# ---------------------- Enums ----------------------

class ItemType(str, Enum):
    GENERATOR = "GENERATOR"
    PART = "PART"


class FuelType(str, Enum):
    DIESEL = "DIESEL"
    PETROL = "PETROL"
    GAS = "GAS"
    DUAL_FUEL = "DUAL_FUEL"
    NATURAL_GAS = "NATURAL_GAS"


class GeneratorCondition(str, Enum):
    NEW = "NEW"
    REFURBISHED = "REFURBISHED"
    USED = "USED"


class CouponType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FREE_SHIPPING = "FREE_SHIPPING"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"
    STRIPE = "STRIPE"
    BANK_TRANSFER = "BANK_TRANSFER"


class ServiceRequestStatus(str, Enum):
    PENDING = "PENDING"
    REVIEWING = "REVIEWING"
    QUOTED = "QUOTED"
    QUOTE_SENT = "QUOTE_SENT"
    APPROVED = "APPROVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ServicePriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ServiceType(str, Enum):
    REPAIR = "REPAIR"
    MAINTENANCE = "MAINTENANCE"
    INSTALLATION = "INSTALLATION"
    INSPECTION = "INSPECTION"
    EMERGENCY = "EMERGENCY"
    OTHER = "OTHER"


class ListingStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SOLD = "SOLD"
    EXPIRED = "EXPIRED"


class NotificationType(str, Enum):
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_UPDATE = "ORDER_UPDATE"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    SERVICE_REQUEST_SUBMITTED = "SERVICE_REQUEST_SUBMITTED"
    SERVICE_UPDATE = "SERVICE_UPDATE"
    LISTING_UPDATE = "LISTING_UPDATE"
    SYSTEM = "SYSTEM"


# Collection name for each product family
FAMILY_COLLECTIONS = {
    ItemType.GENERATOR: "generator",
    ItemType.PART: "part",
}


class Document(BaseModel):
    # enums are stored as their plain string values
    model_config = ConfigDict(use_enum_values=True)


# ---------------------- Catalog ----------------------

class ProductImage(Document):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False
    sort_order: int = 0


class Generator(Document):
    """
    Generators collection schema
    Collection: "generator"
    """
    name: str = Field(..., min_length=2, description="Display name")
    slug: str = Field(..., min_length=2, description="URL-friendly slug, unique among generators")
    description: str = Field(..., description="Long description")
    short_description: Optional[str] = None
    power_kva: float = Field(..., gt=0, description="Rated power in kVA")
    power_kw: float = Field(..., gt=0, description="Rated power in kW")
    fuel_type: FuelType
    brand: str
    model_name: Optional[str] = None
    condition: GeneratorCondition = GeneratorCondition.NEW
    price: float = Field(..., ge=0, description="Price in PKR")
    compare_at_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0, description="Units on hand")
    sku: Optional[str] = Field(None, description="Stock keeping unit, unique when present")
    low_stock_threshold: int = Field(5, ge=0)
    warranty: Optional[str] = None
    images: List[ProductImage] = Field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False
    category_id: Optional[str] = None


class Part(Document):
    """
    Spare parts collection schema
    Collection: "part"
    """
    name: str = Field(..., min_length=2, description="Display name")
    slug: str = Field(..., min_length=2, description="URL-friendly slug, unique among parts")
    description: str = Field(..., description="Long description")
    short_description: Optional[str] = None
    price: float = Field(..., ge=0, description="Price in PKR")
    compare_at_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0, description="Units on hand")
    sku: Optional[str] = Field(None, description="Stock keeping unit, unique when present")
    low_stock_threshold: int = Field(10, ge=0)
    part_number: Optional[str] = None
    brand: Optional[str] = None
    compatibility: Optional[str] = None
    images: List[ProductImage] = Field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False
    category_id: Optional[str] = None


# ---------------------- Coupons ----------------------

class Coupon(Document):
    """
    Coupons collection schema
    Collection: "coupon"
    """
    code: str = Field(..., min_length=3, description="Uppercased discount code")
    description: Optional[str] = None
    type: CouponType
    value: float = Field(..., gt=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, gt=0, description="Cap for percentage coupons")
    usage_limit: Optional[int] = Field(None, gt=0)
    usage_count: int = Field(0, ge=0)
    per_user_limit: int = Field(1, gt=0)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    applies_to_generators: bool = True
    applies_to_parts: bool = True


class CouponUsage(Document):
    """
    Per-user redemption ledger
    Collection: "couponusage"
    """
    coupon_id: str
    user_id: str
    count: int = Field(0, ge=0)


# ---------------------- Orders ----------------------

class OrderLine(BaseModel):
    """A purchased product as it was at placement time. Never re-read from the catalog."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    item_type: ItemType
    product_id: str
    name: str
    sku: Optional[str] = None
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    quantity: int = Field(..., ge=1)
    image_url: Optional[str] = None

    @property
    def total(self) -> float:
        return round(self.price * self.quantity, 2)

    def to_document(self) -> dict:
        doc = self.model_dump()
        doc["total"] = self.total
        return doc


class Order(Document):
    """
    Orders collection schema
    Collection: "order"
    """
    order_number: str
    invoice_number: str
    user_id: str
    shipping_name: str
    shipping_phone: str
    shipping_email: EmailStr
    shipping_address_line: str
    shipping_city: str
    shipping_state: str
    shipping_postal_code: str
    shipping_country: str = "Pakistan"
    items: List[OrderLine]
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    cod_fee: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_discount: float = 0
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod
    customer_notes: Optional[str] = None

    def to_document(self) -> dict:
        doc = self.model_dump(exclude={"items"})
        doc["items"] = [line.to_document() for line in self.items]
        return doc


class CartItem(Document):
    item_type: ItemType
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    max_stock: int = Field(..., ge=0)
    sku: Optional[str] = None
    image: Optional[str] = None


class Cart(Document):
    """
    Shopping cart collection schema
    Collection: "cart"
    """
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


# ---------------------- Service requests ----------------------

class ServiceRequest(Document):
    """
    Service requests collection schema
    Collection: "servicerequest"
    """
    request_number: str
    user_id: str
    contact_name: str
    contact_phone: str
    contact_email: EmailStr
    service_address: str
    service_city: str
    service_state: str
    service_type: ServiceType
    priority: ServicePriority = ServicePriority.NORMAL
    generator_brand: Optional[str] = None
    generator_model: Optional[str] = None
    generator_serial: Optional[str] = None
    problem_title: str
    problem_description: str
    images: List[str] = Field(default_factory=list)
    preferred_date: Optional[datetime] = None
    status: ServiceRequestStatus = ServiceRequestStatus.PENDING
    admin_notes: Optional[str] = None
    diagnosis: Optional[str] = None
    estimated_cost: Optional[float] = None
    quoted_price: Optional[float] = None
    final_cost: Optional[float] = None
    scheduled_date: Optional[datetime] = None
    assigned_to: Optional[str] = None


# ---------------------- Marketplace ----------------------

class UserGenerator(Document):
    """
    User resale listings collection schema
    Collection: "usergenerator"
    """
    user_id: str
    title: str
    brand: str
    generator_model: str
    year: Optional[int] = None
    condition: GeneratorCondition
    power: Optional[str] = None
    fuel_type: Optional[str] = None
    running_hours: Optional[int] = Field(None, ge=0)
    serial_number: Optional[str] = None
    asking_price: float = Field(..., gt=0)
    negotiable: bool = True
    description: str
    reason_for_selling: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    contact_name: str
    contact_phone: str
    contact_email: EmailStr
    contact_city: str
    contact_address: Optional[str] = None
    status: ListingStatus = ListingStatus.PENDING


# ---------------------- Engagement ----------------------

class Review(Document):
    """
    Product reviews collection schema
    Collection: "review"
    """
    user_id: str
    item_type: ItemType
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: str = Field(..., min_length=10)
    is_approved: bool = True
    is_verified_purchase: bool = False


class WishlistItem(Document):
    """
    Wishlist collection schema
    Collection: "wishlistitem"
    """
    user_id: str
    item_type: ItemType
    product_id: str


class Notification(Document):
    """
    In-app notifications collection schema
    Collection: "notification"
    """
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    is_read: bool = False
    order_id: Optional[str] = None
    service_request_id: Optional[str] = None


# ---------------------- Back office ----------------------

class Setting(Document):
    """
    Key/value settings collection schema
    Collection: "setting"
    """
    key: str
    value: str
    group: str = "general"


class AuditLog(Document):
    """
    Audit trail collection schema
    Collection: "auditlog"
    """
    user_id: Optional[str] = None
    action: str = Field(..., description="CREATE | UPDATE | DELETE")
    entity: str = Field(..., description="ORDER, COUPON, SETTING, ...")
    entity_id: Optional[str] = None
    old_values: Optional[str] = None
    new_values: Optional[str] = None
