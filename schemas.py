"""
Database Schemas for the Brownie Shop

Each Pydantic model corresponds to a MongoDB collection. The collection name is
the snake_case of the class name.

Example: class CouponUsage -> collection "coupon_usage"

Embedded models (Variant, OrderItem, ProductFeedback, ...) live inside their
owning document and have no collection of their own.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

from database import utcnow


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class ProductCategory(str, Enum):
    CLASSIC = "classic"
    NUTS = "nuts"
    CHOCOLATE = "chocolate"
    SPECIAL = "special"


class OrderStatus(str, Enum):
    RECEIVED = "received"
    BAKING = "baking"
    OUT_FOR_DELIVERY = "out for delivery"
    DELIVERED = "delivered"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    GCASH = "gcash"
    GRAB_PAY = "grab_pay"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class CouponType(str, Enum):
    FIXED = "fixed"
    PRODUCT = "product"


class NotificationType(str, Enum):
    NEW_USER = "NEW_USER"
    ORDER = "ORDER"
    FEEDBACK = "FEEDBACK"
    INVENTORY = "INVENTORY"


class InventoryChangeType(str, Enum):
    INCREMENT = "increment"
    DECREMENT = "decrement"
    MANUAL = "manual"
    ORDER = "order"


class ApiModel(BaseModel):
    # request bodies arrive camelCase from the web client
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MongoModel(BaseModel):
    # documents carry ObjectId references; enums are stored by value
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True)


# Core domain models

class User(MongoModel):
    name: str
    email: EmailStr
    password: str = Field(..., description="bcrypt hash, never the plain password")
    address: Optional[str] = None
    phone: Optional[str] = None
    role: Role = Role.CUSTOMER
    is_verified: bool = False
    verification_token: Optional[str] = None
    verification_expires: Optional[datetime] = None
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None
    google_id: Optional[str] = None
    picture: Optional[str] = None


class Variant(MongoModel):
    name: str
    price: float = Field(..., ge=0)
    stock_quantity: int = 0
    in_stock: bool = False

    @model_validator(mode="after")
    def derive_in_stock(self):
        # never settable on its own
        self.in_stock = self.stock_quantity > 0
        return self


class Product(MongoModel):
    name: str
    description: str
    image: str
    category: ProductCategory
    variants: List[Variant] = Field(default_factory=list)
    is_popular: bool = False


class OrderItem(MongoModel):
    product_id: ObjectId
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    variant_name: str


class CouponSnapshot(MongoModel):
    code: str
    type: CouponType
    value: float


class ShippingAddress(MongoModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class DeliveryDetails(MongoModel):
    rider_name: str
    rider_phone: str
    estimated_delivery_time: Optional[str] = None
    notes: Optional[str] = None


class Order(MongoModel):
    user: Optional[ObjectId] = Field(None, description="registered owner; None for guest orders")
    email: Optional[str] = Field(None, description="guest contact address")
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.RECEIVED
    shipping_address: Optional[ShippingAddress] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_source_id: Optional[str] = None
    coupon: Optional[CouponSnapshot] = None
    delivery_details: Optional[DeliveryDetails] = None


class Coupon(MongoModel):
    code: str
    type: CouponType
    value: float = Field(..., ge=0)
    max_uses: Optional[int] = Field(None, description="None means unlimited")
    used_count: int = 0
    expiry_date: Optional[datetime] = None
    is_active: bool = True
    new_users_only: bool = False


class CouponUsage(MongoModel):
    coupon_id: ObjectId
    user_id: ObjectId
    used_at: datetime = Field(default_factory=utcnow)


class ProductFeedback(MongoModel):
    product_id: ObjectId
    product_name: Optional[str] = None
    variant_name: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    is_displayed: bool = False


class Feedback(MongoModel):
    order_id: ObjectId
    product_feedback: List[ProductFeedback]


class InventoryLog(MongoModel):
    product_id: ObjectId
    variant_name: str
    previous_quantity: int
    new_quantity: int
    change_type: InventoryChangeType
    reason: str
    updated_by: ObjectId


class Notification(MongoModel):
    type: NotificationType
    message: str
    read: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)


class Contact(MongoModel):
    name: str
    email: EmailStr
    subject: str
    message: str


# Home page / marketing copy (singleton)

class PageHero(ApiModel):
    title: str
    subtitle: str


class AboutPageStory(ApiModel):
    title: str = "Started in 2010"
    content: str = (
        "What began as a passion project in our family kitchen has grown into a beloved "
        "destination for brownie enthusiasts. Our commitment to quality ingredients and "
        "traditional baking methods remains unchanged."
    )
    additional_content: str = (
        "Every brownie is crafted with care, using time-tested recipes and the finest "
        "ingredients sourced from local suppliers whenever possible."
    )
    image: str = "https://images.unsplash.com/photo-1604761483402-1e07d167c09b?auto=format&fit=crop&w=600"


class ContactPageInfo(ApiModel):
    address: str = "123 Brownie Street, Sweet City"
    email: str = "hello@brownieshop.com"
    phone: str = "+1 234 567 8900"
    hours: str = "Mon-Fri: 9:00 AM - 6:00 PM"


class ValueItem(ApiModel):
    title: str
    description: str


class AppSettings(ApiModel):
    app_name: str = "Brownie"


def default_values() -> List[ValueItem]:
    return [
        ValueItem(title="Quality First", description="Only the finest ingredients make it into our brownies"),
        ValueItem(title="Made with Love", description="Each brownie is crafted with attention to detail"),
        ValueItem(title="Community Focus", description="Supporting local suppliers and our neighborhood"),
    ]


class HomeContent(ApiModel):
    hero_title: str = "Heavenly Brownies"
    hero_subtitle: str = "Indulge in our handcrafted, gourmet brownies"
    hero_image: str = ""
    about_title: str = "Our Story"
    about_content: str = "Crafting perfect brownies since 2010..."
    is_active: bool = True
    about_page_hero: PageHero = Field(default_factory=lambda: PageHero(
        title="Our Story", subtitle="From a small kitchen to your favorite brownie destination"))
    about_page_story: AboutPageStory = Field(default_factory=AboutPageStory)
    contact_page_hero: PageHero = Field(default_factory=lambda: PageHero(
        title="Get in Touch", subtitle="Have questions? We would love to hear from you."))
    contact_page_info: ContactPageInfo = Field(default_factory=ContactPageInfo)
    menu_page_hero: PageHero = Field(default_factory=lambda: PageHero(
        title="Our Menu", subtitle="Discover our selection of handcrafted brownies"))
    values: List[ValueItem] = Field(default_factory=default_values)
    app_settings: AppSettings = Field(default_factory=AppSettings)
