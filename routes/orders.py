import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field
from pymongo.errors import DuplicateKeyError

import emails
import inventory
from database import get_db, parse_object_id, to_serializable, utcnow
from notifications import NotificationHub, get_hub, notify
from payments import PaymentError, create_payment_source
from schemas import (
    ApiModel,
    CouponSnapshot,
    CouponUsage,
    NotificationType,
    Order,
    OrderItem,
    PaymentMethod,
    PaymentStatus,
    ShippingAddress,
)
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


# Who an order belongs to

@dataclass(frozen=True)
class RegisteredOwner:
    user: dict

    @property
    def email(self) -> Optional[str]:
        return self.user.get("email")


@dataclass(frozen=True)
class GuestOwner:
    email: Optional[str]


Owner = Union[RegisteredOwner, GuestOwner]


def resolve_order_owner(db, order: dict) -> Owner:
    if order.get("user"):
        user = db["user"].find_one({"_id": order["user"]})
        if user:
            return RegisteredOwner(user)
    return GuestOwner(order.get("email"))


# Request models

class OrderItemIn(ApiModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    variant_name: str


class ShippingAddressIn(ApiModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class OrderRequest(ApiModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_source_id: Optional[str] = None
    email: Optional[str] = None
    coupon: Optional[str] = None
    shipping_address: Optional[ShippingAddressIn] = None


class PaymentSourceRequest(ApiModel):
    amount: float = Field(..., gt=0)
    payment_method: PaymentMethod


# Coupon redemption

def redeem_coupon(db, code: str, owner: Owner) -> dict:
    """Consume one use of a coupon for this owner and return its snapshot.

    Registered owners get a coupon_usage row whose unique (coupon, user) pair
    is the final word on double redemption. Guests cannot be told apart, so
    only the global counter moves for them.
    """
    coupon = db["coupon"].find_one({"code": code.strip().upper()})
    if not coupon:
        raise HTTPException(400, "Invalid coupon code")

    max_uses = coupon.get("max_uses")
    if max_uses is not None and coupon.get("used_count", 0) >= max_uses:
        raise HTTPException(400, "Coupon has reached maximum usage")

    usage_id = None
    if isinstance(owner, RegisteredOwner):
        usage_query = {"coupon_id": coupon["_id"], "user_id": owner.user["_id"]}
        if db["coupon_usage"].find_one(usage_query):
            raise HTTPException(400, "You have already used this coupon")
        try:
            usage = CouponUsage(coupon_id=coupon["_id"], user_id=owner.user["_id"]).model_dump()
            usage_id = db["coupon_usage"].insert_one(usage).inserted_id
        except DuplicateKeyError:
            raise HTTPException(400, "You have already used this coupon")

    # compare-and-set so concurrent checkouts cannot push past max_uses
    claim = {"_id": coupon["_id"]}
    if max_uses is not None:
        claim["used_count"] = {"$lt": max_uses}
    result = db["coupon"].update_one(claim, {"$inc": {"used_count": 1}, "$set": {"updated_at": utcnow()}})
    if result.modified_count == 0:
        if usage_id is not None:
            db["coupon_usage"].delete_one({"_id": usage_id})
        raise HTTPException(400, "Coupon has reached maximum usage")

    return CouponSnapshot(code=coupon["code"], type=coupon["type"], value=coupon["value"]).model_dump()


# Checkout

async def place_order(db, hub: Optional[NotificationHub], payload: OrderRequest, owner: Owner) -> dict:
    items = [
        OrderItem(
            product_id=parse_object_id(item.product_id, "product ID"),
            name=item.name,
            price=item.price,
            quantity=item.quantity,
            variant_name=item.variant_name,
        ).model_dump()
        for item in payload.items
    ]

    inventory.check_availability(db, items)

    snapshot = redeem_coupon(db, payload.coupon, owner) if payload.coupon else None

    order = Order(
        user=owner.user["_id"] if isinstance(owner, RegisteredOwner) else None,
        email=owner.email if isinstance(owner, GuestOwner) else None,
        items=items,
        total_amount=payload.total_amount,
        payment_method=payload.payment_method,
        payment_status=payload.payment_status,
        payment_source_id=payload.payment_source_id,
        shipping_address=ShippingAddress(**payload.shipping_address.model_dump()) if payload.shipping_address else None,
        coupon=snapshot,
    ).model_dump()
    now = utcnow()
    order["created_at"] = order["updated_at"] = now
    order["_id"] = db["order"].insert_one(order).inserted_id

    await inventory.decrement_for_order(db, hub, items)

    await notify(
        db,
        hub,
        NotificationType.ORDER,
        f"New order #{str(order['_id'])[-6:]} received",
        {
            "order_id": order["_id"],
            "total_amount": order["total_amount"],
            "item_count": sum(i["quantity"] for i in items),
            "guest": isinstance(owner, GuestOwner),
        },
    )

    if owner.email:
        try:
            emails.send_order_confirmation_email(owner.email, order)
        except Exception as exc:
            logger.warning("Order confirmation email for %s failed: %s", order["_id"], exc)
    return order


@router.post("/guest", status_code=201)
async def create_guest_order(payload: OrderRequest, db=Depends(get_db), hub=Depends(get_hub)):
    email = (payload.email or "").strip().lower() or None
    order = await place_order(db, hub, payload, GuestOwner(email))
    return to_serializable(order)


@router.post("", status_code=201)
async def create_order(payload: OrderRequest, db=Depends(get_db), hub=Depends(get_hub),
                       user: dict = Depends(get_current_user)):
    order = await place_order(db, hub, payload, RegisteredOwner(user))
    return to_serializable(order)


@router.get("/my-orders")
def my_orders(db=Depends(get_db), user: dict = Depends(get_current_user)):
    docs = db["order"].find({"user": user["_id"]}).sort("created_at", -1)
    return [to_serializable(d) for d in docs]


@router.get("/track/{order_id}")
def track_order(order_id: str, db=Depends(get_db)):
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order ID")})
    if not order:
        raise HTTPException(404, "Order not found")
    public = {k: order.get(k) for k in (
        "_id", "items", "total_amount", "status", "payment_method", "payment_status",
        "delivery_details", "coupon", "created_at", "updated_at",
    )}
    return to_serializable(public)


@router.post("/payment-source")
def payment_source(payload: PaymentSourceRequest):
    try:
        source = create_payment_source(payload.amount, payload.payment_method.value)
    except PaymentError as exc:
        raise HTTPException(500, str(exc))
    return to_serializable(source)
