import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response
from pydantic import EmailStr, Field
from pydantic.alias_generators import to_snake
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import emails
import inventory
from database import as_naive_utc, get_db, parse_object_id, to_serializable, utcnow
from notifications import get_hub
from routes.content import get_or_create_home_content, reset_home_content, update_home_content
from routes.feedback import MAX_DISPLAYED_PER_PRODUCT, count_displayed, customer_name
from routes.orders import GuestOwner, RegisteredOwner, resolve_order_owner
from schemas import (
    ApiModel,
    Coupon,
    CouponType,
    DeliveryDetails,
    HomeContent,
    OrderStatus,
    Product,
    ProductCategory,
    Role,
    User,
    Variant,
)
from security import hash_password, public_user, require_admin, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# Request models

class UserCreate(ApiModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = Role.CUSTOMER
    address: Optional[str] = None
    phone: Optional[str] = None


class UserUpdate(ApiModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    is_verified: Optional[bool] = None


class RoleUpdate(ApiModel):
    role: str


class ProfileUpdate(ApiModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None


class PasswordChange(ApiModel):
    current_password: str
    new_password: str


class DeliveryDetailsIn(ApiModel):
    rider_name: str
    rider_phone: str
    estimated_delivery_time: Optional[str] = None
    notes: Optional[str] = None


class StatusUpdate(ApiModel):
    status: str
    delivery_details: Optional[DeliveryDetailsIn] = None


class VariantIn(ApiModel):
    # in_stock is derived; anything sent for it is ignored
    name: str
    price: float = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)


class ProductIn(ApiModel):
    name: str
    description: str
    image: str
    category: ProductCategory
    variants: List[VariantIn] = Field(default_factory=list)
    is_popular: bool = False


class ProductUpdate(ApiModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    category: Optional[ProductCategory] = None
    variants: Optional[List[VariantIn]] = None
    is_popular: Optional[bool] = None


class InventoryUpdate(ApiModel):
    product_id: str
    variant_name: str
    stock_quantity: int = Field(..., ge=0)
    reason: Optional[str] = None


class CouponIn(ApiModel):
    code: str = Field(..., min_length=1)
    type: CouponType
    value: float = Field(..., ge=0)
    max_uses: Optional[int] = None
    expiry_date: Optional[datetime] = None
    is_active: bool = True
    new_users_only: bool = False


class CouponUpdate(ApiModel):
    code: Optional[str] = None
    type: Optional[CouponType] = None
    value: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = None
    expiry_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    new_users_only: Optional[bool] = None


class DisplayToggle(ApiModel):
    product_id: str


# Helpers

def find_or_404(db, collection: str, object_id: str, label: str) -> dict:
    doc = db[collection].find_one({"_id": parse_object_id(object_id, f"{label.lower()} ID")})
    if not doc:
        raise HTTPException(404, f"{label} not found")
    return doc


def ensure_email_free(db, email: str, user_id=None) -> None:
    query: Dict[str, Any] = {"email": email}
    if user_id is not None:
        query["_id"] = {"$ne": user_id}
    if db["user"].find_one(query):
        raise HTTPException(409, "Email already registered")


def render_order(db, order: dict) -> dict:
    out = dict(order)
    owner = resolve_order_owner(db, order)
    if isinstance(owner, RegisteredOwner):
        out["user"] = {"_id": owner.user["_id"], "name": owner.user.get("name"), "email": owner.user.get("email")}
    elif isinstance(owner, GuestOwner):
        out["user"] = None
    return to_serializable(out)


def status_email(status: OrderStatus):
    if status is OrderStatus.OUT_FOR_DELIVERY:
        return emails.send_out_for_delivery_email
    if status is OrderStatus.DELIVERED:
        return emails.send_delivered_email
    if status is OrderStatus.REFUNDED:
        return emails.send_refund_email
    if status in (OrderStatus.RECEIVED, OrderStatus.BAKING):
        return None
    raise ValueError(f"Unhandled order status {status!r}")


def normalize_max_uses(value: Optional[int]) -> Optional[int]:
    # the console sends -1 / 0 for "unlimited"
    if value is None or value <= 0:
        return None
    return value


def build_variants(variants: List[VariantIn]) -> List[dict]:
    return [Variant(name=v.name, price=v.price, stock_quantity=v.stock_quantity).model_dump() for v in variants]


# Dashboard

@router.get("/stats")
def get_stats(db=Depends(get_db)):
    orders = list(db["order"].find({}, {"total_amount": 1, "status": 1}))
    revenue = sum(o.get("total_amount", 0) for o in orders if o.get("status") != OrderStatus.REFUNDED.value)
    recent = db["order"].find({}).sort("created_at", -1).limit(5)
    return {
        "totalUsers": db["user"].count_documents({"role": Role.CUSTOMER.value}),
        "totalOrders": len(orders),
        "totalRevenue": round(revenue, 2),
        "recentOrders": [render_order(db, o) for o in recent],
    }


# Users

@router.get("/users")
def list_users(db=Depends(get_db)):
    docs = db["user"].find({}).sort("created_at", -1)
    return [to_serializable(public_user(u)) for u in docs]


@router.post("/users", status_code=201)
def create_user(payload: UserCreate, db=Depends(get_db)):
    email = payload.email.lower()
    ensure_email_free(db, email)
    doc = User(
        name=payload.name,
        email=email,
        password=hash_password(payload.password),
        role=payload.role,
        address=payload.address,
        phone=payload.phone,
        is_verified=True,
    ).model_dump()
    doc["created_at"] = doc["updated_at"] = utcnow()
    try:
        doc["_id"] = db["user"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise HTTPException(409, "Email already registered")
    return to_serializable(public_user(doc))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: str, db=Depends(get_db)):
    db["user"].delete_one({"_id": parse_object_id(user_id, "user ID")})
    return Response(status_code=204)


@router.patch("/users/{user_id}/role")
def update_user_role(user_id: str, payload: RoleUpdate, db=Depends(get_db)):
    if payload.role not in [r.value for r in Role]:
        raise HTTPException(400, "Invalid role")
    user = db["user"].find_one_and_update(
        {"_id": parse_object_id(user_id, "user ID")},
        {"$set": {"role": payload.role, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise HTTPException(404, "User not found")
    return to_serializable(public_user(user))


@router.patch("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, db=Depends(get_db)):
    user = find_or_404(db, "user", user_id, "User")
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in updates:
        updates["email"] = updates["email"].lower()
        ensure_email_free(db, updates["email"], user["_id"])
    if updates.get("password"):
        updates["password"] = hash_password(updates["password"])
    else:
        updates.pop("password", None)
    updates["updated_at"] = utcnow()
    user = db["user"].find_one_and_update({"_id": user["_id"]}, {"$set": updates},
                                          return_document=ReturnDocument.AFTER)
    return to_serializable(public_user(user))


@router.get("/users/{user_id}/orders")
def get_user_details(user_id: str, db=Depends(get_db)):
    oid = parse_object_id(user_id, "user ID")
    orders = list(db["order"].find({"user": oid}).sort("created_at", -1))
    return {
        "orders": [to_serializable(o) for o in orders],
        "totalSpent": round(sum(o.get("total_amount", 0) for o in orders), 2),
        "orderCount": len(orders),
        "firstOrder": orders[-1].get("created_at") if orders else None,
    }


# Admin profile

@router.patch("/profile/{user_id}")
def update_profile(user_id: str, payload: ProfileUpdate, db=Depends(get_db)):
    user = find_or_404(db, "user", user_id, "User")
    updates = payload.model_dump(exclude_none=True)
    if "email" in updates:
        updates["email"] = updates["email"].lower()
        ensure_email_free(db, updates["email"], user["_id"])
    updates["updated_at"] = utcnow()
    user = db["user"].find_one_and_update({"_id": user["_id"]}, {"$set": updates},
                                          return_document=ReturnDocument.AFTER)
    return to_serializable(public_user(user))


@router.patch("/profile/{user_id}/password")
def change_password(user_id: str, payload: PasswordChange, db=Depends(get_db)):
    user = find_or_404(db, "user", user_id, "User")
    if not verify_password(payload.current_password, user.get("password", "")):
        raise HTTPException(401, "Current password is incorrect")
    if len(payload.new_password) < 6:
        raise HTTPException(400, "Password must be at least 6 characters")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(payload.new_password), "updated_at": utcnow()}},
    )
    return {"message": "Password updated successfully"}


# Orders

@router.get("/orders")
def list_orders(db=Depends(get_db)):
    docs = db["order"].find({}).sort("created_at", -1)
    return [render_order(db, o) for o in docs]


@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, db=Depends(get_db)):
    try:
        status = OrderStatus(payload.status)
    except ValueError:
        raise HTTPException(400, "Invalid status")
    order = find_or_404(db, "order", order_id, "Order")

    updates: Dict[str, Any] = {"status": status.value, "updated_at": utcnow()}
    if status is OrderStatus.OUT_FOR_DELIVERY:
        if payload.delivery_details is None:
            raise HTTPException(400, "Delivery details are required")
        updates["delivery_details"] = DeliveryDetails(**payload.delivery_details.model_dump()).model_dump()

    order = db["order"].find_one_and_update({"_id": order["_id"]}, {"$set": updates},
                                            return_document=ReturnDocument.AFTER)

    send = status_email(status)
    owner = resolve_order_owner(db, order)
    if send is not None and owner.email:
        try:
            send(owner.email, order)
        except Exception as exc:
            logger.warning("Status email (%s) for order %s failed: %s", status.value, order["_id"], exc)
    return render_order(db, order)


# Products

@router.get("/products")
def list_products(db=Depends(get_db)):
    docs = db["product"].find({}).sort("created_at", -1)
    return [to_serializable(p) for p in docs]


@router.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return to_serializable(find_or_404(db, "product", product_id, "Product"))


@router.post("/products", status_code=201)
def create_product(payload: ProductIn, db=Depends(get_db)):
    doc = Product(
        name=payload.name,
        description=payload.description,
        image=payload.image,
        category=payload.category,
        variants=build_variants(payload.variants),
        is_popular=payload.is_popular,
    ).model_dump()
    doc["created_at"] = doc["updated_at"] = utcnow()
    doc["_id"] = db["product"].insert_one(doc).inserted_id
    return to_serializable(doc)


@router.patch("/products/{product_id}")
async def update_product(product_id: str, payload: ProductUpdate, db=Depends(get_db), hub=Depends(get_hub)):
    product = find_or_404(db, "product", product_id, "Product")
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "category" in updates:
        updates["category"] = ProductCategory(updates["category"]).value
    if payload.variants is not None:
        updates["variants"] = build_variants(payload.variants)
    updates["updated_at"] = utcnow()
    updated = db["product"].find_one_and_update({"_id": product["_id"]}, {"$set": updates},
                                                return_document=ReturnDocument.AFTER)

    if payload.variants is not None:
        before = {v["name"]: v.get("stock_quantity") for v in product.get("variants", [])}
        for variant in updated["variants"]:
            if before.get(variant["name"]) != variant["stock_quantity"]:
                await inventory.check_low_stock(db, hub, updated, variant["name"], variant["stock_quantity"])
    return to_serializable(updated)


@router.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: str, db=Depends(get_db)):
    db["product"].delete_one({"_id": parse_object_id(product_id, "product ID")})
    return Response(status_code=204)


# Inventory

@router.patch("/inventory/update")
async def update_inventory(payload: InventoryUpdate, db=Depends(get_db), hub=Depends(get_hub),
                           admin: dict = Depends(require_admin)):
    product = await inventory.set_stock(
        db, hub, payload.product_id, payload.variant_name, payload.stock_quantity, payload.reason, admin
    )
    return to_serializable(product)


@router.get("/inventory/logs")
def get_inventory_logs(db=Depends(get_db)):
    logs = list(db["inventory_log"].find({}).sort("created_at", -1).limit(100))
    names: Dict[Any, Optional[str]] = {}

    def name_of(collection: str, oid) -> Optional[str]:
        key = (collection, oid)
        if key not in names:
            doc = db[collection].find_one({"_id": oid}, {"name": 1})
            names[key] = doc["name"] if doc else None
        return names[key]

    out = []
    for log in logs:
        entry = dict(log)
        entry["product_name"] = name_of("product", log["product_id"])
        entry["updated_by_name"] = name_of("user", log["updated_by"])
        out.append(to_serializable(entry))
    return out


# Coupons

@router.get("/coupons")
def list_coupons(db=Depends(get_db)):
    docs = db["coupon"].find({}).sort("created_at", -1)
    return [to_serializable(c) for c in docs]


@router.post("/coupons", status_code=201)
def create_coupon(payload: CouponIn, db=Depends(get_db)):
    code = payload.code.strip().upper()
    if db["coupon"].find_one({"code": code}):
        raise HTTPException(400, "Coupon code already exists")
    doc = Coupon(
        code=code,
        type=payload.type,
        value=payload.value,
        max_uses=normalize_max_uses(payload.max_uses),
        expiry_date=as_naive_utc(payload.expiry_date),
        is_active=payload.is_active,
        new_users_only=payload.new_users_only,
    ).model_dump()
    doc["created_at"] = doc["updated_at"] = utcnow()
    try:
        doc["_id"] = db["coupon"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise HTTPException(400, "Coupon code already exists")
    return to_serializable(doc)


@router.patch("/coupons/{coupon_id}")
def update_coupon(coupon_id: str, payload: CouponUpdate, db=Depends(get_db)):
    coupon = find_or_404(db, "coupon", coupon_id, "Coupon")
    updates = payload.model_dump(exclude_unset=True)
    if "code" in updates:
        if not updates["code"]:
            raise HTTPException(400, "Coupon code is required")
        updates["code"] = updates["code"].strip().upper()
        if db["coupon"].find_one({"code": updates["code"], "_id": {"$ne": coupon["_id"]}}):
            raise HTTPException(400, "Coupon code already exists")
    if "max_uses" in updates:
        updates["max_uses"] = normalize_max_uses(updates["max_uses"])
    if "expiry_date" in updates:
        updates["expiry_date"] = as_naive_utc(updates["expiry_date"])
    if "type" in updates:
        updates["type"] = CouponType(updates["type"]).value
    for key in ("value", "is_active", "new_users_only"):
        if key in updates and updates[key] is None:
            updates.pop(key)
    updates["updated_at"] = utcnow()
    coupon = db["coupon"].find_one_and_update({"_id": coupon["_id"]}, {"$set": updates},
                                              return_document=ReturnDocument.AFTER)
    return to_serializable(coupon)


@router.delete("/coupons/{coupon_id}", status_code=204)
def delete_coupon(coupon_id: str, db=Depends(get_db)):
    result = db["coupon"].delete_one({"_id": parse_object_id(coupon_id, "coupon ID")})
    if result.deleted_count == 0:
        raise HTTPException(404, "Coupon not found")
    return Response(status_code=204)


# Feedback

@router.get("/feedbacks")
def list_feedbacks(db=Depends(get_db)):
    out = []
    for doc in db["feedback"].find({}).sort("created_at", -1):
        entry = dict(doc)
        entry["customer_name"] = customer_name(db, db["order"].find_one({"_id": doc["order_id"]}))
        out.append(to_serializable(entry))
    return out


@router.patch("/feedbacks/{feedback_id}/display")
def toggle_feedback_display(feedback_id: str, payload: DisplayToggle, db=Depends(get_db)):
    feedback = find_or_404(db, "feedback", feedback_id, "Feedback")
    product_id = parse_object_id(payload.product_id, "product ID")
    entry = next((e for e in feedback.get("product_feedback", []) if e.get("product_id") == product_id), None)
    if entry is None:
        raise HTTPException(404, "Product feedback not found")

    show = not entry.get("is_displayed", False)
    # the entry being toggled is hidden, so the count already excludes it
    if show and count_displayed(db, product_id) >= MAX_DISPLAYED_PER_PRODUCT:
        raise HTTPException(400, f"Maximum of {MAX_DISPLAYED_PER_PRODUCT} feedbacks can be displayed per product")

    feedback = db["feedback"].find_one_and_update(
        {"_id": feedback["_id"], "product_feedback.product_id": product_id},
        {"$set": {"product_feedback.$.is_displayed": show}},
        return_document=ReturnDocument.AFTER,
    )
    return to_serializable(feedback)


@router.delete("/feedbacks/{feedback_id}", status_code=204)
def delete_feedback(feedback_id: str, db=Depends(get_db)):
    result = db["feedback"].delete_one({"_id": parse_object_id(feedback_id, "feedback ID")})
    if result.deleted_count == 0:
        raise HTTPException(404, "Feedback not found")
    return Response(status_code=204)


# Contacts

@router.get("/contacts")
def list_contacts(db=Depends(get_db)):
    docs = db["contact"].find({}).sort("created_at", -1)
    return [to_serializable(c) for c in docs]


@router.delete("/contacts/{contact_id}", status_code=204)
def delete_contact(contact_id: str, db=Depends(get_db)):
    result = db["contact"].delete_one({"_id": parse_object_id(contact_id, "contact ID")})
    if result.deleted_count == 0:
        raise HTTPException(404, "Contact not found")
    return Response(status_code=204)


# Home content

@router.get("/home-content")
def get_home_content(db=Depends(get_db)):
    return to_serializable(get_or_create_home_content(db))


@router.put("/home-content")
def put_home_content(update: Dict[str, Any] = Body(...), db=Depends(get_db)):
    current = get_or_create_home_content(db)
    allowed = set(HomeContent.model_fields) - {"is_active"}
    changes = {to_snake(k): v for k, v in update.items() if to_snake(k) in allowed}
    merged = {k: current.get(k) for k in allowed if current.get(k) is not None}
    merged.update(changes)
    try:
        content = HomeContent.model_validate(merged).model_dump()
    except ValueError as exc:
        raise HTTPException(400, f"Invalid home content: {exc}")
    content.pop("is_active", None)
    return to_serializable(update_home_content(db, content))


@router.post("/home-content/reset")
def restore_home_content(db=Depends(get_db)):
    return to_serializable(reset_home_content(db))
