from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from database import get_db, parse_object_id, utcnow
from schemas import ApiModel
from security import get_current_user

router = APIRouter(prefix="/coupons", tags=["coupons"])


class ValidateCouponRequest(ApiModel):
    code: str
    user_id: Optional[str] = None


def public_coupon(coupon: dict) -> dict:
    return {
        "code": coupon["code"],
        "type": coupon["type"],
        "value": coupon["value"],
        "isActive": coupon.get("is_active", True),
        "maxUses": coupon.get("max_uses"),
        "usedCount": coupon.get("used_count", 0),
    }


@router.post("/validate")
async def validate_coupon(payload: ValidateCouponRequest, db=Depends(get_db),
                          current_user: dict = Depends(get_current_user)):
    """Check whether a coupon can be applied, without consuming it.

    Checks run in a fixed order and the first failure is reported.
    """
    coupon = db["coupon"].find_one({"code": payload.code.strip().upper()})
    if not coupon:
        raise HTTPException(404, "Coupon not found")

    user_id = parse_object_id(payload.user_id, "user ID") if payload.user_id else None
    if user_id is not None and db["coupon_usage"].find_one({"coupon_id": coupon["_id"], "user_id": user_id}):
        raise HTTPException(400, "You have already used this coupon")

    if not coupon.get("is_active", True):
        raise HTTPException(400, "This coupon is no longer active")

    expiry = coupon.get("expiry_date")
    if expiry and expiry < utcnow():
        raise HTTPException(400, "This coupon has expired")

    max_uses = coupon.get("max_uses")
    if max_uses is not None and coupon.get("used_count", 0) >= max_uses:
        raise HTTPException(400, "This coupon has reached its usage limit")

    if coupon.get("new_users_only"):
        owner_id = user_id or current_user["_id"]
        if db["order"].count_documents({"user": owner_id}) > 0:
            raise HTTPException(400, "This coupon is for new customers only")

    return public_coupon(coupon)
