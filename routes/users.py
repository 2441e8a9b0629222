import logging
import secrets
from datetime import timedelta
from typing import Optional

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends, HTTPException
from pymongo.errors import DuplicateKeyError

import emails
from database import get_db, parse_object_id, to_serializable, utcnow
from notifications import get_hub, notify
from schemas import ApiModel, NotificationType, Role, User
from security import (
    create_token,
    get_current_user,
    hash_password,
    public_user,
    require_admin,
    verify_google_credential,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

MIN_PASSWORD_LENGTH = 6
VERIFICATION_TTL = timedelta(hours=24)
RESET_TTL = timedelta(hours=1)


class RegisterRequest(ApiModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(ApiModel):
    email: Optional[str] = None
    password: Optional[str] = None


class EmailRequest(ApiModel):
    email: str


class ResetPasswordRequest(ApiModel):
    token: str
    new_password: str


class GoogleLoginRequest(ApiModel):
    credential: str


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def check_email_format(value: str) -> None:
    # same check EmailStr applies when the User document is built
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        raise HTTPException(400, "Invalid email format")


def auth_response(user: dict) -> dict:
    return {"token": create_token(user), "user": to_serializable(public_user(user))}


# Auth

@router.post("/register", status_code=201)
async def register(payload: RegisterRequest, db=Depends(get_db), hub=Depends(get_hub)):
    email = normalize_email(payload.email)
    if not email or not payload.password or not payload.name:
        raise HTTPException(400, "Missing required fields")
    check_email_format(email)
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(400, f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if db["user"].find_one({"email": email}):
        raise HTTPException(409, "Email already registered")

    token = secrets.token_hex(32)
    doc = User(
        name=payload.name,
        email=email,
        password=hash_password(payload.password),
        address=payload.address,
        phone=payload.phone,
        verification_token=token,
        verification_expires=utcnow() + VERIFICATION_TTL,
    ).model_dump()
    doc["created_at"] = doc["updated_at"] = utcnow()
    try:
        doc["_id"] = db["user"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise HTTPException(409, "Email already registered")

    try:
        emails.send_verification_email(email, token)
    except Exception:
        # an account nobody can verify is useless; undo it
        logger.exception("Verification email to %s failed, removing new account", email)
        db["user"].delete_one({"_id": doc["_id"]})
        raise HTTPException(500, "Error sending verification email. Please try again.")

    await notify(db, hub, NotificationType.NEW_USER, f"New user registered: {doc['name']}",
                 {"user_id": doc["_id"], "name": doc["name"], "email": email})
    return {
        "message": "Registration successful. Please check your email to verify your account.",
        "user": to_serializable(public_user(doc)),
    }


@router.get("/verify-email/{token}")
def verify_email(token: str, db=Depends(get_db)):
    user = db["user"].find_one({"verification_token": token, "verification_expires": {"$gt": utcnow()}})
    if not user:
        raise HTTPException(400, "Invalid or expired verification token")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"is_verified": True, "verification_token": None, "verification_expires": None,
                  "updated_at": utcnow()}},
    )
    user = db["user"].find_one({"_id": user["_id"]})
    return {"message": "Email verified successfully", **auth_response(user)}


@router.post("/resend-verification")
def resend_verification(payload: EmailRequest, db=Depends(get_db)):
    user = db["user"].find_one({"email": normalize_email(payload.email)})
    if not user:
        raise HTTPException(404, "User not found")
    if user.get("is_verified"):
        raise HTTPException(400, "Email is already verified")
    token = secrets.token_hex(32)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"verification_token": token, "verification_expires": utcnow() + VERIFICATION_TTL}},
    )
    try:
        emails.send_verification_email(user["email"], token)
    except Exception:
        logger.exception("Verification email to %s failed", user["email"])
        raise HTTPException(500, "Error sending verification email. Please try again.")
    return {"message": "Verification email sent"}


@router.post("/login")
def login(payload: LoginRequest, db=Depends(get_db)):
    email = normalize_email(payload.email)
    if not email or not payload.password:
        raise HTTPException(400, "Missing required fields")
    user = db["user"].find_one({"email": email})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise HTTPException(401, "Invalid credentials")
    if not user.get("is_verified") and user.get("role") != Role.ADMIN.value:
        raise HTTPException(401, "Please verify your email before logging in")
    return auth_response(user)


@router.post("/google")
async def google_login(payload: GoogleLoginRequest, db=Depends(get_db), hub=Depends(get_hub)):
    claims = verify_google_credential(payload.credential)
    email = normalize_email(claims["email"])

    user = db["user"].find_one({"$or": [{"google_id": claims.get("sub")}, {"email": email}]})
    if user:
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"google_id": claims.get("sub"), "is_verified": True,
                      "picture": claims.get("picture") or user.get("picture"), "updated_at": utcnow()}},
        )
        return auth_response(db["user"].find_one({"_id": user["_id"]}))

    doc = User(
        name=claims.get("name") or email.split("@")[0],
        email=email,
        # no usable password; sign-in goes through Google
        password=hash_password(secrets.token_urlsafe(32)),
        is_verified=True,
        google_id=claims.get("sub"),
        picture=claims.get("picture"),
    ).model_dump()
    doc["created_at"] = doc["updated_at"] = utcnow()
    doc["_id"] = db["user"].insert_one(doc).inserted_id
    await notify(db, hub, NotificationType.NEW_USER, f"New user registered with Google: {doc['name']}",
                 {"user_id": doc["_id"], "name": doc["name"], "email": email})
    return auth_response(doc)


@router.post("/forgot-password")
def forgot_password(payload: EmailRequest, db=Depends(get_db)):
    message = {"message": "If that email is registered, a reset link has been sent"}
    user = db["user"].find_one({"email": normalize_email(payload.email)})
    if not user:
        return message

    token = secrets.token_hex(32)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"reset_password_token": token, "reset_password_expires": utcnow() + RESET_TTL}},
    )
    try:
        emails.send_password_reset_email(user["email"], token)
    except Exception:
        logger.exception("Password reset email to %s failed", user["email"])
        raise HTTPException(500, "Error sending password reset email")
    return message


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db=Depends(get_db)):
    if len(payload.new_password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(400, f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    user = db["user"].find_one({"reset_password_token": payload.token,
                                "reset_password_expires": {"$gt": utcnow()}})
    if not user:
        raise HTTPException(400, "Invalid or expired reset token")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(payload.new_password), "reset_password_token": None,
                  "reset_password_expires": None, "updated_at": utcnow()}},
    )
    return {"message": "Password has been reset successfully"}


@router.get("/me")
async def me(current_user: dict = Depends(get_current_user)):
    return to_serializable(public_user(current_user))


# Admin notification feed

@router.get("/notifications")
def list_notifications(page: int = 1, limit: int = 10, db=Depends(get_db), admin=Depends(require_admin)):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    cursor = db["notification"].find({}).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return [to_serializable(n) for n in cursor]


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, db=Depends(get_db), admin=Depends(require_admin)):
    oid = parse_object_id(notification_id, "notification ID")
    result = db["notification"].update_one({"_id": oid}, {"$set": {"read": True}})
    if result.matched_count == 0:
        raise HTTPException(404, "Notification not found")
    return to_serializable(db["notification"].find_one({"_id": oid}))


@router.delete("/notifications")
def clear_notifications(db=Depends(get_db), admin=Depends(require_admin)):
    result = db["notification"].delete_many({})
    return {"message": "Notifications cleared", "deleted": result.deleted_count}
