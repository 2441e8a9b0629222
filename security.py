import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import requests
from bson import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from database import get_db
from schemas import Role

logger = logging.getLogger(__name__)

# Security/JWT setup
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", str(60 * 24)))
security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

PRIVATE_USER_FIELDS = (
    "password",
    "verification_token",
    "verification_expires",
    "reset_password_token",
    "reset_password_expires",
)


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return password_ctx.verify(password, hashed)
    except ValueError:
        return False


def create_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "name": user.get("name"),
        "role": user.get("role", Role.CUSTOMER.value),
        "exp": now + timedelta(minutes=JWT_EXPIRES_MIN),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Please authenticate")


def authenticate_token(db, token: Optional[str]) -> dict:
    """Resolve a bearer token to its user document or raise 401."""
    if not token:
        raise HTTPException(status_code=401, detail="Please authenticate")
    payload = decode_token(token)
    uid = payload.get("sub")
    if not uid or not ObjectId.is_valid(uid):
        raise HTTPException(status_code=401, detail="Please authenticate")
    user = db["user"].find_one({"_id": ObjectId(uid)})
    if not user:
        raise HTTPException(status_code=401, detail="Please authenticate")
    return user


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                           db=Depends(get_db)) -> dict:
    token = credentials.credentials if credentials else None
    return authenticate_token(db, token)


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != Role.ADMIN.value:
        raise HTTPException(status_code=403, detail="Access denied")
    return user


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}


GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"


def verify_google_credential(credential: str) -> dict:
    """Check a Google ID token and return its claims (sub, email, name, picture)."""
    try:
        response = requests.get(GOOGLE_TOKENINFO_URL, params={"id_token": credential}, timeout=10)
    except requests.RequestException as exc:
        logger.warning("Google token verification unavailable: %s", exc)
        raise HTTPException(status_code=401, detail="Google authentication failed")
    if not response.ok:
        raise HTTPException(status_code=401, detail="Google authentication failed")

    claims = response.json()
    if GOOGLE_CLIENT_ID and claims.get("aud") != GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=401, detail="Google authentication failed")
    if not claims.get("email") or str(claims.get("email_verified", "")).lower() != "true":
        raise HTTPException(status_code=401, detail="Google account email is not verified")
    return claims
