"""
Passwords and sessions

Passwords are bcrypt-hashed through passlib. A session is a signed JWT that
carries the user's identity projection and lives in an httpOnly cookie; there
is no server-side session store, so a token stays valid until it expires.
"""
import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Cookie, Depends, Response
from jose import JWTError, jwt
from passlib.context import CryptContext

from errors import Forbidden, Unauthorized, ValidationFailed

logger = logging.getLogger(__name__)

# Environment / Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_DAYS = int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
COOKIE_NAME = "token"
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

PROJECTION_FIELDS = ("address", "city", "country", "email", "id", "name", "phone", "role")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

PASSWORD_RULES = (
    (r"[a-z]", "Password must include a lowercase letter"),
    (r"[A-Z]", "Password must include an uppercase letter"),
    (r"\d", "Password must include a number"),
    (r"[^a-zA-Z0-9]", "Password must include a special character"),
)


def check_password_policy(password: str) -> None:
    if len(password) < 6:
        raise ValidationFailed("Password must be at least 6 characters long")
    for pattern, message in PASSWORD_RULES:
        if not re.search(pattern, password):
            raise ValidationFailed(message)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def identity_projection(user: Dict[str, Any]) -> Dict[str, str]:
    """The fields a session may carry. Secrets never make it into a token."""
    source = dict(user)
    if "_id" in source:
        source["id"] = source.pop("_id")
    return {field: "" if source.get(field) is None else str(source[field]) for field in PROJECTION_FIELDS}


def issue_session_token(projection: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    # sorted keys and plain strings, so decoding gives back exactly what went in
    claims = {k: "" if projection.get(k) is None else str(projection[k]) for k in sorted(PROJECTION_FIELDS)}
    now = datetime.now(timezone.utc)
    claims["iat"] = now
    claims["exp"] = now + (expires_delta or timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS))
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def verify_session_token(token: Optional[str]) -> Dict[str, str]:
    # expired, tampered and malformed tokens all look the same to the caller
    if not token:
        raise Unauthorized()
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized()
    if not payload.get("id"):
        raise Unauthorized()
    payload.pop("iat", None)
    payload.pop("exp", None)
    return payload


def set_session_cookie(response: Response, user: Dict[str, Any]) -> Dict[str, str]:
    """Issue a token for `user`, attach it to the response and return the projection."""
    projection = identity_projection(user)
    response.set_cookie(
        key=COOKIE_NAME,
        value=issue_session_token(projection),
        max_age=ACCESS_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
    )
    return projection


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=COOKIE_NAME, httponly=True, samesite="lax", secure=COOKIE_SECURE)


async def get_current_user(token: Optional[str] = Cookie(None)) -> Dict[str, str]:
    return verify_session_token(token)


async def get_optional_user(token: Optional[str] = Cookie(None)) -> Optional[Dict[str, str]]:
    if not token:
        return None
    try:
        return verify_session_token(token)
    except Unauthorized:
        logger.info("Discarding invalid session cookie")
        return None


# Admin guard
def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise Forbidden("Admins only")
    return user
