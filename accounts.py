"""
User accounts

Registration, password and Google login, profile edits and the admin-side
user operations. Functions return raw user documents; callers turn them into
a session with security.set_session_cookie or into JSON with public_user.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from database import create_document, serialize_doc, to_object_id, utcnow
from errors import Conflict, NotFound, ValidationFailed
from schemas import User as UserSchema
from security import check_password_policy, get_password_hash, verify_password

logger = logging.getLogger(__name__)

SECRET_FIELDS = ("password_hash", "otp_hash", "otp_expires")
PROFILE_FIELDS = ("name", "phone", "address", "city", "country")
ROLES = ("user", "admin")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_doc({k: v for k, v in user.items() if k not in SECRET_FIELDS})


def _build_user(**fields) -> dict:
    try:
        return UserSchema(**fields).model_dump()
    except ValidationError as e:
        first = e.errors()[0]
        raise ValidationFailed(first.get("msg", "Invalid user data"))


def _insert_user(db, doc: dict) -> dict:
    try:
        user_id = create_document(db, "user", doc)
    except DuplicateKeyError:
        raise Conflict("User already exists with this email")
    return db["user"].find_one({"_id": to_object_id(user_id)})


def get_user(db, user_id) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id, "User")})
    if not user:
        raise NotFound("User not found")
    return user


def register_user(db, name: str, email: str, password: str, **profile) -> dict:
    email = email.strip().lower()
    if db["user"].find_one({"email": email}):
        raise Conflict("User already exists with this email")
    check_password_policy(password)
    profile = {k: v for k, v in profile.items() if k in PROFILE_FIELDS and v is not None}
    doc = _build_user(name=name, email=email, password_hash=get_password_hash(password), **profile)
    user = _insert_user(db, doc)
    logger.info("Registered user %s", user["_id"])
    return user


def authenticate(db, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash")):
        logger.info("Failed login attempt")
        raise ValidationFailed("Invalid email or password")
    return user


def federated_login(db, claims: Dict[str, str]) -> dict:
    """Find or create the user behind verified Google claims.

    An email already registered with a password is not silently linked to a
    Google identity; that user has to log in with their password.
    """
    user = db["user"].find_one({"google_id": claims["subject_id"]})
    if user:
        return user

    email = claims["email"].strip().lower()
    existing = db["user"].find_one({"email": email})
    if existing:
        raise Conflict("An account with this email already exists. Log in with your password instead.")

    doc = _build_user(name=claims["name"], email=email, google_id=claims["subject_id"])
    user = _insert_user(db, doc)
    logger.info("Registered user %s through Google", user["_id"])
    return user


def update_profile(db, user_id, changes: Dict[str, Optional[str]]) -> dict:
    user = get_user(db, user_id)
    update = {k: v.strip() for k, v in changes.items() if k in PROFILE_FIELDS and v is not None}
    if "name" in update and not update["name"]:
        raise ValidationFailed("Name cannot be empty")
    update["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    user.update(update)
    return user


# ------------------ Admin ------------------

def list_users(db) -> List[dict]:
    return [public_user(u) for u in db["user"].find({}).sort("created_at", -1)]


def delete_user(db, acting_user_id: str, target_id: str) -> None:
    user = get_user(db, target_id)
    if str(user["_id"]) == str(acting_user_id):
        raise ValidationFailed("You cannot delete your own account")
    db["user"].delete_one({"_id": user["_id"]})
    db["cart"].delete_one({"user_id": str(user["_id"])})
    db["wishlist"].delete_one({"user_id": str(user["_id"])})
    logger.info("Admin %s deleted user %s", acting_user_id, user["_id"])


def set_role(db, acting_user_id: str, target_id: str, role: str) -> dict:
    if role not in ROLES:
        raise ValidationFailed("Role must be 'user' or 'admin'")
    user = get_user(db, target_id)
    now = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": role, "updated_at": now}})
    user["role"] = role
    user["updated_at"] = now
    logger.info("Admin %s set role of user %s to %s", acting_user_id, user["_id"], role)
    return user
