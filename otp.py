"""
Password recovery with one-time passcodes

A challenge is a bcrypt hash of a random 6-digit code plus an absolute expiry,
stored on the user document. The plain code only ever leaves by email.
Verifying does not consume the challenge; completing the reset does.
"""
import logging
import os
import secrets
from datetime import timedelta
from typing import Callable

import mailer
from database import as_utc, utcnow
from errors import ChallengeExpired, CodeMismatch, NoChallenge, NotFound, UnsupportedMethod
from security import check_password_policy, get_password_hash, pwd_context

logger = logging.getLogger(__name__)

OTP_EXPIRE_MINUTES = int(os.getenv("OTP_EXPIRE_MINUTES", "10"))

_CLEAR_CHALLENGE = {"otp_hash": "", "otp_expires": ""}


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _find_user(db, email: str) -> dict:
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user:
        raise NotFound("No account found with this email")
    return user


def request_challenge(db, email: str, send: Callable[[str, str, int], None] = None) -> None:
    send = send or mailer.send_otp_email
    user = _find_user(db, email)
    if user.get("google_id") and not user.get("password_hash"):
        raise UnsupportedMethod("This account uses Google sign-in and has no password to reset")

    code = generate_code()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "otp_hash": pwd_context.hash(code),
            "otp_expires": utcnow() + timedelta(minutes=OTP_EXPIRE_MINUTES),
        }},
    )
    try:
        send(user["email"], code, OTP_EXPIRE_MINUTES)
    except Exception:
        db["user"].update_one({"_id": user["_id"]}, {"$unset": _CLEAR_CHALLENGE})
        raise
    logger.info("Password reset code issued for user %s", user["_id"])


def verify_challenge(db, email: str, code: str) -> dict:
    """Check `code` against the pending challenge and return the user document."""
    user = _find_user(db, email)
    otp_hash = user.get("otp_hash")
    expires = user.get("otp_expires")
    if not otp_hash or not expires:
        raise NoChallenge()
    if utcnow() > as_utc(expires):
        db["user"].update_one({"_id": user["_id"]}, {"$unset": _CLEAR_CHALLENGE})
        logger.info("Expired reset code cleared for user %s", user["_id"])
        raise ChallengeExpired()
    if not pwd_context.verify(str(code).strip(), otp_hash):
        raise CodeMismatch()
    return user


def complete_reset(db, email: str, code: str, new_password: str) -> dict:
    check_password_policy(new_password)
    user = verify_challenge(db, email, code)
    password_hash = get_password_hash(new_password)
    now = utcnow()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": password_hash, "updated_at": now}, "$unset": _CLEAR_CHALLENGE},
    )
    for field in _CLEAR_CHALLENGE:
        user.pop(field, None)
    user["password_hash"] = password_hash
    user["updated_at"] = now
    logger.info("Password reset completed for user %s", user["_id"])
    return user
