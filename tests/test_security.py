from datetime import timedelta

import pytest
from bson import ObjectId
from jose import jwt

from errors import Unauthorized, ValidationFailed
from security import (
    check_password_policy,
    get_password_hash,
    identity_projection,
    issue_session_token,
    verify_password,
    verify_session_token,
)


def _user():
    return {
        "_id": ObjectId(),
        "name": "Alice",
        "email": "alice@example.com",
        "role": "user",
        "phone": None,
        "address": "1 Main St",
        "city": "Pune",
        "country": "India",
        "password_hash": "$2b$04$secret",
        "otp_hash": "$2b$04$otp",
        "google_id": "g-123",
    }


def test_projection_leaves_out_secrets():
    projection = identity_projection(_user())
    assert set(projection) == {"address", "city", "country", "email", "id", "name", "phone", "role"}
    assert all(isinstance(v, str) for v in projection.values())
    assert projection["phone"] == ""


def test_token_round_trips_projection():
    user = _user()
    projection = identity_projection(user)
    decoded = verify_session_token(issue_session_token(projection))
    assert decoded == projection
    assert decoded["id"] == str(user["_id"])
    assert "exp" not in decoded and "iat" not in decoded


def test_expired_and_tampered_tokens_fail_the_same_way():
    projection = identity_projection(_user())
    expired = issue_session_token(projection, expires_delta=timedelta(seconds=-10))
    forged_claims = dict(projection, role="admin")
    tampered = jwt.encode(forged_claims, "some-other-key", algorithm="HS256")

    errors = []
    for bad in (expired, tampered, "not-a-token", None):
        with pytest.raises(Unauthorized) as exc:
            verify_session_token(bad)
        errors.append((exc.value.status_code, exc.value.detail))
    assert len(set(errors)) == 1
    assert errors[0][0] == 401


def test_password_hash_and_verify():
    hashed = get_password_hash("Secret@123")
    assert hashed != "Secret@123"
    assert verify_password("Secret@123", hashed)
    assert not verify_password("Wrong@123", hashed)
    assert not verify_password("Secret@123", None)


@pytest.mark.parametrize("password", ["Ab@1", "secret@123", "SECRET@123", "Secret@abc", "Secret1234"])
def test_password_policy_rejects_weak_passwords(password):
    with pytest.raises(ValidationFailed):
        check_password_policy(password)


def test_password_policy_accepts_strong_password():
    check_password_policy("Secret@123")
