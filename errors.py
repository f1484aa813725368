"""
Error taxonomy

Every error is an HTTPException so FastAPI renders it as {"detail": ...} with
the right status code, whether it is raised in a route or in a service module.
"""
from typing import Optional

from fastapi import HTTPException, status


class StoreError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request"

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail, headers=headers)


class ValidationFailed(StoreError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input"


class NotFound(StoreError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class Unauthorized(StoreError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"


class Forbidden(StoreError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Admins only"


class Conflict(StoreError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Already exists"


class UnsupportedMethod(StoreError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Operation not supported for this account"


class UpstreamFailure(StoreError):
    """A third-party collaborator (identity provider, mail server) failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Upstream service failed"

    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(detail)
        if status_code is not None:
            self.status_code = status_code


# Password recovery
class NoChallenge(ValidationFailed):
    default_detail = "No OTP requested for this account"


class ChallengeExpired(ValidationFailed):
    default_detail = "OTP has expired, please request a new one"


class CodeMismatch(ValidationFailed):
    default_detail = "Invalid OTP"
