"""Typed failures returned by the identity services.

Services return a ``ServiceError`` instead of raising for anything the client
can act on; routers turn it into an HTTP response with ``status_for``.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PHONE_FORMAT = "INVALID_PHONE_FORMAT"
    INVALID_EMAIL_FORMAT = "INVALID_EMAIL_FORMAT"
    DISPOSABLE_EMAIL_REJECTED = "DISPOSABLE_EMAIL_REJECTED"
    PASSWORD_MISMATCH = "PASSWORD_MISMATCH"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    PASSWORD_ALREADY_USED = "PASSWORD_ALREADY_USED"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    TOO_MANY_OTP_REQUESTS = "TOO_MANY_OTP_REQUESTS"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    OTP_NOT_FOUND = "OTP_NOT_FOUND"
    OTP_MISMATCH = "OTP_MISMATCH"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_NOT_VERIFIED = "ACCOUNT_NOT_VERIFIED"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"


_STATUS_BY_CODE = {
    ErrorCode.CONFLICT: 409,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.TOO_MANY_OTP_REQUESTS: 429,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.ACCOUNT_NOT_VERIFIED: 403,
    ErrorCode.ACCOUNT_SUSPENDED: 403,
    ErrorCode.ACCOUNT_NOT_FOUND: 404,
    ErrorCode.DELIVERY_FAILED: 502,
    ErrorCode.REGISTRATION_FAILED: 500,
}


@dataclass(frozen=True)
class ServiceError:
    code: ErrorCode
    message: str
    field: Optional[str] = None
    retry_after: Optional[int] = None
    details: dict[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return status_for(self.code)

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.field is not None:
            detail["field"] = self.field
        if self.retry_after is not None:
            detail["retry_after"] = self.retry_after
        detail.update(self.details)
        return detail


def status_for(code: ErrorCode) -> int:
    return _STATUS_BY_CODE.get(code, 400)


def is_error(result: Any) -> bool:
    return isinstance(result, ServiceError)
