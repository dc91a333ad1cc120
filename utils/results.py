"""Typed outcomes for every recoverable failure in the engine.

Domain failures never raise: an operation hands back a ``Result`` whose
``failure`` says what went wrong and whose ``message`` is fit for display.
Anything else (a dead database, a bug) propagates as an ordinary exception.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Category(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    TIME_BOXED = "time_boxed"
    POLICY = "policy"
    NOT_FOUND = "not_found"


class Failure(str, Enum):
    VALIDATION = "validation"
    DUPLICATE_EMAIL = "duplicate_email"
    INVALID_CREDENTIALS = "invalid_credentials"
    CODE_MISMATCH = "code_mismatch"
    NOT_VERIFIED = "not_verified"
    ACCOUNT_DISABLED = "account_disabled"
    RATE_LIMITED = "rate_limited"
    ACCOUNT_LOCKED = "account_locked"
    OTP_EXPIRED = "otp_expired"
    OTP_ATTEMPTS_EXCEEDED = "otp_attempts_exceeded"
    POLICY_BLOCKED = "policy_blocked"
    NOT_FOUND = "not_found"
    NO_PENDING_CHALLENGE = "no_pending_challenge"

    @property
    def category(self) -> Category:
        return _CATEGORIES[self]


_CATEGORIES = {
    Failure.VALIDATION: Category.VALIDATION,
    Failure.DUPLICATE_EMAIL: Category.VALIDATION,
    Failure.INVALID_CREDENTIALS: Category.AUTHENTICATION,
    Failure.CODE_MISMATCH: Category.AUTHENTICATION,
    Failure.NOT_VERIFIED: Category.AUTHENTICATION,
    Failure.ACCOUNT_DISABLED: Category.AUTHENTICATION,
    Failure.RATE_LIMITED: Category.TIME_BOXED,
    Failure.ACCOUNT_LOCKED: Category.TIME_BOXED,
    Failure.OTP_EXPIRED: Category.TIME_BOXED,
    Failure.OTP_ATTEMPTS_EXCEEDED: Category.TIME_BOXED,
    Failure.POLICY_BLOCKED: Category.POLICY,
    Failure.NOT_FOUND: Category.NOT_FOUND,
    Failure.NO_PENDING_CHALLENGE: Category.NOT_FOUND,
}


@dataclass(frozen=True)
class Result:
    ok: bool
    failure: Failure | None = None
    message: str = ""
    value: Any = None

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> "Result":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def fail(cls, failure: Failure, message: str, value: Any = None) -> "Result":
        return cls(ok=False, failure=failure, message=message, value=value)

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> dict:
        body = {"ok": self.ok, "message": self.message}
        if self.failure is not None:
            body["error"] = self.failure.value
            body["category"] = self.failure.category.value
        return body
