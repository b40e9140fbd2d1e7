"""
Typed results and errors returned by the MFA coordinators.

Coordinators never raise for expected failures; they return a Result whose
error is one of MFAError. Public messages are fixed strings so that no secret
material or account state leaks to the caller.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class MFAError(str, Enum):
    """Error taxonomy for MFA operations."""
    VALIDATION_ERROR = "validation_error"
    NOT_CONFIGURED = "not_configured"
    ALREADY_ENABLED = "already_enabled"
    NOT_ENABLED = "not_enabled"
    INCORRECT_CODE = "incorrect_code"
    CHALLENGE_EXPIRED = "challenge_expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    UNAUTHORIZED = "unauthorized"
    RACE_CONDITION_CONFLICT = "race_condition_conflict"
    SESSION_FAILED = "session_failed"


ERROR_MESSAGES = {
    MFAError.VALIDATION_ERROR: "Code format is invalid",
    MFAError.NOT_CONFIGURED: "Two-factor authentication is not configured",
    MFAError.ALREADY_ENABLED: "Two-factor authentication is already enabled",
    MFAError.NOT_ENABLED: "Two-factor authentication is not enabled",
    MFAError.INCORRECT_CODE: "Invalid verification code",
    MFAError.CHALLENGE_EXPIRED: "Verification expired. Please sign in again.",
    MFAError.TOO_MANY_ATTEMPTS: "Too many attempts. Please sign in again.",
    MFAError.UNAUTHORIZED: "Password is incorrect",
    MFAError.RACE_CONDITION_CONFLICT: "Request conflicted with another request. Please retry.",
    MFAError.SESSION_FAILED: "Could not start a session. Please retry.",
}


@dataclass(frozen=True)
class Result(Generic[T]):
    """Discriminated success/error result."""
    ok: bool
    value: Optional[T] = None
    error: Optional[MFAError] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: MFAError) -> "Result":
        return cls(ok=False, error=error)

    @property
    def message(self) -> str:
        if self.ok or self.error is None:
            return "ok"
        return ERROR_MESSAGES[self.error]


class MFAException(Exception):
    """Base class for internal MFA exceptions."""


class DecryptionFailed(MFAException):
    """Stored seed ciphertext is malformed, tampered or under an unknown key."""


class RaceConditionConflict(MFAException):
    """A conditional write lost its race and the single retry lost as well."""
