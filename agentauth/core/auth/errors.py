"""
Authentication Errors
=====================

Error codes, the exception hierarchy raised inside the core, and the
structured ``AuthError`` value returned across its public boundary.

Components raise subclasses of ``AuthCoreError``; the coordinator catches
them and re-expresses them as ``AuthError`` so callers never see raw
library exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class ErrorCode(str, Enum):
    """Stable error codes. The controller layer maps these to statuses."""
    AUTH_METHOD_REQUIRED = "AuthMethodRequired"
    INVALID_API_KEY_FORMAT = "InvalidAPIKeyFormat"
    INVALID_API_KEY = "InvalidAPIKey"
    INVALID_OR_EXPIRED_TOKEN = "InvalidOrExpiredToken"
    INVALID_OAUTH2_CREDENTIALS = "InvalidOAuth2Credentials"
    MISSING_OAUTH2_CONFIG = "MissingOAuth2Config"
    SESSION_NOT_FOUND = "SessionNotFound"
    SESSION_REFRESH_FAILED = "SessionRefreshFailed"
    SESSION_DESTROY_FAILED = "SessionDestroyFailed"
    HASHING_FAILED = "HashingFailed"
    INTERNAL_ERROR = "InternalError"
    # Collaborator and password-flow codes
    EXTERNAL_TIMEOUT = "ExternalTimeout"
    INVALID_CREDENTIALS = "InvalidCredentials"
    WEAK_PASSWORD = "WeakPassword"
    USER_EXISTS = "UserExists"
    PERMISSION_DENIED = "PermissionDenied"


class AuthCoreError(Exception):
    """Base exception for every failure raised inside the core."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        recoverable: Optional[bool] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        self.details = dict(details or {})


class AuthMethodRequiredError(AuthCoreError):
    """Raised when a request names no method or an unsupported one."""
    code = ErrorCode.AUTH_METHOD_REQUIRED


class MalformedRequestError(AuthMethodRequiredError):
    """Raised when a request field has the wrong type or shape."""


class InvalidAPIKeyFormatError(AuthCoreError):
    code = ErrorCode.INVALID_API_KEY_FORMAT


class InvalidAPIKeyError(AuthCoreError):
    code = ErrorCode.INVALID_API_KEY


class MissingOAuth2ConfigError(AuthCoreError):
    code = ErrorCode.MISSING_OAUTH2_CONFIG


class InvalidOAuth2CredentialsError(AuthCoreError):
    code = ErrorCode.INVALID_OAUTH2_CREDENTIALS


class ExternalTimeoutError(AuthCoreError):
    """An injected lookup did not answer within its timeout."""
    code = ErrorCode.EXTERNAL_TIMEOUT
    recoverable = True


class TokenError(AuthCoreError):
    """Base exception for token failures."""
    code = ErrorCode.INVALID_OR_EXPIRED_TOKEN


class InvalidTokenError(TokenError):
    """Raised when a token is malformed or its signature does not match."""
    pass


class ExpiredTokenError(TokenError):
    """Raised when a token's exp claim has passed."""
    pass


class SessionError(AuthCoreError):
    """Base exception for session errors."""
    code = ErrorCode.SESSION_NOT_FOUND


class SessionNotFoundError(SessionError):
    """Raised when a session id is unknown or expired."""
    pass


class HashingError(AuthCoreError):
    """Raised when hashing fails (bad parameters or library fault)."""
    code = ErrorCode.HASHING_FAILED


class EmptyPasswordError(HashingError):
    pass


class InvalidHashParamsError(HashingError):
    pass


class HashingTimeoutError(HashingError):
    recoverable = True


class InvalidCredentialsError(AuthCoreError):
    code = ErrorCode.INVALID_CREDENTIALS


class WeakPasswordError(AuthCoreError):
    code = ErrorCode.WEAK_PASSWORD


class UserExistsError(AuthCoreError):
    code = ErrorCode.USER_EXISTS


class PermissionDeniedError(AuthCoreError):
    code = ErrorCode.PERMISSION_DENIED


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class AuthError:
    """
    Structured error carried by a failed AuthResult.

    Attributes:
        code: Stable error code
        message: Human-readable message, never raw library text
        timestamp: ISO-8601 UTC timestamp
        correlation_id: Correlation id of the request
        recoverable: True when retrying later may succeed
        details: Extra, non-sensitive context
    """
    code: ErrorCode
    message: str
    timestamp: str = field(default_factory=_utc_timestamp)
    correlation_id: Optional[str] = None
    recoverable: bool = False
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def create(
        cls,
        code: ErrorCode,
        message: str,
        correlation_id: Optional[str] = None,
        recoverable: bool = False,
        details: Optional[Mapping[str, Any]] = None,
    ) -> AuthError:
        return cls(
            code=code,
            message=message,
            correlation_id=correlation_id,
            recoverable=recoverable,
            details=MappingProxyType(dict(details or {})),
        )

    @classmethod
    def from_exception(cls, exc: AuthCoreError, correlation_id: Optional[str] = None) -> AuthError:
        """Convert a core exception into its structured form."""
        return cls.create(
            exc.code,
            exc.message,
            correlation_id=correlation_id,
            recoverable=exc.recoverable,
            details=exc.details,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "correlationId": self.correlation_id,
            "recoverable": self.recoverable,
            "details": dict(self.details),
        }
