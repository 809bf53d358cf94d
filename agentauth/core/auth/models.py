"""
Authentication Data Model
=========================

Immutable records shared by the session store, the token issuer and the
coordinator. Nothing handed out of the core can be used to mutate its state:
collections are frozensets or tuples and metadata is a read-only mapping.
"""

from __future__ import annotations

import math
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import total_ordering
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from agentauth.core.auth.errors import AuthError, AuthMethodRequiredError, MalformedRequestError


_CORRELATION_ALPHABET = string.ascii_lowercase + string.digits


def generate_correlation_id() -> str:
    """Generate a correlation id of the form ``auth_<epoch-ms>_<9 chars>``."""
    suffix = "".join(secrets.choice(_CORRELATION_ALPHABET) for _ in range(9))
    return f"auth_{int(time.time() * 1000)}_{suffix}"


def _frozen_strings(values: Optional[Iterable[str]]) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        return frozenset({values})
    return frozenset(str(v) for v in values)


def _as_tuple(value: Any, field_name: str = "value") -> tuple[str, ...]:
    """
    Normalize a permission or scope list.

    A string is split on commas and whitespace; any other iterable must hold
    strings only.

    Raises:
        MalformedRequestError: If ``value`` is not a string or an iterable of strings
    """
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(v for v in value.replace(",", " ").split() if v)
    if isinstance(value, (Mapping, bytes)):
        raise MalformedRequestError(f"{field_name} must be a list of strings", details={"field": field_name})
    try:
        items = tuple(value)
    except TypeError as e:
        raise MalformedRequestError(
            f"{field_name} must be a list of strings", details={"field": field_name}
        ) from e
    if not all(isinstance(v, str) for v in items):
        raise MalformedRequestError(f"{field_name} must be a list of strings", details={"field": field_name})
    return items


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _pick_text(data: Mapping[str, Any], *keys: str, default: Optional[str] = "") -> Optional[str]:
    value = _pick(data, *keys, default=default)
    if value is not None and not isinstance(value, str):
        raise MalformedRequestError(f"{keys[0]} must be a string", details={"field": keys[0]})
    return value


def _pick_timeout(data: Mapping[str, Any]) -> Optional[float]:
    value = _pick(data, "timeout", "timeoutSeconds", "timeout_seconds")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRequestError("timeout must be a positive number of seconds", details={"field": "timeout"})
    if not math.isfinite(value) or value <= 0:
        raise MalformedRequestError("timeout must be a positive number of seconds", details={"field": "timeout"})
    return float(value)


@total_ordering
class SecurityLevel(Enum):
    """Coarse trust ranking: basic < standard < high < enterprise."""
    BASIC = "basic"
    STANDARD = "standard"
    HIGH = "high"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _SECURITY_RANKS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SecurityLevel):
            return NotImplemented
        return self.rank < other.rank


_SECURITY_RANKS = {
    SecurityLevel.BASIC: 0,
    SecurityLevel.STANDARD: 1,
    SecurityLevel.HIGH: 2,
    SecurityLevel.ENTERPRISE: 3,
}


class AuthMethod(str, Enum):
    """Authentication tiers, in triple-chain order."""
    API_KEY = "api-key"
    JWT = "jwt"
    OAUTH2 = "oauth2"

    @classmethod
    def parse(cls, value: object) -> AuthMethod:
        """Accept ``api-key``, ``api_key``, ``JWT`` and the like."""
        if isinstance(value, AuthMethod):
            return value
        if not isinstance(value, str) or not value:
            raise AuthMethodRequiredError("Authentication method is required")
        normalized = value.strip().lower().replace("_", "-")
        for method in cls:
            if method.value == normalized:
                return method
        raise AuthMethodRequiredError(f"Unsupported authentication method: {value}")


TIER_SECURITY_LEVELS: Mapping[AuthMethod, SecurityLevel] = MappingProxyType({
    AuthMethod.API_KEY: SecurityLevel.STANDARD,
    AuthMethod.JWT: SecurityLevel.HIGH,
    AuthMethod.OAUTH2: SecurityLevel.ENTERPRISE,
})


@dataclass(frozen=True, slots=True)
class UserInfo:
    """An authenticated principal. Immutable once attached to a session."""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    permissions: frozenset[str] = frozenset()
    roles: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("UserInfo.id cannot be empty")
        object.__setattr__(self, "permissions", _frozen_strings(self.permissions))
        object.__setattr__(self, "roles", _frozen_strings(self.roles))

    def with_permissions(self, permissions: Iterable[str]) -> UserInfo:
        return UserInfo(self.id, self.email, self.name, _frozen_strings(permissions), self.roles)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "permissions": sorted(self.permissions),
            "roles": sorted(self.roles),
        }


@dataclass(frozen=True, slots=True)
class Session:
    """
    One live session record.

    Only ``last_accessed_at`` ever changes, and only by the store replacing
    the record; any other change is a new session with a new id.
    """
    id: str
    user_id: str
    user: UserInfo
    created_at: datetime
    expires_at: datetime
    last_accessed_at: datetime
    permissions: frozenset[str] = frozenset()
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValueError("Session expires_at must be after created_at")
        object.__setattr__(self, "permissions", _frozen_strings(self.permissions))
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def __repr__(self) -> str:
        return (
            f"Session(id={self.id[:16]!r}..., user_id={self.user_id!r}, "
            f"expires_at={self.expires_at.isoformat()})"
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class APIKeyConfig:
    api_key: str
    permissions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", _as_tuple(self.permissions, "permissions"))

    @property
    def method(self) -> AuthMethod:
        return AuthMethod.API_KEY


@dataclass(frozen=True, slots=True)
class JWTConfig:
    token: str
    secret: Optional[str] = field(default=None, repr=False)

    @property
    def method(self) -> AuthMethod:
        return AuthMethod.JWT


@dataclass(frozen=True, slots=True)
class OAuth2Config:
    client_id: str
    client_secret: str = field(repr=False, default="")
    redirect_uri: str = ""
    provider: str = ""
    scope: tuple[str, ...] = ()
    state: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "scope", _as_tuple(self.scope, "scope"))

    @property
    def method(self) -> AuthMethod:
        return AuthMethod.OAUTH2


TierConfig = Union[APIKeyConfig, JWTConfig, OAuth2Config]


@dataclass(frozen=True, slots=True)
class AuthRequest:
    """
    A single-tier authentication request; the tier follows the config type.

    ``timeout`` bounds the injected lookup for this call in seconds and
    falls back to the coordinator's configured lookup timeout.
    """
    config: TierConfig
    correlation_id: Optional[str] = None
    timeout: Optional[float] = None

    @property
    def method(self) -> AuthMethod:
        return self.config.method

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuthRequest:
        """
        Build a request from the loose wire shape.

        Accepts camelCase or snake_case keys, either at the top level or
        nested under ``config``/``credentials``.

        Raises:
            AuthMethodRequiredError: If the method is missing or unknown
            MalformedRequestError: If a field has the wrong type
        """
        if not isinstance(data, Mapping):
            raise AuthMethodRequiredError("Authentication request must be a mapping")

        method = AuthMethod.parse(data.get("method"))
        merged: dict[str, Any] = {}
        for nested in ("credentials", "config"):
            if isinstance(data.get(nested), Mapping):
                merged.update(data[nested])
        merged.update({k: v for k, v in data.items() if k not in ("config", "credentials")})

        if method is AuthMethod.API_KEY:
            config: TierConfig = APIKeyConfig(
                api_key=_pick_text(merged, "apiKey", "api_key"),
                permissions=_as_tuple(_pick(merged, "permissions"), "permissions"),
            )
        elif method is AuthMethod.JWT:
            config = JWTConfig(
                token=_pick_text(merged, "token", "jwtToken", "jwt_token"),
                secret=_pick_text(merged, "secret", default=None),
            )
        else:
            config = OAuth2Config(
                client_id=_pick_text(merged, "clientId", "client_id"),
                client_secret=_pick_text(merged, "clientSecret", "client_secret"),
                redirect_uri=_pick_text(merged, "redirectUri", "redirect_uri"),
                provider=_pick_text(merged, "provider"),
                scope=_as_tuple(_pick(merged, "scope", "scopes"), "scope"),
                state=_pick_text(merged, "state", default=None),
            )
        return cls(
            config=config,
            correlation_id=_pick_text(merged, "correlationId", "correlation_id", default=None),
            timeout=_pick_timeout(merged),
        )


@dataclass(frozen=True, slots=True)
class AuthStep:
    """Append-only record of one tier attempt."""
    step: int
    method: AuthMethod
    duration_ms: float
    success: bool
    permissions: frozenset[str] = frozenset()
    security_level: SecurityLevel = SecurityLevel.BASIC
    correlation_id: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "method": self.method.value,
            "duration": round(self.duration_ms, 3),
            "success": self.success,
            "permissions": sorted(self.permissions),
            "securityLevel": self.security_level.value,
            "correlationId": self.correlation_id,
            "errorCode": self.error_code,
        }


@dataclass(frozen=True, slots=True)
class AuthResult:
    """Uniform outcome of every public coordinator operation."""
    success: bool
    correlation_id: str
    session_id: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    permissions: frozenset[str] = frozenset()
    user: Optional[UserInfo] = None
    steps: tuple[AuthStep, ...] = ()
    total_duration_ms: float = 0.0
    security_level: SecurityLevel = SecurityLevel.BASIC
    error: Optional[AuthError] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "sessionId": self.session_id,
            "token": self.token,
            "expiresAt": int(self.expires_at.timestamp() * 1000) if self.expires_at else None,
            "permissions": sorted(self.permissions),
            "user": self.user.to_dict() if self.user else None,
            "authSteps": [s.to_dict() for s in self.steps],
            "totalDuration": round(self.total_duration_ms, 3),
            "securityLevel": self.security_level.value,
            "correlationId": self.correlation_id,
            "error": self.error.to_dict() if self.error else None,
        }
