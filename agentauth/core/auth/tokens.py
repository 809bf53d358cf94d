"""
Bearer Token Handling
=====================

Signs and verifies compact, expiring HS256 tokens (JWT).

- ``iat`` and ``exp`` are always set by the issuer from its clock and cannot
  be overridden by caller claims
- Expiry is checked against the injected clock, not the wall clock, so tests
  and callers with a shared clock see one consistent notion of "now"
- Every malformed input becomes InvalidTokenError; nothing from PyJWT or the
  base64/JSON layers escapes
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Final, Mapping, Optional, Union

import jwt
from jwt.exceptions import PyJWTError

from agentauth.core.auth.errors import ExpiredTokenError, InvalidTokenError
from agentauth.security import constants as c


log = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_RESERVED_CLAIMS: Final[frozenset[str]] = frozenset({"iat", "exp"})
_MAX_TOKEN_LENGTH: Final[int] = 8192


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_seconds(ttl: Union[int, float, timedelta]) -> int:
    if isinstance(ttl, timedelta):
        return int(ttl.total_seconds())
    return int(ttl)


class TokenIssuer:
    """
    HMAC token signer/verifier.

    Usage:
        issuer = TokenIssuer(secret, ttl_seconds=900)
        token = issuer.sign({"userId": "u1", "sessionId": sid})
        claims = issuer.verify(token)

    Stateless apart from configuration; safe to share between threads.
    """

    __slots__ = ("_secret", "_ttl_seconds", "_algorithm", "_clock")

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = c.TOKEN_TTL_SECONDS,
        algorithm: str = c.TOKEN_ALGORITHM,
        clock: Optional[Clock] = None,
    ) -> None:
        if not secret:
            raise ValueError("Token secret cannot be empty")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if not algorithm.startswith("HS"):
            raise ValueError("Only HMAC algorithms are supported")
        self._secret = secret
        self._ttl_seconds = ttl_seconds
        self._algorithm = algorithm
        self._clock = clock or utc_now

    @classmethod
    def from_config(cls, config, clock: Optional[Clock] = None) -> TokenIssuer:
        """Build from an ``agentauth.core.config.TokenConfig``."""
        return cls(config.secret, config.ttl_seconds, config.algorithm, clock=clock)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def __repr__(self) -> str:
        return f"TokenIssuer(algorithm={self._algorithm!r}, ttl_seconds={self._ttl_seconds})"

    def sign(
        self,
        claims: Mapping[str, Any],
        secret: Optional[str] = None,
        ttl: Optional[Union[int, float, timedelta]] = None,
    ) -> str:
        """
        Create a signed token.

        Args:
            claims: Caller claims (typically userId, permissions, sessionId)
            secret: Signing secret, defaults to the issuer's
            ttl: Lifetime in seconds or as a timedelta, defaults to the issuer's

        Returns:
            Three-segment base64url token
        """
        ttl_seconds = self._ttl_seconds if ttl is None else _to_seconds(ttl)
        if ttl_seconds <= 0:
            raise ValueError("ttl must be positive")

        issued_at = int(self._clock().timestamp())
        payload = {k: v for k, v in claims.items() if k not in _RESERVED_CLAIMS}
        payload["iat"] = issued_at
        payload["exp"] = issued_at + ttl_seconds

        return jwt.encode(payload, secret or self._secret, algorithm=self._algorithm)

    def verify(self, token: str, secret: Optional[str] = None) -> dict[str, Any]:
        """
        Verify a token and return its claims.

        Raises:
            InvalidTokenError: If the token is malformed or the signature fails
            ExpiredTokenError: If ``exp`` is at or before the issuer's clock
        """
        if not isinstance(token, str) or not token or len(token) > _MAX_TOKEN_LENGTH:
            raise InvalidTokenError("Token is missing or malformed")

        segments = token.split(".")
        if len(segments) != 3 or not all(segments):
            raise InvalidTokenError("Token must have exactly three segments")

        try:
            claims = jwt.decode(
                token,
                secret or self._secret,
                algorithms=[self._algorithm],
                options={
                    "require": ["exp", "iat"],
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except PyJWTError as e:
            log.debug("Token rejected: %s", type(e).__name__)
            raise InvalidTokenError("Invalid token") from e
        except (ValueError, TypeError, UnicodeDecodeError) as e:
            log.debug("Token rejected while decoding: %s", type(e).__name__)
            raise InvalidTokenError("Invalid token") from e

        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidTokenError("Token expiry claim is not numeric")

        if self._clock().timestamp() >= exp:
            raise ExpiredTokenError("Token has expired", details={"exp": exp})

        return claims
