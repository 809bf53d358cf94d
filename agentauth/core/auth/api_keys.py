"""
API Key Lookup
==============

Format rules for ``agentui_`` API keys and the lookup capability the
coordinator consults once a key is well-formed.

A lookup is any callable ``(api_key, permissions) -> bool | UserInfo | None``.
Returning a UserInfo accepts the key and names the principal; True accepts it
for a principal derived from the key; False or None rejects it.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string
import threading
from typing import Iterable, Optional, Protocol, Union, runtime_checkable

from agentauth.core.auth.models import UserInfo
from agentauth.security import constants as c


LookupResult = Union[bool, UserInfo, None]

_KEY_ALPHABET = string.ascii_lowercase + string.digits


@runtime_checkable
class APIKeyLookup(Protocol):
    def __call__(self, api_key: str, permissions: frozenset[str]) -> LookupResult:
        ...


def is_api_key_well_formed(
    api_key: object,
    prefix: str = c.API_KEY_PREFIX,
    min_length: int = c.API_KEY_MIN_LENGTH,
) -> bool:
    return isinstance(api_key, str) and api_key.startswith(prefix) and len(api_key) >= min_length


def generate_api_key(prefix: str = c.API_KEY_PREFIX, length: int = c.API_KEY_RANDOM_LENGTH) -> str:
    """Generate ``prefix`` followed by ``length`` random ``[a-z0-9]`` characters."""
    return prefix + "".join(secrets.choice(_KEY_ALPHABET) for _ in range(length))


def api_key_fingerprint(api_key: str) -> str:
    """Stable, non-reversible identifier for a key (first 16 hex chars of SHA-256)."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


class FormatOnlyAPIKeyLookup:
    """
    Accepts every key that reaches it.

    The coordinator checks the format before calling a lookup, so this is
    only suitable for development.
    """

    def __call__(self, api_key: str, permissions: frozenset[str]) -> LookupResult:
        return True


class StaticAPIKeyLookup:
    """
    Thread-safe in-memory registry of issued keys.

    Keys are held by their SHA-256 digest, never in clear.

    Usage:
        lookup = StaticAPIKeyLookup()
        key = lookup.issue(UserInfo("svc-1", permissions={"basic", "chat"}))
        lookup(key, frozenset())   # -> UserInfo("svc-1", ...)
        lookup.revoke(key)
    """

    __slots__ = ("_keys", "_lock")

    def __init__(self) -> None:
        self._keys: dict[str, Optional[UserInfo]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _digest(api_key: str) -> str:
        return hashlib.sha256(api_key.encode("utf-8")).hexdigest()

    def register(self, api_key: str, user: Optional[UserInfo] = None) -> None:
        if not is_api_key_well_formed(api_key):
            raise ValueError("API key is not well-formed")
        with self._lock:
            self._keys[self._digest(api_key)] = user

    def issue(self, user: Optional[UserInfo] = None) -> str:
        api_key = generate_api_key()
        self.register(api_key, user)
        return api_key

    def revoke(self, api_key: str) -> bool:
        with self._lock:
            return self._keys.pop(self._digest(api_key), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __call__(self, api_key: str, permissions: frozenset[str]) -> LookupResult:
        digest = self._digest(api_key)
        with self._lock:
            for known, user in self._keys.items():
                if hmac.compare_digest(known, digest):
                    return user if user is not None else True
        return False


def default_permissions(requested: Iterable[str]) -> frozenset[str]:
    """Requested permissions, or the basic set when none were requested."""
    perms = frozenset(requested)
    return perms or c.DEFAULT_PERMISSIONS
