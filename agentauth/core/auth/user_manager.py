"""
User Management
===============

Password-based signup and login on top of PasswordHasher.

Security Features:
- Argon2id hashing, run on a bounded HashingPool
- Strength policy enforced at registration and password change
- Unknown emails still pay for a hash verification (no user enumeration by timing)
- Opportunistic rehash when stored hashes use outdated cost parameters

Storage is an injected UserRecordStore; InMemoryUserStore is provided for
development and tests.
"""

from __future__ import annotations

import logging
import secrets
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Protocol, runtime_checkable

from agentauth.core.auth.argon2_auth import HashingPool, PasswordHasher
from agentauth.core.auth.errors import (
    InvalidCredentialsError,
    UserExistsError,
    WeakPasswordError,
)
from agentauth.core.auth.models import UserInfo
from agentauth.core.config import AuthCoreConfig, PasswordConfig
from agentauth.security import constants as c
from agentauth.utils.validators import ValidationError, validate_email, validate_string_safe


log = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50
MAX_PASSWORD_LENGTH = 128


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class UserRecord:
    """
    Stored user account.

    Note: password_hash is never exposed in repr.
    """
    id: str
    email: str
    name: str
    password_hash: str = field(repr=False)
    permissions: frozenset[str] = c.DEFAULT_PERMISSIONS
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    last_login: Optional[datetime] = None

    def to_user_info(self) -> UserInfo:
        return UserInfo(id=self.id, email=self.email, name=self.name, permissions=self.permissions)


@runtime_checkable
class UserRecordStore(Protocol):
    def get_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def add(self, record: UserRecord) -> None:
        """Raises UserExistsError when the email is taken."""
        ...

    def update(self, record: UserRecord) -> None:
        ...


class InMemoryUserStore:
    """Lock-guarded dict of UserRecords keyed by lower-cased email."""

    __slots__ = ("_records", "_lock")

    def __init__(self, records: Iterable[UserRecord] = ()) -> None:
        self._records: dict[str, UserRecord] = {}
        self._lock = threading.Lock()
        for record in records:
            self.add(record)

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        with self._lock:
            return self._records.get(email.lower())

    def add(self, record: UserRecord) -> None:
        key = record.email.lower()
        with self._lock:
            if key in self._records:
                raise UserExistsError("A user with this email already exists")
            self._records[key] = record

    def update(self, record: UserRecord) -> None:
        with self._lock:
            self._records[record.email.lower()] = record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class UserManager:
    """
    Password signup/login flow.

    Usage:
        manager = UserManager(InMemoryUserStore(), HashingPool(hasher))

        # Register a user
        user = manager.register("alice@example.com", "Str0ng!Passw0rd", "Alice")

        # Authenticate
        user = manager.authenticate("alice@example.com", "Str0ng!Passw0rd")

        # Turn the proven user into a session
        result = coordinator.establish_session(user)

    Security Notes:
        - Passwords are hashed with Argon2id through the pool
        - Wrong password and unknown email raise the same error
        - Hashes with outdated parameters are replaced after a successful login
    """

    __slots__ = ("_store", "_pool", "_clock", "_hash_timeout", "_dummy_hash", "_dummy_lock")

    def __init__(
        self,
        store: Optional[UserRecordStore] = None,
        pool: Optional[HashingPool] = None,
        clock: Optional[Callable[[], datetime]] = None,
        hash_timeout: Optional[float] = None,
        config: Optional[PasswordConfig] = None,
    ) -> None:
        self._store = store if store is not None else InMemoryUserStore()
        if pool is None:
            pool = HashingPool.from_config(config or AuthCoreConfig.get_instance().password)
        self._pool = pool
        self._clock = clock or _utc_now
        self._hash_timeout = hash_timeout
        self._dummy_hash: Optional[str] = None
        self._dummy_lock = threading.Lock()

    @property
    def hasher(self) -> PasswordHasher:
        return self._pool.hasher

    def _get_dummy_hash(self) -> str:
        with self._dummy_lock:
            if self._dummy_hash is None:
                self._dummy_hash = self._pool.hash(secrets.token_urlsafe(16), timeout=self._hash_timeout)
            return self._dummy_hash

    def _check_password_policy(self, password: str) -> None:
        """
        Raises:
            WeakPasswordError: If the password is too long or scores too low
        """
        if not isinstance(password, str) or len(password) > MAX_PASSWORD_LENGTH:
            raise WeakPasswordError(
                f"Password must be a string of at most {MAX_PASSWORD_LENGTH} characters"
            )
        strength = self.hasher.score_strength(password)
        if not strength.is_valid:
            raise WeakPasswordError(
                "Password does not meet strength requirements",
                details={"score": strength.score, "feedback": list(strength.feedback)},
            )

    def register(
        self,
        email: str,
        password: str,
        name: str,
        permissions: Optional[Iterable[str]] = None,
    ) -> UserInfo:
        """
        Create a new user account.

        Args:
            email: Unique email address (stored lower-cased)
            password: Password (will be hashed)
            name: Display name, 2 to 50 characters
            permissions: Granted permissions (default: basic)

        Returns:
            The new user's UserInfo

        Raises:
            ValidationError: If email or name is malformed
            WeakPasswordError: If the password fails the strength policy
            UserExistsError: If the email is already registered
        """
        email = validate_email(email)
        name = validate_string_safe(
            name, min_length=MIN_NAME_LENGTH, max_length=MAX_NAME_LENGTH, field_name="name"
        ).strip()
        self._check_password_policy(password)

        if self._store.get_by_email(email) is not None:
            raise UserExistsError("A user with this email already exists")

        now = self._clock()
        record = UserRecord(
            id=f"user_{uuid.uuid4().hex}",
            email=email,
            name=name,
            password_hash=self._pool.hash(password, timeout=self._hash_timeout),
            permissions=frozenset(permissions) if permissions is not None else c.DEFAULT_PERMISSIONS,
            created_at=now,
            updated_at=now,
        )
        self._store.add(record)
        log.info("Registered user %s", record.id)
        return record.to_user_info()

    def authenticate(self, email: str, password: str) -> UserInfo:
        """
        Authenticate with email and password.

        Returns:
            The authenticated user's UserInfo

        Raises:
            InvalidCredentialsError: If the email is unknown or the password is wrong
        """
        try:
            email = validate_email(email)
        except ValidationError:
            email = None

        record = self._store.get_by_email(email) if email else None
        if record is None:
            # Keep timing close to the known-user path
            self._pool.verify(password if isinstance(password, str) else "", self._get_dummy_hash(),
                              timeout=self._hash_timeout)
            raise InvalidCredentialsError("Invalid email or password")

        if not self._pool.verify(password, record.password_hash, timeout=self._hash_timeout):
            log.warning("Failed login for user %s", record.id)
            raise InvalidCredentialsError("Invalid email or password")

        now = self._clock()
        updated = replace(record, last_login=now)
        if self._pool.needs_rehash(record.password_hash):
            updated = replace(
                updated,
                password_hash=self._pool.hash(password, timeout=self._hash_timeout),
                updated_at=now,
            )
            log.info("Rehashed password for user %s with current parameters", record.id)
        self._store.update(updated)
        return updated.to_user_info()

    def change_password(self, email: str, current_password: str, new_password: str) -> None:
        """
        Replace a user's password after re-checking the current one.

        Raises:
            InvalidCredentialsError: If the current password is wrong
            WeakPasswordError: If the new password fails the strength policy
        """
        self.authenticate(email, current_password)
        self._check_password_policy(new_password)

        record = self._store.get_by_email(validate_email(email))
        if record is None:
            raise InvalidCredentialsError("Invalid email or password")
        self._store.update(replace(
            record,
            password_hash=self._pool.hash(new_password, timeout=self._hash_timeout),
            updated_at=self._clock(),
        ))
        log.info("Password changed for user %s", record.id)
