"""
Argon2id Password Hashing
=========================

Password hashing, verification, rehash detection and strength scoring.

Security Properties:
- Memory-hard (resistant to GPU/ASIC attacks)
- Fresh random salt per hash
- Self-describing PHC strings: $argon2id$v=19$m=...,t=...,p=...$salt$hash
- Constant-time verification (delegated to argon2-cffi)

Hashing is deliberately expensive. Request handlers should go through
HashingPool so that hashing throughput is bounded by a fixed worker count
rather than by the number of concurrent callers.

References:
- RFC 9106: Argon2 Memory-Hard Function
- OWASP Password Storage Cheat Sheet
"""

from __future__ import annotations

import ctypes
import logging
import re
import secrets
import string
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Final, Optional, TypeVar

import argon2
from argon2.exceptions import HashingError as Argon2HashingError
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from argon2.low_level import Type

from agentauth.core.auth.errors import (
    EmptyPasswordError,
    HashingError,
    HashingTimeoutError,
    InvalidHashParamsError,
)
from agentauth.security import constants as c


log = logging.getLogger(__name__)

T = TypeVar("T")

_REPEATED_RUN: Final[re.Pattern[str]] = re.compile(r"(.)\1{2,}")
_STRONG_FEEDBACK: Final[str] = "Password meets strength requirements"


@dataclass(frozen=True, slots=True)
class Argon2Config:
    """
    Argon2id cost parameters.

    Attributes:
        memory_cost_kb: Memory usage in KiB
        time_cost: Number of passes
        parallelism: Number of lanes
        hash_length: Derived key length in bytes
    """
    memory_cost_kb: int = c.ARGON2_MEMORY_COST_KB
    time_cost: int = c.ARGON2_TIME_COST
    parallelism: int = c.ARGON2_PARALLELISM
    hash_length: int = c.ARGON2_HASH_LENGTH

    def validate(self) -> None:
        """
        Raises:
            InvalidHashParamsError: If any field is not a positive integer
        """
        for name in ("memory_cost_kb", "time_cost", "parallelism", "hash_length"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidHashParamsError(
                    f"Argon2 parameter {name} must be a positive integer",
                    details={"parameter": name},
                )

    @classmethod
    def from_password_config(cls, config) -> Argon2Config:
        """Build from an ``agentauth.core.config.PasswordConfig``."""
        return cls(
            memory_cost_kb=config.memory_cost_kb,
            time_cost=config.time_cost,
            parallelism=config.parallelism,
            hash_length=config.hash_length,
        )


@dataclass(frozen=True, slots=True)
class StrengthResult:
    """Outcome of password strength scoring."""
    score: int
    is_valid: bool
    feedback: tuple[str, ...]


def _secure_zero_memory(data: bytearray) -> None:
    """
    Best-effort wipe of a password buffer.

    Python may still hold other copies; this only shortens the lifetime of
    the one we created.
    """
    if not data:
        return
    ctypes.memset(ctypes.addressof((ctypes.c_char * len(data)).from_buffer(data)), 0, len(data))


class PasswordHasher:
    """
    Argon2id password hasher.

    Usage:
        hasher = PasswordHasher(Argon2Config())

        encoded = hasher.hash("user_password")
        store(encoded)

        if hasher.verify("user_password", encoded):
            if hasher.needs_rehash(encoded):
                store(hasher.hash("user_password"))

    The instance is stateless apart from its default config and is safe to
    share between threads.
    """

    __slots__ = ("_config", "_salt_length", "_min_strength_score")

    def __init__(
        self,
        config: Optional[Argon2Config] = None,
        salt_length: int = c.ARGON2_SALT_LENGTH,
        min_strength_score: int = c.MIN_STRENGTH_SCORE,
    ) -> None:
        self._config = config or Argon2Config()
        self._config.validate()
        if salt_length < 8:
            raise InvalidHashParamsError("salt_length must be at least 8 bytes")
        self._salt_length = salt_length
        self._min_strength_score = min_strength_score

    @classmethod
    def from_config(cls, config) -> PasswordHasher:
        """Build from an ``agentauth.core.config.PasswordConfig``."""
        return cls(Argon2Config.from_password_config(config), min_strength_score=config.min_strength_score)

    @property
    def config(self) -> Argon2Config:
        return self._config

    def _library_hasher(self, config: Argon2Config) -> argon2.PasswordHasher:
        return argon2.PasswordHasher(
            time_cost=config.time_cost,
            memory_cost=config.memory_cost_kb,
            parallelism=config.parallelism,
            hash_len=config.hash_length,
            salt_len=self._salt_length,
            type=Type.ID,
        )

    def hash(self, password: str, config: Optional[Argon2Config] = None) -> str:
        """
        Hash a password using Argon2id.

        Args:
            password: The password to hash
            config: Cost parameters (defaults to the hasher's config)

        Returns:
            Encoded PHC string with the parameters and salt embedded

        Raises:
            EmptyPasswordError: If password is empty
            InvalidHashParamsError: If any cost parameter is non-positive
            HashingError: If the underlying library fails
        """
        if not isinstance(password, str) or len(password) == 0:
            raise EmptyPasswordError("Password cannot be empty")

        config = config or self._config
        config.validate()

        try:
            password_bytes = bytearray(password.encode("utf-8"))
        except UnicodeEncodeError as e:
            raise HashingError("Password is not valid UTF-8 text") from e

        try:
            return self._library_hasher(config).hash(bytes(password_bytes))
        except Argon2HashingError as e:
            log.error("Argon2 hashing failed: %s", type(e).__name__)
            raise HashingError("Failed to hash password") from e
        finally:
            _secure_zero_memory(password_bytes)

    def verify(self, password: str, encoded: str) -> bool:
        """
        Verify a password against an encoded hash.

        Uses the parameters embedded in ``encoded``, not the hasher's config.
        Never raises: malformed hashes and non-string input return False.
        """
        if not isinstance(password, str) or not isinstance(encoded, str):
            return False
        if not password or not encoded:
            return False

        try:
            password_bytes = bytearray(password.encode("utf-8"))
        except UnicodeEncodeError:
            return False

        try:
            return self._library_hasher(self._config).verify(encoded, bytes(password_bytes))
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False
        except (ValueError, TypeError):
            return False
        finally:
            _secure_zero_memory(password_bytes)

    def needs_rehash(self, encoded: str, config: Optional[Argon2Config] = None) -> bool:
        """
        Check whether a hash was produced with different cost parameters.

        Returns True if memory cost, time cost, parallelism or hash length
        differ from ``config``, or if the hash cannot be parsed.
        """
        config = config or self._config
        try:
            params = argon2.extract_parameters(encoded)
        except (InvalidHashError, ValueError, TypeError, AttributeError):
            return True

        return (
            params.type is not Type.ID
            or params.memory_cost != config.memory_cost_kb
            or params.time_cost != config.time_cost
            or params.parallelism != config.parallelism
            or params.hash_len != config.hash_length
        )

    def score_strength(self, password: str, min_score: Optional[int] = None) -> StrengthResult:
        """
        Score password strength on a 0-7 scale.

        One point each for: length >= 8, length >= 12, a lowercase letter,
        an uppercase letter, a digit, a symbol, and no run of three or more
        identical characters. Valid when the score reaches ``min_score``.
        """
        threshold = self._min_strength_score if min_score is None else min_score
        password = password if isinstance(password, str) else ""

        checks = (
            (len(password) >= 8, "Password must be at least 8 characters long"),
            (len(password) >= 12, "Password should be at least 12 characters long"),
            (re.search(r"[a-z]", password) is not None, "Password must contain lowercase letters"),
            (re.search(r"[A-Z]", password) is not None, "Password must contain uppercase letters"),
            (re.search(r"[0-9]", password) is not None, "Password must contain numbers"),
            (re.search(r"[^a-zA-Z0-9]", password) is not None, "Password must contain special characters"),
            (_REPEATED_RUN.search(password) is None, "Password should not contain repeated characters"),
        )

        score = sum(1 for passed, _ in checks if passed)
        is_valid = score >= threshold
        feedback = (_STRONG_FEEDBACK,) if is_valid else tuple(msg for passed, msg in checks if not passed)
        return StrengthResult(score=score, is_valid=is_valid, feedback=feedback)


def generate_secure_password(length: int = 16) -> str:
    """
    Generate a random password containing every character class.

    Args:
        length: Password length, at least 4

    Returns:
        Password drawn from letters, digits and ``!@#$%^&*``
    """
    if length < 4:
        raise ValueError("length must be at least 4")

    classes = (string.ascii_uppercase, string.ascii_lowercase, string.digits, c.PASSWORD_SYMBOLS)
    alphabet = "".join(classes)
    chars = [secrets.choice(cls) for cls in classes]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(classes)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


class HashingPool:
    """
    Bounded worker pool for password hashing.

    argon2-cffi releases the GIL while deriving, so a small thread pool gives
    real parallelism while capping memory use at
    ``max_workers * memory_cost_kb``.

    Usage:
        with HashingPool(hasher, max_workers=4) as pool:
            encoded = pool.hash("pw", timeout=5)
            ok = pool.verify("pw", encoded)

    A timed-out call is abandoned by the caller; the worker still finishes,
    but its result is discarded and nothing else observes it.
    """

    __slots__ = ("_hasher", "_executor", "_max_workers")

    def __init__(self, hasher: Optional[PasswordHasher] = None, max_workers: int = c.HASHING_WORKERS) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self._hasher = hasher or PasswordHasher()
        self._max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="argon2-hash")

    @classmethod
    def from_config(cls, config) -> HashingPool:
        """Build a pool and its hasher from a ``PasswordConfig``."""
        return cls(PasswordHasher.from_config(config), max_workers=config.hashing_workers)

    @property
    def hasher(self) -> PasswordHasher:
        return self._hasher

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def _run(self, fn: Callable[..., T], *args, timeout: Optional[float] = None) -> T:
        future: Future[T] = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise HashingTimeoutError("Password hashing timed out") from e

    def hash(self, password: str, config: Optional[Argon2Config] = None, timeout: Optional[float] = None) -> str:
        return self._run(self._hasher.hash, password, config, timeout=timeout)

    def verify(self, password: str, encoded: str, timeout: Optional[float] = None) -> bool:
        return self._run(self._hasher.verify, password, encoded, timeout=timeout)

    def needs_rehash(self, encoded: str, config: Optional[Argon2Config] = None) -> bool:
        # Parsing only; no need to occupy a worker
        return self._hasher.needs_rehash(encoded, config)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> HashingPool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
