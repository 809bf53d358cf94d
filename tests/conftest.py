import threading
from datetime import datetime, timedelta, timezone

import pytest

from agentauth.core.auth.argon2_auth import Argon2Config, HashingPool, PasswordHasher
from agentauth.core.auth.coordinator import AuthCoordinator
from agentauth.core.auth.session_control import SessionStore
from agentauth.core.auth.tokens import TokenIssuer
from agentauth.core.config import AuthCoreConfig, ExternalConfig, SessionConfig, TokenConfig

TEST_SECRET = "test-signing-secret-0123456789abcdef0123456789abcdef"
VALID_API_KEY = "agentui_test-api-key-with-sufficient-length-12345"


class FakeClock:
    """Controllable clock returning aware datetimes."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)) -> None:
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs) -> None:
        with self._lock:
            self._now += timedelta(**kwargs)


@pytest.fixture
def fast_argon2() -> Argon2Config:
    return Argon2Config(memory_cost_kb=8192, time_cost=1, parallelism=1, hash_length=32)


@pytest.fixture
def hasher(fast_argon2) -> PasswordHasher:
    return PasswordHasher(fast_argon2)


@pytest.fixture
def hashing_pool(hasher):
    pool = HashingPool(hasher, max_workers=2)
    yield pool
    pool.shutdown()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock):
    s = SessionStore(session_timeout_ms=60_000, sweep_interval_seconds=None, clock=clock)
    yield s
    s.shutdown()


@pytest.fixture
def issuer(clock) -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, ttl_seconds=900, clock=clock)


@pytest.fixture
def core_config() -> AuthCoreConfig:
    return AuthCoreConfig(
        session=SessionConfig(timeout_ms=60_000, sweep_interval_seconds=3600),
        token=TokenConfig(secret=TEST_SECRET),
        external=ExternalConfig(lookup_timeout_seconds=0.5, lookup_workers=2),
    )


@pytest.fixture
def coordinator(core_config, store, issuer):
    coord = AuthCoordinator(core_config, session_store=store, token_issuer=issuer)
    yield coord
    coord.shutdown()
