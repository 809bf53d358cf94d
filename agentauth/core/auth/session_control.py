"""
Session Control
================

In-memory session table with automatic expiration.

Security Features:
- Cryptographically random session ids
- Expiry enforced on every read, not only by the sweeper
- Refresh rotates the id atomically (the old id is dead the moment the new one exists)
- Background sweep of expired entries

All state lives in this process; nothing is shared across processes.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
import weakref
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from agentauth.core.auth.errors import SessionNotFoundError
from agentauth.core.auth.models import Session, UserInfo
from agentauth.security import constants as c


log = logging.getLogger(__name__)

Clock = Callable[[], datetime]
IdFactory = Callable[[], str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """Default id: ``session_<epoch-ms>_<urlsafe random>``."""
    return f"session_{int(time.time() * 1000)}_{secrets.token_urlsafe(c.SESSION_ID_ENTROPY_BYTES)}"


def _sweep_loop(store_ref: weakref.ReferenceType, stop: threading.Event, interval: float) -> None:
    # Holds only a weak reference so an abandoned store can still be collected
    while not stop.wait(interval):
        store = store_ref()
        if store is None:
            return
        try:
            store.sweep()
        except Exception:
            log.exception("Session sweep failed")
        finally:
            del store


class SessionStore:
    """
    Thread-safe TTL session table.

    Usage:
        store = SessionStore(session_timeout_ms=3_600_000)

        # After successful authentication
        session = store.create(user, metadata={"auth_method": "api-key"})

        # On each request
        session = store.validate(session.id)

        # Rotate / logout
        session = store.refresh(session.id)
        store.destroy(session.id)

        store.shutdown()

    Security Notes:
        - Ids carry 192 bits of randomness
        - An expired session is indistinguishable from an unknown one
        - Every mutation happens under a single re-entrant lock
        - Returned Session records are immutable; mutating them cannot
          change the table
    """

    __slots__ = (
        "_sessions",
        "_lock",
        "_timeout",
        "_clock",
        "_id_factory",
        "_stop",
        "_sweeper",
        "_finalizer",
        "__weakref__",
    )

    def __init__(
        self,
        session_timeout_ms: int = c.SESSION_TIMEOUT_MS,
        sweep_interval_seconds: Optional[float] = c.SESSION_SWEEP_INTERVAL_SECONDS,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
    ) -> None:
        """
        Initialize the session store.

        Args:
            session_timeout_ms: Session lifetime in milliseconds
            sweep_interval_seconds: Seconds between background sweeps;
                None or 0 disables the sweep thread
            clock: Returns the current timezone-aware time
            id_factory: Returns a fresh, unique session id
        """
        if session_timeout_ms <= 0:
            raise ValueError("session_timeout_ms must be positive")

        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()
        self._timeout = timedelta(milliseconds=session_timeout_ms)
        self._clock = clock or utc_now
        self._id_factory = id_factory or generate_session_id
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        if sweep_interval_seconds:
            self._sweeper = threading.Thread(
                target=_sweep_loop,
                args=(weakref.ref(self), self._stop, float(sweep_interval_seconds)),
                name="session-sweeper",
                daemon=True,
            )
            self._sweeper.start()

        self._finalizer = weakref.finalize(self, self._stop.set)

    @classmethod
    def from_config(cls, config, clock: Optional[Clock] = None, id_factory: Optional[IdFactory] = None) -> SessionStore:
        """Build from an ``agentauth.core.config.SessionConfig``."""
        return cls(config.timeout_ms, config.sweep_interval_seconds, clock=clock, id_factory=id_factory)

    @property
    def timeout(self) -> timedelta:
        return self._timeout

    @property
    def is_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def _new_id(self) -> str:
        session_id = self._id_factory()
        if not session_id or session_id in self._sessions:
            raise RuntimeError("Session id factory returned an empty or duplicate id")
        return session_id

    def _insert(
        self,
        user: UserInfo,
        permissions: frozenset[str],
        metadata: Mapping[str, Any],
    ) -> Session:
        now = self._clock()
        session = Session(
            id=self._new_id(),
            user_id=user.id,
            user=user,
            created_at=now,
            expires_at=now + self._timeout,
            last_accessed_at=now,
            permissions=permissions,
            metadata=MappingProxyType(dict(metadata)),
        )
        self._sessions[session.id] = session
        return session

    def create(
        self,
        user: UserInfo,
        permissions: Optional[Iterable[str]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Session:
        """
        Create a new session for a user.

        Args:
            user: The authenticated user
            permissions: Session permissions (defaults to the user's)
            metadata: Extra non-sensitive context (auth method, correlation id)

        Returns:
            The new Session
        """
        perms = frozenset(user.permissions if permissions is None else permissions)
        with self._lock:
            session = self._insert(user, perms, metadata or {})
        log.debug("Session created for user %s", user.id)
        return session

    def _live(self, session_id: str, now: datetime) -> Optional[Session]:
        # Caller holds the lock
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.is_expired(now):
            del self._sessions[session_id]
            return None
        return session

    def validate(self, session_id: str) -> Session:
        """
        Return a live session and record the access.

        Raises:
            SessionNotFoundError: If the id is unknown or the session expired
        """
        with self._lock:
            now = self._clock()
            session = self._live(session_id, now)
            if session is None:
                raise SessionNotFoundError("Session not found or expired")
            session = replace(session, last_accessed_at=now)
            self._sessions[session_id] = session
            return session

    def get(self, session_id: str) -> Optional[Session]:
        """Non-touching lookup; None when absent or expired."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.is_expired(self._clock()):
                return None
            return session

    def refresh(self, session_id: str) -> Session:
        """
        Replace a live session with a fresh one.

        The replacement keeps user, permissions and metadata and gets a new
        id and a full lifetime. The old id is removed in the same critical
        section, so concurrent refreshes of one id yield exactly one winner.

        Raises:
            SessionNotFoundError: If the id is unknown or the session expired
        """
        with self._lock:
            old = self._live(session_id, self._clock())
            if old is None:
                raise SessionNotFoundError("Session not found or expired")
            new = self._insert(old.user, old.permissions, old.metadata)
            del self._sessions[session_id]
        log.debug("Session refreshed for user %s", new.user_id)
        return new

    def destroy(self, session_id: str) -> bool:
        """Remove a session. Returns True only if something was removed."""
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            log.debug("Session destroyed")
        return removed

    def destroy_user_sessions(self, user_id: str) -> int:
        """Remove every session of a user (logout everywhere)."""
        with self._lock:
            ids = [sid for sid, s in self._sessions.items() if s.user_id == user_id]
            for sid in ids:
                del self._sessions[sid]
        return len(ids)

    def user_sessions(self, user_id: str) -> list[Session]:
        """Live sessions of a user, most recently accessed first."""
        with self._lock:
            now = self._clock()
            sessions = [s for s in self._sessions.values() if s.user_id == user_id and not s.is_expired(now)]
        return sorted(sessions, key=lambda s: s.last_accessed_at, reverse=True)

    def sweep(self) -> int:
        """
        Remove expired sessions.

        Returns:
            Number of sessions removed
        """
        with self._lock:
            now = self._clock()
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            log.debug("Session sweep removed %d expired session(s)", len(expired))
        return len(expired)

    def active_count(self) -> int:
        """Number of sessions that have not expired."""
        with self._lock:
            now = self._clock()
            return sum(1 for s in self._sessions.values() if not s.is_expired(now))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self.get(session_id) is not None

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the sweep thread. Sessions stay readable."""
        self._stop.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout)

    def __enter__(self) -> SessionStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"SessionStore(sessions={len(self)}, timeout={self._timeout})"
