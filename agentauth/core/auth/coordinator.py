"""
Authentication Coordinator
==========================

Drives the three trust tiers and turns a successful check into a session
plus a signed token.

Tiers, in triple-chain order:
- API key (standard): ``agentui_`` format check, then the injected lookup
- JWT (high): signature and expiry via TokenIssuer, optional session reuse
- OAuth2 (enterprise): config completeness, then the injected verifier

Every public operation returns an AuthResult; nothing raised inside the
core reaches the caller. Library exception text never appears in a result.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from agentauth.core.auth.api_keys import (
    APIKeyLookup,
    FormatOnlyAPIKeyLookup,
    api_key_fingerprint,
    default_permissions,
    is_api_key_well_formed,
)
from agentauth.core.auth.errors import (
    AuthCoreError,
    AuthError,
    ErrorCode,
    ExternalTimeoutError,
    InvalidAPIKeyError,
    InvalidAPIKeyFormatError,
    InvalidOAuth2CredentialsError,
    InvalidTokenError,
    MissingOAuth2ConfigError,
    SessionNotFoundError,
)
from agentauth.core.auth.models import (
    TIER_SECURITY_LEVELS,
    APIKeyConfig,
    AuthMethod,
    AuthRequest,
    AuthResult,
    AuthStep,
    JWTConfig,
    OAuth2Config,
    SecurityLevel,
    Session,
    TierConfig,
    UserInfo,
    generate_correlation_id,
)
from agentauth.core.auth.oauth2 import OAuth2Verifier, RegisteredProviderVerifier
from agentauth.core.auth.session_control import SessionStore
from agentauth.core.auth.tokens import TokenIssuer
from agentauth.core.config import AuthCoreConfig
from agentauth.core.logging import CorrelationAdapter
from agentauth.security import constants as c
from agentauth.utils.validators import ValidationError, validate_redirect_uri


logger = logging.getLogger(__name__)

_TRIPLE_METHOD = "triple"


@dataclass(frozen=True, slots=True)
class _Issued:
    """A session and token produced by one tier."""
    session: Session
    token: str
    user: UserInfo
    security_level: SecurityLevel
    minted: bool


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class AuthCoordinator:
    """
    Multi-tier authentication engine.

    Usage:
        with AuthCoordinator(config, api_key_lookup=lookup) as auth:
            result = auth.authenticate(AuthRequest(APIKeyConfig(key)))
            if result.success:
                auth.validate_session(result.session_id)

            chained = auth.authenticate_triple(key, token, oauth2_config)

    Security Notes:
        - Shape checks run before any lookup, session or token is touched
        - Injected lookups run on a bounded pool with a timeout
        - Sessions minted by a failed triple chain are destroyed
    """

    __slots__ = (
        "_config",
        "_store",
        "_owns_store",
        "_tokens",
        "_api_key_lookup",
        "_oauth2_verifier",
        "_lookup_pool",
        "_lookup_timeout",
    )

    def __init__(
        self,
        config: Optional[AuthCoreConfig] = None,
        *,
        session_store: Optional[SessionStore] = None,
        token_issuer: Optional[TokenIssuer] = None,
        api_key_lookup: Optional[APIKeyLookup] = None,
        oauth2_verifier: Optional[OAuth2Verifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            config: Configuration (defaults to AuthCoreConfig.get_instance())
            session_store: Shared store; created from config when omitted
            token_issuer: Token signer; created from config when omitted
            api_key_lookup: Decides whether a well-formed key is accepted
            oauth2_verifier: Decides whether OAuth2 credentials are accepted
            clock: Time source for a store/issuer created here
            id_factory: Session id source for a store created here
        """
        self._config = config if config is not None else AuthCoreConfig.get_instance()
        self._owns_store = session_store is None
        if session_store is None:
            session_store = SessionStore.from_config(self._config.session, clock=clock, id_factory=id_factory)
        self._store = session_store
        if token_issuer is None:
            token_issuer = TokenIssuer.from_config(self._config.token, clock=clock)
        self._tokens = token_issuer
        self._api_key_lookup = api_key_lookup if api_key_lookup is not None else FormatOnlyAPIKeyLookup()
        self._oauth2_verifier = oauth2_verifier if oauth2_verifier is not None else RegisteredProviderVerifier()
        self._lookup_timeout = self._config.external.lookup_timeout_seconds
        self._lookup_pool = ThreadPoolExecutor(
            max_workers=self._config.external.lookup_workers,
            thread_name_prefix="auth-lookup",
        )

    @property
    def session_store(self) -> SessionStore:
        return self._store

    @property
    def token_issuer(self) -> TokenIssuer:
        return self._tokens

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def authenticate(self, request: Union[AuthRequest, Mapping[str, Any]]) -> AuthResult:
        """
        Run a single tier.

        Accepts an AuthRequest or the loose mapping shape understood by
        ``AuthRequest.from_dict``. The result carries exactly one AuthStep
        unless the request itself was unusable.
        """
        start = time.perf_counter()
        if not isinstance(request, AuthRequest):
            fallback_cid = None
            if isinstance(request, Mapping):
                fallback_cid = request.get("correlationId") or request.get("correlation_id")
            if not isinstance(fallback_cid, str) or not fallback_cid:
                fallback_cid = generate_correlation_id()
            try:
                request = AuthRequest.from_dict(request)
            except AuthCoreError as e:
                CorrelationAdapter(logger, fallback_cid).warning("Rejected authentication request: %s", e.code.value)
                return self._failure(fallback_cid, AuthError.from_exception(e, fallback_cid), (), start)
            except Exception as e:
                return self._failure(fallback_cid, self._unexpected(e, fallback_cid, "request parsing"), (), start)

        cid = request.correlation_id or generate_correlation_id()
        step, issued, error = self._attempt(request.config, cid, 1, request.timeout)
        if error is not None:
            return self._failure(cid, error, (step,), start)
        return self._success(cid, issued, issued.session.permissions, issued.security_level, (step,), start)

    def authenticate_triple(
        self,
        api_key: Union[str, APIKeyConfig, None],
        token: Union[str, JWTConfig, None],
        oauth2_credentials: Union[OAuth2Config, Mapping[str, Any], None],
        correlation_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AuthResult:
        """
        Run API key, then JWT, then OAuth2, stopping at the first failure.

        On success the per-tier sessions minted by the chain are replaced by
        one consolidated session carrying the OAuth2 user and the union of
        all tier permissions, at enterprise level. ``timeout`` bounds each
        injected lookup and defaults to the configured lookup timeout.
        """
        start = time.perf_counter()
        cid = correlation_id or generate_correlation_id()
        clog = CorrelationAdapter(logger, cid)

        try:
            configs: Sequence[TierConfig] = (
                api_key if isinstance(api_key, APIKeyConfig) else APIKeyConfig(api_key=api_key or ""),
                token if isinstance(token, JWTConfig) else JWTConfig(token=token or ""),
                self._as_oauth2_config(oauth2_credentials),
            )
        except AuthCoreError as e:
            clog.warning("Rejected triple authentication request: %s", e.code.value)
            return self._failure(cid, AuthError.from_exception(e, cid), (), start)
        except Exception as e:
            return self._failure(cid, self._unexpected(e, cid, "request parsing"), (), start)

        steps: list[AuthStep] = []
        issued: list[_Issued] = []
        for index, config in enumerate(configs, start=1):
            step, outcome, error = self._attempt(config, cid, index, timeout)
            steps.append(step)
            if error is not None:
                discarded = self._discard_minted(issued)
                clog.warning(
                    "Triple authentication stopped at step %d (%s); discarded %d session(s)",
                    index, config.method.value, discarded,
                )
                return self._failure(cid, error, tuple(steps), start)
            issued.append(outcome)

        permissions = frozenset().union(*(i.session.permissions for i in issued))
        user = issued[-1].user.with_permissions(permissions)
        try:
            final = self._issue(user, _TRIPLE_METHOD, SecurityLevel.ENTERPRISE, cid, permissions=permissions)
        except Exception as e:
            self._discard_minted(issued)
            return self._failure(cid, self._unexpected(e, cid, "triple consolidation"), tuple(steps), start)

        self._discard_minted(issued)
        clog.info("Triple authentication succeeded for user %s", user.id)
        return self._success(cid, final, permissions, SecurityLevel.ENTERPRISE, tuple(steps), start)

    def validate_session(self, session_id: str, correlation_id: Optional[str] = None) -> AuthResult:
        """Check a session id; on success the result carries the session's user and permissions."""
        start = time.perf_counter()
        cid = correlation_id or generate_correlation_id()
        try:
            session = self._store.validate(session_id)
        except SessionNotFoundError as e:
            return self._failure(cid, AuthError.from_exception(e, cid), (), start)
        except Exception as e:
            return self._failure(cid, self._unexpected(e, cid, "session validation"), (), start)

        return AuthResult(
            success=True,
            correlation_id=cid,
            session_id=session.id,
            expires_at=session.expires_at,
            permissions=session.permissions,
            user=session.user,
            total_duration_ms=_elapsed_ms(start),
            security_level=self._session_level(session),
        )

    def refresh_session(self, session_id: str, correlation_id: Optional[str] = None) -> AuthResult:
        """Rotate a session to a new id and sign a new token for it."""
        start = time.perf_counter()
        cid = correlation_id or generate_correlation_id()
        clog = CorrelationAdapter(logger, cid)
        try:
            session = self._store.refresh(session_id)
            token = self._sign_for(session)
        except SessionNotFoundError:
            clog.warning("Session refresh failed: session not found or expired")
            error = AuthError.create(ErrorCode.SESSION_REFRESH_FAILED, "Session not found or expired", cid)
            return self._failure(cid, error, (), start)
        except Exception as e:
            return self._failure(cid, self._unexpected(e, cid, "session refresh"), (), start)

        clog.info("Session refreshed for user %s", session.user_id)
        level = self._session_level(session)
        return self._success(
            cid, _Issued(session, token, session.user, level, minted=True),
            session.permissions, level, (), start,
        )

    def destroy_session(self, session_id: str, correlation_id: Optional[str] = None) -> AuthResult:
        """Remove a session. Fails with SessionDestroyFailed when nothing was removed."""
        start = time.perf_counter()
        cid = correlation_id or generate_correlation_id()
        try:
            removed = self._store.destroy(session_id)
        except Exception as e:
            return self._failure(cid, self._unexpected(e, cid, "session destroy"), (), start)

        if not removed:
            error = AuthError.create(ErrorCode.SESSION_DESTROY_FAILED, "Session not found", cid)
            return self._failure(cid, error, (), start)

        CorrelationAdapter(logger, cid).info("Session destroyed")
        return AuthResult(
            success=True,
            correlation_id=cid,
            session_id=session_id,
            total_duration_ms=_elapsed_ms(start),
        )

    def establish_session(
        self,
        user: UserInfo,
        method: str = "password",
        correlation_id: Optional[str] = None,
        security_level: SecurityLevel = SecurityLevel.STANDARD,
    ) -> AuthResult:
        """
        Mint a session and token for a user proven by a collaborator.

        Used by the password flow after ``UserManager.authenticate``.
        """
        start = time.perf_counter()
        cid = correlation_id or generate_correlation_id()
        try:
            issued = self._issue(user, method, security_level, cid)
        except Exception as e:
            return self._failure(cid, self._unexpected(e, cid, "session establishment"), (), start)

        CorrelationAdapter(logger, cid).info("Session established for user %s via %s", user.id, method)
        return self._success(cid, issued, issued.session.permissions, security_level, (), start)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the lookup pool and, when created here, the session store."""
        self._lookup_pool.shutdown(wait=wait, cancel_futures=True)
        if self._owns_store:
            self._store.shutdown()

    def __enter__(self) -> AuthCoordinator:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Tier handlers
    # ------------------------------------------------------------------

    def _attempt(
        self,
        config: TierConfig,
        cid: str,
        step_number: int,
        timeout: Optional[float] = None,
    ) -> tuple[AuthStep, Optional[_Issued], Optional[AuthError]]:
        method = config.method
        clog = CorrelationAdapter(logger, cid)
        handler = {
            AuthMethod.API_KEY: self._authenticate_api_key,
            AuthMethod.JWT: self._authenticate_jwt,
            AuthMethod.OAUTH2: self._authenticate_oauth2,
        }[method]

        start = time.perf_counter()
        issued: Optional[_Issued] = None
        error: Optional[AuthError] = None
        try:
            issued = handler(config, cid, timeout)
        except AuthCoreError as e:
            error = AuthError.from_exception(e, cid)
            clog.warning("%s authentication failed: %s", method.value, e.code.value)
        except Exception as e:
            error = self._unexpected(e, cid, f"{method.value} authentication")
        else:
            clog.info("%s authentication succeeded for user %s", method.value, issued.user.id)

        step = AuthStep(
            step=step_number,
            method=method,
            duration_ms=_elapsed_ms(start),
            success=error is None,
            permissions=issued.session.permissions if issued else frozenset(),
            security_level=issued.security_level if issued else SecurityLevel.BASIC,
            correlation_id=cid,
            error_code=error.code.value if error else None,
        )
        return step, issued, error

    def _authenticate_api_key(self, config: APIKeyConfig, cid: str, timeout: Optional[float]) -> _Issued:
        external = self._config.external
        api_key = config.api_key
        if not is_api_key_well_formed(api_key, external.api_key_prefix, external.api_key_min_length):
            raise InvalidAPIKeyFormatError(
                f'API key must start with "{external.api_key_prefix}" '
                f"and be at least {external.api_key_min_length} characters"
            )

        requested = default_permissions(config.permissions)
        verdict = self._call_external("API key lookup", self._api_key_lookup, api_key, requested, timeout=timeout)
        if isinstance(verdict, UserInfo):
            user = verdict
        elif verdict is True:
            user = UserInfo(
                id=f"apikey_{api_key_fingerprint(api_key)}",
                permissions=requested,
                roles={"api_user"},
            )
        else:
            raise InvalidAPIKeyError("Invalid API key")

        return self._issue(user, AuthMethod.API_KEY.value, TIER_SECURITY_LEVELS[AuthMethod.API_KEY], cid)

    def _authenticate_jwt(self, config: JWTConfig, cid: str, timeout: Optional[float]) -> _Issued:
        claims = self._tokens.verify(config.token, config.secret)

        user_id = claims.get("userId") or claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidTokenError("Token does not identify a user")

        level = TIER_SECURITY_LEVELS[AuthMethod.JWT]
        session = self._reusable_session(claims.get("sessionId"), user_id)
        if session is not None:
            token = self._sign_for(session)
            return _Issued(session, token, session.user, level, minted=False)

        raw_permissions = claims.get("permissions")
        raw_roles = claims.get("roles")
        permissions = frozenset(map(str, raw_permissions)) if isinstance(raw_permissions, list) else frozenset()
        user = UserInfo(
            id=user_id,
            email=claims.get("email"),
            name=claims.get("name"),
            permissions=permissions or c.DEFAULT_PERMISSIONS,
            roles=raw_roles if isinstance(raw_roles, (list, str)) else None,
        )
        return self._issue(user, AuthMethod.JWT.value, level, cid)

    def _reusable_session(self, session_id: object, user_id: str) -> Optional[Session]:
        if not isinstance(session_id, str) or not session_id:
            return None
        try:
            session = self._store.validate(session_id)
        except SessionNotFoundError:
            return None
        return session if session.user_id == user_id else None

    def _authenticate_oauth2(self, config: OAuth2Config, cid: str, timeout: Optional[float]) -> _Issued:
        required = (
            ("clientId", config.client_id),
            ("clientSecret", config.client_secret),
            ("redirectUri", config.redirect_uri),
            ("provider", config.provider),
        )
        missing = [name for name, value in required if not isinstance(value, str) or not value]
        if missing:
            raise MissingOAuth2ConfigError(
                "Missing OAuth2 configuration: " + ", ".join(missing),
                details={"missing": missing},
            )
        try:
            validate_redirect_uri(config.redirect_uri)
        except ValidationError as e:
            raise MissingOAuth2ConfigError(
                "redirectUri must be an absolute http(s) URL",
                details={"missing": ["redirectUri"]},
            ) from e

        verdict = self._call_external("OAuth2 verification", self._oauth2_verifier, config, timeout=timeout)
        if isinstance(verdict, UserInfo):
            user = verdict
        elif verdict is True:
            user = UserInfo(
                id=f"oauth2_{config.provider}_{config.client_id}",
                permissions=c.ELEVATED_PERMISSIONS | frozenset(config.scope),
                roles={"oauth2"},
            )
        else:
            raise InvalidOAuth2CredentialsError("Invalid OAuth2 credentials")

        return self._issue(user, AuthMethod.OAUTH2.value, TIER_SECURITY_LEVELS[AuthMethod.OAUTH2], cid)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call_external(
        self,
        what: str,
        fn: Callable[..., Any],
        *args: Any,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Run an injected collaborator on the lookup pool.

        Args:
            timeout: Seconds to wait; the configured lookup timeout when None

        Raises:
            ExternalTimeoutError: If it does not answer in time
            AuthCoreError: InternalError (recoverable) if it raises
        """
        limit = self._lookup_timeout if timeout is None else timeout
        future = self._lookup_pool.submit(fn, *args)
        try:
            return future.result(timeout=limit)
        except FutureTimeoutError as e:
            future.cancel()
            raise ExternalTimeoutError(
                f"{what} timed out",
                details={"timeoutSeconds": limit},
            ) from e
        except AuthCoreError:
            raise
        except Exception as e:
            logger.error("%s raised %s", what, type(e).__name__)
            raise AuthCoreError(
                f"{what} failed",
                code=ErrorCode.INTERNAL_ERROR,
                recoverable=True,
            ) from e

    def _issue(
        self,
        user: UserInfo,
        method: str,
        level: SecurityLevel,
        cid: str,
        permissions: Optional[frozenset[str]] = None,
    ) -> _Issued:
        session = self._store.create(
            user,
            permissions=permissions,
            metadata={"auth_method": method, "security_level": level.value, "correlation_id": cid},
        )
        try:
            token = self._sign_for(session)
        except Exception:
            self._store.destroy(session.id)
            raise
        return _Issued(session, token, user, level, minted=True)

    def _sign_for(self, session: Session) -> str:
        claims = {
            "userId": session.user_id,
            "permissions": sorted(session.permissions),
            "sessionId": session.id,
        }
        if session.user.email:
            claims["email"] = session.user.email
        if session.user.name:
            claims["name"] = session.user.name
        return self._tokens.sign(claims)

    def _discard_minted(self, issued: Sequence[_Issued]) -> int:
        return sum(1 for i in issued if i.minted and self._store.destroy(i.session.id))

    @staticmethod
    def _session_level(session: Session) -> SecurityLevel:
        try:
            return SecurityLevel(session.metadata.get("security_level", SecurityLevel.BASIC.value))
        except ValueError:
            return SecurityLevel.BASIC

    @staticmethod
    def _as_oauth2_config(credentials: Union[OAuth2Config, Mapping[str, Any], None]) -> OAuth2Config:
        if isinstance(credentials, OAuth2Config):
            return credentials
        if isinstance(credentials, Mapping):
            request = AuthRequest.from_dict({**credentials, "method": AuthMethod.OAUTH2.value})
            return request.config
        return OAuth2Config(client_id="")

    @staticmethod
    def _unexpected(exc: Exception, cid: str, operation: str) -> AuthError:
        CorrelationAdapter(logger, cid).exception("Unexpected error during %s", operation)
        return AuthError.create(ErrorCode.INTERNAL_ERROR, "Internal authentication error", cid)

    @staticmethod
    def _success(
        cid: str,
        issued: _Issued,
        permissions: frozenset[str],
        level: SecurityLevel,
        steps: tuple[AuthStep, ...],
        start: float,
    ) -> AuthResult:
        return AuthResult(
            success=True,
            correlation_id=cid,
            session_id=issued.session.id,
            token=issued.token,
            expires_at=issued.session.expires_at,
            permissions=permissions,
            user=issued.user,
            steps=steps,
            total_duration_ms=_elapsed_ms(start),
            security_level=level,
        )

    @staticmethod
    def _failure(
        cid: str,
        error: AuthError,
        steps: tuple[AuthStep, ...],
        start: float,
    ) -> AuthResult:
        return AuthResult(
            success=False,
            correlation_id=cid,
            steps=steps,
            total_duration_ms=_elapsed_ms(start),
            error=error,
        )
