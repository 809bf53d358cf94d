import threading

import pytest

from agentauth.core.auth.api_keys import StaticAPIKeyLookup
from agentauth.core.auth.coordinator import AuthCoordinator
from agentauth.core.auth.session_control import SessionStore
from agentauth.core.auth.errors import ErrorCode
from agentauth.core.auth.models import (
    APIKeyConfig,
    AuthMethod,
    AuthRequest,
    JWTConfig,
    OAuth2Config,
    SecurityLevel,
    UserInfo,
)
from agentauth.security import constants as c
from tests.conftest import VALID_API_KEY

OAUTH2 = OAuth2Config(
    client_id="client-123",
    client_secret="client-secret",
    redirect_uri="https://app.example.com/auth/callback/google",
    provider="google",
    scope=("openid", "email"),
)


class SpyVerifier:
    def __init__(self, verdict=True) -> None:
        self.verdict = verdict
        self.calls = []

    def __call__(self, config):
        self.calls.append(config)
        return self.verdict


def test_api_key_scenario_success(coordinator, store) -> None:
    result = coordinator.authenticate({
        "method": "api-key",
        "apiKey": "agentui_XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX",
        "permissions": ["basic", "chat"],
    })
    assert result.success is True
    assert result.session_id is not None
    assert "basic" in result.user.permissions
    assert result.permissions == frozenset({"basic", "chat"})
    assert result.user.id.startswith("apikey_")
    assert len(result.user.id) == len("apikey_") + 16
    assert result.security_level is SecurityLevel.STANDARD
    assert len(result.steps) == 1
    assert result.steps[0].success is True
    assert store.get(result.session_id) is not None
    assert coordinator.token_issuer.verify(result.token)["sessionId"] == result.session_id


def test_api_key_scenario_short_key(coordinator, store) -> None:
    result = coordinator.authenticate({"method": "api-key", "apiKey": "short"})
    assert result.success is False
    assert result.error.code is ErrorCode.INVALID_API_KEY_FORMAT
    assert result.session_id is None
    assert result.token is None
    assert len(store) == 0


def test_api_key_defaults_to_basic_permissions(coordinator) -> None:
    result = coordinator.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    assert result.permissions == c.DEFAULT_PERMISSIONS


def test_format_is_checked_before_lookup(core_config, store, issuer) -> None:
    calls = []
    with AuthCoordinator(core_config, session_store=store, token_issuer=issuer,
                         api_key_lookup=lambda key, perms: calls.append(key)) as auth:
        result = auth.authenticate(AuthRequest(APIKeyConfig("agentui_short")))
    assert result.error.code is ErrorCode.INVALID_API_KEY_FORMAT
    assert calls == []


def test_lookup_rejection(core_config, store, issuer) -> None:
    with AuthCoordinator(core_config, session_store=store, token_issuer=issuer,
                         api_key_lookup=lambda key, perms: False) as auth:
        result = auth.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    assert result.error.code is ErrorCode.INVALID_API_KEY
    assert result.error.recoverable is False
    assert len(store) == 0


def test_lookup_may_name_the_user(core_config, store, issuer) -> None:
    service = UserInfo(id="svc-7", permissions={"basic", "advanced"})
    with AuthCoordinator(core_config, session_store=store, token_issuer=issuer,
                         api_key_lookup=lambda key, perms: service) as auth:
        result = auth.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    assert result.user.id == "svc-7"
    assert result.permissions == frozenset({"basic", "advanced"})


def test_lookup_timeout_is_recoverable(core_config, store, issuer) -> None:
    release = threading.Event()

    def slow_lookup(key, perms):
        release.wait(5)
        return True

    auth = AuthCoordinator(core_config, session_store=store, token_issuer=issuer, api_key_lookup=slow_lookup)
    try:
        result = auth.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    finally:
        release.set()
        auth.shutdown()
    assert result.success is False
    assert result.error.code is ErrorCode.EXTERNAL_TIMEOUT
    assert result.error.recoverable is True
    assert len(store) == 0


def test_lookup_exception_is_internal_and_recoverable(core_config, store, issuer) -> None:
    def broken(key, perms):
        raise ConnectionError("db password=hunter2 unreachable")

    with AuthCoordinator(core_config, session_store=store, token_issuer=issuer, api_key_lookup=broken) as auth:
        result = auth.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    assert result.error.code is ErrorCode.INTERNAL_ERROR
    assert result.error.recoverable is True
    assert "hunter2" not in result.error.message


def test_missing_method(coordinator) -> None:
    result = coordinator.authenticate({"apiKey": VALID_API_KEY, "correlationId": "cid-1"})
    assert result.error.code is ErrorCode.AUTH_METHOD_REQUIRED
    assert result.correlation_id == "cid-1"
    assert result.steps == ()


def test_jwt_reuses_live_session(coordinator, store) -> None:
    first = coordinator.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    result = coordinator.authenticate(AuthRequest(JWTConfig(first.token)))
    assert result.success is True
    assert result.session_id == first.session_id
    assert result.security_level is SecurityLevel.HIGH
    assert result.token
    assert len(store) == 1


def test_jwt_mints_session_when_claimed_one_is_gone(coordinator, store, issuer) -> None:
    token = issuer.sign({"userId": "u1", "permissions": ["chat"], "sessionId": "session_gone"})
    result = coordinator.authenticate({"method": "jwt", "token": token})
    assert result.success is True
    assert result.session_id != "session_gone"
    assert result.user.id == "u1"
    assert result.permissions == frozenset({"chat"})
    assert len(store) == 1


def test_jwt_expired(coordinator, issuer, clock) -> None:
    token = issuer.sign({"userId": "u1"})
    clock.advance(seconds=900)
    result = coordinator.authenticate(AuthRequest(JWTConfig(token)))
    assert result.error.code is ErrorCode.INVALID_OR_EXPIRED_TOKEN


def test_jwt_without_user(coordinator, issuer) -> None:
    result = coordinator.authenticate(AuthRequest(JWTConfig(issuer.sign({"permissions": ["basic"]}))))
    assert result.error.code is ErrorCode.INVALID_OR_EXPIRED_TOKEN


def test_oauth2_success(coordinator) -> None:
    result = coordinator.authenticate(AuthRequest(OAUTH2))
    assert result.success is True
    assert result.user.id == "oauth2_google_client-123"
    assert "oauth2" in result.user.roles
    assert result.permissions == c.ELEVATED_PERMISSIONS | {"openid", "email"}
    assert result.security_level is SecurityLevel.ENTERPRISE


@pytest.mark.parametrize(
    "overrides",
    [
        {"client_id": ""},
        {"client_secret": ""},
        {"redirect_uri": ""},
        {"provider": ""},
        {"redirect_uri": "ftp://example.com/cb"},
    ],
)
def test_oauth2_missing_config(coordinator, store, overrides) -> None:
    fields = {
        "client_id": OAUTH2.client_id,
        "client_secret": OAUTH2.client_secret,
        "redirect_uri": OAUTH2.redirect_uri,
        "provider": OAUTH2.provider,
    }
    fields.update(overrides)
    result = coordinator.authenticate(AuthRequest(OAuth2Config(**fields)))
    assert result.error.code is ErrorCode.MISSING_OAUTH2_CONFIG
    assert len(store) == 0


def test_oauth2_unknown_provider(coordinator) -> None:
    result = coordinator.authenticate({
        "method": "oauth2",
        "clientId": "c",
        "clientSecret": "s",
        "redirectUri": "https://x.example/cb",
        "provider": "myspace",
    })
    assert result.error.code is ErrorCode.INVALID_OAUTH2_CREDENTIALS


def test_triple_short_circuits_on_bad_token(core_config, store, issuer) -> None:
    verifier = SpyVerifier()
    with AuthCoordinator(core_config, session_store=store, token_issuer=issuer,
                         oauth2_verifier=verifier) as auth:
        result = auth.authenticate_triple(VALID_API_KEY, "not.a.token", OAUTH2)

    assert result.success is False
    assert len(result.steps) == 2
    assert result.steps[0].method is AuthMethod.API_KEY
    assert result.steps[0].success is True
    assert result.steps[1].method is AuthMethod.JWT
    assert result.steps[1].success is False
    assert result.error.code is ErrorCode.INVALID_OR_EXPIRED_TOKEN
    assert verifier.calls == []
    # The API-key session minted in the chain is gone
    assert len(store) == 0


def test_triple_success_consolidates(core_config, store, issuer) -> None:
    verifier = SpyVerifier()
    token = issuer.sign({"userId": "u1", "permissions": ["reports"]})
    with AuthCoordinator(core_config, session_store=store, token_issuer=issuer,
                         oauth2_verifier=verifier) as auth:
        result = auth.authenticate_triple(
            APIKeyConfig(VALID_API_KEY, permissions=("basic", "chat")),
            token,
            OAUTH2,
            correlation_id="cid-triple",
        )

    assert result.success is True
    assert [s.method for s in result.steps] == [AuthMethod.API_KEY, AuthMethod.JWT, AuthMethod.OAUTH2]
    assert all(s.correlation_id == "cid-triple" for s in result.steps)
    assert result.security_level is SecurityLevel.ENTERPRISE
    assert {"basic", "chat", "reports", "advanced", "enterprise", "openid"} <= result.permissions
    assert result.user.id == "oauth2_google_client-123"
    assert result.user.permissions == result.permissions
    assert len(verifier.calls) == 1
    assert len(store) == 1
    assert store.get(result.session_id).metadata["auth_method"] == "triple"
    assert result.total_duration_ms >= sum(s.duration_ms for s in result.steps) * 0.99


def test_triple_accepts_oauth2_mapping(coordinator) -> None:
    result = coordinator.authenticate_triple(
        VALID_API_KEY,
        coordinator.token_issuer.sign({"userId": "u1"}),
        {"clientId": "c-1", "clientSecret": "s", "redirectUri": "https://x.example/cb", "provider": "github"},
    )
    assert result.success is True
    assert result.user.id == "oauth2_github_c-1"


def test_triple_failure_at_oauth2_discards_sessions(coordinator, store) -> None:
    result = coordinator.authenticate_triple(
        VALID_API_KEY,
        coordinator.token_issuer.sign({"userId": "u1"}),
        OAuth2Config(client_id="c"),
    )
    assert result.error.code is ErrorCode.MISSING_OAUTH2_CONFIG
    assert len(result.steps) == 3
    assert len(store) == 0


def test_validate_session(coordinator) -> None:
    issued = coordinator.authenticate(AuthRequest(OAUTH2))
    result = coordinator.validate_session(issued.session_id)
    assert result.success is True
    assert result.user.id == issued.user.id
    assert result.security_level is SecurityLevel.ENTERPRISE

    missing = coordinator.validate_session("session_nope")
    assert missing.error.code is ErrorCode.SESSION_NOT_FOUND


def test_refresh_session_rotates_id_and_token(coordinator, clock) -> None:
    issued = coordinator.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    clock.advance(seconds=1)
    refreshed = coordinator.refresh_session(issued.session_id)

    assert refreshed.success is True
    assert refreshed.session_id != issued.session_id
    assert refreshed.token != issued.token
    assert coordinator.token_issuer.verify(refreshed.token)["sessionId"] == refreshed.session_id
    assert coordinator.validate_session(issued.session_id).success is False
    assert coordinator.validate_session(refreshed.session_id).success is True

    again = coordinator.refresh_session(issued.session_id)
    assert again.error.code is ErrorCode.SESSION_REFRESH_FAILED


def test_destroy_session(coordinator) -> None:
    issued = coordinator.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    assert coordinator.destroy_session(issued.session_id).success is True
    second = coordinator.destroy_session(issued.session_id)
    assert second.success is False
    assert second.error.code is ErrorCode.SESSION_DESTROY_FAILED


def test_establish_session(coordinator) -> None:
    user = UserInfo(id="user_1", email="alice@example.com", permissions={"basic"})
    result = coordinator.establish_session(user, correlation_id="cid-pw")
    assert result.success is True
    assert result.correlation_id == "cid-pw"
    claims = coordinator.token_issuer.verify(result.token)
    assert claims["email"] == "alice@example.com"
    assert claims["sessionId"] == result.session_id


def test_correlation_id_is_generated(coordinator) -> None:
    result = coordinator.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
    assert result.correlation_id.startswith("auth_")
    assert result.steps[0].correlation_id == result.correlation_id


def test_result_to_dict(coordinator) -> None:
    result = coordinator.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY), correlation_id="cid-d"))
    data = result.to_dict()
    assert data["success"] is True
    assert data["correlationId"] == "cid-d"
    assert data["expiresAt"] == int(result.expires_at.timestamp() * 1000)
    assert data["authSteps"][0]["method"] == "api-key"
    assert data["error"] is None


def test_coordinator_owns_store_when_created(core_config, clock) -> None:
    auth = AuthCoordinator(core_config, clock=clock)
    assert auth.session_store.is_running
    auth.shutdown()
    assert not auth.session_store.is_running


def test_injected_empty_store_is_used(core_config, store, issuer) -> None:
    assert len(store) == 0
    auth = AuthCoordinator(core_config, session_store=store, token_issuer=issuer)
    assert auth.session_store is store
    auth.shutdown()


def test_injected_store_is_not_stopped_by_coordinator(core_config, issuer, clock) -> None:
    shared = SessionStore(session_timeout_ms=60_000, sweep_interval_seconds=3600, clock=clock)
    try:
        AuthCoordinator(core_config, session_store=shared, token_issuer=issuer).shutdown()
        assert shared.is_running
    finally:
        shared.shutdown()
    assert not shared.is_running


def test_empty_key_registry_rejects_unregistered_key(core_config, store, issuer) -> None:
    registry = StaticAPIKeyLookup()
    with AuthCoordinator(core_config, session_store=store, token_issuer=issuer,
                         api_key_lookup=registry) as auth:
        rejected = auth.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY)))
        issued = registry.issue(UserInfo(id="svc-1", permissions={"basic"}))
        accepted = auth.authenticate(AuthRequest(APIKeyConfig(issued)))
    assert rejected.success is False
    assert rejected.error.code is ErrorCode.INVALID_API_KEY
    assert accepted.success is True
    assert accepted.user.id == "svc-1"


@pytest.mark.parametrize("request_data", [
    {"method": "api-key", "apiKey": VALID_API_KEY, "permissions": 5},
    {"method": "api-key", "apiKey": VALID_API_KEY, "permissions": {"basic": True}},
    {"method": "api-key", "apiKey": 12345},
    {"method": "jwt", "token": ["a", "b", "c"]},
    {"method": "oauth2", "clientId": "c", "scope": 5},
    {"method": "api-key", "apiKey": VALID_API_KEY, "timeout": "soon"},
    {"method": "api-key", "apiKey": VALID_API_KEY, "timeout": -1},
])
def test_malformed_mapping_fails_without_raising(coordinator, store, request_data) -> None:
    result = coordinator.authenticate({**request_data, "correlationId": "cid-bad"})
    assert result.success is False
    assert result.error.code is ErrorCode.AUTH_METHOD_REQUIRED
    assert result.correlation_id == "cid-bad"
    assert result.steps == ()
    assert len(store) == 0


def test_triple_with_malformed_oauth2_mapping(coordinator, store) -> None:
    result = coordinator.authenticate_triple(
        VALID_API_KEY, "x.y.z",
        {"clientId": "c", "clientSecret": "s", "redirectUri": "https://a.example/cb",
         "provider": "google", "scope": 5},
    )
    assert result.success is False
    assert result.error.code is ErrorCode.AUTH_METHOD_REQUIRED
    assert result.steps == ()
    assert len(store) == 0


def test_per_call_timeout_overrides_config(core_config, store, issuer) -> None:
    release = threading.Event()

    def slow_lookup(key, perms):
        release.wait(0.3)
        return True

    auth = AuthCoordinator(core_config, session_store=store, token_issuer=issuer, api_key_lookup=slow_lookup)
    try:
        result = auth.authenticate(AuthRequest(APIKeyConfig(VALID_API_KEY), timeout=0.05))
        from_mapping = auth.authenticate({"method": "api-key", "apiKey": VALID_API_KEY, "timeout": 0.05})
    finally:
        release.set()
        auth.shutdown()
    for outcome in (result, from_mapping):
        assert outcome.success is False
        assert outcome.error.code is ErrorCode.EXTERNAL_TIMEOUT
        assert outcome.error.recoverable is True
    assert len(store) == 0


def test_triple_per_call_timeout(core_config, store, issuer) -> None:
    release = threading.Event()

    def slow_lookup(key, perms):
        release.wait(0.3)
        return True

    auth = AuthCoordinator(core_config, session_store=store, token_issuer=issuer, api_key_lookup=slow_lookup)
    try:
        result = auth.authenticate_triple(VALID_API_KEY, "x.y.z", OAUTH2, timeout=0.05)
    finally:
        release.set()
        auth.shutdown()
    assert result.error.code is ErrorCode.EXTERNAL_TIMEOUT
    assert len(result.steps) == 1


def test_tier_configs_keep_string_permissions_whole() -> None:
    assert APIKeyConfig(VALID_API_KEY, permissions="basic,chat").permissions == ("basic", "chat")
    assert OAuth2Config("c", scope="openid email").scope == ("openid", "email")


def test_oauth2_scope_string_grants_whole_scopes(coordinator) -> None:
    config = OAuth2Config(
        client_id="client-123",
        client_secret="client-secret",
        redirect_uri="https://app.example.com/auth/callback/google",
        provider="google",
        scope="openid",
    )
    result = coordinator.authenticate(AuthRequest(config))
    assert result.success is True
    assert "openid" in result.permissions
    assert "o" not in result.permissions
