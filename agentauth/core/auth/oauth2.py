"""
OAuth2 Providers
================

Provider registry, authorization URL construction and the verifier
capability the coordinator consults for the OAuth2 tier.

No authorization-code exchange happens here; a verifier only decides
whether a set of client credentials is acceptable.
"""

from __future__ import annotations

import hmac
import os
import secrets
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Protocol, Union, runtime_checkable
from urllib.parse import urlencode

from agentauth.core.auth.models import OAuth2Config, UserInfo


@dataclass(frozen=True, slots=True)
class OAuth2Provider:
    """Static description of an OAuth2 provider."""
    name: str
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str
    scope: tuple[str, ...]
    auth_url: str
    token_url: str
    user_info_url: str
    extra_params: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


def _base_url() -> str:
    return os.environ.get("PUBLIC_BASE_URL", "http://localhost:4321").rstrip("/")


def default_providers() -> Mapping[str, OAuth2Provider]:
    """
    Build the google/github registry.

    Client ids and secrets come from ``GOOGLE_CLIENT_ID``,
    ``GOOGLE_CLIENT_SECRET``, ``GITHUB_CLIENT_ID`` and ``GITHUB_CLIENT_SECRET``;
    redirect URIs hang off ``PUBLIC_BASE_URL``.
    """
    base = _base_url()
    return MappingProxyType({
        "google": OAuth2Provider(
            name="google",
            client_id=os.environ.get("GOOGLE_CLIENT_ID", "placeholder-google-client-id"),
            client_secret=os.environ.get("GOOGLE_CLIENT_SECRET", "placeholder-google-client-secret"),
            redirect_uri=f"{base}/auth/callback/google",
            scope=("openid", "email", "profile"),
            auth_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            user_info_url="https://www.googleapis.com/oauth2/v2/userinfo",
            extra_params=MappingProxyType({"access_type": "offline", "prompt": "consent"}),
        ),
        "github": OAuth2Provider(
            name="github",
            client_id=os.environ.get("GITHUB_CLIENT_ID", "placeholder-github-client-id"),
            client_secret=os.environ.get("GITHUB_CLIENT_SECRET", "placeholder-github-client-secret"),
            redirect_uri=f"{base}/auth/callback/github",
            scope=("user:email",),
            auth_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            user_info_url="https://api.github.com/user",
        ),
    })


def generate_state() -> str:
    """Unguessable value for the OAuth2 ``state`` parameter."""
    return secrets.token_urlsafe(16)


def is_valid_provider(provider: object, providers: Optional[Mapping[str, OAuth2Provider]] = None) -> bool:
    registry = default_providers() if providers is None else providers
    return isinstance(provider, str) and provider in registry


def build_authorization_url(
    provider: str,
    state: Optional[str] = None,
    providers: Optional[Mapping[str, OAuth2Provider]] = None,
) -> str:
    """
    Build the provider's authorization URL for the authorization-code flow.

    Raises:
        ValueError: If the provider is not registered
    """
    registry = default_providers() if providers is None else providers
    config = registry.get(provider)
    if config is None:
        raise ValueError(f"Unsupported OAuth2 provider: {provider}")

    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": " ".join(config.scope),
        "state": state or generate_state(),
    }
    params.update(config.extra_params)
    return f"{config.auth_url}?{urlencode(params)}"


VerifierResult = Union[bool, UserInfo, None]


@runtime_checkable
class OAuth2Verifier(Protocol):
    def __call__(self, config: OAuth2Config) -> VerifierResult:
        ...


class RegisteredProviderVerifier:
    """
    Accepts credentials naming a registered provider.

    With ``pin_credentials=True`` the client id and secret must also match
    the registered provider's, compared in constant time.
    """

    __slots__ = ("_providers", "_pin")

    def __init__(
        self,
        providers: Optional[Mapping[str, OAuth2Provider]] = None,
        pin_credentials: bool = False,
    ) -> None:
        self._providers = default_providers() if providers is None else providers
        self._pin = pin_credentials

    def __call__(self, config: OAuth2Config) -> VerifierResult:
        provider = self._providers.get(config.provider)
        if provider is None:
            return False
        if not self._pin:
            return True
        id_ok = hmac.compare_digest(config.client_id.encode(), provider.client_id.encode())
        secret_ok = hmac.compare_digest(config.client_secret.encode(), provider.client_secret.encode())
        return id_ok and secret_ok
