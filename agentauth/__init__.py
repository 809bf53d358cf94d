"""
agentauth - Authentication and Session Lifecycle Engine
=======================================================

Accepts credentials through three trust tiers (API key, bearer token,
OAuth2 client credentials), turns a successful check into a time-bounded
session plus a signed token, and enforces password-hashing policy.

Security Notice:
- No secrets are logged
- Fail-closed design pattern
- Every failure is returned as a structured AuthError
"""

from agentauth.core.config import AuthCoreConfig
from agentauth.core.logging import configure_logging, get_secure_logger
from agentauth.core.auth import AuthCoordinator

__version__ = "0.1.0"
__author__ = "agentauth Team"

__all__ = [
    "AuthCoreConfig",
    "AuthCoordinator",
    "configure_logging",
    "get_secure_logger",
    "__version__",
]
