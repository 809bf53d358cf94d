"""
agentauth Authentication Module
===============================

Provides:
- Argon2id password hashing with a bounded hashing pool
- Signed, expiring bearer tokens
- Thread-safe session store with expiry sweep
- Three-tier authentication coordinator

Security Properties:
- Memory-hard password hashing
- Constant-time verification
- Session id rotation on refresh
- Structured errors, never raw library messages
"""

from agentauth.core.auth.argon2_auth import (
    Argon2Config,
    HashingPool,
    PasswordHasher,
    StrengthResult,
    generate_secure_password,
)
from agentauth.core.auth.coordinator import AuthCoordinator
from agentauth.core.auth.errors import AuthCoreError, AuthError, ErrorCode
from agentauth.core.auth.models import (
    APIKeyConfig,
    AuthMethod,
    AuthRequest,
    AuthResult,
    AuthStep,
    JWTConfig,
    OAuth2Config,
    SecurityLevel,
    Session,
    UserInfo,
)
from agentauth.core.auth.session_control import SessionStore
from agentauth.core.auth.tokens import TokenIssuer
from agentauth.core.auth.user_manager import InMemoryUserStore, UserManager

__all__ = [
    "APIKeyConfig",
    "Argon2Config",
    "AuthCoordinator",
    "AuthCoreError",
    "AuthError",
    "AuthMethod",
    "AuthRequest",
    "AuthResult",
    "AuthStep",
    "ErrorCode",
    "HashingPool",
    "InMemoryUserStore",
    "JWTConfig",
    "OAuth2Config",
    "PasswordHasher",
    "SecurityLevel",
    "Session",
    "SessionStore",
    "StrengthResult",
    "TokenIssuer",
    "UserInfo",
    "UserManager",
    "generate_secure_password",
]
