"""
Security Constants
==================

Defines security-related constants used throughout agentauth.
Configuration defaults in ``agentauth.core.config`` are derived from these
values; change them only together with the tests that pin them.
"""

from typing import Final

# Argon2id defaults (64 MB, 3 passes, 4 lanes)
ARGON2_MEMORY_COST_KB: Final[int] = 65536
ARGON2_TIME_COST: Final[int] = 3
ARGON2_PARALLELISM: Final[int] = 4
ARGON2_HASH_LENGTH: Final[int] = 32  # 256 bits
ARGON2_SALT_LENGTH: Final[int] = 16  # 128 bits

# Password strength scoring
MAX_STRENGTH_SCORE: Final[int] = 7
MIN_STRENGTH_SCORE: Final[int] = 6
PASSWORD_SYMBOLS: Final[str] = "!@#$%^&*"

# API keys
API_KEY_PREFIX: Final[str] = "agentui_"
API_KEY_MIN_LENGTH: Final[int] = 32
API_KEY_RANDOM_LENGTH: Final[int] = 32

# Sessions
SESSION_TIMEOUT_MS: Final[int] = 24 * 60 * 60 * 1000  # 24 hours
SESSION_SWEEP_INTERVAL_SECONDS: Final[float] = 300.0  # 5 minutes
SESSION_ID_ENTROPY_BYTES: Final[int] = 24

# Tokens
TOKEN_ALGORITHM: Final[str] = "HS256"
TOKEN_TTL_SECONDS: Final[int] = 15 * 60
TOKEN_SECRET_BYTES: Final[int] = 32

# External collaborators
LOOKUP_TIMEOUT_SECONDS: Final[float] = 5.0
LOOKUP_WORKERS: Final[int] = 8
HASHING_WORKERS: Final[int] = 4

# Permission sets
DEFAULT_PERMISSIONS: Final[frozenset[str]] = frozenset({"basic"})
ELEVATED_PERMISSIONS: Final[frozenset[str]] = frozenset(
    {"basic", "chat", "advanced", "enterprise"}
)
ADMIN_PERMISSION: Final[str] = "admin"
