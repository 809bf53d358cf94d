"""
Security module - shared security constants.

Security Considerations:
- Only approved primitives (Argon2id for passwords, HMAC-SHA256 for tokens)
- No custom cryptography implementations
"""

from agentauth.security.constants import (
    API_KEY_PREFIX,
    API_KEY_MIN_LENGTH,
    ARGON2_MEMORY_COST_KB,
    ARGON2_TIME_COST,
    ARGON2_PARALLELISM,
    ARGON2_HASH_LENGTH,
    MIN_STRENGTH_SCORE,
    TOKEN_ALGORITHM,
)

__all__ = [
    "API_KEY_PREFIX",
    "API_KEY_MIN_LENGTH",
    "ARGON2_MEMORY_COST_KB",
    "ARGON2_TIME_COST",
    "ARGON2_PARALLELISM",
    "ARGON2_HASH_LENGTH",
    "MIN_STRENGTH_SCORE",
    "TOKEN_ALGORITHM",
]
