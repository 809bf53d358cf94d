"""
Utils module - Utility functions and helpers.
"""

from agentauth.utils.validators import (
    ValidationError,
    validate_email,
    validate_redirect_uri,
    validate_string_safe,
)

__all__ = [
    "ValidationError",
    "validate_email",
    "validate_redirect_uri",
    "validate_string_safe",
]
