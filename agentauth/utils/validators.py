"""
Validation Utilities
====================

Shape checks for credentials and identifiers. Everything here is pure and
side-effect free so it can run before any lookup or session is touched.
"""

from __future__ import annotations

import re
from typing import Final, Optional
from urllib.parse import urlparse


_EMAIL_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_ALLOWED_REDIRECT_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https"})


class ValidationError(ValueError):
    """Raised when validation fails."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.field_name = field_name


def validate_string_safe(
    value: object,
    min_length: int = 0,
    max_length: int = 4096,
    allow_empty: bool = False,
    field_name: str = "value",
) -> str:
    """
    Validate a string value for safety.

    Args:
        value: The value to validate
        min_length: Minimum allowed length
        max_length: Maximum allowed length
        allow_empty: If False, empty strings are rejected
        field_name: Name of the field for error messages

    Returns:
        Validated string

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field_name)

    if not allow_empty and not value:
        raise ValidationError(f"{field_name} cannot be empty", field_name)

    if len(value) < min_length:
        raise ValidationError(
            f"{field_name} must be at least {min_length} characters", field_name
        )

    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters", field_name
        )

    # Null bytes never belong in a credential
    if "\x00" in value:
        raise ValidationError(f"{field_name} contains invalid characters", field_name)

    return value


def validate_email(value: object, field_name: str = "email") -> str:
    """Validate an email address and return it lower-cased."""
    email = validate_string_safe(value, max_length=254, field_name=field_name)
    if not _EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format", field_name)
    return email.lower()


def validate_redirect_uri(value: object, field_name: str = "redirect_uri") -> str:
    """Validate that a redirect URI is an absolute http(s) URL."""
    uri = validate_string_safe(value, max_length=2048, field_name=field_name)
    parsed = urlparse(uri)
    if parsed.scheme not in _ALLOWED_REDIRECT_SCHEMES or not parsed.netloc:
        raise ValidationError(f"{field_name} must be an absolute http(s) URL", field_name)
    return uri
