"""
Configuration Module
====================

Immutable, environment-aware configuration for the authentication core.

Security Features:
- Immutable configuration after initialization
- Environment variable override support (AGENTAUTH_ prefix)
- Sensitive keys are never taken from the generic override parser
- The token signing secret is never shown in repr
"""

from __future__ import annotations

import hashlib
import os
import platform
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Optional

from agentauth.security import constants as c


_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "private", "credential", "salt",
})

SECRET_ENV_SUFFIX: Final[str] = "JWT_SECRET"


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "agentauth" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "agentauth"
    else:  # Linux and others
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "agentauth" / "logs"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class PasswordConfig:
    """Argon2id cost parameters and strength policy."""

    memory_cost_kb: int = c.ARGON2_MEMORY_COST_KB
    time_cost: int = c.ARGON2_TIME_COST
    parallelism: int = c.ARGON2_PARALLELISM
    hash_length: int = c.ARGON2_HASH_LENGTH
    min_strength_score: int = c.MIN_STRENGTH_SCORE
    hashing_workers: int = c.HASHING_WORKERS

    def __post_init__(self) -> None:
        for name in ("memory_cost_kb", "time_cost", "parallelism", "hash_length", "hashing_workers"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not 0 <= self.min_strength_score <= c.MAX_STRENGTH_SCORE:
            raise ValueError(f"min_strength_score must be between 0 and {c.MAX_STRENGTH_SCORE}")


@dataclass(frozen=True, slots=True)
class SessionConfig:
    """Session lifetime and sweep cadence."""

    timeout_ms: int = c.SESSION_TIMEOUT_MS
    sweep_interval_seconds: float = c.SESSION_SWEEP_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("Session timeout must be positive")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")


@dataclass(frozen=True, slots=True)
class TokenConfig:
    """Bearer token signing configuration."""

    secret: str = field(default_factory=lambda: secrets.token_hex(c.TOKEN_SECRET_BYTES), repr=False)
    ttl_seconds: int = c.TOKEN_TTL_SECONDS
    algorithm: str = c.TOKEN_ALGORITHM

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("Token secret cannot be empty")
        if self.ttl_seconds <= 0:
            raise ValueError("Token ttl must be positive")
        if not self.algorithm.startswith("HS"):
            raise ValueError("Only HMAC token algorithms are supported")


@dataclass(frozen=True, slots=True)
class ExternalConfig:
    """Timeouts and pools for injected lookups."""

    lookup_timeout_seconds: float = c.LOOKUP_TIMEOUT_SECONDS
    lookup_workers: int = c.LOOKUP_WORKERS
    api_key_prefix: str = c.API_KEY_PREFIX
    api_key_min_length: int = c.API_KEY_MIN_LENGTH

    def __post_init__(self) -> None:
        if self.lookup_timeout_seconds <= 0:
            raise ValueError("Lookup timeout must be positive")
        if self.lookup_workers <= 0:
            raise ValueError("Lookup workers must be positive")
        if not self.api_key_prefix:
            raise ValueError("API key prefix cannot be empty")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False
    log_dir: Path = field(default_factory=_get_default_log_dir)

    def __post_init__(self) -> None:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


class AuthCoreConfig:
    """
    Centralized, immutable configuration with environment override support.

    Usage:
        config = AuthCoreConfig.load()
        timeout = config.session.timeout_ms
        ttl = config.token.ttl_seconds

    Environment variables are prefixed with AGENTAUTH_ and use double
    underscores for nesting:
        AGENTAUTH_SESSION__TIMEOUT_MS=60000
        AGENTAUTH_PASSWORD__TIME_COST=4
        AGENTAUTH_LOGGING__LEVEL=DEBUG
        AGENTAUTH_JWT_SECRET=...   (the only way to set the signing secret)
    """

    __slots__ = ("_password", "_session", "_token", "_external", "_logging", "_frozen", "_config_hash")

    _instance: Optional[AuthCoreConfig] = None

    _SECTIONS: Final[dict[str, type]] = {
        "password": PasswordConfig,
        "session": SessionConfig,
        "token": TokenConfig,
        "external": ExternalConfig,
        "logging": LoggingConfig,
    }

    def __init__(
        self,
        password: Optional[PasswordConfig] = None,
        session: Optional[SessionConfig] = None,
        token: Optional[TokenConfig] = None,
        external: Optional[ExternalConfig] = None,
        logging: Optional[LoggingConfig] = None,
    ) -> None:
        """Initialize configuration. Use AuthCoreConfig.load() for standard initialization."""
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_password", password or PasswordConfig())
        object.__setattr__(self, "_session", session or SessionConfig())
        object.__setattr__(self, "_token", token or TokenConfig())
        object.__setattr__(self, "_external", external or ExternalConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Hash of the non-secret configuration for integrity checking."""
        config_str = f"{self._password}|{self._session}|{self._token}|{self._external}|{self._logging}"
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def password(self) -> PasswordConfig:
        return self._password

    @property
    def session(self) -> SessionConfig:
        return self._session

    @property
    def token(self) -> TokenConfig:
        return self._token

    @property
    def external(self) -> ExternalConfig:
        return self._external

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def config_hash(self) -> str:
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "AGENTAUTH") -> AuthCoreConfig:
        """
        Load configuration with environment variable overrides.

        Args:
            env_prefix: Prefix for environment variables (default: AGENTAUTH)

        Returns:
            Configured AuthCoreConfig instance

        Raises:
            ValueError: If an override has the wrong type or fails validation
        """
        env_overrides = cls._parse_env_overrides(env_prefix)

        section_kwargs: dict[str, dict[str, Any]] = {name: {} for name in cls._SECTIONS}
        for dotted, raw in env_overrides.items():
            section, _, key = dotted.partition(".")
            if section not in cls._SECTIONS or not key:
                continue
            section_kwargs[section][key] = cls._coerce(cls._SECTIONS[section], key, raw)

        secret = os.environ.get(f"{env_prefix.upper()}_{SECRET_ENV_SUFFIX}")
        if secret:
            section_kwargs["token"]["secret"] = secret

        built = {
            name: section_type(**section_kwargs[name]) if section_kwargs[name] else None
            for name, section_type in cls._SECTIONS.items()
        }
        return cls(**built)

    @staticmethod
    def _coerce(section_type: type, key: str, raw: str) -> Any:
        """Convert a raw env string to the declared field type."""
        fields = section_type.__dataclass_fields__
        if key not in fields:
            raise ValueError(f"Unknown configuration key: {section_type.__name__}.{key}")
        default = fields[key].default
        if isinstance(default, bool):
            return _as_bool(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        if key == "log_dir":
            return Path(raw)
        return raw

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                # AGENTAUTH_SECTION__KEY -> section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                if "." not in config_key:
                    continue
                # SECURITY: never take secrets from generic overrides
                if _is_sensitive_key(config_key.rsplit(".", 1)[1]):
                    continue

                overrides[config_key] = value

        return overrides

    @classmethod
    def get_instance(cls) -> AuthCoreConfig:
        """Get or create the singleton configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance. Use only for testing."""
        cls._instance = None

    def __repr__(self) -> str:
        """Safe string representation without the signing secret."""
        return f"AuthCoreConfig(hash={self._config_hash})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after initialization."""
        if getattr(self, "_frozen", False):
            raise AttributeError("AuthCoreConfig is immutable after initialization")
        super().__setattr__(name, value)
