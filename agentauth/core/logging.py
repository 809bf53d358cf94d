"""
Secure Logging Module
=====================

Logging for the authentication core. Credentials pass through this package
constantly, so every handler built here carries a redacting filter.

Security Features:
- Redaction of passwords, client secrets, API keys, bearer tokens, JWTs
  and Argon2 hashes before a record is formatted
- Correlation ids stamped on records emitted through CorrelationAdapter
- Rotating log files with size limits
- JSON output for log aggregation
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Final, Iterable, MutableMapping, Optional, Pattern


_REDACTED: Final[str] = "[REDACTED]"

# (label, pattern); matches are replaced with "<label>=[REDACTED]"
_CREDENTIAL_PATTERNS: Final[tuple[tuple[str, Pattern[str]], ...]] = (
    ("password", re.compile(r'(?i)\b(?:password|passwd|pwd)\s*[=:]\s*["\']?[^\s"\',]+["\']?')),
    ("client_secret", re.compile(r'(?i)\b(?:client[_-]?secret|secret)\s*[=:]\s*["\']?[^\s"\',]+["\']?')),
    ("api_key", re.compile(r'(?i)\b(?:api[_-]?key|apikey)\s*[=:]\s*["\']?[^\s"\',]+["\']?')),
    ("bearer", re.compile(r'(?i)\bbearer\s+[A-Za-z0-9\-_.~+/]+=*')),
    ("api_key", re.compile(r'\bagentui_[A-Za-z0-9\-_]+')),
    ("jwt", re.compile(r'\beyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*')),
    ("argon2_hash", re.compile(r'\$argon2(?:id|i|d)\$[^\s"\']+')),
)

CONSOLE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


def redact(text: str, extra_patterns: Iterable[Pattern[str]] = ()) -> str:
    """Replace every credential-shaped substring of ``text``."""
    for label, pattern in _CREDENTIAL_PATTERNS:
        text = pattern.sub(f"{label}={_REDACTED}", text)
    for pattern in extra_patterns:
        text = pattern.sub(_REDACTED, text)
    return text


class SecureLogFilter(logging.Filter):
    """
    Redacts credentials from a record's message and string arguments.

    Never drops a record. Also guarantees a ``correlation_id`` attribute so
    formats may reference it unconditionally.
    """

    def __init__(self, name: str = "", additional_patterns: Optional[list[Pattern[str]]] = None) -> None:
        super().__init__(name)
        self._extra = tuple(additional_patterns or ())

    def _clean(self, value: Any) -> Any:
        return redact(value, self._extra) if isinstance(value, str) else value

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._clean(record.msg)
        if isinstance(record.args, dict):
            record.args = {key: self._clean(value) for key, value in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self._clean(arg) for arg in record.args)

        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


class StructuredLogFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", None),
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class CorrelationAdapter(logging.LoggerAdapter):
    """
    LoggerAdapter that stamps a correlation id on every record.

    Usage:
        log = CorrelationAdapter(logger, correlation_id)
        log.info("API key accepted")
    """

    def __init__(self, logger: logging.Logger, correlation_id: str) -> None:
        super().__init__(logger, {"correlation_id": correlation_id})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        cid = self.extra["correlation_id"]
        kwargs["extra"] = {"correlation_id": cid, **(kwargs.get("extra") or {})}
        return f"[{cid}] {msg}", kwargs


class SecureRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler that rejects traversal and creates its directory."""

    def __init__(
        self,
        filename: str | Path,
        mode: str = "a",
        maxBytes: int = 10 * 1024 * 1024,
        backupCount: int = 5,
        encoding: str = "utf-8",
    ) -> None:
        if ".." in Path(filename).parts:
            raise ValueError("Log path cannot contain path traversal sequences")

        path = Path(filename).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(str(path), mode=mode, maxBytes=maxBytes, backupCount=backupCount, encoding=encoding)


def _with_filter(handler: logging.Handler, formatter: logging.Formatter, flt: logging.Filter) -> logging.Handler:
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(flt)
    return handler


def get_secure_logger(
    name: str,
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = False,
    enable_json: bool = False,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    fmt: str = CONSOLE_FORMAT,
    datefmt: str = "%Y-%m-%d %H:%M:%S",
) -> logging.Logger:
    """
    Create a logger whose handlers all redact credentials.

    Args:
        name: Logger name (typically __name__ or "agentauth")
        log_dir: Directory for log files (file output needs this)
        level: Logging level
        enable_console: Whether to output to stderr
        enable_file: Whether to output to a rotating file
        enable_json: Whether to use JSON format for file output
        max_file_size: Maximum log file size before rotation
        backup_count: Number of backup files to keep
        fmt: Console format string
        datefmt: Timestamp format

    Returns:
        Configured logger; an already configured logger is returned as is
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper()))
    redactor = SecureLogFilter()

    if enable_console:
        logger.addHandler(_with_filter(
            logging.StreamHandler(sys.stderr), logging.Formatter(fmt, datefmt=datefmt), redactor,
        ))

    if enable_file and log_dir:
        file_handler = SecureRotatingFileHandler(
            Path(log_dir) / f"{name.replace('.', '_')}.log",
            maxBytes=max_file_size,
            backupCount=backup_count,
        )
        formatter = StructuredLogFormatter() if enable_json else logging.Formatter(FILE_FORMAT, datefmt=datefmt)
        logger.addHandler(_with_filter(file_handler, formatter, redactor))

    logger.propagate = False
    return logger


def configure_logging(config: Any = None) -> logging.Logger:
    """
    Configure the ``agentauth`` package logger from a LoggingConfig.

    Call once at application startup; module loggers under ``agentauth.*``
    propagate into it.
    """
    if config is None:
        from agentauth.core.config import AuthCoreConfig
        config = AuthCoreConfig.get_instance().logging

    return get_secure_logger(
        "agentauth",
        log_dir=config.log_dir,
        level=config.level,
        enable_console=config.enable_console,
        enable_file=config.enable_file,
        enable_json=config.enable_json,
        max_file_size=config.max_file_size_bytes,
        backup_count=config.backup_count,
        fmt=config.format,
        datefmt=config.date_format,
    )
