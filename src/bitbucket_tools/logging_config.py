"""Structured logging configuration for bitbucket-tools.

- JSON structured logging with StructuredFormatter
- Logger hierarchy under the bitbucket_tools namespace
- Environment variable control (BITBUCKET_LOG_LEVEL, BITBUCKET_LOG_FORMAT)
- File logging to a per-platform state directory, never to stdout

Stdout is reserved for the agent protocol stream, so handlers write to a log
file or, when file logging is unavailable, to stderr.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

LOGGER_NAMESPACE = "bitbucket_tools"
LOG_FILE_NAME = "bitbucket.log"

# Sensitive keys that should be redacted in log output
SENSITIVE_KEYS = {
    "password", "token", "secret", "apikey", "api_key",
    "authorization", "credential", "auth", "bearer",
}

TRUTHY_VALUES = {"1", "true", "yes", "on"}

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    if lowered in SENSITIVE_KEYS:
        return True
    return any(part in SENSITIVE_KEYS for part in lowered.replace("-", "_").split("_"))


def _redact(value: Any) -> Any:
    """Mask sensitive keys, descending into nested dicts such as headers."""
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if _is_sensitive(str(k)) else _redact(v)
            for k, v in value.items()
        }
    return value


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra`` fields of a record with credentials masked."""
    extras = {
        k: v
        for k, v in vars(record).items()
        if k not in _RESERVED_ATTRS and not k.startswith("_")
    }
    return _redact(extras)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp`` (UTC, 'Z' suffix, taken from the record's creation
    time), ``level``, ``logger``, ``message``, ``context`` (the ``extra``
    fields, present only when there are any) and ``exception``.

    Credentials passed as extras, directly or inside a nested dict such as
    request headers, are replaced by ``[REDACTED]``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = record_context(record)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Single-line text for local debugging (BITBUCKET_LOG_FORMAT=text).

    Extras are appended as ``key=value`` pairs so traversal context such as
    ``description`` and ``page_index`` stays visible.
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        head, sep, trace = line.partition("\n")
        return f"{head} {pairs}{sep}{trace}"


def is_truthy_env(value: Optional[str]) -> bool:
    """Return True for 1/true/yes/on (case-insensitive)."""
    if value is None:
        return False
    return value.strip().lower() in TRUTHY_VALUES


def default_log_directory() -> Path:
    """Platform log directory: LOCALAPPDATA on Windows, ~/Library/Logs on macOS, XDG state elsewhere."""
    if sys.platform == "win32":
        base = os.getenv("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base) / "bitbucket-mcp"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Logs" / "bitbucket-mcp"
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return Path(xdg_state_home) / "bitbucket-mcp"
    return Path.home() / ".local" / "state" / "bitbucket-mcp"


def resolve_log_file() -> Optional[Path]:
    """Resolve the log file path from environment variables.

    Environment Variables:
        BITBUCKET_LOG_DISABLE: Truthy value disables file logging entirely
        BITBUCKET_LOG_FILE: Explicit log file path (wins over directory settings)
        BITBUCKET_LOG_DIR: Base directory (default: platform state directory)
        BITBUCKET_LOG_PER_CWD: Truthy value nests logs under a sanitized cwd subdirectory

    Returns:
        Path to the log file, or None when file logging is disabled or the
        directory cannot be created.
    """
    if is_truthy_env(os.getenv("BITBUCKET_LOG_DISABLE")):
        return None

    explicit_file = os.getenv("BITBUCKET_LOG_FILE", "").strip()
    if explicit_file:
        return Path(explicit_file)

    log_dir_env = os.getenv("BITBUCKET_LOG_DIR", "").strip()
    base_dir = Path(log_dir_env) if log_dir_env else default_log_directory()

    effective_dir = base_dir
    if is_truthy_env(os.getenv("BITBUCKET_LOG_PER_CWD")):
        sanitized_cwd = os.getcwd().replace("/", "_").replace("\\", "_")
        for char in ':*?"<>|':
            sanitized_cwd = sanitized_cwd.replace(char, "")
        effective_dir = base_dir / sanitized_cwd

    try:
        effective_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Unwritable directory: fall back to stderr rather than polluting cwd
        return None

    return effective_dir / LOG_FILE_NAME


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structured logging for all bitbucket_tools loggers.

    Args:
        level: Optional log level override. If not provided, uses
               BITBUCKET_LOG_LEVEL environment variable (default: INFO).

    Environment Variables:
        BITBUCKET_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR). Default: INFO
        BITBUCKET_LOG_FORMAT: Output format (json, text). Default: json
    """
    if level is None:
        level = os.getenv("BITBUCKET_LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    log_format = os.getenv("BITBUCKET_LOG_FORMAT", "json").lower()

    if log_format == "text":
        formatter = TextFormatter()
    else:
        formatter = StructuredFormatter()

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(log_level)

    # Idempotency check: only add handler if none exist
    if not logger.handlers:
        log_file = resolve_log_file()
        if log_file is not None:
            handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
        else:
            handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
