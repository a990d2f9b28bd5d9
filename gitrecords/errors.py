"""
Exception types and error logging for gitrecords.

Validation and lookup errors reach the caller before anything is written.
Local I/O failures surface as plain ``OSError``. ``SyncError`` describes a
failed replication attempt and is carried in a ``SyncResult`` rather than
raised to callers of the repository.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class RecordStoreError(Exception):
    """Base class for gitrecords errors."""


class ValidationError(RecordStoreError, ValueError):
    """Input rejected by business validation. Nothing was written."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DuplicateError(ValidationError):
    """A record with the same id, or the same name ignoring case, exists."""


class NotFoundError(RecordStoreError, LookupError):
    """The operation referenced an id that is not in the collection."""

    def __init__(self, kind: str, id: str):
        super().__init__(f"{kind} record with ID '{id}' not found")
        self.kind = kind
        self.id = id

    def __str__(self) -> str:
        return self.args[0]


class DocumentFormatError(RecordStoreError, ValueError):
    """The on-disk document does not decode to a valid collection."""

    def __init__(self, path: Path, reason: str, *, index: Optional[int] = None):
        where = f"{path}" if index is None else f"{path} (entry {index})"
        super().__init__(f"Invalid collection document {where}: {reason}")
        self.path = path
        self.reason = reason
        self.index = index


class ConfigError(RecordStoreError, ValueError):
    """Configuration is missing or invalid. Fatal at construction time."""


class SyncError(RecordStoreError):
    """A replication step failed (pull, stage, commit, push, auth, network)."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"git {stage} failed: {message}")
        self.stage = stage
        self.message = message


def redact(text: str, secret: Optional[str]) -> str:
    """Remove a credential from text destined for logs."""
    if not secret:
        return text
    return text.replace(secret, "***")


def _error_log_path() -> Path:
    """Resolve error log path, respecting GITRECORDS_CONFIG_DIR."""
    config_dir = os.environ.get("GITRECORDS_CONFIG_DIR")
    if config_dir:
        return Path(config_dir) / "records-errors.log"
    return Path.home() / ".gitrecords" / "records-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; nothing else to do
    return log_path
