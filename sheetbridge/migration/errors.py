"""
Error taxonomy for the migration engine.

Record-level problems (``RecordValidationError``) drop a single record; transient
infrastructure failures are retried at chunk granularity; anything raised while
fetching a stage's candidate list aborts the run.
"""

from __future__ import annotations

import re
import socket
import ssl

import requests
from sqlalchemy.exc import DisconnectionError, OperationalError


class MigrationError(RuntimeError):
    """Base error for migration failures."""


class SourceApiError(MigrationError):
    """Raised when the legacy platform API cannot be read."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceRateLimitedError(SourceApiError):
    """Raised when the API keeps answering 429 after every retry."""


class SourceConfigError(MigrationError):
    """Raised when the source client is missing its base URL or token."""


class TargetStoreError(MigrationError):
    """Raised for misuse of the target store (unknown table or column, unsupported dialect)."""


class MappingConflictError(MigrationError):
    """Raised when recording a mapping would break the one-to-one source/target pairing."""


class StageOrderError(MigrationError):
    """Raised when a stage is registered before one of its dependencies."""


class MigrationAbortedError(MigrationError):
    """Raised when a stage cannot read its candidate list; aborts the whole run."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"Stage '{stage}' could not fetch its candidates: {cause}")
        self.stage = stage
        self.cause = cause
        self.report = None


class ReconciliationError(MigrationError):
    """Raised when reconciliation input is inconsistent or deletion is not confirmed."""


class RecordValidationError(ValueError):
    """A single source record cannot be migrated (missing required field or reference)."""

    def __init__(self, source_id: str | None, reason: str) -> None:
        super().__init__(f"{source_id or '<no id>'}: {reason}")
        self.source_id = source_id
        self.reason = reason


TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    requests.ConnectionError,
    requests.Timeout,
    ssl.SSLError,
    socket.timeout,
    ConnectionError,
    TimeoutError,
    OperationalError,
    DisconnectionError,
)

# Cloudflare "SSL handshake failed" status surfaced in proxy error bodies.
_HANDSHAKE_STATUS = re.compile(r"\b525\b")

TRANSIENT_MESSAGE_MARKERS: tuple[str, ...] = (
    "ssl handshake",
    "handshake failed",
    "connection reset",
    "connection refused",
    "network",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "database is locked",
)


def is_transient_error(exc: BaseException) -> bool:
    """Return True when ``exc`` looks like a network, TLS or timeout failure worth retrying."""

    if isinstance(exc, (RecordValidationError, MappingConflictError)):
        return False
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return True
    if isinstance(exc, SourceApiError) and exc.status_code is not None:
        return exc.status_code == 429 or exc.status_code >= 500
    message = str(exc).lower()
    if _HANDSHAKE_STATUS.search(message):
        return True
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


__all__ = [
    "MappingConflictError",
    "MigrationAbortedError",
    "MigrationError",
    "ReconciliationError",
    "RecordValidationError",
    "SourceApiError",
    "SourceConfigError",
    "SourceRateLimitedError",
    "StageOrderError",
    "TargetStoreError",
    "TRANSIENT_EXCEPTIONS",
    "is_transient_error",
]
