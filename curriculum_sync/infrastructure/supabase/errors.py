"""
Classification of Supabase/PostgREST failures into the engine's error taxonomy.

This is the only place that inspects remote error codes and messages; the
engine above it works with typed errors (SchemaDriftError carries the column).
"""

import re
from typing import Any, Dict, Optional, Tuple

import httpx

from curriculum_sync.domain.exceptions import (
    ConstraintViolationError,
    NotFoundError,
    RemoteStoreError,
    SchemaDriftError,
    TransportError,
)

SCHEMA_DRIFT_CODES = frozenset({"PGRST204", "42703"})
CONSTRAINT_CODES = frozenset({"23502", "23503", "23505", "23514", "42501"})
NOT_FOUND_CODES = frozenset({"PGRST116"})

_COLUMN_PATTERNS = (
    re.compile(r"could not find the '([^']+)' column", re.IGNORECASE),
    re.compile(
        r'column\s+"?(?:\w+\.)?(\w+)"?\s+(?:of relation\s+"[^"]+"\s+)?does not exist',
        re.IGNORECASE,
    ),
)

_TRANSIENT_MARKERS = (
    "readerror",
    "connecterror",
    "remoteprotocolerror",
    "timeouterror",
    "pooltimeout",
    "temporarily unavailable",
    "connection reset",
    "broken pipe",
    "502",
    "503",
    "504",
    "bad gateway",
    "json could not be generated",
)


def _error_fields(exc: BaseException) -> Tuple[Optional[str], str]:
    payload: Dict[str, Any] = {}
    if exc.args and isinstance(exc.args[0], dict):
        payload = exc.args[0]
    code = getattr(exc, "code", None) or payload.get("code")
    message = getattr(exc, "message", None) or payload.get("message") or str(exc)
    return (str(code) if code is not None else None, str(message))


def extract_missing_column(message: str) -> Optional[str]:
    for pattern in _COLUMN_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return match.group(1)
    return None


def is_transient_transport_error(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException, ConnectionError, TimeoutError)):
        return True
    name = exc.__class__.__name__.lower()
    text = str(exc or "").lower()
    if any(marker in name for marker in _TRANSIENT_MARKERS):
        return True
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def classify_remote_error(exc: BaseException, *, table: Optional[str] = None) -> RemoteStoreError:
    if isinstance(exc, RemoteStoreError):
        return exc

    code, message = _error_fields(exc)

    if code in SCHEMA_DRIFT_CODES:
        column = extract_missing_column(message)
        if column:
            return SchemaDriftError(message, column=column, table=table, code=code)
        return RemoteStoreError(message, table=table, code=code)
    if code in CONSTRAINT_CODES:
        return ConstraintViolationError(message, table=table, code=code)
    if code in NOT_FOUND_CODES:
        return NotFoundError(message, table=table, code=code)
    if is_transient_transport_error(exc):
        return TransportError(message, table=table, code=code)
    return RemoteStoreError(message, table=table, code=code)
