"""Classification of backend write failures.

A failed ``record_open`` is one of three things: the row already exists
(treated as success), a retryable transport/server problem, or something the
client does not understand. Duplicate detection accepts the structured codes
PostgREST reports, HTTP 409, and, as a compatibility shim for backends that
only report text, messages mentioning "duplicate" or "unique".
"""

from __future__ import annotations

from enum import Enum

import httpx

from ..errors import BackendError, TransientBackendError

__all__ = [
    "FailureKind",
    "DUPLICATE_CODES",
    "classify_failure",
    "is_duplicate_conflict",
    "is_transient_status",
]

# 23505: unique_violation. PGRST116: reported by insert().single() clients on conflict.
DUPLICATE_CODES = frozenset({"23505", "PGRST116"})
_DUPLICATE_MARKERS = ("duplicate", "unique")
_TRANSIENT_STATUSES = frozenset({408, 425, 429})


class FailureKind(str, Enum):
    DUPLICATE = "duplicate"
    TRANSIENT = "transient"
    UNEXPECTED = "unexpected"


def is_transient_status(status: int | None) -> bool:
    if status is None:
        return False
    return status >= 500 or status in _TRANSIENT_STATUSES


def is_duplicate_conflict(error: BaseException, *, match_messages: bool = True) -> bool:
    """Return ``True`` when *error* reports that the row already exists."""

    if isinstance(error, BackendError):
        if error.code is not None:
            if str(error.code) in DUPLICATE_CODES:
                return True
        elif error.status == 409:
            # PostgREST also answers 409 for foreign key violations; trust the code when present.
            return True
    if not match_messages:
        return False
    message = (getattr(error, "message", None) or str(error) or "").lower()
    return any(marker in message for marker in _DUPLICATE_MARKERS)


def classify_failure(error: BaseException, *, match_messages: bool = True) -> FailureKind:
    if is_duplicate_conflict(error, match_messages=match_messages):
        return FailureKind.DUPLICATE
    if isinstance(error, TransientBackendError):
        return FailureKind.TRANSIENT
    if isinstance(error, BackendError) and is_transient_status(error.status):
        return FailureKind.TRANSIENT
    if isinstance(error, (httpx.TransportError, OSError, TimeoutError)):
        return FailureKind.TRANSIENT
    return FailureKind.UNEXPECTED
