"""Exception types shared by the sync engine and its collaborators."""

from __future__ import annotations

__all__ = [
    "SyncError",
    "BackendError",
    "TransientBackendError",
    "UnexpectedResponseError",
    "StorageWriteError",
]


class SyncError(Exception):
    """Base class for all sync engine failures."""


class BackendError(SyncError):
    """A backend call failed with a (possibly structured) error payload.

    ``code`` carries the backend's structured error code when one is available
    (for PostgREST this is the SQLSTATE such as ``23505`` or a ``PGRST`` code),
    ``status`` the HTTP status of the response.
    """

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, code={self.code!r}, status={self.status!r})"


class TransientBackendError(BackendError):
    """Network unreachable, server-side failure, or timeout. Safe to retry."""


class UnexpectedResponseError(BackendError):
    """The backend answered with a payload the client cannot interpret."""


class StorageWriteError(SyncError):
    """The host key-value store rejected a write (quota, permissions, ...)."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Failed to write {key!r}: {reason}")
        self.key = key
        self.reason = reason
