"""Error taxonomy for the synchronization core."""

from typing import Optional


class SyncError(Exception):
    """Base class for every failure surfaced by the sync engine.

    Each error keeps the underlying exception in ``cause`` so callers can
    log or report it without unwrapping ``__cause__`` themselves.
    """

    kind = "sync"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        message = super().__str__()
        if self.cause is not None:
            return f"{message}: {self.cause}"
        return message


class TransportError(SyncError):
    """The remote source could not be reached or answered with an error."""

    kind = "transport"

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, cause)
        self.status_code = status_code


class EmptySnapshotError(TransportError):
    """The remote source returned no items and empty snapshots are rejected."""

    kind = "empty_snapshot"


class DecodingError(SyncError):
    """The remote payload could not be decoded into items."""

    kind = "decoding"


class PersistenceError(SyncError):
    """A local store read or write failed."""

    kind = "persistence"
