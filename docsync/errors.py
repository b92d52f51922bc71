"""Exception types raised across docsync."""

from enum import Enum


class DocSyncError(Exception):
    """Base class for all docsync errors."""


class MalformedRecordError(DocSyncError, ValueError):
    """A payload could not be turned into a valid document or record."""


class RecordNotFoundError(DocSyncError, KeyError):
    """No local record exists for the requested identity."""


class SyncError(DocSyncError):
    """Base class for reconciliation failures."""


class RetryableSyncError(SyncError):
    """The remote could not be reached or refused temporarily.

    The local record is left exactly as it was, so the same operation can be
    retried in a later pass.
    """


class IdentityConflictError(SyncError):
    """Local and remote copies disagree on an identity that is assigned once."""

    def __init__(
        self,
        unique_id: str,
        local_id: str,
        remote_id: str,
        field: str = "internal_id",
    ):
        super().__init__(
            f"Record {unique_id} is bound to {field} {local_id}, "
            f"remote reported {remote_id}"
        )
        self.field = field
        self.unique_id = unique_id
        self.local_id = local_id
        self.remote_id = remote_id


class RemoteErrorKind(Enum):
    """Classification of remote failures."""

    NETWORK = "network"
    CONFLICT = "conflict"
    VALIDATION = "validation"


class RemoteError(DocSyncError):
    """Failure reported by a remote client."""

    def __init__(
        self,
        kind: RemoteErrorKind,
        message: str,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind == RemoteErrorKind.NETWORK
