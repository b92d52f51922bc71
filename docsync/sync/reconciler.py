"""Push/pull reconciliation of single records against the remote store.

Per-record lifecycle::

    Local --push--> Pushed --local edit--> Stale --push--> Pushed

Every state change is applied to a copy of the record and only swapped in
after the local store has saved it, so a failed or cancelled step leaves
the record exactly as it was.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from ..errors import IdentityConflictError, RemoteError, RetryableSyncError, SyncError
from ..model import ChangeHistoryBuilder, History, Record, User
from ..model.history import HISTORIES
from ..model.record import (
    DEFAULT_RECORD_TYPE,
    LOCAL_BOOKKEEPING_FIELDS,
    UNIQUE_IDENTIFIER,
)
from ..storage import LocalStore
from ..timestamps import format_timestamp
from .remote_client import RemoteClient

logger = logging.getLogger(__name__)


class PushStatus(Enum):
    """Result of pushing one record."""

    PUSHED = "pushed"
    SKIPPED = "skipped"  # Not dirty, nothing sent


class MergeStatus(Enum):
    """Result of merging one remote record."""

    CREATED = "created"  # No local copy existed
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED_DIRTY = "skipped_dirty"  # Local copy has unpushed edits


@dataclass
class PushOutcome:
    status: PushStatus
    record: Record


@dataclass
class MergeOutcome:
    status: MergeStatus
    record: Record
    history: History | None = None


class SyncReconciler:
    """Reconciles local records with their remote counterparts."""

    def __init__(
        self,
        remote: RemoteClient,
        store: LocalStore,
        clock: Callable[[], datetime] = datetime.now,
        excluded_keys: Iterable[str] = (),
    ):
        """Initialize the reconciler.

        Args:
            remote: Remote store client.
            store: Local record store.
            clock: Source of the current time.
            excluded_keys: Extra keys never recorded in histories.
        """
        self.remote = remote
        self.store = store
        self.clock = clock
        self.excluded_keys = tuple(excluded_keys)

    def _now(self) -> str:
        return format_timestamp(self.clock())

    async def push(self, record: Record) -> PushOutcome:
        """Push a record if it is dirty.

        On success the record gets its internal_id, ``synced=True`` and a
        fresh ``last_synced_at``; nothing else changes.

        Raises:
            RetryableSyncError: The remote was unreachable; record untouched.
            IdentityConflictError: The remote assigned a different internal_id.
            SyncError: The remote rejected the record.
        """
        if not record.is_dirty:
            logger.debug(f"Skipping push of clean record {record.unique_id}")
            return PushOutcome(PushStatus.SKIPPED, record)

        try:
            response = await self.remote.push(record.record_type, record.to_dict())
        except RemoteError as e:
            if e.retryable:
                raise RetryableSyncError(
                    f"Push of {record.unique_id} failed: {e}"
                ) from e
            raise SyncError(
                f"Push of {record.unique_id} rejected ({e.kind.value}): {e}"
            ) from e

        if record.internal_id and record.internal_id != response.internal_id:
            raise IdentityConflictError(
                record.unique_id, record.internal_id, response.internal_id
            )

        updated = record.copy()
        updated.internal_id = response.internal_id
        updated.synced = True
        updated.last_synced_at = self._now()
        self.store.save(updated)

        record.document = updated.document
        logger.info(
            f"Pushed {record.record_type} {record.unique_id} "
            f"(internal_id={record.internal_id})"
        )
        return PushOutcome(PushStatus.PUSHED, record)

    def _find_local(self, remote: Record) -> Record | None:
        local = None
        if remote.unique_id:
            local = self.store.load(remote.unique_id)
        if local is None and remote.internal_id:
            local = self.store.load_by_internal_id(remote.internal_id, remote.record_type)
        return local

    def _check_identity(self, local: Record, remote: Record) -> None:
        """Raise if the two copies are bound to different identities."""
        if remote.unique_id and local.unique_id != remote.unique_id:
            raise IdentityConflictError(
                local.unique_id, local.unique_id, remote.unique_id, UNIQUE_IDENTIFIER
            )
        if (
            local.internal_id
            and remote.internal_id
            and local.internal_id != remote.internal_id
        ):
            raise IdentityConflictError(
                local.unique_id, local.internal_id, remote.internal_id
            )

    async def pull(
        self,
        remote_payload: dict[str, Any],
        user: User,
        record_type: str = DEFAULT_RECORD_TYPE,
    ) -> MergeOutcome:
        """Merge one remote record into the local store.

        The delta between the local and remote versions is recorded as a
        history entry attributed to ``user``, then the remote values replace
        the local ones, keeping local sync bookkeeping.

        Raises:
            MalformedRecordError: The payload is not a valid record.
            IdentityConflictError: Local and remote identities disagree.
        """
        remote = Record.from_dict(remote_payload, record_type)
        local = self._find_local(remote)

        if local is not None:
            self._check_identity(local, remote)
            if local.is_dirty:
                logger.debug(f"Not merging over unpushed edits of {local.unique_id}")
                return MergeOutcome(MergeStatus.SKIPPED_DIRTY, local)

        if not remote.unique_id:
            if local is not None:
                remote.set(UNIQUE_IDENTIFIER, local.unique_id)
            else:
                remote.generate_unique_id()

        builder = ChangeHistoryBuilder(user, self.clock, self.excluded_keys)
        if local is None:
            base = remote.identity_only()
            history = builder.between(base, remote) or builder.creation(remote)
        else:
            base = local
            history = builder.between(base, remote)

        merged = Record(remote.document.copy(), record_type)
        for key in LOCAL_BOOKKEEPING_FIELDS:
            merged.set(key, base.get(key))
        if not merged.internal_id:
            merged.internal_id = base.internal_id

        known = [History.from_dict(item).to_dict() for item in base.get(HISTORIES) or []]
        new_entries = []
        for entry in remote.history.entries():
            raw = entry.to_dict()
            if raw not in known:
                known.append(raw)
                new_entries.append(raw)
        merged.set(HISTORIES, (base.get(HISTORIES) or []) + new_entries)

        if (
            local is not None
            and history is None
            and not new_entries
            and merged.internal_id == local.internal_id
        ):
            logger.debug(f"Remote copy of {local.unique_id} matches local")
            return MergeOutcome(MergeStatus.UNCHANGED, local)

        merged.history.append(history)
        merged.synced = True
        merged.last_synced_at = self._now()
        self.store.save(merged)

        status = MergeStatus.CREATED if local is None else MergeStatus.UPDATED
        logger.info(f"Merged remote {record_type} {merged.unique_id}: {status.value}")
        return MergeOutcome(status, merged, history)
