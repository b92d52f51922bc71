"""Repository: the entry point for reading, editing and synchronizing records."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable

from .errors import (
    IdentityConflictError,
    MalformedRecordError,
    RecordNotFoundError,
    RemoteError,
    RetryableSyncError,
    SyncError,
)
from .model import ChangeHistoryBuilder, Record, User
from .model.history import HISTORIES
from .model.record import (
    CREATED_AT,
    CREATED_BY,
    INTERNAL_ID,
    LAST_SYNCED_AT,
    LAST_UPDATED_AT,
    SYNCED,
    UNIQUE_IDENTIFIER,
)
from .storage import LocalStore
from .sync import MergeStatus, PushStatus, RemoteClient, SyncReconciler
from .timestamps import format_timestamp

logger = logging.getLogger(__name__)

# Carried over from the stored version on every update
_PRESERVED_FIELDS = (
    INTERNAL_ID,
    CREATED_BY,
    CREATED_AT,
    SYNCED,
    LAST_SYNCED_AT,
    LAST_UPDATED_AT,
    HISTORIES,
)


class SyncStatus(Enum):
    """Status of a synchronization pass."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some records failed
    FAILED = "failed"  # Fatal inconsistency or nothing succeeded
    OFFLINE = "offline"  # Remote unavailable


@dataclass
class SyncFailure:
    """One record (or record type) that could not be reconciled."""

    record_type: str
    operation: str  # "push", "pull" or "pull_all"
    error: str
    unique_id: str | None = None
    retryable: bool = False
    fatal: bool = False


@dataclass
class SyncReport:
    """Result of a synchronization pass."""

    status: SyncStatus = SyncStatus.SUCCESS
    pushed: int = 0
    pulled: int = 0
    skipped: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    timestamp: datetime | None = None

    def _finalize(self) -> None:
        if not self.failures:
            self.status = SyncStatus.SUCCESS
        elif any(f.fatal for f in self.failures):
            self.status = SyncStatus.FAILED
        elif self.pushed or self.pulled or self.skipped:
            self.status = SyncStatus.PARTIAL
        elif all(f.retryable for f in self.failures):
            self.status = SyncStatus.OFFLINE
        else:
            self.status = SyncStatus.FAILED


class Repository:
    """Local record access plus synchronization with the remote store.

    All mutations of a given record identity, local edits and sync steps
    alike, run under that identity's lock.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteClient,
        record_types: Iterable[str] = ("records",),
        clock: Callable[[], datetime] = datetime.now,
        excluded_keys: Iterable[str] = (),
        max_concurrency: int = 4,
    ):
        """Initialize the repository.

        Args:
            store: Local record store.
            remote: Remote store client.
            record_types: Record types handled by ``synchronize``.
            clock: Source of the current time.
            excluded_keys: Extra keys never recorded in histories.
            max_concurrency: Maximum records pushed in parallel.
        """
        self.store = store
        self.remote = remote
        self.record_types = list(record_types)
        self.clock = clock
        self.excluded_keys = tuple(excluded_keys)
        self.max_concurrency = max(1, max_concurrency)
        self.reconciler = SyncReconciler(remote, store, clock, self.excluded_keys)
        # identity -> (lock, number of tasks holding or waiting for it)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    @asynccontextmanager
    async def _locked(self, identity: str) -> AsyncIterator[None]:
        """Hold the lock of one record identity.

        The lock is dropped once no task holds or waits for it.
        """
        lock, users = self._locks.get(identity) or (asyncio.Lock(), 0)
        self._locks[identity] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[identity]
            if users == 1:
                del self._locks[identity]
            else:
                self._locks[identity] = (lock, users - 1)

    def _now(self) -> str:
        return format_timestamp(self.clock())

    # ==================== Local Operations ====================

    def get(self, unique_id: str) -> Record:
        """Load a record.

        Raises:
            RecordNotFoundError: If no record has this unique_identifier.
        """
        record = self.store.load(unique_id)
        if record is None:
            raise RecordNotFoundError(unique_id)
        return record

    async def create_or_update(self, record: Record, user: User) -> Record:
        """Save a new or edited record, appending a history entry for the edit.

        The incoming record replaces the stored field values; identity, sync
        bookkeeping and histories always come from the stored version. If
        nothing auditable changed the stored record is returned untouched.

        Returns:
            The record as stored. ``record`` is updated to match.
        """
        record.generate_unique_id()
        async with self._locked(record.unique_id):
            saved = self._create_or_update(record, user)
        record.document = saved.document.copy()
        return saved

    def _create_or_update(self, record: Record, user: User) -> Record:
        now = self._now()
        builder = ChangeHistoryBuilder(user, self.clock, self.excluded_keys)
        existing = self.store.load(record.unique_id)
        updated = record.copy()

        if existing is None:
            if not updated.created_by:
                updated.created_by = user.user_name
            if not updated.created_at:
                updated.created_at = now
            updated.set(HISTORIES, None)

            history = builder.between(
                updated.identity_only(), updated
            ) or builder.creation(updated)
            logger.info(f"Creating {updated.record_type} {updated.unique_id}")
        else:
            for key in _PRESERVED_FIELDS:
                updated.set(key, existing.get(key))
            history = builder.between(existing, updated)
            if history is None:
                logger.debug(f"No changes to {updated.unique_id}, not saving")
                return existing
            logger.info(
                f"Updating {updated.record_type} {updated.unique_id}: "
                f"{', '.join(history.changes)}"
            )

        updated.history.append(history)
        updated.synced = False
        updated.last_updated_at = now
        self.store.save(updated)
        return updated

    # ==================== Synchronization ====================

    async def _push_one(
        self, record: Record, report: SyncReport, semaphore: asyncio.Semaphore
    ) -> None:
        async with semaphore, self._locked(record.unique_id):
            # Reload under the lock in case an edit landed since listing
            current = self.store.load(record.unique_id) or record
            try:
                outcome = await self.reconciler.push(current)
            except RetryableSyncError as e:
                logger.warning(str(e))
                report.failures.append(
                    SyncFailure(current.record_type, "push", str(e), current.unique_id, retryable=True)
                )
                return
            except IdentityConflictError as e:
                logger.error(str(e))
                report.failures.append(
                    SyncFailure(current.record_type, "push", str(e), current.unique_id, fatal=True)
                )
                return
            except SyncError as e:
                logger.error(str(e))
                report.failures.append(
                    SyncFailure(current.record_type, "push", str(e), current.unique_id)
                )
                return

        if outcome.status == PushStatus.PUSHED:
            report.pushed += 1
        else:
            report.skipped += 1

    async def _push_all(self, record_type: str, report: SyncReport) -> None:
        dirty = self.store.dirty(record_type)
        if not dirty:
            return
        logger.info(f"Pushing {len(dirty)} dirty {record_type}")
        semaphore = asyncio.Semaphore(self.max_concurrency)
        await asyncio.gather(*(self._push_one(r, report, semaphore) for r in dirty))

    async def _pull_all(self, record_type: str, user: User, report: SyncReport) -> None:
        try:
            payloads = await self.remote.pull_all(record_type)
        except RemoteError as e:
            logger.warning(f"Pulling {record_type} failed: {e}")
            report.failures.append(
                SyncFailure(record_type, "pull_all", str(e), retryable=e.retryable)
            )
            return

        for payload in payloads:
            identity = ""
            if isinstance(payload, dict):
                identity = str(
                    payload.get(UNIQUE_IDENTIFIER) or payload.get(INTERNAL_ID) or ""
                )
            async with self._locked(identity):
                try:
                    outcome = await self.reconciler.pull(payload, user, record_type)
                except MalformedRecordError as e:
                    logger.error(f"Skipping malformed remote {record_type}: {e}")
                    report.failures.append(
                        SyncFailure(record_type, "pull", str(e), identity or None)
                    )
                    continue
                except IdentityConflictError as e:
                    logger.error(str(e))
                    report.failures.append(
                        SyncFailure(record_type, "pull", str(e), e.unique_id, fatal=True)
                    )
                    continue

            if outcome.status in (MergeStatus.CREATED, MergeStatus.UPDATED):
                report.pulled += 1
            else:
                report.skipped += 1

    async def synchronize(
        self, user: User, record_types: Iterable[str] | None = None
    ) -> SyncReport:
        """Run one synchronization pass.

        For each record type every dirty record is pushed, then every remote
        record is pulled and merged. Failures are collected per record and
        never abort the pass.

        Args:
            user: Acting user that merged changes are attributed to.
            record_types: Types to sync; defaults to the configured ones.

        Returns:
            SyncReport describing the pass.
        """
        report = SyncReport()
        for record_type in record_types or self.record_types:
            await self._push_all(record_type, report)
            await self._pull_all(record_type, user, report)

        report._finalize()
        report.timestamp = datetime.now()
        if report.status in (SyncStatus.SUCCESS, SyncStatus.PARTIAL):
            self._last_sync = report.timestamp
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1

        logger.info(
            f"Sync: {report.status.value}, pushed={report.pushed}, "
            f"pulled={report.pulled}, skipped={report.skipped}, "
            f"failures={len(report.failures)}"
        )
        return report

    async def sync_loop(
        self,
        user: User,
        interval_seconds: int = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Synchronize every ``interval_seconds`` until ``stop_event`` is set.

        Passes that end OFFLINE or FAILED double the wait, up to an hour.
        Records that failed stay dirty and are retried by the next pass.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while not (stop_event and stop_event.is_set()):
            try:
                report = await self.synchronize(user)
            except Exception:
                logger.exception("Sync pass aborted")
                self._consecutive_failures += 1
            else:
                for failure in report.failures:
                    target = failure.unique_id or failure.record_type
                    logger.warning(
                        f"{failure.operation} of {target} failed"
                        f"{' (will retry)' if failure.retryable else ''}: {failure.error}"
                    )

            wait_time = self._next_wait(interval_seconds)
            if stop_event is None:
                await asyncio.sleep(wait_time)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
            except asyncio.TimeoutError:
                pass

        logger.info("Sync loop stopped")

    def _next_wait(self, interval_seconds: int) -> int:
        if not self._consecutive_failures:
            return interval_seconds
        wait_time = min(interval_seconds * 2 ** self._consecutive_failures, 3600)
        logger.info(
            f"{self._consecutive_failures} failed pass(es) in a row, "
            f"next sync in {wait_time}s"
        )
        return wait_time

    async def purge_remote(self, record_type: str) -> bool:
        """Delete every remote record of a type. Local records are kept."""
        return await self.remote.delete_all(record_type)

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful sync."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        stats = self.store.get_stats()
        pending = {
            record_type: len(self.store.dirty(record_type))
            for record_type in self.record_types
        }

        return {
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "pending_records": pending,
            "total_records": stats["total_records"],
            "records_by_type": stats["records_by_type"],
        }
