"""Audit trail: history entries, the change-history builder and the history log.

A history entry records which fields changed between two versions of a
record, who made the change and when::

    {
        "user_name": "field_worker",
        "user_organisation": "UNICEF",
        "datetime": "2024-01-01 10:00:00",
        "changes": {"name": {"from": "Foo", "to": "Bar"}}
    }
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator

from ..errors import MalformedRecordError
from ..timestamps import format_timestamp
from .document import DocumentModel, stringify
from .user import User

logger = logging.getLogger(__name__)

HISTORIES = "histories"
USER_NAME = "user_name"
USER_ORGANISATION = "user_organisation"
DATETIME = "datetime"
CHANGES = "changes"
FROM = "from"
TO = "to"
CREATED = "created"

# Sync bookkeeping and the audit trail itself are never audited
DEFAULT_EXCLUDED_KEYS = frozenset(
    {"synced", HISTORIES, "last_updated_at", "last_synced_at", "internal_id"}
)


@dataclass(frozen=True)
class History:
    """One audit entry: the field-level delta between two record versions."""

    user_name: str
    user_organisation: str
    datetime: str
    changes: dict[str, dict[str, str]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def to_dict(self) -> dict[str, Any]:
        return {
            USER_NAME: self.user_name,
            USER_ORGANISATION: self.user_organisation,
            DATETIME: self.datetime,
            CHANGES: {
                key: {FROM: change[FROM], TO: change[TO]}
                for key, change in self.changes.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> "History":
        """Create from a wire dictionary.

        Raises:
            MalformedRecordError: If the payload is not a history object.
        """
        if not isinstance(data, dict):
            raise MalformedRecordError(
                f"History must be an object, got {type(data).__name__}"
            )
        changes = data.get(CHANGES)
        if changes is None:
            changes = {}
        if not isinstance(changes, dict):
            raise MalformedRecordError("History changes must be an object")

        parsed: dict[str, dict[str, str]] = {}
        for key, change in changes.items():
            if not isinstance(change, dict):
                raise MalformedRecordError(f"Change for {key!r} must be an object")
            parsed[key] = {
                FROM: stringify(change.get(FROM)),
                TO: stringify(change.get(TO)),
            }

        return cls(
            user_name=stringify(data.get(USER_NAME)),
            user_organisation=stringify(data.get(USER_ORGANISATION)),
            datetime=stringify(data.get(DATETIME)),
            changes=parsed,
        )


def _as_document(value: Any) -> DocumentModel:
    """Accept either a DocumentModel or anything that owns one."""
    if isinstance(value, DocumentModel):
        return value
    return value.document


def build_history_between(
    original: Any,
    updated: Any,
    user: User,
    now: str,
    excluded_keys: Iterable[str] = DEFAULT_EXCLUDED_KEYS,
) -> History | None:
    """Compare two document snapshots and describe the delta.

    Keys of the original are checked for changed and deleted values, keys
    only present in the updated document for added values. Removing a field
    that was already empty, or adding an empty one, is not a change.

    Args:
        original: Document (or record) before the edit.
        updated: Document (or record) after the edit.
        user: Acting user the entry is attributed to.
        now: Canonical timestamp of the entry.
        excluded_keys: Fields never recorded.

    Returns:
        A History, or None when nothing auditable changed.
    """
    before = _as_document(original)
    after = _as_document(updated)
    excluded = frozenset(excluded_keys)
    changes: dict[str, dict[str, str]] = {}

    after_keys = set(after.keys())
    for key in before.keys():
        if key in excluded:
            continue
        old_value = stringify(before.get(key))
        if key in after_keys:
            new_value = stringify(after.get(key))
            if old_value != new_value:
                changes[key] = {FROM: old_value, TO: new_value}
        elif old_value != "":
            changes[key] = {FROM: old_value, TO: ""}

    before_keys = set(before.keys())
    for key in after.keys():
        if key in excluded or key in before_keys:
            continue
        new_value = stringify(after.get(key))
        if new_value != "":
            changes[key] = {FROM: "", TO: new_value}

    if not changes:
        return None

    return History(
        user_name=user.user_name,
        user_organisation=user.organisation,
        datetime=now,
        changes=changes,
    )


class ChangeHistoryBuilder:
    """Builds history entries for one acting user."""

    def __init__(
        self,
        user: User,
        clock: Callable[[], datetime] = datetime.now,
        excluded_keys: Iterable[str] = (),
    ):
        """Initialize the builder.

        Args:
            user: Acting user every entry is attributed to.
            clock: Source of the current time.
            excluded_keys: Extra keys to exclude on top of the defaults.
        """
        self.user = user
        self.clock = clock
        self.excluded_keys = DEFAULT_EXCLUDED_KEYS | frozenset(excluded_keys)

    def between(self, original: Any, updated: Any) -> History | None:
        return build_history_between(
            original,
            updated,
            self.user,
            format_timestamp(self.clock()),
            self.excluded_keys,
        )

    def creation(self, record: Any) -> History:
        """Marker entry for a record that was created without auditable fields."""
        return History(
            user_name=self.user.user_name,
            user_organisation=self.user.organisation,
            datetime=format_timestamp(self.clock()),
            changes={record.record_type: {FROM: "", TO: CREATED}},
        )


class HistoryLog:
    """Append-only view over the ``histories`` field of a document."""

    def __init__(self, document: DocumentModel):
        self._document = document

    def append(self, history: History | None) -> bool:
        """Append an entry, ignoring None and entries without changes.

        Returns:
            True if an entry was appended.
        """
        if history is None or history.is_empty:
            return False
        entries = list(self._document.get(HISTORIES) or [])
        entries.append(history.to_dict())
        self._document.set(HISTORIES, entries)
        logger.debug(f"Appended history with {len(history.changes)} change(s)")
        return True

    def entries(self) -> list[History]:
        return [History.from_dict(item) for item in self._document.get(HISTORIES) or []]

    def latest(self) -> History | None:
        raw = self._document.get(HISTORIES) or []
        return History.from_dict(raw[-1]) if raw else None

    def __iter__(self) -> Iterator[History]:
        return iter(self.entries())

    def __len__(self) -> int:
        return len(self._document.get(HISTORIES) or [])
