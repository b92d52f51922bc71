"""Record: a document plus its identity, sync state and audit trail."""

import json
import logging
import uuid
from typing import Any

from ..errors import MalformedRecordError
from .document import DocumentModel
from .history import HISTORIES, HistoryLog

logger = logging.getLogger(__name__)

UNIQUE_IDENTIFIER = "unique_identifier"
INTERNAL_ID = "internal_id"
CREATED_BY = "created_by"
CREATED_AT = "created_at"
SYNCED = "synced"
LAST_UPDATED_AT = "last_updated_at"
LAST_SYNCED_AT = "last_synced_at"

RESERVED_FIELDS = (
    UNIQUE_IDENTIFIER,
    INTERNAL_ID,
    CREATED_BY,
    CREATED_AT,
    SYNCED,
    LAST_UPDATED_AT,
    LAST_SYNCED_AT,
    HISTORIES,
)

# Fields owned by the local side that a pulled remote copy never overwrites
LOCAL_BOOKKEEPING_FIELDS = (SYNCED, LAST_SYNCED_AT, LAST_UPDATED_AT, HISTORIES)

# Fields a new record is born with; they never appear in its creation delta
IDENTITY_FIELDS = (UNIQUE_IDENTIFIER, CREATED_BY, CREATED_AT)

DEFAULT_RECORD_TYPE = "records"


def _normalize_synced(value: Any) -> bool | None:
    """Coerce the wire value of ``synced`` to a strict boolean.

    Legacy payloads carry ``"true"``/``"false"`` strings; those are accepted
    with a warning. Anything else that is not a boolean is rejected.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        logger.warning(f"Legacy string value {value!r} for synced, treating as boolean")
        return value.lower() == "true"
    raise MalformedRecordError(f"synced must be a boolean, got {value!r}")


def _normalize_internal_id(value: Any) -> str:
    """Server ids may arrive as JSON numbers; they are always held as strings."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedRecordError(f"internal_id must be a string, got {value!r}")
    return str(value)


class Record:
    """One domain entity.

    The record exclusively owns its DocumentModel; callers read and write
    fields through ``get``/``set`` and the typed properties below.
    """

    def __init__(
        self,
        document: DocumentModel | None = None,
        record_type: str = DEFAULT_RECORD_TYPE,
    ):
        self.document = document if document is not None else DocumentModel()
        self.record_type = record_type

    @classmethod
    def from_dict(
        cls, data: Any, record_type: str = DEFAULT_RECORD_TYPE
    ) -> "Record":
        """Create from a wire dictionary.

        Raises:
            MalformedRecordError: If the payload is not a valid record.
        """
        if not isinstance(data, dict):
            raise MalformedRecordError(
                f"Record must be an object, got {type(data).__name__}"
            )
        fields = dict(data)
        if SYNCED in fields:
            fields[SYNCED] = _normalize_synced(fields[SYNCED])
        if fields.get(INTERNAL_ID) is not None:
            fields[INTERNAL_ID] = _normalize_internal_id(fields[INTERNAL_ID])
        histories = fields.get(HISTORIES)
        if histories is not None and not isinstance(histories, list):
            raise MalformedRecordError("histories must be an array")
        try:
            document = DocumentModel(fields)
        except ValueError as e:
            raise MalformedRecordError(str(e)) from e

        record = cls(document, record_type)
        # Validate embedded histories eagerly so bad payloads fail here
        record.history.entries()
        return record

    @classmethod
    def from_json(cls, text: str, record_type: str = DEFAULT_RECORD_TYPE) -> "Record":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise MalformedRecordError(f"Unparsable record: {e}") from e
        return cls.from_dict(data, record_type)

    def to_dict(self) -> dict[str, Any]:
        return self.document.to_dict()

    def to_json(self) -> str:
        return self.document.to_json()

    def copy(self) -> "Record":
        return Record(self.document.copy(), self.record_type)

    def identity_only(self) -> "Record":
        """Blank record carrying only this record's identity fields.

        Used as the baseline when building the first history of a new record.
        """
        blank = Record(record_type=self.record_type)
        for key in IDENTITY_FIELDS:
            blank.set(key, self.get(key))
        return blank

    def get(self, key: str, default: Any = None) -> Any:
        return self.document.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.document.set(key, value)

    @property
    def history(self) -> HistoryLog:
        return HistoryLog(self.document)

    # ==================== Identity ====================

    @property
    def unique_id(self) -> str | None:
        return self.document.get(UNIQUE_IDENTIFIER)

    def generate_unique_id(self) -> str:
        """Assign a client-generated identity unless one already exists."""
        if not self.unique_id:
            self.document.set(UNIQUE_IDENTIFIER, self.create_unique_id())
        return self.unique_id

    def create_unique_id(self) -> str:
        return uuid.uuid4().hex

    @property
    def internal_id(self) -> str | None:
        return self.document.get(INTERNAL_ID)

    @internal_id.setter
    def internal_id(self, value: str | None) -> None:
        if value is not None:
            value = _normalize_internal_id(value)
        self.document.set(INTERNAL_ID, value)

    @property
    def created_by(self) -> str | None:
        return self.document.get(CREATED_BY)

    @created_by.setter
    def created_by(self, value: str | None) -> None:
        self.document.set(CREATED_BY, value)

    @property
    def created_at(self) -> str | None:
        return self.document.get(CREATED_AT)

    @created_at.setter
    def created_at(self, value: str | None) -> None:
        self.document.set(CREATED_AT, value)

    # ==================== Sync state ====================

    @property
    def synced(self) -> bool:
        return self.document.get(SYNCED) is True

    @synced.setter
    def synced(self, value: bool) -> None:
        if not isinstance(value, bool):
            raise TypeError(f"synced must be a boolean, got {value!r}")
        self.document.set(SYNCED, value)

    @property
    def last_updated_at(self) -> str | None:
        return self.document.get(LAST_UPDATED_AT)

    @last_updated_at.setter
    def last_updated_at(self, value: str | None) -> None:
        self.document.set(LAST_UPDATED_AT, value)

    @property
    def last_synced_at(self) -> str | None:
        return self.document.get(LAST_SYNCED_AT)

    @last_synced_at.setter
    def last_synced_at(self, value: str | None) -> None:
        self.document.set(LAST_SYNCED_AT, value)

    @property
    def is_dirty(self) -> bool:
        """True when local edits postdate the last successful sync."""
        if not self.synced or not self.last_synced_at:
            return True
        if self.last_updated_at and self.last_updated_at > self.last_synced_at:
            return True
        return False

    def __repr__(self) -> str:
        return (
            f"Record(type={self.record_type!r}, unique_id={self.unique_id!r}, "
            f"synced={self.synced})"
        )
