"""Dynamically keyed document with JSON-like value semantics."""

import copy
import json
from typing import Any, Iterator

from ..errors import MalformedRecordError

# Values a document field may hold
JSONValue = str | int | float | bool | list | dict | None


def is_empty_value(value: Any) -> bool:
    """True for values that a document never stores."""
    if value is None:
        return True
    if isinstance(value, (list, dict)) and len(value) == 0:
        return True
    return False


def stringify(value: Any) -> str:
    """Render a field value the way it is compared and recorded in histories.

    Strings are kept as-is, everything else becomes compact JSON so that
    ``True`` renders as ``true`` and ``["a", "b"]`` as ``["a","b"]``. Object
    keys are sorted, so equal mappings always render the same.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


class DocumentModel:
    """An ordered mapping of field names to JSON-like values.

    Setting a field to ``None`` or to an empty list/dict removes it, so a
    document never distinguishes "absent" from "present but empty".
    """

    def __init__(self, fields: dict[str, Any] | None = None):
        self._fields: dict[str, Any] = {}
        if fields:
            for key, value in fields.items():
                self.set(key, value)

    @classmethod
    def from_json(cls, text: str) -> "DocumentModel":
        """Parse a JSON object into a document.

        Raises:
            MalformedRecordError: If the text is not valid JSON or not an object.
        """
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise MalformedRecordError(f"Unparsable document: {e}") from e
        if not isinstance(data, dict):
            raise MalformedRecordError(
                f"Document must be a JSON object, got {type(data).__name__}"
            )
        try:
            return cls(data)
        except ValueError as e:
            raise MalformedRecordError(str(e)) from e

    def get(self, key: str, default: Any = None) -> Any:
        return self._fields.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a field, removing it when the value is None or an empty collection.

        Raises:
            ValueError: If the key is not a non-empty string.
        """
        if not isinstance(key, str) or not key:
            raise ValueError(f"Field names must be non-empty strings, got {key!r}")
        if is_empty_value(value):
            self._fields.pop(key, None)
            return
        self._fields[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self._fields.pop(key, None)

    def has(self, key: str) -> bool:
        return key in self._fields

    def keys(self) -> list[str]:
        """Names of the fields currently present, in insertion order."""
        return list(self._fields.keys())

    def items(self) -> list[tuple[str, Any]]:
        return list(self._fields.items())

    def remove_from_list(self, key: str, value: Any) -> None:
        """Remove every occurrence of ``value`` from a list field.

        The field itself disappears once the list is empty.
        """
        current = self._fields.get(key)
        if not isinstance(current, list):
            return
        self.set(key, [item for item in current if item != value])

    def copy(self) -> "DocumentModel":
        """Point-in-time snapshot that shares no mutable state with this one."""
        snapshot = DocumentModel()
        snapshot._fields = copy.deepcopy(self._fields)
        return snapshot

    def diff_equal(self, other: "DocumentModel") -> bool:
        """Field-wise equality after stringification, treating empty as absent."""
        for key in set(self._fields) | set(other._fields):
            if stringify(self.get(key)) != stringify(other.get(key)):
                return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._fields)

    def to_json(self) -> str:
        return json.dumps(self._fields, ensure_ascii=False)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._fields))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DocumentModel):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return f"DocumentModel({self._fields!r})"
