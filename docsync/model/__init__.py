"""Record model: documents, records and their audit trail."""

from .document import DocumentModel, stringify
from .history import (
    DEFAULT_EXCLUDED_KEYS,
    ChangeHistoryBuilder,
    History,
    HistoryLog,
    build_history_between,
)
from .record import Record
from .user import User

__all__ = [
    "DEFAULT_EXCLUDED_KEYS",
    "ChangeHistoryBuilder",
    "DocumentModel",
    "History",
    "HistoryLog",
    "Record",
    "User",
    "build_history_between",
    "stringify",
]
