"""Docsync: field-level change history and offline/online record reconciliation."""

__version__ = "0.1.0"
