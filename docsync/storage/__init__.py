"""Local persistence for records."""

from .local_store import LocalStore

__all__ = ["LocalStore"]
