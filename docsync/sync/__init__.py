"""Sync infrastructure for offline-first records.

Pushes locally edited records to the remote store and merges remote copies
back, recording every merged delta in the record's history.
"""

from .reconciler import MergeOutcome, MergeStatus, PushOutcome, PushStatus, SyncReconciler
from .remote_client import HttpRemoteClient, PushResponse, RemoteClient

__all__ = [
    "HttpRemoteClient",
    "MergeOutcome",
    "MergeStatus",
    "PushOutcome",
    "PushResponse",
    "PushStatus",
    "RemoteClient",
    "SyncReconciler",
]
