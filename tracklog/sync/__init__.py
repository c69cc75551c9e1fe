"""Synchronization of the local dataset with a remote Gist document."""

from .engine import SyncEngine, SyncResult, SyncStatus
from .gist_client import GistClient, PushResult
from .http_client import NetworkClient

__all__ = [
    "GistClient",
    "NetworkClient",
    "PushResult",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
]
