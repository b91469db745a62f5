"""
remote - Remote document store clients.

Available implementations:
- HTTPDocumentStore: REST + WebSocket client for journal_sync.server
- InMemoryDocumentStore: in-process store for the server and tests
"""

from journal_sync.remote.base import (
    ChangeType,
    DocumentChange,
    DocumentPage,
    RemoteDocument,
    RemoteDocumentStore,
    Subscription,
)
from journal_sync.remote.http import HTTPDocumentStore
from journal_sync.remote.memory import InMemoryDocumentStore

__all__ = [
    "ChangeType",
    "DocumentChange",
    "DocumentPage",
    "HTTPDocumentStore",
    "InMemoryDocumentStore",
    "RemoteDocument",
    "RemoteDocumentStore",
    "Subscription",
]
