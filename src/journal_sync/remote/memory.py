"""
memory.py - In-process remote document store.

Backs the reference server and the test suite. Setting
``available = False`` makes every call raise RemoteUnavailableError,
which simulates losing connectivity.

Subscriber callbacks are awaited inline by the writer, so a change is
fully applied by every subscriber before set/delete returns.
"""

import copy
import logging
from typing import Any

from journal_sync.errors import RemoteUnavailableError
from journal_sync.remote.base import (
    ChangeCallback,
    ChangeType,
    DocumentChange,
    DocumentPage,
    RemoteDocument,
    RemoteDocumentStore,
    Subscription,
)
from journal_sync.utils.timestamps import is_newer

logger = logging.getLogger(__name__)


class _MemorySubscription(Subscription):
    def __init__(self, store: "InMemoryDocumentStore", collection: str, callback: ChangeCallback):
        self._store = store
        self._collection = collection
        self._callback = callback

    async def close(self) -> None:
        listeners = self._store._listeners.get(self._collection, [])
        if self._callback in listeners:
            listeners.remove(self._callback)


class InMemoryDocumentStore(RemoteDocumentStore):
    """
    Dict-backed document store.

    Also counts writes per collection, which makes upload
    idempotency observable.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: dict[str, list[ChangeCallback]] = {}
        self.available = True
        self.write_counts: dict[str, int] = {}

    @property
    def name(self) -> str:
        return "memory"

    def _check_available(self, collection: str | None = None) -> None:
        if not self.available:
            raise RemoteUnavailableError("Remote is unreachable", collection=collection)

    async def ping(self) -> bool:
        return self.available

    async def close(self) -> None:
        self._listeners.clear()

    async def list_documents(
        self,
        collection: str,
        updated_after: str | None = None,
        page_size: int = 500,
        page_token: str | None = None,
    ) -> DocumentPage:
        self._check_available(collection)
        docs = self._collections.get(collection, {})
        matching = [
            RemoteDocument(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in sorted(docs.items())
            if updated_after is None or is_newer(data["updatedAt"], updated_after)
        ]

        offset = int(page_token) if page_token else 0
        page = matching[offset:offset + page_size]
        next_offset = offset + len(page)
        return DocumentPage(
            documents=page,
            next_page_token=str(next_offset) if next_offset < len(matching) else None,
            total=len(matching),
        )

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        self._check_available(collection)
        data = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._check_available(collection)
        docs = self._collections.setdefault(collection, {})
        change_type = ChangeType.MODIFIED if doc_id in docs else ChangeType.ADDED
        docs[doc_id] = copy.deepcopy(data)
        self.write_counts[collection] = self.write_counts.get(collection, 0) + 1
        await self._notify(collection, [DocumentChange(change_type, doc_id, copy.deepcopy(data))])

    async def delete_document(self, collection: str, doc_id: str) -> None:
        self._check_available(collection)
        docs = self._collections.get(collection, {})
        if docs.pop(doc_id, None) is None:
            return
        await self._notify(collection, [DocumentChange(ChangeType.REMOVED, doc_id)])

    async def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription:
        self._check_available(collection)
        self._listeners.setdefault(collection, []).append(callback)
        initial = [
            DocumentChange(ChangeType.ADDED, doc_id, copy.deepcopy(data))
            for doc_id, data in sorted(self._collections.get(collection, {}).items())
        ]
        await callback(initial, True)
        return _MemorySubscription(self, collection, callback)

    async def _notify(self, collection: str, changes: list[DocumentChange]) -> None:
        for callback in list(self._listeners.get(collection, [])):
            try:
                await callback(changes, False)
            except Exception as e:
                logger.error(f"Subscriber for {collection} failed: {e}")

    def document_ids(self, collection: str) -> list[str]:
        return sorted(self._collections.get(collection, {}))
