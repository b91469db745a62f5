"""
base.py - Abstract base class for remote document stores.

All remote implementations must inherit from RemoteDocumentStore.
Documents are plain JSON-compatible dicts addressed by
(collection, id); the remote never interprets their content beyond
the "updatedAt" field used for incremental queries.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable


class ChangeType(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass
class RemoteDocument:
    id: str
    data: dict[str, Any]


@dataclass
class DocumentChange:
    """One change delivered by a collection subscription."""
    type: ChangeType
    id: str
    data: dict[str, Any] | None = None


@dataclass
class DocumentPage:
    """One page of a collection query."""
    documents: list[RemoteDocument] = field(default_factory=list)
    next_page_token: str | None = None
    total: int = 0


# Called with the batch of changes and whether it is the initial snapshot
ChangeCallback = Callable[[list[DocumentChange], bool], Awaitable[None]]


class Subscription(ABC):
    """Handle to a live collection subscription."""

    @abstractmethod
    async def close(self) -> None:
        """Stop receiving changes."""
        pass


class RemoteDocumentStore(ABC):
    """
    Abstract base class for remote document stores.

    Implementations must provide methods for:
    - Paged, optionally incremental, collection queries
    - Single document get / set / delete
    - Live collection subscriptions
    - Reachability checks

    Connectivity failures raise RemoteUnavailableError; rejected
    requests raise RemoteError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Remote name for logging."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the remote is reachable."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        pass

    @abstractmethod
    async def list_documents(
        self,
        collection: str,
        updated_after: str | None = None,
        page_size: int = 500,
        page_token: str | None = None,
    ) -> DocumentPage:
        """
        Query one page of a collection, ordered by document id.

        Args:
            collection: Collection name
            updated_after: If set, only documents with updatedAt strictly later
            page_size: Maximum documents per page
            page_token: Token returned by the previous page
        """
        pass

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the document data, or None if it does not exist."""
        pass

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or fully replace a document."""
        pass

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        pass

    @abstractmethod
    async def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription:
        """
        Subscribe to changes in a collection.

        The first delivered batch is the current state of the collection
        and is flagged as initial.
        """
        pass
