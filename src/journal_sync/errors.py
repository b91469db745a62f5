"""
errors.py - Domain-specific exceptions for journal_sync.

All exceptions inherit from SyncError for unified handling.
Each exception type represents a distinct failure mode.
"""

from typing import Any


class SyncError(Exception):
    """Base exception for all journal_sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class StoreError(SyncError):
    """
    Raised when a local store operation fails unexpectedly.

    This wraps SQLite errors with additional context about
    what operation was being attempted.
    """

    def __init__(
        self, message: str, operation: str | None = None, kind: str | None = None
    ) -> None:
        context = {}
        if operation is not None:
            context["operation"] = operation
        if kind is not None:
            context["kind"] = kind
        super().__init__(message, context=context)
        self.operation = operation
        self.kind = kind


class StoreNotReadyError(StoreError):
    """
    Raised when a write reaches the local store before it is initialized.

    Reads degrade to empty results instead; writes are rejected
    explicitly so they are never silently dropped.
    """

    def __init__(self, operation: str, kind: str | None = None) -> None:
        super().__init__("Local store is not initialized", operation=operation, kind=kind)


class ValidationError(SyncError):
    """
    Raised when input validation fails.

    This includes malformed stored values, unknown enum values
    and remote documents missing required fields.
    """

    def __init__(
        self, message: str, field: str | None = None, value: Any = None
    ) -> None:
        context = {}
        if field is not None:
            context["field"] = field
        if value is not None:
            context["value"] = repr(value)[:100]
        super().__init__(message, context=context)
        self.field = field
        self.value = value


class RemoteError(SyncError):
    """
    Raised when the remote document store rejects a request.

    The remote was reachable but answered with an error status.
    """

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        document_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if collection is not None:
            context["collection"] = collection
        if document_id is not None:
            context["document_id"] = document_id
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, context=context)
        self.collection = collection
        self.document_id = document_id
        self.status_code = status_code


class RemoteUnavailableError(RemoteError):
    """
    Raised when the remote document store cannot be reached.

    The current sync attempt is aborted without moving the watermark;
    the next tick or online transition retries.
    """


class ContentUnavailableOfflineError(SyncError):
    """
    Raised when an entry is known locally only by its metadata and its
    body cannot be fetched because the remote is unreachable.
    """

    def __init__(self, record_id: str) -> None:
        super().__init__("Content is not available offline", context={"id": record_id})
        self.record_id = record_id
