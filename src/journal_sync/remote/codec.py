"""
codec.py - Mapping between local records and remote documents.

Remote documents use camelCase fields and do not carry the local
is_synced flag; anything decoded from the remote is synced by
definition.
"""

from typing import Any

from journal_sync.errors import ValidationError
from journal_sync.models import (
    Book,
    Entry,
    EntryMetadata,
    generate_preview,
)

_REQUIRED_FIELDS = ("createdAt", "updatedAt")


def _require(data: dict[str, Any], doc_id: str) -> None:
    if not isinstance(data, dict):
        raise ValidationError("Remote document is not an object", field="data", value=data)
    for name in _REQUIRED_FIELDS:
        if not data.get(name):
            raise ValidationError(
                f"Remote document {doc_id} is missing {name}", field=name
            )


def entry_to_meta_document(entry: Entry) -> dict[str, Any]:
    return {
        "title": entry.title,
        "preview": generate_preview(entry.body),
        "createdAt": entry.created_at,
        "updatedAt": entry.updated_at,
        "deletedAt": entry.deleted_at,
        "type": entry.type.value,
        "stars": entry.stars,
    }


def entry_to_body_document(entry: Entry) -> dict[str, Any]:
    return {
        "title": entry.title,
        "body": entry.body,
        "footer": entry.footer,
        "createdAt": entry.created_at,
        "updatedAt": entry.updated_at,
        "styleFlags": {
            "isBold": entry.is_bold,
            "textAlign": entry.text_align.value,
        },
        "deletedAt": entry.deleted_at,
        "type": entry.type.value,
        "stars": entry.stars,
    }


def entry_meta_from_document(doc_id: str, data: dict[str, Any]) -> EntryMetadata:
    _require(data, doc_id)
    return EntryMetadata.from_dict({**data, "id": doc_id, "isSynced": True})


def entry_from_body_document(doc_id: str, data: dict[str, Any]) -> Entry:
    _require(data, doc_id)
    style = data.get("styleFlags") or {}
    return Entry.from_dict({
        **data,
        "id": doc_id,
        "isSynced": True,
        "isBold": style.get("isBold", False),
        "textAlign": style.get("textAlign"),
    })


def book_to_document(book: Book) -> dict[str, Any]:
    return {
        "title": book.title,
        "memberIds": list(book.writing_ids),
        "createdAt": book.created_at,
        "updatedAt": book.updated_at,
        "deletedAt": book.deleted_at,
    }


def book_from_document(doc_id: str, data: dict[str, Any]) -> Book:
    _require(data, doc_id)
    return Book(
        id=doc_id,
        title=data.get("title") or "",
        writing_ids=tuple(data.get("memberIds") or ()),
        created_at=data["createdAt"],
        updated_at=data["updatedAt"],
        is_synced=True,
        deleted_at=data.get("deletedAt") or None,
    )

