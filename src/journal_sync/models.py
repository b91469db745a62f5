"""
models.py - Journal records and their metadata projections.

Two record kinds are stored and synced:
- Entry: a journal entry (poem, prose, other) with an HTML body
- Book: an ordered collection of entry ids

Each kind has a compact metadata projection that lives in the local
index, so lists can be built without loading bodies.
"""

import html
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from journal_sync.config import ENTRY_INDEX_VERSION, PREVIEW_MAX_LENGTH
from journal_sync.errors import ValidationError
from journal_sync.utils.ids import new_record_id
from journal_sync.utils.timestamps import now_iso

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


class EntryType(Enum):
    """Classification of a journal entry."""
    POEM = "siir"
    PROSE = "yazi"
    OTHER = "diger"


class TextAlign(Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


def _enum_value(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown {enum_cls.__name__} value",
            field=enum_cls.__name__,
            value=value,
        ) from e


@dataclass(frozen=True)
class Entry:
    """A full journal entry, body included."""
    id: str
    title: str
    body: str
    footer: str
    created_at: str
    updated_at: str
    is_synced: bool = False
    is_bold: bool = False
    text_align: TextAlign = TextAlign.LEFT
    deleted_at: str | None = None
    type: EntryType = EntryType.POEM
    stars: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "footer": self.footer,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isSynced": self.is_synced,
            "isBold": self.is_bold,
            "textAlign": self.text_align.value,
            "deletedAt": self.deleted_at,
            "type": self.type.value,
            "stars": self.stars,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entry":
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            body=data.get("body") or "",
            footer=data.get("footer") or "",
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            is_synced=bool(data.get("isSynced", False)),
            is_bold=bool(data.get("isBold", False)),
            text_align=_enum_value(TextAlign, data.get("textAlign"), TextAlign.LEFT),
            deleted_at=data.get("deletedAt") or None,
            type=_enum_value(EntryType, data.get("type"), EntryType.POEM),
            stars=int(data.get("stars") or 0),
        )


@dataclass(frozen=True)
class EntryMetadata:
    """Index projection of an Entry: no body, plus a derived preview."""
    id: str
    title: str
    preview: str
    created_at: str
    updated_at: str
    is_synced: bool = False
    deleted_at: str | None = None
    type: EntryType = EntryType.POEM
    stars: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "preview": self.preview,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isSynced": self.is_synced,
            "deletedAt": self.deleted_at,
            "type": self.type.value,
            "stars": self.stars,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntryMetadata":
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            preview=data.get("preview") or "",
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            is_synced=bool(data.get("isSynced", False)),
            deleted_at=data.get("deletedAt") or None,
            type=_enum_value(EntryType, data.get("type"), EntryType.POEM),
            stars=int(data.get("stars") or 0),
        )


@dataclass(frozen=True)
class Book:
    """An ordered collection of entries, referenced by id."""
    id: str
    title: str
    writing_ids: tuple[str, ...] = ()
    created_at: str = ""
    updated_at: str = ""
    is_synced: bool = False
    deleted_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "writingIds": list(self.writing_ids),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isSynced": self.is_synced,
            "deletedAt": self.deleted_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Book":
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            writing_ids=tuple(data.get("writingIds") or ()),
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            is_synced=bool(data.get("isSynced", False)),
            deleted_at=data.get("deletedAt") or None,
        )


@dataclass(frozen=True)
class BookMetadata:
    id: str
    title: str
    writing_count: int
    created_at: str
    updated_at: str
    is_synced: bool = False
    deleted_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "writingCount": self.writing_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isSynced": self.is_synced,
            "deletedAt": self.deleted_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BookMetadata":
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            writing_count=int(data.get("writingCount") or 0),
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            is_synced=bool(data.get("isSynced", False)),
            deleted_at=data.get("deletedAt") or None,
        )


@dataclass(frozen=True)
class MetadataIndex:
    """
    Versioned container of metadata entries for one record kind.

    last_sync_time is the sync watermark; None means no sync has
    completed since the index was (re)built.
    """
    version: int = ENTRY_INDEX_VERSION
    last_sync_time: str | None = None
    entries: tuple[Any, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastSyncTime": self.last_sync_time,
            "entries": [entry.to_dict() for entry in self.entries],
        }


# =============================================================================
# Helpers
# =============================================================================

def generate_preview(body: str) -> str:
    """
    Plain-text excerpt of an HTML body.

    Tags are stripped, entities decoded and whitespace collapsed.
    Excerpts longer than PREVIEW_MAX_LENGTH are cut and get "...".
    """
    if not body:
        return ""
    text = _TAG_RE.sub("", body)
    text = html.unescape(text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) > PREVIEW_MAX_LENGTH:
        return f"{text[:PREVIEW_MAX_LENGTH]}..."
    return text


def metadata_from_entry(entry: Entry) -> EntryMetadata:
    return EntryMetadata(
        id=entry.id,
        title=entry.title,
        preview=generate_preview(entry.body),
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        is_synced=entry.is_synced,
        deleted_at=entry.deleted_at,
        type=entry.type,
        stars=entry.stars,
    )


def metadata_from_book(book: Book) -> BookMetadata:
    return BookMetadata(
        id=book.id,
        title=book.title,
        writing_count=len(book.writing_ids),
        created_at=book.created_at,
        updated_at=book.updated_at,
        is_synced=book.is_synced,
        deleted_at=book.deleted_at,
    )


def is_deleted(item: Any) -> bool:
    """True if the record or metadata is a tombstone."""
    return item.deleted_at is not None


def is_valid_for_save(entry: Entry) -> bool:
    """An entry is persisted once it has a non-empty title or body."""
    return bool(entry.title.strip()) or bool(entry.body.strip())


def create_entry(
    entry_type: EntryType = EntryType.POEM,
    title: str = "",
    body: str = "",
    footer: str = "",
    is_bold: bool = False,
    text_align: TextAlign = TextAlign.LEFT,
) -> Entry:
    now = now_iso()
    return Entry(
        id=new_record_id(),
        title=title,
        body=body,
        footer=footer,
        created_at=now,
        updated_at=now,
        is_synced=False,
        is_bold=is_bold,
        text_align=text_align,
        type=entry_type,
    )


def create_book(title: str) -> Book:
    now = now_iso()
    return Book(id=new_record_id(), title=title, created_at=now, updated_at=now)
