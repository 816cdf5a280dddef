"""Content types for linked items, highlights and fetched article content."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ContentStatus(str, Enum):
    """Server-side rendering state of an article's content."""

    UNKNOWN = "unknown"  # Legacy items without a state, treated as succeeded
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_ready(self) -> bool:
        return self in (ContentStatus.SUCCEEDED, ContentStatus.UNKNOWN)


class ServerSyncStatus(str, Enum):
    """Local sync state of a highlight relative to the server."""

    IS_SYNCED = "is_synced"
    IS_SYNCING = "is_syncing"
    NEEDS_DELETION = "needs_deletion"
    NEEDS_CREATION = "needs_creation"
    NEEDS_UPDATE = "needs_update"


PDF_CONTENT_READER = "PDF"


@dataclass(frozen=True)
class Label:
    id: str
    name: str
    color: str
    description: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class Highlight:
    """A highlight/annotation belonging to a linked item."""

    id: str
    short_id: str
    quote: str | None = None
    prefix: str | None = None
    suffix: str | None = None
    patch: str | None = None
    annotation: str | None = None
    created_by_me: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
    server_sync_status: ServerSyncStatus = ServerSyncStatus.IS_SYNCED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "shortId": self.short_id,
            "quote": self.quote,
            "prefix": self.prefix,
            "suffix": self.suffix,
            "patch": self.patch,
            "annotation": self.annotation,
            "createdByMe": self.created_by_me,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class LinkedItem:
    """A saved item as returned by the reader API.

    Carries every scalar field that is written back onto the local
    record when new content is persisted.
    """

    id: str
    title: str
    slug: str
    page_url: str
    created_at: datetime
    saved_at: datetime
    reading_progress: float = 0.0
    reading_progress_anchor: int = 0
    image_url: str | None = None
    on_device_image_url: str | None = None
    document_directory_path: str | None = None
    description: str | None = None
    publisher_url: str | None = None
    author: str | None = None
    publish_date: datetime | None = None
    is_archived: bool = False
    content_reader: str = "WEB"
    labels: tuple[Label, ...] = ()

    @property
    def is_pdf(self) -> bool:
        return self.content_reader == PDF_CONTENT_READER

    def record_fields(self) -> dict[str, Any]:
        """Column values for the linked_items table (labels excluded)."""
        fields = asdict(self)
        fields.pop("labels")
        return fields


@dataclass(frozen=True)
class FetchedContent:
    """Rendered article content handed back to callers."""

    html_content: str
    highlights: tuple[Highlight, ...] = field(default_factory=tuple)
    content_status: ContentStatus = ContentStatus.SUCCEEDED

    def highlights_json(self) -> str:
        return json.dumps([h.to_dict() for h in self.highlights])

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "html_content": self.html_content,
            "highlights": [h.to_dict() for h in self.highlights],
            "content_status": self.content_status.value,
        }
