from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, TypeVar

from readerkit.core.settings import Settings
from readerkit.providers.content_types import Highlight, LinkedItem, ServerSyncStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS linked_items (
  id TEXT PRIMARY KEY,
  title TEXT NOT NULL,
  slug TEXT NOT NULL,
  page_url TEXT NOT NULL,
  created_at TEXT,
  saved_at TEXT,
  reading_progress REAL DEFAULT 0,
  reading_progress_anchor INTEGER DEFAULT 0,
  image_url TEXT,
  on_device_image_url TEXT,
  document_directory_path TEXT,
  description TEXT,
  publisher_url TEXT,
  author TEXT,
  publish_date TEXT,
  is_archived INTEGER DEFAULT 0,
  content_reader TEXT DEFAULT 'WEB',
  html_content TEXT,  -- NULL until content was fetched
  pdf_data BLOB,
  updated_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_linked_items_slug ON linked_items(slug);

CREATE TABLE IF NOT EXISTS highlights (
  id TEXT PRIMARY KEY,
  linked_item_id TEXT NOT NULL REFERENCES linked_items(id) ON DELETE CASCADE,
  short_id TEXT NOT NULL,
  quote TEXT,
  prefix TEXT,
  suffix TEXT,
  patch TEXT,
  annotation TEXT,
  created_by_me INTEGER DEFAULT 1,
  created_at TEXT,
  updated_at TEXT,
  server_sync_status TEXT NOT NULL DEFAULT 'is_synced'  -- is_synced, is_syncing, needs_deletion, needs_creation, needs_update
);

CREATE INDEX IF NOT EXISTS idx_highlights_linked_item_id ON highlights(linked_item_id);
"""

# Scalar columns overwritten from a freshly fetched LinkedItem
LINKED_ITEM_COLUMNS = (
    "title",
    "slug",
    "page_url",
    "created_at",
    "saved_at",
    "reading_progress",
    "reading_progress_anchor",
    "image_url",
    "on_device_image_url",
    "document_directory_path",
    "description",
    "publisher_url",
    "author",
    "publish_date",
    "is_archived",
    "content_reader",
    "html_content",
)


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def highlight_from_row(row: sqlite3.Row) -> Highlight:
    """Create Highlight from database row."""
    return Highlight(
        id=row["id"],
        short_id=row["short_id"],
        quote=row["quote"],
        prefix=row["prefix"],
        suffix=row["suffix"],
        patch=row["patch"],
        annotation=row["annotation"],
        created_by_me=bool(row["created_by_me"]),
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
        server_sync_status=ServerSyncStatus(row["server_sync_status"]),
    )


@dataclass
class DB:
    conn: sqlite3.Connection

    def init(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def _commit(self) -> None:
        self.conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit everything written inside the block, or roll it all back.

        The exception that caused the rollback is re-raised.
        """
        try:
            yield
            self._commit()
        except BaseException:
            self.conn.rollback()
            raise

    def get_linked_item(self, item_id: str) -> dict[str, Any] | None:
        """Get a linked item row by id, or None if not found."""
        cur = self.conn.execute("SELECT * FROM linked_items WHERE id = ?", (item_id,))
        row = cur.fetchone()
        return dict(row) if row else None

    def get_linked_item_by_slug(self, slug: str) -> dict[str, Any] | None:
        """Get the first linked item row with this slug, or None."""
        cur = self.conn.execute(
            "SELECT * FROM linked_items WHERE slug = ? ORDER BY rowid LIMIT 1",
            (slug,),
        )
        row = cur.fetchone()
        return dict(row) if row else None

    def save_linked_item(self, item: LinkedItem, html_content: str | None = None) -> None:
        """Insert or update a linked item record.

        Used by library sync to create records. Content fetches only ever
        update existing rows.
        """
        fields = {k: _to_db(v) for k, v in item.record_fields().items()}
        fields["html_content"] = html_content
        columns = ", ".join(fields)
        placeholders = ", ".join("?" for _ in fields)
        updates = ", ".join(
            f"{col} = COALESCE(excluded.{col}, {col})" if col == "html_content" else f"{col} = excluded.{col}"
            for col in fields
            if col != "id"
        )
        self.conn.execute(
            f"""
            INSERT INTO linked_items ({columns}) VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET {updates}, updated_at = datetime('now')
            """,
            tuple(fields.values()),
        )
        self._commit()

    def update_linked_item(self, item_id: str, fields: dict[str, Any]) -> bool:
        """Overwrite scalar fields of an existing record. Does not commit.

        Returns True if a row was updated.
        """
        unknown = set(fields) - set(LINKED_ITEM_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown linked item columns: {sorted(unknown)}")
        if not fields:
            return False

        assignments = ", ".join(f"{col} = ?" for col in fields)
        cur = self.conn.execute(
            f"UPDATE linked_items SET {assignments}, updated_at = datetime('now') WHERE id = ?",
            (*(_to_db(v) for v in fields.values()), item_id),
        )
        return cur.rowcount > 0

    def upsert_highlights(self, item_id: str, highlights: tuple[Highlight, ...] | list[Highlight]) -> int:
        """Add highlights to an item, updating rows that already exist. Does not commit.

        Highlights of the item that are not in `highlights` are left alone.
        An existing row keeps its local server_sync_status.

        Returns the number of highlights written.
        """
        for h in highlights:
            self.conn.execute(
                """
                INSERT INTO highlights (
                    id, linked_item_id, short_id, quote, prefix, suffix, patch,
                    annotation, created_by_me, created_at, updated_at, server_sync_status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    linked_item_id = excluded.linked_item_id,
                    short_id = excluded.short_id,
                    quote = excluded.quote,
                    prefix = excluded.prefix,
                    suffix = excluded.suffix,
                    patch = excluded.patch,
                    annotation = excluded.annotation,
                    created_by_me = excluded.created_by_me,
                    created_at = COALESCE(excluded.created_at, created_at),
                    updated_at = COALESCE(excluded.updated_at, updated_at)
                """,
                (
                    h.id,
                    item_id,
                    h.short_id,
                    h.quote,
                    h.prefix,
                    h.suffix,
                    h.patch,
                    h.annotation,
                    _to_db(h.created_by_me),
                    _to_db(h.created_at),
                    _to_db(h.updated_at),
                    h.server_sync_status.value,
                ),
            )
        return len(highlights)

    def get_highlights_for_item(self, item_id: str, *, include_deleted: bool = True) -> list[Highlight]:
        """Get highlights for an item, optionally without pending deletions."""
        query = "SELECT * FROM highlights WHERE linked_item_id = ?"
        params: tuple[Any, ...] = (item_id,)
        if not include_deleted:
            query += " AND server_sync_status != ?"
            params = (item_id, ServerSyncStatus.NEEDS_DELETION.value)
        cur = self.conn.execute(query + " ORDER BY created_at, id", params)
        return [highlight_from_row(row) for row in cur.fetchall()]

    def set_pdf_data(self, item_id: str, data: bytes) -> bool:
        """Store downloaded PDF bytes on a record. Does not commit."""
        cur = self.conn.execute(
            "UPDATE linked_items SET pdf_data = ?, updated_at = datetime('now') WHERE id = ?",
            (data, item_id),
        )
        return cur.rowcount > 0


class StoreContext:
    """Serialized execution context for a DB.

    All work submitted through `perform` runs on one worker thread, in
    submission order, so transactions never interleave.
    """

    def __init__(self, db: DB) -> None:
        self.db = db
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store")

    async def perform(self, fn: Callable[[DB], T]) -> T:
        """Run fn(db) on the store worker and return its result."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, self.db)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.db.conn.close()


def connect(db_path: str) -> DB:
    """Open (and initialize) a DB at db_path. Use ':memory:' for tests."""
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    db = DB(conn=conn)
    db.init()
    return db


_store: StoreContext | None = None


def init_db(settings: Settings | None = None) -> StoreContext:
    global _store
    s = settings or Settings.from_env()
    os.makedirs(os.path.dirname(s.db_path) or ".", exist_ok=True)

    _store = StoreContext(connect(s.db_path))
    logger.info(f"Opened store at {s.db_path}")
    return _store


def get_store() -> StoreContext:
    assert _store is not None, "DB not initialized"
    return _store
