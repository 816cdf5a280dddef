"""Writes freshly fetched article content onto local linked item records."""

from __future__ import annotations

import logging
import sqlite3

from readerkit.core.background import BackgroundTasks
from readerkit.core.pdf_fetcher import PDFFetcher
from readerkit.core.storage import DB, StoreContext
from readerkit.providers.content_types import Highlight, LinkedItem

logger = logging.getLogger(__name__)


class ContentReconciler:
    """Merges fetched content into the existing record for an item.

    - Records are never created here; unknown items are skipped
    - Fetched highlights are added to the record's highlights, none removed
    - Scalar fields and html_content are overwritten
    - The whole patch is committed or rolled back as one unit
    """

    def __init__(
        self,
        store: StoreContext,
        tasks: BackgroundTasks,
        pdf_fetcher: PDFFetcher | None = None,
    ) -> None:
        self._store = store
        self._tasks = tasks
        self._pdf_fetcher = pdf_fetcher

    async def close(self) -> None:
        if self._pdf_fetcher is not None:
            await self._pdf_fetcher.close()

    async def persist_article_content(
        self,
        item: LinkedItem,
        html_content: str,
        highlights: tuple[Highlight, ...],
    ) -> None:
        """Apply fetched content to the item's record.

        Commit failures are logged and rolled back, never raised.
        """
        found = await self._store.perform(
            lambda db: self._apply(db, item, html_content, highlights)
        )

        if found and item.is_pdf and self._pdf_fetcher is not None:
            self._tasks.spawn(
                self._pdf_fetcher.fetch_pdf_data(item.slug, item.page_url),
                name=f"pdf:{item.slug}",
            )

    def _apply(
        self,
        db: DB,
        item: LinkedItem,
        html_content: str,
        highlights: tuple[Highlight, ...],
    ) -> bool:
        """Patch the record inside one transaction. Runs on the store worker.

        Returns False if there is no record for the item.
        """
        if db.get_linked_item(item.id) is None:
            logger.debug(f"No linked item {item.id}, skipping content save")
            return False

        fields = item.record_fields()
        fields.pop("id")
        fields["html_content"] = html_content

        try:
            with db.transaction():
                db.upsert_highlights(item.id, highlights)
                db.update_linked_item(item.id, fields)
        except sqlite3.Error:
            logger.exception(f"Failed to save article content for {item.id}")
        else:
            logger.info(f"Article content saved for {item.id}")
        return True
