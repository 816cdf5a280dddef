"""Downloads PDF documents for items read in the PDF reader."""

from __future__ import annotations

import logging
import sqlite3
from urllib.parse import urlparse

import httpx

from readerkit.core.storage import DB, StoreContext

logger = logging.getLogger(__name__)

# HTTP timeout
FETCH_TIMEOUT = 60.0


class PDFFetcher:
    """Fetches a PDF by URL and stores the bytes on the matching record.

    Best effort: any outcome other than a 2xx response with a body and a
    record for the slug is dropped without retry.
    """

    def __init__(
        self,
        store: StoreContext,
        *,
        timeout: float = FETCH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_pdf_data(self, slug: str, page_url: str) -> None:
        """Download page_url and save it as the PDF of the item with this slug."""
        parsed = urlparse(page_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            logger.debug(f"Skipping PDF fetch for {slug}: invalid URL {page_url!r}")
            return

        try:
            client = await self._get_client()
            response = await client.get(page_url)
        except httpx.HTTPError as e:
            logger.debug(f"PDF fetch for {slug} failed: {e}")
            return

        if not 200 <= response.status_code < 300:
            logger.debug(f"PDF fetch for {slug} returned {response.status_code}")
            return

        data = response.content
        if not data:
            logger.debug(f"PDF fetch for {slug} returned an empty body")
            return

        await self._store.perform(lambda db: self._save(db, slug, data))

    def _save(self, db: DB, slug: str, data: bytes) -> None:
        """Store data on the record found by slug. Runs on the store worker."""
        record = db.get_linked_item_by_slug(slug)
        if record is None:
            logger.debug(f"No linked item with slug {slug}, dropping PDF data")
            return

        try:
            with db.transaction():
                db.set_pdf_data(record["id"], data)
        except sqlite3.Error:
            logger.exception(f"Failed to save PDF data for {slug}")
            return

        logger.info(f"PDF data saved for {slug} ({len(data)} bytes)")
