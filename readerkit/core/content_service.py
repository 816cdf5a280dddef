"""Article content fetching with cache, polling and local persistence.

Provides:
- ContentService.fetch_article_content() for foreground reads
- ContentService.prefetch_pages() to warm the local store in the background
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from readerkit.core.background import BackgroundTasks
from readerkit.core.pdf_fetcher import PDFFetcher
from readerkit.core.reconciler import ContentReconciler
from readerkit.core.retry import PendingRetry, RetryPolicy
from readerkit.core.settings import Settings
from readerkit.core.storage import DB, StoreContext
from readerkit.providers.content_types import ContentStatus, FetchedContent
from readerkit.providers.reader import (
    ArticleError,
    BadDataError,
    ContentFetchError,
    ReaderClient,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ContentService:
    """Fetches article content for items, polling while the server renders it."""

    def __init__(
        self,
        client: ReaderClient,
        store: StoreContext,
        reconciler: ContentReconciler,
        *,
        policy: RetryPolicy | None = None,
        current_username: str | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self._reconciler = reconciler
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._prefetching: dict[str, asyncio.Task[None]] = {}
        self.current_username = current_username

    async def close(self) -> None:
        """Close HTTP clients."""
        await self._client.close()
        await self._reconciler.close()

    # --- Cache ---

    async def cached_article_content(self, item_id: str) -> FetchedContent | None:
        """Content stored locally for the item, or None if it was never fetched."""
        return await self._store.perform(lambda db: self._read_cached(db, item_id))

    @staticmethod
    def _read_cached(db: DB, item_id: str) -> FetchedContent | None:
        record = db.get_linked_item(item_id)
        if record is None or record["html_content"] is None:
            return None

        highlights = db.get_highlights_for_item(item_id, include_deleted=False)
        # Only succeeded content is ever stored
        return FetchedContent(
            html_content=record["html_content"],
            highlights=tuple(highlights),
            content_status=ContentStatus.SUCCEEDED,
        )

    # --- Single fetch ---

    async def article_content(
        self,
        username: str,
        item_id: str,
        *,
        use_cache: bool,
    ) -> FetchedContent:
        """Return content for the item from the cache or one remote request.

        Succeeded content is persisted before returning. Processing content
        is returned as-is and never stored.

        Raises:
            BadDataError: If the server returned an error or a failed state.
            NetworkError: If the request or response decoding failed.
        """
        if use_cache:
            cached = await self.cached_article_content(item_id)
            if cached is not None:
                return cached

        result = await self._client.fetch_article(username, item_id)

        if isinstance(result, ArticleError):
            raise BadDataError(f"Server returned an error for {item_id}: {result.description}")

        # Older items have no state but almost always have content
        status = result.content_status
        if status in (None, ContentStatus.UNKNOWN):
            status = ContentStatus.SUCCEEDED
        if status == ContentStatus.FAILED:
            raise BadDataError(f"Content for {item_id} failed to process")

        if status == ContentStatus.SUCCEEDED:
            await self._reconciler.persist_article_content(
                result.item,
                result.html_content,
                result.highlights,
            )

        return FetchedContent(
            html_content=result.html_content,
            highlights=result.highlights,
            content_status=result.content_status or ContentStatus.UNKNOWN,
        )

    # --- Foreground ---

    async def fetch_article_content(
        self,
        item_id: str,
        username: str | None = None,
        *,
        use_cache: bool = True,
    ) -> FetchedContent:
        """Fetch content for an item, waiting for the server to finish rendering.

        Args:
            item_id: Item id (a slug is accepted too)
            username: User to fetch for, defaults to the current user
            use_cache: Serve locally stored content without a request

        Raises:
            UnauthorizedError: If no user is available.
            BadDataError: On a server error, a failed state, or when the
                content is still processing after the last attempt.
            NetworkError: On transport failure (not retried).
            asyncio.CancelledError: If cancelled while waiting to retry.
        """
        username = username or self.current_username
        if not username:
            raise UnauthorizedError("No current user to fetch content for")

        pending = PendingRetry(item_id=item_id)
        while True:
            content = await self.article_content(username, pending.item_id, use_cache=use_cache)

            if content.content_status.is_ready:
                return content

            if self._policy.exhausted(pending.attempt):
                raise BadDataError(
                    f"Content for {item_id} still processing after {pending.attempt} attempts"
                )

            await self._sleep(self._policy.delay_for(pending.attempt))
            pending = pending.next()
            logger.debug(f"fetching content for {item_id}. request count: {pending.attempt}")

    # --- Background ---

    async def prefetch_pages(self, item_ids: Iterable[str]) -> None:
        """Warm the local store for items, one after another.

        Results and errors are discarded. Does nothing without a current user.
        """
        username = self.current_username
        if not username:
            logger.debug("No current user, skipping prefetch")
            return

        sweep = asyncio.current_task()
        for item_id in item_ids:
            task = asyncio.create_task(
                self._prefetch_page(PendingRetry(item_id=item_id), username),
                name=f"prefetch:{item_id}",
            )
            self._prefetching[item_id] = task
            try:
                await task
            except asyncio.CancelledError:
                # The whole sweep was cancelled, not just this item
                if sweep is not None and sweep.cancelling():
                    raise
                logger.debug(f"prefetching task for {item_id} was cancelled")
            finally:
                # An overlapping sweep may have registered its own task since
                if self._prefetching.get(item_id) is task:
                    del self._prefetching[item_id]

    def cancel_prefetch(self, item_id: str) -> bool:
        """Cancel the in-flight prefetch of one item. Returns True if one was running."""
        task = self._prefetching.get(item_id)
        if task is None or task.done():
            return False
        return task.cancel()

    async def _prefetch_page(self, pending: PendingRetry, username: str) -> None:
        while True:
            try:
                content = await self.article_content(username, pending.item_id, use_cache=False)
            except ContentFetchError as e:
                logger.debug(f"Prefetch of {pending.item_id} stopped: {e}")
                return

            if not self._policy.should_retry(content.content_status, pending.attempt):
                return

            await self._sleep(self._policy.delay_for(pending.attempt))
            pending = pending.next()
            logger.debug(f"fetching content for {pending.item_id}. retry count: {pending.attempt}")


def create_content_service(
    settings: Settings,
    store: StoreContext,
    tasks: BackgroundTasks,
) -> ContentService:
    """Wire a ContentService from settings."""
    client = ReaderClient(
        settings.api_url,
        graphql_path=settings.graphql_path,
        token=settings.api_token,
        timeout=settings.http_timeout,
    )
    reconciler = ContentReconciler(store, tasks, PDFFetcher(store))
    return ContentService(
        client,
        store,
        reconciler,
        policy=RetryPolicy(
            max_attempts=settings.fetch_max_attempts,
            base_delay=settings.fetch_retry_delay,
        ),
        current_username=settings.username,
    )
