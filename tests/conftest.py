"""Shared fixtures: in-memory store, fake reader API, service factory."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from readerkit.core.background import BackgroundTasks
from readerkit.core.content_service import ContentService
from readerkit.core.pdf_fetcher import PDFFetcher
from readerkit.core.reconciler import ContentReconciler
from readerkit.core.storage import StoreContext, connect
from readerkit.providers.content_types import LinkedItem
from readerkit.providers.reader import ReaderClient

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeReaderAPI:
    """Serves queued GraphQL responses in order and records each request body."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[dict] = []
        self.headers: list[httpx.Headers] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        if not self.responses:
            raise AssertionError("Unexpected request to reader API")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _highlight(hid: str) -> dict:
    return {
        "id": hid,
        "shortId": f"short-{hid}",
        "quote": f"quote {hid}",
        "prefix": None,
        "suffix": None,
        "patch": f"patch {hid}",
        "annotation": None,
        "createdByMe": True,
        "createdAt": "2024-01-02T10:00:00.000Z",
        "updatedAt": "2024-01-02T10:00:00.000Z",
    }


@pytest.fixture
def article_payload():
    """Factory for an ArticleSuccess GraphQL response."""

    def _make(
        item_id: str = "abc",
        *,
        state: str | None = "SUCCEEDED",
        content: str = "<p>hi</p>",
        highlight_ids: tuple[str, ...] = (),
        title: str = "Fresh title",
        slug: str | None = None,
        url: str = "https://example.com/article",
        content_reader: str = "WEB",
    ) -> dict:
        return {
            "data": {
                "article": {
                    "__typename": "ArticleSuccess",
                    "article": {
                        "id": item_id,
                        "title": title,
                        "createdAt": "2024-01-01T08:00:00.000Z",
                        "savedAt": "2024-01-01T09:00:00.000Z",
                        "readingProgressPercent": 42.5,
                        "readingProgressAnchorIndex": 7,
                        "image": "https://example.com/cover.png",
                        "url": url,
                        "description": "A description",
                        "originalArticleUrl": "https://publisher.example.com/a",
                        "author": "Ada",
                        "publishedAt": "2023-12-31T00:00:00.000Z",
                        "slug": slug or f"{item_id}-slug",
                        "isArchived": False,
                        "contentReader": content_reader,
                        "labels": [
                            {"id": "l1", "name": "tech", "color": "#ff0000", "description": None, "createdAt": None}
                        ],
                        "content": content,
                        "highlights": [_highlight(h) for h in highlight_ids],
                        "state": state,
                    },
                }
            }
        }

    return _make


@pytest.fixture
def error_payload():
    def _make(*codes: str) -> dict:
        return {"data": {"article": {"__typename": "ArticleError", "errorCodes": list(codes)}}}

    return _make


@pytest.fixture
def make_item():
    """Factory for LinkedItem values as a prior library sync would store them."""

    def _make(item_id: str = "abc", **overrides) -> LinkedItem:
        fields = {
            "id": item_id,
            "title": "Old title",
            "slug": f"{item_id}-slug",
            "page_url": "https://example.com/article",
            "created_at": FIXED_NOW,
            "saved_at": FIXED_NOW,
        }
        fields.update(overrides)
        return LinkedItem(**fields)

    return _make


@pytest.fixture
def store():
    ctx = StoreContext(connect(":memory:"))
    yield ctx
    ctx.close()


@pytest.fixture
def db(store):
    return store.db


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def tasks():
    return BackgroundTasks()


@pytest.fixture
def make_service(store, sleep, tasks):
    """Build a ContentService talking to a FakeReaderAPI."""

    def _make(
        api: FakeReaderAPI,
        *,
        username: str | None = "alice",
        pdf_transport=None,
        policy=None,
        sleep_fn=None,
    ):
        client = ReaderClient("https://reader.test", token="secret-token", transport=api.transport())
        pdf_fetcher = PDFFetcher(store, transport=pdf_transport) if pdf_transport is not None else None
        reconciler = ContentReconciler(store, tasks, pdf_fetcher)
        return ContentService(
            client,
            store,
            reconciler,
            policy=policy,
            current_username=username,
            sleep=sleep_fn or sleep,
        )

    return _make


@pytest.fixture
def fake_api():
    """Factory: fake_api(response, ...) -> FakeReaderAPI."""
    return FakeReaderAPI
