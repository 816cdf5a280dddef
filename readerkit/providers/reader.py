"""Reader GraphQL API client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

import httpx

from readerkit.providers.content_types import (
    ContentStatus,
    Highlight,
    Label,
    LinkedItem,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api-prod.omnivore.app"
DEFAULT_GRAPHQL_PATH = "/api/graphql"


class ContentFetchErrorKind(str, Enum):
    """Classification of content fetch errors exposed to callers."""

    UNAUTHORIZED = "unauthorized"  # No user to fetch for
    BAD_DATA = "bad_data"  # Server error branch, failed state or retries exhausted
    NETWORK = "network"  # Transport or decoding failure


class ContentFetchError(Exception):
    """Base exception for article content fetches."""

    kind: ContentFetchErrorKind


class UnauthorizedError(ContentFetchError):
    """No current user could be resolved."""

    kind = ContentFetchErrorKind.UNAUTHORIZED


class BadDataError(ContentFetchError):
    """The server could not provide usable content for the item."""

    kind = ContentFetchErrorKind.BAD_DATA


class NetworkError(ContentFetchError):
    """The request failed or the response could not be decoded."""

    kind = ContentFetchErrorKind.NETWORK


HIGHLIGHT_FIELDS = """
    id
    shortId
    quote
    prefix
    suffix
    patch
    annotation
    createdByMe
    createdAt
    updatedAt
"""

LABEL_FIELDS = """
    id
    name
    color
    description
    createdAt
"""

# The backend accepts an item id in place of the slug argument.
ARTICLE_CONTENT_QUERY = f"""
query ArticleContent($username: String!, $slug: String!) {{
  article(username: $username, slug: $slug) {{
    __typename
    ... on ArticleSuccess {{
      article {{
        id
        title
        createdAt
        savedAt
        readingProgressPercent
        readingProgressAnchorIndex
        image
        url
        description
        originalArticleUrl
        author
        publishedAt
        slug
        isArchived
        contentReader
        labels {{{LABEL_FIELDS}}}
        content
        highlights {{{HIGHLIGHT_FIELDS}}}
        state
      }}
    }}
    ... on ArticleError {{
      errorCodes
    }}
  }}
}}
"""


@dataclass(frozen=True)
class ArticleSuccess:
    """Success branch of the article result union."""

    item: LinkedItem
    html_content: str
    highlights: tuple[Highlight, ...]
    # None for older items saved before the server tracked a state
    content_status: ContentStatus | None


@dataclass(frozen=True)
class ArticleError:
    """Error branch of the article result union."""

    error_codes: tuple[str, ...]

    @property
    def description(self) -> str:
        return ", ".join(self.error_codes) or "unknown error"


ArticleResult = Union[ArticleSuccess, ArticleError]


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected an ISO timestamp, got {value!r}")
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_status(value: str | None) -> ContentStatus | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected a state name, got {value!r}")
    return ContentStatus(value.lower())


def parse_label(data: dict[str, Any]) -> Label:
    return Label(
        id=data["id"],
        name=data["name"],
        color=data["color"],
        description=data.get("description"),
        created_at=_parse_datetime(data.get("createdAt")),
    )


def parse_highlight(data: dict[str, Any]) -> Highlight:
    """Convert a GraphQL highlight object to a Highlight DTO."""
    return Highlight(
        id=data["id"],
        short_id=data["shortId"],
        quote=data.get("quote"),
        prefix=data.get("prefix"),
        suffix=data.get("suffix"),
        patch=data.get("patch"),
        annotation=data.get("annotation"),
        created_by_me=bool(data.get("createdByMe", True)),
        created_at=_parse_datetime(data.get("createdAt")),
        updated_at=_parse_datetime(data.get("updatedAt")),
    )


def parse_linked_item(data: dict[str, Any]) -> LinkedItem:
    """Convert a GraphQL article object to a LinkedItem DTO."""
    now = datetime.now(timezone.utc)
    return LinkedItem(
        id=data["id"],
        title=data["title"],
        slug=data["slug"],
        page_url=data["url"],
        created_at=_parse_datetime(data.get("createdAt")) or now,
        saved_at=_parse_datetime(data.get("savedAt")) or now,
        reading_progress=float(data.get("readingProgressPercent") or 0.0),
        reading_progress_anchor=int(data.get("readingProgressAnchorIndex") or 0),
        image_url=data.get("image"),
        description=data.get("description"),
        publisher_url=data.get("originalArticleUrl"),
        author=data.get("author"),
        publish_date=_parse_datetime(data.get("publishedAt")),
        is_archived=bool(data.get("isArchived", False)),
        content_reader=data.get("contentReader") or "WEB",
        labels=tuple(parse_label(label) for label in data.get("labels") or ()),
    )


def parse_article_result(data: dict[str, Any]) -> ArticleResult:
    """Map the tagged ArticleResult union onto ArticleSuccess / ArticleError.

    Raises:
        AttributeError, KeyError, TypeError, ValueError: If the payload is malformed.
    """
    typename = data.get("__typename")

    if typename == "ArticleError":
        return ArticleError(error_codes=tuple(data.get("errorCodes") or ()))

    if typename == "ArticleSuccess":
        article = data["article"]
        return ArticleSuccess(
            item=parse_linked_item(article),
            html_content=article["content"],
            highlights=tuple(parse_highlight(h) for h in article.get("highlights") or ()),
            content_status=_parse_status(article.get("state")),
        )

    raise ValueError(f"Unexpected article result type: {typename!r}")


class ReaderClient:
    """Client for the reader GraphQL API.

    Every call is a single attempt; polling and backoff live in the
    content service.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        graphql_path: str = DEFAULT_GRAPHQL_PATH,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._graphql_path = graphql_path
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def default_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = self._token
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        query: str,
        variables: dict[str, Any],
        *,
        path: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send one GraphQL request and return the decoded JSON body.

        Raises:
            NetworkError: On transport failure, non-2xx status or invalid JSON.
        """
        client = await self._get_client()
        try:
            resp = await client.post(
                path or self._graphql_path,
                json={"query": query, "variables": variables},
                headers=headers or self.default_headers,
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as e:
            raise NetworkError(f"GraphQL request failed: {e}") from e
        except ValueError as e:
            raise NetworkError(f"GraphQL response is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise NetworkError("GraphQL response is not an object")
        return payload

    async def fetch_article(self, username: str, slug: str) -> ArticleResult:
        """Fetch an article by slug (or item id) for the given user.

        Raises:
            NetworkError: If no article result could be decoded.
        """
        payload = await self.send(
            ARTICLE_CONTENT_QUERY,
            {"username": username, "slug": slug},
        )

        data = payload.get("data")
        article = data.get("article") if isinstance(data, dict) else None
        if not isinstance(article, dict):
            if payload.get("errors"):
                logger.debug(f"GraphQL errors for {slug}: {payload['errors']}")
            raise NetworkError("Response did not contain an article result")

        try:
            return parse_article_result(article)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise NetworkError(f"Could not decode article payload: {e}") from e
