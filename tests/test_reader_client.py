"""Tests for providers/reader.py"""

from datetime import datetime, timezone

import httpx
import pytest

from readerkit.providers.content_types import ContentStatus
from readerkit.providers.reader import (
    ArticleError,
    ArticleSuccess,
    ContentFetchErrorKind,
    NetworkError,
    ReaderClient,
    parse_article_result,
)


def _client(api) -> ReaderClient:
    return ReaderClient("https://reader.test", token="secret-token", transport=api.transport())


class TestParseArticleResult:
    """Tests for mapping the ArticleResult union."""

    def test_success_branch(self, article_payload):
        data = article_payload("abc", highlight_ids=("h1", "h2"), state="PROCESSING")["data"]["article"]
        result = parse_article_result(data)

        assert isinstance(result, ArticleSuccess)
        assert result.item.id == "abc"
        assert result.item.slug == "abc-slug"
        assert result.item.reading_progress == 42.5
        assert result.item.reading_progress_anchor == 7
        assert result.item.publish_date == datetime(2023, 12, 31, tzinfo=timezone.utc)
        assert [label.name for label in result.item.labels] == ["tech"]
        assert result.html_content == "<p>hi</p>"
        assert [h.id for h in result.highlights] == ["h1", "h2"]
        assert result.content_status == ContentStatus.PROCESSING

    def test_missing_state_is_none(self, article_payload):
        data = article_payload(state=None)["data"]["article"]
        result = parse_article_result(data)
        assert result.content_status is None

    def test_error_branch(self, error_payload):
        result = parse_article_result(error_payload("NOT_FOUND")["data"]["article"])
        assert isinstance(result, ArticleError)
        assert result.error_codes == ("NOT_FOUND",)
        assert result.description == "NOT_FOUND"

    def test_unknown_typename_rejected(self):
        with pytest.raises(ValueError):
            parse_article_result({"__typename": "Something"})

    def test_pdf_content_reader(self, article_payload):
        data = article_payload(content_reader="PDF")["data"]["article"]
        assert parse_article_result(data).item.is_pdf is True

    def test_non_string_state_rejected(self, article_payload):
        data = article_payload(state=["SUCCEEDED"])["data"]["article"]
        with pytest.raises(TypeError):
            parse_article_result(data)


@pytest.mark.asyncio
class TestReaderClient:
    """Tests for ReaderClient against a mocked transport."""

    async def test_fetch_article_sends_item_id_as_slug(self, fake_api, article_payload):
        api = fake_api(article_payload("abc"))
        client = _client(api)

        result = await client.fetch_article("alice", "abc")
        await client.close()

        assert isinstance(result, ArticleSuccess)
        assert api.requests[0]["variables"] == {"username": "alice", "slug": "abc"}
        assert "ArticleSuccess" in api.requests[0]["query"]
        assert api.headers[0]["authorization"] == "secret-token"

    async def test_error_branch_returned(self, fake_api, error_payload):
        api = fake_api(error_payload("UNAUTHORIZED"))
        client = _client(api)

        result = await client.fetch_article("alice", "abc")
        await client.close()

        assert isinstance(result, ArticleError)

    async def test_connection_error_is_network(self, fake_api):
        api = fake_api(httpx.ConnectError("connection refused"))
        client = _client(api)

        with pytest.raises(NetworkError) as exc_info:
            await client.fetch_article("alice", "abc")
        await client.close()

        assert exc_info.value.kind == ContentFetchErrorKind.NETWORK

    async def test_server_error_status_is_network(self, fake_api):
        api = fake_api(httpx.Response(503, text="unavailable"))
        client = _client(api)

        with pytest.raises(NetworkError):
            await client.fetch_article("alice", "abc")
        await client.close()

    async def test_invalid_json_is_network(self, fake_api):
        api = fake_api(httpx.Response(200, text="<html>not json</html>"))
        client = _client(api)

        with pytest.raises(NetworkError):
            await client.fetch_article("alice", "abc")
        await client.close()

    async def test_graphql_errors_without_data_is_network(self, fake_api):
        api = fake_api({"data": None, "errors": [{"message": "boom"}]})
        client = _client(api)

        with pytest.raises(NetworkError):
            await client.fetch_article("alice", "abc")
        await client.close()

    async def test_malformed_success_is_network(self, fake_api):
        api = fake_api({"data": {"article": {"__typename": "ArticleSuccess", "article": {"id": "abc"}}}})
        client = _client(api)

        with pytest.raises(NetworkError):
            await client.fetch_article("alice", "abc")
        await client.close()

    async def test_unknown_state_value_is_network(self, fake_api, article_payload):
        api = fake_api(article_payload(state="DELETED"))
        client = _client(api)

        with pytest.raises(NetworkError):
            await client.fetch_article("alice", "abc")
        await client.close()

    async def test_data_not_an_object_is_network(self, fake_api):
        api = fake_api({"data": [{"article": None}]})
        client = _client(api)

        with pytest.raises(NetworkError):
            await client.fetch_article("alice", "abc")
        await client.close()

    async def test_non_string_state_is_network(self, fake_api, article_payload):
        api = fake_api(article_payload(state=3))
        client = _client(api)

        with pytest.raises(NetworkError):
            await client.fetch_article("alice", "abc")
        await client.close()

    @pytest.mark.parametrize("field", ["createdAt", "savedAt", "publishedAt"])
    async def test_numeric_timestamp_is_network(self, fake_api, article_payload, field):
        payload = article_payload()
        payload["data"]["article"]["article"][field] = 1704096000
        api = fake_api(payload)
        client = _client(api)

        with pytest.raises(NetworkError):
            await client.fetch_article("alice", "abc")
        await client.close()
