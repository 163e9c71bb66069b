"""
Tests for the WordPress REST API client.

Tests cover publishing, unpublishing, error mapping and plugin detection
with mocked HTTP responses.
"""

from unittest.mock import MagicMock, patch

import aiohttp
import pytest

from autopilot.wordpress_client import (
    AuthenticationError,
    ConnectionFailedError,
    NotFoundError,
    PermissionDeniedError,
    WordPressClient,
    WordPressError,
    seo_meta,
)


@pytest.fixture
def wp_post_response():
    return {
        "id": 321,
        "link": "https://brightsmiles.test/dental-implants/",
        "status": "publish",
        "title": {"rendered": "Dental Implants"},
        "content": {"rendered": "<p>Body</p>"},
    }


@pytest.fixture
def client():
    return WordPressClient("https://brightsmiles.test/", "editor", "abcd efgh")


class TestConfiguration:

    @pytest.mark.unit
    def test_api_url(self, client):
        assert client.api_url == "https://brightsmiles.test/wp-json/wp/v2"

    @pytest.mark.unit
    def test_auth_header(self, client):
        assert client.auth_header.startswith("Basic ")
        assert client._default_headers()["Authorization"] == client.auth_header

    @pytest.mark.unit
    def test_seo_meta_covers_both_plugins(self):
        meta = seo_meta("Title", "Description")
        assert meta["yoast_wpseo_title"] == meta["rank_math_title"] == "Title"
        assert meta["yoast_wpseo_metadesc"] == meta["rank_math_description"] == "Description"


class TestPosts:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_publish_post(self, client, mock_aiohttp_response, make_mock_session, wp_post_response):
        session = make_mock_session(mock_aiohttp_response(201, wp_post_response))
        with patch.object(client, "_get_session", return_value=session):
            post = await client.publish_post(
                "Dental Implants", "<p>Body</p>", meta=seo_meta("T", "D"), slug="dental-implants"
            )

        assert post == {
            "id": 321,
            "link": "https://brightsmiles.test/dental-implants/",
            "status": "publish",
            "title": "Dental Implants",
            "content": "<p>Body</p>",
        }
        method, url = session.request.call_args.args
        payload = session.request.call_args.kwargs["json"]
        assert (method, url) == ("POST", "https://brightsmiles.test/wp-json/wp/v2/posts")
        assert payload["status"] == "publish"
        assert payload["slug"] == "dental-implants"
        assert payload["meta"]["rank_math_title"] == "T"

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"link": "https://brightsmiles.test/x/"}, {"id": 0}, [], ""])
    async def test_created_post_without_id_is_an_error(
        self, client, mock_aiohttp_response, make_mock_session, body
    ):
        session = make_mock_session(mock_aiohttp_response(201, body))
        with patch.object(client, "_get_session", return_value=session):
            with pytest.raises(WordPressError, match="did not return a post id"):
                await client.publish_post("Dental Implants", "<p>Body</p>")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_status_rejected(self, client):
        with pytest.raises(ValueError):
            await client.publish_post("T", "<p>x</p>", status="trash")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unpublish_moves_to_draft(self, client, mock_aiohttp_response, make_mock_session):
        session = make_mock_session(mock_aiohttp_response(200, {"id": 321, "status": "draft"}))
        with patch.object(client, "_get_session", return_value=session):
            await client.unpublish_post(321)
        method, url = session.request.call_args.args
        assert method == "PUT"
        assert url.endswith("/posts/321")
        assert session.request.call_args.kwargs["json"] == {"status": "draft"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_post(self, client, mock_aiohttp_response, make_mock_session):
        session = make_mock_session(mock_aiohttp_response(200, {"status": "publish"}))
        with patch.object(client, "_get_session", return_value=session):
            post = await client.update_post(77, title="New title")
        assert post["id"] == 77
        assert session.request.call_args.kwargs["json"] == {"title": "New title"}


class TestErrorMapping:

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,exc_type,message",
        [
            (401, AuthenticationError, "credentials invalid"),
            (403, PermissionDeniedError, "permission to publish"),
            (404, NotFoundError, "REST API not found"),
            (502, WordPressError, "WordPress API error: 502"),
        ],
    )
    async def test_status_mapping(
        self, client, mock_aiohttp_response, make_mock_session, status, exc_type, message
    ):
        session = make_mock_session(mock_aiohttp_response(status, {"code": "err"}))
        with patch.object(client, "_get_session", return_value=session):
            with pytest.raises(exc_type) as exc_info:
                await client.publish_post("T", "<p>x</p>")
        assert message in str(exc_info.value)
        assert exc_info.value.status_code == status

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreachable_site(self, client):
        session = MagicMock()
        session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        with patch.object(client, "_get_session", return_value=session):
            with pytest.raises(ConnectionFailedError):
                await client.publish_post("T", "<p>x</p>")


class TestProbes:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_check_plugins(self, client, mock_aiohttp_response, make_mock_session):
        session = make_mock_session(
            mock_aiohttp_response(200, {"namespaces": ["wp/v2", "yoast/v1", "oembed/1.0"]})
        )
        with patch.object(client, "_get_session", return_value=session):
            plugins = await client.check_plugins()
        assert plugins.to_dict() == {"yoast": True, "rank_math": False}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_check_plugins_on_error(self, client, mock_aiohttp_response, make_mock_session):
        session = make_mock_session(mock_aiohttp_response(500, {}))
        with patch.object(client, "_get_session", return_value=session):
            plugins = await client.check_plugins()
        assert plugins.to_dict() == {"yoast": False, "rank_math": False}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_test_connection(self, client, mock_aiohttp_response, make_mock_session):
        session = make_mock_session(mock_aiohttp_response(200, {"id": 1, "name": "editor"}))
        with patch.object(client, "_get_session", return_value=session):
            assert await client.test_connection() is True

        session = make_mock_session(mock_aiohttp_response(401, {}))
        with patch.object(client, "_get_session", return_value=session):
            assert await client.test_connection() is False
