"""
Unit tests for HttpResponseTransport.

Uses httpx.MockTransport so no network is touched.
"""

import json

import httpx
import pytest

from hemisphere.errors import TransportError
from hemisphere.integrations.transport import HttpResponseTransport


def make_transport(handler):
    client = httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(handler))
    return HttpResponseTransport("http://api.test", client=client)


class TestHttpResponseTransport:
    @pytest.mark.asyncio
    async def test_posts_camel_case_payload(self, make_response):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "srv-42"})

        response = make_response(self_confidence=0.8)
        async with make_transport(handler) as transport:
            server_id = await transport(response)

        assert server_id == "srv-42"
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/responses"
        assert seen["body"]["id"] == response.id
        assert seen["body"]["itemId"] == response.item_id
        assert seen["body"]["latencyMs"] == 1_500
        assert seen["body"]["isCorrect"] is True
        assert seen["body"]["selfConfidence"] == 0.8

    @pytest.mark.asyncio
    async def test_numeric_id_is_stringified(self, make_response):
        async with make_transport(lambda request: httpx.Response(200, json={"id": 7})) as transport:
            assert await transport(make_response()) == "7"

    @pytest.mark.asyncio
    async def test_http_error_raises(self, make_response):
        async with make_transport(lambda request: httpx.Response(503, text="busy")) as transport:
            with pytest.raises(TransportError) as exc_info:
                await transport(make_response())

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            httpx.Response(200, text="<html>ok</html>"),
            httpx.Response(200, json={"status": "ok"}),
            httpx.Response(200, json={"id": ""}),
            httpx.Response(200, json=["srv-1"]),
        ],
    )
    async def test_unusable_body_raises(self, reply, make_response):
        async with make_transport(lambda request: reply) as transport:
            with pytest.raises(TransportError):
                await transport(make_response())

    @pytest.mark.asyncio
    async def test_from_settings(self, test_settings):
        transport = HttpResponseTransport.from_settings(test_settings)

        assert transport.base_url == "http://api.test"
        assert transport.path == test_settings.api_responses_path
        assert transport._client.headers["Authorization"] == "Bearer test-key"
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        transport = HttpResponseTransport("http://api.test/")

        assert transport.base_url == "http://api.test"
        assert "Authorization" not in transport._client.headers
        await transport.aclose()
