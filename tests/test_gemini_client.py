"""Tests for the Gemini REST client using httpx's mock transport."""

import json

import httpx
import pytest

from wa_outreach.integrations.gemini import (
    GeminiClient,
    GeminiError,
    extract_text,
    image_part,
    text_part,
)


def _reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class TestExtractText:

    def test_first_candidate_text(self):
        assert extract_text(_reply("hello")) == "hello"

    @pytest.mark.parametrize("payload", [
        {},
        {"candidates": []},
        {"candidates": [{}]},
        {"candidates": [{"content": {"parts": []}}]},
        {"candidates": [{"content": {"parts": [{"inline_data": {}}]}}]},
        {"candidates": ["junk"]},
    ])
    def test_odd_shapes_give_empty_text(self, payload):
        assert extract_text(payload) == ""


class TestGeminiClient:

    @pytest.mark.asyncio
    async def test_posts_parts_and_returns_text(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = request.url
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_reply("[]"))

        async with GeminiClient("secret", base_url="https://gemini.test/v1beta",
                                transport=httpx.MockTransport(handler)) as client:
            text = await client.generate("gemini-2.0-flash", [text_part("hi"), image_part("abcd", "image/png")])

        assert text == "[]"
        assert seen["url"].path == "/v1beta/models/gemini-2.0-flash:generateContent"
        assert seen["url"].params["key"] == "secret"
        assert seen["body"] == {"contents": [{"parts": [
            {"text": "hi"},
            {"inline_data": {"mime_type": "image/png", "data": "abcd"}},
        ]}]}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(403, text="API key not valid"))

        async with GeminiClient("bad", base_url="https://gemini.test", transport=transport) as client:
            with pytest.raises(GeminiError) as exc_info:
                await client.generate("m", [text_part("hi")])

        assert exc_info.value.status_code == 403
        assert "API key not valid" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        async with GeminiClient("k", base_url="https://gemini.test",
                                transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(GeminiError) as exc_info:
                await client.generate("m", [text_part("hi")])

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))

        async with GeminiClient("k", base_url="https://gemini.test", transport=transport) as client:
            with pytest.raises(GeminiError):
                await client.generate("m", [text_part("hi")])
