"""
Test the Gemini client against a mocked transport, plus its response screening helpers.
"""

import json
from datetime import date, datetime
from unittest.mock import patch

import httpx
import pytest

from cfo_assistant.services.agents import llm
from cfo_assistant.services.agents.llm import (
    PER_MINUTE_LIMIT,
    call_gemini_api,
    get_rate_limit_status,
    is_valid_llm_response,
    strip_code_fence,
)

_RealAsyncClient = httpx.AsyncClient


@pytest.fixture(autouse=True)
def fresh_rate_limits(monkeypatch):
    monkeypatch.setitem(llm._rate_limit_state, "requests_today", 0)
    monkeypatch.setitem(llm._rate_limit_state, "last_reset", date.today())
    monkeypatch.setitem(llm._rate_limit_state, "requests_per_minute", [])


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")


def gemini_transport(handler):
    """Patch httpx.AsyncClient so every client the module builds talks to handler."""
    def factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)
    return patch.object(llm.httpx, "AsyncClient", side_effect=factory)


def gemini_reply(text):
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


class TestCallGemini:
    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self):
        assert await call_gemini_api("hello") is None

    @pytest.mark.asyncio
    async def test_returns_first_part_and_counts_request(self, api_key):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return gemini_reply('{"intent": "general"}')

        with gemini_transport(handler):
            reply = await call_gemini_api(
                "hello", system_instruction="route it", response_schema={"type": "object"}, temperature=0.0,
            )

        assert reply == '{"intent": "general"}'
        assert "key=test-key" in seen["url"]
        config = seen["body"]["generationConfig"]
        assert config["temperature"] == 0.0
        assert config["responseMimeType"] == "application/json"
        assert seen["body"]["systemInstruction"] == {"parts": [{"text": "route it"}]}
        assert llm._rate_limit_state["requests_today"] == 1

    @pytest.mark.asyncio
    async def test_empty_candidates(self, api_key):
        with gemini_transport(lambda request: httpx.Response(200, json={"candidates": []})):
            assert await call_gemini_api("hello") is None

    @pytest.mark.asyncio
    async def test_http_error_becomes_error_string(self, api_key):
        def handler(request):
            return httpx.Response(500, json={"error": {"message": "backend down"}})

        with gemini_transport(handler):
            reply = await call_gemini_api("hello")

        assert reply == "API error: 500 - backend down"
        assert not is_valid_llm_response(reply)

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_error_string(self, api_key):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        with gemini_transport(handler):
            reply = await call_gemini_api("hello")

        assert reply.startswith("Error calling LLM:")

    @pytest.mark.asyncio
    async def test_minute_limit(self, api_key):
        llm._rate_limit_state["requests_per_minute"].extend([datetime.now()] * PER_MINUTE_LIMIT)

        reply = await call_gemini_api("hello")

        assert reply == "Rate limit exceeded: Rate limit reached. Wait a minute."
        status = get_rate_limit_status()
        assert status["minute_remaining"] == 0
        assert status["error"]


class TestResponseScreening:
    @pytest.mark.parametrize("reply,valid", [
        (None, False),
        ("", False),
        ("API error: 429 - quota", False),
        ("Error calling LLM: timeout", False),
        ("Rate limit exceeded: Wait a minute.", False),
        ('{"intent": "general"', False),
        ('{"intent": "general"}', True),
        ("plain text answer", True),
    ])
    def test_is_valid_llm_response(self, reply, valid):
        assert is_valid_llm_response(reply) is valid

    def test_strip_code_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'
