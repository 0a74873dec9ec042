"""
Unit tests for the generation backends.

The Ollama backend runs against an httpx.MockTransport; the OpenAI backend
gets a mocked AsyncOpenAI client.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from src.tripweaver.exceptions import (
    NetworkError,
    ProviderCallError,
    ProviderTimeoutError,
    RateLimitError,
    ServerError,
)
from src.tripweaver.providers import GenerationBackendConfig, OllamaBackend, OpenAIBackend

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def ollama_backend(handler):
    config = GenerationBackendConfig(
        provider_id="mistral_7b",
        model="mistral:7b",
        base_url="http://ollama.test",
    )
    client = httpx.AsyncClient(
        base_url="http://ollama.test",
        transport=httpx.MockTransport(handler),
    )
    return OllamaBackend(config, client=client)


# ============================================
# Ollama
# ============================================

class TestOllamaBackend:
    """Tests for the Ollama backend."""

    def test_default_values(self):
        backend = OllamaBackend(GenerationBackendConfig(provider_id="local", model="qwen3:4b"))
        assert backend.base_url == OllamaBackend.DEFAULT_BASE_URL
        assert backend.model_name == "qwen3:4b"
        assert backend.provider_id == "local"

    async def test_complete_sends_generate_request(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "Day 1: Alfama", "done": True})

        backend = ollama_backend(handler)
        text = await backend.complete(
            "Plan Lisbon", system_prompt="Be brief", max_tokens=120, temperature=0.2
        )

        assert text == "Day 1: Alfama"
        assert seen["path"] == "/api/generate"
        assert seen["body"]["model"] == "mistral:7b"
        assert seen["body"]["system"] == "Be brief"
        assert seen["body"]["stream"] is False
        assert seen["body"]["options"] == {"temperature": 0.2, "num_predict": 120}
        await backend.close()

    async def test_rate_limit_maps_retry_after(self):
        backend = ollama_backend(
            lambda request: httpx.Response(429, headers={"retry-after": "3"}, text="busy")
        )

        with pytest.raises(RateLimitError) as exc_info:
            await backend.complete("hi")

        assert exc_info.value.retry_after == 3.0
        assert exc_info.value.provider_id == "mistral_7b"

    async def test_server_error(self):
        backend = ollama_backend(lambda request: httpx.Response(503, text="loading model"))

        with pytest.raises(ServerError) as exc_info:
            await backend.complete("hi")

        assert exc_info.value.status_code == 503
        assert exc_info.value.recoverable

    async def test_client_error_is_unrecoverable(self):
        backend = ollama_backend(lambda request: httpx.Response(404, text="model not found"))

        with pytest.raises(ProviderCallError) as exc_info:
            await backend.complete("hi")

        assert not exc_info.value.recoverable

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            await ollama_backend(handler).complete("hi")

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderTimeoutError):
            await ollama_backend(handler).complete("hi")

    async def test_invalid_json(self):
        backend = ollama_backend(lambda request: httpx.Response(200, content=b"not json"))

        with pytest.raises(ProviderCallError, match="invalid JSON"):
            await backend.complete("hi")

    async def test_empty_completion(self):
        backend = ollama_backend(lambda request: httpx.Response(200, json={"response": ""}))

        with pytest.raises(ProviderCallError, match="No completion"):
            await backend.complete("hi")


# ============================================
# OpenAI
# ============================================

@pytest.fixture
def openai_client():
    """Mock AsyncOpenAI client."""
    client = MagicMock()
    choice = MagicMock()
    choice.message.content = "Try the Alfama at sunset."
    client.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[choice]))
    client.close = AsyncMock()
    return client


@pytest.fixture
def openai_backend(openai_client):
    config = GenerationBackendConfig(provider_id="openai", model="gpt-4o-mini", api_key="sk-test")
    return OpenAIBackend(config, client=openai_client)


def _response(status_code):
    return httpx.Response(status_code, request=httpx.Request("POST", OPENAI_URL))


class TestOpenAIBackend:
    """Tests for the OpenAI backend."""

    async def test_complete_builds_messages(self, openai_backend, openai_client):
        text = await openai_backend.complete("What to do in Lisbon?", system_prompt="Be brief")

        assert text == "Try the Alfama at sunset."
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "What to do in Lisbon?"},
        ]

    async def test_without_system_prompt(self, openai_backend, openai_client):
        await openai_backend.complete("hi")
        messages = openai_client.chat.completions.create.call_args.kwargs["messages"]
        assert messages == [{"role": "user", "content": "hi"}]

    async def test_rate_limit(self, openai_backend, openai_client):
        openai_client.chat.completions.create.side_effect = openai.RateLimitError(
            "slow down", response=_response(429), body=None
        )

        with pytest.raises(RateLimitError):
            await openai_backend.complete("hi")

    async def test_timeout(self, openai_backend, openai_client):
        openai_client.chat.completions.create.side_effect = openai.APITimeoutError(
            request=httpx.Request("POST", OPENAI_URL)
        )

        with pytest.raises(ProviderTimeoutError):
            await openai_backend.complete("hi")

    async def test_connection_error(self, openai_backend, openai_client):
        openai_client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", OPENAI_URL)
        )

        with pytest.raises(NetworkError):
            await openai_backend.complete("hi")

    async def test_server_error(self, openai_backend, openai_client):
        openai_client.chat.completions.create.side_effect = openai.InternalServerError(
            "boom", response=_response(500), body=None
        )

        with pytest.raises(ServerError):
            await openai_backend.complete("hi")

    async def test_bad_request_is_unrecoverable(self, openai_backend, openai_client):
        openai_client.chat.completions.create.side_effect = openai.BadRequestError(
            "bad", response=_response(400), body=None
        )

        with pytest.raises(ProviderCallError) as exc_info:
            await openai_backend.complete("hi")

        assert not exc_info.value.recoverable

    async def test_empty_choices(self, openai_backend, openai_client):
        openai_client.chat.completions.create.return_value = MagicMock(choices=[])

        with pytest.raises(ProviderCallError, match="No completion"):
            await openai_backend.complete("hi")

    async def test_close(self, openai_backend, openai_client):
        await openai_backend.close()
        openai_client.close.assert_awaited_once()
