"""Unit tests for the LLM backends and their HTTP helper."""

from __future__ import annotations

import io
import json
import urllib.error
from types import SimpleNamespace
from typing import Any

import pytest
from google import genai
from google.genai import errors as genai_errors

from inbox_synopsis.exceptions import ConfigurationError, LLMServiceError
from inbox_synopsis.gemini.client import GeminiClient
from inbox_synopsis.ollama.client import OllamaClient
from inbox_synopsis.utils import http


class _Response(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _urlopen_returning(body: dict, captured: list):
    def fake_urlopen(req, timeout):
        captured.append((req, timeout))
        return _Response(json.dumps(body).encode("utf-8"))

    return fake_urlopen


class TestPostJson:
    def test_http_error_carries_status_and_body(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_urlopen(req, timeout):
            raise urllib.error.HTTPError(req.full_url, 429, "Too Many", {}, io.BytesIO(b'{"error": {"code": 429}}'))

        monkeypatch.setattr(http.urllib.request, "urlopen", fake_urlopen)

        with pytest.raises(LLMServiceError) as info:
            http.post_json("http://llm/api", {}, timeout=5, label="Test")

        assert info.value.status == 429
        assert info.value.payload == '{"error": {"code": 429}}'

    def test_unreachable_service(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_urlopen(req, timeout):
            raise urllib.error.URLError("connection refused")

        monkeypatch.setattr(http.urllib.request, "urlopen", fake_urlopen)

        with pytest.raises(LLMServiceError) as info:
            http.post_json("http://llm/api", {}, timeout=5, label="Test")

        assert info.value.status is None

    def test_invalid_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(http.urllib.request, "urlopen", lambda req, timeout: _Response(b"<html>"))

        with pytest.raises(LLMServiceError):
            http.post_json("http://llm/api", {}, timeout=5, label="Test")


class TestOllamaClient:
    """Test suite for OllamaClient class."""

    def test_ollama_client_initialization(self, settings) -> None:
        """Test that Ollama client is properly initialized."""
        client = OllamaClient(settings)

        assert client.settings.ollama_host == "http://localhost:11434"

    @pytest.mark.asyncio
    async def test_generate_posts_prompt(self, settings, monkeypatch: pytest.MonkeyPatch) -> None:
        captured: list = []
        monkeypatch.setattr(http.urllib.request, "urlopen", _urlopen_returning({"response": " Summary: hi \n"}, captured))

        text = await OllamaClient(settings).generate("Test prompt")

        req, timeout = captured[0]
        assert text == "Summary: hi"
        assert req.full_url == "http://localhost:11434/api/generate"
        assert json.loads(req.data) == {"model": settings.ollama_model, "prompt": "Test prompt", "stream": False}
        assert timeout == settings.llm_timeout

    @pytest.mark.asyncio
    async def test_generate_reports_model_errors(self, settings, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(http.urllib.request, "urlopen", _urlopen_returning({"error": "model not found"}, []))

        with pytest.raises(LLMServiceError):
            await OllamaClient(settings).generate("Test prompt")


class _FakeModels:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self._response = response
        self._error = error

    async def generate_content(self, *, model: str, contents: str) -> Any:
        self.calls.append({"model": model, "contents": contents})
        if self._error is not None:
            raise self._error
        return self._response


class _FakeGenaiClient:
    """Mimics ``genai.Client(...).aio.models.generate_content``."""

    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.aio = SimpleNamespace(models=_FakeModels(response, error))


class TestGeminiClient:
    @pytest.mark.asyncio
    async def test_generate_returns_response_text(self, settings) -> None:
        sdk = _FakeGenaiClient(SimpleNamespace(text="Summary: done"))
        keys: list[str] = []

        def factory(api_key: str) -> _FakeGenaiClient:
            keys.append(api_key)
            return sdk

        client = GeminiClient(settings, client_factory=factory)
        text = await client.generate("prompt")
        await client.generate("again")

        assert text == "Summary: done"
        assert keys == ["test-key"]
        assert sdk.aio.models.calls[0] == {"model": "gemini-2.0-flash", "contents": "prompt"}

    @pytest.mark.asyncio
    async def test_empty_response_is_error(self, settings) -> None:
        client = GeminiClient(settings, client_factory=lambda key: _FakeGenaiClient(SimpleNamespace(text=None)))

        with pytest.raises(LLMServiceError):
            await client.generate("prompt")

    @pytest.mark.asyncio
    async def test_api_errors_propagate(self, settings) -> None:
        error = genai_errors.ClientError(429, {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED"}})
        client = GeminiClient(settings, client_factory=lambda key: _FakeGenaiClient(error=error))

        with pytest.raises(genai_errors.APIError) as info:
            await client.generate("prompt")

        assert info.value.code == 429

    @pytest.mark.asyncio
    async def test_missing_api_key(self, settings) -> None:
        settings.gemini_api_key = None
        client = GeminiClient(settings, client_factory=lambda key: pytest.fail("client built without a key"))

        with pytest.raises(ConfigurationError):
            await client.generate("prompt")

    def test_default_factory_builds_sdk_client(self, settings) -> None:
        client = GeminiClient(settings)

        assert isinstance(client._build_client("test-key"), genai.Client)
