"""Tests for ModelProtocol implementations (Anthropic + Ollama).

All tests work without actual API access: SDK calls are mocked and Ollama
HTTP traffic goes through ``httpx.MockTransport``.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from cogsustain.models.ollama import OllamaModel
from cogsustain.protocols import (
    ModelCapabilities,
    ModelMessage,
    ModelProtocol,
    ModelResponse,
    TransportError,
)
from cogsustain.types import MediaAttachment

PNG = MediaAttachment(b"\x89PNG", "image/png", "shot.png")
PDF = MediaAttachment(b"%PDF-1.4", "application/pdf", "notes.pdf")

# =============================================================================
# AnthropicModel tests
# =============================================================================


class TestAnthropicModelProperties:
    def test_model_id(self, anthropic_model):
        assert anthropic_model.model_id == "claude-sonnet-4-5-20250929"

    def test_model_id_custom(self):
        with _mock_anthropic_sdk():
            from cogsustain.models.anthropic import AnthropicModel

            model = AnthropicModel(model_id="claude-haiku-4-5-20251001", api_key="test-key")
        assert model.model_id == "claude-haiku-4-5-20251001"

    def test_capabilities(self, anthropic_model):
        caps = anthropic_model.capabilities
        assert isinstance(caps, ModelCapabilities)
        assert caps.provider == "anthropic"
        assert caps.supports_vision is True
        assert caps.supports_documents is True
        assert caps.supports_streaming is True
        assert caps.context_window == 200_000

    def test_satisfies_protocol(self, anthropic_model):
        assert isinstance(anthropic_model, ModelProtocol)

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.delenv("CLAUDE_API_KEY", raising=False)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key-123")
        mock_module = _MockAnthropicModule()
        with patch.dict("sys.modules", {"anthropic": mock_module}):
            from cogsustain.models.anthropic import AnthropicModel

            AnthropicModel()
        mock_module.AsyncAnthropic.assert_called_once_with(api_key="env-key-123")

    def test_claude_key_preferred(self, monkeypatch):
        monkeypatch.setenv("CLAUDE_API_KEY", "claude-key")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "anthropic-key")
        mock_module = _MockAnthropicModule()
        with patch.dict("sys.modules", {"anthropic": mock_module}):
            from cogsustain.models.anthropic import AnthropicModel

            AnthropicModel()
        mock_module.AsyncAnthropic.assert_called_once_with(api_key="claude-key")

    def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("CLAUDE_API_KEY", raising=False)
        with _mock_anthropic_sdk():
            from cogsustain.models.anthropic import AnthropicModel

            with pytest.raises(ValueError, match="API key is required"):
                AnthropicModel()

    def test_missing_anthropic_raises_import_error(self):
        with patch.dict("sys.modules", {"anthropic": None}):
            from cogsustain.models.anthropic import AnthropicModel

            with pytest.raises(ImportError, match="pip install anthropic"):
                AnthropicModel(api_key="test-key")


class TestAnthropicModelGenerate:
    @pytest.mark.asyncio
    async def test_converts_messages(self, anthropic_model):
        client = anthropic_model._client
        client.messages.create.return_value = _make_anthropic_response("Hi there")

        await anthropic_model.generate([ModelMessage(role="user", content="Hello")])

        kwargs = client.messages.create.call_args[1]
        assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]
        assert kwargs["model"] == "claude-sonnet-4-5-20250929"
        assert kwargs["max_tokens"] == 4096
        assert "temperature" not in kwargs

    @pytest.mark.asyncio
    async def test_system_param_merged_with_system_message(self, anthropic_model):
        client = anthropic_model._client
        client.messages.create.return_value = _make_anthropic_response("ok")

        await anthropic_model.generate(
            [
                ModelMessage(role="system", content="From message."),
                ModelMessage(role="user", content="Hi"),
            ],
            system="From param.",
            temperature=0.2,
        )

        kwargs = client.messages.create.call_args[1]
        assert kwargs["system"] == "From param.\n\nFrom message."
        assert kwargs["temperature"] == 0.2
        assert [m["role"] for m in kwargs["messages"]] == ["user"]

    @pytest.mark.asyncio
    async def test_media_becomes_content_blocks(self, anthropic_model):
        client = anthropic_model._client
        client.messages.create.return_value = _make_anthropic_response("ok")

        await anthropic_model.generate(
            [ModelMessage(role="user", content="Look", media=[PNG, PDF])]
        )

        blocks = client.messages.create.call_args[1]["messages"][0]["content"]
        assert [b["type"] for b in blocks] == ["image", "document", "text"]
        assert blocks[0]["source"] == {
            "type": "base64",
            "media_type": "image/png",
            "data": PNG.base64(),
        }
        assert blocks[2]["text"] == "Look"

    @pytest.mark.asyncio
    async def test_parses_response(self, anthropic_model):
        anthropic_model._client.messages.create.return_value = _make_anthropic_response(
            "Answer", input_tokens=12, output_tokens=3
        )
        response = await anthropic_model.generate([ModelMessage(role="user", content="Q")])

        assert isinstance(response, ModelResponse)
        assert response.content == "Answer"
        assert response.usage == {"input_tokens": 12, "output_tokens": 3}
        assert response.stop_reason == "end_turn"
        assert response.model_id == "claude-sonnet-4-5-20250929"

    @pytest.mark.asyncio
    async def test_error_wrapped(self, anthropic_model):
        anthropic_model._client.messages.create.side_effect = RuntimeError("boom")
        with pytest.raises(TransportError, match="boom"):
            await anthropic_model.generate([ModelMessage(role="user", content="Q")])


class TestAnthropicModelStream:
    @pytest.mark.asyncio
    async def test_yields_text_then_final_usage(self, anthropic_model):
        _setup_mock_stream(anthropic_model._client, ["Hel", "lo"], input_tokens=5, output_tokens=2)

        chunks = [
            c async for c in anthropic_model.stream(
                [ModelMessage(role="user", content="Hi")], system="Be brief."
            )
        ]

        assert [c.content for c in chunks] == ["Hel", "lo", ""]
        assert chunks[-1].is_final
        assert chunks[-1].usage == {"input_tokens": 5, "output_tokens": 2}
        kwargs = anthropic_model._client.messages.stream.call_args[1]
        assert kwargs["system"] == "Be brief."

    @pytest.mark.asyncio
    async def test_stream_error_wrapped(self, anthropic_model):
        anthropic_model._client.messages.stream.side_effect = RuntimeError("dropped")
        with pytest.raises(TransportError, match="Anthropic streaming error"):
            async for _ in anthropic_model.stream([ModelMessage(role="user", content="Hi")]):
                pass


# =============================================================================
# OllamaModel tests
# =============================================================================


class TestOllamaModelProperties:
    def test_defaults(self):
        model = OllamaModel()
        assert model.model_id == "llama3.2:latest"
        caps = model.capabilities
        assert caps.provider == "ollama"
        assert caps.context_window == 8192
        assert caps.supports_vision is True
        assert caps.supports_documents is False

    def test_custom_context_window(self):
        model = OllamaModel(model_id="qwen2.5:7b", context_window=32768)
        assert model.capabilities.context_window == 32768
        assert model.capabilities.model_id == "qwen2.5:7b"


class TestOllamaModelGenerate:
    @pytest.mark.asyncio
    async def test_posts_chat_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=_ollama_body("Hi", done_reason="stop"))

        model = _ollama_with(handler)
        response = await model.generate(
            [ModelMessage(role="user", content="Hello", media=[PNG, PDF])],
            system="Be nice.",
            temperature=0.1,
            max_tokens=50,
        )

        payload = seen[0]
        assert payload["model"] == "llama3.2:latest"
        assert payload["stream"] is False
        assert payload["options"] == {"temperature": 0.1, "num_predict": 50}
        assert payload["messages"][0] == {"role": "system", "content": "Be nice."}
        assert payload["messages"][1]["images"] == [PNG.base64()]
        assert response.content == "Hi"
        assert response.usage == {"input_tokens": 7, "output_tokens": 2}
        assert response.stop_reason == "stop"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error_class",
        [(401, "auth"), (429, "rate_limit"), (500, "server"), (404, "unknown")],
    )
    async def test_http_errors_classified(self, status, error_class):
        model = _ollama_with(lambda request: httpx.Response(status, text="nope"))
        with pytest.raises(TransportError) as exc_info:
            await model.generate([ModelMessage(role="user", content="Hi")])
        assert exc_info.value.error_class == error_class

    @pytest.mark.asyncio
    async def test_connection_error_is_timeout_class(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        model = _ollama_with(handler)
        with pytest.raises(TransportError, match="Cannot connect") as exc_info:
            await model.generate([ModelMessage(role="user", content="Hi")])
        assert exc_info.value.error_class == "timeout"


class TestOllamaModelStream:
    @pytest.mark.asyncio
    async def test_streams_ndjson(self):
        lines = [
            {"message": {"content": "Hel"}, "done": False},
            {"message": {"content": "lo"}, "done": False},
            {"message": {"content": ""}, "done": True, "prompt_eval_count": 4, "eval_count": 2},
        ]
        body = "\n".join(json.dumps(line) for line in lines) + "\n"
        model = _ollama_with(lambda request: httpx.Response(200, text=body))

        chunks = [c async for c in model.stream([ModelMessage(role="user", content="Hi")])]

        assert [c.content for c in chunks] == ["Hel", "lo", ""]
        assert chunks[-1].is_final
        assert chunks[-1].usage == {"input_tokens": 4, "output_tokens": 2}

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        model = _ollama_with(lambda request: httpx.Response(503, text="loading"))
        with pytest.raises(TransportError, match="loading") as exc_info:
            async for _ in model.stream([ModelMessage(role="user", content="Hi")]):
                pass
        assert exc_info.value.error_class == "server"

    @pytest.mark.asyncio
    async def test_stream_error_line(self):
        body = json.dumps({"error": "model not found"}) + "\n"
        model = _ollama_with(lambda request: httpx.Response(200, text=body))
        with pytest.raises(TransportError, match="model not found"):
            async for _ in model.stream([ModelMessage(role="user", content="Hi")]):
                pass

    @pytest.mark.asyncio
    async def test_stream_malformed_line(self):
        model = _ollama_with(lambda request: httpx.Response(200, text="{half\n"))
        with pytest.raises(TransportError, match="malformed"):
            async for _ in model.stream([ModelMessage(role="user", content="Hi")]):
                pass


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def anthropic_model():
    """Create an AnthropicModel with a mocked SDK client."""
    with _mock_anthropic_sdk():
        from cogsustain.models.anthropic import AnthropicModel

        model = AnthropicModel(api_key="test-key-123")
    client = MagicMock()
    client.messages.create = AsyncMock()
    model._client = client
    return model


# =============================================================================
# Test helpers: Anthropic mocks
# =============================================================================


class _MockAnthropicModule:
    """Fake anthropic module for import mocking."""

    def __init__(self):
        self.AsyncAnthropic = MagicMock()


def _mock_anthropic_sdk():
    """Context manager that mocks the anthropic import."""
    return patch.dict("sys.modules", {"anthropic": _MockAnthropicModule()})


def _make_anthropic_response(
    text: str,
    *,
    input_tokens: int = 0,
    output_tokens: int = 0,
    stop_reason: str = "end_turn",
    model: str = "claude-sonnet-4-5-20250929",
) -> SimpleNamespace:
    """Create a fake Anthropic API response."""
    usage = SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens)
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=usage,
        stop_reason=stop_reason,
        model=model,
    )


class _FakeMessageStream:
    """Async context manager standing in for ``client.messages.stream()``."""

    def __init__(self, text_chunks: list[str], usage: SimpleNamespace) -> None:
        self._chunks = text_chunks
        self._usage = usage
        self.text_stream = self._texts()

    async def _texts(self):
        for chunk in self._chunks:
            yield chunk

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def get_final_message(self):
        return SimpleNamespace(usage=self._usage)


def _setup_mock_stream(
    client: MagicMock,
    text_chunks: list[str],
    *,
    input_tokens: int = 0,
    output_tokens: int = 0,
) -> None:
    usage = SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens)
    client.messages.stream = MagicMock(return_value=_FakeMessageStream(text_chunks, usage))


# =============================================================================
# Test helpers: Ollama transport
# =============================================================================


def _ollama_with(handler: Any) -> OllamaModel:
    client = httpx.AsyncClient(
        base_url="http://localhost:11434", transport=httpx.MockTransport(handler)
    )
    return OllamaModel(client=client)


def _ollama_body(content: str, **extra: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "model": "llama3.2:latest",
        "message": {"role": "assistant", "content": content},
        "done": True,
        "prompt_eval_count": 7,
        "eval_count": 2,
    }
    data.update(extra)
    return data
