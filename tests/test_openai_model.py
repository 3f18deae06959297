"""Tests for OpenAIModel.

The ``openai`` SDK is replaced by a fake module, so no network access or
installed package is needed.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cogsustain.protocols import ModelMessage, ModelResponse, TransportError
from cogsustain.types import MediaAttachment


class _MockOpenAIModule:
    def __init__(self):
        self.AsyncOpenAI = MagicMock()


@pytest.fixture
def openai_model():
    with patch.dict("sys.modules", {"openai": _MockOpenAIModule()}):
        from cogsustain.models.openai import OpenAIModel

        model = OpenAIModel(api_key="test-key")
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    model._client = client
    return model


def _completion(text, *, finish_reason="stop", prompt_tokens=3, completion_tokens=4):
    return SimpleNamespace(
        choices=[
            SimpleNamespace(message=SimpleNamespace(content=text), finish_reason=finish_reason)
        ],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        model="gpt-4o-mini",
    )


def _delta(text, finish_reason=None):
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=SimpleNamespace(content=text), finish_reason=finish_reason)],
        usage=None,
    )


async def _aiter(items):
    for item in items:
        yield item


class TestOpenAIModelProperties:
    def test_defaults(self, openai_model):
        assert openai_model.model_id == "gpt-4o-mini"
        caps = openai_model.capabilities
        assert caps.provider == "openai"
        assert caps.context_window == 128_000
        assert caps.supports_vision is True
        assert caps.supports_documents is False

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with patch.dict("sys.modules", {"openai": _MockOpenAIModule()}):
            from cogsustain.models.openai import OpenAIModel

            with pytest.raises(ValueError, match="OPENAI_API_KEY"):
                OpenAIModel()

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        module = _MockOpenAIModule()
        with patch.dict("sys.modules", {"openai": module}):
            from cogsustain.models.openai import OpenAIModel

            OpenAIModel()
        module.AsyncOpenAI.assert_called_once_with(api_key="sk-env")

    def test_missing_package(self):
        with patch.dict("sys.modules", {"openai": None}):
            from cogsustain.models.openai import OpenAIModel

            with pytest.raises(ImportError, match="pip install openai"):
                OpenAIModel(api_key="k")


class TestOpenAIModelGenerate:
    @pytest.mark.asyncio
    async def test_system_prompt_prepended(self, openai_model):
        create = openai_model._client.chat.completions.create
        create.return_value = _completion("Hi")

        response = await openai_model.generate(
            [ModelMessage(role="user", content="Hello")], system="Be kind.", max_tokens=99
        )

        kwargs = create.call_args[1]
        assert kwargs["messages"] == [
            {"role": "system", "content": "Be kind."},
            {"role": "user", "content": "Hello"},
        ]
        assert kwargs["max_tokens"] == 99
        assert "stream" not in kwargs
        assert isinstance(response, ModelResponse)
        assert response.content == "Hi"
        assert response.usage == {"input_tokens": 3, "output_tokens": 4}
        assert response.stop_reason == "stop"

    @pytest.mark.asyncio
    async def test_media_parts(self, openai_model):
        create = openai_model._client.chat.completions.create
        create.return_value = _completion("ok")
        image = MediaAttachment(b"img", "image/jpeg")
        doc = MediaAttachment(b"doc", "application/pdf", "paper.pdf")

        await openai_model.generate(
            [ModelMessage(role="user", content="See these", media=[image, doc])]
        )

        parts = create.call_args[1]["messages"][0]["content"]
        assert parts[0] == {"type": "text", "text": "See these"}
        assert parts[1]["image_url"]["url"] == f"data:image/jpeg;base64,{image.base64()}"
        assert parts[2] == {"type": "text", "text": "[Attached document: paper.pdf]"}

    @pytest.mark.asyncio
    async def test_none_content_becomes_empty(self, openai_model):
        openai_model._client.chat.completions.create.return_value = _completion(None)
        response = await openai_model.generate([ModelMessage(role="user", content="Hi")])
        assert response.content == ""


class TestOpenAIModelStream:
    @pytest.mark.asyncio
    async def test_stream_with_usage_chunk(self, openai_model):
        usage_only = SimpleNamespace(
            choices=[], usage=SimpleNamespace(prompt_tokens=8, completion_tokens=2)
        )
        create = openai_model._client.chat.completions.create
        create.return_value = _aiter([_delta("Hel"), _delta("lo", "stop"), usage_only])

        chunks = [c async for c in openai_model.stream([ModelMessage(role="user", content="Hi")])]

        kwargs = create.call_args[1]
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert [c.content for c in chunks] == ["Hel", "lo", ""]
        assert chunks[1].is_final
        assert chunks[2].usage == {"input_tokens": 8, "output_tokens": 2}

    @pytest.mark.asyncio
    async def test_stream_failure_mid_way(self, openai_model):
        async def broken():
            yield _delta("Hel")
            raise RuntimeError("connection reset")

        openai_model._client.chat.completions.create.return_value = broken()

        received = []
        with pytest.raises(TransportError, match="connection reset"):
            async for chunk in openai_model.stream([ModelMessage(role="user", content="Hi")]):
                received.append(chunk.content)
        assert received == ["Hel"]
