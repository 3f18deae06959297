"""OpenAIModel: ModelProtocol implementation for OpenAI's API.

Wraps the ``openai`` Python SDK's async client. The SDK is imported
lazily so that the module can be imported without having ``openai``
installed (the import fails only when the class is instantiated).
"""

from __future__ import annotations

import logging
import os
from typing import Any, AsyncIterator, Optional

from cogsustain.protocols import (
    ModelCapabilities,
    ModelChunk,
    ModelMessage,
    ModelResponse,
    TransportError,
)

logger = logging.getLogger(__name__)


class OpenAIModelError(TransportError):
    """Raised when the OpenAI SDK reports an error."""


class OpenAIModel:
    """ModelProtocol implementation backed by the OpenAI API.

    Requires the ``openai`` package::

        pip install openai
        # or
        pip install cogsustain[openai]

    Usage::

        model = OpenAIModel()  # uses OPENAI_API_KEY env var
        response = await model.generate([ModelMessage(role="user", content="Hello")])
    """

    def __init__(
        self,
        model_id: str = "gpt-4o-mini",
        *,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> None:
        try:
            import openai as _openai  # noqa: F811
        except ImportError:
            raise ImportError(
                "The 'openai' package is required for OpenAIModel. "
                "Install it with: pip install openai"
            ) from None

        resolved_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not resolved_key:
            raise ValueError("An API key is required. Pass api_key= or set OPENAI_API_KEY.")

        self._model_id = model_id
        self._max_tokens = max_tokens
        self._client = _openai.AsyncOpenAI(api_key=resolved_key)

    # ---- ModelProtocol properties ----

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider="openai",
            context_window=128_000,
            max_output_tokens=self._max_tokens,
            supports_vision=True,
            supports_documents=False,
            supports_streaming=True,
        )

    # ---- Generate ----

    async def generate(
        self,
        messages: list[ModelMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> ModelResponse:
        """Generate a complete response via the OpenAI chat completions API."""
        kwargs = self._build_kwargs(
            self._prepare_messages(messages, system),
            temperature=temperature,
            max_tokens=max_tokens,
        )

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except Exception as exc:
            logger.debug("OpenAI API generate failed: %s", exc, exc_info=True)
            raise self._classify_error(exc, "OpenAI API error") from exc

        return self._parse_response(response)

    # ---- Stream ----

    async def stream(
        self,
        messages: list[ModelMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> AsyncIterator[ModelChunk]:
        """Stream a response fragment by fragment."""
        kwargs = self._build_kwargs(
            self._prepare_messages(messages, system),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    # Final chunk with usage only
                    yield ModelChunk(content="", is_final=True, usage=self._usage(chunk))
                    continue

                content = chunk.choices[0].delta.content or ""
                if chunk.choices[0].finish_reason:
                    yield ModelChunk(content=content, is_final=True, usage=self._usage(chunk))
                else:
                    yield ModelChunk(content=content)
        except Exception as exc:
            logger.debug("OpenAI API stream failed: %s", exc, exc_info=True)
            raise self._classify_error(exc, "OpenAI streaming error") from exc

    # ---- Internal helpers ----

    @staticmethod
    def _usage(payload: Any) -> dict[str, int]:
        usage = getattr(payload, "usage", None)
        if not usage:
            return {}
        return {
            "input_tokens": usage.prompt_tokens,
            "output_tokens": usage.completion_tokens,
        }

    @staticmethod
    def _content_parts(msg: ModelMessage) -> Any:
        """Plain string content, or text plus image_url parts for images.

        Non-image attachments are not accepted by chat completions; they
        are referenced by name in the text instead.
        """
        if not msg.media:
            return msg.content
        parts: list[dict[str, Any]] = [{"type": "text", "text": msg.content}]
        for media in msg.media:
            if media.is_image:
                parts.append(
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{media.mime_type};base64,{media.base64()}"},
                    }
                )
            else:
                label = media.name or media.mime_type
                parts.append({"type": "text", "text": f"[Attached document: {label}]"})
        return parts

    def _prepare_messages(
        self,
        messages: list[ModelMessage],
        system: Optional[str],
    ) -> list[dict[str, Any]]:
        """Convert ModelMessages to OpenAI chat format."""
        api_messages: list[dict[str, Any]] = []

        # Prepend explicit system param as a system message
        if system:
            api_messages.append({"role": "system", "content": system})

        for msg in messages:
            api_messages.append({"role": msg.role, "content": self._content_parts(msg)})

        return api_messages

    def _build_kwargs(
        self,
        api_messages: list[dict[str, Any]],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        """Build the kwargs dict for the OpenAI API call."""
        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "messages": api_messages,
            "max_tokens": max_tokens or self._max_tokens,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs

    def _parse_response(self, response: Any) -> ModelResponse:
        """Convert an OpenAI response to ModelResponse."""
        choice = response.choices[0]
        return ModelResponse(
            content=choice.message.content or "",
            usage=self._usage(response),
            stop_reason=choice.finish_reason,
            model_id=response.model,
        )

    @staticmethod
    def _classify_error(exc: Exception, prefix: str) -> OpenAIModelError:
        """Classify an OpenAI SDK exception into an error class.

        Uses defensive attribute access so this works even when the
        openai package is mocked or partially available.
        """
        try:
            import openai as _openai
        except (ImportError, ModuleNotFoundError):
            return OpenAIModelError("unknown", f"{prefix}: {exc}")

        _checks: list[tuple[str, str, str]] = [
            ("RateLimitError", "rate_limit", "rate limited"),
            ("AuthenticationError", "auth", "auth failed"),
            ("APITimeoutError", "timeout", "timeout"),
        ]
        for attr, cls, label in _checks:
            exc_type = getattr(_openai, attr, None)
            if isinstance(exc_type, type) and isinstance(exc, exc_type):
                return OpenAIModelError(cls, f"{prefix}: {label}: {exc}")

        api_status = getattr(_openai, "APIStatusError", None)
        if isinstance(api_status, type) and isinstance(exc, api_status):
            code = getattr(exc, "status_code", "?")
            return OpenAIModelError("server", f"{prefix}: API error ({code}): {exc}")

        return OpenAIModelError("unknown", f"{prefix}: {exc}")
