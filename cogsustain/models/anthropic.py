"""AnthropicModel: ModelProtocol implementation for Anthropic's API.

Wraps the ``anthropic`` Python SDK's async client. The SDK is imported
lazily so that the module can be imported without having ``anthropic``
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


class AnthropicModelError(TransportError):
    """Raised when the Anthropic SDK reports an error."""


class AnthropicModel:
    """ModelProtocol implementation backed by the Anthropic API.

    Requires the ``anthropic`` package::

        pip install anthropic
        # or
        pip install cogsustain[anthropic]

    Usage::

        model = AnthropicModel()  # uses ANTHROPIC_API_KEY env var
        async for chunk in model.stream([ModelMessage(role="user", content="Hello")]):
            print(chunk.content, end="")
    """

    def __init__(
        self,
        model_id: str = "claude-sonnet-4-5-20250929",
        *,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> None:
        try:
            import anthropic  # noqa: F811
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for AnthropicModel. "
                "Install it with: pip install anthropic"
            ) from None

        resolved_key = (
            api_key or os.environ.get("CLAUDE_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
        )
        if not resolved_key:
            raise ValueError(
                "An API key is required. Pass api_key= or set CLAUDE_API_KEY / ANTHROPIC_API_KEY."
            )

        self._model_id = model_id
        self._max_tokens = max_tokens
        self._client = anthropic.AsyncAnthropic(api_key=resolved_key)

    # ---- ModelProtocol properties ----

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider="anthropic",
            context_window=200_000,
            max_output_tokens=self._max_tokens,
            supports_vision=True,
            supports_documents=True,
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
        """Generate a complete response via the Anthropic messages API."""
        api_messages, extracted_system = self._prepare_messages(messages, system)
        kwargs = self._build_kwargs(
            api_messages,
            extracted_system,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as exc:
            logger.debug("Anthropic API generate failed: %s", exc, exc_info=True)
            raise self._classify_error(exc, "Anthropic API error") from exc

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
        api_messages, extracted_system = self._prepare_messages(messages, system)
        kwargs = self._build_kwargs(
            api_messages,
            extracted_system,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield ModelChunk(content=text)

                # Final chunk with usage from the accumulated message
                final_message = await stream.get_final_message()
                usage = {}
                if final_message.usage:
                    usage = {
                        "input_tokens": final_message.usage.input_tokens,
                        "output_tokens": final_message.usage.output_tokens,
                    }
                yield ModelChunk(content="", is_final=True, usage=usage)
        except Exception as exc:
            logger.debug("Anthropic API stream failed: %s", exc, exc_info=True)
            raise self._classify_error(exc, "Anthropic streaming error") from exc

    # ---- Internal helpers ----

    @staticmethod
    def _content_blocks(msg: ModelMessage) -> Any:
        """Plain string content, or text plus image/document blocks."""
        if not msg.media:
            return msg.content
        blocks: list[dict[str, Any]] = []
        for media in msg.media:
            block_type = "image" if media.is_image else "document"
            blocks.append(
                {
                    "type": block_type,
                    "source": {
                        "type": "base64",
                        "media_type": media.mime_type,
                        "data": media.base64(),
                    },
                }
            )
        blocks.append({"type": "text", "text": msg.content})
        return blocks

    def _prepare_messages(
        self,
        messages: list[ModelMessage],
        system: Optional[str],
    ) -> tuple[list[dict[str, Any]], Optional[str]]:
        """Convert ModelMessages to Anthropic format, extracting system messages."""
        extracted_system = system
        api_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                # Anthropic API uses a top-level system param, not a system role
                if extracted_system:
                    extracted_system = f"{extracted_system}\n\n{msg.content}"
                else:
                    extracted_system = msg.content
                continue

            api_messages.append({"role": msg.role, "content": self._content_blocks(msg)})

        return api_messages, extracted_system

    def _build_kwargs(
        self,
        api_messages: list[dict[str, Any]],
        system: Optional[str],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        """Build the kwargs dict for the Anthropic API call."""
        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "messages": api_messages,
            "max_tokens": max_tokens or self._max_tokens,
        }
        if system:
            kwargs["system"] = system
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs

    @staticmethod
    def _classify_error(exc: Exception, prefix: str) -> AnthropicModelError:
        """Classify an Anthropic SDK exception into an error class.

        Uses defensive attribute access so this works even when the
        anthropic package is mocked or partially available.
        """
        try:
            import anthropic as _anthropic
        except ImportError:
            return AnthropicModelError("unknown", f"{prefix}: {exc}")

        _checks: list[tuple[str, str, str]] = [
            ("RateLimitError", "rate_limit", "rate limited"),
            ("AuthenticationError", "auth", "auth failed"),
            ("APITimeoutError", "timeout", "timeout"),
        ]
        for attr, cls, label in _checks:
            exc_type = getattr(_anthropic, attr, None)
            if isinstance(exc_type, type) and isinstance(exc, exc_type):
                return AnthropicModelError(cls, f"{prefix}: {label}: {exc}")

        api_status = getattr(_anthropic, "APIStatusError", None)
        if isinstance(api_status, type) and isinstance(exc, api_status):
            code = getattr(exc, "status_code", "?")
            return AnthropicModelError("server", f"{prefix}: API error ({code}): {exc}")

        return AnthropicModelError("unknown", f"{prefix}: {exc}")

    def _parse_response(self, response: Any) -> ModelResponse:
        """Convert an Anthropic response to ModelResponse."""
        content_parts: list[str] = []
        for block in response.content:
            if block.type == "text":
                content_parts.append(block.text)

        usage = {}
        if response.usage:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }

        return ModelResponse(
            content="".join(content_parts),
            usage=usage,
            stop_reason=response.stop_reason,
            model_id=response.model,
        )
