"""OllamaModel: ModelProtocol implementation for local Ollama instances.

Talks to the Ollama REST API over ``httpx``. Streaming responses arrive as
newline-delimited JSON.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from cogsustain.protocols import (
    ModelCapabilities,
    ModelChunk,
    ModelMessage,
    ModelResponse,
    TransportError,
)

logger = logging.getLogger(__name__)


class OllamaModelError(TransportError):
    """Raised when the Ollama API reports an error or is unreachable."""


class OllamaModel:
    """ModelProtocol implementation backed by a local Ollama instance.

    Requires a running Ollama server (default: ``http://localhost:11434``).

    Usage::

        model = OllamaModel(model_id="llama3.2:latest")
        response = await model.generate([ModelMessage(role="user", content="Hello")])
    """

    def __init__(
        self,
        model_id: str = "llama3.2:latest",
        *,
        base_url: str = "http://localhost:11434",
        context_window: int = 8192,
        timeout: float = 120,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._model_id = model_id
        self._base_url = base_url.rstrip("/")
        self._context_window = context_window
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)

    # ---- ModelProtocol properties ----

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            model_id=self._model_id,
            provider="ollama",
            context_window=self._context_window,
            max_output_tokens=self._context_window,
            supports_vision=True,
            supports_documents=False,
            supports_streaming=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---- Generate ----

    async def generate(
        self,
        messages: list[ModelMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> ModelResponse:
        """Generate a complete response via the Ollama chat API."""
        payload = self._build_payload(
            messages, system, stream=False, temperature=temperature, max_tokens=max_tokens
        )

        try:
            resp = await self._client.post("/api/chat", json=payload)
        except httpx.TimeoutException as exc:
            raise OllamaModelError(
                "timeout", f"Ollama request timed out after {self._timeout}s: {exc}"
            ) from exc
        except httpx.TransportError as exc:
            raise OllamaModelError(
                "timeout", f"Cannot connect to Ollama at {self._base_url}: {exc}"
            ) from exc

        if resp.status_code != 200:
            error_class = self._classify_http_status(resp.status_code)
            raise OllamaModelError(
                error_class, f"Ollama returned HTTP {resp.status_code}: {resp.text}"
            )

        data = resp.json()
        message = data.get("message", {})
        return ModelResponse(
            content=message.get("content", ""),
            usage=self._extract_usage(data),
            stop_reason=data.get("done_reason", "stop"),
            model_id=data.get("model", self._model_id),
        )

    # ---- Stream ----

    async def stream(
        self,
        messages: list[ModelMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> AsyncIterator[ModelChunk]:
        """Stream a response chunk by chunk from the Ollama chat API."""
        payload = self._build_payload(
            messages, system, stream=True, temperature=temperature, max_tokens=max_tokens
        )

        try:
            async with self._client.stream("POST", "/api/chat", json=payload) as resp:
                if resp.status_code != 200:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    error_class = self._classify_http_status(resp.status_code)
                    raise OllamaModelError(
                        error_class, f"Ollama returned HTTP {resp.status_code}: {body}"
                    )

                async for line in resp.aiter_lines():
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError as exc:
                        raise OllamaModelError(
                            "server", f"Ollama sent a malformed stream line: {line[:80]!r}"
                        ) from exc
                    if data.get("error"):
                        raise OllamaModelError("server", f"Ollama stream error: {data['error']}")

                    content = data.get("message", {}).get("content", "")
                    if data.get("done", False):
                        yield ModelChunk(
                            content=content,
                            is_final=True,
                            usage=self._extract_usage(data),
                        )
                    else:
                        yield ModelChunk(content=content)
        except httpx.TimeoutException as exc:
            raise OllamaModelError(
                "timeout", f"Ollama request timed out after {self._timeout}s: {exc}"
            ) from exc
        except httpx.TransportError as exc:
            raise OllamaModelError(
                "timeout", f"Cannot connect to Ollama at {self._base_url}: {exc}"
            ) from exc

    # ---- Internal helpers ----

    def _build_payload(
        self,
        messages: list[ModelMessage],
        system: Optional[str],
        *,
        stream: bool,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model_id,
            "messages": self._prepare_messages(messages, system),
            "stream": stream,
        }
        if temperature is not None:
            payload.setdefault("options", {})["temperature"] = temperature
        if max_tokens is not None:
            payload.setdefault("options", {})["num_predict"] = max_tokens
        return payload

    def _prepare_messages(
        self,
        messages: list[ModelMessage],
        system: Optional[str],
    ) -> list[dict[str, Any]]:
        """Convert ModelMessages to Ollama chat format."""
        api_messages: list[dict[str, Any]] = []

        # Prepend explicit system message if provided
        if system:
            api_messages.append({"role": "system", "content": system})

        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
            images = [m.base64() for m in msg.media if m.is_image]
            if images:
                entry["images"] = images
            skipped = len(msg.media) - len(images)
            if skipped:
                logger.debug("Ollama ignores %d non-image attachment(s)", skipped)
            api_messages.append(entry)

        return api_messages

    @staticmethod
    def _classify_http_status(status_code: int) -> str:
        """Map HTTP status codes to error classes."""
        if status_code == 401:
            return "auth"
        if status_code == 429:
            return "rate_limit"
        if status_code >= 500:
            return "server"
        return "unknown"

    def _extract_usage(self, data: dict[str, Any]) -> dict[str, int]:
        """Extract token usage from an Ollama response."""
        usage: dict[str, int] = {}
        if "prompt_eval_count" in data:
            usage["input_tokens"] = data["prompt_eval_count"]
        if "eval_count" in data:
            usage["output_tokens"] = data["eval_count"]
        return usage
