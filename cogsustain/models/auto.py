"""Auto-configure a model from settings and environment variables.

Provides a zero-config way to get a streaming model for the CLI
(``cogsustain chat``).
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from cogsustain.protocols import ModelProtocol

logger = logging.getLogger(__name__)

# Default models, cheap and fast for conversational turns
_PROVIDER_DEFAULTS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
    "ollama": "llama3.2:latest",
}


def auto_configure_model(
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> Optional[ModelProtocol]:
    """Auto-detect and create a model.

    Explicit arguments win over the environment. Detection priority when no
    provider is given and ``COGSUSTAIN_MODEL_PROVIDER`` is not set:
    1. ``CLAUDE_API_KEY`` or ``ANTHROPIC_API_KEY`` → Anthropic
    2. ``OPENAI_API_KEY`` → OpenAI
    3. No key → ``None``

    Environment variables:
        COGSUSTAIN_MODEL_PROVIDER: Force a specific provider (anthropic, openai, ollama).
        COGSUSTAIN_MODEL: Override the default model name for the chosen provider.
        CLAUDE_API_KEY / ANTHROPIC_API_KEY: Anthropic API key.
        OPENAI_API_KEY: OpenAI API key.

    Returns:
        A ModelProtocol instance, or None if no provider could be chosen.
    """
    forced_provider = (
        provider or os.environ.get("COGSUSTAIN_MODEL_PROVIDER", "")
    ).lower().strip()
    model_override = model or os.environ.get("COGSUSTAIN_MODEL", "").strip() or None

    if forced_provider:
        chosen = forced_provider
    elif os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("CLAUDE_API_KEY"):
        chosen = "anthropic"
    elif os.environ.get("OPENAI_API_KEY"):
        chosen = "openai"
    else:
        return None

    model_id = model_override or _PROVIDER_DEFAULTS.get(chosen)

    if chosen == "anthropic":
        from cogsustain.models.anthropic import AnthropicModel

        instance = AnthropicModel(model_id=model_id)
        logger.info("Auto-configured AnthropicModel (model=%s)", model_id)
        return instance

    if chosen == "openai":
        from cogsustain.models.openai import OpenAIModel

        instance = OpenAIModel(model_id=model_id)
        logger.info("Auto-configured OpenAIModel (model=%s)", model_id)
        return instance

    if chosen == "ollama":
        from cogsustain.models.ollama import OllamaModel

        base_url = os.environ.get("OLLAMA_HOST", "").strip() or "http://localhost:11434"
        instance = OllamaModel(model_id=model_id, base_url=base_url)
        logger.info("Auto-configured OllamaModel (model=%s)", model_id)
        return instance

    logger.warning("Unknown model provider '%s', skipping auto-configuration", chosen)
    return None
