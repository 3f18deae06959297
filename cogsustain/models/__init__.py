"""cogsustain model implementations.

Concrete ModelProtocol implementations for the supported providers.
"""

from __future__ import annotations

from cogsustain.models.anthropic import AnthropicModel
from cogsustain.models.auto import auto_configure_model
from cogsustain.models.ollama import OllamaModel
from cogsustain.models.openai import OpenAIModel

__all__ = ["AnthropicModel", "OllamaModel", "OpenAIModel", "auto_configure_model"]
