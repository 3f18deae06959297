"""
cogsustain Protocol Definitions
===============================

The interface contracts between the governance core and its collaborators.

Collaborators and their roles:
- Model:      The hosted text-generation backend. Streams text fragments.
- Classifier: Labels user text (delegating, phatic, gibberish, critical inquiry).
- Validator:  Grades free-text articulation responses.

The core (extractor, card state machine, scoring engine) never talks to a
provider SDK directly. Everything goes through these protocols so a backend
or a classifier can be swapped without touching the scoring formula.

Error handling philosophy:
- Provider failures raise a CogSustainError subclass carrying an error_class
- The conversation layer turns those into a fallback notice, never a crash
- Invalid arguments raise ValueError
- Malformed protocol blocks are dropped, not raised
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

# =============================================================================
# ERRORS
# =============================================================================


class CogSustainError(Exception):
    """Base for all cogsustain errors."""

    pass


class TransportError(CogSustainError):
    """Raised when the backend call fails or the stream stalls."""

    def __init__(self, error_class: str, message: str) -> None:
        super().__init__(message)
        self.error_class = error_class


class InputLockedError(CogSustainError):
    """Raised when free text is submitted while an interaction card is pending."""

    pass


class CardStateError(CogSustainError):
    """Raised on a card event that does not match the current card state."""

    pass


class MessageFinalizedError(CogSustainError):
    """Raised when a finalized message is mutated."""

    pass


class ConfigError(CogSustainError):
    """Raised when settings cannot be loaded or hold invalid values."""

    pass


# =============================================================================
# MODEL WIRE TYPES
# =============================================================================


@dataclass
class ModelCapabilities:
    """What a model implementation can do."""

    model_id: str
    provider: str  # "anthropic", "openai", "ollama"
    context_window: int
    max_output_tokens: int = 4096
    supports_vision: bool = False
    supports_documents: bool = False
    supports_streaming: bool = True


@dataclass
class ModelMessage:
    """A message in a backend request.

    ``media`` holds ``MediaAttachment`` objects; each provider maps them
    to its own image/document parts.
    """

    role: str  # "system", "user", "assistant"
    content: str
    media: list[Any] = field(default_factory=list)


@dataclass
class ModelResponse:
    """Complete response from a model."""

    content: str
    usage: dict[str, int] = field(default_factory=dict)
    stop_reason: Optional[str] = None
    model_id: Optional[str] = None


@dataclass
class ModelChunk:
    """A streaming fragment from a model."""

    content: str = ""
    is_final: bool = False
    usage: Optional[dict[str, int]] = None


# =============================================================================
# MODEL PROTOCOL
# =============================================================================
# Fragments arrive over time with arbitrary boundaries. The core has no
# control over where a chunk ends, which is why the extractor works on the
# cumulative buffer.
# =============================================================================


@runtime_checkable
class ModelProtocol(Protocol):
    """Interface for the text-generation backend.

    Implementations: AnthropicModel, OpenAIModel, OllamaModel.
    """

    @property
    def model_id(self) -> str:
        """Identifier (e.g., 'claude-sonnet-4-5-20250929', 'llama3.2:latest')."""
        ...

    @property
    def capabilities(self) -> ModelCapabilities:
        """What this model can do."""
        ...

    async def generate(
        self,
        messages: list[ModelMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> ModelResponse:
        """Generate a complete response."""
        ...

    def stream(
        self,
        messages: list[ModelMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> AsyncIterator[ModelChunk]:
        """Stream a response fragment by fragment."""
        ...


# =============================================================================
# CLASSIFIER PROTOCOL
# =============================================================================


@dataclass(frozen=True)
class Classification:
    """Labels assigned to one piece of user text."""

    is_delegating: bool = False
    is_phatic: bool = False
    is_gibberish: bool = False
    is_critical_inquiry: bool = False
    is_steering: bool = False


@runtime_checkable
class ClassifierProtocol(Protocol):
    """Labels user text for the scoring engine.

    Implementations: HeuristicClassifier (phrase lists). A model-based
    classifier only needs to provide ``classify``.
    """

    def classify(self, text: str) -> Classification: ...


# =============================================================================
# ARTICULATION VALIDATOR PROTOCOL
# =============================================================================


@dataclass
class ValidationResult:
    """Outcome of an articulation quality check."""

    is_valid: bool
    scores: list[float] = field(default_factory=list)
    feedback: str = ""


@runtime_checkable
class ArticulationValidator(Protocol):
    """Grades free-text answers to an articulation request."""

    async def validate(
        self,
        question: str,
        prompts: Sequence[str],
        responses: Sequence[str],
    ) -> ValidationResult: ...
