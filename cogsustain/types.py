"""
Shared conversation types for cogsustain.

All session dataclasses live here. These are the shared vocabulary between
the extractor, the card state machine, the scoring engine and the
presentation layer. The extractor produces payloads; the card machine
consumes them; the scoring engine reads the messages.
"""

from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from cogsustain.protocols import MessageFinalizedError

# === Shared Utility Functions ===


def utc_now() -> datetime:
    """Get the current instant in UTC."""
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return str(uuid.uuid4())


# === Enums ===


class Role(str, Enum):
    """Who authored a message."""

    USER = "user"
    ASSISTANT = "assistant"


class BlockKind(str, Enum):
    """Protocol block kinds, declared in priority order (highest first)."""

    INTENT = "intent"
    QUIZ = "quiz"
    STATS = "stats"


class Goal(str, Enum):
    """Primary user intent for the session."""

    LEARN = "learn"
    IMPLEMENT = "implement"
    DEBUG = "debug"
    EXPLORE = "explore"


class FrictionLevel(str, Enum):
    """How often the system interposes interaction cards."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def multiplier(self) -> float:
        return _FRICTION_MULTIPLIERS[self]


_FRICTION_MULTIPLIERS = {
    FrictionLevel.LOW: 0.5,
    FrictionLevel.MEDIUM: 1.0,
    FrictionLevel.HIGH: 1.5,
}


# === Attachments ===


@dataclass(frozen=True)
class MediaAttachment:
    """An opaque user-supplied file: raw bytes plus its MIME type."""

    data: bytes
    mime_type: str
    name: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


# === Structured Payloads ===


@dataclass(frozen=True)
class IntentChoice:
    """One selectable answer on an intent card."""

    label: str
    value: str


@dataclass(frozen=True)
class IntentRequest:
    """Asks the user to pick a direction before the assistant proceeds."""

    question: str
    choices: List[IntentChoice]
    allow_multiple: bool = False


@dataclass(frozen=True)
class ArticulationRequest:
    """Asks the user to write free-text answers to one or more prompts."""

    question: str
    prompts: List[str]


@dataclass(frozen=True)
class QuizOption:
    text: str
    is_correct: bool = False


@dataclass(frozen=True)
class ComprehensionQuiz:
    """A multiple-choice synthesis check with exactly one correct option."""

    question: str
    options: List[QuizOption]
    explanation: str = ""

    @property
    def correct_index(self) -> int:
        for idx, option in enumerate(self.options):
            if option.is_correct:
                return idx
        return 0


@dataclass(frozen=True)
class SessionCheck:
    """Backend-authored session report carried by a stats block."""

    summary: str
    insights: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


StructuredPayload = Union[IntentRequest, ArticulationRequest, ComprehensionQuiz]
BlockPayload = Union[IntentRequest, ArticulationRequest, ComprehensionQuiz, SessionCheck]


@dataclass
class ProtocolBlock:
    """A sentinel-delimited region of generated text.

    Only produced once both markers have been seen. ``payload`` is None
    when the body failed to parse; ``error`` then says why.
    """

    kind: BlockKind
    start_marker: str
    end_marker: str
    raw_body: str
    payload: Optional[BlockPayload] = None
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.payload is not None


# === Messages ===


@dataclass
class Message:
    """One turn in the conversation.

    Assistant messages start empty when the backend call begins and are
    updated in place as fragments arrive. Once ``finalize`` is called the
    message no longer accepts content or payload changes.
    """

    role: Role
    content: str = ""
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=utc_now)
    media: Optional[MediaAttachment] = None
    structured_payload: Optional[StructuredPayload] = None
    session_check: Optional[SessionCheck] = None
    is_articulation_response: bool = False
    is_intent_decision: bool = False
    is_system_report: bool = False
    final: bool = False

    def set_content(self, content: str) -> None:
        if self.final:
            raise MessageFinalizedError(f"Message {self.id} is finalized")
        self.content = content

    def finalize(
        self,
        content: Optional[str] = None,
        payload: Optional[StructuredPayload] = None,
        session_check: Optional[SessionCheck] = None,
    ) -> None:
        if self.final:
            raise MessageFinalizedError(f"Message {self.id} is finalized")
        if content is not None:
            self.content = content
        self.structured_payload = payload
        self.session_check = session_check
        if session_check is not None and payload is None:
            self.is_system_report = True
        self.final = True


# === Scoring Views ===


@dataclass(frozen=True)
class AgencyBreakdown:
    """The two opposing accumulators behind the agency percentage."""

    active_contribution: float
    passive_weight: float


@dataclass(frozen=True)
class AgencyReport:
    """Agency percentage plus how it was reached. Always recomputed."""

    agency: int
    breakdown: AgencyBreakdown
    factors: Dict[str, float] = field(default_factory=dict)
    level: str = "guided_flow"


@dataclass(frozen=True)
class SessionStats:
    """Read-only session snapshot for a stats view or an export."""

    user_messages: int
    assistant_messages: int
    intent_count: int
    sparks: int
    intent_decisions: List[str]
    verified_insights: List[str]
    agency: int
    articulation_attempts: int = 0
    quiz_misses: int = 0
    rank: str = "Analyst"
    cognitive_layer: int = 1
    focus_points: int = 0
    information_points: int = 0
    agency_level: str = "guided_flow"
    goal: Optional[str] = None
    friction: Optional[str] = None
