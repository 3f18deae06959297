"""Session state and the session aggregator.

``SessionState`` owns every counter the scoring engine needs. Each event
(quiz solved, intent confirmed, articulation submitted) has exactly one
method that records it. ``aggregate`` folds the counters and the message
history into a read-only ``SessionStats`` snapshot on demand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from cogsustain.agency_core import AgencyWeights, get_agency_level, score
from cogsustain.protocols import ClassifierProtocol
from cogsustain.types import FrictionLevel, Goal, Role, SessionStats

logger = logging.getLogger(__name__)

# Rank thresholds by sparks earned: (minimum sparks, rank)
RANKS = (
    (15, "Architect"),
    (8, "Synthesizer"),
    (0, "Analyst"),
)

SPARKS_PER_LAYER = 5


def get_rank(sparks: int) -> str:
    for minimum, rank in RANKS:
        if sparks >= minimum:
            return rank
    return RANKS[-1][1]


def get_cognitive_layer(sparks: int) -> int:
    return max(0, sparks) // SPARKS_PER_LAYER + 1


@dataclass
class SessionState:
    """Mutable counters for one session. Reset only when a new session starts."""

    sparks: int = 0
    quiz_misses: int = 0
    articulation_attempts: int = 0
    intent_decisions: List[str] = field(default_factory=list)
    verified_insights: List[str] = field(default_factory=list)
    last_quiz_turn: int = 0

    def record_spark(self, question: str, attempts: int = 0) -> None:
        """A comprehension quiz was solved after ``attempts`` wrong picks."""
        self.sparks += 1
        self.verified_insights.append(question)
        logger.debug("Spark recorded (total=%d, attempts=%d)", self.sparks, attempts)

    def record_quiz_presented(self, user_turn: int) -> None:
        """A checkpoint quiz was shown after the ``user_turn``-th user message."""
        self.last_quiz_turn = user_turn

    def quiz_due(self, user_turn: int, interval: int) -> bool:
        return user_turn - self.last_quiz_turn >= interval

    def record_quiz_miss(self) -> None:
        self.quiz_misses += 1

    def record_intent(self, decision: str) -> None:
        self.intent_decisions.append(decision)

    def record_articulation_attempt(self) -> None:
        self.articulation_attempts += 1

    def reset(self) -> None:
        self.sparks = 0
        self.quiz_misses = 0
        self.articulation_attempts = 0
        self.intent_decisions = []
        self.verified_insights = []
        self.last_quiz_turn = 0


def _role_value(message: Any) -> Optional[str]:
    role = message.get("role") if isinstance(message, dict) else getattr(message, "role", None)
    if isinstance(role, Role):
        return role.value
    return role if isinstance(role, str) else None


def aggregate(
    messages: Sequence[Any],
    state: SessionState,
    *,
    goal: Optional[Goal] = None,
    friction: Optional[FrictionLevel] = None,
    classifier: Optional[ClassifierProtocol] = None,
    weights: Optional[AgencyWeights] = None,
) -> SessionStats:
    """Fold the history and the session counters into a SessionStats snapshot."""
    roles = [_role_value(m) for m in messages]
    user_count = roles.count(Role.USER.value)
    assistant_count = roles.count(Role.ASSISTANT.value)

    report = score(
        messages,
        state.sparks,
        state.intent_decisions,
        articulation_attempts=state.articulation_attempts,
        quiz_misses=state.quiz_misses,
        classifier=classifier,
        weights=weights,
    )
    intent_count = len(state.intent_decisions)

    return SessionStats(
        user_messages=user_count,
        assistant_messages=assistant_count,
        intent_count=intent_count,
        sparks=state.sparks,
        intent_decisions=list(state.intent_decisions),
        verified_insights=list(state.verified_insights),
        agency=report.agency,
        articulation_attempts=state.articulation_attempts,
        quiz_misses=state.quiz_misses,
        rank=get_rank(state.sparks),
        cognitive_layer=get_cognitive_layer(state.sparks),
        focus_points=state.sparks * 2 + intent_count,
        information_points=len(messages),
        agency_level=get_agency_level(report.agency)[0],
        goal=goal.value if goal is not None else None,
        friction=friction.value if friction is not None else None,
    )
