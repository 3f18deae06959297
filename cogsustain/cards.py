"""Interaction-card state machine.

At most one card is pending at a time. While it is pending, free-text
input is locked; only the card's own resolution events are accepted.

States::

    idle -> awaiting_intent        -> idle   (choice picked / selection confirmed)
    idle -> quiz_pending           -> idle   (correct option picked)
    idle -> awaiting_articulation  -> idle   (all prompts answered and validated)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Union, cast

from cogsustain.protocols import (
    ArticulationValidator,
    CardStateError,
    InputLockedError,
)
from cogsustain.types import (
    ArticulationRequest,
    ComprehensionQuiz,
    IntentRequest,
    StructuredPayload,
)

logger = logging.getLogger(__name__)


class CardState(str, Enum):
    IDLE = "idle"
    AWAITING_INTENT = "awaiting_intent"
    QUIZ_PENDING = "quiz_pending"
    AWAITING_ARTICULATION = "awaiting_articulation"


@dataclass
class CardResolution:
    """Outcome of one card event.

    ``resolved`` is True when the event moved the machine back to idle.
    ``message_text`` is set when the resolution should be sent on as the
    next user message (intents and articulation).
    """

    kind: CardState
    resolved: bool
    message_text: Optional[str] = None
    values: List[str] = field(default_factory=list)
    question: str = ""
    attempts: int = 0
    feedback: str = ""
    scores: List[float] = field(default_factory=list)


def _state_for(payload: StructuredPayload) -> CardState:
    if isinstance(payload, IntentRequest):
        return CardState.AWAITING_INTENT
    if isinstance(payload, ComprehensionQuiz):
        return CardState.QUIZ_PENDING
    if isinstance(payload, ArticulationRequest):
        return CardState.AWAITING_ARTICULATION
    raise TypeError(f"Not an interaction card payload: {type(payload).__name__}")


def format_articulation(request: ArticulationRequest, responses: Sequence[str]) -> str:
    """Render articulation answers as one user message."""
    lines = []
    for prompt, response in zip(request.prompts, responses):
        lines.append(f"**{prompt}**\n{response.strip()}")
    return "\n\n".join(lines)


class CardStateMachine:
    """Tracks the single pending interaction card and the input lock."""

    def __init__(self) -> None:
        self._state = CardState.IDLE
        self._card: Optional[StructuredPayload] = None
        self._attempts = 0
        self._feedback = ""

    # ---- State ----

    @property
    def state(self) -> CardState:
        return self._state

    @property
    def card(self) -> Optional[StructuredPayload]:
        return self._card

    @property
    def locked(self) -> bool:
        return self._state is not CardState.IDLE

    @property
    def attempts(self) -> int:
        """Wrong selections on the pending quiz so far."""
        return self._attempts

    @property
    def feedback(self) -> str:
        """Last feedback from a rejected articulation."""
        return self._feedback

    def ensure_unlocked(self) -> None:
        """Raise if free-text submission is currently blocked."""
        if self.locked:
            raise InputLockedError(
                f"Resolve the pending card ({self._state.value}) before sending a message"
            )

    # ---- Transitions ----

    def present(self, payload: StructuredPayload) -> CardState:
        """Move out of idle into the pending state for ``payload``."""
        target = _state_for(payload)
        if self.locked:
            raise CardStateError(
                f"Cannot present a new card while {self._state.value} is pending"
            )
        self._state = target
        self._card = payload
        self._attempts = 0
        self._feedback = ""
        logger.debug("Card presented: %s", target.value)
        return target

    def reset(self) -> None:
        """Force the machine back to idle (transport failure, new session)."""
        if self.locked:
            logger.info("Card %s abandoned", self._state.value)
        self._to_idle()

    def select_option(self, index: int) -> CardResolution:
        """Pick an option on a single-select intent card or a quiz."""
        if self._state is CardState.QUIZ_PENDING:
            return self._select_quiz_option(index)
        if self._state is CardState.AWAITING_INTENT:
            request = cast(IntentRequest, self._card)
            if request.allow_multiple:
                raise CardStateError("Multi-select intent cards resolve via confirm_multi_select")
            choice = request.choices[self._check_index(index, len(request.choices))]
            self._to_idle()
            return CardResolution(
                kind=CardState.AWAITING_INTENT,
                resolved=True,
                message_text=choice.label,
                values=[choice.value],
                question=request.question,
            )
        raise CardStateError(f"No selectable card pending (state={self._state.value})")

    def confirm_multi_select(self, values: Sequence[str]) -> CardResolution:
        """Confirm a non-empty selection on a multi-select intent card."""
        if self._state is not CardState.AWAITING_INTENT:
            raise CardStateError(f"No intent card pending (state={self._state.value})")
        request = cast(IntentRequest, self._card)
        if not request.allow_multiple:
            raise CardStateError("Single-select intent cards resolve via select_option")

        wanted = list(dict.fromkeys(values))
        if not wanted:
            raise ValueError("Select at least one option before confirming")
        by_value = {c.value: c for c in request.choices}
        unknown = [v for v in wanted if v not in by_value]
        if unknown:
            raise ValueError(f"Unknown option value(s): {', '.join(unknown)}")

        labels = [by_value[v].label for v in wanted]
        self._to_idle()
        return CardResolution(
            kind=CardState.AWAITING_INTENT,
            resolved=True,
            message_text=", ".join(labels),
            values=wanted,
            question=request.question,
        )

    async def submit_articulation(
        self,
        responses: Sequence[str],
        validator: Optional[ArticulationValidator],
    ) -> CardResolution:
        """Submit free-text answers; stays pending unless they validate."""
        if self._state is not CardState.AWAITING_ARTICULATION:
            raise CardStateError(f"No articulation card pending (state={self._state.value})")
        request = cast(ArticulationRequest, self._card)

        answers = [(r or "").strip() for r in responses]
        if len(answers) != len(request.prompts) or not all(answers):
            self._feedback = "Answer every prompt before submitting."
            return CardResolution(
                kind=CardState.AWAITING_ARTICULATION,
                resolved=False,
                question=request.question,
                feedback=self._feedback,
            )

        scores: List[float] = []
        if validator is not None:
            result = await validator.validate(request.question, request.prompts, answers)
            scores = list(result.scores)
            if not result.is_valid:
                self._feedback = result.feedback or "Try to go a little deeper."
                logger.debug("Articulation rejected: %s", self._feedback)
                return CardResolution(
                    kind=CardState.AWAITING_ARTICULATION,
                    resolved=False,
                    question=request.question,
                    feedback=self._feedback,
                    scores=scores,
                )

        self._to_idle()
        return CardResolution(
            kind=CardState.AWAITING_ARTICULATION,
            resolved=True,
            message_text=format_articulation(request, answers),
            values=answers,
            question=request.question,
            scores=scores,
        )

    # ---- Internal helpers ----

    def _select_quiz_option(self, index: int) -> CardResolution:
        quiz = cast(ComprehensionQuiz, self._card)
        option = quiz.options[self._check_index(index, len(quiz.options))]
        if not option.is_correct:
            self._attempts += 1
            return CardResolution(
                kind=CardState.QUIZ_PENDING,
                resolved=False,
                question=quiz.question,
                attempts=self._attempts,
            )
        attempts = self._attempts
        self._to_idle()
        return CardResolution(
            kind=CardState.QUIZ_PENDING,
            resolved=True,
            question=quiz.question,
            attempts=attempts,
            feedback=quiz.explanation,
        )

    @staticmethod
    def _check_index(index: Union[int, str], size: int) -> int:
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValueError(f"Option index must be an int, got {index!r}")
        if not 0 <= index < size:
            raise ValueError(f"Option index {index} out of range (0-{size - 1})")
        return index

    def _to_idle(self) -> None:
        self._state = CardState.IDLE
        self._card = None
        self._attempts = 0
        self._feedback = ""
