"""Model-backed articulation validator.

Asks the backend to grade free-text answers and parses a JSON verdict::

    {"isValid": true, "scores": [0.8, 0.6], "feedback": "..."}

A backend failure or an unreadable verdict yields an invalid result with
retry feedback, so the articulation card stays pending and the user can
submit again.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Sequence

from cogsustain.grammar import strip_code_fence
from cogsustain.protocols import (
    CogSustainError,
    ModelMessage,
    ModelProtocol,
    ValidationResult,
)

logger = logging.getLogger(__name__)

RETRY_FEEDBACK = "Could not check your answers right now. Please submit again."

VALIDATOR_SYSTEM = (
    "You grade how well a learner articulated their own understanding. "
    "Reply with a single JSON object and nothing else: "
    '{"isValid": bool, "scores": [number between 0 and 1 per answer], "feedback": string}. '
    "An answer is valid when it is specific, in the learner's own words and addresses "
    "its prompt. Feedback should point at what is missing, without giving the answer."
)


def _coerce_scores(raw: Any, expected: int) -> List[float]:
    if not isinstance(raw, list):
        return []
    scores: List[float] = []
    for value in raw[:expected]:
        try:
            scores.append(max(0.0, min(1.0, float(value))))
        except (TypeError, ValueError):
            scores.append(0.0)
    return scores


def parse_verdict(text: str, expected: int) -> ValidationResult:
    """Parse the backend's JSON verdict.

    Raises:
        ValueError: If the text is not a JSON object with an ``isValid`` flag.
    """
    data = json.loads(strip_code_fence(text))
    if not isinstance(data, dict) or "isValid" not in data:
        raise ValueError("verdict is missing isValid")
    return ValidationResult(
        is_valid=data["isValid"] is True,
        scores=_coerce_scores(data.get("scores"), expected),
        feedback=str(data.get("feedback") or "").strip(),
    )


class ModelArticulationValidator:
    """ArticulationValidator that delegates grading to a model."""

    def __init__(self, model: ModelProtocol, *, temperature: float = 0.0) -> None:
        self._model = model
        self._temperature = temperature

    async def validate(
        self,
        question: str,
        prompts: Sequence[str],
        responses: Sequence[str],
    ) -> ValidationResult:
        lines = [f"Question: {question}", ""]
        for i, (prompt, response) in enumerate(zip(prompts, responses), start=1):
            lines.append(f"Prompt {i}: {prompt}")
            lines.append(f"Answer {i}: {response}")
            lines.append("")

        try:
            result = await self._model.generate(
                [ModelMessage(role="user", content="\n".join(lines).strip())],
                system=VALIDATOR_SYSTEM,
                temperature=self._temperature,
            )
        except CogSustainError as exc:
            logger.warning("Articulation validation failed: %s", exc)
            return ValidationResult(is_valid=False, feedback=RETRY_FEEDBACK)

        try:
            return parse_verdict(result.content, len(prompts))
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError
            logger.warning("Unreadable articulation verdict: %s", exc)
            return ValidationResult(is_valid=False, feedback=RETRY_FEEDBACK)
