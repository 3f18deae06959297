"""Sentinel protocol grammar: markers, body parsing and payload selection.

The backend embeds structured data in its prose between paired markers::

    Some explanation...
    ---QUIZ_START---
    {"question": "...", "options": [{"text": "...", "isCorrect": true}], "explanation": "..."}
    ---QUIZ_END---

Bodies are JSON, optionally wrapped in a ```json fence. Every body is
normalized into one canonical payload shape here so nothing downstream
has to check which variant the backend happened to emit.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cogsustain.types import (
    ArticulationRequest,
    BlockKind,
    BlockPayload,
    ComprehensionQuiz,
    IntentChoice,
    IntentRequest,
    ProtocolBlock,
    QuizOption,
    SessionCheck,
    StructuredPayload,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Marker:
    kind: BlockKind
    start: str
    end: str


MARKERS: Tuple[Marker, ...] = (
    Marker(BlockKind.INTENT, "---INTENT_START---", "---INTENT_END---"),
    Marker(BlockKind.QUIZ, "---QUIZ_START---", "---QUIZ_END---"),
    Marker(BlockKind.STATS, "---STATS_START---", "---STATS_END---"),
)

MARKERS_BY_KIND: Dict[BlockKind, Marker] = {m.kind: m for m in MARKERS}

# Lower number wins when a turn carries more than one block kind
BLOCK_PRIORITY: Dict[BlockKind, int] = {
    BlockKind.INTENT: 0,
    BlockKind.QUIZ: 1,
    BlockKind.STATS: 2,
}

ALL_MARKER_TOKENS: Tuple[str, ...] = tuple(
    token for m in MARKERS for token in (m.start, m.end)
)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


class BodyParseError(ValueError):
    """A block body is not valid JSON or lacks required fields."""


def strip_code_fence(body: str) -> str:
    """Remove an optional ```json ... ``` wrapper around a block body."""
    text = body.strip()
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


def _text_of(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _require_question(data: Dict[str, Any]) -> str:
    question = _text_of(data.get("question")).strip()
    if not question:
        raise BodyParseError("missing question")
    return question


def _normalize_intent(data: Dict[str, Any]) -> StructuredPayload:
    question = _require_question(data)

    prompts = data.get("prompts")
    if prompts is not None:
        if not isinstance(prompts, list):
            raise BodyParseError("prompts must be a list")
        cleaned = [_text_of(p).strip() for p in prompts]
        cleaned = [p for p in cleaned if p]
        if not cleaned:
            raise BodyParseError("articulation request has no prompts")
        return ArticulationRequest(question=question, prompts=cleaned)

    options = data.get("options", data.get("choices"))
    if not isinstance(options, list) or not options:
        raise BodyParseError("intent request has no options")

    choices: List[IntentChoice] = []
    for option in options:
        if isinstance(option, dict):
            label = _text_of(option.get("text", option.get("label"))).strip()
            value = _text_of(option.get("value")).strip() or label
        else:
            label = _text_of(option).strip()
            value = label
        if label:
            choices.append(IntentChoice(label=label, value=value))
    if not choices:
        raise BodyParseError("intent request has no usable options")

    return IntentRequest(
        question=question,
        choices=choices,
        allow_multiple=bool(data.get("allowMultiple", data.get("allow_multiple", False))),
    )


def _normalize_quiz(data: Dict[str, Any]) -> ComprehensionQuiz:
    question = _require_question(data)
    options = data.get("options")
    if not isinstance(options, list) or not options:
        raise BodyParseError("quiz has no options")

    parsed: List[Tuple[str, bool]] = []
    for option in options:
        if isinstance(option, dict):
            text = _text_of(option.get("text")).strip()
            correct = option.get("isCorrect", option.get("is_correct", False)) is True
        else:
            text = _text_of(option).strip()
            correct = False
        if text:
            parsed.append((text, correct))
    if not parsed:
        raise BodyParseError("quiz has no usable options")

    # Exactly one correct option: keep the first marked one, or fall back to option 0
    correct_idx = next((i for i, (_, ok) in enumerate(parsed) if ok), None)
    if correct_idx is None:
        logger.warning("Quiz %r has no correct option; defaulting to the first", question)
        correct_idx = 0

    return ComprehensionQuiz(
        question=question,
        options=[
            QuizOption(text=text, is_correct=(i == correct_idx))
            for i, (text, _) in enumerate(parsed)
        ],
        explanation=_text_of(data.get("explanation")).strip(),
    )


def _normalize_stats(data: Dict[str, Any]) -> SessionCheck:
    insights = data.get("insights") or []
    if not isinstance(insights, list):
        insights = [insights]
    return SessionCheck(
        summary=_text_of(data.get("summary", data.get("question"))).strip(),
        insights=[_text_of(i).strip() for i in insights if _text_of(i).strip()],
        raw=dict(data),
    )


_NORMALIZERS = {
    BlockKind.INTENT: _normalize_intent,
    BlockKind.QUIZ: _normalize_quiz,
    BlockKind.STATS: _normalize_stats,
}


def parse_block_body(kind: BlockKind, raw_body: str) -> BlockPayload:
    """Parse a block body into its canonical payload.

    Raises:
        BodyParseError: If the body is not a JSON object or lacks required fields.
    """
    text = strip_code_fence(raw_body)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BodyParseError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise BodyParseError("body is not a JSON object")
    return _NORMALIZERS[kind](data)


def build_block(kind: BlockKind, raw_body: str) -> ProtocolBlock:
    """Create a completed ProtocolBlock, parsing its body.

    Malformed bodies are kept as a block with no payload so the region is
    still excised from visible text.
    """
    marker = MARKERS_BY_KIND[kind]
    block = ProtocolBlock(
        kind=kind,
        start_marker=marker.start,
        end_marker=marker.end,
        raw_body=raw_body,
    )
    try:
        block.payload = parse_block_body(kind, raw_body)
    except BodyParseError as exc:
        block.error = str(exc)
        logger.warning("Dropping malformed %s block: %s", kind.value, exc)
    return block


def select_payload(blocks: Sequence[ProtocolBlock]) -> Optional[ProtocolBlock]:
    """Pick the one block a turn is allowed to act on.

    The highest-priority kind wins; within a kind the first occurrence
    wins. Blocks without a payload are never selected.
    """
    best: Optional[ProtocolBlock] = None
    for block in blocks:
        if not block.is_valid:
            continue
        if best is None or BLOCK_PRIORITY[block.kind] < BLOCK_PRIORITY[best.kind]:
            best = block
    if best is not None:
        discarded = sum(1 for b in blocks if b.is_valid and b is not best)
        if discarded:
            logger.info(
                "Exclusivity guard kept %s block, discarded %d other(s)",
                best.kind.value,
                discarded,
            )
    return best
