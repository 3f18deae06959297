"""Shared agency scoring functions.

Pure functions that turn a message history plus a few session counters
into an agency percentage. Nothing here is stored: the report is
recomputed from the full history whenever a view needs it.

Shape of the formula::

    agency = clamp(0, 100, base + active_contribution - passive_weight)

- Active side: confirmed intents, sparks, articulation attempts and a
  per-user-message bonus by length band (plus media and critical-inquiry
  bonuses). Delegating messages subtract. Phatic and gibberish messages
  count zero unless they carry media.
- Passive side: every assistant reply weighs by its length band, scaled
  down after a high-effort prompt and scaled up after a lazy one (the
  "delegation trap").

Weights are policy, not law; see ``AgencyWeights``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from cogsustain.classifier import HeuristicClassifier
from cogsustain.protocols import Classification, ClassifierProtocol
from cogsustain.types import AgencyBreakdown, AgencyReport

logger = logging.getLogger(__name__)

# ---- Agency Levels ----

AGENCY_LEVELS = {
    (0, 50): ("guided_flow", "Guided Flow"),
    (51, 100): ("active_synthesis", "Active Synthesis"),
}


def get_agency_level(agency: int) -> Tuple[str, str]:
    """Get (key, label) for an agency percentage."""
    for (low, high), (key, label) in AGENCY_LEVELS.items():
        if low <= agency <= high:
            return key, label
    if agency < 0:
        return "guided_flow", "Guided Flow"
    return "active_synthesis", "Active Synthesis"


# ---- Weights ----


@dataclass(frozen=True)
class AgencyWeights:
    """Tunable scoring policy. Character thresholds are exclusive upper bounds."""

    base: float = 50.0

    # Active side
    intent_decision: float = 6.0
    spark: float = 10.0
    quiz_miss_penalty: float = 2.0
    spark_floor: float = 0.3  # fraction of spark credit kept however many misses
    articulation_attempt: float = 3.0
    short_chars: int = 40
    long_chars: int = 150
    short_bonus: float = 1.0
    medium_bonus: float = 3.0
    long_bonus: float = 6.0
    media_bonus: float = 5.0
    critical_inquiry_bonus: float = 2.0
    delegation_penalty: float = 6.0

    # Passive side
    passive_medium_chars: int = 300
    passive_long_chars: int = 1200
    passive_short: float = 1.0
    passive_medium: float = 2.5
    passive_long: float = 5.0
    high_effort_scale: float = 0.5
    delegation_trap_scale: float = 2.0

    @classmethod
    def from_mapping(cls, overrides: Mapping[str, Any]) -> "AgencyWeights":
        """Build weights from a partial mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in known:
                logger.debug("Ignoring unknown agency weight %r", key)
                continue
            if key.endswith("_chars"):
                values[key] = int(value)
            else:
                values[key] = float(value)
        return cls(**values)


DEFAULT_WEIGHTS = AgencyWeights()

_DEFAULT_CLASSIFIER = HeuristicClassifier()


# ---- Field Access ----
# Histories may hold Message objects or plain mappings from a transcript.

_ALIASES = {
    "media": ("media",),
    "is_intent_decision": ("is_intent_decision", "isIntentDecision"),
    "is_articulation_response": ("is_articulation_response", "isArticulationResponse"),
    "is_system_report": ("is_system_report", "isSystemReport"),
}


def _field(message: Any, name: str, default: Any = None) -> Any:
    names = _ALIASES.get(name, (name,))
    if isinstance(message, Mapping):
        for key in names:
            if key in message:
                return message[key]
        return default
    for key in names:
        value = getattr(message, key, None)
        if value is not None:
            return value
    return default


def _role_of(message: Any) -> Optional[str]:
    role = _field(message, "role")
    if isinstance(role, Enum):
        role = role.value
    return role if isinstance(role, str) else None


def _content_of(message: Any) -> str:
    content = _field(message, "content", "")
    return content if isinstance(content, str) else ""


def _as_count(value: Any) -> int:
    if isinstance(value, (list, tuple, set, frozenset)):
        return len(value)
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


# ---- Scoring Functions ----


def compute_articulation_bonus(length: int, weights: AgencyWeights = DEFAULT_WEIGHTS) -> float:
    """Bonus for one user message by length band (short < medium < long)."""
    if length <= 0:
        return 0.0
    if length < weights.short_chars:
        return weights.short_bonus
    if length < weights.long_chars:
        return weights.medium_bonus
    return weights.long_bonus


def compute_passive_band(length: int, weights: AgencyWeights = DEFAULT_WEIGHTS) -> float:
    """Unscaled passive weight for one assistant reply by length band."""
    if length <= 0:
        return 0.0
    if length < weights.passive_medium_chars:
        return weights.passive_short
    if length < weights.passive_long_chars:
        return weights.passive_medium
    return weights.passive_long


def compute_spark_credit(
    sparks: int, quiz_misses: int, weights: AgencyWeights = DEFAULT_WEIGHTS
) -> float:
    """Credit for solved quizzes; misses lower it but never below the floor."""
    if sparks <= 0:
        return 0.0
    full = sparks * weights.spark
    reduced = full - quiz_misses * weights.quiz_miss_penalty
    return max(full * weights.spark_floor, reduced)


def compute_user_contribution(
    message: Any,
    classification: Classification,
    weights: AgencyWeights = DEFAULT_WEIGHTS,
) -> Dict[str, float]:
    """Active-side contribution of one user message, split by factor."""
    content = _content_of(message)
    has_media = bool(_field(message, "media"))
    parts = {"articulation": 0.0, "media": 0.0, "critical_inquiry": 0.0, "delegation": 0.0}

    if has_media:
        parts["media"] = weights.media_bonus

    if classification.is_delegating:
        parts["delegation"] = -weights.delegation_penalty
        return parts

    if (classification.is_phatic or classification.is_gibberish) and not has_media:
        return parts

    # Intent decisions are credited through the intent counter
    if not _field(message, "is_intent_decision", False):
        parts["articulation"] = compute_articulation_bonus(len(content.strip()), weights)
        if classification.is_critical_inquiry:
            parts["critical_inquiry"] = weights.critical_inquiry_bonus
    return parts


def classify_effort(
    message: Any,
    classification: Classification,
    weights: AgencyWeights = DEFAULT_WEIGHTS,
) -> str:
    """Effort class of the user prompt an assistant reply answers.

    Returns "high", "lazy" or "neutral". High effort is checked first, so
    a short critical question ("why?") is not treated as lazy.
    """
    content = _content_of(message).strip()
    has_media = bool(_field(message, "media"))
    if has_media or len(content) >= weights.long_chars or classification.is_critical_inquiry:
        return "high"
    if len(content) < weights.short_chars and not _field(message, "is_intent_decision", False):
        return "lazy"
    return "neutral"


def _safe_classify(classifier: ClassifierProtocol, text: str) -> Classification:
    try:
        return classifier.classify(text)
    except Exception as exc:
        logger.debug("Swallowed %s classifying user text: %s", type(exc).__name__, exc)
        return Classification()


def clamp_agency(value: float) -> int:
    return int(max(0, min(100, round(value))))


def score(
    messages: Iterable[Any],
    sparks: int = 0,
    intent_decisions: Union[int, Sequence[str]] = 0,
    *,
    articulation_attempts: int = 0,
    quiz_misses: int = 0,
    classifier: Optional[ClassifierProtocol] = None,
    weights: Optional[AgencyWeights] = None,
) -> AgencyReport:
    """Compute the agency report for a full message history.

    Never raises: a malformed message contributes nothing.

    Args:
        messages: Message objects or mappings, oldest first.
        sparks: Successfully completed comprehension quizzes.
        intent_decisions: Confirmed intent decisions, as a count or a list.
        articulation_attempts: Submitted articulation responses.
        quiz_misses: Wrong quiz selections made before success.
        classifier: Text classifier; defaults to the heuristic one.
        weights: Scoring policy; defaults to ``AgencyWeights()``.
    """
    weights = weights or DEFAULT_WEIGHTS
    classifier = classifier or _DEFAULT_CLASSIFIER
    try:
        history = list(messages or [])
    except TypeError:
        history = []

    if not history:
        return AgencyReport(
            agency=0,
            breakdown=AgencyBreakdown(active_contribution=0.0, passive_weight=0.0),
            factors={},
            level=get_agency_level(0)[0],
        )

    spark_count = _as_count(sparks)
    intent_count = _as_count(intent_decisions)
    attempt_count = _as_count(articulation_attempts)
    miss_count = _as_count(quiz_misses)

    factors: Dict[str, float] = {
        "intents": intent_count * weights.intent_decision,
        "sparks": compute_spark_credit(spark_count, miss_count, weights),
        "articulation_attempts": attempt_count * weights.articulation_attempt,
        "articulation": 0.0,
        "media": 0.0,
        "critical_inquiry": 0.0,
        "delegation": 0.0,
        "passive_base": 0.0,
        "passive": 0.0,
        "delegation_traps": 0.0,
        "high_effort_replies": 0.0,
        "filtered_messages": 0.0,
    }

    previous_user: Any = None
    previous_class = Classification()

    for message in history:
        try:
            role = _role_of(message)
            if role == "user":
                classification = _safe_classify(classifier, _content_of(message))
                parts = compute_user_contribution(message, classification, weights)
                for key, value in parts.items():
                    factors[key] += value
                if (
                    (classification.is_phatic or classification.is_gibberish)
                    and not classification.is_delegating
                    and not _field(message, "media")
                ):
                    factors["filtered_messages"] += 1
                previous_user, previous_class = message, classification
            elif role == "assistant":
                if _field(message, "is_system_report", False):
                    continue
                band = compute_passive_band(len(_content_of(message).strip()), weights)
                if band == 0.0:
                    continue
                scale = 1.0
                if previous_user is not None:
                    effort = classify_effort(previous_user, previous_class, weights)
                    if effort == "high":
                        scale = weights.high_effort_scale
                        factors["high_effort_replies"] += 1
                    elif effort == "lazy":
                        scale = weights.delegation_trap_scale
                        factors["delegation_traps"] += 1
                factors["passive_base"] += band
                factors["passive"] += band * scale
        except Exception as exc:
            logger.debug("Swallowed %s scoring message: %s", type(exc).__name__, exc)
            continue

    active = (
        factors["intents"]
        + factors["sparks"]
        + factors["articulation_attempts"]
        + factors["articulation"]
        + factors["media"]
        + factors["critical_inquiry"]
        + factors["delegation"]
    )
    passive = factors["passive"]
    agency = clamp_agency(weights.base + active - passive)

    return AgencyReport(
        agency=agency,
        breakdown=AgencyBreakdown(active_contribution=active, passive_weight=passive),
        factors=factors,
        level=get_agency_level(agency)[0],
    )
