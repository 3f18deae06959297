"""Transcript (de)serialization.

A transcript is a JSON document holding the message history and the session
counters, enough to recompute the agency report and the session summary
offline (``cogsustain score`` / ``cogsustain stats``).
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from cogsustain.protocols import CogSustainError
from cogsustain.session import SessionState
from cogsustain.types import (
    ArticulationRequest,
    ComprehensionQuiz,
    IntentChoice,
    IntentRequest,
    MediaAttachment,
    Message,
    QuizOption,
    Role,
    SessionCheck,
    StructuredPayload,
)

logger = logging.getLogger(__name__)

TRANSCRIPT_VERSION = 1


class TranscriptError(CogSustainError):
    """Raised when a transcript file cannot be read."""

    pass


def _payload_to_dict(payload: StructuredPayload) -> Dict[str, Any]:
    if isinstance(payload, IntentRequest):
        kind = "intent"
    elif isinstance(payload, ArticulationRequest):
        kind = "articulation"
    else:
        kind = "quiz"
    data = asdict(payload)
    data["type"] = kind
    return data


def _payload_from_dict(data: Dict[str, Any]) -> StructuredPayload:
    kind = data.get("type")
    if kind == "intent":
        return IntentRequest(
            question=data["question"],
            choices=[IntentChoice(**c) for c in data.get("choices", [])],
            allow_multiple=bool(data.get("allow_multiple", False)),
        )
    if kind == "articulation":
        return ArticulationRequest(question=data["question"], prompts=list(data["prompts"]))
    if kind == "quiz":
        return ComprehensionQuiz(
            question=data["question"],
            options=[QuizOption(**o) for o in data.get("options", [])],
            explanation=data.get("explanation", ""),
        )
    raise ValueError(f"Unknown payload type: {kind!r}")


def message_to_dict(message: Message) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": message.id,
        "role": message.role.value,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
        "is_articulation_response": message.is_articulation_response,
        "is_intent_decision": message.is_intent_decision,
        "is_system_report": message.is_system_report,
    }
    if message.media is not None:
        data["media"] = {
            "mime_type": message.media.mime_type,
            "name": message.media.name,
            "data": message.media.base64(),
        }
    if message.structured_payload is not None:
        data["structured_payload"] = _payload_to_dict(message.structured_payload)
    if message.session_check is not None:
        data["session_check"] = asdict(message.session_check)
    return data


def message_from_dict(data: Dict[str, Any]) -> Message:
    """Rebuild a finalized Message. Raises KeyError/ValueError on bad input."""
    media = None
    if data.get("media"):
        raw = data["media"]
        media = MediaAttachment(
            data=base64.b64decode(raw.get("data", "")),
            mime_type=raw["mime_type"],
            name=raw.get("name"),
        )

    payload = None
    if data.get("structured_payload"):
        payload = _payload_from_dict(data["structured_payload"])

    check = None
    if data.get("session_check"):
        raw_check = data["session_check"]
        check = SessionCheck(
            summary=raw_check.get("summary", ""),
            insights=list(raw_check.get("insights", [])),
            raw=dict(raw_check.get("raw", {})),
        )

    message = Message(
        role=Role(data["role"]),
        content=data.get("content", ""),
        media=media,
        is_articulation_response=bool(data.get("is_articulation_response", False)),
        is_intent_decision=bool(data.get("is_intent_decision", False)),
        is_system_report=bool(data.get("is_system_report", False)),
        structured_payload=payload,
        session_check=check,
        final=True,
    )
    if data.get("id"):
        message.id = data["id"]
    if data.get("timestamp"):
        message.timestamp = datetime.fromisoformat(data["timestamp"])
    return message


def transcript_to_dict(
    messages: List[Message],
    state: SessionState,
    *,
    session_id: str = "default",
    goal: Optional[str] = None,
    friction: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "version": TRANSCRIPT_VERSION,
        "session_id": session_id,
        "goal": goal,
        "friction": friction,
        "state": asdict(state),
        "messages": [message_to_dict(m) for m in messages],
    }


def save_transcript(
    path: Union[str, Path],
    messages: List[Message],
    state: SessionState,
    **meta: Any,
) -> Path:
    """Write a transcript as JSON and return its path."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        json.dump(transcript_to_dict(messages, state, **meta), f, indent=2)
    logger.info("Saved transcript with %d messages to %s", len(messages), target)
    return target


def load_transcript(path: Union[str, Path]) -> Tuple[List[Message], SessionState, Dict[str, Any]]:
    """Read a transcript.

    Returns:
        ``(messages, state, meta)`` where meta holds session_id, goal and friction.

    Raises:
        TranscriptError: If the file is missing, not JSON or malformed.
    """
    source = Path(path).expanduser()
    try:
        with open(source, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise TranscriptError(f"Cannot read transcript {source}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
        raise TranscriptError(f"Transcript {source} has no message list")

    try:
        messages = [message_from_dict(m) for m in data["messages"]]
    except (KeyError, TypeError, ValueError) as e:
        raise TranscriptError(f"Malformed message in {source}: {e}") from e

    raw_state = data.get("state") or {}
    known = set(SessionState.__dataclass_fields__)
    state = SessionState(**{k: v for k, v in raw_state.items() if k in known})

    meta = {
        "session_id": data.get("session_id", "default"),
        "goal": data.get("goal"),
        "friction": data.get("friction"),
    }
    return messages, state, meta
