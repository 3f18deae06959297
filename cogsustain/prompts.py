"""Backend request construction.

Builds the system prompt (goal adaptation, friction, protocol formats) and
the message list for one turn. History is trimmed to the most recent
messages so long sessions keep a bounded request size.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from cogsustain.protocols import ModelMessage
from cogsustain.types import FrictionLevel, Goal, MediaAttachment, Message, Role

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TURNS = 12

GOAL_ADAPTATIONS = {
    Goal.LEARN: (
        "Conceptual, analogies, deep. Use uploaded images/docs to create visual mental models."
    ),
    Goal.IMPLEMENT: "Practical, code, steps. Extract data from docs/images for execution.",
    Goal.DEBUG: (
        'Guiding, "what did you try?", problem-solving. Analyze screenshots for errors.'
    ),
    Goal.EXPLORE: "Wide perspective, what-if. Connect doc contents to broader themes.",
}

FRICTION_GUIDANCE = {
    FrictionLevel.LOW: (
        "Low. Answer directly. Only ask for an intent decision when the request is "
        "genuinely ambiguous."
    ),
    FrictionLevel.MEDIUM: (
        "Medium. When the user hands off work without saying what they want to learn "
        "from it, ask for an intent decision first."
    ),
    FrictionLevel.HIGH: (
        "High. Before producing substantial work, ask the user to articulate their own "
        "reasoning or pick a direction."
    ),
}

SYSTEM_PROMPT = """You are CogSustain, a Cognitive Assistant focusing on mental agency and \
multimodal synthesis.

ADAPTATION (current goal: {goal}):
- {adaptation}

FRICTION LEVEL:
{friction}

STRUCTURED BLOCKS:
Emit at most one block per reply, placed after your prose. Never describe the markers.

Intent decision (user picks a direction):
---INTENT_START--- {{"question": "...", "options": [{{"label": "...", "value": "..."}}], \
"allowMultiple": false}} ---INTENT_END---

Articulation (user explains in their own words):
---INTENT_START--- {{"question": "...", "prompts": ["...", "..."]}} ---INTENT_END---

QUIZ RULE:
If the prompt marks a checkpoint, you MUST generate a Quiz based on the conversation AND \
any uploaded documents/images to verify deep processing.
Format: ---QUIZ_START--- {{"question": "...", "options": [{{"text": "...", \
"isCorrect": true/false}}], "explanation": "..."}} ---QUIZ_END---

Session report (only when the user asks how the session is going):
---STATS_START--- {{"summary": "...", "insights": ["..."]}} ---STATS_END---

GENERAL TONE:
Markdown-heavy, intellectual, encouraging. Citations from provided files are highly \
encouraged."""

CHECKPOINT_INSTRUCTION = (
    "CRITICAL: This is a Neural Checkpoint. Include a 3-choice multiple-choice quiz based "
    "on the context (including any uploaded documents/images) using the specified JSON format."
)


def build_system_prompt(goal: Goal, friction: FrictionLevel) -> str:
    return SYSTEM_PROMPT.format(
        goal=goal.value,
        adaptation=GOAL_ADAPTATIONS[goal],
        friction=FRICTION_GUIDANCE[friction],
    )


def trim_history(history: Sequence[Message], limit: int) -> List[Message]:
    """Most recent ``limit`` messages that carry content or media."""
    usable = [m for m in history if m.content.strip() or m.media is not None]
    if limit <= 0:
        return []
    return usable[-limit:]


def _to_model_message(message: Message) -> ModelMessage:
    role = message.role.value if isinstance(message.role, Role) else str(message.role)
    media = [message.media] if message.media is not None else []
    return ModelMessage(role=role, content=message.content, media=media)


def build_request(
    user_text: str,
    history: Sequence[Message],
    *,
    media: Optional[MediaAttachment] = None,
    goal: Goal = Goal.LEARN,
    friction: FrictionLevel = FrictionLevel.MEDIUM,
    trigger_quiz: bool = False,
    history_turns: int = DEFAULT_HISTORY_TURNS,
) -> Tuple[List[ModelMessage], str]:
    """Assemble the messages and system prompt for one backend call.

    Args:
        user_text: The new user input.
        history: Earlier messages, oldest first, excluding the new input.
        media: Attachment sent with the new input.
        trigger_quiz: Ask the backend for a checkpoint quiz this turn.
        history_turns: How many earlier messages to keep.

    Returns:
        ``(messages, system)`` ready for ``ModelProtocol.stream``.
    """
    kept = trim_history(history, history_turns)
    if len(kept) < len(history):
        logger.debug("Trimmed history from %d to %d messages", len(history), len(kept))

    prompt = f"Current Goal: {goal.value}. User Input: {user_text}"
    if trigger_quiz:
        prompt += "\n\n" + CHECKPOINT_INSTRUCTION

    messages = [_to_model_message(m) for m in kept]
    messages.append(
        ModelMessage(role=Role.USER.value, content=prompt, media=[media] if media else [])
    )
    return messages, build_system_prompt(goal, friction)
