"""Tests for cogsustain.prompts request construction."""

from cogsustain.prompts import (
    CHECKPOINT_INSTRUCTION,
    FRICTION_GUIDANCE,
    GOAL_ADAPTATIONS,
    build_request,
    build_system_prompt,
    trim_history,
)
from cogsustain.types import FrictionLevel, Goal, MediaAttachment, Message, Role


def _history(n):
    return [
        Message(role=Role.USER if i % 2 == 0 else Role.ASSISTANT, content=f"m{i}")
        for i in range(n)
    ]


class TestSystemPrompt:
    def test_goal_and_friction_included(self):
        system = build_system_prompt(Goal.DEBUG, FrictionLevel.HIGH)
        assert "current goal: debug" in system
        assert GOAL_ADAPTATIONS[Goal.DEBUG] in system
        assert FRICTION_GUIDANCE[FrictionLevel.HIGH] in system

    def test_marker_formats_rendered(self):
        system = build_system_prompt(Goal.LEARN, FrictionLevel.MEDIUM)
        assert '---QUIZ_START--- {"question": "..."' in system
        assert "---INTENT_END---" in system
        assert "---STATS_START---" in system
        assert "{{" not in system


class TestTrimHistory:
    def test_keeps_most_recent(self):
        kept = trim_history(_history(20), 12)
        assert [m.content for m in kept] == [f"m{i}" for i in range(8, 20)]

    def test_skips_empty_messages(self):
        history = _history(3) + [Message(role=Role.ASSISTANT, content="  ")]
        assert len(trim_history(history, 12)) == 3

    def test_media_only_message_kept(self):
        msg = Message(role=Role.USER, content="", media=MediaAttachment(b"x", "image/png"))
        assert trim_history([msg], 12) == [msg]

    def test_zero_limit(self):
        assert trim_history(_history(4), 0) == []


class TestBuildRequest:
    def test_user_prompt_format(self):
        messages, system = build_request("What is a monad?", [], goal=Goal.EXPLORE)
        assert len(messages) == 1
        assert messages[0].role == "user"
        assert messages[0].content == "Current Goal: explore. User Input: What is a monad?"
        assert system == build_system_prompt(Goal.EXPLORE, FrictionLevel.MEDIUM)

    def test_checkpoint_appended(self):
        messages, _ = build_request("next", [], trigger_quiz=True)
        assert messages[-1].content.endswith("\n\n" + CHECKPOINT_INSTRUCTION)

    def test_history_converted_and_trimmed(self):
        messages, _ = build_request("new", _history(16), history_turns=4)
        assert [m.content for m in messages[:-1]] == ["m12", "m13", "m14", "m15"]
        assert [m.role for m in messages[:-1]] == ["user", "assistant", "user", "assistant"]

    def test_media_attached_to_new_input(self):
        image = MediaAttachment(b"x", "image/png")
        messages, _ = build_request("look", [], media=image)
        assert messages[-1].media == [image]

    def test_history_media_carried(self):
        doc = MediaAttachment(b"%PDF", "application/pdf", "a.pdf")
        history = [Message(role=Role.USER, content="read this", media=doc)]
        messages, _ = build_request("summary?", history)
        assert messages[0].media == [doc]
        assert messages[-1].media == []
