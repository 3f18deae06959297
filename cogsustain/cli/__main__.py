"""
cogsustain CLI - agency-preserving chat in the terminal.

Usage:
    cogsustain chat [--goal G] [--friction F] [--provider P] [--model M] [--save PATH]
    cogsustain score TRANSCRIPT [--json]
    cogsustain stats TRANSCRIPT [--json]

Inside ``chat``:
    /attach PATH   attach a file to the next message
    /stats         show the session summary
    /agency        show the agency breakdown
    /quit          leave (saves the transcript when --save was given)
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from cogsustain.agency_core import score
from cogsustain.cards import CardState
from cogsustain.config import load_settings
from cogsustain.conversation import Conversation
from cogsustain.logging_config import setup_cogsustain_logging
from cogsustain.models.auto import auto_configure_model
from cogsustain.protocols import CogSustainError
from cogsustain.session import aggregate
from cogsustain.transcript import load_transcript, save_transcript
from cogsustain.types import (
    ArticulationRequest,
    ComprehensionQuiz,
    FrictionLevel,
    Goal,
    IntentRequest,
    MediaAttachment,
    Message,
)
from cogsustain.validation import ModelArticulationValidator

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

FACTOR_LABELS = {
    "intents": "Intent decisions",
    "sparks": "Sparks",
    "articulation_attempts": "Articulation",
    "articulation": "Own words",
    "media": "Media",
    "critical_inquiry": "Critical inquiry",
    "delegation": "Delegation",
    "passive": "Passive reading",
}


class StreamPrinter:
    """Prints assistant text as it is revealed, one message at a time."""

    def __init__(self, out=None):
        self._out = out or sys.stdout
        self._message_id: Optional[str] = None
        self._printed = ""

    def __call__(self, message: Message) -> None:
        if message.id != self._message_id:
            self._message_id = message.id
            self._printed = ""
            self._out.write("\n")
        text = message.content
        if text.startswith(self._printed):
            self._out.write(text[len(self._printed):])
        else:
            # Revealed text was corrected; reprint the message
            self._out.write("\n" + text)
        self._printed = text
        if message.final:
            self._out.write("\n")
        self._out.flush()


def read_attachment(path: str) -> MediaAttachment:
    file_path = Path(path).expanduser()
    mime_type, _ = mimetypes.guess_type(file_path.name)
    return MediaAttachment(
        data=file_path.read_bytes(),
        mime_type=mime_type or "application/octet-stream",
        name=file_path.name,
    )


def format_agency(report) -> str:
    lines = [
        "Agency Report",
        "=" * 50,
        f"Agency: {report.agency}% ({report.level.replace('_', ' ').title()})",
        f"Active contribution: {report.breakdown.active_contribution:.1f}",
        f"Passive weight:      {report.breakdown.passive_weight:.1f}",
        "",
    ]
    for key, label in FACTOR_LABELS.items():
        value = report.factors.get(key, 0.0)
        if value:
            lines.append(f"{label:20} {value:+.1f}")
    traps = int(report.factors.get("delegation_traps", 0))
    if traps:
        lines.append(f"\nDelegation traps: {traps}")
    return "\n".join(lines)


def format_stats(stats) -> str:
    lines = [
        "Session Summary",
        "=" * 50,
        f"Rank: {stats.rank} (layer {stats.cognitive_layer})",
        f"Agency: {stats.agency}%",
        f"Sparks: {stats.sparks}   Intents: {stats.intent_count}   "
        f"Quiz misses: {stats.quiz_misses}",
        f"Messages: {stats.user_messages} user / {stats.assistant_messages} assistant",
        f"Focus points: {stats.focus_points}   Information points: {stats.information_points}",
    ]
    if stats.verified_insights:
        lines.append("\nVerified insights:")
        for insight in stats.verified_insights:
            lines.append(f"  - {insight}")
    if stats.intent_decisions:
        lines.append("\nIntent decisions:")
        for decision in stats.intent_decisions:
            lines.append(f"  - {decision}")
    return "\n".join(lines)


# =============================================================================
# chat
# =============================================================================


async def _ask(prompt: str) -> str:
    return (await asyncio.to_thread(input, prompt)).strip()


async def _resolve_card(conversation: Conversation) -> None:
    """Prompt until the pending card is resolved."""
    while conversation.cards.locked:
        card = conversation.cards.card
        try:
            if isinstance(card, ComprehensionQuiz):
                print(f"\n[Checkpoint] {card.question}")
                for i, option in enumerate(card.options, 1):
                    print(f"  {i}. {option.text}")
                answer = await _ask("Your answer: ")
                resolution = await conversation.select_option(int(answer) - 1)
                if resolution.resolved:
                    print(f"✓ Spark earned. {resolution.feedback}".rstrip())
                else:
                    print("✗ Not quite. Try again.")
            elif isinstance(card, IntentRequest):
                print(f"\n[Intent] {card.question}")
                for i, choice in enumerate(card.choices, 1):
                    print(f"  {i}. {choice.label}")
                if card.allow_multiple:
                    answer = await _ask("Pick one or more (e.g. 1,3): ")
                    picks = [card.choices[int(p) - 1].value for p in answer.split(",") if p.strip()]
                    await conversation.confirm_multi_select(picks)
                else:
                    answer = await _ask("Pick one: ")
                    await conversation.select_option(int(answer) - 1)
            elif isinstance(card, ArticulationRequest):
                print(f"\n[Articulate] {card.question}")
                responses = [await _ask(f"  {prompt}\n  > ") for prompt in card.prompts]
                resolution = await conversation.submit_articulation(responses)
                if not resolution.resolved:
                    print(f"↻ {resolution.feedback}")
            else:
                return
        except (ValueError, IndexError) as e:
            print(f"⚠ {e}")


async def _chat(args) -> int:
    settings = load_settings()
    if args.goal:
        settings.goal = Goal(args.goal)
    if args.friction:
        settings.friction = FrictionLevel(args.friction)

    session_id = uuid.uuid4().hex[:8]
    setup_cogsustain_logging(session_id, settings.log_level)

    model = auto_configure_model(args.provider or settings.provider, args.model or settings.model)
    if model is None:
        print("No model configured. Set ANTHROPIC_API_KEY, OPENAI_API_KEY or COGSUSTAIN_MODEL_PROVIDER.")
        return 1

    conversation = Conversation(
        model,
        settings=settings,
        validator=ModelArticulationValidator(model),
        on_update=StreamPrinter(),
        session_id=session_id,
    )
    print(f"CogSustain ({settings.goal.value}, friction {settings.friction.value}). /quit to leave.")

    media: Optional[MediaAttachment] = None
    try:
        while True:
            try:
                text = await _ask("\nyou> ")
            except EOFError:
                break
            if text == "/quit":
                break
            if text == "/stats":
                print(format_stats(conversation.stats()))
                continue
            if text == "/agency":
                print(format_agency(conversation.agency()))
                continue
            if text.startswith("/attach "):
                try:
                    media = read_attachment(text[len("/attach "):].strip())
                    print(f"📎 {media.name} ({media.mime_type})")
                except OSError as e:
                    print(f"⚠ {e}")
                continue
            if not text and media is None:
                continue

            await conversation.send(text, media)
            media = None
            if conversation.cards.state is not CardState.IDLE:
                await _resolve_card(conversation)
    finally:
        await conversation.aclose()
        closer = getattr(model, "aclose", None)
        if closer is not None:
            await closer()
        if args.save:
            path = save_transcript(
                args.save,
                conversation.messages,
                conversation.state,
                session_id=session_id,
                goal=settings.goal.value,
                friction=settings.friction.value,
            )
            print(f"✓ Transcript saved: {path}")
    return 0


def cmd_chat(args) -> int:
    return asyncio.run(_chat(args))


# =============================================================================
# score / stats
# =============================================================================


def cmd_score(args) -> int:
    settings = load_settings()
    messages, state, _ = load_transcript(args.transcript)
    report = score(
        messages,
        state.sparks,
        state.intent_decisions,
        articulation_attempts=state.articulation_attempts,
        quiz_misses=state.quiz_misses,
        weights=settings.weights,
    )
    if args.json:
        print(json.dumps(asdict(report), indent=2))
    else:
        print(format_agency(report))
    return 0


def cmd_stats(args) -> int:
    settings = load_settings()
    messages, state, meta = load_transcript(args.transcript)
    goal = Goal(meta["goal"]) if meta.get("goal") else None
    friction = FrictionLevel(meta["friction"]) if meta.get("friction") else None
    stats = aggregate(messages, state, goal=goal, friction=friction, weights=settings.weights)
    if args.json:
        print(json.dumps(asdict(stats), indent=2))
    else:
        print(format_stats(stats))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="cogsustain",
        description="Agency-preserving AI chat",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # chat
    p_chat = subparsers.add_parser("chat", help="Start an interactive session")
    p_chat.add_argument("--goal", "-g", choices=[g.value for g in Goal])
    p_chat.add_argument("--friction", "-f", choices=[f.value for f in FrictionLevel])
    p_chat.add_argument("--provider", "-p", choices=["anthropic", "openai", "ollama"])
    p_chat.add_argument("--model", "-m", help="Model name for the chosen provider")
    p_chat.add_argument("--save", "-s", help="Write the transcript here on exit")

    # score
    p_score = subparsers.add_parser("score", help="Agency report for a saved transcript")
    p_score.add_argument("transcript", help="Transcript JSON file")
    p_score.add_argument("--json", "-j", action="store_true")

    # stats
    p_stats = subparsers.add_parser("stats", help="Session summary for a saved transcript")
    p_stats.add_argument("transcript", help="Transcript JSON file")
    p_stats.add_argument("--json", "-j", action="store_true")

    args = parser.parse_args(argv)

    try:
        if args.command == "chat":
            code = cmd_chat(args)
        elif args.command == "score":
            code = cmd_score(args)
        elif args.command == "stats":
            code = cmd_stats(args)
    except CogSustainError as e:
        logger.error(f"{e}")
        sys.exit(1)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
