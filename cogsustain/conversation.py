"""Conversation orchestration.

``Conversation`` runs the turn lifecycle end to end:

1. The user message is appended and the backend request is built.
2. An empty assistant message is appended and filled in as fragments
   arrive. Fragments go through a ``TagStream`` so protocol blocks never
   reach the display, and a ``RevealScheduler`` paces what is shown.
3. At stream end the message is finalized with zero or one payload, and an
   interaction card is presented when the payload calls for one.

Transport failures and stalled streams end the turn with a fallback
notice. They never leave a card pending.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence

from cogsustain.agency_core import score
from cogsustain.cards import CardResolution, CardState, CardStateMachine
from cogsustain.classifier import HeuristicClassifier
from cogsustain.config import Settings
from cogsustain.extractor import TagStream
from cogsustain.grammar import select_payload
from cogsustain.logging_config import log_card, log_spark, log_turn
from cogsustain.prompts import build_request
from cogsustain.protocols import (
    ArticulationValidator,
    ClassifierProtocol,
    CogSustainError,
    ModelChunk,
    ModelProtocol,
    TransportError,
)
from cogsustain.reveal import RevealScheduler
from cogsustain.session import SessionState, aggregate
from cogsustain.types import (
    AgencyReport,
    ComprehensionQuiz,
    MediaAttachment,
    Message,
    Role,
    SessionCheck,
    SessionStats,
    StructuredPayload,
)

logger = logging.getLogger(__name__)

FALLBACK_NOTICE = (
    "I encountered a synchronization error while processing the multimodal input. "
    "Let's try to re-establish our cognitive link."
)
MEDIA_PLACEHOLDER = "Media submission for analysis."

UpdateCallback = Callable[[Message], None]


class Conversation:
    """One chat session against a streaming backend.

    ``on_update`` is called with the assistant message whenever its visible
    content changes and once more when it is finalized.
    """

    def __init__(
        self,
        model: ModelProtocol,
        *,
        settings: Optional[Settings] = None,
        classifier: Optional[ClassifierProtocol] = None,
        validator: Optional[ArticulationValidator] = None,
        on_update: Optional[UpdateCallback] = None,
        session_id: str = "default",
    ) -> None:
        self._model = model
        self.settings = settings or Settings()
        self._classifier = classifier or HeuristicClassifier()
        self._validator = validator
        self._on_update = on_update
        self.session_id = session_id

        self._messages: List[Message] = []
        self.state = SessionState()
        self.cards = CardStateMachine()
        self._turn_task: Optional[asyncio.Task] = None
        self._turn_message: Optional[Message] = None

    # ---- Views ----

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def user_turns(self) -> int:
        return sum(1 for m in self._messages if m.role is Role.USER)

    @property
    def busy(self) -> bool:
        return self._turn_task is not None and not self._turn_task.done()

    @property
    def pending_card(self) -> Optional[StructuredPayload]:
        return self.cards.card

    def stats(self) -> SessionStats:
        return aggregate(
            self._messages,
            self.state,
            goal=self.settings.goal,
            friction=self.settings.friction,
            classifier=self._classifier,
            weights=self.settings.weights,
        )

    def agency(self) -> AgencyReport:
        return score(
            self._messages,
            self.state.sparks,
            self.state.intent_decisions,
            articulation_attempts=self.state.articulation_attempts,
            quiz_misses=self.state.quiz_misses,
            classifier=self._classifier,
            weights=self.settings.weights,
        )

    # ---- Sending ----

    async def send(self, text: str, media: Optional[MediaAttachment] = None) -> Message:
        """Submit free text (and an optional attachment) and run the turn.

        Returns the finalized assistant message.

        Raises:
            InputLockedError: An interaction card is pending.
            ValueError: Neither text nor media was given.
        """
        self.cards.ensure_unlocked()
        return await self._send_user_message(text, media)

    async def _send_user_message(
        self,
        text: str,
        media: Optional[MediaAttachment] = None,
        *,
        is_intent_decision: bool = False,
        is_articulation_response: bool = False,
    ) -> Message:
        content = (text or "").strip()
        if not content and media is None:
            raise ValueError("Message text is empty")

        await self._cancel_turn()

        history = list(self._messages)
        user_message = Message(
            role=Role.USER,
            content=content or MEDIA_PLACEHOLDER,
            media=media,
            is_intent_decision=is_intent_decision,
            is_articulation_response=is_articulation_response,
            final=True,
        )
        self._messages.append(user_message)

        user_turn = self.user_turns
        trigger_quiz = self.state.quiz_due(user_turn, self.settings.effective_quiz_interval)

        assistant = Message(role=Role.ASSISTANT)
        self._messages.append(assistant)
        self._turn_message = assistant
        self._notify(assistant)

        task = asyncio.get_running_loop().create_task(
            self._run_turn(user_message, history, assistant, trigger_quiz, user_turn)
        )
        self._turn_task = task
        # A later send may cancel this turn; wait without propagating that
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
        return assistant

    # ---- Card events ----

    async def select_option(self, index: int) -> CardResolution:
        """Pick an option on the pending quiz or single-select intent card."""
        kind = self.cards.state
        resolution = self.cards.select_option(index)
        if kind is CardState.QUIZ_PENDING:
            self._record_quiz(resolution)
        else:
            await self._forward_intent(resolution)
        return resolution

    async def confirm_multi_select(self, values: Sequence[str]) -> CardResolution:
        resolution = self.cards.confirm_multi_select(values)
        await self._forward_intent(resolution)
        return resolution

    async def submit_articulation(self, responses: Sequence[str]) -> CardResolution:
        """Submit answers to the pending articulation card.

        The card stays pending (``resolved`` False, ``feedback`` set) until
        every prompt is answered and the validator accepts the answers.
        """
        request = self.cards.card
        complete = (
            request is not None
            and self.cards.state is CardState.AWAITING_ARTICULATION
            and len(responses) == len(request.prompts)
            and all((r or "").strip() for r in responses)
        )
        resolution = await self.cards.submit_articulation(responses, self._validator)
        if complete:
            self.state.record_articulation_attempt()
        log_card(
            self.session_id,
            card=resolution.kind.value,
            resolved=resolution.resolved,
            attempts=self.state.articulation_attempts,
        )
        if resolution.resolved and resolution.message_text:
            await self._send_user_message(
                resolution.message_text, is_articulation_response=True
            )
        return resolution

    def _record_quiz(self, resolution: CardResolution) -> None:
        if resolution.resolved:
            self.state.record_spark(resolution.question, resolution.attempts)
            log_spark(self.session_id, question=resolution.question, total=self.state.sparks)
        else:
            self.state.record_quiz_miss()
        log_card(
            self.session_id,
            card=resolution.kind.value,
            resolved=resolution.resolved,
            attempts=resolution.attempts,
        )

    async def _forward_intent(self, resolution: CardResolution) -> None:
        decision = resolution.message_text or ", ".join(resolution.values)
        self.state.record_intent(decision)
        log_card(self.session_id, card=resolution.kind.value, resolved=True)
        await self._send_user_message(decision, is_intent_decision=True)

    # ---- Lifecycle ----

    def new_session(self) -> None:
        """Drop the history and every counter. Only valid between turns."""
        if self.busy:
            raise CogSustainError("Cannot start a new session while a turn is running")
        self._messages = []
        self.state.reset()
        self.cards.reset()

    async def aclose(self) -> None:
        """Cancel any in-flight turn."""
        await self._cancel_turn()

    # ---- Turn execution ----

    async def _run_turn(
        self,
        user_message: Message,
        history: List[Message],
        assistant: Message,
        trigger_quiz: bool,
        user_turn: int,
    ) -> None:
        messages, system = build_request(
            user_message.content,
            history,
            media=user_message.media,
            goal=self.settings.goal,
            friction=self.settings.friction,
            trigger_quiz=trigger_quiz,
            history_turns=self.settings.history_turns,
        )
        tags = TagStream()
        reveal = RevealScheduler(
            lambda text: self._show(assistant, text),
            chars_per_tick=self.settings.reveal_chars_per_tick,
            tick_interval=self.settings.reveal_tick_interval,
            max_drain_seconds=self.settings.reveal_max_drain_seconds,
        )
        reveal.start()

        try:
            try:
                async for chunk in self._chunks(messages, system):
                    if chunk.content:
                        tags.feed(chunk.content)
                        reveal.update(tags.visible_text)
            except CogSustainError as exc:
                reveal.cancel()
                self._fail_turn(user_message, assistant, exc)
                return
            except Exception as exc:
                reveal.cancel()
                error = TransportError("unknown", str(exc) or type(exc).__name__)
                self._fail_turn(user_message, assistant, error)
                return

            tags.close()
            reveal.update(tags.visible_text)
            await reveal.drain()
        except asyncio.CancelledError:
            reveal.cancel()
            self._abandon(assistant)
            raise

        payload: Optional[StructuredPayload] = None
        check: Optional[SessionCheck] = None
        selected = select_payload(tags.blocks)
        if selected is not None:
            if isinstance(selected.payload, SessionCheck):
                check = selected.payload
            else:
                payload = selected.payload

        assistant.finalize(tags.visible_text, payload, check)
        if payload is not None:
            self.cards.present(payload)
            if isinstance(payload, ComprehensionQuiz):
                self.state.record_quiz_presented(user_turn)
        if trigger_quiz and not isinstance(payload, ComprehensionQuiz):
            logger.info("Checkpoint quiz requested but none was returned")
        self._notify(assistant)

        log_turn(
            self.session_id,
            user_chars=len(user_message.content),
            assistant_chars=len(assistant.content),
            payload=selected.kind.value if selected is not None else None,
        )

    async def _chunks(self, messages: Any, system: str) -> AsyncIterator[ModelChunk]:
        """Backend fragments, failing if the stream goes quiet too long."""
        timeout = self.settings.stream_timeout or None
        stream = self._model.stream(messages, system=system)
        iterator = stream.__aiter__()
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=timeout)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise TransportError(
                        "timeout", f"No data from the backend for {timeout:.0f}s"
                    ) from None
                yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as exc:
                    logger.debug("Swallowed %s closing backend stream: %s", type(exc).__name__, exc)

    def _fail_turn(self, user_message: Message, assistant: Message, exc: Exception) -> None:
        error_class = getattr(exc, "error_class", "unknown")
        logger.warning("Turn failed (%s): %s", error_class, exc)
        self.cards.reset()
        assistant.finalize(FALLBACK_NOTICE)
        self._notify(assistant)
        log_turn(
            self.session_id,
            user_chars=len(user_message.content),
            assistant_chars=0,
            failed=True,
        )

    def _abandon(self, assistant: Message) -> None:
        """Keep what was shown of a cancelled turn, or drop it if nothing was."""
        if assistant.final:
            return
        if assistant.content.strip():
            assistant.finalize(assistant.content)
        elif assistant in self._messages:
            self._messages.remove(assistant)
        logger.debug("Turn cancelled")

    async def _cancel_turn(self) -> None:
        task = self._turn_task
        self._turn_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        if self._turn_message is not None:
            self._abandon(self._turn_message)
            self._turn_message = None

    # ---- Display ----

    def _show(self, assistant: Message, text: str) -> None:
        if not assistant.final:
            assistant.set_content(text)
            self._notify(assistant)

    def _notify(self, message: Message) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(message)
        except Exception as exc:
            logger.debug("Swallowed %s in update callback: %s", type(exc).__name__, exc)
