"""Incremental reveal scheduler -- paces visible text into the display.

The extractor decides what is visible; the scheduler only decides how fast
it appears. It never shows a character the extractor has not released and
never shows characters out of order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHARS_PER_TICK = 3
DEFAULT_TICK_INTERVAL = 0.015
DEFAULT_MAX_DRAIN_SECONDS = 5.0


def _common_prefix_len(a: str, b: str) -> int:
    limit = min(len(a), len(b))
    for i in range(limit):
        if a[i] != b[i]:
            return i
    return limit


class RevealScheduler:
    """Reveal a growing text a few characters per tick.

    One scheduler serves one assistant turn. ``on_reveal`` receives the
    full revealed text each time it grows (or is corrected).

    Usage::

        scheduler = RevealScheduler(lambda text: render(text))
        scheduler.start()
        scheduler.update(stream.visible_text)   # after every fragment
        await scheduler.drain()                 # stream ended
    """

    def __init__(
        self,
        on_reveal: Callable[[str], None],
        *,
        chars_per_tick: int = DEFAULT_CHARS_PER_TICK,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        max_drain_seconds: float = DEFAULT_MAX_DRAIN_SECONDS,
    ) -> None:
        if chars_per_tick < 1:
            raise ValueError("chars_per_tick must be at least 1")
        if tick_interval < 0 or max_drain_seconds < 0:
            raise ValueError("tick_interval and max_drain_seconds must be non-negative")
        self._on_reveal = on_reveal
        self._chars_per_tick = chars_per_tick
        self._tick_interval = tick_interval
        self._max_drain_seconds = max_drain_seconds

        self._target = ""
        self._shown = 0
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._finishing = False
        self._cancelled = False

    # ---- State ----

    @property
    def revealed(self) -> str:
        return self._target[: self._shown]

    @property
    def target(self) -> str:
        return self._target

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    # ---- Control ----

    def start(self) -> None:
        """Start the reveal loop on the running event loop."""
        if self._cancelled:
            raise RuntimeError("RevealScheduler was cancelled")
        if self._task is not None:
            return
        self._wake = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(self._wake))

    def update(self, visible_text: str) -> None:
        """Set the text the extractor currently allows to be shown."""
        if self._cancelled:
            return
        if not visible_text.startswith(self.revealed):
            # Correction: fall back to what both versions agree on
            self._shown = _common_prefix_len(self.revealed, visible_text)
            self._target = visible_text
            self._emit()
        else:
            self._target = visible_text
        if self._wake is not None:
            self._wake.set()

    async def drain(self) -> str:
        """Finish revealing after the stream ended.

        Waits at most ``max_drain_seconds`` for the loop, then flushes the
        rest in one step. Returns the fully revealed text.
        """
        if self._cancelled:
            return self.revealed
        self._finishing = True
        if self._wake is not None:
            self._wake.set()
        if self._task is not None and not self._task.done():
            done, _ = await asyncio.wait({self._task}, timeout=self._max_drain_seconds)
            if not done:
                logger.warning(
                    "Reveal drain exceeded %.1fs with %d chars left; flushing",
                    self._max_drain_seconds,
                    len(self._target) - self._shown,
                )
                self._task.cancel()
        if self._shown < len(self._target):
            self._shown = len(self._target)
            self._emit()
        return self.revealed

    def cancel(self) -> None:
        """Stop the loop for good. No callback fires afterwards."""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    # ---- Loop ----

    def _emit(self) -> None:
        if not self._cancelled:
            self._on_reveal(self.revealed)

    async def _run(self, wake: asyncio.Event) -> None:
        while not self._cancelled:
            if self._shown < len(self._target):
                self._shown = min(len(self._target), self._shown + self._chars_per_tick)
                self._emit()
                await asyncio.sleep(self._tick_interval)
                continue
            if self._finishing:
                return
            wake.clear()
            await wake.wait()
