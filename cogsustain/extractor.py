"""Streaming tag extractor.

Separates what the user may see from the protocol blocks embedded in a
growing model response. Works on the cumulative buffer: fragments can end
anywhere, including in the middle of a marker.

Two entry points share one scanner:

- ``extract(raw)`` is a pure function over a whole buffer.
- ``TagStream`` keeps a cursor so settled text is never rescanned while a
  long response streams in.

For any split of a response into fragments, feeding them to a TagStream
and closing it gives the same result as ``extract(full, final=True)``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from cogsustain.grammar import ALL_MARKER_TOKENS, MARKERS, Marker, build_block
from cogsustain.types import BlockKind, ProtocolBlock

logger = logging.getLogger(__name__)

_END_RE = re.compile("|".join(re.escape(m.end) for m in MARKERS))
_ANY_TOKEN_RE = re.compile("|".join(re.escape(t) for t in ALL_MARKER_TOKENS))
_LONGEST_TOKEN = max(len(t) for t in ALL_MARKER_TOKENS)


@dataclass
class ExtractionResult:
    """Visible text plus the blocks completed so far."""

    visible_text: str
    blocks: List[ProtocolBlock] = field(default_factory=list)
    pending: Optional[BlockKind] = None


def _find_open(buf: str, start: int) -> Optional[Tuple[int, Marker]]:
    """Earliest opening marker at or after ``start``."""
    best: Optional[Tuple[int, Marker]] = None
    for marker in MARKERS:
        idx = buf.find(marker.start, start)
        if idx != -1 and (best is None or idx < best[0]):
            best = (idx, marker)
    return best


def _dangling_len(buf: str, start: int) -> int:
    """Length of the buffer suffix that could still grow into a marker.

    A candidate that begins inside a complete closing marker withholds that
    whole marker too, so it is never split across two settled segments.
    """
    available = len(buf) - start
    if available <= 0:
        return 0
    spans = [(m.start(), m.end()) for m in _END_RE.finditer(buf, start)]
    for k in range(min(available, _LONGEST_TOKEN - 1), 0, -1):
        pos = len(buf) - k
        suffix = buf[pos:]
        if not any(len(suffix) < len(tok) and tok.startswith(suffix) for tok in ALL_MARKER_TOKENS):
            continue
        for s, e in spans:
            if s < pos < e:
                return len(buf) - s
        return k
    return 0


def _strip_tokens(text: str) -> str:
    """Remove stray marker tokens until none are left."""
    while True:
        cleaned = _ANY_TOKEN_RE.sub("", text)
        if cleaned == text:
            return cleaned
        text = cleaned


class TagStream:
    """Incremental extractor for one assistant turn.

    Usage::

        stream = TagStream()
        for fragment in fragments:
            stream.feed(fragment)
            show(stream.visible_text)
        stream.close()
        payload_block = select_payload(stream.blocks)
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._cursor = 0
        self._settled: List[str] = []
        self._settled_text = ""
        self._blocks: List[ProtocolBlock] = []
        self._pending: Optional[Marker] = None
        self._body_start = 0
        self._close_search_from = 0
        self._closed = False

    # ---- Feeding ----

    def feed(self, fragment: str) -> ExtractionResult:
        """Append a fragment and rescan from the cursor."""
        if self._closed:
            raise ValueError("TagStream is closed")
        if fragment:
            self._buffer += fragment
            self._scan(final=False)
        return self.result()

    def update(self, raw: str) -> ExtractionResult:
        """Accept the full buffer received so far instead of a fragment.

        The new buffer must extend the previous one; the difference is fed.
        """
        if not raw.startswith(self._buffer):
            raise ValueError("Cumulative buffer does not extend the previous buffer")
        return self.feed(raw[len(self._buffer):])

    def close(self) -> ExtractionResult:
        """Mark the stream complete and release any withheld partial marker."""
        if not self._closed:
            self._scan(final=True)
            self._closed = True
            if self._pending is not None:
                logger.debug(
                    "Stream ended inside an unclosed %s block; body withheld",
                    self._pending.kind.value,
                )
        return self.result()

    # ---- Views ----

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def visible_text(self) -> str:
        return _strip_tokens(self._settled_text).strip()

    @property
    def blocks(self) -> List[ProtocolBlock]:
        return list(self._blocks)

    @property
    def pending_kind(self) -> Optional[BlockKind]:
        return self._pending.kind if self._pending is not None else None

    @property
    def closed(self) -> bool:
        return self._closed

    def result(self) -> ExtractionResult:
        return ExtractionResult(
            visible_text=self.visible_text,
            blocks=self.blocks,
            pending=self.pending_kind,
        )

    # ---- Scanner ----

    def _settle(self, segment: str) -> None:
        if segment:
            segment = _END_RE.sub("", segment)
            self._settled.append(segment)
            self._settled_text += segment

    def _scan(self, final: bool) -> None:
        buf = self._buffer
        while True:
            if self._pending is not None:
                marker = self._pending
                end = buf.find(marker.end, self._close_search_from)
                if end == -1:
                    # Resume the close search where a new match could start
                    self._close_search_from = max(
                        self._body_start, len(buf) - len(marker.end) + 1
                    )
                    return
                self._blocks.append(build_block(marker.kind, buf[self._body_start:end]))
                self._cursor = end + len(marker.end)
                self._pending = None
                continue

            found = _find_open(buf, self._cursor)
            if found is None:
                tail_end = len(buf) if final else len(buf) - _dangling_len(buf, self._cursor)
                self._settle(buf[self._cursor:tail_end])
                self._cursor = tail_end
                return

            idx, marker = found
            self._settle(buf[self._cursor:idx])
            self._pending = marker
            self._body_start = idx + len(marker.start)
            self._close_search_from = self._body_start
            self._cursor = idx


def extract(raw: str, *, final: bool = False) -> ExtractionResult:
    """Split a cumulative buffer into visible text and completed blocks.

    Args:
        raw: Everything received so far for the turn (not a diff).
        final: True once the stream has ended; a trailing partial marker
            is then released as ordinary text.
    """
    stream = TagStream()
    stream.feed(raw)
    if final:
        stream.close()
    return stream.result()
