"""Logging setup for cogsustain.

Two destinations, both under ``<data_dir>/logs``:

- ``local-YYYY-MM-DD.log``: the ``cogsustain`` logger hierarchy.
- ``session-events-YYYY-MM-DD.log``: one line per session event (turns,
  cards, sparks) for later review of how a session went.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from cogsustain.config import get_data_dir

LOGGER_NAME = "cogsustain"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def get_log_dir() -> Path:
    log_dir = get_data_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def setup_cogsustain_logging(session_id: str = "default", level: str = "INFO") -> logging.Logger:
    """Configure the ``cogsustain`` logger with a dated file handler.

    Calling it again reuses the existing handlers. DEBUG also logs to the
    console. Unknown level names fall back to INFO.
    """
    logger = logging.getLogger(LOGGER_NAME)
    log_level = _LEVELS.get(str(level).upper(), logging.INFO)
    logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        log_file = get_log_dir() / f"local-{_today()}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if log_level == logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    logger.debug("Logging configured for session %s", session_id)
    return logger


def log_session_event(event_type: str, details: str, session_id: str = "default") -> None:
    """Append one event line to the dated session-events log."""
    event_file = get_log_dir() / f"session-events-{_today()}.log"
    timestamp = datetime.now().isoformat(timespec="seconds")
    with open(event_file, "a", encoding="utf-8") as f:
        f.write(f"{timestamp} | {event_type} | session={session_id} | {details}\n")


def log_turn(
    session_id: str,
    *,
    user_chars: int,
    assistant_chars: int,
    payload: Optional[str] = None,
    failed: bool = False,
) -> None:
    log_session_event(
        "turn",
        f"user_chars={user_chars}, assistant_chars={assistant_chars}, "
        f"payload={payload or 'none'}, failed={failed}",
        session_id=session_id,
    )


def log_card(session_id: str, *, card: str, resolved: bool, attempts: int = 0) -> None:
    log_session_event(
        "card",
        f"card={card}, resolved={resolved}, attempts={attempts}",
        session_id=session_id,
    )


def log_spark(session_id: str, *, question: str, total: int) -> None:
    preview = question if len(question) <= 60 else question[:57] + "..."
    log_session_event("spark", f"total={total}, question={preview}", session_id=session_id)
