"""Tests for cogsustain.logging_config."""

import logging
from datetime import datetime

from cogsustain.logging_config import (
    LOG_FORMAT,
    get_log_dir,
    log_card,
    log_session_event,
    log_spark,
    log_turn,
    setup_cogsustain_logging,
)


def _today():
    return datetime.now().strftime("%Y-%m-%d")


class TestSetupLogging:
    def test_creates_dated_file_handler(self, tmp_path):
        logger = setup_cogsustain_logging("s1")

        assert logger.name == "cogsustain"
        assert logger.level == logging.INFO
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename.endswith(f"local-{_today()}.log")
        assert file_handlers[0].formatter._fmt == LOG_FORMAT
        assert get_log_dir() == tmp_path / "data" / "logs"

    def test_repeated_setup_adds_no_handlers(self):
        setup_cogsustain_logging()
        logger = setup_cogsustain_logging()
        assert len(logger.handlers) == 1

    def test_debug_adds_console_handler(self):
        logger = setup_cogsustain_logging(level="debug")
        assert logger.level == logging.DEBUG
        console = [
            h
            for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        ]
        assert len(console) == 1

    def test_unknown_level_falls_back_to_info(self):
        logger = setup_cogsustain_logging(level="LOUD")
        assert logger.level == logging.INFO

    def test_child_loggers_write_to_file(self):
        logger = setup_cogsustain_logging()
        logging.getLogger("cogsustain.conversation").info("hello from a turn")
        for handler in logger.handlers:
            handler.flush()

        content = (get_log_dir() / f"local-{_today()}.log").read_text()
        assert "INFO | cogsustain.conversation | hello from a turn" in content


class TestSessionEvents:
    def _lines(self):
        return (get_log_dir() / f"session-events-{_today()}.log").read_text().splitlines()

    def test_event_line_format(self):
        log_session_event("custom", "detail=1", session_id="abc")
        (line,) = self._lines()
        _, event, session, details = line.split(" | ")
        assert event == "custom"
        assert session == "session=abc"
        assert details == "detail=1"

    def test_turn_card_spark(self):
        log_turn("s", user_chars=10, assistant_chars=200, payload="quiz")
        log_turn("s", user_chars=5, assistant_chars=0, failed=True)
        log_card("s", card="quiz", resolved=False, attempts=1)
        log_spark("s", question="Q" * 80, total=3)

        lines = self._lines()
        assert len(lines) == 4
        assert "payload=quiz, failed=False" in lines[0]
        assert "payload=none, failed=True" in lines[1]
        assert "card=quiz, resolved=False, attempts=1" in lines[2]
        assert lines[3].endswith("total=3, question=" + "Q" * 57 + "...")
