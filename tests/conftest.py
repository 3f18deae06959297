"""
Pytest fixtures and test configuration for cogsustain tests.
"""

import logging
from typing import List, Optional

import pytest

from cogsustain.config import Settings
from cogsustain.protocols import ModelCapabilities, ModelChunk, ModelResponse


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep logs and settings out of the real home directory."""
    for var in (
        "COGSUSTAIN_MODEL_PROVIDER",
        "COGSUSTAIN_MODEL",
        "COGSUSTAIN_GOAL",
        "COGSUSTAIN_FRICTION",
        "COGSUSTAIN_THEME",
        "COGSUSTAIN_HISTORY_TURNS",
        "COGSUSTAIN_QUIZ_INTERVAL",
        "COGSUSTAIN_STREAM_TIMEOUT",
        "COGSUSTAIN_LOG_LEVEL",
        "COGSUSTAIN_CONFIG",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("COGSUSTAIN_DATA_DIR", str(tmp_path / "data"))
    yield tmp_path


@pytest.fixture(autouse=True)
def clean_cogsustain_logger():
    """Remove all handlers from the cogsustain logger before/after each test."""
    logger = logging.getLogger("cogsustain")
    logger.handlers.clear()
    yield
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


class FakeModel:
    """Scripted ModelProtocol: each stream() call plays the next script.

    A script is a list of fragments. An Exception instance in the list is
    raised at that point instead of yielding.
    """

    def __init__(self, scripts: Optional[List[list]] = None, *, reply: str = "") -> None:
        self.scripts = list(scripts or [])
        self.reply = reply
        self.calls: list = []
        self.generate_calls: list = []

    @property
    def model_id(self) -> str:
        return "fake-model"

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(model_id="fake-model", provider="fake", context_window=8192)

    async def generate(self, messages, *, temperature=None, max_tokens=None, system=None):
        self.generate_calls.append({"messages": messages, "system": system})
        return ModelResponse(content=self.reply, model_id="fake-model")

    async def stream(self, messages, *, temperature=None, max_tokens=None, system=None):
        self.calls.append({"messages": messages, "system": system})
        script = self.scripts.pop(0) if self.scripts else ["ok"]
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield ModelChunk(content=item)
        yield ModelChunk(content="", is_final=True, usage={})


@pytest.fixture
def fast_settings():
    """Settings with an instant reveal so tests do not wait on ticks."""
    return Settings(
        reveal_chars_per_tick=1000,
        reveal_tick_interval=0.0,
        reveal_max_drain_seconds=1.0,
        stream_timeout=5.0,
    )


@pytest.fixture
def fake_model_factory():
    return FakeModel
