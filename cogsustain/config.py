"""Settings for cogsustain.

Resolution order (later wins):
1. Built-in defaults
2. ``~/.cogsustain/config.json`` (or the file named by ``COGSUSTAIN_CONFIG``)
3. ``COGSUSTAIN_*`` environment variables
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from cogsustain.agency_core import AgencyWeights
from cogsustain.protocols import ConfigError
from cogsustain.types import FrictionLevel, Goal

logger = logging.getLogger(__name__)

VALID_THEMES = ("light", "dark")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# env var -> settings field
_ENV_VARS = {
    "COGSUSTAIN_MODEL_PROVIDER": "provider",
    "COGSUSTAIN_MODEL": "model",
    "COGSUSTAIN_GOAL": "goal",
    "COGSUSTAIN_FRICTION": "friction",
    "COGSUSTAIN_THEME": "theme",
    "COGSUSTAIN_HISTORY_TURNS": "history_turns",
    "COGSUSTAIN_QUIZ_INTERVAL": "quiz_interval",
    "COGSUSTAIN_STREAM_TIMEOUT": "stream_timeout",
    "COGSUSTAIN_LOG_LEVEL": "log_level",
}


def get_data_dir() -> Path:
    """Directory for logs and settings (``COGSUSTAIN_DATA_DIR`` or ``~/.cogsustain``)."""
    override = os.environ.get("COGSUSTAIN_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".cogsustain"


def get_config_path() -> Path:
    override = os.environ.get("COGSUSTAIN_CONFIG", "").strip()
    if override:
        return Path(override).expanduser()
    return get_data_dir() / "config.json"


@dataclass
class Settings:
    """Everything a session needs that is not per-message state."""

    provider: Optional[str] = None
    model: Optional[str] = None
    goal: Goal = Goal.LEARN
    friction: FrictionLevel = FrictionLevel.MEDIUM
    theme: str = "light"
    history_turns: int = 12
    quiz_interval: int = 5
    stream_timeout: float = 60.0
    reveal_chars_per_tick: int = 3
    reveal_tick_interval: float = 0.015
    reveal_max_drain_seconds: float = 5.0
    log_level: str = "INFO"
    weights: AgencyWeights = field(default_factory=AgencyWeights)

    @property
    def effective_quiz_interval(self) -> int:
        """User turns between checkpoint quizzes, scaled by friction."""
        return max(1, round(self.quiz_interval / self.friction.multiplier))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["goal"] = self.goal.value
        data["friction"] = self.friction.value
        return data


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw config value for ``name``; raises ConfigError if invalid."""
    try:
        if name == "goal":
            return Goal(str(value).lower())
        if name == "friction":
            return FrictionLevel(str(value).lower())
        if name == "theme":
            theme = str(value).lower()
            if theme not in VALID_THEMES:
                raise ValueError(theme)
            return theme
        if name == "log_level":
            level = str(value).upper()
            if level not in VALID_LOG_LEVELS:
                raise ValueError(level)
            return level
        if name in ("history_turns", "quiz_interval", "reveal_chars_per_tick"):
            number = int(value)
            if number < 1:
                raise ValueError(number)
            return number
        if name in ("stream_timeout", "reveal_tick_interval", "reveal_max_drain_seconds"):
            number = float(value)
            if number < 0:
                raise ValueError(number)
            return number
        if name in ("provider", "model"):
            if value is None:
                return None
            text = str(value).strip()
            return (text.lower() if name == "provider" else text) or None
        if name == "weights":
            if isinstance(value, AgencyWeights):
                return value
            if not isinstance(value, dict):
                raise ValueError("weights must be an object")
            return AgencyWeights.from_mapping(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc
    raise ConfigError(f"Unknown setting: {name}")


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must hold a JSON object")
    return data


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from defaults, the config file and the environment."""
    settings = Settings()
    config_path = path or get_config_path()

    known = set(Settings.__dataclass_fields__)
    for key, value in _read_config_file(config_path).items():
        if key not in known:
            logger.debug("Ignoring unknown config key %r in %s", key, config_path)
            continue
        setattr(settings, key, _coerce(key, value))

    for env_var, name in _ENV_VARS.items():
        raw = os.environ.get(env_var)
        if raw is not None and raw.strip():
            setattr(settings, name, _coerce(name, raw.strip()))

    return settings


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    """Write settings as JSON, readable by the owner only."""
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        json.dump(settings.to_dict(), f, indent=2)
    config_path.chmod(0o600)
    return config_path
