"""
Settings: runtime knobs read from the environment.

MACHINA_MAX_RECURSION   nesting ceiling for machines running machines (default 50)
MACHINA_EXTRA_ARGINS    what to do with undeclared argins: error | warn | ignore
MACHINA_UNSAFE          skip argin validation and exit coercion
MACHINA_TRACK_DURATION  record elapsed milliseconds on each instance (default on)
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_MAX_RECURSION = 50

_TRUTHY = {"1", "true", "yes", "on"}


class ExtraArginsTactic(str, Enum):
    ERROR = "error"
    WARN = "warn"
    IGNORE = "ignore"


class MachineSettings(BaseModel):
    max_recursion: int = Field(default=DEFAULT_MAX_RECURSION, ge=0)
    extra_argins: ExtraArginsTactic = ExtraArginsTactic.ERROR
    unsafe: bool = False
    track_duration: bool = True


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def load_settings() -> MachineSettings:
    """Build settings from MACHINA_* environment variables."""
    return MachineSettings(
        max_recursion=int(os.environ.get("MACHINA_MAX_RECURSION", DEFAULT_MAX_RECURSION)),
        extra_argins=ExtraArginsTactic(
            os.environ.get("MACHINA_EXTRA_ARGINS", ExtraArginsTactic.ERROR.value).lower()
        ),
        unsafe=_env_flag("MACHINA_UNSAFE", False),
        track_duration=_env_flag("MACHINA_TRACK_DURATION", True),
    )


# Lazy singleton
_settings_instance: Optional[MachineSettings] = None


def get_settings() -> MachineSettings:
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = load_settings()
    return _settings_instance


def reset_settings() -> None:
    """Forget cached settings so the next get_settings() rereads the environment."""
    global _settings_instance
    _settings_instance = None
