from __future__ import annotations

import os
from dataclasses import dataclass


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class EngineSettings:
    # Secret endings take part in resolution.
    enable_secret_endings: bool = True
    # Narrative choices are recorded in progress.
    save_choices: bool = True
    # Paths kept per tree in the store.
    path_history_limit: int = 50
    # Ending results kept per narrative.
    ending_history_limit: int = 100
    # Fail instead of falling back to built-in content.
    strict_content: bool = False


def settings_from_env() -> EngineSettings:
    return EngineSettings(
        enable_secret_endings=_env_flag("STORYLINE_ENABLE_SECRET_ENDINGS", True),
        save_choices=_env_flag("STORYLINE_SAVE_CHOICES", True),
        path_history_limit=_env_int("STORYLINE_PATH_HISTORY_LIMIT", 50),
        ending_history_limit=_env_int("STORYLINE_ENDING_HISTORY_LIMIT", 100),
        strict_content=_env_flag("STORYLINE_STRICT_CONTENT", False),
    )
