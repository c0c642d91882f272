from __future__ import annotations

from pathlib import Path

from storyline.content.registry import build_engine, load_content
from storyline.core.context import EngineContext
from storyline.settings import settings_from_env


def load_engine_for_app() -> EngineContext:
    # storyline/content/startup.py -> project root
    project_root = Path(__file__).resolve().parents[2]
    settings = settings_from_env()
    content = load_content(root=project_root, strict=settings.strict_content)
    return build_engine(content, settings=settings)
