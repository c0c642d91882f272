from __future__ import annotations

import os
from pathlib import Path

import pytest

from storyline.content.registry import build_engine, builtin_content
from storyline.core.context import EngineContext


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    In CI we don't auto-load `.env` so a developer's local settings can't leak into
    the run. Opt in with STORYLINE_LOAD_DOTENV_FOR_TESTS=1.
    """

    if os.environ.get("CI") and os.environ.get("STORYLINE_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture()
def engine() -> EngineContext:
    """A fresh engine over the built-in content (discovery state is per test)."""

    return build_engine(builtin_content())


@pytest.fixture()
def client_and_redis(engine: EngineContext):
    """FastAPI TestClient wired to fakeredis and the per-test engine."""

    from collections.abc import Generator

    import fakeredis
    from fastapi.testclient import TestClient

    from storyline.api.deps import get_engine, get_redis
    from storyline.main import app

    r = fakeredis.FakeRedis(decode_responses=True)

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
