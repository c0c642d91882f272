from __future__ import annotations

import os
from collections.abc import Generator

import redis
from fastapi import Request

from storyline.core.context import EngineContext


def get_redis_url() -> str:
    return os.environ.get("REDIS_URL", "redis://localhost:6379/0")


def create_redis() -> redis.Redis:
    # Strings in/out; every stored value is JSON text.
    return redis.Redis.from_url(get_redis_url(), decode_responses=True)


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


def get_engine(request: Request) -> EngineContext:
    # Built once at startup and passed explicitly from here on.
    return request.app.state.engine
