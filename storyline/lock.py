from __future__ import annotations

import time
from contextlib import contextmanager

import redis

from storyline.errors import InvalidStateError


class SessionBusyError(InvalidStateError):
    pass


@contextmanager
def session_lock(*, r: redis.Redis, session_id: str, ttl_ms: int = 5_000):
    """Best-effort per-session lock around load-modify-save.

    Single holder only: release deletes the key without checking a token.
    """

    key = f"lock:session:{session_id}"
    acquired = r.set(key, "1", nx=True, px=ttl_ms)
    if not acquired:
        raise SessionBusyError(f"Session {session_id} is busy")
    try:
        yield
    finally:
        r.delete(key)
        time.sleep(0)
