from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, cast

import redis

from storyline.core.events import EngineEvent


@dataclass(frozen=True, slots=True)
class EventStream:
    event_type: str

    @property
    def key(self) -> str:
        return f"events:{self.event_type}"


def publish_event(*, r: redis.Redis, event: EngineEvent) -> str:
    """Append one engine event to its type's stream."""

    # redis-py stubs expect field/value unions; events only carry string fields.
    stream_id = r.xadd(EventStream(event.type).key, event.to_fields())
    return cast(str, stream_id)


def publish_many(*, r: redis.Redis, events: Sequence[EngineEvent]) -> list[str]:
    return [publish_event(r=r, event=e) for e in events]


def read_events(*, r: redis.Redis, event_type: str, count: int = 20) -> list[tuple[str, dict[str, str]]]:
    return cast(list[tuple[str, dict[str, str]]], r.xrange(EventStream(event_type).key, count=count))
