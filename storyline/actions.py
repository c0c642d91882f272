"""Service layer shared by the HTTP routes and tests.

Every mutating operation follows the same shape:
- take the per-session redis lock
- load the persisted record and rebuild the tracker around it
- run the engine operation
- persist the record
- publish whatever the engine emitted to the event streams
- release the in-memory tracker
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import redis

from storyline.analytics import tree_analytics
from storyline.api.models import (
    Branch,
    BranchingAnalytics,
    EndingCollectionStats,
    EndingResult,
    NarrativeProgress,
    NarrativeStatistics,
    PathRecord,
    PerformanceSnapshot,
    TypingDelta,
    UserContext,
)
from storyline.core.context import EngineContext
from storyline.endings import EndingCatalog, resolve_ending
from storyline.lock import session_lock
from storyline.narrative import NarrativeAdvancer, narrative_statistics
from storyline.session import SessionTracker
from storyline.session_store import (
    find_resumable_progress,
    get_overlay,
    list_ending_results,
    list_paths,
    list_progress,
    push_ending_result,
    require_path,
    require_progress,
    save_overlay,
    save_path,
    save_progress,
)
from storyline.streams import publish_many

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ActionResult(Generic[T]):
    value: T
    event_ids: list[str]


def _flush_events(*, r: redis.Redis, engine: EngineContext) -> list[str]:
    return publish_many(r=r, events=engine.drain_events())


def _save_path(*, r: redis.Redis, engine: EngineContext, path: PathRecord) -> None:
    save_path(r=r, path=path, history_limit=engine.settings.path_history_limit)


@contextmanager
def _loaded_tracker(*, r: redis.Redis, engine: EngineContext, session_id: str) -> Iterator[SessionTracker]:
    tracker = SessionTracker.restore(engine, require_path(r=r, path_id=session_id))
    try:
        yield tracker
    finally:
        engine.release_session(session_id)


@contextmanager
def _loaded_advancer(*, r: redis.Redis, engine: EngineContext, progress_id: str) -> Iterator[NarrativeAdvancer]:
    advancer = NarrativeAdvancer.restore(engine, require_progress(r=r, progress_id=progress_id))
    try:
        yield advancer
    finally:
        engine.release_narrative_session(progress_id)


# -- branching sessions --------------------------------------------------------


def start_session(
    *,
    r: redis.Redis,
    engine: EngineContext,
    tree_id: str,
    context: UserContext | None = None,
    seed: int | None = None,
) -> ActionResult[PathRecord]:
    tracker = engine.start_session(tree_id, context=context, seed=seed)
    path = tracker.require_path()
    try:
        _save_path(r=r, engine=engine, path=path)
    finally:
        engine.release_session(path.id)
    return ActionResult(value=path, event_ids=_flush_events(r=r, engine=engine))


def get_session(*, r: redis.Redis, session_id: str) -> PathRecord:
    return require_path(r=r, path_id=session_id)


def available_branches(*, r: redis.Redis, engine: EngineContext, session_id: str) -> tuple[PathRecord, list[Branch]]:
    with _loaded_tracker(r=r, engine=engine, session_id=session_id) as tracker:
        return tracker.require_path(), tracker.get_available_branches()


def take_branch(
    *,
    r: redis.Redis,
    engine: EngineContext,
    session_id: str,
    branch_id: str,
    context_updates: Mapping[str, Any] | None = None,
) -> ActionResult[PathRecord]:
    with session_lock(r=r, session_id=session_id):
        with _loaded_tracker(r=r, engine=engine, session_id=session_id) as tracker:
            path = tracker.take_branch(branch_id, context_updates)
            _save_path(r=r, engine=engine, path=path)
        return ActionResult(value=path, event_ids=_flush_events(r=r, engine=engine))


def complete_session(*, r: redis.Redis, engine: EngineContext, session_id: str) -> ActionResult[PathRecord]:
    with session_lock(r=r, session_id=session_id):
        with _loaded_tracker(r=r, engine=engine, session_id=session_id) as tracker:
            path = tracker.complete()
            _save_path(r=r, engine=engine, path=path)
        return ActionResult(value=path, event_ids=_flush_events(r=r, engine=engine))


def analytics_for_tree(*, r: redis.Redis, engine: EngineContext, tree_id: str) -> BranchingAnalytics:
    engine.require_tree(tree_id)
    return tree_analytics(list_paths(r=r, tree_id=tree_id), tree_id)


# -- endings -------------------------------------------------------------------


def _load_catalog(*, r: redis.Redis, engine: EngineContext, narrative_id: str) -> EndingCatalog:
    catalog = engine.require_catalog(narrative_id)
    overlay = get_overlay(r=r, narrative_id=narrative_id)
    if overlay is not None:
        catalog.apply_overlay(overlay)
    return catalog


def resolve_narrative_ending(
    *,
    r: redis.Redis,
    engine: EngineContext,
    narrative_id: str,
    performance: PerformanceSnapshot,
    choices_made: list[str],
    achievements_unlocked: list[str],
) -> ActionResult[EndingResult]:
    with session_lock(r=r, session_id=f"endings:{narrative_id}"):
        catalog = _load_catalog(r=r, engine=engine, narrative_id=narrative_id)
        result = resolve_ending(engine, narrative_id, performance, choices_made, achievements_unlocked)
        save_overlay(r=r, overlay=catalog.overlay())
        push_ending_result(r=r, result=result, limit=engine.settings.ending_history_limit)
        return ActionResult(value=result, event_ids=_flush_events(r=r, engine=engine))


def ending_stats(*, r: redis.Redis, engine: EngineContext, narrative_id: str) -> EndingCollectionStats:
    return _load_catalog(r=r, engine=engine, narrative_id=narrative_id).stats()


def ending_history(*, r: redis.Redis, engine: EngineContext, narrative_id: str) -> list[EndingResult]:
    engine.require_catalog(narrative_id)
    return list_ending_results(r=r, narrative_id=narrative_id)


# -- narratives ----------------------------------------------------------------


def start_narrative(
    *,
    r: redis.Redis,
    engine: EngineContext,
    narrative_id: str,
    resume: bool = True,
) -> ActionResult[NarrativeProgress]:
    engine.require_narrative(narrative_id)
    existing = find_resumable_progress(r=r, narrative_id=narrative_id) if resume else None
    advancer = engine.start_narrative(narrative_id, resume=existing)
    progress = advancer.require_progress()
    try:
        save_progress(r=r, progress=progress)
    finally:
        engine.release_narrative_session(progress.id)
    if existing is not None:
        logger.info("resumed narrative %s at %s", narrative_id, progress.current_section_id)
    return ActionResult(value=progress, event_ids=_flush_events(r=r, engine=engine))


def advance_narrative(
    *,
    r: redis.Redis,
    engine: EngineContext,
    progress_id: str,
    next_section_id: str,
    choice_id: str | None = None,
    typing_delta: TypingDelta | None = None,
) -> ActionResult[tuple[bool, NarrativeProgress]]:
    with session_lock(r=r, session_id=progress_id):
        with _loaded_advancer(r=r, engine=engine, progress_id=progress_id) as advancer:
            advanced = advancer.advance(next_section_id, choice_id=choice_id, typing_delta=typing_delta)
            progress = advancer.require_progress()
            save_progress(r=r, progress=progress)
        return ActionResult(value=(advanced, progress), event_ids=_flush_events(r=r, engine=engine))


def narrative_snapshot(*, r: redis.Redis, engine: EngineContext, progress_id: str) -> PerformanceSnapshot:
    with _loaded_advancer(r=r, engine=engine, progress_id=progress_id) as advancer:
        return advancer.snapshot()


def statistics(*, r: redis.Redis, engine: EngineContext) -> NarrativeStatistics:
    return narrative_statistics(engine.narratives.values(), list_progress(r=r))
