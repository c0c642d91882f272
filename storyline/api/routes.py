from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
import redis

from storyline import actions
from storyline.api.deps import get_engine, get_redis
from storyline.api.models import (
    AdvanceNarrativeRequest,
    AdvanceNarrativeResponse,
    AvailableBranchesResponse,
    BranchingAnalytics,
    EndingCollectionStats,
    EndingHistoryResponse,
    EndingResult,
    NarrativeProgress,
    NarrativeStatistics,
    PathRecord,
    PerformanceSnapshot,
    ResolveEndingRequest,
    StartNarrativeRequest,
    StartSessionRequest,
    TakeBranchRequest,
    TreeListResponse,
    TreeSummary,
)
from storyline.core.context import EngineContext
from storyline.errors import InvalidStateError, NotFoundError, StorylineError
from storyline.streams import read_events

router = APIRouter()


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InvalidStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/trees", response_model=TreeListResponse)
async def list_trees_route(engine: EngineContext = Depends(get_engine)) -> TreeListResponse:
    return TreeListResponse(
        trees=[
            TreeSummary(
                id=g.id,
                name=g.tree.name,
                description=g.tree.description,
                start_node_id=g.tree.start_node_id,
                node_count=len(g.node_ids),
                branch_count=len(g.branch_ids),
            )
            for g in engine.trees.values()
        ]
    )


@router.get("/trees/{tree_id}/analytics", response_model=BranchingAnalytics)
async def tree_analytics_route(
    tree_id: str,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> BranchingAnalytics:
    try:
        return actions.analytics_for_tree(r=r, engine=engine, tree_id=tree_id)
    except StorylineError as e:
        raise _http_error(e) from e


@router.post("/sessions", response_model=PathRecord, status_code=status.HTTP_201_CREATED)
async def start_session_route(
    payload: StartSessionRequest,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> PathRecord:
    try:
        result = actions.start_session(r=r, engine=engine, tree_id=payload.tree_id, context=payload.context, seed=payload.seed)
    except StorylineError as e:
        raise _http_error(e) from e
    return result.value


@router.get("/sessions/{session_id}", response_model=PathRecord)
async def get_session_route(session_id: str, r: redis.Redis = Depends(get_redis)) -> PathRecord:
    try:
        return actions.get_session(r=r, session_id=session_id)
    except StorylineError as e:
        raise _http_error(e) from e


@router.get("/sessions/{session_id}/branches", response_model=AvailableBranchesResponse)
async def available_branches_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> AvailableBranchesResponse:
    try:
        path, branches = actions.available_branches(r=r, engine=engine, session_id=session_id)
    except StorylineError as e:
        raise _http_error(e) from e
    return AvailableBranchesResponse(session_id=path.id, node_id=path.current_node_id, branches=branches)


@router.post("/sessions/{session_id}/branches/{branch_id}", response_model=PathRecord)
async def take_branch_route(
    session_id: str,
    branch_id: str,
    payload: TakeBranchRequest,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> PathRecord:
    try:
        result = actions.take_branch(
            r=r,
            engine=engine,
            session_id=session_id,
            branch_id=branch_id,
            context_updates=payload.context_updates,
        )
    except (StorylineError, ValueError) as e:
        raise _http_error(e) from e
    return result.value


@router.post("/sessions/{session_id}/complete", response_model=PathRecord)
async def complete_session_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> PathRecord:
    try:
        return actions.complete_session(r=r, engine=engine, session_id=session_id).value
    except StorylineError as e:
        raise _http_error(e) from e


@router.post("/narratives/{narrative_id}/endings/resolve", response_model=EndingResult)
async def resolve_ending_route(
    narrative_id: str,
    payload: ResolveEndingRequest,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> EndingResult:
    try:
        result = actions.resolve_narrative_ending(
            r=r,
            engine=engine,
            narrative_id=narrative_id,
            performance=payload.performance,
            choices_made=payload.choices_made,
            achievements_unlocked=payload.achievements_unlocked,
        )
    except StorylineError as e:
        raise _http_error(e) from e
    return result.value


@router.get("/narratives/{narrative_id}/endings/stats", response_model=EndingCollectionStats)
async def ending_stats_route(
    narrative_id: str,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> EndingCollectionStats:
    try:
        return actions.ending_stats(r=r, engine=engine, narrative_id=narrative_id)
    except StorylineError as e:
        raise _http_error(e) from e


@router.get("/narratives/{narrative_id}/endings/history", response_model=EndingHistoryResponse)
async def ending_history_route(
    narrative_id: str,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> EndingHistoryResponse:
    try:
        results = actions.ending_history(r=r, engine=engine, narrative_id=narrative_id)
    except StorylineError as e:
        raise _http_error(e) from e
    return EndingHistoryResponse(narrative_id=narrative_id, results=results)


@router.get("/narratives/statistics", response_model=NarrativeStatistics)
async def narrative_statistics_route(
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> NarrativeStatistics:
    return actions.statistics(r=r, engine=engine)


@router.post("/progress", response_model=NarrativeProgress, status_code=status.HTTP_201_CREATED)
async def start_narrative_route(
    payload: StartNarrativeRequest,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> NarrativeProgress:
    try:
        result = actions.start_narrative(r=r, engine=engine, narrative_id=payload.narrative_id, resume=payload.resume)
    except StorylineError as e:
        raise _http_error(e) from e
    return result.value


@router.post("/progress/{progress_id}/advance", response_model=AdvanceNarrativeResponse)
async def advance_narrative_route(
    progress_id: str,
    payload: AdvanceNarrativeRequest,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> AdvanceNarrativeResponse:
    try:
        result = actions.advance_narrative(
            r=r,
            engine=engine,
            progress_id=progress_id,
            next_section_id=payload.next_section_id,
            choice_id=payload.choice_id,
            typing_delta=payload.typing_delta,
        )
    except StorylineError as e:
        raise _http_error(e) from e
    advanced, progress = result.value
    return AdvanceNarrativeResponse(advanced=advanced, progress=progress)


@router.get("/progress/{progress_id}/snapshot", response_model=PerformanceSnapshot)
async def narrative_snapshot_route(
    progress_id: str,
    r: redis.Redis = Depends(get_redis),
    engine: EngineContext = Depends(get_engine),
) -> PerformanceSnapshot:
    try:
        return actions.narrative_snapshot(r=r, engine=engine, progress_id=progress_id)
    except StorylineError as e:
        raise _http_error(e) from e


@router.get("/events/{event_type}")
async def read_events_route(event_type: str, count: int = 20, r: redis.Redis = Depends(get_redis)) -> dict[str, object]:
    """Debug endpoint: read an event stream without redis-cli."""

    if count < 1 or count > 200:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 200")

    entries = read_events(r=r, event_type=event_type, count=count)
    return {"event_type": event_type, "messages": [{"id": mid, "fields": fields} for mid, fields in entries]}
