from __future__ import annotations

import redis

from storyline.api.models import DiscoveryOverlay, EndingResult, NarrativeProgress, PathRecord, SessionStatus
from storyline.errors import NotFoundError


SESSION_KEY_PREFIX = "storyline:session:"  # + {path id}
PROGRESS_SET_KEY = "storyline:progress"
PROGRESS_KEY_PREFIX = "storyline:progress:"  # + {progress id}
DISCOVERIES_KEY_PREFIX = "storyline:discoveries:"  # + {narrative id}
ENDING_HISTORY_KEY_PREFIX = "storyline:ending_history:"  # + {narrative id}


def _session_key(path_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{path_id}"


def _tree_index_key(tree_id: str) -> str:
    # Newest first; trimmed to the path history limit.
    return f"storyline:tree:{tree_id}:sessions"


def _progress_key(progress_id: str) -> str:
    return f"{PROGRESS_KEY_PREFIX}{progress_id}"


def _discoveries_key(narrative_id: str) -> str:
    return f"{DISCOVERIES_KEY_PREFIX}{narrative_id}"


def _ending_history_key(narrative_id: str) -> str:
    return f"{ENDING_HISTORY_KEY_PREFIX}{narrative_id}"


# -- paths ---------------------------------------------------------------------


def save_path(*, r: redis.Redis, path: PathRecord, history_limit: int = 50) -> None:
    key = _session_key(path.id)
    is_new = not r.exists(key)
    r.set(key, path.model_dump_json())
    if not is_new:
        return

    index = _tree_index_key(path.tree_id)
    r.lpush(index, path.id)
    # Drop the records that fall off the end of the history.
    evicted = r.lrange(index, history_limit, -1)
    if evicted:
        r.ltrim(index, 0, history_limit - 1)
        r.delete(*(_session_key(pid) for pid in evicted))


def get_path(*, r: redis.Redis, path_id: str) -> PathRecord | None:
    raw = r.get(_session_key(path_id))
    if not raw:
        return None
    return PathRecord.model_validate_json(raw)


def require_path(*, r: redis.Redis, path_id: str) -> PathRecord:
    path = get_path(r=r, path_id=path_id)
    if path is None:
        raise NotFoundError(f"Session not found: {path_id}")
    return path


def list_paths(*, r: redis.Redis, tree_id: str) -> list[PathRecord]:
    out: list[PathRecord] = []
    for pid in r.lrange(_tree_index_key(tree_id), 0, -1):
        path = get_path(r=r, path_id=pid)
        if path is not None:
            out.append(path)
    return out


# -- narrative progress --------------------------------------------------------


def save_progress(*, r: redis.Redis, progress: NarrativeProgress) -> None:
    r.set(_progress_key(progress.id), progress.model_dump_json())
    r.sadd(PROGRESS_SET_KEY, progress.id)


def get_progress(*, r: redis.Redis, progress_id: str) -> NarrativeProgress | None:
    raw = r.get(_progress_key(progress_id))
    if not raw:
        return None
    return NarrativeProgress.model_validate_json(raw)


def require_progress(*, r: redis.Redis, progress_id: str) -> NarrativeProgress:
    progress = get_progress(r=r, progress_id=progress_id)
    if progress is None:
        raise NotFoundError(f"Narrative progress not found: {progress_id}")
    return progress


def list_progress(*, r: redis.Redis, narrative_id: str | None = None) -> list[NarrativeProgress]:
    out: list[NarrativeProgress] = []
    for pid in sorted(r.smembers(PROGRESS_SET_KEY)):
        progress = get_progress(r=r, progress_id=pid)
        if progress is None:
            continue
        if narrative_id is not None and progress.narrative_id != narrative_id:
            continue
        out.append(progress)
    out.sort(key=lambda p: p.last_access_time, reverse=True)
    return out


def find_resumable_progress(*, r: redis.Redis, narrative_id: str) -> NarrativeProgress | None:
    """Most recently touched unfinished run of `narrative_id`, if any."""

    return next(
        (p for p in list_progress(r=r, narrative_id=narrative_id) if p.status == SessionStatus.in_progress),
        None,
    )


# -- endings -------------------------------------------------------------------


def save_overlay(*, r: redis.Redis, overlay: DiscoveryOverlay) -> None:
    r.set(_discoveries_key(overlay.narrative_id), overlay.model_dump_json())


def get_overlay(*, r: redis.Redis, narrative_id: str) -> DiscoveryOverlay | None:
    raw = r.get(_discoveries_key(narrative_id))
    if not raw:
        return None
    return DiscoveryOverlay.model_validate_json(raw)


def push_ending_result(*, r: redis.Redis, result: EndingResult, limit: int = 100) -> None:
    if result.narrative_id is None:
        return
    key = _ending_history_key(result.narrative_id)
    r.lpush(key, result.model_dump_json())
    r.ltrim(key, 0, limit - 1)


def list_ending_results(*, r: redis.Redis, narrative_id: str) -> list[EndingResult]:
    return [EndingResult.model_validate_json(raw) for raw in r.lrange(_ending_history_key(narrative_id), 0, -1)]
