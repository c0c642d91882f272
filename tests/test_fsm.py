from __future__ import annotations

from datetime import UTC, datetime

import pytest

from storyline.api.models import PathRecord, SessionStatus
from storyline.errors import InvalidStateError
from storyline.fsm import SessionFSM


def _path(status: SessionStatus = SessionStatus.not_started) -> PathRecord:
    return PathRecord(id="p", tree_id="t", seed=1, status=status, nodes=["a"], start_time=datetime.now(tz=UTC))


def test_fsm_starts_from_record_status() -> None:
    fsm = SessionFSM(_path(SessionStatus.in_progress))
    assert fsm.status == SessionStatus.in_progress


def test_begin_then_finish_syncs_status_to_record() -> None:
    path = _path()
    fsm = SessionFSM(path)

    fsm.advance("begin")
    assert path.status == SessionStatus.in_progress

    fsm.advance("finish")
    assert path.status == SessionStatus.completed


def test_disallowed_transition_raises_invalid_state() -> None:
    path = _path()
    with pytest.raises(InvalidStateError):
        SessionFSM(path).advance("finish")
    assert path.status == SessionStatus.not_started


def test_require_reports_current_state() -> None:
    fsm = SessionFSM(_path(SessionStatus.completed))

    with pytest.raises(InvalidStateError, match="completed"):
        fsm.require(SessionStatus.in_progress, action="take a branch")
