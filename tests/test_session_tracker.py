from __future__ import annotations

import random

import pytest

from storyline.api.models import (
    Branch,
    BranchingTree,
    Node,
    NodeKind,
    PathRecord,
    RandomCondition,
    SessionStatus,
    SkillLevelCondition,
    UserContext,
)
from storyline.content.builtin import SAMPLE_TREE_ID
from storyline.core.context import EngineContext
from storyline.core.events import BranchTaken, PathComplete
from storyline.errors import BranchUnavailableError, InvalidStateError, NotFoundError
from storyline.session import SessionTracker


def _ids(branches: list[Branch]) -> list[str]:
    return [b.id for b in branches]


def test_optional_wpm_condition_does_not_gate_and_priority_orders(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, context=UserContext(current_wpm=0), seed=1)

    assert _ids(tracker.get_available_branches()) == ["branch-mountain", "branch-forest", "branch-city"]


def test_available_branches_are_idempotent(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, seed=1)

    assert _ids(tracker.get_available_branches()) == _ids(tracker.get_available_branches())


def test_required_condition_gates_availability(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, context=UserContext(current_accuracy=80), seed=1)
    tracker.take_branch("branch-forest")

    assert _ids(tracker.get_available_branches()) == ["branch-follow-fox"]
    with pytest.raises(BranchUnavailableError):
        tracker.take_branch("branch-explore-alone")


def test_context_updates_can_open_a_gated_branch(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, context=UserContext(current_accuracy=80), seed=1)
    tracker.take_branch("branch-forest", {"current_accuracy": 92})

    assert _ids(tracker.get_available_branches()) == ["branch-explore-alone", "branch-follow-fox"]


def test_take_branch_records_history_and_completes_at_end(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, context=UserContext(current_wpm=45), seed=1)
    engine.drain_events()

    tracker.take_branch("branch-mountain", {"achievements": ["climber"]})
    path = tracker.take_branch("branch-enter-cave")

    assert path.nodes == ["node-start", "node-mountain", "node-end"]
    assert path.branches == ["branch-mountain", "branch-enter-cave"]
    assert [c.branch_id for c in path.choices_made] == path.branches
    assert [c.node_id for c in path.choices_made] == ["node-start", "node-mountain"]
    assert path.context.previous_choices == ("branch-mountain", "branch-enter-cave")
    assert path.context.achievements == ("climber",)

    # Non-required conditions are still audited.
    assert [(e.branch_id, e.condition_id, e.met) for e in path.condition_results] == [
        ("branch-mountain", "cond-wpm-40", True)
    ]

    assert path.completed is True
    assert path.status == SessionStatus.completed
    assert path.end_time is not None

    events = engine.drain_events()
    assert [type(e) for e in events] == [BranchTaken, BranchTaken, PathComplete]
    assert events[1].to_node.id == "node-end"
    assert events[1].to_node.visited is True


def test_take_branch_on_completed_session_fails(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, seed=1)
    tracker.take_branch("branch-city")
    tracker.take_branch("branch-accept-help")

    with pytest.raises(InvalidStateError):
        tracker.take_branch("branch-explore-independently")
    with pytest.raises(InvalidStateError):
        tracker.get_available_branches()


def test_operations_before_start_fail(engine: EngineContext) -> None:
    tracker = SessionTracker(engine)

    assert tracker.status == SessionStatus.not_started
    with pytest.raises(InvalidStateError):
        tracker.take_branch("branch-forest")
    with pytest.raises(InvalidStateError):
        tracker.complete()


def test_complete_is_idempotent(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, seed=1)
    engine.drain_events()

    first = tracker.complete()
    end_time = first.end_time
    second = tracker.complete()

    assert second.end_time == end_time
    assert [type(e) for e in engine.drain_events()] == [PathComplete]


def test_unknown_tree_and_branch_raise_not_found(engine: EngineContext) -> None:
    with pytest.raises(NotFoundError):
        engine.start_session("tree-missing")

    tracker = engine.start_session(SAMPLE_TREE_ID, seed=1)
    with pytest.raises(NotFoundError):
        tracker.take_branch("branch-missing")


def test_missing_start_node_raises_not_found(engine: EngineContext) -> None:
    engine.add_tree(BranchingTree(id="broken", start_node_id="nope", nodes=(Node(id="a", kind=NodeKind.end),)))

    with pytest.raises(NotFoundError):
        engine.start_session("broken")


def test_sessions_do_not_share_visited_flags(engine: EngineContext) -> None:
    a = engine.start_session(SAMPLE_TREE_ID, seed=1)
    b = engine.start_session(SAMPLE_TREE_ID, seed=2)

    a.take_branch("branch-forest")

    assert a.node_view("node-forest").visited is True
    assert b.node_view("node-forest").visited is False
    assert engine.require_tree(SAMPLE_TREE_ID).get_node("node-forest").visited is False


def test_locked_and_unlock_conditions(engine: EngineContext) -> None:
    tree = BranchingTree(
        id="gates",
        start_node_id="s",
        nodes=(
            Node(id="s", kind=NodeKind.start, outgoing=("locked", "expert", "open")),
            Node(id="e", kind=NodeKind.end, incoming=("locked", "expert", "open")),
        ),
        branches=(
            Branch(id="locked", from_node="s", to_node="e", locked=True, priority=9),
            Branch(
                id="expert",
                from_node="s",
                to_node="e",
                priority=5,
                unlock_conditions=(SkillLevelCondition(id="lvl", min_level=3),),
            ),
            Branch(id="open", from_node="s", to_node="e"),
        ),
    )
    engine.add_tree(tree)

    novice = engine.start_session("gates", context=UserContext(skill_level=1), seed=1)
    expert = engine.start_session("gates", context=UserContext(skill_level=3), seed=1)

    assert _ids(novice.get_available_branches()) == ["open"]
    assert _ids(expert.get_available_branches()) == ["expert", "open"]


def test_random_gate_follows_injected_source(engine: EngineContext) -> None:
    tree = BranchingTree(
        id="coin",
        start_node_id="s",
        nodes=(
            Node(id="s", kind=NodeKind.start, outgoing=("heads",)),
            Node(id="e", kind=NodeKind.end, incoming=("heads",)),
        ),
        branches=(
            Branch(
                id="heads",
                from_node="s",
                to_node="e",
                conditions=(RandomCondition(id="flip", probability=0.5, required=True),),
            ),
        ),
    )
    engine.add_tree(tree)

    class _Fixed:
        def __init__(self, value: float):
            self.value = value

        def random(self) -> float:
            return self.value

    low = engine.start_session("coin", rng=_Fixed(0.1), seed=1)  # type: ignore[arg-type]
    high = engine.start_session("coin", rng=_Fixed(0.9), seed=1)  # type: ignore[arg-type]

    assert _ids(low.get_available_branches()) == ["heads"]
    assert high.get_available_branches() == []


def test_seeded_sessions_draw_identically(engine: EngineContext) -> None:
    tree = BranchingTree(
        id="dice",
        start_node_id="s",
        nodes=(
            Node(id="s", kind=NodeKind.start, outgoing=tuple(f"b{i}" for i in range(8))),
            Node(id="e", kind=NodeKind.end, incoming=tuple(f"b{i}" for i in range(8))),
        ),
        branches=tuple(
            Branch(
                id=f"b{i}",
                from_node="s",
                to_node="e",
                conditions=(RandomCondition(id=f"r{i}", required=True),),
            )
            for i in range(8)
        ),
    )
    engine.add_tree(tree)

    a = engine.start_session("dice", rng=random.Random(99), seed=99)
    b = engine.start_session("dice", rng=random.Random(99), seed=99)

    assert _ids(a.get_available_branches()) == _ids(b.get_available_branches())


def test_update_context_merges_collections(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, context=UserContext(achievements=("a",)), seed=1)

    ctx = tracker.update_context(current_wpm=55, achievements=["b", "a"])

    assert ctx.current_wpm == 55
    assert ctx.achievements == ("a", "b")
    with pytest.raises(ValueError):
        tracker.update_context(mood="sunny")


def test_restore_round_trip_reproduces_state(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, context=UserContext(current_accuracy=95), seed=42)
    tracker.take_branch("branch-forest")

    raw = tracker.require_path().model_dump_json()
    restored = SessionTracker.restore(engine, PathRecord.model_validate_json(raw))

    assert restored.require_path() == tracker.require_path()
    assert restored.current_node().id == "node-forest"
    assert _ids(restored.get_available_branches()) == _ids(tracker.get_available_branches())

    restored.take_branch("branch-explore-alone")
    assert restored.require_path().nodes == ["node-start", "node-forest", "node-end"]


def test_bad_context_update_leaves_path_untouched(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, seed=1)

    with pytest.raises(ValueError):
        tracker.take_branch("branch-city", {"mood": "sunny"})

    path = tracker.require_path()
    assert path.nodes == ["node-start"]
    assert path.branches == []


def test_engine_tracks_active_sessions(engine: EngineContext) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, seed=1)

    assert engine.require_session(tracker.require_path().id) is tracker
    with pytest.raises(NotFoundError):
        engine.require_session("path-missing")


@pytest.mark.parametrize("value", ["explorer", None, [1, 2]])
def test_collection_updates_must_be_lists_of_ids(engine: EngineContext, value: object) -> None:
    tracker = engine.start_session(SAMPLE_TREE_ID, context=UserContext(achievements=("a",)), seed=1)

    with pytest.raises(ValueError):
        tracker.take_branch("branch-city", {"achievements": value})

    path = tracker.require_path()
    assert path.branches == []
    assert path.context.achievements == ("a",)


def test_audit_reuses_the_draw_that_opened_the_branch(engine: EngineContext) -> None:
    tree = BranchingTree(
        id="gamble",
        start_node_id="s",
        nodes=(
            Node(id="s", kind=NodeKind.start, outgoing=("lucky",)),
            Node(id="e", kind=NodeKind.end, incoming=("lucky",)),
        ),
        branches=(
            Branch(
                id="lucky",
                from_node="s",
                to_node="e",
                conditions=(
                    RandomCondition(id="gate", probability=0.5, required=True),
                    RandomCondition(id="bonus", probability=0.5),
                ),
            ),
        ),
    )
    engine.add_tree(tree)

    class _Scripted:
        def __init__(self, *values: float):
            self.values = list(values)

        def random(self) -> float:
            return self.values.pop(0)

    # The gate draws 0.1 and opens; the optional bonus draws 0.9 during the audit.
    tracker = engine.start_session("gamble", rng=_Scripted(0.1, 0.9), seed=1)  # type: ignore[arg-type]
    path = tracker.take_branch("lucky")

    assert [(c.condition_id, c.met) for c in path.condition_results] == [("gate", True), ("bonus", False)]
