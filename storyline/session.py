from __future__ import annotations

import logging
import random
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from storyline.api.models import (
    Branch,
    BranchCondition,
    ChoiceRecord,
    ConditionEvaluation,
    Node,
    PathRecord,
    SessionStatus,
    UserContext,
)
from storyline.conditions import evaluate
from storyline.core.events import BranchTaken, PathComplete
from storyline.errors import BranchUnavailableError, InvalidStateError
from storyline.fsm import SessionFSM
from storyline.graph import GraphStore

if TYPE_CHECKING:
    from storyline.core.context import EngineContext

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


class SessionTracker:
    """One user's traversal of one tree.

    Owns exactly one PathRecord. All history lives on that record so it can be
    persisted with `model_dump_json()` and rebuilt with `SessionTracker.restore`.
    """

    def __init__(
        self,
        engine: EngineContext,
        *,
        rng: random.Random | None = None,
        session_id: str | None = None,
    ):
        self.engine = engine
        self.path: PathRecord | None = None
        self._rng = rng
        self._session_id = session_id

    @classmethod
    def restore(cls, engine: EngineContext, path: PathRecord, *, rng: random.Random | None = None) -> "SessionTracker":
        engine.require_tree(path.tree_id)
        # Seeded from the record: reloading the same path always draws the same values.
        tracker = cls(engine, rng=rng or random.Random(f"{path.seed}:{len(path.branches)}"), session_id=path.id)
        tracker.path = path
        engine.sessions[path.id] = tracker
        return tracker

    @property
    def status(self) -> SessionStatus:
        if self.path is None:
            return SessionStatus.not_started
        return self.path.status

    @property
    def graph(self) -> GraphStore:
        return self.engine.require_tree(self.require_path().tree_id)

    def require_path(self) -> PathRecord:
        if self.path is None:
            raise InvalidStateError("Session has not been started")
        return self.path

    def _require_in_progress(self, action: str) -> PathRecord:
        path = self.require_path()
        SessionFSM(path).require(SessionStatus.in_progress, action=action)
        return path

    # -- lifecycle --------------------------------------------------------------

    def start(self, tree_id: str, *, context: UserContext | None = None, seed: int | None = None) -> PathRecord:
        if self.path is not None:
            raise InvalidStateError(f"Session {self.path.id} was already started")

        graph = self.engine.require_tree(tree_id)
        start = graph.start_node()

        if seed is None:
            seed = random.SystemRandom().randint(1, 2**31 - 1)
        if self._rng is None:
            self._rng = random.Random(seed)

        path = PathRecord(
            id=self._session_id or f"path-{uuid4().hex}",
            tree_id=tree_id,
            seed=seed,
            nodes=[start.id],
            visited_nodes=[start.id],
            context=context or UserContext(),
            start_time=_now(),
        )
        SessionFSM(path).advance("begin")
        self.path = path
        self.engine.sessions[path.id] = self
        logger.info("session %s started on tree %s at %s", path.id, tree_id, start.id)

        if graph.is_end_node(start.id):
            self.complete()
        return path

    def complete(self) -> PathRecord:
        path = self.require_path()
        fsm = SessionFSM(path)
        if fsm.status == SessionStatus.completed:
            return path

        fsm.advance("finish")
        path.completed = True
        path.end_time = _now()
        self.engine.emit(PathComplete(path=path.model_copy(deep=True)))
        logger.info("session %s completed after %d branches", path.id, len(path.branches))
        return path

    # -- traversal --------------------------------------------------------------

    def node_view(self, node_id: str) -> Node:
        """The node as this session sees it (visited flag from the session, not the graph)."""

        path = self.require_path()
        if node_id in path.visited_nodes:
            return self.graph.mark_visited(node_id)
        return self.graph.get_node(node_id)

    def current_node(self) -> Node:
        return self.node_view(self.require_path().current_node_id)

    def _evaluate(self, branch: Branch, condition: BranchCondition) -> bool:
        path = self.require_path()
        assert self._rng is not None
        met = evaluate(condition, path.context, draw=self._rng.random)
        logger.debug(
            "session %s: condition %s (%s) on branch %s -> %s",
            path.id,
            condition.id,
            condition.kind,
            branch.id,
            met,
        )
        return met

    def _gate(self, branch: Branch) -> dict[int, bool] | None:
        """Outcomes of the required conditions by position, or None if the branch is closed."""

        if branch.locked:
            return None
        if branch.unlock_conditions is not None:
            if not all(self._evaluate(branch, c) for c in branch.unlock_conditions):
                return None
        outcomes: dict[int, bool] = {}
        for index, condition in enumerate(branch.conditions):
            if condition.required:
                outcomes[index] = self._evaluate(branch, condition)
                if not outcomes[index]:
                    return None
        return outcomes

    def _open_branches(self, path: PathRecord) -> list[tuple[Branch, dict[int, bool]]]:
        gated = []
        for branch in self.graph.outgoing_branches(path.current_node_id):
            outcomes = self._gate(branch)
            if outcomes is not None:
                gated.append((branch, outcomes))
        # sorted() is stable, so equal priorities keep declaration order.
        return sorted(gated, key=lambda g: -g[0].priority)

    def get_available_branches(self) -> list[Branch]:
        """Offerable branches from the current node, highest priority first."""

        path = self._require_in_progress("list branches")
        return [branch for branch, _ in self._open_branches(path)]

    def take_branch(self, branch_id: str, context_updates: Mapping[str, Any] | None = None) -> PathRecord:
        path = self._require_in_progress("take a branch")
        graph = self.graph
        branch = graph.get_branch(branch_id)

        gates = {b.id: outcomes for b, outcomes in self._open_branches(path)}
        if branch.id not in gates:
            raise BranchUnavailableError(f"Branch {branch.id} is not available from node {path.current_node_id}")

        from_node = self.current_node()
        # Raises before the path is touched.
        context = path.context.merged(context_updates, choice_id=branch.id)

        # Audit every condition; required ones keep the outcome that gated the choice.
        gated = gates[branch.id]
        results = [
            ConditionEvaluation(
                branch_id=branch.id,
                condition_id=c.id,
                met=gated[index] if index in gated else self._evaluate(branch, c),
            )
            for index, c in enumerate(branch.conditions)
        ]

        path.nodes.append(branch.to_node)
        path.branches.append(branch.id)
        if branch.to_node not in path.visited_nodes:
            path.visited_nodes.append(branch.to_node)
        path.choices_made.append(ChoiceRecord(node_id=from_node.id, branch_id=branch.id, timestamp=_now()))
        path.condition_results.extend(results)
        path.context = context

        to_node = self.node_view(branch.to_node)
        self.engine.emit(BranchTaken(session_id=path.id, branch=branch, from_node=from_node, to_node=to_node))
        logger.info("session %s took %s: %s -> %s", path.id, branch.id, from_node.id, to_node.id)

        if graph.is_end_node(to_node.id):
            self.complete()
        return path

    def update_context(self, **updates: Any) -> UserContext:
        path = self._require_in_progress("update context")
        path.context = path.context.merged(updates)
        return path.context
