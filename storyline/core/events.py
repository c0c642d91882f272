from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Literal, Union

from storyline.api.models import Branch, EndingResult, Narrative, NarrativeProgress, NarrativeSection, Node, PathRecord

EventType = Literal[
    "branch_taken",
    "path_complete",
    "ending_discovered",
    "all_endings_discovered",
    "narrative_started",
    "section_completed",
    "narrative_completed",
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class BranchTaken:
    session_id: str
    branch: Branch
    from_node: Node
    to_node: Node
    ts: datetime = field(default_factory=_now)

    type: ClassVar[EventType] = "branch_taken"

    def to_fields(self) -> dict[str, str]:
        return {
            "type": self.type,
            "session_id": self.session_id,
            "branch_id": self.branch.id,
            "from_node_id": self.from_node.id,
            "to_node_id": self.to_node.id,
            "ts": self.ts.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class PathComplete:
    path: PathRecord
    ts: datetime = field(default_factory=_now)

    type: ClassVar[EventType] = "path_complete"

    def to_fields(self) -> dict[str, str]:
        return {
            "type": self.type,
            "session_id": self.path.id,
            "tree_id": self.path.tree_id,
            "nodes": ",".join(self.path.nodes),
            "branches": ",".join(self.path.branches),
            "ts": self.ts.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class EndingDiscovered:
    result: EndingResult
    ts: datetime = field(default_factory=_now)

    type: ClassVar[EventType] = "ending_discovered"

    def to_fields(self) -> dict[str, str]:
        return {
            "type": self.type,
            "narrative_id": self.result.narrative_id or "",
            "ending_id": self.result.ending.id,
            "rarity": self.result.ending.rarity.value,
            "score": str(self.result.score),
            "first_discovery": "1" if self.result.is_first_discovery else "0",
            "ts": self.ts.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class AllEndingsDiscovered:
    narrative_id: str
    ts: datetime = field(default_factory=_now)

    type: ClassVar[EventType] = "all_endings_discovered"

    def to_fields(self) -> dict[str, str]:
        return {"type": self.type, "narrative_id": self.narrative_id, "ts": self.ts.isoformat()}


@dataclass(frozen=True, slots=True)
class NarrativeStarted:
    narrative: Narrative
    progress: NarrativeProgress
    ts: datetime = field(default_factory=_now)

    type: ClassVar[EventType] = "narrative_started"

    def to_fields(self) -> dict[str, str]:
        return {
            "type": self.type,
            "narrative_id": self.narrative.id,
            "progress_id": self.progress.id,
            "ts": self.ts.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class SectionCompleted:
    section: NarrativeSection
    progress: NarrativeProgress
    ts: datetime = field(default_factory=_now)

    type: ClassVar[EventType] = "section_completed"

    def to_fields(self) -> dict[str, str]:
        return {
            "type": self.type,
            "narrative_id": self.progress.narrative_id,
            "progress_id": self.progress.id,
            "section_id": self.section.id,
            "ts": self.ts.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class NarrativeCompleted:
    progress: NarrativeProgress
    ts: datetime = field(default_factory=_now)

    type: ClassVar[EventType] = "narrative_completed"

    def to_fields(self) -> dict[str, str]:
        stats = self.progress.typing_stats
        return {
            "type": self.type,
            "narrative_id": self.progress.narrative_id,
            "progress_id": self.progress.id,
            "average_wpm": f"{stats.average_wpm:.2f}",
            "average_accuracy": f"{stats.average_accuracy:.2f}",
            "ts": self.ts.isoformat(),
        }


EngineEvent = Union[
    BranchTaken,
    PathComplete,
    EndingDiscovered,
    AllEndingsDiscovered,
    NarrativeStarted,
    SectionCompleted,
    NarrativeCompleted,
]
