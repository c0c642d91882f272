"""Ending resolution.

Every candidate ending is scored additively: the weights of the conditions it meets,
minus fixed penalties for missed hard thresholds. The highest score wins; ties go to
catalog order. A near-miss run still lands on a plausible, more common ending, while
rare/secret endings stay out of reach unless every threshold is met.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from storyline.api.models import (
    RARITY_ORDER,
    ConditionOutcome,
    DiscoveryOverlay,
    Ending,
    EndingCollection,
    EndingCollectionStats,
    EndingDiscovery,
    EndingResult,
    PerformanceSnapshot,
    Rarity,
)
from storyline.conditions import evaluate_ending_condition
from storyline.core.events import AllEndingsDiscovered, EndingDiscovered
from storyline.errors import ContentError, NoEligibleEndingError, NotFoundError

if TYPE_CHECKING:
    from storyline.core.context import EngineContext

logger = logging.getLogger(__name__)

# Changing these changes which endings are reachable.
THRESHOLD_PENALTY = 10
REQUIREMENT_PENALTY = 20


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class ScoredEnding:
    ending: Ending
    score: float
    outcomes: tuple[ConditionOutcome, ...]


def record_discovery(ending: Ending, *, now: datetime) -> bool:
    """Bump the ending's discovery metadata. Returns True on first discovery."""

    first = not ending.discovered
    if first:
        ending.discovered = True
        ending.first_discovered_at = now
    ending.discovery_count += 1
    return first


class EndingResolver:
    """Stateless scorer. The only side effect is discovery metadata on the chosen Ending."""

    def score(
        self,
        ending: Ending,
        performance: PerformanceSnapshot,
        choices_made: Collection[str],
        achievements_unlocked: Collection[str],
    ) -> ScoredEnding:
        outcomes = tuple(
            evaluate_ending_condition(c, performance, choices_made, achievements_unlocked) for c in ending.conditions
        )
        score = float(sum(c.weight for c, o in zip(ending.conditions, outcomes) if o.met))

        if ending.min_accuracy is not None and performance.accuracy < ending.min_accuracy:
            score -= THRESHOLD_PENALTY
        if ending.min_wpm is not None and performance.wpm < ending.min_wpm:
            score -= THRESHOLD_PENALTY
        if ending.min_completion_percentage is not None and performance.completion_percentage < ending.min_completion_percentage:
            score -= THRESHOLD_PENALTY

        if ending.required_choices is not None and not all(c in choices_made for c in ending.required_choices):
            score -= REQUIREMENT_PENALTY
        if ending.required_achievements is not None and not all(
            a in achievements_unlocked for a in ending.required_achievements
        ):
            score -= REQUIREMENT_PENALTY

        return ScoredEnding(ending=ending, score=score, outcomes=outcomes)

    def resolve(
        self,
        candidates: Iterable[Ending],
        performance: PerformanceSnapshot,
        choices_made: Collection[str],
        achievements_unlocked: Collection[str],
        *,
        narrative_id: str | None = None,
        now: datetime | None = None,
    ) -> EndingResult:
        scored = [self.score(e, performance, choices_made, achievements_unlocked) for e in candidates]
        # Stable: equal scores keep catalog order.
        ranked = sorted(scored, key=lambda s: -s.score)

        fallback = False
        if ranked and ranked[0].score >= 0:
            chosen = ranked[0]
        else:
            # First common ending in catalog order, not score order.
            common = next((s for s in scored if s.ending.rarity == Rarity.common), None)
            if common is None:
                raise NoEligibleEndingError(
                    f"No ending scored >= 0 and no common ending to fall back to (narrative {narrative_id})"
                )
            chosen = common
            fallback = True

        discovered_at = now or _now()
        first = record_discovery(chosen.ending, now=discovered_at)
        logger.info(
            "resolved ending %s for narrative %s (score=%s, fallback=%s, first=%s)",
            chosen.ending.id,
            narrative_id,
            chosen.score,
            fallback,
            first,
        )

        return EndingResult(
            ending=chosen.ending.model_copy(deep=True),
            narrative_id=narrative_id,
            discovered_at=discovered_at,
            performance=performance,
            choices_made=list(choices_made),
            achievements_unlocked=list(achievements_unlocked),
            conditions_met=list(chosen.outcomes),
            score=chosen.score,
            fallback=fallback,
            is_first_discovery=first,
        )


class EndingCatalog:
    """The ending set of one narrative plus its discovery bookkeeping."""

    def __init__(self, narrative_id: str, endings: Iterable[Ending], *, history_limit: int = 100):
        self.narrative_id = narrative_id
        self.endings: list[Ending] = []
        seen: set[str] = set()
        for e in endings:
            if e.id in seen:
                raise ContentError(f"Duplicate ending id in narrative {narrative_id}: {e.id}")
            seen.add(e.id)
            self.endings.append(e)
        self.history: list[EndingResult] = []
        self._history_limit = history_limit

    @staticmethod
    def from_collection(collection: EndingCollection, *, history_limit: int = 100) -> "EndingCatalog":
        endings = [e.model_copy(deep=True) for e in collection.endings]
        return EndingCatalog(collection.narrative_id, endings, history_limit=history_limit)

    def get(self, ending_id: str) -> Ending:
        ending = next((e for e in self.endings if e.id == ending_id), None)
        if ending is None:
            raise NotFoundError(f"Ending not found in narrative {self.narrative_id}: {ending_id}")
        return ending

    def candidates(self, *, include_secret: bool = True) -> list[Ending]:
        if include_secret:
            return list(self.endings)
        return [e for e in self.endings if e.rarity != Rarity.secret]

    @property
    def discovered_ids(self) -> list[str]:
        return [e.id for e in self.endings if e.discovered]

    @property
    def completion_percentage(self) -> float:
        if not self.endings:
            return 0.0
        return len(self.discovered_ids) / len(self.endings) * 100

    @property
    def all_discovered(self) -> bool:
        return bool(self.endings) and all(e.discovered for e in self.endings)

    def record(self, result: EndingResult) -> None:
        self.history.append(result)
        if len(self.history) > self._history_limit:
            del self.history[: len(self.history) - self._history_limit]

    def overlay(self) -> DiscoveryOverlay:
        return DiscoveryOverlay(
            narrative_id=self.narrative_id,
            endings={
                e.id: EndingDiscovery(
                    discovered=e.discovered,
                    discovery_count=e.discovery_count,
                    first_discovered_at=e.first_discovered_at,
                )
                for e in self.endings
            },
        )

    def apply_overlay(self, overlay: DiscoveryOverlay) -> None:
        if overlay.narrative_id != self.narrative_id:
            raise ValueError(f"Overlay is for narrative {overlay.narrative_id}, not {self.narrative_id}")
        for e in self.endings:
            d = overlay.endings.get(e.id)
            if d is None:
                continue
            e.discovered = d.discovered
            e.discovery_count = d.discovery_count
            e.first_discovered_at = d.first_discovered_at
        unknown = set(overlay.endings) - {e.id for e in self.endings}
        if unknown:
            logger.warning("ignoring discovery data for unknown endings in %s: %s", self.narrative_id, sorted(unknown))

    def stats(self) -> EndingCollectionStats:
        discovered = [e for e in self.endings if e.discovered]
        rarest = max(discovered, key=lambda e: RARITY_ORDER[e.rarity], default=None)
        most = max(self.endings, key=lambda e: e.discovery_count, default=None)
        return EndingCollectionStats(
            narrative_id=self.narrative_id,
            total_endings=len(self.endings),
            discovered_count=len(discovered),
            completion_percentage=self.completion_percentage,
            rarity_count=dict(Counter(e.rarity.value for e in self.endings)),
            discovered_by_rarity=dict(Counter(e.rarity.value for e in discovered)),
            rarest_discovered=rarest.id if rarest is not None else None,
            most_discovered=most.id if most is not None and most.discovery_count > 0 else None,
        )


def resolve_ending(
    engine: EngineContext,
    narrative_id: str,
    performance: PerformanceSnapshot,
    choices_made: Collection[str],
    achievements_unlocked: Collection[str] = (),
    *,
    resolver: EndingResolver | None = None,
    now: datetime | None = None,
) -> EndingResult:
    """Resolve against a registered catalog and emit the discovery events."""

    catalog = engine.require_catalog(narrative_id)
    had_all = catalog.all_discovered

    result = (resolver or EndingResolver()).resolve(
        catalog.candidates(include_secret=engine.settings.enable_secret_endings),
        performance,
        choices_made,
        achievements_unlocked,
        narrative_id=narrative_id,
        now=now,
    )
    catalog.record(result)
    engine.emit(EndingDiscovered(result=result))
    if not had_all and catalog.all_discovered:
        engine.emit(AllEndingsDiscovered(narrative_id=narrative_id))
    return result
