from __future__ import annotations

from datetime import UTC, datetime

import pytest

from storyline.api.models import (
    AccuracyEndingCondition,
    DiscoveryOverlay,
    Ending,
    EndingDiscovery,
    PerformanceSnapshot,
    Rarity,
    WpmEndingCondition,
)
from storyline.content.builtin import SAMPLE_NARRATIVE_ID
from storyline.content.registry import build_engine, builtin_content
from storyline.core.context import EngineContext
from storyline.core.events import AllEndingsDiscovered, EndingDiscovered
from storyline.endings import EndingCatalog, EndingResolver, resolve_ending
from storyline.errors import NoEligibleEndingError
from storyline.settings import EngineSettings


def _ending_a() -> Ending:
    return Ending(
        id="a",
        rarity=Rarity.rare,
        conditions=[
            AccuracyEndingCondition(id="acc", min_accuracy=0, weight=8),
            WpmEndingCondition(id="wpm", min_wpm=0, weight=7),
        ],
        min_accuracy=95,
    )


def test_missed_threshold_subtracts_ten() -> None:
    resolver = EndingResolver()
    a = _ending_a()
    b = Ending(id="b", rarity=Rarity.common)

    result = resolver.resolve([a, b], PerformanceSnapshot(accuracy=80, wpm=30), [], [])

    assert result.ending.id == "a"
    assert result.score == 5
    assert result.fallback is False
    assert [o.condition_id for o in result.conditions_met] == ["acc", "wpm"]


def test_required_choices_and_achievements_each_subtract_twenty() -> None:
    ending = Ending(id="e", required_choices=["x"], required_achievements=["y"])

    assert EndingResolver().score(ending, PerformanceSnapshot(), [], []).score == -40
    assert EndingResolver().score(ending, PerformanceSnapshot(), ["x"], []).score == -20
    assert EndingResolver().score(ending, PerformanceSnapshot(), ["x"], ["y"]).score == 0


def test_ties_keep_catalog_order() -> None:
    first = Ending(id="first", rarity=Rarity.uncommon)
    second = Ending(id="second", rarity=Rarity.common)

    assert EndingResolver().resolve([first, second], PerformanceSnapshot(), [], []).ending.id == "first"


def test_all_negative_falls_back_to_first_common_in_catalog_order() -> None:
    endings = [
        Ending(id="rare", rarity=Rarity.rare, min_accuracy=99),
        Ending(id="common-1", rarity=Rarity.common, min_wpm=90, min_accuracy=99),
        Ending(id="common-2", rarity=Rarity.common, min_wpm=90),
    ]

    result = EndingResolver().resolve(endings, PerformanceSnapshot(accuracy=50, wpm=10), [], [])

    # common-2 scores higher than common-1, but catalog order decides the fallback.
    assert result.ending.id == "common-1"
    assert result.fallback is True
    assert result.score == -20


def test_no_common_fallback_raises() -> None:
    endings = [Ending(id="rare", rarity=Rarity.rare, min_accuracy=99)]

    with pytest.raises(NoEligibleEndingError):
        EndingResolver().resolve(endings, PerformanceSnapshot(accuracy=50), [], [])
    with pytest.raises(NoEligibleEndingError):
        EndingResolver().resolve([], PerformanceSnapshot(), [], [])


def test_resolution_is_deterministic() -> None:
    perf = PerformanceSnapshot(accuracy=97, wpm=52, completion_percentage=100)
    catalog = builtin_content().endings[0].endings

    picks = {EndingResolver().resolve(catalog, perf, ["choice-1"], []).ending.id for _ in range(5)}

    assert len(picks) == 1


def test_discovery_metadata_set_once() -> None:
    ending = Ending(id="e")
    t1 = datetime(2024, 1, 1, tzinfo=UTC)
    t2 = datetime(2024, 2, 1, tzinfo=UTC)

    first = EndingResolver().resolve([ending], PerformanceSnapshot(), [], [], now=t1)
    second = EndingResolver().resolve([ending], PerformanceSnapshot(), [], [], now=t2)

    assert first.is_first_discovery is True
    assert second.is_first_discovery is False
    assert ending.discovered is True
    assert ending.discovery_count == 2
    assert ending.first_discovered_at == t1


def test_builtin_catalog_rewards_a_strong_run_with_the_rare_ending(engine: EngineContext) -> None:
    perf = PerformanceSnapshot(accuracy=97, wpm=55, completion_percentage=100, time_spent=200, mistakes=3)

    result = resolve_ending(engine, SAMPLE_NARRATIVE_ID, perf, ["choice-2"])

    # mystery-master: 8 + 7 = 15; secret-perfectionist misses 100% accuracy, 60 WPM and both achievements.
    assert result.ending.id == "ending-mystery-master"
    assert result.score == 15


def test_builtin_catalog_weak_run_lands_on_common_ending(engine: EngineContext) -> None:
    perf = PerformanceSnapshot(accuracy=70, wpm=20, completion_percentage=60, time_spent=100, mistakes=40)

    result = resolve_ending(engine, SAMPLE_NARRATIVE_ID, perf, [])

    # Only quiet-resolution has no thresholds, so it scores 0 and beats every penalised ending.
    assert result.ending.id == "ending-quiet-resolution"
    assert result.fallback is False


def test_secret_endings_can_be_disabled() -> None:
    engine = build_engine(builtin_content(), settings=EngineSettings(enable_secret_endings=False))
    perf = PerformanceSnapshot(accuracy=100, wpm=80, completion_percentage=100, time_spent=400, mistakes=0)

    result = resolve_ending(
        engine,
        SAMPLE_NARRATIVE_ID,
        perf,
        ["choice-1"],
        ["achievement-no-mistakes", "achievement-speed-demon"],
    )

    assert result.ending.id != "ending-secret-perfectionist"


def test_perfect_run_unlocks_secret_ending(engine: EngineContext) -> None:
    perf = PerformanceSnapshot(accuracy=100, wpm=80, completion_percentage=100, time_spent=400, mistakes=0)

    result = resolve_ending(
        engine,
        SAMPLE_NARRATIVE_ID,
        perf,
        ["choice-1"],
        ["achievement-no-mistakes", "achievement-speed-demon"],
    )

    assert result.ending.id == "ending-secret-perfectionist"
    assert result.score == 35


def test_resolve_emits_discovery_and_completion_events(engine: EngineContext) -> None:
    catalog = engine.require_catalog(SAMPLE_NARRATIVE_ID)
    for e in catalog.endings:
        if e.id != "ending-continuing-journey":
            e.discovered = True

    perf = PerformanceSnapshot(accuracy=10, wpm=5, completion_percentage=90, mistakes=90)
    result = resolve_ending(engine, SAMPLE_NARRATIVE_ID, perf, ["choice-1"])

    assert result.ending.id == "ending-continuing-journey"
    events = engine.drain_events()
    assert [type(e) for e in events] == [EndingDiscovered, AllEndingsDiscovered]
    assert catalog.completion_percentage == 100


def test_catalog_overlay_round_trip() -> None:
    collection = builtin_content().endings[0]
    source = EndingCatalog.from_collection(collection)
    source.get("ending-friendship").discovered = True
    source.get("ending-friendship").discovery_count = 3

    overlay = DiscoveryOverlay.model_validate_json(source.overlay().model_dump_json())
    target = EndingCatalog.from_collection(collection)
    target.apply_overlay(overlay)

    assert target.discovered_ids == ["ending-friendship"]
    assert target.get("ending-friendship").discovery_count == 3


def test_overlay_for_other_narrative_is_rejected() -> None:
    catalog = EndingCatalog.from_collection(builtin_content().endings[0])

    with pytest.raises(ValueError):
        catalog.apply_overlay(DiscoveryOverlay(narrative_id="other", endings={"x": EndingDiscovery()}))


def test_catalog_stats() -> None:
    catalog = EndingCatalog.from_collection(builtin_content().endings[0])
    catalog.get("ending-friendship").discovered = True
    catalog.get("ending-friendship").discovery_count = 2
    catalog.get("ending-mystery-master").discovered = True
    catalog.get("ending-mystery-master").discovery_count = 1

    stats = catalog.stats()

    assert stats.total_endings == 6
    assert stats.discovered_count == 2
    assert stats.rarity_count == {"common": 2, "rare": 1, "uncommon": 2, "secret": 1}
    assert stats.rarest_discovered == "ending-mystery-master"
    assert stats.most_discovered == "ending-friendship"


def test_history_is_bounded() -> None:
    engine = build_engine(builtin_content(), settings=EngineSettings(ending_history_limit=2))
    for _ in range(4):
        resolve_ending(engine, SAMPLE_NARRATIVE_ID, PerformanceSnapshot(), [])

    assert len(engine.require_catalog(SAMPLE_NARRATIVE_ID).history) == 2
