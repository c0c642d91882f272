"""Condition evaluation.

Pure functions: given a condition and a snapshot they answer met / not met. The only
non-determinism is the `random` kind, which draws from a caller-supplied source.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Mapping
from typing import Any

from pydantic import TypeAdapter

from storyline.api.models import (
    BRANCH_CONDITION_KINDS,
    ENDING_CONDITION_KINDS,
    AccuracyEndingCondition,
    AccuracyThresholdCondition,
    AchievementCondition,
    AchievementEndingCondition,
    BranchCondition,
    ChoiceCondition,
    ChoiceEndingCondition,
    CompletionEndingCondition,
    ConditionOutcome,
    EndingCondition,
    MistakesEndingCondition,
    PerformanceSnapshot,
    PreviousChoiceCondition,
    RandomCondition,
    SkillLevelCondition,
    TimeLimitCondition,
    TimeSpentEndingCondition,
    UserContext,
    WpmEndingCondition,
    WpmThresholdCondition,
)
from storyline.errors import UnknownConditionError

# Returns a uniform value in [0, 1).
Draw = Callable[[], float]

_branch_condition_adapter: TypeAdapter[BranchCondition] = TypeAdapter(BranchCondition)
_ending_condition_adapter: TypeAdapter[EndingCondition] = TypeAdapter(EndingCondition)


def meets_minimum(value: float, threshold: float) -> bool:
    return value >= threshold


def parse_branch_condition(raw: Mapping[str, Any]) -> BranchCondition:
    kind = raw.get("kind")
    if kind not in BRANCH_CONDITION_KINDS:
        raise UnknownConditionError(f"Unknown branch condition kind: {kind!r}")
    return _branch_condition_adapter.validate_python(raw)


def parse_ending_condition(raw: Mapping[str, Any]) -> EndingCondition:
    kind = raw.get("kind")
    if kind not in ENDING_CONDITION_KINDS:
        raise UnknownConditionError(f"Unknown ending condition kind: {kind!r}")
    return _ending_condition_adapter.validate_python(raw)


def evaluate(condition: BranchCondition, context: UserContext, *, draw: Draw | None = None) -> bool:
    """Test a branch condition against the user's context.

    `draw` is only consulted for `random` conditions and is required for them.
    """

    if isinstance(condition, ChoiceCondition):
        # Selecting the branch is the choice.
        return True
    elif isinstance(condition, SkillLevelCondition):
        return meets_minimum(context.skill_level, condition.min_level)
    elif isinstance(condition, AccuracyThresholdCondition):
        return meets_minimum(context.current_accuracy, condition.min_accuracy)
    elif isinstance(condition, WpmThresholdCondition):
        return meets_minimum(context.current_wpm, condition.min_wpm)
    elif isinstance(condition, TimeLimitCondition):
        return context.elapsed_seconds <= condition.max_seconds
    elif isinstance(condition, PreviousChoiceCondition):
        return condition.choice_id in context.previous_choices
    elif isinstance(condition, AchievementCondition):
        return condition.achievement_id in context.achievements
    elif isinstance(condition, RandomCondition):
        if draw is None:
            raise ValueError(f"Random condition {condition.id} needs an explicit random source")
        return draw() < condition.probability
    raise UnknownConditionError(f"No evaluation rule for condition {condition!r}")


def evaluate_ending_condition(
    condition: EndingCondition,
    performance: PerformanceSnapshot,
    choices_made: Collection[str],
    achievements_unlocked: Collection[str],
) -> ConditionOutcome:
    """Test an ending condition; `value` records the observed metric for the result log."""

    met: bool
    value: float | bool | None
    if isinstance(condition, ChoiceEndingCondition):
        hits = [c for c in condition.choice_ids if c in choices_made]
        met = bool(hits)
        value = float(len(hits))
    elif isinstance(condition, AccuracyEndingCondition):
        met = meets_minimum(performance.accuracy, condition.min_accuracy)
        value = performance.accuracy
    elif isinstance(condition, WpmEndingCondition):
        met = meets_minimum(performance.wpm, condition.min_wpm)
        value = performance.wpm
    elif isinstance(condition, CompletionEndingCondition):
        met = meets_minimum(performance.completion_percentage, condition.min_percentage)
        value = performance.completion_percentage
    elif isinstance(condition, TimeSpentEndingCondition):
        met = meets_minimum(performance.time_spent, condition.min_seconds)
        value = performance.time_spent
    elif isinstance(condition, MistakesEndingCondition):
        met = performance.mistakes <= condition.max_mistakes
        value = float(performance.mistakes)
    elif isinstance(condition, AchievementEndingCondition):
        met = condition.achievement_id in achievements_unlocked
        value = met
    else:
        raise UnknownConditionError(f"No evaluation rule for ending condition {condition!r}")

    return ConditionOutcome(condition_id=condition.id, met=met, value=value)
