from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from storyline.errors import UnknownConditionError


def _ordered_union(existing: Iterable[str], extra: Iterable[str]) -> tuple[str, ...]:
    out = list(existing)
    for item in extra:
        if item not in out:
            out.append(item)
    return tuple(out)


# ---------------------------------------------------------------------------
# Branch conditions
# ---------------------------------------------------------------------------


class _BranchConditionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    # Only required conditions gate availability; the rest are descriptive.
    required: bool = False


class ChoiceCondition(_BranchConditionBase):
    kind: Literal["choice"] = "choice"


class SkillLevelCondition(_BranchConditionBase):
    kind: Literal["skill-level"] = "skill-level"
    min_level: int = 1


class AccuracyThresholdCondition(_BranchConditionBase):
    kind: Literal["accuracy-threshold"] = "accuracy-threshold"
    min_accuracy: float = 0


class WpmThresholdCondition(_BranchConditionBase):
    kind: Literal["wpm-threshold"] = "wpm-threshold"
    min_wpm: float = 0


class TimeLimitCondition(_BranchConditionBase):
    kind: Literal["time-limit"] = "time-limit"
    max_seconds: float


class PreviousChoiceCondition(_BranchConditionBase):
    kind: Literal["previous-choice"] = "previous-choice"
    choice_id: str


class AchievementCondition(_BranchConditionBase):
    kind: Literal["achievement"] = "achievement"
    achievement_id: str


class RandomCondition(_BranchConditionBase):
    kind: Literal["random"] = "random"
    probability: float = Field(0.5, ge=0, le=1)


BranchCondition = Annotated[
    Union[
        ChoiceCondition,
        SkillLevelCondition,
        AccuracyThresholdCondition,
        WpmThresholdCondition,
        TimeLimitCondition,
        PreviousChoiceCondition,
        AchievementCondition,
        RandomCondition,
    ],
    Field(discriminator="kind"),
]

BRANCH_CONDITION_KINDS = frozenset(
    {
        "choice",
        "skill-level",
        "accuracy-threshold",
        "wpm-threshold",
        "time-limit",
        "previous-choice",
        "achievement",
        "random",
    }
)


# ---------------------------------------------------------------------------
# Ending conditions
# ---------------------------------------------------------------------------


class _EndingConditionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    # Added to the ending's score when the condition is met.
    weight: float = 0


class ChoiceEndingCondition(_EndingConditionBase):
    kind: Literal["choice"] = "choice"
    # Met when any of these choices was made.
    choice_ids: tuple[str, ...] = ()


class AccuracyEndingCondition(_EndingConditionBase):
    kind: Literal["accuracy"] = "accuracy"
    min_accuracy: float = 0


class WpmEndingCondition(_EndingConditionBase):
    kind: Literal["wpm"] = "wpm"
    min_wpm: float = 0


class CompletionEndingCondition(_EndingConditionBase):
    kind: Literal["completion-percentage"] = "completion-percentage"
    min_percentage: float = 0


class TimeSpentEndingCondition(_EndingConditionBase):
    kind: Literal["time-spent"] = "time-spent"
    min_seconds: float = 0


class MistakesEndingCondition(_EndingConditionBase):
    kind: Literal["mistakes"] = "mistakes"
    max_mistakes: int


class AchievementEndingCondition(_EndingConditionBase):
    kind: Literal["achievement"] = "achievement"
    achievement_id: str


EndingCondition = Annotated[
    Union[
        ChoiceEndingCondition,
        AccuracyEndingCondition,
        WpmEndingCondition,
        CompletionEndingCondition,
        TimeSpentEndingCondition,
        MistakesEndingCondition,
        AchievementEndingCondition,
    ],
    Field(discriminator="kind"),
]

ENDING_CONDITION_KINDS = frozenset(
    {"choice", "accuracy", "wpm", "completion-percentage", "time-spent", "mistakes", "achievement"}
)


def _reject_unknown_kinds(raw: Any, *, known: frozenset[str], owner: str) -> Any:
    """Fail loudly on condition kinds we don't know how to evaluate.

    Runs before pydantic's own union validation so that authoring mistakes surface as
    UnknownConditionError rather than a generic validation error.
    """

    if not isinstance(raw, (list, tuple)):
        return raw
    for item in raw:
        if isinstance(item, Mapping) and "kind" in item and item["kind"] not in known:
            raise UnknownConditionError(f"Unknown condition kind '{item['kind']}' on {owner} (condition {item.get('id')!r})")
    return raw


# ---------------------------------------------------------------------------
# Graph content
# ---------------------------------------------------------------------------


class NodeKind(StrEnum):
    start = "start"
    decision = "decision"
    content = "content"
    merge = "merge"
    end = "end"


class MergeStrategy(StrEnum):
    none = "none"
    converge = "converge"
    parallel = "parallel"
    exclusive = "exclusive"


class Node(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: NodeKind
    title: str = ""
    content: str = ""
    outgoing: tuple[str, ...] = ()
    incoming: tuple[str, ...] = ()
    visited: bool = False
    word_count: int | None = None
    estimated_time: int | None = None


class Branch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    from_node: str
    to_node: str
    conditions: tuple[BranchCondition, ...] = ()
    # Higher priority is offered first.
    priority: int = 0
    weight: float = 1.0
    locked: bool = False
    unlock_conditions: tuple[BranchCondition, ...] | None = None
    tags: tuple[str, ...] = ()

    @field_validator("conditions", "unlock_conditions", mode="before")
    @classmethod
    def _known_condition_kinds(cls, v: Any) -> Any:
        return _reject_unknown_kinds(v, known=BRANCH_CONDITION_KINDS, owner="branch")


class BranchingTree(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    start_node_id: str
    end_node_ids: tuple[str, ...] = ()
    nodes: tuple[Node, ...]
    branches: tuple[Branch, ...] = ()
    merge_strategy: MergeStrategy = MergeStrategy.converge
    tags: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Caller-supplied context
# ---------------------------------------------------------------------------


_CONTEXT_COLLECTIONS = frozenset({"achievements", "previous_choices"})
_ID_LIST = TypeAdapter(tuple[str, ...])


class UserContext(BaseModel):
    """Snapshot of the player's live metrics, supplied by the UI on every call."""

    model_config = ConfigDict(frozen=True)

    current_wpm: float = 0
    current_accuracy: float = 100
    skill_level: int = 1
    achievements: tuple[str, ...] = ()
    previous_choices: tuple[str, ...] = ()
    elapsed_seconds: float = 0

    def merged(self, updates: Mapping[str, Any] | None = None, *, choice_id: str | None = None) -> "UserContext":
        """Return a new context with `updates` applied.

        Scalars are overridden; achievements/previous choices are unioned in order.
        """

        data = self.model_dump()
        for key, value in (updates or {}).items():
            if key not in UserContext.model_fields:
                raise ValueError(f"Unknown context field: {key}")
            if key in _CONTEXT_COLLECTIONS:
                # A bare string or null is rejected, not split into characters.
                data[key] = _ordered_union(data[key], _ID_LIST.validate_python(value))
            else:
                data[key] = value
        if choice_id is not None:
            data["previous_choices"] = _ordered_union(data["previous_choices"], [choice_id])
        return UserContext.model_validate(data)


# ---------------------------------------------------------------------------
# Session (path) state
# ---------------------------------------------------------------------------


class SessionStatus(StrEnum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"


class ChoiceRecord(BaseModel):
    node_id: str
    branch_id: str
    timestamp: datetime


class ConditionEvaluation(BaseModel):
    branch_id: str
    condition_id: str
    met: bool


class PathRecord(BaseModel):
    id: str
    tree_id: str

    # For reproducible random conditions across reloads.
    seed: int

    status: SessionStatus = SessionStatus.not_started

    # Ordered histories; order matters.
    nodes: list[str]
    branches: list[str] = Field(default_factory=list)

    # Per-session visited flags; authored nodes are never touched.
    visited_nodes: list[str] = Field(default_factory=list)

    choices_made: list[ChoiceRecord] = Field(default_factory=list)
    condition_results: list[ConditionEvaluation] = Field(default_factory=list)

    context: UserContext = Field(default_factory=UserContext)

    completed: bool = False
    start_time: datetime
    end_time: datetime | None = None

    @property
    def current_node_id(self) -> str:
        return self.nodes[-1]


# ---------------------------------------------------------------------------
# Endings
# ---------------------------------------------------------------------------


class Rarity(StrEnum):
    common = "common"
    uncommon = "uncommon"
    rare = "rare"
    secret = "secret"


RARITY_ORDER: dict[Rarity, int] = {Rarity.common: 1, Rarity.uncommon: 2, Rarity.rare: 3, Rarity.secret: 4}


class EndingType(StrEnum):
    happy = "happy"
    bittersweet = "bittersweet"
    triumphant = "triumphant"
    reflective = "reflective"
    open_ended = "open-ended"
    surprising = "surprising"
    peaceful = "peaceful"
    continuing = "continuing"


class EndingTrigger(StrEnum):
    choice_based = "choice-based"
    performance_based = "performance-based"
    completion_based = "completion-based"
    time_based = "time-based"
    achievement_based = "achievement-based"
    combination = "combination"


class EndingRewards(BaseModel):
    achievement_id: str | None = None
    unlocked_content: list[str] = Field(default_factory=list)
    bonus_points: int = 0


class Ending(BaseModel):
    id: str
    title: str = ""
    ending_type: EndingType = EndingType.happy
    trigger: EndingTrigger = EndingTrigger.combination
    content: str = ""
    epilogue: str | None = None
    conditions: list[EndingCondition] = Field(default_factory=list)

    # Hard thresholds; None means "not declared".
    min_accuracy: float | None = None
    min_wpm: float | None = None
    min_completion_percentage: float | None = None
    required_choices: list[str] | None = None
    required_achievements: list[str] | None = None

    unlock_message: str | None = None
    rewards: EndingRewards | None = None
    rarity: Rarity = Rarity.common
    tags: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)

    # Discovery metadata (the only part mutated after authoring).
    discovered: bool = False
    discovery_count: int = 0
    first_discovered_at: datetime | None = None

    @field_validator("conditions", mode="before")
    @classmethod
    def _known_condition_kinds(cls, v: Any) -> Any:
        return _reject_unknown_kinds(v, known=ENDING_CONDITION_KINDS, owner="ending")


class EndingCollection(BaseModel):
    """Authored ending catalog for one narrative (content file shape)."""

    narrative_id: str
    endings: list[Ending]


class PerformanceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    accuracy: float = 0
    wpm: float = 0
    completion_percentage: float = 0
    # Seconds.
    time_spent: float = 0
    mistakes: int = 0


class ConditionOutcome(BaseModel):
    condition_id: str
    met: bool
    value: float | bool | None = None


class EndingResult(BaseModel):
    ending: Ending
    narrative_id: str | None = None
    discovered_at: datetime
    performance: PerformanceSnapshot
    choices_made: list[str] = Field(default_factory=list)
    achievements_unlocked: list[str] = Field(default_factory=list)
    conditions_met: list[ConditionOutcome] = Field(default_factory=list)
    score: float
    # True when every candidate scored negative and the first common ending was used.
    fallback: bool = False
    is_first_discovery: bool


class EndingDiscovery(BaseModel):
    discovered: bool = False
    discovery_count: int = 0
    first_discovered_at: datetime | None = None


class DiscoveryOverlay(BaseModel):
    narrative_id: str
    endings: dict[str, EndingDiscovery] = Field(default_factory=dict)


class EndingCollectionStats(BaseModel):
    narrative_id: str
    total_endings: int
    discovered_count: int
    completion_percentage: float
    rarity_count: dict[str, int]
    discovered_by_rarity: dict[str, int]
    rarest_discovered: str | None = None
    most_discovered: str | None = None


# ---------------------------------------------------------------------------
# Linear / episodic narratives
# ---------------------------------------------------------------------------


class PlotPoint(StrEnum):
    exposition = "exposition"
    inciting_incident = "inciting-incident"
    rising_action = "rising-action"
    climax = "climax"
    falling_action = "falling-action"
    resolution = "resolution"


class NarrativeGenre(StrEnum):
    adventure = "adventure"
    mystery = "mystery"
    fantasy = "fantasy"
    sci_fi = "sci-fi"
    slice_of_life = "slice-of-life"
    educational = "educational"
    social = "social"
    inspirational = "inspirational"
    custom = "custom"


class NarrativeStructure(StrEnum):
    linear = "linear"
    branching = "branching"
    circular = "circular"
    episodic = "episodic"
    parallel = "parallel"
    flashback = "flashback"


class NarrativeLength(StrEnum):
    micro = "micro"
    short = "short"
    medium = "medium"
    long = "long"
    epic = "epic"


class NarrativeChoice(BaseModel):
    id: str
    text: str
    leads_to_section_id: str
    description: str | None = None
    requires_skill_level: int | None = Field(None, ge=1, le=10)


class NarrativeSection(BaseModel):
    id: str
    plot_point: PlotPoint
    title: str
    content: str = ""
    character_ids: list[str] = Field(default_factory=list)
    location: str | None = None
    mood: str | None = None
    word_count: int = 0
    # Seconds at average WPM.
    estimated_typing_time: int = 0
    order: int = 0
    choices: list[NarrativeChoice] = Field(default_factory=list)


class Narrative(BaseModel):
    id: str
    title: str
    description: str = ""
    genre: NarrativeGenre = NarrativeGenre.custom
    length: NarrativeLength = NarrativeLength.short
    structure: NarrativeStructure = NarrativeStructure.linear
    sections: list[NarrativeSection]
    start_section_id: str
    tags: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    difficulty: int = Field(5, ge=1, le=10)
    author: Literal["built-in", "custom", "ai-generated"] = "built-in"
    usage_count: int = 0

    def section(self, section_id: str) -> NarrativeSection | None:
        return next((s for s in self.sections if s.id == section_id), None)

    @property
    def total_word_count(self) -> int:
        return sum(s.word_count for s in self.sections)

    @property
    def estimated_duration(self) -> int:
        return sum(s.estimated_typing_time for s in self.sections)


class TypingDelta(BaseModel):
    """Typing stats for one finished section."""

    model_config = ConfigDict(frozen=True)

    words: int = Field(0, ge=0)
    time_ms: float = Field(0, ge=0)
    accuracy: float = Field(0, ge=0, le=100)
    mistakes: int = Field(0, ge=0)


class TypingStats(BaseModel):
    total_words: int = 0
    total_time_ms: float = 0
    average_wpm: float = 0
    average_accuracy: float = 0
    mistakes: int = 0


class SectionChoiceRecord(BaseModel):
    section_id: str
    choice_id: str
    timestamp: datetime


class NarrativeProgress(BaseModel):
    id: str
    narrative_id: str
    status: SessionStatus = SessionStatus.not_started
    current_section_id: str
    visited_sections: list[str] = Field(default_factory=list)
    choices_made: list[SectionChoiceRecord] = Field(default_factory=list)
    start_time: datetime
    last_access_time: datetime
    completed: bool = False
    completion_time: datetime | None = None
    typing_stats: TypingStats = Field(default_factory=TypingStats)


class PlotPointPrompt(BaseModel):
    plot_point: PlotPoint
    prompt: str
    suggested_length: int


class NarrativeTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    genre: NarrativeGenre
    structure: NarrativeStructure
    plot_points: list[PlotPointPrompt]


class NarrativeStatistics(BaseModel):
    total_narratives: int
    total_started: int
    total_completed: int
    completion_rate: float
    average_wpm: float
    average_accuracy: float
    total_words_typed: int
    total_time_spent_ms: float
    most_popular_narrative: str | None = None


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class PopularPath(BaseModel):
    nodes: list[str]
    count: int


class BranchingAnalytics(BaseModel):
    tree_id: str
    total_paths: int
    completed_paths: int
    most_taken_branch: str | None = None
    least_taken_branch: str | None = None
    average_path_length: float
    branch_take_counts: dict[str, int] = Field(default_factory=dict)
    node_visit_counts: dict[str, int] = Field(default_factory=dict)
    popular_paths: list[PopularPath] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# HTTP request/response shapes
# ---------------------------------------------------------------------------


class TreeSummary(BaseModel):
    id: str
    name: str
    description: str
    start_node_id: str
    node_count: int
    branch_count: int


class TreeListResponse(BaseModel):
    trees: list[TreeSummary]


class StartSessionRequest(BaseModel):
    tree_id: str
    context: UserContext = Field(default_factory=UserContext)
    seed: int | None = None


class TakeBranchRequest(BaseModel):
    context_updates: dict[str, Any] = Field(default_factory=dict)


class AvailableBranchesResponse(BaseModel):
    session_id: str
    node_id: str
    branches: list[Branch]


class ResolveEndingRequest(BaseModel):
    performance: PerformanceSnapshot
    choices_made: list[str] = Field(default_factory=list)
    achievements_unlocked: list[str] = Field(default_factory=list)


class EndingHistoryResponse(BaseModel):
    narrative_id: str
    # Newest first.
    results: list[EndingResult]


class StartNarrativeRequest(BaseModel):
    narrative_id: str
    resume: bool = True


class AdvanceNarrativeRequest(BaseModel):
    next_section_id: str
    choice_id: str | None = None
    typing_delta: TypingDelta | None = None


class AdvanceNarrativeResponse(BaseModel):
    advanced: bool
    progress: NarrativeProgress
