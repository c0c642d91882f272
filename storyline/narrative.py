from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from storyline.api.models import (
    Narrative,
    NarrativeChoice,
    NarrativeLength,
    NarrativeProgress,
    NarrativeSection,
    NarrativeStatistics,
    PerformanceSnapshot,
    SectionChoiceRecord,
    SessionStatus,
    TypingDelta,
    TypingStats,
)
from storyline.core.events import NarrativeCompleted, NarrativeStarted, SectionCompleted
from storyline.errors import InvalidStateError, NotFoundError
from storyline.fsm import SessionFSM

if TYPE_CHECKING:
    from storyline.core.context import EngineContext

logger = logging.getLogger(__name__)

# Template sections assume this typing speed for time estimates.
TEMPLATE_WPM = 40


def _now() -> datetime:
    return datetime.now(tz=UTC)


def fold_typing_delta(stats: TypingStats, delta: TypingDelta, *, visited: int) -> TypingStats:
    """Fold one section's typing stats into the running aggregates.

    WPM is recomputed from totals; zero elapsed time yields 0 rather than a division error.
    Accuracy is a running mean weighted by `visited`, the visited-section count before the move.
    """

    total_words = stats.total_words + delta.words
    total_time_ms = stats.total_time_ms + delta.time_ms
    minutes = total_time_ms / 60_000
    average_wpm = total_words / minutes if minutes > 0 else 0.0

    average_accuracy = (stats.average_accuracy * visited + delta.accuracy) / (visited + 1)

    return TypingStats(
        total_words=total_words,
        total_time_ms=total_time_ms,
        average_wpm=average_wpm,
        average_accuracy=average_accuracy,
        mistakes=stats.mistakes + delta.mistakes,
    )


def snapshot_from_progress(narrative: Narrative, progress: NarrativeProgress) -> PerformanceSnapshot:
    """Performance snapshot for ending resolution."""

    total = len(narrative.sections)
    completion = len(set(progress.visited_sections)) / total * 100 if total else 0.0
    stats = progress.typing_stats
    return PerformanceSnapshot(
        accuracy=stats.average_accuracy,
        wpm=stats.average_wpm,
        completion_percentage=min(completion, 100.0),
        time_spent=stats.total_time_ms / 1000,
        mistakes=stats.mistakes,
    )


class NarrativeAdvancer:
    """Section-by-section progress through a linear or episodic narrative."""

    def __init__(self, engine: EngineContext, narrative_id: str):
        self.engine = engine
        self.narrative = engine.require_narrative(narrative_id)
        self.progress: NarrativeProgress | None = None

    @classmethod
    def restore(cls, engine: EngineContext, progress: NarrativeProgress) -> "NarrativeAdvancer":
        advancer = cls(engine, progress.narrative_id)
        advancer.progress = progress
        engine.narrative_sessions[progress.id] = advancer
        return advancer

    @property
    def status(self) -> SessionStatus:
        return self.progress.status if self.progress is not None else SessionStatus.not_started

    def require_progress(self) -> NarrativeProgress:
        if self.progress is None:
            raise InvalidStateError(f"Narrative {self.narrative.id} has not been started")
        return self.progress

    def _require_in_progress(self, action: str) -> NarrativeProgress:
        progress = self.require_progress()
        SessionFSM(progress).require(SessionStatus.in_progress, action=action)
        return progress

    def start(self, *, resume: NarrativeProgress | None = None) -> NarrativeProgress:
        """Begin the narrative, or pick up `resume` if it is an unfinished run of it."""

        if self.progress is not None:
            raise InvalidStateError(f"Narrative progress {self.progress.id} was already started")

        if (
            resume is not None
            and resume.narrative_id == self.narrative.id
            and resume.status == SessionStatus.in_progress
        ):
            progress = resume
        else:
            start = self.narrative.section(self.narrative.start_section_id)
            if start is None:
                raise NotFoundError(
                    f"Start section {self.narrative.start_section_id} missing from narrative {self.narrative.id}"
                )
            now = _now()
            progress = NarrativeProgress(
                id=f"progress-{uuid4().hex}",
                narrative_id=self.narrative.id,
                current_section_id=start.id,
                visited_sections=[start.id],
                start_time=now,
                last_access_time=now,
            )
            SessionFSM(progress).advance("begin")

        self.progress = progress
        self.narrative.usage_count += 1
        self.engine.narrative_sessions[progress.id] = self
        self.engine.emit(NarrativeStarted(narrative=self.narrative, progress=progress.model_copy(deep=True)))
        return progress

    def current_section(self) -> NarrativeSection:
        progress = self.require_progress()
        section = self.narrative.section(progress.current_section_id)
        if section is None:
            raise NotFoundError(f"Section not found: {progress.current_section_id}")
        return section

    def available_choices(self, *, skill_level: int = 1) -> list[NarrativeChoice]:
        return [
            c
            for c in self.current_section().choices
            if c.requires_skill_level is None or skill_level >= c.requires_skill_level
        ]

    def following_section_id(self) -> str | None:
        """Next section by `order` for content without explicit choices."""

        current = self.current_section()
        later = [s for s in self.narrative.sections if s.order > current.order]
        if not later:
            return None
        return min(later, key=lambda s: s.order).id

    def advance(
        self,
        next_section_id: str,
        choice_id: str | None = None,
        typing_delta: TypingDelta | None = None,
    ) -> bool:
        """Move to `next_section_id`. An unknown section ends the narrative and returns False."""

        progress = self._require_in_progress("advance")
        section = self.narrative.section(next_section_id)
        if section is None:
            logger.info("narrative %s: no section %s, completing", self.narrative.id, next_section_id)
            self.complete()
            return False

        now = _now()
        visited_before = len(progress.visited_sections)
        if choice_id and self.engine.settings.save_choices:
            progress.choices_made.append(
                SectionChoiceRecord(section_id=progress.current_section_id, choice_id=choice_id, timestamp=now)
            )
        progress.current_section_id = section.id
        if section.id not in progress.visited_sections:
            progress.visited_sections.append(section.id)
        progress.last_access_time = now
        if typing_delta is not None:
            progress.typing_stats = fold_typing_delta(progress.typing_stats, typing_delta, visited=visited_before)

        self.engine.emit(SectionCompleted(section=section, progress=progress.model_copy(deep=True)))
        return True

    def complete(self) -> NarrativeProgress:
        progress = self.require_progress()
        fsm = SessionFSM(progress)
        if fsm.status == SessionStatus.completed:
            return progress

        fsm.advance("finish")
        now = _now()
        progress.completed = True
        progress.completion_time = now
        progress.last_access_time = now
        self.engine.emit(NarrativeCompleted(progress=progress.model_copy(deep=True)))
        logger.info("narrative %s completed (progress %s)", self.narrative.id, progress.id)
        return progress

    def snapshot(self) -> PerformanceSnapshot:
        return snapshot_from_progress(self.narrative, self.require_progress())


def _length_for(total_words: int) -> NarrativeLength:
    if total_words < 300:
        return NarrativeLength.short
    if total_words < 800:
        return NarrativeLength.medium
    return NarrativeLength.long


def create_from_template(
    engine: EngineContext,
    template_id: str,
    title: str,
    custom_sections: Mapping[str, str] | None = None,
) -> str:
    """Build a narrative from a template; plot points without custom text get the prompt as a placeholder."""

    template = engine.require_template(template_id)
    stamp = uuid4().hex[:12]
    custom = custom_sections or {}

    sections: list[NarrativeSection] = []
    for index, pp in enumerate(template.plot_points):
        content = custom.get(pp.plot_point) or f"[{pp.prompt}]"
        word_count = len(content.split())
        sections.append(
            NarrativeSection(
                id=f"section-{stamp}-{index}",
                plot_point=pp.plot_point,
                title=pp.plot_point.value.replace("-", " ").title(),
                content=content,
                word_count=word_count,
                estimated_typing_time=math.ceil(word_count / TEMPLATE_WPM * 60),
                order=index + 1,
            )
        )
    if not sections:
        raise ValueError(f"Template {template_id} has no plot points")

    total_words = sum(s.word_count for s in sections)
    narrative = Narrative(
        id=f"custom-narrative-{stamp}",
        title=title,
        description=f"A {template.genre.value} narrative",
        genre=template.genre,
        length=_length_for(total_words),
        structure=template.structure,
        sections=sections,
        start_section_id=sections[0].id,
        tags=[template.genre.value, "custom"],
        difficulty=5,
        author="custom",
    )
    engine.add_narrative(narrative)
    return narrative.id


def narrative_statistics(narratives: Iterable[Narrative], progress: Iterable[NarrativeProgress]) -> NarrativeStatistics:
    narratives = list(narratives)
    progress = list(progress)
    completed = [p for p in progress if p.completed]

    most_popular = max(narratives, key=lambda n: n.usage_count, default=None)

    return NarrativeStatistics(
        total_narratives=len(narratives),
        total_started=len(progress),
        total_completed=len(completed),
        completion_rate=len(completed) / len(progress) * 100 if progress else 0.0,
        average_wpm=sum(p.typing_stats.average_wpm for p in completed) / len(completed) if completed else 0.0,
        average_accuracy=(
            sum(p.typing_stats.average_accuracy for p in completed) / len(completed) if completed else 0.0
        ),
        total_words_typed=sum(p.typing_stats.total_words for p in progress),
        total_time_spent_ms=sum(p.typing_stats.total_time_ms for p in progress),
        most_popular_narrative=most_popular.id if most_popular is not None else None,
    )
