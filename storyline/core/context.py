from __future__ import annotations

import random
from dataclasses import dataclass, field

from storyline.api.models import (
    BranchingTree,
    EndingCollection,
    Narrative,
    NarrativeProgress,
    NarrativeTemplate,
    UserContext,
)
from storyline.core.events import EngineEvent
from storyline.endings import EndingCatalog
from storyline.errors import NotFoundError
from storyline.graph import GraphStore
from storyline.narrative import NarrativeAdvancer
from storyline.session import SessionTracker
from storyline.settings import EngineSettings


@dataclass(slots=True)
class EngineContext:
    """Everything an engine operation may touch, passed explicitly.

    Authored content (trees, ending catalogs, narratives, templates) plus sessions driven
    in-process, keyed by id, and the outbox of events not yet handed to collaborators.
    The service layer releases its sessions once their records are saved.
    """

    settings: EngineSettings = field(default_factory=EngineSettings)
    trees: dict[str, GraphStore] = field(default_factory=dict)
    catalogs: dict[str, EndingCatalog] = field(default_factory=dict)
    narratives: dict[str, Narrative] = field(default_factory=dict)
    templates: dict[str, NarrativeTemplate] = field(default_factory=dict)
    sessions: dict[str, SessionTracker] = field(default_factory=dict)
    narrative_sessions: dict[str, NarrativeAdvancer] = field(default_factory=dict)
    outbox: list[EngineEvent] = field(default_factory=list)

    # -- content ----------------------------------------------------------------

    def add_tree(self, tree: BranchingTree) -> GraphStore:
        graph = GraphStore.from_tree(tree)
        self.trees[tree.id] = graph
        return graph

    def add_catalog(self, collection: EndingCollection) -> EndingCatalog:
        catalog = EndingCatalog.from_collection(collection, history_limit=self.settings.ending_history_limit)
        self.catalogs[collection.narrative_id] = catalog
        return catalog

    def add_narrative(self, narrative: Narrative) -> Narrative:
        self.narratives[narrative.id] = narrative
        return narrative

    def add_template(self, template: NarrativeTemplate) -> NarrativeTemplate:
        self.templates[template.id] = template
        return template

    def require_tree(self, tree_id: str) -> GraphStore:
        graph = self.trees.get(tree_id)
        if graph is None:
            raise NotFoundError(f"Tree not found: {tree_id}")
        return graph

    def require_catalog(self, narrative_id: str) -> EndingCatalog:
        catalog = self.catalogs.get(narrative_id)
        if catalog is None:
            raise NotFoundError(f"Ending catalog not found for narrative: {narrative_id}")
        return catalog

    def require_narrative(self, narrative_id: str) -> Narrative:
        narrative = self.narratives.get(narrative_id)
        if narrative is None:
            raise NotFoundError(f"Narrative not found: {narrative_id}")
        return narrative

    def require_template(self, template_id: str) -> NarrativeTemplate:
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Narrative template not found: {template_id}")
        return template

    # -- sessions ---------------------------------------------------------------

    def start_session(
        self,
        tree_id: str,
        *,
        context: UserContext | None = None,
        rng: random.Random | None = None,
        seed: int | None = None,
    ) -> SessionTracker:
        tracker = SessionTracker(self, rng=rng)
        tracker.start(tree_id, context=context, seed=seed)
        return tracker

    def require_session(self, session_id: str) -> SessionTracker:
        tracker = self.sessions.get(session_id)
        if tracker is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return tracker

    def release_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    def start_narrative(self, narrative_id: str, *, resume: NarrativeProgress | None = None) -> NarrativeAdvancer:
        advancer = NarrativeAdvancer(self, narrative_id)
        advancer.start(resume=resume)
        return advancer

    def require_narrative_session(self, progress_id: str) -> NarrativeAdvancer:
        advancer = self.narrative_sessions.get(progress_id)
        if advancer is None:
            raise NotFoundError(f"Narrative progress not found: {progress_id}")
        return advancer

    def release_narrative_session(self, progress_id: str) -> None:
        self.narrative_sessions.pop(progress_id, None)

    # -- events -----------------------------------------------------------------

    def emit(self, event: EngineEvent) -> None:
        self.outbox.append(event)

    def drain_events(self) -> list[EngineEvent]:
        events, self.outbox = self.outbox, []
        return events
