from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from storyline.api.models import (
    Branch,
    BranchingTree,
    EndingCollection,
    MergeStrategy,
    Narrative,
    NarrativeTemplate,
    Node,
)
from storyline.content import builtin
from storyline.core.context import EngineContext
from storyline.errors import ContentError, UnknownConditionError
from storyline.graph import GraphStore
from storyline.settings import EngineSettings

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class ContentBundle:
    """Authored content before it is registered in an EngineContext."""

    trees: tuple[BranchingTree, ...]
    endings: tuple[EndingCollection, ...]
    narratives: tuple[Narrative, ...]
    templates: tuple[NarrativeTemplate, ...]

    def validate(self) -> None:
        """Run the structural checks content loading promises."""

        for tree in self.trees:
            GraphStore.from_tree(tree)
        _require_unique("tree", (t.id for t in self.trees))
        _require_unique("narrative", (n.id for n in self.narratives))
        _require_unique("ending collection", (c.narrative_id for c in self.endings))
        _require_unique("template", (t.id for t in self.templates))
        for n in self.narratives:
            if n.section(n.start_section_id) is None:
                raise ContentError(f"Narrative {n.id} starts at unknown section {n.start_section_id}")


def _require_unique(label: str, ids: Iterable[str]) -> None:
    seen: set[str] = set()
    for i in ids:
        if i in seen:
            raise ContentError(f"Duplicate {label} id: {i}")
        seen.add(i)


def builtin_content() -> ContentBundle:
    return ContentBundle(
        trees=(builtin.sample_tree(),),
        endings=(builtin.sample_endings(),),
        narratives=(builtin.sample_narrative(),),
        templates=tuple(builtin.templates()),
    )


def _load_model(path: Path, model: type[M]) -> M:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ContentError(f"Content file not found: {path}") from e
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise ContentError(f"Invalid {model.__name__} in {path}: {e}") from e


def _load_dir(directory: Path, model: type[M]) -> tuple[M, ...]:
    if not directory.is_dir():
        return ()
    return tuple(_load_model(p, model) for p in sorted(directory.glob("*.json")))


def load_content_dir(content_dir: Path) -> ContentBundle:
    """Load `trees/`, `endings/`, `narratives/` and `templates/` JSON files.

    Missing subdirectories contribute nothing, except templates, which default to the
    built-in set.
    """

    if not content_dir.is_dir():
        raise ContentError(f"Content directory not found: {content_dir}")

    templates = _load_dir(content_dir / "templates", NarrativeTemplate)
    bundle = ContentBundle(
        trees=_load_dir(content_dir / "trees", BranchingTree),
        endings=_load_dir(content_dir / "endings", EndingCollection),
        narratives=_load_dir(content_dir / "narratives", Narrative),
        templates=templates or tuple(builtin.templates()),
    )
    bundle.validate()
    if not bundle.trees and not bundle.narratives:
        raise ContentError(f"No trees or narratives under {content_dir}")
    return bundle


def load_content(*, root: Path, strict: bool = False) -> ContentBundle:
    # Default behavior: fall back to the built-in content when the directory is
    # missing or malformed. STORYLINE_STRICT_CONTENT=1 turns that into an error.
    try:
        return load_content_dir(root / "content")
    except (ContentError, UnknownConditionError) as e:
        if strict:
            raise
        logger.warning("using built-in content: %s", e)
        return builtin_content()


def build_engine(content: ContentBundle, *, settings: EngineSettings | None = None) -> EngineContext:
    engine = EngineContext(settings=settings or EngineSettings())
    for tree in content.trees:
        engine.add_tree(tree)
    for collection in content.endings:
        engine.add_catalog(collection)
    for narrative in content.narratives:
        engine.add_narrative(narrative.model_copy(deep=True))
    for template in content.templates:
        engine.add_template(template)
    logger.info(
        "engine ready: %d trees, %d narratives, %d ending catalogs, %d templates",
        len(engine.trees),
        len(engine.narratives),
        len(engine.catalogs),
        len(engine.templates),
    )
    return engine


def create_tree(
    engine: EngineContext,
    name: str,
    description: str,
    nodes: Iterable[Node],
    branches: Iterable[Branch],
    start_node_id: str,
    end_node_ids: Iterable[str],
) -> str:
    """Validate and register a custom tree. Returns the generated tree id."""

    tree = BranchingTree(
        id=f"custom-tree-{uuid4().hex[:12]}",
        name=name,
        description=description,
        start_node_id=start_node_id,
        end_node_ids=tuple(end_node_ids),
        nodes=tuple(n.model_copy(update={"visited": False}) for n in nodes),
        branches=tuple(branches),
        merge_strategy=MergeStrategy.converge,
        tags=("custom",),
    )
    graph = GraphStore.from_tree(tree)
    if tree.start_node_id not in graph.node_ids:
        raise ContentError(f"Start node {tree.start_node_id} is not part of tree {name!r}")
    engine.trees[tree.id] = graph
    return tree.id
