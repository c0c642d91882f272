from __future__ import annotations

import json
from pathlib import Path

import pytest

from storyline.api.models import Branch, Node, NodeKind
from storyline.content import builtin
from storyline.content.registry import (
    build_engine,
    builtin_content,
    create_tree,
    load_content,
    load_content_dir,
)
from storyline.core.context import EngineContext
from storyline.errors import ContentError, UnknownConditionError


def _write_content(root: Path) -> Path:
    content = root / "content"
    for sub in ("trees", "endings", "narratives"):
        (content / sub).mkdir(parents=True)
    (content / "trees" / "sample.json").write_text(builtin.sample_tree().model_dump_json(), encoding="utf-8")
    (content / "endings" / "library.json").write_text(builtin.sample_endings().model_dump_json(), encoding="utf-8")
    (content / "narratives" / "library.json").write_text(
        builtin.sample_narrative().model_dump_json(), encoding="utf-8"
    )
    return content


def test_builtin_content_validates() -> None:
    bundle = builtin_content()
    bundle.validate()

    assert [t.id for t in bundle.trees] == [builtin.SAMPLE_TREE_ID]
    assert len(bundle.templates) == 3


def test_load_content_dir_round_trips_builtin_json(tmp_path: Path) -> None:
    content = _write_content(tmp_path)

    bundle = load_content_dir(content)

    assert bundle.trees == (builtin.sample_tree(),)
    assert bundle.narratives[0].id == builtin.SAMPLE_NARRATIVE_ID
    assert [e.id for e in bundle.endings[0].endings] == [e.id for e in builtin.sample_endings().endings]
    # No templates dir: falls back to the built-in templates.
    assert {t.id for t in bundle.templates} == {t.id for t in builtin.templates()}


def test_missing_directory_falls_back_unless_strict(tmp_path: Path) -> None:
    bundle = load_content(root=tmp_path)
    assert bundle.trees[0].id == builtin.SAMPLE_TREE_ID

    with pytest.raises(ContentError):
        load_content(root=tmp_path, strict=True)


def test_empty_directory_is_an_error(tmp_path: Path) -> None:
    (tmp_path / "content").mkdir()

    with pytest.raises(ContentError):
        load_content_dir(tmp_path / "content")


def test_unknown_condition_kind_in_json_fails_when_strict(tmp_path: Path) -> None:
    content = _write_content(tmp_path)
    raw = json.loads((content / "trees" / "sample.json").read_text(encoding="utf-8"))
    raw["branches"][0]["conditions"] = [{"kind": "moon-phase", "id": "m"}]
    (content / "trees" / "sample.json").write_text(json.dumps(raw), encoding="utf-8")

    with pytest.raises((UnknownConditionError, ContentError)):
        load_content(root=tmp_path, strict=True)
    # Non-strict startup keeps serving the built-ins.
    assert load_content(root=tmp_path).trees == (builtin.sample_tree(),)


def test_malformed_json_is_a_content_error(tmp_path: Path) -> None:
    content = _write_content(tmp_path)
    (content / "narratives" / "broken.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ContentError):
        load_content_dir(content)


def test_narrative_with_unknown_start_section_is_rejected(tmp_path: Path) -> None:
    content = _write_content(tmp_path)
    narrative = builtin.sample_narrative().model_copy(update={"start_section_id": "section-0"})
    (content / "narratives" / "library.json").write_text(narrative.model_dump_json(), encoding="utf-8")

    with pytest.raises(ContentError):
        load_content_dir(content)


def test_build_engine_copies_narratives() -> None:
    bundle = builtin_content()
    engine = build_engine(bundle)

    engine.require_narrative(builtin.SAMPLE_NARRATIVE_ID).usage_count += 1

    assert bundle.narratives[0].usage_count == 0
    assert set(engine.templates) == {t.id for t in bundle.templates}


def test_create_tree_registers_a_playable_tree(engine: EngineContext) -> None:
    tree_id = create_tree(
        engine,
        "Tiny",
        "Two rooms",
        nodes=[
            Node(id="hall", kind=NodeKind.start, outgoing=("door",), visited=True),
            Node(id="garden", kind=NodeKind.end, incoming=("door",)),
        ],
        branches=[Branch(id="door", from_node="hall", to_node="garden")],
        start_node_id="hall",
        end_node_ids=["garden"],
    )

    assert tree_id.startswith("custom-tree-")
    graph = engine.require_tree(tree_id)
    assert graph.tree.tags == ("custom",)
    assert graph.get_node("hall").visited is False

    path = engine.start_session(tree_id, seed=3).take_branch("door")
    assert path.completed is True


def test_create_tree_rejects_bad_structure(engine: EngineContext) -> None:
    with pytest.raises(ContentError):
        create_tree(
            engine,
            "Broken",
            "",
            nodes=[Node(id="hall", kind=NodeKind.start, outgoing=("door",))],
            branches=[Branch(id="door", from_node="hall", to_node="nowhere")],
            start_node_id="hall",
            end_node_ids=[],
        )
    with pytest.raises(ContentError):
        create_tree(
            engine,
            "No start",
            "",
            nodes=[Node(id="hall", kind=NodeKind.end)],
            branches=[],
            start_node_id="lobby",
            end_node_ids=["hall"],
        )
