from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from storyline.api.models import BranchingAnalytics, PathRecord, PopularPath


def tree_analytics(paths: Iterable[PathRecord], tree_id: str, *, top: int = 5) -> BranchingAnalytics:
    """Aggregate traversal counts for one tree.

    Paths for other trees are ignored. Among equally-taken branches, the most-taken
    slot goes to the branch first seen in path order and the least-taken slot to
    the one seen last.
    """

    relevant = [p for p in paths if p.tree_id == tree_id]

    branch_counts: Counter[str] = Counter()
    node_counts: Counter[str] = Counter()
    full_paths: Counter[tuple[str, ...]] = Counter()
    for p in relevant:
        branch_counts.update(p.branches)
        node_counts.update(p.nodes)
        if p.completed:
            full_paths[tuple(p.nodes)] += 1

    ranked = branch_counts.most_common()
    return BranchingAnalytics(
        tree_id=tree_id,
        total_paths=len(relevant),
        completed_paths=sum(1 for p in relevant if p.completed),
        most_taken_branch=ranked[0][0] if ranked else None,
        least_taken_branch=ranked[-1][0] if ranked else None,
        average_path_length=sum(len(p.nodes) for p in relevant) / len(relevant) if relevant else 0.0,
        branch_take_counts=dict(branch_counts),
        node_visit_counts=dict(node_counts),
        popular_paths=[PopularPath(nodes=list(nodes), count=n) for nodes, n in full_paths.most_common(top)],
    )
