from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from storyline.api.models import Branch, BranchingTree, Node, NodeKind
from storyline.errors import ContentError, NotFoundError


@dataclass(frozen=True, slots=True)
class GraphStore:
    """Immutable nodes + branches of one practice tree.

    Canonical data is the authored `tree`; lookups go through id indexes. Nothing here
    is ever mutated by a session: per-session visited flags live on the PathRecord.
    """

    tree: BranchingTree
    _nodes: dict[str, Node]
    _branches: dict[str, Branch]

    @staticmethod
    def from_tree(tree: BranchingTree) -> "GraphStore":
        nodes: dict[str, Node] = {}
        for n in tree.nodes:
            if n.id in nodes:
                raise ContentError(f"Duplicate node id in tree {tree.id}: {n.id}")
            nodes[n.id] = n

        branches: dict[str, Branch] = {}
        for b in tree.branches:
            if b.id in branches:
                raise ContentError(f"Duplicate branch id in tree {tree.id}: {b.id}")
            if b.from_node not in nodes:
                raise ContentError(f"Branch {b.id} starts at unknown node {b.from_node}")
            if b.to_node not in nodes:
                raise ContentError(f"Branch {b.id} leads to unknown node {b.to_node}")
            branches[b.id] = b

        for n in nodes.values():
            for bid in n.outgoing:
                b = branches.get(bid)
                if b is None:
                    raise ContentError(f"Node {n.id} lists unknown outgoing branch {bid}")
                if b.from_node != n.id:
                    raise ContentError(f"Node {n.id} lists outgoing branch {bid} which starts at {b.from_node}")
            for bid in n.incoming:
                b = branches.get(bid)
                if b is None:
                    raise ContentError(f"Node {n.id} lists unknown incoming branch {bid}")
                if b.to_node != n.id:
                    raise ContentError(f"Node {n.id} lists incoming branch {bid} which leads to {b.to_node}")

        return GraphStore(tree=tree, _nodes=nodes, _branches=branches)

    @property
    def id(self) -> str:
        return self.tree.id

    @property
    def node_ids(self) -> tuple[str, ...]:
        return tuple(self._nodes.keys())

    @property
    def branch_ids(self) -> tuple[str, ...]:
        return tuple(self._branches.keys())

    def get_node(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFoundError(f"Node not found in tree {self.tree.id}: {node_id}")
        return node

    def get_branch(self, branch_id: str) -> Branch:
        branch = self._branches.get(branch_id)
        if branch is None:
            raise NotFoundError(f"Branch not found in tree {self.tree.id}: {branch_id}")
        return branch

    def outgoing_branches(self, node_id: str) -> tuple[Branch, ...]:
        """Branches leaving `node_id`, in the node's declaration order."""

        node = self.get_node(node_id)
        return tuple(self._branches[bid] for bid in node.outgoing)

    def start_node(self) -> Node:
        return self.get_node(self.tree.start_node_id)

    def is_end_node(self, node_id: str) -> bool:
        node = self.get_node(node_id)
        return node.kind == NodeKind.end or node_id in self.tree.end_node_ids

    def mark_visited(self, node_id: str) -> Node:
        """Return a visited copy of the node. The stored node is left untouched."""

        node = self.get_node(node_id)
        if node.visited:
            return node
        return node.model_copy(update={"visited": True})

    def reachable_node_ids(self) -> list[str]:
        """Nodes reachable from the start node, ignoring conditions and locks (BFS order)."""

        start = self.tree.start_node_id
        if start not in self._nodes:
            return []
        seen = {start}
        order = [start]
        queue = deque([start])
        while queue:
            nid = queue.popleft()
            for b in self.outgoing_branches(nid):
                if b.to_node not in seen:
                    seen.add(b.to_node)
                    order.append(b.to_node)
                    queue.append(b.to_node)
        return order

    def unreachable_node_ids(self) -> list[str]:
        reachable = set(self.reachable_node_ids())
        return [nid for nid in self._nodes if nid not in reachable]
