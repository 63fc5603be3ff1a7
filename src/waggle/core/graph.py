"""Graph — ordered DAG of plan nodes with structural queries and merges."""

from collections import deque
from collections.abc import Iterable
from typing import Any, Self

from waggle.core.errors import CycleError, DanglingEdgeError, DuplicateNodeIdError
from waggle.core.node import Edge, Node


class Graph:
    """Directed acyclic graph of plan nodes.

    Nodes keep their insertion order, which is the scheduler's tie-break.
    Edges are deduplicated; ``Edge(source, target)`` means *source must
    complete before target starts*. Nothing is ever removed: completion
    state lives outside the graph.

    Construction rejects duplicate node ids. Dangling edges and cycles are
    planner defects reported by ``validate()``.
    """

    def __init__(self, nodes: Iterable[Node] = (), edges: Iterable[Edge] = ()) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[Edge, None] = {}
        for node in nodes:
            self.add_node(node)
        for edge in edges:
            self._edges[edge] = None

    def add_node(self, node: Node) -> Self:
        if node.id in self._nodes:
            raise DuplicateNodeIdError(f"Duplicate node id: {node.id!r}")
        self._nodes[node.id] = node
        return self

    def add_edge(self, source: str, target: str) -> Self:
        """Add a dependency edge: *source* must finish before *target* starts."""
        if source not in self._nodes:
            raise DanglingEdgeError(f"Unknown source node: {source!r}")
        if target not in self._nodes:
            raise DanglingEdgeError(f"Unknown target node: {target!r}")
        self._edges[Edge(source, target)] = None
        return self

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    @property
    def node_ids(self) -> list[str]:
        return list(self._nodes)

    def get_node(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def predecessors(self, node_id: str) -> set[str]:
        return {e.source_id for e in self._edges if e.target_id == node_id}

    def successors(self, node_id: str) -> set[str]:
        return {e.target_id for e in self._edges if e.source_id == node_id}

    def nodes_with_no_incoming_edges(self) -> list[Node]:
        targets = {e.target_id for e in self._edges}
        return [n for n in self._nodes.values() if n.id not in targets]

    def descendants(self, node_id: str) -> set[str]:
        """All node ids reachable from *node_id*, excluding itself."""
        seen: set[str] = set()
        queue: deque[str] = deque([node_id])
        while queue:
            for succ in self.successors(queue.popleft()):
                if succ not in seen:
                    seen.add(succ)
                    queue.append(succ)
        seen.discard(node_id)
        return seen

    def merge(self, nodes: Iterable[Node], edges: Iterable[Edge] = ()) -> "Graph":
        """Return a new graph with *nodes* prepended and *edges* appended.

        Raises ``DuplicateNodeIdError`` if an incoming node id already exists.
        """
        return Graph([*nodes, *self._nodes.values()], [*self._edges, *edges])

    def validate(self) -> None:
        """Raise a ``StructuralFailure`` if any edge dangles or the graph has a cycle."""
        for edge in self._edges:
            for endpoint in (edge.source_id, edge.target_id):
                if endpoint not in self._nodes:
                    raise DanglingEdgeError(
                        f"Edge {edge.source_id!r} -> {edge.target_id!r} references "
                        f"unknown node {endpoint!r}"
                    )
        _ = self.levels

    @property
    def levels(self) -> list[list[str]]:
        """Kahn's algorithm producing topological levels.

        Each level is a list of node IDs that can be executed concurrently.
        Raises ``CycleError`` if the graph contains a cycle.
        """
        succs: dict[str, list[str]] = {nid: [] for nid in self._nodes}
        in_degree: dict[str, int] = {nid: 0 for nid in self._nodes}
        for edge in self._edges:
            if edge.source_id in succs and edge.target_id in in_degree:
                succs[edge.source_id].append(edge.target_id)
                in_degree[edge.target_id] += 1

        queue: deque[str] = deque(nid for nid, deg in in_degree.items() if deg == 0)
        levels: list[list[str]] = []
        visited = 0

        while queue:
            level: list[str] = []
            for _ in range(len(queue)):
                nid = queue.popleft()
                level.append(nid)
                visited += 1
                for succ in succs[nid]:
                    in_degree[succ] -= 1
                    if in_degree[succ] == 0:
                        queue.append(succ)
            levels.append(level)

        if visited != len(self._nodes):
            stuck = sorted(nid for nid, deg in in_degree.items() if deg > 0)
            raise CycleError(
                f"Graph contains a cycle (visited {visited}/{len(self._nodes)} nodes, "
                f"unresolved: {stuck})"
            )

        return levels

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self._nodes.values()],
            "edges": [e.to_dict() for e in self._edges],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Graph":
        """Build a graph from ``{"nodes": [...], "edges": [{"sId", "tId"}]}``."""
        nodes = [
            Node(
                id=str(n["id"]),
                name=str(n.get("name", "")),
                act=str(n.get("act", "")),
                context=str(n.get("context", "")),
            )
            for n in data.get("nodes") or []
        ]
        edges = [Edge(str(e["sId"]), str(e["tId"])) for e in data.get("edges") or []]
        return cls(nodes, edges)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"Graph(nodes={len(self._nodes)}, edges={len(self._edges)})"
