"""Plan parser — extract a DAG from model output in YAML or JSON.

YAML is a superset of JSON, so ``yaml.safe_load`` reads both.
"""

import re
from typing import Any

import yaml

from waggle.core.errors import StructuralFailure
from waggle.core.graph import Graph
from waggle.core.node import Edge, Node

_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*\n(.*?)(?:\n```|\Z)", re.DOTALL)
_EDGES_KEY_RE = re.compile(r"^\s*[\"']?edges[\"']?\s*:", re.MULTILINE)


class PlanParseError(ValueError):
    """Raised when model output does not contain a DAG."""


def strip_fences(text: str) -> str:
    """Return the body of the first fenced code block, or *text* unchanged."""
    match = _FENCE_RE.search(text)
    return match.group(1) if match else text


def _node_from(data: Any) -> Node | None:
    if not isinstance(data, dict) or data.get("id") is None:
        return None
    return Node(
        id=str(data["id"]),
        name=str(data.get("name") or ""),
        act=str(data.get("act") or ""),
        context=str(data.get("context") or ""),
    )


def _edge_from(data: Any) -> Edge | None:
    if not isinstance(data, dict):
        return None
    source, target = data.get("sId"), data.get("tId")
    if source is None or target is None:
        return None
    return Edge(str(source), str(target))


def _graph_from(data: dict[str, Any], *, strict: bool) -> Graph:
    nodes: list[Node] = []
    for raw in data.get("nodes") or []:
        node = _node_from(raw)
        if node is None:
            if strict:
                raise PlanParseError(f"Invalid node entry: {raw!r}")
            continue
        nodes.append(node)

    edges: list[Edge] = []
    for raw in data.get("edges") or []:
        edge = _edge_from(raw)
        if edge is None:
            if strict:
                raise PlanParseError(f"Invalid edge entry: {raw!r}")
            continue
        edges.append(edge)

    return Graph(nodes, edges)


def parse_graph(text: str) -> Graph:
    """Parse a complete plan.

    Raises ``PlanParseError`` for malformed output and
    ``DuplicateNodeIdError`` when node ids repeat.
    """
    body = strip_fences(text).strip()
    try:
        data = yaml.safe_load(body)
    except yaml.YAMLError as e:
        raise PlanParseError(f"Plan is not valid YAML/JSON: {e}") from e

    if not isinstance(data, dict) or "nodes" not in data:
        raise PlanParseError("Plan must be a mapping with 'nodes' and 'edges' keys")

    return _graph_from(data, strict=True)


def parse_partial_graph(text: str) -> Graph | None:
    """Best-effort parse of a plan that is still streaming.

    Trailing lines are dropped until the prefix parses. Incomplete node and
    edge entries are ignored. Returns None if nothing usable parsed yet.
    """
    lines = strip_fences(text).splitlines()
    for cut in range(len(lines), 0, -1):
        try:
            data = yaml.safe_load("\n".join(lines[:cut]))
        except yaml.YAMLError:
            continue
        if isinstance(data, dict) and data.get("nodes"):
            try:
                return _graph_from(data, strict=False)
            except StructuralFailure:
                return None
    return None


def find_first_node(text: str) -> tuple[Node, Graph] | None:
    """Return a node with no incoming edge once the nodes section is complete.

    The hint is only given after the ``edges`` key appears, so every node is
    known. Edges still streaming may later target the node; the
    orchestrator revokes the claim in that case.
    """
    if not _EDGES_KEY_RE.search(strip_fences(text)):
        return None
    partial = parse_partial_graph(text)
    if partial is None:
        return None
    candidates = partial.nodes_with_no_incoming_edges()
    if not candidates:
        return None
    return candidates[0], partial
