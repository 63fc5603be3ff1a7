"""RunState — CompletedTasks and TaskResults shared across one run."""

from collections.abc import Iterable, Mapping
from typing import Any

from waggle.core.node import ROOT_NODE_ID, TaskResult


class RunState:
    """Completion bookkeeping owned by the orchestrator for a single run.

    ``completed`` only grows and starts with the root id. ``results`` is
    write-once per node id. Each id is written by exactly one dispatch unit,
    so ``complete()`` treats a second write as a scheduler bug.
    """

    def __init__(self, prior_results: Mapping[str, TaskResult] | None = None) -> None:
        self._completed: set[str] = {ROOT_NODE_ID}
        self._results: dict[str, TaskResult] = {}
        for node_id, result in (prior_results or {}).items():
            self.complete(node_id, result)

    @property
    def completed(self) -> frozenset[str]:
        return frozenset(self._completed)

    @property
    def results(self) -> dict[str, TaskResult]:
        return dict(self._results)

    def complete(self, node_id: str, result: TaskResult) -> None:
        """Record *result* for *node_id* and mark it completed."""
        if node_id in self._results:
            raise RuntimeError(f"Result for {node_id!r} already recorded")
        self._results[node_id] = result
        self._completed.add(node_id)

    def get(self, node_id: str, default: Any = None) -> TaskResult | Any:
        return self._results.get(node_id, default)

    def results_for(self, node_ids: Iterable[str]) -> dict[str, TaskResult]:
        return {nid: self._results[nid] for nid in node_ids if nid in self._results}

    def is_ready(self, predecessor_ids: Iterable[str]) -> bool:
        return all(pid in self._completed for pid in predecessor_ids)

    def is_goal_reached(self, node_ids: Iterable[str]) -> bool:
        return all(nid in self._completed for nid in node_ids)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._completed

    def __repr__(self) -> str:
        return f"RunState(completed={len(self._completed)}, results={len(self._results)})"
