"""Exception taxonomy for planning, validation and scheduling."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from waggle.core.node import TaskFailure


class WaggleError(Exception):
    """Base class for every fatal condition of a run."""


class PlanningFailure(WaggleError):
    """The planner failed; the run is aborted without retrying."""


class StructuralFailure(WaggleError):
    """The graph violates a structural invariant and cannot be scheduled."""


class CycleError(StructuralFailure):
    """Raised when the graph contains a cycle."""


class DuplicateNodeIdError(StructuralFailure):
    """Raised when two nodes share an id."""


class DanglingEdgeError(StructuralFailure):
    """Raised when an edge references a node that is not in the graph."""


class SchedulingDeadlock(WaggleError):
    """Nothing is ready, nothing is in flight, and the goal is not reached."""


class RunAborted(WaggleError):
    """The abort signal was observed by the scheduling loop."""


class FatalTaskError(WaggleError):
    """A node finished with a fatal failure."""

    def __init__(self, node_id: str, failure: "TaskFailure") -> None:
        super().__init__(f"Task {node_id!r} failed fatally: {failure.message}")
        self.node_id = node_id
        self.failure = failure


class TaskError(Exception):
    """Raised inside an executor to fail the current node.

    ``TaskExecutor.execute`` converts it into a ``TaskFailure``.
    """

    def __init__(self, message: str, *, kind: str = "error", severity: str = "warn") -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.severity = severity


class HumanInputRequired(Exception):
    """Raised inside an executor to suspend the node pending human input."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
