"""Node and Edge value types, TaskResult, and the root/review conventions."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from waggle.core.packets import Severity

ROOT_NODE_ID = "👸🐝"
REVIEW_SUFFIX = "-criticize"


@dataclass(frozen=True)
class Node:
    """A single subtask of the plan.

    ``id`` conventionally encodes level and ordinal (``"2-1"``) but nothing
    in the scheduler parses it.
    """

    id: str
    name: str
    act: str
    context: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "act": self.act, "context": self.context}


@dataclass(frozen=True)
class Edge:
    """Dependency edge: *source_id* must complete before *target_id* starts."""

    source_id: str
    target_id: str

    def to_dict(self) -> dict[str, str]:
        return {"sId": self.source_id, "tId": self.target_id}


def root_node(goal: str) -> Node:
    """The synthetic node that stands for planning itself."""
    return Node(
        id=ROOT_NODE_ID,
        name=f"{ROOT_NODE_ID} Queen Bee",
        act="Planning how to achieve your goal",
        context=goal,
    )


def is_review_node(node: Node | str) -> bool:
    node_id = node if isinstance(node, str) else node.id
    return node_id.endswith(REVIEW_SUFFIX)


class ResultStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class TaskFailure:
    kind: str
    message: str
    severity: Severity = Severity.WARN


@dataclass
class TaskResult:
    status: ResultStatus
    value: Any = None
    failure: TaskFailure | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @classmethod
    def success(cls, value: Any, **metadata: Any) -> "TaskResult":
        return cls(status=ResultStatus.SUCCESS, value=value, metadata=dict(metadata))

    @classmethod
    def failed(cls, failure: TaskFailure, **metadata: Any) -> "TaskResult":
        return cls(status=ResultStatus.FAILURE, failure=failure, metadata=dict(metadata))
