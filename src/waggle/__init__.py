"""Plan a goal into a DAG of subtasks and execute ready subtasks concurrently."""

from waggle.core.abort import AbortSignal
from waggle.core.executor import ExecuteRequest, TaskExecutor
from waggle.core.graph import Graph
from waggle.core.node import Edge, Node, TaskFailure, TaskResult
from waggle.core.orchestrator import ExecutionOutcome, Orchestrator
from waggle.core.planner import Planner, PlanRequest
from waggle.core.settings import AgentSettings, AgentSettingsMap

__all__ = [
    "AbortSignal",
    "AgentSettings",
    "AgentSettingsMap",
    "Edge",
    "ExecuteRequest",
    "ExecutionOutcome",
    "Graph",
    "Node",
    "Orchestrator",
    "PlanRequest",
    "Planner",
    "TaskExecutor",
    "TaskFailure",
    "TaskResult",
]
