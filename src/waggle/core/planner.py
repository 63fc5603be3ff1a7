"""Planner ABC — turns a goal into a Graph, optionally hinting a first node early."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from waggle.core.abort import AbortSignal
from waggle.core.executor import PacketCallback
from waggle.core.graph import Graph
from waggle.core.node import Node
from waggle.core.settings import AgentSettings

FirstNodeCallback = Callable[[Node, Graph], None]


@dataclass
class PlanRequest:
    goal: str
    goal_id: str
    settings: AgentSettings
    existing_graph: Graph | None = None


class Planner(ABC):
    """Produces the plan graph for a goal.

    ``plan`` may stream packets through ``emit`` (they are attributed to the
    root node) and may call ``on_first_node`` once, as soon as it knows a
    node with no incoming edges, passing the partial graph seen so far.
    Failure is signalled by raising; the orchestrator does not retry.
    """

    @abstractmethod
    async def plan(
        self,
        request: PlanRequest,
        emit: PacketCallback,
        abort: AbortSignal,
        on_first_node: FirstNodeCallback | None = None,
    ) -> Graph: ...
