"""Orchestrator — plans a goal, then schedules ready nodes concurrently.

Phases: PLANNING (with an optional optimistic first task running alongside),
HOOKUP_ROOT, SCHEDULING, then DONE, SUSPENDED or a raised ``WaggleError``.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from waggle.core.abort import AbortSignal
from waggle.core.errors import (
    FatalTaskError,
    PlanningFailure,
    RunAborted,
    SchedulingDeadlock,
    StructuralFailure,
)
from waggle.core.executor import ExecuteRequest, TaskExecutor
from waggle.core.graph import Graph
from waggle.core.node import (
    ROOT_NODE_ID,
    Edge,
    Node,
    TaskFailure,
    TaskResult,
    is_review_node,
    root_node,
)
from waggle.core.packets import AgentPacket, Done, ErrorPacket, Severity
from waggle.core.planner import PlanRequest, Planner
from waggle.core.settings import AgentSettingsMap
from waggle.core.state import RunState

logger = logging.getLogger(__name__)

PacketSink = Callable[[AgentPacket, Node], None]

DEFAULT_POLL_INTERVAL = 1.0


class RunPhase(Enum):
    PLANNING = "planning"
    HOOKUP_ROOT = "hookup_root"
    SCHEDULING = "scheduling"
    DONE = "done"
    SUSPENDED = "suspended"
    ABORTED = "aborted"
    FATAL = "fatal"


class ClaimState(Enum):
    STARTED = "started"
    REVOKED = "revoked"


@dataclass
class FirstTaskClaim:
    """Exclusive token for the node dispatched while planning is still running.

    Scheduling builds its to-do list without the claimed id, so that node
    is never dispatched a second time unless the claim is revoked during
    hook-up.
    """

    node: Node
    state: ClaimState = ClaimState.STARTED
    task: "asyncio.Task[None] | None" = None

    @property
    def node_id(self) -> str:
        return self.node.id


@dataclass
class ExecutionOutcome:
    results: dict[str, TaskResult] = field(default_factory=dict)
    completed_tasks: frozenset[str] = frozenset()
    suspended: dict[str, str] = field(default_factory=dict)
    graph: Graph | None = None
    duration_ms: float = 0.0

    @property
    def is_complete(self) -> bool:
        return not self.suspended

    @property
    def failed_nodes(self) -> list[str]:
        return [nid for nid, r in self.results.items() if not r.ok]

    def summary(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for r in self.results.values():
            by_status[r.status.value] = by_status.get(r.status.value, 0) + 1
        if self.suspended:
            by_status["suspended"] = len(self.suspended)
        return {
            "total": len(self.results),
            "by_status": by_status,
            "duration_ms": self.duration_ms,
            "complete": self.is_complete,
        }


def _discard_packet(packet: AgentPacket, node: Node) -> None:
    pass


class Orchestrator:
    """Drive one goal from planning to completion.

    ``max_concurrency`` bounds in-flight tasks (``None`` is unbounded).
    The per-profile ``max_concurrency`` in the settings is handed to the
    executor and is not a scheduling bound. ``poll_interval`` caps how long
    the scheduling loop sleeps between re-evaluations of the ready set when
    no completion wakes it.
    """

    def __init__(
        self,
        planner: Planner,
        executor: TaskExecutor,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_concurrency: int | None = None,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.planner = planner
        self.executor = executor
        self.poll_interval = poll_interval
        self.max_concurrency = max_concurrency

    async def run(
        self,
        goal: str,
        goal_id: str,
        settings: AgentSettingsMap | None = None,
        *,
        initial_graph: Graph | None = None,
        is_done_planning: bool = False,
        on_packet: PacketSink | None = None,
        abort: AbortSignal | None = None,
        prior_results: Mapping[str, TaskResult] | None = None,
    ) -> ExecutionOutcome:
        """Plan (unless resuming) and execute *goal*.

        Returns the outcome once every node is completed, or once the only
        unfinished work is waiting on human input. Raises ``PlanningFailure``,
        ``StructuralFailure``, ``SchedulingDeadlock``, ``FatalTaskError`` or
        ``RunAborted`` otherwise.
        """
        run = _Run(
            self,
            goal,
            goal_id,
            settings or AgentSettingsMap(),
            on_packet or _discard_packet,
            abort or AbortSignal(),
            prior_results,
        )
        return await run.execute(initial_graph, is_done_planning)


class _Run:
    """State of a single orchestrator run."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        goal: str,
        goal_id: str,
        settings: AgentSettingsMap,
        sink: PacketSink,
        abort: AbortSignal,
        prior_results: Mapping[str, TaskResult] | None,
    ) -> None:
        self.orchestrator = orchestrator
        self.goal = goal
        self.goal_id = goal_id
        self.settings = settings
        self.sink = sink
        self.abort = abort
        self.root = root_node(goal)
        self.state = RunState(prior_results)
        self.phase = RunPhase.PLANNING
        self.claim: FirstTaskClaim | None = None
        self.in_flight: dict[str, asyncio.Task[None]] = {}
        self.suspended: dict[str, str] = {}
        self.fatal: FatalTaskError | None = None
        self._plan_task: asyncio.Task[Graph] | None = None
        self._wake = asyncio.Event()

    async def execute(self, initial_graph: Graph | None, is_done_planning: bool) -> ExecutionOutcome:
        start = time.monotonic()
        try:
            graph = await self._plan_and_hookup(initial_graph, is_done_planning)
            self._set_phase(RunPhase.SCHEDULING)
            await self._schedule(graph)
        except RunAborted:
            self._set_phase(RunPhase.ABORTED)
            raise
        except BaseException:
            self._set_phase(RunPhase.FATAL)
            raise
        finally:
            await self._cancel_in_flight()

        self._set_phase(RunPhase.SUSPENDED if self.suspended else RunPhase.DONE)
        return ExecutionOutcome(
            results=self.state.results,
            completed_tasks=self.state.completed,
            suspended=dict(self.suspended),
            graph=graph,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
        )

    # -- planning ---------------------------------------------------------

    async def _plan_and_hookup(self, initial_graph: Graph | None, is_done_planning: bool) -> Graph:
        if initial_graph is not None and len(initial_graph) and is_done_planning:
            logger.info("Skipping planning: initial graph is done (%r)", initial_graph)
            self._set_phase(RunPhase.HOOKUP_ROOT)
            if ROOT_NODE_ID in initial_graph:
                return self._summarized(self._validated(initial_graph))
            return self._hookup(initial_graph)

        request = PlanRequest(
            goal=self.goal,
            goal_id=self.goal_id,
            settings=self.settings.plan,
            existing_graph=initial_graph,
        )
        self._plan_task = asyncio.create_task(
            self.orchestrator.planner.plan(
                request,
                lambda packet: self._emit(packet, self.root),
                self.abort,
                self._start_first_task,
            ),
            name="waggle:plan",
        )
        try:
            plan_graph = await self._plan_task
        except asyncio.CancelledError:
            if self.fatal is not None and self._plan_task.cancelled():
                logger.error("Planning stopped by fatal failure in %s", self.fatal.node_id)
                raise self.fatal from None
            raise
        except RunAborted:
            raise
        except StructuralFailure as e:
            logger.error("Planner produced an invalid graph: %s", e)
            self._emit(ErrorPacket(severity=Severity.FATAL, message=str(e), err=e), self.root)
            raise
        except Exception as e:
            if self.abort.aborted:
                raise RunAborted(self.abort.reason or "aborted") from e
            logger.error("Planning failed: %s", e)
            self._emit(ErrorPacket(severity=Severity.FATAL, message=str(e), err=e), self.root)
            raise PlanningFailure(str(e)) from e

        if self.abort.aborted:
            raise RunAborted(self.abort.reason or "aborted")
        if self.fatal is not None:
            raise self.fatal
        if plan_graph is None or not len(plan_graph):
            message = "Planner returned an empty graph"
            self._emit(ErrorPacket(severity=Severity.FATAL, message=message), self.root)
            raise PlanningFailure(message)

        logger.info("Done planning: %r", plan_graph)
        self._set_phase(RunPhase.HOOKUP_ROOT)
        graph = self._hookup(plan_graph)
        await self._reconcile_claim(graph)
        return graph

    def _hookup(self, plan_graph: Graph) -> Graph:
        """Attach the root node to every node that has no incoming edge."""
        hookup_edges = [Edge(ROOT_NODE_ID, n.id) for n in plan_graph.nodes_with_no_incoming_edges()]
        try:
            graph = plan_graph.merge([self.root], hookup_edges)
        except StructuralFailure as e:
            self._emit(ErrorPacket(severity=Severity.FATAL, message=str(e), err=e), self.root)
            raise
        return self._summarized(self._validated(graph))

    def _summarized(self, graph: Graph) -> Graph:
        self._emit(
            Done(
                value=f"Planned an execution graph with {len(graph)} tasks "
                f"and {len(graph.edges)} edges."
            ),
            self.root,
        )
        return graph

    def _validated(self, graph: Graph) -> Graph:
        try:
            graph.validate()
        except StructuralFailure as e:
            logger.error("Rejecting plan graph: %s", e)
            self._emit(ErrorPacket(severity=Severity.FATAL, message=str(e), err=e), self.root)
            raise
        return graph

    # -- optimistic first task ---------------------------------------------

    def _start_first_task(self, node: Node, partial_graph: Graph) -> None:
        if self.claim is not None:
            logger.debug("Ignoring extra first-task hint for %s", node.id)
            return
        if self.abort.aborted or self.phase is not RunPhase.PLANNING:
            return
        if node.id in self.state:
            logger.debug("Ignoring first-task hint for already completed %s", node.id)
            return
        logger.info("Speed optimization: executing %s while still planning", node.id)
        self.claim = FirstTaskClaim(node)
        self.claim.task = self._spawn(node, partial_graph)

    async def _reconcile_claim(self, graph: Graph) -> None:
        """Revoke the claim if the final graph disagrees with the planner's hint."""
        claim = self.claim
        if claim is None:
            return
        if claim.node_id in graph and graph.predecessors(claim.node_id) <= {ROOT_NODE_ID}:
            return
        if claim.task is not None and not claim.task.done():
            logger.warning("Revoking first-task claim on %s: not a first task in the final plan", claim.node_id)
            claim.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await claim.task
            claim.state = ClaimState.REVOKED
        else:
            logger.warning("First task %s finished but is not a first task in the final plan", claim.node_id)

    # -- scheduling -------------------------------------------------------

    async def _schedule(self, graph: Graph) -> None:
        claimed = set()
        if self.claim is not None and self.claim.state is not ClaimState.REVOKED:
            claimed.add(self.claim.node_id)
        todo = [n for n in graph.nodes if n.id not in self.state and n.id not in claimed]
        node_ids = graph.node_ids
        limit = self.orchestrator.max_concurrency

        while not self.state.is_goal_reached(node_ids):
            if self.abort.aborted:
                raise RunAborted(self.abort.reason or "aborted")
            if self.fatal is not None:
                raise self.fatal

            self._wake.clear()
            ready = [n for n in todo if self.state.is_ready(graph.predecessors(n.id))]

            if ready and (limit is None or len(self.in_flight) < limit):
                node = ready[0]
                todo.remove(node)
                logger.debug("Ready: %s", [n.id for n in ready])
                self._spawn(node, graph)
                continue

            if not self.in_flight:
                incomplete = [nid for nid in node_ids if nid not in self.state]
                if self._blocked_on_humans(graph, incomplete):
                    logger.info("Waiting on human input for %s", sorted(self.suspended))
                    return
                raise SchedulingDeadlock(
                    f"No ready or in-flight tasks, but {len(incomplete)} remain: {incomplete}"
                )

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wake.wait(), self.orchestrator.poll_interval)

        if self.fatal is not None:
            raise self.fatal
        logger.info("Goal reached: %d tasks completed", len(self.state.completed))

    def _blocked_on_humans(self, graph: Graph, incomplete: list[str]) -> bool:
        if not self.suspended:
            return False
        blocked = set(self.suspended)
        for node_id in self.suspended:
            blocked |= graph.descendants(node_id)
        return all(nid in blocked for nid in incomplete)

    # -- dispatch ---------------------------------------------------------

    def _spawn(self, node: Node, graph: Graph) -> "asyncio.Task[None]":
        task = asyncio.create_task(self._dispatch(node, graph), name=f"waggle:{node.id}")
        self.in_flight[node.id] = task
        task.add_done_callback(lambda t, nid=node.id: self._unit_done(nid, t))
        return task

    def _unit_done(self, node_id: str, task: "asyncio.Task[None]") -> None:
        if self.in_flight.get(node_id) is task:
            del self.in_flight[node_id]
        self._wake.set()

    async def _dispatch(self, node: Node, graph: Graph) -> None:
        prior: dict[str, TaskResult] = {}
        if is_review_node(node):
            prior = self.state.results_for(graph.predecessors(node.id))
        request = ExecuteRequest(
            goal=self.goal,
            goal_id=self.goal_id,
            node=node,
            graph=graph,
            settings=self.settings.for_node(node),
            completed_tasks=self.state.completed,
            prior_results=prior,
        )
        logger.info("Running %s", node.id)
        try:
            result = await self.orchestrator.executor.execute(
                request, lambda packet: self._emit(packet, node), self.abort
            )
        except Exception as e:
            logger.warning("Executor raised for %s: %s", node.id, e)
            self._emit(ErrorPacket(severity=Severity.WARN, message=str(e), err=e), node)
            result = TaskResult.failed(TaskFailure(kind=type(e).__name__, message=str(e)))
        self._record(node, result)

    def _record(self, node: Node, result: TaskResult) -> None:
        if result.ok:
            self.state.complete(node.id, result)
            logger.info("Finished %s", node.id)
            return

        failure = result.failure or TaskFailure(kind="unknown", message="")
        if failure.kind == "cancelled":
            logger.info("Cancelled %s", node.id)
        elif failure.severity == Severity.HUMAN:
            logger.info("Suspended %s pending human input: %s", node.id, failure.message)
            self.suspended[node.id] = failure.message
        elif failure.severity == Severity.FATAL:
            logger.error("Fatal failure in %s: %s", node.id, failure.message)
            self.state.complete(node.id, result)
            if self.fatal is None:
                self.fatal = FatalTaskError(node.id, failure)
            if self._plan_task is not None and not self._plan_task.done():
                self._plan_task.cancel()
        else:
            logger.warning("Task %s failed: %s", node.id, failure.message)
            self.state.complete(node.id, result)

    async def _cancel_in_flight(self) -> None:
        tasks = list(self.in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- helpers ----------------------------------------------------------

    def _emit(self, packet: AgentPacket, node: Node) -> None:
        try:
            self.sink(packet, node)
        except Exception:
            logger.exception("Packet sink failed on %s for %s", packet.type.value, node.id)

    def _set_phase(self, phase: RunPhase) -> None:
        if phase is not self.phase:
            logger.debug("Phase %s -> %s", self.phase.value, phase.value)
            self.phase = phase
