"""TaskExecutor ABC — runs one node and reduces its packet stream to a TaskResult."""

import asyncio
import contextlib
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from waggle.core.abort import AbortSignal
from waggle.core.errors import HumanInputRequired, TaskError
from waggle.core.graph import Graph
from waggle.core.node import Node, TaskFailure, TaskResult
from waggle.core.packets import (
    TERMINAL_SUCCESS_TYPES,
    AgentPacket,
    Done,
    ErrorPacket,
    HandleChainEnd,
    RequestHumanInput,
    Severity,
    find_finish_packet,
    is_finishing,
)
from waggle.core.settings import AgentSettings

logger = logging.getLogger(__name__)

PacketCallback = Callable[[AgentPacket], None]


@dataclass
class ExecuteRequest:
    goal: str
    goal_id: str
    node: Node
    graph: Graph
    settings: AgentSettings
    completed_tasks: frozenset[str] = frozenset()
    prior_results: dict[str, TaskResult] = field(default_factory=dict)


def failure_from_packet(packet: AgentPacket) -> TaskFailure:
    if isinstance(packet, ErrorPacket):
        return TaskFailure(kind="error", message=packet.message, severity=packet.severity)
    err = getattr(packet, "err", None)
    return TaskFailure(kind=packet.type.value, message=str(err) if err is not None else "")


def _packet_value(packet: AgentPacket) -> Any:
    if isinstance(packet, HandleChainEnd):
        return packet.outputs
    return getattr(packet, "value", None)


class TaskExecutor(ABC):
    """Executes a single node.

    Subclasses implement ``run``: emit packets through ``emit`` and return
    the node's payload. Raise ``TaskError`` to fail the node or
    ``HumanInputRequired`` to suspend it.

    ``execute`` wraps ``run`` so the orchestrator never sees an exception:

    * abort set before dispatch — ``run`` is never called
    * abort set during ``run`` — the unit is cancelled at its next await and
      no further packets are forwarded
    * every stream ends with a finish packet; if ``run`` returns ``None``
      and emitted none, a fatal error packet is substituted
    """

    @abstractmethod
    async def run(self, request: ExecuteRequest, emit: PacketCallback) -> Any: ...

    async def execute(
        self,
        request: ExecuteRequest,
        on_packet: PacketCallback,
        abort: AbortSignal,
    ) -> TaskResult:
        node_id = request.node.id
        if abort.aborted:
            return TaskResult.failed(_cancelled(node_id))

        packets: list[AgentPacket] = []

        def emit(packet: AgentPacket) -> None:
            if abort.aborted:
                return
            packets.append(packet)
            on_packet(packet)

        start = time.monotonic()
        try:
            value = await self._run_until_aborted(request, emit, abort)
        except _Aborted:
            logger.info("Task %s cancelled by abort signal", node_id)
            result = TaskResult.failed(_cancelled(node_id))
        except TaskError as e:
            failure = TaskFailure(kind=e.kind, message=e.message, severity=Severity(e.severity))
            emit(ErrorPacket(severity=failure.severity, message=failure.message, err=e))
            result = TaskResult.failed(failure)
        except HumanInputRequired as e:
            emit(RequestHumanInput(reason=e.reason))
            result = TaskResult.failed(
                TaskFailure(kind="human_input", message=e.reason, severity=Severity.HUMAN)
            )
        except Exception as e:
            logger.warning("Task %s raised %s: %s", node_id, type(e).__name__, e)
            emit(ErrorPacket(severity=Severity.WARN, message=str(e), err=e))
            result = TaskResult.failed(TaskFailure(kind=type(e).__name__, message=str(e)))
        else:
            result = self._reduce(value, packets, emit)

        elapsed_ms = (time.monotonic() - start) * 1000
        result.metadata.setdefault("duration_ms", round(elapsed_ms, 1))
        result.metadata.setdefault("packets", len(packets))
        return result

    async def _run_until_aborted(
        self,
        request: ExecuteRequest,
        emit: PacketCallback,
        abort: AbortSignal,
    ) -> Any:
        run_task = asyncio.ensure_future(self.run(request, emit))
        abort_task = asyncio.ensure_future(abort.wait())
        try:
            done, _ = await asyncio.wait(
                {run_task, abort_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            abort_task.cancel()
            if not run_task.done():
                run_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await run_task
        if run_task not in done or run_task.cancelled():
            raise _Aborted
        return run_task.result()

    def _reduce(self, value: Any, packets: list[AgentPacket], emit: PacketCallback) -> TaskResult:
        last_finish = next((p for p in reversed(packets) if is_finishing(p.type)), None)

        if value is not None:
            if last_finish is None or last_finish.type not in TERMINAL_SUCCESS_TYPES:
                emit(Done(value=value))
            return TaskResult.success(value)

        finish = find_finish_packet(packets)
        if finish.type in TERMINAL_SUCCESS_TYPES:
            return TaskResult.success(_packet_value(finish))
        if last_finish is None:
            emit(finish)
        return TaskResult.failed(failure_from_packet(finish))


class _Aborted(Exception):
    pass


def _cancelled(node_id: str) -> TaskFailure:
    return TaskFailure(kind="cancelled", message=f"Task {node_id!r} was aborted")
