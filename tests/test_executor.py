"""Tests for the TaskExecutor wrapper."""

import asyncio

import pytest

from waggle.core.abort import AbortSignal
from waggle.core.errors import HumanInputRequired, TaskError
from waggle.core.executor import ExecuteRequest, TaskExecutor
from waggle.core.graph import Graph
from waggle.core.node import Node
from waggle.core.packets import (
    Done,
    ErrorPacket,
    HandleAgentEnd,
    HandleLLMError,
    HandleLLMStart,
    HandleToolStart,
    PacketType,
    RequestHumanInput,
    Severity,
    Token,
)
from waggle.core.settings import AgentSettings


class ScriptedExecutor(TaskExecutor):
    """Emits a fixed packet script, then returns or raises."""

    def __init__(self, packets=(), value=None, error: Exception | None = None, delay: float = 0):
        self.packets = list(packets)
        self.value = value
        self.error = error
        self.delay = delay
        self.calls = 0

    async def run(self, request, emit):
        self.calls += 1
        for packet in self.packets:
            emit(packet)
            if self.delay:
                await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


def make_request(node_id: str = "1-0") -> ExecuteRequest:
    node = Node(id=node_id, name="task", act="Do", context="")
    return ExecuteRequest(
        goal="goal",
        goal_id="g1",
        node=node,
        graph=Graph([node]),
        settings=AgentSettings(),
    )


async def execute(executor: TaskExecutor, abort: AbortSignal | None = None):
    packets = []
    result = await executor.execute(make_request(), packets.append, abort or AbortSignal())
    return result, packets


class TestExecutorSuccess:
    @pytest.mark.asyncio
    async def test_returned_value_appends_done(self):
        result, packets = await execute(ScriptedExecutor([HandleLLMStart(), Token(t="hi")], value="hi"))
        assert result.ok
        assert result.value == "hi"
        assert packets[-1] == Done(value="hi")
        assert "duration_ms" in result.metadata

    @pytest.mark.asyncio
    async def test_existing_success_finish_not_duplicated(self):
        script = [HandleLLMStart(), Token(t="X"), HandleAgentEnd(value="X")]
        result, packets = await execute(ScriptedExecutor(script, value="X"))
        assert result.value == "X"
        assert packets == script

    @pytest.mark.asyncio
    async def test_value_taken_from_finish_packet(self):
        script = [HandleLLMStart(), Token(t="t"), Token(t="t"), HandleAgentEnd(value="X")]
        result, packets = await execute(ScriptedExecutor(script))
        assert result.ok
        assert result.value == "X"
        assert packets == script


class TestExecutorFailure:
    @pytest.mark.asyncio
    async def test_no_finish_packet_is_fatal(self):
        result, packets = await execute(ScriptedExecutor([HandleToolStart(tool="search")]))
        assert not result.ok
        assert result.failure.severity is Severity.FATAL
        assert isinstance(packets[-1], ErrorPacket)
        assert packets[-1].severity is Severity.FATAL

    @pytest.mark.asyncio
    async def test_failure_packet_becomes_warn_failure(self):
        result, packets = await execute(ScriptedExecutor([HandleLLMStart(), HandleLLMError(err="overloaded")]))
        assert not result.ok
        assert result.failure.kind == "handleLLMError"
        assert result.failure.message == "overloaded"
        assert result.failure.severity is Severity.WARN
        assert packets[-1].type is PacketType.HANDLE_LLM_ERROR

    @pytest.mark.asyncio
    async def test_task_error(self):
        result, packets = await execute(ScriptedExecutor(error=TaskError("boom", kind="tool", severity="fatal")))
        assert result.failure.kind == "tool"
        assert result.failure.severity is Severity.FATAL
        assert packets[-1].severity is Severity.FATAL
        assert packets[-1].message == "boom"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_converted(self):
        result, packets = await execute(ScriptedExecutor(error=KeyError("k")))
        assert not result.ok
        assert result.failure.kind == "KeyError"
        assert result.failure.severity is Severity.WARN
        assert packets[-1].type is PacketType.ERROR

    @pytest.mark.asyncio
    async def test_human_input(self):
        result, packets = await execute(ScriptedExecutor(error=HumanInputRequired("need clarification")))
        assert result.failure.severity is Severity.HUMAN
        assert packets == [RequestHumanInput(reason="need clarification")]


class TestExecutorAbort:
    @pytest.mark.asyncio
    async def test_abort_before_dispatch_never_runs(self):
        abort = AbortSignal()
        abort.abort()
        executor = ScriptedExecutor([Token(t="x")], value="x")
        result, packets = await execute(executor, abort)
        assert executor.calls == 0
        assert packets == []
        assert result.failure.kind == "cancelled"

    @pytest.mark.asyncio
    async def test_abort_during_execution_stops_packets(self):
        abort = AbortSignal()
        executor = ScriptedExecutor([Token(t=str(i)) for i in range(50)], value="x", delay=0.01)

        async def abort_soon():
            await asyncio.sleep(0.035)
            abort.abort()

        aborter = asyncio.create_task(abort_soon())
        result, packets = await execute(executor, abort)
        await aborter
        assert result.failure.kind == "cancelled"
        assert 0 < len(packets) < 50
        assert all(p.type is PacketType.TOKEN for p in packets)

    @pytest.mark.asyncio
    async def test_emit_after_abort_is_dropped(self):
        abort = AbortSignal()

        class AbortsItself(TaskExecutor):
            async def run(self, request, emit):
                emit(Token(t="before"))
                abort.abort()
                emit(Token(t="after"))
                await asyncio.sleep(1)
                return "never"

        result, packets = await execute(AbortsItself(), abort)
        assert packets == [Token(t="before")]
        assert result.failure.kind == "cancelled"
