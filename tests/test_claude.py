"""Tests for the Claude planner and executor against a fake streaming client."""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from waggle.core.abort import AbortSignal
from waggle.core.errors import RunAborted
from waggle.core.executor import ExecuteRequest
from waggle.core.graph import Graph
from waggle.core.node import Node, ResultStatus, TaskResult
from waggle.core.packets import (
    Done,
    ErrorPacket,
    HandleLLMEnd,
    HandleLLMError,
    HandleLLMStart,
    PacketType,
    RequestHumanInput,
    Severity,
    Token,
)
from waggle.core.planner import PlanRequest
from waggle.core.settings import AgentSettings, AgentSettingsMap
from waggle.executors.claude import HUMAN_INPUT_MARKER, ClaudeExecutor, build_prompt
from waggle.planners.claude import ClaudePlanner

PLAN = """nodes:
  - id: 1-0
    name: 📚 Research
    act: Research
    context: Find sources
  - id: 1-criticize
    name: 🔍 Review
    act: Review
    context: Check sources
edges:
  - sId: 1-0
    tId: 1-criticize
"""

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class FakeStream:
    def __init__(self, chunks, error=None, error_after=0):
        self.chunks = chunks
        self.error = error
        self.error_after = error_after

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @property
    async def text_stream(self):
        for i, chunk in enumerate(self.chunks):
            if self.error is not None and i == self.error_after:
                raise self.error
            yield chunk
        if self.error is not None and self.error_after >= len(self.chunks):
            raise self.error

    async def get_final_message(self):
        return SimpleNamespace(usage=SimpleNamespace(input_tokens=10, output_tokens=20))


class FakeClient:
    def __init__(self, chunks=(), error=None, error_after=0):
        self.calls = []
        self._chunks = list(chunks)
        self._error = error
        self._error_after = error_after
        self.messages = SimpleNamespace(stream=self._stream)

    def _stream(self, **kwargs):
        self.calls.append(kwargs)
        return FakeStream(self._chunks, self._error, self._error_after)


def lines(text: str) -> list[str]:
    return text.splitlines(keepends=True)


def make_request(node_id="1-0", prior_results=None) -> ExecuteRequest:
    node = Node(id=node_id, name="📚 Research", act="Research", context="Find sources")
    return ExecuteRequest(
        goal="Compare two agents",
        goal_id="g1",
        node=node,
        graph=Graph([node]),
        settings=AgentSettingsMap().for_node(node),
        prior_results=prior_results or {},
    )


async def execute(executor, request, abort=None):
    packets = []
    result = await executor.execute(request, packets.append, abort or AbortSignal())
    return result, packets


class TestClaudePlanner:
    @pytest.mark.asyncio
    async def test_streams_and_parses(self):
        client = FakeClient(lines(PLAN))
        packets = []
        request = PlanRequest(goal="Compare two agents", goal_id="g1", settings=AgentSettings(max_tokens=700))
        graph = await ClaudePlanner(client=client).plan(request, packets.append, AbortSignal())

        assert graph.node_ids == ["1-0", "1-criticize"]
        assert packets[0] == HandleLLMStart()
        assert packets[-1] == HandleLLMEnd(output=PLAN)
        tokens = [p.t for p in packets if p.type is PacketType.TOKEN]
        assert "".join(tokens) == PLAN

        kwargs = client.calls[0]
        assert kwargs["max_tokens"] == 700
        assert kwargs["temperature"] == 0
        assert kwargs["messages"] == [{"role": "user", "content": "My GOAL is: Compare two agents"}]
        assert "GOAL: Compare two agents" in kwargs["system"]

    @pytest.mark.asyncio
    async def test_first_node_hint_once(self):
        hints = []
        request = PlanRequest(goal="g", goal_id="g1", settings=AgentSettings())
        await ClaudePlanner(client=FakeClient(lines(PLAN))).plan(
            request,
            lambda p: None,
            AbortSignal(),
            lambda node, partial: hints.append((node.id, len(partial))),
        )
        assert hints == [("1-0", 2)]

    @pytest.mark.asyncio
    async def test_abort_mid_stream(self):
        abort = AbortSignal()
        abort.abort("stop")
        request = PlanRequest(goal="g", goal_id="g1", settings=AgentSettings())
        with pytest.raises(RunAborted):
            await ClaudePlanner(client=FakeClient(lines(PLAN))).plan(request, lambda p: None, abort)

    @pytest.mark.asyncio
    async def test_api_error(self):
        error = anthropic.APIConnectionError(request=REQUEST)
        packets = []
        request = PlanRequest(goal="g", goal_id="g1", settings=AgentSettings())
        with pytest.raises(anthropic.APIConnectionError):
            await ClaudePlanner(client=FakeClient(["nodes:"], error=error, error_after=1)).plan(
                request, packets.append, AbortSignal()
            )
        assert packets[-1] == HandleLLMError(err=error)

    @pytest.mark.asyncio
    async def test_existing_graph_in_prompt(self):
        client = FakeClient(lines(PLAN))
        existing = Graph([Node(id="1-0", name="n", act="a", context="c")])
        request = PlanRequest(goal="g", goal_id="g1", settings=AgentSettings(), existing_graph=existing)
        await ClaudePlanner(client=client).plan(request, lambda p: None, AbortSignal())
        assert "PARTIAL PLAN" in client.calls[0]["system"]


class TestBuildPrompt:
    def test_execute_prompt(self):
        prompt = build_prompt(make_request())
        assert "GOAL: Compare two agents" in prompt
        assert "📚 Research (Research)" in prompt
        assert HUMAN_INPUT_MARKER in prompt

    def test_review_prompt_includes_results(self):
        prior = {
            "1-0": TaskResult.success("found three papers"),
            "1-1": TaskResult(status=ResultStatus.FAILURE),
        }
        prompt = build_prompt(make_request("1-criticize", prior))
        assert "Results To Review" in prompt
        assert "1-0: found three papers" in prompt
        assert "FAILED" in prompt


class TestClaudeExecutor:
    @pytest.mark.asyncio
    async def test_success(self):
        client = FakeClient(["Three ", "papers."])
        result, packets = await execute(ClaudeExecutor(client=client), make_request())
        assert result.ok
        assert result.value == "Three papers."
        assert packets == [
            HandleLLMStart(),
            Token(t="Three "),
            Token(t="papers."),
            HandleLLMEnd(output="Three papers."),
            Done(value="Three papers."),
        ]
        assert client.calls[0]["model"] == AgentSettingsMap().execute.model
        assert "system" not in client.calls[0]

    @pytest.mark.asyncio
    async def test_review_node_uses_review_settings(self):
        client = FakeClient(["ok"])
        await execute(ClaudeExecutor(client=client, system="be brief"), make_request("1-criticize"))
        assert client.calls[0]["max_tokens"] == 350
        assert client.calls[0]["system"] == "be brief"

    @pytest.mark.asyncio
    async def test_human_input(self):
        client = FakeClient([f"{HUMAN_INPUT_MARKER} which ", "agents?"])
        result, packets = await execute(ClaudeExecutor(client=client), make_request())
        assert not result.ok
        assert result.failure.severity is Severity.HUMAN
        assert packets[-1] == RequestHumanInput(reason="which agents?")

    @pytest.mark.asyncio
    async def test_empty_result(self):
        result, packets = await execute(ClaudeExecutor(client=FakeClient(["  "])), make_request())
        assert result.failure.kind == "empty_result"
        assert result.failure.severity is Severity.WARN
        assert packets[-1].type is PacketType.ERROR

    @pytest.mark.asyncio
    async def test_api_error_is_a_warn_failure(self):
        error = anthropic.APIConnectionError(request=REQUEST)
        client = FakeClient(["partial"], error=error, error_after=1)
        result, packets = await execute(ClaudeExecutor(client=client), make_request())
        assert not result.ok
        assert result.failure.kind == "handleLLMError"
        assert result.failure.severity is Severity.WARN
        assert packets[-1] == HandleLLMError(err=error)

    @pytest.mark.asyncio
    async def test_authentication_error_is_fatal(self):
        response = httpx.Response(401, request=REQUEST)
        error = anthropic.AuthenticationError("invalid x-api-key", response=response, body=None)
        result, packets = await execute(ClaudeExecutor(client=FakeClient(error=error)), make_request())
        assert result.failure.kind == "authentication"
        assert result.failure.severity is Severity.FATAL
        assert packets[-1] == ErrorPacket(
            severity=Severity.FATAL, message="invalid x-api-key", err=packets[-1].err
        )
