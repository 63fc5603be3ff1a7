"""ClaudePlanner — stream a plan from the Anthropic Messages API."""

import logging

import anthropic

from waggle.core.abort import AbortSignal
from waggle.core.errors import RunAborted
from waggle.core.executor import PacketCallback
from waggle.core.graph import Graph
from waggle.core.packets import HandleLLMEnd, HandleLLMError, HandleLLMStart, Token
from waggle.core.planner import FirstNodeCallback, Planner, PlanRequest
from waggle.planners.plan_parser import find_first_node, parse_graph
from waggle.planners.prompts import create_plan_prompt

logger = logging.getLogger(__name__)


class ClaudePlanner(Planner):
    """Plan a goal with Claude, streaming tokens as ``t`` packets.

    Uses ``AsyncAnthropic`` with lazy client initialization. As soon as the
    streamed plan reaches its ``edges`` section, the first node without an
    incoming edge is reported through ``on_first_node``.
    """

    def __init__(self, *, client: anthropic.AsyncAnthropic | None = None) -> None:
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic()
        return self._client

    async def plan(
        self,
        request: PlanRequest,
        emit: PacketCallback,
        abort: AbortSignal,
        on_first_node: FirstNodeCallback | None = None,
    ) -> Graph:
        system, prompt = create_plan_prompt(request.goal, existing_graph=request.existing_graph)
        settings = request.settings
        client = self._get_client()

        emit(HandleLLMStart())
        buffer: list[str] = []
        hinted = on_first_node is None
        try:
            async with client.messages.stream(
                model=settings.model,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            ) as stream:
                async for text in stream.text_stream:
                    if abort.aborted:
                        raise RunAborted(abort.reason or "aborted")
                    buffer.append(text)
                    emit(Token(t=text))
                    if not hinted:
                        found = find_first_node("".join(buffer))
                        if found is not None:
                            hinted = True
                            node, partial = found
                            logger.info("First executable node while planning: %s", node.id)
                            on_first_node(node, partial)
                message = await stream.get_final_message()
        except anthropic.APIError as e:
            emit(HandleLLMError(err=e))
            raise

        output = "".join(buffer)
        emit(HandleLLMEnd(output=output))
        logger.debug(
            "Plan used %d input / %d output tokens",
            message.usage.input_tokens,
            message.usage.output_tokens,
        )
        return parse_graph(output)
