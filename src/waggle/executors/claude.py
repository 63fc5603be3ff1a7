"""ClaudeExecutor — execute one plan node through the Anthropic Messages API."""

import logging

import anthropic
import yaml

from waggle.core.errors import HumanInputRequired, TaskError
from waggle.core.executor import ExecuteRequest, PacketCallback, TaskExecutor
from waggle.core.node import TaskResult, is_review_node
from waggle.core.packets import HandleLLMEnd, HandleLLMError, HandleLLMStart, Token

logger = logging.getLogger(__name__)

HUMAN_INPUT_MARKER = "HUMAN INPUT REQUIRED:"

EXECUTE_PROMPT = """You are one agent in a team working concurrently on the User's GOAL.
GOAL: {goal}

## Your Task
{name} ({act})

## Details
{context}

## Instructions
1. Complete only your task; other agents handle the rest of the plan
2. Respond with the result of your task, in GitHub Flavored Markdown
3. If you cannot continue without information only the User has, reply with
   a single line starting with "{marker}" followed by what you need
"""

REVIEW_PROMPT = """You are the reviewer in a team working concurrently on the User's GOAL.
GOAL: {goal}

## Your Task
{name} ({act})

## Details
{context}

## Results To Review
{results}

## Instructions
1. Check each result for accuracy, clarity, completeness, and fit with the GOAL
2. Summarize what the results establish and list concrete problems
3. Respond in GitHub Flavored Markdown
"""


def _format_results(results: dict[str, TaskResult]) -> str:
    if not results:
        return "(no results)"
    rendered = {
        node_id: r.value if r.ok else f"FAILED: {r.failure.message if r.failure else ''}"
        for node_id, r in results.items()
    }
    return yaml.safe_dump(rendered, allow_unicode=True, sort_keys=False)


def build_prompt(request: ExecuteRequest) -> str:
    node = request.node
    if is_review_node(node):
        return REVIEW_PROMPT.format(
            goal=request.goal,
            name=node.name,
            act=node.act,
            context=node.context,
            results=_format_results(request.prior_results),
        )
    return EXECUTE_PROMPT.format(
        goal=request.goal,
        name=node.name,
        act=node.act,
        context=node.context,
        marker=HUMAN_INPUT_MARKER,
    )


class ClaudeExecutor(TaskExecutor):
    """Run a node prompt through Claude and stream the response as ``t`` packets.

    API errors are reported as ``handleLLMError`` packets, which the base
    class turns into a warn-severity failure. Authentication errors fail the
    whole run since no other node can succeed either.
    """

    def __init__(
        self,
        *,
        client: anthropic.AsyncAnthropic | None = None,
        system: str | None = None,
    ) -> None:
        self._client = client
        self.system = system

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic()
        return self._client

    async def run(self, request: ExecuteRequest, emit: PacketCallback) -> str | None:
        settings = request.settings
        client = self._get_client()

        kwargs: dict = {
            "model": settings.model,
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "messages": [{"role": "user", "content": build_prompt(request)}],
        }
        if self.system:
            kwargs["system"] = self.system

        emit(HandleLLMStart())
        chunks: list[str] = []
        try:
            async with client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    chunks.append(text)
                    emit(Token(t=text))
                message = await stream.get_final_message()
        except anthropic.AuthenticationError as e:
            raise TaskError(str(e), kind="authentication", severity="fatal") from e
        except anthropic.APIError as e:
            logger.warning("%s: API error: %s", request.node.id, e)
            emit(HandleLLMError(err=e))
            return None

        text = "".join(chunks).strip()
        emit(HandleLLMEnd(output=text))
        logger.debug(
            "%s used %d input / %d output tokens",
            request.node.id,
            message.usage.input_tokens,
            message.usage.output_tokens,
        )

        if text.startswith(HUMAN_INPUT_MARKER):
            raise HumanInputRequired(text[len(HUMAN_INPUT_MARKER) :].strip())
        if not text:
            raise TaskError("No task result", kind="empty_result")
        return text
