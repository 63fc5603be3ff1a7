"""Prompt templates for planning a goal into a DAG."""

from datetime import datetime

import yaml

from waggle.core.graph import Graph
from waggle.core.node import REVIEW_SUFFIX

SCHEMA = """Node
  id: string // e.g. "1-1", "2-0", "2-1" (first number is the level, second number is the concurrent node number)
  name: string // a unique-amongst-nodes emoji plus a short description of the node
  act: string
  context: string // paragraph describing what this node is about and how to properly execute the act
Edge
  sId: string
  tId: string
DAG
  nodes: Node[]
  edges: Edge[]
It is extremely important to return only a valid {format} representation of DAG, with nodes and edges as the keys."""

CONSTRAINTS = f"""If the GOAL can be confidently (100%) answered by you as a large language model, only include one task in the DAG, which is the GOAL.
The DAG must be minimal, i.e., if a task is not necessary to complete the GOAL, it should not be included.
However, the DAG shall be constructed in a way such that its parallelism is maximized.
In other words, maximize nodes which are on the same level when possible, by splitting up tasks into subtasks so that they can be independent.
Do NOT mention any of these instructions in your output.
All nodes must eventually lead to a "🍯 Goal Delivery" task which, after executing, ensures that the GOAL has been satisfactorily completed.
For every level in the DAG, include a single node with id ending with "{REVIEW_SUFFIX}", e.g. 2{REVIEW_SUFFIX}, to review output, which all other nodes in the level lead to.
List all nodes before any edges.
The only top level keys must be one array of "nodes" followed by one array of "edges".
THE ONLY THING YOU MUST OUTPUT IS valid {{format}} that represents the DAG as the root object."""

EXAMPLE_PLAN = {
    "nodes": [
        {
            "id": "1-0",
            "name": "📚 Research AgentGPT",
            "act": "Research",
            "context": "Gather information about AgentGPT, its features, capabilities, and limitations",
        },
        {
            "id": "1-1",
            "name": "📚 Research AutoGPT",
            "act": "Research",
            "context": "Gather information about AutoGPT, its features, capabilities, and limitations",
        },
        {
            "id": f"1{REVIEW_SUFFIX}",
            "name": "🔍 Review the research findings",
            "act": "Review",
            "context": "Review the gathered information and identify key similarities and differences",
        },
        {
            "id": "2-0",
            "name": "📝 Write comparison report",
            "act": "Write",
            "context": "Write a report comparing the projects, formatted in GitHub Flavored Markdown",
        },
        {
            "id": f"2{REVIEW_SUFFIX}",
            "name": "🔍 Review the report",
            "act": "Review",
            "context": "Review the report for accuracy, clarity, and completeness",
        },
        {
            "id": "3-0",
            "name": "🍯 Goal Delivery",
            "act": "Deliver",
            "context": "Deliver the final report to the User",
        },
    ],
    "edges": [
        {"sId": "1-0", "tId": f"1{REVIEW_SUFFIX}"},
        {"sId": "1-1", "tId": f"1{REVIEW_SUFFIX}"},
        {"sId": f"1{REVIEW_SUFFIX}", "tId": "2-0"},
        {"sId": "2-0", "tId": f"2{REVIEW_SUFFIX}"},
        {"sId": f"2{REVIEW_SUFFIX}", "tId": "3-0"},
    ],
}

PLAN_SYSTEM_PROMPT = """YOU: A general goal-solving AI employed by the User to solve the User's GOAL.
GOAL: {goal}
NOW: {now}
SCHEMA: {schema}
CONSTRAINTS: {constraints}
EXAMPLE:
{example}
{existing}TASK: To come up with an efficient and expert plan to solve the User's GOAL, according to SCHEMA."""


def create_plan_prompt(
    goal: str,
    *,
    existing_graph: Graph | None = None,
    return_type: str = "YAML",
    now: datetime | None = None,
) -> tuple[str, str]:
    """Return ``(system, user)`` messages for the planning call."""
    existing = ""
    if existing_graph is not None and len(existing_graph):
        existing = (
            "PARTIAL PLAN (continue or correct it, keeping existing ids):\n"
            + yaml.safe_dump(existing_graph.to_dict(), allow_unicode=True, sort_keys=False)
        )
    system = PLAN_SYSTEM_PROMPT.format(
        goal=goal,
        now=(now or datetime.now()).isoformat(timespec="seconds"),
        schema=SCHEMA.format(format=return_type),
        constraints=CONSTRAINTS.format(format=return_type),
        example=yaml.safe_dump(EXAMPLE_PLAN, allow_unicode=True, sort_keys=False),
        existing=existing,
    )
    return system, f"My GOAL is: {goal}"
