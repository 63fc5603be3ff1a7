"""CLI entry point for waggle."""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import uuid
from pathlib import Path

import anthropic
import yaml

from waggle.core.abort import AbortSignal
from waggle.core.errors import WaggleError
from waggle.core.graph import Graph
from waggle.core.node import Node
from waggle.core.orchestrator import DEFAULT_POLL_INTERVAL, ExecutionOutcome, Orchestrator
from waggle.core.packets import AgentPacket, PacketType, display, is_finishing
from waggle.core.planner import PlanRequest
from waggle.core.settings import AgentSettingsMap, load_settings
from waggle.core.status import TaskStatus, map_packet_to_status
from waggle.executors.claude import ClaudeExecutor
from waggle.planners.claude import ClaudePlanner


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="waggle",
        description="Plan a goal into a DAG of subtasks and execute them concurrently",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Plan and execute a goal")
    run.add_argument("goal", help="The goal to achieve")
    run.add_argument("--goal-id", default=None, help="Identifier for this goal (default: random)")
    run.add_argument("--settings", default=None, help="YAML file with plan/review/execute profiles")
    run.add_argument("--graph", default=None, help="YAML/JSON plan graph to start from")
    run.add_argument(
        "--done-planning",
        action="store_true",
        help="Treat --graph as a finished plan and skip planning",
    )
    run.add_argument("--max-concurrency", type=int, default=None, help="Max tasks in flight")
    run.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help="Max seconds between scheduler re-checks",
    )
    run.add_argument("--dry-run", action="store_true", help="Print DAG levels without executing")
    run.add_argument("--output", default=None, help="Write task results to this YAML file")

    plan = sub.add_parser("plan", help="Plan a goal and print the DAG")
    plan.add_argument("goal", help="The goal to plan")
    plan.add_argument("--settings", default=None, help="YAML file with plan/review/execute profiles")
    plan.add_argument("--output", default=None, help="Write the plan graph to this YAML file")

    return parser


def _load_graph(path: str) -> Graph:
    data = yaml.safe_load(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a plan graph")
    return Graph.from_dict(data)


def _settings(args: argparse.Namespace) -> AgentSettingsMap:
    return load_settings(args.settings) if args.settings else AgentSettingsMap()


class _PacketPrinter:
    """Print one line per node status change, plus finish packets."""

    def __init__(self) -> None:
        self._status: dict[str, TaskStatus] = {}

    def __call__(self, packet: AgentPacket, node: Node) -> None:
        status = map_packet_to_status(packet)
        changed = self._status.get(node.id) != status
        self._status[node.id] = status
        if packet.type is PacketType.TOKEN:
            return
        if is_finishing(packet.type):
            detail = getattr(packet, "value", None) or getattr(packet, "message", None) or ""
            print(f"[{node.id}] {status.value}: {_shorten(str(detail))}")
        elif changed or packet.type is PacketType.REQUEST_HUMAN_INPUT:
            label = display(packet)
            if label:
                print(f"[{node.id}] {status.value}: {label}")


def _shorten(text: str, limit: int = 120) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1] + "…"


def _print_levels(graph: Graph) -> None:
    levels = graph.levels
    print(f"Nodes: {len(graph)}")
    print(f"Levels: {len(levels)}")
    for i, level in enumerate(levels):
        print(f"  Level {i}: {level}")


def _write_results(path: str, outcome: ExecutionOutcome) -> None:
    data = {}
    for node_id, result in outcome.results.items():
        entry: dict = {"status": result.status.value}
        if result.ok:
            entry["value"] = result.value
        elif result.failure is not None:
            entry["failure"] = {
                "kind": result.failure.kind,
                "message": result.failure.message,
                "severity": result.failure.severity.value,
            }
        data[node_id] = entry
    Path(path).write_text(yaml.safe_dump(data, allow_unicode=True, sort_keys=False))


async def _run(args: argparse.Namespace) -> int:
    settings = _settings(args)
    goal_id = args.goal_id or str(uuid.uuid4())
    initial_graph = _load_graph(args.graph) if args.graph else None

    if args.dry_run:
        if initial_graph is None:
            print("--dry-run needs --graph")
            return 1
        _print_levels(initial_graph)
        print("\nDry run — no tasks executed.")
        return 0

    abort = AbortSignal()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, abort.abort, "interrupted")

    orchestrator = Orchestrator(
        ClaudePlanner(),
        ClaudeExecutor(),
        poll_interval=args.poll_interval,
        max_concurrency=args.max_concurrency,
    )
    print(f"Goal: {args.goal}")
    try:
        outcome = await orchestrator.run(
            args.goal,
            goal_id,
            settings,
            initial_graph=initial_graph,
            is_done_planning=args.done_planning,
            on_packet=_PacketPrinter(),
            abort=abort,
        )
    except WaggleError as e:
        print(f"\nRun failed: {type(e).__name__}: {e}")
        return 1

    if args.output:
        _write_results(args.output, outcome)

    print(f"\nDone in {outcome.duration_ms:.0f}ms")
    summary = outcome.summary()
    for status, count in summary["by_status"].items():
        print(f"  {status}: {count}")

    if outcome.suspended:
        for node_id, reason in outcome.suspended.items():
            print(f"\nWaiting on human input for {node_id}: {reason}")
        return 2
    if outcome.failed_nodes:
        print(f"\nFailed nodes: {outcome.failed_nodes}")
        return 1
    return 0


async def _plan(args: argparse.Namespace) -> int:
    settings = _settings(args)
    printer = _PacketPrinter()
    root = Node(id="plan", name="plan", act="plan", context=args.goal)
    request = PlanRequest(goal=args.goal, goal_id=str(uuid.uuid4()), settings=settings.plan)
    try:
        graph = await ClaudePlanner().plan(request, lambda p: printer(p, root), AbortSignal())
        graph.validate()
    except (WaggleError, ValueError, anthropic.APIError) as e:
        print(f"Planning failed: {e}")
        return 1

    rendered = yaml.safe_dump(graph.to_dict(), allow_unicode=True, sort_keys=False)
    if args.output:
        Path(args.output).write_text(rendered)
    else:
        print(rendered)
    _print_levels(graph)
    return 0


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    if args.command == "run":
        code = asyncio.run(_run(args))
        sys.exit(code)
    elif args.command == "plan":
        code = asyncio.run(_plan(args))
        sys.exit(code)
    else:
        parser.print_help()
        sys.exit(1)
