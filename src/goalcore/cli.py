# src/goalcore/cli.py
"""
Maintenance CLI for GoalCore.

Commands:
- ``recalculate --vision ID``: rebuild every cache row of a vision
- ``link --vision ID``: attach unparented KPIs to their enclosing parents
- ``stale --vision ID``: list zombie goals
- ``tree --vision ID``: print the progress tree
- ``serve``: run the HTTP API with uvicorn

Available as the ``goalcore`` console script.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, List, Optional

from .config import GoalCoreConfig, load_config
from .exceptions import GoalCoreError
from .logging_config import configure_logging, log_display
from .models import KpiTreeNode, ProgressStatus
from .service import ProgressService

logger = logging.getLogger(__name__)


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================

class OutputFormatter:
    """Formats CLI output as colored text or JSON."""

    def __init__(self, use_color: bool = True, json_output: bool = False):
        self.use_color = use_color and sys.stdout.isatty()
        self.json_output = json_output

    def _color(self, text: str, color: str) -> str:
        if not self.use_color:
            return text
        colors = {
            'green': '\033[92m',
            'red': '\033[91m',
            'yellow': '\033[93m',
            'blue': '\033[94m',
            'bold': '\033[1m',
            'reset': '\033[0m'
        }
        return f"{colors.get(color, '')}{text}{colors['reset']}"

    def success(self, text: str) -> str:
        return self._color(f"✓ {text}", 'green')

    def error(self, text: str) -> str:
        return self._color(f"✗ {text}", 'red')

    def warning(self, text: str) -> str:
        return self._color(f"⚠ {text}", 'yellow')

    def header(self, text: str) -> str:
        return self._color(text, 'bold')

    def format_status(self, status: ProgressStatus) -> str:
        color = {
            ProgressStatus.COMPLETED: 'green',
            ProgressStatus.IN_PROGRESS: 'blue',
            ProgressStatus.AT_RISK: 'red',
        }.get(status, 'yellow')
        return self._color(status.value, color)

    def dump(self, payload: Any) -> None:
        print(json.dumps(payload, indent=2, default=str))


def render_tree(nodes: List[KpiTreeNode], formatter: OutputFormatter, depth: int = 0) -> List[str]:
    """One line per node, children indented under their parent."""
    lines = []
    for node in nodes:
        lines.append(
            f"{'  ' * depth}- [{node.level.value}] {node.title}: "
            f"{node.progress:.1f}% {formatter.format_status(node.status)} "
            f"({node.completed_child_count}/{node.child_count})"
        )
        lines.extend(render_tree(node.children, formatter, depth + 1))
    return lines


# =============================================================================
# CLI COMMANDS
# =============================================================================

async def _with_service(config: GoalCoreConfig, action: Callable[[ProgressService], Awaitable[int]]) -> int:
    async with await ProgressService.create(config=config) as service:
        return await action(service)


def cmd_recalculate(config: GoalCoreConfig, vision_id: str, formatter: OutputFormatter) -> int:
    async def action(service: ProgressService) -> int:
        rows = await service.recalculate_vision(vision_id)
        if formatter.json_output:
            formatter.dump([row.model_dump(mode="json") for row in rows])
        else:
            print(formatter.success(f"Recalculated {len(rows)} KPI(s) in vision '{vision_id}'"))
        log_display(logger, logging.INFO, f"Vision '{vision_id}' cache rebuilt ({len(rows)} rows).")
        return 0
    return asyncio.run(_with_service(config, action))


def cmd_link(config: GoalCoreConfig, vision_id: str, formatter: OutputFormatter) -> int:
    async def action(service: ProgressService) -> int:
        linked = await service.link_vision_hierarchy(vision_id)
        if formatter.json_output:
            formatter.dump([{"child_id": c, "parent_id": p} for c, p in linked])
            return 0
        if not linked:
            print(formatter.warning("No unparented KPIs could be linked"))
            return 0
        print(formatter.success(f"Linked {len(linked)} KPI(s)"))
        for child_id, parent_id in linked:
            print(f"  {child_id} -> {parent_id}")
        return 0
    return asyncio.run(_with_service(config, action))


def cmd_stale(config: GoalCoreConfig, vision_id: str, threshold_days: Optional[int],
              formatter: OutputFormatter) -> int:
    async def action(service: ProgressService) -> int:
        goals = await service.get_stale_goals(vision_id, threshold_days=threshold_days)
        if formatter.json_output:
            formatter.dump([g.model_dump(mode="json") for g in goals])
            return 0
        print(formatter.header(f"Stale goals in vision '{vision_id}'"))
        print("=" * 45)
        if not goals:
            print(formatter.success("Nothing stale"))
        for goal in goals:
            print(formatter.warning(
                f"[{goal.level.value}] {goal.title}: {goal.days_since_activity} day(s) idle, "
                f"{goal.progress:.1f}%"
            ))
        return 0
    return asyncio.run(_with_service(config, action))


def cmd_tree(config: GoalCoreConfig, vision_id: str, formatter: OutputFormatter) -> int:
    async def action(service: ProgressService) -> int:
        tree = await service.get_tree(vision_id)
        if formatter.json_output:
            formatter.dump(tree.model_dump(mode="json"))
            return 0
        vision = await service.get_vision(vision_id)
        print(formatter.header(f"{vision.title} ({tree.total_kpis} KPIs)"))
        print("=" * 45)
        for line in render_tree(tree.tree, formatter):
            print(line)
        return 0
    return asyncio.run(_with_service(config, action))


def cmd_serve(config: GoalCoreConfig, host: Optional[str], port: Optional[int]) -> int:
    import uvicorn

    from .api_server.main import create_app

    host = host or config.api.host
    port = port or config.api.port
    log_display(logger, logging.INFO, f"Serving GoalCore API on http://{host}:{port}")
    uvicorn.run(create_app(config=config), host=host, port=port, log_level=config.log_level.lower())
    return 0


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the goalcore CLI."""
    parser = argparse.ArgumentParser(
        prog="goalcore",
        description="GoalCore progress maintenance CLI"
    )
    parser.add_argument("--config", "-c", help="Path to configuration file", default=None)
    parser.add_argument("--json", help="Output in JSON format", action="store_true")
    parser.add_argument("--no-color", help="Disable colored output", action="store_true")
    parser.add_argument("--verbose", "-v", help="Log to the console at DEBUG level", action="store_true")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("recalculate", "Rebuild every cache row of a vision"),
        ("link", "Link unparented KPIs to their enclosing parents"),
        ("tree", "Print a vision's progress tree"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--vision", required=True, help="Vision ID")

    stale_parser = subparsers.add_parser("stale", help="List stale goals")
    stale_parser.add_argument("--vision", required=True, help="Vision ID")
    stale_parser.add_argument("--days", type=int, default=None, help="Stale threshold in days")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed = parser.parse_args(args)
    formatter = OutputFormatter(use_color=not parsed.no_color, json_output=parsed.json)

    if parsed.command is None:
        parser.print_help()
        return 0

    try:
        overrides = {"logging.console_enabled": True, "logging.console_level": "DEBUG"} if parsed.verbose else None
        config = load_config(config_file_path=parsed.config, overrides=overrides)
        configure_logging(config.logging)

        if parsed.command == "recalculate":
            return cmd_recalculate(config, parsed.vision, formatter)
        elif parsed.command == "link":
            return cmd_link(config, parsed.vision, formatter)
        elif parsed.command == "stale":
            return cmd_stale(config, parsed.vision, parsed.days, formatter)
        elif parsed.command == "tree":
            return cmd_tree(config, parsed.vision, formatter)
        elif parsed.command == "serve":
            return cmd_serve(config, parsed.host, parsed.port)
    except GoalCoreError as e:
        logger.debug("Command failed", exc_info=True)
        print(formatter.error(str(e)), file=sys.stderr)
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
