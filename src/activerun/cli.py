"""Command-line interface for activerun."""

from __future__ import annotations

import argparse
import asyncio
import importlib
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table

from activerun import __version__

if TYPE_CHECKING:
    from activerun.config.schema import Config
    from activerun.session.loop import DecideFn
    from activerun.session.protocols import ProgressSnapshot

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLE = {
    "pending": "dim",
    "in_progress": "yellow",
    "completed": "green",
    "error": "red",
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="activerun",
        description="Run tool-using agent requests against MCP tool providers",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase log verbosity (can be repeated)",
    )
    parser.add_argument(
        "--config-root",
        type=Path,
        help="Project directory holding .activerun/config.yaml",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    serve_parser = subparsers.add_parser("serve", help="Start the engine and the remote API")
    serve_parser.add_argument(
        "--decider",
        required=True,
        help="Decision function as module:function",
    )
    serve_parser.add_argument("--host", help="Interface to bind (default from config)")
    serve_parser.add_argument("--port", type=int, help="Port to listen on (default from config)")

    subparsers.add_parser("tools", help="Connect providers, list their tools and exit")

    run_parser = subparsers.add_parser("run", help="Run one request and print its progress")
    run_parser.add_argument("request", help="The request text")
    run_parser.add_argument(
        "--decider",
        required=True,
        help="Decision function as module:function",
    )
    run_parser.add_argument(
        "--max-iterations",
        type=int,
        help="Override the configured iteration limit",
    )

    return parser


def load_decider(target: str) -> DecideFn:
    """Import a decision function from ``module:function``.

    Raises:
        ValueError: If the target is malformed or does not name a callable.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected module:function, got '{target}'")

    module = importlib.import_module(module_name)
    obj: Any = module
    for part in attr.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            raise ValueError(f"'{attr}' not found in module '{module_name}'")
    if not callable(obj):
        raise ValueError(f"'{target}' is not callable")
    return obj  # type: ignore[no-any-return]


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    from activerun.config import load_config
    from activerun.logging import setup_logging

    root = str(parsed.config_root) if parsed.config_root else None
    config = load_config(root=root)
    setup_logging(config.logging, parsed.verbose)

    if parsed.command == "tools":
        return asyncio.run(_list_tools(config))

    try:
        decide = load_decider(parsed.decider)
    except (ImportError, ValueError) as e:
        err_console.print(f"[red]Cannot load decider:[/red] {e}")
        return 2

    if parsed.command == "serve":
        return asyncio.run(_serve(config, decide, root, parsed.host, parsed.port))
    if parsed.command == "run":
        return asyncio.run(_run_once(config, decide, parsed.request, parsed.max_iterations))

    parser.print_help()
    return 1


async def _list_tools(config: Config) -> int:
    from activerun.mcp.registry import ToolRegistry

    registry = ToolRegistry()
    try:
        catalog = await registry.start(config.providers)

        providers = Table(title="Providers")
        providers.add_column("Name")
        providers.add_column("Transport")
        providers.add_column("Status")
        providers.add_column("Tools", justify="right")
        providers.add_column("Error")
        for status in registry.provider_status():
            providers.add_row(
                status["name"],
                status["transport"] or "-",
                "disabled" if status["disabled"] else status["status"],
                str(status["tools"]),
                status["error"] or "",
            )
        console.print(providers)

        tools = Table(title=f"Tools ({len(catalog)})")
        tools.add_column("Name", style="cyan")
        tools.add_column("Description")
        for tool in catalog.to_list():
            tools.add_row(tool["name"], tool["description"])
        console.print(tools)
    finally:
        await registry.close()
    return 0


async def _serve(
    config: Config,
    decide: DecideFn,
    root: str | None,
    host: str | None,
    port: int | None,
) -> int:
    from activerun.config import ConfigWatcher
    from activerun.engine import Engine
    from activerun.server import start_server, stop_server, wait_server

    async with Engine(decide, config) as engine, ConfigWatcher(root=root):
        await start_server(
            engine,
            host=host or config.server.host,
            port=port or config.server.port,
        )
        console.print(
            f"[green]activerun[/green] serving {len(engine.registry.catalog)} tools "
            f"on http://{host or config.server.host}:{port or config.server.port}"
        )
        try:
            await wait_server()
        finally:
            await stop_server()
    return 0


def _print_snapshot(snapshot: ProgressSnapshot, seen: dict[str, str]) -> None:
    for step in snapshot.recent_steps:
        status = step.status.value
        if seen.get(step.id) == status:
            continue
        seen[step.id] = status
        style = _STATUS_STYLE.get(status, "")
        console.print(f"[{style}]{status:>11}[/{style}] {step.title}")


async def _run_once(
    config: Config,
    decide: DecideFn,
    request: str,
    max_iterations: int | None,
) -> int:
    from activerun.engine import Engine

    async with Engine(decide, config) as engine:
        seen: dict[str, str] = {}
        with engine.broadcaster.subscribe() as subscription:
            task = asyncio.create_task(engine.run(request, max_iterations=max_iterations))
            async for snapshot in subscription:
                _print_snapshot(snapshot, seen)
                if snapshot.is_complete:
                    break
            run = await task

    if run.final_content:
        console.print()
        console.print(run.final_content)
    return 0 if run.status.value == "completed" else 1
