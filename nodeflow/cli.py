"""CLI entry point for nodeflow.

Commands:
- nodeflow validate: Check a workflow against the node definition library
- nodeflow run: Execute a workflow in the terminal
- nodeflow serve: Serve a workflow through the HTTP studio API
- nodeflow version: Show version information
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

import click
import yaml
from rich.console import Console
from rich.markup import escape

from nodeflow.cli_ui.input_prompt import TerminalInputResolver
from nodeflow.cli_ui.status_renderer import StatusTableRenderer, TerminalGraphRenderer
from nodeflow.core.config import EngineConfig, load_config
from nodeflow.core.definitions import DefinitionRegistry
from nodeflow.core.engine import WorkflowEngine
from nodeflow.core.errors import EngineError
from nodeflow.core.executors import default_registry
from nodeflow.core.graph_schema import WorkflowGraph
from nodeflow.core.models import NodeStatus, RunStatus, StatusSnapshot

console = Console()


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


def _load_settings(config_path: str | None, log_level: str | None) -> EngineConfig:
    try:
        config = load_config(Path(config_path) if config_path else None)
    except EngineError as e:
        _fail(str(e))
    level = (log_level or config.log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.WARNING), format="%(levelname)s %(name)s: %(message)s")
    return config


def _load_workflow(
    workflow_file: str, definitions_file: str | None, config: EngineConfig
) -> tuple[WorkflowGraph, DefinitionRegistry]:
    try:
        workflow = WorkflowGraph.from_yaml(Path(workflow_file))
        definitions_path = Path(definitions_file) if definitions_file else config.definitions_path
        registry = DefinitionRegistry.from_yaml(definitions_path) if definitions_path else DefinitionRegistry()
    except EngineError as e:
        _fail(str(e))
    return workflow, registry


def _check_graph(workflow: WorkflowGraph, registry: DefinitionRegistry, executor_refs: list[str]) -> bool:
    errors = workflow.validate_graph(definitions=registry, executor_refs=executor_refs)
    if errors:
        console.print("[red bold]Validation errors:[/]")
        for error in errors:
            # SECURITY: escape error messages that may contain user data
            console.print(f"  [red]• {escape(str(error))}[/]")
        return False
    return True


def parse_presets(assignments: tuple[str, ...]) -> dict[str, dict[str, Any]]:
    """
    Parse ``node.field=value`` assignments.

    Values are parsed as YAML scalars/flow collections, so ``3`` is a number
    and ``[a, b]`` a list; anything else stays a string.
    """
    presets: dict[str, dict[str, Any]] = {}
    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        node_id, dot, field = key.partition(".")
        if not sep or not dot or not node_id or not field:
            raise click.BadParameter(f"Expected node.field=value, got '{assignment}'", param_hint="--set")
        try:
            value = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError:
            value = raw
        presets.setdefault(node_id, {})[field] = value
    return presets


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """nodeflow - dependency-driven workflow execution engine.

    Runs node graphs with concurrent branches, user-supplied inputs and
    run/pause/stop control.
    """
    pass


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True))
@click.option("--definitions", "-d", type=click.Path(exists=True), help="Node definition library (YAML)")
@click.option("--config", "config_path", type=click.Path(), help="Config file")
def validate(workflow_file: str, definitions: str | None, config_path: str | None) -> None:
    """Validate a workflow graph and show its execution levels."""
    config = _load_settings(config_path, None)
    workflow, registry = _load_workflow(workflow_file, definitions, config)

    renderer = TerminalGraphRenderer(console)
    console.print(renderer.render_graph(workflow))
    console.print()
    console.print(f"[bold]Nodes:[/] {len(workflow.nodes)}")
    console.print(f"[bold]Links:[/] {len(workflow.links)}")

    if not _check_graph(workflow, registry, default_registry().names()):
        sys.exit(1)
    console.print("\n[green]✓ Graph is valid[/]")


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True))
@click.option("--definitions", "-d", type=click.Path(exists=True), help="Node definition library (YAML)")
@click.option("--set", "assignments", multiple=True, help="Input value as node.field=value")
@click.option("--no-input", is_flag=True, help="Never prompt; missing required inputs fail the node")
@click.option("--config", "config_path", type=click.Path(), help="Config file")
@click.option("--log-level", help="Override the configured log level")
def run(
    workflow_file: str,
    definitions: str | None,
    assignments: tuple[str, ...],
    no_input: bool,
    config_path: str | None,
    log_level: str | None,
) -> None:
    """Execute a workflow graph in the terminal."""
    config = _load_settings(config_path, log_level)
    workflow, registry = _load_workflow(workflow_file, definitions, config)
    executors = default_registry(delay=config.executor_delay)

    if not _check_graph(workflow, registry, executors.names()):
        sys.exit(1)
    presets = parse_presets(assignments)

    resolver = TerminalInputResolver(console, presets=presets, interactive=not no_input)
    engine = WorkflowEngine(workflow, registry, executors, input_resolver=resolver)

    console.print(f"[bold]Running workflow:[/bold] {escape(workflow.name)}")
    snapshot = asyncio.run(run_to_completion(engine))

    console.print(StatusTableRenderer(console).render_status_table(snapshot))
    if snapshot.pending_inputs:
        console.print(StatusTableRenderer(console).render_pending_inputs(snapshot.pending_inputs))

    unfinished = [view.node_id for view in snapshot.nodes if view.status != NodeStatus.DONE]
    if unfinished:
        console.print(f"[red]Workflow ended with unfinished nodes:[/red] {escape(', '.join(unfinished))}")
        sys.exit(1)
    console.print("[green]Workflow completed successfully[/green]")


async def run_to_completion(engine: WorkflowEngine) -> StatusSnapshot:
    """
    Drive a run until nothing more can happen without outside help.

    WAITING nodes are retried through the engine's input resolver once; a
    node whose request is abandoned is not asked again. A run paused by a
    failure is left paused.
    """
    await engine.run()
    abandoned: set[str] = set()
    while True:
        await engine.join()
        if engine.status != RunStatus.PROGRESSING:
            break
        waiting = [node_id for node_id in engine.waiting_nodes() if node_id not in abandoned]
        if not waiting:
            break
        for node_id in waiting:
            if not await engine.retry_input(node_id):
                abandoned.add(node_id)
    return engine.snapshot()


@main.command()
@click.argument("workflow_file", type=click.Path(exists=True))
@click.option("--definitions", "-d", type=click.Path(exists=True), help="Node definition library (YAML)")
@click.option("--host", help="Bind address (default from config)")
@click.option("--port", type=int, help="Port (default from config)")
@click.option("--config", "config_path", type=click.Path(), help="Config file")
def serve(
    workflow_file: str,
    definitions: str | None,
    host: str | None,
    port: int | None,
    config_path: str | None,
) -> None:
    """Serve a workflow through the studio HTTP API."""
    import uvicorn

    from nodeflow.core.interaction import InputBridge

    config = _load_settings(config_path, None)
    workflow, registry = _load_workflow(workflow_file, definitions, config)
    executors = default_registry(delay=config.executor_delay)
    if not _check_graph(workflow, registry, executors.names()):
        sys.exit(1)

    host = host or config.studio_host
    port = port or config.studio_port
    # The server derives its allowed origins from the port at import
    os.environ["NODEFLOW_STUDIO_PORT"] = str(port)
    from nodeflow.studio.server import app, set_engine

    bridge = InputBridge()
    set_engine(WorkflowEngine(workflow, registry, executors, input_resolver=bridge), bridge)

    console.print(f"[bold]Studio API[/bold] on http://{host}:{port}/api/status")
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())


@main.command()
def version() -> None:
    """Show version information."""
    from nodeflow import __version__

    console.print(f"nodeflow v{__version__}")
    console.print("Dependency-driven workflow execution engine")


if __name__ == "__main__":
    main()
