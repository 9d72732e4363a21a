"""Pipeline commands: run, plan, validate, graph, models."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.table import Table

from manifold.cli import _load_config, _load_models, _resolve_project, app, console

ProjectOption = Annotated[Optional[Path], typer.Option("--project", "-p", help="Project directory (default: current dir)")]
EnvOption = Annotated[Optional[str], typer.Option("--env", "-e", help="Environment to use (e.g. dev, prod)")]

logger = logging.getLogger("manifold.cli")


def _open_store(config):
    """Build a MongoStore from the project's mongodb settings."""
    from manifold.engine import MongoStore, connect

    logger.debug("Connecting to %s, database %s", config.mongodb.uri, config.mongodb.database)
    client = connect(
        config.mongodb.uri,
        app_name=config.mongodb.app_name,
        server_selection_timeout_ms=config.mongodb.server_selection_timeout_ms,
    )
    return MongoStore(client, config.mongodb.database)


async def _execute(project, config, options):
    # The async client binds to the running loop, so create it in here
    store = _open_store(config)
    try:
        return await project.run(store, options)
    finally:
        await store.close()


@app.command()
def run(
    targets: Annotated[Optional[list[str]], typer.Argument(help="Models to run, with their upstream models (default: all)")] = None,
    exclude: Annotated[Optional[list[str]], typer.Option("--exclude", "-x", help="Model to leave out (repeatable)")] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show the plan without touching the database")] = False,
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", help="Max models running at once within a stage")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
    env: EnvOption = None,
    project_dir: ProjectOption = None,
) -> None:
    """Materialize models in dependency order.

    Models in the same stage run concurrently. When a model fails, everything
    downstream of it is skipped and independent branches keep running.
    """
    from manifold import setup_logging
    from manifold.engine import RunOptions
    from manifold.errors import ManifoldError

    if verbose:
        setup_logging("DEBUG")

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    project = _load_models(config)

    excluded = [*config.run.exclude, *(exclude or [])]

    def on_complete(name, stats):
        console.print(f"  [green]done[/green]  [bold]{name}[/bold] ({stats.duration_ms}ms)")

    def on_error(name, exc):
        console.print(f"  [red]fail[/red]  [bold]{name}[/bold]: {str(exc) or type(exc).__name__}")

    def on_skip(name, blocked_by):
        console.print(f"  [dim]skip[/dim]  [bold]{name}[/bold] (upstream failure: {', '.join(blocked_by)})")

    options = RunOptions(
        targets=targets or None,
        exclude=excluded or None,
        dry_run=dry_run,
        max_concurrency=workers or config.run.max_concurrency,
        on_model_complete=on_complete,
        on_model_error=on_error,
        on_model_skip=on_skip,
    )

    env_label = f" [dim](env={config.active_environment})[/dim]" if config.active_environment else ""
    try:
        if dry_run:
            execution_plan = project.plan(targets=options.targets, exclude=options.exclude)
            console.print(f"[bold]Dry run[/bold]{env_label}: {execution_plan.total_models} models in {len(execution_plan.stages)} stages")
            for line in str(execution_plan).splitlines():
                console.print(f"  {line}", markup=False)
            asyncio.run(project.run(None, options))
            return

        console.print(f"[bold]Run[/bold]{env_label} [dim]({config.mongodb.database})[/dim]:")
        result = asyncio.run(_execute(project, config, options))
    except ManifoldError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print()
    console.print(
        f"  {len(result.models_run)} succeeded, {len(result.models_failed)} failed, "
        f"{len(result.models_skipped)} skipped ({result.total_duration_ms}ms)"
    )
    if not result.success:
        raise typer.Exit(1)


@app.command()
def plan(
    targets: Annotated[Optional[list[str]], typer.Argument(help="Models to plan, with their upstream models (default: all)")] = None,
    exclude: Annotated[Optional[list[str]], typer.Option("--exclude", "-x", help="Model to leave out (repeatable)")] = None,
    mermaid: Annotated[bool, typer.Option("--mermaid", help="Print the planned subgraph as a Mermaid diagram")] = False,
    env: EnvOption = None,
    project_dir: ProjectOption = None,
) -> None:
    """Show execution stages without running anything."""
    from manifold.errors import ManifoldError

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    project = _load_models(config)

    excluded = [*config.run.exclude, *(exclude or [])]
    try:
        execution_plan = project.plan(targets=targets or None, exclude=excluded or None)
    except ManifoldError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if mermaid:
        typer.echo(execution_plan.to_mermaid())
        return
    console.print(f"[bold]{project.name}[/bold]: {execution_plan.total_models} models in {len(execution_plan.stages)} stages")
    for line in str(execution_plan).splitlines():
        console.print(f"  {line}", markup=False)


@app.command()
def validate(
    env: EnvOption = None,
    project_dir: ProjectOption = None,
) -> None:
    """Check the model graph for cycles and disconnected groups."""
    from manifold.errors import ManifoldError

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    project = _load_models(config)

    try:
        result = project.validate()
        model_count = len(project.get_models())
    except ManifoldError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    for issue in result.errors:
        console.print(f"  [red]error[/red]  {issue.message}")
    for issue in result.warnings:
        console.print(f"  [yellow]warn[/yellow]   {issue.message}")

    if not result.valid:
        console.print(f"\n[red]Invalid: {len(result.errors)} error(s)[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Valid[/green]: {model_count} models, {len(result.warnings)} warning(s)")


@app.command()
def graph(
    env: EnvOption = None,
    project_dir: ProjectOption = None,
) -> None:
    """Print the model dependency graph as a Mermaid diagram."""
    from manifold.errors import ManifoldError

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    project = _load_models(config)

    try:
        typer.echo(project.to_mermaid())
    except ManifoldError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def models(
    env: EnvOption = None,
    project_dir: ProjectOption = None,
) -> None:
    """List declared and discovered models."""
    from manifold.errors import ManifoldError

    project_dir = _resolve_project(project_dir)
    config = _load_config(project_dir, env)
    project = _load_models(config)

    try:
        all_models = project.get_models()
        dependencies = {m.name: project.graph.model_dependencies(m.name) for m in all_models}
    except ManifoldError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not all_models:
        console.print("[yellow]No models declared.[/yellow]")
        return

    table = Table(title=f"Models ({project.name})")
    table.add_column("Model", style="bold")
    table.add_column("Source")
    table.add_column("Materialized")
    table.add_column("Output")
    table.add_column("Depends On")
    for m in all_models:
        mat = m.materialize
        kind = mat.kind if mat.kind == "view" else f"collection ({getattr(mat.mode, 'value', 'merge')})"
        output = f"{mat.database}.{m.output_name()}" if mat.database else m.output_name()
        table.add_row(
            m.name,
            m.source_name(),
            kind,
            output,
            ", ".join(dependencies[m.name]) or "-",
        )
    console.print(table)
