"""CLI interface for manifold.

The Typer app and shared helpers live here; each module registers its commands.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

app = typer.Typer(
    name="manifold",
    help="Declare MongoDB aggregation models and materialize them in dependency order.",
    no_args_is_help=True,
)
console = Console()


def _resolve_project(project_dir: Path | None = None) -> Path:
    project_dir = project_dir or Path.cwd()
    if not (project_dir / "project.yml").exists():
        console.print(f"[red]No project.yml found in {project_dir}[/red]")
        raise typer.Exit(1)
    return project_dir


def _load_config(project_dir: Path, env: str | None = None):
    """Load project config with optional environment override."""
    from manifold.config import load_project
    from manifold.errors import ManifoldError

    try:
        return load_project(project_dir, env=env)
    except ManifoldError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _load_models(config):
    """Import the Project named by the config's models entrypoint."""
    from manifold.errors import ManifoldError
    from manifold.loader import load_project_object

    if not config.models:
        console.print("[red]project.yml has no 'models' entrypoint (e.g. models: models:project)[/red]")
        raise typer.Exit(1)
    try:
        return load_project_object(config.models, config.project_dir)
    except ManifoldError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# Import submodules so they register their commands on `app`.
from manifold.cli import pipeline  # noqa: E402, F401
