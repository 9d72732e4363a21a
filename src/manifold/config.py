"""Project configuration: project.yml parsing and defaults."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from manifold.errors import ConfigurationError


class MongoConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")
    uri: str = "mongodb://localhost:27017"
    database: str = "manifold"
    server_selection_timeout_ms: int = 30000
    app_name: str | None = "manifold"


class RunConfig(BaseModel):
    """Defaults for `manifold run`."""
    model_config = ConfigDict(extra="ignore")

    max_concurrency: int = Field(default=4, ge=1)
    exclude: list[str] = Field(default_factory=list)


class EnvironmentConfig(BaseModel):
    """A single environment override (e.g. dev, prod)."""
    model_config = ConfigDict(extra="ignore")

    mongodb: dict[str, Any] = Field(default_factory=dict)  # {"database": "analytics_dev"}
    run: dict[str, Any] = Field(default_factory=dict)


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    name: str = "default"
    description: str = ""
    models: str | None = None  # "module:attribute" pointing at a Project
    mongodb: MongoConfig = Field(default_factory=MongoConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    environments: dict[str, EnvironmentConfig] = Field(default_factory=dict)
    active_environment: str | None = None
    project_dir: Path = Field(default_factory=Path.cwd)
    _raw: dict[str, Any] = PrivateAttr(default_factory=dict)


_ENV_REF = re.compile(r"\$\{(\w+)\}")


def _expand_env_vars(value: Any) -> Any:
    """Substitute ``${NAME}`` placeholders throughout a parsed project.yml tree.

    Placeholders naming unset variables are left unchanged.
    """
    if isinstance(value, dict):
        return {key: _expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    if not isinstance(value, str):
        return value
    return _ENV_REF.sub(lambda match: os.environ.get(match.group(1), match.group(0)), value)


def load_env(project_dir: Path) -> dict[str, str]:
    """Read ``KEY=value`` pairs from the project's .env into os.environ.

    Values from the file override the existing environment. Returns the
    variables that were set.
    """
    env_path = project_dir / ".env"
    if not env_path.exists():
        return {}

    loaded: dict[str, str] = {}
    for raw_line in env_path.read_text().splitlines():
        key, sep, value = raw_line.strip().partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] in "\"'" and value[-1] == value[0]:
            value = value[1:-1]
        os.environ[key] = value
        loaded[key] = value
    return loaded


def load_project(project_dir: Path | None = None, env: str | None = None) -> ProjectConfig:
    """Load project.yml from the given directory (or cwd).

    Args:
        project_dir: Path to the project directory.
        env: Environment name to activate (e.g. "dev", "prod").
             If environments are defined and env is None, defaults to "dev".
    """
    project_dir = Path(project_dir) if project_dir else Path.cwd()
    config_path = project_dir / "project.yml"

    # Load .env into environment before expanding vars
    load_env(project_dir)

    if not config_path.exists():
        return ProjectConfig(project_dir=project_dir)

    raw = yaml.safe_load(config_path.read_text()) or {}
    raw = _expand_env_vars(raw)

    try:
        mongodb_raw = dict(raw.get("mongodb") or {})
        run_raw = dict(raw.get("run") or {})

        # Environments
        environments: dict[str, EnvironmentConfig] = {}
        for env_name, env_raw in (raw.get("environments") or {}).items():
            env_raw = env_raw or {}
            environments[env_name] = EnvironmentConfig(
                mongodb=env_raw.get("mongodb", {}),
                run=env_raw.get("run", {}),
            )

        # Apply environment overrides
        active_env = env
        if environments and active_env is None:
            active_env = "dev" if "dev" in environments else None
        if active_env and active_env not in environments and environments:
            raise ConfigurationError(
                f"Unknown environment '{active_env}'. Available: {', '.join(environments)}"
            )
        if active_env and active_env in environments:
            env_cfg = environments[active_env]
            mongodb_raw.update(env_cfg.mongodb)
            run_raw.update(env_cfg.run)

        config = ProjectConfig(
            name=raw.get("name", project_dir.name),
            description=raw.get("description", ""),
            models=raw.get("models"),
            mongodb=MongoConfig(**mongodb_raw),
            run=RunConfig(**run_raw),
            environments=environments,
            active_environment=active_env if active_env and active_env in environments else None,
            project_dir=project_dir,
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {config_path}: {e}") from e

    config._raw = raw
    return config

