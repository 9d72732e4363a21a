"""Model orchestration engine.

Declares models over MongoDB collections, resolves their dependency graph,
validates and plans it, and executes it stage by stage.

This package re-exports all public symbols:
    from manifold.engine import Project, Model, Collection, MaterializeConfig, ...
"""

from __future__ import annotations

# Sources and models
from .sources import (
    Collection,
    Source,
    SourceKind,
)
from .pipeline import (
    EmbeddedReference,
    Pipeline,
)
from .model import (
    CompiledProgram,
    MaterializeConfig,
    MergeOptions,
    Mode,
    Model,
    TimeSeriesOptions,
)

# Discovery and graph
from .discovery import (
    DependencyGraph,
    build_graph,
    discover_dependencies,
)

# Validation and planning
from .analysis import (
    ValidationIssue,
    ValidationResult,
    validate,
)
from .planner import (
    ExecutionPlan,
    build_plan,
    select_models,
)
from .visualize import to_mermaid

# Execution
from .execution import (
    Executor,
    ModelFailure,
    ModelRunStats,
    RunOptions,
    RunResult,
    run_models,
)
from .store import (
    ModelStore,
    MongoStore,
    connect,
)
from .project import Project

__all__ = [
    # Sources and models
    "Collection",
    "CompiledProgram",
    "EmbeddedReference",
    "MaterializeConfig",
    "MergeOptions",
    "Mode",
    "Model",
    "Pipeline",
    "Source",
    "SourceKind",
    "TimeSeriesOptions",
    # Graph
    "DependencyGraph",
    "build_graph",
    "discover_dependencies",
    # Validation and planning
    "ExecutionPlan",
    "ValidationIssue",
    "ValidationResult",
    "build_plan",
    "select_models",
    "to_mermaid",
    "validate",
    # Execution
    "Executor",
    "ModelFailure",
    "ModelRunStats",
    "ModelStore",
    "MongoStore",
    "Project",
    "RunOptions",
    "RunResult",
    "connect",
    "run_models",
]
