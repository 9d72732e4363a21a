"""Execution planning: target selection and topological layering."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from manifold.errors import ConfigurationError, CycleError

from .discovery import DependencyGraph
from .visualize import to_mermaid


@dataclass
class ExecutionPlan:
    """Ordered stages of mutually independent models."""

    stages: list[list[str]]
    graph: DependencyGraph | None = field(default=None, repr=False, compare=False)

    @property
    def total_models(self) -> int:
        return sum(len(stage) for stage in self.stages)

    @property
    def models(self) -> list[str]:
        return [name for stage in self.stages for name in stage]

    def __str__(self) -> str:
        return "\n".join(
            f"Stage {i}: {', '.join(stage)}" for i, stage in enumerate(self.stages, 1)
        )

    def to_mermaid(self) -> str:
        if self.graph is None:
            raise ValueError("Plan was built without a graph")
        return to_mermaid(self.graph, self.models)


def select_models(
    graph: DependencyGraph,
    targets: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
) -> list[str]:
    """Resolve targets and excludes to the set of models to run.

    With targets, the selection is the targets plus everything upstream of
    them; without, every model in the graph. Excluded models are removed
    afterwards. Returns names in discovery order.
    """
    targets = list(targets or [])
    exclude = list(exclude or [])

    unknown = [n for n in [*targets, *exclude] if not graph.has_model(n)]
    if unknown:
        available = ", ".join(m.name for m in graph.models())
        raise ConfigurationError(
            f"Unknown model(s): {', '.join(unknown)}. Available models: {available}"
        )

    selected = graph.ancestors(targets) if targets else {m.name for m in graph.models()}
    excluded = set(exclude)
    selected -= excluded

    for name in sorted(selected, key=graph.model_index):
        broken = [d for d in graph.model_dependencies(name) if d in excluded]
        if broken:
            raise ConfigurationError(
                f"Cannot exclude {', '.join(broken)}: model '{name}' depends on it"
            )

    return [m.name for m in graph.models() if m.name in selected]


def build_plan(graph: DependencyGraph, names: Iterable[str] | None = None) -> ExecutionPlan:
    """Layer models into stages with Kahn's algorithm.

    A model's stage is strictly later than the stages of all models it reads
    from. Collections are never scheduled. Within a stage models keep
    discovery order.
    """
    if names is None:
        members = set(graph.model_indices())
    else:
        members = {graph.model_index(n) for n in names}

    in_degree = {
        idx: sum(1 for d in graph.dependencies[idx] if d in members)
        for idx in members
    }
    frontier = sorted(idx for idx, deg in in_degree.items() if deg == 0)
    stages: list[list[str]] = []
    placed = 0

    while frontier:
        stages.append([graph.nodes[i].name for i in frontier])
        placed += len(frontier)
        following: list[int] = []
        for idx in frontier:
            for dependent in graph.dependents[idx]:
                if dependent not in members:
                    continue
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    following.append(dependent)
        frontier = sorted(following)

    if placed != len(members):
        stuck = sorted(idx for idx, deg in in_degree.items() if deg > 0)
        names_left = [graph.nodes[i].name for i in stuck]
        raise CycleError(
            f"Cannot order models, circular dependency among: {', '.join(names_left)}",
            cycles=[names_left],
        )

    return ExecutionPlan(stages=stages, graph=graph)
