"""Dependency discovery and graph building."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from manifold.errors import ConfigurationError

from .model import Model, is_model
from .pipeline import Pipeline
from .sources import Source, SourceKind, source_key

logger = logging.getLogger("manifold.engine")


def _record(found: dict[tuple[SourceKind, str], Source], source: Source) -> None:
    key = source_key(source)
    existing = found.setdefault(key, source)
    if existing is not source and source.source_kind is SourceKind.MODEL:
        raise ConfigurationError(
            f"Duplicate model name '{source.name}': two different models share this name"
        )


def _walk_references(pipeline: Pipeline, found: dict[tuple[SourceKind, str], Source]) -> None:
    for ref in pipeline.embedded_references():
        _record(found, ref.source)
        if ref.sub_pipeline is not None:
            _walk_references(ref.sub_pipeline, found)


def discover_dependencies(model: Model) -> list[Source]:
    """Return every source a model reads from directly.

    That is its ``from_`` source plus each collection or model referenced by a
    $lookup / $unionWith, including references made inside nested
    sub-pipelines. Order: ``from_`` first, then references in pipeline order.
    """
    found: dict[tuple[SourceKind, str], Source] = {}
    _record(found, model.source)
    _walk_references(model.transformation, found)
    return list(found.values())


@dataclass
class DependencyGraph:
    """Arena of discovered sources with index-based adjacency.

    ``dependencies[i]`` lists the node indices node ``i`` reads from,
    ``dependents[i]`` the indices reading from node ``i``. Node indices follow
    discovery order: declared models first, then sources as they are reached.
    """

    nodes: list[Source] = field(default_factory=list)
    index: dict[tuple[SourceKind, str], int] = field(default_factory=dict)
    dependencies: list[list[int]] = field(default_factory=list)
    dependents: list[list[int]] = field(default_factory=list)
    declared: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    def _add(self, source: Source) -> tuple[int, bool]:
        key = source_key(source)
        existing = self.index.get(key)
        if existing is not None:
            if self.nodes[existing] is not source and source.source_kind is SourceKind.MODEL:
                raise ConfigurationError(
                    f"Duplicate model name '{source.name}': two different models share this name"
                )
            return existing, False
        idx = len(self.nodes)
        self.nodes.append(source)
        self.index[key] = idx
        self.dependencies.append([])
        self.dependents.append([])
        return idx, True

    def _link(self, dependent: int, dependency: int) -> None:
        if dependency not in self.dependencies[dependent]:
            self.dependencies[dependent].append(dependency)
            self.dependents[dependency].append(dependent)

    def is_model(self, idx: int) -> bool:
        return self.nodes[idx].source_kind is SourceKind.MODEL

    def model_indices(self) -> list[int]:
        return [i for i in range(len(self.nodes)) if self.is_model(i)]

    def models(self) -> list[Model]:
        """All models in discovery order."""
        return [self.nodes[i] for i in self.model_indices()]  # type: ignore[misc]

    def model_index(self, name: str) -> int:
        idx = self.index.get((SourceKind.MODEL, name))
        if idx is None:
            raise KeyError(name)
        return idx

    def has_model(self, name: str) -> bool:
        return (SourceKind.MODEL, name) in self.index

    def get_model(self, name: str) -> Model:
        return self.nodes[self.model_index(name)]  # type: ignore[return-value]

    def model_dependencies(self, name: str) -> list[str]:
        """Names of the models ``name`` reads from directly."""
        idx = self.model_index(name)
        return [self.nodes[d].name for d in sorted(self.dependencies[idx]) if self.is_model(d)]

    def model_dependents(self, name: str) -> list[str]:
        idx = self.model_index(name)
        return [self.nodes[d].name for d in sorted(self.dependents[idx]) if self.is_model(d)]

    def ancestors(self, names: Iterable[str]) -> set[str]:
        """Model names reachable upstream from ``names``, the names included."""
        seen: set[int] = set()
        stack = [self.model_index(n) for n in names]
        while stack:
            idx = stack.pop()
            if idx in seen:
                continue
            seen.add(idx)
            stack.extend(d for d in self.dependencies[idx] if self.is_model(d) and d not in seen)
        return {self.nodes[i].name for i in seen}

    def edges(self) -> list[tuple[int, int]]:
        """(dependency, dependent) pairs ordered by dependent, then dependency."""
        return [
            (dep, idx)
            for idx in range(len(self.nodes))
            for dep in sorted(self.dependencies[idx])
        ]


def build_graph(declared: Iterable[Model]) -> DependencyGraph:
    """Resolve the full dependency closure of the declared models.

    Breadth-first from the declared models, following ``from_`` links and
    embedded references. Nodes are deduplicated by kind and name; declaring a
    model both directly and transitively yields a single node.
    """
    graph = DependencyGraph()
    queue: deque[int] = deque()

    for model in declared:
        if not is_model(model):
            raise ConfigurationError(f"Only models can be declared in a project, got {model!r}")
        idx, is_new = graph._add(model)
        if idx not in graph.declared:
            graph.declared.append(idx)
        if is_new:
            queue.append(idx)

    while queue:
        idx = queue.popleft()
        model: Model = graph.nodes[idx]  # type: ignore[assignment]
        for dep in discover_dependencies(model):
            dep_idx, is_new = graph._add(dep)
            graph._link(idx, dep_idx)
            if is_new and dep.source_kind is SourceKind.MODEL:
                queue.append(dep_idx)

    logger.debug(
        "Resolved %d nodes (%d models) from %d declared models",
        len(graph.nodes), len(graph.model_indices()), len(graph.declared),
    )
    return graph
