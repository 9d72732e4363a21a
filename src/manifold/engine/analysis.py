"""Graph validation: cycle detection and structural warnings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .discovery import DependencyGraph

logger = logging.getLogger("manifold.engine")

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass
class ValidationIssue:
    """A single problem found in the dependency graph."""

    type: str  # "cycle" or "orphan"
    message: str
    models: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def cycles(self) -> list[list[str]]:
        return [e.models for e in self.errors if e.type == "cycle"]


def find_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Three-color DFS over model-to-model edges.

    Each back edge yields one cycle, reported as the chain of model names
    from the re-entered node back to itself (``["a", "b", "a"]``).
    Iterative so deep chains do not hit the recursion limit.
    """
    color = [_WHITE] * len(graph.nodes)
    cycles: list[list[str]] = []
    reported: set[frozenset[int]] = set()

    for root in graph.model_indices():
        if color[root] != _WHITE:
            continue
        path: list[int] = [root]
        stack = [(root, iter(sorted(graph.dependencies[root])))]
        color[root] = _GRAY
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if not graph.is_model(child):
                    continue
                if color[child] == _GRAY:
                    chain = path[path.index(child):] + [child]
                    members = frozenset(chain)
                    if members not in reported:
                        reported.add(members)
                        cycles.append([graph.nodes[i].name for i in chain])
                elif color[child] == _WHITE:
                    color[child] = _GRAY
                    path.append(child)
                    stack.append((child, iter(sorted(graph.dependencies[child]))))
                    advanced = True
                    break
            if not advanced:
                color[node] = _BLACK
                path.pop()
                stack.pop()
    return cycles


def _components(graph: DependencyGraph) -> list[list[int]]:
    """Weakly connected components over every node, collections included."""
    nodes = range(len(graph.nodes))
    parent = {i: i for i in nodes}

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for idx in nodes:
        for dep in graph.dependencies[idx]:
            a, b = find(idx), find(dep)
            if a != b:
                parent[max(a, b)] = min(a, b)

    components: dict[int, list[int]] = {}
    for idx in nodes:
        components.setdefault(find(idx), []).append(idx)
    return list(components.values())


def validate(graph: DependencyGraph) -> ValidationResult:
    """Check the graph for cycles (errors) and disconnected model groups (warnings)."""
    errors = [
        ValidationIssue(
            type="cycle",
            message=f"Circular dependency: {' -> '.join(chain)}",
            models=chain,
        )
        for chain in find_cycles(graph)
    ]

    warnings: list[ValidationIssue] = []
    components = _components(graph)
    if len(components) > 1:
        roots = [
            graph.nodes[i].name
            for i in graph.model_indices()
            if not any(graph.is_model(d) for d in graph.dependents[i])
        ]
        warnings.append(
            ValidationIssue(
                type="orphan",
                message=(
                    f"Models form {len(components)} disconnected groups; "
                    f"root models: {', '.join(roots)}"
                ),
                models=roots,
            )
        )

    for issue in errors:
        logger.error(issue.message)
    for issue in warnings:
        logger.warning(issue.message)
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
