"""Mermaid rendering of the model dependency graph."""

from __future__ import annotations

import re
from typing import Iterable

from .discovery import DependencyGraph

_SAFE_ID = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _node_id(graph: DependencyGraph, idx: int) -> str:
    # Mermaid ids cannot hold spaces or most punctuation; fall back to the index
    name = graph.nodes[idx].name
    return name if _SAFE_ID.match(name) else f"node{idx}"


def to_mermaid(graph: DependencyGraph, names: Iterable[str] | None = None) -> str:
    """Render models and model-to-model edges as a Mermaid flowchart.

    Collections are left out. When ``names`` is given only those models, and
    edges between them, are drawn.
    """
    keep = set(names) if names is not None else None
    model_indices = [
        i for i in graph.model_indices()
        if keep is None or graph.nodes[i].name in keep
    ]
    included = set(model_indices)

    lines = ["graph TD"]
    for idx in model_indices:
        model = graph.nodes[idx]
        label = model.name.replace('"', "#quot;")
        lines.append(f'  {_node_id(graph, idx)}["{label}<br/>({model.materialize.kind})"]')  # type: ignore[attr-defined]
    for dep, idx in graph.edges():
        if dep in included and idx in included:
            lines.append(f"  {_node_id(graph, dep)} --> {_node_id(graph, idx)}")
    return "\n".join(lines)
