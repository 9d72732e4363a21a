"""Project: the declared models plus the graph derived from them."""

from __future__ import annotations

import logging
from typing import Iterable

from manifold.errors import CycleError

from .analysis import ValidationResult, validate
from .discovery import DependencyGraph, build_graph
from .execution import Executor, RunOptions, RunResult
from .model import MaterializeConfig, Model, PipelineFn
from .pipeline import Pipeline
from .planner import ExecutionPlan, build_plan, select_models
from .sources import Source
from .store import ModelStore
from .visualize import to_mermaid

logger = logging.getLogger("manifold.engine")


class Project:
    """A named set of declared models.

    Only the models you care about need declaring; everything they read from
    is discovered. Declarations are append-only and the resolved graph is
    rebuilt lazily after each addition.
    """

    def __init__(self, name: str, models: Iterable[Model] = ()) -> None:
        self.name = name
        self._declared: list[Model] = []
        self._graph: DependencyGraph | None = None
        self.add(*models)

    def __repr__(self) -> str:
        return f"Project({self.name!r}, declared={[m.name for m in self._declared]})"

    @property
    def declared_models(self) -> list[Model]:
        return list(self._declared)

    def add(self, *models: Model) -> Project:
        for model in models:
            if not any(m is model for m in self._declared):
                self._declared.append(model)
        self._graph = None
        return self

    def model(
        self,
        name: str,
        from_: Source,
        pipeline: PipelineFn | Pipeline | None = None,
        materialize: MaterializeConfig | None = None,
    ) -> Model:
        """Create a model and declare it in this project."""
        created = Model(name=name, from_=from_, pipeline=pipeline, materialize=materialize)
        self.add(created)
        return created

    @property
    def graph(self) -> DependencyGraph:
        if self._graph is None:
            self._graph = build_graph(self._declared)
        return self._graph

    def get_models(self) -> list[Model]:
        """All declared and discovered models, in discovery order."""
        return self.graph.models()

    def get_model(self, name: str) -> Model | None:
        if not self.graph.has_model(name):
            return None
        return self.graph.get_model(name)

    def validate(self) -> ValidationResult:
        return validate(self.graph)

    def _require_valid(self) -> None:
        result = self.validate()
        if not result.valid:
            raise CycleError(
                "; ".join(e.message for e in result.errors),
                cycles=result.cycles,
            )

    def plan(
        self,
        targets: Iterable[str] | None = None,
        exclude: Iterable[str] | None = None,
    ) -> ExecutionPlan:
        self._require_valid()
        names = select_models(self.graph, targets, exclude)
        return build_plan(self.graph, names)

    def to_mermaid(self) -> str:
        return to_mermaid(self.graph)

    async def run(
        self,
        store: ModelStore | None = None,
        options: RunOptions | None = None,
    ) -> RunResult:
        """Materialize the project's models. ``store`` may be omitted for dry runs."""
        logger.info("Running project %s", self.name)
        return await Executor(self.graph, store).run(options)
