"""Model execution: run a plan stage by stage against a store."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from manifold.errors import ConfigurationError, CycleError

from .analysis import validate
from .discovery import DependencyGraph
from .planner import ExecutionPlan, build_plan, select_models
from .store import ModelStore

logger = logging.getLogger("manifold.engine")


@dataclass
class ModelRunStats:
    """Timing for one executed model."""

    duration_ms: int = 0


@dataclass
class ModelFailure:
    name: str
    error: str


@dataclass
class RunOptions:
    """Options for a single run.

    Args:
        targets: Models to run, together with everything upstream of them (None = all)
        exclude: Models to leave out after target selection
        dry_run: Plan only, touch nothing
        max_concurrency: Max models executing at once within a stage
        on_model_start: Called with the model name before it is submitted
        on_model_complete: Called with the model name and its stats on success
        on_model_error: Called with the model name and the exception on failure
        on_model_skip: Called with the model name and the failed/skipped
            upstream models that blocked it
    """

    targets: list[str] | None = None
    exclude: list[str] | None = None
    dry_run: bool = False
    max_concurrency: int = 4
    on_model_start: Callable[[str], None] | None = None
    on_model_complete: Callable[[str, ModelRunStats], None] | None = None
    on_model_error: Callable[[str, BaseException], None] | None = None
    on_model_skip: Callable[[str, list[str]], None] | None = None


@dataclass
class RunResult:
    success: bool
    models_run: list[str] = field(default_factory=list)
    models_failed: list[ModelFailure] = field(default_factory=list)
    models_skipped: list[str] = field(default_factory=list)
    total_duration_ms: int = 0
    stats: dict[str, ModelRunStats] = field(default_factory=dict)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class Executor:
    """Executes the models of a dependency graph in planned order.

    Stages run strictly one after another. Models inside a stage run
    concurrently, bounded by ``max_concurrency``. A failed model marks every
    downstream model as skipped; independent branches keep running.
    """

    def __init__(self, graph: DependencyGraph, store: ModelStore | None) -> None:
        self.graph = graph
        self.store = store

    def prepare(self, options: RunOptions) -> ExecutionPlan:
        """Validate the graph and plan the selected models."""
        validation = validate(self.graph)
        if not validation.valid:
            raise CycleError(
                "; ".join(e.message for e in validation.errors),
                cycles=validation.cycles,
            )
        names = select_models(self.graph, options.targets, options.exclude)
        return build_plan(self.graph, names)

    async def run(self, options: RunOptions | None = None) -> RunResult:
        options = options or RunOptions()
        start = time.perf_counter()
        plan = self.prepare(options)

        if options.dry_run:
            logger.info("Dry run, %d models planned:\n%s", plan.total_models, plan)
            return RunResult(success=True, total_duration_ms=_elapsed_ms(start))

        if self.store is None:
            raise ConfigurationError("A store is required to run models")
        if options.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")

        logger.info("Running %d models in %d stages", plan.total_models, len(plan.stages))
        result = RunResult(success=True)
        blocked: set[str] = set()
        semaphore = asyncio.Semaphore(options.max_concurrency)

        for stage_idx, stage in enumerate(plan.stages, 1):
            runnable: list[str] = []
            for name in stage:
                blockers = [d for d in self.graph.model_dependencies(name) if d in blocked]
                if blockers:
                    blocked.add(name)
                    result.models_skipped.append(name)
                    logger.warning("Skipping %s (upstream failed: %s)", name, ", ".join(blockers))
                    if options.on_model_skip:
                        options.on_model_skip(name, blockers)
                else:
                    runnable.append(name)

            if not runnable:
                continue
            logger.debug("Stage %d/%d: %s", stage_idx, len(plan.stages), ", ".join(runnable))

            outcomes = await asyncio.gather(
                *(self._run_model(name, semaphore, options, result) for name in runnable),
                return_exceptions=True,
            )
            for name, ok in zip(runnable, outcomes):
                if ok is not True:
                    blocked.add(name)
            # Callback errors and interrupts are not model failures
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

        result.success = not result.models_failed
        result.total_duration_ms = _elapsed_ms(start)
        logger.info(
            "Run finished in %dms: %d succeeded, %d failed, %d skipped",
            result.total_duration_ms,
            len(result.models_run),
            len(result.models_failed),
            len(result.models_skipped),
        )
        return result

    async def _run_model(
        self,
        name: str,
        semaphore: asyncio.Semaphore,
        options: RunOptions,
        result: RunResult,
    ) -> bool:
        """Execute one model. Returns True on success, False on failure."""
        async with semaphore:
            if options.on_model_start:
                options.on_model_start(name)
            logger.info("Running %s", name)
            model = self.graph.get_model(name)
            start = time.perf_counter()
            error: BaseException | None = None
            try:
                program = model.compile_program()
                await self.store.execute(program)  # type: ignore[union-attr]
            except asyncio.CancelledError as e:
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    logger.warning("Model %s cancelled", name)
                    try:
                        if options.on_model_error:
                            options.on_model_error(name, e)
                    finally:
                        raise e
                error = e
            except Exception as e:
                error = e

        if error is not None:
            message = str(error) or type(error).__name__
            result.models_failed.append(ModelFailure(name=name, error=message))
            logger.error("Model %s failed: %s", name, message)
            if options.on_model_error:
                options.on_model_error(name, error)
            return False

        stats = ModelRunStats(duration_ms=_elapsed_ms(start))
        result.models_run.append(name)
        result.stats[name] = stats
        logger.info("Completed %s in %dms", name, stats.duration_ms)
        if options.on_model_complete:
            options.on_model_complete(name, stats)
        return True


async def run_models(
    graph: DependencyGraph,
    store: ModelStore | None,
    options: RunOptions | None = None,
) -> RunResult:
    """Validate, plan and execute ``graph`` against ``store``."""
    return await Executor(graph, store).run(options)
