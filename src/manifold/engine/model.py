"""Models: named, materializable pipelines over a source.

A model reads from a collection or from another model (a DAG edge), applies
a pipeline, and persists the result as a collection or a view. Compiling a
model is a pure function of its fields: no store access happens here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Callable, Literal, Union

from manifold.errors import ConfigurationError

from .pipeline import Document, Pipeline
from .sources import Source, SourceKind
from .utils import validate_name

PipelineFn = Callable[[Pipeline], Pipeline]


class Mode(str, Enum):
    """Write strategy for collection-backed models."""

    REPLACE = "replace"  # $out: swap the whole collection
    UPSERT = "upsert"  # $merge on _id, replace matches, insert the rest
    APPEND = "append"  # $merge on _id, fail on matches, insert the rest


@dataclass(frozen=True)
class MergeOptions:
    """Fully custom $merge behaviour."""

    on: str | list[str] = "_id"
    when_matched: Literal["replace", "merge", "keepExisting", "fail"] = "replace"
    when_not_matched: Literal["insert", "discard", "fail"] = "insert"


@dataclass(frozen=True)
class TimeSeriesOptions:
    """Options used to create a time-series output collection."""

    time_field: str
    meta_field: str | None = None
    granularity: Literal["seconds", "minutes", "hours"] | None = None
    expire_after_seconds: int | None = None

    def to_create_options(self) -> dict[str, Any]:
        timeseries: dict[str, Any] = {"timeField": self.time_field}
        if self.meta_field is not None:
            timeseries["metaField"] = self.meta_field
        if self.granularity is not None:
            timeseries["granularity"] = self.granularity
        options: dict[str, Any] = {"timeseries": timeseries}
        if self.expire_after_seconds is not None:
            options["expireAfterSeconds"] = self.expire_after_seconds
        return options


@dataclass(frozen=True)
class MaterializeConfig:
    """How a model's result is persisted.

    Use the ``collection()`` and ``view()`` constructors rather than building
    one by hand; both validate the combination of fields.
    """

    kind: Literal["collection", "view"]
    mode: Union[Mode, MergeOptions, None] = None
    database: str | None = None
    alias: str | None = None
    timeseries: TimeSeriesOptions | None = None

    def __post_init__(self) -> None:
        if self.kind not in ("collection", "view"):
            raise ConfigurationError(f"Unknown materialization kind: {self.kind!r}")
        if self.kind == "collection":
            if self.mode is None:
                raise ConfigurationError("Collection materialization requires a mode")
            if isinstance(self.mode, str) and not isinstance(self.mode, Mode):
                try:
                    object.__setattr__(self, "mode", Mode(self.mode))
                except ValueError:
                    raise ConfigurationError(f"Unknown materialization mode: {self.mode!r}") from None
            elif not isinstance(self.mode, (Mode, MergeOptions)):
                raise ConfigurationError(f"Unknown materialization mode: {self.mode!r}")
        elif self.timeseries is not None:
            raise ConfigurationError("Time-series options only apply to collection materialization")
        if self.database is not None:
            validate_name(self.database, "output database")
        if self.alias is not None:
            validate_name(self.alias, "output alias")

    @classmethod
    def collection(
        cls,
        mode: Mode | MergeOptions | str,
        database: str | None = None,
        alias: str | None = None,
        timeseries: TimeSeriesOptions | None = None,
    ) -> MaterializeConfig:
        return cls(kind="collection", mode=mode, database=database, alias=alias, timeseries=timeseries)

    @classmethod
    def view(cls, database: str | None = None, alias: str | None = None) -> MaterializeConfig:
        return cls(kind="view", database=database, alias=alias)


@dataclass(frozen=True)
class CompiledProgram:
    """Everything a store needs to materialize one model."""

    model: str
    kind: Literal["collection", "view"]
    source_name: str
    source_database: str | None
    target_name: str
    target_database: str | None
    operations: list[Document] = field(default_factory=list)
    timeseries: TimeSeriesOptions | None = None


class Model:
    """A named, materializable pipeline.

    Models form a DAG through ``from_`` and through sources referenced by
    $lookup / $unionWith operations in their pipeline.

    Example:
        stg_events = Model(
            name="stg_events",
            from_=Collection("raw_events"),
            pipeline=lambda p: p.match({"_deleted": {"$ne": True}}),
            materialize=MaterializeConfig.collection(Mode.REPLACE),
        )
    """

    source_kind = SourceKind.MODEL

    def __init__(
        self,
        name: str,
        from_: Source,
        pipeline: PipelineFn | Pipeline | None = None,
        materialize: MaterializeConfig | None = None,
    ) -> None:
        if materialize is None:
            raise ConfigurationError(f"Model '{name}' has no materialization config")
        if not isinstance(materialize, MaterializeConfig):
            raise ConfigurationError(
                f"Model '{name}': materialize must be a MaterializeConfig, got {type(materialize).__name__}"
            )
        if getattr(from_, "source_kind", None) not in (SourceKind.COLLECTION, SourceKind.MODEL):
            raise ConfigurationError(f"Model '{name}': from_ must be a Collection or a Model")
        self._name = validate_name(name, "model name")
        self._source = from_
        self._pipeline = pipeline
        self._materialize = materialize

    def __repr__(self) -> str:
        return f"Model({self._name!r}, from_={self._source.name!r}, kind={self._materialize.kind!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def source(self) -> Source:
        return self._source

    @property
    def materialize(self) -> MaterializeConfig:
        return self._materialize

    # --- source projections ---

    @property
    def source_is_model(self) -> bool:
        return self._source.source_kind is SourceKind.MODEL

    @property
    def upstream(self) -> Model | None:
        """The upstream model when the source is a model, otherwise None."""
        if self.source_is_model:
            return self._source  # type: ignore[return-value]
        return None

    def source_name(self) -> str:
        return self._source.output_name()

    def source_database(self) -> str | None:
        return self._source.output_database()

    # --- output projections ---

    def output_name(self) -> str:
        return self._materialize.alias or self._name

    def output_database(self) -> str | None:
        return self._materialize.database

    # --- compilation ---

    @cached_property
    def transformation(self) -> Pipeline:
        """The pipeline applied to the source, built once on first access."""
        if self._pipeline is None:
            return Pipeline()
        if isinstance(self._pipeline, Pipeline):
            result = self._pipeline
        else:
            result = self._pipeline(Pipeline())
        if not isinstance(result, Pipeline):
            raise ConfigurationError(
                f"Model '{self._name}': pipeline function must return a Pipeline, "
                f"got {type(result).__name__}"
            )
        self._check_reference_databases(result)
        return result

    def _check_reference_databases(self, pipeline: Pipeline) -> None:
        # $lookup and $unionWith read from the database the aggregation runs in
        database = self.source_database()
        for ref in pipeline.embedded_references():
            if ref.source.output_database() != database:
                raise ConfigurationError(
                    f"Model '{self._name}': {ref.operator} reads '{ref.source.name}' "
                    f"from database {ref.source.output_database()!r}, but the model runs "
                    f"in source database {database!r}"
                )
            if ref.sub_pipeline is not None:
                self._check_reference_databases(ref.sub_pipeline)

    def compile_operations(self) -> list[Document]:
        """Pipeline operations without the trailing output stage."""
        return self.transformation.stages()

    def output_stage(self) -> Document | None:
        """The $out / $merge stage for collection models. None for views."""
        mat = self._materialize
        if mat.kind == "view":
            return None

        name = self.output_name()
        if mat.mode is Mode.REPLACE:
            return {"$out": {"db": mat.database, "coll": name} if mat.database else name}

        into: Any = {"db": mat.database, "coll": name} if mat.database else name
        if mat.mode is Mode.UPSERT:
            merge = {"into": into, "on": "_id", "whenMatched": "replace", "whenNotMatched": "insert"}
        elif mat.mode is Mode.APPEND:
            merge = {"into": into, "on": "_id", "whenMatched": "fail", "whenNotMatched": "insert"}
        else:
            options: MergeOptions = mat.mode  # type: ignore[assignment]
            merge = {
                "into": into,
                "on": list(options.on) if isinstance(options.on, (list, tuple)) else options.on,
                "whenMatched": options.when_matched,
                "whenNotMatched": options.when_not_matched,
            }
        return {"$merge": merge}

    def build_pipeline(self) -> list[Document]:
        """The complete operation list, output stage included."""
        stages = self.compile_operations()
        output = self.output_stage()
        if output is not None:
            stages.append(output)
        return stages

    def compile_program(self) -> CompiledProgram:
        return CompiledProgram(
            model=self._name,
            kind=self._materialize.kind,
            source_name=self.source_name(),
            source_database=self.source_database(),
            target_name=self.output_name(),
            target_database=self.output_database(),
            operations=self.build_pipeline(),
            timeseries=self._materialize.timeseries,
        )


def is_model(source: Any) -> bool:
    return getattr(source, "source_kind", None) is SourceKind.MODEL
