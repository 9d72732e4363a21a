"""Aggregation pipeline builder.

A Pipeline is an immutable chain of aggregation operations. Every builder
call returns a new Pipeline, so a partially built pipeline can be shared and
extended safely.

Operations that read another source ($lookup, $unionWith) record an
EmbeddedReference next to the rendered stage. The dependency discoverer only
walks those references and never parses the stage documents themselves.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Union

from .sources import Source

Document = dict[str, Any]
SubPipeline = Union["Pipeline", Callable[["Pipeline"], "Pipeline"]]


@dataclass(frozen=True)
class EmbeddedReference:
    """A source referenced from inside a pipeline operation."""

    operator: str  # "$lookup" or "$unionWith"
    source: Source
    sub_pipeline: Pipeline | None = None


def _resolve_sub_pipeline(pipeline: SubPipeline | None) -> Pipeline | None:
    if pipeline is None:
        return None
    if isinstance(pipeline, Pipeline):
        return pipeline
    resolved = pipeline(Pipeline())
    if not isinstance(resolved, Pipeline):
        raise TypeError(
            f"Sub-pipeline builder must return a Pipeline, got {type(resolved).__name__}"
        )
    return resolved


class Pipeline:
    """Immutable builder for MongoDB aggregation operations."""

    __slots__ = ("_stages", "_references")

    def __init__(
        self,
        stages: list[Document] | None = None,
        references: tuple[EmbeddedReference, ...] = (),
    ) -> None:
        self._stages: tuple[Document, ...] = tuple(copy.deepcopy(stages or []))
        self._references = tuple(references)

    def __repr__(self) -> str:
        ops = ", ".join(next(iter(s), "?") for s in self._stages)
        return f"Pipeline([{ops}])"

    def __len__(self) -> int:
        return len(self._stages)

    def stages(self) -> list[Document]:
        """Return a deep copy of the rendered operations."""
        return copy.deepcopy(list(self._stages))

    def embedded_references(self) -> list[EmbeddedReference]:
        """Sources referenced directly by this pipeline's operations.

        References made inside a sub-pipeline are reachable through
        ``ref.sub_pipeline.embedded_references()``, not listed here.
        """
        return list(self._references)

    def _chain(
        self,
        new_stages: list[Document],
        reference: EmbeddedReference | None = None,
    ) -> Pipeline:
        references = self._references + ((reference,) if reference else ())
        return Pipeline([*self._stages, *new_stages], references)

    # --- plain operations ---

    def custom(self, stages: list[Document]) -> Pipeline:
        """Append raw stage documents. They are not inspected for references."""
        return self._chain(list(stages))

    def match(self, query: Document) -> Pipeline:
        return self._chain([{"$match": query}])

    def set(self, fields: Document) -> Pipeline:
        return self._chain([{"$set": fields}])

    def unset(self, fields: str | list[str]) -> Pipeline:
        return self._chain([{"$unset": fields}])

    def project(self, spec: Document) -> Pipeline:
        return self._chain([{"$project": spec}])

    def group(self, spec: Document) -> Pipeline:
        if "_id" not in spec:
            raise ValueError("$group requires an _id expression")
        return self._chain([{"$group": spec}])

    def sort(self, spec: Document) -> Pipeline:
        """Sort documents by field values (ascending 1 or descending -1)."""
        return self._chain([{"$sort": spec}])

    def limit(self, count: int) -> Pipeline:
        return self._chain([{"$limit": count}])

    def skip(self, count: int) -> Pipeline:
        return self._chain([{"$skip": count}])

    def unwind(
        self,
        path: str,
        include_array_index: str | None = None,
        preserve_null_and_empty_arrays: bool | None = None,
    ) -> Pipeline:
        """Deconstruct an array field into one document per element."""
        if include_array_index is None and preserve_null_and_empty_arrays is None:
            return self._chain([{"$unwind": path}])
        spec: Document = {"path": path}
        if include_array_index is not None:
            spec["includeArrayIndex"] = include_array_index
        if preserve_null_and_empty_arrays is not None:
            spec["preserveNullAndEmptyArrays"] = preserve_null_and_empty_arrays
        return self._chain([{"$unwind": spec}])

    def replace_root(self, new_root: Any) -> Pipeline:
        return self._chain([{"$replaceRoot": {"newRoot": new_root}}])

    # --- operations that reference other sources ---

    def lookup(
        self,
        from_: Source,
        as_: str,
        local_field: str | None = None,
        foreign_field: str | None = None,
        let: Document | None = None,
        pipeline: SubPipeline | None = None,
    ) -> Pipeline:
        """Join documents from another collection or model.

        Either ``local_field``/``foreign_field`` or ``pipeline`` (or both)
        must be given. A nested pipeline may itself look up further sources;
        those become dependencies of the model too.
        """
        if (local_field is None) != (foreign_field is None):
            raise ValueError("$lookup needs both local_field and foreign_field, or neither")
        if local_field is None and pipeline is None:
            raise ValueError("$lookup needs local_field/foreign_field or a pipeline")

        sub = _resolve_sub_pipeline(pipeline)
        spec: Document = {"from": from_.output_name()}
        if local_field is not None:
            spec["localField"] = local_field
            spec["foreignField"] = foreign_field
        if let is not None:
            spec["let"] = let
        if sub is not None:
            spec["pipeline"] = sub.stages()
        spec["as"] = as_
        return self._chain(
            [{"$lookup": spec}],
            EmbeddedReference(operator="$lookup", source=from_, sub_pipeline=sub),
        )

    def union_with(self, coll: Source, pipeline: SubPipeline | None = None) -> Pipeline:
        """Append the documents of another collection or model."""
        sub = _resolve_sub_pipeline(pipeline)
        spec: Document = {"coll": coll.output_name()}
        if sub is not None:
            spec["pipeline"] = sub.stages()
        return self._chain(
            [{"$unionWith": spec}],
            EmbeddedReference(operator="$unionWith", source=coll, sub_pipeline=sub),
        )
