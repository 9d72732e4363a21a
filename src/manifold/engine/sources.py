"""Pipeline sources: raw collections and derived models.

Both variants carry a ``source_kind`` discriminant. Graph, planning and
rendering code switch on that field, never on the concrete class.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .utils import validate_name


class SourceKind(str, Enum):
    COLLECTION = "collection"
    MODEL = "model"


class Source(Protocol):
    """Capability shared by collections and models."""

    source_kind: SourceKind

    @property
    def name(self) -> str: ...

    def output_name(self) -> str:
        """Collection (or view) name downstream pipelines read from."""
        ...

    def output_database(self) -> str | None:
        """Database holding the output, or None for the store default."""
        ...


@dataclass(frozen=True)
class Collection:
    """An existing collection in the store. Leaf of every dependency graph."""

    name: str
    database: str | None = None
    source_kind: SourceKind = field(default=SourceKind.COLLECTION, init=False)

    def __post_init__(self) -> None:
        validate_name(self.name, "collection name")
        if self.database is not None:
            validate_name(self.database, f"database for collection {self.name}")

    def output_name(self) -> str:
        return self.name

    def output_database(self) -> str | None:
        return self.database


def source_key(source: Source) -> tuple[SourceKind, str]:
    """Node key used for deduplication inside a dependency graph.

    Models are keyed by name. Collections are keyed by their qualified
    ``database.name`` so that equally named collections in different
    databases stay distinct. The kind is part of the key: a model and a raw
    collection may share a name.
    """
    if source.source_kind is SourceKind.MODEL:
        return source.source_kind, source.name
    database = source.output_database()
    return source.source_kind, f"{database}.{source.name}" if database else source.name
