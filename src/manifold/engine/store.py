"""Store adapters that execute compiled model programs.

The executor only needs an object with an async ``execute(program)``
method. ``MongoStore`` implements it on top of pymongo's asyncio client.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from manifold.errors import ExecutionError

from .model import CompiledProgram

logger = logging.getLogger("manifold.store")


class ModelStore(Protocol):
    async def execute(self, program: CompiledProgram) -> None:
        """Materialize one model. Raise on failure."""
        ...


def connect(
    uri: str,
    app_name: str | None = "manifold",
    server_selection_timeout_ms: int = 30000,
    **kwargs: Any,
) -> AsyncMongoClient:
    """Create an asyncio MongoDB client. Connection happens lazily on first use."""
    if app_name:
        kwargs.setdefault("appname", app_name)
    return AsyncMongoClient(uri, serverSelectionTimeoutMS=server_selection_timeout_ms, **kwargs)


class MongoStore:
    """Runs compiled programs against a MongoDB deployment.

    Programs without an explicit source or target database use ``database``.
    The client is owned by the caller unless the store is used as an async
    context manager.
    """

    def __init__(self, client: AsyncMongoClient, database: str) -> None:
        self._client = client
        self._database = database

    @property
    def database(self) -> str:
        return self._database

    async def __aenter__(self) -> MongoStore:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.close()

    async def execute(self, program: CompiledProgram) -> None:
        try:
            if program.kind == "view":
                await self._create_view(program)
            else:
                await self._run_aggregation(program)
        except PyMongoError as e:
            raise ExecutionError(program.model, str(e)) from e

    async def _create_view(self, program: CompiledProgram) -> None:
        source_db = program.source_database or self._database
        target_db = program.target_database or self._database
        if source_db != target_db:
            raise ExecutionError(
                program.model,
                f"View must live in its source database '{source_db}', not '{target_db}'",
            )
        db = self._client[target_db]
        await db.drop_collection(program.target_name)
        await db.create_collection(
            program.target_name,
            viewOn=program.source_name,
            pipeline=program.operations,
        )
        logger.info("Created view %s.%s on %s", target_db, program.target_name, program.source_name)

    async def _run_aggregation(self, program: CompiledProgram) -> None:
        if program.timeseries is not None:
            await self._ensure_timeseries(program)
        db = self._client[program.source_database or self._database]
        cursor = await db[program.source_name].aggregate(program.operations)
        await cursor.to_list(None)
        logger.info(
            "Materialized %s.%s from %s (%d operations)",
            program.target_database or self._database,
            program.target_name,
            program.source_name,
            len(program.operations),
        )

    async def _ensure_timeseries(self, program: CompiledProgram) -> None:
        db = self._client[program.target_database or self._database]
        existing = await db.list_collection_names(filter={"name": program.target_name})
        if existing:
            return
        options = program.timeseries.to_create_options()  # type: ignore[union-attr]
        await db.create_collection(program.target_name, **options)
        logger.info("Created time-series collection %s", program.target_name)
