"""Shared fixtures: store doubles and small model graphs."""

from __future__ import annotations

import asyncio

import pytest

from manifold.engine import Collection, MaterializeConfig, Mode, Model
from manifold.errors import ExecutionError


class RecordingStore:
    """In-memory store that records every program it is asked to execute.

    Models named in ``fail`` raise ExecutionError; models named in ``cancel``
    raise CancelledError from inside the store call.
    """

    def __init__(self, fail=(), cancel=(), delay: float = 0.0) -> None:
        self.programs = []
        self.fail = set(fail)
        self.cancel = set(cancel)
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.closed = False

    @property
    def executed(self) -> list[str]:
        return [p.model for p in self.programs]

    async def execute(self, program) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if program.model in self.cancel:
                raise asyncio.CancelledError()
            if program.model in self.fail:
                raise ExecutionError(program.model, "boom")
            self.programs.append(program)
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


def make_model(name, source, pipeline=None, mode=Mode.REPLACE):
    return Model(
        name=name,
        from_=source,
        pipeline=pipeline,
        materialize=MaterializeConfig.collection(mode),
    )


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def raw():
    return Collection("raw_events")


@pytest.fixture
def chain(raw):
    """a -> b -> c, each reading from the previous one."""
    a = make_model("a", raw)
    b = make_model("b", a)
    c = make_model("c", b)
    return a, b, c


@pytest.fixture
def fan_out(raw):
    """One base model feeding two independent downstream models."""
    base = make_model("base", raw)
    left = make_model("left", base, lambda p: p.match({"side": "left"}))
    right = make_model("right", base, lambda p: p.match({"side": "right"}))
    return base, left, right


@pytest.fixture
def joined():
    """Five models connected by from_ links, a $lookup and a nested $lookup."""
    stg_orders = make_model("stg_orders", Collection("orders"))
    stg_users = make_model("stg_users", Collection("users"))
    stg_regions = make_model("stg_regions", Collection("regions"))
    order_report = make_model(
        "order_report",
        stg_orders,
        lambda p: p.lookup(
            from_=stg_users,
            as_="user",
            let={"uid": "$user_id"},
            pipeline=lambda sub: sub.match({"$expr": {"$eq": ["$_id", "$$uid"]}}).lookup(
                from_=stg_regions,
                as_="region",
                local_field="region_id",
                foreign_field="_id",
            ),
        ),
    )
    summary = make_model(
        "summary",
        order_report,
        lambda p: p.group({"_id": "$user.region", "orders": {"$sum": 1}}),
    )
    return {
        "stg_orders": stg_orders,
        "stg_users": stg_users,
        "stg_regions": stg_regions,
        "order_report": order_report,
        "summary": summary,
    }
