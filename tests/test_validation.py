"""Tests for graph validation: cycles and orphan warnings."""

from __future__ import annotations

from conftest import make_model
from manifold.engine import Collection, build_graph, validate
from manifold.engine.analysis import find_cycles


def _cyclic_pair():
    """a reads from b through a lookup, b reads from a through from_."""
    a = make_model(
        "a",
        Collection("raw"),
        lambda p: p.lookup(from_=b, as_="bs", local_field="x", foreign_field="_id"),
    )
    b = make_model("b", a)
    return a, b


class TestCycles:
    def test_acyclic_chain_is_valid(self, chain):
        result = validate(build_graph([chain[-1]]))
        assert result.valid
        assert result.errors == []
        assert result.warnings == []

    def test_cycle_through_lookup(self):
        a, b = _cyclic_pair()
        result = validate(build_graph([b]))
        assert not result.valid
        [error] = result.errors
        assert error.type == "cycle"
        assert set(error.models) == {"a", "b"}
        assert error.models[0] == error.models[-1]
        assert "Circular dependency" in error.message
        assert result.cycles == [error.models]

    def test_self_reference(self):
        m = make_model(
            "m",
            Collection("raw"),
            lambda p: p.union_with(m),
        )
        cycles = find_cycles(build_graph([m]))
        assert cycles == [["m", "m"]]

    def test_cycle_in_nested_sub_pipeline(self):
        a = make_model(
            "a",
            Collection("raw"),
            lambda p: p.lookup(
                from_=Collection("users"),
                as_="u",
                pipeline=lambda sub: sub.lookup(from_=c, as_="c", local_field="x", foreign_field="_id"),
            ),
        )
        b = make_model("b", a)
        c = make_model("c", b)
        result = validate(build_graph([c]))
        assert not result.valid
        assert set(result.errors[0].models) == {"a", "b", "c"}

    def test_long_chain_does_not_recurse(self):
        models = [make_model("m0", Collection("raw"))]
        for i in range(1, 3000):
            models.append(make_model(f"m{i}", models[-1]))
        assert validate(build_graph([models[-1]])).valid


class TestOrphanWarning:
    def test_disconnected_models_warn_once(self):
        models = [make_model(name, Collection(f"{name}_events")) for name in ("x", "y", "z")]
        result = validate(build_graph(models))
        assert result.valid
        [warning] = result.warnings
        assert warning.type == "orphan"
        assert warning.models == ["x", "y", "z"]

    def test_warning_lists_root_models_only(self):
        x1 = make_model("x1", Collection("xs"))
        x2 = make_model("x2", x1)
        y1 = make_model("y1", Collection("ys"))
        y2 = make_model("y2", y1)
        result = validate(build_graph([x2, y2]))
        assert result.warnings[0].models == ["x2", "y2"]

    def test_fan_out_is_connected(self, fan_out):
        base, left, right = fan_out
        result = validate(build_graph([left, right]))
        assert result.valid
        assert result.warnings == []

    def test_shared_collection_connects_models(self, raw):
        x = make_model("x", raw)
        y = make_model("y", raw)
        result = validate(build_graph([x, y]))
        assert result.valid
        assert result.warnings == []

    def test_same_collection_name_in_other_database_is_separate(self):
        x = make_model("x", Collection("events", database="eu"))
        y = make_model("y", Collection("events", database="us"))
        assert validate(build_graph([x, y])).warnings[0].models == ["x", "y"]

    def test_single_model(self, raw):
        assert validate(build_graph([make_model("only", raw)])).warnings == []
