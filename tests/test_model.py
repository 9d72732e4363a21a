"""Tests for models, materialization configs and compiled programs."""

from __future__ import annotations

import pytest

from manifold.engine import (
    Collection,
    MaterializeConfig,
    MergeOptions,
    Mode,
    Model,
    Pipeline,
    SourceKind,
    TimeSeriesOptions,
)
from manifold.errors import ConfigurationError


def _model(materialize, name="daily", pipeline=None, source=None):
    return Model(
        name=name,
        from_=source or Collection("events"),
        pipeline=pipeline,
        materialize=materialize,
    )


class TestOutputStage:
    def test_replace_without_database(self):
        m = _model(MaterializeConfig.collection(Mode.REPLACE))
        assert m.output_stage() == {"$out": "daily"}

    def test_replace_with_database(self):
        m = _model(MaterializeConfig.collection(Mode.REPLACE, database="analytics"))
        assert m.output_stage() == {"$out": {"db": "analytics", "coll": "daily"}}

    def test_upsert(self):
        m = _model(MaterializeConfig.collection(Mode.UPSERT))
        assert m.output_stage() == {
            "$merge": {
                "into": "daily",
                "on": "_id",
                "whenMatched": "replace",
                "whenNotMatched": "insert",
            }
        }

    def test_append_with_database(self):
        m = _model(MaterializeConfig.collection(Mode.APPEND, database="analytics"))
        assert m.output_stage() == {
            "$merge": {
                "into": {"db": "analytics", "coll": "daily"},
                "on": "_id",
                "whenMatched": "fail",
                "whenNotMatched": "insert",
            }
        }

    def test_custom_merge(self):
        options = MergeOptions(on=["day", "region"], when_matched="merge", when_not_matched="discard")
        m = _model(MaterializeConfig.collection(options))
        assert m.output_stage() == {
            "$merge": {
                "into": "daily",
                "on": ["day", "region"],
                "whenMatched": "merge",
                "whenNotMatched": "discard",
            }
        }

    def test_view_has_no_output_stage(self):
        m = _model(MaterializeConfig.view(), pipeline=lambda p: p.match({"ok": True}))
        assert m.output_stage() is None
        assert m.build_pipeline() == [{"$match": {"ok": True}}]

    def test_alias_renames_output(self):
        m = _model(MaterializeConfig.collection(Mode.REPLACE, alias="daily_v2"))
        assert m.output_name() == "daily_v2"
        assert m.output_stage() == {"$out": "daily_v2"}

    def test_mode_accepts_string(self):
        config = MaterializeConfig.collection("upsert")
        assert config.mode is Mode.UPSERT


class TestMaterializeConfigValidation:
    def test_collection_requires_mode(self):
        with pytest.raises(ConfigurationError, match="requires a mode"):
            MaterializeConfig(kind="collection")

    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError, match="Unknown materialization mode"):
            MaterializeConfig.collection("overwrite")

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError, match="Unknown materialization kind"):
            MaterializeConfig(kind="table", mode=Mode.REPLACE)

    def test_timeseries_only_for_collections(self):
        with pytest.raises(ConfigurationError, match="Time-series"):
            MaterializeConfig(kind="view", timeseries=TimeSeriesOptions(time_field="ts"))

    def test_invalid_alias(self):
        with pytest.raises(ConfigurationError, match="output alias"):
            MaterializeConfig.collection(Mode.REPLACE, alias="bad$name")


class TestModel:
    def test_requires_materialize(self):
        with pytest.raises(ConfigurationError, match="no materialization"):
            Model(name="m", from_=Collection("events"))

    def test_rejects_non_source(self):
        with pytest.raises(ConfigurationError, match="from_"):
            Model(name="m", from_="events", materialize=MaterializeConfig.view())

    @pytest.mark.parametrize("name", ["", "$bad", "nul\0byte", "system.views"])
    def test_invalid_names(self, name):
        with pytest.raises(ConfigurationError):
            _model(MaterializeConfig.view(), name=name)

    @pytest.mark.parametrize("name", ["2024_orders", "order items", "events-v2", "daily.totals"])
    def test_names_mongodb_accepts(self, name):
        assert _model(MaterializeConfig.view(), name=name).name == name

    @pytest.mark.parametrize("name", ["2024_orders", "order items"])
    def test_existing_collection_names_are_accepted(self, name):
        assert Collection(name).name == name

    def test_collection_name_rejects_dollar(self):
        with pytest.raises(ConfigurationError, match="collection name"):
            Collection("orders$x")

    def test_accessors_for_collection_source(self):
        m = _model(MaterializeConfig.collection(Mode.REPLACE), source=Collection("events", database="raw"))
        assert m.source_kind is SourceKind.MODEL
        assert m.source_name() == "events"
        assert m.source_database() == "raw"
        assert m.source_is_model is False
        assert m.upstream is None
        assert m.output_database() is None

    def test_accessors_for_model_source(self):
        upstream = _model(MaterializeConfig.collection(Mode.REPLACE, alias="events_clean"), name="clean")
        m = _model(MaterializeConfig.view(), name="recent", source=upstream)
        assert m.source_is_model is True
        assert m.upstream is upstream
        # Downstream models read the upstream's output collection
        assert m.source_name() == "events_clean"

    def test_pipeline_function_evaluated_once(self):
        calls = []

        def build(p):
            calls.append(1)
            return p.match({"x": 1})

        m = _model(MaterializeConfig.view(), pipeline=build)
        m.compile_operations()
        m.compile_operations()
        assert len(calls) == 1

    def test_prebuilt_pipeline(self):
        m = _model(MaterializeConfig.view(), pipeline=Pipeline().limit(5))
        assert m.compile_operations() == [{"$limit": 5}]

    def test_pipeline_function_must_return_pipeline(self):
        m = _model(MaterializeConfig.view(), pipeline=lambda p: [{"$match": {}}])
        with pytest.raises(ConfigurationError, match="must return a Pipeline"):
            m.compile_operations()

    def test_compile_operations_is_a_copy(self):
        m = _model(MaterializeConfig.view(), pipeline=lambda p: p.match({"x": 1}))
        ops = m.compile_operations()
        ops[0]["$match"]["x"] = 2
        assert m.compile_operations() == [{"$match": {"x": 1}}]


    def test_lookup_into_other_database_is_rejected(self):
        users = _model(MaterializeConfig.collection(Mode.REPLACE, database="crm"), name="users")
        m = _model(
            MaterializeConfig.view(),
            pipeline=lambda p: p.lookup(from_=users, as_="user", local_field="uid", foreign_field="_id"),
        )
        with pytest.raises(ConfigurationError, match=r"\$lookup reads 'users' from database 'crm'"):
            m.compile_operations()

    def test_nested_union_with_other_database_is_rejected(self):
        archive = Collection("events_2023", database="archive")
        m = _model(
            MaterializeConfig.view(),
            pipeline=lambda p: p.lookup(
                from_=Collection("users"),
                as_="user",
                pipeline=lambda sub: sub.union_with(archive),
            ),
        )
        with pytest.raises(ConfigurationError, match="unionWith"):
            m.compile_operations()

    def test_lookup_within_source_database(self):
        m = _model(
            MaterializeConfig.collection(Mode.REPLACE, database="analytics"),
            source=Collection("events", database="raw"),
            pipeline=lambda p: p.lookup(
                from_=Collection("users", database="raw"), as_="u", local_field="uid", foreign_field="_id"
            ),
        )
        assert m.compile_operations()[0]["$lookup"]["from"] == "users"


class TestCompileProgram:
    def test_collection_program(self):
        m = _model(
            MaterializeConfig.collection(Mode.UPSERT, database="analytics"),
            pipeline=lambda p: p.match({"active": True}),
            source=Collection("events", database="raw"),
        )
        program = m.compile_program()
        assert program.model == "daily"
        assert program.kind == "collection"
        assert program.source_name == "events"
        assert program.source_database == "raw"
        assert program.target_name == "daily"
        assert program.target_database == "analytics"
        assert program.operations[0] == {"$match": {"active": True}}
        assert program.operations[-1]["$merge"]["into"] == {"db": "analytics", "coll": "daily"}
        assert len(program.operations) == 2

    def test_timeseries_options(self):
        ts = TimeSeriesOptions(time_field="ts", meta_field="sensor", granularity="minutes", expire_after_seconds=3600)
        m = _model(MaterializeConfig.collection(Mode.APPEND, timeseries=ts))
        assert m.compile_program().timeseries is ts
        assert ts.to_create_options() == {
            "timeseries": {"timeField": "ts", "metaField": "sensor", "granularity": "minutes"},
            "expireAfterSeconds": 3600,
        }
