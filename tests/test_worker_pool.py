"""Tests for process-pool chunk synthesis helpers."""

from conftest import make_schema

from ingen_synth.python_libs.common.schema_description import SchemaDescription
from ingen_synth.python_libs.common.synthetic_data_config import GenerationRequest
from ingen_synth.python_libs.patterns.distributions import NormalDistribution
from ingen_synth.python_libs.patterns.pattern_engine import PatternEngine
from ingen_synth.python_libs.python.foreign_key_cache import ForeignKeyCache
from ingen_synth.python_libs.python.worker_pool import (
    build_work_units,
    derive_chunk_seed,
    fallback_reason,
    foreign_key_snapshot,
    iter_parallel_chunks,
    run_chunk_work_unit,
)

EMPLOYEE = {
    "entity": "Employee",
    "table": "employees",
    "columns": {
        "id": {"type": "integer", "primary_key": True, "auto_increment": True},
        "manager_id": {"type": "integer", "nullable": True},
        "name": {"type": "string"},
    },
    "foreign_keys": [{"column": "manager_id", "foreign_table": "employees"}],
}


def _units(schemas, settings, count=250, chunk_size=100, fk_ids=None, **request_kwargs):
    request = GenerationRequest(entity="Order", count=count, **request_kwargs)
    return build_work_units(request, schemas["Order"], settings, chunk_size, fk_ids or {"users.id": [7, 8, 9]})


class TestChunkSeeds:
    def test_seed_is_stable_and_bounded(self):
        seed = derive_chunk_seed(42, "Order", 3)
        assert seed == derive_chunk_seed(42, "Order", 3)
        assert 0 <= seed < 2 ** 32

    def test_seed_varies_with_inputs(self):
        seeds = {
            derive_chunk_seed(42, "Order", 0),
            derive_chunk_seed(42, "Order", 1),
            derive_chunk_seed(42, "User", 0),
            derive_chunk_seed(43, "Order", 0),
        }
        assert len(seeds) == 4


class TestFallbackReason:
    def test_plain_request_can_use_workers(self, schemas, engine):
        request = GenerationRequest(entity="Order", count=10, column_patterns={"total": "normal"})
        assert fallback_reason(request, schemas["Order"], engine) is None

    def test_callable_overrides(self, schemas, engine):
        request = GenerationRequest(entity="Order", count=10, overrides={"status": lambda ctx: "paid"})
        assert fallback_reason(request, schemas["Order"], engine) == "callable overrides"

    def test_pattern_instances(self, schemas, engine):
        request = GenerationRequest(
            entity="Order", count=10, column_patterns={"total": NormalDistribution({"mean": 5})}
        )
        assert fallback_reason(request, schemas["Order"], engine) == "pattern instances"

    def test_unknown_pattern_type(self, schemas, engine):
        request = GenerationRequest(
            entity="Order", count=10, model_patterns={"Order": {"total": {"type": "zipf", "s": 2}}}
        )
        assert fallback_reason(request, schemas["Order"], engine) == "custom pattern 'zipf'"

    def test_engine_with_custom_registrations(self, schemas):
        engine = PatternEngine()
        engine.register("constant", lambda params: NormalDistribution({"mean": 1, "stddev": 0.001}))
        request = GenerationRequest(entity="Order", count=10)
        assert fallback_reason(request, schemas["Order"], engine) == "custom pattern registrations"

    def test_self_referencing_foreign_key(self, engine):
        schema = SchemaDescription.from_dict(EMPLOYEE)
        request = GenerationRequest(entity="Employee", count=10)
        assert fallback_reason(request, schema, engine) == "self-referencing foreign keys"


class TestWorkUnits:
    def test_units_cover_the_request(self, schemas, settings):
        units = _units(schemas, settings)
        assert [u.chunk_index for u in units] == [0, 1, 2]
        assert [u.start_index for u in units] == [0, 100, 200]
        assert [u.size for u in units] == [100, 100, 50]
        assert len({u.seed for u in units}) == 3
        assert all(u.total == 250 for u in units)

    def test_units_are_plain_data(self, schemas, settings):
        unit = _units(schemas, settings, column_patterns={"total": "normal"})[0]
        payload = unit.to_payload()
        assert SchemaDescription.from_dict(payload["schema"]).entity == "Order"
        assert payload["column_patterns"] == {"total": {"type": "normal", "params": {}}}
        assert payload["settings"]["seed"] == 42
        assert payload["foreign_key_ids"] == {"users.id": [7, 8, 9]}

    def test_snapshot_covers_bound_columns(self, schemas, memory_store):
        memory_store.insert_rows(
            "users",
            [{"organization_id": 1, "name": "a", "email": "a@example.com", "status": "active", "age": 40}],
        )
        cache = ForeignKeyCache(memory_store)
        assert foreign_key_snapshot(schemas["Order"], memory_store, cache) == {"users.id": [1]}

    def test_snapshot_skips_inferred_missing_tables(self, memory_store):
        schema = make_schema("Shipment", "shipments", {"warehouse_id": {"type": "integer"}})
        assert foreign_key_snapshot(schema, memory_store, ForeignKeyCache(memory_store)) == {}


class TestRunChunkWorkUnit:
    def test_chunk_draws_foreign_keys_from_snapshot(self, schemas, settings):
        payload = _units(schemas, settings)[2].to_payload()
        outcome = run_chunk_work_unit(payload)

        assert outcome["chunk_index"] == 2
        assert len(outcome["records"]) == 50
        assert {r["user_id"] for r in outcome["records"]} <= {7, 8, 9}
        assert all("id" not in r for r in outcome["records"])
        assert outcome["issues"] == []

    def test_chunk_is_deterministic(self, schemas, settings):
        payloads = [u.to_payload() for u in _units(schemas, settings)]
        first = run_chunk_work_unit(payloads[0])
        assert run_chunk_work_unit(payloads[0])["records"] == first["records"]
        assert run_chunk_work_unit(payloads[1])["records"] != first["records"]

    def test_empty_snapshot_reports_issue(self, schemas, settings):
        payload = _units(schemas, settings, count=5, fk_ids={"users.id": []})[0].to_payload()
        outcome = run_chunk_work_unit(payload)
        assert {r["user_id"] for r in outcome["records"]} == {settings.fk_fallback_value}
        assert [i["kind"] for i in outcome["issues"]] == ["referential_integrity"]


def test_parallel_chunks_arrive_in_order(schemas, settings):
    units = _units(schemas, settings, count=500)
    indices = [index for index, records, issues in iter_parallel_chunks(units, 2, max_inflight=2)]
    assert indices == [0, 1, 2, 3, 4]
