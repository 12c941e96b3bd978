"""Tests for RelationshipResolver and ForeignKeyCache."""

import numpy as np
import pytest

from conftest import FIXED_NOW, USER, make_schema

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.column_naming import BindingKind, ForeignKeyBinding
from ingen_synth.python_libs.common.errors import IssueKind, SchemaMismatchError
from ingen_synth.python_libs.common.schema_description import (
    ColumnDescription,
    SchemaCatalog,
    SchemaDescription,
)
from ingen_synth.python_libs.python.foreign_key_cache import ForeignKeyCache
from ingen_synth.python_libs.python.relationship_resolver import (
    RelationshipResolver,
    RelationshipStats,
    default_foreign_key,
    default_pivot_table,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def resolver(memory_store, catalog, settings, clock):
    return RelationshipResolver(memory_store, catalog, settings, clock=clock, rng=np.random.default_rng(5))


@pytest.fixture
def writer(memory_store):
    """Related-row writer that inserts the overrides as they are."""
    calls = []

    def write(related, overrides):
        calls.append((related.entity, len(overrides)))
        return memory_store.insert_rows(related.table, overrides)

    write.calls = calls
    return write


def _users(store, count):
    return store.insert_rows(
        "users",
        [{"organization_id": 1, "name": f"u{i}", "email": f"u{i}@example.com", "status": "active", "age": 30}
         for i in range(count)],
    )


def _binding(column, table, kind=BindingKind.EXPLICIT):
    return ForeignKeyBinding(kind=kind, column=column, table=table)


# ============================================================================
# Foreign-key supply
# ============================================================================


class TestForeignKeyValue:
    def test_picks_existing_ids(self, resolver, memory_store, schemas):
        ids = _users(memory_store, 4)
        column = schemas["Order"].column("user_id")
        values = {resolver.foreign_key_value(_binding("user_id", "users"), column) for _ in range(50)}
        assert values <= set(ids)
        assert len(values) > 1

    def test_empty_table_nullable_column_gets_none(self, resolver, schemas):
        nullable = ColumnDescription(name="user_id", type="integer", nullable=True)
        assert resolver.foreign_key_value(_binding("user_id", "users"), nullable, schemas["Profile"]) is None
        issues = resolver.drain_issues()
        assert issues[0].kind is IssueKind.REFERENTIAL_INTEGRITY
        assert issues[0].context["fallback"] is None

    def test_empty_table_required_column_gets_fallback_once(self, memory_store, catalog, clock, schemas):
        resolver = RelationshipResolver(memory_store, catalog, EngineSettings(fk_fallback_value=99), clock=clock)
        column = schemas["Order"].column("user_id")
        values = [resolver.foreign_key_value(_binding("user_id", "users"), column, schemas["Order"]) for _ in range(5)]
        assert values == [99] * 5
        assert len(resolver.drain_issues()) == 1
        resolver.reset_warnings()
        resolver.foreign_key_value(_binding("user_id", "users"), column, schemas["Order"])
        assert len(resolver.drain_issues()) == 1

    def test_inferred_binding_to_missing_table(self, resolver, schemas):
        column = schemas["Order"].column("user_id")
        binding = _binding("warehouse_id", "warehouses", BindingKind.INFERRED)
        assert resolver.foreign_key_value(binding, column) is None
        assert resolver.drain_issues() == []

    def test_unbound_column(self, resolver, schemas):
        column = schemas["Order"].column("status")
        assert resolver.foreign_key_value(ForeignKeyBinding.unbound("status"), column) is None

    def test_resolve_binding_prefers_declared_keys(self, resolver):
        schema = make_schema(
            "Comment",
            "comments",
            {"author_id": {"type": "integer"}, "post_id": {"type": "integer"}, "id": {"type": "integer"}},
            foreign_keys=[{"column": "author_id", "foreign_table": "users"}],
        )
        assert resolver.resolve_binding(schema.column("author_id"), schema) == _binding("author_id", "users")
        assert resolver.resolve_binding(schema.column("post_id"), schema).kind is BindingKind.INFERRED
        assert resolver.resolve_binding(schema.column("id"), schema).kind is BindingKind.NONE


class TestForeignKeyCache:
    def test_lazy_load_and_invalidate(self, memory_store):
        cache = ForeignKeyCache(memory_store)
        _users(memory_store, 2)
        assert cache.ids("users") == [1, 2]
        _users(memory_store, 1)
        assert cache.ids("users") == [1, 2]
        cache.invalidate("users")
        assert cache.ids("users") == [1, 2, 3]
        assert cache.loads == 2
        assert "users" in cache

    def test_missing_table_is_empty(self, memory_store):
        cache = ForeignKeyCache(memory_store)
        assert cache.ids("ghosts") == []
        cache.clear()
        assert len(cache) == 0


# ============================================================================
# Relationship population
# ============================================================================


class TestPopulate:
    def test_has_one_skips_existing_rows(self, resolver, memory_store, schemas, writer):
        parents = _users(memory_store, 5)
        memory_store.insert_rows("profiles", [{"user_id": parents[0]}])
        only_profile = SchemaDescription.from_dict({**USER, "relationships": {"profile": USER["relationships"]["profile"]}})

        stats = resolver.populate(only_profile, parents, writer)

        assert stats.per_relationship["profile"] == {"created": 4, "linked": 0, "skipped": 1}
        assert memory_store.count_rows("profiles") == 5
        for parent in parents:
            assert memory_store.count_rows("profiles", {"user_id": parent}) == 1

    def test_has_one_probability_zero(self, resolver, memory_store, writer):
        schema = SchemaDescription.from_dict(
            {**USER, "relationships": {"profile": {"kind": "hasOne", "related_entity": "Profile",
                                                   "existence_probability": 0}}}
        )
        stats = resolver.populate(schema, _users(memory_store, 5), writer)
        assert stats.created == 0
        assert writer.calls == []

    def test_has_many_counts_within_range(self, resolver, memory_store, writer):
        schema = SchemaDescription.from_dict(
            {**USER, "relationships": {"orders": {"kind": "one_to_many", "related_entity": "Order",
                                                  "count_range": [1, 3]}}}
        )
        parents = _users(memory_store, 20)
        stats = resolver.populate(
            schema, parents, lambda related, rows: memory_store.insert_rows(
                related.table, [{**row, "total": 1.0, "status": "pending", "placed_at": FIXED_NOW} for row in rows]
            ),
        )
        for parent in parents:
            assert 1 <= memory_store.count_rows("orders", {"user_id": parent}) <= 3
        assert stats.created == memory_store.count_rows("orders")

    def test_belongs_to_many_links_existing_rows(self, resolver, memory_store, writer):
        schema = SchemaDescription.from_dict(
            {**USER, "relationships": {"tags": {"kind": "many_to_many", "related_entity": "Tag",
                                                "attach_range": [2, 10], "pivot_table": "user_tags"}}}
        )
        memory_store.insert_rows("tags", [{"label": f"t{i}"} for i in range(3)])
        parents = _users(memory_store, 10)

        stats = resolver.populate(schema, parents, writer)

        links = memory_store.fetch_rows("user_tags")
        assert writer.calls == []
        assert memory_store.count_rows("tags") == 3
        assert stats.linked == len(links)
        assert all(2 <= memory_store.count_rows("user_tags", {"user_id": p}) <= 3 for p in parents)
        assert all(link["created_at"] == FIXED_NOW for link in links)

    def test_belongs_to_many_skips_existing_links(self, resolver, memory_store, writer):
        schema = SchemaDescription.from_dict(
            {**USER, "relationships": {"tags": {"kind": "belongs_to_many", "related_entity": "Tag",
                                                "attach_range": [1, 1]}}}
        )
        memory_store.insert_rows("tags", [{"label": "only"}])
        parents = _users(memory_store, 3)
        memory_store.create_pivot_table("tag_user", "user_id", "tag_id")
        memory_store.insert_rows("tag_user", [{"user_id": parents[0], "tag_id": 1}])

        stats = resolver.populate(schema, parents, writer)

        assert stats.per_relationship["tags"] == {"created": 0, "linked": 2, "skipped": 1}
        assert memory_store.count_rows("tag_user") == 3

    def test_belongs_to_many_without_related_rows_warns(self, resolver, memory_store, writer):
        schema = SchemaDescription.from_dict(
            {**USER, "relationships": {"tags": {"kind": "belongs_to_many", "related_entity": "Tag"}}}
        )
        stats = resolver.populate(schema, _users(memory_store, 3), writer)
        assert stats.linked == 0
        assert not memory_store.table_exists("tag_user")
        assert [i.kind for i in resolver.drain_issues()] == [IssueKind.REFERENTIAL_INTEGRITY]

    def test_belongs_to_is_left_to_foreign_keys(self, resolver, memory_store, writer):
        schema = SchemaDescription.from_dict(
            {**USER, "relationships": {"organization": {"kind": "belongsTo", "related_entity": "Organization"}}}
        )
        assert resolver.populate(schema, _users(memory_store, 2), writer).per_relationship == {}

    def test_missing_related_schema(self, memory_store, settings, writer):
        resolver = RelationshipResolver(memory_store, SchemaCatalog(), settings)
        schema = SchemaDescription.from_dict(USER)
        with pytest.raises(SchemaMismatchError, match="Profile"):
            resolver.populate(schema, _users(memory_store, 1), writer)

    def test_no_parents_no_work(self, resolver, schemas, writer):
        assert resolver.populate(schemas["User"], [], writer).per_relationship == {}


class TestNamingDefaults:
    def test_default_keys_and_pivot(self, schemas):
        assert default_foreign_key("OrderItem") == "order_item_id"
        assert default_pivot_table(schemas["User"], schemas["Tag"]) == "tag_user"

    def test_stats_aggregate(self):
        stats = RelationshipStats()
        stats.add("a", created=2)
        stats.add("a", created=1, skipped=1)
        stats.add("b", linked=4)
        assert stats.created == 3
        assert stats.linked == 4
        assert stats.to_dict()["a"] == {"created": 3, "linked": 0, "skipped": 1}
