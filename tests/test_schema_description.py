"""Tests for schema descriptions, column naming and request configuration."""

import pytest

from conftest import USER, make_schema

from ingen_synth.python_libs.common.column_naming import (
    ColumnNamingAnalyzer,
    pluralize,
    singularize,
    snake_case,
)
from ingen_synth.python_libs.common.errors import ConfigurationError, SchemaMismatchError
from ingen_synth.python_libs.common.schema_description import (
    ColumnDescription,
    RelationshipKind,
    SchemaCatalog,
    SchemaDescription,
)
from ingen_synth.python_libs.common.synthetic_data_config import (
    Cohort,
    GenerationRequest,
    PatternSpec,
    ScenarioStep,
)


# ============================================================================
# Column naming
# ============================================================================


class TestInflection:
    @pytest.mark.parametrize(
        "name, expected",
        [("OrderItem", "order_item"), ("order-item", "order_item"), ("HTTPLog", "httplog"), ("user", "user")],
    )
    def test_snake_case(self, name, expected):
        assert snake_case(name) == expected

    @pytest.mark.parametrize(
        "word, plural",
        [("user", "users"), ("category", "categories"), ("box", "boxes"), ("person", "people"),
         ("order_item", "order_items"), ("data", "data"), ("day", "days")],
    )
    def test_pluralize(self, word, plural):
        assert pluralize(word) == plural

    @pytest.mark.parametrize(
        "word, singular",
        [("users", "user"), ("categories", "category"), ("addresses", "address"), ("people", "person"),
         ("order_items", "order_item"), ("news", "news"), ("class", "class")],
    )
    def test_singularize(self, word, singular):
        assert singularize(word) == singular


class TestColumnNamingAnalyzer:
    @pytest.fixture
    def analyzer(self):
        return ColumnNamingAnalyzer()

    @pytest.mark.parametrize(
        "column, table",
        [("user_id", "users"), ("category_id", "categories"), ("parent_order_id", "parent_orders"),
         ("id", None), ("uuid", None), ("paid", None)],
    )
    def test_infer_table(self, analyzer, column, table):
        assert analyzer.infer_table(column) == table

    @pytest.mark.parametrize(
        "column, category",
        [
            ("status", "status"),
            ("order_status", "status"),
            ("order_number", "number"),
            ("tracking_code", "number"),
            ("user_uuid", "uuid"),
            ("slug", "slug"),
            ("sku", "sku"),
            ("isbn", "isbn"),
            ("display_name", "name"),
            ("email_address", "email"),
            ("password_hash", "password"),
            ("state", "state"),
            ("account_type", "type"),
            ("role", "role"),
            ("grand_total", "amount"),
            ("discount", "amount"),
            ("description", None),
        ],
    )
    def test_special_field_category(self, analyzer, column, category):
        assert analyzer.special_field_category(column) == category

    def test_special_fields(self, analyzer):
        assert analyzer.special_fields(["id", "name", "bio", "status"]) == ["name", "status"]


# ============================================================================
# Schema descriptions
# ============================================================================


class TestSchemaDescription:
    def test_entity_derived_from_table(self):
        assert SchemaDescription.from_dict({"table": "order_items"}).entity == "OrderItem"

    def test_table_derived_from_entity(self):
        assert SchemaDescription.from_dict({"entity": "Category"}).table == "categories"

    def test_name_required(self):
        with pytest.raises(ConfigurationError):
            SchemaDescription.from_dict({"columns": {"a": {"type": "string"}}})

    def test_relationships_from_list(self):
        schema = make_schema(
            "Author", "authors", {"id": {"type": "integer"}},
            relationships=[{"name": "books", "type": "hasMany", "related": "Book", "count_range": [1, 4]}],
        )
        (relationship,) = schema.relationships
        assert relationship.kind is RelationshipKind.HAS_MANY
        assert relationship.related_entity == "Book"
        assert relationship.count_range == (1, 4)

    @pytest.mark.parametrize(
        "value, kind",
        [("hasOne", RelationshipKind.HAS_ONE), ("ONE_TO_ONE", RelationshipKind.HAS_ONE),
         ("belongsToMany", RelationshipKind.BELONGS_TO_MANY), ("many_to_one", RelationshipKind.BELONGS_TO)],
    )
    def test_relationship_kind_aliases(self, value, kind):
        assert RelationshipKind.parse(value) is kind

    @pytest.mark.parametrize(
        "spec",
        [
            {"kind": "siblings", "related_entity": "User"},
            {"kind": "has_one"},
            {"kind": "has_one", "related_entity": "Profile", "existence_probability": 1.5},
            {"kind": "has_many", "related_entity": "Order", "count_range": [3, 1]},
        ],
    )
    def test_invalid_relationships(self, spec):
        with pytest.raises(ConfigurationError):
            make_schema("User", "users", {}, relationships={"rel": spec})

    def test_foreign_key_requires_table(self):
        with pytest.raises(ConfigurationError, match="foreign_table"):
            make_schema("Order", "orders", {}, foreign_keys=[{"column": "user_id"}])

    @pytest.mark.parametrize(
        "declared, canonical",
        [("varchar", "string"), ("bigint", "integer"), ("numeric", "decimal"), ("double", "float"),
         ("timestamp", "datetime"), ("jsonb", "json"), ("longtext", "text"), ("time", "time"),
         ("geometry", "string")],
    )
    def test_canonical_types(self, declared, canonical):
        assert ColumnDescription(name="c", type=declared).canonical_type == canonical

    def test_enum_values_win_over_type(self):
        column = ColumnDescription.from_dict("tier", {"type": "string", "values": ["gold", "silver"]})
        assert column.canonical_type == "enum"
        assert column.enum_values == ("gold", "silver")

    def test_unknown_column(self, schemas):
        with pytest.raises(SchemaMismatchError, match="colour"):
            schemas["Product"].column("colour")

    def test_primary_key_and_timestamps(self):
        schema = make_schema(
            "Country", "countries", {"code": {"type": "string"}, "created_at": {"type": "datetime"}},
            primary_key="code", incrementing=False, timestamps=False,
        )
        assert not schema.is_auto_primary_key(schema.column("code"))
        assert not schema.is_managed_timestamp("created_at")

    def test_to_dict_is_accepted_back(self):
        schema = SchemaDescription.from_dict(USER)
        assert SchemaDescription.from_dict(schema.to_dict()) == schema


class TestSchemaCatalog:
    def test_lookup_by_entity_or_table(self, catalog):
        assert catalog.get("users").entity == "User"
        assert catalog.get("User").table == "users"
        assert catalog.entity_for_table("orders") == "Order"
        assert catalog.entity_for_table("invoices") is None
        assert "Tag" in catalog
        assert "Invoice" not in catalog
        assert len(catalog) == 6

    def test_unknown_entity(self, catalog):
        assert catalog.find("Invoice") is None
        with pytest.raises(SchemaMismatchError, match="Invoice"):
            catalog.get("Invoice")

    def test_add(self):
        catalog = SchemaCatalog()
        catalog.add(make_schema("Tag", "tags", {}))
        assert [s.entity for s in catalog] == ["Tag"]


# ============================================================================
# Requests, cohorts and scenario steps
# ============================================================================


class TestPatternSpec:
    def test_forms(self):
        assert PatternSpec.from_value("normal") == PatternSpec(type="normal")
        nested = PatternSpec.from_value({"type": "normal", "params": {"mean": 1}})
        flat = PatternSpec.from_value({"type": "normal", "mean": 1})
        assert nested.params == flat.params == {"mean": 1}
        assert flat.to_dict() == {"type": "normal", "params": {"mean": 1}}

    @pytest.mark.parametrize("value", [{"mean": 1}, 42])
    def test_invalid(self, value):
        with pytest.raises(ConfigurationError):
            PatternSpec.from_value(value)


class TestGenerationRequest:
    @pytest.mark.parametrize(
        "kwargs",
        [{"count": -1}, {"count": True}, {"count": 5, "chunk_size": 0}, {"count": 5, "workers": 0},
         {"count": 5, "memory_limit": "lots"}],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            GenerationRequest(entity="Product", **kwargs).validate()

    def test_schema_checks(self, schemas):
        with pytest.raises(SchemaMismatchError, match="does not match"):
            GenerationRequest(entity="Product", count=1).validate(schemas["Tag"])
        with pytest.raises(SchemaMismatchError, match="Column patterns.*colour"):
            GenerationRequest(entity="Product", count=1, column_patterns={"colour": "normal"}).validate(
                schemas["Product"]
            )
        with pytest.raises(SchemaMismatchError, match="Entity patterns"):
            GenerationRequest(
                entity="Product", count=1, model_patterns={"Product": {"weight": "normal"}}
            ).validate(schemas["Product"])

    def test_from_dict_and_to_dict(self):
        request = GenerationRequest.from_dict(
            {"entity": "Order", "count": 10, "column_patterns": {"total": "normal"}, "seed": 3}
        )
        request.overrides["status"] = lambda ctx: "paid"
        data = request.to_dict()
        assert data["overrides"] == {"status": "<callable>"}
        assert data["column_patterns"] == {"total": {"type": "normal", "params": {}}}
        assert data["seed"] == 3
        assert request.has_callable_overrides()

    def test_from_dict_requires_count(self):
        with pytest.raises(ConfigurationError):
            GenerationRequest.from_dict({"entity": "Order"})


class TestCohortsAndSteps:
    def test_percentage_share(self):
        assert Cohort.from_dict({"name": "vip", "percentage": 20}).share == pytest.approx(0.2)

    @pytest.mark.parametrize("data", [{"name": "vip"}, {"name": "vip", "share": -0.2}])
    def test_invalid_cohort(self, data):
        with pytest.raises(ConfigurationError):
            Cohort.from_dict(data)

    def test_last_cohort_takes_remainder(self):
        step = ScenarioStep(
            entity="User", count=10, cohorts=[Cohort("a", 1 / 3), Cohort("b", 1 / 3), Cohort("c", 1 / 3)]
        )
        assert step.cohort_counts() == {"a": 3, "b": 3, "c": 4}

    def test_unnamed_cohorts_keep_every_record(self):
        step = ScenarioStep.from_dict(
            {"entity": "User", "count": 1000, "cohorts": [{"share": 0.2}, {"share": 0.5}, {"share": 0.3}]}
        )
        assert [c.name for c in step.cohorts] == ["cohort_1", "cohort_2", "cohort_3"]
        assert step.cohort_counts() == {"cohort_1": 200, "cohort_2": 500, "cohort_3": 300}
        assert sum(r.count for r in step.requests()) == 1000

    def test_duplicate_cohort_names_rejected(self):
        with pytest.raises(ConfigurationError, match="duplicate cohort names: vip"):
            ScenarioStep(entity="User", count=10, cohorts=[Cohort("vip", 0.5), Cohort("vip", 0.5)])

    def test_shares_cannot_exceed_one(self):
        with pytest.raises(ConfigurationError, match="sum"):
            ScenarioStep(entity="User", count=10, cohorts=[Cohort("a", 0.6), Cohort("b", 0.6)])

    def test_requests_per_cohort(self):
        step = ScenarioStep.from_dict(
            {
                "entity": "User",
                "count": 100,
                "overrides": {"status": "active", "age": 30},
                "cohorts": [
                    {"name": "young", "share": 0.25, "overrides": {"age": 21}},
                    {"name": "rest", "share": 0.75},
                ],
            }
        )
        young, rest = step.requests(seed=10, transactional=False)
        assert (young.count, rest.count) == (25, 75)
        assert young.overrides == {"status": "active", "age": 21}
        assert rest.overrides == {"status": "active", "age": 30}
        assert (young.seed, rest.seed) == (10, 11)
        assert young.transactional is False

    @pytest.mark.parametrize("data", [{"count": 5}, {"entity": "User", "count": -5}])
    def test_invalid_step(self, data):
        with pytest.raises(ConfigurationError):
            ScenarioStep.from_dict(data)
