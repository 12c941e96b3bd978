"""Tests for named scenarios, the built-in presets and scenario validation."""

from datetime import datetime

import pytest

from conftest import ALL_SCHEMAS, FIXED_NOW

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.errors import ConfigurationError
from ingen_synth.python_libs.common.schema_description import SchemaCatalog
from ingen_synth.python_libs.common.synthetic_data_config import ScenarioStep
from ingen_synth.python_libs.python.memory_store import InMemoryDataStore
from ingen_synth.python_libs.python.scenario_orchestrator import ScenarioOrchestrator
from ingen_synth.python_libs.python.scenario_plan import ScenarioDefinition
from ingen_synth.python_libs.python.scenario_registry import ScenarioRegistry, load_scenario_template
from ingen_synth.python_libs.python.scenario_validator import ScenarioValidator

TAG_BATCH_META = """\
name: tag_batch
description: Tags stamped with the run date
template: tag_batch.yml.jinja
parameters:
  tag_count:
    type: integer
    default: 2
    min: 1
"""

TAG_BATCH_TEMPLATE = """\
steps:
  - entity: Tag
    count: {{ tag_count }}
    overrides:
      label: "since-{{ days_ago(7) }}-until-{{ today }}"
"""


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def registry(clock):
    return ScenarioRegistry(clock=clock)


@pytest.fixture
def orchestrator(memory_store, catalog, engine, settings, clock):
    return ScenarioOrchestrator(memory_store, catalog, engine=engine, settings=settings, clock=clock)


@pytest.fixture
def tag_batch(tmp_path):
    (tmp_path / "tag_batch.yml.jinja").write_text(TAG_BATCH_TEMPLATE)
    path = tmp_path / "tag_batch.yml"
    path.write_text(TAG_BATCH_META)
    return path


def _linked(entity, table, foreign_table):
    """Schema whose only foreign key points at ``foreign_table``."""
    key = f"{foreign_table[:-1]}_id"
    return {
        "entity": entity,
        "table": table,
        "columns": {
            "id": {"type": "integer", "primary_key": True, "auto_increment": True},
            key: {"type": "integer", "nullable": True},
        },
        "foreign_keys": [{"column": key, "foreign_table": foreign_table}],
    }


def _as_datetime(value):
    return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))


# ============================================================================
# Registry
# ============================================================================


class TestScenarioRegistry:
    def test_presets_are_listed_with_aliases(self, registry):
        listed = registry.list()
        assert {"ecommerce", "e-commerce", "saas"} <= set(listed)
        assert listed["ecommerce"]["name"] == "E-commerce Store"
        assert listed["saas"]["description"]
        assert registry.get("e-commerce") is registry.get("ecommerce")

    def test_unknown_scenario(self, registry):
        assert not registry.has("absent")
        with pytest.raises(ConfigurationError, match="not found"):
            registry.get("absent")

    def test_registered_definition_runs(self, registry, orchestrator, memory_store):
        registry.register("tags", ScenarioDefinition(name="tags", steps=[ScenarioStep(entity="Tag", count=3)]))
        result = registry.run("tags", orchestrator)
        assert result.success
        assert memory_store.count_rows("tags") == 3

    def test_registered_step_file(self, registry, tmp_path):
        path = tmp_path / "nightly.yml"
        path.write_text("- entity: Tag\n  count: 4\n")
        registry.register("nightly", path)
        definition = registry.definition("nightly")
        assert definition.name == "nightly"
        assert definition.steps[0].count == 4

    def test_template_file_renders_parameters_and_dates(self, registry, tag_batch):
        registry.register("tag_batch", tag_batch)
        definition = registry.definition("tag_batch", {"tag_count": 5})
        step = definition.steps[0]
        assert step.count == 5
        assert step.overrides == {"label": "since-2024-02-23-until-2024-03-01"}
        assert registry.definition("tag_batch").steps[0].count == 2

    def test_template_with_undefined_name_fails(self, tmp_path):
        (tmp_path / "broken.yml.jinja").write_text("steps:\n  - entity: Tag\n    count: {{ missing }}\n")
        path = tmp_path / "broken.yml"
        path.write_text("name: broken\ntemplate: broken.yml.jinja\n")
        with pytest.raises(ConfigurationError, match="failed to render"):
            load_scenario_template(path).build()

    def test_missing_template_source(self, tmp_path):
        path = tmp_path / "orphan.yml"
        path.write_text("name: orphan\ntemplate: nowhere.jinja\n")
        with pytest.raises(ConfigurationError, match="template not found"):
            load_scenario_template(path)

    @pytest.mark.parametrize(
        "params, message",
        [
            ({"user_count": 5}, "at least"),
            ({"user_count": True}, "of type integer"),
            ({"time_period": 5000}, "at most"),
            ({"review_rate": "often"}, "of type float"),
        ],
    )
    def test_parameter_rules(self, registry, params, message):
        with pytest.raises(ConfigurationError, match=message):
            registry.definition("ecommerce", params)

    def test_seed_parameter_sets_definition_seed(self, registry):
        assert registry.definition("ecommerce", {"seed": 7}).seed == 7

    def test_optional_entities_follow_catalog(self, registry, catalog):
        full = [step.entity for step in registry.definition("ecommerce").steps]
        assert full == ["User", "Category", "Product", "Order", "Review"]
        adapted = [step.entity for step in registry.definition("ecommerce", catalog=catalog).steps]
        assert adapted == ["User", "Product", "Order"]

    def test_columns_absent_from_schema_are_dropped(self, registry, catalog):
        steps = {s.entity: s for s in registry.definition("ecommerce", catalog=catalog).steps}
        premium = steps["Product"].cohorts[0]
        assert set(premium.column_patterns) == {"unit_price", "stock_count"}
        assert steps["User"].cohorts[0].overrides == {"status": "active"}
        assert set(steps["Order"].column_patterns) == {"total", "placed_at"}


# ============================================================================
# Presets
# ============================================================================


class TestPresetRuns:
    def test_ecommerce(self, registry, orchestrator, memory_store):
        result = registry.run(
            "ecommerce", orchestrator, params={"user_count": 40, "product_count": 15, "order_count": 60}
        )

        assert result.success
        assert result.generated == {"User": 40, "Product": 15, "Order": 60}
        assert all(row["status"] == "active" for row in memory_store.fetch_rows("users"))

        budget = memory_store.fetch_rows("products")[-5:]
        assert all(row["is_active"] is True for row in budget)
        assert all(5 <= float(row["unit_price"]) <= 30 for row in budget)

        user_ids = set(memory_store.fetch_ids("users"))
        window_start = datetime(2023, 3, 2)
        for order in memory_store.fetch_rows("orders"):
            assert order["user_id"] in user_ids
            placed = _as_datetime(order["placed_at"])
            assert window_start <= placed < FIXED_NOW
            assert 8 <= placed.hour < 22

    def test_saas(self, registry, orchestrator, memory_store):
        result = registry.run(
            "saas",
            orchestrator,
            params={"organization_count": 4, "users_per_org": {"min": 2, "max": 4}, "churn_rate": 0.2},
        )

        assert result.success
        assert result.generated == {"Organization": 4, "User": 12}
        organization_ids = set(memory_store.fetch_ids("organizations"))
        for user in memory_store.fetch_rows("users"):
            assert user["status"] == "active"
            assert user["organization_id"] in organization_ids

    def test_saas_subscription_cohorts_split_by_churn(self, registry):
        definition = registry.definition("saas", {"churn_rate": 0.2, "trial_conversion_rate": 0.5})
        subscriptions = next(step for step in definition.steps if step.entity == "Subscription")
        shares = {cohort.name: cohort.share for cohort in subscriptions.cohorts}
        assert shares["cancelled"] == pytest.approx(0.2)
        assert shares["trialing"] == pytest.approx(0.05)
        assert shares["active"] == pytest.approx(0.75)

    def test_invalid_parameters_block_the_run(self, registry, orchestrator, memory_store):
        with pytest.raises(ConfigurationError, match="is invalid"):
            registry.run("ecommerce", orchestrator, params={"time_period": 2})
        assert memory_store.count_rows("users") == 0


# ============================================================================
# Validation
# ============================================================================


class TestScenarioValidator:
    def test_preset_against_full_catalog(self, registry, catalog, memory_store, settings):
        report = ScenarioValidator(catalog, memory_store, settings).validate(registry.get("ecommerce"))
        assert report.is_valid
        assert any("User references Organization" in w for w in report.warnings)

    def test_missing_required_entity(self, registry, settings):
        catalog = SchemaCatalog.from_dicts([s for s in ALL_SCHEMAS if s["entity"] != "Order"])
        report = ScenarioValidator(catalog, settings=settings).validate(registry.get("ecommerce"))
        assert not report.is_valid
        assert "Required entity Order has no schema description" in report.errors

    def test_missing_table(self, registry, catalog, settings):
        store = InMemoryDataStore()
        store.create_table(catalog.get("User"))
        report = ScenarioValidator(catalog, store, settings).validate(registry.get("ecommerce"))
        assert any("Table products" in e for e in report.errors)
        assert any("Table orders" in e for e in report.errors)

    def test_unknown_parameter_is_a_warning(self, registry, catalog, settings):
        report = ScenarioValidator(catalog, settings=settings).validate(registry.get("ecommerce"), {"colour": "red"})
        assert report.is_valid
        assert "Unknown parameter: colour" in report.warnings

    def test_parameter_violations_are_errors(self, registry, catalog, settings):
        report = ScenarioValidator(catalog, settings=settings).validate(registry.get("saas"), {"churn_rate": 0.9})
        assert report.errors == ["Parameter churn_rate must be at most 0.5"]

    def test_existing_rows_are_reported(self, catalog, memory_store, settings):
        memory_store.insert_rows("tags", [{"label": "a"}, {"label": "b"}])
        definition = ScenarioDefinition(name="tags", steps=[ScenarioStep(entity="Tag", count=1)])
        report = ScenarioValidator(catalog, memory_store, settings).validate(definition)
        assert report.is_valid
        assert "Tag (tags) already has 2 records" in report.warnings
        assert "Scenario description is missing" in report.warnings

    def test_unknown_override_column(self, catalog, settings):
        definition = ScenarioDefinition(
            name="tags", steps=[ScenarioStep(entity="Tag", count=1, overrides={"colour": "red"})]
        )
        report = ScenarioValidator(catalog, settings=settings).validate(definition)
        assert len(report.errors) == 1
        assert report.errors[0].startswith("Step Tag:")

    def test_cycles_warn_or_fail_in_strict_mode(self):
        catalog = SchemaCatalog.from_dicts([_linked("Alpha", "alphas", "betas"), _linked("Beta", "betas", "alphas")])
        definition = ScenarioDefinition(
            name="loop", steps=[ScenarioStep(entity="Alpha", count=1), ScenarioStep(entity="Beta", count=1)]
        )
        relaxed = ScenarioValidator(catalog, settings=EngineSettings(memory_limit=-1)).validate(definition)
        assert relaxed.is_valid
        assert any("Dependency cycle" in w for w in relaxed.warnings)

        strict = ScenarioValidator(
            catalog, settings=EngineSettings(memory_limit=-1, strict_cycles=True)
        ).validate(definition)
        assert not strict.is_valid
        assert "Dependency cycle" in strict.errors[0]

    def test_low_memory_limit(self, catalog):
        definition = ScenarioDefinition(name="tags", steps=[ScenarioStep(entity="Tag", count=1)])
        report = ScenarioValidator(catalog, settings=EngineSettings(memory_limit="128M")).validate(definition)
        assert "Low memory limit (128MB) may slow generation" in report.warnings
        assert report.to_dict()["valid"] is True
