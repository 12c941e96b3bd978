"""
Scenario validation ahead of a run.

Checks a scenario template against the schema catalog, the data store and the
engine settings without generating anything. Problems that would make the run
fail are errors; anything that only deserves attention is a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.errors import DependencyCycleError, SyntheticDataError
from ingen_synth.python_libs.common.schema_description import SchemaCatalog
from ingen_synth.python_libs.interfaces.data_store_interface import DataStoreError, DataStoreInterface

from .scenario_plan import ScenarioDefinition, build_plan
from .scenario_registry import ScenarioTemplate

logger = logging.getLogger(__name__)

LOW_MEMORY_BYTES = 256 * 1024 * 1024


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


class ScenarioValidator:
    """Validates scenarios against a catalog and, optionally, a store."""

    def __init__(self, catalog: SchemaCatalog, store: Optional[DataStoreInterface] = None,
                 settings: Optional[EngineSettings] = None):
        self.catalog = catalog
        self.store = store
        self.settings = settings or EngineSettings()

    def validate(self, scenario: Union[ScenarioTemplate, ScenarioDefinition],
                 params: Optional[Mapping[str, Any]] = None) -> ValidationResult:
        if isinstance(scenario, ScenarioDefinition):
            scenario = ScenarioTemplate.from_definition(scenario)
        result = ValidationResult()

        self._check_basics(scenario, result)
        self._check_required_entities(scenario, result)
        result.errors.extend(scenario.parameter_errors(params))
        for name in scenario.unknown_parameters(params):
            result.warnings.append(f"Unknown parameter: {name}")

        if result.is_valid:
            try:
                definition = scenario.build(params, self.catalog)
            except SyntheticDataError as exc:
                result.errors.append(f"Scenario does not build: {exc}")
            else:
                self._check_definition(definition, result)

        self._check_memory(result)
        logger.debug(
            f"🔍 Validated scenario {scenario.name}: {len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    def _check_basics(self, scenario: ScenarioTemplate, result: ValidationResult) -> None:
        if not scenario.name:
            result.errors.append("Scenario name is required")
        if not scenario.description:
            result.warnings.append("Scenario description is missing")

    def _check_required_entities(self, scenario: ScenarioTemplate, result: ValidationResult) -> None:
        for entity in scenario.required_entities:
            schema = self.catalog.find(entity)
            if schema is None:
                result.errors.append(f"Required entity {entity} has no schema description")
            elif self.store is not None and not self.store.table_exists(schema.table):
                result.errors.append(f"Table {schema.table} for required entity {entity} does not exist")

    def _check_definition(self, definition: ScenarioDefinition, result: ValidationResult) -> None:
        entities = {step.entity for step in definition.steps}
        for step in definition.steps:
            schema = self.catalog.find(step.entity)
            if schema is None:
                result.errors.append(f"Entity {step.entity} has no schema description")
                continue
            try:
                for request in step.requests():
                    request.validate(schema)
            except SyntheticDataError as exc:
                result.errors.append(f"Step {step.entity}: {exc}")
            for table in schema.referenced_tables():
                target = self.catalog.entity_for_table(table) or table
                if target != step.entity and target not in entities:
                    result.warnings.append(
                        f"{step.entity} references {target}, which the scenario does not generate"
                    )
            for relationship in schema.relationships:
                if relationship.related_entity not in entities and step.populate_relationships:
                    result.warnings.append(
                        f"{step.entity}.{relationship.name} relates to {relationship.related_entity}, "
                        f"which the scenario does not generate"
                    )
            self._check_existing_rows(step.entity, schema.table, result)
        if not result.is_valid:
            return

        try:
            plan = build_plan(definition.steps, self.catalog, strict=self.settings.strict_cycles, name=definition.name)
        except DependencyCycleError as exc:
            result.errors.append(str(exc))
            return
        result.warnings.extend(issue.message for issue in plan.warnings)

    def _check_existing_rows(self, entity: str, table: str, result: ValidationResult) -> None:
        if self.store is None:
            return
        try:
            if not self.store.table_exists(table):
                return
            count = self.store.count_rows(table)
        except DataStoreError as exc:
            result.warnings.append(f"Could not inspect {table}: {exc}")
            return
        if count:
            result.warnings.append(f"{entity} ({table}) already has {count:,} records")

    def _check_memory(self, result: ValidationResult) -> None:
        limit = self.settings.memory_limit_bytes
        if limit != -1 and limit < LOW_MEMORY_BYTES:
            result.warnings.append(f"Low memory limit ({limit // (1024 * 1024)}MB) may slow generation")
