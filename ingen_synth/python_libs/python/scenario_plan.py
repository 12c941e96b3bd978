"""
Scenario planning: dependency mapping, entity ordering and YAML plan loading.

Entities are ordered so every referenced entity is generated before the
entities pointing at it. Ordering runs repeated passes over the declared
entities, bounded to twice the entity count; entities that never become ready
(dependency cycles) are appended in declaration order and reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

from ingen_synth.python_libs.common.errors import (
    ConfigurationError,
    DependencyCycleError,
    GenerationIssue,
    dependency_cycle_warning,
)
from ingen_synth.python_libs.common.schema_description import SchemaCatalog
from ingen_synth.python_libs.common.synthetic_data_config import ScenarioStep

logger = logging.getLogger(__name__)

StepInput = Union[ScenarioStep, Mapping[str, Any]]


@dataclass
class ScenarioDefinition:
    """A scenario as read from YAML, before ordering."""

    name: str
    steps: List[ScenarioStep]
    seed: Optional[int] = None
    transactional: Optional[bool] = None


@dataclass
class ScenarioPlan:
    """Steps in generation order plus the ordering diagnostics."""

    steps: List[ScenarioStep]
    order: List[str]
    dependencies: Dict[str, List[str]]
    leftovers: List[str] = field(default_factory=list)
    warnings: List[GenerationIssue] = field(default_factory=list)
    name: str = "scenario"
    seed: Optional[int] = None
    transactional: Optional[bool] = None

    @property
    def has_cycle(self) -> bool:
        return bool(self.leftovers)


def coerce_steps(steps: Iterable[StepInput]) -> List[ScenarioStep]:
    coerced = [s if isinstance(s, ScenarioStep) else ScenarioStep.from_dict(s) for s in steps]
    seen = set()
    for step in coerced:
        if step.entity in seen:
            raise ConfigurationError(f"Entity {step.entity} appears in more than one scenario step")
        seen.add(step.entity)
    return coerced


def build_dependency_map(steps: Sequence[ScenarioStep], catalog: SchemaCatalog) -> Dict[str, List[str]]:
    """Entity -> entities it references, limited to the entities in the plan."""
    entities = [step.entity for step in steps]
    in_plan = set(entities)
    dependencies: Dict[str, List[str]] = {}
    for step in steps:
        schema = catalog.get(step.entity)
        required: List[str] = []
        for table in schema.referenced_tables():
            entity = catalog.entity_for_table(table) or table
            if entity != step.entity and entity in in_plan and entity not in required:
                required.append(entity)
        for entity in step.depends_on:
            if entity != step.entity and entity in in_plan and entity not in required:
                required.append(entity)
        dependencies[step.entity] = required
    return dependencies


def order_entities(entities: Sequence[str], dependencies: Mapping[str, Sequence[str]]) -> Tuple[List[str], List[str]]:
    """Dependency order of ``entities`` and the entities left unresolved.

    Returns ``(order, leftovers)``; leftovers are already appended to the end
    of ``order`` in declaration order.
    """
    ordered: List[str] = []
    placed = set()
    remaining = list(entities)
    max_passes = 2 * len(entities)
    passes = 0
    while remaining and passes < max_passes:
        passes += 1
        progressed = False
        for entity in list(remaining):
            if all(dep in placed for dep in dependencies.get(entity, ())):
                ordered.append(entity)
                placed.add(entity)
                remaining.remove(entity)
                progressed = True
        if not progressed:
            break
    leftovers = [entity for entity in entities if entity in remaining]
    return ordered + leftovers, leftovers


def build_plan(steps: Iterable[StepInput], catalog: SchemaCatalog, strict: bool = False,
               name: str = "scenario", seed: Optional[int] = None,
               transactional: Optional[bool] = None) -> ScenarioPlan:
    """Order scenario steps by their foreign-key dependencies.

    Raises:
        SchemaMismatchError: a step names an entity absent from the catalog
        DependencyCycleError: dependencies are cyclic and ``strict`` is set
    """
    steps = coerce_steps(steps)
    dependencies = build_dependency_map(steps, catalog)
    order, leftovers = order_entities([s.entity for s in steps], dependencies)
    by_entity = {s.entity: s for s in steps}

    warnings: List[GenerationIssue] = []
    if leftovers:
        message = (
            f"Dependency cycle between {', '.join(leftovers)}; generating them in declaration order"
        )
        if strict:
            raise DependencyCycleError(message, members=leftovers)
        warnings.append(dependency_cycle_warning(message, members=leftovers))
    logger.info(f"📋 Scenario {name} order: {' -> '.join(order)}")
    return ScenarioPlan(
        steps=[by_entity[entity] for entity in order],
        order=order,
        dependencies=dependencies,
        leftovers=leftovers,
        warnings=warnings,
        name=name,
        seed=seed,
        transactional=transactional,
    )


def scenario_definition_from_dict(data: Any, default_name: str = "scenario") -> ScenarioDefinition:
    """Build a definition from a list of steps or a mapping with ``steps``."""
    if isinstance(data, list):
        data = {"steps": data}
    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        raise ConfigurationError(f"Scenario {default_name} must define a list of steps")
    return ScenarioDefinition(
        name=str(data.get("name") or default_name),
        steps=coerce_steps(data["steps"]),
        seed=data.get("seed"),
        transactional=data.get("transactional"),
    )


def load_scenario_plan(path: Union[str, Path]) -> ScenarioDefinition:
    """Read a scenario from YAML.

    The file holds either a list of steps or a mapping with ``steps`` and the
    optional ``name``, ``seed`` and ``transactional`` keys.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Scenario file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return scenario_definition_from_dict(data, path.stem)
