"""
Scenario Registry - Python Implementation

Named, parameterized scenarios. A scenario template carries its metadata
(title, description, required and optional entities, parameter rules) and a
Jinja2 template that renders to the YAML step list the orchestrator runs.
Built-in presets live in the ``presets`` directory next to this module.

Example:
    registry = ScenarioRegistry()
    result = registry.run("ecommerce", orchestrator, params={"user_count": 200})
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import jinja2
import yaml

from ingen_synth.python_libs.common.errors import ConfigurationError
from ingen_synth.python_libs.common.generation_results import ScenarioResult
from ingen_synth.python_libs.common.schema_description import SchemaCatalog, SchemaDescription

from .scenario_plan import ScenarioDefinition, load_scenario_plan, scenario_definition_from_dict

logger = logging.getLogger(__name__)

PRESET_DIR = Path(__file__).parent / "presets"

PARAMETER_TYPES = ("any", "integer", "float", "string", "boolean", "array", "datetime")


@dataclass
class ScenarioParameter:
    """Validation rules and default for one scenario parameter."""

    type: str = "any"
    default: Any = None
    min: Optional[float] = None
    max: Optional[float] = None
    enum: Optional[List[Any]] = None
    required: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if self.type not in PARAMETER_TYPES:
            raise ConfigurationError(f"Unknown parameter type {self.type!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScenarioParameter":
        known = {"type", "default", "min", "max", "enum", "required", "description"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown parameter rule(s): {', '.join(unknown)}")
        return cls(**dict(data))

    def check(self, name: str, value: Any) -> List[str]:
        """Return the rule violations of ``value``."""
        if not _matches_type(value, self.type):
            return [f"Parameter {name} must be of type {self.type}"]
        errors = []
        if self.min is not None and _is_number(value) and value < self.min:
            errors.append(f"Parameter {name} must be at least {self.min}")
        if self.max is not None and _is_number(value) and value > self.max:
            errors.append(f"Parameter {name} must be at most {self.max}")
        if self.enum is not None and value not in self.enum:
            errors.append(f"Parameter {name} must be one of: {', '.join(str(v) for v in self.enum)}")
        return errors


@dataclass
class ScenarioTemplate:
    """A named scenario that builds a ScenarioDefinition from parameters.

    Either ``source`` (Jinja2 text rendering to scenario YAML) or a fixed
    ``definition`` is set. With ``adapt_to_schema``, column patterns and
    overrides for columns the target schema lacks are dropped, which lets
    presets run against differing schemas.
    """

    name: str
    title: str = ""
    description: str = ""
    required_entities: List[str] = field(default_factory=list)
    optional_entities: List[str] = field(default_factory=list)
    parameters: Dict[str, ScenarioParameter] = field(default_factory=dict)
    aliases: List[str] = field(default_factory=list)
    source: Optional[str] = None
    definition: Optional[ScenarioDefinition] = None
    adapt_to_schema: bool = False

    def __post_init__(self) -> None:
        if (self.source is None) == (self.definition is None):
            raise ConfigurationError(f"Scenario {self.name}: set exactly one of a template source or a definition")

    @classmethod
    def from_definition(cls, definition: ScenarioDefinition, description: str = "") -> "ScenarioTemplate":
        return cls(
            name=definition.name,
            title=definition.name,
            description=description,
            required_entities=[step.entity for step in definition.steps],
            definition=definition,
        )

    def parameter_errors(self, params: Optional[Mapping[str, Any]] = None) -> List[str]:
        params = params or {}
        errors = []
        for name, rule in self.parameters.items():
            if name not in params or params[name] is None:
                if rule.required:
                    errors.append(f"Required parameter missing: {name}")
                continue
            errors.extend(rule.check(name, params[name]))
        return errors

    def unknown_parameters(self, params: Optional[Mapping[str, Any]] = None) -> List[str]:
        return sorted(set(params or {}) - set(self.parameters) - {"seed"})

    def resolve_parameters(self, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Defaults merged with ``params``; raises on rule violations."""
        errors = self.parameter_errors(params)
        if errors:
            raise ConfigurationError(f"Scenario {self.name}: {'; '.join(errors)}")
        resolved = {name: copy.deepcopy(rule.default) for name, rule in self.parameters.items()}
        resolved.update({k: v for k, v in (params or {}).items() if v is not None})
        resolved.setdefault("seed", None)
        return resolved

    def build(self, params: Optional[Mapping[str, Any]] = None, catalog: Optional[SchemaCatalog] = None,
              now: Optional[datetime] = None) -> ScenarioDefinition:
        """Render the scenario for ``params``.

        Optional entities absent from ``catalog`` are left out.

        Raises:
            ConfigurationError: parameter rule violations or a template that
                does not render to a valid step list
        """
        resolved = self.resolve_parameters(params)
        if self.definition is not None:
            definition = copy.deepcopy(self.definition)
            if resolved["seed"] is not None:
                definition.seed = resolved["seed"]
            return definition

        data = self._render(resolved, now or datetime.now())
        steps = data.get("steps") if isinstance(data, dict) else None
        if isinstance(steps, list) and catalog is not None:
            data["steps"] = [
                self._adapt_step(step, catalog)
                for step in steps
                if not (isinstance(step, dict) and step.get("entity") in self.optional_entities
                        and step.get("entity") not in catalog)
            ]
        definition = scenario_definition_from_dict(data, self.name)
        if resolved["seed"] is not None:
            definition.seed = resolved["seed"]
        return definition

    def _render(self, params: Dict[str, Any], now: datetime) -> Any:
        environment = jinja2.Environment(
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=jinja2.StrictUndefined,
        )
        environment.globals["today"] = now.date().isoformat()
        environment.globals["days_ago"] = lambda days: (now - timedelta(days=int(days))).date().isoformat()
        try:
            rendered = environment.from_string(self.source).render(**params)
            return yaml.safe_load(rendered) or {}
        except (jinja2.TemplateError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Scenario {self.name} template failed to render: {exc}") from exc

    def _adapt_step(self, step: Any, catalog: SchemaCatalog) -> Any:
        if not self.adapt_to_schema or not isinstance(step, dict):
            return step
        schema = catalog.find(str(step.get("entity")))
        if schema is None:
            return step
        for holder in [step] + list(step.get("cohorts") or []):
            for key in ("column_patterns", "overrides"):
                if isinstance(holder.get(key), dict):
                    holder[key] = {
                        column: value for column, value in holder[key].items() if _generated_column(schema, column)
                    }
        return step


def _generated_column(schema: SchemaDescription, name: str) -> bool:
    column = schema.columns.get(name)
    if column is None:
        return False
    return not schema.is_auto_primary_key(column) and not schema.is_managed_timestamp(name)


def load_scenario_template(path: Union[str, Path]) -> ScenarioTemplate:
    """Read a scenario template from YAML.

    A file with a ``template`` key is a parameterized scenario whose Jinja2
    source sits next to it; any other file is read as a fixed scenario.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Scenario file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict) or "template" not in data:
        return ScenarioTemplate.from_definition(load_scenario_plan(path))

    source_path = path.parent / data["template"]
    if not source_path.is_file():
        raise ConfigurationError(f"Scenario template not found: {source_path}")
    return ScenarioTemplate(
        name=str(data.get("name") or path.stem),
        title=str(data.get("title") or data.get("name") or path.stem),
        description=str(data.get("description") or ""),
        required_entities=list(data.get("required_entities") or []),
        optional_entities=list(data.get("optional_entities") or []),
        parameters={
            name: ScenarioParameter.from_dict(rule) for name, rule in (data.get("parameters") or {}).items()
        },
        aliases=list(data.get("aliases") or []),
        source=source_path.read_text(encoding="utf-8"),
        adapt_to_schema=bool(data.get("adapt_to_schema", True)),
    )


ScenarioSource = Union[ScenarioTemplate, ScenarioDefinition, str, Path]


class ScenarioRegistry:
    """Named scenarios, including the built-in presets."""

    def __init__(self, load_presets: bool = True, clock: Callable[[], datetime] = datetime.now):
        self._scenarios: Dict[str, ScenarioTemplate] = {}
        self.clock = clock
        if load_presets:
            self.load_presets()

    def load_presets(self, directory: Union[str, Path] = PRESET_DIR) -> None:
        for path in sorted(Path(directory).glob("*.yml")):
            template = load_scenario_template(path)
            self.register(template.name, template)
            for alias in template.aliases:
                self.register(alias, template)
        logger.debug(f"📚 Loaded scenario presets: {', '.join(self._scenarios)}")

    def register(self, name: str, scenario: ScenarioSource) -> ScenarioTemplate:
        """Register a template, a fixed definition or a scenario YAML file under ``name``."""
        if isinstance(scenario, ScenarioDefinition):
            template = ScenarioTemplate.from_definition(scenario)
        elif isinstance(scenario, (str, Path)):
            template = load_scenario_template(scenario)
        elif isinstance(scenario, ScenarioTemplate):
            template = scenario
        else:
            raise ConfigurationError(f"Cannot register {type(scenario).__name__} as scenario {name!r}")
        self._scenarios[name] = template
        return template

    def has(self, name: str) -> bool:
        return name in self._scenarios

    def get(self, name: str) -> ScenarioTemplate:
        if name not in self._scenarios:
            raise ConfigurationError(f"Scenario {name!r} not found")
        return self._scenarios[name]

    def list(self) -> Dict[str, Dict[str, str]]:
        return {
            name: {"name": template.title or template.name, "description": template.description}
            for name, template in self._scenarios.items()
        }

    def definition(self, name: str, params: Optional[Mapping[str, Any]] = None,
                   catalog: Optional[SchemaCatalog] = None) -> ScenarioDefinition:
        return self.get(name).build(params, catalog, now=self.clock())

    def run(self, name: str, orchestrator: Any, params: Optional[Mapping[str, Any]] = None,
            validate: bool = True, **run_options: Any) -> ScenarioResult:
        """Validate and run a named scenario through ``orchestrator``.

        Raises:
            ConfigurationError: unknown scenario, or validation errors
        """
        from .scenario_validator import ScenarioValidator

        template = self.get(name)
        if validate:
            report = ScenarioValidator(orchestrator.catalog, orchestrator.store, orchestrator.settings).validate(
                template, params
            )
            for warning in report.warnings:
                logger.warning(f"⚠️ Scenario {name}: {warning}")
            if not report.is_valid:
                raise ConfigurationError(f"Scenario {name} is invalid: {'; '.join(report.errors)}")
        definition = template.build(params, orchestrator.catalog, now=self.clock())
        logger.info(f"🚀 Running scenario {name} ({len(definition.steps)} steps)")
        return orchestrator.run(definition, **run_options)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches_type(value: Any, kind: str) -> bool:
    if kind == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if kind == "float":
        return _is_number(value)
    if kind == "string":
        return isinstance(value, str)
    if kind == "boolean":
        return isinstance(value, bool)
    if kind == "array":
        return isinstance(value, (list, tuple, dict))
    if kind == "datetime":
        return isinstance(value, datetime)
    return True
