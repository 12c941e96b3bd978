"""
Pattern engine

An explicit registry of pattern types that builds patterns from serializable
specs and infers fallback patterns from column names. Each generation run is
handed its own engine instance; there is no module-level registry.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from ingen_synth.python_libs.common.errors import ConfigurationError
from ingen_synth.python_libs.common.schema_description import ColumnDescription
from ingen_synth.python_libs.common.synthetic_data_config import PatternSpec
from ingen_synth.python_libs.interfaces.pattern_interface import IPattern

from .composite import CompositePattern
from .distributions import (
    ExponentialDistribution,
    NormalDistribution,
    ParetoDistribution,
    PoissonDistribution,
)
from .temporal import BusinessHours, LinearGrowth, SeasonalPattern, WeeklyPattern

logger = logging.getLogger(__name__)

PatternFactory = Callable[[Dict[str, Any]], IPattern]

BUILTIN_PATTERNS: Dict[str, Type[IPattern]] = {
    "distribution.normal": NormalDistribution,
    "distribution.pareto": ParetoDistribution,
    "distribution.poisson": PoissonDistribution,
    "distribution.exponential": ExponentialDistribution,
    "temporal.linear": LinearGrowth,
    "temporal.seasonal": SeasonalPattern,
    "temporal.business_hours": BusinessHours,
    "temporal.weekly": WeeklyPattern,
}

BUILTIN_ALIASES: Dict[str, str] = {
    "normal": "distribution.normal",
    "gaussian": "distribution.normal",
    "bell_curve": "distribution.normal",
    "pareto": "distribution.pareto",
    "80-20": "distribution.pareto",
    "power_law": "distribution.pareto",
    "poisson": "distribution.poisson",
    "exponential": "distribution.exponential",
    "linear": "temporal.linear",
    "linear_growth": "temporal.linear",
    "growth": "temporal.linear",
    "temporal_linear": "temporal.linear",
    "seasonal": "temporal.seasonal",
    "seasonality": "temporal.seasonal",
    "business_hours": "temporal.business_hours",
    "working_hours": "temporal.business_hours",
    "weekly": "temporal.weekly",
}

COMPOSITE_NAMES = ("composite", "composite.weighted")
NUMERIC_TYPES = ("integer", "float", "decimal")

# (name regex, integer columns only, pattern type, params)
INFERENCE_RULES: List[Tuple[str, bool, str, Dict[str, Any]]] = [
    (r"price|amount|cost", False, "distribution.normal", {"mean": 100, "stddev": 30, "min": 0.01, "max": 10000}),
    (r"(^|_)age($|_)", False, "distribution.normal", {"mean": 35, "stddev": 15, "min": 18, "max": 90}),
    (r"view|visit|click", False, "distribution.pareto", {"alpha": 1.16, "xmin": 1, "max": 100000}),
    (r"count", True, "distribution.poisson", {"lambda": 5, "max": 50}),
    (r"interval|duration", False, "distribution.exponential", {"lambda": 0.1, "min": 0, "max": 3600}),
]


class PatternEngine:
    """Registry and factory for patterns."""

    def __init__(self, register_builtins: bool = True):
        self._patterns: Dict[str, PatternFactory] = {}
        self._classes: Dict[str, Type[IPattern]] = {}
        self._aliases: Dict[str, str] = {}
        self._inferred: Dict[Tuple[str, str], Optional[IPattern]] = {}
        self.logger = logging.getLogger(__name__)
        if register_builtins:
            for name, pattern_class in BUILTIN_PATTERNS.items():
                self.register(name, pattern_class)
            for alias, target in BUILTIN_ALIASES.items():
                self.alias(alias, target)

    def register(self, name: str, pattern: Any) -> None:
        """Register a pattern class or a ``params -> pattern`` factory."""
        if isinstance(pattern, type):
            if not issubclass(pattern, IPattern):
                raise ConfigurationError(f"{pattern.__name__} does not implement IPattern")
            self._classes[name] = pattern
            self._patterns[name] = lambda params, cls=pattern: cls(params)
        elif callable(pattern):
            self._patterns[name] = pattern
        else:
            raise ConfigurationError(f"Cannot register {pattern!r} as pattern {name!r}")
        self.logger.debug(f"Registered pattern {name}")

    def alias(self, alias: str, target: str) -> None:
        if target not in self._patterns:
            raise ConfigurationError(f"Cannot alias {alias!r} to unknown pattern {target!r}")
        self._aliases[alias] = target

    def resolve_name(self, name: str) -> str:
        key = str(name).strip()
        key = self._aliases.get(key, self._aliases.get(key.lower(), key))
        if key not in self._patterns:
            raise ConfigurationError(f"Unknown pattern type: {name!r}")
        return key

    def has(self, name: str) -> bool:
        try:
            self.resolve_name(name)
        except ConfigurationError:
            return False
        return True

    def available(self) -> List[str]:
        return sorted(self._patterns)

    def aliases(self) -> Dict[str, str]:
        return dict(self._aliases)

    def create(self, name: str, params: Optional[Mapping[str, Any]] = None) -> IPattern:
        if str(name).lower() in COMPOSITE_NAMES:
            return self._create_composite(dict(params or {}))
        factory = self._patterns[self.resolve_name(name)]
        return factory(dict(params or {}))

    def load(self, spec: Any) -> IPattern:
        """Build a pattern from an instance, type name or ``{type, params}`` spec."""
        if isinstance(spec, IPattern):
            return spec
        pattern_spec = PatternSpec.from_value(spec)
        return self.create(pattern_spec.type, pattern_spec.params)

    def _create_composite(self, params: Dict[str, Any]) -> CompositePattern:
        children = params.pop("patterns", None)
        if not children:
            raise ConfigurationError("Composite pattern needs a non-empty 'patterns' list or mapping")
        if "mode" in params and "strategy" not in params:
            params["strategy"] = params.pop("mode")
        if isinstance(children, Mapping):
            built: Any = {name: self.load(child) for name, child in children.items()}
        else:
            built = [self.load(child) for child in children]
        return CompositePattern(built, params)

    def info(self, name: str) -> Dict[str, Any]:
        """Describe a registered pattern type."""
        key = self.resolve_name(name)
        pattern_class = self._classes.get(key)
        aliases = sorted(a for a, target in self._aliases.items() if target == key)
        if pattern_class is None:
            return {"name": key, "aliases": aliases, "description": "", "parameters": {}}
        return {
            "name": key,
            "title": getattr(pattern_class, "name", key),
            "aliases": aliases,
            "description": getattr(pattern_class, "description", ""),
            "parameters": {k: dict(v) for k, v in getattr(pattern_class, "PARAMETERS", {}).items()},
        }

    def infer_for_column(self, column: ColumnDescription, entity: str = "") -> Optional[IPattern]:
        """Name-based fallback pattern for numeric columns, or ``None`` when no rule applies."""
        cache_key = (entity, column.name)
        if cache_key in self._inferred:
            return self._inferred[cache_key]
        pattern = None
        name = column.name.lower()
        if column.canonical_type not in NUMERIC_TYPES:
            self._inferred[cache_key] = None
            return None
        for regex, integer_only, pattern_type, params in INFERENCE_RULES:
            if integer_only and column.canonical_type != "integer":
                continue
            if re.search(regex, name):
                pattern = self.create(pattern_type, params)
                self.logger.debug(f"Inferred {pattern_type} for {entity}.{column.name}")
                break
        self._inferred[cache_key] = pattern
        return pattern

    def clear_inferred(self) -> None:
        self._inferred.clear()
