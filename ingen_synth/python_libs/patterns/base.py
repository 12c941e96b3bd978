"""
Base class and sampling context shared by all patterns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from ingen_synth.python_libs.common.errors import ConfigurationError
from ingen_synth.python_libs.interfaces.pattern_interface import IPattern

logger = logging.getLogger(__name__)

# Uniform source for patterns used outside a seeded generation run.
_DEFAULT_RNG = np.random.default_rng()

_UNIFORM_FLOOR = 1e-12


@dataclass
class PatternContext:
    """Per-value sampling context handed to ``IPattern.generate``."""

    rng: Optional[np.random.Generator] = None
    index: Optional[int] = None
    total: Optional[int] = None
    timestamp: Optional[datetime] = None
    column: Optional[str] = None
    entity: Optional[str] = None
    record: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, context: Any) -> "PatternContext":
        if context is None:
            return cls()
        if isinstance(context, PatternContext):
            return context
        if isinstance(context, Mapping):
            known = {k: v for k, v in context.items() if k in cls.__dataclass_fields__}
            return cls(**known)
        raise TypeError(f"Unsupported pattern context: {type(context).__name__}")


def parse_datetime(value: Any, name: str) -> datetime:
    """Accept datetimes, dates, epoch seconds and ISO strings."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise ConfigurationError(f"{name} is not an ISO date/time: {value!r}") from exc
    raise ConfigurationError(f"{name} must be a date/time, got {value!r}")


class BasePattern(IPattern):
    """Common configuration handling for patterns.

    Subclasses declare ``PARAMETERS`` metadata and implement ``initialize``,
    which reads and validates the configuration. Any invalid value raises
    ``ConfigurationError`` from the constructor.
    """

    name = "Pattern"
    description = "No description available"
    PARAMETERS: Dict[str, Dict[str, Any]] = {}

    def __init__(self, config: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        merged = dict(config or {})
        merged.update(kwargs)
        unknown = sorted(set(merged) - set(self.PARAMETERS) - {"seed"})
        if unknown:
            raise ConfigurationError(f"{self.name}: unknown parameters {', '.join(unknown)}")
        self._config: Dict[str, Any] = {
            key: spec.get("default") for key, spec in self.PARAMETERS.items()
        }
        self._config.update(merged)
        for key, spec in self.PARAMETERS.items():
            if spec.get("required") and self._config.get(key) is None:
                raise ConfigurationError(f"{self.name}: missing required parameter {key!r}")
        self.seed = merged.get("seed")
        self._rng = np.random.default_rng(self.seed) if self.seed is not None else None
        self.initialize()

    def initialize(self) -> None:
        """Read and validate pattern-specific configuration."""
        pass

    @property
    def numeric_output(self) -> bool:
        """Whether generated values are numbers (usable in weighted sums)."""
        return True

    def configuration(self) -> Dict[str, Any]:
        return dict(self._config)

    def get_name(self) -> str:
        return self.name

    def get_description(self) -> str:
        return self.description

    def get_parameters(self) -> Dict[str, Dict[str, Any]]:
        return {key: dict(spec) for key, spec in self.PARAMETERS.items()}

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.get_name(),
            "description": self.get_description(),
            "parameters": self.get_parameters(),
            "configuration": self.configuration(),
        }

    def sample(self, count: int, context: Any = None) -> List[Any]:
        ctx = PatternContext.coerce(context)
        return [self.generate(ctx) for _ in range(count)]

    def rng_for(self, context: PatternContext) -> np.random.Generator:
        if self._rng is not None:
            return self._rng
        if context.rng is not None:
            return context.rng
        return _DEFAULT_RNG

    def uniform(self, context: PatternContext, low: float = 0.0, high: float = 1.0) -> float:
        return low + (high - low) * float(self.rng_for(context).random())

    def open_uniform(self, context: PatternContext) -> float:
        """Uniform sample in the open interval (0, 1)."""
        return max(float(self.rng_for(context).random()), _UNIFORM_FLOOR)

    # Validation helpers

    def _number(self, key: str, *, positive: bool = False, non_negative: bool = False,
                optional: bool = False) -> Optional[float]:
        value = self._config.get(key)
        if value is None:
            if optional:
                return None
            raise ConfigurationError(f"{self.name}: {key} is required")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"{self.name}: {key} must be numeric, got {value!r}")
        if positive and value <= 0:
            raise ConfigurationError(f"{self.name}: {key} must be > 0, got {value}")
        if non_negative and value < 0:
            raise ConfigurationError(f"{self.name}: {key} must be >= 0, got {value}")
        return value

    def _precision(self, key: str = "precision") -> Optional[int]:
        value = self._config.get(key)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigurationError(f"{self.name}: {key} must be a non-negative integer, got {value!r}")
        return value

    def _check_bounds(self, minimum: Optional[float], maximum: Optional[float]) -> None:
        if minimum is not None and maximum is not None and minimum >= maximum:
            raise ConfigurationError(f"{self.name}: min ({minimum}) must be less than max ({maximum})")

    @staticmethod
    def clamp(value: Any, minimum: Any = None, maximum: Any = None) -> Any:
        if minimum is not None and value < minimum:
            return minimum
        if maximum is not None and value > maximum:
            return maximum
        return value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.configuration()!r})"
