"""
Composite pattern: evaluates several sub-patterns and combines their values.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from ingen_synth.python_libs.common.errors import ConfigurationError
from ingen_synth.python_libs.interfaces.pattern_interface import IPattern

from .base import BasePattern, PatternContext

STRATEGIES = ("weighted_sum", "weighted_choice", "combine", "sequence")
_STRATEGY_ALIASES = {"select": "weighted_choice", "choice": "weighted_choice", "sum": "weighted_sum"}


class CompositePattern(BasePattern):
    """Combine sub-patterns with a configurable strategy.

    ``weighted_sum`` returns the weighted mean of every sub-value,
    ``weighted_choice`` samples one sub-pattern by weight, ``combine`` returns
    a dict of every sub-value keyed by name and ``sequence`` cycles through the
    sub-patterns in order.
    """

    name = "Composite Pattern"
    description = "Combines multiple patterns"
    PARAMETERS = {
        "strategy": {"type": "string", "default": "weighted_choice", "description": ", ".join(STRATEGIES)},
        "weights": {"type": "array|dict", "default": None, "description": "Non-negative weights, one per sub-pattern"},
    }

    def __init__(
        self,
        patterns: Union[Sequence[IPattern], Mapping[str, IPattern]],
        config: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ):
        if isinstance(patterns, Mapping):
            self.patterns: Dict[str, IPattern] = dict(patterns)
        else:
            self.patterns = {f"pattern_{i}": p for i, p in enumerate(patterns)}
        self._position = 0
        super().__init__(config, **kwargs)

    def initialize(self) -> None:
        if not self.patterns:
            raise ConfigurationError(f"{self.name}: at least one sub-pattern is required")
        for key, pattern in self.patterns.items():
            if not isinstance(pattern, IPattern):
                raise ConfigurationError(f"{self.name}: sub-pattern {key!r} is not a pattern")
        strategy = str(self._config["strategy"]).lower()
        self.strategy = _STRATEGY_ALIASES.get(strategy, strategy)
        if self.strategy not in STRATEGIES:
            raise ConfigurationError(f"{self.name}: unknown strategy {strategy!r}")
        self.weights = self._normalized_weights(self._config.get("weights"))
        if self.strategy == "weighted_sum":
            non_numeric = [k for k, p in self.patterns.items() if not getattr(p, "numeric_output", True)]
            if non_numeric:
                raise ConfigurationError(
                    f"{self.name}: weighted_sum needs numeric sub-patterns, got {', '.join(non_numeric)}"
                )

    def _normalized_weights(self, weights: Any) -> np.ndarray:
        names = list(self.patterns)
        if weights is None:
            raw = [1.0] * len(names)
        elif isinstance(weights, Mapping):
            unknown = set(weights) - set(names)
            if unknown:
                raise ConfigurationError(f"{self.name}: weights for unknown sub-patterns {sorted(unknown)}")
            raw = [weights.get(name, 1.0) for name in names]
        else:
            raw = list(weights)
            if len(raw) != len(names):
                raise ConfigurationError(
                    f"{self.name}: {len(raw)} weights given for {len(names)} sub-patterns"
                )
        try:
            values = np.array([float(w) for w in raw])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"{self.name}: weights must be numeric") from exc
        if (values < 0).any() or not np.isfinite(values).all():
            raise ConfigurationError(f"{self.name}: weights must be finite and non-negative")
        if values.sum() <= 0:
            raise ConfigurationError(f"{self.name}: weights must have a positive sum")
        return values / values.sum()

    @property
    def numeric_output(self) -> bool:
        if self.strategy == "combine":
            return False
        return all(getattr(p, "numeric_output", True) for p in self.patterns.values())

    def configuration(self) -> Dict[str, Any]:
        config = super().configuration()
        config["weights"] = dict(zip(self.patterns, self.weights.round(6).tolist()))
        config["patterns"] = {name: p.get_name() for name, p in self.patterns.items()}
        return config

    def generate(self, context: Any = None) -> Any:
        ctx = PatternContext.coerce(context)
        if self.strategy == "weighted_sum":
            return float(sum(w * p.generate(ctx) for w, p in zip(self.weights, self.patterns.values())))
        if self.strategy == "combine":
            return {name: p.generate(ctx) for name, p in self.patterns.items()}
        if self.strategy == "sequence":
            patterns = list(self.patterns.values())
            pattern = patterns[self._position % len(patterns)]
            self._position += 1
            return pattern.generate(ctx)
        return self.select(ctx).generate(ctx)

    def select(self, context: PatternContext) -> IPattern:
        cumulative = np.cumsum(self.weights)
        position = int(np.searchsorted(cumulative, self.uniform(context), side="right"))
        return list(self.patterns.values())[min(position, len(self.patterns) - 1)]

    def add_pattern(self, name: str, pattern: IPattern, weight: float = 1.0) -> None:
        """Add a sub-pattern and renormalize weights."""
        if weight < 0:
            raise ConfigurationError(f"{self.name}: weights must be non-negative")
        current = dict(zip(self.patterns, self.weights))
        self.patterns[name] = pattern
        current[name] = weight
        self.weights = self._normalized_weights(current)

    def reset(self) -> None:
        self._position = 0
        for pattern in self.patterns.values():
            pattern.reset()

    def get_patterns(self) -> List[IPattern]:
        return list(self.patterns.values())
