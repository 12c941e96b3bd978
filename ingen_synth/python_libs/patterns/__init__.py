from .base import BasePattern, PatternContext
from .composite import CompositePattern
from .distributions import (
    ExponentialDistribution,
    NormalDistribution,
    ParetoDistribution,
    PoissonDistribution,
)
from .pattern_engine import PatternEngine
from .temporal import BusinessHours, LinearGrowth, SeasonalPattern, WeeklyPattern

__all__ = [
    "BasePattern",
    "BusinessHours",
    "CompositePattern",
    "ExponentialDistribution",
    "LinearGrowth",
    "NormalDistribution",
    "ParetoDistribution",
    "PatternContext",
    "PatternEngine",
    "PoissonDistribution",
    "SeasonalPattern",
    "WeeklyPattern",
]
