"""
Statistical distribution patterns

Each distribution draws its uniforms from the sampling context's numpy
generator (or its own seeded generator) and transforms them with a closed-form
inverse, so a fixed seed yields a fixed value sequence.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from ingen_synth.python_libs.common.errors import ConfigurationError
from ingen_synth.python_libs.interfaces.pattern_interface import IDistribution

from .base import BasePattern, PatternContext

_EXPONENTIAL_U_MIN = 1e-6
_EXPONENTIAL_U_MAX = 1 - 1e-6

# Above this rate the inversion loop is replaced by a normal approximation.
POISSON_INVERSION_LIMIT = 500


class DistributionPattern(BasePattern, IDistribution):
    """Shared helpers for distributions."""

    def standard_deviation(self) -> float:
        variance = self.variance()
        return math.inf if math.isinf(variance) else math.sqrt(variance)


class NormalDistribution(DistributionPattern):
    name = "Normal Distribution"
    description = "Generates values following a normal (Gaussian) distribution"
    PARAMETERS = {
        "mean": {"type": "float", "default": 0.0, "description": "Mean (μ)"},
        "stddev": {"type": "float", "default": 1.0, "description": "Standard deviation (σ), > 0"},
        "min": {"type": "float", "default": None, "description": "Lower clamp"},
        "max": {"type": "float", "default": None, "description": "Upper clamp"},
        "precision": {"type": "int", "default": None, "description": "Round to this many decimals"},
    }

    def initialize(self) -> None:
        self.mu = self._number("mean")
        self.sigma = self._number("stddev", positive=True)
        self.min = self._number("min", optional=True)
        self.max = self._number("max", optional=True)
        self._check_bounds(self.min, self.max)
        self.precision = self._precision()

    def generate(self, context: Any = None) -> float:
        ctx = PatternContext.coerce(context)
        # Box-Muller
        u1 = self.open_uniform(ctx)
        u2 = self.uniform(ctx)
        z = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
        value = self.clamp(self.mu + z * self.sigma, self.min, self.max)
        return round(value, self.precision) if self.precision is not None else value

    def mean(self) -> float:
        return float(self.mu)

    def variance(self) -> float:
        return float(self.sigma) ** 2

    def pdf(self, x: float) -> float:
        z = (x - self.mu) / self.sigma
        return math.exp(-0.5 * z * z) / (self.sigma * math.sqrt(2 * math.pi))

    def cdf(self, x: float) -> float:
        return 0.5 * (1 + math.erf((x - self.mu) / (self.sigma * math.sqrt(2))))

    def z_score(self, value: float) -> float:
        return (value - self.mu) / self.sigma


class ParetoDistribution(DistributionPattern):
    """Power law; the default alpha of 1.16 gives the 80/20 split."""

    name = "Pareto Distribution"
    description = "Generates values following a Pareto distribution (80/20 rule, power law)"
    PARAMETERS = {
        "alpha": {"type": "float", "default": 1.16, "description": "Shape parameter, > 0"},
        "xmin": {"type": "float", "default": 1.0, "description": "Scale / minimum value, > 0"},
        "max": {"type": "float", "default": None, "description": "Upper clamp, > xmin"},
    }

    def initialize(self) -> None:
        self.alpha = self._number("alpha", positive=True)
        self.xmin = self._number("xmin", positive=True)
        self.max = self._number("max", optional=True)
        if self.max is not None and self.max <= self.xmin:
            raise ConfigurationError(f"{self.name}: max ({self.max}) must exceed xmin ({self.xmin})")

    def generate(self, context: Any = None) -> float:
        ctx = PatternContext.coerce(context)
        u = self.open_uniform(ctx)
        value = self.xmin / (u ** (1.0 / self.alpha))
        return self.clamp(value, self.xmin, self.max)

    def mean(self) -> float:
        if self.alpha <= 1:
            return math.inf
        return (self.alpha * self.xmin) / (self.alpha - 1)

    def variance(self) -> float:
        if self.alpha <= 2:
            return math.inf
        return (self.xmin ** 2 * self.alpha) / ((self.alpha - 1) ** 2 * (self.alpha - 2))

    def pdf(self, x: float) -> float:
        if x < self.xmin:
            return 0.0
        return (self.alpha * self.xmin ** self.alpha) / x ** (self.alpha + 1)

    def cdf(self, x: float) -> float:
        if x < self.xmin:
            return 0.0
        return 1 - (self.xmin / x) ** self.alpha

    def percentile_ownership(self, percentile: float) -> float:
        """Share of the total held by the top ``percentile`` of the population."""
        if not 0 < percentile <= 1:
            raise ValueError("percentile must be in (0, 1]")
        if self.alpha <= 1:
            return 1.0
        return percentile ** (1 - 1 / self.alpha)


class PoissonDistribution(DistributionPattern):
    name = "Poisson Distribution"
    description = "Generates values following a Poisson distribution (event frequency)"
    PARAMETERS = {
        "lambda": {"type": "float", "default": 1.0, "description": "Average rate of events (λ), > 0"},
        "max": {"type": "int", "default": None, "description": "Maximum value (optional truncation)"},
    }

    def initialize(self) -> None:
        self.lam = self._number("lambda", positive=True)
        self.max = self._number("max", non_negative=True, optional=True)

    def generate(self, context: Any = None) -> int:
        ctx = PatternContext.coerce(context)
        if self.lam < POISSON_INVERSION_LIMIT:
            value = self._invert(self.uniform(ctx))
        else:
            u1 = self.open_uniform(ctx)
            u2 = self.uniform(ctx)
            z = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
            value = max(0, int(round(self.lam + z * math.sqrt(self.lam))))
        if self.max is not None:
            value = min(value, int(self.max))
        return int(value)

    def _invert(self, u: float) -> int:
        """Walk the cumulative mass function until it passes ``u``."""
        k = 0
        p = math.exp(-self.lam)
        cumulative = p
        while u > cumulative and p > 0:
            k += 1
            p *= self.lam / k
            cumulative += p
        return k

    def mean(self) -> float:
        return float(self.lam)

    def variance(self) -> float:
        return float(self.lam)

    def pdf(self, x: float) -> float:
        if x < 0 or math.floor(x) != x:
            return 0.0
        k = int(x)
        return math.exp(k * math.log(self.lam) - self.lam - math.lgamma(k + 1))

    def cdf(self, x: float) -> float:
        if x < 0:
            return 0.0
        return min(1.0, sum(self.pdf(i) for i in range(int(math.floor(x)) + 1)))


class ExponentialDistribution(DistributionPattern):
    name = "Exponential Distribution"
    description = "Generates values following an exponential distribution (time between events)"
    PARAMETERS = {
        "lambda": {"type": "float", "default": 1.0, "description": "Rate (λ), > 0"},
        "min": {"type": "float", "default": 0.0, "description": "Floor, >= 0"},
        "max": {"type": "float", "default": None, "description": "Upper clamp"},
    }

    def initialize(self) -> None:
        self.lam = self._number("lambda", positive=True)
        self.min = self._number("min", non_negative=True)
        self.max: Optional[float] = self._number("max", optional=True)
        self._check_bounds(self.min, self.max)

    def generate(self, context: Any = None) -> float:
        ctx = PatternContext.coerce(context)
        u = self.clamp(self.uniform(ctx), _EXPONENTIAL_U_MIN, _EXPONENTIAL_U_MAX)
        value = -math.log(1 - u) / self.lam
        return self.clamp(value, self.min, self.max)

    def mean(self) -> float:
        return 1.0 / self.lam

    def variance(self) -> float:
        return 1.0 / (self.lam ** 2)

    def pdf(self, x: float) -> float:
        if x < 0:
            return 0.0
        return self.lam * math.exp(-self.lam * x)

    def cdf(self, x: float) -> float:
        if x < 0:
            return 0.0
        return 1 - math.exp(-self.lam * x)

    def median(self) -> float:
        return math.log(2) / self.lam
