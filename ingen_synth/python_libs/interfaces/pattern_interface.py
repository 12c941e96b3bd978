"""
Abstract interfaces for value patterns.

This module defines the contract every pattern implements, so distributions,
temporal patterns and composites are interchangeable inside the synthesizer.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class IPattern(ABC):
    """Abstract interface for a validated value generator."""

    @abstractmethod
    def generate(self, context: Optional[Any] = None) -> Any:
        """Generate one value; never raises for a validly constructed pattern."""
        pass

    @abstractmethod
    def configuration(self) -> Dict[str, Any]:
        """Return the validated configuration."""
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the pattern name."""
        pass

    @abstractmethod
    def get_description(self) -> str:
        """Return a human readable description."""
        pass

    @abstractmethod
    def get_parameters(self) -> Dict[str, Dict[str, Any]]:
        """Return parameter metadata (type, default, description)."""
        pass

    def reset(self) -> None:
        """Reset any internal iteration state."""
        pass


class IDistribution(IPattern):
    """Abstract interface for statistical distributions."""

    @abstractmethod
    def mean(self) -> float:
        """Theoretical mean of the (unclamped) distribution."""
        pass

    @abstractmethod
    def variance(self) -> float:
        """Theoretical variance of the (unclamped) distribution."""
        pass

    @abstractmethod
    def pdf(self, x: float) -> float:
        """Probability density (or mass) at ``x``."""
        pass

    @abstractmethod
    def cdf(self, x: float) -> float:
        """Cumulative probability at ``x``."""
        pass
