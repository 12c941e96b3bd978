"""
Process memory monitoring for chunked generation.

Samples the resident set size with psutil at chunk boundaries, reports the
peak increase over the run's starting baseline, and runs pressure relief
(garbage collection plus registered cache clearers) when usage crosses the
configured share of the memory limit.
"""

from __future__ import annotations

import gc
import logging
import os
from dataclasses import dataclass
from typing import Callable, List, Optional

import psutil

logger = logging.getLogger(__name__)


def format_bytes(num_bytes: float) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    index = 0
    while abs(value) >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2)} {units[index]}"


@dataclass
class MemoryStatus:
    current_bytes: int
    limit_bytes: int
    threshold_bytes: Optional[int]
    under_pressure: bool
    freed_bytes: int = 0

    @property
    def usage_ratio(self) -> float:
        if self.limit_bytes <= 0:
            return 0.0
        return self.current_bytes / self.limit_bytes


class MemoryMonitor:
    """Tracks process memory against a limit (``-1`` disables the ceiling)."""

    def __init__(self, limit_bytes: int, threshold: float = 0.8,
                 usage_reader: Optional[Callable[[], int]] = None):
        self.limit_bytes = limit_bytes
        self.threshold = threshold
        self._process = psutil.Process(os.getpid())
        self._read_usage = usage_reader or self._rss
        self._relief: List[Callable[[], None]] = []
        self.baseline = self._read_usage()
        self.peak_usage = self.baseline
        self.pressure_events = 0

    def _rss(self) -> int:
        return int(self._process.memory_info().rss)

    @property
    def threshold_bytes(self) -> Optional[int]:
        if self.limit_bytes <= 0:
            return None
        return int(self.limit_bytes * self.threshold)

    def current_usage(self) -> int:
        return self._read_usage()

    def on_pressure(self, callback: Callable[[], None]) -> None:
        """Register a cache clearer run when the threshold is crossed."""
        self._relief.append(callback)

    def reset_baseline(self) -> None:
        self.baseline = self._read_usage()
        self.peak_usage = self.baseline

    @property
    def peak_increase(self) -> int:
        """Largest usage above the baseline observed at a check."""
        return max(0, self.peak_usage - self.baseline)

    def check(self) -> MemoryStatus:
        """Sample usage and relieve pressure when over the threshold."""
        usage = self._read_usage()
        self.peak_usage = max(self.peak_usage, usage)
        threshold = self.threshold_bytes
        if threshold is None or usage <= threshold:
            return MemoryStatus(usage, self.limit_bytes, threshold, under_pressure=False)

        self.pressure_events += 1
        for callback in self._relief:
            callback()
        gc.collect()
        after = self._read_usage()
        logger.warning(
            f"⚠️ Memory threshold reached: {format_bytes(usage)} of {format_bytes(self.limit_bytes)} "
            f"limit; freed {format_bytes(max(0, usage - after))}"
        )
        return MemoryStatus(usage, self.limit_bytes, threshold, under_pressure=True,
                            freed_bytes=max(0, usage - after))
