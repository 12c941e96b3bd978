"""
Result objects returned by the generation pipeline and scenario orchestrator.

Every result carries a tri-state ``outcome`` derived from its recorded errors
and warnings; ``to_dict()`` gives the plain-data shape handed to callers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .errors import GenerationIssue, IssueSeverity, Outcome


@dataclass
class GenerationStatistics:
    """Counters for one entity generation run."""

    generated_count: int = 0
    memory_usage: int = 0
    peak_memory: int = 0
    elapsed_time: float = 0.0
    chunks_total: int = 0
    chunks_completed: int = 0
    chunks_failed: int = 0
    relationships: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def records_per_second(self) -> float:
        if self.elapsed_time <= 0:
            return 0.0
        return self.generated_count / self.elapsed_time

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GenerationResult:
    """Outcome of generating one entity."""

    entity: str
    records: List[Any] = field(default_factory=list)
    statistics: GenerationStatistics = field(default_factory=GenerationStatistics)
    errors: List[GenerationIssue] = field(default_factory=list)
    warnings: List[GenerationIssue] = field(default_factory=list)
    failed: bool = False

    @property
    def outcome(self) -> Outcome:
        return Outcome.from_issues(self.errors, self.warnings, fatal=self.failed)

    def record(self, issue: GenerationIssue) -> None:
        if issue.severity is IssueSeverity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def extend(self, issues: List[GenerationIssue]) -> None:
        for issue in issues:
            self.record(issue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "records": list(self.records),
            "statistics": self.statistics.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "outcome": self.outcome.value,
        }


@dataclass
class ScenarioResult:
    """Outcome of a multi-entity scenario run."""

    generated: Dict[str, int] = field(default_factory=dict)
    statistics: Dict[str, GenerationStatistics] = field(default_factory=dict)
    errors: List[GenerationIssue] = field(default_factory=list)
    warnings: List[GenerationIssue] = field(default_factory=list)
    order: List[str] = field(default_factory=list)
    dry_run: bool = False
    estimates: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    elapsed_time: float = 0.0
    failed: bool = False

    @property
    def outcome(self) -> Outcome:
        return Outcome.from_issues(self.errors, self.warnings, fatal=self.failed)

    @property
    def success(self) -> bool:
        return self.outcome is not Outcome.FAILED

    @property
    def total_records(self) -> int:
        return sum(self.generated.values())

    def record(self, issue: GenerationIssue) -> None:
        if issue.severity is IssueSeverity.ERROR:
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def absorb(self, result: GenerationResult) -> None:
        """Fold an entity result (one cohort or step) into the scenario totals."""
        self.generated[result.entity] = self.generated.get(result.entity, 0) + len(result.records)
        current: Optional[GenerationStatistics] = self.statistics.get(result.entity)
        stats = result.statistics
        if current is None:
            self.statistics[result.entity] = GenerationStatistics(**stats.to_dict())
        else:
            current.generated_count += stats.generated_count
            current.memory_usage = max(current.memory_usage, stats.memory_usage)
            current.peak_memory = max(current.peak_memory, stats.peak_memory)
            current.elapsed_time += stats.elapsed_time
            current.chunks_total += stats.chunks_total
            current.chunks_completed += stats.chunks_completed
            current.chunks_failed += stats.chunks_failed
            for name, counts in stats.relationships.items():
                merged = current.relationships.setdefault(name, {})
                for key, value in counts.items():
                    merged[key] = merged.get(key, 0) + value
        self.errors.extend(result.errors)
        self.warnings.extend(result.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "outcome": self.outcome.value,
            "generated": dict(self.generated),
            "statistics": {
                "entities": {name: s.to_dict() for name, s in self.statistics.items()},
                "total_records": self.total_records,
                "elapsed_time": self.elapsed_time,
            },
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "order": list(self.order),
            "dry_run": self.dry_run,
            "estimates": dict(self.estimates),
        }
