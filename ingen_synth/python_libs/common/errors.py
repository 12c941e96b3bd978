"""
Error kinds and outcome classification for synthetic data generation.

Fatal kinds are exceptions that abort the current operation. Non-fatal kinds
(referential integrity degradation, memory pressure, dependency cycles) are
recorded as ``GenerationIssue`` entries on the result so callers always get a
tri-state ``Outcome`` instead of a bare boolean.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class SyntheticDataError(Exception):
    """Base class for all generation engine errors."""


class ConfigurationError(SyntheticDataError):
    """Invalid pattern, request or settings parameters."""


class SchemaMismatchError(SyntheticDataError):
    """A requested entity or column is absent from the schema description."""


class DependencyCycleError(ConfigurationError):
    """Raised instead of a cycle warning when strict cycle handling is enabled."""

    def __init__(self, message: str, members: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.members = list(members or [])


class ChunkInsertError(SyntheticDataError):
    """Persistence of a chunk failed."""

    def __init__(
        self,
        message: str,
        chunk_index: int,
        cause: Optional[BaseException] = None,
        partial_result: Any = None,
    ):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.cause = cause
        self.partial_result = partial_result


class IssueKind(Enum):
    """Kinds of recorded generation issues."""

    REFERENTIAL_INTEGRITY = "referential_integrity"
    MEMORY_PRESSURE = "memory_pressure"
    DEPENDENCY_CYCLE = "dependency_cycle"
    CHUNK_INSERT = "chunk_insert"
    STEP_FAILURE = "step_failure"


class IssueSeverity(Enum):
    """Issue severity levels."""

    WARNING = "warning"
    ERROR = "error"


class Outcome(Enum):
    """Tri-state outcome reported by every result object."""

    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_WARNINGS = "succeeded_with_warnings"
    FAILED = "failed"

    @classmethod
    def from_issues(cls, errors: Iterable[Any], warnings: Iterable[Any], fatal: bool = False) -> "Outcome":
        """Derive the outcome from recorded errors and warnings."""
        if fatal:
            return cls.FAILED
        if list(errors) or list(warnings):
            return cls.SUCCEEDED_WITH_WARNINGS
        return cls.SUCCEEDED


@dataclass
class GenerationIssue:
    """A recorded, non-aborting problem."""

    kind: IssueKind
    message: str
    severity: IssueSeverity = IssueSeverity.WARNING
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def warning(cls, kind: IssueKind, message: str, **context: Any) -> "GenerationIssue":
        logger.warning(f"⚠️ {message}")
        return cls(kind=kind, message=message, severity=IssueSeverity.WARNING, context=context)

    @classmethod
    def error(cls, kind: IssueKind, message: str, **context: Any) -> "GenerationIssue":
        logger.error(f"❌ {message}")
        return cls(kind=kind, message=message, severity=IssueSeverity.ERROR, context=context)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationIssue":
        return cls(
            kind=IssueKind(data["kind"]),
            message=data["message"],
            severity=IssueSeverity(data.get("severity", "warning")),
            context=dict(data.get("context") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "context": dict(self.context),
        }


# Aliases naming the non-fatal kinds as issue factories
def referential_integrity_warning(message: str, **context: Any) -> GenerationIssue:
    return GenerationIssue.warning(IssueKind.REFERENTIAL_INTEGRITY, message, **context)


def memory_pressure_warning(message: str, **context: Any) -> GenerationIssue:
    return GenerationIssue.warning(IssueKind.MEMORY_PRESSURE, message, **context)


def dependency_cycle_warning(message: str, **context: Any) -> GenerationIssue:
    return GenerationIssue.warning(IssueKind.DEPENDENCY_CYCLE, message, **context)
