"""
Synthetic Data Request Configuration

This module provides the request-side configuration objects for synthetic data
generation: serializable pattern specs, per-entity generation requests, and the
scenario steps and cohorts used by the orchestrator.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ingen_synth.engine_config import parse_memory_limit

from .errors import ConfigurationError, SchemaMismatchError
from .schema_description import SchemaDescription


@dataclass(frozen=True)
class PatternSpec:
    """Serializable pattern reference: ``{type, params}``."""

    type: str
    params: Dict[str, Any] = field(default_factory=dict, hash=False)

    @classmethod
    def from_value(cls, value: Any) -> "PatternSpec":
        """Accept a bare type name, ``{type, params}`` or a flat ``{type, **params}``."""
        if isinstance(value, PatternSpec):
            return value
        if isinstance(value, str):
            return cls(type=value)
        if isinstance(value, Mapping):
            if "type" not in value:
                raise ConfigurationError(f"Pattern spec needs a 'type': {dict(value)}")
            if "params" in value:
                params = dict(value.get("params") or {})
            else:
                params = {k: v for k, v in value.items() if k != "type"}
            return cls(type=str(value["type"]), params=params)
        raise ConfigurationError(f"Unsupported pattern spec: {value!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "params": deepcopy(self.params)}


PatternAssignment = Union[PatternSpec, Mapping[str, Any], str, Any]


def _check_columns(schema: SchemaDescription, columns, what: str) -> None:
    missing = sorted(c for c in columns if not schema.has_column(c))
    if missing:
        raise SchemaMismatchError(
            f"{what} reference columns absent from {schema.entity}: {', '.join(missing)}"
        )


@dataclass
class GenerationRequest:
    """One entity's generation request.

    ``overrides`` values may be literals or callables receiving an
    ``OverrideContext``. ``column_patterns`` maps columns to pattern
    assignments; ``model_patterns`` maps entity names to column assignments.
    ``None`` for chunk size, memory limit, seed, transactional or workers
    defers to the engine settings.
    """

    entity: str
    count: int
    overrides: Dict[str, Any] = field(default_factory=dict)
    column_patterns: Dict[str, PatternAssignment] = field(default_factory=dict)
    model_patterns: Dict[str, Dict[str, PatternAssignment]] = field(default_factory=dict)
    chunk_size: Optional[int] = None
    memory_limit: Optional[Union[str, int]] = None
    seed: Optional[int] = None
    transactional: Optional[bool] = None
    silent: bool = True
    workers: Optional[int] = None
    populate_relationships: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GenerationRequest":
        if "entity" not in data or "count" not in data:
            raise ConfigurationError("A generation request needs 'entity' and 'count'")
        return cls(
            entity=data["entity"],
            count=data["count"],
            overrides=dict(data.get("overrides") or {}),
            column_patterns=dict(data.get("column_patterns") or {}),
            model_patterns={k: dict(v) for k, v in (data.get("model_patterns") or {}).items()},
            chunk_size=data.get("chunk_size"),
            memory_limit=data.get("memory_limit"),
            seed=data.get("seed"),
            transactional=data.get("transactional"),
            silent=bool(data.get("silent", True)),
            workers=data.get("workers"),
            populate_relationships=bool(data.get("populate_relationships", True)),
        )

    def validate(self, schema: Optional[SchemaDescription] = None) -> None:
        """Fail fast before any persistence."""
        if not isinstance(self.count, int) or isinstance(self.count, bool) or self.count < 0:
            raise ConfigurationError(f"count must be a non-negative integer, got {self.count!r}")
        if self.chunk_size is not None and (not isinstance(self.chunk_size, int) or self.chunk_size < 1):
            raise ConfigurationError(f"chunk_size must be a positive integer, got {self.chunk_size!r}")
        if self.workers is not None and (not isinstance(self.workers, int) or self.workers < 1):
            raise ConfigurationError(f"workers must be a positive integer, got {self.workers!r}")
        if self.memory_limit is not None:
            parse_memory_limit(self.memory_limit)
        if schema is None:
            return
        if schema.entity != self.entity and schema.table != self.entity:
            raise SchemaMismatchError(
                f"Request for {self.entity!r} does not match schema {schema.entity!r}"
            )
        _check_columns(schema, self.overrides, "Overrides")
        _check_columns(schema, self.column_patterns, "Column patterns")
        _check_columns(schema, self.model_patterns.get(schema.entity, {}), "Entity patterns")

    def has_callable_overrides(self) -> bool:
        return any(callable(v) for v in self.overrides.values())

    def entity_patterns(self, entity: str) -> Dict[str, PatternAssignment]:
        return dict(self.model_patterns.get(entity, {}))

    def to_dict(self) -> Dict[str, Any]:
        def _spec(value):
            if isinstance(value, (PatternSpec, str, Mapping)):
                return PatternSpec.from_value(value).to_dict()
            return repr(value)

        return {
            "entity": self.entity,
            "count": self.count,
            "overrides": {k: ("<callable>" if callable(v) else v) for k, v in self.overrides.items()},
            "column_patterns": {k: _spec(v) for k, v in self.column_patterns.items()},
            "model_patterns": {
                entity: {k: _spec(v) for k, v in cols.items()}
                for entity, cols in self.model_patterns.items()
            },
            "chunk_size": self.chunk_size,
            "memory_limit": self.memory_limit,
            "seed": self.seed,
            "transactional": self.transactional,
            "silent": self.silent,
        }


@dataclass
class Cohort:
    """A named share of a step's records with its own overrides."""

    name: str
    share: float
    overrides: Dict[str, Any] = field(default_factory=dict)
    column_patterns: Dict[str, PatternAssignment] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0 <= float(self.share) <= 1:
            raise ConfigurationError(f"Cohort {self.name}: share must be in [0, 1], got {self.share}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], position: int = 0) -> "Cohort":
        """Build a cohort; unnamed cohorts are called ``cohort_<position + 1>``."""
        share = data.get("share", data.get("percentage"))
        if share is None:
            raise ConfigurationError(f"Cohort {data.get('name')} needs a share")
        share = float(share)
        if share > 1:
            share /= 100.0
        return cls(
            name=data.get("name") or f"cohort_{position + 1}",
            share=share,
            overrides=dict(data.get("overrides") or {}),
            column_patterns=dict(data.get("column_patterns") or data.get("patterns") or {}),
        )


@dataclass
class ScenarioStep:
    """One entity in a scenario plan."""

    entity: str
    count: int = 0
    cohorts: List[Cohort] = field(default_factory=list)
    overrides: Dict[str, Any] = field(default_factory=dict)
    column_patterns: Dict[str, PatternAssignment] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    chunk_size: Optional[int] = None
    populate_relationships: bool = True
    on_progress: Optional[Callable[[str, str], None]] = None

    def __post_init__(self) -> None:
        if not isinstance(self.count, int) or self.count < 0:
            raise ConfigurationError(f"Step {self.entity}: count must be a non-negative integer")
        if self.cohorts:
            names = [c.name for c in self.cohorts]
            duplicates = sorted({n for n in names if names.count(n) > 1})
            if duplicates:
                raise ConfigurationError(
                    f"Step {self.entity}: duplicate cohort names: {', '.join(duplicates)}"
                )
            total = sum(c.share for c in self.cohorts)
            if total <= 0 or total > 1.0 + 1e-9:
                raise ConfigurationError(
                    f"Step {self.entity}: cohort shares must sum to (0, 1], got {total:.3f}"
                )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScenarioStep":
        if "entity" not in data:
            raise ConfigurationError(f"Scenario step needs an 'entity': {dict(data)}")
        return cls(
            entity=data["entity"],
            count=int(data.get("count", 0)),
            cohorts=[Cohort.from_dict(c, i) for i, c in enumerate(data.get("cohorts") or [])],
            overrides=dict(data.get("overrides") or {}),
            column_patterns=dict(data.get("column_patterns") or data.get("patterns") or {}),
            depends_on=list(data.get("depends_on") or []),
            chunk_size=data.get("chunk_size"),
            populate_relationships=bool(data.get("populate_relationships", True)),
        )

    def _split_count(self) -> List[int]:
        total_share = sum(c.share for c in self.cohorts)
        counts = [int(self.count * cohort.share / total_share) for cohort in self.cohorts[:-1]]
        counts.append(self.count - sum(counts))
        return counts

    def cohort_counts(self) -> Dict[str, int]:
        """Split ``count`` across cohorts; the last cohort takes the remainder."""
        if not self.cohorts:
            return {self.entity: self.count}
        return {cohort.name: n for cohort, n in zip(self.cohorts, self._split_count())}

    def requests(self, seed: Optional[int] = None, **request_kwargs: Any) -> List[GenerationRequest]:
        """Expand the step into one generation request per cohort."""
        if not self.cohorts:
            return [
                GenerationRequest(
                    entity=self.entity,
                    count=self.count,
                    overrides=dict(self.overrides),
                    column_patterns=dict(self.column_patterns),
                    chunk_size=self.chunk_size,
                    seed=seed,
                    populate_relationships=self.populate_relationships,
                    **request_kwargs,
                )
            ]
        requests = []
        for position, (cohort, count) in enumerate(zip(self.cohorts, self._split_count())):
            requests.append(
                GenerationRequest(
                    entity=self.entity,
                    count=count,
                    overrides={**self.overrides, **cohort.overrides},
                    column_patterns={**self.column_patterns, **cohort.column_patterns},
                    chunk_size=self.chunk_size,
                    seed=None if seed is None else seed + position,
                    populate_relationships=self.populate_relationships,
                    **request_kwargs,
                )
            )
        return requests
