"""
Record Synthesizer - Python Implementation

Builds one attribute map per entity row from the schema description, the
pattern engine and explicit overrides.

Per-column priority:
    explicit override > column pattern > entity pattern > inferred pattern
    > schema-type default > special field heuristic > generic type default

Foreign-key-shaped columns are delegated to the relationship resolver, and
every record finishes with a type-cast normalization pass.

Dependencies: faker, numpy
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

import numpy as np
from faker import Faker

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.column_naming import (
    ColumnNamingAnalyzer,
    ForeignKeyBinding,
    resolve_foreign_key_binding,
)
from ingen_synth.python_libs.common.errors import ConfigurationError
from ingen_synth.python_libs.common.schema_description import (
    ColumnDescription,
    SchemaDescription,
    normalize_type,
)
from ingen_synth.python_libs.interfaces.data_store_interface import DataStoreInterface
from ingen_synth.python_libs.interfaces.pattern_interface import IPattern
from ingen_synth.python_libs.patterns.base import PatternContext
from ingen_synth.python_libs.patterns.pattern_engine import PatternEngine

logger = logging.getLogger(__name__)

UniqueRegistry = Dict[Tuple[str, str], Set[Any]]

STATUS_VALUES = {
    "order": ["pending", "processing", "completed", "cancelled"],
    "payment": ["pending", "paid", "failed", "refunded"],
}
DEFAULT_STATUS_VALUES = ["active", "inactive", "pending", "completed"]
STATE_VALUES = ["draft", "published", "archived"]
TYPE_VALUES = ["standard", "premium", "basic", "advanced"]
ROLE_VALUES = ["admin", "user", "moderator", "guest"]

INTEGER_RANGES = {
    "tinyint": (-128, 127, 255),
    "smallint": (-32768, 32767, 65535),
    "bigint": (-(2 ** 63), 2 ** 63 - 1, 2 ** 64 - 1),
}
DEFAULT_INTEGER_RANGE = (-2147483648, 2147483647, 4294967295)

TEXT_TYPES = ("string", "text")
NUMERIC_TYPES = ("integer", "float", "decimal")


@dataclass
class OverrideContext:
    """Argument passed to callable overrides.

    Callable overrides run after every other column, so ``record`` already
    holds resolved foreign keys and generated values.
    """

    index: int
    entity: str
    record: Dict[str, Any]
    rng: np.random.Generator
    faker: Faker
    store: Optional[DataStoreInterface] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    def fetch_row(self, table: str, value: Any, column: str = "id") -> Optional[Dict[str, Any]]:
        if self.store is None:
            return None
        return self.store.fetch_row(table, value, column)


class RecordSynthesizer:
    """Synthesizes records for one entity."""

    def __init__(
        self,
        schema: SchemaDescription,
        engine: PatternEngine,
        resolver: Optional[Any] = None,
        settings: Optional[EngineSettings] = None,
        rng: Optional[np.random.Generator] = None,
        faker: Optional[Faker] = None,
        column_patterns: Optional[Mapping[str, Any]] = None,
        entity_patterns: Optional[Mapping[str, Any]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
        total: Optional[int] = None,
        unique_registry: Optional[UniqueRegistry] = None,
    ):
        self.schema = schema
        self.engine = engine
        self.resolver = resolver
        self.settings = settings or EngineSettings()
        self.rng = rng if rng is not None else np.random.default_rng(self.settings.seed)
        if faker is None:
            faker = Faker(self.settings.locale)
            if self.settings.seed is not None:
                faker.seed_instance(self.settings.seed)
        self.fake = faker
        self.overrides = dict(overrides or {})
        self.total = total
        self.analyzer = ColumnNamingAnalyzer()
        self._unique = unique_registry if unique_registry is not None else {}
        self.logger = logging.getLogger(__name__)

        # Patterns are built here so configuration errors surface before any row exists.
        self.column_patterns: Dict[str, IPattern] = {}
        for column in schema.columns.values():
            if column.pattern is not None:
                self.column_patterns[column.name] = engine.load(column.pattern)
        for name, spec in (column_patterns or {}).items():
            self.column_patterns[name] = engine.load(spec)
        self.entity_patterns: Dict[str, IPattern] = {
            name: engine.load(spec) for name, spec in (entity_patterns or {}).items()
        }
        self.bindings: Dict[str, ForeignKeyBinding] = {
            column.name: resolve_foreign_key_binding(column, schema, self.analyzer)
            for column in schema.columns.values()
        }
        for column in schema.columns.values():
            self._check_hints(column)

    def _check_hints(self, column: ColumnDescription) -> None:
        method = column.generation_hints.get("faker")
        if method and not callable(getattr(self.fake, method, None)):
            raise ConfigurationError(
                f"{self.schema.entity}.{column.name}: unknown faker provider {method!r}"
            )

    # Record assembly

    def synthesize(self, index: int, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Build the attribute map for record number ``index``."""
        merged = {**self.overrides, **(overrides or {})}
        record: Dict[str, Any] = {}
        deferred: List[str] = []
        context = PatternContext(
            rng=self.rng, index=index, total=self.total, entity=self.schema.entity, record=record
        )

        for column in self.schema.columns.values():
            name = column.name
            if name in merged:
                if callable(merged[name]):
                    deferred.append(name)
                else:
                    record[name] = merged[name]
                continue
            if self.schema.is_auto_primary_key(column) or self.schema.is_managed_timestamp(name):
                continue
            binding = self.bindings[name]
            if binding.is_bound:
                record[name] = self._foreign_key_value(binding, column)
                continue
            context.column = name
            record[name] = self.generate_value(column, context)

        for name in merged:
            if name not in self.schema.columns:
                record[name] = merged[name]

        for name in deferred:
            record[name] = merged[name](
                OverrideContext(
                    index=index,
                    entity=self.schema.entity,
                    record=record,
                    rng=self.rng,
                    faker=self.fake,
                    store=getattr(self.resolver, "store", None),
                )
            )
        return self.apply_casts(record)

    def synthesize_chunk(self, start_index: int, size: int,
                         overrides: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        return [self.synthesize(start_index + offset, overrides) for offset in range(size)]

    def _foreign_key_value(self, binding: ForeignKeyBinding, column: ColumnDescription) -> Any:
        if self.resolver is None:
            return None
        return self.resolver.foreign_key_value(binding, column, self.schema, self.rng)

    def pattern_for(self, column: ColumnDescription) -> Optional[IPattern]:
        """Highest-priority pattern for a column, or None."""
        pattern = self.column_patterns.get(column.name) or self.entity_patterns.get(column.name)
        if pattern is not None:
            return pattern
        return self.engine.infer_for_column(column, self.schema.entity)

    def generate_value(self, column: ColumnDescription, context: Optional[PatternContext] = None) -> Any:
        pattern = self.pattern_for(column)
        if pattern is not None:
            return pattern.generate(context or PatternContext(rng=self.rng, column=column.name))

        handled, value = self._schema_type_value(column)
        if handled:
            return value

        category = self.analyzer.special_field_category(column.name)
        if category is not None and self._special_field_applies(category, column):
            return self._remember_unique(column, self._special_field_value(category, column))

        return self._generic_value(column)

    # Schema-type defaults

    def _null_roll(self, column: ColumnDescription) -> bool:
        return column.nullable and float(self.rng.random()) < self.settings.null_probability

    def _schema_type_value(self, column: ColumnDescription) -> Tuple[bool, Any]:
        hints = column.generation_hints
        if hints.get("faker"):
            value = getattr(self.fake, hints["faker"])(*hints.get("params", []), **hints.get("kwargs", {}))
            return True, self._remember_unique(column, value)
        if hints.get("use_default") and column.default is not None:
            return True, column.default

        kind = column.canonical_type
        if kind not in ("enum", "boolean", "uuid", "json", "date", "datetime", "time"):
            return False, None
        if self._null_roll(column):
            return True, None
        if kind == "enum":
            values = list(column.enum_values) or ["option1", "option2", "option3"]
            return True, values[int(self.rng.integers(len(values)))]
        if kind == "boolean":
            return True, bool(self.rng.random() < 0.5)
        if kind == "uuid":
            return True, str(self.fake.uuid4())
        if kind == "json":
            return True, self._json_document()
        if kind == "date":
            return True, self.fake.date_object()
        if kind == "time":
            return True, self.fake.time_object()
        return True, self.fake.date_time()

    def _json_document(self) -> Dict[str, Any]:
        return {
            "id": str(self.fake.uuid4()),
            "name": self.fake.name(),
            "email": self.fake.email(),
            "metadata": {
                "created": self.fake.date_time().strftime("%Y-%m-%d %H:%M:%S"),
                "tags": self.fake.words(3),
                "active": bool(self.rng.random() < 0.5),
            },
        }

    # Special fields

    def _special_field_applies(self, category: str, column: ColumnDescription) -> bool:
        if category == "amount":
            return column.canonical_type in TEXT_TYPES + NUMERIC_TYPES
        return column.canonical_type in TEXT_TYPES

    def _choice(self, values: List[Any]) -> Any:
        return values[int(self.rng.integers(len(values)))]

    def _special_field_value(self, category: str, column: ColumnDescription) -> Any:
        name = column.name.lower()
        if category == "status":
            table = self.schema.table.lower()
            for marker, values in STATUS_VALUES.items():
                if marker in table:
                    return self._choice(values)
            return self._choice(DEFAULT_STATUS_VALUES)
        if category == "number":
            return f"{column.name[:3].upper()}-{int(self.rng.integers(100000, 1000000))}"
        if category == "uuid":
            return str(self.fake.uuid4())
        if category == "slug":
            return self.fake.slug()
        if category == "sku":
            return f"SKU-{int(self.rng.integers(10000, 100000))}"
        if category == "isbn":
            return self.fake.isbn13()
        if category == "name":
            if "first" in name:
                return self.fake.first_name()
            if "last" in name:
                return self.fake.last_name()
            if "company" in name:
                return self.fake.company()
            return self.fake.name()
        if category == "email":
            return self.fake.safe_email()
        if category == "password":
            return self.fake.sha256()
        if category == "state":
            return self._choice(STATE_VALUES)
        if category == "type":
            return self._choice(TYPE_VALUES)
        if category == "role":
            return self._choice(ROLE_VALUES)
        return round(float(self.rng.uniform(10, 10000)), 2)

    def _remember_unique(self, column: ColumnDescription, value: Any) -> Any:
        """Suffix repeated values of unique columns so they stay distinct.

        Strings are fitted to the column length first, so the cast pass cannot
        truncate two distinct values into the same one.
        """
        if not column.unique or value is None:
            return value
        length = column.length if isinstance(value, str) else None
        if length:
            value = value[:length]
        seen = self._unique.setdefault((self.schema.table, column.name), set())
        candidate = value
        counter = 1
        while candidate in seen:
            counter += 1
            if length and len(str(counter)) > length:
                raise ConfigurationError(
                    f"{self.schema.table}.{column.name}: no unique values of length {length} left"
                )
            candidate = _with_suffix(value, counter, length)
        seen.add(candidate)
        return candidate

    def register_unique(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Apply the unique-value registry to records built elsewhere."""
        unique_columns = [c for c in self.schema.columns.values() if c.unique]
        for record in records:
            for column in unique_columns:
                if column.name in record and column.name not in self.overrides:
                    record[column.name] = self._remember_unique(column, record[column.name])
        return records

    # Generic type defaults

    def _generic_value(self, column: ColumnDescription) -> Any:
        if self._null_roll(column):
            return None
        kind = column.canonical_type
        if kind == "integer":
            value = self._integer_value(column)
        elif kind in ("float", "decimal"):
            precision = column.precision or 10
            scale = column.scale if column.scale is not None else 2
            upper = 10 ** max(precision - scale, 1) - 1
            value = round(float(self.rng.uniform(0, upper)), scale)
        elif kind == "text":
            value = self.fake.paragraph()
        else:
            value = self._string_value(column)
        return self._remember_unique(column, value)

    def _integer_value(self, column: ColumnDescription) -> int:
        low, high, unsigned_high = INTEGER_RANGES.get(column.type.lower(), DEFAULT_INTEGER_RANGE)
        if column.unsigned:
            low, high = 0, unsigned_high
        # numpy integers() cannot span the full 64-bit range
        low, high = max(low, -(2 ** 62)), min(high, 2 ** 62)
        return int(self.rng.integers(low, high, endpoint=True))

    def _string_value(self, column: ColumnDescription) -> str:
        max_length = column.length or 255
        if max_length <= 10:
            return self.fake.lexify("?" * max_length)
        if max_length <= 50:
            return " ".join(self.fake.words(3))[:max_length]
        return self.fake.sentence()[:max_length]

    # Cast normalization

    def apply_casts(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Coerce values to their column's declared storage type."""
        for name, value in record.items():
            if value is None:
                continue
            cast = self.schema.casts.get(name)
            column = self.schema.columns.get(name)
            if cast is None and column is None:
                continue
            kind = normalize_type(cast) if cast else column.canonical_type
            try:
                record[name] = _cast_value(value, kind, column)
            except (TypeError, ValueError) as exc:
                self.logger.debug(f"Left {self.schema.entity}.{name} uncast ({kind}): {exc}")
        return record


def _cast_value(value: Any, kind: str, column: Optional[ColumnDescription]) -> Any:
    if kind == "boolean":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "y", "on")
        return bool(value)
    if kind == "integer":
        if isinstance(value, float):
            return int(round(value))
        return int(value)
    if kind in ("float", "decimal"):
        number = float(value)
        if column is not None and column.scale is not None:
            number = round(number, column.scale)
        return number
    if kind in ("string", "text", "uuid", "enum"):
        if isinstance(value, (datetime, date, time)):
            text = value.isoformat()
        elif isinstance(value, (dict, list)):
            text = json.dumps(value, default=str)
        else:
            text = str(value)
        if column is not None and column.length:
            text = text[: column.length]
        return text
    if kind == "json":
        if isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return json.dumps([value], default=str)
    return value


def _with_suffix(value: Any, counter: int, length: Optional[int] = None) -> Any:
    if isinstance(value, str):
        if "@" in value:
            local, _, domain = value.partition("@")
            tail = f"{counter}@{domain}"
        else:
            local, tail = value, f"-{counter}"
        if length and len(tail) > length:
            return str(counter)
        if length:
            local = local[: length - len(tail)]
        return f"{local}{tail}"
    if isinstance(value, int) and not isinstance(value, bool):
        return value + counter
    if isinstance(value, float):
        return value + counter * 0.01
    return f"{value}-{counter}"
