"""
Schema description consumed by the generation engine.

The description is produced by an external analyzer (model or database
introspection) and is immutable for the duration of a run. It is accepted in
the JSON shape::

    {
        "table": "users",
        "columns": {"email": {"type": "string", "nullable": false, "unique": true}},
        "foreign_keys": [{"column": "organization_id", "foreign_table": "organizations"}],
        "relationships": {"posts": {"kind": "has_many", "related_entity": "Post"}}
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError, SchemaMismatchError


class RelationshipKind(Enum):
    """Declared relationship kinds."""

    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"

    @classmethod
    def parse(cls, value: Any) -> "RelationshipKind":
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        kind = _KIND_ALIASES.get(key) or _KIND_ALIASES.get(key.lower())
        if kind is None:
            raise ConfigurationError(f"Unknown relationship kind: {value!r}")
        return kind


_KIND_ALIASES = {
    "belongs_to": RelationshipKind.BELONGS_TO,
    "belongsTo": RelationshipKind.BELONGS_TO,
    "many_to_one": RelationshipKind.BELONGS_TO,
    "has_one": RelationshipKind.HAS_ONE,
    "hasOne": RelationshipKind.HAS_ONE,
    "one_to_one": RelationshipKind.HAS_ONE,
    "has_many": RelationshipKind.HAS_MANY,
    "hasMany": RelationshipKind.HAS_MANY,
    "one_to_many": RelationshipKind.HAS_MANY,
    "belongs_to_many": RelationshipKind.BELONGS_TO_MANY,
    "belongsToMany": RelationshipKind.BELONGS_TO_MANY,
    "many_to_many": RelationshipKind.BELONGS_TO_MANY,
}
_KIND_ALIASES.update({k.lower(): v for k, v in list(_KIND_ALIASES.items())})


INTEGER_TYPES = {"integer", "int", "bigint", "smallint", "tinyint", "mediumint", "biginteger", "increments", "bigincrements"}
FLOAT_TYPES = {"float", "double", "decimal", "real", "numeric"}
BOOLEAN_TYPES = {"boolean", "bool"}
STRING_TYPES = {"string", "varchar", "char", "text", "mediumtext", "longtext"}
TEMPORAL_TYPES = {"date", "datetime", "timestamp", "time"}
STRUCTURED_TYPES = {"json", "jsonb", "array", "object"}


def normalize_type(type_name: Optional[str]) -> str:
    """Map a declared column type onto the engine's canonical type names."""
    name = (type_name or "string").strip().lower()
    if name in INTEGER_TYPES:
        return "integer"
    if name in FLOAT_TYPES:
        return "decimal" if name in ("decimal", "numeric") else "float"
    if name in BOOLEAN_TYPES:
        return "boolean"
    if name in ("text", "mediumtext", "longtext"):
        return "text"
    if name in STRING_TYPES:
        return "string"
    if name in ("datetime", "timestamp"):
        return "datetime"
    if name in TEMPORAL_TYPES:
        return name
    if name in STRUCTURED_TYPES:
        return "json"
    if name in ("uuid", "enum"):
        return name
    return "string"


@dataclass(frozen=True)
class ColumnDescription:
    name: str
    type: str = "string"
    nullable: bool = False
    default: Any = None
    unique: bool = False
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    enum_values: Tuple[Any, ...] = ()
    auto_increment: bool = False
    primary_key: bool = False
    unsigned: bool = False
    pattern: Optional[Any] = None
    generation_hints: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def canonical_type(self) -> str:
        if self.enum_values:
            return "enum"
        return normalize_type(self.type)

    @classmethod
    def from_dict(cls, name: str, data: Optional[Mapping[str, Any]]) -> "ColumnDescription":
        data = dict(data or {})
        enum_values = data.get("enum_values") or data.get("values") or ()
        return cls(
            name=name,
            type=str(data.get("type", "string")),
            nullable=bool(data.get("nullable", False)),
            default=data.get("default"),
            unique=bool(data.get("unique", False)),
            length=data.get("length"),
            precision=data.get("precision"),
            scale=data.get("scale"),
            enum_values=tuple(enum_values),
            auto_increment=bool(data.get("auto_increment", data.get("autoincrement", False))),
            primary_key=bool(data.get("primary_key", False)),
            unsigned=bool(data.get("unsigned", False)),
            pattern=data.get("pattern"),
            generation_hints=dict(data.get("generation_hints") or {}),
        )


@dataclass(frozen=True)
class ForeignKeyDescription:
    column: str
    foreign_table: str
    foreign_column: str = "id"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ForeignKeyDescription":
        try:
            return cls(
                column=data["column"],
                foreign_table=data["foreign_table"],
                foreign_column=data.get("foreign_column", "id"),
            )
        except KeyError as exc:
            raise ConfigurationError(f"Foreign key is missing {exc.args[0]!r}: {dict(data)}") from exc


@dataclass(frozen=True)
class RelationshipDescriptor:
    """Declarative relationship with its cardinality policy.

    ``existence_probability`` applies to one-to-one, ``count_range`` to
    one-to-many and ``attach_range`` to many-to-many. ``None`` means the
    engine settings decide.
    """

    name: str
    kind: RelationshipKind
    related_entity: str
    foreign_key: Optional[str] = None
    existence_probability: Optional[float] = None
    count_range: Optional[Tuple[int, int]] = None
    attach_range: Optional[Tuple[int, int]] = None
    pivot_table: Optional[str] = None
    foreign_pivot_key: Optional[str] = None
    related_pivot_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.existence_probability is not None and not 0 <= self.existence_probability <= 1:
            raise ConfigurationError(
                f"Relationship {self.name}: existence_probability must be in [0, 1]"
            )
        for label in ("count_range", "attach_range"):
            bounds = getattr(self, label)
            if bounds is not None and (bounds[0] < 0 or bounds[1] < bounds[0]):
                raise ConfigurationError(f"Relationship {self.name}: invalid {label} {bounds}")

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "RelationshipDescriptor":
        def _pair(value):
            return tuple(int(v) for v in value) if value is not None else None

        related = data.get("related_entity") or data.get("related")
        if not related:
            raise ConfigurationError(f"Relationship {name} does not name a related entity")
        return cls(
            name=name,
            kind=RelationshipKind.parse(data.get("kind", data.get("type"))),
            related_entity=related,
            foreign_key=data.get("foreign_key"),
            existence_probability=data.get("existence_probability"),
            count_range=_pair(data.get("count_range")),
            attach_range=_pair(data.get("attach_range")),
            pivot_table=data.get("pivot_table"),
            foreign_pivot_key=data.get("foreign_pivot_key"),
            related_pivot_key=data.get("related_pivot_key"),
        )


@dataclass(frozen=True)
class SchemaDescription:
    entity: str
    table: str
    columns: Dict[str, ColumnDescription] = field(default_factory=dict)
    foreign_keys: Tuple[ForeignKeyDescription, ...] = ()
    relationships: Tuple[RelationshipDescriptor, ...] = ()
    primary_key: str = "id"
    incrementing: bool = True
    timestamps: bool = True
    casts: Dict[str, str] = field(default_factory=dict)

    MANAGED_TIMESTAMPS = ("created_at", "updated_at")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SchemaDescription":
        """Create a SchemaDescription from the analyzer's JSON shape."""
        table = data.get("table")
        entity = data.get("entity") or _entity_from_table(table or "")
        if not table:
            if not entity:
                raise ConfigurationError("Schema description needs a table or entity name")
            table = _table_from_entity(entity)
        columns = {
            name: ColumnDescription.from_dict(name, spec)
            for name, spec in (data.get("columns") or {}).items()
        }
        relationships = data.get("relationships") or {}
        if isinstance(relationships, list):
            relationships = {r["name"]: r for r in relationships}
        return cls(
            entity=entity,
            table=table,
            columns=columns,
            foreign_keys=tuple(ForeignKeyDescription.from_dict(fk) for fk in data.get("foreign_keys") or []),
            relationships=tuple(
                RelationshipDescriptor.from_dict(name, spec) for name, spec in relationships.items()
            ),
            primary_key=data.get("primary_key", "id"),
            incrementing=bool(data.get("incrementing", True)),
            timestamps=bool(data.get("timestamps", True)),
            casts=dict(data.get("casts") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "table": self.table,
            "primary_key": self.primary_key,
            "incrementing": self.incrementing,
            "timestamps": self.timestamps,
            "casts": dict(self.casts),
            "columns": {
                name: {
                    "type": c.type,
                    "nullable": c.nullable,
                    "default": c.default,
                    "unique": c.unique,
                    "length": c.length,
                    "precision": c.precision,
                    "scale": c.scale,
                    "enum_values": list(c.enum_values),
                    "auto_increment": c.auto_increment,
                    "primary_key": c.primary_key,
                    "unsigned": c.unsigned,
                    "pattern": c.pattern,
                    "generation_hints": dict(c.generation_hints),
                }
                for name, c in self.columns.items()
            },
            "foreign_keys": [
                {"column": fk.column, "foreign_table": fk.foreign_table, "foreign_column": fk.foreign_column}
                for fk in self.foreign_keys
            ],
            "relationships": {
                r.name: {
                    "kind": r.kind.value,
                    "related_entity": r.related_entity,
                    "foreign_key": r.foreign_key,
                    "existence_probability": r.existence_probability,
                    "count_range": list(r.count_range) if r.count_range else None,
                    "attach_range": list(r.attach_range) if r.attach_range else None,
                    "pivot_table": r.pivot_table,
                    "foreign_pivot_key": r.foreign_pivot_key,
                    "related_pivot_key": r.related_pivot_key,
                }
                for r in self.relationships
            },
        }

    def column(self, name: str) -> ColumnDescription:
        try:
            return self.columns[name]
        except KeyError:
            raise SchemaMismatchError(f"Column {name!r} is not part of {self.entity} ({self.table})") from None

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def declared_foreign_key(self, column: str) -> Optional[ForeignKeyDescription]:
        for fk in self.foreign_keys:
            if fk.column == column:
                return fk
        return None

    def is_auto_primary_key(self, column: ColumnDescription) -> bool:
        if column.auto_increment:
            return True
        return column.name == self.primary_key and self.incrementing

    def is_managed_timestamp(self, column_name: str) -> bool:
        return self.timestamps and column_name in self.MANAGED_TIMESTAMPS

    def referenced_tables(self) -> List[str]:
        return [fk.foreign_table for fk in self.foreign_keys]


class SchemaCatalog:
    """Lookup of schema descriptions by entity or table name."""

    def __init__(self, schemas: Optional[List[SchemaDescription]] = None):
        self._by_entity: Dict[str, SchemaDescription] = {}
        self._by_table: Dict[str, SchemaDescription] = {}
        for schema in schemas or []:
            self.add(schema)

    @classmethod
    def from_dicts(cls, items: List[Mapping[str, Any]]) -> "SchemaCatalog":
        return cls([SchemaDescription.from_dict(item) for item in items])

    def add(self, schema: SchemaDescription) -> None:
        self._by_entity[schema.entity] = schema
        self._by_table[schema.table] = schema

    def get(self, name: str) -> SchemaDescription:
        schema = self.find(name)
        if schema is None:
            raise SchemaMismatchError(f"No schema description for entity {name!r}")
        return schema

    def find(self, name: str) -> Optional[SchemaDescription]:
        return self._by_entity.get(name) or self._by_table.get(name)

    def has_table(self, table: str) -> bool:
        return table in self._by_table

    def entity_for_table(self, table: str) -> Optional[str]:
        schema = self._by_table.get(table)
        return schema.entity if schema else None

    def __contains__(self, name: str) -> bool:
        return self.find(name) is not None

    def __iter__(self):
        return iter(self._by_entity.values())

    def __len__(self) -> int:
        return len(self._by_entity)


def _entity_from_table(table: str) -> str:
    from .column_naming import singularize

    return "".join(part.capitalize() for part in singularize(table).split("_"))


def _table_from_entity(entity: str) -> str:
    from .column_naming import pluralize, snake_case

    return pluralize(snake_case(entity))
