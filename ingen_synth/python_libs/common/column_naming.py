"""
Column naming analysis

Name-based heuristics used by the record synthesizer: foreign key shape
detection, table name inference for ``*_id`` columns, and the "special field"
categories that get realistic values instead of generic type defaults.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .schema_description import ColumnDescription, SchemaDescription

_IRREGULAR_PLURALS = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "mouse": "mice",
    "goose": "geese",
    "tooth": "teeth",
    "foot": "feet",
}
_IRREGULAR_SINGULARS = {plural: singular for singular, plural in _IRREGULAR_PLURALS.items()}
_UNCOUNTABLE = {"data", "equipment", "information", "metadata", "news", "series", "species"}


def snake_case(name: str) -> str:
    """Convert ``OrderItem`` or ``order-item`` into ``order_item``."""
    name = re.sub(r"[\s\-]+", "_", name.strip())
    name = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name)
    return name.lower()


def pluralize(word: str) -> str:
    """English plural of the last ``_`` separated segment."""
    head, _, last = word.rpartition("_")
    prefix = f"{head}_" if head else ""
    lower = last.lower()
    if lower in _UNCOUNTABLE:
        plural = last
    elif lower in _IRREGULAR_PLURALS:
        plural = _IRREGULAR_PLURALS[lower]
    elif re.search(r"[^aeiou]y$", lower):
        plural = last[:-1] + "ies"
    elif re.search(r"(s|x|z|ch|sh)$", lower):
        plural = last + "es"
    else:
        plural = last + "s"
    return prefix + plural


def singularize(word: str) -> str:
    head, _, last = word.rpartition("_")
    prefix = f"{head}_" if head else ""
    lower = last.lower()
    if lower in _UNCOUNTABLE:
        singular = last
    elif lower in _IRREGULAR_SINGULARS:
        singular = _IRREGULAR_SINGULARS[lower]
    elif lower.endswith("ies") and len(lower) > 3:
        singular = last[:-3] + "y"
    elif re.search(r"(ses|xes|zes|ches|shes)$", lower):
        singular = last[:-2]
    elif lower.endswith("s") and not lower.endswith("ss"):
        singular = last[:-1]
    else:
        singular = last
    return prefix + singular


class BindingKind(Enum):
    """How a column was bound to a referenced table."""

    EXPLICIT = "explicit"
    INFERRED = "inferred"
    NONE = "none"


@dataclass(frozen=True)
class ForeignKeyBinding:
    """Tagged foreign key resolution for a single column."""

    kind: BindingKind
    column: str
    table: Optional[str] = None
    foreign_column: str = "id"

    @property
    def is_bound(self) -> bool:
        return self.kind is not BindingKind.NONE

    @classmethod
    def unbound(cls, column: str) -> "ForeignKeyBinding":
        return cls(kind=BindingKind.NONE, column=column)


class ColumnNamingAnalyzer:
    """Analyzes column names to detect foreign keys and special fields."""

    FOREIGN_KEY_PATTERN = re.compile(r"^(?P<prefix>[a-z0-9_]+?)_id$", re.IGNORECASE)

    STATUS_PATTERNS = [r"^status$", r".*_status$"]
    STATE_PATTERNS = [r"^state$", r".*_state$"]
    NUMBER_PATTERNS = [r".*_number$", r"^reference$", r"^code$", r".*_code$"]
    AMOUNT_PATTERNS = [r"^(total|subtotal|tax|discount|amount)$", r".*_total$", r".*_amount$"]
    NAME_PATTERNS = [r"^name$", r".*_name$"]
    EMAIL_PATTERNS = [r".*email.*"]
    PASSWORD_PATTERNS = [r".*password.*"]
    TYPE_PATTERNS = [r"^type$", r".*_type$"]
    ROLE_PATTERNS = [r"^role$", r".*_role$"]
    UUID_PATTERNS = [r".*uuid.*"]
    SLUG_PATTERNS = [r".*slug.*"]
    SKU_PATTERNS = [r"^sku$"]
    ISBN_PATTERNS = [r"^isbn$", r".*_isbn$"]

    # Evaluation order matters: the first matching category wins.
    SPECIAL_FIELD_CATEGORIES = [
        ("status", STATUS_PATTERNS),
        ("number", NUMBER_PATTERNS),
        ("uuid", UUID_PATTERNS),
        ("slug", SLUG_PATTERNS),
        ("sku", SKU_PATTERNS),
        ("isbn", ISBN_PATTERNS),
        ("name", NAME_PATTERNS),
        ("email", EMAIL_PATTERNS),
        ("password", PASSWORD_PATTERNS),
        ("state", STATE_PATTERNS),
        ("type", TYPE_PATTERNS),
        ("role", ROLE_PATTERNS),
        ("amount", AMOUNT_PATTERNS),
    ]

    def looks_like_foreign_key(self, column_name: str) -> bool:
        name = column_name.lower()
        return name != "id" and bool(self.FOREIGN_KEY_PATTERN.match(name))

    def infer_table(self, column_name: str) -> Optional[str]:
        """``user_id`` -> ``users``; ``None`` when the column is not FK shaped."""
        if not self.looks_like_foreign_key(column_name):
            return None
        prefix = self.FOREIGN_KEY_PATTERN.match(column_name.lower()).group("prefix")
        return pluralize(prefix)

    def special_field_category(self, column_name: str) -> Optional[str]:
        name = column_name.lower().strip()
        for category, patterns in self.SPECIAL_FIELD_CATEGORIES:
            if self._matches_patterns(name, patterns):
                return category
        return None

    def special_fields(self, columns: List[str]) -> List[str]:
        return [c for c in columns if self.special_field_category(c)]

    def _matches_patterns(self, name: str, patterns: List[str]) -> bool:
        """Check if name matches any pattern in the list."""
        return any(re.match(pattern, name, re.IGNORECASE) for pattern in patterns)


def resolve_foreign_key_binding(
    column: ColumnDescription,
    schema: SchemaDescription,
    analyzer: Optional[ColumnNamingAnalyzer] = None,
) -> ForeignKeyBinding:
    """Bind a column to its referenced table.

    Declared foreign keys always win; the ``*_id`` name inference is only a
    fallback and never applies to the primary key.
    """
    declared = schema.declared_foreign_key(column.name)
    if declared is not None:
        return ForeignKeyBinding(
            kind=BindingKind.EXPLICIT,
            column=column.name,
            table=declared.foreign_table,
            foreign_column=declared.foreign_column,
        )
    if column.name == schema.primary_key:
        return ForeignKeyBinding.unbound(column.name)
    analyzer = analyzer or ColumnNamingAnalyzer()
    table = analyzer.infer_table(column.name)
    if table is None:
        return ForeignKeyBinding.unbound(column.name)
    return ForeignKeyBinding(kind=BindingKind.INFERRED, column=column.name, table=table)
