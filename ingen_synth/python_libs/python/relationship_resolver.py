"""
Relationship Resolver - Python Implementation

Supplies foreign-key values for synthesized rows from identifiers that
already exist in the store, and populates declared relationships once an
entity's base rows are persisted:

* one-to-one: at most one related row per parent, created with the
  configured existence probability
* one-to-many: a random number of related rows per parent
* many-to-many: links to a random subset of existing related rows through
  the pivot table; related rows are never created

Degraded resolutions (empty referenced table) are recorded as
``REFERENTIAL_INTEGRITY`` warnings instead of failing the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.column_naming import (
    BindingKind,
    ForeignKeyBinding,
    resolve_foreign_key_binding,
    singularize,
    snake_case,
)
from ingen_synth.python_libs.common.errors import (
    GenerationIssue,
    referential_integrity_warning,
)
from ingen_synth.python_libs.common.schema_description import (
    ColumnDescription,
    RelationshipKind,
    SchemaCatalog,
    SchemaDescription,
)
from ingen_synth.python_libs.interfaces.data_store_interface import DataStoreInterface

from .foreign_key_cache import ForeignKeyCache

logger = logging.getLogger(__name__)

# Writes related rows: (related schema, per-row overrides) -> inserted ids
RelatedRowWriter = Callable[[SchemaDescription, List[Dict[str, Any]]], List[Any]]


@dataclass
class RelationshipStats:
    """Rows created and pivot links written, per relationship name."""

    per_relationship: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def add(self, name: str, created: int = 0, linked: int = 0, skipped: int = 0) -> None:
        counts = self.per_relationship.setdefault(name, {"created": 0, "linked": 0, "skipped": 0})
        counts["created"] += created
        counts["linked"] += linked
        counts["skipped"] += skipped

    @property
    def created(self) -> int:
        return sum(c["created"] for c in self.per_relationship.values())

    @property
    def linked(self) -> int:
        return sum(c["linked"] for c in self.per_relationship.values())

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {name: dict(counts) for name, counts in self.per_relationship.items()}


def default_foreign_key(entity: str) -> str:
    return f"{snake_case(entity)}_id"


def default_pivot_table(schema: SchemaDescription, related: SchemaDescription) -> str:
    """``posts`` + ``tags`` -> ``post_tag``."""
    names = sorted([singularize(schema.table), singularize(related.table)])
    return "_".join(names)


class RelationshipResolver:
    """Foreign-key supply and relationship population for one run."""

    def __init__(
        self,
        store: DataStoreInterface,
        catalog: Optional[SchemaCatalog] = None,
        settings: Optional[EngineSettings] = None,
        cache: Optional[ForeignKeyCache] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.catalog = catalog or SchemaCatalog()
        self.settings = settings or EngineSettings()
        self.cache = cache or ForeignKeyCache(store)
        self.rng = rng if rng is not None else np.random.default_rng(self.settings.seed)
        self.clock = clock
        self._issues: List[GenerationIssue] = []
        self._warned: set = set()

    # Foreign-key supply

    def resolve_binding(self, column: ColumnDescription, schema: SchemaDescription) -> ForeignKeyBinding:
        return resolve_foreign_key_binding(column, schema)

    def foreign_key_value(
        self,
        binding: ForeignKeyBinding,
        column: ColumnDescription,
        schema: Optional[SchemaDescription] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> Any:
        """Pick a random existing identifier of the referenced table.

        An empty referenced table degrades to ``None`` for nullable columns
        and to the configured fallback value otherwise.
        """
        if not binding.is_bound:
            return None
        if binding.kind is BindingKind.INFERRED and not self.store.table_exists(binding.table):
            return None

        ids = self.cache.ids(binding.table, binding.foreign_column)
        if ids:
            rng = rng if rng is not None else self.rng
            return ids[int(rng.integers(len(ids)))]

        entity = schema.entity if schema is not None else "?"
        if column.nullable:
            self._warn_once(
                (binding.table, column.name),
                f"{entity}.{column.name}: {binding.table} has no rows, using null",
                table=binding.table, column=column.name, fallback=None,
            )
            return None
        fallback = self.settings.fk_fallback_value
        self._warn_once(
            (binding.table, column.name),
            f"{entity}.{column.name}: {binding.table} has no rows, using fallback id {fallback}",
            table=binding.table, column=column.name, fallback=fallback,
        )
        return fallback

    def _warn_once(self, key: Tuple[str, str], message: str, **context: Any) -> None:
        if key in self._warned:
            return
        self._warned.add(key)
        self._issues.append(referential_integrity_warning(message, **context))

    def drain_issues(self) -> List[GenerationIssue]:
        """Return and forget the issues recorded since the last call."""
        issues, self._issues = self._issues, []
        return issues

    def reset_warnings(self) -> None:
        self._warned.clear()

    # Relationship population

    def populate(
        self,
        schema: SchemaDescription,
        parent_ids: Sequence[Any],
        write_related: RelatedRowWriter,
        rng: Optional[np.random.Generator] = None,
    ) -> RelationshipStats:
        """Populate every declared relationship of ``schema`` for ``parent_ids``."""
        rng = rng if rng is not None else self.rng
        stats = RelationshipStats()
        if not parent_ids:
            return stats
        for relationship in schema.relationships:
            if relationship.kind is RelationshipKind.BELONGS_TO:
                continue
            related = self.catalog.get(relationship.related_entity)
            if relationship.kind is RelationshipKind.HAS_ONE:
                self._populate_has_one(schema, related, relationship, parent_ids, write_related, rng, stats)
            elif relationship.kind is RelationshipKind.HAS_MANY:
                self._populate_has_many(schema, related, relationship, parent_ids, write_related, rng, stats)
            else:
                self._populate_belongs_to_many(schema, related, relationship, parent_ids, rng, stats)
        return stats

    def _populate_has_one(self, schema, related, relationship, parent_ids, write_related, rng, stats) -> None:
        foreign_key = relationship.foreign_key or default_foreign_key(schema.entity)
        probability = relationship.existence_probability
        if probability is None:
            probability = self.settings.one_to_one_probability
        table_exists = self.store.table_exists(related.table)

        pending: List[Dict[str, Any]] = []
        skipped = 0
        for parent_id in parent_ids:
            if float(rng.random()) >= probability:
                continue
            if table_exists and self.store.count_rows(related.table, {foreign_key: parent_id}) > 0:
                skipped += 1
                continue
            pending.append({foreign_key: parent_id})
        created = self._write(related, pending, write_related)
        stats.add(relationship.name, created=created, skipped=skipped)
        logger.debug(f"🔗 {schema.entity}.{relationship.name}: created {created} one-to-one rows")

    def _populate_has_many(self, schema, related, relationship, parent_ids, write_related, rng, stats) -> None:
        foreign_key = relationship.foreign_key or default_foreign_key(schema.entity)
        low, high = relationship.count_range or self.settings.one_to_many_range
        pending: List[Dict[str, Any]] = []
        for parent_id in parent_ids:
            count = int(rng.integers(low, high, endpoint=True))
            pending.extend({foreign_key: parent_id} for _ in range(count))
        created = self._write(related, pending, write_related)
        stats.add(relationship.name, created=created)
        logger.debug(f"🔗 {schema.entity}.{relationship.name}: created {created} one-to-many rows")

    def _populate_belongs_to_many(self, schema, related, relationship, parent_ids, rng, stats) -> None:
        pivot = relationship.pivot_table or default_pivot_table(schema, related)
        foreign_pivot_key = relationship.foreign_pivot_key or default_foreign_key(schema.entity)
        related_pivot_key = relationship.related_pivot_key or default_foreign_key(related.entity)

        related_ids = self.cache.ids(related.table, related.primary_key)
        if not related_ids:
            self._warn_once(
                (related.table, relationship.name),
                f"{schema.entity}.{relationship.name}: {related.table} has no rows to attach",
                table=related.table, relationship=relationship.name,
            )
            return
        self._ensure_pivot(pivot, foreign_pivot_key, related_pivot_key)

        low, high = relationship.attach_range or self.settings.many_to_many_range
        now = self.clock()
        links: List[Dict[str, Any]] = []
        skipped = 0
        for parent_id in parent_ids:
            size = min(int(rng.integers(low, high, endpoint=True)), len(related_ids))
            if size == 0:
                continue
            chosen = rng.choice(len(related_ids), size=size, replace=False)
            for position in sorted(int(i) for i in chosen):
                related_id = related_ids[position]
                key = {foreign_pivot_key: parent_id, related_pivot_key: related_id}
                if self.store.count_rows(pivot, key) > 0:
                    skipped += 1
                    continue
                links.append({**key, "created_at": now, "updated_at": now})
        if links:
            self.store.insert_rows(pivot, links)
        stats.add(relationship.name, linked=len(links), skipped=skipped)
        logger.debug(f"🔗 {schema.entity}.{relationship.name}: attached {len(links)} links in {pivot}")

    def _ensure_pivot(self, pivot: str, foreign_pivot_key: str, related_pivot_key: str) -> None:
        if self.store.table_exists(pivot):
            return
        create_pivot = getattr(self.store, "create_pivot_table", None)
        if create_pivot is not None:
            create_pivot(pivot, foreign_pivot_key, related_pivot_key)

    def _write(self, related: SchemaDescription, pending: List[Dict[str, Any]],
               write_related: RelatedRowWriter) -> int:
        if not pending:
            return 0
        ids = write_related(related, pending)
        self.cache.invalidate(related.table)
        return len(ids)

