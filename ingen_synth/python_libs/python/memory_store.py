"""
In-memory data store

Append-only tables held in Python lists. Used for dry previews, tests and
small runs that do not need a database. Rollback truncates tables back to
their length at the start of the transaction scope.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ingen_synth.python_libs.common.schema_description import SchemaDescription
from ingen_synth.python_libs.interfaces.data_store_interface import (
    DataStoreError,
    DataStoreInterface,
)

logger = logging.getLogger(__name__)


class InMemoryDataStore(DataStoreInterface):
    """Dictionary-of-lists data store with auto-increment primary keys."""

    def __init__(self, auto_create: bool = True):
        self.auto_create = auto_create
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._primary_keys: Dict[str, str] = {}
        self._unique: Dict[str, List[str]] = {}
        self._not_null: Dict[str, List[str]] = {}
        self._sequences: Dict[str, int] = {}
        self._snapshots: List[Dict[str, Any]] = []

    def create_table(self, schema: SchemaDescription) -> None:
        self.ensure_table(
            schema.table,
            primary_key=schema.primary_key,
            unique=[c.name for c in schema.columns.values() if c.unique and not c.primary_key],
            not_null=[
                c.name
                for c in schema.columns.values()
                if not c.nullable and not schema.is_auto_primary_key(c) and c.default is None
            ],
        )

    def ensure_table(self, table_name: str, primary_key: str = "id",
                     unique: Optional[List[str]] = None, not_null: Optional[List[str]] = None) -> None:
        if table_name in self._tables:
            return
        self._tables[table_name] = []
        self._primary_keys[table_name] = primary_key
        self._unique[table_name] = list(unique or [])
        self._not_null[table_name] = list(not_null or [])
        self._sequences[table_name] = 0

    def create_pivot_table(self, table_name: str, foreign_pivot_key: str, related_pivot_key: str) -> None:
        self.ensure_table(table_name, not_null=[foreign_pivot_key, related_pivot_key])

    def _table(self, table_name: str) -> List[Dict[str, Any]]:
        if table_name not in self._tables:
            raise DataStoreError(f"Table {table_name!r} does not exist")
        return self._tables[table_name]

    def table_exists(self, table_name: str) -> bool:
        return table_name in self._tables

    def list_tables(self) -> List[str]:
        return sorted(self._tables)

    def insert_rows(self, table_name: str, rows: List[Dict[str, Any]]) -> List[Any]:
        if table_name not in self._tables:
            if not self.auto_create:
                raise DataStoreError(f"Table {table_name!r} does not exist")
            self.ensure_table(table_name)
        table = self._tables[table_name]
        primary_key = self._primary_keys[table_name]
        prepared = [dict(row) for row in rows]
        self._check_constraints(table_name, table, prepared)

        ids = []
        for row in prepared:
            if row.get(primary_key) is None:
                self._sequences[table_name] += 1
                row[primary_key] = self._sequences[table_name]
            else:
                self._sequences[table_name] = max(self._sequences[table_name], _as_int(row[primary_key]))
            table.append(row)
            ids.append(row[primary_key])
        return ids

    def _check_constraints(self, table_name: str, table: List[Dict[str, Any]],
                           rows: List[Dict[str, Any]]) -> None:
        for column in self._not_null[table_name]:
            if any(row.get(column) is None for row in rows):
                raise DataStoreError(f"NOT NULL constraint failed: {table_name}.{column}")
        for column in self._unique[table_name]:
            seen = {row.get(column) for row in table if row.get(column) is not None}
            for row in rows:
                value = row.get(column)
                if value is None:
                    continue
                if value in seen:
                    raise DataStoreError(f"UNIQUE constraint failed: {table_name}.{column}")
                seen.add(value)

    def fetch_ids(self, table_name: str, column: str = "id") -> List[Any]:
        return [row.get(column) for row in self._table(table_name)]

    def fetch_row(self, table_name: str, value: Any, column: str = "id") -> Optional[Dict[str, Any]]:
        for row in self._table(table_name):
            if row.get(column) == value:
                return dict(row)
        return None

    def fetch_rows(self, table_name: str) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._table(table_name)]

    def count_rows(self, table_name: str, where: Optional[Dict[str, Any]] = None) -> int:
        rows = self._table(table_name)
        if not where:
            return len(rows)
        return sum(1 for row in rows if all(row.get(k) == v for k, v in where.items()))

    @contextmanager
    def transaction(self) -> Iterator["InMemoryDataStore"]:
        snapshot = {
            "lengths": {name: len(rows) for name, rows in self._tables.items()},
            "sequences": dict(self._sequences),
        }
        self._snapshots.append(snapshot)
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            raise
        finally:
            self._snapshots.pop()

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        lengths = snapshot["lengths"]
        for name in list(self._tables):
            if name not in lengths:
                del self._tables[name]
                self._primary_keys.pop(name, None)
                self._unique.pop(name, None)
                self._not_null.pop(name, None)
                self._sequences.pop(name, None)
            else:
                del self._tables[name][lengths[name]:]
        self._sequences.update(snapshot["sequences"])
        logger.debug("Rolled back in-memory transaction")


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
