"""
SQLite data store

Writes generated rows through the standard library ``sqlite3`` driver. The
connection runs in autocommit mode; ``transaction()`` issues ``BEGIN`` for the
outermost scope and ``SAVEPOINT`` for nested scopes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from ingen_synth.python_libs.common.schema_description import SchemaDescription
from ingen_synth.python_libs.interfaces.data_store_interface import (
    DataStoreError,
    DataStoreInterface,
)

logger = logging.getLogger(__name__)


def _sqlite_type(canonical_type: str) -> str:
    return {
        "integer": "INTEGER",
        "boolean": "INTEGER",
        "decimal": "REAL",
        "float": "REAL",
        "date": "TEXT",
        "datetime": "TEXT",
        "time": "TEXT",
        "json": "TEXT",
    }.get(canonical_type, "TEXT")


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _adapt(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat(sep=" ") if isinstance(value, datetime) else value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return value


class SQLiteDataStore(DataStoreInterface):
    """SQLite-backed data store."""

    def __init__(self, db_path: str = ":memory:", foreign_keys: bool = True):
        self.db_path = db_path
        self.connection = sqlite3.connect(db_path, isolation_level=None)
        self.connection.row_factory = sqlite3.Row
        if foreign_keys:
            self.connection.execute("PRAGMA foreign_keys = ON;")
        self._depth = 0
        self.logger = logging.getLogger(__name__)

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> "SQLiteDataStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def create_table(self, schema: SchemaDescription) -> None:
        """Create the table for a schema description if it does not exist."""
        col_defs = []
        for column in schema.columns.values():
            if column.name == schema.primary_key or column.primary_key:
                if schema.is_auto_primary_key(column):
                    col_defs.append(f"{_quote(column.name)} INTEGER PRIMARY KEY AUTOINCREMENT")
                else:
                    col_defs.append(f"{_quote(column.name)} {_sqlite_type(column.canonical_type)} PRIMARY KEY")
                continue
            parts = [_quote(column.name), _sqlite_type(column.canonical_type)]
            if not column.nullable:
                parts.append("NOT NULL")
            if column.unique:
                parts.append("UNIQUE")
            col_defs.append(" ".join(parts))
        if schema.primary_key not in schema.columns:
            col_defs.insert(0, f"{_quote(schema.primary_key)} INTEGER PRIMARY KEY AUTOINCREMENT")
        if schema.timestamps:
            for name in schema.MANAGED_TIMESTAMPS:
                if name not in schema.columns:
                    col_defs.append(f"{_quote(name)} TEXT")

        fk_clauses = [
            f"FOREIGN KEY({_quote(fk.column)}) REFERENCES {_quote(fk.foreign_table)}({_quote(fk.foreign_column)})"
            for fk in schema.foreign_keys
        ]
        sql = f"CREATE TABLE IF NOT EXISTS {_quote(schema.table)} (\n  " + ",\n  ".join(col_defs + fk_clauses) + "\n);"
        self.connection.execute(sql)
        self.logger.info(f"Created table {schema.table} in {self.db_path}")

    def create_pivot_table(self, table_name: str, foreign_pivot_key: str, related_pivot_key: str) -> None:
        sql = (
            f"CREATE TABLE IF NOT EXISTS {_quote(table_name)} (\n"
            f"  id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
            f"  {_quote(foreign_pivot_key)} INTEGER NOT NULL,\n"
            f"  {_quote(related_pivot_key)} INTEGER NOT NULL,\n"
            f"  created_at TEXT,\n"
            f"  updated_at TEXT\n);"
        )
        self.connection.execute(sql)

    def table_exists(self, table_name: str) -> bool:
        row = self.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,)
        ).fetchone()
        return row is not None

    def list_tables(self) -> List[str]:
        rows = self.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [r["name"] for r in rows]

    def _primary_key(self, table_name: str) -> str:
        for info in self.connection.execute(f"PRAGMA table_info({_quote(table_name)})").fetchall():
            if info["pk"]:
                return info["name"]
        return "rowid"

    def insert_rows(self, table_name: str, rows: List[Dict[str, Any]]) -> List[Any]:
        if not rows:
            return []
        primary_key = self._primary_key(table_name)
        # One scope per call so a failing row leaves none of the batch behind
        try:
            with self.transaction():
                ids = self._insert_each(table_name, primary_key, rows)
        except sqlite3.Error as exc:
            raise DataStoreError(f"Insert into {table_name} failed: {exc}") from exc
        return ids

    def _insert_each(self, table_name: str, primary_key: str, rows: List[Dict[str, Any]]) -> List[Any]:
        ids = []
        for row in rows:
            columns = list(row)
            if columns:
                sql = (
                    f"INSERT INTO {_quote(table_name)} ({', '.join(_quote(c) for c in columns)}) "
                    f"VALUES ({', '.join('?' for _ in columns)})"
                )
            else:
                sql = f"INSERT INTO {_quote(table_name)} DEFAULT VALUES"
            cursor = self.connection.execute(sql, [_adapt(row[c]) for c in columns])
            supplied = row.get(primary_key)
            ids.append(supplied if supplied is not None else cursor.lastrowid)
        return ids

    def fetch_ids(self, table_name: str, column: str = "id") -> List[Any]:
        try:
            rows = self.connection.execute(f"SELECT {_quote(column)} FROM {_quote(table_name)}").fetchall()
        except sqlite3.Error as exc:
            raise DataStoreError(f"Reading {table_name}.{column} failed: {exc}") from exc
        return [r[0] for r in rows]

    def fetch_row(self, table_name: str, value: Any, column: str = "id") -> Optional[Dict[str, Any]]:
        try:
            row = self.connection.execute(
                f"SELECT * FROM {_quote(table_name)} WHERE {_quote(column)} = ? LIMIT 1", (_adapt(value),)
            ).fetchone()
        except sqlite3.Error as exc:
            raise DataStoreError(f"Reading {table_name} failed: {exc}") from exc
        return dict(row) if row is not None else None

    def fetch_rows(self, table_name: str) -> List[Dict[str, Any]]:
        rows = self.connection.execute(f"SELECT * FROM {_quote(table_name)}").fetchall()
        return [dict(r) for r in rows]

    def count_rows(self, table_name: str, where: Optional[Dict[str, Any]] = None) -> int:
        sql = f"SELECT COUNT(*) FROM {_quote(table_name)}"
        params: List[Any] = []
        if where:
            sql += " WHERE " + " AND ".join(f"{_quote(k)} = ?" for k in where)
            params = [_adapt(v) for v in where.values()]
        try:
            return int(self.connection.execute(sql, params).fetchone()[0])
        except sqlite3.Error as exc:
            raise DataStoreError(f"Counting {table_name} failed: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator["SQLiteDataStore"]:
        savepoint = f"sp_{self._depth}"
        if self._depth == 0:
            self.connection.execute("BEGIN")
        else:
            self.connection.execute(f"SAVEPOINT {savepoint}")
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.connection.execute("ROLLBACK")
            else:
                self.connection.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                self.connection.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise
        self._depth -= 1
        if self._depth == 0:
            self.connection.execute("COMMIT")
        else:
            self.connection.execute(f"RELEASE SAVEPOINT {savepoint}")
