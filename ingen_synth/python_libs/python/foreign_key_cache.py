from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from ingen_synth.python_libs.interfaces.data_store_interface import DataStoreInterface

logger = logging.getLogger(__name__)


class ForeignKeyCache:
    """Per-run memo of existing identifiers for referenced tables.

    Entries are loaded lazily from the store, invalidated when the run inserts
    into the table, and may be cleared at any time since they can be rebuilt.
    """

    def __init__(self, store: DataStoreInterface):
        self.store = store
        self._ids: Dict[Tuple[str, str], List[Any]] = {}
        self.loads = 0

    def ids(self, table: str, column: str = "id") -> List[Any]:
        key = (table, column)
        if key not in self._ids:
            if self.store.table_exists(table):
                self._ids[key] = [v for v in self.store.fetch_ids(table, column) if v is not None]
            else:
                self._ids[key] = []
            self.loads += 1
            logger.debug(f"Loaded {len(self._ids[key])} ids for {table}.{column}")
        return self._ids[key]

    def snapshot(self, tables: List[Tuple[str, str]]) -> Dict[str, List[Any]]:
        """Plain ``"table.column" -> ids`` mapping for worker processes."""
        return {f"{table}.{column}": list(self.ids(table, column)) for table, column in tables}

    def seed(self, table: str, column: str, ids: List[Any]) -> None:
        self._ids[(table, column)] = list(ids)

    def invalidate(self, table: str) -> None:
        for key in [k for k in self._ids if k[0] == table]:
            del self._ids[key]

    def clear(self) -> None:
        self._ids.clear()

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, table: str) -> bool:
        return any(k[0] == table for k in self._ids)
