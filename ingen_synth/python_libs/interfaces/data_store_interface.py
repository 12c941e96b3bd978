"""
Standard interface for target data stores.

This module defines the storage boundary the generation engine writes through.
Implementations return generated identifiers directly from the insert call and
provide nestable transactions (inner levels behave as savepoints).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any


class DataStoreError(Exception):
    """Raised by data stores when a read or write fails."""


class DataStoreInterface(ABC):
    """Abstract interface for data stores."""

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        """
        Check if a table exists in the data store.

        Args:
            table_name: Name of the table to check

        Returns:
            True if table exists, False otherwise
        """
        pass

    @abstractmethod
    def insert_rows(self, table_name: str, rows: list[dict[str, Any]]) -> list[Any]:
        """
        Insert rows and return their identifiers in input order.

        Args:
            table_name: Name of the target table
            rows: Column -> value mappings

        Returns:
            Generated (or supplied) primary key values, one per row
        """
        pass

    @abstractmethod
    def fetch_ids(self, table_name: str, column: str = "id") -> list[Any]:
        """
        Read every value of a key column.

        Args:
            table_name: Name of the table
            column: Column to read (default ``id``)

        Returns:
            List of values in storage order
        """
        pass

    @abstractmethod
    def fetch_row(self, table_name: str, value: Any, column: str = "id") -> dict[str, Any] | None:
        """
        Read one row by key.

        Args:
            table_name: Name of the table
            value: Key value to look up
            column: Key column (default ``id``)

        Returns:
            The row as a dictionary, or None when absent
        """
        pass

    @abstractmethod
    def count_rows(self, table_name: str, where: dict[str, Any] | None = None) -> int:
        """
        Count rows, optionally filtered by column equality.

        Args:
            table_name: Name of the table
            where: Column -> value equality filters (optional)

        Returns:
            Number of matching rows
        """
        pass

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """
        Open a transaction scope.

        Leaving the scope normally commits; an exception rolls back the scope's
        writes and propagates. Nested scopes roll back independently.
        """
        pass

    @abstractmethod
    def list_tables(self) -> list[str]:
        """
        List all tables in the data store.

        Returns:
            List of table names
        """
        pass
