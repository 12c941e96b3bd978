from datetime import datetime

import pytest

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.schema_description import SchemaCatalog, SchemaDescription
from ingen_synth.python_libs.interfaces.data_store_interface import DataStoreError
from ingen_synth.python_libs.patterns.pattern_engine import PatternEngine
from ingen_synth.python_libs.python.memory_store import InMemoryDataStore
from ingen_synth.python_libs.python.sqlite_store import SQLiteDataStore

FIXED_NOW = datetime(2024, 3, 1, 12, 0, 0)


# ============================================================================
# Schema descriptions
# ============================================================================

ORGANIZATION = {
    "entity": "Organization",
    "table": "organizations",
    "columns": {
        "id": {"type": "integer", "primary_key": True, "auto_increment": True},
        "name": {"type": "string", "length": 100},
        "industry_type": {"type": "string", "length": 50},
        "founded_on": {"type": "date", "nullable": True},
    },
}

USER = {
    "entity": "User",
    "table": "users",
    "columns": {
        "id": {"type": "integer", "primary_key": True, "auto_increment": True},
        "organization_id": {"type": "integer"},
        "name": {"type": "string", "length": 100},
        "email": {"type": "string", "length": 150, "unique": True},
        "status": {"type": "string", "length": 20},
        "age": {"type": "integer"},
    },
    "foreign_keys": [{"column": "organization_id", "foreign_table": "organizations"}],
    "relationships": {
        "profile": {"kind": "has_one", "related_entity": "Profile", "existence_probability": 1.0},
        "orders": {"kind": "has_many", "related_entity": "Order", "count_range": [2, 2]},
        "tags": {"kind": "belongs_to_many", "related_entity": "Tag", "attach_range": [1, 3]},
    },
}

PROFILE = {
    "entity": "Profile",
    "table": "profiles",
    "columns": {
        "id": {"type": "integer", "primary_key": True, "auto_increment": True},
        "user_id": {"type": "integer"},
        "bio": {"type": "text", "nullable": True},
    },
    "foreign_keys": [{"column": "user_id", "foreign_table": "users"}],
}

ORDER = {
    "entity": "Order",
    "table": "orders",
    "columns": {
        "id": {"type": "integer", "primary_key": True, "auto_increment": True},
        "user_id": {"type": "integer"},
        "total": {"type": "decimal", "precision": 10, "scale": 2},
        "status": {"type": "string", "length": 20},
        "placed_at": {"type": "datetime"},
    },
    "foreign_keys": [{"column": "user_id", "foreign_table": "users"}],
}

PRODUCT = {
    "entity": "Product",
    "table": "products",
    "columns": {
        "id": {"type": "integer", "primary_key": True, "auto_increment": True},
        "sku": {"type": "string", "length": 20},
        "unit_price": {"type": "decimal", "precision": 8, "scale": 2},
        "stock_count": {"type": "integer", "unsigned": True},
        "is_active": {"type": "boolean"},
    },
}

TAG = {
    "entity": "Tag",
    "table": "tags",
    "columns": {
        "id": {"type": "integer", "primary_key": True, "auto_increment": True},
        "label": {"type": "string", "length": 30},
    },
}

ALL_SCHEMAS = [ORGANIZATION, USER, PROFILE, ORDER, PRODUCT, TAG]


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def settings():
    """Seeded settings with no memory ceiling and small chunks."""
    return EngineSettings(seed=42, memory_limit=-1, chunk_size=100)


@pytest.fixture
def clock():
    """Clock returning a fixed timestamp for managed timestamps and pivot links."""
    return lambda: FIXED_NOW


@pytest.fixture
def catalog():
    return SchemaCatalog.from_dicts(ALL_SCHEMAS)


@pytest.fixture
def engine():
    return PatternEngine()


@pytest.fixture
def schemas(catalog):
    """Entity name -> SchemaDescription."""
    return {schema.entity: schema for schema in catalog}


@pytest.fixture
def memory_store(catalog):
    """In-memory store with a table per catalog schema."""
    store = InMemoryDataStore()
    for schema in catalog:
        store.create_table(schema)
    return store


@pytest.fixture
def sqlite_store(catalog):
    """SQLite in-memory database with a table per catalog schema."""
    store = SQLiteDataStore(":memory:")
    for schema in catalog:
        store.create_table(schema)
    yield store
    store.close()


def make_schema(entity, table, columns, **extra):
    """Build a SchemaDescription from the analyzer's JSON shape."""
    return SchemaDescription.from_dict({"entity": entity, "table": table, "columns": columns, **extra})


class SequenceReader:
    """Memory reader returning scripted byte counts, repeating the last one."""

    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    def __call__(self):
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return value


class FailingStore(InMemoryDataStore):
    """In-memory store whose Nth insert into one table fails.

    With ``write_first`` the rows are written before the failure is raised,
    as a batch that breaks half way would leave them.
    """

    def __init__(self, table, fail_on_call, write_first=False):
        super().__init__()
        self.fail_table = table
        self.fail_on_call = fail_on_call
        self.write_first = write_first
        self.calls = 0

    def insert_rows(self, table_name, rows):
        if table_name != self.fail_table:
            return super().insert_rows(table_name, rows)
        self.calls += 1
        if self.calls != self.fail_on_call:
            return super().insert_rows(table_name, rows)
        if self.write_first:
            super().insert_rows(table_name, rows)
        raise DataStoreError(f"disk full while writing {table_name}")
