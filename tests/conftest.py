"""
Shared test fixtures.

The Supabase mock keeps table rows in memory and applies filters,
ordering and ranges, so services can be tested end to end.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings need these before config is imported
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import copy
import pytest
from contextlib import ExitStack
from unittest.mock import patch
from datetime import datetime, timedelta
from typing import Generator, Optional
from uuid import uuid4


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class SimulatedFailure(Exception):
    """Raised by the mock when a failure was injected."""


class MockSupabaseQuery:
    """Chainable query builder that runs against the client's tables."""

    def __init__(self, client: "MockSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._operation = "select"
        self._payload = None
        self._filters = []
        self._orders = []
        self._range = None
        self._limit = None

    def select(self, *args, **kwargs):
        self._operation = "select"
        return self

    def insert(self, data):
        self._operation = "insert"
        self._payload = data
        return self

    def update(self, data):
        self._operation = "update"
        self._payload = data
        return self

    def delete(self):
        self._operation = "delete"
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def is_(self, column, value):
        if value == "null":
            self._filters.append(lambda row: row.get(column) is None)
        else:
            self._filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._orders.append((column, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> MockSupabaseResponse:
        self._client._check_failure(self._table, self._operation)
        rows = self._client._tables.setdefault(self._table, [])

        if self._operation == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            # Postgres now() is fixed per statement
            now = self._client._next_timestamp()
            for item in items:
                record = copy.deepcopy(item)
                record.setdefault("id", str(uuid4()))
                record.setdefault("created_at", now)
                record.setdefault("updated_at", now)
                rows.append(record)
                inserted.append(copy.deepcopy(record))
            return MockSupabaseResponse(data=inserted)

        if self._operation == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(copy.deepcopy(self._payload))
                    row["updated_at"] = self._client._next_timestamp()
                    updated.append(copy.deepcopy(row))
            return MockSupabaseResponse(data=updated)

        if self._operation == "delete":
            deleted = [row for row in rows if self._matches(row)]
            self._client._tables[self._table] = [row for row in rows if not self._matches(row)]
            return MockSupabaseResponse(data=copy.deepcopy(deleted))

        selected = [copy.deepcopy(row) for row in rows if self._matches(row)]
        for column, desc in reversed(self._orders):
            present = [r for r in selected if r.get(column) is not None]
            missing = [r for r in selected if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            selected = present + missing

        count = len(selected)
        if self._range is not None:
            start, end = self._range
            selected = selected[start:end + 1]
        if self._limit is not None:
            selected = selected[:self._limit]

        return MockSupabaseResponse(data=selected, count=count)


class MockStorageBucket:
    def __init__(self, storage: "MockStorage", name: str):
        self._storage = storage
        self._name = name

    def upload(self, path, file, file_options=None):
        if self._name in self._storage.failing_buckets:
            raise SimulatedFailure(f"upload to {self._name} failed")
        self._storage.files[(self._name, path)] = file
        return {"Key": f"{self._name}/{path}"}

    def create_signed_url(self, path, expires_in):
        if (self._name, path) not in self._storage.files:
            raise SimulatedFailure("Object not found")
        return {"signedURL": f"https://storage.test/{self._name}/{path}?expires={expires_in}"}


class MockStorage:
    """In-memory buckets."""

    def __init__(self):
        self.files: dict[tuple[str, str], bytes] = {}
        self.failing_buckets: set[str] = set()

    def from_(self, bucket: str) -> MockStorageBucket:
        return MockStorageBucket(self, bucket)


class MockSupabaseClient:
    """In-memory Supabase client with failure injection."""

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self._calls: dict[tuple[str, str], int] = {}
        self._failures: list[tuple[str, str, Optional[int]]] = []
        self._clock = datetime(2026, 1, 1, 12, 0, 0)
        self.storage = MockStorage()

    def _next_timestamp(self) -> str:
        # Strictly increasing across statements
        self._clock += timedelta(milliseconds=1)
        return self._clock.isoformat() + "Z"

    def _check_failure(self, table: str, operation: str) -> None:
        key = (table, operation)
        self._calls[key] = self._calls.get(key, 0) + 1
        for f_table, f_operation, call in self._failures:
            if (f_table, f_operation) == key and (call is None or call == self._calls[key]):
                raise SimulatedFailure(f"{operation} on {table} failed")

    def set_table_data(self, table_name: str, data: list) -> None:
        """Replace a table's rows."""
        self._tables[table_name] = copy.deepcopy(list(data))

    def get_table_data(self, table_name: str) -> list:
        return copy.deepcopy(self._tables.get(table_name, []))

    def fail_on(self, table_name: str, operation: str, call: Optional[int] = None) -> None:
        """
        Make an operation raise.

        call=None fails every call; call=n fails only the n-th call.
        """
        self._failures.append((table_name, operation, call))

    def table(self, name: str) -> MockSupabaseQuery:
        return MockSupabaseQuery(self, name)


# ===================
# FIXTURES
# ===================

SERVICE_MODULES = [
    "services.storage_service",
    "services.marketplace_service",
    "services.row_service",
    "services.session_service",
    "services.mapping_service",
]

SINGLETONS = [
    ("services.storage_service", "_storage_service"),
    ("services.marketplace_service", "_marketplace_service"),
    ("services.mapping_suggestion_service", "_suggestion_service"),
    ("services.row_service", "_row_service"),
    ("services.session_service", "_session_service"),
    ("services.mapping_service", "_mapping_service"),
    ("services.generator_service", "_generator_service"),
]


def _reset_singletons() -> None:
    import importlib
    for module_name, attr in SINGLETONS:
        setattr(importlib.import_module(module_name), attr, None)


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create an in-memory Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("marketplaces", [
                {"id": "1", "name": "amazon", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch every service's database client with the mock.

    Service singletons are reset so they pick up the mock, and the
    suggestion service uses the lexical matcher (no network).
    """
    from services import mapping_suggestion_service
    from services.mapping_suggestion_service import MappingSuggestionService, LexicalMatcher

    _reset_singletons()
    with ExitStack() as stack:
        stack.enter_context(patch("config.database.get_supabase_client", return_value=mock_supabase))
        stack.enter_context(patch("services.storage_service.get_admin_client", return_value=None))
        for module_name in SERVICE_MODULES:
            stack.enter_context(
                patch(f"{module_name}.get_supabase_client", return_value=mock_supabase)
            )
        mapping_suggestion_service._suggestion_service = MappingSuggestionService(
            matcher=LexicalMatcher()
        )
        yield mock_supabase
    _reset_singletons()


@pytest.fixture
def api_client(mock_db):
    """FastAPI TestClient backed by the in-memory database."""
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)


# ===================
# SAMPLE DATA
# ===================

@pytest.fixture
def marketplace_with_fields(mock_supabase) -> dict:
    """
    An "amazon" marketplace with Title, Price and SKU fields.

    Returns the marketplace row.
    """
    from tests.factories import MarketplaceFactory, FieldFactory

    marketplace = MarketplaceFactory.create(name="amazon", display_name="Amazon")
    mock_supabase.set_table_data("marketplaces", [marketplace])
    mock_supabase.set_table_data("marketplace_fields", [
        FieldFactory.create(marketplace["id"], "Title", field_order=0, is_required=True),
        FieldFactory.create(marketplace["id"], "Price", field_order=1, is_required=True),
        FieldFactory.create(marketplace["id"], "SKU", field_order=2),
    ])
    return marketplace
