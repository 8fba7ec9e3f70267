"""
tests/conftest.py — Shared pytest fixtures for the pipeline test suite.

Provides:
  fixture_path()          — resolves paths to tests/fixtures/
  sample_csv_bytes        — the INSEE-format sample table
  make_zip()              — factory wrapping CSV bytes in a zip archive
  mock_supabase_client()  — MagicMock of the Supabase client (no real DB calls)
  duckdb_store            — DuckDBStore over a fresh in-memory database
  mock_http               — configured respx router for faking HTTP responses
"""

from __future__ import annotations

import io
import zipfile
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import duckdb
import pytest
import respx

from ipampa_shared.store import DuckDBStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def fixture_path() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def sample_csv_bytes() -> bytes:
    return (FIXTURES_DIR / "insee_ipampa_sample.csv").read_bytes()


# ---------------------------------------------------------------------------
# Zip archives as INSEE serves them
# ---------------------------------------------------------------------------

@pytest.fixture
def make_zip() -> Callable[..., bytes]:
    """
    Factory: make_zip(csv_bytes, name="valeurs_annuelles.csv", extra=None).

    `extra` maps additional entry names to their content; they are written
    before the data file.
    """

    def _make_zip(
        csv_bytes: bytes,
        name: str = "valeurs_annuelles.csv",
        extra: dict[str, bytes] | None = None,
    ) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for entry, content in (extra or {}).items():
                zf.writestr(entry, content)
            zf.writestr(name, csv_bytes)
        return buf.getvalue()

    return _make_zip


# ---------------------------------------------------------------------------
# Supabase client mock
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_supabase_client() -> MagicMock:
    """
    A MagicMock that simulates the supabase.Client interface.

    Every chain used by SupabaseStore returns empty data by default.
    Override in individual tests: mock_supabase_client.table.return_value...
    """
    client = MagicMock()

    default_result = MagicMock()
    default_result.data = []
    default_result.count = 0

    table = client.table.return_value
    table.select.return_value.order.return_value.range.return_value.execute.return_value = (
        default_result
    )
    table.insert.return_value.execute.return_value = default_result
    table.delete.return_value.gte.return_value.execute.return_value = default_result

    return client


# ---------------------------------------------------------------------------
# In-memory DuckDB
# ---------------------------------------------------------------------------

@pytest.fixture
def duckdb_conn():
    conn = duckdb.connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def duckdb_store(duckdb_conn) -> DuckDBStore:
    return DuckDBStore(duckdb_conn)


# ---------------------------------------------------------------------------
# respx HTTP mock router
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_http():
    """
    Activate the respx mock router for all httpx requests.

    Usage in tests:
        def test_something(mock_http):
            mock_http.get("https://...").mock(return_value=httpx.Response(200, content=b"..."))
    """
    with respx.mock(assert_all_called=False) as router:
        yield router
