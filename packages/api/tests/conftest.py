"""Shared test fixtures for ipampa-api."""

from __future__ import annotations

from unittest.mock import patch

import duckdb
import pytest
from fastapi.testclient import TestClient

from ipampa_shared.store import DuckDBStore


def seed(store: DuckDBStore, indices: list[tuple[str, str, str, dict[int, float]]]) -> None:
    """indices: (label, id_bank, period, {year: value})."""
    ids = store.bulk_insert_indices(
        [
            {"label": label, "id_bank": id_bank, "last_update": "15/03/2024", "period": period}
            for label, id_bank, period, _ in indices
        ]
    )
    store.bulk_insert_values(
        [
            {"index_id": index_id, "year": year, "value": value}
            for index_id, (*_, points) in zip(ids, indices)
            for year, value in points.items()
        ]
    )


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear the in-memory snapshot cache between tests."""
    from ipampa_api.utils.cache import ipampa_cache
    ipampa_cache.clear()
    yield
    ipampa_cache.clear()


@pytest.fixture()
def store():
    conn = duckdb.connect(":memory:")
    yield DuckDBStore(conn)
    conn.close()


@pytest.fixture()
def seeded_store(store):
    seed(
        store,
        [
            ("IPAMPA - Engrais", "001234567", "Annuelle", {2020: 101.5, 2021: 120.0}),
            ("IPAMPA - Energie", "001234568", "Annuelle", {2008: 80.0, 2021: 130.25}),
            ("IPAMPA - Semences", "001234569", "Mensuelle", {}),
        ],
    )
    return store


@pytest.fixture()
def _store_patch(store):
    """Patch get_store wherever the API reads the mirror."""
    with patch("ipampa_api.services.ipampa_service.get_store", return_value=store):
        yield store


@pytest.fixture()
def app(_store_patch):
    """Create test FastAPI app over an in-memory store."""
    from ipampa_api.app import create_app
    return create_app()


@pytest.fixture()
def client(app):
    """HTTP test client."""
    return TestClient(app)
