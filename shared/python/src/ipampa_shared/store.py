"""
store.py — Storage backends for the two mirrored tables.

Both backends expose the same interface so the refresh loader and the
read paths never care where the mirror lives:

  query()                 — dataset snapshot (indices outer-joined with values)
  delete_all_values()     — empty ipampa_values
  delete_all_indices()    — empty ipampa_indices
  bulk_insert_indices()   — insert rows, return generated ids
  bulk_insert_values()    — insert (index_id, year, value) rows
  transaction()           — context manager around a replace cycle

Contract of bulk_insert_indices(): the returned list is parallel to the
input — same length, same order. Callers rely on position alone to pair
each id with the row it was generated for.

Backends:
  SupabaseStore — PostgREST tables, batched writes, paged reads. Not atomic:
                  a failure after the deletes leaves the mirror empty.
  DuckDBStore   — local file (or :memory:). Ids are pre-allocated from a
                  sequence and the whole replace runs in one transaction.

Usage:
    from ipampa_shared.store import get_store

    store = get_store(service_role=True)
    with store.transaction():
        store.delete_all_values()
        store.delete_all_indices()
        ids = store.bulk_insert_indices(rows)
"""

from __future__ import annotations

import contextlib
from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any

import duckdb
import polars as pl
import structlog
from supabase import Client

from ipampa_shared.config import settings
from ipampa_shared.db import get_duckdb_connection, get_supabase_client
from ipampa_shared.errors import StorageFailure
from ipampa_shared.models import IndexSeries

log = structlog.get_logger(__name__)

INDICES_TABLE = "ipampa_indices"
VALUES_TABLE = "ipampa_values"

_INDEX_COLUMNS = ("label", "id_bank", "last_update", "period")


@contextlib.contextmanager
def _storage_errors(
    operation: str,
    errors: type[Exception] | tuple[type[Exception], ...] = Exception,
) -> Iterator[None]:
    """Re-raise backend errors as StorageFailure, tagged with the operation."""
    try:
        yield
    except StorageFailure:
        raise
    except errors as exc:
        log.error("storage_call_failed", operation=operation, error=str(exc))
        raise StorageFailure(operation, str(exc)) from exc


class IpampaStore(ABC):
    """Abstract storage collaborator for the IPAMPA mirror."""

    # True when transaction() gives all-or-nothing semantics
    atomic: bool = False

    @abstractmethod
    def query(self) -> list[IndexSeries]:
        """Return every index with its values, ordered by label then id."""
        ...

    @abstractmethod
    def delete_all_values(self) -> None: ...

    @abstractmethod
    def delete_all_indices(self) -> None: ...

    @abstractmethod
    def bulk_insert_indices(self, rows: list[dict[str, Any]]) -> list[int]:
        """Insert index rows; return their ids in input order (one per row)."""
        ...

    @abstractmethod
    def bulk_insert_values(self, rows: list[dict[str, Any]]) -> None: ...

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        yield


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------


class SupabaseStore(IpampaStore):
    """ipampa_indices / ipampa_values behind the Supabase REST API."""

    atomic = False

    def __init__(
        self,
        client: Client | None = None,
        *,
        batch_size: int | None = None,
        page_size: int | None = None,
    ) -> None:
        if client is None:
            with _storage_errors("connect"):
                client = get_supabase_client(service_role=True)
        self._client = client
        self._batch_size = batch_size or settings.supabase_batch_size
        self._page_size = page_size or settings.supabase_page_size

    def query(self) -> list[IndexSeries]:
        rows: list[dict[str, Any]] = []
        start = 0
        with _storage_errors("query"):
            # PostgREST caps every response, so walk the table page by page
            while True:
                result = (
                    self._client.table(INDICES_TABLE)
                    .select(f"id, {', '.join(_INDEX_COLUMNS)}, {VALUES_TABLE}(year, value)")
                    .order("id")
                    .range(start, start + self._page_size - 1)
                    .execute()
                )
                page = result.data or []
                rows.extend(page)
                if len(page) < self._page_size:
                    break
                start += self._page_size

        series = [IndexSeries.from_db_row(row) for row in rows]
        series.sort(key=lambda s: (s.label, s.id))
        log.debug("snapshot_queried", backend="supabase", indices=len(series))
        return series

    def delete_all_values(self) -> None:
        # PostgREST rejects DELETE without a filter; year >= 0 matches every row
        with _storage_errors("delete_all_values"):
            self._client.table(VALUES_TABLE).delete().gte("year", 0).execute()

    def delete_all_indices(self) -> None:
        with _storage_errors("delete_all_indices"):
            self._client.table(INDICES_TABLE).delete().gte("id", 0).execute()

    def bulk_insert_indices(self, rows: list[dict[str, Any]]) -> list[int]:
        ids: list[int] = []
        for start in range(0, len(rows), self._batch_size):
            batch = rows[start : start + self._batch_size]
            with _storage_errors("bulk_insert_indices"):
                result = self._client.table(INDICES_TABLE).insert(batch).execute()
            echoed = result.data or []
            self._check_echo(batch, echoed)
            ids.extend(int(row["id"]) for row in echoed)
            log.debug("batch_loaded", table=INDICES_TABLE, offset=start, batch_size=len(batch))
        return ids

    def bulk_insert_values(self, rows: list[dict[str, Any]]) -> None:
        for start in range(0, len(rows), self._batch_size):
            batch = rows[start : start + self._batch_size]
            with _storage_errors("bulk_insert_values"):
                self._client.table(VALUES_TABLE).insert(batch).execute()
            log.debug("batch_loaded", table=VALUES_TABLE, offset=start, batch_size=len(batch))

    @staticmethod
    def _check_echo(batch: list[dict[str, Any]], echoed: list[dict[str, Any]]) -> None:
        """Fail unless the returned rows line up one-to-one with the submitted batch."""
        if len(echoed) != len(batch):
            raise StorageFailure(
                "bulk_insert_indices",
                f"expected {len(batch)} rows back, got {len(echoed)}",
            )
        for position, (sent, got) in enumerate(zip(batch, echoed)):
            if (sent["label"], sent["id_bank"]) != (got.get("label"), got.get("id_bank")):
                raise StorageFailure(
                    "bulk_insert_indices",
                    f"returned row {position} does not match the submitted row",
                )


# ---------------------------------------------------------------------------
# DuckDB
# ---------------------------------------------------------------------------

_SEQUENCE = "ipampa_indices_id_seq"

_DDL = (
    f"CREATE SEQUENCE IF NOT EXISTS {_SEQUENCE} START 1",
    f"""
    CREATE TABLE IF NOT EXISTS {INDICES_TABLE} (
        id          BIGINT PRIMARY KEY,
        label       VARCHAR NOT NULL,
        id_bank     VARCHAR NOT NULL,
        last_update VARCHAR,
        period      VARCHAR
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {VALUES_TABLE} (
        index_id BIGINT NOT NULL,
        year     INTEGER NOT NULL,
        value    DOUBLE NOT NULL,
        PRIMARY KEY (index_id, year)
    )
    """,
)

_SNAPSHOT_SQL = f"""
SELECT
    i.id,
    i.label,
    i.id_bank,
    i.last_update,
    i.period,
    list({{'year': v.year, 'value': v.value}} ORDER BY v.year)
        FILTER (WHERE v.year IS NOT NULL) AS points
FROM {INDICES_TABLE} i
LEFT JOIN {VALUES_TABLE} v ON v.index_id = i.id
GROUP BY i.id, i.label, i.id_bank, i.last_update, i.period
ORDER BY i.label, i.id
"""


class DuckDBStore(IpampaStore):
    """The mirror as two DuckDB tables; replace cycles are transactional."""

    atomic = True

    def __init__(self, conn: duckdb.DuckDBPyConnection | None = None) -> None:
        # A cursor is an independent connection to the same database, so
        # stores created from different threads do not share transaction state.
        with _storage_errors("connect", (duckdb.Error, OSError)):
            self._conn = (conn or get_duckdb_connection()).cursor()
        with _storage_errors("create_schema", duckdb.Error):
            for statement in _DDL:
                self._conn.execute(statement)

    def query(self) -> list[IndexSeries]:
        with _storage_errors("query", duckdb.Error):
            rows = self._conn.execute(_SNAPSHOT_SQL).fetchall()
        series = [
            IndexSeries.from_db_row(
                {
                    "id": row[0],
                    "label": row[1],
                    "id_bank": row[2],
                    "last_update": row[3],
                    "period": row[4],
                    "values": row[5] or [],
                }
            )
            for row in rows
        ]
        log.debug("snapshot_queried", backend="duckdb", indices=len(series))
        return series

    def delete_all_values(self) -> None:
        with _storage_errors("delete_all_values", duckdb.Error):
            self._conn.execute(f"DELETE FROM {VALUES_TABLE}")

    def delete_all_indices(self) -> None:
        with _storage_errors("delete_all_indices", duckdb.Error):
            self._conn.execute(f"DELETE FROM {INDICES_TABLE}")

    def bulk_insert_indices(self, rows: list[dict[str, Any]]) -> list[int]:
        if not rows:
            return []
        with _storage_errors("bulk_insert_indices", duckdb.Error):
            allocated = self._conn.execute(
                f"SELECT nextval('{_SEQUENCE}') FROM range({len(rows)})"
            ).fetchall()
            ids = sorted(int(row[0]) for row in allocated)
            frame = pl.DataFrame(
                {
                    "id": ids,
                    **{col: [row.get(col) or "" for row in rows] for col in _INDEX_COLUMNS},
                },
                schema={"id": pl.Int64, **{col: pl.String for col in _INDEX_COLUMNS}},
            )
            self._insert_frame(INDICES_TABLE, frame, ["id", *_INDEX_COLUMNS])
        return ids

    def bulk_insert_values(self, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        frame = pl.DataFrame(
            rows,
            schema={"index_id": pl.Int64, "year": pl.Int32, "value": pl.Float64},
        )
        with _storage_errors("bulk_insert_values", duckdb.Error):
            self._insert_frame(VALUES_TABLE, frame, ["index_id", "year", "value"])

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        with _storage_errors("begin", duckdb.Error):
            self._conn.begin()
        try:
            yield
        except BaseException:
            self._conn.rollback()
            log.warning("transaction_rolled_back", backend="duckdb")
            raise
        with _storage_errors("commit", duckdb.Error):
            self._conn.commit()

    def _insert_frame(self, table: str, frame: pl.DataFrame, columns: list[str]) -> None:
        # DuckDB scans the registered polars frame directly
        view = f"_tmp_{table}"
        col_list = ", ".join(columns)
        self._conn.register(view, frame)
        try:
            self._conn.execute(f"INSERT INTO {table} ({col_list}) SELECT {col_list} FROM {view}")
        finally:
            self._conn.unregister(view)
        log.debug("frame_inserted", table=table, rows=len(frame))


def get_store(*, service_role: bool = False) -> IpampaStore:
    """
    Return the storage backend selected by settings.storage_backend.

    Args:
        service_role: Supabase only — use the service key (required for the
                      delete/insert cycle of a refresh).
    """
    if settings.storage_backend == "supabase":
        with _storage_errors("connect"):
            client = get_supabase_client(service_role=service_role)
        return SupabaseStore(client)
    return DuckDBStore()
