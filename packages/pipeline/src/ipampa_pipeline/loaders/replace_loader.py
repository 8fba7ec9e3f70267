"""
loaders/replace_loader.py — Full-replace loader for the IPAMPA mirror.

Every refresh replaces the whole dataset. The loader:
  - Deletes all values, then all indices (children before parent)
  - Inserts all admitted indices in one bulk call and receives their ids
    back in input order
  - Pairs each id with its row through the batch's row_key and inserts
    every (index_id, year, value) point in one bulk call
  - Runs the cycle inside store.transaction(), which is all-or-nothing on
    backends that support it (DuckDB) and a no-op elsewhere (Supabase)

Usage:
    from ipampa_pipeline.loaders.replace_loader import ReplaceLoader

    loader = ReplaceLoader()
    result = await loader.replace_all(batch)
    print(result.indices_loaded, result.values_loaded)
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import polars as pl
import structlog

from ipampa_shared.errors import StorageFailure
from ipampa_shared.models import IndexRecord, ValuePoint
from ipampa_shared.store import IpampaStore, get_store
from ipampa_pipeline.transforms.normalize import NormalizedBatch

log = structlog.get_logger(__name__)


@dataclass
class LoadResult:
    """Summary of one replace cycle."""

    indices_loaded: int = 0
    values_loaded: int = 0
    atomic: bool = False
    duration_ms: int = 0


class ReplaceLoader:
    """Writes a NormalizedBatch over whatever the store currently holds."""

    def __init__(self, store: IpampaStore | None = None) -> None:
        self._store = store or get_store(service_role=True)

    @property
    def store(self) -> IpampaStore:
        return self._store

    async def replace_all(self, batch: NormalizedBatch) -> LoadResult:
        """
        Replace the mirrored dataset with *batch*.

        Returns:
            LoadResult with the number of indices and value points written.

        Raises:
            StorageFailure: any store call failed, or the store returned a
                            different number of ids than rows submitted.
                            On a non-atomic store the deletes stay applied.
        """
        t0 = time.monotonic()
        result = LoadResult(atomic=self._store.atomic)
        load_log = log.bind(indices=batch.admitted_count, atomic=self._store.atomic)
        load_log.info("replace_start")

        index_rows = [
            IndexRecord(**row).to_insert_dict()
            for row in batch.indices.drop("row_key").iter_rows(named=True)
        ]

        with self._store.transaction():
            self._store.delete_all_values()
            self._store.delete_all_indices()

            ids = self._store.bulk_insert_indices(index_rows) if index_rows else []
            if len(ids) != len(index_rows):
                raise StorageFailure(
                    "bulk_insert_indices",
                    f"expected {len(index_rows)} ids, got {len(ids)}",
                )
            result.indices_loaded = len(ids)

            value_rows = self._attach_ids(batch, ids)
            if value_rows:
                self._store.bulk_insert_values(value_rows)
            result.values_loaded = len(value_rows)

        result.duration_ms = int((time.monotonic() - t0) * 1000)
        load_log.info(
            "replace_complete",
            indices_loaded=result.indices_loaded,
            values_loaded=result.values_loaded,
            duration_ms=result.duration_ms,
        )
        return result

    @staticmethod
    def _attach_ids(batch: NormalizedBatch, ids: list[int]) -> list[dict]:
        """Pair generated ids with value points through row_key (ids are positional)."""
        if not ids or batch.values.is_empty():
            return []
        id_map = pl.DataFrame(
            {"row_key": batch.indices["row_key"], "index_id": ids},
            schema={"row_key": batch.indices["row_key"].dtype, "index_id": pl.Int64},
        )
        points = (
            batch.values.join(id_map, on="row_key", how="inner")
            .select("index_id", "year", "value")
            .sort(["index_id", "year"])
        )
        return [ValuePoint(**row).to_insert_dict() for row in points.iter_rows(named=True)]
