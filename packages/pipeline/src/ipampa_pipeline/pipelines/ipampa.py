"""
pipelines/ipampa.py — Full refresh of the IPAMPA mirror.

Orchestrates:
  1. INSEE source → download zip, extract the data file, parse the table
  2. Transform   → infer year columns, admit IPAMPA rows, reshape values
  3. Replace     → delete everything, bulk-insert indices then values

Refreshes are serialized within a process: a second call waits for the
first to finish instead of interleaving its deletes and inserts.

Also exposes the two read paths over the same store:
  list_indices() — snapshot, optionally filtered
  export_csv()   — wide CSV export as bytes

Usage:
    from ipampa_pipeline.pipelines.ipampa import export_csv, refresh
    result = await refresh()
    print(result.admitted_count)
    payload = export_csv(query="engrais")
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from ipampa_shared.export import build_export_csv, filter_series
from ipampa_shared.models import IndexSeries
from ipampa_shared.store import IpampaStore, get_store
from ipampa_pipeline.loaders.replace_loader import ReplaceLoader
from ipampa_pipeline.sources.insee import InseeIpampaSource
from ipampa_pipeline.transforms.normalize import IngestDiagnostics
from ipampa_pipeline.utils.logging import get_logger

log = get_logger(__name__, pipeline="ipampa")

_refresh_lock = asyncio.Lock()


@dataclass
class RefreshResult:
    admitted_count: int
    values_loaded: int = 0
    source_entry: str | None = None
    dry_run: bool = False
    duration_ms: int = 0
    diagnostics: IngestDiagnostics = field(default_factory=IngestDiagnostics)

    @property
    def message(self) -> str:
        if self.dry_run:
            return f"Dry run: {self.admitted_count} IPAMPA indices would be refreshed"
        return f"Successfully refreshed {self.admitted_count} IPAMPA indices"


async def refresh(
    *,
    store: IpampaStore | None = None,
    source: InseeIpampaSource | None = None,
    dry_run: bool = False,
) -> RefreshResult:
    """
    Run the refresh end-to-end.

    Args:
        store:   Storage backend (default: get_store(service_role=True)).
        source:  Source adapter (default: InseeIpampaSource()).
        dry_run: If True, fetch and normalize but do not touch storage.

    Returns:
        RefreshResult; admitted_count 0 is a valid, empty refresh.

    Raises:
        TransportFailure, ArchiveEntryNotFound, EmptyResult, NoYearColumns,
        StorageFailure. The refresh stops at the failing step.
    """
    if _refresh_lock.locked():
        log.info("refresh_waiting_for_lock")

    async with _refresh_lock:
        t0 = time.monotonic()
        source = source or InseeIpampaSource()
        log.info("refresh_start", dry_run=dry_run)

        try:
            batch = await source.run()

            result = RefreshResult(
                admitted_count=batch.admitted_count,
                source_entry=source.source_entry,
                dry_run=dry_run,
                diagnostics=batch.diagnostics,
            )
            if not dry_run:
                loader = ReplaceLoader(store)
                load = await loader.replace_all(batch)
                result.values_loaded = load.values_loaded
            else:
                result.values_loaded = len(batch.values)

        except Exception as exc:
            log.error(
                "refresh_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )
            raise

        result.duration_ms = int((time.monotonic() - t0) * 1000)
        log.info(
            "refresh_complete",
            admitted=result.admitted_count,
            values=result.values_loaded,
            entry=result.source_entry,
            dry_run=dry_run,
            duration_ms=result.duration_ms,
            **result.diagnostics.summary(),
        )
        return result


def list_indices(
    *,
    store: IpampaStore | None = None,
    query: str | None = None,
) -> list[IndexSeries]:
    """
    Return the dataset snapshot, optionally filtered like the export.

    Raises:
        StorageFailure: the snapshot query failed.
    """
    series = (store or get_store()).query()
    return filter_series(series, query)


def export_csv(
    *,
    store: IpampaStore | None = None,
    query: str | None = None,
) -> bytes:
    """
    Return the wide, BOM-prefixed CSV export as UTF-8 bytes.

    Raises:
        StorageFailure: the snapshot query failed.
    """
    series = (store or get_store()).query()
    csv_text = build_export_csv(series, query)
    log.info("export_built", indices=len(series), query=query or "", size=len(csv_text))
    return csv_text.encode("utf-8")
