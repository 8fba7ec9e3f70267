"""IPAMPA data service: cached snapshot reads, export and refresh."""

from __future__ import annotations

from typing import Any

from ipampa_shared.export import (
    build_export_csv,
    collect_years,
    export_filename,
    filter_series,
    recent_years,
)
from ipampa_shared.models import IndexSeries
from ipampa_shared.store import get_store
from ipampa_pipeline.pipelines import ipampa as ipampa_pipeline

from ipampa_api.utils.cache import ipampa_cache

_SNAPSHOT_KEY = "ipampa:snapshot"


def get_snapshot() -> list[IndexSeries]:
    """Every mirrored index with its values, ordered by label then id."""
    cached = ipampa_cache.get(_SNAPSHOT_KEY)
    if cached is not None:
        return cached

    snapshot = get_store().query()
    ipampa_cache.set(_SNAPSHOT_KEY, snapshot)
    return snapshot


def list_indices(query: str | None = None) -> dict[str, Any]:
    """Filtered snapshot plus the year columns a table view needs."""
    series = filter_series(get_snapshot(), query)
    years = collect_years(series)
    return {
        "data": [s.model_dump() for s in series],
        "years": years,
        "recent_years": recent_years(years),
    }


def export_csv(query: str | None = None) -> tuple[bytes, str]:
    """Return (CSV bytes, attachment filename). Reads storage directly."""
    series = get_store().query()
    return build_export_csv(series, query).encode("utf-8"), export_filename()


async def refresh(*, dry_run: bool = False) -> dict[str, Any]:
    result = await ipampa_pipeline.refresh(dry_run=dry_run)
    if not dry_run:
        ipampa_cache.clear()
    return {
        "admitted_count": result.admitted_count,
        "values_loaded": result.values_loaded,
        "source_entry": result.source_entry,
        "dry_run": result.dry_run,
        "duration_ms": result.duration_ms,
        "diagnostics": result.diagnostics.summary(),
        "message": result.message,
    }


def storage_status() -> dict[str, Any]:
    """Query the mirror once, uncached; raises StorageFailure when it is unreachable."""
    return {"indices": len(get_store().query())}
