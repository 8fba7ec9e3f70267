"""IPAMPA endpoints: listing, CSV export and refresh."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from ipampa_shared.errors import IpampaError, StorageFailure

from ipampa_api.responses import error_response, wrap_response
from ipampa_api.services import ipampa_service

router = APIRouter(prefix="/ipampa", tags=["ipampa"])


def _http_error(exc: IpampaError) -> HTTPException:
    # Storage problems are ours; everything else came from INSEE
    status = 503 if isinstance(exc, StorageFailure) else 502
    return HTTPException(status_code=status, detail=error_response(exc.code, str(exc)))


@router.get("")
def list_indices(
    q: str | None = Query(None, description="Case-insensitive filter on label, idBank and period"),
):
    """Mirrored indices with their yearly values, ordered by label."""
    try:
        listing = ipampa_service.list_indices(q)
    except IpampaError as exc:
        raise _http_error(exc) from exc
    return wrap_response(
        listing["data"],
        total_count=len(listing["data"]),
        source="INSEE",
        years=listing["years"],
        recent_years=listing["recent_years"],
    )


@router.get("/export")
def export_indices(
    q: str | None = Query(None, description="Case-insensitive filter on label, idBank and period"),
):
    """Wide CSV (one column per year), BOM-prefixed for spreadsheet tools."""
    try:
        payload, filename = ipampa_service.export_csv(q)
    except IpampaError as exc:
        raise _http_error(exc) from exc
    return Response(
        content=payload,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/refresh")
async def refresh_indices(dry_run: bool = Query(False, description="Fetch and normalize only")):
    """Replace the mirror with the current INSEE IPAMPA family."""
    try:
        data = await ipampa_service.refresh(dry_run=dry_run)
    except IpampaError as exc:
        raise _http_error(exc) from exc
    return wrap_response(data, source="INSEE")
