"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from ipampa_shared.config import settings
from ipampa_shared.errors import StorageFailure

from ipampa_api.responses import error_response
from ipampa_api.services import ipampa_service

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}


@router.get("/ready")
def ready() -> dict:
    """Ready once the mirror storage answers a snapshot query."""
    try:
        status = ipampa_service.storage_status()
    except StorageFailure as exc:
        raise HTTPException(status_code=503, detail=error_response(exc.code, str(exc))) from exc
    return {"status": "ready", "backend": settings.storage_backend, **status}
