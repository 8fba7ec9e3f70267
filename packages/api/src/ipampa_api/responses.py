"""Standardized API response wrappers."""

from __future__ import annotations

from typing import Any


def wrap_response(
    data: Any,
    *,
    total_count: int | None = None,
    source: str | None = None,
    links: dict[str, str] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a standardized API response dict; *extra* keys sit beside data."""
    meta = {"total_count": total_count, "source": source}
    return {
        "data": data,
        **extra,
        "meta": {k: v for k, v in meta.items() if v is not None},
        "links": links or {},
    }


def error_response(
    code: str,
    message: str,
    *,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a standardized error response dict."""
    err: dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return {"error": err}
