"""
errors.py — Failure taxonomy for the refresh, listing and export paths.

Every exception here is fatal to the operation that raised it. Row-level
problems (bad cells, malformed CSV lines, rows outside the index family)
are never raised; they are recorded as diagnostics instead.
"""

from __future__ import annotations


class IpampaError(Exception):
    """Base class; `code` is the stable identifier surfaced by the API."""

    code = "IPAMPA_ERROR"


class TransportFailure(IpampaError):
    code = "TRANSPORT_FAILURE"

    def __init__(self, url: str, status_code: int | None = None, reason: str = "") -> None:
        self.url = url
        self.status_code = status_code
        detail = f"HTTP {status_code}" if status_code is not None else reason or "network error"
        super().__init__(f"Failed to fetch archive from {url}: {detail}")


class ArchiveEntryNotFound(IpampaError):
    code = "ARCHIVE_ENTRY_NOT_FOUND"


class EmptyResult(IpampaError):
    code = "EMPTY_RESULT"


class NoYearColumns(IpampaError):
    code = "NO_YEAR_COLUMNS"


class StorageFailure(IpampaError):
    code = "STORAGE_FAILURE"

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        super().__init__(f"Storage call '{operation}' failed: {reason}")
