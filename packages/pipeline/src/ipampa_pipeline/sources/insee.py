"""
sources/insee.py — INSEE IPAMPA family download adapter.

Downloads the "famille" CSV bundle for the IPAMPA price indices from the
INSEE macro-economic database (BDM) and returns the parsed table.

INSEE bundle format notes:
  - The response is a zip archive; the data file is the first entry whose
    name ends in .csv or .txt (other entries, if any, are ignored)
  - The CSV is UTF-8, may start with a byte-order mark, uses ';' as the
    field separator and ',' as the decimal separator
  - Header: Libellé;idBank;Dernière mise à jour;Période;<year>;<year>;…
  - Missing observations are blank or a single '-'
  - The family mixes series from other index families; those are filtered
    out downstream by the label marker

Usage:
    source = InseeIpampaSource()
    batch = await source.run()
    # batch.indices: row_key, label, id_bank, last_update, period
    # batch.values:  row_key, year, value
"""

from __future__ import annotations

import io
import zipfile
from typing import Any

import httpx
import polars as pl
import structlog

from ipampa_shared.config import settings
from ipampa_shared.errors import ArchiveEntryNotFound, EmptyResult, TransportFailure
from ipampa_pipeline.sources.base import BaseSource
from ipampa_pipeline.transforms.normalize import (
    IngestDiagnostics,
    NormalizedBatch,
    RowIssue,
    infer_year_columns,
    normalize_records,
)
from ipampa_pipeline.utils.retry import with_retry

log = structlog.get_logger(__name__)

DATA_FILE_SUFFIXES: tuple[str, ...] = (".csv", ".txt")
DELIMITER = ";"
QUOTE = "\""
_BOM = "\ufeff"


def request_headers() -> dict[str, str]:
    """Browser-like headers; the BDM endpoint answers cross-site fetches only."""
    return {
        "accept": "*/*",
        "accept-language": "fr-FR,fr;q=0.9,en-GB;q=0.8,en;q=0.7",
        "dnt": "1",
        "origin": "https://www.insee.fr",
        "sec-fetch-dest": "empty",
        "sec-fetch-mode": "cors",
        "sec-fetch-site": "same-site",
        "user-agent": settings.insee_user_agent,
    }


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


@with_retry(max_attempts=3, base_delay=2.0, retry_on=(httpx.TransportError,))
async def fetch_bytes(url: str, headers: dict[str, str], *, timeout: float) -> bytes:
    """
    GET *url* and return the body.

    Network errors are retried; an HTTP error status is not.

    Raises:
        TransportFailure: the server answered with a non-2xx status.
        httpx.TransportError: the network failed on every attempt.
    """
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url, headers=headers)
    if not response.is_success:
        raise TransportFailure(url, response.status_code)
    return response.content


# ---------------------------------------------------------------------------
# Archive reader
# ---------------------------------------------------------------------------


def read_archive_text(payload: bytes) -> tuple[str, str]:
    """
    Return (entry name, decoded text) of the data file inside a zip payload.

    Raises:
        ArchiveEntryNotFound: the payload is not a zip archive, or no entry
                              name ends in .csv / .txt.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(payload))
    except zipfile.BadZipFile as exc:
        raise ArchiveEntryNotFound(f"Payload is not a zip archive ({len(payload)} bytes)") from exc

    with archive:
        names = archive.namelist()
        for info in archive.infolist():
            if info.is_dir() or not info.filename.endswith(DATA_FILE_SUFFIXES):
                continue
            text = archive.read(info).decode("utf-8", errors="replace")
            log.info("archive_entry_found", entry=info.filename, size=info.file_size)
            return info.filename, text

    raise ArchiveEntryNotFound(f"No CSV file found in ZIP archive (entries: {names[:10]})")


# ---------------------------------------------------------------------------
# Tabular parser
# ---------------------------------------------------------------------------


def _scan_line(line: str, delimiter: str, quoted: bool) -> tuple[bool, str | None]:
    """
    Track the quote state across one physical line.

    Returns (inside a quoted field at end of line, error). A quoted field
    must close right before a delimiter or the end of the line.
    """
    field_start = not quoted
    pos = 0
    while pos < len(line):
        char = line[pos]
        if quoted:
            if char == QUOTE:
                if line.startswith(QUOTE, pos + 1):
                    pos += 1
                else:
                    quoted = False
                    following = line[pos + 1 : pos + 2]
                    if following and following != delimiter:
                        return False, f"'{delimiter}' expected after '{QUOTE}', got {following!r}"
        elif char == QUOTE and field_start:
            quoted = True
        field_start = char == delimiter and not quoted
        pos += 1
    return quoted, None


def split_records(text: str, *, delimiter: str = DELIMITER) -> tuple[list[str], list[RowIssue]]:
    """
    Split text into well-formed records, one or more physical lines each.

    Blank lines are dropped. A record with broken quoting is skipped and
    reported with the line number it starts on.
    """
    records: list[str] = []
    skipped: list[RowIssue] = []
    pending: list[str] = []
    start = 0
    quoted = False

    for number, line in enumerate(text.splitlines(), start=1):
        if not pending:
            if not line.strip():
                continue
            start = number
        pending.append(line)
        quoted, error = _scan_line(line, delimiter, quoted)
        if error:
            skipped.append(RowIssue(row=start, reason="malformed", detail=error))
            pending, quoted = [], False
        elif not quoted:
            records.append("\n".join(pending))
            pending = []

    if pending:
        skipped.append(RowIssue(row=start, reason="malformed", detail="unterminated quoted field"))
    return records, skipped


def parse_delimited(text: str, *, delimiter: str = DELIMITER) -> tuple[pl.DataFrame, list[RowIssue]]:
    """
    Parse header-first delimited text into an all-String DataFrame.

    - a leading byte-order mark is dropped
    - fields are trimmed; blank rows are skipped
    - short rows are padded with nulls, extra fields are ignored
    - a record with broken quoting is skipped and reported
    - a repeated header name keeps its first column only

    Returns:
        (table, skipped rows with their 1-based line numbers)

    Raises:
        EmptyResult: no data row survived.
    """
    text = text.removeprefix(_BOM)
    records, skipped = split_records(text, delimiter=delimiter)
    if len(records) < 2:
        raise EmptyResult("Invalid CSV format: no data rows")

    frame = pl.read_csv(
        io.StringIO("\n".join(records)),
        separator=delimiter,
        has_header=False,
        quote_char=QUOTE,
        infer_schema_length=0,
        truncate_ragged_lines=True,
    )
    frame = frame.with_columns(pl.col(pl.String).str.strip_chars()).filter(
        pl.any_horizontal(pl.all().fill_null("") != "")
    )
    if len(frame) < 2:
        raise EmptyResult("Invalid CSV format: no data rows")

    kept: dict[str, str] = {}
    for position, (column, name) in enumerate(zip(frame.columns, frame.row(0))):
        kept.setdefault(name or f"column_{position}", column)

    table = frame.slice(1).select([pl.col(column).alias(name) for name, column in kept.items()])

    log.info("table_parsed", rows=len(table), columns=table.width, skipped_rows=len(skipped))
    for issue in skipped:
        log.debug("row_skipped", line=issue.row, reason=issue.reason, detail=issue.detail)
    return table, skipped


# ---------------------------------------------------------------------------
# Source adapter
# ---------------------------------------------------------------------------


class InseeIpampaSource(BaseSource):
    """Downloads and parses the INSEE IPAMPA family bundle."""

    name = "INSEE"

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout: float | None = None,
        family_marker: str | None = None,
    ) -> None:
        super().__init__()
        self._url = url or settings.insee_ipampa_url
        self._timeout = timeout or settings.http_timeout
        self._family_marker = family_marker or settings.ipampa_family_marker
        self.source_entry: str | None = None
        self._parse_issues: list[RowIssue] = []

    async def extract(self, **kwargs: Any) -> pl.DataFrame:
        """
        Download the bundle and return its data file as a DataFrame.

        Raises:
            TransportFailure, ArchiveEntryNotFound, EmptyResult
        """
        self._log.info("download_start", url=self._url)
        try:
            payload = await fetch_bytes(self._url, request_headers(), timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise TransportFailure(self._url, reason=str(exc)) from exc
        self._log.info("download_complete", size=len(payload))

        self.source_entry, text = read_archive_text(payload)
        raw, self._parse_issues = parse_delimited(text)
        return raw

    def transform(self, raw: pl.DataFrame) -> NormalizedBatch:
        """
        Infer the year columns and normalize every row.

        Raises:
            NoYearColumns: the header has no four-digit column.
        """
        years = infer_year_columns(raw.columns)
        self._log.info(
            "year_columns_inferred",
            count=len(years),
            first=years[0],
            last=years[-1],
        )
        diagnostics = IngestDiagnostics(skipped_rows=list(self._parse_issues))
        return normalize_records(
            raw,
            years,
            family_marker=self._family_marker,
            diagnostics=diagnostics,
        )

    async def get_metadata(self) -> dict[str, Any]:
        return {
            "source_name": self.name,
            "url": self._url,
            "family_marker": self._family_marker,
            "description": "INSEE BDM — IPAMPA agricultural input price indices (annual)",
        }
