"""
transforms/normalize.py — Schema inference and record normalization for the
INSEE IPAMPA table.

The source table is wide: a few descriptive columns followed by one column
per year. Normalization produces two polars frames sharing a `row_key`
(the row's position in the parsed table):

  indices — row_key, label, id_bank, last_update, period   (admitted rows)
  values  — row_key, year, value                           (long format)

Carrying row_key alongside the values means the loader can attach storage
ids without ever re-identifying a row by its content.

Cell rules for the year columns:
  ""  or "-"      → no observation (absence, never zero)
  "101,5"         → 101.5 (decimal comma)
  anything else   → parsed as float; unparseable or non-finite cells dropped

Row rules (admission filter):
  label empty                         → rejected ("missing_label")
  id_bank empty                       → rejected ("missing_id_bank")
  label lacks the family marker       → rejected ("outside_family")

Usage:
    from ipampa_pipeline.transforms.normalize import infer_year_columns, normalize_records

    years = infer_year_columns(raw.columns)
    batch = normalize_records(raw, years, family_marker="IPAMPA")
    batch.indices, batch.values, batch.diagnostics.summary()
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

import polars as pl
import structlog

from ipampa_shared.errors import NoYearColumns

log = structlog.get_logger(__name__)

YEAR_COLUMN = re.compile(r"[0-9]{4}")
NO_VALUE = "-"

# Source header → storage column
DESCRIPTIVE_COLUMNS: dict[str, str] = {
    "Libellé": "label",
    "idBank": "id_bank",
    "Dernière mise à jour": "last_update",
    "Période": "period",
}

_INDEX_SCHEMA = {
    "row_key": pl.UInt32,
    "label": pl.String,
    "id_bank": pl.String,
    "last_update": pl.String,
    "period": pl.String,
}
_VALUE_SCHEMA = {"row_key": pl.UInt32, "year": pl.Int32, "value": pl.Float64}


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@dataclass
class RowIssue:
    row: int          # parser: 1-based source line; normalizer: row_key
    reason: str
    detail: str = ""


@dataclass
class CellIssue:
    row: int
    year: int
    raw_value: str


@dataclass
class IngestDiagnostics:
    """Everything a refresh skipped, kept for debugging; only counts are surfaced."""

    skipped_rows: list[RowIssue] = field(default_factory=list)
    rejected_rows: list[RowIssue] = field(default_factory=list)
    dropped_cells: list[CellIssue] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        return {
            "skipped_rows": len(self.skipped_rows),
            "rejected_rows": len(self.rejected_rows),
            "dropped_cells": len(self.dropped_cells),
        }

    def rejected_by_reason(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for issue in self.rejected_rows:
            counts[issue.reason] = counts.get(issue.reason, 0) + 1
        return counts


@dataclass
class NormalizedBatch:
    indices: pl.DataFrame
    values: pl.DataFrame
    years: list[int]
    diagnostics: IngestDiagnostics = field(default_factory=IngestDiagnostics)

    @property
    def admitted_count(self) -> int:
        return len(self.indices)

    def __len__(self) -> int:
        return self.admitted_count


# ---------------------------------------------------------------------------
# Schema inference
# ---------------------------------------------------------------------------


def infer_year_columns(columns: Sequence[str]) -> list[int]:
    """
    Return the year columns of the header as integers, in header order.

    Columns before the first four-digit name are descriptive metadata; from
    there to the end, every four-digit name is a year column.

    Raises:
        NoYearColumns: no header name is a four-digit year.
    """
    start = next((i for i, name in enumerate(columns) if YEAR_COLUMN.fullmatch(name)), None)
    if start is None:
        raise NoYearColumns(f"No year columns found in header: {list(columns)[:10]}")
    return [int(name) for name in columns[start:] if YEAR_COLUMN.fullmatch(name)]


# ---------------------------------------------------------------------------
# Record normalization
# ---------------------------------------------------------------------------


def _clean_text(expr: pl.Expr) -> pl.Expr:
    """Null → "", NUL characters removed, surrounding whitespace trimmed."""
    return expr.fill_null("").str.replace_all("\x00", "", literal=True).str.strip_chars()


def _descriptive(raw: pl.DataFrame) -> list[pl.Expr]:
    exprs = []
    for source_col, target in DESCRIPTIVE_COLUMNS.items():
        base = pl.col(source_col) if source_col in raw.columns else pl.lit(None, dtype=pl.String)
        exprs.append(_clean_text(base).alias(target))
    return exprs


def normalize_records(
    raw: pl.DataFrame,
    years: list[int],
    *,
    family_marker: str,
    diagnostics: IngestDiagnostics | None = None,
) -> NormalizedBatch:
    """
    Apply the admission filter and reshape year cells into (row_key, year, value).

    Args:
        raw:           Parsed table, all columns String, one row per source row.
        years:         Output of infer_year_columns().
        family_marker: Substring a label must contain to be admitted.
        diagnostics:   Collector to append to (a new one is created if omitted).

    Returns:
        NormalizedBatch. Never raises for bad rows or cells.
    """
    diagnostics = diagnostics or IngestDiagnostics()
    keyed = raw.with_row_index("row_key")

    meta = keyed.select(pl.col("row_key"), *_descriptive(raw)).with_columns(
        pl.when(pl.col("label") == "")
        .then(pl.lit("missing_label"))
        .when(pl.col("id_bank") == "")
        .then(pl.lit("missing_id_bank"))
        .when(~pl.col("label").str.contains(family_marker, literal=True))
        .then(pl.lit("outside_family"))
        .otherwise(pl.lit(None, dtype=pl.String))
        .alias("reject_reason")
    )

    for row_key, reason, label in (
        meta.filter(pl.col("reject_reason").is_not_null())
        .select("row_key", "reject_reason", "label")
        .iter_rows()
    ):
        diagnostics.rejected_rows.append(RowIssue(row=row_key, reason=reason, detail=label))

    indices = (
        meta.filter(pl.col("reject_reason").is_null())
        .drop("reject_reason")
        .cast(_INDEX_SCHEMA)
    )

    year_cols = [f"{year:04d}" for year in years if f"{year:04d}" in raw.columns]
    if indices.is_empty() or not year_cols:
        values = pl.DataFrame(schema=_VALUE_SCHEMA)
    else:
        cells = (
            keyed.join(indices.select("row_key"), on="row_key", how="semi")
            .select("row_key", *year_cols)
            .unpivot(index="row_key", on=year_cols, variable_name="year", value_name="raw_value")
            .with_columns(_clean_text(pl.col("raw_value")).alias("raw_value"))
            .filter((pl.col("raw_value") != "") & (pl.col("raw_value") != NO_VALUE))
            .with_columns(
                pl.col("year").cast(pl.Int32),
                pl.col("raw_value")
                .str.replace(",", ".", literal=True)
                .cast(pl.Float64, strict=False)
                .alias("value"),
            )
        )

        bad = cells.filter(pl.col("value").is_null() | ~pl.col("value").is_finite())
        for row_key, year, raw_value in bad.select("row_key", "year", "raw_value").iter_rows():
            diagnostics.dropped_cells.append(CellIssue(row=row_key, year=year, raw_value=raw_value))

        values = (
            cells.filter(pl.col("value").is_not_null() & pl.col("value").is_finite())
            .select("row_key", "year", "value")
            .sort(["row_key", "year"])
            .cast(_VALUE_SCHEMA)
        )

    log.info(
        "records_normalized",
        parsed_rows=len(raw),
        admitted=len(indices),
        value_points=len(values),
        **diagnostics.rejected_by_reason(),
        dropped_cells=len(diagnostics.dropped_cells),
    )
    for issue in diagnostics.dropped_cells:
        log.debug("cell_dropped", row=issue.row, year=issue.year, raw_value=issue.raw_value)

    return NormalizedBatch(indices=indices, values=values, years=years, diagnostics=diagnostics)
