"""
export.py — Pivot the long (index, year, value) mirror back into a wide CSV.

The export has one row per index and one column per year. The year columns
are data-driven: the ascending union of the years present in the *filtered*
indices, so years that only appear in excluded indices never show up.

Output format:
  - UTF-8 text prefixed with a byte-order mark (Excel opens it correctly)
  - fields separated by ';', rows separated by '\\n', no trailing newline
  - a field containing ';', '"' or a newline is wrapped in double quotes
    with inner quotes doubled; every other field is written as-is
  - values formatted with exactly two decimals, empty when absent

Usage:
    from ipampa_shared.export import build_export_csv, export_filename

    csv_text = build_export_csv(store.query(), query="engrais")
    filename = export_filename()   # "ipampa-export-1718000000000.csv"
"""

from __future__ import annotations

import time

import polars as pl

from ipampa_shared.models import IndexSeries

BOM = "\ufeff"
SEPARATOR = ";"
EXPORT_COLUMNS: tuple[str, ...] = ("Libellé", "ID Bank", "Dernière mise à jour", "Période")

# Years shown by the listing view
RECENT_YEAR_WINDOW = 10

_META_FIELDS: tuple[str, ...] = ("label", "id_bank", "last_update", "period")
_NEEDS_QUOTING = (SEPARATOR, '"', "\n")


def escape_csv_field(value: object) -> str:
    if value is None:
        return ""
    text = str(value)
    if any(ch in text for ch in _NEEDS_QUOTING):
        return '"' + text.replace('"', '""') + '"'
    return text


def filter_series(series: list[IndexSeries], query: str | None) -> list[IndexSeries]:
    """Keep indices whose label, id_bank or period contains *query* (any case)."""
    if not query or not query.strip():
        return list(series)
    return [s for s in series if s.matches(query)]


def collect_years(series: list[IndexSeries]) -> list[int]:
    """Ascending union of every year that has a value in *series*."""
    return sorted({point.year for s in series for point in s.values})


def pivot_series(series: list[IndexSeries]) -> tuple[pl.DataFrame, list[int]]:
    """
    Turn the snapshot into a wide frame: metadata columns then one Float64
    column per year (named after the year). Row order follows *series*.
    """
    meta = pl.DataFrame(
        {
            "ord": list(range(len(series))),
            **{field: [getattr(s, field) for s in series] for field in _META_FIELDS},
        },
        schema={"ord": pl.Int64, **{field: pl.String for field in _META_FIELDS}},
    )
    long = pl.DataFrame(
        [
            {"ord": ord_, "year": point.year, "value": point.value}
            for ord_, s in enumerate(series)
            for point in s.values
        ],
        schema={"ord": pl.Int64, "year": pl.Int64, "value": pl.Float64},
    )
    years = sorted(long["year"].unique().to_list())
    if not years:
        return meta.drop("ord"), []

    wide = long.with_columns(pl.col("year").cast(pl.String)).pivot(
        on="year",
        index="ord",
        values="value",
        aggregate_function="first",
    )
    year_cols = [str(y) for y in years]
    out = (
        meta.join(wide, on="ord", how="left")
        .sort("ord")
        .select([*_META_FIELDS, *year_cols])
    )
    return out, years


def build_export_csv(series: list[IndexSeries], query: str | None = None) -> str:
    """Filter, pivot and serialize the snapshot into the export CSV text."""
    selected = filter_series(series, query)
    wide, years = pivot_series(selected)
    year_cols = [str(y) for y in years]

    lines = [SEPARATOR.join([*EXPORT_COLUMNS, *year_cols])]
    for row in wide.iter_rows(named=True):
        fields = [escape_csv_field(row[field]) for field in _META_FIELDS]
        fields.extend("" if row[col] is None else f"{row[col]:.2f}" for col in year_cols)
        lines.append(SEPARATOR.join(fields))
    return BOM + "\n".join(lines)


def export_filename(now: float | None = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    return f"ipampa-export-{millis}.csv"


def recent_years(years: list[int], window: int = RECENT_YEAR_WINDOW) -> list[int]:
    """The last *window* years of an ascending year list."""
    return years[-window:] if window > 0 else []
