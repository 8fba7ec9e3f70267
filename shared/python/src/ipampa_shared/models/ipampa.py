"""
models/ipampa.py — Pydantic models for the ipampa_indices and ipampa_values tables.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class IndexRecord(BaseModel):
    """Matches an ipampa_indices row before the store assigns its id."""

    label: str = Field(min_length=1)
    id_bank: str = Field(min_length=1)    # INSEE series identifier ("idBank")
    last_update: str = ""                 # opaque source date string
    period: str = ""                      # opaque cadence description

    def to_insert_dict(self) -> dict[str, Any]:
        return self.model_dump()


class ValuePoint(BaseModel):
    """
    Matches the ipampa_values table row.

    Primary key is (index_id, year).
    """

    index_id: int
    year: int = Field(ge=0, le=9999)
    value: float = Field(allow_inf_nan=False)

    def to_insert_dict(self) -> dict[str, Any]:
        return self.model_dump()


class YearValue(BaseModel):
    year: int
    value: float


class IndexSeries(BaseModel):
    """One row of the dataset snapshot: an index with its values ordered by year."""

    id: int
    label: str
    id_bank: str
    last_update: str = ""
    period: str = ""
    values: list[YearValue] = Field(default_factory=list)

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "IndexSeries":
        # PostgREST embeds the relation under the table name
        raw_values = row.get("values")
        if raw_values is None:
            raw_values = row.get("ipampa_values")
        points = sorted(
            (YearValue(**v) for v in raw_values or [] if v and v.get("year") is not None),
            key=lambda v: v.year,
        )
        return cls(
            id=row["id"],
            label=row["label"],
            id_bank=row["id_bank"],
            last_update=row.get("last_update") or "",
            period=row.get("period") or "",
            values=points,
        )

    @property
    def years(self) -> list[int]:
        return [v.year for v in self.values]

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on label, id_bank and period."""
        needle = query.lower()
        return (
            needle in self.label.lower()
            or needle in self.id_bank.lower()
            or needle in self.period.lower()
        )
