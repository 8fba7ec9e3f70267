"""
tests/test_transforms/test_normalize.py — Year inference and record normalization.
"""

from __future__ import annotations

import polars as pl
import pytest

from ipampa_shared.errors import NoYearColumns
from ipampa_pipeline.transforms.normalize import (
    IngestDiagnostics,
    RowIssue,
    infer_year_columns,
    normalize_records,
)

HEADER = ["Libellé", "idBank", "Dernière mise à jour", "Période"]


def raw_table(rows: list[list[str | None]], years: list[str]) -> pl.DataFrame:
    columns = HEADER + years
    return pl.DataFrame(
        {name: [row[i] for row in rows] for i, name in enumerate(columns)},
        schema={name: pl.String for name in columns},
    )


def values_of(batch, row_key: int) -> dict[int, float]:
    points = batch.values.filter(pl.col("row_key") == row_key)
    return dict(zip(points["year"].to_list(), points["value"].to_list()))


# ---------------------------------------------------------------------------
# infer_year_columns
# ---------------------------------------------------------------------------

class TestInferYearColumns:
    def test_years_after_descriptive_columns(self):
        assert infer_year_columns([*HEADER, "2019", "2020", "2021"]) == [2019, 2020, 2021]

    def test_non_year_columns_after_first_year_are_ignored(self):
        cols = [*HEADER, "2019", "Commentaire", "2020", "20211"]
        assert infer_year_columns(cols) == [2019, 2020]

    def test_keeps_header_order(self):
        assert infer_year_columns(["Libellé", "2022", "2020"]) == [2022, 2020]

    def test_no_year_column_raises(self):
        with pytest.raises(NoYearColumns):
            infer_year_columns(HEADER)

    def test_year_like_values_must_be_exactly_four_digits(self):
        with pytest.raises(NoYearColumns):
            infer_year_columns(["Libellé", "202", "2020-01", " 2020"])


# ---------------------------------------------------------------------------
# normalize_records
# ---------------------------------------------------------------------------

class TestNormalizeRecords:
    def test_engrais_row(self):
        raw = raw_table(
            [["IPAMPA Engrais", "001234567", "15/03/2024", "Annuelle", "101,5", "-", ""]],
            ["2020", "2021", "2022"],
        )
        batch = normalize_records(raw, [2020, 2021, 2022], family_marker="IPAMPA")

        assert batch.admitted_count == 1
        assert batch.indices.row(0, named=True) == {
            "row_key": 0,
            "label": "IPAMPA Engrais",
            "id_bank": "001234567",
            "last_update": "15/03/2024",
            "period": "Annuelle",
        }
        assert values_of(batch, 0) == {2020: 101.5}
        assert batch.diagnostics.dropped_cells == []

    def test_row_outside_family_is_rejected(self):
        raw = raw_table(
            [["Indice des prix - Blé", "000999", "", "", "100"]],
            ["2020"],
        )
        batch = normalize_records(raw, [2020], family_marker="IPAMPA")

        assert batch.admitted_count == 0
        assert batch.values.is_empty()
        assert batch.diagnostics.rejected_by_reason() == {"outside_family": 1}

    def test_marker_is_case_sensitive(self):
        raw = raw_table([["ipampa engrais", "001", "", "", "1"]], ["2020"])
        batch = normalize_records(raw, [2020], family_marker="IPAMPA")
        assert batch.admitted_count == 0

    def test_missing_label_and_id_bank(self):
        raw = raw_table(
            [
                ["", "001", "", "", "1"],
                ["IPAMPA x", "  ", "", "", "1"],
                [None, None, None, None, None],
            ],
            ["2020"],
        )
        batch = normalize_records(raw, [2020], family_marker="IPAMPA")

        assert batch.admitted_count == 0
        assert [issue.reason for issue in batch.diagnostics.rejected_rows] == [
            "missing_label",
            "missing_id_bank",
            "missing_label",
        ]

    def test_text_fields_are_cleaned(self):
        raw = raw_table([["  IPAMPA\x00 Gazole ", " 0042 ", None, " Annuelle ", "1"]], ["2020"])
        batch = normalize_records(raw, [2020], family_marker="IPAMPA")

        row = batch.indices.row(0, named=True)
        assert row["label"] == "IPAMPA Gazole"
        assert row["id_bank"] == "0042"
        assert row["last_update"] == ""
        assert row["period"] == "Annuelle"

    def test_value_parsing_rules(self):
        raw = raw_table(
            [["IPAMPA x", "001", "", "", "100", " 99,25 ", "0", "-1,5", "abc", "1e3", "inf"]],
            ["2016", "2017", "2018", "2019", "2020", "2021", "2022"],
        )
        batch = normalize_records(
            raw, [2016, 2017, 2018, 2019, 2020, 2021, 2022], family_marker="IPAMPA"
        )

        assert values_of(batch, 0) == {
            2016: 100.0,
            2017: 99.25,
            2018: 0.0,
            2019: -1.5,
            2021: 1000.0,
        }
        dropped = {(cell.year, cell.raw_value) for cell in batch.diagnostics.dropped_cells}
        assert dropped == {(2020, "abc"), (2022, "inf")}

    def test_zero_is_kept_and_dash_is_absent(self):
        raw = raw_table([["IPAMPA x", "001", "", "", "0", "-"]], ["2020", "2021"])
        batch = normalize_records(raw, [2020, 2021], family_marker="IPAMPA")
        assert values_of(batch, 0) == {2020: 0.0}

    def test_row_keys_follow_source_positions(self):
        raw = raw_table(
            [
                ["IPAMPA a", "001", "", "", "1"],
                ["Autre", "002", "", "", "2"],
                ["IPAMPA c", "003", "", "", "3"],
            ],
            ["2020"],
        )
        batch = normalize_records(raw, [2020], family_marker="IPAMPA")

        assert batch.indices["row_key"].to_list() == [0, 2]
        assert values_of(batch, 2) == {2020: 3.0}
        assert values_of(batch, 1) == {}

    def test_index_without_values_is_admitted(self):
        raw = raw_table([["IPAMPA x", "001", "", "", "-", ""]], ["2020", "2021"])
        batch = normalize_records(raw, [2020, 2021], family_marker="IPAMPA")

        assert batch.admitted_count == 1
        assert batch.values.is_empty()

    def test_appends_to_existing_diagnostics(self):
        diagnostics = IngestDiagnostics(skipped_rows=[RowIssue(row=7, reason="malformed")])
        raw = raw_table([["Autre", "001", "", "", "1"]], ["2020"])

        batch = normalize_records(raw, [2020], family_marker="IPAMPA", diagnostics=diagnostics)

        assert batch.diagnostics is diagnostics
        assert diagnostics.summary() == {"skipped_rows": 1, "rejected_rows": 1, "dropped_cells": 0}

    def test_empty_result_schemas(self):
        raw = raw_table([["Autre", "001", "", "", "1"]], ["2020"])
        batch = normalize_records(raw, [2020], family_marker="IPAMPA")

        assert batch.indices.columns == ["row_key", "label", "id_bank", "last_update", "period"]
        assert batch.values.schema == {"row_key": pl.UInt32, "year": pl.Int32, "value": pl.Float64}
        assert len(batch) == 0
