"""
tests/test_sources/test_insee.py — Unit tests for the INSEE IPAMPA source.

All HTTP is mocked via respx; no real network calls are made.
The fixture CSV in tests/fixtures/ mirrors the INSEE BDM "famille" export.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import polars as pl
import pytest

from ipampa_shared.errors import ArchiveEntryNotFound, EmptyResult, NoYearColumns, TransportFailure
from ipampa_pipeline.sources.insee import (
    InseeIpampaSource,
    parse_delimited,
    read_archive_text,
    request_headers,
)

URL = "https://bdm.insee.fr/famille/117608561/csv?lang=fr"


@pytest.fixture
def sample_zip(make_zip, sample_csv_bytes: bytes) -> bytes:
    return make_zip(sample_csv_bytes, extra={"caracteristiques.xml": b"<meta/>"})


# ---------------------------------------------------------------------------
# Archive reader
# ---------------------------------------------------------------------------

class TestReadArchiveText:
    def test_returns_first_csv_entry(self, make_zip):
        payload = make_zip(b"a;b\n1;2\n", name="data.csv", extra={"notes.md": b"ignore me"})
        entry, text = read_archive_text(payload)
        assert entry == "data.csv"
        assert text == "a;b\n1;2\n"

    def test_accepts_txt_entry(self, make_zip):
        entry, _ = read_archive_text(make_zip(b"a;b\n1;2\n", name="valeurs.txt"))
        assert entry == "valeurs.txt"

    def test_first_matching_entry_wins(self, make_zip):
        payload = make_zip(b"second", name="b.csv", extra={"a.csv": b"first"})
        entry, text = read_archive_text(payload)
        assert entry == "a.csv"
        assert text == "first"

    def test_no_data_entry_raises(self, make_zip):
        payload = make_zip(b"<xml/>", name="metadata.xml")
        with pytest.raises(ArchiveEntryNotFound, match="No CSV file found"):
            read_archive_text(payload)

    def test_not_a_zip_raises_archive_error(self):
        with pytest.raises(ArchiveEntryNotFound):
            read_archive_text(b"<html>maintenance</html>")


# ---------------------------------------------------------------------------
# Tabular parser
# ---------------------------------------------------------------------------

class TestParseDelimited:
    def test_parses_sample_as_strings(self, sample_csv_bytes: bytes):
        table, skipped = parse_delimited(sample_csv_bytes.decode("utf-8"))
        assert table.columns[:4] == ["Libellé", "idBank", "Dernière mise à jour", "Période"]
        assert table.columns[4:] == ["2019", "2020", "2021", "2022"]
        assert all(dtype == pl.String for dtype in table.dtypes)
        # The line with text after a closing quote is skipped, the rest survive
        assert len(table) == 5
        assert [(issue.row, issue.reason) for issue in skipped] == [(6, "malformed")]

    def test_strips_bom_and_trims(self):
        table, _ = parse_delimited("\ufeffLibellé ; idBank\n  IPAMPA x ;  001 \n")
        assert table.columns == ["Libellé", "idBank"]
        assert table.row(0) == ("IPAMPA x", "001")

    def test_pads_short_rows_and_ignores_extra_fields(self):
        table, _ = parse_delimited("a;b;c\n1\n1;2;3;4\n")
        assert table.rows() == [("1", None, None), ("1", "2", "3")]

    def test_skips_blank_lines(self):
        table, _ = parse_delimited("a;b\n\n1;2\n;\n3;4\n")
        assert table["a"].to_list() == ["1", "3"]

    def test_quoted_field_keeps_separator(self):
        table, _ = parse_delimited('a;b\n"IPAMPA; engrais";2\n')
        assert table["a"].to_list() == ["IPAMPA; engrais"]

    def test_duplicate_header_keeps_first(self):
        table, _ = parse_delimited("a;2020;2020\nx;1;2\n")
        assert table.columns == ["a", "2020"]
        assert table["2020"].to_list() == ["1"]

    def test_quoted_field_may_span_lines(self):
        table, skipped = parse_delimited('a;b\n"IPAMPA\nengrais";2\nx;3\n')
        assert table["a"].to_list() == ["IPAMPA\nengrais", "x"]
        assert skipped == []

    def test_escaped_quotes_are_unescaped(self):
        table, _ = parse_delimited('a;b\n"Engrais ""azotés""";2\n')
        assert table["a"].to_list() == ['Engrais "azotés"']

    def test_unterminated_quote_is_skipped(self):
        table, skipped = parse_delimited('a;b\nx;1\n"open;2\n')
        assert table["a"].to_list() == ["x"]
        assert [(issue.row, issue.reason) for issue in skipped] == [(3, "malformed")]

    def test_header_only_raises_empty(self):
        with pytest.raises(EmptyResult):
            parse_delimited("Libellé;idBank;2020\n")

    def test_empty_text_raises_empty(self):
        with pytest.raises(EmptyResult):
            parse_delimited("")


# ---------------------------------------------------------------------------
# extract() / run()
# ---------------------------------------------------------------------------

class TestInseeExtract:
    @pytest.mark.asyncio
    async def test_extract_returns_dataframe(self, mock_http, sample_zip: bytes):
        route = mock_http.get(URL).mock(return_value=httpx.Response(200, content=sample_zip))
        source = InseeIpampaSource(URL)

        raw = await source.extract()

        assert route.call_count == 1
        assert source.source_entry == "valeurs_annuelles.csv"
        assert len(raw) == 5
        assert "2022" in raw.columns

    @pytest.mark.asyncio
    async def test_sends_browser_headers(self, mock_http, sample_zip: bytes):
        route = mock_http.get(URL).mock(return_value=httpx.Response(200, content=sample_zip))
        await InseeIpampaSource(URL).extract()

        sent = route.calls.last.request.headers
        assert sent["origin"] == "https://www.insee.fr"
        assert sent["user-agent"] == request_headers()["user-agent"]
        assert sent["accept-language"].startswith("fr-FR")

    @pytest.mark.asyncio
    async def test_http_error_status_is_not_retried(self, mock_http):
        route = mock_http.get(URL).mock(return_value=httpx.Response(404))

        with pytest.raises(TransportFailure) as exc_info:
            await InseeIpampaSource(URL).extract()

        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "TRANSPORT_FAILURE"
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self, mock_http, sample_zip: bytes):
        route = mock_http.get(URL).mock(
            side_effect=[
                httpx.ConnectError("connection reset"),
                httpx.Response(200, content=sample_zip),
            ]
        )

        raw = await InseeIpampaSource(URL).extract()

        assert route.call_count == 2
        assert len(raw) == 5

    @pytest.mark.asyncio
    async def test_html_error_page_is_archive_failure(self, mock_http):
        mock_http.get(URL).mock(return_value=httpx.Response(200, content=b"<html></html>"))
        with pytest.raises(ArchiveEntryNotFound):
            await InseeIpampaSource(URL).extract()


class TestInseeRun:
    @pytest.mark.asyncio
    async def test_run_normalizes_sample(self, mock_http, sample_zip: bytes):
        mock_http.get(URL).mock(return_value=httpx.Response(200, content=sample_zip))
        source = InseeIpampaSource(URL)

        batch = await source.run()

        assert batch.years == [2019, 2020, 2021, 2022]
        assert batch.admitted_count == 3
        assert batch.indices["id_bank"].to_list() == ["001234567", "001234568", "001234571"]
        assert len(batch.values) == 8
        assert batch.diagnostics.summary() == {
            "skipped_rows": 1,
            "rejected_rows": 2,
            "dropped_cells": 1,
        }
        assert batch.diagnostics.rejected_by_reason() == {
            "outside_family": 1,
            "missing_id_bank": 1,
        }

    @pytest.mark.asyncio
    async def test_custom_family_marker(self, mock_http, sample_zip: bytes):
        mock_http.get(URL).mock(return_value=httpx.Response(200, content=sample_zip))
        batch = await InseeIpampaSource(URL, family_marker="Blé").run()
        assert batch.indices["id_bank"].to_list() == ["001234569"]

    @pytest.mark.asyncio
    async def test_no_year_columns_raises(self, mock_http, make_zip):
        payload = make_zip("Libellé;idBank;Période\nIPAMPA x;001;Annuelle\n".encode())
        mock_http.get(URL).mock(return_value=httpx.Response(200, content=payload))
        with pytest.raises(NoYearColumns):
            await InseeIpampaSource(URL).run()

    @pytest.mark.asyncio
    async def test_run_logs_source_metadata(self, mock_http, sample_zip: bytes):
        mock_http.get(URL).mock(return_value=httpx.Response(200, content=sample_zip))
        source = InseeIpampaSource(URL)

        with patch.object(source, "get_metadata", AsyncMock(return_value={"url": URL})) as meta:
            await source.run()

        meta.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_metadata(self):
        meta = await InseeIpampaSource(URL).get_metadata()
        assert meta["source_name"] == "INSEE"
        assert meta["url"] == URL
        assert meta["family_marker"] == "IPAMPA"
