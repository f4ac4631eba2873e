"""GSC workbook pipeline tests."""

import asyncio
import json

import pytest

from analysis.gsc import analyze_workbook, section_headers, section_to_rows, write_gsc_report
from ingest.gsc_workbook import ReportType


@pytest.fixture
def gsc_export(make_workbook):
    return make_workbook({
        "Filtri": [
            ["Filtro", "Valore"],
            ["Tipo di ricerca", "Web"],
        ],
        "Query": [
            ["Query", "Clic (ultimi 28 giorni)", "Clic (28 giorni precedenti)",
             "Impressioni (ultimi 28 giorni)", "Impressioni (28 giorni precedenti)",
             "CTR (ultimi 28 giorni)", "CTR (28 giorni precedenti)",
             "Posizione (ultimi 28 giorni)", "Posizione (28 giorni precedenti)"],
            ["Sommario", 150, 100, 2500, 1800, "6%", "5,56%", 5.0, 5.5],
            ["scarpe running", 120, 100, 2000, 1800, "6%", "5,56%", 4.2, 5.1],
            ["scarpe trail", 30, 0, 500, 0, "6%", "0%", 8, None],
        ],
        "Dispositivi": [
            ["Dispositivo", "Clic", "Impressioni", "CTR", "Posizione"],
            ["MOBILE", 80, 1000, "8%", 5.5],
            ["DESKTOP", 60, 900, "6,67%", 4.1],
            ["TABLET", 0, 20, "0%", 9],
        ],
    })


class TestAnalyzeWorkbook:
    """Whole-export analysis."""

    def test_sections(self, gsc_export):
        report = asyncio.run(analyze_workbook(gsc_export))
        assert report.has_data
        assert report.filters == ["Tipo di ricerca: Web"]
        assert report.filters_sheet_found
        assert report.analyzed[ReportType.PAGES] is None
        assert report.analyzed[ReportType.COUNTRIES] is None
        assert report.analyzed[ReportType.SEARCH_APPEARANCE] is None

    def test_queries_summary(self, gsc_export):
        report = asyncio.run(analyze_workbook(gsc_export))
        queries = report.analyzed[ReportType.QUERIES]
        assert [i.item for i in queries.items] == ["scarpe running", "scarpe trail"]
        assert queries.summary_text == (
            "Clic totali (periodo corrente): 150. Impressioni totali: 2.500. "
            "Variazione clic vs periodo precedente: +50. Variazione impressioni: +700."
        )
        trail = queries.items[1]
        assert trail.diff_position is None
        assert trail.pct_change_clicks == float("inf")

    def test_devices_pie(self, gsc_export):
        report = asyncio.run(analyze_workbook(gsc_export))
        devices = report.analyzed[ReportType.DEVICES]
        assert [(s.name, s.value) for s in devices.pie_chart] == [("MOBILE", 80), ("DESKTOP", 60)]
        assert not devices.summary.has_previous_data

    def test_progress(self, gsc_export):
        calls = []
        asyncio.run(analyze_workbook(gsc_export, on_progress=lambda t, p: calls.append((t, p))))
        assert [t for t, _ in calls] == [
            ReportType.QUERIES, ReportType.PAGES, ReportType.COUNTRIES,
            ReportType.DEVICES, ReportType.SEARCH_APPEARANCE,
        ]
        assert calls[-1][1] == 100

    def test_export_without_report_sheets(self, make_workbook):
        report = asyncio.run(analyze_workbook(make_workbook({"Grafico": [["Data", "Clic"], ["2024-01-01", 3]]})))
        assert not report.has_data
        assert report.filters == []
        assert not report.filters_sheet_found


class TestExport:
    def test_section_rows(self, gsc_export):
        report = asyncio.run(analyze_workbook(gsc_export))
        headers, rows = section_to_rows(report.analyzed[ReportType.QUERIES], ReportType.QUERIES)
        assert headers == section_headers(ReportType.QUERIES)
        assert headers[0] == "Query"
        running = rows[0]
        assert running["Query"] == "scarpe running"
        assert running["% Clic"] == "20.0%"
        assert running["CTR Attuale"] == "6.00%"
        assert running["Diff. Pos."] == "0.9"
        assert running["Trend Clic"] == "up"
        assert running["Trend Pos."] == "up"
        assert rows[1]["Trend Clic"] == "up"
        assert rows[1]["% Clic"] == "+Inf%"
        assert rows[1]["Pos. Prec."] == "N/A"

    def test_write_report(self, gsc_export, tmp_path):
        report = asyncio.run(analyze_workbook(gsc_export))
        written = write_gsc_report(report, tmp_path / "gsc")
        names = sorted(p.name for p in written)
        assert names == ["gsc_summary.json", "report_gsc_devices.csv", "report_gsc_queries.csv"]

        csv_text = (tmp_path / "gsc" / "report_gsc_devices.csv").read_text(encoding="utf-8")
        assert csv_text.startswith("\ufeffDispositivo,Clic Attuali,Clic Prec.")

        with open(tmp_path / "gsc" / "gsc_summary.json", encoding="utf-8") as f:
            summary = json.load(f)
        assert summary["filters"] == ["Tipo di ricerca: Web"]
        assert set(summary["sections"]) == {"queries", "devices"}
        assert summary["sections"]["queries"]["total_clicks"] == 150
        assert summary["sections"]["devices"]["pie_chart"][0]["name"] == "MOBILE"
