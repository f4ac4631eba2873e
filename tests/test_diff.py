"""Period-over-period analysis tests."""

import math

import pytest

from analysis.diff import (
    CHART_COLORS,
    analyze_item,
    analyze_section,
    change_direction,
    device_pie,
    format_ctr,
    format_ctr_diff,
    format_pct_change,
    format_position,
    pct_change,
    position_diff,
    summary_text,
    summarize,
    truncate_label,
)
from ingest.gsc_workbook import GscSheetRow, ReportType


def _row(item, clicks=0, clicks_prev=0, impr=0, impr_prev=0, ctr=0.0, ctr_prev=0.0, pos=None, pos_prev=None):
    return GscSheetRow(
        item=item,
        clicks_current=clicks,
        clicks_previous=clicks_prev,
        impressions_current=impr,
        impressions_previous=impr_prev,
        ctr_current=ctr,
        ctr_previous=ctr_prev,
        position_current=pos,
        position_previous=pos_prev,
    )


class TestPctChange:
    def test_growth(self):
        assert pct_change(15, 10) == pytest.approx(0.5)

    def test_drop(self):
        assert pct_change(5, 10) == pytest.approx(-0.5)

    def test_from_zero_is_infinite(self):
        assert math.isinf(pct_change(10, 0))

    def test_zero_to_zero(self):
        assert pct_change(0, 0) == 0


class TestPositionDiff:
    """Positive diff means the item moved up the SERP."""

    def test_improvement_is_positive(self):
        assert position_diff(3.0, 5.0) == pytest.approx(2.0)

    def test_drop_is_negative(self):
        assert position_diff(8.0, 5.0) == pytest.approx(-3.0)

    def test_missing(self):
        assert position_diff(None, 5.0) is None
        assert position_diff(3.0, None) is None


class TestAnalyzeItem:
    def test_fields(self):
        item = analyze_item(_row("divano", 12, 10, 200, 100, 0.06, 0.1, 3.0, 4.5), ReportType.QUERIES)
        assert item.diff_clicks == 2
        assert item.pct_change_clicks == pytest.approx(0.2)
        assert item.diff_impressions == 100
        assert item.pct_change_impressions == pytest.approx(1.0)
        assert item.diff_ctr == pytest.approx(-0.04)
        assert item.diff_position == pytest.approx(1.5)

    def test_filter_label(self):
        row = GscSheetRow(filter_name="Tipo di ricerca", filter_value="Web")
        assert analyze_item(row, ReportType.FILTERS).item == "Tipo di ricerca: Web"

    def test_missing_label(self):
        assert analyze_item(_row(""), ReportType.PAGES).item == "N/D"


class TestSummary:
    def test_without_previous_period(self):
        items = [analyze_item(_row("a", 1234, impr=1234567), ReportType.QUERIES)]
        summary = summarize(items)
        assert not summary.has_previous_data
        assert summary.clicks_delta is None
        assert summary_text(summary) == "Clic totali (periodo corrente): 1.234. Impressioni totali: 1.234.567."

    def test_with_previous_period(self):
        items = [
            analyze_item(_row("a", 100, 120, 1000, 900), ReportType.QUERIES),
            analyze_item(_row("b", 10, 0, 100, 0), ReportType.QUERIES),
        ]
        summary = summarize(items)
        assert summary.has_previous_data
        assert summary.clicks_delta == -10
        assert summary.impressions_delta == 200
        assert summary_text(summary) == (
            "Clic totali (periodo corrente): 110. Impressioni totali: 1.100. "
            "Variazione clic vs periodo precedente: -10. Variazione impressioni: +200."
        )

    def test_previous_position_alone_counts(self):
        items = [analyze_item(_row("a", 5, pos=3.0, pos_prev=4.0), ReportType.QUERIES)]
        assert summarize(items).has_previous_data


class TestCharts:
    def test_top_items_chart(self):
        rows = [_row(f"query {n}", clicks=n) for n in range(7)]
        rows.append(_row("una query molto lunga che supera i trenta caratteri", clicks=50))
        analysis = analyze_section(rows, ReportType.QUERIES)
        chart = analysis.top_items_chart
        assert chart.values == [50, 6, 5, 4, 3]
        assert chart.labels[0] == "una query molto lunga che supe..."
        assert chart.colors == CHART_COLORS[:5]
        assert chart.label == "Clic (Corrente) - Query"

    def test_top_items_skip_zero_clicks(self):
        analysis = analyze_section([_row("a", 0), _row("b", 2)], ReportType.PAGES)
        assert analysis.top_items_chart.labels == ["b"]

    def test_truncate_label(self):
        assert truncate_label("breve") == "breve"
        assert truncate_label("") == "N/D"

    def test_device_pie(self):
        items = [
            analyze_item(_row("MOBILE", 50), ReportType.DEVICES),
            analyze_item(_row("DESKTOP", 80), ReportType.DEVICES),
            analyze_item(_row("TABLET", 0), ReportType.DEVICES),
        ]
        slices = device_pie(items)
        assert [(s.name, s.value) for s in slices] == [("DESKTOP", 80), ("MOBILE", 50)]
        assert slices[0].fill == CHART_COLORS[1]
        assert slices[1].fill == CHART_COLORS[0]

    def test_pie_only_for_devices(self):
        assert analyze_section([_row("a", 3)], ReportType.QUERIES).pie_chart == []
        assert analyze_section([_row("MOBILE", 3)], ReportType.DEVICES).pie_chart[0].value == 3

    def test_empty_section(self):
        assert analyze_section([], ReportType.QUERIES) is None


class TestFormatting:
    @pytest.mark.parametrize("value, expected", [
        (0.125, "12.5%"),
        (-0.03, "-3.0%"),
        (0.0, "0.0%"),
        (math.inf, "+Inf%"),
        (float("nan"), "N/A"),
    ])
    def test_pct_change(self, value, expected):
        assert format_pct_change(value) == expected

    def test_ctr(self):
        assert format_ctr(0.0523) == "5.23%"
        assert format_ctr_diff(-0.01) == "-1.00pp"

    def test_position(self):
        assert format_position(3.14) == "3.1"
        assert format_position(None) == "N/A"

    @pytest.mark.parametrize("value, inverted, expected", [
        (2.0, False, "up"),
        (-1.0, False, "down"),
        (0.0, False, "flat"),
        (None, False, "flat"),
        (1.0, True, "down"),
    ])
    def test_change_direction(self, value, inverted, expected):
        assert change_direction(value, inverted) == expected
