"""
Period diff engine: compares the current and previous period of a GSC report,
computes per-item deltas and % changes and builds the section summary plus
chart-ready projections.

Sign conventions:
  diff_clicks / diff_impressions / diff_ctr  = current - previous
  diff_position                              = previous - current
A positive diff_position is an improvement (the page moved up the SERP).
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from ingest.gsc_workbook import GscSheetRow, ReportType

logger = logging.getLogger(__name__)

CHART_COLORS = [
    "hsl(var(--chart-1))",
    "hsl(var(--chart-2))",
    "hsl(var(--chart-3))",
    "hsl(var(--chart-4))",
    "hsl(var(--chart-5))",
]
TOP_N_FOR_CHART = 5
CHART_LABEL_MAX = 30
MISSING_LABEL = "N/D"

ITEM_DISPLAY_NAMES = {
    ReportType.QUERIES:           "Query",
    ReportType.PAGES:             "Pagina",
    ReportType.COUNTRIES:         "Paese",
    ReportType.DEVICES:           "Dispositivo",
    ReportType.SEARCH_APPEARANCE: "Aspetto nella Ricerca",
}


@dataclass
class GscAnalyzedItem:
    item: str
    clicks_current: int
    clicks_previous: int
    diff_clicks: int
    pct_change_clicks: float
    impressions_current: int
    impressions_previous: int
    diff_impressions: int
    pct_change_impressions: float
    ctr_current: float
    ctr_previous: float
    diff_ctr: float
    position_current: Optional[float]
    position_previous: Optional[float]
    diff_position: Optional[float]


@dataclass
class SectionSummary:
    total_clicks: int
    total_impressions: int
    has_previous_data: bool
    clicks_delta: Optional[int] = None       # only set when has_previous_data
    impressions_delta: Optional[int] = None


@dataclass
class ChartData:
    labels: list[str]
    values: list[int]
    colors: list[str]
    label: str


@dataclass
class PieSlice:
    name: str
    value: int
    fill: str


@dataclass
class GscSectionAnalysis:
    report_type: ReportType
    summary: SectionSummary
    items: list[GscAnalyzedItem]
    top_items_chart: ChartData
    pie_chart: list[PieSlice] = field(default_factory=list)

    @property
    def summary_text(self) -> str:
        return summary_text(self.summary)


def item_display_name(report_type: ReportType) -> str:
    return ITEM_DISPLAY_NAMES.get(report_type, "Elemento")


# ── Per-item math ─────────────────────────────────────────────────────────────

def pct_change(current: float, previous: float) -> float:
    """
    Relative change as a fraction. previous == 0 gives inf when current > 0
    and 0 otherwise.
    """
    if previous != 0:
        return (current - previous) / previous
    return math.inf if current > 0 else 0.0


def position_diff(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None:
        return None
    return previous - current


def _item_label(row: GscSheetRow, report_type: ReportType) -> str:
    if report_type == ReportType.FILTERS:
        return f"{row.filter_name}: {row.filter_value}"
    return row.item or MISSING_LABEL


def analyze_item(row: GscSheetRow, report_type: ReportType) -> GscAnalyzedItem:
    clicks_cur, clicks_prev = row.clicks_current or 0, row.clicks_previous or 0
    impr_cur, impr_prev     = row.impressions_current or 0, row.impressions_previous or 0
    ctr_cur, ctr_prev       = row.ctr_current or 0.0, row.ctr_previous or 0.0

    return GscAnalyzedItem(
        item=_item_label(row, report_type),
        clicks_current=clicks_cur,
        clicks_previous=clicks_prev,
        diff_clicks=clicks_cur - clicks_prev,
        pct_change_clicks=pct_change(clicks_cur, clicks_prev),
        impressions_current=impr_cur,
        impressions_previous=impr_prev,
        diff_impressions=impr_cur - impr_prev,
        pct_change_impressions=pct_change(impr_cur, impr_prev),
        ctr_current=ctr_cur,
        ctr_previous=ctr_prev,
        diff_ctr=ctr_cur - ctr_prev,
        position_current=row.position_current,
        position_previous=row.position_previous,
        diff_position=position_diff(row.position_current, row.position_previous),
    )


# ── Summary ───────────────────────────────────────────────────────────────────

def _has_previous(item: GscAnalyzedItem) -> bool:
    return (
        item.clicks_previous > 0
        or item.impressions_previous > 0
        or item.ctr_previous > 0
        or item.position_previous is not None
    )


def summarize(items: list[GscAnalyzedItem]) -> SectionSummary:
    total_clicks      = sum(i.clicks_current for i in items)
    total_impressions = sum(i.impressions_current for i in items)
    has_previous      = any(_has_previous(i) for i in items)

    summary = SectionSummary(total_clicks, total_impressions, has_previous)
    if has_previous:
        summary.clicks_delta      = total_clicks - sum(i.clicks_previous for i in items)
        summary.impressions_delta = total_impressions - sum(i.impressions_previous for i in items)
    return summary


def _fmt_int(value: int) -> str:
    # it-IT grouping
    return f"{value:,}".replace(",", ".")


def _fmt_signed(value: int) -> str:
    return ("+" if value >= 0 else "") + _fmt_int(value)


def summary_text(summary: SectionSummary) -> str:
    text = (
        f"Clic totali (periodo corrente): {_fmt_int(summary.total_clicks)}. "
        f"Impressioni totali: {_fmt_int(summary.total_impressions)}."
    )
    if summary.has_previous_data:
        text += f" Variazione clic vs periodo precedente: {_fmt_signed(summary.clicks_delta)}."
        text += f" Variazione impressioni: {_fmt_signed(summary.impressions_delta)}."
    return text


# ── Chart projections ─────────────────────────────────────────────────────────

def truncate_label(label: str, max_len: int = CHART_LABEL_MAX) -> str:
    label = label or MISSING_LABEL
    return label[:max_len] + ("..." if len(label) > max_len else "")


def top_items_chart(items: list[GscAnalyzedItem], report_type: ReportType) -> ChartData:
    """Top items by current clicks; unlabelled and zero-click items are skipped."""
    candidates = [
        i for i in items
        if i.item and i.item != MISSING_LABEL and i.clicks_current > 0
    ]
    # stable sort keeps file order among ties
    top = sorted(candidates, key=lambda i: i.clicks_current, reverse=True)[:TOP_N_FOR_CHART]

    return ChartData(
        labels=[truncate_label(i.item) for i in top],
        values=[i.clicks_current for i in top],
        colors=[CHART_COLORS[n % len(CHART_COLORS)] for n in range(len(top))],
        label=f"Clic (Corrente) - {item_display_name(report_type)}",
    )


def device_pie(items: list[GscAnalyzedItem]) -> list[PieSlice]:
    """
    Current clicks aggregated per device. Colors follow first-seen order and
    are kept when slices are re-sorted by value.
    """
    totals: dict[str, int] = {}
    for item in items:
        name = item.item or "Sconosciuto"
        totals[name] = totals.get(name, 0) + item.clicks_current

    slices = [
        PieSlice(name, value, CHART_COLORS[n % len(CHART_COLORS)])
        for n, (name, value) in enumerate((k, v) for k, v in totals.items() if v > 0)
    ]
    return sorted(slices, key=lambda s: s.value, reverse=True)


# ── Section analysis ──────────────────────────────────────────────────────────

def analyze_section(rows: list[GscSheetRow], report_type: ReportType) -> Optional[GscSectionAnalysis]:
    """Full analysis of one report; None when the sheet produced no rows."""
    if not rows:
        return None

    items = [analyze_item(r, report_type) for r in rows]
    analysis = GscSectionAnalysis(
        report_type=report_type,
        summary=summarize(items),
        items=items,
        top_items_chart=top_items_chart(items, report_type),
    )
    if report_type == ReportType.DEVICES:
        analysis.pie_chart = device_pie(items)

    logger.debug(
        "Analyzed %s: %d items, %d clicks",
        report_type.value, len(items), analysis.summary.total_clicks,
    )
    return analysis


# ── Display helpers ───────────────────────────────────────────────────────────

def change_direction(value: Optional[float], inverted: bool = False) -> str:
    """
    "up" / "down" / "flat" for a delta. diff_position is already
    previous - current, so it is passed with inverted=False as well.
    """
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "flat"
    if inverted:
        value = -value
    if value > 0:
        return "up"
    if value < 0:
        return "down"
    return "flat"


def format_pct_change(value: float) -> str:
    if math.isinf(value):
        return "+Inf%" if value > 0 else "N/A"
    if math.isnan(value):
        return "N/A"
    return f"{value * 100:.1f}%"


def format_ctr(value: float) -> str:
    return f"{value * 100:.2f}%"


def format_ctr_diff(value: float) -> str:
    return f"{value * 100:.2f}pp"


def format_position(value: Optional[float]) -> str:
    return f"{value:.1f}" if value is not None else "N/A"
