"""
Google Search Console export analysis.

Reads an Excel/ODS export, parses every report sheet (one report at a time,
yielding to the event loop in between), runs the period diff analysis and
writes one CSV per section plus a JSON summary to the output directory.

A report whose sheet is missing stays None: GSC exports routinely omit
sheets, so that is not an error.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from analysis.diff import (
    GscSectionAnalysis,
    change_direction,
    format_ctr,
    format_ctr_diff,
    format_pct_change,
    format_position,
    item_display_name,
    analyze_section,
)
from export.csv_export import write_csv
from ingest.gsc_workbook import (
    DISPLAY_ORDER,
    GscSheetRow,
    ReportType,
    find_sheet,
    load_workbook,
    parse_sheet,
)

logger = logging.getLogger(__name__)

UNKNOWN_FILTER = "Filtro Sconosciuto"

ProgressCallback = Callable[[ReportType, float], None]


@dataclass
class GscReport:
    filters: list[str] = field(default_factory=list)
    filters_sheet_found: bool = False
    parsed: dict[ReportType, list[GscSheetRow]] = field(default_factory=dict)
    analyzed: dict[ReportType, Optional[GscSectionAnalysis]] = field(default_factory=dict)

    @property
    def has_data(self) -> bool:
        return any(a is not None and a.items for a in self.analyzed.values())


def describe_filters(rows: list[GscSheetRow]) -> list[str]:
    return [f"{r.filter_name or UNKNOWN_FILTER}: {r.filter_value or 'N/D'}" for r in rows]


async def analyze_workbook(data: bytes, on_progress: Optional[ProgressCallback] = None) -> GscReport:
    """
    Parse and analyze every report in the workbook. on_progress(report_type,
    percent) is called after each report.
    """
    workbook = load_workbook(data)
    report = GscReport()

    if find_sheet(list(workbook), ReportType.FILTERS):
        report.filters_sheet_found = True
        filter_rows = parse_sheet(workbook, ReportType.FILTERS)
        report.parsed[ReportType.FILTERS] = filter_rows
        report.filters = describe_filters(filter_rows)
    else:
        logger.info("No Filters sheet in the export")

    report_types = [t for t in DISPLAY_ORDER if t != ReportType.FILTERS]
    for n, report_type in enumerate(report_types, start=1):
        rows = parse_sheet(workbook, report_type)
        report.parsed[report_type] = rows
        report.analyzed[report_type] = analyze_section(rows, report_type)
        if on_progress:
            on_progress(report_type, min(100.0, n * 100 / len(report_types)))
        await asyncio.sleep(0)

    if report.has_data:
        logger.info(
            "GSC analysis complete: %s",
            ", ".join(t.value for t, a in report.analyzed.items() if a is not None),
        )
    else:
        logger.warning("No metric data found in the expected GSC sheets (Query, Pagine, ...)")
    return report


# ── Export ────────────────────────────────────────────────────────────────────

def section_headers(report_type: ReportType) -> list[str]:
    return [
        item_display_name(report_type), "Clic Attuali", "Clic Prec.", "Diff. Clic", "% Clic",
        "Impr. Attuali", "Impr. Prec.", "Diff. Impr.", "% Impr.",
        "CTR Attuale", "CTR Prec.", "Diff. CTR",
        "Pos. Attuale", "Pos. Prec.", "Diff. Pos.",
        "Trend Clic", "Trend Impr.", "Trend Pos.",
    ]


def section_to_rows(analysis: GscSectionAnalysis, report_type: ReportType) -> tuple[list[str], list[dict]]:
    headers = section_headers(report_type)
    rows = [
        {
            headers[0]:      i.item,
            "Clic Attuali":  i.clicks_current,
            "Clic Prec.":    i.clicks_previous,
            "Diff. Clic":    i.diff_clicks,
            "% Clic":        format_pct_change(i.pct_change_clicks),
            "Impr. Attuali": i.impressions_current,
            "Impr. Prec.":   i.impressions_previous,
            "Diff. Impr.":   i.diff_impressions,
            "% Impr.":       format_pct_change(i.pct_change_impressions),
            "CTR Attuale":   format_ctr(i.ctr_current),
            "CTR Prec.":     format_ctr(i.ctr_previous),
            "Diff. CTR":     format_ctr_diff(i.diff_ctr),
            "Pos. Attuale":  format_position(i.position_current),
            "Pos. Prec.":    format_position(i.position_previous),
            "Diff. Pos.":    format_position(i.diff_position),
            "Trend Clic":    change_direction(i.diff_clicks),
            "Trend Impr.":   change_direction(i.diff_impressions),
            "Trend Pos.":    change_direction(i.diff_position),
        }
        for i in analysis.items
    ]
    return headers, rows


def write_gsc_report(report: GscReport, out_dir: Path) -> list[Path]:
    """One CSV per analyzed section plus gsc_summary.json. Returns written paths."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []

    sections = {}
    for report_type, analysis in report.analyzed.items():
        if analysis is None:
            continue
        headers, rows = section_to_rows(analysis, report_type)
        written.append(write_csv(out_dir / f"report_gsc_{report_type.value}.csv", headers, rows))
        sections[report_type.value] = {
            "summary_text": analysis.summary_text,
            "total_clicks": analysis.summary.total_clicks,
            "total_impressions": analysis.summary.total_impressions,
            "has_previous_data": analysis.summary.has_previous_data,
            "clicks_delta": analysis.summary.clicks_delta,
            "impressions_delta": analysis.summary.impressions_delta,
            "top_items_chart": {
                "label":  analysis.top_items_chart.label,
                "labels": analysis.top_items_chart.labels,
                "values": analysis.top_items_chart.values,
                "colors": analysis.top_items_chart.colors,
            },
            "pie_chart": [
                {"name": s.name, "value": s.value, "fill": s.fill} for s in analysis.pie_chart
            ],
        }

    payload = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "filters": report.filters,
        "filters_sheet_found": report.filters_sheet_found,
        "sections": sections,
    }
    summary_path = out_dir / "gsc_summary.json"
    with open(summary_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
    written.append(summary_path)

    logger.info("GSC report written to %s (%d files)", out_dir, len(written))
    return written
