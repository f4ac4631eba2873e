"""
Full comparison report as a six-sheet Excel workbook:

  Panoramica Distribuzione      keyword counts per category
  Riepilogo Top10 Comuni        best common keywords for the primary site / competitors
  Riepilogo Top10 Opportunità   competitor-only keywords by volume
  Dettaglio Keyword Comuni      one row per common keyword
  Dettaglio Punti di Forza      one row per primary-only keyword
  Dettaglio Opportunità         one row per competitor-only keyword
"""

import logging
from pathlib import Path
from typing import Any

import pandas as pd

from analysis.compare import (
    ComparisonResult,
    Status,
    filter_status,
    summarize_distribution,
)

logger = logging.getLogger(__name__)

TOP_N = 10

SHEET_OVERVIEW = "Panoramica Distribuzione"
SHEET_TOP_COMMON = "Riepilogo Top10 Comuni"
SHEET_TOP_OPPORTUNITIES = "Riepilogo Top10 Opportunità"

DETAIL_SHEETS = [
    (Status.COMMON,          "Dettaglio Keyword Comuni", "Nessuna Keyword Comune Trovata"),
    (Status.PRIMARY_ONLY,    "Dettaglio Punti di Forza", "Nessun Punto di Forza Trovato"),
    (Status.COMPETITOR_ONLY, "Dettaglio Opportunità",    "Nessuna Opportunità Trovata"),
]


def _is_top10(pos: Any) -> bool:
    return isinstance(pos, int) and pos <= 10


# ── Sheet builders (lists of rows) ────────────────────────────────────────────

def overview_rows(results: list[ComparisonResult]) -> list[list]:
    counts = summarize_distribution(results)
    return [
        ["Categoria", "Numero Keyword"],
        ["Keyword Comuni", counts["common"]],
        ["Punti di Forza (Solo Mio Sito)", counts["primaryOnly"]],
        ["Opportunità (Solo Competitor)", counts["competitorOnly"]],
        ["Totale Keyword Uniche Analizzate", counts["totalUnique"]],
    ]


def top_common_rows(results: list[ComparisonResult], competitor_names: list[str], primary_name: str) -> list[list]:
    common = filter_status(results, Status.COMMON)

    mine = sorted(
        (r for r in common if _is_top10(r.primary_site.pos)),
        key=lambda r: r.primary_site.pos,
    )[:TOP_N]

    competitor_kws: dict[str, None] = {}
    for r in common:
        if any(c.name in competitor_names and _is_top10(c.pos) for c in r.competitors):
            competitor_kws.setdefault(r.keyword, None)
    competitor_top = list(competitor_kws)[:TOP_N]

    rows = [
        ["Analisi Top 10 Keyword Comuni"],
        [f"{primary_name} - Top 10 KW Comuni in Top 10"],
        ["Keyword", "Posizione"],
        *[[r.keyword, r.primary_site.pos] for r in mine],
        ["Nessuna"] if not mine else [],
        [f"Competitors - Prime {len(competitor_top)} KW Comuni in Top 10 (da almeno un competitor)"],
        ["Keyword"],
        *[[kw] for kw in competitor_top],
        ["Nessuna"] if not competitor_top else [],
    ]
    return [row for row in rows if row]


def top_opportunity_rows(results: list[ComparisonResult]) -> list[list]:
    top = sorted(
        (r for r in filter_status(results, Status.COMPETITOR_ONLY)
         if isinstance(r.volume, int) and r.volume > 0),
        key=lambda r: r.volume,
        reverse=True,
    )[:TOP_N]
    rows = [
        [f"Top {len(top)} Opportunità per Volume (Keyword Gap)"],
        ["Keyword", "Volume"],
        *[[r.keyword, r.volume] for r in top],
        ["Nessuna"] if not top else [],
    ]
    return [row for row in rows if row]


def detail_records(
    results: list[ComparisonResult],
    status: Status,
    competitor_names: list[str],
    primary_name: str,
) -> list[dict]:
    records = []
    for r in results:
        row = {
            "Keyword":     r.keyword,
            "Volume":      r.volume,
            "Difficoltà":  r.difficulty,
            "Opportunity": r.opportunity,
            "Intento":     r.intent,
        }
        if status != Status.COMPETITOR_ONLY:
            row[f"{primary_name} Pos."] = r.primary_site.pos
            row[f"{primary_name} URL"]  = r.primary_site.url
        if status != Status.PRIMARY_ONLY:
            for name in competitor_names:
                info = r.competitor(name)
                row[f"{name} Pos."] = info.pos if info else "N/P"
                row[f"{name} URL"]  = info.url if info else "N/A"
        records.append(row)
    return records


# ── Writer ────────────────────────────────────────────────────────────────────

def _write_rows(writer: pd.ExcelWriter, rows: list[list], sheet_name: str) -> None:
    pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)


def write_full_report(
    path: Path,
    results: list[ComparisonResult],
    competitor_names: list[str],
    primary_name: str = "Mio Sito",
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        _write_rows(writer, overview_rows(results), SHEET_OVERVIEW)
        _write_rows(writer, top_common_rows(results, competitor_names, primary_name), SHEET_TOP_COMMON)
        _write_rows(writer, top_opportunity_rows(results), SHEET_TOP_OPPORTUNITIES)

        for status, sheet_name, placeholder in DETAIL_SHEETS:
            subset = filter_status(results, status)
            if subset:
                records = detail_records(subset, status, competitor_names, primary_name)
                pd.DataFrame(records).to_excel(writer, sheet_name=sheet_name, index=False)
            else:
                _write_rows(writer, [[placeholder]], sheet_name)

    logger.info("Full comparison report written to %s", path)
    return path
