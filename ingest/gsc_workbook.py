"""
Google Search Console Excel/ODS export parser.

A GSC export is a workbook with one sheet per report (Queries, Pages,
Countries, Devices, Search Appearance, Filters). Sheet names and column
headers vary with the UI language (English / Italian) and with the selected
comparison period ("last 28 days" vs "previous 28 days", "last 3 months"...).

This module finds each report's sheet, locates its header row, maps the header
variants onto canonical fields and coerces the numeric cells:

  clicks / impressions  -> int, 0 when empty, "-" or unparsable
  ctr                   -> float fraction in [0, 1]
  position              -> float or None (never 0)
"""

import io
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import pandas as pd

logger = logging.getLogger(__name__)


class ReportType(str, Enum):
    FILTERS = "filters"
    QUERIES = "queries"
    PAGES = "pages"
    COUNTRIES = "countries"
    DEVICES = "devices"
    SEARCH_APPEARANCE = "searchAppearance"


SHEET_ALIASES: dict[ReportType, list[str]] = {
    ReportType.FILTERS:           ["Filters", "Filtri", "Panoramica"],
    ReportType.QUERIES:           ["Queries", "Query", "Query di ricerca", "Principali query"],
    ReportType.PAGES:             ["Pages", "Pagine", "Pagine principali", "Principali pagine"],
    ReportType.COUNTRIES:         ["Countries", "Paesi"],
    ReportType.DEVICES:           ["Devices", "Dispositivi"],
    ReportType.SEARCH_APPEARANCE: ["Search Appearance", "Aspetto nella ricerca", "Search appearances",
                                   "Tipi di risultati multimediali", "Aspetto della ricerca"],
}

DISPLAY_ORDER = [
    ReportType.FILTERS,
    ReportType.QUERIES,
    ReportType.PAGES,
    ReportType.COUNTRIES,
    ReportType.DEVICES,
    ReportType.SEARCH_APPEARANCE,
]

HEADER_SCAN_ROWS = 5
HEADER_KEYWORDS = ("clic", "impression", "query", "page", "date", "filter")

SUMMARY_ROW_LABEL = "sommario"

# Canonical GSC fields
ITEM = "item"
CLICKS_CURRENT = "clicks_current"
CLICKS_PREVIOUS = "clicks_previous"
IMPRESSIONS_CURRENT = "impressions_current"
IMPRESSIONS_PREVIOUS = "impressions_previous"
CTR_CURRENT = "ctr_current"
CTR_PREVIOUS = "ctr_previous"
POSITION_CURRENT = "position_current"
POSITION_PREVIOUS = "position_previous"
FILTER_NAME = "filter_name"
FILTER_VALUE = "filter_value"

_COUNT_FIELDS = {CLICKS_CURRENT, CLICKS_PREVIOUS, IMPRESSIONS_CURRENT, IMPRESSIONS_PREVIOUS}
_CTR_FIELDS = {CTR_CURRENT, CTR_PREVIOUS}
_POSITION_FIELDS = {POSITION_CURRENT, POSITION_PREVIOUS}
_LABEL_FIELDS = {ITEM, FILTER_NAME, FILTER_VALUE}


def _build_header_map() -> dict[str, str]:
    aliases: list[tuple[str, list[str]]] = [
        (ITEM, [
            "top queries", "top query", "query", "principali query", "query di ricerca",
            "top pages", "pagina", "pagine principali", "principali pagine",
            "country", "paese", "paesi",
            "device", "dispositivo", "dispositivi",
            "search appearance", "aspetto nella ricerca", "search appearances",
            "tipi di risultati multimediali", "aspetto della ricerca",
            "date", "data",
        ]),
        (CLICKS_CURRENT, [
            "clicks", "clic", "clic attuali", "clics attuali",
            "clicks last 28 days", "clic ultimi 28 giorni", "clic (ultimi 28 giorni)",
            "last 3 months clicks", "clic ultimi 3 mesi", "clic (ultimi 3 mesi)",
        ]),
        (CLICKS_PREVIOUS, [
            "clic prec.", "clic precedenti", "clics prec.",
            "clicks previous 28 days", "clic 28 giorni precedenti", "clic (28 giorni precedenti)",
            "previous 3 months clicks", "clic 3 mesi precedenti", "clic (3 mesi precedenti)",
        ]),
        (IMPRESSIONS_CURRENT, [
            "impressions", "impressioni", "impressioni attuali",
            "impressions last 28 days", "impressioni ultimi 28 giorni", "impressioni (ultimi 28 giorni)",
            "last 3 months impressions", "impressioni ultimi 3 mesi", "impressioni (ultimi 3 mesi)",
        ]),
        (IMPRESSIONS_PREVIOUS, [
            "impressioni prec.", "impressioni precedenti",
            "impressions previous 28 days", "impressioni 28 giorni precedenti",
            "impressioni (28 giorni precedenti)",
            "previous 3 months impressions", "impressioni 3 mesi precedenti",
            "impressioni (3 mesi precedenti)",
        ]),
        (CTR_CURRENT, [
            "ctr", "ctr attuale",
            "ctr last 28 days", "ctr ultimi 28 giorni", "ctr (ultimi 28 giorni)",
            "last 3 months ctr", "ctr ultimi 3 mesi", "ctr (ultimi 3 mesi)",
        ]),
        (CTR_PREVIOUS, [
            "ctr prec.", "ctr precedente",
            "ctr previous 28 days", "ctr 28 giorni precedenti", "ctr (28 giorni precedenti)",
            "previous 3 months ctr", "ctr 3 mesi precedenti", "ctr (3 mesi precedenti)",
        ]),
        (POSITION_CURRENT, [
            "position", "posizione", "posizione attuale", "pos. attuale",
            "position last 28 days", "posizione ultimi 28 giorni", "posizione (ultimi 28 giorni)",
            "last 3 months position", "posizione ultimi 3 mesi", "posizione (ultimi 3 mesi)",
        ]),
        (POSITION_PREVIOUS, [
            "posizione prec.", "posizione precedente", "pos. prec.",
            "position previous 28 days", "posizione 28 giorni precedenti",
            "posizione (28 giorni precedenti)",
            "previous 3 months position", "posizione 3 mesi precedenti",
            "posizione (3 mesi precedenti)",
        ]),
        (FILTER_NAME, ["filter", "filtro"]),
        (FILTER_VALUE, ["value", "valore"]),
    ]
    return {alias: canonical for canonical, names in aliases for alias in names}


HEADER_MAP: dict[str, str] = _build_header_map()


@dataclass
class GscSheetRow:
    item: str = ""
    clicks_current: int = 0
    clicks_previous: int = 0
    impressions_current: int = 0
    impressions_previous: int = 0
    ctr_current: float = 0.0
    ctr_previous: float = 0.0
    position_current: Optional[float] = None
    position_previous: Optional[float] = None
    filter_name: str = ""
    filter_value: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


Workbook = dict[str, list[list[Any]]]


# ── Workbook loading ──────────────────────────────────────────────────────────

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return value is pd.NaT


def load_workbook(data: bytes) -> Workbook:
    """
    Read every sheet of an .xlsx/.ods export into lists of raw cell values.
    Empty cells become None; fully blank rows are dropped.
    """
    frames = pd.read_excel(io.BytesIO(data), sheet_name=None, header=None, dtype=object)
    workbook: Workbook = {}
    for name, frame in frames.items():
        rows = []
        for raw in frame.itertuples(index=False, name=None):
            row = [None if _is_blank(v) else v for v in raw]
            if any(v is not None for v in row):
                rows.append(row)
        workbook[str(name)] = rows
    logger.info("Loaded workbook with sheets: %s", ", ".join(workbook) or "(none)")
    return workbook


def find_sheet(sheet_names: list[str], report_type: ReportType) -> Optional[str]:
    """First workbook sheet whose trimmed, lowercased name is a known alias."""
    aliases = {a.lower().strip() for a in SHEET_ALIASES[report_type]}
    for name in sheet_names:
        if name.lower().strip() in aliases:
            return name
    return None


# ── Header handling ───────────────────────────────────────────────────────────

def find_header_row(rows: list[list[Any]]) -> int:
    """Index of the header row within the first rows; 0 when none qualifies."""
    for i, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        for cell in row:
            if isinstance(cell, str) and any(k in cell.lower() for k in HEADER_KEYWORDS):
                return i
    return 0


def map_headers(raw_headers: list[Any], report_type: ReportType) -> list[str]:
    keys = []
    for idx, raw in enumerate(raw_headers):
        header = _js_string(raw).strip().lower()
        mapped = HEADER_MAP.get(header)
        if idx == 0 and report_type != ReportType.FILTERS and not mapped:
            keys.append(ITEM)
            continue
        if mapped:
            keys.append(mapped)
            continue
        slug = re.sub(r"[^\w_]", "", re.sub(r"\s+", "_", header))
        keys.append(slug or f"column_{idx}")
    return keys


# ── Cell coercion ─────────────────────────────────────────────────────────────

_FLOAT_PREFIX = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _js_string(value: Any) -> str:
    """Render a cell the way the export shows it: 12.0 -> '12', None -> ''."""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def _parse_float(text: str) -> Optional[float]:
    match = _FLOAT_PREFIX.match(text)
    if not match:
        return None
    return float(match.group(0))


def coerce_count(value: Any) -> int:
    text = _js_string(value).strip()
    if text in ("", "-"):
        return 0
    digits = re.sub(r"\D", "", text)
    return int(digits) if digits else 0


def coerce_ctr(value: Any) -> float:
    """
    Text cells ("5,2%", "5.2") are always percentages. Numeric cells are
    fractions unless they fall in (1, 100], so a numeric 1.0 stays 100%
    while the text "1" is 1%.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        if math.isnan(number):
            return 0.0
        return number / 100 if 1 < number <= 100 else number
    if isinstance(value, str):
        number = _parse_float(value.replace("%", "", 1).replace(",", ".", 1))
        return number / 100 if number is not None else 0.0
    return 0.0


def coerce_position(value: Any) -> Optional[float]:
    text = _js_string(value).strip()
    if text in ("", "-"):
        return None
    number = _parse_float(text.replace(",", ".", 1))
    # 0 is not a real SERP position
    if not number:
        return None
    return number


def _coerce(key: str, value: Any) -> Any:
    if key in _COUNT_FIELDS:
        return coerce_count(value)
    if key in _CTR_FIELDS:
        return coerce_ctr(value)
    if key in _POSITION_FIELDS:
        return coerce_position(value)
    if key in _LABEL_FIELDS:
        return _js_string(value).strip()
    return value


# ── Sheet parsing ─────────────────────────────────────────────────────────────

def _to_row(entry: dict[str, Any]) -> GscSheetRow:
    # a sheet column slugged to "extra" stays inside extra
    known = {
        k: entry.pop(k) for k in list(entry)
        if k in GscSheetRow.__dataclass_fields__ and k != "extra"
    }
    return GscSheetRow(**known, extra=entry)


def parse_rows(rows: list[list[Any]], report_type: ReportType) -> list[GscSheetRow]:
    """Parse the raw rows of one sheet. Summary ("Sommario") rows are dropped."""
    if not rows:
        return []

    header_index = find_header_row(rows)
    keys = map_headers(rows[header_index], report_type)
    primary_key = FILTER_NAME if report_type == ReportType.FILTERS else ITEM

    parsed = []
    for row in rows[header_index + 1:]:
        entry: dict[str, Any] = {}
        for index, key in enumerate(keys):
            value = row[index] if index < len(row) else None
            entry[key] = _coerce(key, value)

        first = row[0] if row else None
        second = row[1] if len(row) > 1 else None
        if report_type != ReportType.FILTERS:
            if not entry.get(ITEM) and first is not None:
                entry[ITEM] = _js_string(first).strip()
        else:
            if not entry.get(FILTER_NAME) and first is not None:
                entry[FILTER_NAME] = _js_string(first).strip()
            if not entry.get(FILTER_VALUE) and second is not None:
                entry[FILTER_VALUE] = _js_string(second).strip()

        label = str(entry.get(primary_key) or "").strip()
        if not label:
            continue
        if report_type != ReportType.FILTERS and label.lower() == SUMMARY_ROW_LABEL:
            continue
        parsed.append(_to_row(entry))

    return parsed


def parse_sheet(workbook: Workbook, report_type: ReportType) -> list[GscSheetRow]:
    """
    Locate the sheet for `report_type` and parse it. A missing or empty sheet
    yields [] since GSC exports commonly omit reports.
    """
    sheet_name = find_sheet(list(workbook), report_type)
    if sheet_name is None:
        logger.warning(
            "Sheet for %s not found. Expected one of: %s",
            report_type.value, ", ".join(SHEET_ALIASES[report_type]),
        )
        return []

    rows = workbook[sheet_name]
    if not rows:
        logger.warning("Sheet '%s' is empty", sheet_name)
        return []

    parsed = parse_rows(rows, report_type)
    logger.debug("Sheet '%s' (%s): %d rows", sheet_name, report_type.value, len(parsed))
    return parsed
