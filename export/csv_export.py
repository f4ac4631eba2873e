"""
CSV export: comma-delimited, CRLF line endings, UTF-8 with BOM so that Excel
opens accented Italian headers correctly.

Rows are dicts; each header picks the row key that matches it ignoring case
and whitespace. A header starting with "7C_" also matches the key without
that prefix.
"""

import logging
import re
from pathlib import Path
from typing import Any, Optional

from analysis.compare import ComparisonResult
from ingest.delimited import BOM

logger = logging.getLogger(__name__)

LINE_END = "\r\n"
PREFIX_7C = "7C_"


def escape_csv_field(value: Any) -> str:
    if value is None:
        return ""
    text = str(value)
    if "," in text or "\n" in text or '"' in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text.lower())


def _match_key(row: dict, header: str) -> Optional[str]:
    target = _squash(header)
    stripped = _squash(header[len(PREFIX_7C):]) if header.startswith(PREFIX_7C) else None
    for key in row:
        squashed = _squash(str(key))
        if squashed == target or (stripped is not None and squashed == stripped):
            return key
    return None


def build_csv(headers: list[str], rows: list[dict]) -> str:
    """Full CSV document (BOM included) as a string."""
    lines = [",".join(escape_csv_field(h) for h in headers)]
    for row in rows:
        cells = []
        for header in headers:
            key = _match_key(row, header)
            cells.append(escape_csv_field(row[key] if key is not None else ""))
        lines.append(",".join(cells))
    return BOM + LINE_END.join(lines) + LINE_END


def write_csv(path: Path, headers: list[str], rows: list[dict]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # newline="" keeps the CRLF endings untouched on every platform
    with path.open("w", encoding="utf-8", newline="") as fh:
        fh.write(build_csv(headers, rows))
    logger.info("CSV written to %s (%d rows)", path, len(rows))
    return path


# ── Comparison rows ───────────────────────────────────────────────────────────

def comparison_headers(competitor_names: list[str]) -> list[str]:
    headers = [
        "Keyword", "Stato", "Pos", "URL",
        "Volume", "Keyword Difficulty", "Keyword Opportunity", "Intent",
    ]
    for name in competitor_names:
        headers += [f"{name} Pos.", f"{name} URL"]
    return headers


def comparison_rows(results: list[ComparisonResult], competitor_names: list[str]) -> tuple[list[str], list[dict]]:
    """
    Flatten comparison results: primary-site position/URL under Pos/URL,
    then one Pos./URL column pair per competitor.
    """
    rows = []
    for r in results:
        row = {
            "Keyword":             r.keyword,
            "Stato":               r.status.value,
            "Pos":                 r.primary_site.pos,
            "URL":                 r.primary_site.url,
            "Volume":              r.volume,
            "Keyword Difficulty":  r.difficulty,
            "Keyword Opportunity": r.opportunity,
            "Intent":              r.intent,
        }
        for name in competitor_names:
            info = r.competitor(name)
            row[f"{name} Pos."] = info.pos if info else "N/P"
            row[f"{name} URL"]  = info.url if info else "N/A"
        rows.append(row)
    return comparison_headers(competitor_names), rows
