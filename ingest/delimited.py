"""
Loose CSV parsing for rank-tracker keyword exports.

Handles the quirks seen in real exports:
  - optional UTF-8 byte-order mark
  - comma or semicolon delimiter (auto-detected from the header line)
  - quoted fields, including quoted newlines inside header cells
  - header names resolved through ingest.columns (exact match, then aliases)

Individual bad cells never abort the parse: numbers degrade to None and rows
without a keyword are dropped.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from ingest.columns import (
    ABSENT,
    KEYWORD_ALIASES,
    KEYWORD_COMPARISON_SCHEMA,
    PERTINENCE_SCHEMA,
    AliasTable,
    CanonicalSchema,
    EmptyFileError,
    resolve_columns,
)

logger = logging.getLogger(__name__)

BOM = "\ufeff"
NOT_AVAILABLE = "N/A"

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


@dataclass
class KeywordRecord:
    """One keyword row from a rank-tracker export. `keyword` is the join key."""

    keyword: str
    position: Optional[int] = None
    url: str = NOT_AVAILABLE
    volume: Optional[int] = None
    difficulty: Optional[int] = None
    opportunity: Optional[int] = None
    intent: str = NOT_AVAILABLE
    traffic_variation: str = NOT_AVAILABLE
    estimated_traffic: str = NOT_AVAILABLE
    avg_cpc: str = NOT_AVAILABLE


# ── Low-level helpers ─────────────────────────────────────────────────────────

def strip_bom(text: str) -> str:
    if text and text[0] == BOM:
        return text[1:]
    return text or ""


def split_header(text: str) -> tuple[str, str]:
    """
    Split off the first logical line. A newline inside a quoted header cell
    does not end the line.
    """
    if not text:
        return "", ""

    in_quotes = False
    end = -1
    for i, char in enumerate(text):
        if char == '"':
            in_quotes = not in_quotes
        elif char in "\r\n" and not in_quotes:
            end = i
            break

    if end == -1:
        return text, ""
    return text[:end], text[end:].lstrip("\r\n")


def detect_delimiter(header_line: str) -> str:
    commas = header_line.count(",")
    semicolons = header_line.count(";")
    if semicolons > commas and semicolons > 0:
        return ";"
    return ","


def split_values(line: str, delimiter: str) -> list[str]:
    """Tokenize one line; `""` inside quotes is a literal quote."""
    values = []
    current = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            values.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    values.append("".join(current))

    return [_unquote(v) for v in values]


def _unquote(value: str) -> str:
    if value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    return value.replace('""', '"').strip()


def normalize_header(header: str) -> str:
    return re.sub(r"\r\n|\n|\r", " ", header).strip()


def parse_int(value: Optional[str]) -> Optional[int]:
    """Permissive integer read: leading digits win, anything else is None."""
    if not value:
        return None
    match = _INT_PREFIX.match(value)
    return int(match.group(1)) if match else None


def _cell(values: list[str], index: int) -> Optional[str]:
    if index == ABSENT or index >= len(values):
        return None
    return values[index]


# ── Generic parse ─────────────────────────────────────────────────────────────

def parse_delimited(
    raw_text: str,
    schema: CanonicalSchema,
    aliases: AliasTable,
    source_name: str = "file",
    key_field: str = "keyword",
) -> list[dict[str, Optional[str]]]:
    """
    Parse `raw_text` into a list of {canonical_field: raw_cell_or_None} rows.

    Raises EmptyFileError when there is no header line and MissingColumnError
    when a required column cannot be resolved. Rows with an empty key field
    are dropped; the key is lowercased.
    """
    content = strip_bom((raw_text or "").strip())
    header_line, rest = split_header(content)
    if not header_line:
        raise EmptyFileError(source_name)

    delimiter = detect_delimiter(header_line)
    headers = [normalize_header(h) for h in split_values(header_line, delimiter)]
    indices = resolve_columns(headers, schema, aliases, source_name)

    lines = [ln for ln in re.sub(r"\r\n?", "\n", rest).split("\n") if ln.strip()]

    rows = []
    dropped = 0
    for line in lines:
        values = split_values(line, delimiter)
        key = _cell(values, indices[key_field])
        if not key:
            dropped += 1
            continue
        row = {spec.field: _cell(values, indices[spec.field]) for spec in schema}
        row[key_field] = key.lower()
        rows.append(row)

    logger.debug(
        "Parsed %s: delimiter=%r, %d rows kept, %d dropped without %s",
        source_name, delimiter, len(rows), dropped, key_field,
    )
    return rows


# ── Tool-specific record builders ─────────────────────────────────────────────

def _or_na(value: Optional[str]) -> str:
    return NOT_AVAILABLE if value is None else value


def parse_keyword_csv(raw_text: str, source_name: str = "file") -> list[KeywordRecord]:
    """Keyword/position/URL export used by the competitor comparison."""
    rows = parse_delimited(raw_text, KEYWORD_COMPARISON_SCHEMA, KEYWORD_ALIASES, source_name)
    records = [
        KeywordRecord(
            keyword=row["keyword"],
            position=parse_int(row["position"]),
            url=_or_na(row["url"]),
            volume=parse_int(row["volume"]),
            difficulty=parse_int(row["difficulty"]),
            opportunity=parse_int(row["opportunity"]),
            intent=_or_na(row["intent"]),
            traffic_variation=_or_na(row["traffic_variation"]),
            estimated_traffic=_or_na(row["estimated_traffic"]),
            avg_cpc=_or_na(row["avg_cpc"]),
        )
        for row in rows
    ]
    logger.info("Parsed %d keywords from %s", len(records), source_name)
    return records


def parse_pertinence_csv(raw_text: str, source_name: str = "Tool 2") -> list[KeywordRecord]:
    """Keyword list for pertinence scoring; only the Keyword column is required."""
    rows = parse_delimited(raw_text, PERTINENCE_SCHEMA, KEYWORD_ALIASES, source_name)
    records = [
        KeywordRecord(
            keyword=row["keyword"],
            position=parse_int(row["position"]),
            url=_or_na(row["url"]),
            volume=parse_int(row["volume"]),
            difficulty=parse_int(row["difficulty"]),
            opportunity=parse_int(row["opportunity"]),
            intent=_or_na(row["intent"]),
        )
        for row in rows
    ]
    logger.info("Parsed %d keywords from %s", len(records), source_name)
    return records
