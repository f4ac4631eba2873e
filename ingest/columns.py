"""
Column resolution: maps raw CSV header strings onto a canonical schema.

Resolution order per canonical field:
  1. case-insensitive exact match on the canonical header
  2. each alias in declared order (first match wins)

Matching is case-insensitive but otherwise exact. Optional fields that do not
resolve map to -1; required fields that do not resolve raise MissingColumnError.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ABSENT = -1


# ── Errors ────────────────────────────────────────────────────────────────────

class ParseError(ValueError):
    """Structural problem with an uploaded file; analysis cannot proceed."""


class EmptyFileError(ParseError):
    def __init__(self, source_name: str):
        self.source_name = source_name
        super().__init__(
            f"CSV file for {source_name} looks empty or has no valid header row."
        )


class MissingColumnError(ParseError):
    def __init__(self, column: str, source_name: str, headers: list[str]):
        self.column = column
        self.source_name = source_name
        self.headers = list(headers)
        super().__init__(
            f'Required column "{column}" (or one of its aliases) not found in the '
            f"CSV headers for {source_name}. Detected headers: {' | '.join(self.headers)}"
        )


# ── Schema types ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ColumnSpec:
    field: str       # canonical field name used in records
    header: str      # canonical header text as exported by the rank tracker
    required: bool = False


CanonicalSchema = list[ColumnSpec]
AliasTable = dict[str, list[str]]


# ── Alias tables ──────────────────────────────────────────────────────────────

KEYWORD_ALIASES: AliasTable = {
    "difficulty":  ["keyword difficulty", "key diff", "kd"],
    "opportunity": ["keyword opportunity", "opportunity score"],
    "position":    ["pos", "position"],
}

KEYWORD_COMPARISON_SCHEMA: CanonicalSchema = [
    ColumnSpec("keyword",           "Keyword",             required=True),
    ColumnSpec("position",          "Pos",                 required=True),
    ColumnSpec("url",               "URL",                 required=True),
    ColumnSpec("volume",            "Volume"),
    ColumnSpec("difficulty",        "Keyword Difficulty"),
    ColumnSpec("opportunity",       "Keyword Opportunity"),
    ColumnSpec("intent",            "Intent"),
    ColumnSpec("traffic_variation", "var. traffico"),
    ColumnSpec("estimated_traffic", "traffico stimato"),
    ColumnSpec("avg_cpc",           "cpc medio"),
]

PERTINENCE_SCHEMA: CanonicalSchema = [
    ColumnSpec("keyword",     "Keyword",             required=True),
    ColumnSpec("position",    "Pos"),
    ColumnSpec("url",         "URL"),
    ColumnSpec("volume",      "Volume"),
    ColumnSpec("difficulty",  "Keyword Difficulty"),
    ColumnSpec("opportunity", "Keyword Opportunity"),
    ColumnSpec("intent",      "Intent"),
]


# ── Resolution ────────────────────────────────────────────────────────────────

def resolve_columns(
    headers: list[str],
    schema: CanonicalSchema,
    aliases: AliasTable,
    source_name: str = "file",
) -> dict[str, int]:
    """
    Return {canonical_field: column_index} for every field in `schema`.
    Absent optional fields resolve to ABSENT (-1).
    """
    lowered = [h.lower() for h in headers]
    indices: dict[str, int] = {}

    for spec in schema:
        index = _find(lowered, spec.header.lower())
        if index == ABSENT:
            for alias in aliases.get(spec.field, []):
                index = _find(lowered, alias.lower())
                if index != ABSENT:
                    break

        if index == ABSENT and spec.required:
            logger.error(
                'Required column "%s" not found for %s. Headers: %s',
                spec.header, source_name, headers,
            )
            raise MissingColumnError(spec.header, source_name, headers)

        indices[spec.field] = index

    return indices


def _find(lowered_headers: list[str], target: str) -> int:
    for i, header in enumerate(lowered_headers):
        if header == target:
            return i
    return ABSENT
