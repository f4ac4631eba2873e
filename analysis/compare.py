"""
Keyword gap comparison: primary site vs. one or more competitors.

Every keyword seen in any dataset ends up in exactly one ComparisonResult:
  common          ranked by the primary site and at least one competitor
  primaryOnly     ranked by the primary site only
  competitorOnly  ranked by at least one competitor only

Shared metrics (volume, difficulty, opportunity, intent) come from the primary
record when present, else from the first competitor (in competitor order) that
has the keyword. They are never merged across sources.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Iterator, Optional, Union

from analysis.enrichment import CancellationToken, is_cancelled
from ingest.delimited import NOT_AVAILABLE, KeywordRecord, parse_keyword_csv

logger = logging.getLogger(__name__)

NOT_POSITIONED = "N/P"
DEFAULT_CHUNK_SIZE = 500
CORE_KEYWORD_LIMIT = 10
TOP_RANKED = 5
TOP_N_SUMMARY = 5
MASTER_REPORT_COMPETITORS = 2

Position = Union[int, str]
Metric = Union[int, str]


class Status(str, Enum):
    COMMON = "common"
    PRIMARY_ONLY = "primaryOnly"
    COMPETITOR_ONLY = "competitorOnly"


@dataclass
class SitePosition:
    pos: Position = NOT_POSITIONED
    url: str = NOT_AVAILABLE


@dataclass
class CompetitorPosition:
    name: str
    pos: Position = NOT_POSITIONED
    url: str = NOT_AVAILABLE


@dataclass
class ComparisonResult:
    keyword: str
    primary_site: SitePosition
    competitors: list[CompetitorPosition] = field(default_factory=list)
    volume: Metric = NOT_AVAILABLE
    difficulty: Metric = NOT_AVAILABLE
    opportunity: Metric = NOT_AVAILABLE
    intent: str = NOT_AVAILABLE
    status: Status = Status.COMMON

    def competitor(self, name: str) -> Optional[CompetitorPosition]:
        return next((c for c in self.competitors if c.name == name), None)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


ChunkCallback = Callable[[int, int, list[ComparisonResult]], None]


# ── Reconciliation ────────────────────────────────────────────────────────────

def _index(records: list[KeywordRecord]) -> dict[str, KeywordRecord]:
    # duplicate keywords: last row wins
    return {r.keyword: r for r in records if r.keyword}


def keyword_union(primary: list[KeywordRecord], competitors: dict[str, list[KeywordRecord]]) -> list[str]:
    """Unique keywords in first-seen order: primary first, then each competitor."""
    seen: dict[str, None] = {}
    for records in [primary, *competitors.values()]:
        for r in records:
            if r.keyword:
                seen.setdefault(r.keyword, None)
    return list(seen)


def _or(value, default):
    return default if value is None else value


def _classify(
    keyword: str,
    primary_map: dict[str, KeywordRecord],
    competitor_maps: dict[str, dict[str, KeywordRecord]],
) -> Optional[ComparisonResult]:
    mine = primary_map.get(keyword)
    entries = [(name, m.get(keyword)) for name, m in competitor_maps.items()]
    in_competitor = any(e is not None for _, e in entries)

    if mine and in_competitor:
        status = Status.COMMON
    elif mine:
        status = Status.PRIMARY_ONLY
    elif in_competitor:
        status = Status.COMPETITOR_ONLY
    else:
        return None

    source = mine or next(e for _, e in entries if e is not None)

    return ComparisonResult(
        keyword=keyword,
        primary_site=(
            SitePosition(_or(mine.position, NOT_POSITIONED), _or(mine.url, NOT_AVAILABLE))
            if mine else SitePosition()
        ),
        competitors=[
            CompetitorPosition(
                name,
                _or(e.position, NOT_POSITIONED) if e else NOT_POSITIONED,
                _or(e.url, NOT_AVAILABLE) if e else NOT_AVAILABLE,
            )
            for name, e in entries
        ],
        volume=_or(source.volume, NOT_AVAILABLE),
        difficulty=_or(source.difficulty, NOT_AVAILABLE),
        opportunity=_or(source.opportunity, NOT_AVAILABLE),
        intent=_or(source.intent, NOT_AVAILABLE),
        status=status,
    )


def iter_reconcile(
    primary: list[KeywordRecord],
    competitors: dict[str, list[KeywordRecord]],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[list[ComparisonResult]]:
    """Yield the comparison results chunk by chunk over the keyword union."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    primary_map = _index(primary)
    competitor_maps = {name: _index(records) for name, records in competitors.items()}
    keywords = keyword_union(primary, competitors)

    for start in range(0, len(keywords), chunk_size):
        chunk = []
        for kw in keywords[start:start + chunk_size]:
            result = _classify(kw, primary_map, competitor_maps)
            if result is not None:
                chunk.append(result)
        yield chunk


async def reconcile(
    primary: list[KeywordRecord],
    competitors: dict[str, list[KeywordRecord]],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_chunk: Optional[ChunkCallback] = None,
    cancel: Optional[CancellationToken] = None,
) -> list[ComparisonResult]:
    """
    Chunked reconciliation that yields to the event loop between chunks.
    on_chunk(done, total, chunk) is called after each chunk is collected.
    The output does not depend on chunk_size.
    """
    total = len(keyword_union(primary, competitors))
    results: list[ComparisonResult] = []
    done = 0

    for chunk in iter_reconcile(primary, competitors, chunk_size):
        if is_cancelled(cancel):
            logger.info("Comparison stopped after %d of %d keywords", done, total)
            break
        results.extend(chunk)
        done = min(done + chunk_size, total)
        if on_chunk:
            on_chunk(done, total, chunk)
        logger.debug("Comparison progress: %d of %d keywords", done, total)
        await asyncio.sleep(0)

    return results


def filter_status(results: list[ComparisonResult], status: Status) -> list[ComparisonResult]:
    return [r for r in results if r.status == status]


# ── Core keywords ─────────────────────────────────────────────────────────────

def select_core_keywords(records: list[KeywordRecord], limit: int = CORE_KEYWORD_LIMIT) -> list[str]:
    """
    Core keywords of the primary site, in priority order:
      1. up to 5 keywords ranked <= 10, best position first
      2. fill to `limit` with the highest-volume remaining keywords (volume > 0)
      3. if still under 5, fill with remaining keywords in file order
    """
    core: dict[str, None] = {}

    ranked = sorted(
        (r for r in records if r.keyword and r.position is not None and r.position <= 10),
        key=lambda r: r.position,
    )
    for r in ranked[:TOP_RANKED]:
        core.setdefault(r.keyword, None)

    if len(core) < limit:
        by_volume = sorted(
            (r for r in records if r.keyword and r.volume is not None and r.volume > 0
             and r.keyword not in core),
            key=lambda r: r.volume,
            reverse=True,
        )
        for r in by_volume[:limit - len(core)]:
            core.setdefault(r.keyword, None)

    if len(core) < TOP_RANKED and len(core) < len(records):
        rest = [r for r in records if r.keyword and r.keyword not in core]
        for r in rest[:min(TOP_RANKED, limit - len(core))]:
            core.setdefault(r.keyword, None)

    return list(core)


# ── Summaries ─────────────────────────────────────────────────────────────────

def summarize_distribution(results: list[ComparisonResult]) -> dict:
    """Counts per status plus the number of unique keywords analysed."""
    return {
        "common":         len(filter_status(results, Status.COMMON)),
        "primaryOnly":    len(filter_status(results, Status.PRIMARY_ONLY)),
        "competitorOnly": len(filter_status(results, Status.COMPETITOR_ONLY)),
        "totalUnique":    len({r.keyword for r in results}),
    }


def _ranked_top10(pos: Position) -> bool:
    return isinstance(pos, int) and pos <= 10


def top_common_for_primary(results: list[ComparisonResult], n: int = TOP_N_SUMMARY) -> list[dict]:
    common = [
        r for r in filter_status(results, Status.COMMON)
        if _ranked_top10(r.primary_site.pos)
    ]
    common.sort(key=lambda r: r.primary_site.pos)
    return [{"keyword": r.keyword, "position": r.primary_site.pos} for r in common[:n]]


def top_common_for_competitor(
    results: list[ComparisonResult],
    name: str,
    n: int = TOP_N_SUMMARY,
) -> list[dict]:
    ranked = []
    for r in filter_status(results, Status.COMMON):
        info = r.competitor(name)
        if info and _ranked_top10(info.pos):
            ranked.append((info.pos, r.keyword))
    ranked.sort(key=lambda t: t[0])
    return [{"keyword": kw, "position": pos} for pos, kw in ranked[:n]]


def top_opportunities(results: list[ComparisonResult], n: int = TOP_N_SUMMARY) -> list[dict]:
    """competitorOnly keywords with a numeric volume, biggest volume first."""
    candidates = [
        r for r in filter_status(results, Status.COMPETITOR_ONLY)
        if isinstance(r.volume, int) and r.volume > 0
    ]
    candidates.sort(key=lambda r: r.volume, reverse=True)
    return [{"keyword": r.keyword, "volume": r.volume} for r in candidates[:n]]


def build_master_report_summary(results: list[ComparisonResult], competitor_names: list[str]) -> dict:
    return {
        "comparisonResultsCount": summarize_distribution(results),
        "mySiteTop5Common":       top_common_for_primary(results),
        "competitorsTopCommon": {
            name: top_common_for_competitor(results, name)
            for name in competitor_names[:MASTER_REPORT_COMPETITORS]
        },
        "top5Opportunities":      top_opportunities(results),
    }


# ── Orchestration ─────────────────────────────────────────────────────────────

def _save_handoffs(core_keywords: list[str], summary: Optional[dict]) -> None:
    """Best effort: a storage failure must not fail the comparison."""
    from storage.handoff import (
        CORE_KEYWORDS_KEY, MASTER_REPORT_KEY, clear_handoff, save_handoff,
    )

    try:
        if core_keywords:
            save_handoff(CORE_KEYWORDS_KEY, core_keywords)
        else:
            clear_handoff(CORE_KEYWORDS_KEY)
        if summary:
            save_handoff(MASTER_REPORT_KEY, summary)
        else:
            clear_handoff(MASTER_REPORT_KEY)
    except Exception as exc:
        logger.warning("Could not store comparison handoff data: %s", exc)


async def run_keyword_comparison(
    files: dict[str, str],
    primary_name: str = "Mio Sito",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_chunk: Optional[ChunkCallback] = None,
    cancel: Optional[CancellationToken] = None,
    store_handoff: bool = True,
) -> tuple[list[ComparisonResult], list[str]]:
    """
    Parse every CSV in `files` ({site name: raw text}) and compare the primary
    site against the rest. Returns (results, competitor names).

    Raises ValueError when the primary site or every competitor is missing,
    and ParseError subclasses for structurally broken files.
    """
    if not (files.get(primary_name) or "").strip():
        raise ValueError(f"Upload the CSV data for '{primary_name}'.")
    competitor_names = [n for n in files if n != primary_name and (files[n] or "").strip()]
    if not competitor_names:
        raise ValueError("Upload the CSV data for at least one competitor.")

    parsed = {}
    for name in [primary_name, *competitor_names]:
        logger.info("Parsing data for %s", name)
        parsed[name] = parse_keyword_csv(files[name], name)

    primary = parsed[primary_name]
    if not primary:
        raise ValueError(f"No valid rows found for '{primary_name}'. Check the file and its headers.")

    core_keywords = select_core_keywords(primary)
    competitors = {name: parsed[name] for name in competitor_names}

    results = await reconcile(primary, competitors, chunk_size, on_chunk, cancel)
    summary = build_master_report_summary(results, competitor_names) if results else None
    if store_handoff:
        _save_handoffs(core_keywords, summary)

    logger.info(
        "Comparison done: %d keywords (%s)",
        len(results),
        ", ".join(f"{k}={v}" for k, v in summarize_distribution(results).items()),
    )
    return results, competitor_names
