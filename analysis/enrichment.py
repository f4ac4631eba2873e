"""
DataForSEO keyword-metric enrichment.

Each keyword is looked up on the keyword_ideas/live endpoint (one keyword per
request). Requests run in small concurrent batches; a CancellationToken stops
new batches from being scheduled while letting in-flight requests finish.
"""

import asyncio
import dataclasses
import logging
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

DFS_API_BASE_URL = "https://api.dataforseo.com/v3"
KEYWORD_IDEAS_ENDPOINT = f"{DFS_API_BASE_URL}/keywords_data/google/keyword_ideas/live"
DFS_OK_STATUS = 20000
DEFAULT_CONCURRENCY = 3
NO_METRICS_MESSAGE = "Nessuna metrica specifica per la keyword da DFS"


class EnrichmentError(Exception):
    """DataForSEO refused or failed the request; message is user-facing."""


class CancellationToken:
    """Cooperative stop flag passed to batch jobs."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.cancelled


# ── API client ────────────────────────────────────────────────────────────────

def fetch_keyword_metrics(
    keyword: str,
    login: str,
    password: str,
    location_code: Optional[int] = None,
    language_code: Optional[str] = None,
    timeout: int = 30,
) -> list[dict]:
    """
    Keyword-ideas items for `keyword`. Returns [] when the task succeeded
    without results; raises EnrichmentError on HTTP or task errors.
    """
    if not login or not password:
        raise EnrichmentError("DataForSEO API Login and Password are required.")
    if not keyword:
        raise EnrichmentError("At least one keyword is required.")

    task: dict[str, Any] = {"keywords": [keyword], "search_partners": False}
    if location_code is not None:
        task["location_code"] = location_code
    if language_code is not None:
        task["language_code"] = language_code

    try:
        resp = requests.post(
            KEYWORD_IDEAS_ENDPOINT,
            json=[task],
            auth=(login, password),
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise EnrichmentError(f"Failed to fetch data from DataForSEO: {exc}") from exc

    if not resp.ok:
        body = resp.text or ""
        message = (
            f"DataForSEO API request failed: {resp.status_code} {resp.reason}. "
            f"Details: {body[:250]}"
        )
        if resp.status_code == 404:
            try:
                if resp.json().get("status_code") == 40400:
                    message = (
                        f"DataForSEO API request failed (40400): the endpoint '{KEYWORD_IDEAS_ENDPOINT}' "
                        "was not found. Your subscription may not include this live endpoint. "
                        f"Original error: {body[:200]}"
                    )
            except ValueError:
                pass
        logger.error("DataForSEO API error response: %s", body[:500])
        raise EnrichmentError(message)

    data = resp.json()
    tasks = data.get("tasks") or []
    if data.get("tasks_error", 0) > 0 or not tasks or tasks[0].get("status_code") != DFS_OK_STATUS:
        task_error = (tasks[0].get("status_message") if tasks else None) or "Unknown task error from DataForSEO."
        logger.error("DataForSEO task error: %s", task_error)
        raise EnrichmentError(f"DataForSEO task error: {task_error}")

    result = tasks[0].get("result") or []
    if not result or not result[0].get("items"):
        return []
    return result[0]["items"]


# ── Batch enrichment ──────────────────────────────────────────────────────────

def _enrich_one(result, login: str, password: str, cancel: Optional[CancellationToken]):
    if is_cancelled(cancel):
        return result
    try:
        items = fetch_keyword_metrics(result.keyword, login, password)
    except Exception as exc:
        logger.error("DataForSEO lookup failed for '%s': %s", result.keyword, exc)
        return dataclasses.replace(result, dfs_error=str(exc) or "Errore API DataForSEO")

    first = items[0] if items else None
    if first is None:
        return dataclasses.replace(result, dfs_error=NO_METRICS_MESSAGE)
    return dataclasses.replace(
        result,
        dfs_volume=first.get("search_volume"),
        dfs_cpc=first.get("cpc"),
        dfs_keyword_difficulty=first.get("keyword_difficulty"),
        dfs_error=None,
    )


async def enrich_results(
    results: list,
    login: str,
    password: str,
    concurrency: int = DEFAULT_CONCURRENCY,
    cancel: Optional[CancellationToken] = None,
) -> list:
    """
    Return a copy of `results` with dfs_* fields filled in. Items are
    dataclasses carrying `keyword` and the dfs_volume / dfs_cpc /
    dfs_keyword_difficulty / dfs_error fields. Items not reached before
    cancellation are returned unchanged.
    """
    enriched = list(results)
    total = len(enriched)
    processed = 0

    for start in range(0, total, concurrency):
        if is_cancelled(cancel):
            logger.info("Enrichment stopped after %d of %d keywords", processed, total)
            break
        batch = enriched[start:start + concurrency]
        updated = await asyncio.gather(*(
            asyncio.to_thread(_enrich_one, r, login, password, cancel) for r in batch
        ))
        enriched[start:start + len(updated)] = updated
        processed += len(updated)
        logger.debug("DataForSEO enrichment: %d/%d", processed, total)
    else:
        logger.info("DataForSEO enrichment completed for %d keywords", processed)

    return enriched
