"""
Cross-tool handoff: small JSON payloads written by one tool and read by another.

  CORE_KEYWORDS_KEY  core keywords of the primary site (comparison -> pertinence)
  MASTER_REPORT_KEY  comparison summary for the master report
"""

import json
import logging
from typing import Any, Optional

from storage.db import db_conn, init_db

logger = logging.getLogger(__name__)

CORE_KEYWORDS_KEY = "tool1MioSitoCoreKeywords"
MASTER_REPORT_KEY = "tool1ResultsForMasterReport"


def save_handoff(key: str, payload: Any) -> None:
    init_db()
    with db_conn() as conn:
        conn.execute(
            """
            INSERT INTO handoff (key, payload)
            VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET
                payload    = excluded.payload,
                updated_at = datetime('now')
            """,
            (key, json.dumps(payload, ensure_ascii=False)),
        )
    logger.debug("Saved handoff '%s'", key)


def load_handoff(key: str) -> Optional[Any]:
    """Stored payload for `key`, or None when absent or unreadable."""
    init_db()
    with db_conn() as conn:
        row = conn.execute("SELECT payload FROM handoff WHERE key = ?", (key,)).fetchone()
    if not row:
        return None
    try:
        return json.loads(row["payload"])
    except json.JSONDecodeError:
        logger.warning("Handoff '%s' holds invalid JSON, ignoring it", key)
        return None


def clear_handoff(key: str) -> None:
    init_db()
    with db_conn() as conn:
        conn.execute("DELETE FROM handoff WHERE key = ?", (key,))
    logger.debug("Cleared handoff '%s'", key)


def import_core_keywords() -> list[str]:
    """Core keywords saved by the last comparison run ([] when none)."""
    payload = load_handoff(CORE_KEYWORDS_KEY)
    if not isinstance(payload, list):
        return []
    keywords = [str(k) for k in payload if k]
    logger.info("Imported %d core keywords from the last comparison", len(keywords))
    return keywords
