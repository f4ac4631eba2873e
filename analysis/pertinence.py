"""
Offline keyword pertinence and SEO priority scoring.

Pertinence is a token-overlap score between the keyword and the user's
industry description / industry keywords:
  +3  keyword token equals an industry keyword token
  +2  keyword token equals a significant industry-description token
  +2  an informational or commercial modifier sits next to a sector term
A keyword is "In Target" when the score reaches 2 (1 when no industry
tokens survive tokenization).

Priority then buckets pertinent keywords by position, volume, KD and
opportunity.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

from analysis.enrichment import CancellationToken, is_cancelled
from ingest.delimited import KeywordRecord

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 50

STOP_WORDS_IT = frozenset([
    "a", "ad", "al", "allo", "ai", "agli", "all", "agl", "alla", "alle", "con", "col", "coi",
    "da", "dal", "dallo", "dai", "dagli", "dall", "dagl", "dalla", "dalle",
    "di", "del", "dello", "dei", "degli", "dell", "degl", "della", "delle",
    "in", "nel", "nello", "nei", "negli", "nell", "negl", "nella", "nelle",
    "su", "sul", "sullo", "sui", "sugli", "sull", "sugl", "sulla", "sulle",
    "per", "tra", "fra", "e", "ed", "o", "od", "ma", "però", "anche", "pure", "né", "ne",
    "se", "che", "chi", "cui", "non", "il", "lo", "i", "gli", "la", "le", "un", "uno", "una",
    "mio", "mia", "miei", "mie", "tuo", "tua", "tuoi", "tue", "suo", "sua", "suoi", "sue",
    "nostro", "nostra", "nostri", "nostre", "vostro", "vostra", "vostri", "vostre", "loro",
    "questo", "questa", "questi", "queste", "quello", "quella", "quelli", "quelle",
    "ci", "vi", "si", "io", "tu", "lui", "lei", "noi", "voi", "essi", "esse", "me", "te", "sé",
    "c'", "l'", "un'", "qual", "dov'", "com'", "è", "ha",
])

INFORMATIONAL_MODIFIERS = [
    "significato", "cos'è", "come funziona", "guida", "tutorial", "definizione", "spiegazione",
    "informazioni", "dettagli", "base", "principiante", "avanzato", "cosa sono", "perché", "quando",
]
COMMERCIAL_MODIFIERS = [
    "prezzi", "costo", "offerta", "sconto", "comprare", "acquistare", "vendita", "noleggio",
    "servizio di", "consulenza per", "preventivo", "shop", "negozio", "migliore", "top",
]

IN_TARGET = "In Target"
OUT_OF_TARGET = "Fuori Target"
OFFLINE_ERROR = "Errore Offline"

PRIORITY_NOT_APPLICABLE = "SEO: Non Applicabile"
PRIORITY_MAINTENANCE = "SEO: Mantenimento"
PRIORITY_INSUFFICIENT_DATA = "SEO: Dati Insufficienti"
PRIORITY_HIGH = "SEO: Priorità Alta"
PRIORITY_MEDIUM = "SEO: Priorità Media"
PRIORITY_LOW_DIFFICULT = "SEO: Priorità Bassa (Difficile)"
PRIORITY_LOW_VOLUME = "SEO: Priorità Bassa (Volume Scarso)"
PRIORITY_LOW_MONITOR = "SEO: Priorità Bassa/Da Valutare"


@dataclass
class PertinenceResult:
    keyword: str
    industry: str
    pertinence: str
    priority: str
    reason: str
    volume: Optional[int] = None
    difficulty: Optional[int] = None
    opportunity: Optional[int] = None
    position: Optional[int] = None
    url: str = ""
    intent: str = ""
    dfs_volume: Optional[int] = None
    dfs_cpc: Optional[float] = None
    dfs_keyword_difficulty: Optional[int] = None
    dfs_error: Optional[str] = None


# ── Tokenization ──────────────────────────────────────────────────────────────

def tokenize(text: str, stop_words=STOP_WORDS_IT) -> list[str]:
    """
    Lowercase, drop anything but ASCII word chars / whitespace / ' / -,
    then drop 1-char tokens and stop words.
    """
    if not text or not isinstance(text, str):
        return []
    cleaned = re.sub(r"[^\w\s'-]", "", text.lower(), flags=re.ASCII)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    tokens = []
    for token in cleaned.split(" "):
        token = re.sub(r"^['-]|['-]$", "", token)
        if len(token) > 1 and token not in ("-", "'") and token not in stop_words:
            tokens.append(token)
    return tokens


# ── Pertinence ────────────────────────────────────────────────────────────────

def check_pertinence(keyword: str, industry: str, industry_keywords: str) -> tuple[bool, str]:
    kw_tokens      = tokenize(keyword)
    sector_tokens  = tokenize(industry)
    primary_tokens = tokenize(industry_keywords)

    score = 0
    reasons: list[str] = []
    matched_primary: set[str] = set()
    matched_sector: set[str] = set()

    def note(reason: str) -> None:
        if reason not in reasons:
            reasons.append(reason)

    for pk in primary_tokens:
        for token in kw_tokens:
            if token == pk and token not in matched_primary:
                score += 3
                note(f"Corrisponde alla parola chiave di settore '{pk}'.")
                matched_primary.add(token)

    significant = [t for t in sector_tokens if len(t) > 2 and t not in primary_tokens]
    for st in significant:
        for token in kw_tokens:
            if (token == st and token not in primary_tokens
                    and token not in matched_sector and token not in matched_primary):
                score += 2
                note(f"Contiene termine rilevante dal settore ('{industry}'): '{st}'.")
                matched_sector.add(token)

    modifier = None
    sector_term = None
    for mod in INFORMATIONAL_MODIFIERS + COMMERCIAL_MODIFIERS:
        if mod in kw_tokens:
            modifier = mod
            for token in kw_tokens:
                if token != mod and (
                    token in primary_tokens or token in significant
                    or token in matched_primary or token in matched_sector
                ):
                    sector_term = token
                    break
            if sector_term:
                break

    if modifier and sector_term:
        score += 2
        kind = "informativo" if modifier in INFORMATIONAL_MODIFIERS else "commerciale/transazionale"
        note(f"Rilevato intento {kind} ('{modifier}') associato al termine di settore '{sector_term}'.")

    detail = " ".join(reasons)
    threshold = 2 if primary_tokens or sector_tokens else 1

    if score >= threshold:
        return True, f"{IN_TARGET}. " + (detail or "Corrispondenza generica con il settore.")
    return False, f"{OUT_OF_TARGET}. " + (
        detail or f"Nessuna corrispondenza forte con il settore '{industry}' o le parole chiave fornite."
    )


# ── Priority ──────────────────────────────────────────────────────────────────

def _na(value) -> str:
    return "N/A" if value is None else str(value)


def evaluate_priority(record: KeywordRecord, pertinent: bool, reason: str) -> tuple[str, str]:
    if not pertinent:
        return PRIORITY_NOT_APPLICABLE, reason

    vol, kd, opp, pos = record.volume, record.difficulty, record.opportunity, record.position
    parts = [reason]

    if pos is not None and 0 < pos <= 3:
        priority = PRIORITY_MAINTENANCE
        parts.append(
            f"Posizione attuale ({pos}) eccellente: l'obiettivo è difenderla e monitorare "
            "costantemente le performance."
        )
    elif vol is None or kd is None:
        priority = PRIORITY_INSUFFICIENT_DATA
        parts.append("Mancano dati cruciali (Volume e/o KD) per una valutazione SEO completa della priorità.")
    elif vol > 800 and kd < 50 and (opp is None or opp > 60):
        priority = PRIORITY_HIGH
        parts.append("Questa keyword rappresenta un'alta priorità strategica.")
        parts.append(f"Il volume di ricerca ({vol}) è elevato e la Keyword Difficulty ({kd}) è considerata gestibile.")
        if opp is not None:
            parts.append(f"L'Opportunity Score ({opp}) è promettente.")
        if pos is not None and pos > 3:
            parts.append(
                f"Con una posizione attuale di {pos}, c'è un buon potenziale di crescita verso le prime posizioni."
            )
        elif pos is None or pos == 0 or pos > 10:
            parts.append(f"Attualmente non nelle prime posizioni ({pos if pos is not None else 'N/P'}).")
    elif vol > 300 and kd < 65 and (opp is None or opp > 35):
        priority = PRIORITY_MEDIUM
        parts.append("Priorità media per questa keyword.")
        parts.append(f"Presenta un volume di ricerca ({vol}) discreto.")
        if kd < 50:
            parts.append(f"La KD ({kd}) è favorevole.")
        else:
            parts.append(
                f"La KD ({kd}) è di medio livello e richiede un'analisi competitiva per stimare lo sforzo."
            )
        if opp is not None:
            parts.append(f"L'Opportunity Score ({opp}) è interessante.")
        if pos is not None and pos > 0:
            parts.append(f"Posizione attuale: {pos}. Valutare l'ottimizzazione per migliorare.")
    elif kd > 70 and vol < 500:
        priority = PRIORITY_LOW_DIFFICULT
        parts.append("Bassa priorità a causa dell'elevata difficoltà.")
        parts.append(f"La KD ({kd}) è molto alta rispetto al volume di ricerca ({vol}).")
    elif vol < 50:
        priority = PRIORITY_LOW_VOLUME
        parts.append("Bassa priorità a causa del volume esiguo.")
        parts.append(
            f"Il volume di ricerca ({vol}) è molto basso e potrebbe non giustificare uno sforzo SEO "
            "dedicato al momento."
        )
    else:
        priority = PRIORITY_LOW_MONITOR
        parts.append("Da valutare attentamente in base alla strategia complessiva.")
        parts.append(
            f"Le metriche (Vol: {_na(vol)}, KD: {_na(kd)}, Opp: {_na(opp)}) suggeriscono un "
            "potenziale limitato o uno sforzo elevato."
        )

    parts.append(
        f"Dati metriche -> Volume: {_na(vol)}, KD: {_na(kd)}, Opportunity: {_na(opp)}, Posizione: {_na(pos)}."
    )
    return priority, " ".join(parts).strip()


# ── Batch ─────────────────────────────────────────────────────────────────────

def analyze_record(record: KeywordRecord, industry: str, industry_keywords: str) -> PertinenceResult:
    try:
        pertinent, reason = check_pertinence(record.keyword, industry, industry_keywords)
        priority, reason = evaluate_priority(record, pertinent, reason)
    except Exception as exc:
        logger.error("Offline analysis failed for '%s': %s", record.keyword, exc)
        return PertinenceResult(
            keyword=record.keyword,
            industry=industry,
            pertinence=OFFLINE_ERROR,
            priority=OFFLINE_ERROR,
            reason=str(exc) or "Errore sconosciuto durante analisi offline",
        )

    return PertinenceResult(
        keyword=record.keyword,
        industry=industry,
        pertinence=IN_TARGET if pertinent else OUT_OF_TARGET,
        priority=priority,
        reason=reason,
        volume=record.volume,
        difficulty=record.difficulty,
        opportunity=record.opportunity,
        position=record.position,
        url=record.url,
        intent=record.intent,
    )


async def analyze_pertinence(
    records: list[KeywordRecord],
    industry: str,
    industry_keywords: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cancel: Optional[CancellationToken] = None,
) -> list[PertinenceResult]:
    """
    Score every record, yielding to the event loop between chunks. Stops at
    the next chunk boundary once `cancel` is set.
    """
    industry = (industry or "").strip()
    industry_keywords = (industry_keywords or "").strip()
    if not industry and not industry_keywords:
        raise ValueError("Provide an industry and/or industry keywords for the pertinence analysis.")

    results: list[PertinenceResult] = []
    total = len(records)
    for start in range(0, total, chunk_size):
        if is_cancelled(cancel):
            logger.info("Pertinence analysis stopped after %d of %d keywords", len(results), total)
            break
        chunk = records[start:start + chunk_size]
        results.extend(analyze_record(r, industry, industry_keywords) for r in chunk)
        logger.debug("Pertinence analysis: %d/%d", len(results), total)
        if start + chunk_size < total:
            await asyncio.sleep(0)

    logger.info("Pertinence analysis done: %d keywords", len(results))
    return results


def pertinence_rows(results: list[PertinenceResult]) -> tuple[list[str], list[dict]]:
    """Headers and rows for the pertinence CSV download."""
    headers = [
        "Keyword", "Settore Analizzato", "Pertinenza", "Priorità SEO", "Motivazione",
        "Volume (CSV)", "KD (CSV)", "Opportunity (CSV)", "Posizione (CSV)", "URL (CSV)",
        "Intent (CSV)", "DFS Volume", "DFS CPC", "DFS Difficulty", "DFS Error",
    ]
    rows = [
        {
            "Keyword":            r.keyword,
            "Settore Analizzato": r.industry,
            "Pertinenza":         r.pertinence,
            "Priorità SEO":       r.priority,
            "Motivazione":        r.reason,
            "Volume (CSV)":       _na(r.volume),
            "KD (CSV)":           _na(r.difficulty),
            "Opportunity (CSV)":  _na(r.opportunity),
            "Posizione (CSV)":    _na(r.position),
            "URL (CSV)":          r.url or "",
            "Intent (CSV)":       r.intent or "",
            "DFS Volume":         _na(r.dfs_volume),
            "DFS CPC":            _na(r.dfs_cpc),
            "DFS Difficulty":     _na(r.dfs_keyword_difficulty),
            "DFS Error":          r.dfs_error or "",
        }
        for r in results
    ]
    return headers, rows
