"""
Claude-powered scoring of marketing copy:
  1. "7C" ad-angle scoring of a Facebook/Instagram ad (C1..C7, 0-2 each)
  2. "10M" landing-page conversion scoring (M1..M10, 0-10 each)

The model's reply is untrusted. It is parsed into one of
  ScoreOk(fields) | ScoreMalformed(raw_text) | ScoreServiceError(message)
and then finalized into a complete record: every score defaults to 0, every
text field to a placeholder, the total and the qualitative evaluation are
recomputed locally whenever the model left them out.
"""

import asyncio
import json
import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import anthropic

from analysis.enrichment import CancellationToken, is_cancelled

logger = logging.getLogger(__name__)

MODEL = "claude-sonnet-4-6"
RAW_TEXT_PREVIEW = 500
EVALUATION_UNAVAILABLE = "Valutazione non disponibile"
ANALYSIS_UNAVAILABLE = "Analisi dettagliata non disponibile."


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class ScoreOk:
    fields: dict[str, Any]


@dataclass
class ScoreMalformed:
    raw_text: str


@dataclass
class ScoreServiceError:
    message: str


ScoreResult = Union[ScoreOk, ScoreMalformed, ScoreServiceError]


@dataclass(frozen=True)
class Framework:
    name: str
    score_fields: tuple[str, ...]
    max_per_field: int
    total_field: str
    buckets: tuple[tuple[int, str], ...]     # (min total, label), best first
    floor_label: Optional[str]               # label below the last bucket; None keeps "unavailable"
    text_defaults: dict[str, str] = field(default_factory=dict)
    list_fields: tuple[str, ...] = ()
    error_lists: dict[str, list[str]] = field(default_factory=dict)
    error_text: dict[str, str] = field(default_factory=dict)
    chars_per_token: float = 4.0
    token_threshold: int = 12000
    too_long_label: str = "Input Troppo Lungo"
    max_tokens: int = 1200

    @property
    def max_total(self) -> int:
        return self.max_per_field * len(self.score_fields)


AD_ANGLE_7C = Framework(
    name="7C",
    score_fields=(
        "c1Clarity", "c2Engagement", "c3Concreteness", "c4Coherence",
        "c5Credibility", "c6CallToAction", "c7Context",
    ),
    max_per_field=2,
    total_field="totalScore",
    buckets=(
        (12, "Ottimo - copy ad alta resa"),
        (9,  "Buono - migliorabile in alcuni punti"),
        (6,  "Debole - serve revisione"),
        (1,  "Scarso - da riscrivere"),
    ),
    floor_label=None,
    text_defaults={"detailedAnalysis": ANALYSIS_UNAVAILABLE},
    chars_per_token=3.0,
    token_threshold=3000,
    too_long_label="Input Troppo Lungo",
    max_tokens=800,
)

LANDING_PAGE_10M = Framework(
    name="10M",
    score_fields=(
        "m1MessageClarity", "m2VisualImpact", "m3CtaEffectiveness", "m4TrustElements",
        "m5UserFlow", "m6MobileExperience", "m7SocialProof", "m8UrgencyScarcity",
        "m9ContentQuality", "m10ConversionOptimization",
    ),
    max_per_field=10,
    total_field="overallScore",
    buckets=(
        (85, "Ottimo - Landing page ad alta conversione"),
        (70, "Buono - Buone possibilità di conversione"),
        (50, "Mediocre - Necessario miglioramento"),
    ),
    floor_label="Scarso - Revisione completa necessaria",
    text_defaults={
        "detailedAnalysis": ANALYSIS_UNAVAILABLE,
        "conversionProbability": "Media",
    },
    list_fields=("strengths", "criticalIssues", "priorityRecommendations"),
    error_lists={
        "criticalIssues": ["Errore durante analisi AI"],
        "priorityRecommendations": ["Riprovare analisi"],
    },
    error_text={"conversionProbability": "Bassa"},
    chars_per_token=4.0,
    token_threshold=12000,
    too_long_label="Errore Token Limit",
    max_tokens=1200,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _client() -> anthropic.Anthropic:
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise EnvironmentError("ANTHROPIC_API_KEY is not set")
    return anthropic.Anthropic(api_key=api_key)


def estimate_tokens(text: str, chars_per_token: float) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def _preview(text: str, limit: int = RAW_TEXT_PREVIEW) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _coerce_score(value: Any, upper: int) -> Optional[int]:
    """Integer score clamped to [0, upper]; None when not a number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        match = re.match(r"^\s*(-?\d+(?:[.,]\d+)?)", value)
        if not match:
            return None
        value = float(match.group(1).replace(",", "."))
    if not isinstance(value, (int, float)) or math.isnan(value):
        return None
    return max(0, min(upper, int(round(value))))


# ── Parsing ───────────────────────────────────────────────────────────────────

def parse_score_response(raw_text: Optional[str], framework: Framework) -> ScoreResult:
    """
    Extract the JSON object from a model reply and keep only the fields the
    framework knows, with scores clamped to the framework's range.
    """
    if not raw_text or not raw_text.strip():
        return ScoreServiceError("Nessuna risposta ricevuta dal modello.")

    raw = raw_text.strip()
    # Strip markdown code fences if Claude adds them despite instructions
    raw = re.sub(r"^```(?:json)?\s*", "", raw)
    raw = re.sub(r"\s*```$", "", raw)

    start, end = raw.find("{"), raw.rfind("}")
    if start == -1 or end < start:
        logger.error("%s response contains no JSON object", framework.name)
        logger.debug("Raw Claude response: %.300s", raw_text)
        return ScoreMalformed(raw_text)

    try:
        data = json.loads(raw[start:end + 1])
    except json.JSONDecodeError as exc:
        logger.error("Claude returned invalid JSON for %s scoring: %s", framework.name, exc)
        logger.debug("Raw Claude response: %.300s", raw_text)
        return ScoreMalformed(raw_text)

    if not isinstance(data, dict):
        return ScoreMalformed(raw_text)

    fields: dict[str, Any] = {}
    for name in framework.score_fields:
        score = _coerce_score(data.get(name), framework.max_per_field)
        if score is not None:
            fields[name] = score

    total = _coerce_score(data.get(framework.total_field), framework.max_total)
    if total is not None:
        fields[framework.total_field] = total

    for name in ("evaluation", *framework.text_defaults):
        value = data.get(name)
        if isinstance(value, str) and value.strip():
            fields[name] = value.strip()

    for name in framework.list_fields:
        value = data.get(name)
        if isinstance(value, list):
            fields[name] = [str(v) for v in value if v is not None]

    return ScoreOk(fields)


def evaluation_for(total: int, framework: Framework) -> str:
    for threshold, label in framework.buckets:
        if total >= threshold:
            return label
    return framework.floor_label or EVALUATION_UNAVAILABLE


def _blank_record(framework: Framework) -> dict[str, Any]:
    record: dict[str, Any] = {name: 0 for name in framework.score_fields}
    record[framework.total_field] = 0
    record["evaluation"] = EVALUATION_UNAVAILABLE
    record.update(framework.text_defaults)
    for name in framework.list_fields:
        record[name] = []
    return record


def _error_record(framework: Framework, evaluation: str, detail: str) -> dict[str, Any]:
    record = _blank_record(framework)
    record["evaluation"] = evaluation
    record["detailedAnalysis"] = detail
    record.update({k: list(v) for k, v in framework.error_lists.items()})
    record.update(framework.error_text)
    return record


def finalize_score(result: ScoreResult, framework: Framework) -> dict[str, Any]:
    """Turn any ScoreResult into a complete, internally consistent record."""
    if isinstance(result, ScoreMalformed):
        return _error_record(
            framework,
            "Errore Parsing Risposta AI",
            f"Risposta grezza dall'AI: {_preview(result.raw_text)}",
        )
    if isinstance(result, ScoreServiceError):
        return _error_record(framework, "Errore API", result.message)

    record = _blank_record(framework)
    record.update(result.fields)

    if not record[framework.total_field]:
        record[framework.total_field] = sum(record[name] for name in framework.score_fields)
    if record["evaluation"] == EVALUATION_UNAVAILABLE:
        record["evaluation"] = evaluation_for(record[framework.total_field], framework)
    return record


def failure_record(framework: Framework, message: str) -> dict[str, Any]:
    """Error record for an item that never reached Claude (bad input, page not fetched)."""
    return _error_record(framework, "Errore API", message)


def too_long_record(framework: Framework, estimated: int) -> dict[str, Any]:
    record = _error_record(
        framework,
        framework.too_long_label,
        f"Input troppo lungo (stimati {estimated} token di input, soglia "
        f"{framework.token_threshold}). Il contenuto non è stato analizzato.",
    )
    if framework.list_fields:
        record["criticalIssues"] = ["Input troppo lungo per analisi"]
        record["priorityRecommendations"] = ["Ridurre contenuto della pagina per analisi"]
    return record


# ── Claude calls ──────────────────────────────────────────────────────────────

def _ask_claude(prompt: str, framework: Framework, model: str) -> ScoreResult:
    try:
        client = _client()
        message = client.messages.create(
            model=model,
            max_tokens=framework.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        raw = message.content[0].text.strip()
    except Exception as exc:
        logger.error("Claude %s scoring failed: %s", framework.name, exc)
        return ScoreServiceError(f"Errore durante l'analisi: {exc}")
    return parse_score_response(raw, framework)


def _score(prompt: str, framework: Framework, model: str) -> dict[str, Any]:
    estimated = estimate_tokens(prompt, framework.chars_per_token)
    if estimated > framework.token_threshold:
        logger.warning(
            "%s prompt estimated at %d tokens exceeds %d, not sent",
            framework.name, estimated, framework.token_threshold,
        )
        return too_long_record(framework, estimated)
    return finalize_score(_ask_claude(prompt, framework, model), framework)


def _ad_prompt(ad_text: str, ad_title: str) -> str:
    fields = ", ".join(AD_ANGLE_7C.score_fields)
    return f"""Analizza il seguente annuncio con il framework "Metodo 7C".
Testo Ad: "{ad_text}"
Titolo Ad: "{ad_title or 'N/A'}"

Per ciascuna C assegna un punteggio 0-2 (0 = assente, 1 = debole, 2 = forte):
C1 Chiarezza, C2 Coinvolgimento, C3 Concretezza, C4 Coerenza col target,
C5 Credibilità, C6 Call To Action, C7 Contesto (platform-fit).

Rispondi SOLO con un oggetto JSON con i campi {fields}, totalScore (somma 0-14),
evaluation (12-14 Ottimo; 9-11 Buono; 6-8 Debole; 0-5 Scarso) e detailedAnalysis
(sintesi di marketing, punti di forza, punti deboli, linee guida)."""


def score_ad(ad: dict, model: str = MODEL) -> dict[str, Any]:
    """7C scoring of one ad ({"adText": ..., "adTitle": ...})."""
    ad_text = ad.get("adText") or ad.get("text") or ""
    ad_title = ad.get("adTitle") or ad.get("title") or ""
    return _score(_ad_prompt(ad_text, ad_title), AD_ANGLE_7C, model)


def _landing_prompt(url: str, facts: dict, context: dict) -> str:
    fields = ", ".join(LANDING_PAGE_10M.score_fields)
    return f"""Analizza questa landing page con il framework Marketing 10M per l'ottimizzazione delle conversioni.
URL: {url}
Tipo Business: {context.get('business_type', 'N/D')}
Obiettivo Primario: {context.get('primary_goal', 'N/D')}
Target Audience: {context.get('target_audience', 'N/D')}

DATI ESTRATTI DALLA PAGINA:
- Titolo: {facts.get('title', '')}
- Headline: {facts.get('headline', '')}
- Subheadline: {facts.get('subheadline') or 'N/D'}
- Meta Description: {facts.get('meta_description') or 'N/D'}
- CTA Buttons: {json.dumps(facts.get('cta_buttons', []), ensure_ascii=False)}
- Forms: {json.dumps(facts.get('forms', []), ensure_ascii=False)}
- Testimonials: {json.dumps(facts.get('testimonials', []), ensure_ascii=False)}
- Social Proof: {json.dumps(facts.get('social_proof', {}), ensure_ascii=False)}
- Trust Elements: {json.dumps(facts.get('trust_elements', {}), ensure_ascii=False)}
- Technical Data: {json.dumps(facts.get('technical_data', {}), ensure_ascii=False)}

Assegna a ogni M un punteggio 0-10. Rispondi SOLO con un oggetto JSON con i campi
{fields}, overallScore (somma 0-100), evaluation (85-100 Ottimo; 70-84 Buono;
50-69 Mediocre; 0-49 Scarso), strengths (3), criticalIssues (3),
priorityRecommendations (5), detailedAnalysis e conversionProbability
("Alta", "Media" o "Bassa")."""


def score_landing_page(url: str, facts: dict, context: Optional[dict] = None, model: str = MODEL) -> dict[str, Any]:
    """10M scoring of a landing page from its extracted facts."""
    return _score(_landing_prompt(url, facts, context or {}), LANDING_PAGE_10M, model)


def _score_ad_item(ad: Any, model: str) -> dict[str, Any]:
    if not isinstance(ad, dict):
        logger.error("Skipping ad that is not an object: %r", ad)
        return failure_record(AD_ANGLE_7C, f"Annuncio non valido: atteso un oggetto, ricevuto {type(ad).__name__}")
    try:
        return score_ad(ad, model)
    except Exception as exc:
        logger.error("7C scoring failed for ad %r: %s", ad.get("adText", ""), exc)
        return failure_record(AD_ANGLE_7C, f"Errore durante l'analisi: {exc}")


async def score_ads(
    ads: list[dict],
    model: str = MODEL,
    cancel: Optional[CancellationToken] = None,
    concurrency: int = 3,
) -> list[dict[str, Any]]:
    """
    Score ads in concurrent batches. A failing ad yields an error record and
    never aborts the batch; after cancellation no new batch is started.
    """
    records: list[dict[str, Any]] = []
    for start in range(0, len(ads), concurrency):
        if is_cancelled(cancel):
            logger.info("Ad scoring stopped after %d of %d ads", len(records), len(ads))
            break
        batch = ads[start:start + concurrency]
        scores = await asyncio.gather(*(asyncio.to_thread(_score_ad_item, ad, model) for ad in batch))
        for ad, score in zip(batch, scores):
            base = ad if isinstance(ad, dict) else {"adText": str(ad)}
            records.append({**base, **score})
        logger.debug("Ad scoring: %d/%d", len(records), len(ads))
    return records
