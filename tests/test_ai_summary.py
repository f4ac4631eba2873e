"""AI scoring tests: response parsing, finalization and Claude calls (mocked)."""

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest

from analysis.ai_summary import (
    AD_ANGLE_7C,
    EVALUATION_UNAVAILABLE,
    LANDING_PAGE_10M,
    ScoreMalformed,
    ScoreOk,
    ScoreServiceError,
    estimate_tokens,
    evaluation_for,
    finalize_score,
    parse_score_response,
    score_ad,
    score_ads,
    score_landing_page,
)
from analysis.enrichment import CancellationToken


def _claude_reply(text):
    client = MagicMock()
    client.messages.create.return_value = MagicMock(content=[MagicMock(text=text)])
    return client


AD_SCORES = {
    "c1Clarity": 2, "c2Engagement": 2, "c3Concreteness": 2, "c4Coherence": 2,
    "c5Credibility": 1, "c6CallToAction": 1, "c7Context": 1,
}


class TestParseScoreResponse:
    """Untrusted model output is turned into a tagged result."""

    def test_fenced_json(self):
        raw = "```json\n" + json.dumps({**AD_SCORES, "totalScore": 11}) + "\n```"
        result = parse_score_response(raw, AD_ANGLE_7C)
        assert isinstance(result, ScoreOk)
        assert result.fields["totalScore"] == 11
        assert result.fields["c1Clarity"] == 2

    def test_text_around_json(self):
        result = parse_score_response('Ecco l\'analisi: {"c1Clarity": 1} spero sia utile', AD_ANGLE_7C)
        assert result == ScoreOk({"c1Clarity": 1})

    def test_scores_clamped_and_unknown_fields_dropped(self):
        result = parse_score_response('{"c1Clarity": 5, "c2Engagement": -1, "foo": "bar"}', AD_ANGLE_7C)
        assert result.fields == {"c1Clarity": 2, "c2Engagement": 0}

    def test_numeric_strings(self):
        result = parse_score_response('{"m1MessageClarity": "7/10", "m2VisualImpact": "n/a"}', LANDING_PAGE_10M)
        assert result.fields == {"m1MessageClarity": 7}

    def test_invalid_json(self):
        result = parse_score_response("{not json}", AD_ANGLE_7C)
        assert isinstance(result, ScoreMalformed)
        assert result.raw_text == "{not json}"

    def test_no_object(self):
        assert isinstance(parse_score_response("[1, 2]", AD_ANGLE_7C), ScoreMalformed)

    def test_empty(self):
        assert isinstance(parse_score_response("   ", AD_ANGLE_7C), ScoreServiceError)
        assert isinstance(parse_score_response(None, AD_ANGLE_7C), ScoreServiceError)

    def test_list_fields(self):
        result = parse_score_response('{"strengths": ["CTA chiara", null], "criticalIssues": "x"}', LANDING_PAGE_10M)
        assert result.fields == {"strengths": ["CTA chiara"]}


class TestFinalizeScore:
    """Every record comes out complete and consistent."""

    def test_total_and_evaluation_recomputed(self):
        record = finalize_score(ScoreOk(dict(AD_SCORES)), AD_ANGLE_7C)
        assert record["totalScore"] == 11
        assert record["evaluation"] == "Buono - migliorabile in alcuni punti"
        assert record["detailedAnalysis"] == "Analisi dettagliata non disponibile."

    def test_model_total_kept(self):
        record = finalize_score(ScoreOk({"totalScore": 13}), AD_ANGLE_7C)
        assert record["totalScore"] == 13
        assert record["evaluation"] == "Ottimo - copy ad alta resa"
        assert record["c1Clarity"] == 0

    def test_zero_total_has_no_evaluation_for_ads(self):
        record = finalize_score(ScoreOk({}), AD_ANGLE_7C)
        assert record["totalScore"] == 0
        assert record["evaluation"] == EVALUATION_UNAVAILABLE

    def test_landing_page_defaults(self):
        record = finalize_score(ScoreOk({"overallScore": 90}), LANDING_PAGE_10M)
        assert record["evaluation"] == "Ottimo - Landing page ad alta conversione"
        assert record["conversionProbability"] == "Media"
        assert record["strengths"] == []
        assert record["m10ConversionOptimization"] == 0

    def test_landing_page_floor(self):
        assert evaluation_for(30, LANDING_PAGE_10M) == "Scarso - Revisione completa necessaria"
        assert evaluation_for(70, LANDING_PAGE_10M) == "Buono - Buone possibilità di conversione"

    def test_model_evaluation_kept(self):
        record = finalize_score(ScoreOk({"totalScore": 4, "evaluation": "Scarso"}), AD_ANGLE_7C)
        assert record["evaluation"] == "Scarso"

    def test_malformed(self):
        record = finalize_score(ScoreMalformed("x" * 600), AD_ANGLE_7C)
        assert record["evaluation"] == "Errore Parsing Risposta AI"
        assert record["detailedAnalysis"] == "Risposta grezza dall'AI: " + "x" * 500 + "..."
        assert record["totalScore"] == 0

    def test_service_error_landing_page(self):
        record = finalize_score(ScoreServiceError("timeout"), LANDING_PAGE_10M)
        assert record["evaluation"] == "Errore API"
        assert record["detailedAnalysis"] == "timeout"
        assert record["conversionProbability"] == "Bassa"
        assert record["criticalIssues"] == ["Errore durante analisi AI"]


class TestTokenGuard:
    def test_estimate(self):
        assert estimate_tokens("", 4) == 0
        assert estimate_tokens("abcdef", 3) == 2
        assert estimate_tokens("abcde", 4) == 2

    @patch("analysis.ai_summary._client")
    def test_long_ad_not_sent(self, mock_client):
        record = score_ad({"adText": "parola " * 2000, "adTitle": "Titolo"})
        mock_client.assert_not_called()
        assert record["evaluation"] == "Input Troppo Lungo"
        assert record["totalScore"] == 0


class TestClaudeCalls:
    """Anthropic client is mocked; no network."""

    @patch("analysis.ai_summary._client")
    def test_score_ad(self, mock_client):
        mock_client.return_value = _claude_reply(json.dumps(AD_SCORES))
        record = score_ad({"adText": "Divani in offerta -30%", "adTitle": "Saldi"})
        assert record["totalScore"] == 11
        prompt = mock_client.return_value.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "Divani in offerta -30%" in prompt
        assert "Saldi" in prompt

    @patch("analysis.ai_summary._client")
    def test_missing_api_key(self, mock_client):
        mock_client.side_effect = EnvironmentError("ANTHROPIC_API_KEY is not set")
        record = score_ad({"adText": "x"})
        assert record["evaluation"] == "Errore API"
        assert "ANTHROPIC_API_KEY" in record["detailedAnalysis"]

    @patch("analysis.ai_summary._client")
    def test_malformed_reply(self, mock_client):
        mock_client.return_value = _claude_reply("Non posso rispondere in JSON")
        record = score_ad({"adText": "x"})
        assert record["evaluation"] == "Errore Parsing Risposta AI"

    @patch("analysis.ai_summary._client")
    def test_score_landing_page(self, mock_client):
        reply = {f: 8 for f in LANDING_PAGE_10M.score_fields}
        reply.update({"strengths": ["Headline chiara"], "conversionProbability": "Alta"})
        mock_client.return_value = _claude_reply(json.dumps(reply))

        facts = {"title": "Divani", "headline": "Il divano giusto", "cta_buttons": [{"text": "Acquista"}]}
        record = score_landing_page("https://esempio.it", facts, {"business_type": "E-commerce"})

        assert record["overallScore"] == 80
        assert record["evaluation"] == "Buono - Buone possibilità di conversione"
        assert record["conversionProbability"] == "Alta"
        assert record["strengths"] == ["Headline chiara"]
        prompt = mock_client.return_value.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "https://esempio.it" in prompt
        assert "E-commerce" in prompt


class TestScoreAds:
    def test_merges_ad_and_score(self):
        ads = [{"adText": "a"}, {"adText": "b"}, {"adText": "c"}, {"adText": "d"}]
        with patch("analysis.ai_summary.score_ad", side_effect=lambda ad, model: {"totalScore": len(ad["adText"])}):
            records = asyncio.run(score_ads(ads, concurrency=3))
        assert [r["adText"] for r in records] == ["a", "b", "c", "d"]
        assert all(r["totalScore"] == 1 for r in records)

    def test_cancelled(self):
        token = CancellationToken()
        token.cancel()
        with patch("analysis.ai_summary.score_ad") as mock_score:
            assert asyncio.run(score_ads([{"adText": "a"}], cancel=token)) == []
        mock_score.assert_not_called()

    def test_invalid_ad_does_not_abort_batch(self):
        with patch("analysis.ai_summary.score_ad", return_value={"totalScore": 9}) as mock_score:
            records = asyncio.run(score_ads([{"adText": "ok"}, "non un oggetto"]))
        assert len(records) == 2
        assert records[0]["totalScore"] == 9
        assert records[1]["adText"] == "non un oggetto"
        assert records[1]["evaluation"] == "Errore API"
        assert records[1]["totalScore"] == 0
        mock_score.assert_called_once()

    def test_failing_ad_becomes_error_record(self):
        def score(ad, model):
            if ad["adText"] == "rotto":
                raise RuntimeError("boom")
            return {"totalScore": 5}

        with patch("analysis.ai_summary.score_ad", side_effect=score):
            records = asyncio.run(score_ads([{"adText": "rotto"}, {"adText": "ok"}]))
        assert records[0]["evaluation"] == "Errore API"
        assert "boom" in records[0]["detailedAnalysis"]
        assert records[1]["totalScore"] == 5
