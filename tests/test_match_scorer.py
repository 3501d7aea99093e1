"""
Unit tests for the scoring oracle adapter
"""
import json
import threading
from unittest.mock import Mock

from ai_scoring.llm import MatchScoringLLM
from ai_scoring.scorer import MatchScorer, parse_score_response, DEFAULT_LOW_SCORE
from config import MATCH_SCORING_SYSTEM_PROMPT


class TestParseScoreResponse:
    """Recovering {score, rationale} from free-form model output"""

    def test_json_embedded_in_prose(self):
        result = parse_score_response('Here you go: {"score": 8, "rationale": "Same produce, fair price"} Hope it helps')
        assert result.succeeded is True
        assert result.score == 8
        assert result.rationale == "Same produce, fair price"

    def test_json_in_markdown_fence(self):
        text = '```json\n{"score": 9, "rationale": "Quantities align"}\n```'
        assert parse_score_response(text).score == 9

    def test_braces_inside_rationale(self):
        result = parse_score_response('{"score": 7, "rationale": "Sizes differ {small vs large}"}')
        assert result.score == 7
        assert result.succeeded is True

    def test_out_of_range_score_falls_back_to_default(self):
        result = parse_score_response('{"score": 15, "rationale": "Great"}')
        assert result.succeeded is False
        assert result.score == DEFAULT_LOW_SCORE

    def test_free_text_score_pattern(self):
        result = parse_score_response("Score: 9. The produce aligns well with the request.")
        assert result.succeeded is True
        assert result.score == 9
        assert "aligns well" in result.rationale

    def test_free_text_with_rationale_pattern(self):
        result = parse_score_response("score = 6\nrationale: price is slightly high")
        assert result.score == 6
        assert result.rationale == "price is slightly high"

    def test_fractional_score_is_not_truncated(self):
        result = parse_score_response('{"score": 7.5, "rationale": "Close fit"}')
        assert result.succeeded is False
        assert result.score == DEFAULT_LOW_SCORE

    def test_rationale_with_apostrophe(self):
        result = parse_score_response("score: 8\nrationale: farmer's tomatoes are fresh")
        assert result.score == 8
        assert result.rationale == "farmer's tomatoes are fresh"

    def test_quoted_rationale_keeps_apostrophe(self):
        result = parse_score_response("score: 8, rationale: \"buyer's price fits\" (truncated")
        assert result.rationale == "buyer's price fits"

    def test_unparseable_response(self):
        result = parse_score_response("I cannot evaluate this match.")
        assert result.succeeded is False
        assert result.score == DEFAULT_LOW_SCORE
        assert "parsing failed" in result.rationale

    def test_empty_response(self):
        result = parse_score_response("")
        assert result.succeeded is False
        assert result.score == DEFAULT_LOW_SCORE

    def test_default_score_is_below_default_threshold(self):
        assert DEFAULT_LOW_SCORE / 10 < 0.7


class TestMatchScorer:
    """Time-bounded oracle calls"""

    def test_successful_call(self):
        scorer = MatchScorer(lambda prompt: '{"score": 10, "rationale": "Perfect"}', timeout_seconds=1)
        result = scorer.score("prompt")
        assert result.score == 10
        assert result.succeeded is True

    def test_oracle_error_degrades_to_default(self):
        def failing_oracle(prompt):
            raise ConnectionError("network down")

        result = MatchScorer(failing_oracle, timeout_seconds=1).score("prompt")
        assert result.succeeded is False
        assert result.score == DEFAULT_LOW_SCORE
        assert "network down" in result.rationale

    def test_timeout_degrades_to_default(self):
        release = threading.Event()

        def slow_oracle(prompt):
            release.wait(5)
            return '{"score": 10, "rationale": "too late"}'

        try:
            result = MatchScorer(slow_oracle, timeout_seconds=0.05).score("prompt")
        finally:
            release.set()
        assert result.succeeded is False
        assert result.score == DEFAULT_LOW_SCORE
        assert "timed out" in result.rationale

    def test_from_llm_uses_scoring_system_prompt(self):
        llm = Mock()
        llm.chat = Mock(return_value='{"score": 8, "rationale": "ok"}')
        result = MatchScorer.from_llm(llm, timeout_seconds=1).score("pair details")
        llm.chat.assert_called_once_with(MATCH_SCORING_SYSTEM_PROMPT, "pair details")
        assert result.score == 8


def test_llm_without_api_key_uses_offline_verdict():
    llm = MatchScoringLLM(api_key=None)
    assert llm.api_available is False
    reply = llm.chat(MATCH_SCORING_SYSTEM_PROMPT, "anything")
    assert json.loads(reply)["score"] == 1
    assert parse_score_response(reply).score == 1
