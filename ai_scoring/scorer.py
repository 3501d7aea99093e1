"""
Scoring oracle adapter: prompt in, validated {score, rationale} out.

The adapter never raises. Timeouts, transport errors and unparseable
replies all degrade to a low-confidence ScoreResult whose rationale says
what went wrong, so one bad call cannot abort a matching run.
"""
import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Callable, Optional

from pydantic import ValidationError

from config import LLM_TIMEOUT_SECONDS, MATCH_SCORING_SYSTEM_PROMPT
from marketplace_models import LLMMatchResponse, ScoreResult

logger = logging.getLogger(__name__)

# Lowest score on the 1-10 scale; 0.1 after normalisation, below any realistic threshold
DEFAULT_LOW_SCORE = 1

_JSON_OBJECT_PATTERNS = (
    re.compile(r"\{[\s\S]*?\}"),  # first object, non-greedy
    re.compile(r"\{[\s\S]*\}"),   # outermost braces, for nested objects
)
# Integer scores only; "7.5" must not be read as 7
_SCORE_PATTERN = re.compile(r'["\']?score["\']?\s*[:=]\s*(\d{1,2})(?!\.\d)\b', re.IGNORECASE)
_RATIONALE_PATTERN = re.compile(
    r'["\']?rationale["\']?\s*[:=]\s*(?:"([^"\n]*)"|\'([^\'\n]*)\'|([^\n}]+))', re.IGNORECASE
)


def _truncate_text(text: str, max_chars: int = 200) -> str:
    """Helper function to truncate text to max_chars"""
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _failure(rationale: str) -> ScoreResult:
    return ScoreResult(score=DEFAULT_LOW_SCORE, rationale=rationale, succeeded=False)


def parse_score_response(response_text: Optional[str]) -> ScoreResult:
    """
    Recover a score from the model's natural-language reply.

    Order of attempts:
    1. An embedded JSON object validated against LLMMatchResponse
    2. A free-text "score: N" pattern (N an integer in 1..10)
    3. The low-confidence default
    """
    text = str(response_text or "").strip()
    if not text:
        return _failure("LLM response parsing failed: empty response.")

    for pattern in _JSON_OBJECT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        try:
            parsed = LLMMatchResponse.model_validate(json.loads(match.group(0)))
            return ScoreResult(score=parsed.score, rationale=parsed.rationale.strip())
        except json.JSONDecodeError as e:
            logger.debug(f"Response JSON parsing error: {e}")
        except ValidationError as e:
            logger.warning(f"Response validation failed: {e.errors()}")

    score_match = _SCORE_PATTERN.search(text)
    if score_match:
        score = int(score_match.group(1))
        if 1 <= score <= 10:
            rationale_match = _RATIONALE_PATTERN.search(text)
            if rationale_match:
                rationale = next((g for g in rationale_match.groups() if g), "").strip()
            else:
                rationale = _truncate_text(text)
            logger.info(f"Recovered score {score} from free-text response")
            return ScoreResult(score=score, rationale=rationale or "No rationale provided.")

    logger.error(f"LLM response parsing failed: {_truncate_text(text)}")
    return _failure(f"LLM response parsing failed: {_truncate_text(text, 120)}")


class MatchScorer:
    """Bounded-time wrapper around a prompt -> text oracle"""

    def __init__(self, oracle: Callable[[str], str], timeout_seconds: float = LLM_TIMEOUT_SECONDS):
        self.oracle = oracle
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_llm(cls, llm, timeout_seconds: float = LLM_TIMEOUT_SECONDS) -> "MatchScorer":
        """Build a scorer on top of a MatchScoringLLM"""
        return cls(lambda prompt: llm.chat(MATCH_SCORING_SYSTEM_PROMPT, prompt), timeout_seconds)

    def score(self, prompt: str) -> ScoreResult:
        # The oracle call races the timer; a late reply is simply dropped.
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self.oracle, prompt)
        try:
            response_text = future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError:
            logger.error(f"LLM call timed out after {self.timeout_seconds}s")
            return _failure(f"LLM call timed out after {self.timeout_seconds:g} seconds.")
        except Exception as e:
            logger.error(f"LLM call failed: {e}")
            return _failure(f"LLM call failed: {e}")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(f"Received scoring response: {_truncate_text(str(response_text))}")
        return parse_score_response(response_text)
