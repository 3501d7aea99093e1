
import logging
import json
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from config import (
    GROQ_API_KEY, GROQ_API_BASE, LLM_MODEL, LLM_TEMPERATURE,
    LLM_MAX_OUTPUT_TOKENS, LLM_TIMEOUT_SECONDS
)

logger = logging.getLogger(__name__)

class MatchScoringLLM:
    """Chat model used as the match scoring oracle"""
    def __init__(self, model_name: str = LLM_MODEL, api_key: str = GROQ_API_KEY):
        
        self.llm = None
        self.api_available = False
        
        if api_key:
            try:
                self.llm = ChatOpenAI(
                    model=model_name,
                    temperature=LLM_TEMPERATURE,
                    max_tokens=LLM_MAX_OUTPUT_TOKENS,
                    timeout=LLM_TIMEOUT_SECONDS,
                    max_retries=0,
                    api_key=api_key,
                    base_url=GROQ_API_BASE
                )
                self.api_available = True
                logger.info("Groq API configured successfully")
            except Exception as e:
                logger.warning(f"Failed to initialize Groq API: {e}")
                self.api_available = False
        else:
            logger.info("No Groq API key provided, using offline scoring fallback")
    
    def chat(self, system_prompt: str, user_input: str) -> str:
        """Send one prompt and return the raw text reply.

        Transport errors are logged and re-raised; MatchScorer turns them
        into a low-confidence score.
        """
        if not self.api_available or not self.llm:
            logger.info("Using fallback logic - no API available")
            return self._fallback_response()
        
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_input)
        ]
        try:
            response = self.llm.invoke(messages)
        except Exception as e:
            logger.error(f"LLM Error: {e}")
            raise
        return response.content
    
    def _fallback_response(self) -> str:
        """Low-confidence verdict used when no API is configured"""
        return json.dumps({
            "score": 1,
            "rationale": "Scoring model not configured (offline mode); no match assessment was made."
        })
