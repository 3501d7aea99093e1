"""
Main API entry point for the HarvestLink matching backend
"""
import logging
from fastapi import FastAPI

from ai_scoring.llm import MatchScoringLLM
from ai_scoring.scorer import MatchScorer
from config import LOG_LEVEL, LOG_FORMAT, EXPIRY_SCHEDULE, EXPIRY_TIMEZONE, EXPIRY_TIMEOUT_SECONDS
from expiry_sweeper import ExpirySweeper
from marketplace_api import router as marketplace_router
from marketplace_storage import MarketplaceStorage
from match_lifecycle import MatchSuggestionLifecycle
from order_status import OrderStatusHandler

logger = logging.getLogger(__name__)


def create_app(storage=None, scorer=None) -> FastAPI:
    """
    Build the app with its collaborators constructed once.
    
    The store handle and the scoring oracle are created here (or injected,
    e.g. by tests) and handed to each trigger handler explicitly.
    
    Run with: uvicorn api:create_app --factory
    """
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

    if storage is None:
        storage = MarketplaceStorage()
    if scorer is None:
        scorer = MatchScorer.from_llm(MatchScoringLLM())

    app = FastAPI(title="HarvestLink Matching API", version="1.0.0")
    app.state.lifecycle = MatchSuggestionLifecycle(storage, scorer)
    app.state.order_handler = OrderStatusHandler(storage)
    app.state.sweeper = ExpirySweeper(storage)
    app.include_router(marketplace_router)

    @app.get("/")
    async def root():
        return {
            "message": "HarvestLink Matching API",
            "version": "1.0.0",
            # Wiring for the external scheduler that calls POST /tasks/expire
            "expiry_task": {
                "schedule": EXPIRY_SCHEDULE,
                "timezone": EXPIRY_TIMEZONE,
                "timeout_seconds": EXPIRY_TIMEOUT_SECONDS,
            },
        }

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    logger.info("HarvestLink Matching API initialized")
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
