"""
FastAPI endpoints exposing the marketplace triggers for external wiring
(Firestore event forwarders, Cloud Scheduler, client callables)
"""
from fastapi import APIRouter, HTTPException, Header, Request
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import logging

from delivery_fee import calculate_delivery_fee, DeliveryFeeError
from marketplace_models import DeliveryFeeQuote

logger = logging.getLogger(__name__)

router = APIRouter(tags=["marketplace-triggers"])


class DocumentCreatedEvent(BaseModel):
    """Payload for a document-created trigger"""
    data: Dict[str, Any] = Field(..., description="Document fields as stored (camelCase)")


class DocumentWrittenEvent(BaseModel):
    """Payload for a document-written trigger; before/after are None on create/delete"""
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None


class SuggestionsCreatedResponse(BaseModel):
    suggestion_ids: List[str]


class OrderCreationResponse(BaseModel):
    order_id: Optional[str] = None


class OrderTransitionResponse(BaseModel):
    action: Optional[str] = None


@router.post("/triggers/produce-listings/{listing_id}/created", response_model=SuggestionsCreatedResponse)
def produce_listing_created(listing_id: str, event: DocumentCreatedEvent, request: Request):
    """
    New produce listing: match against open buyer requests.
    
    Example:
    {
        "data": {
            "farmerId": "farmer_1",
            "produceName": "Tomato",
            "quantity": 50,
            "unit": "kg",
            "expiryTimestamp": "2026-12-31T00:00:00Z"
        }
    }
    """
    lifecycle = request.app.state.lifecycle
    return SuggestionsCreatedResponse(suggestion_ids=lifecycle.on_new_produce_listing(listing_id, event.data))


@router.post("/triggers/buyer-requests/{request_id}/created", response_model=SuggestionsCreatedResponse)
def buyer_request_created(request_id: str, event: DocumentCreatedEvent, request: Request):
    """New buyer request: match against available listings (only when isAiMatchPreferred)"""
    lifecycle = request.app.state.lifecycle
    return SuggestionsCreatedResponse(suggestion_ids=lifecycle.on_new_buyer_request(request_id, event.data))


@router.post("/triggers/match-suggestions/{suggestion_id}/written", response_model=OrderCreationResponse)
def match_suggestion_written(suggestion_id: str, event: DocumentWrittenEvent, request: Request):
    lifecycle = request.app.state.lifecycle
    order_id = lifecycle.on_match_suggestion_written(suggestion_id, event.before, event.after)
    return OrderCreationResponse(order_id=order_id)


@router.post("/triggers/orders/{order_id}/written", response_model=OrderTransitionResponse)
def order_written(order_id: str, event: DocumentWrittenEvent, request: Request):
    handler = request.app.state.order_handler
    return OrderTransitionResponse(action=handler.on_order_written(order_id, event.before, event.after))


@router.post("/tasks/expire")
def run_expiry_sweep(request: Request) -> Dict[str, int]:
    """Scheduled tick (daily 01:00 Asia/Manila); returns expired counts per sweep"""
    return request.app.state.sweeper.run()


@router.post("/callable/delivery-fee", response_model=DeliveryFeeQuote)
async def delivery_fee(params: Dict[str, Any], x_caller_uid: Optional[str] = Header(None)):
    try:
        return calculate_delivery_fee(x_caller_uid, params)
    except DeliveryFeeError as e:
        logger.warning(f"Delivery fee call rejected: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
