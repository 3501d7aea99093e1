"""
Match suggestion lifecycle - turns new listings/requests into suggestions
and accepted suggestions into orders
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config import (
    MIN_AI_SCORE_THRESHOLD, SUGGESTION_TTL_HOURS, TOP_N_BUYER_SUGGESTIONS,
    DEFAULT_CURRENCY, LISTINGS_COLLECTION, BUYER_REQUESTS_COLLECTION
)
from marketplace_models import (
    ProduceListing, BuyerRequest, MatchSuggestion, MatchOutput, Order, ProduceSnapshot,
    MatchGenerationInput, MatchGenerationConfig, MatchContext,
    ListingStatus, BuyerRequestStatus, SuggestionStatus, OrderStatus, PaymentStatus,
    as_utc, utc_now
)
from match_logic import generate_match_suggestions, rank_top_matches

logger = logging.getLogger(__name__)

ELIGIBLE_REQUEST_STATUSES = [
    BuyerRequestStatus.PENDING_MATCH.value,
    BuyerRequestStatus.PARTIALLY_FULFILLED.value,
]
ELIGIBLE_LISTING_STATUSES = [
    ListingStatus.AVAILABLE.value,
    ListingStatus.PARTIALLY_COMMITTED.value,
]
MISSING_PARTY_MESSAGE = "Farmer, buyer, or listing not found."
INTERNAL_ERROR_MESSAGE = "Internal error during order creation."


class MatchSuggestionLifecycle:
    """Reacts to new listings/requests and to match suggestion writes"""

    def __init__(self, storage, scorer, min_score_threshold: float = MIN_AI_SCORE_THRESHOLD):
        self.storage = storage
        self.scorer = scorer
        self.min_score_threshold = min_score_threshold

    # New listing / new request
    def on_new_produce_listing(self, listing_id: str, data: Dict[str, Any],
                               now: Optional[datetime] = None) -> List[str]:
        """Match a new listing against every open buyer request; all accepted pairs become suggestions"""
        now = as_utc(now) if now else utc_now()
        try:
            listing = ProduceListing.model_validate({**data, 'id': listing_id})
        except ValidationError as e:
            logger.error(f"Listing {listing_id} failed validation, skipping AI matching: {e}")
            return []

        logger.info(f"New produce listing {listing_id} by farmer {listing.farmer_id}, triggering AI matching.")

        try:
            requests = self.storage.get_buyer_requests_by_status(ELIGIBLE_REQUEST_STATUSES)
        except Exception as e:
            logger.error(f"Error fetching buyer requests for listing {listing_id}: {e}")
            return []
        # Deadline filter in memory to avoid a composite index
        active_requests = [r for r in requests if r.delivery_deadline and r.delivery_deadline > now]
        if not active_requests:
            logger.info(f"No active buyer requests found for listing {listing_id}.")
            return []
        logger.info(f"Found {len(active_requests)} potential buyer requests for listing {listing_id}.")

        matches = self._generate(listing, active_requests, MatchContext.LISTING_TRIGGERED, now)
        if matches is None:
            return []
        return self._persist(matches, SuggestionStatus.AI_SUGGESTION_FOR_FARMER, now, f"listing {listing_id}")

    def on_new_buyer_request(self, request_id: str, data: Dict[str, Any],
                             now: Optional[datetime] = None) -> List[str]:
        """Match a new AI-opted-in request against open listings; keep the top 3"""
        now = as_utc(now) if now else utc_now()
        try:
            request = BuyerRequest.model_validate({**data, 'id': request_id})
        except ValidationError as e:
            logger.error(f"Buyer request {request_id} failed validation, skipping AI matching: {e}")
            return []

        if request.is_ai_match_preferred is not True:
            logger.info(f"Buyer request {request_id} does not prefer AI matching. Skipping.")
            return []

        logger.info(f"New buyer request {request_id} by buyer {request.buyer_id} prefers AI matching, triggering.")

        try:
            listings = self.storage.get_listings_by_status(ELIGIBLE_LISTING_STATUSES)
        except Exception as e:
            logger.error(f"Error fetching produce listings for request {request_id}: {e}")
            return []
        active_listings = [l for l in listings if l.expiry_timestamp and l.expiry_timestamp > now]
        if not active_listings:
            logger.info(f"No active produce listings found for buyer request {request_id}.")
            return []
        logger.info(f"Found {len(active_listings)} potential produce listings for request {request_id}.")

        matches = self._generate(request, active_listings, MatchContext.REQUEST_TRIGGERED, now)
        if matches is None:
            return []
        selected = rank_top_matches(matches, TOP_N_BUYER_SUGGESTIONS)
        logger.info(f"Selected top {len(selected)} matches for request {request_id} based on score.")
        return self._persist(selected, SuggestionStatus.AI_SUGGESTION_FOR_BUYER, now, f"request {request_id}")

    def _generate(self, trigger, candidates, context: MatchContext, now: datetime) -> Optional[List[MatchOutput]]:
        match_input = MatchGenerationInput(
            triggering_item=trigger,
            potential_matches=candidates,
            context=context,
            config=MatchGenerationConfig(min_score_threshold=self.min_score_threshold),
        )
        try:
            return generate_match_suggestions(match_input, self.scorer, now=now)
        except Exception as e:
            logger.error(f"Error generating matches for {context.value} {trigger.id}: {e}")
            return None

    def _persist(self, matches: List[MatchOutput], status: SuggestionStatus,
                 now: datetime, label: str) -> List[str]:
        if not matches:
            logger.info(f"No matches above threshold for {label}.")
            return []
        expiry = now + timedelta(hours=SUGGESTION_TTL_HOURS)
        suggestions = [
            MatchSuggestion(
                listing_id=m.listing_id,
                listing_ref_path=f"{LISTINGS_COLLECTION}/{m.listing_id}",
                farmer_id=m.farmer_id,
                buyer_request_id=m.buyer_request_id,
                buyer_request_ref_path=f"{BUYER_REQUESTS_COLLECTION}/{m.buyer_request_id}",
                buyer_id=m.buyer_id,
                suggested_order_quantity=m.suggested_order_quantity,
                suggested_order_quantity_unit=m.suggested_order_quantity_unit,
                ai_match_score=m.ai_match_score,
                ai_match_rationale=m.ai_match_rationale,
                status=status,
                suggestion_timestamp=now,
                suggestion_expiry_timestamp=expiry,
            )
            for m in matches
        ]
        try:
            created_ids = self.storage.create_match_suggestions(suggestions)
        except Exception as e:
            logger.error(f"Error committing batch for match suggestions ({label}): {e}")
            return []
        logger.info(f"Successfully created {len(created_ids)} match suggestions ({status.value}) for {label}.")
        return created_ids

    # Suggestion writes -> orders
    def on_match_suggestion_written(self, suggestion_id: str,
                                    before: Optional[Dict[str, Any]],
                                    after: Optional[Dict[str, Any]],
                                    now: Optional[datetime] = None) -> Optional[str]:
        """
        Create an order when status moves *into* order_processing.

        Edge-triggered: rewrites that leave the suggestion in order_processing
        do not create a second order.
        """
        if after is None:
            logger.info(f"MatchSuggestion {suggestion_id} was deleted, skipping order creation.")
            return None

        status_before = (before or {}).get('status')
        status_after = after.get('status')
        processing = SuggestionStatus.ORDER_PROCESSING.value
        if status_after != processing or status_before == processing:
            logger.info(
                f"MatchSuggestion {suggestion_id} status is '{status_after}' (before: '{status_before}'). "
                "Not 'order_processing' or already processed, skipping order creation."
            )
            return None

        try:
            suggestion = MatchSuggestion.model_validate({**after, 'id': suggestion_id})
        except ValidationError as e:
            logger.error(f"MatchSuggestion {suggestion_id} failed validation: {e}")
            self._mark_error(suggestion_id, f"Invalid match suggestion: {e.error_count()} field errors.",
                             as_utc(now) if now else utc_now())
            return None

        logger.info(f"MatchSuggestion {suggestion_id} accepted (status: {status_after}), proceeding to create order.")
        return self.create_order_from_suggestion(suggestion_id, suggestion, now=now)

    def create_order_from_suggestion(self, suggestion_id: str, suggestion: MatchSuggestion,
                                     now: Optional[datetime] = None) -> Optional[str]:
        """Build the order and commit it with the listing/request/suggestion updates; returns the order ID"""
        now = as_utc(now) if now else utc_now()
        try:
            farmer = self.storage.get_user(suggestion.farmer_id)
            buyer = self.storage.get_user(suggestion.buyer_id)
            listing = self.storage.get_listing(suggestion.listing_id)

            if farmer is None or buyer is None or listing is None:
                logger.error(f"Farmer, buyer, or listing not found for match {suggestion_id}.")
                self._mark_error(suggestion_id, MISSING_PARTY_MESSAGE, now)
                return None

            request = None
            if suggestion.buyer_request_id:
                request = self.storage.get_buyer_request(suggestion.buyer_request_id)
                if request is None:
                    logger.warning(
                        f"Buyer request {suggestion.buyer_request_id} for match {suggestion_id} not found; "
                        "order will not be linked to it."
                    )

            quantity = suggestion.suggested_order_quantity or 0
            delivery_location = (request.delivery_location if request else None) or buyer.default_delivery_location
            order = Order(
                id=self.storage.new_order_id(),
                buyer_id=suggestion.buyer_id,
                buyer_name=buyer.display_name or "N/A",
                farmer_id=suggestion.farmer_id,
                farmer_name=farmer.display_name or "N/A",
                listing_id=suggestion.listing_id,
                buyer_request_id=request.id if request else None,
                produce_details_snapshot=ProduceSnapshot(
                    produce_name=listing.produce_name,
                    price_per_unit=listing.price_per_unit,
                    unit=listing.unit,
                ),
                ordered_quantity=quantity,
                ordered_quantity_unit=suggestion.suggested_order_quantity_unit or listing.unit,
                total_goods_price=(listing.price_per_unit or 0) * quantity,
                currency=listing.currency or DEFAULT_CURRENCY,
                pickup_location=listing.location,
                delivery_location=delivery_location,
                status=OrderStatus.PENDING_FARMER_CONFIRMATION,
                payment_status=PaymentStatus.PENDING_COD,
                order_creation_date_time=now,
                last_updated=now,
                originating_match_suggestion_id=suggestion_id,
            )
            self.storage.commit_order_creation(order, suggestion_id, now)
        except Exception as e:
            logger.error(f"Error creating order for match {suggestion_id}: {e}")
            self._mark_error(suggestion_id, INTERNAL_ERROR_MESSAGE, now)
            return None

        logger.info(f"Order {order.id} created from Match {suggestion_id}.")
        return order.id

    def _mark_error(self, suggestion_id: str, message: str, now: datetime) -> None:
        try:
            self.storage.mark_suggestion_error(suggestion_id, message, now)
        except Exception as e:
            logger.error(f"Failed to update match {suggestion_id} to error state: {e}")
