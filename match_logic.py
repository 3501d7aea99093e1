"""
Match generation - scores listing/request pairs with the LLM oracle
"""
import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from config import (
    MATCH_SCORING_PROMPT_TEMPLATE, DAYS_UNTIL_EXPIRY_UNKNOWN, DEFAULT_QUANTITY_UNIT
)
from marketplace_models import (
    ProduceListing, BuyerRequest, MatchGenerationInput, MatchOutput,
    MatchContext, LocationData, as_utc, utc_now
)

logger = logging.getLogger(__name__)


def calculate_days_until(expiry: Optional[datetime], now: datetime) -> int:
    """Whole days until expiry (rounded up, never negative); 999 when unknown"""
    if not isinstance(expiry, datetime):
        return DAYS_UNTIL_EXPIRY_UNKNOWN
    diff_days = math.ceil((expiry - now) / timedelta(days=1))
    return diff_days if diff_days > 0 else 0


def _location_label(location: Optional[LocationData]) -> str:
    return (location or LocationData()).label()


def _listing_price_text(listing: ProduceListing) -> str:
    if listing.price_per_unit:
        return f"{listing.price_per_unit} per {listing.unit or DEFAULT_QUANTITY_UNIT}"
    return "Not specified"


def _request_price_text(request: BuyerRequest) -> str:
    unit = request.unit or DEFAULT_QUANTITY_UNIT
    price_range = request.price_range
    if price_range and price_range.min_per_unit:
        upper = price_range.max_per_unit or "unspecified"
        return f"{price_range.min_per_unit} - {upper} per {unit}"
    if request.target_price_per_unit:
        return f"{request.target_price_per_unit} per {unit}"
    return "Not specified"


def build_match_prompt(listing: ProduceListing, request: BuyerRequest, now: datetime) -> str:
    """Render the scoring prompt for one listing/request pair"""
    expiry = listing.expiry_timestamp
    return MATCH_SCORING_PROMPT_TEMPLATE.format(
        listing_name=listing.produce_name or "Unknown produce",
        listing_category=listing.category or "Uncategorized",
        listing_quantity=listing.quantity or 0,
        listing_unit=listing.unit or "units",
        listing_price=_listing_price_text(listing),
        expiry_date=expiry.date().isoformat() if expiry else "Unknown",
        days_until_expiry=calculate_days_until(expiry, now),
        current_date=now.date().isoformat(),
        listing_notes=listing.description or "No notes provided",
        listing_location=_location_label(listing.location),
        request_name=request.produce_needed_name or "Unknown needed produce",
        request_category=request.category or "Uncategorized",
        request_quantity=request.desired_quantity or 0,
        request_unit=request.unit or "units",
        request_price=_request_price_text(request),
        request_notes=request.description or "No notes provided",
        request_location=_location_label(request.delivery_location),
    )


def _pair_items(match_input: MatchGenerationInput) -> List[Tuple[ProduceListing, BuyerRequest]]:
    """Triggering item x each candidate, one pair per candidate"""
    trigger = match_input.triggering_item
    pairs = []
    for candidate in match_input.potential_matches:
        if match_input.context == MatchContext.LISTING_TRIGGERED:
            listing, request = trigger, candidate
        else:
            listing, request = candidate, trigger
        if not isinstance(listing, ProduceListing) or not isinstance(request, BuyerRequest):
            logger.warning(
                f"SKIPPING candidate {candidate.id}: wrong document type for context {match_input.context}"
            )
            continue
        pairs.append((listing, request))
    return pairs


def suggested_quantity(listing: ProduceListing, request: BuyerRequest) -> Tuple[float, str]:
    """min(available, desired) with missing quantities as 0; unit from listing, then request"""
    quantity = min(float(listing.quantity or 0), float(request.desired_quantity or 0))
    unit = listing.unit or request.unit or DEFAULT_QUANTITY_UNIT
    return quantity, unit


def generate_match_suggestions(
    match_input: MatchGenerationInput,
    scorer,
    now: Optional[datetime] = None
) -> List[MatchOutput]:
    """
    Score every triggering-item x candidate pair and keep the good ones.
    
    Rules:
    1. Both produce names must be present, else the pair is skipped
    2. Farmer ID and buyer ID must be present, else the pair is skipped
    3. LLM score (1-10) / 10 must reach config.min_score_threshold
    
    Returns accepted pairs in candidate order (no ranking).
    """
    now = as_utc(now) if now else utc_now()
    threshold = match_input.config.min_score_threshold
    logger.info(
        f"Match generation: context={match_input.context}, trigger={match_input.triggering_item.id}, "
        f"candidates={len(match_input.potential_matches)}, threshold={threshold}"
    )

    suggestions = []
    for listing, request in _pair_items(match_input):
        pair_label = f"L:{listing.id}/R:{request.id}"
        if not listing.produce_name or not request.produce_needed_name:
            logger.warning(f"SKIPPING pair {pair_label}: missing produce name")
            continue
        if not listing.id or not request.id:
            logger.warning(f"SKIPPING pair {pair_label}: missing document id")
            continue
        if not listing.farmer_id or not request.buyer_id:
            logger.warning(f"SKIPPING pair {pair_label}: missing farmerId/buyerId")
            continue

        result = scorer.score(build_match_prompt(listing, request, now))
        match_score = result.score / 10
        if match_score < threshold:
            logger.info(f"Pair {pair_label} scored {match_score:.2f}, below threshold")
            continue

        quantity, unit = suggested_quantity(listing, request)
        suggestions.append(MatchOutput(
            listing_id=listing.id,
            farmer_id=listing.farmer_id,
            buyer_request_id=request.id,
            buyer_id=request.buyer_id,
            suggested_order_quantity=quantity,
            suggested_order_quantity_unit=unit,
            ai_match_score=match_score,
            ai_match_rationale=result.rationale,
        ))
        logger.info(f"Pair {pair_label} accepted with score {match_score:.2f}")

    logger.info(f"Match generation produced {len(suggestions)} suggestions")
    return suggestions


def rank_top_matches(matches: List[MatchOutput], limit: int) -> List[MatchOutput]:
    """Highest score first; ties keep input order (sorted() is stable)"""
    return sorted(matches, key=lambda m: m.ai_match_score, reverse=True)[:limit]
