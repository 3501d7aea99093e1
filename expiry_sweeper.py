"""
Scheduled expiry of listings, buyer requests and stale match suggestions
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from config import (
    LISTINGS_COLLECTION, BUYER_REQUESTS_COLLECTION, MATCH_SUGGESTIONS_COLLECTION,
    SUGGESTION_STALE_DAYS
)
from marketplace_models import ListingStatus, BuyerRequestStatus, SuggestionStatus, as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepRule:
    name: str
    collection: str
    timestamp_field: str
    active_statuses: List[str]
    max_age: Optional[timedelta] = None  # None: timestamp is itself a deadline


SWEEP_RULES = [
    SweepRule(
        name="listings",
        collection=LISTINGS_COLLECTION,
        timestamp_field="expiryTimestamp",
        active_statuses=[ListingStatus.AVAILABLE.value, ListingStatus.PARTIALLY_COMMITTED.value],
    ),
    SweepRule(
        name="buyer_requests",
        collection=BUYER_REQUESTS_COLLECTION,
        timestamp_field="deliveryDeadline",
        active_statuses=[BuyerRequestStatus.PENDING_MATCH.value, BuyerRequestStatus.PARTIALLY_FULFILLED.value],
    ),
    SweepRule(
        name="match_suggestions",
        collection=MATCH_SUGGESTIONS_COLLECTION,
        timestamp_field="suggestionTimestamp",
        active_statuses=[
            SuggestionStatus.AI_SUGGESTION_FOR_FARMER.value,
            SuggestionStatus.AI_SUGGESTION_FOR_BUYER.value,
            SuggestionStatus.ACCEPTED_BY_FARMER.value,
            SuggestionStatus.ACCEPTED_BY_BUYER.value,
        ],
        max_age=timedelta(days=SUGGESTION_STALE_DAYS),
    ),
]


class ExpirySweeper:
    """Daily job; each sweep is its own batch and fails independently"""

    def __init__(self, storage, rules: Optional[List[SweepRule]] = None):
        self.storage = storage
        self.rules = rules if rules is not None else SWEEP_RULES

    def run(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Returns expired-document counts per sweep; -1 marks a failed sweep"""
        now = as_utc(now) if now else utc_now()
        logger.info(f"Starting expiry sweep at {now.isoformat()}")
        report = {}
        for rule in self.rules:
            report[rule.name] = self._sweep(rule, now)
        logger.info(f"Expiry sweep finished: {report}")
        return report

    def _sweep(self, rule: SweepRule, now: datetime) -> int:
        cutoff = now - rule.max_age if rule.max_age else now
        try:
            doc_ids = self.storage.find_expired(rule.collection, rule.timestamp_field, cutoff, rule.active_statuses)
            if not doc_ids:
                logger.info(f"No {rule.name} found to expire in this run.")
                return 0
            for doc_id in doc_ids:
                logger.info(f"Expiring {rule.collection}/{doc_id}")
            count = self.storage.expire_documents(rule.collection, doc_ids, now)
        except Exception as e:
            logger.error(f"Error expiring {rule.name}: {e}")
            return -1
        logger.info(f"Successfully expired {count} {rule.name}.")
        return count
