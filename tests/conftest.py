import pytest
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from config import (
    LISTINGS_COLLECTION, BUYER_REQUESTS_COLLECTION, MATCH_SUGGESTIONS_COLLECTION,
    ORDERS_COLLECTION, PAYOUT_QUEUE_COLLECTION, USERS_COLLECTION
)
from marketplace_models import (
    ProduceListing, BuyerRequest, AppUser, PayoutRequest,
    ScoreResult
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def listing_data():
    return {
        "farmerId": "farmer_1",
        "farmerName": "Mang Juan",
        "produceName": "Tomato",
        "category": "Vegetables",
        "quantity": 50,
        "unit": "kg",
        "pricePerUnit": 40,
        "currency": "PHP",
        "description": "Harvested this week",
        "location": {"city": "Baguio", "region": "CAR"},
        "listingTimestamp": NOW - timedelta(days=1),
        "expiryTimestamp": NOW + timedelta(days=5),
        "status": "available",
        "quantityCommitted": 0,
    }


@pytest.fixture
def request_data():
    return {
        "buyerId": "buyer_1",
        "buyerName": "Fresh Eats Restaurant",
        "produceNeededName": "Tomato",
        "category": "Vegetables",
        "desiredQuantity": 30,
        "unit": "kg",
        "priceRange": {"minPerUnit": 35, "maxPerUnit": 45},
        "description": "Firm, for salads",
        "deliveryLocation": {"city": "Manila", "region": "NCR"},
        "deliveryDeadline": NOW + timedelta(days=3),
        "requestTimestamp": NOW,
        "status": "pending_match",
        "isAiMatchPreferred": True,
        "totalQuantityFulfilled": 0,
    }


@pytest.fixture
def make_scorer():
    """Deterministic stand-in for MatchScorer: returns the given 1-10 scores in call order"""
    class StubScorer:
        def __init__(self, scores):
            self.scores = list(scores)
            self.prompts = []

        def score(self, prompt: str) -> ScoreResult:
            self.prompts.append(prompt)
            index = len(self.prompts) - 1
            value = self.scores[index] if index < len(self.scores) else 1
            return ScoreResult(score=value, rationale=f"stub rationale {index}")

    return StubScorer


@pytest.fixture
def mock_storage():
    class MockStorage:
        """In-memory storage keeping camelCase documents like Firestore does"""

        def __init__(self):
            self.collections = defaultdict(dict)
            self.fail_on = set()  # method names that raise
            self.fail_collections = set()  # collections whose expiry query raises
            self._id = 0

        def _next_id(self, prefix):
            self._id += 1
            return f"{prefix}_{self._id}"

        def _maybe_fail(self, method):
            if method in self.fail_on:
                raise RuntimeError(f"simulated {method} failure")

        # Test helpers
        def add_document(self, collection, doc_id, data):
            self.collections[collection][doc_id] = dict(data)
            return doc_id

        def document(self, collection, doc_id):
            return self.collections[collection].get(doc_id)

        # Reads
        def get_listing(self, listing_id):
            data = self.document(LISTINGS_COLLECTION, listing_id)
            return ProduceListing.model_validate({**data, "id": listing_id}) if data else None

        def get_buyer_request(self, request_id):
            data = self.document(BUYER_REQUESTS_COLLECTION, request_id)
            return BuyerRequest.model_validate({**data, "id": request_id}) if data else None

        def get_user(self, user_id):
            data = self.document(USERS_COLLECTION, user_id)
            return AppUser.model_validate({**data, "id": user_id}) if data is not None else None

        def get_listings_by_status(self, statuses):
            return [
                ProduceListing.model_validate({**data, "id": doc_id})
                for doc_id, data in self.collections[LISTINGS_COLLECTION].items()
                if data.get("status") in statuses
            ]

        def get_buyer_requests_by_status(self, statuses):
            return [
                BuyerRequest.model_validate({**data, "id": doc_id})
                for doc_id, data in self.collections[BUYER_REQUESTS_COLLECTION].items()
                if data.get("status") in statuses
            ]

        def new_order_id(self):
            return self._next_id("order")

        # Writes
        def create_match_suggestions(self, suggestions):
            self._maybe_fail("create_match_suggestions")
            ids = []
            for suggestion in suggestions:
                suggestion.id = self._next_id("suggestion")
                self.collections[MATCH_SUGGESTIONS_COLLECTION][suggestion.id] = suggestion.to_firestore()
                ids.append(suggestion.id)
            return ids

        def mark_suggestion_error(self, suggestion_id, message, now):
            self._maybe_fail("mark_suggestion_error")
            doc = self.collections[MATCH_SUGGESTIONS_COLLECTION].setdefault(suggestion_id, {})
            doc.update({"status": "error_creating_order", "errorMessage": message, "lastUpdated": now})

        def commit_order_creation(self, order, suggestion_id, now):
            self._maybe_fail("commit_order_creation")
            quantity = order.ordered_quantity
            self.collections[ORDERS_COLLECTION][order.id] = order.to_firestore()
            listing = self.collections[LISTINGS_COLLECTION][order.listing_id]
            listing["quantityCommitted"] = listing.get("quantityCommitted", 0) + quantity
            suggestion = self.collections[MATCH_SUGGESTIONS_COLLECTION].setdefault(suggestion_id, {})
            suggestion.update({"status": "order_created", "relatedOrderId": order.id, "lastUpdated": now})
            if order.buyer_request_id:
                request = self.collections[BUYER_REQUESTS_COLLECTION][order.buyer_request_id]
                request["totalQuantityFulfilled"] = request.get("totalQuantityFulfilled", 0) + quantity
                request["fulfilledByOrderIds"] = request.get("fulfilledByOrderIds", []) + [order.id]

        def update_order(self, order_id, fields):
            self._maybe_fail("update_order")
            self.collections[ORDERS_COLLECTION].setdefault(order_id, {}).update(fields)

        def revert_listing_commitment(self, listing_id, quantity, now):
            self._maybe_fail("revert_listing_commitment")
            listing = self.collections[LISTINGS_COLLECTION][listing_id]
            listing["quantityCommitted"] = listing.get("quantityCommitted", 0) - quantity
            listing["lastUpdated"] = now

        def add_payout_request(self, payout: PayoutRequest):
            self._maybe_fail("add_payout_request")
            self.collections[PAYOUT_QUEUE_COLLECTION].setdefault(payout.order_id, payout.to_firestore())
            return payout.order_id

        # Expiry
        def find_expired(self, collection_name, timestamp_field, cutoff, statuses):
            if collection_name in self.fail_collections:
                raise RuntimeError(f"simulated query failure on {collection_name}")
            return [
                doc_id
                for doc_id, data in self.collections[collection_name].items()
                if data.get(timestamp_field) is not None
                and data[timestamp_field] <= cutoff
                and data.get("status") in statuses
            ]

        def expire_documents(self, collection_name, doc_ids, now):
            for doc_id in doc_ids:
                self.collections[collection_name][doc_id].update({"status": "expired", "lastUpdated": now})
            return len(doc_ids)

    return MockStorage()


@pytest.fixture
def seeded_storage(mock_storage, listing_data, request_data):
    """Storage with one listing, one request and both users"""
    mock_storage.add_document(LISTINGS_COLLECTION, "listing_1", listing_data)
    mock_storage.add_document(BUYER_REQUESTS_COLLECTION, "request_1", request_data)
    mock_storage.add_document(USERS_COLLECTION, "farmer_1", {"displayName": "Mang Juan"})
    mock_storage.add_document(
        USERS_COLLECTION, "buyer_1",
        {"displayName": "Fresh Eats Restaurant", "defaultDeliveryLocation": {"city": "Pasig", "region": "NCR"}},
    )
    return mock_storage


@pytest.fixture
def processing_suggestion():
    """Suggestion document as it looks once both parties accepted"""
    return {
        "listingId": "listing_1",
        "farmerId": "farmer_1",
        "buyerRequestId": "request_1",
        "buyerId": "buyer_1",
        "suggestedOrderQuantity": 30,
        "suggestedOrderQuantityUnit": "kg",
        "aiMatchScore": 0.8,
        "aiMatchRationale": "Good fit",
        "status": "order_processing",
        "suggestionTimestamp": NOW - timedelta(hours=2),
        "suggestionExpiryTimestamp": NOW + timedelta(hours=22),
    }
