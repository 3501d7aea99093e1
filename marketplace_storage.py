"""
Firebase Firestore storage for the produce marketplace
Reads listings, requests, users; writes suggestions, orders, payouts and expiries
"""
from typing import List, Dict, Optional, Any, Iterable
import logging
import json
import os
from datetime import datetime

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core.exceptions import AlreadyExists
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import ValidationError

from config import (
    FIREBASE_CREDENTIALS_PATH, FIREBASE_CREDENTIALS_JSON,
    LISTINGS_COLLECTION, BUYER_REQUESTS_COLLECTION, MATCH_SUGGESTIONS_COLLECTION,
    ORDERS_COLLECTION, PAYOUT_QUEUE_COLLECTION, USERS_COLLECTION
)
from marketplace_models import (
    ProduceListing, BuyerRequest, AppUser, MatchSuggestion, Order, PayoutRequest,
    SuggestionStatus
)

logger = logging.getLogger(__name__)

EXPIRED_STATUS = "expired"


def _load_credentials() -> Optional[credentials.Certificate]:
    """Service account from FIREBASE_CREDENTIALS_PATH, then FIREBASE_CREDENTIALS_JSON; None means ADC"""
    if FIREBASE_CREDENTIALS_PATH and os.path.exists(FIREBASE_CREDENTIALS_PATH):
        logger.info(f"Using Firebase service account file {FIREBASE_CREDENTIALS_PATH}")
        return credentials.Certificate(FIREBASE_CREDENTIALS_PATH)
    if FIREBASE_CREDENTIALS_JSON:
        logger.info("Using Firebase service account from FIREBASE_CREDENTIALS_JSON")
        return credentials.Certificate(json.loads(FIREBASE_CREDENTIALS_JSON))
    return None


def _initialize_firebase():
    """Return a Firestore client, creating the default Firebase app on first use"""
    try:
        firebase_admin.get_app()
    except ValueError:
        cred = _load_credentials()
        try:
            firebase_admin.initialize_app(cred)
        except Exception as e:
            logger.error(f"Failed to initialize Firebase: {e}")
            raise RuntimeError(
                "Firebase initialization failed. Set FIREBASE_CREDENTIALS_PATH or "
                "FIREBASE_CREDENTIALS_JSON, or run with Google application default credentials."
            ) from e
        logger.info(f"Firebase app initialized ({'service account' if cred else 'default credentials'})")
    return firestore.client()


class MarketplaceStorage:
    """Firebase Firestore storage for marketplace documents.

    Read errors propagate to the caller; trigger handlers decide whether a
    failure is logged or turned into a document status.
    """

    def __init__(self, db=None):
        self.db = db if db is not None else _initialize_firebase()
        self.listings_collection = self.db.collection(LISTINGS_COLLECTION)
        self.buyer_requests_collection = self.db.collection(BUYER_REQUESTS_COLLECTION)
        self.suggestions_collection = self.db.collection(MATCH_SUGGESTIONS_COLLECTION)
        self.orders_collection = self.db.collection(ORDERS_COLLECTION)
        self.payout_collection = self.db.collection(PAYOUT_QUEUE_COLLECTION)
        self.users_collection = self.db.collection(USERS_COLLECTION)
        logger.info("MarketplaceStorage initialized with Firebase Firestore")

    def _get_document(self, collection, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = collection.document(str(doc_id)).get()
        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        data['id'] = doc.id
        return data

    def _query_by_status(self, collection, statuses: Iterable[str], model_cls) -> List[Any]:
        """Fetch documents whose status is in statuses, skipping ones that fail the schema"""
        items = []
        query = collection.where(filter=FieldFilter('status', 'in', list(statuses)))
        for doc in query.stream():
            data = doc.to_dict() or {}
            data['id'] = doc.id
            try:
                items.append(model_cls.model_validate(data))
            except ValidationError as e:
                logger.warning(f"Skipping malformed {model_cls.__name__} {doc.id}: {e.error_count()} errors")
        return items

    # Reads
    def get_listing(self, listing_id: str) -> Optional[ProduceListing]:
        data = self._get_document(self.listings_collection, listing_id)
        return ProduceListing.model_validate(data) if data else None

    def get_buyer_request(self, request_id: str) -> Optional[BuyerRequest]:
        data = self._get_document(self.buyer_requests_collection, request_id)
        return BuyerRequest.model_validate(data) if data else None

    def get_user(self, user_id: str) -> Optional[AppUser]:
        data = self._get_document(self.users_collection, user_id)
        return AppUser.model_validate(data) if data else None

    def get_listings_by_status(self, statuses: Iterable[str]) -> List[ProduceListing]:
        return self._query_by_status(self.listings_collection, statuses, ProduceListing)

    def get_buyer_requests_by_status(self, statuses: Iterable[str]) -> List[BuyerRequest]:
        return self._query_by_status(self.buyer_requests_collection, statuses, BuyerRequest)

    def new_order_id(self) -> str:
        """Reserve an auto-generated order document ID"""
        return self.orders_collection.document().id

    # Match suggestions
    def create_match_suggestions(self, suggestions: List[MatchSuggestion]) -> List[str]:
        """Create all suggestions in one atomic batch; returns the new document IDs"""
        if not suggestions:
            return []
        batch = self.db.batch()
        created_ids = []
        for suggestion in suggestions:
            suggestion_ref = self.suggestions_collection.document()
            suggestion.id = suggestion_ref.id
            batch.set(suggestion_ref, suggestion.to_firestore())
            created_ids.append(suggestion_ref.id)
        batch.commit()
        logger.info(f"Created {len(created_ids)} match suggestions in Firebase")
        return created_ids

    def mark_suggestion_error(self, suggestion_id: str, message: str, now: datetime) -> None:
        self.suggestions_collection.document(suggestion_id).update({
            'status': SuggestionStatus.ERROR_CREATING_ORDER.value,
            'errorMessage': message,
            'lastUpdated': now,
        })
        logger.info(f"Marked match suggestion {suggestion_id} as error_creating_order")

    # Orders
    def commit_order_creation(self, order: Order, suggestion_id: str, now: datetime) -> None:
        """Write the order and its compensating counters as one atomic batch"""
        quantity = order.ordered_quantity
        batch = self.db.batch()
        batch.set(self.orders_collection.document(order.id), order.to_firestore())
        batch.update(self.listings_collection.document(order.listing_id), {
            'quantityCommitted': firestore.Increment(quantity),
            'lastUpdated': now,
        })
        batch.update(self.suggestions_collection.document(suggestion_id), {
            'relatedOrderId': order.id,
            'status': SuggestionStatus.ORDER_CREATED.value,
            'lastUpdated': now,
        })
        if order.buyer_request_id:
            batch.update(self.buyer_requests_collection.document(order.buyer_request_id), {
                'fulfilledByOrderIds': firestore.ArrayUnion([order.id]),
                'totalQuantityFulfilled': firestore.Increment(quantity),
                'lastUpdated': now,
            })
        batch.commit()
        logger.info(f"Order {order.id} committed for match suggestion {suggestion_id}")

    def update_order(self, order_id: str, fields: Dict[str, Any]) -> None:
        self.orders_collection.document(order_id).update(fields)

    def revert_listing_commitment(self, listing_id: str, quantity: float, now: datetime) -> None:
        self.listings_collection.document(listing_id).update({
            'quantityCommitted': firestore.Increment(-quantity),
            'lastUpdated': now,
        })
        logger.info(f"Reverted {quantity} committed units on listing {listing_id}")

    # Payouts
    def add_payout_request(self, payout: PayoutRequest) -> str:
        """Queue the payout under the order ID; an order is only ever queued once"""
        try:
            self.payout_collection.document(payout.order_id).create(payout.to_firestore())
        except AlreadyExists:
            logger.warning(f"Payout for order {payout.order_id} already queued, not adding another")
        return payout.order_id

    # Expiry
    def find_expired(self, collection_name: str, timestamp_field: str,
                     cutoff: datetime, statuses: Iterable[str]) -> List[str]:
        """IDs of documents with timestamp_field <= cutoff and status in statuses"""
        query = (
            self.db.collection(collection_name)
            .where(filter=FieldFilter(timestamp_field, '<=', cutoff))
            .where(filter=FieldFilter('status', 'in', list(statuses)))
        )
        return [doc.id for doc in query.stream()]

    def expire_documents(self, collection_name: str, doc_ids: List[str], now: datetime) -> int:
        """Set status=expired on all doc_ids in one batch"""
        if not doc_ids:
            return 0
        collection = self.db.collection(collection_name)
        batch = self.db.batch()
        for doc_id in doc_ids:
            batch.update(collection.document(doc_id), {'status': EXPIRED_STATUS, 'lastUpdated': now})
        batch.commit()
        return len(doc_ids)
