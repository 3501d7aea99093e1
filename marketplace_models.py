"""
Data models for the produce marketplace (listings, requests, match suggestions, orders, payouts)
"""
from typing import List, Optional, Dict, Any, Union, Annotated
from pydantic import BaseModel, ConfigDict, Field, AfterValidator, field_validator
from pydantic.alias_generators import to_camel
from enum import Enum
from datetime import datetime, timezone


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so they compare with Firestore timestamps"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FirestoreModel(BaseModel):
    """Base model for documents stored with camelCase field names"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )

    def to_firestore(self) -> Dict[str, Any]:
        """Convert model to a Firestore-compatible dictionary (id is the document key)"""
        return self.model_dump(by_alias=True, exclude={'id'}, exclude_none=True)


def _coerce_id(v):
    """Accept both int and string IDs, store as string"""
    if v is None or isinstance(v, str):
        return v
    if isinstance(v, int):
        return str(v)
    return v


class ListingStatus(str, Enum):
    """Produce listing status"""
    AVAILABLE = "available"
    PARTIALLY_COMMITTED = "partially_committed"
    FULFILLED = "fulfilled"
    COMMITTED = "committed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class BuyerRequestStatus(str, Enum):
    """Buyer request status"""
    PENDING_MATCH = "pending_match"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SuggestionStatus(str, Enum):
    """Match suggestion status"""
    AI_SUGGESTION_FOR_FARMER = "ai_suggestion_for_farmer"
    AI_SUGGESTION_FOR_BUYER = "ai_suggestion_for_buyer"
    ACCEPTED_BY_FARMER = "accepted_by_farmer"
    ACCEPTED_BY_BUYER = "accepted_by_buyer"
    DECLINED_BY_FARMER = "declined_by_farmer"
    DECLINED_BY_BUYER = "declined_by_buyer"
    ORDER_PROCESSING = "order_processing"
    ORDER_CREATED = "order_created"
    ERROR_CREATING_ORDER = "error_creating_order"
    EXPIRED = "expired"


class OrderStatus(str, Enum):
    """Order status, in lifecycle order"""
    PENDING_FARMER_CONFIRMATION = "pending_farmer_confirmation"
    FARMER_CONFIRMED_AWAITING_DRIVER = "farmer_confirmed_awaiting_driver"
    DRIVER_PICKED_UP_ENROUTE_TO_DELIVERY = "driver_picked_up_enroute_to_delivery"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED_PENDING_BUYER_CONFIRMATION = "delivered_pending_buyer_confirmation"
    COMPLETED = "completed"
    CANCELLED_BY_FARMER = "cancelled_by_farmer"
    CANCELLED_BY_BUYER = "cancelled_by_buyer"
    CANCELLED_BY_PLATFORM = "cancelled_by_platform"
    DELIVERY_FAILED = "delivery_failed"
    DISPUTED = "disputed"


class PaymentStatus(str, Enum):
    PENDING_COD = "pending_cod"
    PAID_COD = "paid_cod"
    PAYMENT_PROCESSING = "payment_processing"
    PAYMENT_FAILED = "payment_failed"
    REFUNDED = "refunded"
    SETTLEMENT_PENDING_FARMER = "settlement_pending_farmer"
    SETTLEMENT_COMPLETE_FARMER = "settlement_complete_farmer"


class PayoutStatus(str, Enum):
    PENDING_PROCESSING = "pending_processing"
    PAID = "paid"
    FAILED = "failed"


class MatchContext(str, Enum):
    """Which side triggered a matching run"""
    LISTING_TRIGGERED = "listing_triggered"
    REQUEST_TRIGGERED = "request_triggered"


class LocationData(FirestoreModel):
    """Pickup or delivery location"""
    city: Optional[str] = None
    region: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def label(self) -> str:
        return f"{self.city or 'Unknown'}, {self.region or 'Unknown'}"


class PriceRange(FirestoreModel):
    min_per_unit: Optional[float] = Field(None, description="Lowest acceptable price per unit")
    max_per_unit: Optional[float] = Field(None, description="Highest acceptable price per unit")


class ProduceListing(FirestoreModel):
    """Farmer's produce listing (produceListings collection)"""
    id: Optional[str] = Field(None, description="Firestore document ID")
    farmer_id: Optional[str] = Field(None, description="Owning farmer ID")
    farmer_name: Optional[str] = None
    produce_name: str = Field("", description="Produce name, e.g. 'Tomato'")
    category: Optional[str] = None
    quantity: Optional[float] = Field(None, description="Quantity available")
    unit: Optional[str] = Field(None, description="Unit of measurement")
    price_per_unit: Optional[float] = None
    currency: Optional[str] = None
    description: Optional[str] = Field(None, description="Farmer's notes")
    location: Optional[LocationData] = None
    listing_timestamp: Optional[UtcDatetime] = None
    expiry_timestamp: Optional[UtcDatetime] = None
    status: ListingStatus = ListingStatus.AVAILABLE
    quantity_committed: Optional[float] = None
    last_updated: Optional[UtcDatetime] = None

    @field_validator('id', 'farmer_id', mode='before')
    @classmethod
    def validate_ids(cls, v):
        """Accept both int and string IDs"""
        return _coerce_id(v)


class BuyerRequest(FirestoreModel):
    """Buyer's purchase request (buyerRequests collection)"""
    id: Optional[str] = Field(None, description="Firestore document ID")
    buyer_id: Optional[str] = Field(None, description="Requesting buyer ID")
    buyer_name: Optional[str] = None
    produce_needed_name: str = Field("", description="Needed produce name")
    category: Optional[str] = None
    desired_quantity: Optional[float] = None
    unit: Optional[str] = None
    price_range: Optional[PriceRange] = None
    target_price_per_unit: Optional[float] = None
    description: Optional[str] = Field(None, description="Buyer's notes")
    delivery_location: Optional[LocationData] = None
    delivery_deadline: Optional[UtcDatetime] = None
    request_timestamp: Optional[UtcDatetime] = None
    status: BuyerRequestStatus = BuyerRequestStatus.PENDING_MATCH
    is_ai_match_preferred: bool = Field(False, description="False opts the request out of automatic matching")
    total_quantity_fulfilled: Optional[float] = None
    fulfilled_by_order_ids: List[str] = Field(default_factory=list)
    last_updated: Optional[UtcDatetime] = None

    @field_validator('id', 'buyer_id', mode='before')
    @classmethod
    def validate_ids(cls, v):
        """Accept both int and string IDs"""
        return _coerce_id(v)


class AppUser(FirestoreModel):
    """Marketplace user profile (appUsers collection), read-only here"""
    id: Optional[str] = None
    display_name: Optional[str] = None
    default_delivery_location: Optional[LocationData] = None


class MatchGenerationConfig(BaseModel):
    min_score_threshold: float = Field(0.7, ge=0.0, le=1.0)


class MatchGenerationInput(BaseModel):
    """Input for one matching run: triggering item against candidates of the opposite type"""
    triggering_item: Union[ProduceListing, BuyerRequest]
    potential_matches: List[Union[ProduceListing, BuyerRequest]]
    context: MatchContext
    config: MatchGenerationConfig = Field(default_factory=MatchGenerationConfig)


class MatchOutput(BaseModel):
    """One accepted listing/request pair"""
    listing_id: str
    farmer_id: str
    buyer_request_id: str
    buyer_id: str
    suggested_order_quantity: float
    suggested_order_quantity_unit: str
    ai_match_score: float = Field(..., ge=0.0, le=1.0)
    ai_match_rationale: str


class MatchSuggestion(FirestoreModel):
    """Match suggestion document (matchSuggestions collection)"""
    id: Optional[str] = None
    listing_id: str
    listing_ref_path: Optional[str] = None
    farmer_id: str
    buyer_request_id: Optional[str] = None
    buyer_request_ref_path: Optional[str] = None
    buyer_id: str
    suggested_order_quantity: float = 0
    suggested_order_quantity_unit: Optional[str] = None
    ai_match_score: float = Field(0.0, ge=0.0, le=1.0)
    ai_match_rationale: str = ""
    status: SuggestionStatus
    suggestion_timestamp: Optional[UtcDatetime] = None
    suggestion_expiry_timestamp: Optional[UtcDatetime] = None
    related_order_id: Optional[str] = None
    error_message: Optional[str] = None
    last_updated: Optional[UtcDatetime] = None

    @field_validator('id', 'farmer_id', 'buyer_id', mode='before')
    @classmethod
    def validate_ids(cls, v):
        """Accept both int and string IDs"""
        return _coerce_id(v)


class ProduceSnapshot(FirestoreModel):
    produce_name: Optional[str] = None
    price_per_unit: Optional[float] = None
    unit: Optional[str] = None


class Order(FirestoreModel):
    """Order document (orders collection)"""
    id: Optional[str] = None
    buyer_id: Optional[str] = None
    buyer_name: Optional[str] = None
    farmer_id: Optional[str] = None
    farmer_name: Optional[str] = None
    listing_id: Optional[str] = None
    buyer_request_id: Optional[str] = None
    produce_details_snapshot: Optional[ProduceSnapshot] = None
    ordered_quantity: float = 0
    ordered_quantity_unit: Optional[str] = None
    total_goods_price: float = 0
    currency: str = "PHP"
    pickup_location: Optional[LocationData] = None
    delivery_location: Optional[LocationData] = None
    status: OrderStatus = OrderStatus.PENDING_FARMER_CONFIRMATION
    payment_status: PaymentStatus = PaymentStatus.PENDING_COD
    order_creation_date_time: Optional[UtcDatetime] = None
    last_updated: Optional[UtcDatetime] = None
    originating_match_suggestion_id: Optional[str] = None
    payout_initiation_timestamp: Optional[UtcDatetime] = None
    delivery_fee: Optional[float] = None

    @field_validator('id', 'farmer_id', 'buyer_id', mode='before')
    @classmethod
    def validate_ids(cls, v):
        """Accept both int and string IDs"""
        return _coerce_id(v)


class PayoutRequest(FirestoreModel):
    """Farmer payout queue entry (payoutQueue collection), append-only"""
    order_id: str
    farmer_id: str
    amount: float
    currency: str
    status: PayoutStatus = PayoutStatus.PENDING_PROCESSING
    request_timestamp: UtcDatetime
    last_updated: UtcDatetime


class LLMMatchResponse(BaseModel):
    """Schema the scoring model's JSON reply must satisfy"""
    score: int = Field(..., ge=1, le=10)
    rationale: str = Field(..., min_length=1)


class ScoreResult(BaseModel):
    """Outcome of one scoring call; succeeded=False marks a degraded default"""
    score: int = Field(..., ge=1, le=10)
    rationale: str
    succeeded: bool = True


class DeliveryFeeQuote(BaseModel):
    order_id: str
    delivery_fee: float
    currency: str
    explanation: str
