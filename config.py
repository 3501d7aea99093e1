"""
Configuration file for the HarvestLink matching backend
"""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# LLM Configuration - Groq API (OpenAI compatible)
LLM_MODEL = os.getenv("LLM_MODEL", "openai/gpt-oss-20b")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_API_BASE = os.getenv("GROQ_API_BASE", "https://api.groq.com/openai/v1")
LLM_TEMPERATURE = 0.1
LLM_MAX_OUTPUT_TOKENS = 500
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "15"))

# Firebase credentials (see marketplace_storage._initialize_firebase)
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH")
FIREBASE_CREDENTIALS_JSON = os.getenv("FIREBASE_CREDENTIALS_JSON")

# Firestore collections
LISTINGS_COLLECTION = "produceListings"
BUYER_REQUESTS_COLLECTION = "buyerRequests"
MATCH_SUGGESTIONS_COLLECTION = "matchSuggestions"
ORDERS_COLLECTION = "orders"
PAYOUT_QUEUE_COLLECTION = "payoutQueue"
USERS_COLLECTION = "appUsers"

# Matching
MIN_AI_SCORE_THRESHOLD = float(os.getenv("MIN_AI_SCORE_THRESHOLD", "0.7"))
SUGGESTION_TTL_HOURS = 24  # Suggestions expire 24 hours after creation
SUGGESTION_STALE_DAYS = 3  # Sweeper expires unresolved suggestions after 3 days
TOP_N_BUYER_SUGGESTIONS = 3
DAYS_UNTIL_EXPIRY_UNKNOWN = 999
DEFAULT_QUANTITY_UNIT = "unit"

# Orders and payouts
DEFAULT_CURRENCY = "PHP"

# Scheduler wiring for the expiry sweep
EXPIRY_SCHEDULE = "every day 01:00"
EXPIRY_TIMEZONE = "Asia/Manila"
EXPIRY_TIMEOUT_SECONDS = 540

# Delivery fee stub (flat arithmetic, no distance lookup)
DELIVERY_BASE_FEE = 50.0
DELIVERY_FEE_PER_UNIT = 0.5

MATCH_SCORING_SYSTEM_PROMPT = """You are an AI assistant for a fresh produce marketplace.
You compare one farmer's produce listing with one buyer's request and judge how well they fit together.

Always answer with a single JSON object and nothing else:
{"score": <integer from 1 to 10>, "rationale": "<one or two sentences>"}

A score of 10 is a perfect match, 1 means the two should not be paired.
"""

MATCH_SCORING_PROMPT_TEMPLATE = """You are an AI assistant helping to match fresh produce listings from farmers with requests from buyers. Analyze the following Produce Listing and Buyer Request in detail:
Produce Listing Details:
- Name: {listing_name}
- Category: {listing_category}
- Available Quantity: {listing_quantity} {listing_unit}
- Price: {listing_price}
- Expiry Date: {expiry_date}
- Days Until Expiry: {days_until_expiry}
- Current Date: {current_date}
- Farmer's Notes: "{listing_notes}"
- Pickup Location: {listing_location}
Buyer Request Details:
- Needed Produce Name: {request_name}
- Needed Category: {request_category}
- Desired Quantity: {request_quantity} {request_unit}
- Desired Price Range: {request_price}
- Buyer's Notes: "{request_notes}"
- Delivery Location: {request_location}
Considering all these factors (name/category similarity, quantity alignment, freshness based on days until expiry, price compatibility, and any specific notes from farmer or buyer), please:
1. Provide a suitability score for this match on a scale of 1 to 10 (where 10 is a perfect match).
2. Provide a concise rationale for your score, highlighting the key factors.
Output your response as a JSON object with "score" and "rationale" fields only."""

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
