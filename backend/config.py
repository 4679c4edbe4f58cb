"""
Application configuration
Values come from backend/.env (if present) and the process environment
"""
import os
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def _float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


# Database
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "sleek_fulfillment")
STORE_BACKEND = os.environ.get("STORE_BACKEND", "mongo").lower()  # mongo, memory

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
BASE_CURRENCY = os.environ.get("BASE_CURRENCY", "USD")

# Optimistic concurrency
MAX_COMMIT_ATTEMPTS = _int("MAX_COMMIT_ATTEMPTS", 3)

# Pricing rules (batch aggregation)
PRICING_COMPLEXITY_STEP = _float("PRICING_COMPLEXITY_STEP", 0.05)
PRICING_SOLO_MULTIPLIER = _float("PRICING_SOLO_MULTIPLIER", 1.5)
PRICING_MARKUP_LOW_FILL = _float("PRICING_MARKUP_LOW_FILL", 0.25)
PRICING_MARKUP_MID_FILL = _float("PRICING_MARKUP_MID_FILL", 0.20)
PRICING_MARKUP_HIGH_FILL = _float("PRICING_MARKUP_HIGH_FILL", 0.15)
PRICING_LOW_FILL_THRESHOLD = _float("PRICING_LOW_FILL_THRESHOLD", 30)
PRICING_HIGH_FILL_THRESHOLD = _float("PRICING_HIGH_FILL_THRESHOLD", 80)

# Capacity match score weights
MATCH_WEIGHT_PERFORMANCE = _float("MATCH_WEIGHT_PERFORMANCE", 0.35)
MATCH_WEIGHT_SPECIALIZATION = _float("MATCH_WEIGHT_SPECIALIZATION", 0.30)
MATCH_WEIGHT_LEADTIME = _float("MATCH_WEIGHT_LEADTIME", 0.20)
MATCH_WEIGHT_HEADROOM = _float("MATCH_WEIGHT_HEADROOM", 0.15)

# Batch defaults
BATCH_TARGET_QUANTITY = _int("BATCH_TARGET_QUANTITY", 500)
BATCH_MAX_STYLES = _int("BATCH_MAX_STYLES", 4)
BATCH_OVERFLOW_TOLERANCE = _int("BATCH_OVERFLOW_TOLERANCE", 0)
BATCH_WINDOW_DAYS = _int("BATCH_WINDOW_DAYS", 7)

# Offline submission queue
SYNC_MAX_RETRIES = _int("SYNC_MAX_RETRIES", 3)
SYNC_BACKOFF_BASE_SECONDS = _float("SYNC_BACKOFF_BASE_SECONDS", 2.0)
SYNC_BACKOFF_MAX_SECONDS = _float("SYNC_BACKOFF_MAX_SECONDS", 300.0)
SYNC_REQUEST_TIMEOUT_SECONDS = _float("SYNC_REQUEST_TIMEOUT_SECONDS", 30.0)
# Hosts queued submissions may be forwarded to (comma separated, empty refuses all)
SYNC_ALLOWED_HOSTS = [h.strip().lower() for h in os.environ.get("SYNC_ALLOWED_HOSTS", "").split(",") if h.strip()]

# Scheduler
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "true").lower() == "true"
BATCH_LOCK_INTERVAL_MINUTES = _int("BATCH_LOCK_INTERVAL_MINUTES", 5)
SYNC_QUEUE_INTERVAL_SECONDS = _int("SYNC_QUEUE_INTERVAL_SECONDS", 60)

# External collaborators
ADVISORY_SERVICE_URL = os.environ.get("ADVISORY_SERVICE_URL", "")
ADVISORY_API_KEY = os.environ.get("ADVISORY_API_KEY", "")
ADVISORY_TIMEOUT_SECONDS = _float("ADVISORY_TIMEOUT_SECONDS", 5.0)
PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET", "")
