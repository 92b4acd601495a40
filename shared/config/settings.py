import os
from dotenv import load_dotenv

load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT in ("production", "prod")

# Public base URL of this deployment, used to build gateway callback/redirect URLs
APP_URL = os.getenv("APP_URL", "http://localhost:4000").rstrip("/")

# --- Crypto payment gateway (Plisio) ---
PLISIO_API_KEY = os.getenv("PLISIO_API_KEY", "")
PLISIO_BASE_URL = os.getenv("PLISIO_BASE_URL", "https://plisio.net/api/v1").rstrip("/")
# The gateway signs callbacks with the merchant secret key
PLISIO_CALLBACK_SECRET = os.getenv("PLISIO_CALLBACK_SECRET", PLISIO_API_KEY)
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

SETTLEMENT_CURRENCY = os.getenv("SETTLEMENT_CURRENCY", "USDT").upper()
LOCAL_CURRENCY = os.getenv("LOCAL_CURRENCY", "INR").upper()
RATES_URL = os.getenv("RATES_URL", "")

# --- Gift card partner API ---
PARTNER_BASE_URL = os.getenv("PARTNER_BASE_URL", "https://api.dev.myhubble.money").rstrip("/")
PARTNER_CLIENT_ID = os.getenv("PARTNER_CLIENT_ID", "")
PARTNER_CLIENT_SECRET = os.getenv("PARTNER_CLIENT_SECRET", "")
PARTNER_DEFAULT_PHONE = os.getenv("PARTNER_DEFAULT_PHONE", "9999999999")
PARTNER_TIMEOUT_SECONDS = float(os.getenv("PARTNER_TIMEOUT_SECONDS", "15"))
# A fulfillment claim older than this is treated as abandoned and may be taken over
FULFILLMENT_CLAIM_TIMEOUT_SECONDS = float(os.getenv("FULFILLMENT_CLAIM_TIMEOUT_SECONDS", "300"))

# --- Chat bot ---
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_API_URL = os.getenv("TELEGRAM_API_URL", "https://api.telegram.org")
