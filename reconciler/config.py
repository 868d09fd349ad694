import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()  # Načte soubor .env do systémových proměnných

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///app.db")

# Tolerance pro porovnání částek (1 haléř)
AMOUNT_EPSILON = Decimal(os.environ.get("RECONCILE_AMOUNT_EPSILON", "0.01"))
MIN_CONFIDENCE = float(os.environ.get("RECONCILE_MIN_CONFIDENCE", "0.6"))
NAME_THRESHOLD = int(os.environ.get("RECONCILE_NAME_THRESHOLD", "85"))

# Faktury starší než dva roky se nepárují
MAX_LOOKBACK_DAYS = 730
LOOKBACK_DAYS = min(int(os.environ.get("RECONCILE_LOOKBACK_DAYS", MAX_LOOKBACK_DAYS)), MAX_LOOKBACK_DAYS)

PAYMENT_EMAIL_DEBUG_DIR = os.environ.get(
    "PAYMENT_EMAIL_DEBUG_DIR",
    os.path.join(os.getcwd(), "payment-emails"),
)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_JSON = os.environ.get("LOG_JSON", "false").lower() in ("1", "true", "yes")


def default_settings():
    return {
        "SQLALCHEMY_DATABASE_URI": DATABASE_URL,
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "RECONCILE_AMOUNT_EPSILON": AMOUNT_EPSILON,
        "RECONCILE_MIN_CONFIDENCE": MIN_CONFIDENCE,
        "RECONCILE_NAME_THRESHOLD": NAME_THRESHOLD,
        "RECONCILE_LOOKBACK_DAYS": LOOKBACK_DAYS,
        "PAYMENT_EMAIL_DEBUG_DIR": PAYMENT_EMAIL_DEBUG_DIR,
        "LOG_LEVEL": LOG_LEVEL,
        "LOG_JSON": LOG_JSON,
    }
