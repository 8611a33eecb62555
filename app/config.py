import os
from dotenv import load_dotenv

load_dotenv()

# Required, fails fast if missing
API_KEY: str = os.environ["API_KEY"]

APP_ENV: str = os.getenv("APP_ENV", "development")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Shop platform version, selects the refund strategy
PLATFORM_VERSION: str = os.getenv("PLATFORM_VERSION", "1.7.8.0")
# Decimal places used when comparing refund totals (shop's _PS_PRICE_COMPUTE_PRECISION_)
PRICE_COMPUTE_PRECISION: int = int(os.getenv("PRICE_COMPUTE_PRECISION", "2"))
REFUNDABLE_TRANSACTION_STATES: str = os.getenv("REFUNDABLE_TRANSACTION_STATES", "COMPLETED,DECLINE,FULFILL")
LOCK_WAIT_TIMEOUT_SECONDS: float = float(os.getenv("LOCK_WAIT_TIMEOUT_SECONDS", "50"))

GATEWAY_NAME: str = os.getenv("GATEWAY_NAME", "WeArePlanet")
GATEWAY_SPACE_ID: int = int(os.getenv("GATEWAY_SPACE_ID", "1"))


def is_production() -> bool:
    return APP_ENV == "production"


def get_refundable_states() -> list[str]:
    return [state.strip().upper() for state in REFUNDABLE_TRANSACTION_STATES.split(",") if state.strip()]
