import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv

load_dotenv(dotenv_path=".env")

logger = logging.getLogger(__name__)

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY", "")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")
STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))  # seconds

# Fees (percentages are Decimal so money math never goes through float)
PLATFORM_FEE_MIN_PERCENTAGE = Decimal("6")
PLATFORM_FEE_MAX_PERCENTAGE = Decimal("10")
STRIPE_FEE_PERCENTAGE = Decimal("2.9")
STRIPE_FEE_FIXED_CENTS = 30


def parse_platform_fee_percentage(raw: Optional[str]) -> Decimal:
    """
    Parse and validate the platform fee percentage.

    Raises:
        ValueError: If the value is not a number or is outside [6, 10].
                    Raised at import, so the process does not boot.
    """
    if raw is None or raw.strip() == "":
        return Decimal("8")

    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        raise ValueError(f"PLATFORM_FEE_PERCENTAGE must be a number, got {raw!r}")

    if not value.is_finite() or not (PLATFORM_FEE_MIN_PERCENTAGE <= value <= PLATFORM_FEE_MAX_PERCENTAGE):
        raise ValueError(
            f"PLATFORM_FEE_PERCENTAGE must be between {PLATFORM_FEE_MIN_PERCENTAGE} "
            f"and {PLATFORM_FEE_MAX_PERCENTAGE}, got {raw!r}"
        )
    return value


PLATFORM_FEE_PERCENTAGE = parse_platform_fee_percentage(os.getenv("PLATFORM_FEE_PERCENTAGE"))

# Auth
ADMIN_ROLE = os.getenv("ADMIN_ROLE", "admin")

# Comma-separated list of browser origins allowed to call the API
CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]

if not STRIPE_SECRET_KEY:
    logger.warning("STRIPE_SECRET_KEY not set - donation checkout will answer 503")
