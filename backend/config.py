import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _parse_bands(raw: str) -> list[tuple[Decimal, Decimal]]:
    """Parse "min:factor,min:factor" into a list sorted by threshold."""
    bands = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        threshold, factor = chunk.split(":")
        bands.append((Decimal(threshold.strip()), Decimal(factor.strip())))
    return sorted(bands)


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./payouts.db")
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "/tmp/payout_reports")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SEED_DEFAULT_CATALOG = os.getenv("SEED_DEFAULT_CATALOG", "false").lower() == "true"

# Payout requests (rupees)
MIN_PAYOUT = Decimal(os.getenv("MIN_PAYOUT", "500"))

# Reliability curve: 1.0 up to the grace period, linear down to the floor at the cap
RELIABILITY_GRACE_MINUTES = Decimal(os.getenv("RELIABILITY_GRACE_MINUTES", "0"))
RELIABILITY_CAP_MINUTES = Decimal(os.getenv("RELIABILITY_CAP_MINUTES", "600"))
RELIABILITY_FLOOR = Decimal(os.getenv("RELIABILITY_FLOOR", "0.70"))

# Quality bands: (minimum QC average, factor)
QUALITY_BANDS = _parse_bands(os.getenv("QUALITY_BANDS", "0:0.85,4.0:0.95,4.5:1.00,4.8:1.05"))
DEFAULT_QC_AVERAGE = Decimal(os.getenv("DEFAULT_QC_AVERAGE", "4.5"))

# Invitation preview range
PREVIEW_MIN_RELIABILITY_FACTOR = Decimal(os.getenv("PREVIEW_MIN_RELIABILITY_FACTOR", "0.85"))
PREVIEW_MIN_QUALITY_FACTOR = Decimal(os.getenv("PREVIEW_MIN_QUALITY_FACTOR", "0.95"))
PREVIEW_MAX_RELIABILITY_FACTOR = Decimal(os.getenv("PREVIEW_MAX_RELIABILITY_FACTOR", "1.00"))
PREVIEW_MAX_QUALITY_FACTOR = Decimal(os.getenv("PREVIEW_MAX_QUALITY_FACTOR", "1.05"))

# Flat bonus for rush projects handled by rush-eligible tiers (0 disables it)
RUSH_BONUS_AMOUNT = Decimal(os.getenv("RUSH_BONUS_AMOUNT", "0"))

# Unlock trigger retries on transient database conflicts
UNLOCK_MAX_RETRIES = int(os.getenv("UNLOCK_MAX_RETRIES", "3"))
UNLOCK_RETRY_BACKOFF = float(os.getenv("UNLOCK_RETRY_BACKOFF", "0.5"))
