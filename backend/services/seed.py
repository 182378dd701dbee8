"""
Default rate catalog for a fresh database.

Only inserts what is missing: a tier or SKU that already has any version
(active or not) is left alone, so seeding never overrides an admin edit.
"""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from database import transaction
from models.db_models import SkuConfigDB, Tier, TierRateDB
from services.rate_catalog import RateCatalog

logger = logging.getLogger(__name__)

# (tier, rate per minute in rupees, rush eligible)
DEFAULT_TIER_RATES = [
    (Tier.JUNIOR, Decimal("250"), False),
    (Tier.STANDARD, Decimal("500"), True),
    (Tier.SENIOR, Decimal("750"), True),
    (Tier.ELITE, Decimal("1000"), True),
]

# (sku code, name) — one billable unit, 35% editor budget, 5% incentive pool
DEFAULT_SKUS = [
    ("EDITMAX", "EditMax"),
    ("CONTENTMAX", "ContentMax"),
    ("ADMAX", "AdMax"),
]
DEFAULT_BILLABLE_MINUTES_BASE = Decimal("1.0")
DEFAULT_DIFFICULTY_FACTOR = Decimal("1.0")
DEFAULT_EDITOR_BUDGET_PCT = Decimal("0.35")
DEFAULT_INCENTIVE_POOL_PCT = Decimal("0.05")


def seed_default_catalog(db: Session) -> dict:
    """
    Insert the default tier rates and SKUs that do not exist yet.

    Returns:
        {"tier_rates": <inserted count>, "skus": <inserted count>}
    """
    catalog = RateCatalog(db)
    inserted = {"tier_rates": 0, "skus": 0}

    with transaction(db):
        for tier, rate, rush_eligible in DEFAULT_TIER_RATES:
            if db.query(TierRateDB).filter(TierRateDB.tier == tier).first() is None:
                catalog.publish_tier_rate(tier, rate, rush_eligible=rush_eligible)
                inserted["tier_rates"] += 1

        for sku_code, name in DEFAULT_SKUS:
            if db.query(SkuConfigDB).filter(SkuConfigDB.sku_code == sku_code).first() is None:
                catalog.publish_sku_config(
                    sku_code,
                    billable_minutes_base=DEFAULT_BILLABLE_MINUTES_BASE,
                    editor_budget_pct=DEFAULT_EDITOR_BUDGET_PCT,
                    difficulty_factor_default=DEFAULT_DIFFICULTY_FACTOR,
                    incentive_pool_pct=DEFAULT_INCENTIVE_POOL_PCT,
                    name=name,
                )
                inserted["skus"] += 1

    logger.info(
        f"Seeded default catalog: {inserted['tier_rates']} tier rate(s), {inserted['skus']} SKU(s)"
    )
    return inserted
