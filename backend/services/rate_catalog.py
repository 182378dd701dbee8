"""
Rate catalog — versioned, time-stamped lookup of billing parameters.

Tier rates and SKU configs are append-only: an admin edit publishes a new
version with a later effective_from instead of updating a row. The version
in effect at time t is the newest row with effective_from <= t; if that
version is inactive, nothing is in effect.

Every lookup reads the database (no cached snapshot), so edits apply to the
next computation while breakdowns that recorded an older version id stay
reproducible.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from models.db_models import SkuConfigDB, Tier, TierRateDB, UserDB, utcnow
from models.schemas import SkuConfig, TierRate
from services.adjustments import as_decimal, to_money
from services.errors import ConfigNotFound

logger = logging.getLogger(__name__)


class RateCatalog:
    """Read path over tier_rates / sku_configs. Safe to call repeatedly."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # TIER RATES
    # =========================================================================

    def resolve_tier_rate(self, tier: Tier, as_of: Optional[datetime] = None) -> TierRate:
        """
        Rate per minute for a tier at `as_of` (default: now).

        Raises:
            ConfigNotFound: no version in effect, or the latest one is inactive.
        """
        as_of = as_of or utcnow()
        row = (
            self.db.query(TierRateDB)
            .filter(TierRateDB.tier == tier, TierRateDB.effective_from <= as_of)
            .order_by(TierRateDB.effective_from.desc(), TierRateDB.id.desc())
            .first()
        )
        if row is None or not row.active:
            logger.error(f"No active tier rate for {Tier(tier).value} as of {as_of}")
            raise ConfigNotFound(f"No active tier rate configured for tier {Tier(tier).value}")

        return TierRate(
            version_id=row.id,
            tier=row.tier,
            rate_per_minute=to_money(row.rate_per_minute),
            rush_eligible=row.rush_eligible,
            active=row.active,
            effective_from=row.effective_from,
        )

    def resolve_editor_rate(self, editor: UserDB, as_of: Optional[datetime] = None) -> TierRate:
        """
        Rate for a specific editor: a positive personal override wins,
        otherwise the editor's tier rate.
        """
        override = editor.tier_rate_override
        has_override = override is not None and as_decimal(override) > 0
        if editor.tier is None and not has_override:
            raise ConfigNotFound(f"Editor {editor.id} has no tier and no positive personal rate")

        if has_override:
            # rush eligibility still follows the tier when there is one
            rush_eligible = False
            version_id = None
            if editor.tier is not None:
                try:
                    tier_rate = self.resolve_tier_rate(editor.tier, as_of)
                    rush_eligible = tier_rate.rush_eligible
                    version_id = tier_rate.version_id
                except ConfigNotFound:
                    pass
            return TierRate(
                version_id=version_id,
                tier=editor.tier,
                rate_per_minute=to_money(override),
                rush_eligible=rush_eligible,
                active=True,
                effective_from=as_of or utcnow(),
            )

        return self.resolve_tier_rate(editor.tier, as_of)

    def publish_tier_rate(
        self,
        tier: Tier,
        rate_per_minute: Decimal,
        rush_eligible: bool = False,
        active: bool = True,
        effective_from: Optional[datetime] = None,
    ) -> TierRateDB:
        """Append a new version. The caller owns the transaction."""
        row = TierRateDB(
            tier=tier,
            rate_per_minute=to_money(rate_per_minute),
            rush_eligible=rush_eligible,
            active=active,
            effective_from=effective_from or utcnow(),
        )
        self.db.add(row)
        self.db.flush()
        logger.info(
            f"Published tier rate {Tier(tier).value}: {row.rate_per_minute}/min "
            f"(active={active}, effective_from={row.effective_from})"
        )
        return row

    # =========================================================================
    # SKU CONFIGS
    # =========================================================================

    def resolve_sku_config(self, sku_code: str, as_of: Optional[datetime] = None) -> SkuConfig:
        """
        Billing configuration for a service SKU at `as_of` (default: now).

        Raises:
            ConfigNotFound: no version in effect, or the latest one is inactive.
        """
        as_of = as_of or utcnow()
        row = (
            self.db.query(SkuConfigDB)
            .filter(SkuConfigDB.sku_code == sku_code, SkuConfigDB.effective_from <= as_of)
            .order_by(SkuConfigDB.effective_from.desc(), SkuConfigDB.id.desc())
            .first()
        )
        if row is None or not row.active:
            logger.error(f"No active SKU config for '{sku_code}' as of {as_of}")
            raise ConfigNotFound(f"No active SKU config for '{sku_code}'")

        return SkuConfig(
            version_id=row.id,
            sku_code=row.sku_code,
            name=row.name,
            billable_minutes_base=as_decimal(row.billable_minutes_base),
            difficulty_factor_default=as_decimal(row.difficulty_factor_default),
            editor_budget_pct=as_decimal(row.editor_budget_pct),
            incentive_pool_pct=as_decimal(row.incentive_pool_pct),
            active=row.active,
            effective_from=row.effective_from,
        )

    def publish_sku_config(
        self,
        sku_code: str,
        billable_minutes_base: Decimal,
        editor_budget_pct: Decimal,
        difficulty_factor_default: Decimal = Decimal("1"),
        incentive_pool_pct: Decimal = Decimal("0"),
        name: Optional[str] = None,
        active: bool = True,
        effective_from: Optional[datetime] = None,
    ) -> SkuConfigDB:
        """Append a new version. The caller owns the transaction."""
        row = SkuConfigDB(
            sku_code=sku_code,
            name=name,
            billable_minutes_base=as_decimal(billable_minutes_base),
            difficulty_factor_default=as_decimal(difficulty_factor_default),
            editor_budget_pct=as_decimal(editor_budget_pct),
            incentive_pool_pct=as_decimal(incentive_pool_pct),
            active=active,
            effective_from=effective_from or utcnow(),
        )
        self.db.add(row)
        self.db.flush()
        logger.info(
            f"Published SKU config '{sku_code}': base={row.billable_minutes_base} min, "
            f"budget={row.editor_budget_pct}, pool={row.incentive_pool_pct} (active={active})"
        )
        return row
