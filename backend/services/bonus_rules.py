"""
Bonus rules — pluggable sources of post-cap bonus lines.

A rule is any callable (project, editor) -> list[BonusLine]. The payout
computer runs its rules in order and then fits the lines into the project's
incentive pool; new bonus types are new rules, not new branches in the
computation.

Built-in rules:
  GrantedBonusRule       mission rewards / promo codes recorded on the project
  RushDeliveryBonusRule  flat bonus on rush projects for rush-eligible tiers
"""

import logging
from decimal import Decimal
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import object_session

import config
from models.db_models import ProjectDB, UserDB
from models.schemas import BonusLine
from services.adjustments import ZERO, to_money
from services.errors import ConfigNotFound
from services.rate_catalog import RateCatalog

logger = logging.getLogger(__name__)

BonusRule = Callable[[ProjectDB, UserDB], list[BonusLine]]

RUSH_BONUS_CODE = "RUSH_DELIVERY"


class GrantedBonusRule:
    """Bonuses granted to this editor on this project by other collaborators."""

    def __call__(self, project: ProjectDB, editor: UserDB) -> list[BonusLine]:
        grants = sorted(
            (g for g in project.bonus_grants if g.editor_id == editor.id),
            key=lambda g: g.id,
        )
        return [BonusLine(code=g.code, amount=to_money(g.amount)) for g in grants]


class RushDeliveryBonusRule:
    """Flat bonus when a rush project is delivered by a rush-eligible tier."""

    def __init__(self, amount: Optional[Decimal] = None):
        self.amount = to_money(config.RUSH_BONUS_AMOUNT if amount is None else amount)

    def __call__(self, project: ProjectDB, editor: UserDB) -> list[BonusLine]:
        if not project.is_rush or self.amount <= ZERO:
            return []

        try:
            rate = RateCatalog(object_session(project)).resolve_editor_rate(editor)
        except ConfigNotFound:
            return []
        if not rate.rush_eligible:
            return []
        return [BonusLine(code=RUSH_BONUS_CODE, amount=self.amount)]


def default_bonus_rules() -> list[BonusRule]:
    return [GrantedBonusRule(), RushDeliveryBonusRule()]


# ===========================================================================
# Evaluation
# ===========================================================================

def evaluate_bonus_rules(
    rules: Iterable[BonusRule],
    project: ProjectDB,
    editor: UserDB,
) -> list[BonusLine]:
    """Collect lines from every rule, dropping non-positive amounts."""
    lines: list[BonusLine] = []
    for rule in rules:
        for line in rule(project, editor):
            if line.amount <= ZERO:
                logger.warning(
                    f"Ignoring non-positive bonus {line.code}={line.amount} "
                    f"for editor {editor.id} on project {project.id}"
                )
                continue
            lines.append(line)
    return lines


def fit_to_incentive_pool(
    lines: list[BonusLine],
    pool_remaining: Decimal,
) -> tuple[list[BonusLine], Decimal]:
    """
    Accept lines in order while they fit in the remaining incentive pool.

    A line that would overflow the pool is skipped; later, smaller lines
    may still fit.

    Returns:
        (applied lines, total applied amount)
    """
    applied: list[BonusLine] = []
    total = ZERO

    for line in lines:
        if total + line.amount <= pool_remaining:
            applied.append(line)
            total += line.amount
        else:
            logger.warning(
                f"Bonus {line.code}={line.amount} skipped: incentive pool remaining "
                f"{pool_remaining - total}"
            )

    return applied, to_money(total)
