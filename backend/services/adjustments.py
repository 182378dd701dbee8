"""
Adjustment factors — pure Decimal math, no I/O.

Turns raw milestone facts into dimensionless multipliers:

  reliability_factor(late_minutes) → (0, 1]
    1.0 up to the grace period, then a straight line down to RELIABILITY_FLOOR
    at RELIABILITY_CAP_MINUTES, clamped at the floor beyond the cap.

      late minutes:   0 ........ grace ............ cap ........ ∞
      factor:         1.0 ...... 1.0 ..(linear).. floor ..... floor

  quality_factor(qc_average) → step function over QUALITY_BANDS
    Default bands (minimum QC average → factor):
      0.0 → 0.85   below expectations
      4.0 → 0.95
      4.5 → 1.00   meets expectations
      4.8 → 1.05   reward

Both are total over valid input and raise InvalidInput for out-of-range
values (negative lateness, QC outside [0, 5]).

Rounding: money 0.01, minutes 0.01, factors and QC averages 0.0001, all
ROUND_HALF_UP, except budget caps, which round down (to_money_floor): the
editors' caps on a project never sum past its editor budget.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterable, Optional, Union

import config
from services.errors import InvalidInput

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
QC_MIN = Decimal("0")
QC_MAX = Decimal("5")
ONE = Decimal("1")
ZERO = Decimal("0")

MONEY_QUANTUM = Decimal("0.01")
MINUTES_QUANTUM = Decimal("0.01")
FACTOR_QUANTUM = Decimal("0.0001")


# ===========================================================================
# Decimal helpers
# ===========================================================================

def as_decimal(value: Number) -> Decimal:
    """Convert to Decimal; floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_money(value: Number) -> Decimal:
    return as_decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def to_money_floor(value: Number) -> Decimal:
    return as_decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)


def to_minutes(value: Number) -> Decimal:
    return as_decimal(value).quantize(MINUTES_QUANTUM, rounding=ROUND_HALF_UP)


def to_factor(value: Number) -> Decimal:
    return as_decimal(value).quantize(FACTOR_QUANTUM, rounding=ROUND_HALF_UP)


# ===========================================================================
# Reliability factor (lateness)
# ===========================================================================

def reliability_factor(
    late_minutes: Number,
    grace_minutes: Optional[Number] = None,
    cap_minutes: Optional[Number] = None,
    floor: Optional[Number] = None,
) -> Decimal:
    """
    Multiplier penalizing lateness.

    Args:
        late_minutes:  Total minutes late (>= 0)
        grace_minutes: Lateness tolerated at full factor (config default)
        cap_minutes:   Lateness at which the floor is reached (config default)
        floor:         Minimum retained fraction, in (0, 1] (config default)

    Returns:
        Factor in (floor, 1], quantized to 4 places.

    Raises:
        InvalidInput: late_minutes is negative.
    """
    late = as_decimal(late_minutes)
    grace = as_decimal(config.RELIABILITY_GRACE_MINUTES if grace_minutes is None else grace_minutes)
    cap = as_decimal(config.RELIABILITY_CAP_MINUTES if cap_minutes is None else cap_minutes)
    floor_value = as_decimal(config.RELIABILITY_FLOOR if floor is None else floor)

    if late < ZERO:
        raise InvalidInput(f"late_minutes must be >= 0, got {late}")
    if not (ZERO < floor_value <= ONE):
        raise ValueError(f"reliability floor must be in (0, 1], got {floor_value}")

    if late <= grace:
        return to_factor(ONE)
    if late >= cap or cap <= grace:
        return to_factor(floor_value)

    fraction = (late - grace) / (cap - grace)
    return to_factor(ONE - (ONE - floor_value) * fraction)


# ===========================================================================
# Quality factor (QC average)
# ===========================================================================

def quality_factor(
    qc_average: Number,
    bands: Optional[list[tuple[Decimal, Decimal]]] = None,
) -> Decimal:
    """
    Multiplier from the QC review average.

    Picks the band with the highest threshold <= qc_average. A QC average
    below every threshold gets the lowest band's factor.

    Raises:
        InvalidInput: qc_average outside [0, 5].
    """
    qc = as_decimal(qc_average)
    if qc < QC_MIN or qc > QC_MAX:
        raise InvalidInput(f"qc_average must be within [0, 5], got {qc}")

    band_table = sorted(bands if bands is not None else config.QUALITY_BANDS)
    if not band_table:
        return to_factor(ONE)

    for threshold, factor in reversed(band_table):
        if qc >= threshold:
            return to_factor(factor)

    return to_factor(band_table[0][1])


# ===========================================================================
# Milestone facts
# ===========================================================================

def _validate_score(name: str, score: Decimal) -> Decimal:
    if score < QC_MIN or score > QC_MAX:
        raise InvalidInput(f"{name} must be within [0, 5], got {score}")
    return score


def milestone_qc_average(
    guidelines: Optional[Number],
    av_quality: Optional[Number],
    self_reliance: Optional[Number],
) -> Optional[Decimal]:
    """Mean of the three QC scores; None while any score is missing."""
    if guidelines is None or av_quality is None or self_reliance is None:
        return None

    scores = [
        _validate_score("qc_guidelines_score", as_decimal(guidelines)),
        _validate_score("qc_av_quality_score", as_decimal(av_quality)),
        _validate_score("qc_self_reliance_score", as_decimal(self_reliance)),
    ]
    return to_factor(sum(scores) / Decimal(3))


def aggregate_qc_average(milestones: Iterable) -> tuple[Decimal, int]:
    """
    Weighted mean of milestone QC averages.

    Milestones without all three scores are skipped. qc_weight defaults
    to 1, which makes the unweighted case a simple mean. When nothing is
    scored yet the neutral DEFAULT_QC_AVERAGE is used.

    Returns:
        (qc_average, number of scored milestones)
    """
    weighted_sum = ZERO
    total_weight = ZERO
    scored = 0

    for m in milestones:
        avg = m.qc_average
        if avg is None:
            continue
        weight = ONE if m.qc_weight is None else as_decimal(m.qc_weight)
        if weight < ZERO:
            raise InvalidInput(f"qc_weight must be >= 0, got {weight}")
        weighted_sum += avg * weight
        total_weight += weight
        scored += 1

    if total_weight == ZERO:
        return to_factor(config.DEFAULT_QC_AVERAGE), scored

    return to_factor(weighted_sum / total_weight), scored


def milestone_late_minutes(
    late_minutes: Optional[Number],
    due_date: Optional[datetime],
    submitted_at: Optional[datetime],
) -> Decimal:
    """
    Lateness of one milestone.

    Uses the recorded late_minutes when present, otherwise derives it from
    submitted_at - due_date (never negative). Missing dates mean on time.
    """
    if late_minutes is not None:
        late = as_decimal(late_minutes)
        if late < ZERO:
            raise InvalidInput(f"late_minutes must be >= 0, got {late}")
        return to_minutes(late)

    if due_date is None or submitted_at is None:
        return to_minutes(ZERO)

    seconds_late = int((submitted_at - due_date).total_seconds())
    if seconds_late <= 0:
        return to_minutes(ZERO)
    return to_minutes(Decimal(seconds_late) / Decimal(60))


def total_late_minutes(milestones: Iterable) -> Decimal:
    return to_minutes(sum((m.effective_late_minutes for m in milestones), ZERO))
