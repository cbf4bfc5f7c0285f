"""Derived statistics: rounding, ratios, medians, growth, cost index, outliers.

Every ratio here returns None when it is undefined. A zero would be a silently
wrong answer for growth and cost index, so callers must keep the None.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from medicaid_rollup.config import (
    OUTLIER_HIGH_INDEX,
    OUTLIER_LOW_INDEX,
    OUTLIER_MIN_CLAIMS,
    OUTLIER_MIN_PAID,
)

CENT = Decimal("0.01")


def round_currency(value: Optional[float]) -> Optional[float]:
    """Round to the cent, half away from zero. None passes through."""
    if value is None:
        return None
    # ROUND_HALF_UP in decimal rounds away from zero for negatives too
    return float(Decimal(repr(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def round_index(value: Optional[float]) -> Optional[float]:
    """Round a positive ratio to two places, keeping sub-cent values nonzero.

    Values that would round to 0.00 keep two significant digits instead.
    """
    rounded = round_currency(value)
    if rounded == 0 and value > 0:
        return float(f"{value:.2g}")
    return rounded


def safe_ratio(numerator: float, denominator: float) -> Optional[float]:
    if not denominator:
        return None
    return numerator / denominator


def median(samples: Sequence[float]) -> Optional[float]:
    """Median of a sample; None for an empty sample.

    Callers pass a capped cost-per-claim sample, so the result estimates the
    population median over at most the first SAMPLE_CAP rows seen.
    """
    if not samples:
        return None
    ordered = sorted(samples)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def growth_pct(early: float, late: float) -> Optional[float]:
    """Percent change from the early to the late period."""
    if early is None or late is None or early <= 0:
        return None
    return (late - early) / early * 100


def cost_index(cost_per_claim: Optional[float], procedure_median: Optional[float]) -> Optional[float]:
    """Provider cost per claim relative to the procedure median."""
    if cost_per_claim is None or procedure_median is None or procedure_median <= 0:
        return None
    return cost_per_claim / procedure_median


def is_outlier_candidate(claims: int, paid: float) -> bool:
    """Noise filter: only sizable provider-procedure pairs are considered."""
    return claims >= OUTLIER_MIN_CLAIMS and paid >= OUTLIER_MIN_PAID


def classify_outlier(index: Optional[float]) -> Optional[str]:
    if index is None:
        return None
    if index > OUTLIER_HIGH_INDEX:
        return "high"
    if index < OUTLIER_LOW_INDEX:
        return "low"
    return None
