# dx_core/processing/classification.py
"""
Result classification against a reference range. Pure functions.
"""
from __future__ import annotations

from dx_core.catalog.types import ReferenceRange
from dx_core.results.models import ResultFlag

CRITICAL_LOW_FACTOR = 0.5
CRITICAL_HIGH_FACTOR = 2.0


def parse_numeric(value) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def classify(value, reference_range: ReferenceRange) -> str:
    """
    Numeric: below lower -> LOW (CRITICAL_LOW under half of lower);
    above upper -> HIGH (CRITICAL_HIGH over twice upper); bounds inclusive -> NORMAL.
    Qualitative (non-numeric value, or a range with only a text expectation):
    NORMAL on a case-insensitive match, else ABNORMAL.
    """
    rr = reference_range
    numeric = parse_numeric(value)
    qualitative_only = rr.lower is None and rr.upper is None

    if numeric is None or (qualitative_only and rr.text):
        expected = (rr.text or "").strip().lower()
        if expected and str(value).strip().lower() == expected:
            return ResultFlag.NORMAL
        return ResultFlag.ABNORMAL

    if rr.lower is not None and numeric < rr.lower:
        return ResultFlag.CRITICAL_LOW if numeric < CRITICAL_LOW_FACTOR * rr.lower else ResultFlag.LOW
    if rr.upper is not None and numeric > rr.upper:
        return ResultFlag.CRITICAL_HIGH if numeric > CRITICAL_HIGH_FACTOR * rr.upper else ResultFlag.HIGH
    return ResultFlag.NORMAL


def flag_direction(flag: str) -> int | None:
    """+1 above range, -1 below, 0 normal, None for qualitative abnormal."""
    if flag in (ResultFlag.HIGH, ResultFlag.CRITICAL_HIGH):
        return 1
    if flag in (ResultFlag.LOW, ResultFlag.CRITICAL_LOW):
        return -1
    if flag == ResultFlag.NORMAL:
        return 0
    return None
