# dx_core/processing/checks.py
"""
Post-measurement checks: delta against the patient's previous result,
correlation with related tests on the same order, control-material QC,
and run confidence.
Findings are plain dicts stored on the result.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol, Sequence

from dx_core.catalog.types import DiagnosticTest
from dx_core.processing.classification import flag_direction
from dx_core.processing.models import CalibrationStatus, QCAction, StepStatus

CORRELATION_CONSISTENT = "Consistent"
CORRELATION_INCONSISTENT = "Inconsistent"
CORRELATION_INCONCLUSIVE = "Inconclusive"


def delta_check(current: float | None, previous, threshold_percent: float | None) -> dict:
    """
    `previous` is the prior DiagnosticResult (or None). A zero previous value
    has no defined percent change and is never flagged.
    """
    if current is None or previous is None or previous.numeric_value is None:
        return {"performed": False, "reason": "No comparable previous result"}

    prior = previous.numeric_value
    out = {
        "performed": True,
        "previous_result_id": str(previous.id),
        "previous_value": prior,
        "previous_reported_at": previous.reported_at.isoformat() if previous.reported_at else None,
        "threshold_percent": threshold_percent,
    }
    if prior == 0:
        out.update({"percent_change": None, "flagged": False})
        return out

    pct = round(abs(current - prior) / abs(prior) * 100.0, 2)
    out.update({"percent_change": pct, "flagged": threshold_percent is not None and pct > threshold_percent})
    return out


class CorrelationRule(Protocol):
    def check(self, test: DiagnosticTest, flag: str, related: Mapping[str, str]) -> dict: ...


class ConcordanceCorrelationRule:
    """
    Related tests should move the same way. Opposite directions are
    Inconsistent; no related results on the order is Inconclusive.
    """

    def check(self, test: DiagnosticTest, flag: str, related: Mapping[str, str]) -> dict:
        if not test.related_tests:
            return {"performed": False, "reason": "No related tests"}

        present = {code: related[code] for code in test.related_tests if code in related}
        if not present:
            return {"performed": True, "status": CORRELATION_INCONCLUSIVE, "related": {}}

        mine = flag_direction(flag)
        conflicts = [
            code
            for code, other in present.items()
            if mine and flag_direction(other) and flag_direction(other) == -mine
        ]
        return {
            "performed": True,
            "status": CORRELATION_INCONSISTENT if conflicts else CORRELATION_CONSISTENT,
            "related": present,
            "conflicts": conflicts,
        }


@dataclass(frozen=True)
class ControlMeasurement:
    control_level: str
    expected_value: float
    actual_value: float
    tolerance_percent: float | None = None
    action: str = ""
    comments: str = ""


def evaluate_control(expected: float, actual: float, tolerance_percent: float) -> dict:
    """
    Percent deviation from the expected control value. An expected value of
    zero has no percent deviation; only an exact zero reading is in range.
    """
    if expected == 0:
        within = actual == 0
        return {"deviation_percent": None, "within_range": within, "action": QCAction.ACCEPT if within else QCAction.INVESTIGATE}

    deviation = round(abs(actual - expected) / abs(expected) * 100.0, 2)
    if deviation <= tolerance_percent:
        action = QCAction.ACCEPT
    elif deviation <= 2 * tolerance_percent:
        action = QCAction.REPEAT
    else:
        action = QCAction.INVESTIGATE
    return {"deviation_percent": deviation, "within_range": deviation <= tolerance_percent, "action": action}


def outstanding_qc_failures(controls: Iterable) -> int:
    """
    `controls` in sequence order. Each level counts once if its latest control
    is out of range; an in-range repeat clears it.
    """
    latest: dict[str, bool] = {}
    for control in controls:
        latest[control.control_level] = control.within_range
    return sum(1 for ok in latest.values() if not ok)


class Scorer(Protocol):
    def score(self, step_statuses: Sequence[str], calibration_status: str, qc_failures: int = 0) -> float: ...


class StepConfidenceScorer:
    """
    1.0 for a clean run on a calibrated instrument, reduced per failed or
    skipped step, per out-of-range control level and for stale calibration.
    """

    failed_penalty = 0.2
    skipped_penalty = 0.05
    qc_failure_penalty = 0.1
    calibration_penalty = {
        CalibrationStatus.CURRENT: 0.0,
        CalibrationStatus.DUE: 0.05,
        CalibrationStatus.OVERDUE: 0.2,
    }

    def score(self, step_statuses: Sequence[str], calibration_status: str, qc_failures: int = 0) -> float:
        value = 1.0
        value -= self.failed_penalty * sum(1 for s in step_statuses if s == StepStatus.FAILED)
        value -= self.skipped_penalty * sum(1 for s in step_statuses if s == StepStatus.SKIPPED)
        value -= self.qc_failure_penalty * qc_failures
        value -= self.calibration_penalty.get(calibration_status, 0.2)
        return round(max(value, 0.0), 2)
