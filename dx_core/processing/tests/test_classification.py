# dx_core/processing/tests/test_classification.py
from datetime import timedelta
from types import SimpleNamespace

import pytest
from django.utils import timezone

from dx_core.catalog.source import default_catalog
from dx_core.catalog.types import ReferenceRange
from dx_core.processing.checks import (
    ConcordanceCorrelationRule,
    StepConfidenceScorer,
    delta_check,
    evaluate_control,
    outstanding_qc_failures,
)
from dx_core.processing.classification import classify, parse_numeric
from dx_core.processing.models import CalibrationStatus, Instrument, QCAction, StepStatus
from dx_core.results.models import ResultFlag

RANGE = ReferenceRange(unit="mg/dL", lower=10, upper=20)


@pytest.mark.parametrize(
    "value,flag",
    [
        ("4", ResultFlag.CRITICAL_LOW),
        ("5", ResultFlag.LOW),
        ("9", ResultFlag.LOW),
        ("10", ResultFlag.NORMAL),
        ("15", ResultFlag.NORMAL),
        ("20", ResultFlag.NORMAL),
        ("39", ResultFlag.HIGH),
        ("40", ResultFlag.HIGH),
        ("41", ResultFlag.CRITICAL_HIGH),
        (" 41.0 ", ResultFlag.CRITICAL_HIGH),
    ],
)
def test_numeric_classification(value, flag):
    assert classify(value, RANGE) == flag


def test_qualitative_classification():
    negative = ReferenceRange(unit="", text="Negative")
    assert classify("negative", negative) == ResultFlag.NORMAL
    assert classify("Positive", negative) == ResultFlag.ABNORMAL
    assert classify("3", negative) == ResultFlag.ABNORMAL


def test_non_numeric_value_on_numeric_range_is_abnormal():
    assert classify("hemolyzed", RANGE) == ResultFlag.ABNORMAL


def test_parse_numeric():
    assert parse_numeric("7.5") == 7.5
    assert parse_numeric(3) == 3.0
    assert parse_numeric(True) is None
    assert parse_numeric("n/a") is None


def _previous(value):
    return SimpleNamespace(id="prev-1", numeric_value=value, reported_at=timezone.now() - timedelta(days=1))


def test_delta_check():
    flagged = delta_check(160.0, _previous(100.0), 50.0)
    assert flagged["performed"] is True
    assert flagged["percent_change"] == 60.0
    assert flagged["flagged"] is True

    assert delta_check(140.0, _previous(100.0), 50.0)["flagged"] is False
    assert delta_check(140.0, _previous(100.0), None)["flagged"] is False


def test_delta_check_without_comparable_previous():
    assert delta_check(5.0, None, 20.0)["performed"] is False
    assert delta_check(None, _previous(4.0), 20.0)["performed"] is False

    zero = delta_check(5.0, _previous(0.0), 20.0)
    assert zero["performed"] is True
    assert zero["percent_change"] is None
    assert zero["flagged"] is False


def test_concordance_rule():
    rule = ConcordanceCorrelationRule()
    catalog = default_catalog()
    potassium = catalog.get("K")

    assert rule.check(potassium, ResultFlag.HIGH, {"CREAT": ResultFlag.LOW})["status"] == "Inconsistent"
    assert rule.check(potassium, ResultFlag.HIGH, {"CREAT": ResultFlag.CRITICAL_HIGH})["status"] == "Consistent"
    assert rule.check(potassium, ResultFlag.NORMAL, {"CREAT": ResultFlag.LOW})["status"] == "Consistent"
    assert rule.check(potassium, ResultFlag.HIGH, {})["status"] == "Inconclusive"
    assert rule.check(catalog.get("UA"), ResultFlag.ABNORMAL, {})["performed"] is False


def test_confidence_score():
    scorer = StepConfidenceScorer()
    assert scorer.score([StepStatus.COMPLETED] * 4, CalibrationStatus.CURRENT) == 1.0
    assert scorer.score([StepStatus.COMPLETED, StepStatus.SKIPPED], CalibrationStatus.DUE) == 0.9
    assert scorer.score([StepStatus.FAILED, StepStatus.COMPLETED], CalibrationStatus.OVERDUE) == 0.6
    assert scorer.score([StepStatus.FAILED] * 6, CalibrationStatus.OVERDUE) == 0.0
    assert scorer.score([StepStatus.COMPLETED] * 4, CalibrationStatus.CURRENT, qc_failures=2) == 0.8


@pytest.mark.parametrize(
    "actual,deviation,within,action",
    [
        (98, 2.0, True, QCAction.ACCEPT),
        (110, 10.0, True, QCAction.ACCEPT),
        (85, 15.0, False, QCAction.REPEAT),
        (125, 25.0, False, QCAction.INVESTIGATE),
    ],
)
def test_evaluate_control(actual, deviation, within, action):
    assert evaluate_control(100, actual, 10) == {"deviation_percent": deviation, "within_range": within, "action": action}


def test_evaluate_control_with_zero_expected_value():
    assert evaluate_control(0, 0, 10)["within_range"] is True
    assert evaluate_control(0, 0.1, 10) == {"deviation_percent": None, "within_range": False, "action": QCAction.INVESTIGATE}


def test_outstanding_qc_failures_cleared_by_in_range_repeat():
    def qc(level, ok):
        return SimpleNamespace(control_level=level, within_range=ok)

    assert outstanding_qc_failures([]) == 0
    assert outstanding_qc_failures([qc("LOW", False), qc("HIGH", False)]) == 2
    assert outstanding_qc_failures([qc("LOW", False), qc("HIGH", True), qc("LOW", True)]) == 0
    assert outstanding_qc_failures([qc("NORMAL", True), qc("NORMAL", False)]) == 1


@pytest.mark.parametrize(
    "days_ago,status",
    [(10, CalibrationStatus.CURRENT), (28, CalibrationStatus.DUE), (31, CalibrationStatus.OVERDUE)],
)
def test_instrument_calibration_status(days_ago, status):
    now = timezone.now()
    instrument = Instrument(code="chem-1", name="Chemistry 1", calibrated_at=now - timedelta(days=days_ago))
    assert instrument.calibration_status(now) == status


def test_uncalibrated_instrument_is_overdue():
    assert Instrument(code="chem-1", name="Chemistry 1").calibration_status(timezone.now()) == CalibrationStatus.OVERDUE
