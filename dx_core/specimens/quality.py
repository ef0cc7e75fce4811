# dx_core/specimens/quality.py
"""
Specimen quality assessment.

An assessor turns what the collector observed at the bedside into a structured
finding. Findings are data, not errors: an unacceptable specimen is stored
REJECTED with its issues attached.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from dx_core.catalog.types import DiagnosticTest

SEVERITY_MINOR = "Minor"
SEVERITY_MAJOR = "Major"
SEVERITY_CRITICAL = "Critical"
BLOCKING_SEVERITIES = frozenset({SEVERITY_MAJOR, SEVERITY_CRITICAL})

HEMOLYSIS_LEVELS = ("None", "Slight", "Moderate", "Gross")
CONTAMINATION_LEVELS = ("None", "Possible", "Likely")


@dataclass(frozen=True)
class SpecimenObservation:
    volume_ml: float
    hemolysis: str = "None"
    clotted: bool = False
    contamination_risk: str = "None"
    label_matches: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SpecimenObservation":
        return cls(
            volume_ml=float(data["volume_ml"]),
            hemolysis=data.get("hemolysis", "None"),
            clotted=bool(data.get("clotted", False)),
            contamination_risk=data.get("contamination_risk", "None"),
            label_matches=bool(data.get("label_matches", True)),
        )

    @classmethod
    def as_required(cls, test: DiagnosticTest) -> "SpecimenObservation":
        return cls(volume_ml=test.specimen.volume_ml)


class QualityAssessor(Protocol):
    def assess(self, test: DiagnosticTest, observation: SpecimenObservation) -> dict: ...


def _issue(issue: str, severity: str, impact: str) -> dict:
    return {"issue": issue, "severity": severity, "impact": impact}


class AcceptanceCriteriaAssessor:
    """
    Default assessor: checks the observation against the test's acceptance criteria.
    Acceptable means no Major or Critical issue.
    """

    def assess(self, test: DiagnosticTest, observation: SpecimenObservation) -> dict:
        criteria = test.acceptance
        issues: list[dict] = []

        if observation.volume_ml < criteria.min_volume_ml:
            severity = SEVERITY_CRITICAL if observation.volume_ml < criteria.min_volume_ml / 2 else SEVERITY_MAJOR
            issues.append(
                _issue(
                    "InsufficientVolume",
                    severity,
                    f"{observation.volume_ml} mL collected, {criteria.min_volume_ml} mL required",
                )
            )

        hemolysis = HEMOLYSIS_LEVELS.index(observation.hemolysis) if observation.hemolysis in HEMOLYSIS_LEVELS else 0
        if hemolysis:
            if criteria.reject_hemolysis and hemolysis >= 2:
                severity = SEVERITY_CRITICAL if hemolysis == 3 else SEVERITY_MAJOR
                issues.append(_issue("Hemolysis", severity, "Falsely elevated intracellular analytes"))
            else:
                issues.append(_issue("Hemolysis", SEVERITY_MINOR, "Interpret with caution"))

        if observation.clotted:
            severity = SEVERITY_MAJOR if criteria.reject_clotting else SEVERITY_MINOR
            issues.append(_issue("Clotting", severity, "Cell counts and coagulation unreliable"))

        risk = observation.contamination_risk
        if risk in CONTAMINATION_LEVELS and risk != "None":
            allowed = CONTAMINATION_LEVELS.index(criteria.max_contamination_risk)
            severity = SEVERITY_MAJOR if CONTAMINATION_LEVELS.index(risk) > allowed else SEVERITY_MINOR
            issues.append(_issue("Contamination", severity, f"Contamination risk {risk}"))

        if not observation.label_matches:
            issues.append(_issue("Mislabeled", SEVERITY_CRITICAL, "Label does not match patient or test"))

        acceptable = not any(i["severity"] in BLOCKING_SEVERITIES for i in issues)
        return {
            "acceptable": acceptable,
            "issues": issues,
            "contamination_risk": risk,
            "integrity": "Intact" if acceptable else "Compromised",
        }
