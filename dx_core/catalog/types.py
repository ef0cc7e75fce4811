# dx_core/catalog/types.py
"""
Immutable catalog entry types.

Orders keep a JSON snapshot of each entry (`to_snapshot`) so per-order
adjustments, e.g. a clinician-specified notification protocol, never mutate
the shared catalog. `DiagnosticTest.from_snapshot` rebuilds the entry.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal
from typing import Any

from django.db import models


class TestCategory(models.TextChoices):
    CHEMISTRY = "CHEMISTRY", "Chemistry"
    HEMATOLOGY = "HEMATOLOGY", "Hematology"
    MICROBIOLOGY = "MICROBIOLOGY", "Microbiology"
    IMMUNOLOGY = "IMMUNOLOGY", "Immunology"
    MOLECULAR = "MOLECULAR", "Molecular"
    RADIOLOGY = "RADIOLOGY", "Radiology"
    CARDIOLOGY = "CARDIOLOGY", "Cardiology"
    PATHOLOGY = "PATHOLOGY", "Pathology"


class SpecimenType(models.TextChoices):
    BLOOD = "BLOOD", "Blood"
    URINE = "URINE", "Urine"
    STOOL = "STOOL", "Stool"
    CSF = "CSF", "CSF"
    TISSUE = "TISSUE", "Tissue"
    SWAB = "SWAB", "Swab"
    SPUTUM = "SPUTUM", "Sputum"
    OTHER = "OTHER", "Other"


class NotificationChannel(models.TextChoices):
    PHONE = "PHONE", "Phone"
    PAGE = "PAGE", "Page"
    EMR_ALERT = "EMR_ALERT", "EMR Alert"
    SMS = "SMS", "SMS"


class ThresholdDirection(models.TextChoices):
    LOW = "LOW", "Low"
    HIGH = "HIGH", "High"


@dataclass(frozen=True)
class NotificationProtocol:
    primary_contact: str
    backup_contact: str
    channel: str = NotificationChannel.PHONE
    max_attempts: int = 3
    escalation_contact: str = ""
    escalation_procedure: str = ""
    documentation_required: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationProtocol":
        return cls(
            primary_contact=data["primary_contact"],
            backup_contact=data.get("backup_contact", ""),
            channel=data.get("channel", NotificationChannel.PHONE),
            max_attempts=int(data.get("max_attempts", 3)),
            escalation_contact=data.get("escalation_contact", ""),
            escalation_procedure=data.get("escalation_procedure", ""),
            documentation_required=bool(data.get("documentation_required", True)),
        )


@dataclass(frozen=True)
class CriticalThreshold:
    direction: str
    protocol: NotificationProtocol
    action_required: str = "Notify ordering clinician immediately"
    timeframe_minutes: int = 30


@dataclass(frozen=True)
class ReferenceRange:
    unit: str
    lower: float | None = None
    upper: float | None = None
    text: str = ""  # expected value for qualitative tests, e.g. "Negative"
    population: str = "Adult"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReferenceRange":
        return cls(
            unit=data.get("unit", ""),
            lower=data.get("lower"),
            upper=data.get("upper"),
            text=data.get("text", ""),
            population=data.get("population", "Adult"),
        )


@dataclass(frozen=True)
class MedicationHold:
    medication: str
    hold_duration: str
    reason: str
    resume_instructions: str = ""


@dataclass(frozen=True)
class SpecimenRequirement:
    specimen_type: str
    container: str
    volume_ml: float
    fasting_required: bool = False
    fasting_hours: int | None = None
    transport_temperature: str = "Room Temperature"
    transport_time_limit_minutes: int = 120
    special_handling: tuple[str, ...] = ()


@dataclass(frozen=True)
class AcceptanceCriteria:
    min_volume_ml: float
    reject_hemolysis: bool = True
    reject_clotting: bool = True
    max_contamination_risk: str = "Possible"  # None < Possible < Likely


@dataclass(frozen=True)
class DiagnosticTest:
    code: str
    name: str
    cpt_code: str
    category: str
    specimen: SpecimenRequirement
    acceptance: AcceptanceCriteria
    reference_range: ReferenceRange
    turnaround_hours: int = 24
    loinc_code: str = ""
    critical_thresholds: tuple[CriticalThreshold, ...] = ()
    processing_steps: tuple[str, ...] = ("Accession", "Analyze", "Verify")
    methodology: str = "Standard Protocol"
    delta_threshold_percent: float | None = None
    related_tests: tuple[str, ...] = ()
    unit_price: Decimal = Decimal("0.00")
    medication_holds: tuple[MedicationHold, ...] = ()
    dietary_restrictions: tuple[str, ...] = ()
    activity_restrictions: tuple[str, ...] = ()

    def threshold_for(self, direction: str) -> CriticalThreshold | None:
        for t in self.critical_thresholds:
            if t.direction == direction:
                return t
        return self.critical_thresholds[0] if self.critical_thresholds else None

    def with_protocol(self, protocol: NotificationProtocol) -> "DiagnosticTest":
        return replace(
            self,
            critical_thresholds=tuple(replace(t, protocol=protocol) for t in self.critical_thresholds),
        )

    def to_snapshot(self) -> dict[str, Any]:
        data = asdict(self)
        data["unit_price"] = str(self.unit_price)
        return data

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "DiagnosticTest":
        spec = dict(data["specimen"])
        spec["special_handling"] = tuple(spec.get("special_handling") or ())
        return cls(
            code=data["code"],
            name=data["name"],
            cpt_code=data["cpt_code"],
            category=data["category"],
            specimen=SpecimenRequirement(**spec),
            acceptance=AcceptanceCriteria(**data["acceptance"]),
            reference_range=ReferenceRange.from_dict(data["reference_range"]),
            turnaround_hours=data.get("turnaround_hours", 24),
            loinc_code=data.get("loinc_code", ""),
            critical_thresholds=tuple(
                CriticalThreshold(
                    direction=t["direction"],
                    protocol=NotificationProtocol.from_dict(t["protocol"]),
                    action_required=t.get("action_required", ""),
                    timeframe_minutes=t.get("timeframe_minutes", 30),
                )
                for t in data.get("critical_thresholds") or ()
            ),
            processing_steps=tuple(data.get("processing_steps") or ()),
            methodology=data.get("methodology", "Standard Protocol"),
            delta_threshold_percent=data.get("delta_threshold_percent"),
            related_tests=tuple(data.get("related_tests") or ()),
            unit_price=Decimal(str(data.get("unit_price", "0.00"))),
            medication_holds=tuple(MedicationHold(**m) for m in data.get("medication_holds") or ()),
            dietary_restrictions=tuple(data.get("dietary_restrictions") or ()),
            activity_restrictions=tuple(data.get("activity_restrictions") or ()),
        )


@dataclass
class Preparation:
    """
    Patient preparation derived from the union of an order's tests.
    """
    fasting_hours: int | None = None
    dietary_restrictions: list[str] = field(default_factory=list)
    medication_holds: list[dict[str, str]] = field(default_factory=list)
    activity_restrictions: list[str] = field(default_factory=list)
    instructions: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
