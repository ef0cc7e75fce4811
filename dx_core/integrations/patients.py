# dx_core/integrations/patients.py
"""
Patient record store interface.

The clinical record lives outside this service; the pipeline only asks it
identity and preparation questions. `LocalPatientRecordStore` answers from the
patient context presented at the bedside (wristband scan, stated DOB, fasting
history) which is all the default deployment has.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Protocol, Sequence
from uuid import UUID

from django.utils import timezone


@dataclass(frozen=True)
class PatientContext:
    patient_id: UUID
    wristband_id: str = ""
    date_of_birth: date | None = None
    last_meal_at: datetime | None = None
    verified_medication_holds: tuple[str, ...] = ()
    completed_preparations: tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PatientContext":
        return cls(
            patient_id=UUID(str(data["patient_id"])),
            wristband_id=str(data.get("wristband_id") or ""),
            date_of_birth=data.get("date_of_birth"),
            last_meal_at=data.get("last_meal_at"),
            verified_medication_holds=tuple(data.get("verified_medication_holds") or ()),
            completed_preparations=tuple(data.get("completed_preparations") or ()),
        )


class PatientRecordStore(Protocol):
    def verify_identity(self, patient_id: UUID, context: PatientContext) -> bool: ...

    def hours_fasted(self, context: PatientContext) -> float | None: ...

    def preparation_status(self, patient_id: UUID, preparation: Mapping[str, Any]) -> bool: ...

    def medication_holds_verified(self, patient_id: UUID, holds: Sequence[Mapping[str, Any]]) -> bool: ...


class LocalPatientRecordStore:
    """
    Two-identifier check against the presented context: the scanned wristband
    must encode the ordered patient id and the context must name that patient.
    """

    def __init__(self, *, verified_patients: Mapping[UUID, set[str]] | None = None):
        # patient_id -> medication names confirmed held (pre-collection)
        self._verified_holds: dict[UUID, set[str]] = {k: set(v) for k, v in (verified_patients or {}).items()}

    def verify_identity(self, patient_id: UUID, context: PatientContext) -> bool:
        if context.patient_id != patient_id:
            return False
        if context.wristband_id and context.wristband_id != str(patient_id):
            return False
        return True

    def hours_fasted(self, context: PatientContext) -> float | None:
        if context.last_meal_at is None:
            return None
        delta = timezone.now() - context.last_meal_at
        return round(delta.total_seconds() / 3600.0, 2)

    def preparation_status(self, patient_id: UUID, preparation: Mapping[str, Any]) -> bool:
        # No upstream preparation record; bedside checks happen in prepare_patient.
        return True

    def medication_holds_verified(self, patient_id: UUID, holds: Sequence[Mapping[str, Any]]) -> bool:
        confirmed = self._verified_holds.get(patient_id, set())
        return all(h.get("medication") in confirmed for h in holds)
