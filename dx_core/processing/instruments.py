# dx_core/processing/instruments.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol

from dx_core.catalog.types import DiagnosticTest
from dx_core.processing.models import CalibrationStatus, Instrument, StepStatus


@dataclass(frozen=True)
class StepOutcome:
    status: str = StepStatus.COMPLETED
    detail: str = ""


class InstrumentAdapter(Protocol):
    instrument: Instrument | None

    def calibration_status(self, now: datetime) -> str: ...

    def run_step(self, test: DiagnosticTest, step: str) -> StepOutcome: ...

    def measure(self, test: DiagnosticTest) -> str: ...


class ReportedValueAdapter:
    """
    Technician-reported run: the value and any failed/skipped steps come from
    the bench, calibration from the Instrument record.
    """

    def __init__(
        self,
        value,
        *,
        instrument: Instrument | None = None,
        failed_steps: Iterable[str] = (),
        skipped_steps: Iterable[str] = (),
        step_notes: dict[str, str] | None = None,
    ):
        self.value = value
        self.instrument = instrument
        self.failed_steps = set(failed_steps)
        self.skipped_steps = set(skipped_steps)
        self.step_notes = step_notes or {}

    def calibration_status(self, now: datetime) -> str:
        if self.instrument is None:
            return CalibrationStatus.OVERDUE
        return self.instrument.calibration_status(now)

    def run_step(self, test: DiagnosticTest, step: str) -> StepOutcome:
        note = self.step_notes.get(step, "")
        if step in self.failed_steps:
            return StepOutcome(StepStatus.FAILED, note or f"{step} reported failed")
        if step in self.skipped_steps:
            return StepOutcome(StepStatus.SKIPPED, note)
        return StepOutcome(StepStatus.COMPLETED, note)

    def measure(self, test: DiagnosticTest) -> str:
        return str(self.value).strip()
