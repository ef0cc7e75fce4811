# dx_core/processing/models.py
from __future__ import annotations

from datetime import datetime, timedelta

from django.db import models

from dx_core.common.models import ScopedModel


class CalibrationStatus(models.TextChoices):
    CURRENT = "CURRENT", "Current"
    DUE = "DUE", "Due"
    OVERDUE = "OVERDUE", "Overdue"


class Instrument(ScopedModel):
    code = models.SlugField(max_length=64)
    name = models.CharField(max_length=255)
    analyzer_type = models.CharField(max_length=64, blank=True, default="")
    is_active = models.BooleanField(default=True)

    calibrated_at = models.DateTimeField(null=True, blank=True)
    calibration_interval_days = models.PositiveIntegerField(default=30)
    calibration_warning_days = models.PositiveIntegerField(default=3)

    class Meta:
        db_table = "processing_instrument"
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "facility_id", "code"], name="uq_instrument_scope_code"),
        ]

    def __str__(self) -> str:
        return f"{self.code} ({self.name})"

    def calibration_status(self, now: datetime) -> str:
        if self.calibrated_at is None:
            return CalibrationStatus.OVERDUE
        due_at = self.calibrated_at + timedelta(days=self.calibration_interval_days)
        if now > due_at:
            return CalibrationStatus.OVERDUE
        if now > due_at - timedelta(days=self.calibration_warning_days):
            return CalibrationStatus.DUE
        return CalibrationStatus.CURRENT


class ProcessingStatus(models.TextChoices):
    IN_PROGRESS = "IN_PROGRESS", "In Progress"
    COMPLETED = "COMPLETED", "Completed"
    ABORTED = "ABORTED", "Aborted"


class QCStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PASS = "PASS", "Pass"
    FAIL = "FAIL", "Fail"


class ProcessingRecord(ScopedModel):
    """
    One processing run of one specimen for one test. Repeats create new records.
    """
    specimen_id = models.UUIDField(db_index=True)
    order_id = models.UUIDField(db_index=True)
    test_code = models.CharField(max_length=32)

    instrument = models.ForeignKey(Instrument, null=True, blank=True, on_delete=models.SET_NULL, related_name="records")
    instrument_code = models.CharField(max_length=64, blank=True, default="")
    technician_id = models.CharField(max_length=150)
    methodology = models.CharField(max_length=128, blank=True, default="")

    calibration_status = models.CharField(max_length=16, choices=CalibrationStatus.choices)
    status = models.CharField(
        max_length=16,
        choices=ProcessingStatus.choices,
        default=ProcessingStatus.IN_PROGRESS,
        db_index=True,
    )
    step_failure_policy = models.CharField(max_length=16, default="tolerate")
    confidence = models.FloatField(null=True, blank=True)
    qc_status = models.CharField(max_length=16, choices=QCStatus.choices, default=QCStatus.PENDING)
    is_repeat = models.BooleanField(default=False)

    started_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)

    result_id = models.UUIDField(null=True, blank=True)

    class Meta:
        db_table = "processing_record"
        ordering = ["started_at"]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "specimen_id"]),
        ]

    def __str__(self) -> str:
        return f"{self.test_code} run {self.id} ({self.status})"


class StepStatus(models.TextChoices):
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"
    SKIPPED = "SKIPPED", "Skipped"


class ProcessingStep(ScopedModel):
    """
    Append-only step log, ordered by sequence within its record.
    """
    record = models.ForeignKey(ProcessingRecord, on_delete=models.CASCADE, related_name="steps")
    sequence = models.PositiveIntegerField()
    name = models.CharField(max_length=128)
    status = models.CharField(max_length=16, choices=StepStatus.choices)
    started_at = models.DateTimeField()
    ended_at = models.DateTimeField()
    detail = models.TextField(blank=True, default="")

    class Meta:
        db_table = "processing_step"
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(fields=["record", "sequence"], name="uq_processing_step_sequence"),
        ]


class ControlLevel(models.TextChoices):
    LOW = "LOW", "Low"
    NORMAL = "NORMAL", "Normal"
    HIGH = "HIGH", "High"


class QCAction(models.TextChoices):
    ACCEPT = "ACCEPT", "Accept"
    REPEAT = "REPEAT", "Repeat"
    INVESTIGATE = "INVESTIGATE", "Investigate"


class QualityControlResult(ScopedModel):
    """
    Control material measured alongside a run. Append-only; a repeat of a
    failed level is a new row with a higher sequence.
    """
    record = models.ForeignKey(ProcessingRecord, on_delete=models.CASCADE, related_name="quality_controls")
    sequence = models.PositiveIntegerField()
    control_level = models.CharField(max_length=8, choices=ControlLevel.choices)

    expected_value = models.FloatField()
    actual_value = models.FloatField()
    tolerance_percent = models.FloatField()
    deviation_percent = models.FloatField(null=True, blank=True)
    within_range = models.BooleanField()

    action = models.CharField(max_length=16, choices=QCAction.choices)
    comments = models.TextField(blank=True, default="")
    performed_by = models.CharField(max_length=150)
    performed_at = models.DateTimeField()

    class Meta:
        db_table = "processing_quality_control"
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(fields=["record", "sequence"], name="uq_quality_control_sequence"),
        ]
