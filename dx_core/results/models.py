# dx_core/results/models.py
from django.db import models

from dx_core.common.models import ScopedModel


class ResultFlag(models.TextChoices):
    NORMAL = "NORMAL", "Normal"
    HIGH = "HIGH", "High"
    LOW = "LOW", "Low"
    CRITICAL_HIGH = "CRITICAL_HIGH", "Critical High"
    CRITICAL_LOW = "CRITICAL_LOW", "Critical Low"
    ABNORMAL = "ABNORMAL", "Abnormal"


CRITICAL_FLAGS = frozenset({ResultFlag.CRITICAL_HIGH, ResultFlag.CRITICAL_LOW})


class ResultStatus(models.TextChoices):
    PRELIMINARY = "PRELIMINARY", "Preliminary"
    FINAL = "FINAL", "Final"
    CORRECTED = "CORRECTED", "Corrected"
    AMENDED = "AMENDED", "Amended"


class DiagnosticResult(ScopedModel):
    """
    Current result for one test on one order. Reprocessing updates this row;
    the processing log keeps each run.
    """
    order_id = models.UUIDField(db_index=True)
    patient_id = models.UUIDField(db_index=True)
    specimen_id = models.UUIDField(null=True, blank=True)
    test_code = models.CharField(max_length=32, db_index=True)

    value = models.CharField(max_length=255)
    numeric_value = models.FloatField(null=True, blank=True)
    unit = models.CharField(max_length=32, blank=True, default="")
    reference_range = models.JSONField(default=dict)

    flag = models.CharField(max_length=16, choices=ResultFlag.choices, default=ResultFlag.NORMAL, db_index=True)
    status = models.CharField(
        max_length=16,
        choices=ResultStatus.choices,
        default=ResultStatus.PRELIMINARY,
        db_index=True,
    )

    is_critical = models.BooleanField(default=False, db_index=True)
    critical_detected_at = models.DateTimeField(null=True, blank=True)

    delta_check = models.JSONField(default=dict, blank=True)
    correlation_check = models.JSONField(default=dict, blank=True)

    interpretation = models.TextField(blank=True, default="")
    recommended_follow_up = models.TextField(blank=True, default="")

    reported_by = models.CharField(max_length=150)
    reported_at = models.DateTimeField()
    reviewed_by = models.CharField(max_length=150, blank=True, default="")
    reviewed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "results_diagnostic_result"
        ordering = ["reported_at"]
        constraints = [
            models.UniqueConstraint(fields=["order_id", "test_code"], name="uq_result_order_test"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "patient_id", "test_code", "reported_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.test_code}={self.value} ({self.flag}, {self.status})"


class ReviewStatus(models.TextChoices):
    PENDING = "PENDING", "Pending Review"
    REVIEWED = "REVIEWED", "Reviewed"
    ACKNOWLEDGED = "ACKNOWLEDGED", "Acknowledged"
    ACTED_UPON = "ACTED_UPON", "Acted Upon"


CLOSED_REVIEW_STATUSES = frozenset({ReviewStatus.ACKNOWLEDGED, ReviewStatus.ACTED_UPON})


class ResultsReview(ScopedModel):
    """
    Clinician review state for all results on one order.
    """
    order_id = models.UUIDField(unique=True)
    patient_id = models.UUIDField(db_index=True)
    clinician_id = models.CharField(max_length=150, db_index=True)

    status = models.CharField(
        max_length=16,
        choices=ReviewStatus.choices,
        default=ReviewStatus.PENDING,
        db_index=True,
    )
    acknowledgment_required = models.BooleanField(default=False)
    results_summary = models.JSONField(default=list, blank=True)
    clinical_correlation = models.TextField(blank=True, default="")
    follow_up_plans = models.JSONField(default=list, blank=True)

    reviewed_by = models.CharField(max_length=150, blank=True, default="")
    reviewed_at = models.DateTimeField(null=True, blank=True)
    acknowledged_by = models.CharField(max_length=150, blank=True, default="")
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    acknowledgment_comment = models.TextField(blank=True, default="")

    class Meta:
        db_table = "results_results_review"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "clinician_id", "status"]),
        ]

    def __str__(self) -> str:
        return f"review {self.order_id} ({self.status})"
