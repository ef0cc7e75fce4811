# dx_core/alerts/models.py
from __future__ import annotations

from django.db import models
from django.utils import timezone

from dx_core.catalog.types import NotificationChannel
from dx_core.common.models import ScopedModel


class AlertType(models.TextChoices):
    CRITICAL_VALUE = "CRITICAL_VALUE", "Critical Value"
    ESCALATION_EXHAUSTED = "ESCALATION_EXHAUSTED", "Escalation Exhausted"
    DELTA_CHECK = "DELTA_CHECK", "Delta Check"
    CORRELATION = "CORRELATION", "Correlation"
    QUALITY = "QUALITY", "Specimen Quality"


# Stay open after acknowledgment until someone resolves them.
STANDING_ALERT_TYPES = (AlertType.ESCALATION_EXHAUSTED,)


class AlertSeverity(models.TextChoices):
    HIGH = "HIGH", "High"
    MEDIUM = "MEDIUM", "Medium"
    LOW = "LOW", "Low"


class DiagnosticAlert(ScopedModel):
    """
    Append-only alert. Links to orders/results are loose UUIDs.
    Acknowledgment and resolution are one-way flags; nothing else changes after creation.
    """
    alert_type = models.CharField(max_length=32, choices=AlertType.choices, db_index=True)
    severity = models.CharField(max_length=8, choices=AlertSeverity.choices, default=AlertSeverity.MEDIUM, db_index=True)
    message = models.TextField()

    order_id = models.UUIDField(db_index=True)
    patient_id = models.UUIDField(db_index=True)
    result_id = models.UUIDField(null=True, blank=True, db_index=True)
    test_code = models.CharField(max_length=32, blank=True, default="")
    value = models.CharField(max_length=255, blank=True, default="")

    detected_at = models.DateTimeField(default=timezone.now)
    generated_by = models.CharField(max_length=150)

    acknowledged = models.BooleanField(default=False, db_index=True)
    acknowledged_by = models.CharField(max_length=150, blank=True, default="")
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    action_taken = models.TextField(blank=True, default="")

    resolved = models.BooleanField(default=False, db_index=True)
    resolved_by = models.CharField(max_length=150, blank=True, default="")
    resolved_at = models.DateTimeField(null=True, blank=True)

    meta = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "alerts_diagnostic_alert"
        ordering = ["-detected_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["order_id", "test_code", "alert_type", "detected_at"],
                name="uq_alert_order_test_type_detected",
            )
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "acknowledged", "severity"]),
            models.Index(fields=["tenant_id", "facility_id", "order_id"]),
        ]

    def __str__(self) -> str:
        return f"{self.alert_type} {self.test_code} ({self.severity})"

    @property
    def is_open(self) -> bool:
        if self.resolved:
            return False
        return self.alert_type in STANDING_ALERT_TYPES or not self.acknowledged

    @staticmethod
    def open_filter() -> models.Q:
        return models.Q(resolved=False) & (models.Q(acknowledged=False) | models.Q(alert_type__in=STANDING_ALERT_TYPES))


class EscalationStatus(models.TextChoices):
    DETECTED = "DETECTED", "Detected"
    NOTIFYING = "NOTIFYING", "Notifying"
    ACKNOWLEDGED = "ACKNOWLEDGED", "Acknowledged"
    EXHAUSTED = "EXHAUSTED", "Exhausted"


class CriticalValueEscalation(ScopedModel):
    """
    Delivery state machine for one critical alert: DETECTED -> NOTIFYING -> ACKNOWLEDGED | EXHAUSTED.
    `plan` is the resolved contact sequence; `attempts_made` indexes into it.
    """
    alert = models.OneToOneField(DiagnosticAlert, on_delete=models.CASCADE, related_name="escalation")
    order_id = models.UUIDField(db_index=True)

    protocol = models.JSONField(default=dict)
    plan = models.JSONField(default=list)

    status = models.CharField(
        max_length=16,
        choices=EscalationStatus.choices,
        default=EscalationStatus.DETECTED,
        db_index=True,
    )
    attempts_made = models.PositiveIntegerField(default=0)
    next_attempt_at = models.DateTimeField(null=True, blank=True, db_index=True)

    acknowledged_by = models.CharField(max_length=150, blank=True, default="")
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    exhausted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "alerts_critical_value_escalation"
        indexes = [
            models.Index(fields=["status", "next_attempt_at"]),
        ]

    def __str__(self) -> str:
        return f"escalation {self.id} ({self.status}, {self.attempts_made}/{len(self.plan or [])})"


class AttemptOutcome(models.TextChoices):
    DELIVERED = "DELIVERED", "Delivered"
    FAILED = "FAILED", "Failed"


class NotificationAttempt(ScopedModel):
    """
    Append-only delivery log, ordered by sequence.
    """
    escalation = models.ForeignKey(CriticalValueEscalation, on_delete=models.CASCADE, related_name="attempts")
    sequence = models.PositiveIntegerField()
    tier = models.CharField(max_length=16)  # primary | backup | escalation
    contact = models.CharField(max_length=150)
    channel = models.CharField(max_length=16, choices=NotificationChannel.choices)
    outcome = models.CharField(max_length=16, choices=AttemptOutcome.choices)
    attempted_at = models.DateTimeField()
    detail = models.TextField(blank=True, default="")

    class Meta:
        db_table = "alerts_notification_attempt"
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(fields=["escalation", "sequence"], name="uq_attempt_escalation_sequence"),
        ]


class Notification(ScopedModel):
    """
    In-app outbox written by the default notification gateway.
    Recipients are contact identifiers (usernames or role handles), not FKs.
    """
    recipient = models.CharField(max_length=150, db_index=True)
    channel = models.CharField(max_length=16, choices=NotificationChannel.choices, default=NotificationChannel.EMR_ALERT)

    title = models.CharField(max_length=255)
    body = models.TextField(blank=True, default="")

    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)

    meta = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "alerts_notification"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "recipient", "is_read"]),
        ]

    def mark_read(self) -> None:
        if not self.is_read:
            self.is_read = True
            self.read_at = timezone.now()
            self.save(update_fields=["is_read", "read_at", "updated_at"])
