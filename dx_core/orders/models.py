# dx_core/orders/models.py
from django.db import models

from dx_core.catalog.types import DiagnosticTest, TestCategory
from dx_core.common.models import ScopedModel


class OrderUrgency(models.TextChoices):
    ROUTINE = "ROUTINE", "Routine"
    URGENT = "URGENT", "Urgent"
    STAT = "STAT", "Stat"
    TIMED = "TIMED", "Timed"


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SCHEDULED = "SCHEDULED", "Scheduled"
    IN_PROGRESS = "IN_PROGRESS", "In Progress"
    COMPLETED = "COMPLETED", "Completed"
    RESULTED = "RESULTED", "Resulted"
    CANCELLED = "CANCELLED", "Cancelled"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.RESULTED, OrderStatus.CANCELLED})


class BillingStatus(models.TextChoices):
    PRICED = "PRICED", "Priced"
    UNAVAILABLE = "UNAVAILABLE", "Unavailable"


class DiagnosticOrder(ScopedModel):
    """
    A clinician's request for one or more diagnostic tests.
    Patient and clinician are loose links (ids owned by external systems).
    """
    patient_id = models.UUIDField(db_index=True)
    ordering_clinician_id = models.CharField(max_length=150, db_index=True)

    category = models.CharField(max_length=16, choices=TestCategory.choices)
    clinical_indication = models.TextField(blank=True, default="")
    special_instructions = models.TextField(blank=True, default="")

    urgency = models.CharField(max_length=16, choices=OrderUrgency.choices, default=OrderUrgency.ROUTINE)
    scheduled_for = models.DateTimeField(null=True, blank=True)  # null = immediate

    preparation = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=16,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        db_index=True,
    )
    cancellation_reason = models.TextField(blank=True, default="")
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # billing summary
    authorization_required = models.BooleanField(default=False)
    billing_status = models.CharField(max_length=16, choices=BillingStatus.choices, default=BillingStatus.PRICED)
    charges = models.JSONField(default=list, blank=True)
    charge_total = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta:
        db_table = "orders_diagnostic_order"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "patient_id"]),
            models.Index(fields=["tenant_id", "facility_id", "ordering_clinician_id", "status"]),
        ]

    def __str__(self) -> str:
        return f"{self.urgency} order {self.id} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    def test_codes(self) -> list[str]:
        return [t.test_code for t in self.tests.all()]


class OrderTest(ScopedModel):
    """
    One requested test on an order. `snapshot` is the catalog entry as ordered,
    including any per-order notification protocol.
    """
    order = models.ForeignKey(DiagnosticOrder, on_delete=models.CASCADE, related_name="tests")
    position = models.PositiveIntegerField()
    test_code = models.CharField(max_length=32)
    snapshot = models.JSONField(default=dict)

    class Meta:
        db_table = "orders_order_test"
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(fields=["order", "test_code"], name="uq_order_test_code"),
        ]

    def __str__(self) -> str:
        return f"{self.test_code}@{self.order_id}"

    def catalog_entry(self) -> DiagnosticTest:
        return DiagnosticTest.from_snapshot(self.snapshot)
