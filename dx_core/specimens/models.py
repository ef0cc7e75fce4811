# dx_core/specimens/models.py
from django.db import models

from dx_core.catalog.types import SpecimenType
from dx_core.common.models import ScopedModel


class SpecimenStatus(models.TextChoices):
    COLLECTED = "COLLECTED", "Collected"
    IN_TRANSIT = "IN_TRANSIT", "In Transit"
    RECEIVED = "RECEIVED", "Received"
    PROCESSING = "PROCESSING", "Processing"
    COMPLETED = "COMPLETED", "Completed"
    REJECTED = "REJECTED", "Rejected"


class SpecimenCollection(ScopedModel):
    """
    One bedside collection event. Lock boundary for transport arrangement.
    """
    order_id = models.UUIDField(db_index=True)
    patient_id = models.UUIDField(db_index=True)

    collected_by = models.CharField(max_length=150)
    collected_at = models.DateTimeField()
    collection_site = models.CharField(max_length=128, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    identity_verified = models.BooleanField(default=False)
    labels_verified = models.BooleanField(default=False)

    transport_arranged = models.BooleanField(default=False)
    transport_arranged_at = models.DateTimeField(null=True, blank=True)
    transport_arranged_by = models.CharField(max_length=150, blank=True, default="")

    class Meta:
        db_table = "specimens_collection"
        ordering = ["-collected_at"]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "order_id"]),
        ]

    def __str__(self) -> str:
        return f"collection {self.id} for order {self.order_id}"


class Specimen(ScopedModel):
    collection = models.ForeignKey(SpecimenCollection, on_delete=models.CASCADE, related_name="specimens")
    order_id = models.UUIDField(db_index=True)
    patient_id = models.UUIDField(db_index=True)

    label = models.CharField(max_length=64, db_index=True)
    test_codes = models.JSONField(default=list)

    specimen_type = models.CharField(max_length=16, choices=SpecimenType.choices)
    container = models.CharField(max_length=128)
    volume_ml = models.DecimalField(max_digits=7, decimal_places=2)

    quality = models.JSONField(default=dict)
    transport = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=16,
        choices=SpecimenStatus.choices,
        default=SpecimenStatus.COLLECTED,
        db_index=True,
    )
    rejection_reason = models.TextField(blank=True, default="")

    received_at = models.DateTimeField(null=True, blank=True)
    received_by = models.CharField(max_length=150, blank=True, default="")

    class Meta:
        db_table = "specimens_specimen"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "order_id", "status"]),
        ]

    def __str__(self) -> str:
        return f"{self.label} ({self.status})"

    @property
    def acceptable(self) -> bool:
        return bool((self.quality or {}).get("acceptable")) and self.status != SpecimenStatus.REJECTED
