# dx_core/audit/models.py
from django.db import models

from dx_core.common.models import ScopedModel


class AuditEvent(ScopedModel):
    """
    Immutable audit record: the ground-truth timeline of every pipeline mutation.
    """
    event_code = models.CharField(max_length=128, db_index=True)  # e.g. "order.cancelled"
    entity_type = models.CharField(max_length=128, db_index=True)  # e.g. "DiagnosticOrder"
    entity_id = models.UUIDField(db_index=True)

    actor_id = models.CharField(max_length=150, db_index=True)

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)
    metadata = models.JSONField(default=dict)

    class Meta:
        db_table = "audit_audit_event"
        ordering = ["occurred_at"]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "occurred_at"]),
            models.Index(fields=["entity_type", "entity_id"]),
        ]
