# dx_core/audit/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet

from dx_core.audit.models import AuditEvent


def audit_timeline(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    entity_type: str = "",
    entity_id: UUID | None = None,
    event_code: str = "",
    actor_id: str = "",
) -> QuerySet[AuditEvent]:
    """
    Oldest first. `event_code` ending in "." matches a prefix ("review.").
    """
    qs = AuditEvent.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
    if entity_type:
        qs = qs.filter(entity_type=entity_type)
    if entity_id:
        qs = qs.filter(entity_id=entity_id)
    if event_code.endswith("."):
        qs = qs.filter(event_code__startswith=event_code)
    elif event_code:
        qs = qs.filter(event_code=event_code)
    if actor_id:
        qs = qs.filter(actor_id=actor_id)
    return qs.order_by("occurred_at", "created_at")
