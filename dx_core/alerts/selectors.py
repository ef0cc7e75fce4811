# dx_core/alerts/selectors.py
from __future__ import annotations

from django.db.models import QuerySet

from dx_core.alerts.models import DiagnosticAlert, Notification
from dx_core.common.errors import RecordNotFound


def get_alert(*, tenant_id, facility_id, alert_id) -> DiagnosticAlert:
    try:
        return (
            DiagnosticAlert.objects.select_related("escalation")
            .prefetch_related("escalation__attempts")
            .get(id=alert_id, tenant_id=tenant_id, facility_id=facility_id)
        )
    except (DiagnosticAlert.DoesNotExist, ValueError):
        raise RecordNotFound("Alert not found in this scope.")


def list_alerts(
    *,
    tenant_id,
    facility_id,
    order_id=None,
    patient_id=None,
    alert_type=None,
    open_only: bool = False,
) -> QuerySet[DiagnosticAlert]:
    qs = DiagnosticAlert.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
    if order_id:
        qs = qs.filter(order_id=order_id)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if alert_type:
        qs = qs.filter(alert_type=alert_type)
    if open_only:
        qs = qs.filter(DiagnosticAlert.open_filter())
    return qs.order_by("-detected_at")


def notifications_for(*, tenant_id, facility_id, recipient, unread_only: bool = False) -> QuerySet[Notification]:
    qs = Notification.objects.filter(tenant_id=tenant_id, facility_id=facility_id, recipient=recipient)
    if unread_only:
        qs = qs.filter(is_read=False)
    return qs.order_by("-created_at")
