# dx_core/alerts/services.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable
from uuid import UUID

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from dx_core.alerts.models import AlertSeverity, DiagnosticAlert, Notification
from dx_core.audit.services import AuditService
from dx_core.catalog.types import NotificationChannel
from dx_core.common.context import ActorContext
from dx_core.common.errors import InvalidOrderRequest, RecordNotFound, Unauthorized
from dx_core.common.repository import ScopedRepository

logger = logging.getLogger(__name__)


class AlertService:
    alerts = ScopedRepository(DiagnosticAlert, label="Alert")

    @staticmethod
    def raise_alert(
        ctx: ActorContext,
        *,
        alert_type: str,
        order_id: UUID,
        patient_id: UUID,
        detected_at: datetime,
        message: str,
        severity: str = AlertSeverity.MEDIUM,
        test_code: str = "",
        value: str = "",
        result_id: UUID | None = None,
        meta: dict | None = None,
    ) -> tuple[DiagnosticAlert, bool]:
        """
        Idempotent per (order, test, type, detection instant). Returns (alert, created).
        """
        lookup = {
            "tenant_id": ctx.tenant_id,
            "facility_id": ctx.facility_id,
            "order_id": order_id,
            "test_code": test_code,
            "alert_type": alert_type,
            "detected_at": detected_at,
        }
        defaults = {
            "patient_id": patient_id,
            "severity": severity,
            "message": message,
            "value": str(value)[:255],
            "result_id": result_id,
            "generated_by": ctx.actor_id,
            "meta": meta or {},
        }
        try:
            with transaction.atomic():
                alert, created = DiagnosticAlert.objects.get_or_create(**lookup, defaults=defaults)
        except IntegrityError:
            alert, created = DiagnosticAlert.objects.get(**lookup), False

        if created:
            logger.warning("alert %s raised: %s %s order=%s", alert.id, alert_type, test_code, order_id)
            AuditService.log(
                ctx=ctx,
                event_code="alert.raised",
                entity=alert,
                metadata={"alert_type": alert_type, "severity": severity, "test_code": test_code},
            )
        return alert, created

    @classmethod
    @transaction.atomic
    def acknowledge_alert(
        cls,
        ctx: ActorContext,
        *,
        alert_id: UUID,
        action_taken: str = "",
        at: datetime | None = None,
    ) -> DiagnosticAlert:
        if not ctx.actor_id:
            raise Unauthorized("Acknowledgment requires an identified actor.")

        alert = cls.alerts.get_for_update(ctx, alert_id)
        if alert.acknowledged:
            return alert

        alert.acknowledged = True
        alert.acknowledged_by = ctx.actor_id
        alert.acknowledged_at = at or timezone.now()
        alert.action_taken = (action_taken or "").strip()
        cls.alerts.put(alert, update_fields=["acknowledged", "acknowledged_by", "acknowledged_at", "action_taken"])

        AuditService.log(ctx=ctx, event_code="alert.acknowledged", entity=alert, metadata={"action_taken": alert.action_taken})
        return alert

    @classmethod
    @transaction.atomic
    def resolve_alert(cls, ctx: ActorContext, *, alert_id: UUID, action: str) -> DiagnosticAlert:
        if not ctx.actor_id:
            raise Unauthorized("Resolution requires an identified actor.")
        if not (action or "").strip():
            raise InvalidOrderRequest("Describe the action taken to resolve the alert.", details={"field": "action"})

        alert = cls.alerts.get_for_update(ctx, alert_id)
        if alert.resolved:
            return alert

        alert.resolved = True
        alert.resolved_by = ctx.actor_id
        alert.resolved_at = timezone.now()
        if not alert.action_taken:
            alert.action_taken = action.strip()
        cls.alerts.put(alert, update_fields=["resolved", "resolved_by", "resolved_at", "action_taken"])

        AuditService.log(ctx=ctx, event_code="alert.resolved", entity=alert, metadata={"action": action.strip()})
        return alert


class NotificationService:
    @staticmethod
    @transaction.atomic
    def notify_in_app(
        ctx: ActorContext,
        *,
        recipients: Iterable[str],
        title: str,
        body: str = "",
        channel: str = NotificationChannel.EMR_ALERT,
        meta: dict | None = None,
    ) -> list[Notification]:
        objs = [
            Notification(
                tenant_id=ctx.tenant_id,
                facility_id=ctx.facility_id,
                recipient=recipient,
                channel=channel,
                title=title[:255],
                body=body,
                meta=meta or {},
            )
            for recipient in recipients
        ]
        return Notification.objects.bulk_create(objs)

    @staticmethod
    @transaction.atomic
    def mark_read(ctx: ActorContext, *, notification_id: UUID) -> Notification:
        """
        Marks one of the caller's own notifications read. Reading twice is a no-op.
        """
        try:
            obj = Notification.objects.select_for_update().get(
                id=notification_id, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, recipient=ctx.actor_id
            )
        except (Notification.DoesNotExist, ValueError, DjangoValidationError):
            raise RecordNotFound("Notification not found.")

        if obj.is_read:
            return obj

        obj.mark_read()
        AuditService.log(ctx=ctx, event_code="notification.read", entity=obj)
        return obj
