# dx_core/alerts/escalation.py
"""
Critical-value escalation.

Each detected critical value gets one DiagnosticAlert (CRITICAL_VALUE) and one
CriticalValueEscalation that walks a contact plan:

    primary x max_attempts -> backup x max_attempts -> escalation contact once

Attempts are spaced by exponential backoff. Delivery is not acknowledgment:
the plan keeps advancing until a human acknowledges the alert. When the plan
is consumed the escalation becomes EXHAUSTED and a standing
ESCALATION_EXHAUSTED alert stays open until someone resolves it.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from dx_core.alerts.channels import NotificationGateway
from dx_core.alerts.models import (
    AlertSeverity,
    AlertType,
    AttemptOutcome,
    CriticalValueEscalation,
    DiagnosticAlert,
    EscalationStatus,
    NotificationAttempt,
)
from dx_core.alerts.services import AlertService
from dx_core.audit.services import AuditService
from dx_core.catalog.defaults import ORDERING_CLINICIAN
from dx_core.catalog.types import NotificationProtocol
from dx_core.common.context import ActorContext
from dx_core.integrations.loading import load_strategy

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system:escalation"

TIER_PRIMARY = "primary"
TIER_BACKUP = "backup"
TIER_ESCALATION = "escalation"

LIVE_STATUSES = frozenset({EscalationStatus.DETECTED, EscalationStatus.NOTIFYING})


@dataclass(frozen=True)
class RetryPolicy:
    base_seconds: float = 60.0
    factor: float = 2.0
    max_seconds: float = 900.0

    def delay(self, attempt_number: int) -> timedelta:
        """Wait after the n-th attempt (1-based): base * factor^(n-1), capped."""
        seconds = self.base_seconds * (self.factor ** max(attempt_number - 1, 0))
        return timedelta(seconds=min(seconds, self.max_seconds))

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        conf = getattr(settings, "DX_ESCALATION_RETRY", {}) or {}
        return cls(
            base_seconds=float(conf.get("base_seconds", cls.base_seconds)),
            factor=float(conf.get("factor", cls.factor)),
            max_seconds=float(conf.get("max_seconds", cls.max_seconds)),
        )


def build_plan(protocol: NotificationProtocol, *, clinician_id: str) -> list[dict]:
    def resolve(contact: str) -> str:
        return clinician_id if contact == ORDERING_CLINICIAN else contact

    plan: list[dict] = []
    for _ in range(protocol.max_attempts):
        plan.append({"tier": TIER_PRIMARY, "contact": resolve(protocol.primary_contact), "channel": protocol.channel})
    if protocol.backup_contact:
        for _ in range(protocol.max_attempts):
            plan.append({"tier": TIER_BACKUP, "contact": resolve(protocol.backup_contact), "channel": protocol.channel})
    if protocol.escalation_contact:
        plan.append({"tier": TIER_ESCALATION, "contact": resolve(protocol.escalation_contact), "channel": protocol.channel})
    return plan


def default_protocol() -> NotificationProtocol:
    conf = getattr(settings, "DX_DEFAULT_NOTIFICATION_PROTOCOL", None) or {
        "primary_contact": ORDERING_CLINICIAN,
        "backup_contact": "on-call-physician",
    }
    return NotificationProtocol.from_dict(conf)


class EscalationService:
    def __init__(
        self,
        *,
        gateway: NotificationGateway | None = None,
        retry: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.gateway = gateway or load_strategy("DX_NOTIFICATION_GATEWAY", "dx_core.alerts.channels.InAppNotificationGateway")
        self.retry = retry or RetryPolicy.from_settings()
        self.clock = clock or timezone.now

    # ----------------------------
    # Detect
    # ----------------------------
    @transaction.atomic
    def detect(
        self,
        ctx: ActorContext,
        *,
        result,
        protocol: NotificationProtocol | None,
        clinician_id: str,
        action_required: str = "",
        timeframe_minutes: int | None = None,
    ) -> DiagnosticAlert:
        """
        Open the CRITICAL_VALUE alert for `result` and make the first delivery attempt.
        Repeat calls for the same detection instant return the existing alert.
        """
        protocol = protocol or default_protocol()
        detected_at = result.critical_detected_at or self.clock()

        alert, _ = AlertService.raise_alert(
            ctx,
            alert_type=AlertType.CRITICAL_VALUE,
            order_id=result.order_id,
            patient_id=result.patient_id,
            detected_at=detected_at,
            severity=AlertSeverity.HIGH,
            test_code=result.test_code,
            value=result.value,
            result_id=result.id,
            message=self._message(result, action_required, timeframe_minutes),
            meta={"flag": result.flag, "unit": result.unit},
        )

        try:
            with transaction.atomic():
                escalation, created = CriticalValueEscalation.objects.get_or_create(
                    alert=alert,
                    defaults={
                        "tenant_id": ctx.tenant_id,
                        "facility_id": ctx.facility_id,
                        "order_id": result.order_id,
                        "protocol": asdict(protocol),
                        "plan": build_plan(protocol, clinician_id=clinician_id),
                        "status": EscalationStatus.DETECTED,
                    },
                )
        except IntegrityError:
            escalation, created = CriticalValueEscalation.objects.get(alert=alert), False

        if not created:
            return alert

        AuditService.log(
            ctx=ctx,
            event_code="escalation.detected",
            entity=escalation,
            metadata={"alert_id": str(alert.id), "plan_length": len(escalation.plan)},
        )
        if alert.acknowledged:
            escalation.status = EscalationStatus.ACKNOWLEDGED
            escalation.save(update_fields=["status", "updated_at"])
            return alert

        self._attempt(ctx, escalation, alert, self.clock())
        return alert

    @staticmethod
    def _message(result, action_required: str, timeframe_minutes: int | None) -> str:
        lines = [
            f"CRITICAL {result.test_code} = {result.value} {result.unit} ({result.flag})".strip(),
            f"Patient {result.patient_id}, order {result.order_id}",
        ]
        if action_required:
            lines.append(action_required)
        if timeframe_minutes:
            lines.append(f"Acknowledge within {timeframe_minutes} minutes.")
        return "\n".join(lines)

    # ----------------------------
    # Attempts
    # ----------------------------
    def _attempt(self, ctx: ActorContext, escalation: CriticalValueEscalation, alert: DiagnosticAlert, now: datetime) -> None:
        plan = escalation.plan or []
        if escalation.attempts_made >= len(plan):
            self._exhaust(ctx, escalation, alert, now)
            return

        step = plan[escalation.attempts_made]
        detail = ""
        try:
            with transaction.atomic():
                outcome = self.gateway.send(ctx, step["contact"], step["channel"], alert.message)
        except Exception as e:
            logger.warning("notification to %s via %s failed: %s", step["contact"], step["channel"], e)
            outcome, detail = AttemptOutcome.FAILED, str(e)[:500]
        if outcome not in (AttemptOutcome.DELIVERED, AttemptOutcome.FAILED):
            outcome = AttemptOutcome.FAILED

        escalation.attempts_made += 1
        NotificationAttempt.objects.create(
            tenant_id=escalation.tenant_id,
            facility_id=escalation.facility_id,
            escalation=escalation,
            sequence=escalation.attempts_made,
            tier=step["tier"],
            contact=step["contact"],
            channel=step["channel"],
            outcome=outcome,
            attempted_at=now,
            detail=detail,
        )
        escalation.status = EscalationStatus.NOTIFYING
        escalation.next_attempt_at = now + self.retry.delay(escalation.attempts_made)
        escalation.save(update_fields=["attempts_made", "status", "next_attempt_at", "updated_at"])
        logger.info(
            "escalation %s attempt %s/%s -> %s (%s)",
            escalation.id,
            escalation.attempts_made,
            len(plan),
            step["contact"],
            outcome,
        )

    def _exhaust(self, ctx: ActorContext, escalation: CriticalValueEscalation, alert: DiagnosticAlert, now: datetime) -> None:
        escalation.status = EscalationStatus.EXHAUSTED
        escalation.exhausted_at = now
        escalation.next_attempt_at = None
        escalation.save(update_fields=["status", "exhausted_at", "next_attempt_at", "updated_at"])

        AlertService.raise_alert(
            ctx,
            alert_type=AlertType.ESCALATION_EXHAUSTED,
            order_id=alert.order_id,
            patient_id=alert.patient_id,
            detected_at=now,
            severity=AlertSeverity.HIGH,
            test_code=alert.test_code,
            value=alert.value,
            result_id=alert.result_id,
            message=(
                f"No acknowledgment after {escalation.attempts_made} notification attempts for critical "
                f"{alert.test_code} = {alert.value}. "
                f"{(escalation.protocol or {}).get('escalation_procedure', '')}"
            ).strip(),
            meta={"critical_alert_id": str(alert.id), "escalation_id": str(escalation.id)},
        )
        AuditService.log(ctx=ctx, event_code="escalation.exhausted", entity=escalation)
        logger.error("escalation %s exhausted without acknowledgment (alert %s)", escalation.id, alert.id)

    # ----------------------------
    # Scheduler entry point
    # ----------------------------
    def process_due(self, now: datetime | None = None) -> int:
        """
        Advance every live escalation whose next attempt is due. Returns how many advanced.
        Each escalation is handled in its own transaction under a row lock.
        """
        now = now or self.clock()
        due_ids = list(
            CriticalValueEscalation.objects.filter(
                status__in=LIVE_STATUSES,
                next_attempt_at__lte=now,
            )
            .order_by("next_attempt_at")
            .values_list("id", flat=True)
        )

        advanced = 0
        for escalation_id in due_ids:
            if self._advance(escalation_id, now):
                advanced += 1
        return advanced

    # Lock order everywhere: escalation row, then its alert.
    @staticmethod
    def _lock_escalation(**lookup) -> CriticalValueEscalation | None:
        return CriticalValueEscalation.objects.select_for_update(of=("self",)).filter(**lookup).first()

    def _lock_for_alert(self, ctx: ActorContext, alert_id) -> CriticalValueEscalation | None:
        try:
            alert_uuid = UUID(str(alert_id))
        except ValueError:
            return None
        return self._lock_escalation(alert_id=alert_uuid, tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)

    @transaction.atomic
    def _advance(self, escalation_id: UUID, now: datetime) -> bool:
        escalation = self._lock_escalation(id=escalation_id)
        if escalation is None or escalation.status not in LIVE_STATUSES:
            return False
        if not escalation.next_attempt_at or escalation.next_attempt_at > now:
            return False

        ctx = ActorContext(tenant_id=escalation.tenant_id, facility_id=escalation.facility_id, actor_id=SYSTEM_ACTOR)
        alert = AlertService.alerts.get_for_update(ctx, escalation.alert_id)
        if alert.acknowledged:
            self._mark_acknowledged(escalation, alert.acknowledged_by, alert.acknowledged_at)
            return False
        if alert.resolved:
            self._mark_acknowledged(escalation, alert.resolved_by, alert.resolved_at)
            return False

        self._attempt(ctx, escalation, alert, now)
        return True

    # ----------------------------
    # Acknowledge
    # ----------------------------
    @transaction.atomic
    def acknowledge(
        self,
        ctx: ActorContext,
        *,
        alert_id: UUID,
        action_taken: str = "",
        at: datetime | None = None,
    ) -> DiagnosticAlert:
        """
        Terminal acknowledgment by an identified actor.
        A live escalation stops; an exhausted one stays EXHAUSTED.
        """
        escalation = self._lock_for_alert(ctx, alert_id)
        alert = AlertService.acknowledge_alert(ctx, alert_id=alert_id, action_taken=action_taken, at=at or self.clock())

        if escalation is not None and escalation.status in LIVE_STATUSES:
            self._mark_acknowledged(escalation, alert.acknowledged_by, alert.acknowledged_at)
            AuditService.log(ctx=ctx, event_code="escalation.acknowledged", entity=escalation)
        return alert

    @transaction.atomic
    def resolve(self, ctx: ActorContext, *, alert_id: UUID, action: str) -> DiagnosticAlert:
        """
        Resolves the alert. A live escalation on it stops with the resolver
        recorded as the acknowledging actor.
        """
        escalation = self._lock_for_alert(ctx, alert_id)
        alert = AlertService.resolve_alert(ctx, alert_id=alert_id, action=action)

        if escalation is not None and escalation.status in LIVE_STATUSES:
            self._mark_acknowledged(escalation, alert.resolved_by, alert.resolved_at)
            AuditService.log(ctx=ctx, event_code="escalation.resolved", entity=escalation)
        return alert

    @staticmethod
    def _mark_acknowledged(escalation: CriticalValueEscalation, actor_id: str, at: datetime | None) -> None:
        escalation.status = EscalationStatus.ACKNOWLEDGED
        escalation.acknowledged_by = actor_id
        escalation.acknowledged_at = at
        escalation.next_attempt_at = None
        escalation.save(update_fields=["status", "acknowledged_by", "acknowledged_at", "next_attempt_at", "updated_at"])
