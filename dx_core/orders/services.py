# dx_core/orders/services.py
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from dx_core.audit.services import AuditService
from dx_core.catalog.source import CatalogSource, get_catalog
from dx_core.catalog.types import DiagnosticTest, NotificationProtocol, Preparation
from dx_core.common.context import ActorContext
from dx_core.common.errors import InvalidOrderRequest, InvalidTransition, OrderLocked, Unauthorized
from dx_core.common.repository import ScopedRepository
from dx_core.integrations.billing import BillingGateway, charge_total
from dx_core.integrations.loading import load_strategy
from dx_core.orders.models import BillingStatus, DiagnosticOrder, OrderStatus, OrderTest, OrderUrgency

logger = logging.getLogger(__name__)

DEFAULT_FASTING_HOURS = 12

URGENCY_LEAD_TIME = {
    OrderUrgency.URGENT: timedelta(hours=2),
    OrderUrgency.ROUTINE: timedelta(hours=24),
}

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.SCHEDULED, OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.SCHEDULED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.RESULTED, OrderStatus.CANCELLED}),
    OrderStatus.RESULTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


# ----------------------------
# Pure derivations
# ----------------------------
def build_preparation(tests: Sequence[DiagnosticTest]) -> Preparation:
    """
    Union of every test's patient preparation.

    Fasting window is the longest window among tests that require fasting; a
    fasting test that names no window counts as DEFAULT_FASTING_HOURS.
    """
    prep = Preparation()

    fasting = [t.specimen.fasting_hours or DEFAULT_FASTING_HOURS for t in tests if t.specimen.fasting_required]
    if fasting:
        prep.fasting_hours = max(fasting)
        prep.instructions.append(f"Nothing by mouth except water for {prep.fasting_hours} hours before collection.")

    seen_holds: set[str] = set()
    for t in tests:
        for item in t.dietary_restrictions:
            if item not in prep.dietary_restrictions:
                prep.dietary_restrictions.append(item)
        for item in t.activity_restrictions:
            if item not in prep.activity_restrictions:
                prep.activity_restrictions.append(item)
        for hold in t.medication_holds:
            if hold.medication in seen_holds:
                continue
            seen_holds.add(hold.medication)
            prep.medication_holds.append(
                {
                    "medication": hold.medication,
                    "hold_duration": hold.hold_duration,
                    "reason": hold.reason,
                    "resume_instructions": hold.resume_instructions,
                }
            )
            prep.instructions.append(f"Hold {hold.medication}: {hold.hold_duration}.")

    return prep


def majority_category(tests: Sequence[DiagnosticTest], catalog: CatalogSource) -> str:
    """
    Most frequent category; ties go to the category declared first in the catalog.
    """
    if not tests:
        raise InvalidOrderRequest("An order needs at least one test.")
    counts = Counter(str(t.category) for t in tests)
    return min(counts, key=lambda c: (-counts[c], catalog.category_rank(c)))


def compute_schedule(urgency: str, now: datetime, scheduled_for: datetime | None = None) -> datetime | None:
    if urgency == OrderUrgency.STAT:
        return None
    if urgency == OrderUrgency.TIMED:
        if scheduled_for is None:
            raise InvalidOrderRequest("TIMED orders require scheduled_for.", details={"field": "scheduled_for"})
        return scheduled_for
    try:
        return now + URGENCY_LEAD_TIME[urgency]
    except KeyError:
        raise InvalidOrderRequest(f"Unknown urgency: {urgency!r}", details={"field": "urgency"})


def advance_order(ctx: ActorContext, order: DiagnosticOrder, target: str, *, metadata: dict | None = None) -> DiagnosticOrder:
    """
    System-driven lifecycle step. Caller holds the order row lock.
    Re-entering the current status is a no-op.
    """
    if order.status == target:
        return order
    if target not in ORDER_TRANSITIONS.get(order.status, frozenset()):
        raise InvalidTransition(
            f"Order cannot move from {order.status} to {target}.",
            details={"order_id": str(order.id), "status": order.status, "target": target},
        )
    previous = order.status
    order.status = target
    order.save(update_fields=["status", "updated_at"])
    AuditService.log(
        ctx=ctx,
        event_code=f"order.{target.lower()}",
        entity=order,
        metadata={"from": previous, **(metadata or {})},
    )
    logger.info("order %s %s -> %s", order.id, previous, target)
    return order


class OrderService:
    """
    Write-model operations for diagnostic orders.
    - create / replace tests (preparation, category, billing derived from the catalog)
    - clinician-only edits: indication, urgency, cancellation
    - schedule (PENDING -> SCHEDULED)
    """

    def __init__(
        self,
        *,
        catalog: CatalogSource | None = None,
        billing: BillingGateway | None = None,
        orders: ScopedRepository[DiagnosticOrder] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.catalog = catalog or get_catalog()
        self.billing = billing or load_strategy("DX_BILLING_GATEWAY", "dx_core.integrations.billing.CatalogBillingGateway")
        self.orders = orders or ScopedRepository(DiagnosticOrder, label="Order")
        self.clock = clock or timezone.now

    # ----------------------------
    # helpers
    # ----------------------------
    @staticmethod
    def _require_owner(ctx: ActorContext, order: DiagnosticOrder) -> None:
        if not ctx.actor_id or order.ordering_clinician_id != ctx.actor_id:
            raise Unauthorized(details={"order_id": str(order.id)})

    def _apply_tests(self, ctx: ActorContext, order: DiagnosticOrder, tests: Sequence[DiagnosticTest]) -> None:
        order.preparation = build_preparation(tests).as_dict()
        order.category = majority_category(tests, self.catalog)
        self._price(order, tests)

        order.tests.all().delete()
        OrderTest.objects.bulk_create(
            [
                OrderTest(
                    tenant_id=ctx.tenant_id,
                    facility_id=ctx.facility_id,
                    order=order,
                    position=i,
                    test_code=t.code,
                    snapshot=t.to_snapshot(),
                )
                for i, t in enumerate(tests)
            ]
        )

    def _price(self, order: DiagnosticOrder, tests: Sequence[DiagnosticTest]) -> None:
        try:
            authorization_required = self.billing.authorization_required(tests)
            charges = self.billing.charges(tests)
        except Exception:
            logger.exception("billing gateway failed for order %s; continuing without charges", order.id)
            order.billing_status = BillingStatus.UNAVAILABLE
            order.charges = []
            order.charge_total = Decimal("0.00")
            return
        order.authorization_required = authorization_required
        order.billing_status = BillingStatus.PRICED
        order.charges = charges
        order.charge_total = charge_total(charges)

    # ----------------------------
    # Create
    # ----------------------------
    @transaction.atomic
    def create_order(
        self,
        ctx: ActorContext,
        *,
        patient_id: UUID,
        test_codes: Sequence[str],
        clinical_indication: str,
        urgency: str = OrderUrgency.ROUTINE,
        special_instructions: str = "",
        scheduled_for: datetime | None = None,
    ) -> DiagnosticOrder:
        if not ctx.actor_id:
            raise Unauthorized("An identified clinician is required to order tests.")
        if not test_codes:
            raise InvalidOrderRequest("An order needs at least one test.", details={"field": "test_codes"})

        tests = self.catalog.get_many(test_codes)
        order = DiagnosticOrder(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            patient_id=patient_id,
            ordering_clinician_id=ctx.actor_id,
            clinical_indication=(clinical_indication or "").strip(),
            special_instructions=(special_instructions or "").strip(),
            urgency=urgency,
            scheduled_for=compute_schedule(urgency, self.clock(), scheduled_for),
            status=OrderStatus.PENDING,
        )
        order.save()
        self._apply_tests(ctx, order, tests)
        order.save()

        AuditService.log(
            ctx=ctx,
            event_code="order.created",
            entity=order,
            metadata={"tests": [t.code for t in tests], "urgency": urgency},
        )
        logger.info("order %s created for patient %s (%s)", order.id, patient_id, ",".join(t.code for t in tests))
        return order

    # ----------------------------
    # Clinician-only edits
    # ----------------------------
    @transaction.atomic
    def update_indication(
        self,
        ctx: ActorContext,
        *,
        order_id: UUID,
        clinical_indication: str,
        special_instructions: str | None = None,
    ) -> DiagnosticOrder:
        order = self.orders.get_for_update(ctx, order_id)
        self._require_owner(ctx, order)
        if order.is_terminal:
            raise InvalidTransition(f"Order is {order.status}.", details={"order_id": str(order.id)})

        order.clinical_indication = (clinical_indication or "").strip()
        fields = ["clinical_indication"]
        if special_instructions is not None:
            order.special_instructions = special_instructions.strip()
            fields.append("special_instructions")
        self.orders.put(order, update_fields=fields)

        AuditService.log(ctx=ctx, event_code="order.indication_updated", entity=order)
        return order

    @transaction.atomic
    def set_urgency(
        self,
        ctx: ActorContext,
        *,
        order_id: UUID,
        urgency: str,
        protocol: NotificationProtocol | None = None,
        scheduled_for: datetime | None = None,
    ) -> DiagnosticOrder:
        order = self.orders.get_for_update(ctx, order_id)
        self._require_owner(ctx, order)
        if order.is_terminal:
            raise InvalidTransition(f"Order is {order.status}.", details={"order_id": str(order.id)})

        order.urgency = urgency
        order.scheduled_for = compute_schedule(urgency, self.clock(), scheduled_for)
        self.orders.put(order, update_fields=["urgency", "scheduled_for"])

        if protocol is not None:
            for row in order.tests.all():
                row.snapshot = row.catalog_entry().with_protocol(protocol).to_snapshot()
                row.save(update_fields=["snapshot", "updated_at"])

        AuditService.log(
            ctx=ctx,
            event_code="order.urgency_changed",
            entity=order,
            metadata={"urgency": urgency, "protocol_changed": protocol is not None},
        )
        return order

    @transaction.atomic
    def replace_tests(self, ctx: ActorContext, *, order_id: UUID, test_codes: Sequence[str]) -> DiagnosticOrder:
        order = self.orders.get_for_update(ctx, order_id)
        self._require_owner(ctx, order)
        if order.status != OrderStatus.PENDING:
            raise OrderLocked(details={"order_id": str(order.id), "status": order.status})
        if not test_codes:
            raise InvalidOrderRequest("An order needs at least one test.", details={"field": "test_codes"})

        tests = self.catalog.get_many(test_codes)
        self._apply_tests(ctx, order, tests)
        order.save()

        AuditService.log(
            ctx=ctx,
            event_code="order.tests_replaced",
            entity=order,
            metadata={"tests": [t.code for t in tests]},
        )
        return order

    @transaction.atomic
    def cancel_order(self, ctx: ActorContext, *, order_id: UUID, reason: str) -> DiagnosticOrder:
        order = self.orders.get_for_update(ctx, order_id)
        self._require_owner(ctx, order)

        if order.status == OrderStatus.CANCELLED:
            return order
        if order.status == OrderStatus.RESULTED:
            raise InvalidTransition("Resulted orders cannot be cancelled.", details={"order_id": str(order.id)})

        order.cancellation_reason = (reason or "").strip()
        order.cancelled_at = self.clock()
        order.save(update_fields=["cancellation_reason", "cancelled_at", "updated_at"])
        return advance_order(ctx, order, OrderStatus.CANCELLED, metadata={"reason": order.cancellation_reason})

    # ----------------------------
    # Scheduling
    # ----------------------------
    @transaction.atomic
    def schedule_order(self, ctx: ActorContext, *, order_id: UUID) -> DiagnosticOrder:
        order = self.orders.get_for_update(ctx, order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(
                f"Only pending orders can be scheduled (status={order.status}).",
                details={"order_id": str(order.id)},
            )
        return advance_order(ctx, order, OrderStatus.SCHEDULED, metadata={"scheduled_for": str(order.scheduled_for)})
