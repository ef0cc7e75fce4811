# dx_core/results/services.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Sequence
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from dx_core.audit.services import AuditService
from dx_core.common.context import ActorContext
from dx_core.common.errors import (
    AbnormalResultsPresent,
    InvalidOrderRequest,
    InvalidTransition,
    RecordNotFound,
    ResultsIncomplete,
    Unauthorized,
)
from dx_core.common.repository import ScopedRepository
from dx_core.orders.models import DiagnosticOrder, OrderStatus
from dx_core.orders.services import advance_order
from dx_core.results.models import (
    CLOSED_REVIEW_STATUSES,
    DiagnosticResult,
    ResultFlag,
    ResultStatus,
    ResultsReview,
    ReviewStatus,
)

logger = logging.getLogger(__name__)

RELEASED_STATUSES = frozenset({ResultStatus.FINAL, ResultStatus.CORRECTED, ResultStatus.AMENDED})


def summarize(results: Sequence[DiagnosticResult]) -> list[dict]:
    return [
        {
            "result_id": str(r.id),
            "test_code": r.test_code,
            "value": r.value,
            "unit": r.unit,
            "flag": r.flag,
            "status": r.status,
            "is_critical": r.is_critical,
        }
        for r in results
    ]


def needs_acknowledgment(results: Sequence[DiagnosticResult]) -> bool:
    return any(r.flag != ResultFlag.NORMAL or r.is_critical for r in results)


class ResultsReviewService:
    """
    Clinician review of an order's results:
    PENDING -> REVIEWED -> ACKNOWLEDGED | ACTED_UPON.
    Only the ordering clinician may act. Lock order: order -> review -> results.
    """

    def __init__(
        self,
        *,
        orders: ScopedRepository[DiagnosticOrder] | None = None,
        results: ScopedRepository[DiagnosticResult] | None = None,
        reviews: ScopedRepository[ResultsReview] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.orders = orders or ScopedRepository(DiagnosticOrder, label="Order")
        self.results = results or ScopedRepository(DiagnosticResult, label="Result")
        self.reviews = reviews or ScopedRepository(ResultsReview, label="Results review")
        self.clock = clock or timezone.now

    # ----------------------------
    # helpers
    # ----------------------------
    def _owned_order(self, ctx: ActorContext, order_id: UUID) -> DiagnosticOrder:
        order = self.orders.get_for_update(ctx, order_id)
        if not ctx.actor_id or order.ordering_clinician_id != ctx.actor_id:
            raise Unauthorized(details={"order_id": str(order.id)})
        return order

    def _review_for(self, ctx: ActorContext, order: DiagnosticOrder) -> ResultsReview:
        review, _ = ResultsReview.objects.select_for_update().get_or_create(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            order_id=order.id,
            defaults={"patient_id": order.patient_id, "clinician_id": order.ordering_clinician_id},
        )
        return review

    def _order_results(self, ctx: ActorContext, order: DiagnosticOrder) -> list[DiagnosticResult]:
        return list(self.results.list(ctx, order_id=order.id).select_for_update().order_by("reported_at"))

    @staticmethod
    def _close_order(ctx: ActorContext, order: DiagnosticOrder) -> None:
        if order.status == OrderStatus.COMPLETED:
            advance_order(ctx, order, OrderStatus.RESULTED)

    # ----------------------------
    # ReviewIncoming
    # ----------------------------
    @transaction.atomic
    def review_incoming(self, ctx: ActorContext, *, order_id: UUID) -> ResultsReview:
        order = self._owned_order(ctx, order_id)
        review = self._review_for(ctx, order)
        results = self._order_results(ctx, order)

        review.results_summary = summarize(results)
        review.acknowledgment_required = needs_acknowledgment(results)
        self.reviews.put(review, update_fields=["results_summary", "acknowledgment_required"])

        AuditService.log(
            ctx=ctx,
            event_code="review.incoming",
            entity=review,
            metadata={"results": len(results), "acknowledgment_required": review.acknowledgment_required},
        )
        return review

    # ----------------------------
    # AcknowledgeNormal
    # ----------------------------
    @transaction.atomic
    def acknowledge_normal(self, ctx: ActorContext, *, order_id: UUID, comment: str = "") -> ResultsReview:
        order = self._owned_order(ctx, order_id)
        review = self._review_for(ctx, order)
        if review.status == ReviewStatus.ACKNOWLEDGED:
            return review
        if review.status == ReviewStatus.ACTED_UPON:
            raise InvalidTransition("Review already closed with follow-up plans.", details={"order_id": str(order.id)})

        results = self._order_results(ctx, order)
        ordered = list(order.tests.values_list("test_code", flat=True))
        missing = sorted(set(ordered) - {r.test_code for r in results})
        if not results or missing:
            raise ResultsIncomplete(details={"missing": missing or ordered})

        abnormal = [r.test_code for r in results if r.flag != ResultFlag.NORMAL or r.is_critical]
        if abnormal:
            raise AbnormalResultsPresent(details={"abnormal": abnormal})

        now = self.clock()
        for r in results:
            if r.status == ResultStatus.PRELIMINARY:
                r.status = ResultStatus.FINAL
            r.reviewed_by = ctx.actor_id
            r.reviewed_at = now
            self.results.put(r, update_fields=["status", "reviewed_by", "reviewed_at"])

        review.status = ReviewStatus.ACKNOWLEDGED
        review.results_summary = summarize(results)
        review.acknowledgment_required = False
        review.acknowledged_by = ctx.actor_id
        review.acknowledged_at = now
        review.acknowledgment_comment = (comment or "").strip()
        self.reviews.put(
            review,
            update_fields=[
                "status",
                "results_summary",
                "acknowledgment_required",
                "acknowledged_by",
                "acknowledged_at",
                "acknowledgment_comment",
            ],
        )
        self._close_order(ctx, order)

        AuditService.log(ctx=ctx, event_code="review.acknowledged", entity=review)
        return review

    # ----------------------------
    # InterpretAbnormal
    # ----------------------------
    @transaction.atomic
    def interpret_abnormal(
        self,
        ctx: ActorContext,
        *,
        order_id: UUID,
        interpretations: Sequence[dict],
        clinical_correlation: str = "",
    ) -> ResultsReview:
        """
        `interpretations`: [{"result_id", "interpretation", "recommended_follow_up"}].
        """
        if not interpretations:
            raise InvalidOrderRequest("At least one interpretation is required.", details={"field": "interpretations"})

        order = self._owned_order(ctx, order_id)
        review = self._review_for(ctx, order)
        if review.status in CLOSED_REVIEW_STATUSES:
            raise InvalidTransition(f"Review is {review.status}.", details={"order_id": str(order.id)})

        now = self.clock()
        by_id = {str(r.id): r for r in self._order_results(ctx, order)}
        for item in interpretations:
            result = by_id.get(str(item["result_id"]))
            if result is None:
                raise RecordNotFound(
                    "Result not found on this order.",
                    details={"result_id": str(item["result_id"])},
                )
            result.interpretation = (item.get("interpretation") or "").strip()
            result.recommended_follow_up = (item.get("recommended_follow_up") or "").strip()
            if result.status == ResultStatus.PRELIMINARY:
                result.status = ResultStatus.FINAL
            result.reviewed_by = ctx.actor_id
            result.reviewed_at = now
            self.results.put(
                result,
                update_fields=["interpretation", "recommended_follow_up", "status", "reviewed_by", "reviewed_at"],
            )

        review.status = ReviewStatus.REVIEWED
        review.results_summary = summarize(list(by_id.values()))
        review.acknowledgment_required = needs_acknowledgment(list(by_id.values()))
        review.reviewed_by = ctx.actor_id
        review.reviewed_at = now
        if clinical_correlation:
            review.clinical_correlation = clinical_correlation.strip()
        self.reviews.put(
            review,
            update_fields=[
                "status",
                "results_summary",
                "acknowledgment_required",
                "reviewed_by",
                "reviewed_at",
                "clinical_correlation",
            ],
        )

        AuditService.log(
            ctx=ctx,
            event_code="review.interpreted",
            entity=review,
            metadata={"results": [str(i["result_id"]) for i in interpretations]},
        )
        return review

    # ----------------------------
    # CreateFollowUpPlans
    # ----------------------------
    @transaction.atomic
    def create_follow_up_plans(self, ctx: ActorContext, *, order_id: UUID, plans: Sequence[dict]) -> ResultsReview:
        if not plans:
            raise InvalidOrderRequest("At least one follow-up plan is required.", details={"field": "plans"})

        order = self._owned_order(ctx, order_id)
        review = self._review_for(ctx, order)
        if review.status not in (ReviewStatus.REVIEWED, ReviewStatus.ACTED_UPON):
            raise InvalidTransition(
                "Interpret abnormal results before creating follow-up plans.",
                details={"order_id": str(order.id), "status": review.status},
            )

        review.follow_up_plans = [dict(p) for p in plans]
        review.status = ReviewStatus.ACTED_UPON
        self.reviews.put(review, update_fields=["follow_up_plans", "status"])
        self._close_order(ctx, order)

        AuditService.log(ctx=ctx, event_code="review.acted_upon", entity=review, metadata={"plans": len(plans)})
        return review

    # ----------------------------
    # AmendResult
    # ----------------------------
    @transaction.atomic
    def amend_result(self, ctx: ActorContext, *, result_id: UUID, interpretation: str, reason: str = "") -> DiagnosticResult:
        order_id = self.results.get(ctx, result_id).order_id
        self._owned_order(ctx, order_id)
        result = self.results.get_for_update(ctx, result_id)
        if result.status not in RELEASED_STATUSES:
            raise InvalidTransition(
                "Only final results can be amended.",
                details={"result_id": str(result.id), "status": result.status},
            )

        previous = result.interpretation
        result.interpretation = (interpretation or "").strip()
        result.status = ResultStatus.AMENDED
        result.reviewed_by = ctx.actor_id
        result.reviewed_at = self.clock()
        self.results.put(result, update_fields=["interpretation", "status", "reviewed_by", "reviewed_at"])

        AuditService.log(
            ctx=ctx,
            event_code="result.amended",
            entity=result,
            metadata={"reason": reason, "previous_interpretation": previous},
        )
        return result
