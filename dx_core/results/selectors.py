# dx_core/results/selectors.py
from __future__ import annotations

from django.db.models import QuerySet

from dx_core.common.errors import RecordNotFound
from dx_core.results.models import CLOSED_REVIEW_STATUSES, DiagnosticResult, ResultsReview


def get_result(*, tenant_id, facility_id, result_id) -> DiagnosticResult:
    try:
        return DiagnosticResult.objects.get(id=result_id, tenant_id=tenant_id, facility_id=facility_id)
    except (DiagnosticResult.DoesNotExist, ValueError):
        raise RecordNotFound("Result not found in this scope.")


def results_for_order(*, tenant_id, facility_id, order_id) -> QuerySet[DiagnosticResult]:
    return DiagnosticResult.objects.filter(tenant_id=tenant_id, facility_id=facility_id, order_id=order_id).order_by(
        "reported_at"
    )


def previous_result(*, tenant_id, facility_id, patient_id, test_code, exclude_order_id) -> DiagnosticResult | None:
    """
    The patient's most recent result for the same test on another order.
    """
    return (
        DiagnosticResult.objects.filter(
            tenant_id=tenant_id,
            facility_id=facility_id,
            patient_id=patient_id,
            test_code=test_code,
            numeric_value__isnull=False,
        )
        .exclude(order_id=exclude_order_id)
        .order_by("-reported_at")
        .first()
    )


def get_review(*, tenant_id, facility_id, order_id) -> ResultsReview:
    try:
        return ResultsReview.objects.get(order_id=order_id, tenant_id=tenant_id, facility_id=facility_id)
    except (ResultsReview.DoesNotExist, ValueError):
        raise RecordNotFound("No results review for this order yet.")


def pending_reviews(*, tenant_id, facility_id, clinician_id) -> QuerySet[ResultsReview]:
    """
    Reviews still awaiting the clinician; abnormal first, oldest first.
    """
    return (
        ResultsReview.objects.filter(tenant_id=tenant_id, facility_id=facility_id, clinician_id=clinician_id)
        .exclude(status__in=CLOSED_REVIEW_STATUSES)
        .order_by("-acknowledgment_required", "created_at")
    )
