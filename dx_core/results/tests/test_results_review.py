# dx_core/results/tests/test_results_review.py
import uuid

import pytest

from dx_core.audit.models import AuditEvent
from dx_core.common.errors import (
    AbnormalResultsPresent,
    InvalidOrderRequest,
    InvalidTransition,
    RecordNotFound,
    ResultsIncomplete,
    Unauthorized,
)
from dx_core.orders.models import OrderStatus
from dx_core.orders.services import OrderService
from dx_core.results.models import DiagnosticResult, ResultStatus, ReviewStatus
from dx_core.results.selectors import pending_reviews
from dx_core.results.services import ResultsReviewService
from dx_core.tests.helpers import RecordingGateway, collect_and_ship, report, specimen_for

pytestmark = pytest.mark.django_db


@pytest.fixture
def resulted(clinician_ctx, nurse_ctx, tech_ctx, patient_id, narrow_glucose_catalog):
    """
    GLU + K order with the given values reported; a value of None leaves that test unreported.
    """

    def _resulted(glu="15", k="4.2"):
        order = OrderService(catalog=narrow_glucose_catalog).create_order(
            clinician_ctx,
            patient_id=patient_id,
            test_codes=["GLU", "K"],
            clinical_indication="Weakness",
        )
        specimens = collect_and_ship(nurse_ctx, order)
        for code, value in (("GLU", glu), ("K", k)):
            if value is not None:
                report(tech_ctx, specimen_for(specimens, code), value, gateway=RecordingGateway())
        order.refresh_from_db()
        return order

    return _resulted


def _result(order, code):
    return DiagnosticResult.objects.get(order_id=order.id, test_code=code)


def test_review_incoming_summarizes_without_changing_status(clinician_ctx, resulted):
    order = resulted(glu="41")

    review = ResultsReviewService().review_incoming(clinician_ctx, order_id=order.id)

    assert review.status == ReviewStatus.PENDING
    assert review.acknowledgment_required is True
    assert [(s["test_code"], s["flag"], s["is_critical"]) for s in review.results_summary] == [
        ("GLU", "CRITICAL_HIGH", True),
        ("K", "NORMAL", False),
    ]


def test_only_ordering_clinician_reviews(ctx_for, other_clinician, resulted):
    order = resulted()
    with pytest.raises(Unauthorized):
        ResultsReviewService().review_incoming(ctx_for(other_clinician), order_id=order.id)


def test_acknowledge_normal_finalizes_and_closes_order(clinician_ctx, resulted):
    order = resulted()
    assert order.status == OrderStatus.COMPLETED
    service = ResultsReviewService()

    review = service.acknowledge_normal(clinician_ctx, order_id=order.id, comment=" Reviewed, no action ")
    again = service.acknowledge_normal(clinician_ctx, order_id=order.id)

    assert review.status == again.status == ReviewStatus.ACKNOWLEDGED
    assert review.acknowledged_by == "dr.grey"
    assert review.acknowledgment_comment == "Reviewed, no action"
    assert review.acknowledgment_required is False

    for code in ("GLU", "K"):
        result = _result(order, code)
        assert result.status == ResultStatus.FINAL
        assert result.reviewed_by == "dr.grey"

    order.refresh_from_db()
    assert order.status == OrderStatus.RESULTED
    assert AuditEvent.objects.filter(entity_id=review.id, event_code="review.acknowledged").count() == 1


def test_acknowledge_requires_every_result(clinician_ctx, resulted):
    order = resulted(k=None)

    with pytest.raises(ResultsIncomplete) as exc:
        ResultsReviewService().acknowledge_normal(clinician_ctx, order_id=order.id)
    assert exc.value.details == {"missing": ["K"]}


def test_acknowledge_refuses_abnormal_results(clinician_ctx, resulted):
    order = resulted(glu="41")

    with pytest.raises(AbnormalResultsPresent) as exc:
        ResultsReviewService().acknowledge_normal(clinician_ctx, order_id=order.id)
    assert exc.value.details == {"abnormal": ["GLU"]}

    assert _result(order, "GLU").status == ResultStatus.PRELIMINARY
    order.refresh_from_db()
    assert order.status == OrderStatus.COMPLETED


def test_abnormal_path_interpret_then_follow_up(clinician_ctx, resulted):
    order = resulted(glu="41")
    service = ResultsReviewService()
    glu = _result(order, "GLU")

    with pytest.raises(InvalidTransition):
        service.create_follow_up_plans(clinician_ctx, order_id=order.id, plans=[{"action": "Repeat GLU"}])

    review = service.interpret_abnormal(
        clinician_ctx,
        order_id=order.id,
        interpretations=[
            {
                "result_id": glu.id,
                "interpretation": "Marked hyperglycemia",
                "recommended_follow_up": "Repeat fasting glucose and HbA1c",
            }
        ],
        clinical_correlation="Known type 2 diabetic, missed insulin",
    )
    assert review.status == ReviewStatus.REVIEWED
    assert review.reviewed_by == "dr.grey"
    assert review.clinical_correlation == "Known type 2 diabetic, missed insulin"

    glu.refresh_from_db()
    assert glu.status == ResultStatus.FINAL
    assert glu.interpretation == "Marked hyperglycemia"
    assert _result(order, "K").status == ResultStatus.PRELIMINARY

    review = service.create_follow_up_plans(
        clinician_ctx,
        order_id=order.id,
        plans=[{"action": "Repeat test", "test_codes": ["GLU"], "notes": "Fasting AM draw"}],
    )
    assert review.status == ReviewStatus.ACTED_UPON
    assert review.follow_up_plans[0]["test_codes"] == ["GLU"]

    order.refresh_from_db()
    assert order.status == OrderStatus.RESULTED

    with pytest.raises(InvalidTransition):
        service.interpret_abnormal(
            clinician_ctx, order_id=order.id, interpretations=[{"result_id": glu.id, "interpretation": "x"}]
        )
    with pytest.raises(InvalidTransition):
        service.acknowledge_normal(clinician_ctx, order_id=order.id)


def test_interpret_validates_input(clinician_ctx, resulted):
    order = resulted(glu="41")
    service = ResultsReviewService()

    with pytest.raises(InvalidOrderRequest):
        service.interpret_abnormal(clinician_ctx, order_id=order.id, interpretations=[])
    with pytest.raises(RecordNotFound):
        service.interpret_abnormal(
            clinician_ctx,
            order_id=order.id,
            interpretations=[{"result_id": uuid.uuid4(), "interpretation": "n/a"}],
        )
    with pytest.raises(InvalidOrderRequest):
        service.create_follow_up_plans(clinician_ctx, order_id=order.id, plans=[])


def test_amend_only_released_results(clinician_ctx, ctx_for, other_clinician, resulted):
    order = resulted()
    service = ResultsReviewService()
    glu = _result(order, "GLU")

    with pytest.raises(InvalidTransition):
        service.amend_result(clinician_ctx, result_id=glu.id, interpretation="Normal")

    service.acknowledge_normal(clinician_ctx, order_id=order.id)
    with pytest.raises(Unauthorized):
        service.amend_result(ctx_for(other_clinician), result_id=glu.id, interpretation="Normal")

    amended = service.amend_result(
        clinician_ctx, result_id=glu.id, interpretation="Normal; drawn post-prandial", reason="Collection timing"
    )
    assert amended.status == ResultStatus.AMENDED
    assert amended.interpretation == "Normal; drawn post-prandial"

    event = AuditEvent.objects.get(entity_id=glu.id, event_code="result.amended")
    assert event.metadata == {"reason": "Collection timing", "previous_interpretation": ""}


def test_pending_reviews_put_abnormal_first(clinician_ctx, tenant_id, facility_id, resulted):
    normal = resulted()
    abnormal = resulted(glu="41")
    service = ResultsReviewService()
    service.review_incoming(clinician_ctx, order_id=normal.id)
    service.review_incoming(clinician_ctx, order_id=abnormal.id)

    pending = pending_reviews(tenant_id=tenant_id, facility_id=facility_id, clinician_id="dr.grey")
    assert [r.order_id for r in pending] == [abnormal.id, normal.id]

    service.acknowledge_normal(clinician_ctx, order_id=normal.id)
    pending = pending_reviews(tenant_id=tenant_id, facility_id=facility_id, clinician_id="dr.grey")
    assert [r.order_id for r in pending] == [abnormal.id]
