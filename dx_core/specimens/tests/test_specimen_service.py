# dx_core/specimens/tests/test_specimen_service.py
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from dx_core.alerts.models import AlertType, DiagnosticAlert
from dx_core.common.errors import (
    IdentityMismatch,
    InvalidTestCode,
    InvalidTransition,
    LabelMismatch,
    TransportAlreadyArranged,
)
from dx_core.integrations.patients import LocalPatientRecordStore, PatientContext
from dx_core.orders.models import OrderStatus
from dx_core.orders.services import OrderService
from dx_core.specimens.models import Specimen, SpecimenStatus
from dx_core.specimens.quality import SpecimenObservation
from dx_core.specimens.services import SpecimenService, label_matches
from dx_core.tests.helpers import collect_and_ship, specimen_for

pytestmark = pytest.mark.django_db

GLU_DIET = "No food or caloric beverages; water permitted"


@pytest.fixture
def order_for(clinician_ctx, patient_id):
    def _order(codes=("GLU", "K")):
        return OrderService().create_order(
            clinician_ctx,
            patient_id=patient_id,
            test_codes=list(codes),
            clinical_indication="Fatigue",
        )

    return _order


def _collect(ctx, order, **kwargs):
    kwargs.setdefault("patient", PatientContext(patient_id=order.patient_id))
    return SpecimenService().collect_specimens(ctx, order_id=order.id, **kwargs)


# ----------------------------
# Review / preparation
# ----------------------------
def test_review_lists_required_preparations(nurse_ctx, order_for):
    order = order_for(["GLU"])
    out = SpecimenService().review_for_collection(nurse_ctx, order_id=order.id)
    assert out == {
        "complete": True,
        "issues": [],
        "required_preparations": ["Fasting 8 hours", GLU_DIET],
    }


def test_review_flags_unverified_medication_holds(nurse_ctx, order_for, patient_id):
    order = order_for(["CREAT"])

    out = SpecimenService().review_for_collection(nurse_ctx, order_id=order.id)
    assert out["complete"] is False
    assert out["issues"] == ["Medication holds have not been verified."]
    assert "Hold Metformin" in out["required_preparations"]

    verified = LocalPatientRecordStore(verified_patients={patient_id: {"Metformin"}})
    assert SpecimenService(patients=verified).review_for_collection(nurse_ctx, order_id=order.id)["complete"] is True


def test_prepare_patient_rejects_wrong_patient(nurse_ctx, order_for):
    order = order_for()
    with pytest.raises(IdentityMismatch):
        SpecimenService().prepare_patient(nurse_ctx, order_id=order.id, patient=PatientContext(patient_id=uuid.uuid4()))
    with pytest.raises(IdentityMismatch):
        SpecimenService().prepare_patient(
            nurse_ctx,
            order_id=order.id,
            patient=PatientContext(patient_id=order.patient_id, wristband_id="someone-else"),
        )


def test_prepare_patient_reports_outstanding_preparation(nurse_ctx, order_for):
    order = order_for(["GLU"])
    patient = PatientContext(patient_id=order.patient_id, last_meal_at=timezone.now() - timedelta(hours=2))

    out = SpecimenService().prepare_patient(nurse_ctx, order_id=order.id, patient=patient)

    assert out["ready"] is False
    kinds = [p["preparation"] for p in out["preparations"]]
    assert kinds == ["fasting", "instruction"]
    assert out["preparations"][0]["required_hours"] == 8
    assert out["preparations"][0]["hours_fasted"] < 8


def test_prepare_patient_ready_once_fasted(nurse_ctx, order_for):
    order = order_for(["GLU"])
    patient = PatientContext(
        patient_id=order.patient_id,
        wristband_id=str(order.patient_id),
        last_meal_at=timezone.now() - timedelta(hours=10),
        completed_preparations=(GLU_DIET,),
    )
    out = SpecimenService().prepare_patient(nurse_ctx, order_id=order.id, patient=patient)
    assert out == {"ready": True, "preparations": []}


# ----------------------------
# Collection
# ----------------------------
def test_collect_creates_one_specimen_per_test(nurse_ctx, order_for):
    order = order_for()
    collection = _collect(nurse_ctx, order, collection_site="Left antecubital")

    specimens = list(collection.specimens.order_by("label"))
    assert [s.test_codes for s in specimens] == [["GLU"], ["K"]]
    assert all(s.status == SpecimenStatus.COLLECTED for s in specimens)
    assert all(label_matches(s) for s in specimens)
    assert collection.collected_by == "rn.bailey"
    assert collection.identity_verified is True

    order.refresh_from_db()
    assert order.status == OrderStatus.IN_PROGRESS


def test_collect_for_wrong_patient_creates_nothing(nurse_ctx, order_for):
    order = order_for()
    with pytest.raises(IdentityMismatch):
        _collect(nurse_ctx, order, patient=PatientContext(patient_id=uuid.uuid4()))
    assert Specimen.objects.filter(order_id=order.id).count() == 0
    order.refresh_from_db()
    assert order.status == OrderStatus.PENDING


def test_low_volume_specimen_is_rejected_with_quality_alert(nurse_ctx, order_for):
    order = order_for()
    collection = _collect(nurse_ctx, order, observations={"glu": SpecimenObservation(volume_ml=1.0)})

    glu = specimen_for(list(collection.specimens.all()), "GLU")
    k = specimen_for(list(collection.specimens.all()), "K")
    assert glu.status == SpecimenStatus.REJECTED
    assert glu.rejection_reason == "InsufficientVolume (Major)"
    assert k.status == SpecimenStatus.COLLECTED

    alert = DiagnosticAlert.objects.get(order_id=order.id, alert_type=AlertType.QUALITY)
    assert alert.test_code == "GLU"
    assert alert.meta["specimen_id"] == str(glu.id)


def test_cannot_collect_for_cancelled_order(clinician_ctx, nurse_ctx, order_for):
    order = order_for()
    OrderService().cancel_order(clinician_ctx, order_id=order.id, reason="Duplicate order")

    with pytest.raises(InvalidTransition):
        _collect(nurse_ctx, order)


def test_redraw_only_for_rejected_tests(nurse_ctx, order_for):
    order = order_for()
    _collect(nurse_ctx, order, observations={"GLU": SpecimenObservation(volume_ml=1.0)})

    redraw = _collect(nurse_ctx, order, test_codes=["GLU"])
    [specimen] = list(redraw.specimens.all())
    assert specimen.status == SpecimenStatus.COLLECTED
    assert specimen.label.endswith("-GLU-03")

    with pytest.raises(InvalidTransition):
        _collect(nurse_ctx, order, test_codes=["K"])
    with pytest.raises(InvalidTestCode):
        _collect(nurse_ctx, order, test_codes=["HGB"])


# ----------------------------
# Transport / receipt / rejection
# ----------------------------
def test_transport_moves_acceptable_specimens_once(nurse_ctx, order_for):
    order = order_for()
    collection = _collect(nurse_ctx, order, observations={"K": SpecimenObservation(volume_ml=5.0, hemolysis="Gross")})

    service = SpecimenService()
    shipped = service.arrange_transport(nurse_ctx, collection_id=collection.id)
    assert shipped.transport_arranged is True
    assert shipped.labels_verified is True
    assert shipped.transport_arranged_by == "rn.bailey"

    statuses = {s.test_codes[0]: s.status for s in collection.specimens.all()}
    assert statuses == {"GLU": SpecimenStatus.IN_TRANSIT, "K": SpecimenStatus.REJECTED}

    with pytest.raises(TransportAlreadyArranged):
        service.arrange_transport(nurse_ctx, collection_id=collection.id)


def test_transport_blocked_on_label_mismatch(nurse_ctx, order_for):
    order = order_for()
    collection = _collect(nurse_ctx, order)
    glu = specimen_for(list(collection.specimens.all()), "GLU")
    Specimen.objects.filter(id=glu.id).update(label="DX-00000000-GLU-01")

    with pytest.raises(LabelMismatch) as exc:
        SpecimenService().arrange_transport(nurse_ctx, collection_id=collection.id)
    assert exc.value.details == {"labels": ["DX-00000000-GLU-01"]}

    collection.refresh_from_db()
    assert collection.transport_arranged is False


def test_receive_only_in_transit(nurse_ctx, tech_ctx, order_for):
    order = order_for(["GLU"])
    collection = _collect(nurse_ctx, order)
    [specimen] = list(collection.specimens.all())

    with pytest.raises(InvalidTransition):
        SpecimenService().receive_specimen(tech_ctx, specimen_id=specimen.id)

    SpecimenService().arrange_transport(nurse_ctx, collection_id=collection.id)
    received = SpecimenService().receive_specimen(tech_ctx, specimen_id=specimen.id)
    assert received.status == SpecimenStatus.RECEIVED
    assert received.received_by == "mlt.karev"
    assert received.received_at is not None


def test_manual_rejection_is_idempotent(nurse_ctx, tech_ctx, order_for):
    order = order_for(["GLU"])
    [specimen] = collect_and_ship(nurse_ctx, order)
    service = SpecimenService()

    rejected = service.reject_specimen(tech_ctx, specimen_id=specimen.id, reason="Leaked in transit")
    again = service.reject_specimen(tech_ctx, specimen_id=specimen.id, reason="Leaked in transit")

    assert rejected.status == again.status == SpecimenStatus.REJECTED
    assert rejected.rejection_reason == "Leaked in transit"
    assert rejected.quality["issues"][-1]["issue"] == "ManualRejection"
    assert DiagnosticAlert.objects.filter(order_id=order.id, alert_type=AlertType.QUALITY).count() == 1

    with pytest.raises(InvalidTransition):
        service.receive_specimen(tech_ctx, specimen_id=specimen.id)
