# dx_core/specimens/tests/test_specimens_api.py
import uuid

import pytest

from dx_core.common.models import StoredResponse
from dx_core.orders.services import OrderService
from dx_core.specimens.models import SpecimenCollection
from dx_core.tests.helpers import rows, scoped

pytestmark = pytest.mark.django_db


@pytest.fixture
def order(clinician_ctx, patient_id):
    return OrderService().create_order(
        clinician_ctx,
        patient_id=patient_id,
        test_codes=["GLU", "K"],
        clinical_indication="Palpitations",
    )


def _collect_payload(order, **extra):
    return {
        "order_id": str(order.id),
        "patient": {"patient_id": str(order.patient_id), "wristband_id": str(order.patient_id)},
        "collection_site": "Right antecubital",
        **extra,
    }


def test_collect_transport_receive_flow(client_for, nurse, technician, order, tenant_id, facility_id):
    nurse_api = client_for(nurse)
    headers = scoped(tenant_id, facility_id)

    r = nurse_api.post(
        "/api/v1/specimens/collections/",
        _collect_payload(order, observations=[{"test_code": "k", "volume_ml": 5.0, "hemolysis": "Moderate"}]),
        format="json",
        **headers,
    )
    assert r.status_code == 201, r.data
    by_code = {s["test_codes"][0]: s for s in r.data["specimens"]}
    assert by_code["GLU"]["status"] == "COLLECTED"
    assert by_code["K"]["status"] == "REJECTED"
    collection_id = r.data["id"]

    r = nurse_api.post(f"/api/v1/specimens/collections/{collection_id}/transport/", format="json", **headers)
    assert r.status_code == 200, r.data
    assert r.data["transport_arranged"] is True

    r = nurse_api.post(f"/api/v1/specimens/collections/{collection_id}/transport/", format="json", **headers)
    assert r.status_code == 409, r.data
    assert r.data["error"]["code"] == "transport_already_arranged"

    listed = nurse_api.get(f"/api/v1/specimens/?order_id={order.id}&status=IN_TRANSIT", **headers)
    assert listed.status_code == 200, listed.data
    [in_transit] = rows(listed)
    assert in_transit["id"] == by_code["GLU"]["id"]

    r = client_for(technician).post(f"/api/v1/specimens/{in_transit['id']}/receive/", format="json", **headers)
    assert r.status_code == 200, r.data
    assert r.data["status"] == "RECEIVED"
    assert r.data["received_by"] == "mlt.karev"


def test_collect_is_idempotent(settings, client_for, nurse, order, tenant_id, facility_id):
    settings.COMMON_IDEMPOTENCY_USE_DB = True
    nurse_api = client_for(nurse)
    headers = scoped(tenant_id, facility_id, HTTP_IDEMPOTENCY_KEY="draw-1")

    r1 = nurse_api.post("/api/v1/specimens/collections/", _collect_payload(order), format="json", **headers)
    r2 = nurse_api.post("/api/v1/specimens/collections/", _collect_payload(order), format="json", **headers)

    assert r1.status_code == 201, r1.data
    assert r2.status_code == 201, r2.data
    assert r1.data["id"] == r2.data["id"]
    assert r2["Idempotent-Replay"] == "true"
    assert r2.data["specimens"][0]["collection"] == r1.data["id"]
    assert SpecimenCollection.objects.filter(order_id=order.id).count() == 1
    assert StoredResponse.objects.get(key="draw-1").status_code == 201
    assert len(rows(nurse_api.get(f"/api/v1/specimens/?order_id={order.id}", **scoped(tenant_id, facility_id)))) == 2


def test_clinician_cannot_collect(api_client, order, tenant_id, facility_id):
    r = api_client.post(
        "/api/v1/specimens/collections/", _collect_payload(order), format="json", **scoped(tenant_id, facility_id)
    )
    assert r.status_code == 403, r.data
    assert r.data["error"]["code"] == "permission_denied"


def test_identity_mismatch_is_unprocessable(client_for, nurse, order, tenant_id, facility_id):
    payload = _collect_payload(order)
    payload["patient"] = {"patient_id": str(uuid.uuid4())}

    r = client_for(nurse).post(
        "/api/v1/specimens/collections/", payload, format="json", **scoped(tenant_id, facility_id)
    )
    assert r.status_code == 422, r.data
    assert r.data["error"]["code"] == "identity_mismatch"


def test_review_and_prepare(client_for, nurse, order, tenant_id, facility_id):
    nurse_api = client_for(nurse)
    headers = scoped(tenant_id, facility_id)

    r = nurse_api.get(f"/api/v1/specimens/collections/review/?order_id={order.id}", **headers)
    assert r.status_code == 200, r.data
    assert r.data["required_preparations"][0] == "Fasting 8 hours"

    r = nurse_api.get("/api/v1/specimens/collections/review/", **headers)
    assert r.status_code == 400, r.data

    r = nurse_api.post(
        "/api/v1/specimens/collections/prepare/",
        {"order_id": str(order.id), "patient": {"patient_id": str(order.patient_id)}},
        format="json",
        **headers,
    )
    assert r.status_code == 200, r.data
    assert r.data["ready"] is False
    assert r.data["preparations"][0]["preparation"] == "fasting"
    assert r.data["preparations"][0]["hours_fasted"] is None


def test_reject_specimen(client_for, nurse, technician, order, tenant_id, facility_id):
    headers = scoped(tenant_id, facility_id)
    r = client_for(nurse).post("/api/v1/specimens/collections/", _collect_payload(order), format="json", **headers)
    specimen_id = r.data["specimens"][0]["id"]

    r = client_for(technician).post(
        f"/api/v1/specimens/{specimen_id}/reject/", {"reason": "Clotted on arrival"}, format="json", **headers
    )
    assert r.status_code == 200, r.data
    assert r.data["status"] == "REJECTED"
    assert r.data["rejection_reason"] == "Clotted on arrival"

    alerts = client_for(nurse).get(f"/api/v1/alerts/?order_id={order.id}", **headers)
    assert alerts.status_code == 200, alerts.data
    assert [a["alert_type"] for a in rows(alerts)] == ["QUALITY"]
