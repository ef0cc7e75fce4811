# dx_core/tests/test_pipeline_scenarios.py
import uuid

import pytest

from dx_core.tests.helpers import rows, scoped

pytestmark = pytest.mark.django_db


@pytest.fixture
def staff(client_for, clinician, nurse, technician):
    return {
        "clinician": client_for(clinician),
        "nurse": client_for(nurse),
        "tech": client_for(technician),
    }


def _order(staff, headers, patient_id, codes=("GLU", "K"), urgency="STAT"):
    r = staff["clinician"].post(
        "/api/v1/orders/",
        {
            "patient_id": str(patient_id),
            "test_codes": list(codes),
            "clinical_indication": "Altered mental status",
            "urgency": urgency,
        },
        format="json",
        **headers,
    )
    assert r.status_code == 201, r.data
    return r.data


def _collect_and_ship(staff, headers, order):
    r = staff["nurse"].post(
        "/api/v1/specimens/collections/",
        {"order_id": order["id"], "patient": {"patient_id": order["patient_id"]}},
        format="json",
        **headers,
    )
    assert r.status_code == 201, r.data
    r = staff["nurse"].post(f"/api/v1/specimens/collections/{r.data['id']}/transport/", format="json", **headers)
    assert r.status_code == 200, r.data
    return {s["test_codes"][0]: s["id"] for s in r.data["specimens"]}


def _process(staff, headers, specimen_id, value):
    r = staff["tech"].post(f"/api/v1/specimens/{specimen_id}/receive/", format="json", **headers)
    assert r.status_code == 200, r.data
    r = staff["tech"].post(
        "/api/v1/processing/records/", {"specimen_id": specimen_id, "value": value}, format="json", **headers
    )
    assert r.status_code == 201, r.data
    return r.data


def test_stat_critical_glucose_end_to_end(dx_settings, staff, tenant_id, facility_id, patient_id):
    headers = scoped(tenant_id, facility_id)
    order = _order(staff, headers, patient_id)
    specimens = _collect_and_ship(staff, headers, order)

    _process(staff, headers, specimens["GLU"], "41")
    _process(staff, headers, specimens["K"], "4.0")
    assert staff["clinician"].get(f"/api/v1/orders/{order['id']}/", **headers).data["status"] == "COMPLETED"

    # critical value reached the ordering clinician's inbox
    inbox = rows(staff["clinician"].get("/api/v1/notifications/", **headers))
    assert [n["title"] for n in inbox] == ["CRITICAL GLU = 41 mg/dL (CRITICAL_HIGH)"]

    [alert] = rows(
        staff["nurse"].get(f"/api/v1/alerts/?order_id={order['id']}&alert_type=CRITICAL_VALUE", **headers)
    )
    r = staff["nurse"].post(
        f"/api/v1/alerts/{alert['id']}/acknowledge/", {"action_taken": "Read back, MD at bedside"}, format="json", **headers
    )
    assert r.status_code == 200, r.data
    assert r.data["escalation"]["status"] == "ACKNOWLEDGED"

    review = staff["clinician"].post(f"/api/v1/results/reviews/{order['id']}/review/", format="json", **headers)
    assert review.data["acknowledgment_required"] is True
    glu = next(s for s in review.data["results_summary"] if s["test_code"] == "GLU")

    r = staff["clinician"].post(
        f"/api/v1/results/reviews/{order['id']}/interpret/",
        {"interpretations": [{"result_id": glu["result_id"], "interpretation": "Severe hyperglycemia"}]},
        format="json",
        **headers,
    )
    assert r.status_code == 200, r.data

    r = staff["clinician"].post(
        f"/api/v1/results/reviews/{order['id']}/follow-up/",
        {"plans": [{"action": "Start insulin infusion protocol", "test_codes": ["GLU", "K"]}]},
        format="json",
        **headers,
    )
    assert r.status_code == 200, r.data
    assert staff["clinician"].get(f"/api/v1/orders/{order['id']}/", **headers).data["status"] == "RESULTED"


def test_cancelled_order_cannot_be_collected(staff, tenant_id, facility_id, patient_id):
    headers = scoped(tenant_id, facility_id)
    order = _order(staff, headers, patient_id, codes=("HGB",), urgency="ROUTINE")

    r = staff["clinician"].post(
        f"/api/v1/orders/{order['id']}/cancel/", {"reason": "Entered on wrong patient"}, format="json", **headers
    )
    assert r.status_code == 200, r.data

    r = staff["nurse"].post(
        "/api/v1/specimens/collections/",
        {"order_id": order["id"], "patient": {"patient_id": order["patient_id"]}},
        format="json",
        **headers,
    )
    assert r.status_code == 409, r.data
    assert r.data["error"]["code"] == "invalid_transition"


def test_other_facility_sees_nothing(staff, tenant_id, facility_id, patient_id):
    order = _order(staff, scoped(tenant_id, facility_id), patient_id, codes=("PLT",), urgency="ROUTINE")
    elsewhere = scoped(tenant_id, uuid.uuid4())

    assert staff["clinician"].get(f"/api/v1/orders/{order['id']}/", **elsewhere).status_code == 404
    assert rows(staff["nurse"].get(f"/api/v1/specimens/?order_id={order['id']}", **elsewhere)) == []
