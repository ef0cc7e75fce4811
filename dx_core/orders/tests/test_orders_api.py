# dx_core/orders/tests/test_orders_api.py
import uuid

import pytest

from dx_core.tests.helpers import rows, scoped

pytestmark = pytest.mark.django_db


def _payload(patient_id, codes=("GLU", "K"), **extra):
    return {
        "patient_id": str(patient_id),
        "test_codes": list(codes),
        "clinical_indication": "Lethargy, rule out electrolyte imbalance",
        "urgency": "STAT",
        **extra,
    }


def test_create_order(api_client, tenant_id, facility_id, patient_id):
    r = api_client.post("/api/v1/orders/", _payload(patient_id), format="json", **scoped(tenant_id, facility_id))
    assert r.status_code == 201, r.data
    assert r.data["status"] == "PENDING"
    assert r.data["ordering_clinician_id"] == "dr.grey"
    assert [t["test_code"] for t in r.data["tests"]] == ["GLU", "K"]


def test_create_order_requires_scope_headers(api_client, patient_id):
    r = api_client.post("/api/v1/orders/", _payload(patient_id), format="json")
    assert r.status_code == 400, r.data
    assert r.data["error"]["code"] == "validation_error"


def test_create_order_unknown_code_uses_error_envelope(api_client, tenant_id, facility_id, patient_id):
    r = api_client.post(
        "/api/v1/orders/", _payload(patient_id, codes=("GLU", "NOPE")), format="json", **scoped(tenant_id, facility_id)
    )
    assert r.status_code == 400, r.data
    assert r.data["error"]["code"] == "invalid_test_code"
    assert r.data["error"]["details"] == {"code": "NOPE"}
    assert r.data["error"]["request_id"]


def test_create_order_is_idempotent(api_client, tenant_id, facility_id, patient_id):
    headers = scoped(tenant_id, facility_id, HTTP_IDEMPOTENCY_KEY="order-001")

    r1 = api_client.post("/api/v1/orders/", _payload(patient_id), format="json", **headers)
    r2 = api_client.post("/api/v1/orders/", _payload(patient_id), format="json", **headers)

    assert r1.status_code == 201, r1.data
    assert r2.status_code == 201, r2.data
    assert r1.data["id"] == r2.data["id"]

    listed = api_client.get(f"/api/v1/orders/?patient_id={patient_id}", **scoped(tenant_id, facility_id))
    assert listed.status_code == 200, listed.data
    assert len(rows(listed)) == 1


def test_nurse_cannot_order(client_for, nurse, tenant_id, facility_id, patient_id):
    r = client_for(nurse).post("/api/v1/orders/", _payload(patient_id), format="json", **scoped(tenant_id, facility_id))
    assert r.status_code == 403, r.data
    assert r.data["error"]["code"] == "permission_denied"


def test_other_clinician_cannot_change_urgency(
    api_client, client_for, other_clinician, tenant_id, facility_id, patient_id
):
    created = api_client.post("/api/v1/orders/", _payload(patient_id), format="json", **scoped(tenant_id, facility_id))
    order_id = created.data["id"]

    r = client_for(other_clinician).post(
        f"/api/v1/orders/{order_id}/urgency/", {"urgency": "ROUTINE"}, format="json", **scoped(tenant_id, facility_id)
    )
    assert r.status_code == 403, r.data
    assert r.data["error"]["code"] == "unauthorized"

    again = api_client.get(f"/api/v1/orders/{order_id}/", **scoped(tenant_id, facility_id))
    assert again.data["urgency"] == "STAT"


def test_urgency_with_protocol_updates_thresholds(api_client, tenant_id, facility_id, patient_id):
    created = api_client.post("/api/v1/orders/", _payload(patient_id), format="json", **scoped(tenant_id, facility_id))
    order_id = created.data["id"]

    r = api_client.post(
        f"/api/v1/orders/{order_id}/urgency/",
        {
            "urgency": "URGENT",
            "notification_protocol": {
                "primary_contact": "dr.grey",
                "backup_contact": "hospitalist",
                "channel": "SMS",
                "max_attempts": 2,
            },
        },
        format="json",
        **scoped(tenant_id, facility_id),
    )
    assert r.status_code == 200, r.data
    assert r.data["urgency"] == "URGENT"
    for test in r.data["tests"]:
        for threshold in test["critical_thresholds"]:
            assert threshold["protocol"]["backup_contact"] == "hospitalist"
            assert threshold["protocol"]["channel"] == "SMS"


def test_schedule_then_cancel(api_client, client_for, nurse, tenant_id, facility_id, patient_id):
    created = api_client.post(
        "/api/v1/orders/", _payload(patient_id, urgency="ROUTINE"), format="json", **scoped(tenant_id, facility_id)
    )
    order_id = created.data["id"]

    s = client_for(nurse).post(f"/api/v1/orders/{order_id}/schedule/", {}, format="json", **scoped(tenant_id, facility_id))
    assert s.status_code == 200, s.data
    assert s.data["status"] == "SCHEDULED"

    c = api_client.post(
        f"/api/v1/orders/{order_id}/cancel/", {"reason": "Patient discharged"}, format="json", **scoped(tenant_id, facility_id)
    )
    assert c.status_code == 200, c.data
    assert c.data["status"] == "CANCELLED"

    locked = api_client.post(
        f"/api/v1/orders/{order_id}/tests/", {"test_codes": ["HGB"]}, format="json", **scoped(tenant_id, facility_id)
    )
    assert locked.status_code == 409, locked.data
    assert locked.data["error"]["code"] == "order_locked"


def test_orders_are_scoped(api_client, tenant_id, facility_id, patient_id):
    created = api_client.post("/api/v1/orders/", _payload(patient_id), format="json", **scoped(tenant_id, facility_id))
    r = api_client.get(f"/api/v1/orders/{created.data['id']}/", **scoped(tenant_id, uuid.uuid4()))
    assert r.status_code == 404, r.data
    assert r.data["error"]["code"] == "not_found"
