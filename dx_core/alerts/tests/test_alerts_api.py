# dx_core/alerts/tests/test_alerts_api.py
import pytest

from dx_core.alerts.models import AlertType, DiagnosticAlert, Notification
from dx_core.alerts.services import NotificationService
from dx_core.audit.models import AuditEvent
from dx_core.common.errors import RecordNotFound
from dx_core.orders.services import OrderService
from dx_core.tests.helpers import RecordingGateway, collect_and_ship, report, rows, scoped, specimen_for

pytestmark = pytest.mark.django_db


@pytest.fixture
def critical_alert(clinician_ctx, nurse_ctx, tech_ctx, patient_id, narrow_glucose_catalog):
    order = OrderService(catalog=narrow_glucose_catalog).create_order(
        clinician_ctx,
        patient_id=patient_id,
        test_codes=["GLU", "K"],
        clinical_indication="Seizure",
    )
    specimens = collect_and_ship(nurse_ctx, order)
    report(tech_ctx, specimen_for(specimens, "GLU"), "4", gateway=RecordingGateway())
    return DiagnosticAlert.objects.get(order_id=order.id, alert_type=AlertType.CRITICAL_VALUE)


def test_list_and_retrieve_alerts(client_for, nurse, critical_alert, tenant_id, facility_id):
    nurse_api = client_for(nurse)
    headers = scoped(tenant_id, facility_id)

    r = nurse_api.get(f"/api/v1/alerts/?order_id={critical_alert.order_id}&open_only=true", **headers)
    assert r.status_code == 200, r.data
    [alert] = rows(r)
    assert alert["alert_type"] == "CRITICAL_VALUE"
    assert alert["value"] == "4"

    r = nurse_api.get(f"/api/v1/alerts/{critical_alert.id}/", **headers)
    assert r.status_code == 200, r.data
    assert r.data["escalation"]["status"] == "NOTIFYING"
    assert [a["contact"] for a in r.data["escalation"]["attempts"]] == ["dr.grey"]


def test_nurse_acknowledges_critical_alert(client_for, nurse, critical_alert, tenant_id, facility_id):
    headers = scoped(tenant_id, facility_id, HTTP_IDEMPOTENCY_KEY="ack-1")
    body = {"action_taken": "Read back to Dr. Grey; glucose gel given"}

    r1 = client_for(nurse).post(f"/api/v1/alerts/{critical_alert.id}/acknowledge/", body, format="json", **headers)
    r2 = client_for(nurse).post(f"/api/v1/alerts/{critical_alert.id}/acknowledge/", body, format="json", **headers)

    assert r1.status_code == 200, r1.data
    assert r2.status_code == 200, r2.data
    assert (r2.data["id"], r2.data["acknowledged_at"]) == (r1.data["id"], r1.data["acknowledged_at"])
    assert r1.data["acknowledged"] is True
    assert r1.data["acknowledged_by"] == "rn.bailey"
    assert r1.data["escalation"]["status"] == "ACKNOWLEDGED"

    open_alerts = client_for(nurse).get(
        f"/api/v1/alerts/?order_id={critical_alert.order_id}&open_only=true", **scoped(tenant_id, facility_id)
    )
    assert rows(open_alerts) == []


def test_technician_cannot_acknowledge(client_for, technician, critical_alert, tenant_id, facility_id):
    r = client_for(technician).post(
        f"/api/v1/alerts/{critical_alert.id}/acknowledge/", {}, format="json", **scoped(tenant_id, facility_id)
    )
    assert r.status_code == 403, r.data


def test_resolve_requires_action(client_for, technician, critical_alert, tenant_id, facility_id):
    tech_api = client_for(technician)
    headers = scoped(tenant_id, facility_id)

    r = tech_api.post(f"/api/v1/alerts/{critical_alert.id}/resolve/", {"action": ""}, format="json", **headers)
    assert r.status_code == 400, r.data
    assert r.data["error"]["code"] == "validation_error"

    r = tech_api.post(
        f"/api/v1/alerts/{critical_alert.id}/resolve/", {"action": "Redraw confirmed value"}, format="json", **headers
    )
    assert r.status_code == 200, r.data
    assert r.data["resolved"] is True
    assert r.data["action_taken"] == "Redraw confirmed value"
    assert r.data["escalation"]["status"] == "ACKNOWLEDGED"


def test_notification_inbox_is_per_user(client_for, clinician, nurse, ctx_for, tenant_id, facility_id):
    NotificationService.notify_in_app(ctx_for(nurse), recipients=["dr.grey"], title="CRITICAL K = 7.1")
    headers = scoped(tenant_id, facility_id)

    inbox = client_for(clinician).get("/api/v1/notifications/?unread_only=true", **headers)
    [note] = rows(inbox)
    assert note["title"] == "CRITICAL K = 7.1"
    assert rows(client_for(nurse).get("/api/v1/notifications/", **headers)) == []

    r = client_for(nurse).post(f"/api/v1/notifications/{note['id']}/read/", format="json", **headers)
    assert r.status_code == 404, r.data

    r = client_for(clinician).post(f"/api/v1/notifications/{note['id']}/read/", format="json", **headers)
    assert r.status_code == 200, r.data
    assert r.data["is_read"] is True
    assert Notification.objects.get(id=note["id"]).read_at is not None
    assert rows(client_for(clinician).get("/api/v1/notifications/?unread_only=true", **headers)) == []


def test_marking_notification_read_is_audited_once(client_for, clinician, nurse, ctx_for, tenant_id, facility_id):
    [note] = NotificationService.notify_in_app(ctx_for(nurse), recipients=["dr.grey"], title="CRITICAL HGB = 5.9")
    headers = scoped(tenant_id, facility_id)

    r1 = client_for(clinician).post(f"/api/v1/notifications/{note.id}/read/", format="json", **headers)
    r2 = client_for(clinician).post(f"/api/v1/notifications/{note.id}/read/", format="json", **headers)

    assert (r1.status_code, r2.status_code) == (200, 200)
    assert r2.data["read_at"] == r1.data["read_at"]
    event = AuditEvent.objects.get(entity_id=note.id, event_code="notification.read")
    assert event.actor_id == "dr.grey"


def test_marking_unknown_notification_read_is_not_found(clinician_ctx):
    with pytest.raises(RecordNotFound):
        NotificationService.mark_read(clinician_ctx, notification_id="not-a-uuid")
