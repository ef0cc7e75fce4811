# dx_core/common/tests/test_common_api.py
import uuid
from decimal import Decimal
from io import StringIO

import pytest
from django.contrib.auth.models import Group
from django.core.management import call_command
from django.utils import timezone
from rest_framework.test import APIClient

from dx_core.common.idempotency import Replay
from dx_core.common.permissions import ALL_ROLES
from dx_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def test_me_lists_roles(client_for, make_user):
    user = make_user("charge.rn", "NURSE", "TECHNICIAN")
    r = client_for(user).get("/api/v1/me/")
    assert r.status_code == 200, r.data
    assert r.data["username"] == "charge.rn"
    assert r.data["roles"] == ["NURSE", "TECHNICIAN"]


def test_user_without_group_is_readonly(client_for, make_user, tenant_id, facility_id):
    viewer = client_for(make_user("auditor"))
    assert viewer.get("/api/v1/me/").data["roles"] == ["READONLY"]

    r = viewer.get("/api/v1/alerts/", **scoped(tenant_id, facility_id))
    assert r.status_code == 200, r.data


def test_unauthenticated_request_uses_error_envelope(tenant_id, facility_id):
    r = APIClient().get("/api/v1/orders/", **scoped(tenant_id, facility_id))
    assert r.status_code == 401
    assert r.data["error"]["code"] == "not_authenticated"
    assert r.data["error"]["request_id"]


def test_invalid_scope_header(api_client, facility_id):
    r = api_client.get("/api/v1/alerts/", HTTP_X_TENANT_ID="not-a-uuid", HTTP_X_FACILITY_ID=str(facility_id))
    assert r.status_code == 400, r.data
    assert r.data["error"]["code"] == "validation_error"
    assert "UUID" in r.data["error"]["message"]


def test_unknown_record_is_not_found(api_client, tenant_id, facility_id):
    r = api_client.get(f"/api/v1/orders/{uuid.uuid4()}/", **scoped(tenant_id, facility_id))
    assert r.status_code == 404, r.data
    assert r.data["error"]["code"] == "not_found"


def test_in_memory_idempotency_store(settings, api_client, tenant_id, facility_id, patient_id):
    settings.COMMON_IDEMPOTENCY_USE_DB = False
    headers = scoped(tenant_id, facility_id, HTTP_IDEMPOTENCY_KEY=f"mem-{uuid.uuid4()}")
    payload = {"patient_id": str(patient_id), "test_codes": ["HGB"], "clinical_indication": "Pallor"}

    r1 = api_client.post("/api/v1/orders/", payload, format="json", **headers)
    r2 = api_client.post("/api/v1/orders/", payload, format="json", **headers)

    assert r1.status_code == 201, r1.data
    assert r1.data["id"] == r2.data["id"]
    assert r2.status_code == 201
    assert r2["Idempotent-Replay"] == "true"


def test_ensure_roles_is_idempotent():
    out = StringIO()
    call_command("ensure_roles", stdout=out)
    call_command("ensure_roles", stdout=out)

    assert set(Group.objects.values_list("name", flat=True)) >= set(ALL_ROLES)
    assert "Newly created: 0" in out.getvalue()


def test_replay_bodies_are_stored_as_json(tenant_id):
    now = timezone.now()
    replay = Replay.of(201, {"id": tenant_id, "price": Decimal("12.50"), "at": now, "items": [{"ref": tenant_id}]})

    assert replay.status_code == 201
    assert replay.body["id"] == str(tenant_id)
    assert replay.body["items"][0]["ref"] == str(tenant_id)
    assert replay.body["price"] == 12.5
    assert isinstance(replay.body["at"], str)
