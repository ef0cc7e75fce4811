# dx_core/conftest.py
import uuid

import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APIClient

from dx_core.common.context import ActorContext
from dx_core.common.permissions import ROLE_CLINICIAN, ROLE_NURSE, ROLE_TECHNICIAN
from dx_core.tests.helpers import RecordingGateway, narrow_glucose_catalog as build_narrow_glucose_catalog


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def facility_id():
    return uuid.uuid4()


@pytest.fixture
def patient_id():
    return uuid.uuid4()


@pytest.fixture
def make_user(db):
    def _make(username, *roles):
        User = get_user_model()
        user = User.objects.create_user(username=username, password="pass", is_active=True)
        for role in roles:
            group, _ = Group.objects.get_or_create(name=role)
            user.groups.add(group)
        return user

    return _make


@pytest.fixture
def clinician(make_user):
    return make_user("dr.grey", ROLE_CLINICIAN)


@pytest.fixture
def other_clinician(make_user):
    return make_user("dr.shepherd", ROLE_CLINICIAN)


@pytest.fixture
def nurse(make_user):
    return make_user("rn.bailey", ROLE_NURSE)


@pytest.fixture
def technician(make_user):
    return make_user("mlt.karev", ROLE_TECHNICIAN)


@pytest.fixture
def ctx_for(tenant_id, facility_id):
    def _ctx(user_or_name):
        name = user_or_name if isinstance(user_or_name, str) else user_or_name.get_username()
        return ActorContext(tenant_id=tenant_id, facility_id=facility_id, actor_id=name)

    return _ctx


@pytest.fixture
def clinician_ctx(ctx_for, clinician):
    return ctx_for(clinician)


@pytest.fixture
def nurse_ctx(ctx_for, nurse):
    return ctx_for(nurse)


@pytest.fixture
def tech_ctx(ctx_for, technician):
    return ctx_for(technician)


@pytest.fixture
def client_for():
    def _client(user):
        c = APIClient()
        c.force_authenticate(user=user)
        return c

    return _client


@pytest.fixture
def api_client(client_for, clinician):
    return client_for(clinician)


@pytest.fixture
def narrow_glucose_catalog():
    """
    Default catalog with Glucose on a [10, 20] mg/dL range.
    """
    return build_narrow_glucose_catalog()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def dx_settings(settings):
    """
    Points DX_CATALOG at the narrow-glucose catalog for API tests.
    """
    settings.DX_CATALOG = "dx_core.tests.helpers.narrow_glucose_catalog"
    settings.COMMON_IDEMPOTENCY_USE_DB = True
    return settings
