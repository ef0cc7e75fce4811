# dx_core/tests/helpers.py
from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

from django.utils import timezone

from dx_core.alerts.models import AttemptOutcome
from dx_core.catalog.defaults import DEFAULT_TESTS
from dx_core.catalog.source import StaticCatalog
from dx_core.catalog.types import ReferenceRange
from dx_core.integrations.patients import PatientContext
from dx_core.processing.instruments import ReportedValueAdapter
from dx_core.processing.services import ProcessingService
from dx_core.specimens.models import Specimen
from dx_core.specimens.services import SpecimenService


def scoped(tenant_id, facility_id, **extra):
    headers = {
        "HTTP_X_TENANT_ID": str(tenant_id),
        "HTTP_X_FACILITY_ID": str(facility_id),
    }
    headers.update(extra)
    return headers


def rows(response):
    data = response.data
    if isinstance(data, dict) and "results" in data:
        return data["results"]
    return data


def narrow_glucose_catalog() -> StaticCatalog:
    entries = []
    for test in DEFAULT_TESTS:
        if test.code == "GLU":
            test = replace(test, reference_range=ReferenceRange(unit="mg/dL", lower=10, upper=20))
        entries.append(test)
    return StaticCatalog(entries)


class FixedClock:
    def __init__(self, now=None):
        self.now = now or timezone.now().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingGateway:
    """
    Notification gateway that records every send. `outcomes` is consumed in
    order; an Exception instance in it is raised instead of returned.
    """

    def __init__(self, outcomes=()):
        self.outcomes = list(outcomes)
        self.sent = []

    def send(self, ctx, contact, channel, message):
        self.sent.append({"contact": contact, "channel": channel, "message": message})
        outcome = self.outcomes.pop(0) if self.outcomes else AttemptOutcome.DELIVERED
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def contacts(self):
        return [s["contact"] for s in self.sent]


def collect_and_ship(ctx, order, *, observations=None, clock=None) -> list[Specimen]:
    """
    Collects every test on `order` as required and sends the specimens to the lab.
    """
    service = SpecimenService(clock=clock)
    collection = service.collect_specimens(
        ctx,
        order_id=order.id,
        patient=PatientContext(patient_id=order.patient_id),
        observations=observations,
    )
    service.arrange_transport(ctx, collection_id=collection.id)
    return list(collection.specimens.order_by("label"))


def specimen_for(specimens, code) -> Specimen:
    return next(s for s in specimens if code in s.test_codes)


def report(ctx, specimen, value, *, gateway=None, clock=None, policy=None, **adapter_kwargs):
    from dx_core.alerts.escalation import EscalationService

    service = ProcessingService(
        escalation=EscalationService(gateway=gateway or RecordingGateway(), clock=clock),
        policy=policy,
        clock=clock,
    )
    return service.process(ctx, specimen_id=specimen.id, adapter=ReportedValueAdapter(value, **adapter_kwargs))
