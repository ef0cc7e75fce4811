# dx_core/processing/selectors.py
from __future__ import annotations

from django.db.models import QuerySet

from dx_core.common.errors import RecordNotFound
from dx_core.processing.models import Instrument, ProcessingRecord


def get_record(*, tenant_id, facility_id, record_id) -> ProcessingRecord:
    try:
        return ProcessingRecord.objects.prefetch_related("steps", "quality_controls").get(
            id=record_id, tenant_id=tenant_id, facility_id=facility_id
        )
    except (ProcessingRecord.DoesNotExist, ValueError):
        raise RecordNotFound("Processing record not found in this scope.")


def list_records(*, tenant_id, facility_id, specimen_id=None, order_id=None) -> QuerySet[ProcessingRecord]:
    qs = ProcessingRecord.objects.filter(tenant_id=tenant_id, facility_id=facility_id).prefetch_related(
        "steps", "quality_controls"
    )
    if specimen_id:
        qs = qs.filter(specimen_id=specimen_id)
    if order_id:
        qs = qs.filter(order_id=order_id)
    return qs.order_by("started_at")


def get_instrument(*, tenant_id, facility_id, instrument_id) -> Instrument:
    try:
        return Instrument.objects.get(id=instrument_id, tenant_id=tenant_id, facility_id=facility_id, is_active=True)
    except (Instrument.DoesNotExist, ValueError):
        raise RecordNotFound("Instrument not found in this scope.")


def list_instruments(*, tenant_id, facility_id) -> QuerySet[Instrument]:
    return Instrument.objects.filter(tenant_id=tenant_id, facility_id=facility_id, is_active=True).order_by("code")
