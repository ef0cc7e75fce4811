# dx_core/specimens/selectors.py
from __future__ import annotations

from django.db.models import QuerySet

from dx_core.common.errors import RecordNotFound
from dx_core.specimens.models import Specimen, SpecimenCollection


def get_collection(*, tenant_id, facility_id, collection_id) -> SpecimenCollection:
    try:
        return SpecimenCollection.objects.prefetch_related("specimens").get(
            id=collection_id, tenant_id=tenant_id, facility_id=facility_id
        )
    except (SpecimenCollection.DoesNotExist, ValueError):
        raise RecordNotFound("Specimen collection not found in this scope.")


def get_specimen(*, tenant_id, facility_id, specimen_id) -> Specimen:
    try:
        return Specimen.objects.get(id=specimen_id, tenant_id=tenant_id, facility_id=facility_id)
    except (Specimen.DoesNotExist, ValueError):
        raise RecordNotFound("Specimen not found in this scope.")


def list_specimens(*, tenant_id, facility_id, order_id=None, status=None) -> QuerySet[Specimen]:
    qs = Specimen.objects.filter(tenant_id=tenant_id, facility_id=facility_id).order_by("created_at")
    if order_id:
        qs = qs.filter(order_id=order_id)
    if status:
        qs = qs.filter(status=status)
    return qs
