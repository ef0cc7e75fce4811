# dx_core/orders/selectors.py
from __future__ import annotations

from django.db.models import QuerySet

from dx_core.common.errors import RecordNotFound
from dx_core.orders.models import DiagnosticOrder


class OrderSelector:
    @staticmethod
    def get_order(*, tenant_id, facility_id, order_id) -> DiagnosticOrder:
        try:
            return DiagnosticOrder.objects.prefetch_related("tests").get(
                id=order_id, tenant_id=tenant_id, facility_id=facility_id
            )
        except (DiagnosticOrder.DoesNotExist, ValueError):
            raise RecordNotFound("Order not found in this scope.")

    @staticmethod
    def list_orders(
        *,
        tenant_id,
        facility_id,
        patient_id=None,
        clinician_id=None,
        status=None,
    ) -> QuerySet[DiagnosticOrder]:
        qs = (
            DiagnosticOrder.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
            .prefetch_related("tests")
            .order_by("-created_at")
        )
        if patient_id:
            qs = qs.filter(patient_id=patient_id)
        if clinician_id:
            qs = qs.filter(ordering_clinician_id=clinician_id)
        if status:
            qs = qs.filter(status=status)
        return qs
