# dx_core/orders/admin.py
from __future__ import annotations

from django.contrib import admin

from dx_core.orders.models import DiagnosticOrder, OrderTest


class OrderTestInline(admin.TabularInline):
    model = OrderTest
    extra = 0
    fields = ("position", "test_code")
    readonly_fields = ("position", "test_code")


@admin.register(DiagnosticOrder)
class DiagnosticOrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant_id",
        "facility_id",
        "patient_id",
        "ordering_clinician_id",
        "category",
        "urgency",
        "status",
        "scheduled_for",
        "created_at",
    )
    list_filter = ("tenant_id", "facility_id", "urgency", "status", "category")
    search_fields = ("id", "patient_id", "ordering_clinician_id")
    inlines = [OrderTestInline]
    ordering = ("-created_at",)
