# dx_core/specimens/admin.py
from __future__ import annotations

from django.contrib import admin

from dx_core.specimens.models import Specimen, SpecimenCollection


class SpecimenInline(admin.TabularInline):
    model = Specimen
    extra = 0
    fields = ("label", "test_codes", "status", "rejection_reason")
    readonly_fields = fields


@admin.register(SpecimenCollection)
class SpecimenCollectionAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant_id",
        "facility_id",
        "order_id",
        "collected_by",
        "collected_at",
        "identity_verified",
        "transport_arranged",
    )
    list_filter = ("tenant_id", "facility_id", "transport_arranged")
    search_fields = ("id", "order_id", "patient_id")
    inlines = [SpecimenInline]
    ordering = ("-collected_at",)


@admin.register(Specimen)
class SpecimenAdmin(admin.ModelAdmin):
    list_display = ("id", "label", "order_id", "specimen_type", "status", "received_at", "created_at")
    list_filter = ("tenant_id", "facility_id", "status", "specimen_type")
    search_fields = ("id", "label", "order_id")
    ordering = ("-created_at",)
