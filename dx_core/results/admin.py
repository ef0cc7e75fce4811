# dx_core/results/admin.py
from __future__ import annotations

from django.contrib import admin

from dx_core.results.models import DiagnosticResult, ResultsReview


@admin.register(DiagnosticResult)
class DiagnosticResultAdmin(admin.ModelAdmin):
    list_display = ("id", "test_code", "value", "unit", "flag", "status", "is_critical", "reported_at")
    list_filter = ("tenant_id", "facility_id", "flag", "status", "is_critical")
    search_fields = ("id", "order_id", "patient_id", "test_code")
    ordering = ("-reported_at",)


@admin.register(ResultsReview)
class ResultsReviewAdmin(admin.ModelAdmin):
    list_display = ("id", "order_id", "clinician_id", "status", "acknowledgment_required", "created_at")
    list_filter = ("tenant_id", "facility_id", "status", "acknowledgment_required")
    search_fields = ("order_id", "patient_id", "clinician_id")
    ordering = ("-created_at",)
