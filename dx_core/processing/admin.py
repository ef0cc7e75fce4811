# dx_core/processing/admin.py
from __future__ import annotations

from django.contrib import admin

from dx_core.processing.models import Instrument, ProcessingRecord, ProcessingStep, QualityControlResult


@admin.register(Instrument)
class InstrumentAdmin(admin.ModelAdmin):
    list_display = ("id", "code", "name", "analyzer_type", "calibrated_at", "calibration_interval_days", "is_active")
    list_filter = ("tenant_id", "facility_id", "is_active")
    search_fields = ("code", "name")
    ordering = ("code",)


class ProcessingStepInline(admin.TabularInline):
    model = ProcessingStep
    extra = 0
    fields = ("sequence", "name", "status", "started_at", "ended_at", "detail")
    readonly_fields = fields


class QualityControlInline(admin.TabularInline):
    model = QualityControlResult
    extra = 0
    fields = ("sequence", "control_level", "expected_value", "actual_value", "deviation_percent", "within_range", "action", "performed_by")
    readonly_fields = fields


@admin.register(ProcessingRecord)
class ProcessingRecordAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "test_code",
        "specimen_id",
        "instrument_code",
        "calibration_status",
        "status",
        "confidence",
        "qc_status",
        "started_at",
    )
    list_filter = ("tenant_id", "facility_id", "status", "calibration_status", "qc_status")
    search_fields = ("id", "specimen_id", "order_id", "test_code")
    inlines = [ProcessingStepInline, QualityControlInline]
    ordering = ("-started_at",)
