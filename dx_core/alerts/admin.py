# dx_core/alerts/admin.py
from __future__ import annotations

from django.contrib import admin

from dx_core.alerts.models import CriticalValueEscalation, DiagnosticAlert, Notification, NotificationAttempt


@admin.register(DiagnosticAlert)
class DiagnosticAlertAdmin(admin.ModelAdmin):
    list_display = ("id", "alert_type", "severity", "test_code", "value", "acknowledged", "resolved", "detected_at")
    list_filter = ("tenant_id", "facility_id", "alert_type", "severity", "acknowledged", "resolved")
    search_fields = ("id", "order_id", "patient_id", "test_code")
    ordering = ("-detected_at",)


class NotificationAttemptInline(admin.TabularInline):
    model = NotificationAttempt
    extra = 0
    fields = ("sequence", "tier", "contact", "channel", "outcome", "attempted_at", "detail")
    readonly_fields = fields


@admin.register(CriticalValueEscalation)
class CriticalValueEscalationAdmin(admin.ModelAdmin):
    list_display = ("id", "alert", "status", "attempts_made", "next_attempt_at", "acknowledged_by", "exhausted_at")
    list_filter = ("tenant_id", "facility_id", "status")
    search_fields = ("id", "order_id")
    inlines = [NotificationAttemptInline]
    ordering = ("-created_at",)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "recipient", "channel", "title", "is_read", "created_at")
    list_filter = ("tenant_id", "facility_id", "channel", "is_read")
    search_fields = ("recipient", "title")
    ordering = ("-created_at",)
