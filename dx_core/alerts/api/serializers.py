# dx_core/alerts/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from dx_core.alerts.models import AlertType, CriticalValueEscalation, DiagnosticAlert, Notification, NotificationAttempt


class AcknowledgeAlertSerializer(serializers.Serializer):
    action_taken = serializers.CharField(required=False, allow_blank=True, default="")


class ResolveAlertSerializer(serializers.Serializer):
    action = serializers.CharField()


class AlertListQuerySerializer(serializers.Serializer):
    order_id = serializers.UUIDField(required=False)
    patient_id = serializers.UUIDField(required=False)
    alert_type = serializers.ChoiceField(choices=AlertType.choices, required=False)
    open_only = serializers.BooleanField(required=False, default=False)


class NotificationListQuerySerializer(serializers.Serializer):
    unread_only = serializers.BooleanField(required=False, default=False)


class NotificationAttemptSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationAttempt
        fields = ["sequence", "tier", "contact", "channel", "outcome", "attempted_at", "detail"]
        read_only_fields = fields


class EscalationSerializer(serializers.ModelSerializer):
    attempts = NotificationAttemptSerializer(many=True, read_only=True)

    class Meta:
        model = CriticalValueEscalation
        fields = [
            "id",
            "status",
            "protocol",
            "plan",
            "attempts_made",
            "next_attempt_at",
            "acknowledged_by",
            "acknowledged_at",
            "exhausted_at",
            "attempts",
        ]
        read_only_fields = fields


class DiagnosticAlertSerializer(serializers.ModelSerializer):
    escalation = serializers.SerializerMethodField()

    class Meta:
        model = DiagnosticAlert
        fields = [
            "id",
            "alert_type",
            "severity",
            "message",
            "order_id",
            "patient_id",
            "result_id",
            "test_code",
            "value",
            "detected_at",
            "generated_by",
            "acknowledged",
            "acknowledged_by",
            "acknowledged_at",
            "action_taken",
            "resolved",
            "resolved_by",
            "resolved_at",
            "meta",
            "escalation",
        ]
        read_only_fields = fields

    def get_escalation(self, obj):
        try:
            escalation = obj.escalation
        except CriticalValueEscalation.DoesNotExist:
            return None
        return EscalationSerializer(escalation).data


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id", "recipient", "channel", "title", "body", "is_read", "read_at", "meta", "created_at"]
        read_only_fields = fields
