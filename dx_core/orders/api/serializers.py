# dx_core/orders/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from dx_core.catalog.types import NotificationChannel
from dx_core.orders.models import DiagnosticOrder, OrderStatus, OrderTest, OrderUrgency


class NotificationProtocolSerializer(serializers.Serializer):
    primary_contact = serializers.CharField(max_length=150)
    backup_contact = serializers.CharField(max_length=150, required=False, allow_blank=True, default="")
    channel = serializers.ChoiceField(choices=NotificationChannel.choices, default=NotificationChannel.PHONE)
    max_attempts = serializers.IntegerField(min_value=1, max_value=10, default=3)
    escalation_contact = serializers.CharField(max_length=150, required=False, allow_blank=True, default="")
    escalation_procedure = serializers.CharField(required=False, allow_blank=True, default="")


class OrderCreateSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    test_codes = serializers.ListField(child=serializers.CharField(max_length=32), allow_empty=False)
    clinical_indication = serializers.CharField(allow_blank=True)
    urgency = serializers.ChoiceField(choices=OrderUrgency.choices, default=OrderUrgency.ROUTINE)
    special_instructions = serializers.CharField(required=False, allow_blank=True, default="")
    scheduled_for = serializers.DateTimeField(required=False, allow_null=True, default=None)


class OrderIndicationSerializer(serializers.Serializer):
    clinical_indication = serializers.CharField(allow_blank=True)
    special_instructions = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class OrderUrgencySerializer(serializers.Serializer):
    urgency = serializers.ChoiceField(choices=OrderUrgency.choices)
    scheduled_for = serializers.DateTimeField(required=False, allow_null=True, default=None)
    notification_protocol = NotificationProtocolSerializer(required=False, allow_null=True, default=None)


class OrderTestsSerializer(serializers.Serializer):
    test_codes = serializers.ListField(child=serializers.CharField(max_length=32), allow_empty=False)


class OrderCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=False)


class OrderListQuerySerializer(serializers.Serializer):
    patient_id = serializers.UUIDField(required=False)
    clinician_id = serializers.CharField(required=False)
    status = serializers.ChoiceField(choices=OrderStatus.choices, required=False)


class OrderTestSerializer(serializers.ModelSerializer):
    name = serializers.SerializerMethodField()
    critical_thresholds = serializers.SerializerMethodField()

    class Meta:
        model = OrderTest
        fields = ["id", "position", "test_code", "name", "critical_thresholds"]

    def get_name(self, obj) -> str:
        return (obj.snapshot or {}).get("name", "")

    def get_critical_thresholds(self, obj) -> list:
        return (obj.snapshot or {}).get("critical_thresholds", [])


class DiagnosticOrderSerializer(serializers.ModelSerializer):
    tests = OrderTestSerializer(many=True, read_only=True)

    class Meta:
        model = DiagnosticOrder
        fields = [
            "id",
            "patient_id",
            "ordering_clinician_id",
            "category",
            "clinical_indication",
            "special_instructions",
            "urgency",
            "scheduled_for",
            "preparation",
            "status",
            "cancellation_reason",
            "cancelled_at",
            "authorization_required",
            "billing_status",
            "charges",
            "charge_total",
            "tests",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
