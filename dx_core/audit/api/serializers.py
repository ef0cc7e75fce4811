# dx_core/audit/api/serializers.py
from rest_framework import serializers

from dx_core.audit.models import AuditEvent


class AuditQuerySerializer(serializers.Serializer):
    entity_type = serializers.CharField(required=False, default="")
    entity_id = serializers.UUIDField(required=False)
    event_code = serializers.CharField(required=False, default="")
    actor_id = serializers.CharField(required=False, default="")


class AuditEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditEvent
        fields = ["id", "event_code", "entity_type", "entity_id", "actor_id", "occurred_at", "metadata"]
        read_only_fields = fields
