# dx_core/results/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from dx_core.results.models import DiagnosticResult, ResultsReview


class InterpretationSerializer(serializers.Serializer):
    result_id = serializers.UUIDField()
    interpretation = serializers.CharField()
    recommended_follow_up = serializers.CharField(required=False, allow_blank=True, default="")


class InterpretAbnormalSerializer(serializers.Serializer):
    interpretations = InterpretationSerializer(many=True, allow_empty=False)
    clinical_correlation = serializers.CharField(required=False, allow_blank=True, default="")


class AcknowledgeNormalSerializer(serializers.Serializer):
    comment = serializers.CharField(required=False, allow_blank=True, default="")


class FollowUpPlanSerializer(serializers.Serializer):
    action = serializers.CharField()
    test_codes = serializers.ListField(child=serializers.CharField(max_length=32), required=False, default=list)
    due_by = serializers.DateTimeField(required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        if value.get("due_by") is not None:
            value["due_by"] = value["due_by"].isoformat()
        return value


class FollowUpPlansSerializer(serializers.Serializer):
    plans = FollowUpPlanSerializer(many=True, allow_empty=False)


class AmendResultSerializer(serializers.Serializer):
    interpretation = serializers.CharField()
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ResultListQuerySerializer(serializers.Serializer):
    order_id = serializers.UUIDField()


class DiagnosticResultSerializer(serializers.ModelSerializer):
    class Meta:
        model = DiagnosticResult
        fields = [
            "id",
            "order_id",
            "patient_id",
            "specimen_id",
            "test_code",
            "value",
            "unit",
            "reference_range",
            "flag",
            "status",
            "is_critical",
            "critical_detected_at",
            "delta_check",
            "correlation_check",
            "interpretation",
            "recommended_follow_up",
            "reported_by",
            "reported_at",
            "reviewed_by",
            "reviewed_at",
        ]
        read_only_fields = fields


class ResultsReviewSerializer(serializers.ModelSerializer):
    class Meta:
        model = ResultsReview
        fields = [
            "id",
            "order_id",
            "patient_id",
            "clinician_id",
            "status",
            "acknowledgment_required",
            "results_summary",
            "clinical_correlation",
            "follow_up_plans",
            "reviewed_by",
            "reviewed_at",
            "acknowledged_by",
            "acknowledged_at",
            "acknowledgment_comment",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
