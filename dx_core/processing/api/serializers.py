# dx_core/processing/api/serializers.py
from __future__ import annotations

from django.utils import timezone
from rest_framework import serializers

from dx_core.processing.models import (
    ControlLevel,
    Instrument,
    ProcessingRecord,
    ProcessingStep,
    QCAction,
    QualityControlResult,
)


class ProcessSpecimenSerializer(serializers.Serializer):
    specimen_id = serializers.UUIDField()
    instrument_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    test_code = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    value = serializers.CharField(max_length=255)
    failed_steps = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    skipped_steps = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    step_notes = serializers.DictField(child=serializers.CharField(), required=False, default=dict)


class RecordListQuerySerializer(serializers.Serializer):
    specimen_id = serializers.UUIDField(required=False)
    order_id = serializers.UUIDField(required=False)


class ProcessingStepSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProcessingStep
        fields = ["sequence", "name", "status", "started_at", "ended_at", "detail"]


class QualityControlResultSerializer(serializers.ModelSerializer):
    class Meta:
        model = QualityControlResult
        fields = [
            "sequence",
            "control_level",
            "expected_value",
            "actual_value",
            "tolerance_percent",
            "deviation_percent",
            "within_range",
            "action",
            "comments",
            "performed_by",
            "performed_at",
        ]
        read_only_fields = fields


class ProcessingRecordSerializer(serializers.ModelSerializer):
    steps = ProcessingStepSerializer(many=True, read_only=True)
    quality_controls = QualityControlResultSerializer(many=True, read_only=True)
    instrument = serializers.UUIDField(source="instrument_id", read_only=True, allow_null=True)

    class Meta:
        model = ProcessingRecord
        fields = [
            "id",
            "specimen_id",
            "order_id",
            "test_code",
            "instrument",
            "instrument_code",
            "technician_id",
            "methodology",
            "calibration_status",
            "status",
            "step_failure_policy",
            "confidence",
            "qc_status",
            "is_repeat",
            "started_at",
            "completed_at",
            "result_id",
            "steps",
            "quality_controls",
        ]
        read_only_fields = fields


class ControlMeasurementSerializer(serializers.Serializer):
    control_level = serializers.ChoiceField(choices=ControlLevel.choices)
    expected_value = serializers.FloatField()
    actual_value = serializers.FloatField()
    tolerance_percent = serializers.FloatField(min_value=0, required=False, allow_null=True, default=None)
    action = serializers.ChoiceField(choices=QCAction.choices, required=False, allow_blank=True, default="")
    comments = serializers.CharField(required=False, allow_blank=True, default="")


class QualityControlSerializer(serializers.Serializer):
    controls = ControlMeasurementSerializer(many=True, allow_empty=False)


class InstrumentCreateSerializer(serializers.Serializer):
    code = serializers.SlugField(max_length=64)
    name = serializers.CharField(max_length=255)
    analyzer_type = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    calibration_interval_days = serializers.IntegerField(min_value=1, default=30)


class CalibrationSerializer(serializers.Serializer):
    calibrated_at = serializers.DateTimeField(required=False, allow_null=True, default=None)


class InstrumentSerializer(serializers.ModelSerializer):
    calibration_status = serializers.SerializerMethodField()

    class Meta:
        model = Instrument
        fields = [
            "id",
            "code",
            "name",
            "analyzer_type",
            "calibrated_at",
            "calibration_interval_days",
            "calibration_status",
        ]
        read_only_fields = fields

    def get_calibration_status(self, obj) -> str:
        return obj.calibration_status(timezone.now())
