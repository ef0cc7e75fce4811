# dx_core/specimens/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from dx_core.specimens.models import Specimen, SpecimenCollection, SpecimenStatus
from dx_core.specimens.quality import CONTAMINATION_LEVELS, HEMOLYSIS_LEVELS, SpecimenObservation


class PatientContextSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    wristband_id = serializers.CharField(required=False, allow_blank=True, default="")
    date_of_birth = serializers.DateField(required=False, allow_null=True, default=None)
    last_meal_at = serializers.DateTimeField(required=False, allow_null=True, default=None)
    verified_medication_holds = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    completed_preparations = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class ObservationSerializer(serializers.Serializer):
    test_code = serializers.CharField(max_length=32)
    volume_ml = serializers.FloatField(min_value=0)
    hemolysis = serializers.ChoiceField(choices=HEMOLYSIS_LEVELS, default="None")
    clotted = serializers.BooleanField(default=False)
    contamination_risk = serializers.ChoiceField(choices=CONTAMINATION_LEVELS, default="None")
    label_matches = serializers.BooleanField(default=True)


class PreparePatientSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    patient = PatientContextSerializer()


class CollectSpecimensSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    patient = PatientContextSerializer()
    collection_site = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    observations = ObservationSerializer(many=True, required=False, default=list)
    test_codes = serializers.ListField(
        child=serializers.CharField(max_length=32), required=False, allow_null=True, default=None
    )

    def observation_map(self) -> dict[str, SpecimenObservation]:
        return {
            o["test_code"].strip().upper(): SpecimenObservation.from_dict(o)
            for o in self.validated_data.get("observations") or []
        }


class RejectSpecimenSerializer(serializers.Serializer):
    reason = serializers.CharField()


class SpecimenListQuerySerializer(serializers.Serializer):
    order_id = serializers.UUIDField(required=False)
    status = serializers.ChoiceField(choices=SpecimenStatus.choices, required=False)


class SpecimenSerializer(serializers.ModelSerializer):
    collection = serializers.UUIDField(source="collection_id", read_only=True)

    class Meta:
        model = Specimen
        fields = [
            "id",
            "collection",
            "order_id",
            "patient_id",
            "label",
            "test_codes",
            "specimen_type",
            "container",
            "volume_ml",
            "quality",
            "transport",
            "status",
            "rejection_reason",
            "received_at",
            "received_by",
            "created_at",
        ]
        read_only_fields = fields


class SpecimenCollectionSerializer(serializers.ModelSerializer):
    specimens = SpecimenSerializer(many=True, read_only=True)

    class Meta:
        model = SpecimenCollection
        fields = [
            "id",
            "order_id",
            "patient_id",
            "collected_by",
            "collected_at",
            "collection_site",
            "notes",
            "identity_verified",
            "labels_verified",
            "transport_arranged",
            "transport_arranged_at",
            "transport_arranged_by",
            "specimens",
        ]
        read_only_fields = fields
