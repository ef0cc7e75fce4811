# dx_core/processing/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from dx_core.common.api.mixins import ScopedContextMixin
from dx_core.common.api.openapi import IDEMPOTENT_PARAMETERS, SCOPE_PARAMETERS
from dx_core.common.api.pagination import PipelinePagination
from dx_core.common.permissions import ROLE_TECHNICIAN
from dx_core.processing import selectors
from dx_core.processing.api.serializers import (
    CalibrationSerializer,
    InstrumentCreateSerializer,
    InstrumentSerializer,
    ProcessingRecordSerializer,
    ProcessSpecimenSerializer,
    QualityControlSerializer,
    RecordListQuerySerializer,
)
from dx_core.processing.checks import ControlMeasurement
from dx_core.processing.instruments import ReportedValueAdapter
from dx_core.processing.models import Instrument, ProcessingRecord
from dx_core.processing.services import InstrumentService, ProcessingService


class ProcessingViewSet(ScopedContextMixin, viewsets.ViewSet):
    """
    Technician-reported processing runs.
    """

    serializer_class = ProcessingRecordSerializer
    queryset = ProcessingRecord.objects.none()

    allowed_roles_per_action = {
        "create": {ROLE_TECHNICIAN},
        "quality_control": {ROLE_TECHNICIAN},
    }

    @extend_schema(request=ProcessSpecimenSerializer, responses={201: ProcessingRecordSerializer}, tags=["Processing"], parameters=IDEMPOTENT_PARAMETERS)
    def create(self, request):
        ctx = self.ctx()
        ser = ProcessSpecimenSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        instrument = None
        if data.get("instrument_id"):
            instrument = selectors.get_instrument(
                tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, instrument_id=data["instrument_id"]
            )
        adapter = ReportedValueAdapter(
            data["value"],
            instrument=instrument,
            failed_steps=data.get("failed_steps") or (),
            skipped_steps=data.get("skipped_steps") or (),
            step_notes=data.get("step_notes") or {},
        )

        def produce():
            record = ProcessingService().process(
                ctx,
                specimen_id=data["specimen_id"],
                adapter=adapter,
                test_code=data.get("test_code") or None,
            )
            obj = selectors.get_record(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, record_id=record.id)
            return ProcessingRecordSerializer(obj).data

        return self.idempotent(ctx, produce)

    @extend_schema(
        parameters=[*SCOPE_PARAMETERS, RecordListQuerySerializer],
        responses={200: ProcessingRecordSerializer(many=True)},
        tags=["Processing"],
    )
    def list(self, request):
        ctx = self.ctx()
        q = RecordListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = selectors.list_records(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, **q.validated_data)

        paginator = PipelinePagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(ProcessingRecordSerializer(page, many=True).data)

    @extend_schema(responses={200: ProcessingRecordSerializer}, tags=["Processing"], parameters=SCOPE_PARAMETERS)
    def retrieve(self, request, pk=None):
        ctx = self.ctx()
        obj = selectors.get_record(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, record_id=pk)
        return Response(ProcessingRecordSerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(request=QualityControlSerializer, responses={200: ProcessingRecordSerializer}, tags=["Processing"], parameters=IDEMPOTENT_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="quality-control")
    def quality_control(self, request, pk=None):
        ctx = self.ctx()
        ser = QualityControlSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        controls = [ControlMeasurement(**c) for c in ser.validated_data["controls"]]

        def produce():
            ProcessingService().document_quality_control(ctx, record_id=pk, controls=controls)
            obj = selectors.get_record(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, record_id=pk)
            return ProcessingRecordSerializer(obj).data

        return self.idempotent(ctx, produce, status_code=status.HTTP_200_OK)


class InstrumentViewSet(ScopedContextMixin, viewsets.ViewSet):
    serializer_class = InstrumentSerializer
    queryset = Instrument.objects.none()

    allowed_roles_per_action = {
        "create": {ROLE_TECHNICIAN},
        "calibrate": {ROLE_TECHNICIAN},
    }

    @extend_schema(responses={200: InstrumentSerializer(many=True)}, tags=["Processing"], parameters=SCOPE_PARAMETERS)
    def list(self, request):
        ctx = self.ctx()
        qs = selectors.list_instruments(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)
        return Response(InstrumentSerializer(qs, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(request=InstrumentCreateSerializer, responses={201: InstrumentSerializer}, tags=["Processing"], parameters=SCOPE_PARAMETERS)
    def create(self, request):
        ctx = self.ctx()
        ser = InstrumentCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        instrument = InstrumentService.register(ctx, **ser.validated_data)
        return Response(InstrumentSerializer(instrument).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=CalibrationSerializer, responses={200: InstrumentSerializer}, tags=["Processing"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="calibrate")
    def calibrate(self, request, pk=None):
        ctx = self.ctx()
        ser = CalibrationSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        instrument = InstrumentService.record_calibration(
            ctx, instrument_id=pk, calibrated_at=ser.validated_data.get("calibrated_at")
        )
        return Response(InstrumentSerializer(instrument).data, status=status.HTTP_200_OK)
