# dx_core/specimens/api/views.py
from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from dx_core.common.api.mixins import ScopedContextMixin
from dx_core.common.api.openapi import IDEMPOTENT_PARAMETERS, SCOPE_PARAMETERS
from dx_core.common.api.pagination import PipelinePagination
from dx_core.common.permissions import ROLE_CLINICIAN, ROLE_NURSE, ROLE_TECHNICIAN
from dx_core.integrations.patients import PatientContext
from dx_core.specimens import selectors
from dx_core.specimens.api.serializers import (
    CollectSpecimensSerializer,
    PreparePatientSerializer,
    RejectSpecimenSerializer,
    SpecimenCollectionSerializer,
    SpecimenListQuerySerializer,
    SpecimenSerializer,
)
from dx_core.specimens.models import Specimen, SpecimenCollection
from dx_core.specimens.services import SpecimenService

COLLECTORS = {ROLE_NURSE, ROLE_TECHNICIAN}
LAB_STAFF = {ROLE_TECHNICIAN}


class SpecimenCollectionViewSet(ScopedContextMixin, viewsets.ViewSet):
    serializer_class = SpecimenCollectionSerializer
    queryset = SpecimenCollection.objects.none()

    allowed_roles_per_action = {
        "create": COLLECTORS,
        "review": {ROLE_CLINICIAN, ROLE_NURSE, ROLE_TECHNICIAN},
        "prepare": COLLECTORS,
        "transport": COLLECTORS,
    }

    def _out(self, ctx, collection_id) -> dict:
        obj = selectors.get_collection(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, collection_id=collection_id)
        return SpecimenCollectionSerializer(obj).data

    @extend_schema(request=CollectSpecimensSerializer, responses={201: SpecimenCollectionSerializer}, tags=["Specimens"], parameters=IDEMPOTENT_PARAMETERS)
    def create(self, request):
        ctx = self.ctx()
        ser = CollectSpecimensSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        def produce():
            collection = SpecimenService().collect_specimens(
                ctx,
                order_id=data["order_id"],
                patient=PatientContext.from_dict(data["patient"]),
                collection_site=data.get("collection_site", ""),
                notes=data.get("notes", ""),
                observations=ser.observation_map(),
                test_codes=data.get("test_codes"),
            )
            return self._out(ctx, collection.id)

        return self.idempotent(ctx, produce)

    @extend_schema(responses={200: SpecimenCollectionSerializer}, tags=["Specimens"], parameters=SCOPE_PARAMETERS)
    def retrieve(self, request, pk=None):
        ctx = self.ctx()
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)

    @extend_schema(
        parameters=[*SCOPE_PARAMETERS, OpenApiParameter(name="order_id", location=OpenApiParameter.QUERY, required=True, type=str)],
        responses={200: dict},
        tags=["Specimens"],
    )
    @action(detail=False, methods=["get"], url_path="review")
    def review(self, request):
        ctx = self.ctx()
        order_id = request.query_params.get("order_id")
        if not order_id:
            raise DRFValidationError({"order_id": "This query parameter is required."})
        return Response(SpecimenService().review_for_collection(ctx, order_id=order_id), status=status.HTTP_200_OK)

    @extend_schema(request=PreparePatientSerializer, responses={200: dict}, tags=["Specimens"], parameters=SCOPE_PARAMETERS)
    @action(detail=False, methods=["post"], url_path="prepare")
    def prepare(self, request):
        ctx = self.ctx()
        ser = PreparePatientSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        out = SpecimenService().prepare_patient(
            ctx,
            order_id=ser.validated_data["order_id"],
            patient=PatientContext.from_dict(ser.validated_data["patient"]),
        )
        return Response(out, status=status.HTTP_200_OK)

    @extend_schema(request=None, responses={200: SpecimenCollectionSerializer}, tags=["Specimens"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="transport")
    def transport(self, request, pk=None):
        ctx = self.ctx()
        SpecimenService().arrange_transport(ctx, collection_id=pk)
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)


class SpecimenViewSet(ScopedContextMixin, viewsets.ViewSet):
    serializer_class = SpecimenSerializer
    queryset = Specimen.objects.none()

    allowed_roles_per_action = {
        "receive": LAB_STAFF,
        "reject": {ROLE_NURSE, ROLE_TECHNICIAN},
    }

    @extend_schema(
        parameters=[*SCOPE_PARAMETERS, SpecimenListQuerySerializer],
        responses={200: SpecimenSerializer(many=True)},
        tags=["Specimens"],
    )
    def list(self, request):
        ctx = self.ctx()
        q = SpecimenListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = selectors.list_specimens(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, **q.validated_data)

        paginator = PipelinePagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(SpecimenSerializer(page, many=True).data)

    @extend_schema(responses={200: SpecimenSerializer}, tags=["Specimens"], parameters=SCOPE_PARAMETERS)
    def retrieve(self, request, pk=None):
        ctx = self.ctx()
        obj = selectors.get_specimen(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, specimen_id=pk)
        return Response(SpecimenSerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(request=None, responses={200: SpecimenSerializer}, tags=["Specimens"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="receive")
    def receive(self, request, pk=None):
        ctx = self.ctx()
        specimen = SpecimenService().receive_specimen(ctx, specimen_id=pk)
        return Response(SpecimenSerializer(specimen).data, status=status.HTTP_200_OK)

    @extend_schema(request=RejectSpecimenSerializer, responses={200: SpecimenSerializer}, tags=["Specimens"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        ctx = self.ctx()
        ser = RejectSpecimenSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        specimen = SpecimenService().reject_specimen(ctx, specimen_id=pk, reason=ser.validated_data["reason"])
        return Response(SpecimenSerializer(specimen).data, status=status.HTTP_200_OK)
