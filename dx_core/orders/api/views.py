# dx_core/orders/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from dx_core.catalog.types import NotificationProtocol
from dx_core.common.api.mixins import ScopedContextMixin
from dx_core.common.api.openapi import IDEMPOTENT_PARAMETERS, SCOPE_PARAMETERS
from dx_core.common.api.pagination import PipelinePagination
from dx_core.common.permissions import ROLE_CLINICIAN, ROLE_NURSE
from dx_core.orders.api.serializers import (
    DiagnosticOrderSerializer,
    OrderCancelSerializer,
    OrderCreateSerializer,
    OrderIndicationSerializer,
    OrderListQuerySerializer,
    OrderTestsSerializer,
    OrderUrgencySerializer,
)
from dx_core.orders.models import DiagnosticOrder
from dx_core.orders.selectors import OrderSelector
from dx_core.orders.services import OrderService


class OrderViewSet(ScopedContextMixin, viewsets.ViewSet):
    """
    Thin API layer over OrderService (writes) and OrderSelector (reads).
    Ownership checks live in the service; roles gate the endpoints here.
    """

    serializer_class = DiagnosticOrderSerializer
    queryset = DiagnosticOrder.objects.none()

    allowed_roles_per_action = {
        "create": {ROLE_CLINICIAN},
        "indication": {ROLE_CLINICIAN},
        "urgency": {ROLE_CLINICIAN},
        "tests": {ROLE_CLINICIAN},
        "cancel": {ROLE_CLINICIAN},
        "schedule": {ROLE_CLINICIAN, ROLE_NURSE},
    }

    def _out(self, ctx, order_id) -> dict:
        obj = OrderSelector.get_order(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, order_id=order_id)
        return DiagnosticOrderSerializer(obj).data

    @extend_schema(request=OrderCreateSerializer, responses={201: DiagnosticOrderSerializer}, tags=["Orders"], parameters=IDEMPOTENT_PARAMETERS)
    def create(self, request):
        ctx = self.ctx()
        ser = OrderCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        def produce():
            order = OrderService().create_order(ctx, **ser.validated_data)
            return self._out(ctx, order.id)

        return self.idempotent(ctx, produce)

    @extend_schema(responses={200: DiagnosticOrderSerializer}, tags=["Orders"], parameters=SCOPE_PARAMETERS)
    def retrieve(self, request, pk=None):
        ctx = self.ctx()
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)

    @extend_schema(
        parameters=[*SCOPE_PARAMETERS, OrderListQuerySerializer],
        responses={200: DiagnosticOrderSerializer(many=True)},
        tags=["Orders"],
    )
    def list(self, request):
        ctx = self.ctx()
        q = OrderListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = OrderSelector.list_orders(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, **q.validated_data)

        paginator = PipelinePagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(DiagnosticOrderSerializer(page, many=True).data)

    @extend_schema(request=OrderIndicationSerializer, responses={200: DiagnosticOrderSerializer}, tags=["Orders"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="indication")
    def indication(self, request, pk=None):
        ctx = self.ctx()
        ser = OrderIndicationSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        OrderService().update_indication(ctx, order_id=pk, **ser.validated_data)
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)

    @extend_schema(request=OrderUrgencySerializer, responses={200: DiagnosticOrderSerializer}, tags=["Orders"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="urgency")
    def urgency(self, request, pk=None):
        ctx = self.ctx()
        ser = OrderUrgencySerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        protocol = None
        if data.get("notification_protocol"):
            protocol = NotificationProtocol(**data["notification_protocol"])

        OrderService().set_urgency(
            ctx,
            order_id=pk,
            urgency=data["urgency"],
            protocol=protocol,
            scheduled_for=data.get("scheduled_for"),
        )
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)

    @extend_schema(request=OrderTestsSerializer, responses={200: DiagnosticOrderSerializer}, tags=["Orders"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="tests")
    def tests(self, request, pk=None):
        ctx = self.ctx()
        ser = OrderTestsSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        OrderService().replace_tests(ctx, order_id=pk, test_codes=ser.validated_data["test_codes"])
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)

    @extend_schema(request=None, responses={200: DiagnosticOrderSerializer}, tags=["Orders"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="schedule")
    def schedule(self, request, pk=None):
        ctx = self.ctx()
        OrderService().schedule_order(ctx, order_id=pk)
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)

    @extend_schema(request=OrderCancelSerializer, responses={200: DiagnosticOrderSerializer}, tags=["Orders"], parameters=IDEMPOTENT_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        ctx = self.ctx()
        ser = OrderCancelSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        def produce():
            OrderService().cancel_order(ctx, order_id=pk, reason=ser.validated_data["reason"])
            return self._out(ctx, pk)

        return self.idempotent(ctx, produce, status_code=status.HTTP_200_OK)
