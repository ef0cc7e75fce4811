# dx_core/alerts/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from dx_core.alerts import selectors
from dx_core.alerts.api.serializers import (
    AcknowledgeAlertSerializer,
    AlertListQuerySerializer,
    DiagnosticAlertSerializer,
    NotificationListQuerySerializer,
    NotificationSerializer,
    ResolveAlertSerializer,
)
from dx_core.alerts.escalation import EscalationService
from dx_core.alerts.models import DiagnosticAlert, Notification
from dx_core.alerts.services import NotificationService
from dx_core.common.api.mixins import ScopedContextMixin
from dx_core.common.api.openapi import IDEMPOTENT_PARAMETERS, SCOPE_PARAMETERS
from dx_core.common.api.pagination import PipelinePagination
from dx_core.common.permissions import ROLE_CLINICIAN, ROLE_NURSE, ROLE_TECHNICIAN


class AlertViewSet(ScopedContextMixin, viewsets.ViewSet):
    serializer_class = DiagnosticAlertSerializer
    queryset = DiagnosticAlert.objects.none()

    allowed_roles_per_action = {
        "acknowledge": {ROLE_CLINICIAN, ROLE_NURSE},
        "resolve": {ROLE_CLINICIAN, ROLE_NURSE, ROLE_TECHNICIAN},
    }

    def _out(self, ctx, alert_id) -> dict:
        obj = selectors.get_alert(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, alert_id=alert_id)
        return DiagnosticAlertSerializer(obj).data

    @extend_schema(
        parameters=[*SCOPE_PARAMETERS, AlertListQuerySerializer],
        responses={200: DiagnosticAlertSerializer(many=True)},
        tags=["Alerts"],
    )
    def list(self, request):
        ctx = self.ctx()
        q = AlertListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = selectors.list_alerts(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, **q.validated_data)

        paginator = PipelinePagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(DiagnosticAlertSerializer(page, many=True).data)

    @extend_schema(responses={200: DiagnosticAlertSerializer}, tags=["Alerts"], parameters=SCOPE_PARAMETERS)
    def retrieve(self, request, pk=None):
        ctx = self.ctx()
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)

    @extend_schema(request=AcknowledgeAlertSerializer, responses={200: DiagnosticAlertSerializer}, tags=["Alerts"], parameters=IDEMPOTENT_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="acknowledge")
    def acknowledge(self, request, pk=None):
        ctx = self.ctx()
        ser = AcknowledgeAlertSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        def produce():
            EscalationService().acknowledge(ctx, alert_id=pk, action_taken=ser.validated_data["action_taken"])
            return self._out(ctx, pk)

        return self.idempotent(ctx, produce, status_code=status.HTTP_200_OK)

    @extend_schema(request=ResolveAlertSerializer, responses={200: DiagnosticAlertSerializer}, tags=["Alerts"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="resolve")
    def resolve(self, request, pk=None):
        ctx = self.ctx()
        ser = ResolveAlertSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        EscalationService().resolve(ctx, alert_id=pk, action=ser.validated_data["action"])
        return Response(self._out(ctx, pk), status=status.HTTP_200_OK)


class NotificationViewSet(ScopedContextMixin, viewsets.ViewSet):
    """
    The caller's in-app inbox.
    """

    serializer_class = NotificationSerializer
    queryset = Notification.objects.none()

    allowed_roles_per_action = {
        "mark_read": {ROLE_CLINICIAN, ROLE_NURSE, ROLE_TECHNICIAN},
    }

    @extend_schema(
        parameters=[*SCOPE_PARAMETERS, NotificationListQuerySerializer],
        responses={200: NotificationSerializer(many=True)},
        tags=["Notifications"],
    )
    def list(self, request):
        ctx = self.ctx()
        q = NotificationListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = selectors.notifications_for(
            tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, recipient=ctx.actor_id, **q.validated_data
        )

        paginator = PipelinePagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(NotificationSerializer(page, many=True).data)

    @extend_schema(request=None, responses={200: NotificationSerializer}, tags=["Notifications"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="read")
    def mark_read(self, request, pk=None):
        ctx = self.ctx()
        obj = NotificationService.mark_read(ctx, notification_id=pk)
        return Response(NotificationSerializer(obj).data, status=status.HTTP_200_OK)
