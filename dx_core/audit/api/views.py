# dx_core/audit/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import viewsets

from dx_core.audit.api.serializers import AuditEventSerializer, AuditQuerySerializer
from dx_core.audit.models import AuditEvent
from dx_core.audit.selectors import audit_timeline
from dx_core.common.api.mixins import ScopedContextMixin
from dx_core.common.api.openapi import SCOPE_PARAMETERS
from dx_core.common.api.pagination import PipelinePagination


class AuditEventViewSet(ScopedContextMixin, viewsets.ViewSet):
    """
    Read-only timeline of pipeline mutations in the caller's scope.
    """
    serializer_class = AuditEventSerializer
    queryset = AuditEvent.objects.none()

    @extend_schema(
        parameters=[*SCOPE_PARAMETERS, AuditQuerySerializer],
        responses={200: AuditEventSerializer(many=True)},
        tags=["Audit"],
    )
    def list(self, request):
        ctx = self.ctx()
        q = AuditQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = audit_timeline(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, **q.validated_data)

        paginator = PipelinePagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(AuditEventSerializer(page, many=True).data)
