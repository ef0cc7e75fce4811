# dx_core/results/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from dx_core.common.api.mixins import ScopedContextMixin
from dx_core.common.api.openapi import IDEMPOTENT_PARAMETERS, SCOPE_PARAMETERS
from dx_core.common.api.pagination import PipelinePagination
from dx_core.common.permissions import ROLE_CLINICIAN
from dx_core.results import selectors
from dx_core.results.api.serializers import (
    AcknowledgeNormalSerializer,
    AmendResultSerializer,
    DiagnosticResultSerializer,
    FollowUpPlansSerializer,
    InterpretAbnormalSerializer,
    ResultListQuerySerializer,
    ResultsReviewSerializer,
)
from dx_core.results.models import DiagnosticResult, ResultsReview
from dx_core.results.services import ResultsReviewService


class ResultViewSet(ScopedContextMixin, viewsets.ViewSet):
    serializer_class = DiagnosticResultSerializer
    queryset = DiagnosticResult.objects.none()

    allowed_roles_per_action = {
        "amend": {ROLE_CLINICIAN},
    }

    @extend_schema(
        parameters=[*SCOPE_PARAMETERS, ResultListQuerySerializer],
        responses={200: DiagnosticResultSerializer(many=True)},
        tags=["Results"],
    )
    def list(self, request):
        ctx = self.ctx()
        q = ResultListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = selectors.results_for_order(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, **q.validated_data)

        paginator = PipelinePagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(DiagnosticResultSerializer(page, many=True).data)

    @extend_schema(responses={200: DiagnosticResultSerializer}, tags=["Results"], parameters=SCOPE_PARAMETERS)
    def retrieve(self, request, pk=None):
        ctx = self.ctx()
        obj = selectors.get_result(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, result_id=pk)
        return Response(DiagnosticResultSerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(request=AmendResultSerializer, responses={200: DiagnosticResultSerializer}, tags=["Results"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="amend")
    def amend(self, request, pk=None):
        ctx = self.ctx()
        ser = AmendResultSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        result = ResultsReviewService().amend_result(ctx, result_id=pk, **ser.validated_data)
        return Response(DiagnosticResultSerializer(result).data, status=status.HTTP_200_OK)


class ResultsReviewViewSet(ScopedContextMixin, viewsets.ViewSet):
    """
    Review endpoints are keyed by order id: /reviews/{order_id}/...
    """

    serializer_class = ResultsReviewSerializer
    queryset = ResultsReview.objects.none()

    allowed_roles_per_action = {
        "retrieve": {ROLE_CLINICIAN},
        "pending": {ROLE_CLINICIAN},
        "review": {ROLE_CLINICIAN},
        "acknowledge": {ROLE_CLINICIAN},
        "interpret": {ROLE_CLINICIAN},
        "follow_up": {ROLE_CLINICIAN},
    }

    @extend_schema(responses={200: ResultsReviewSerializer}, tags=["Results Review"], parameters=SCOPE_PARAMETERS)
    def retrieve(self, request, pk=None):
        ctx = self.ctx()
        obj = selectors.get_review(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, order_id=pk)
        return Response(ResultsReviewSerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(responses={200: ResultsReviewSerializer(many=True)}, tags=["Results Review"], parameters=SCOPE_PARAMETERS)
    @action(detail=False, methods=["get"], url_path="pending")
    def pending(self, request):
        ctx = self.ctx()
        qs = selectors.pending_reviews(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, clinician_id=ctx.actor_id)

        paginator = PipelinePagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(ResultsReviewSerializer(page, many=True).data)

    @extend_schema(request=None, responses={200: ResultsReviewSerializer}, tags=["Results Review"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="review")
    def review(self, request, pk=None):
        ctx = self.ctx()
        obj = ResultsReviewService().review_incoming(ctx, order_id=pk)
        return Response(ResultsReviewSerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(request=AcknowledgeNormalSerializer, responses={200: ResultsReviewSerializer}, tags=["Results Review"], parameters=IDEMPOTENT_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="acknowledge")
    def acknowledge(self, request, pk=None):
        ctx = self.ctx()
        ser = AcknowledgeNormalSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        def produce():
            obj = ResultsReviewService().acknowledge_normal(ctx, order_id=pk, **ser.validated_data)
            return ResultsReviewSerializer(obj).data

        return self.idempotent(ctx, produce, status_code=status.HTTP_200_OK)

    @extend_schema(request=InterpretAbnormalSerializer, responses={200: ResultsReviewSerializer}, tags=["Results Review"], parameters=SCOPE_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="interpret")
    def interpret(self, request, pk=None):
        ctx = self.ctx()
        ser = InterpretAbnormalSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        obj = ResultsReviewService().interpret_abnormal(ctx, order_id=pk, **ser.validated_data)
        return Response(ResultsReviewSerializer(obj).data, status=status.HTTP_200_OK)

    @extend_schema(request=FollowUpPlansSerializer, responses={200: ResultsReviewSerializer}, tags=["Results Review"], parameters=IDEMPOTENT_PARAMETERS)
    @action(detail=True, methods=["post"], url_path="follow-up")
    def follow_up(self, request, pk=None):
        ctx = self.ctx()
        ser = FollowUpPlansSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        def produce():
            obj = ResultsReviewService().create_follow_up_plans(ctx, order_id=pk, plans=ser.validated_data["plans"])
            return ResultsReviewSerializer(obj).data

        return self.idempotent(ctx, produce, status_code=status.HTTP_200_OK)
