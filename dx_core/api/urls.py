# dx_core/api/urls.py
from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from dx_core.alerts.api.views import AlertViewSet, NotificationViewSet
from dx_core.audit.api.views import AuditEventViewSet
from dx_core.common.api.me import MeView
from dx_core.orders.api.views import OrderViewSet
from dx_core.processing.api.views import InstrumentViewSet, ProcessingViewSet
from dx_core.results.api.views import ResultsReviewViewSet, ResultViewSet
from dx_core.specimens.api.views import SpecimenCollectionViewSet, SpecimenViewSet

router = DefaultRouter()

router.register(r"orders", OrderViewSet, basename="orders")
router.register(r"specimens/collections", SpecimenCollectionViewSet, basename="specimen-collections")
router.register(r"specimens", SpecimenViewSet, basename="specimens")
router.register(r"processing/instruments", InstrumentViewSet, basename="instruments")
router.register(r"processing/records", ProcessingViewSet, basename="processing-records")
router.register(r"results/reviews", ResultsReviewViewSet, basename="results-reviews")
router.register(r"results", ResultViewSet, basename="results")
router.register(r"alerts", AlertViewSet, basename="alerts")
router.register(r"notifications", NotificationViewSet, basename="notifications")
router.register(r"audit/events", AuditEventViewSet, basename="audit-events")

urlpatterns = [
    path("auth/token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("auth/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("me/", MeView.as_view(), name="me"),
    *router.urls,
]
