# dx_core/common/api/openapi.py
from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter

SCOPE_PARAMETERS = [
    OpenApiParameter(name="X-Tenant-Id", location=OpenApiParameter.HEADER, required=True, type=str),
    OpenApiParameter(name="X-Facility-Id", location=OpenApiParameter.HEADER, required=True, type=str),
]

IDEMPOTENT_PARAMETERS = [
    *SCOPE_PARAMETERS,
    OpenApiParameter(name="Idempotency-Key", location=OpenApiParameter.HEADER, required=False, type=str),
]
