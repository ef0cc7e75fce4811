# dx_core/common/api/exceptions.py
"""
Every API failure leaves as one envelope:

    {"error": {"code", "message", "details", "request_id"}}

Domain errors carry their own code and HTTP status. DRF and Django errors are
mapped by exception class, then by status.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions as drf
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from dx_core.common.errors import DiagnosticsError

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Request failed."

_CODE_BY_CLASS: tuple[tuple[type, str], ...] = (
    (drf.ValidationError, "validation_error"),
    (drf.NotAuthenticated, "not_authenticated"),
    (drf.AuthenticationFailed, "authentication_failed"),
    (drf.PermissionDenied, "permission_denied"),
    (DjangoPermissionDenied, "permission_denied"),
    (drf.NotFound, "not_found"),
    (Http404, "not_found"),
    (drf.MethodNotAllowed, "method_not_allowed"),
    (drf.Throttled, "throttled"),
)


def request_id_for(request) -> str:
    if request is None:
        return uuid.uuid4().hex
    rid = getattr(request, "request_id", None)
    if not rid:
        rid = request.META.get("HTTP_X_REQUEST_ID") or uuid.uuid4().hex
        request.request_id = rid
    return rid


def error_envelope(*, request, code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": request_id_for(request),
        }
    }


def _code_for(exc: Exception, http_status: int) -> str:
    for cls, code in _CODE_BY_CLASS:
        if isinstance(exc, cls):
            return code
    if isinstance(exc, drf.APIException):
        return exc.default_code or "api_error"
    return "server_error" if http_status >= 500 else "error"


def _split_detail(data: Any) -> tuple[str, Any]:
    """
    DRF payloads are either {"detail": ...} (plus extras) or field errors.
    """
    if isinstance(data, dict) and "detail" in data:
        detail = data["detail"]
        if isinstance(detail, list) and len(detail) == 1:
            detail = detail[0]
        extras = {k: v for k, v in data.items() if k != "detail"}
        return str(detail), extras or None
    return FALLBACK_MESSAGE, data


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")

    if isinstance(exc, DiagnosticsError):
        logger.info("%s %s: %s", exc.http_status, exc.code, exc.message)
        return Response(
            error_envelope(request=request, code=exc.code, message=exc.message, details=exc.details),
            status=exc.http_status,
        )

    response = drf_exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("unhandled error in %s", type(view).__name__ if view else "api", exc_info=exc)
        return Response(
            error_envelope(request=request, code="server_error", message="Unexpected server error."),
            status=500,
        )

    message, details = _split_detail(response.data)
    return Response(
        error_envelope(
            request=request,
            code=_code_for(exc, response.status_code),
            message=message,
            details=details,
        ),
        status=response.status_code,
        headers=response.headers,
    )
