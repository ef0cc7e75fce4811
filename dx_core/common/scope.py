# dx_core/common/scope.py
from __future__ import annotations

from typing import NamedTuple
from uuid import UUID

SCOPE_HEADERS = ("X-Tenant-Id", "X-Facility-Id")


class Scope(NamedTuple):
    tenant_id: UUID
    facility_id: UUID


class ScopeError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def resolve_scope(request) -> Scope:
    """
    Reads the tenant and facility headers. Both are required and must be UUIDs.
    The parsed values are cached on the request.
    """
    cached = getattr(request, "dx_scope", None)
    if cached is not None:
        return cached

    raw = [request.headers.get(name, "").strip() for name in SCOPE_HEADERS]
    if not all(raw):
        raise ScopeError(f"Missing scope headers. Provide {' and '.join(SCOPE_HEADERS)}.")
    try:
        scope = Scope(*(UUID(value) for value in raw))
    except ValueError:
        raise ScopeError(f"Invalid scope headers. {' and '.join(SCOPE_HEADERS)} must be UUIDs.")

    request.dx_scope = scope
    return scope
