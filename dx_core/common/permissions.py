# dx_core/common/permissions.py
from __future__ import annotations

from typing import FrozenSet

from rest_framework.permissions import SAFE_METHODS, BasePermission

# Role names are Django auth Group names.
ROLE_ADMIN = "ADMIN"
ROLE_CLINICIAN = "CLINICIAN"
ROLE_NURSE = "NURSE"
ROLE_TECHNICIAN = "TECHNICIAN"
ROLE_READONLY = "READONLY"

ALL_ROLES = (ROLE_ADMIN, ROLE_CLINICIAN, ROLE_NURSE, ROLE_TECHNICIAN, ROLE_READONLY)
STAFF: FrozenSet[str] = frozenset(ALL_ROLES)


def user_roles(user) -> FrozenSet[str]:
    """
    Superusers are ADMIN. Anyone else holds the roles of their groups, or
    READONLY when they belong to none.
    """
    if user is None or not user.is_authenticated:
        return frozenset()
    if user.is_superuser:
        return frozenset({ROLE_ADMIN})
    groups = frozenset(user.groups.values_list("name", flat=True))
    return groups or frozenset({ROLE_READONLY})


class DiagnosticsRolePermission(BasePermission):
    """
    Viewsets map actions to roles in `allowed_roles_per_action`.

    list and retrieve are open to all staff. Unmapped safe methods are too;
    unmapped writes are refused. ADMIN passes every check. Whether a clinician
    owns an order is checked by the services.
    """
    message = "You do not have permission to perform this action."

    read_actions = ("list", "retrieve")

    def allowed_roles(self, request, view) -> FrozenSet[str]:
        action = getattr(view, "action", None)
        mapped = getattr(view, "allowed_roles_per_action", {}).get(action)
        if mapped is not None:
            return frozenset(mapped)
        if action in self.read_actions or request.method in SAFE_METHODS:
            return STAFF
        return frozenset()

    def has_permission(self, request, view) -> bool:
        roles = user_roles(request.user)
        if not roles:
            return False
        if ROLE_ADMIN in roles:
            return True
        return not roles.isdisjoint(self.allowed_roles(request, view))
