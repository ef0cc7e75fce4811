# dx_core/common/context.py
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class ActorContext:
    """
    Who is acting, and in which tenant/facility scope.
    actor_id is the identity-system username (clinician, nurse, technician).
    """
    tenant_id: UUID
    facility_id: UUID
    actor_id: str
