# dx_core/audit/services.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.db.models import Model

from dx_core.audit.models import AuditEvent
from dx_core.common.context import ActorContext

logger = logging.getLogger(__name__)


class AuditService:
    """
    Central audit writer. Called inside the caller's transaction so the audit row
    commits or rolls back together with the change it describes.
    """

    @staticmethod
    def log(
        *,
        ctx: ActorContext,
        event_code: str,
        entity: Model,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        metadata = metadata or {}
        logger.info("audit %s %s=%s actor=%s", event_code, type(entity).__name__, entity.pk, ctx.actor_id)
        return AuditEvent.objects.create(
            tenant_id=ctx.tenant_id,
            facility_id=ctx.facility_id,
            event_code=event_code,
            entity_type=type(entity).__name__,
            entity_id=entity.pk,
            actor_id=ctx.actor_id,
            metadata=metadata,
        )
