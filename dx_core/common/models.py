# dx_core/common/models.py
from __future__ import annotations

import uuid

from django.db import models


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ScopedModel(TimeStampedModel):
    """
    Base for every pipeline record. Rows belong to exactly one tenant and
    facility; repositories never read across that boundary.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)

    class Meta:
        abstract = True


class StoredResponse(ScopedModel):
    """
    A POST response kept for Idempotency-Key replay.
    `route` is "<METHOD> <path>".
    """
    actor_id = models.CharField(max_length=150)
    route = models.CharField(max_length=300)
    key = models.CharField(max_length=255)

    status_code = models.PositiveSmallIntegerField(default=201)
    body = models.JSONField(default=dict)

    class Meta:
        db_table = "common_stored_response"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "actor_id", "route", "key"],
                name="uq_stored_response_replay_key",
            )
        ]

    def __str__(self) -> str:
        return f"{self.route} [{self.key}]"
