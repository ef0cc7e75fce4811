# dx_core/common/repository.py
from __future__ import annotations

from typing import Generic, Type, TypeVar
from uuid import UUID

from django.db.models import Model, QuerySet

from dx_core.common.context import ActorContext
from dx_core.common.errors import RecordNotFound

M = TypeVar("M", bound=Model)


class ScopedRepository(Generic[M]):
    """
    Keyed store over one ScopedModel: get / get_for_update / put / list.

    Services receive repositories through their constructor instead of touching
    model managers directly, so tests can swap a store without monkeypatching.
    `get_for_update` is the mutual-exclusion boundary for an aggregate: it must be
    called inside transaction.atomic and holds the row lock until commit.
    """

    def __init__(self, model: Type[M], *, label: str | None = None):
        self.model = model
        self.label = label or model.__name__

    def _scoped(self, ctx: ActorContext) -> QuerySet[M]:
        return self.model.objects.filter(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id)

    def get(self, ctx: ActorContext, pk: UUID | str) -> M:
        try:
            return self._scoped(ctx).get(pk=pk)
        except (self.model.DoesNotExist, ValueError):
            raise RecordNotFound(f"{self.label} not found in this scope.")

    def get_for_update(self, ctx: ActorContext, pk: UUID | str) -> M:
        try:
            return self._scoped(ctx).select_for_update().get(pk=pk)
        except (self.model.DoesNotExist, ValueError):
            raise RecordNotFound(f"{self.label} not found in this scope.")

    def put(self, obj: M, *, update_fields: list[str] | None = None) -> M:
        if update_fields is not None and "updated_at" not in update_fields:
            update_fields = [*update_fields, "updated_at"]
        obj.save(update_fields=update_fields)
        return obj

    def create(self, ctx: ActorContext, **fields) -> M:
        return self.model.objects.create(tenant_id=ctx.tenant_id, facility_id=ctx.facility_id, **fields)

    def list(self, ctx: ActorContext, **filters) -> QuerySet[M]:
        return self._scoped(ctx).filter(**filters)
