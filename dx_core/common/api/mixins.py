# dx_core/common/api/mixins.py
from __future__ import annotations

from typing import Callable

from rest_framework import status
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from dx_core.common.context import ActorContext
from dx_core.common.idempotency import Replay, ReplayKey, replay_store
from dx_core.common.permissions import DiagnosticsRolePermission
from dx_core.common.scope import ScopeError, resolve_scope


class ScopedContextMixin:
    """
    Scope headers become an ActorContext whose actor is the authenticated
    username. POST actions wrap their work in `idempotent` for key replay.
    """

    permission_classes = [DiagnosticsRolePermission]

    def ctx(self) -> ActorContext:
        try:
            scope = resolve_scope(self.request)
        except ScopeError as e:
            raise DRFValidationError({"detail": e.message})
        return ActorContext(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_id=self.request.user.get_username(),
        )

    def idempotent(self, ctx: ActorContext, produce: Callable[[], dict], *, status_code=status.HTTP_201_CREATED) -> Response:
        rk = ReplayKey.for_request(ctx, self.request)
        if rk is None:
            return Response(produce(), status=status_code)

        store = replay_store()
        seen = store.find(rk)
        if seen is not None:
            return Response(seen.body, status=seen.status_code, headers={"Idempotent-Replay": "true"})

        body = produce()
        store.remember(rk, Replay.of(status_code, body))
        return Response(body, status=status_code)
