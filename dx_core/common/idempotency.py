# dx_core/common/idempotency.py
"""
Idempotency-Key replay for mutating requests.

A retried POST with the same key, actor, scope and route gets the first
response back instead of running the operation again. Responses live in the
database when COMMON_IDEMPOTENCY_USE_DB is on, otherwise in process memory.
"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from rest_framework.renderers import JSONRenderer

from dx_core.common.context import ActorContext
from dx_core.common.models import StoredResponse

logger = logging.getLogger(__name__)

HEADER = "Idempotency-Key"


@dataclass(frozen=True)
class ReplayKey:
    tenant_id: str
    facility_id: str
    actor_id: str
    route: str
    key: str

    @classmethod
    def for_request(cls, ctx: ActorContext, request) -> Optional["ReplayKey"]:
        key = request.headers.get(HEADER)
        if not key:
            return None
        return cls(
            tenant_id=str(ctx.tenant_id),
            facility_id=str(ctx.facility_id),
            actor_id=str(ctx.actor_id),
            route=f"{request.method.upper()} {request.path}",
            key=key.strip(),
        )


@dataclass(frozen=True)
class Replay:
    status_code: int
    body: Any

    @classmethod
    def of(cls, status_code: int, body: Any) -> "Replay":
        """
        Stores the body as the client saw it: UUIDs, decimals and datetimes
        rendered to their JSON form.
        """
        return cls(status_code=status_code, body=json.loads(JSONRenderer().render(body)))


class MemoryReplayStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._items: dict[ReplayKey, Replay] = {}

    def find(self, rk: ReplayKey) -> Optional[Replay]:
        with self._lock:
            return self._items.get(rk)

    def remember(self, rk: ReplayKey, replay: Replay) -> None:
        with self._lock:
            self._items.setdefault(rk, replay)


class DatabaseReplayStore:
    def find(self, rk: ReplayKey) -> Optional[Replay]:
        row = (
            StoredResponse.objects.filter(
                tenant_id=rk.tenant_id,
                facility_id=rk.facility_id,
                actor_id=rk.actor_id,
                route=rk.route,
                key=rk.key,
            )
            .only("status_code", "body")
            .first()
        )
        return None if row is None else Replay(status_code=row.status_code, body=row.body)

    def remember(self, rk: ReplayKey, replay: Replay) -> None:
        try:
            with transaction.atomic():
                StoredResponse.objects.create(
                    tenant_id=rk.tenant_id,
                    facility_id=rk.facility_id,
                    actor_id=rk.actor_id,
                    route=rk.route,
                    key=rk.key,
                    status_code=replay.status_code,
                    body=replay.body,
                )
        except IntegrityError:
            # first writer wins
            logger.debug("replay for %s [%s] already stored", rk.route, rk.key)


_memory = MemoryReplayStore()
_database = DatabaseReplayStore()


def replay_store():
    if getattr(settings, "COMMON_IDEMPOTENCY_USE_DB", False):
        return _database
    return _memory
