# dx_core/alerts/channels.py
from __future__ import annotations

from typing import Protocol

from dx_core.alerts.models import AttemptOutcome
from dx_core.alerts.services import NotificationService
from dx_core.common.context import ActorContext


class NotificationGateway(Protocol):
    def send(self, ctx: ActorContext, contact: str, channel: str, message: str) -> str:
        """Deliver `message`; return AttemptOutcome.DELIVERED or AttemptOutcome.FAILED."""
        ...


class InAppNotificationGateway:
    """
    Writes the message to the in-app outbox. Always delivered once the row commits.
    """

    def send(self, ctx: ActorContext, contact: str, channel: str, message: str) -> str:
        NotificationService.notify_in_app(
            ctx,
            recipients=[contact],
            title=message.split("\n", 1)[0],
            body=message,
            channel=channel,
        )
        return AttemptOutcome.DELIVERED
