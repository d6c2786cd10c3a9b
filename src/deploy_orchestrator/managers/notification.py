"""Deployment event notifications."""

import builtins
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from ..strategies.models import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentNotification:
    """An event published to subscribers."""

    event: str
    deployment_id: str
    message: str
    details: builtins.dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


Subscriber = Callable[[DeploymentNotification], Union[None, Awaitable[None]]]


class NotificationManager:
    """Fans deployment events out to subscribers.

    A failing subscriber is logged and skipped; the deployment it reports on
    is not affected.
    """

    def __init__(self):
        self._subscribers: builtins.list[tuple[Subscriber, frozenset[str] | None]] = []
        self.sent: builtins.list[DeploymentNotification] = []

    def subscribe(self, callback: Subscriber, events: builtins.list[str] | None = None) -> None:
        """Register a sync or async callback, optionally for some events only."""
        self._subscribers.append((callback, frozenset(events) if events else None))

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers = [(cb, ev) for cb, ev in self._subscribers if cb != callback]

    async def notify(
        self, event: str, deployment_id: str, message: str, **details: Any
    ) -> DeploymentNotification:
        notification = DeploymentNotification(
            event=event, deployment_id=deployment_id, message=message, details=details
        )
        self.sent.append(notification)

        for callback, events in list(self._subscribers):
            if events is not None and event not in events:
                continue
            try:
                outcome = callback(notification)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(f"Notification subscriber failed for {event} on deployment {deployment_id}")

        return notification
