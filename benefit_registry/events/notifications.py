"""Registry notifications and a synchronous publish/subscribe bus.

Exactly one notification is published per successful mutation and none
for a rejected one. Indexers, marketplaces and the webhook relay consume
them by subscribing to a ``NotificationBus``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, ClassVar, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenBenefitAttached:
    event: ClassVar[str] = "benefit.token_attached"

    token_id: int
    benefit_id: int
    metadata_uri: str

    def to_payload(self) -> dict[str, Any]:
        return {"event": self.event, **asdict(self)}


@dataclass(frozen=True)
class CollectionBenefitAttached:
    event: ClassVar[str] = "benefit.collection_attached"

    benefit_id: int
    metadata_uri: str

    def to_payload(self) -> dict[str, Any]:
        return {"event": self.event, **asdict(self)}


@dataclass(frozen=True)
class BenefitUpdated:
    event: ClassVar[str] = "benefit.updated"

    benefit_id: int
    metadata_uri: str

    def to_payload(self) -> dict[str, Any]:
        return {"event": self.event, **asdict(self)}


@dataclass(frozen=True)
class BenefitRemoved:
    event: ClassVar[str] = "benefit.removed"

    benefit_id: int

    def to_payload(self) -> dict[str, Any]:
        return {"event": self.event, **asdict(self)}


Notification = Union[
    TokenBenefitAttached, CollectionBenefitAttached, BenefitUpdated, BenefitRemoved
]

# All notification event names, in the order they are documented
BENEFIT_EVENTS = [
    TokenBenefitAttached.event,
    CollectionBenefitAttached.event,
    BenefitUpdated.event,
    BenefitRemoved.event,
]

Subscriber = Callable[[Notification], None]


class NotificationBus:
    """Delivers notifications to subscribers in subscription order."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, notification: Notification) -> None:
        """Call every subscriber with ``notification``.

        The mutation behind a notification is already committed, so a
        failing subscriber is logged and the remaining ones still run.
        """
        for callback in list(self._subscribers):
            try:
                callback(notification)
            except Exception:
                logger.exception(
                    "Subscriber %r failed handling %s", callback, notification.event
                )

    def __len__(self) -> int:
        return len(self._subscribers)
