"""Typed in-process event bus for cross-component notifications."""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class Event(BaseModel):
    """Base class for bus events."""

    model_config = ConfigDict(frozen=True)


class TimerSettingsUpdated(Event):
    """Timer scheduler preferences changed."""

    reset_time: str
    snapshot_time: str
    enable_auto_reset: bool
    enable_snapshot: bool


class TenderTrackingUpdated(Event):
    """A tender was added to, moved within, or removed from tracking."""

    tender_id: str | None = None
    stage: str | None = None
    updated_at: datetime


class ProductItemsAdded(Event):
    """Product items were attached to a tender."""

    tender_id: str
    item_ids: list[str] = Field(default_factory=list)


class ProductItemRestored(Event):
    """A trashed tender with product items was restored."""

    tender_id: str
    item_ids: list[str] = Field(default_factory=list)


E = TypeVar("E", bound=Event)
Handler = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event class."""

    def __init__(self) -> None:
        self._handlers: dict[type[Event], list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register a handler. Returns a function that removes it."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> int:
        """Deliver an event to every handler of its exact type.

        Returns the number of handlers that completed without raising.
        """
        delivered = 0
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Event handler failed for {type(event).__name__}: {e}")
        return delivered

    def handler_count(self, event_type: type[Event]) -> int:
        return len(self._handlers.get(event_type, []))
