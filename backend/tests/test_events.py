"""Tests for the in-process event bus."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from tenderdesk.events import EventBus, ProductItemsAdded, TenderTrackingUpdated, TimerSettingsUpdated

NOW = datetime(2025, 3, 3, 18, 0, tzinfo=timezone.utc)


def test_handlers_receive_only_their_event_type() -> None:
    bus = EventBus()
    tracking: list[TenderTrackingUpdated] = []
    items: list[ProductItemsAdded] = []
    bus.subscribe(TenderTrackingUpdated, tracking.append)
    bus.subscribe(ProductItemsAdded, items.append)

    delivered = bus.publish(TenderTrackingUpdated(tender_id="t1", stage="review", updated_at=NOW))

    assert delivered == 1
    assert tracking[0].stage == "review"
    assert items == []


def test_unsubscribe_stops_delivery_and_is_idempotent() -> None:
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(ProductItemsAdded, received.append)

    unsubscribe()
    unsubscribe()
    bus.publish(ProductItemsAdded(tender_id="t1", item_ids=["i1"]))

    assert received == []
    assert bus.handler_count(ProductItemsAdded) == 0


def test_failing_handler_does_not_block_others() -> None:
    bus = EventBus()
    received = []

    def broken(event) -> None:
        raise RuntimeError("handler bug")

    bus.subscribe(ProductItemsAdded, broken)
    bus.subscribe(ProductItemsAdded, received.append)

    assert bus.publish(ProductItemsAdded(tender_id="t1")) == 1
    assert len(received) == 1


def test_events_are_immutable() -> None:
    event = TimerSettingsUpdated(
        reset_time="09:00", snapshot_time="18:00", enable_auto_reset=True, enable_snapshot=True
    )
    with pytest.raises(ValidationError):
        event.snapshot_time = "19:00"
