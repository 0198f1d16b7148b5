"""Drag-and-drop controller tracking drag source, hover target and payload.

The controller knows nothing about tenders: it moves an opaque item
between named drop targets and hands the semantic "drop" to a callback.
"""

import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

PAYLOAD_FORMAT = "text/plain"

DropCallback = Callable[[Any, str, str], Union[None, Awaitable[None]]]


class DataTransfer:
    """Drag payload carrier, mirroring the platform drag API."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self.effect_allowed = "all"
        self.drop_effect = "none"

    def set_data(self, fmt: str, value: str) -> None:
        self._data[fmt] = value

    def get_data(self, fmt: str) -> str:
        return self._data.get(fmt, "")


class DropZone:
    """Node in a drop-zone subtree, used for pointer containment checks."""

    def __init__(self, name: str, parent: "DropZone | None" = None):
        self.name = name
        self.parent = parent

    def contains(self, other: "DropZone | None") -> bool:
        node = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def __repr__(self) -> str:
        return f"DropZone({self.name!r})"


class DragEvent:
    def __init__(
        self,
        data_transfer: DataTransfer | None = None,
        current_target: DropZone | None = None,
        related_target: DropZone | None = None,
    ):
        self.data_transfer = data_transfer
        self.current_target = current_target
        self.related_target = related_target
        self.default_prevented = False

    def prevent_default(self) -> None:
        self.default_prevented = True


class DragState(BaseModel):
    is_dragging: bool = False
    dragged_item: Any = None
    dragged_from: str | None = None
    drag_over_target: str | None = None


class DragDropController:
    """Pointer-event state machine: start -> over* -> (leave | drop) -> end."""

    def __init__(self) -> None:
        self._state = DragState()

    @property
    def drag_state(self) -> DragState:
        return self._state.model_copy()

    def start(self, event: DragEvent, item: Any, source: str) -> None:
        try:
            transfer = event.data_transfer
            if transfer is None:
                raise ValueError("drag event has no data transfer")
            transfer.effect_allowed = "move"
            transfer.set_data(PAYLOAD_FORMAT, json.dumps({"item": item, "source": source}, default=str))
            self._state = DragState(is_dragging=True, dragged_item=item, dragged_from=source)
        except Exception as e:
            logger.error(f"Drag start failed: {e}")
            self.end()

    def over(self, event: DragEvent, target: str) -> None:
        event.prevent_default()
        if event.data_transfer is not None:
            event.data_transfer.drop_effect = "move"
        if self._state.drag_over_target != target:
            self._state = self._state.model_copy(update={"drag_over_target": target})

    def leave(self, event: DragEvent) -> None:
        # Moving onto a child of the zone fires leave on the parent; ignore it
        zone = event.current_target
        if zone is not None and zone.contains(event.related_target):
            return
        self._state = self._state.model_copy(update={"drag_over_target": None})

    def _read_payload(self, event: DragEvent) -> tuple[Any, str | None]:
        try:
            raw = event.data_transfer.get_data(PAYLOAD_FORMAT) if event.data_transfer else ""
            payload = json.loads(raw)
            return payload["item"], payload["source"]
        except (ValueError, KeyError, TypeError) as e:
            logger.debug(f"Drag payload unreadable, using in-memory state: {e}")
            return self._state.dragged_item, self._state.dragged_from

    async def drop(self, event: DragEvent, target: str, on_drop: DropCallback) -> bool:
        """Resolve a drop. Returns True when `on_drop` was invoked and completed."""
        event.prevent_default()
        try:
            item, source = self._read_payload(event)
            if item is None:
                logger.error("Drop ignored: no dragged item")
                return False
            if source == target:
                return False

            result = on_drop(item, source, target)
            if inspect.isawaitable(result):
                await result
            return True
        except Exception as e:
            logger.error(f"Drop handler failed: {e}")
            return False
        finally:
            self._state = self._state.model_copy(update={"drag_over_target": None})

    def end(self) -> None:
        self._state = DragState()
