"""Cache hit/miss notifications for application listeners."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from pydantic import BaseModel, Field

from shared.constants import TileEvent

logger = logging.getLogger(__name__)

__all__ = ['EventNotifier', 'TileEvent', 'TileEventData', 'TileListener']


class TileEventData(BaseModel):
    """Payload of a tile cache event."""

    model_config = {'arbitrary_types_allowed': True}

    event: TileEvent
    tile: object
    url: str
    timestamp: float = Field(default_factory=time.time)


TileListener = Callable[[TileEventData], None]


class EventNotifier:
    """Fire-and-forget event dispatch.

    Listeners are plain callables registered per event. A failing listener is
    logged and the remaining listeners still run; emit() never raises.
    """

    def __init__(self) -> None:
        self._listeners: dict[TileEvent, list[TileListener]] = {
            event: [] for event in TileEvent
        }

    def on(self, event: TileEvent | str, listener: TileListener) -> None:
        """Register a listener for an event."""
        listeners = self._listeners[TileEvent(event)]
        if listener not in listeners:
            listeners.append(listener)
            logger.debug('Added listener for %s', TileEvent(event).value)

    def off(self, event: TileEvent | str, listener: TileListener) -> None:
        """Remove a listener."""
        listeners = self._listeners[TileEvent(event)]
        if listener in listeners:
            listeners.remove(listener)
            logger.debug('Removed listener for %s', TileEvent(event).value)

    def listeners(self, event: TileEvent | str) -> list[TileListener]:
        return list(self._listeners[TileEvent(event)])

    def emit(self, event: TileEvent, tile: object, url: str) -> None:
        """Notify listeners of ``event`` about ``tile``."""
        event_data = TileEventData(event=event, tile=tile, url=url)
        for listener in list(self._listeners[event]):
            try:
                listener(event_data)
            except Exception:
                logger.exception('Error in %s listener %r', event.value, listener)
