"""Event subscription and delivery for the MPD client.

Events are delivered to external handlers on the next turn of the event
loop, so a handler never runs while the protocol engine is half way through
an update. An internal pre-handler per event runs synchronously first and
keeps the state mirror current before anybody looks at it.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class EventType(StrEnum):
    """Events a client can subscribe to."""

    ERROR = "Error"
    EVENT = "Event"
    UNHANDLED = "UnhandledEvent"
    DATABASE_CHANGING = "DatabaseChanging"
    DATA_LOADED = "DataLoaded"
    STATE_CHANGED = "StateChanged"
    QUEUE_CHANGED = "QueueChanged"
    PLAYLISTS_CHANGED = "PlaylistsChanged"
    PLAYLIST_CHANGED = "PlaylistChanged"
    CONNECT = "Connect"
    DISCONNECT = "Disconnect"


@dataclass(frozen=True)
class MpdEvent:
    """Envelope passed to Event and UnhandledEvent subscribers.

    Attributes:
        type: The event that was raised.
        data: The payload it was raised with.
    """

    type: EventType
    data: Any = None


def to_event_type(name: EventType | str) -> EventType:
    """Validate an event name.

    Raises:
        ValueError: If the name is not a supported event.
    """
    try:
        return EventType(name)
    except ValueError:
        raise ValueError(f"'{name}' is not a supported event") from None


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class EventDispatcher:
    """Registry of event handlers with deferred, isolated delivery.

    Example:
        events = EventDispatcher()
        events.subscribe("StateChanged", lambda update: print(update))
        events.emit(EventType.STATE_CHANGED, {"volume": 0.5})
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize the dispatcher.

        Args:
            loop: Loop used for deferred delivery. Defaults to the running
                loop at emit time; handlers run inline when there is none.
        """
        self._loop = loop
        self._handlers: dict[EventType, list[EventHandler]] = {}
        self._internal: dict[EventType, EventHandler] = {}

    def subscribe(self, name: EventType | str, handler: EventHandler) -> Callable[[], None]:
        """Add an external handler.

        Args:
            name: Event name, an EventType or its string value.
            handler: Called with the event payload.

        Returns:
            A callable that removes the handler again.

        Raises:
            ValueError: If the event name is not supported.
        """
        event_type = to_event_type(name)
        self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, name: EventType | str, handler: EventHandler) -> bool:
        """Remove an external handler. Returns True if it was subscribed."""
        handlers = self._handlers.get(to_event_type(name), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def set_internal_handler(self, name: EventType | str, handler: EventHandler | None) -> None:
        """Install (or clear) the synchronous pre-handler for an event."""
        event_type = to_event_type(name)
        if handler is None:
            self._internal.pop(event_type, None)
        else:
            self._internal[event_type] = handler

    def has_subscribers(self, name: EventType | str) -> bool:
        """Return True if an external handler listens to the event."""
        return bool(self._handlers.get(to_event_type(name)))

    def emit(self, name: EventType | str, data: Any = None) -> None:
        """Raise an event.

        Runs the internal pre-handler, schedules the external handlers (or
        the UnhandledEvent handlers if there are none) and re-raises the
        event as a generic Event.
        """
        event_type = to_event_type(name)
        logger.debug("Event %s", event_type)

        internal = self._internal.get(event_type)
        if internal is not None:
            try:
                internal(data)
            except Exception as e:  # noqa: BLE001
                logger.exception("Internal handler for %s failed", event_type)
                if event_type is not EventType.ERROR:
                    self.emit(EventType.ERROR, e)

        handlers = self._handlers.get(event_type)
        if handlers:
            for handler in list(handlers):
                self._schedule(event_type, handler, data)
        elif event_type is not EventType.EVENT:
            for handler in list(self._handlers.get(EventType.UNHANDLED, [])):
                self._schedule(EventType.UNHANDLED, handler, MpdEvent(event_type, data))

        if event_type is not EventType.EVENT:
            self.emit(EventType.EVENT, MpdEvent(event_type, data))

    def _schedule(self, event_type: EventType, handler: EventHandler, payload: Any) -> None:
        loop = self._loop or _running_loop()
        if loop is None or loop.is_closed():
            self._deliver(event_type, handler, payload)
        else:
            loop.call_soon(self._deliver, event_type, handler, payload)

    def _deliver(self, event_type: EventType, handler: EventHandler, payload: Any) -> None:
        try:
            handler(payload)
        except Exception as e:  # noqa: BLE001
            logger.exception("Handler for %s failed", event_type)
            # A failing error handler must not feed itself.
            carries_error = isinstance(payload, MpdEvent) and payload.type is EventType.ERROR
            if event_type is not EventType.ERROR and not carries_error:
                self.emit(EventType.ERROR, e)
