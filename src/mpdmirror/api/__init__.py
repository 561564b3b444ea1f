"""API client for the MPD text protocol."""

from mpdmirror.api.client import MpdClient
from mpdmirror.api.events import EventType, MpdEvent
from mpdmirror.api.protocol import MpdConnectionError, MpdError

__all__ = [
    "MpdClient",
    "EventType",
    "MpdEvent",
    "MpdError",
    "MpdConnectionError",
]
