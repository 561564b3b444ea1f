"""Stateful asyncio client for the Music Player Daemon protocol."""

from mpdmirror.api import MpdClient, MpdConnectionError, MpdError

__version__ = "0.1.0"

__all__ = ["MpdClient", "MpdConnectionError", "MpdError", "__version__"]
