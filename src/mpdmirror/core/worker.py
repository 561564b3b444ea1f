"""QThread worker for running the async MpdClient in a Qt application.

Qt widgets must run in the main thread, but the MpdClient uses asyncio.
This worker runs the asyncio event loop in a background thread and bridges
client events to the main thread via Qt signals.
"""

import asyncio
import logging
from typing import Any

from PySide6.QtCore import QThread, Signal

from mpdmirror.api.client import MpdClient
from mpdmirror.api.events import EventType, MpdEvent
from mpdmirror.api.protocol import MpdConnectionError
from mpdmirror.core.config import ClientSettings

logger = logging.getLogger(__name__)


class MpdWorker(QThread):
    """Background thread worker for the MPD client.

    Runs the async MpdClient in a QThread so the main Qt thread stays
    responsive. Client events are re-emitted as Qt signals; commands are
    marshalled onto the worker's event loop.

    Example:
        worker = MpdWorker(ClientSettings(host="192.168.1.100"))
        worker.state_changed.connect(lambda update: print(update))
        worker.start()
        worker.call("set_volume", 0.5)
    """

    # Connection state signals
    connected = Signal()
    disconnected = Signal()

    # Data signals
    state_changed = Signal(object)  # dict of StateSnapshot fields
    queue_changed = Signal(object)  # Queue
    playlists_changed = Signal(object)  # tuple[PlaylistInfo, ...]
    playlist_changed = Signal(object)  # Playlist
    data_loaded = Signal(object)  # StateSnapshot
    database_changing = Signal()
    event_received = Signal(object)  # MpdEvent

    # Error signal
    error_occurred = Signal(object)  # raw ACK line or Exception

    def __init__(self, settings: ClientSettings | None = None) -> None:
        """Initialize the worker.

        Args:
            settings: Connection settings (defaults to localhost:6600).
        """
        super().__init__()
        self._settings = settings or ClientSettings()
        self._client: MpdClient | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def settings(self) -> ClientSettings:
        """Return the connection settings."""
        return self._settings

    @property
    def client(self) -> MpdClient | None:
        """Return the client while the worker runs.

        Only touch it from the worker thread (e.g. inside call()).
        """
        return self._client

    @property
    def is_connected(self) -> bool:
        """Return True if client is connected."""
        return self._client is not None and self._client.is_connected

    def stop(self) -> None:
        """Signal the worker to stop (called from main thread)."""
        loop = self._loop
        if loop is not None and loop.is_running() and self._stop_event is not None:
            loop.call_soon_threadsafe(self._stop_event.set)

    def call(self, method: str, *args: Any) -> None:
        """Invoke a client method on the worker loop.

        Thread-safe call from main thread. Errors are emitted via the
        error_occurred signal.

        Args:
            method: Name of an MpdClient method, e.g. "play" or "set_volume".
            *args: Arguments for the method.
        """
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self._safe_call, method, args)

    def _safe_call(self, method: str, args: tuple[Any, ...]) -> None:
        if self._client is None:
            return
        try:
            getattr(self._client, method)(*args)
        except (MpdConnectionError, AttributeError, TypeError, ValueError) as e:
            logger.warning("Call %s failed: %s", method, e)
            self.error_occurred.emit(e)

    def run(self) -> None:
        """Run the worker thread (entry point)."""
        # Create new event loop for this thread
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        try:
            self._loop.run_until_complete(self._main())
        except Exception as e:
            logger.exception("MPD worker failed")
            self.error_occurred.emit(e)
        finally:
            self._loop.close()
            self._loop = None
            self._client = None

    async def _main(self) -> None:
        """Connect and keep the client running until stop() is called."""
        self._stop_event = asyncio.Event()
        settings = self._settings
        client = MpdClient(
            settings.host,
            settings.port,
            reconnect_interval=settings.reconnect_interval,
            batch_delay=settings.batch_delay,
            timeout=settings.timeout,
        )
        self._client = client
        self._bind(client)

        await client.connect()
        try:
            await self._stop_event.wait()
        finally:
            await client.disconnect()

    def _bind(self, client: MpdClient) -> None:
        """Forward client events to Qt signals."""
        client.subscribe(EventType.CONNECT, lambda _: self.connected.emit())
        client.subscribe(EventType.DISCONNECT, lambda _: self.disconnected.emit())
        client.subscribe(EventType.STATE_CHANGED, self.state_changed.emit)
        client.subscribe(EventType.QUEUE_CHANGED, self.queue_changed.emit)
        client.subscribe(EventType.PLAYLISTS_CHANGED, self.playlists_changed.emit)
        client.subscribe(EventType.PLAYLIST_CHANGED, self.playlist_changed.emit)
        client.subscribe(EventType.DATA_LOADED, self.data_loaded.emit)
        client.subscribe(EventType.DATABASE_CHANGING, lambda _: self.database_changing.emit())
        client.subscribe(EventType.ERROR, self.error_occurred.emit)
        client.subscribe(EventType.EVENT, self._on_event)

    def _on_event(self, event: MpdEvent) -> None:
        self.event_received.emit(event)
