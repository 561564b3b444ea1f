"""Stateful asyncio client for the MPD text protocol.

The client keeps one connection open, mirrors the server state (status,
queue and stored playlists) through the idle notification mechanism and
raises events when the mirror changes. Commands are fire and forget: their
effect shows up as a state change once MPD reports it.

Example:
    async with MpdClient("192.168.1.100") as client:
        client.subscribe("StateChanged", lambda update: print(client.playstate))
        client.set_volume(0.5)
        client.play()
"""

import asyncio
import codecs
import logging
import re
from collections.abc import Callable, Mapping
from contextlib import suppress
from typing import Any

from mpdmirror.api.dispatcher import DEFAULT_BATCH_DELAY, CommandDispatcher, Ticket
from mpdmirror.api.events import EventDispatcher, EventHandler, EventType
from mpdmirror.api.processor import PendingQuery, ProcessorState, QueryCallback, ResponseProcessor
from mpdmirror.api.protocol import (
    MpdConnectionError,
    format_command,
    format_filter_command,
    normalize_key,
)
from mpdmirror.models.record import Record
from mpdmirror.models.song import Directory, PlaylistInfo, Song
from mpdmirror.models.songlist import Playlist, Queue
from mpdmirror.models.state import StateCache, StateSnapshot

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6600
DEFAULT_RECONNECT_INTERVAL = 3.0  # seconds, 0 disables reconnecting
CONNECT_TIMEOUT = 5.0

DIRECTORY_BOUNDARY = re.compile(r"^(file|directory|playlist)$")

TAG_TYPES = (
    "any",
    "artist",
    "album",
    "albumartist",
    "title",
    "track",
    "name",
    "genre",
    "date",
    "composer",
    "performer",
    "comment",
    "disc",
)

DirectoryEntry = Song | Directory | PlaylistInfo


def _directory_entry(record: Record) -> DirectoryEntry:
    if "file" in record:
        return Song.from_record(record)
    if "directory" in record:
        return Directory.from_record(record)
    return PlaylistInfo.from_record(record)


class MpdClient:
    """Async MPD client with a local mirror of the server state.

    The client reconnects on its own after the connection is lost, unless
    disconnect() was called. Everything it knows is reset on disconnect and
    reloaded after the next greeting.

    Attributes:
        host: MPD server hostname or IP.
        port: MPD server port (default 6600).
    """

    _READ_CHUNK_SIZE: int = 4096

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        """Initialize the client.

        Args:
            host: MPD server hostname or IP.
            port: MPD server port.
            reconnect_interval: Seconds to wait before reconnecting after the
                connection was lost. 0 disables reconnecting.
            batch_delay: Seconds commands are collected before being sent.
            timeout: Connection timeout in seconds.
        """
        self.host = host
        self.port = port
        self._reconnect_interval = reconnect_interval
        self._timeout = timeout

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._drain_task: asyncio.Task[None] | None = None
        self._closing = False

        self._partial = ""
        self._lines: list[str] = []

        self._events = EventDispatcher()
        self._cache = StateCache()
        self._dispatcher = CommandDispatcher(
            self._write,
            delay=batch_delay,
            gate=lambda: self._processor.is_idle,
            on_flush=lambda batch, size: self._processor.frame_sent(batch, size),
        )
        self._processor = ResponseProcessor(
            self._write,
            self._events,
            self._cache,
            queue_editor=self,
            on_idle=self._dispatcher.release,
        )

    async def __aenter__(self) -> "MpdClient":
        """Enter async context (connect)."""
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context (disconnect)."""
        await self.disconnect()

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection.

        A failed attempt is handled like a lost connection: Disconnect is
        raised and a reconnect is scheduled. No exception propagates.
        """
        if self._writer is not None:
            return

        self._closing = False
        self._cancel_reconnect()
        logger.info("Connecting to MPD at %s:%d", self.host, self.port)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self._timeout,
            )
        except (OSError, TimeoutError) as e:
            logger.warning("Failed to connect to %s:%d: %s", self.host, self.port, e)
            self._handle_close()
            return

        if self._closing:
            # disconnect() ran while the connection was being opened
            logger.info("Connect to %s:%d abandoned", self.host, self.port)
            writer.close()
            return

        self._reader = reader
        self._writer = writer
        logger.info("Connected to MPD at %s:%d", self.host, self.port)
        self._events.emit(EventType.CONNECT)
        self._processor.start()
        self._receive_task = asyncio.create_task(self._receive_loop(reader))

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True
        self._cancel_reconnect()

        task = self._receive_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        writer = self._writer
        if writer is None:
            return
        self._handle_close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
        except (OSError, TimeoutError) as e:
            logger.debug("Expected error during MPD disconnect: %s", e)

    async def _receive_loop(self, reader: asyncio.StreamReader) -> None:
        """Background task feeding received text to the processor."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await reader.read(self._READ_CHUNK_SIZE)
                if not chunk:
                    logger.info("MPD closed the connection")
                    break
                self._on_data(decoder.decode(chunk))
        except asyncio.CancelledError:
            return
        except OSError as e:
            logger.warning("Connection to %s:%d lost: %s", self.host, self.port, e)
        except Exception as e:
            logger.exception("Failed to process MPD data")
            self._events.emit(EventType.ERROR, e)
        self._handle_close()

    def _on_data(self, text: str) -> None:
        """Split text into lines and process them until nothing changes."""
        *complete, self._partial = (self._partial + text).split("\n")
        for line in complete:
            logger.debug("<- %s", line)
        self._lines.extend(complete)

        while self._lines:
            before = (len(self._lines), self._processor.state)
            self._processor.process(self._lines)
            if (len(self._lines), self._processor.state) == before:
                break

    def _write(self, data: str) -> None:
        writer = self._writer
        if writer is None:
            logger.debug("Not connected, dropping %r", data)
            return
        for line in data.splitlines():
            logger.debug("-> %s", line)
        writer.write(data.encode("utf-8"))
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain(writer))

    async def _drain(self, writer: asyncio.StreamWriter) -> None:
        """Wait until the transport buffer is flushed."""
        try:
            await writer.drain()
        except OSError as e:
            # The receive loop sees the same failure and closes.
            logger.debug("Drain failed: %s", e)

    def _handle_close(self) -> None:
        """Common cleanup for every way a connection ends."""
        dropped = self._dispatcher.cancel()
        if dropped:
            logger.warning("Dropped %d unsent command(s)", dropped)
        self._processor.reset()
        self._partial = ""
        self._lines.clear()

        if self._writer is not None:
            self._writer.close()
        self._writer = None
        self._reader = None
        self._receive_task = None
        if self._drain_task is not None:
            self._drain_task.cancel()
            self._drain_task = None

        logger.info("Disconnected from MPD at %s:%d", self.host, self.port)
        self._events.emit(EventType.DISCONNECT)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing or self._reconnect_interval <= 0:
            return
        self._cancel_reconnect()
        logger.debug("Reconnecting in %.1fs", self._reconnect_interval)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self._reconnect_interval, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self._reconnect_task = asyncio.create_task(self.connect())

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def subscribe(self, name: EventType | str, handler: EventHandler) -> Callable[[], None]:
        """Add an event handler.

        Args:
            name: One of Error, Event, UnhandledEvent, DatabaseChanging,
                DataLoaded, StateChanged, QueueChanged, PlaylistsChanged,
                PlaylistChanged, Connect, Disconnect.
            handler: Called with the event payload on the next loop turn.

        Returns:
            A callable that removes the handler again.

        Raises:
            ValueError: If the event name is not supported.
        """
        return self._events.subscribe(name, handler)

    def unsubscribe(self, name: EventType | str, handler: EventHandler) -> bool:
        """Remove an event handler."""
        return self._events.unsubscribe(name, handler)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def issue(self, command: str, *args: object) -> Ticket:
        """Send a command with the next batch.

        Raises:
            MpdConnectionError: If not connected.
        """
        if self._writer is None:
            raise MpdConnectionError(f"Not connected to {self.host}:{self.port}")
        return self._dispatcher.issue(format_command(command, *args))

    def _issue_formatted(self, command: str) -> Ticket:
        if self._writer is None:
            raise MpdConnectionError(f"Not connected to {self.host}:{self.port}")
        return self._dispatcher.issue(command)

    def _query(
        self,
        command: str,
        on_done: QueryCallback,
        boundary: re.Pattern[str] | None = None,
        transform: Callable[[list[Record]], Any] | None = None,
        event: EventType | None = None,
    ) -> None:
        ticket = self._issue_formatted(command)
        self._processor.expect(
            PendingQuery(
                command=command,
                ticket=ticket,
                on_done=on_done,
                boundary=boundary,
                transform=transform,
                event=event,
            )
        )

    # -------------------------------------------------------------------------
    # State accessors
    # -------------------------------------------------------------------------

    def get_state(self) -> StateSnapshot:
        """Return a copy of everything the client knows about the server."""
        return self._cache.snapshot()

    @property
    def protocol_version(self) -> str | None:
        """Return the protocol version from the greeting."""
        return self._cache.state.version

    @property
    def is_connected(self) -> bool:
        """Return True if connected to MPD."""
        return self._cache.state.connected

    @property
    def processor_state(self) -> ProcessorState:
        """Return what the client waits for right now."""
        return self._processor.state

    @property
    def playstate(self) -> str | None:
        """Return "play", "pause" or "stop"."""
        return self._cache.state.playstate

    @property
    def volume(self) -> float | None:
        """Return the volume from 0.0 to 1.0."""
        return self._cache.state.volume

    @property
    def is_repeat(self) -> bool:
        """Return True in repeat mode."""
        return self._cache.state.repeat is True

    @property
    def is_single(self) -> bool:
        """Return True in single mode."""
        return self._cache.state.single is True

    @property
    def is_consume(self) -> bool:
        """Return True in consume mode."""
        return self._cache.state.consume is True

    @property
    def is_random(self) -> bool:
        """Return True in random mode."""
        return self._cache.state.random is True

    @property
    def mix_ramp_threshold(self) -> float | None:
        """Return the MixRamp threshold in dB."""
        return self._cache.state.mix_ramp_threshold

    @property
    def current_song(self) -> Song | None:
        """Return the queue song being played."""
        return self._cache.state.get_current_song()

    def current_song_time(self) -> float:
        """Return the estimated elapsed time of the current song."""
        return self._cache.current_song_time()

    @property
    def current_song_id(self) -> int | None:
        """Return the queue id of the current song."""
        return self._cache.state.current_song.id

    @property
    def current_song_queue_index(self) -> int | None:
        """Return the queue position of the current song."""
        return self._cache.state.current_song.queue_idx

    @property
    def next_song(self) -> Song | None:
        """Return the queue song that plays next."""
        return self._cache.state.get_next_song()

    @property
    def next_song_id(self) -> int | None:
        """Return the queue id of the song that plays next."""
        return self._cache.state.next_song.id

    @property
    def next_song_queue_index(self) -> int | None:
        """Return the queue position of the song that plays next."""
        return self._cache.state.next_song.queue_idx

    @property
    def queue(self) -> Queue | None:
        """Return the play queue."""
        return self._cache.state.current_queue

    @property
    def queue_version(self) -> int | None:
        """Return the queue version; it changes with every queue edit."""
        return self._cache.state.queue_version

    @property
    def playlist_names(self) -> list[str]:
        """Return the names of all stored playlists."""
        return self._cache.state.playlist_names

    def get_queue_song(self, song: Song) -> Song | None:
        """Return the queue entry for the same file as ``song``."""
        queue = self._cache.state.current_queue
        if queue is None:
            return None
        return queue.find_by_path(song.path)

    @staticmethod
    def get_tag_types() -> list[str]:
        """Return the tag names usable in searches.

        Servers may accept more (e.g. MusicBrainz tags).
        """
        return list(TAG_TYPES)

    # -------------------------------------------------------------------------
    # On-demand queries
    # -------------------------------------------------------------------------

    def get_playlist(self, name: str, on_done: Callable[[Playlist | None], None]) -> None:
        """Fetch the songs of a stored playlist.

        Raises PlaylistChanged with the playlist, then calls ``on_done``
        with it. An unknown name calls ``on_done(None)`` right away.
        """
        info = next((p for p in self._cache.state.playlists if p.name == name), None)
        if info is None:
            on_done(None)
            return

        def build(records: list[Record]) -> Playlist:
            return Playlist(
                name=info.name,
                last_modified=info.last_modified,
                songs=tuple(Song.from_record(record) for record in records),
                editor=self,
            )

        self._query(
            format_command("listplaylistinfo", name),
            on_done,
            transform=build,
            event=EventType.PLAYLIST_CHANGED,
        )

    def get_directory_contents(self, path: str, on_done: Callable[[list[DirectoryEntry]], None]) -> None:
        """List a database directory ("" is the music root)."""
        self._query(
            format_command("lsinfo", path),
            on_done,
            boundary=DIRECTORY_BOUNDARY,
            transform=lambda records: [_directory_entry(record) for record in records],
        )

    def tag_search(
        self,
        tag: str,
        params: Mapping[str, str],
        on_done: Callable[[list[Any]], None],
    ) -> None:
        """Find the values of ``tag`` on songs matching ``params``.

        Example:
            client.tag_search("album", {"artist": "Bearsuit"}, print)
        """
        key = normalize_key(tag)
        self._query(
            format_filter_command("list", tag, params=params),
            on_done,
            transform=lambda records: [record.get(key) for record in records],
        )

    def search(self, params: Mapping[str, str], on_done: Callable[[list[Song]], None]) -> None:
        """Find songs whose tags contain the given values."""
        self._query(
            format_filter_command("search", params=params),
            on_done,
            transform=lambda records: [Song.from_record(record) for record in records],
        )

    def search_count(self, params: Mapping[str, str], on_done: Callable[[Record | None], None]) -> None:
        """Count the songs a search would return ("songs", "playtime")."""
        self._query(
            format_filter_command("count", params=params),
            on_done,
            transform=lambda records: records[0] if records else None,
        )

    # -------------------------------------------------------------------------
    # Playback options
    # -------------------------------------------------------------------------

    def enable_play_consume(self) -> None:
        """Remove songs from the queue once played."""
        self.issue("consume", 1)

    def disable_play_consume(self) -> None:
        """Keep played songs on the queue."""
        self.issue("consume", 0)

    def enable_crossfade(self) -> None:
        """Turn crossfading on."""
        self.issue("crossfade", 1)

    def disable_crossfade(self) -> None:
        """Turn crossfading off."""
        self.issue("crossfade", 0)

    def enable_random_play(self) -> None:
        """Play the queue in random order."""
        self.issue("random", 1)

    def disable_random_play(self) -> None:
        """Play the queue in order."""
        self.issue("random", 0)

    def enable_repeat_play(self) -> None:
        """Start over when the queue ends."""
        self.issue("repeat", 1)

    def disable_repeat_play(self) -> None:
        """Stop when the queue ends."""
        self.issue("repeat", 0)

    def enable_single_play(self) -> None:
        """Stop after the current song."""
        self.issue("single", 1)

    def disable_single_play(self) -> None:
        """Continue after the current song."""
        self.issue("single", 0)

    def set_mix_ramp_db(self, decibels: float) -> None:
        """Set the MixRamp threshold."""
        self.issue("mixrampdb", decibels)

    def set_mix_ramp_delay(self, seconds: float | str) -> None:
        """Set the MixRamp delay; "nan" falls back to crossfading."""
        self.issue("mixrampdelay", seconds)

    def set_volume(self, volume: float) -> None:
        """Set the volume from 0.0 to 1.0."""
        volume = max(0.0, min(1.0, volume))
        self.issue("setvol", round(volume * 100))

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def play(self, queue_position: int | None = None) -> None:
        """Start playing, optionally at a queue position."""
        if queue_position is None:
            self.issue("play")
        else:
            self.issue("play", queue_position)

    def play_by_id(self, song_id: int) -> None:
        """Start playing the queue song with the given id."""
        self.issue("playid", song_id)

    def pause(self, do_pause: bool = True) -> None:
        """Pause, or resume with ``do_pause=False``."""
        self.issue("pause", 1 if do_pause else 0)

    def next(self) -> None:
        """Skip to the next song."""
        self.issue("next")

    def previous(self) -> None:
        """Go back to the previous song."""
        self.issue("previous")

    def seek(self, time: float | str) -> None:
        """Seek within the current song.

        Args:
            time: Seconds from the start, or a signed string ("+5", "-2.5")
                for a relative seek.
        """
        song_id = self._cache.state.current_song.id
        if song_id is None:
            logger.warning("Cannot seek, no current song")
            return
        self.issue("seekid", song_id, time)

    def stop(self) -> None:
        """Stop playback."""
        self.issue("stop")

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    def add_song_to_queue_by_file(self, path: str) -> None:
        """Append a file or a whole directory to the queue."""
        self.issue("add", path)

    def clear_queue(self) -> None:
        """Remove every song from the queue."""
        self.issue("clear")

    def remove_song_from_queue_by_position(self, position: int) -> None:
        """Remove the queue song at a position."""
        self.issue("delete", position)

    def remove_songs_from_queue_by_range(self, start: int, end: int) -> None:
        """Remove the queue songs from ``start`` up to, not including, ``end``."""
        self.issue("delete", f"{start}:{end}")

    def remove_song_from_queue_by_id(self, song_id: int) -> None:
        """Remove the queue song with the given id."""
        self.issue("deleteid", song_id)

    def move_song_on_queue_by_position(self, position: int, to: int) -> None:
        """Move the queue song at ``position`` to ``to``."""
        self.issue("move", position, to)

    def move_songs_on_queue_by_position(self, start: int, end: int, to: int) -> None:
        """Move the queue songs from ``start`` up to, not including, ``end``."""
        self.issue("move", f"{start}:{end}", to)

    def move_song_on_queue_by_id(self, song_id: int, to: int) -> None:
        """Move the queue song with the given id to ``to``."""
        self.issue("moveid", song_id, to)

    def shuffle_queue(self) -> None:
        """Shuffle the queue."""
        self.issue("shuffle")

    def swap_songs_on_queue_by_position(self, first: int, second: int) -> None:
        """Swap two queue songs by position."""
        self.issue("swap", first, second)

    def swap_songs_on_queue_by_id(self, first: int, second: int) -> None:
        """Swap two queue songs by id."""
        self.issue("swapid", first, second)

    def append_playlist_to_queue(self, playlist: str) -> None:
        """Add the songs of a stored playlist to the end of the queue."""
        self.issue("load", playlist)

    def load_playlist_into_queue(self, playlist: str) -> None:
        """Replace the queue with a stored playlist."""
        self.issue("clear")
        self.issue("load", playlist)

    def save_queue_to_playlist(self, playlist: str) -> None:
        """Store the queue as a playlist."""
        self.issue("save", playlist)

    # -------------------------------------------------------------------------
    # Stored playlists
    # -------------------------------------------------------------------------

    def add_song_to_playlist_by_file(self, playlist: str, path: str) -> None:
        """Append a file to a stored playlist."""
        self.issue("playlistadd", playlist, path)

    def clear_playlist(self, playlist: str) -> None:
        """Remove every song from a stored playlist."""
        self.issue("playlistclear", playlist)

    def remove_song_from_playlist_by_position(self, playlist: str, position: int) -> None:
        """Remove the song at a position from a stored playlist."""
        self.issue("playlistdelete", playlist, position)

    def move_song_on_playlist_by_position(self, playlist: str, position: int, to: int) -> None:
        """Move a song inside a stored playlist."""
        self.issue("playlistmove", playlist, position, to)

    def rename_playlist(self, playlist: str, new_name: str) -> None:
        """Rename a stored playlist."""
        self.issue("rename", playlist, new_name)

    def delete_playlist(self, playlist: str) -> None:
        """Delete a stored playlist."""
        self.issue("rm", playlist)

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------

    def update_database(self) -> None:
        """Ask MPD to rescan the music directory."""
        self.issue("update")
