"""The client's mirror of MPD server state.

StateCache holds the single live StateSnapshot. Only the protocol engine
writes to it; everybody else gets copies from snapshot().
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from mpdmirror.models.record import Record, RecordValue
from mpdmirror.models.song import PlaylistInfo, Song
from mpdmirror.models.songlist import Queue

logger = logging.getLogger(__name__)

Converter = Callable[[RecordValue], Any]


@dataclass(frozen=True)
class SongRef:
    """Reference from the player status to a queue entry.

    Attributes:
        queue_idx: Position on the queue.
        elapsed_time: Seconds played (current song only).
        id: Queue song id.
    """

    queue_idx: int | None = None
    elapsed_time: float | None = None
    id: int | None = None


@dataclass
class StateSnapshot:
    """Everything the client knows about the server.

    Attributes:
        version: Protocol version from the greeting, None when disconnected.
        connected: Whether the connection is up.
        playstate: "play", "pause" or "stop".
        volume: Volume from 0.0 to 1.0, None if the server has no mixer.
        repeat: Repeat mode.
        single: Single mode.
        consume: Consume mode.
        random: Random mode.
        mix_ramp_threshold: MixRamp threshold in dB.
        current_song: The song being played.
        next_song: The song that plays next.
        current_queue: The play queue.
        queue_version: Queue version counter.
        playlists: Stored playlists.
        extras: Other status fields (xfade, bitrate, audio, ...).
    """

    version: str | None = None
    connected: bool = False
    playstate: str | None = None
    volume: float | None = None
    repeat: bool | None = None
    single: bool | None = None
    consume: bool | None = None
    random: bool | None = None
    mix_ramp_threshold: float | None = None
    current_song: SongRef = field(default_factory=SongRef)
    next_song: SongRef = field(default_factory=SongRef)
    current_queue: Queue | None = None
    queue_version: int | None = None
    playlists: tuple[PlaylistInfo, ...] = ()
    extras: dict[str, RecordValue] = field(default_factory=dict)

    def copy(self) -> "StateSnapshot":
        """Return a copy that shares no mutable data with this one."""
        return replace(self, extras=dict(self.extras))

    def song_on_queue(self, index: int | None) -> Song | None:
        """Return the queue song at a position."""
        if self.current_queue is None:
            return None
        return self.current_queue.song_at(index)

    def get_current_song(self) -> Song | None:
        """Return the queue song being played."""
        return self.song_on_queue(self.current_song.queue_idx)

    def get_next_song(self) -> Song | None:
        """Return the queue song that plays next."""
        return self.song_on_queue(self.next_song.queue_idx)

    @property
    def playlist_names(self) -> list[str]:
        """Return the names of the stored playlists."""
        return [playlist.name for playlist in self.playlists]


def _number(value: RecordValue) -> float | None:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _integer(value: RecordValue) -> int | None:
    if isinstance(value, int):
        return value
    number = _number(value)
    return int(number) if number is not None else None


def _flag(value: RecordValue) -> bool:
    # "single" may also be "oneshot".
    return value not in (0, "0", "")


def _percent(value: RecordValue) -> float | None:
    number = _number(value)
    if number is None or number < 0:
        return None
    return number / 100


# Status key -> (snapshot field, converter). Dotted targets go into SongRefs.
STATUS_FIELDS: dict[str, tuple[str, Converter]] = {
    "state": ("playstate", str),
    "volume": ("volume", _percent),
    "repeat": ("repeat", _flag),
    "single": ("single", _flag),
    "consume": ("consume", _flag),
    "random": ("random", _flag),
    "mixrampdb": ("mix_ramp_threshold", _number),
    "playlist": ("queue_version", _integer),
    "song": ("current_song.queue_idx", _integer),
    "elapsed": ("current_song.elapsed_time", _number),
    "songid": ("current_song.id", _integer),
    "nextsong": ("next_song.queue_idx", _integer),
    "nextsongid": ("next_song.id", _integer),
}

_SONG_REFS = ("current_song", "next_song")


def normalize_status(record: Record) -> dict[str, Any]:
    """Translate a status record into snapshot fields.

    The song references are always rebuilt: a missing "song" means nothing
    is selected. Keys without a mapping are collected in "extras".

    Args:
        record: Parsed reply of the status command.

    Returns:
        Mapping of StateSnapshot attribute names to new values.
    """
    update: dict[str, Any] = {}
    refs: dict[str, dict[str, Any]] = {name: {} for name in _SONG_REFS}
    extras: dict[str, RecordValue] = {}

    for key, value in record.items():
        spec = STATUS_FIELDS.get(key)
        if spec is None:
            extras[key] = value
            continue
        target, convert = spec
        if "." in target:
            ref, attr = target.split(".", 1)
            refs[ref][attr] = convert(value)
        else:
            update[target] = convert(value)

    for ref, values in refs.items():
        update[ref] = SongRef(**values)
    update["extras"] = extras
    return update


class StateCache:
    """Holder of the live StateSnapshot."""

    def __init__(self) -> None:
        self._state = StateSnapshot()
        self._status_time = time.monotonic()

    @property
    def state(self) -> StateSnapshot:
        """Return the live snapshot. Do not modify it."""
        return self._state

    def snapshot(self) -> StateSnapshot:
        """Return a copy of the current state."""
        return self._state.copy()

    def mark_connected(self, _: Any = None) -> None:
        """Record that the transport is open."""
        self._state.connected = True

    def reset(self, _: Any = None) -> None:
        """Forget connection specific state after a disconnect."""
        self._state.connected = False
        self._state.version = None

    def set_version(self, version: str) -> None:
        """Store the protocol version from the greeting."""
        self._state.version = version

    def merge_status(self, update: Mapping[str, Any]) -> None:
        """Apply fields produced by normalize_status()."""
        for name, value in update.items():
            if not hasattr(self._state, name):
                logger.debug("Ignoring unknown state field %s", name)
                continue
            if isinstance(value, dict):
                # The update is also the StateChanged payload.
                value = dict(value)
            setattr(self._state, name, value)
        self._status_time = time.monotonic()

    def set_queue(self, queue: Queue) -> None:
        """Replace the mirrored queue."""
        self._state.current_queue = queue

    def set_playlists(self, playlists: tuple[PlaylistInfo, ...]) -> None:
        """Replace the list of stored playlists."""
        self._state.playlists = tuple(playlists)

    def current_song_time(self, now: float | None = None) -> float:
        """Estimate the elapsed time of the current song.

        While playing, the time since the last status reply is added to
        the reported elapsed time, capped at the song duration.
        """
        song = self._state.get_current_song()
        if song is None:
            return 0.0
        elapsed = self._state.current_song.elapsed_time or 0.0
        if self._state.playstate == "play":
            current = time.monotonic() if now is None else now
            elapsed += max(0.0, current - self._status_time)
        duration = song.duration
        return elapsed if duration is None else min(elapsed, duration)
