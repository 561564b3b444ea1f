"""Song, directory and stored playlist entries from MPD."""

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any

from mpdmirror.models.record import Record, RecordValue


def _freeze(record: Record) -> Record:
    return MappingProxyType(dict(record))


def _text(value: RecordValue | None) -> str | None:
    # Tags like "Title: 1999" are parsed as numbers.
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class Song:
    """A song from the database, a search result or a songlist.

    Songs that come from the queue carry the queue's persistent song id in
    ``queue_id``; a database song has none. Two Song objects refer to the
    same file when their paths are equal.

    Attributes:
        metadata: Read-only record as parsed from the server.
        queue_id: MPD song id while the song is on the queue, else None.
    """

    metadata: Record
    queue_id: int | None = None

    @classmethod
    def from_record(cls, record: Record) -> "Song":
        """Create a database song from a parsed record."""
        return cls(metadata=_freeze(record))

    @classmethod
    def from_queue_record(cls, record: Record) -> "Song":
        """Create a queue song; the "id" field becomes its queue identity."""
        song_id = record.get("id")
        return cls(
            metadata=_freeze(record),
            queue_id=song_id if isinstance(song_id, int) else None,
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Return a raw metadata value."""
        return self.metadata.get(key, default)

    @property
    def path(self) -> str:
        """Return the file path relative to the music directory."""
        return str(self.metadata.get("file", ""))

    @property
    def title(self) -> str | None:
        """Return the title tag."""
        return _text(self.metadata.get("title"))

    @property
    def artist(self) -> str | None:
        """Return the artist tag."""
        return _text(self.metadata.get("artist"))

    @property
    def album(self) -> str | None:
        """Return the album tag."""
        return _text(self.metadata.get("album"))

    @property
    def track(self) -> str | None:
        """Return the track tag ("3" or "3/12")."""
        return _text(self.metadata.get("track"))

    @property
    def genre(self) -> str | None:
        """Return the genre tag."""
        return _text(self.metadata.get("genre"))

    @property
    def disc(self) -> str | None:
        """Return the disc tag."""
        return _text(self.metadata.get("disc"))

    @property
    def duration(self) -> float | None:
        """Return the duration in seconds.

        Newer servers send a precise "duration", older ones only "time".
        """
        for key in ("duration", "time"):
            value = self.metadata.get(key)
            if isinstance(value, int | float):
                return float(value)
        return None

    @property
    def last_modified(self) -> datetime | None:
        """Return the file modification time."""
        value = self.metadata.get("last_modified")
        return value if isinstance(value, datetime) else None

    @property
    def display_name(self) -> str:
        """Return the title, or the path for untagged files."""
        return self.title or self.path

    @property
    def queue_position(self) -> int | None:
        """Return the position on the queue, if this is a queue song."""
        pos = self.metadata.get("pos")
        return pos if isinstance(pos, int) and self.queue_id is not None else None

    @property
    def is_queued(self) -> bool:
        """Return True if this song carries a queue identity."""
        return self.queue_id is not None

    def same_file(self, other: "Song") -> bool:
        """Return True if both songs refer to the same file."""
        return self.path == other.path


@dataclass(frozen=True)
class Directory:
    """A directory entry from an lsinfo listing.

    Attributes:
        metadata: Read-only record as parsed from the server.
    """

    metadata: Record

    @classmethod
    def from_record(cls, record: Record) -> "Directory":
        """Create a directory entry from a parsed record."""
        return cls(metadata=_freeze(record))

    @property
    def path(self) -> str:
        """Return the directory path."""
        return str(self.metadata.get("directory", ""))

    @property
    def last_modified(self) -> datetime | None:
        """Return the directory modification time."""
        value = self.metadata.get("last_modified")
        return value if isinstance(value, datetime) else None


@dataclass(frozen=True)
class PlaylistInfo:
    """A stored playlist as listed by listplaylists.

    Attributes:
        name: Playlist name.
        last_modified: Time of the last change, if reported.
    """

    name: str
    last_modified: datetime | None = None

    @classmethod
    def from_record(cls, record: Record) -> "PlaylistInfo":
        """Create playlist info from a parsed record."""
        modified = record.get("last_modified")
        return cls(
            name=str(record.get("playlist", "")),
            last_modified=modified if isinstance(modified, datetime) else None,
        )
