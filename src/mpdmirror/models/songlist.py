"""The queue and stored playlists as songlists.

Both share the read side. They differ only in which commands their
editing methods send: the queue edits the play queue, a playlist edits
the stored playlist of the same name.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from mpdmirror.models.song import Song


class QueueEditor(Protocol):
    """Commands a Queue dispatches to."""

    def add_song_to_queue_by_file(self, path: str) -> None: ...

    def clear_queue(self) -> None: ...

    def remove_song_from_queue_by_position(self, position: int) -> None: ...

    def move_song_on_queue_by_position(self, position: int, to: int) -> None: ...


class PlaylistEditor(Protocol):
    """Commands a Playlist dispatches to."""

    def add_song_to_playlist_by_file(self, playlist: str, path: str) -> None: ...

    def clear_playlist(self, playlist: str) -> None: ...

    def remove_song_from_playlist_by_position(self, playlist: str, position: int) -> None: ...

    def move_song_on_playlist_by_position(self, playlist: str, position: int, to: int) -> None: ...


class Songlist(Protocol):
    """Ordered songs that can be edited on the server."""

    songs: tuple[Song, ...]

    def add_song_by_file(self, path: str) -> None: ...

    def clear(self) -> None: ...

    def remove_song_by_position(self, position: int) -> None: ...

    def move_song_by_position(self, position: int, to: int) -> None: ...


class _SongAccess:
    """Read accessors shared by Queue and Playlist."""

    songs: tuple[Song, ...]

    def __len__(self) -> int:
        return len(self.songs)

    def __iter__(self) -> Iterator[Song]:
        return iter(self.songs)

    def song_at(self, index: int | None) -> Song | None:
        """Return the song at a position, or None if out of range."""
        if index is None or not 0 <= index < len(self.songs):
            return None
        return self.songs[index]

    def find_by_path(self, path: str) -> Song | None:
        """Return the first song with the given file path."""
        for song in self.songs:
            if song.path == path:
                return song
        return None


def _unbound(kind: str) -> RuntimeError:
    return RuntimeError(f"{kind} is not bound to a client")


@dataclass(frozen=True)
class Queue(_SongAccess):
    """The play queue.

    Attributes:
        songs: Queue songs in play order.
        editor: Client that receives edit commands.
    """

    songs: tuple[Song, ...] = ()
    editor: QueueEditor | None = field(default=None, compare=False, repr=False)

    def _editor(self) -> QueueEditor:
        if self.editor is None:
            raise _unbound("Queue")
        return self.editor

    def find_by_id(self, song_id: int | None) -> Song | None:
        """Return the queue song with the given song id."""
        if song_id is None:
            return None
        for song in self.songs:
            if song.queue_id == song_id:
                return song
        return None

    def add_song_by_file(self, path: str) -> None:
        """Append a file to the queue."""
        self._editor().add_song_to_queue_by_file(path)

    def clear(self) -> None:
        """Remove all songs from the queue."""
        self._editor().clear_queue()

    def remove_song_by_position(self, position: int) -> None:
        """Remove the song at a queue position."""
        self._editor().remove_song_from_queue_by_position(position)

    def move_song_by_position(self, position: int, to: int) -> None:
        """Move a song to another queue position."""
        self._editor().move_song_on_queue_by_position(position, to)


@dataclass(frozen=True)
class Playlist(_SongAccess):
    """A stored playlist with its songs.

    Attributes:
        name: Playlist name.
        last_modified: Time of the last change, if known.
        songs: Playlist songs in order.
        editor: Client that receives edit commands.
    """

    name: str
    last_modified: datetime | None = None
    songs: tuple[Song, ...] = ()
    editor: PlaylistEditor | None = field(default=None, compare=False, repr=False)

    def _editor(self) -> PlaylistEditor:
        if self.editor is None:
            raise _unbound(f"Playlist '{self.name}'")
        return self.editor

    def add_song_by_file(self, path: str) -> None:
        """Append a file to the stored playlist."""
        self._editor().add_song_to_playlist_by_file(self.name, path)

    def clear(self) -> None:
        """Remove all songs from the stored playlist."""
        self._editor().clear_playlist(self.name)

    def remove_song_by_position(self, position: int) -> None:
        """Remove the song at a playlist position."""
        self._editor().remove_song_from_playlist_by_position(self.name, position)

    def move_song_by_position(self, position: int, to: int) -> None:
        """Move a song to another playlist position."""
        self._editor().move_song_on_playlist_by_position(self.name, position, to)
