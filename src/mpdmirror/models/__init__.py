"""Data models for songs, songlists and the mirrored server state."""

from mpdmirror.models.song import Directory, PlaylistInfo, Song
from mpdmirror.models.songlist import Playlist, Queue, Songlist
from mpdmirror.models.state import SongRef, StateCache, StateSnapshot

__all__ = [
    "Directory",
    "Playlist",
    "PlaylistInfo",
    "Queue",
    "Song",
    "SongRef",
    "Songlist",
    "StateCache",
    "StateSnapshot",
]
