"""Test fixtures for mpdmirror tests."""

import asyncio
import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

GREETING = "OK MPD 0.23.5\n"

QUEUE_REPLY = (
    "file: a.mp3\n"
    "Title: Alpha\n"
    "duration: 100.000\n"
    "Pos: 0\n"
    "Id: 10\n"
    "file: b.mp3\n"
    "Title: Beta\n"
    "duration: 30.000\n"
    "Pos: 1\n"
    "Id: 11\n"
    "OK\n"
)

STATUS_REPLY = (
    "volume: 40\n"
    "repeat: 1\n"
    "random: 0\n"
    "single: 0\n"
    "consume: 1\n"
    "playlist: 7\n"
    "mixrampdb: -17.000000\n"
    "state: play\n"
    "song: 1\n"
    "songid: 11\n"
    "elapsed: 12.500\n"
    "nextsong: 0\n"
    "nextsongid: 10\n"
    "OK\n"
)

PLAYLISTS_REPLY = "playlist: Road Trip\nLast-Modified: 2024-01-01T00:00:00Z\nOK\n"

FULL_LOAD = GREETING + QUEUE_REPLY + STATUS_REPLY + PLAYLISTS_REPLY


class FakeStreamReader:
    """In-memory asyncio StreamReader fed by the test."""

    def __init__(self) -> None:
        self._chunks: asyncio.Queue[bytes] = asyncio.Queue()

    def feed(self, data: str | bytes) -> None:
        """Make data available to the next read."""
        self._chunks.put_nowait(data.encode() if isinstance(data, str) else data)

    def feed_eof(self) -> None:
        """Simulate the server closing the connection."""
        self._chunks.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        """Return the next chunk."""
        return await self._chunks.get()


class FakeStreamWriter:
    """In-memory asyncio StreamWriter recording what is written."""

    def __init__(self) -> None:
        self.data: list[bytes] = []
        self.closed = False
        self.drains = 0

    def write(self, data: bytes) -> None:
        """Record written data."""
        self.data.append(data)

    def close(self) -> None:
        """Mark as closed."""
        self.closed = True

    async def drain(self) -> None:
        """Count drain calls."""
        self.drains += 1

    async def wait_closed(self) -> None:
        """Mock wait_closed."""

    def is_closing(self) -> bool:
        """Check if closing."""
        return self.closed

    @property
    def text(self) -> str:
        """Return everything written so far."""
        return b"".join(self.data).decode()

    def clear(self) -> None:
        """Forget what was written."""
        self.data.clear()


async def settle(turns: int = 10) -> None:
    """Let the receive task and deferred event handlers run."""
    for _ in range(turns):
        await asyncio.sleep(0)


@pytest.fixture
def fake_connection() -> tuple[FakeStreamReader, FakeStreamWriter]:
    """Return a connected reader/writer pair."""
    return FakeStreamReader(), FakeStreamWriter()
