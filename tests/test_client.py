"""Tests for the MPD client."""

import asyncio
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import patch

import pytest

from conftest import FULL_LOAD, FakeStreamReader, FakeStreamWriter, settle
from mpdmirror.api.client import MpdClient
from mpdmirror.api.events import EventType, MpdEvent
from mpdmirror.api.processor import ProcessorState
from mpdmirror.api.protocol import MpdConnectionError
from mpdmirror.models.song import Directory, PlaylistInfo, Song
from mpdmirror.models.songlist import Playlist

BATCH_DELAY = 0.01

Loaded = tuple[MpdClient, FakeStreamReader, FakeStreamWriter]


async def flush_batch() -> None:
    """Wait for the batch timer to fire."""
    await asyncio.sleep(BATCH_DELAY * 5)


@pytest.fixture
async def loaded(fake_connection: tuple[FakeStreamReader, FakeStreamWriter]) -> AsyncGenerator[Loaded, None]:
    """Return a client that finished its initial load."""
    reader, writer = fake_connection
    with patch("asyncio.open_connection", return_value=(reader, writer)):
        client = MpdClient("localhost", reconnect_interval=0, batch_delay=BATCH_DELAY)
        await client.connect()
    reader.feed(FULL_LOAD)
    await settle()
    writer.clear()
    yield client, reader, writer
    await client.disconnect()


class TestMpdClientConnection:
    """Tests for MpdClient connection handling."""

    @pytest.mark.asyncio
    async def test_initial_load(self, fake_connection: tuple[FakeStreamReader, FakeStreamWriter]) -> None:
        """Test connecting loads queue, status and playlists."""
        reader, writer = fake_connection
        events: list[MpdEvent] = []

        with patch("asyncio.open_connection", return_value=(reader, writer)):
            client = MpdClient("localhost", reconnect_interval=0)
            client.subscribe("Event", events.append)
            await client.connect()

            assert client.is_connected
            assert client.processor_state is ProcessorState.GREETING

            reader.feed(FULL_LOAD)
            await settle()

            assert writer.text == "playlistinfo\nstatus\nlistplaylists\nidle\n"
            assert client.protocol_version == "0.23.5"
            assert client.processor_state is ProcessorState.IDLE
            assert [event.type for event in events] == [
                EventType.CONNECT,
                EventType.QUEUE_CHANGED,
                EventType.STATE_CHANGED,
                EventType.PLAYLISTS_CHANGED,
                EventType.DATA_LOADED,
            ]
            await client.disconnect()

    @pytest.mark.asyncio
    async def test_connect_failure_is_a_close(self) -> None:
        """Test a failed connect raises Disconnect instead of an exception."""
        disconnects: list[Any] = []
        with patch("asyncio.open_connection", side_effect=OSError("Connection refused")):
            client = MpdClient("localhost", reconnect_interval=0)
            client.subscribe("Disconnect", disconnects.append)
            await client.connect()
            await settle()

        assert not client.is_connected
        assert disconnects == [None]

    @pytest.mark.asyncio
    async def test_connect_timeout(self) -> None:
        """Test a timeout is handled like a refused connection."""
        with patch("asyncio.open_connection", side_effect=TimeoutError()):
            client = MpdClient("localhost", reconnect_interval=0)
            await client.connect()
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_server_close(self, loaded: Loaded) -> None:
        """Test EOF resets the mirror and raises Disconnect."""
        client, reader, _ = loaded
        disconnects: list[Any] = []
        client.subscribe("Disconnect", disconnects.append)

        reader.feed_eof()
        await settle()

        assert disconnects == [None]
        assert not client.is_connected
        assert client.protocol_version is None
        assert client.processor_state is ProcessorState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_reconnect_after_loss(self) -> None:
        """Test the client reconnects after the server went away."""
        first = (FakeStreamReader(), FakeStreamWriter())
        second = (FakeStreamReader(), FakeStreamWriter())
        with patch("asyncio.open_connection", side_effect=[first, second]) as open_connection:
            client = MpdClient("localhost", reconnect_interval=0.01)
            await client.connect()
            first[0].feed_eof()
            await settle()
            await asyncio.sleep(0.05)

            assert open_connection.call_count == 2
            assert client.is_connected
            await client.disconnect()

    @pytest.mark.asyncio
    async def test_no_reconnect_after_disconnect(self) -> None:
        """Test a user disconnect stops reconnecting."""
        reader, writer = FakeStreamReader(), FakeStreamWriter()
        with patch("asyncio.open_connection", return_value=(reader, writer)) as open_connection:
            client = MpdClient("localhost", reconnect_interval=0.01)
            await client.connect()
            await client.disconnect()
            await asyncio.sleep(0.05)

            assert open_connection.call_count == 1
            assert not client.is_connected
            assert writer.closed

    @pytest.mark.asyncio
    async def test_disconnect_while_connecting(
        self, fake_connection: tuple[FakeStreamReader, FakeStreamWriter]
    ) -> None:
        """Test a connection that opens after disconnect() is closed again."""
        reader, writer = fake_connection
        opened = asyncio.Event()
        connects: list[Any] = []

        async def slow_open(host: str, port: int) -> tuple[FakeStreamReader, FakeStreamWriter]:
            await opened.wait()
            return reader, writer

        with patch("asyncio.open_connection", side_effect=slow_open) as open_connection:
            client = MpdClient("localhost", reconnect_interval=0.01)
            client.subscribe("Connect", connects.append)
            connecting = asyncio.create_task(client.connect())
            await settle()

            await client.disconnect()
            opened.set()
            await connecting
            await asyncio.sleep(0.05)

            assert open_connection.call_count == 1
        assert not client.is_connected
        assert client.processor_state is ProcessorState.DISCONNECTED
        assert writer.closed
        assert connects == []

    @pytest.mark.asyncio
    async def test_disconnect_drops_pending_batch(self, loaded: Loaded) -> None:
        """Test unsent commands are lost on disconnect."""
        client, _, writer = loaded
        client.play()
        await client.disconnect()
        await flush_batch()
        assert writer.text == ""

    @pytest.mark.asyncio
    async def test_context_manager(self, fake_connection: tuple[FakeStreamReader, FakeStreamWriter]) -> None:
        """Test async with connects and disconnects."""
        reader, writer = fake_connection
        with patch("asyncio.open_connection", return_value=(reader, writer)):
            async with MpdClient("localhost", reconnect_interval=0) as client:
                assert client.is_connected
        assert not client.is_connected
        assert writer.closed

    @pytest.mark.asyncio
    async def test_split_utf8(self, fake_connection: tuple[FakeStreamReader, FakeStreamWriter]) -> None:
        """Test a character split across reads is decoded correctly."""
        reader, writer = fake_connection
        with patch("asyncio.open_connection", return_value=(reader, writer)):
            client = MpdClient("localhost", reconnect_interval=0)
            await client.connect()

        data = "OK MPD 0.23.5\nfile: cafe.mp3\nTitle: Café\nPos: 0\nId: 1\nOK\n".encode()
        cut = data.index("é".encode()) + 1
        reader.feed(data[:cut])
        await settle()
        reader.feed(data[cut:])
        await settle()

        assert client.queue is not None
        assert client.queue.songs[0].title == "Café"
        await client.disconnect()


class TestMpdClientState:
    """Tests for the state accessors."""

    @pytest.mark.asyncio
    async def test_accessors(self, loaded: Loaded) -> None:
        """Test accessors read the mirror."""
        client, _, _ = loaded
        assert client.playstate == "play"
        assert client.volume == pytest.approx(0.4)
        assert client.is_repeat
        assert client.is_consume
        assert not client.is_random
        assert not client.is_single
        assert client.mix_ramp_threshold == -17.0
        assert client.current_song_id == 11
        assert client.current_song_queue_index == 1
        assert client.next_song_id == 10
        assert client.next_song_queue_index == 0
        assert client.queue_version == 7
        assert client.playlist_names == ["Road Trip"]

        current = client.current_song
        assert current is not None
        assert current.title == "Beta"
        next_song = client.next_song
        assert next_song is not None
        assert next_song.title == "Alpha"
        assert 12.5 <= client.current_song_time() <= 30.0

    @pytest.mark.asyncio
    async def test_get_state_is_copy(self, loaded: Loaded) -> None:
        """Test get_state() returns a detached snapshot."""
        client, _, _ = loaded
        state = client.get_state()
        state.extras["x"] = 1
        state.playstate = "stop"
        assert client.playstate == "play"
        assert "x" not in client.get_state().extras

    @pytest.mark.asyncio
    async def test_get_queue_song(self, loaded: Loaded) -> None:
        """Test matching a database song to its queue entry."""
        client, _, _ = loaded
        queued = client.get_queue_song(Song.from_record({"file": "a.mp3"}))
        assert queued is not None
        assert queued.queue_id == 10
        assert client.get_queue_song(Song.from_record({"file": "z.mp3"})) is None

    def test_tag_types(self) -> None:
        """Test the supported search tags."""
        tags = MpdClient.get_tag_types()
        assert "artist" in tags
        assert "any" in tags


class TestMpdClientCommands:
    """Tests for the command surface."""

    def test_not_connected(self) -> None:
        """Test commands are rejected while disconnected."""
        client = MpdClient("localhost")
        with pytest.raises(MpdConnectionError):
            client.play()

    @pytest.mark.asyncio
    async def test_batch_frame(self, loaded: Loaded) -> None:
        """Test commands issued together share one frame."""
        client, _, writer = loaded
        client.pause()
        client.set_volume(0.5)
        assert writer.text == ""
        await flush_batch()
        assert writer.text == "noidle\npause 1\nsetvol 50\nidle\n"

    @pytest.mark.asyncio
    async def test_frame_is_drained(self, loaded: Loaded) -> None:
        """Test a written frame waits for the transport buffer."""
        client, _, writer = loaded
        drains = writer.drains
        client.next()
        await flush_batch()
        await settle()
        assert writer.text == "noidle\nnext\nidle\n"
        assert writer.drains == drains + 1

    @pytest.mark.asyncio
    async def test_command_formatting(self, loaded: Loaded) -> None:
        """Test the protocol text of the commands."""
        client, _, _ = loaded
        client.play()
        client.play(3)
        client.pause(False)
        client.set_volume(1.7)
        client.set_volume(-1)
        client.seek(30)
        client.enable_random_play()
        client.disable_repeat_play()
        client.set_mix_ramp_delay("nan")
        client.add_song_to_queue_by_file("Artist/01 Intro.flac")
        client.remove_songs_from_queue_by_range(1, 3)
        client.move_songs_on_queue_by_position(1, 3, 0)
        client.swap_songs_on_queue_by_id(10, 11)
        client.load_playlist_into_queue("Road Trip")
        client.add_song_to_playlist_by_file("Road Trip", "a.mp3")
        client.rename_playlist("Road Trip", "Trip")
        client.update_database()

        assert client._dispatcher.pending == (
            "play",
            "play 3",
            "pause 0",
            "setvol 100",
            "setvol 0",
            "seekid 11 30",
            "random 1",
            "repeat 0",
            "mixrampdelay nan",
            'add "Artist/01 Intro.flac"',
            "delete 1:3",
            "move 1:3 0",
            "swapid 10 11",
            "clear",
            'load "Road Trip"',
            'playlistadd "Road Trip" a.mp3',
            'rename "Road Trip" Trip',
            "update",
        )

    @pytest.mark.asyncio
    async def test_queue_edits_go_through_client(self, loaded: Loaded) -> None:
        """Test editing the mirrored queue issues queue commands."""
        client, _, _ = loaded
        assert client.queue is not None
        client.queue.move_song_by_position(0, 1)
        client.queue.clear()
        assert client._dispatcher.pending == ("move 0 1", "clear")

    @pytest.mark.asyncio
    async def test_seek_without_song(self, fake_connection: tuple[FakeStreamReader, FakeStreamWriter]) -> None:
        """Test seeking is skipped when nothing is current."""
        reader, writer = fake_connection
        with patch("asyncio.open_connection", return_value=(reader, writer)):
            client = MpdClient("localhost", reconnect_interval=0)
            await client.connect()
        client.seek(10)
        assert client._dispatcher.pending == ()
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_frame_held_until_idle(self, fake_connection: tuple[FakeStreamReader, FakeStreamWriter]) -> None:
        """Test a batch issued during the initial load waits for idle."""
        reader, writer = fake_connection
        with patch("asyncio.open_connection", return_value=(reader, writer)):
            client = MpdClient("localhost", reconnect_interval=0, batch_delay=BATCH_DELAY)
            await client.connect()

        client.stop()
        await flush_batch()
        assert "stop" not in writer.text

        reader.feed(FULL_LOAD)
        await settle()
        assert writer.text.endswith("idle\nnoidle\nstop\nidle\n")
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_ack_raises_error(self, loaded: Loaded) -> None:
        """Test a failed command raises Error with the ACK line."""
        client, reader, _ = loaded
        errors: list[Any] = []
        client.subscribe("Error", errors.append)

        client.delete_playlist("nope")
        await flush_batch()
        reader.feed("OK\nACK [50@0] {rm} No such playlist\n")
        await settle()

        assert errors == ["ACK [50@0] {rm} No such playlist"]
        assert client.processor_state is ProcessorState.IDLE


class TestMpdClientQueries:
    """Tests for the on-demand queries."""

    @pytest.mark.asyncio
    async def test_get_unknown_playlist(self, loaded: Loaded) -> None:
        """Test an unknown playlist is answered with None at once."""
        client, _, _ = loaded
        results: list[Any] = []
        client.get_playlist("Missing", results.append)
        assert results == [None]
        assert client._dispatcher.pending == ()

    @pytest.mark.asyncio
    async def test_get_playlist(self, loaded: Loaded) -> None:
        """Test fetching a stored playlist."""
        client, reader, writer = loaded
        results: list[Any] = []
        changed: list[Any] = []
        client.subscribe("PlaylistChanged", changed.append)

        client.get_playlist("Road Trip", results.append)
        await flush_batch()
        assert writer.text == 'noidle\nlistplaylistinfo "Road Trip"\nidle\n'

        reader.feed("OK\nfile: a.mp3\nTitle: Alpha\nfile: c.mp3\nOK\n")
        await settle()

        assert len(results) == 1
        playlist = results[0]
        assert isinstance(playlist, Playlist)
        assert playlist.name == "Road Trip"
        assert [song.path for song in playlist] == ["a.mp3", "c.mp3"]
        assert changed == [playlist]

        playlist.remove_song_by_position(0)
        assert client._dispatcher.pending == ('playlistdelete "Road Trip" 0',)

    @pytest.mark.asyncio
    async def test_get_directory_contents(self, loaded: Loaded) -> None:
        """Test listing a directory."""
        client, reader, writer = loaded
        results: list[Any] = []
        client.get_directory_contents("", results.append)
        await flush_batch()
        assert writer.text == 'noidle\nlsinfo ""\nidle\n'

        reader.feed(
            "OK\n"
            "directory: Jazz\n"
            "Last-Modified: 2024-01-01T00:00:00Z\n"
            "file: loose.mp3\n"
            "Title: Loose\n"
            "playlist: saved.m3u\n"
            "OK\n"
        )
        await settle()

        entries = results[0]
        assert isinstance(entries[0], Directory)
        assert entries[0].path == "Jazz"
        assert isinstance(entries[1], Song)
        assert entries[1].title == "Loose"
        assert isinstance(entries[2], PlaylistInfo)
        assert entries[2].name == "saved.m3u"

    @pytest.mark.asyncio
    async def test_tag_search(self, loaded: Loaded) -> None:
        """Test listing tag values."""
        client, reader, writer = loaded
        results: list[Any] = []
        client.tag_search("album", {"artist": "Bearsuit"}, results.append)
        await flush_batch()
        assert writer.text == "noidle\nlist album artist Bearsuit\nidle\n"

        reader.feed("OK\nAlbum: Cat Spectacular\nAlbum: OH:IO\nOK\n")
        await settle()
        assert results == [["Cat Spectacular", "OH:IO"]]

    @pytest.mark.asyncio
    async def test_search_and_count(self, loaded: Loaded) -> None:
        """Test two queries in one frame are answered in order."""
        client, reader, writer = loaded
        songs: list[Any] = []
        counts: list[Any] = []
        client.search({"any": "beta"}, songs.append)
        client.search_count({"any": "beta"}, counts.append)
        await flush_batch()
        assert writer.text == "noidle\nsearch any beta\ncount any beta\nidle\n"

        reader.feed("OK\nfile: b.mp3\nTitle: Beta\nOK\nsongs: 1\nplaytime: 30\nOK\n")
        await settle()

        assert [song.path for song in songs[0]] == ["b.mp3"]
        assert [dict(count) for count in counts] == [{"songs": 1, "playtime": 30}]

    @pytest.mark.asyncio
    async def test_notification_during_query(self, loaded: Loaded) -> None:
        """Test a change crossing the noidle is reloaded after the query."""
        client, reader, writer = loaded
        counts: list[Any] = []
        client.search_count({"any": "x"}, counts.append)
        await flush_batch()
        writer.clear()

        reader.feed("changed: mixer\nOK\nsongs: 0\nplaytime: 0\nOK\n")
        await settle()
        assert [dict(count) for count in counts] == [{"songs": 0, "playtime": 0}]
        assert writer.text == "noidle\n"

        reader.feed("OK\n")
        await settle()
        assert writer.text == "noidle\nstatus\n"
        reader.feed("volume: 80\nstate: play\nOK\n")
        await settle()
        assert client.volume == pytest.approx(0.8)
        assert writer.text.endswith("idle\n")
