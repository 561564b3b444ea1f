"""State machine that turns MPD replies into state updates and events.

One connection carries several request/response cycles one after another.
The processor knows which reply comes next from its current state:

    GREETING -> QUEUE -> STATUS -> PLAYLISTS -> IDLE      (full load)
    IDLE -> QUEUE | STATUS | PLAYLISTS -> IDLE            (partial reload)
    IDLE -> FRAME -> IDLE                                 (batched commands)

Every call to process() consumes as many complete replies as the current
state can use and leaves incomplete ones in the pending line list.
"""

import logging
import re
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mpdmirror.api.changes import ReloadAction, changed_tags, classify_all, resolve
from mpdmirror.api.dispatcher import IDLE_COMMAND, NOIDLE_COMMAND, Ticket
from mpdmirror.api.events import EventDispatcher, EventType
from mpdmirror.api.protocol import (
    GREETING_PREFIX,
    RESPONSE_ERROR,
    parse_records,
    take_command_reply,
    take_reply,
)
from mpdmirror.models.record import Record
from mpdmirror.models.song import PlaylistInfo, Song
from mpdmirror.models.songlist import Queue, QueueEditor
from mpdmirror.models.state import StateCache, normalize_status

logger = logging.getLogger(__name__)

ListTransform = Callable[[list[Record]], Any]
QueryCallback = Callable[[Any], None]

QUEUE_COMMAND = "playlistinfo"
STATUS_COMMAND = "status"
PLAYLISTS_COMMAND = "listplaylists"


class ProcessorState(Enum):
    """What the next complete reply is expected to be."""

    DISCONNECTED = "disconnected"
    GREETING = "greeting"
    QUEUE = "queue"
    STATUS = "status"
    PLAYLISTS = "playlists"
    IDLE = "idle"
    FRAME = "frame"


@dataclass(frozen=True)
class PendingQuery:
    """A command whose reply is handed to a callback.

    Attributes:
        command: The command text, for logging.
        ticket: Where the command sits in its batch.
        on_done: Receives the transformed result.
        boundary: Record boundary pattern for the reply.
        transform: Turns the parsed records into the result.
        event: Event raised with the result before on_done runs.
    """

    command: str
    ticket: Ticket
    on_done: QueryCallback
    boundary: re.Pattern[str] | None = None
    transform: ListTransform | None = None
    event: EventType | None = None


@dataclass
class _Frame:
    batch: int
    size: int
    position: int = 0


class ResponseProcessor:
    """Consumes reply lines according to the current protocol state.

    The processor is the only writer of the StateCache: it installs the
    internal event pre-handlers that copy event payloads into the cache.

    Example:
        processor = ResponseProcessor(send, events, cache)
        processor.start()              # after the transport opened
        processor.process(lines)       # whenever complete lines arrived
    """

    def __init__(
        self,
        send: Callable[[str], None],
        events: EventDispatcher,
        cache: StateCache,
        queue_editor: QueueEditor | None = None,
        on_idle: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            send: Writes raw protocol text to the server.
            events: Dispatcher the processor raises events on.
            cache: State mirror updated through internal pre-handlers.
            queue_editor: Bound into every Queue built from a reply.
            on_idle: Called whenever the processor returns to IDLE.
        """
        self._send = send
        self._events = events
        self._cache = cache
        self._queue_editor = queue_editor
        self._on_idle = on_idle

        self._state = ProcessorState.DISCONNECTED
        self._cascade = False
        self._frames: deque[_Frame] = deque()
        self._frame: _Frame | None = None
        self._queries: dict[tuple[int, int], PendingQuery] = {}
        self._deferred: set[ReloadAction] = set()

        self._handlers: dict[ProcessorState, Callable[[list[str]], None]] = {
            ProcessorState.DISCONNECTED: self._ignore,
            ProcessorState.GREETING: self._on_greeting,
            ProcessorState.QUEUE: self._on_queue,
            ProcessorState.STATUS: self._on_status,
            ProcessorState.PLAYLISTS: self._on_playlists,
            ProcessorState.IDLE: self._on_idle_reply,
            ProcessorState.FRAME: self._on_frame,
        }

        events.set_internal_handler(EventType.CONNECT, cache.mark_connected)
        events.set_internal_handler(EventType.DISCONNECT, cache.reset)
        events.set_internal_handler(EventType.STATE_CHANGED, cache.merge_status)
        events.set_internal_handler(EventType.QUEUE_CHANGED, cache.set_queue)
        events.set_internal_handler(EventType.PLAYLISTS_CHANGED, cache.set_playlists)

    @property
    def state(self) -> ProcessorState:
        """Return the current state."""
        return self._state

    @property
    def is_idle(self) -> bool:
        """Return True while waiting for idle notifications."""
        return self._state is ProcessorState.IDLE

    @property
    def pending_queries(self) -> int:
        """Return the number of queries waiting for their reply."""
        return len(self._queries)

    def start(self) -> None:
        """Expect the server greeting on a fresh connection."""
        self.reset()
        self._set_state(ProcessorState.GREETING)

    def reset(self) -> None:
        """Forget everything in flight and ignore further input."""
        self._set_state(ProcessorState.DISCONNECTED)
        self._cascade = False
        self._frames.clear()
        self._frame = None
        self._deferred.clear()
        if self._queries:
            logger.warning("Dropping %d unanswered queries", len(self._queries))
            self._queries.clear()

    def process(self, lines: list[str]) -> None:
        """Consume complete replies from the pending lines."""
        self._handlers[self._state](lines)

    def frame_sent(self, batch: int, size: int) -> None:
        """Record that a batch of ``size`` commands was written."""
        self._frames.append(_Frame(batch, size))

    def expect(self, query: PendingQuery) -> None:
        """Route the reply to a batched command to a callback."""
        key = (query.ticket.batch, query.ticket.index)
        self._queries[key] = query

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _set_state(self, state: ProcessorState) -> None:
        if state is not self._state:
            logger.debug("Processor %s -> %s", self._state.value, state.value)
        self._state = state

    def _request(self, state: ProcessorState, command: str) -> None:
        self._set_state(state)
        self._send(f"{command}\n")

    def _load_everything(self) -> None:
        # The status refers to queue positions, so the queue comes first.
        self._cascade = True
        self._request(ProcessorState.QUEUE, QUEUE_COMMAND)

    def _reload(self, action: ReloadAction) -> None:
        if action is ReloadAction.FULL:
            self._load_everything()
            return
        self._cascade = False
        if action is ReloadAction.QUEUE:
            self._request(ProcessorState.QUEUE, QUEUE_COMMAND)
        elif action is ReloadAction.STATUS:
            self._request(ProcessorState.STATUS, STATUS_COMMAND)
        elif action is ReloadAction.PLAYLISTS:
            self._request(ProcessorState.PLAYLISTS, PLAYLISTS_COMMAND)

    def _enter_idle(self) -> None:
        self._cascade = False
        self._request(ProcessorState.IDLE, IDLE_COMMAND)
        self._idle_reached()

    def _resume_idle(self) -> None:
        # The server is already idle: every batch ends with "idle".
        self._set_state(ProcessorState.IDLE)
        self._idle_reached()

    def _idle_reached(self) -> None:
        if self._on_idle is not None:
            self._on_idle()

    def _on_ack(self, line: str) -> None:
        logger.warning("MPD error: %s", line)
        self._events.emit(EventType.ERROR, line)

    # -------------------------------------------------------------------------
    # State handlers
    # -------------------------------------------------------------------------

    def _ignore(self, lines: list[str]) -> None:
        pass

    def _on_greeting(self, lines: list[str]) -> None:
        if not lines:
            return
        line = lines.pop(0)
        if line.startswith(RESPONSE_ERROR):
            self._on_ack(line)
            return
        if not line.startswith(GREETING_PREFIX):
            logger.warning("Unexpected greeting: %r", line)
        version = line.removeprefix(GREETING_PREFIX)
        self._cache.set_version(version)
        logger.info("MPD protocol version %s", version)
        self._load_everything()

    def _on_queue(self, lines: list[str]) -> None:
        reply = take_reply(lines, self._on_ack)
        if reply is None:
            return
        songs = tuple(Song.from_queue_record(record) for record in parse_records(reply))
        self._events.emit(EventType.QUEUE_CHANGED, Queue(songs=songs, editor=self._queue_editor))
        if self._cascade:
            self._request(ProcessorState.STATUS, STATUS_COMMAND)
        else:
            self._enter_idle()

    def _on_status(self, lines: list[str]) -> None:
        reply = take_reply(lines, self._on_ack)
        if reply is None:
            return
        if not reply:
            logger.debug("Skipping empty reply while waiting for status")
            return
        record: dict[str, Any] = {}
        for part in parse_records(reply):
            record.update(part)
        self._events.emit(EventType.STATE_CHANGED, normalize_status(record))
        if self._cascade:
            self._request(ProcessorState.PLAYLISTS, PLAYLISTS_COMMAND)
        else:
            self._enter_idle()

    def _on_playlists(self, lines: list[str]) -> None:
        reply = take_reply(lines, self._on_ack)
        if reply is None:
            return
        playlists = tuple(PlaylistInfo.from_record(record) for record in parse_records(reply))
        self._events.emit(EventType.PLAYLISTS_CHANGED, playlists)
        if self._cascade:
            self._events.emit(EventType.DATA_LOADED, self._cache.snapshot())
            logger.info("Loaded %d queue songs and %d playlists", self._queue_length(), len(playlists))
        self._enter_idle()

    def _on_idle_reply(self, lines: list[str]) -> None:
        reply = take_reply(lines, self._on_ack)
        if reply is None:
            return

        actions = classify_all(changed_tags(reply))
        if ReloadAction.DATABASE_CHANGING in actions:
            self._events.emit(EventType.DATABASE_CHANGING)
        actions |= self._deferred
        self._deferred = set()

        if self._frames:
            # Either the acknowledgement of a batch's noidle, or a
            # notification that crossed it. The batch replies follow.
            self._deferred = set(actions)
            self._enter_frame(self._frames.popleft())
            return

        action = resolve(actions)
        if action is not None:
            logger.debug("Reloading %s", action.value)
            self._reload(action)
        elif reply:
            self._enter_idle()

    def _enter_frame(self, frame: _Frame) -> None:
        self._frame = frame
        self._set_state(ProcessorState.FRAME)

    def _on_frame(self, lines: list[str]) -> None:
        frame = self._frame
        if frame is None:
            self._resume_idle()
            return

        while frame.position < frame.size:
            result = take_command_reply(lines)
            if result is None:
                return
            reply, ack = result
            query = self._queries.pop((frame.batch, frame.position), None)
            frame.position += 1
            if ack is not None:
                self._on_ack(ack)
                if query is not None:
                    logger.debug("Query %r failed, no result", query.command)
            elif query is not None:
                self._complete_query(query, reply)

        self._frame = None
        if resolve(self._deferred) is None:
            self._deferred = set()
            self._resume_idle()
        else:
            # Leave the idle the batch ended with to run the postponed reload.
            self._set_state(ProcessorState.IDLE)
            self._send(f"{NOIDLE_COMMAND}\n")

    def _complete_query(self, query: PendingQuery, reply: list[str]) -> None:
        records = parse_records(reply, query.boundary)
        result = query.transform(records) if query.transform is not None else records
        if query.event is not None:
            self._events.emit(query.event, result)
        try:
            query.on_done(result)
        except Exception as e:  # noqa: BLE001
            logger.exception("Callback for %r failed", query.command)
            self._events.emit(EventType.ERROR, e)

    def _queue_length(self) -> int:
        queue = self._cache.state.current_queue
        return len(queue) if queue is not None else 0
