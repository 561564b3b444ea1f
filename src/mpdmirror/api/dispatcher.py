"""Batching of outgoing MPD commands.

A client that waits in idle mode must send "noidle" before any other
command and "idle" afterwards. Commands issued within a short window are
collected and written as one frame so a burst pays for that round trip
only once:

    noidle
    <command 1>
    <command 2>
    idle
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_BATCH_DELAY = 0.05  # seconds

NOIDLE_COMMAND = "noidle"
IDLE_COMMAND = "idle"


@dataclass(frozen=True)
class Ticket:
    """Position of an issued command inside its frame.

    Attributes:
        batch: Sequence number of the frame.
        index: Zero-based position of the command in that frame.
    """

    batch: int
    index: int


class CommandDispatcher:
    """Collects commands and writes them as noidle/idle framed batches.

    Example:
        dispatcher = CommandDispatcher(writer_func)
        dispatcher.issue("play")
        dispatcher.issue("setvol 50")
        # ~50 ms later: "noidle\\nplay\\nsetvol 50\\nidle\\n" is written once
    """

    def __init__(
        self,
        write: Callable[[str], None],
        delay: float = DEFAULT_BATCH_DELAY,
        gate: Callable[[], bool] | None = None,
        on_flush: Callable[[int, int], None] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            write: Sends a complete frame to the server.
            delay: Seconds between the first command of a batch and the write.
            gate: Returns False while a frame must not be sent yet; the frame
                is then held until release() is called.
            on_flush: Called with (batch number, command count) right before
                a frame is written.
            loop: Event loop for the batch timer (default: running loop).
        """
        self._write = write
        self._delay = delay
        self._gate = gate
        self._on_flush = on_flush
        self._loop = loop
        self._pending: list[str] = []
        self._timer: asyncio.TimerHandle | None = None
        self._batch = 0
        self._held = False

    @property
    def delay(self) -> float:
        """Return the batching delay in seconds."""
        return self._delay

    @property
    def pending(self) -> tuple[str, ...]:
        """Return the commands waiting for the next frame."""
        return tuple(self._pending)

    @property
    def is_held(self) -> bool:
        """Return True if a due frame is waiting for release()."""
        return self._held

    def issue(self, command: str) -> Ticket:
        """Queue a command for the next frame.

        Args:
            command: A single formatted command, without newline.

        Returns:
            Ticket locating the command inside its frame.

        Raises:
            ValueError: If the command contains a line break.
        """
        if "\n" in command:
            raise ValueError(f"Command must be a single line: {command!r}")

        ticket = Ticket(self._batch, len(self._pending))
        self._pending.append(command)
        if self._timer is None and not self._held:
            loop = self._loop or asyncio.get_running_loop()
            self._timer = loop.call_later(self._delay, self._on_timer)
        return ticket

    def _on_timer(self) -> None:
        self._timer = None
        if self._gate is not None and not self._gate():
            logger.debug("Holding %d command(s) until idle", len(self._pending))
            self._held = True
            return
        self.flush()

    def release(self) -> None:
        """Send a held frame, if any."""
        if self._held:
            self.flush()

    def flush(self) -> str | None:
        """Write the pending batch now.

        Returns:
            The frame that was written, or None if nothing was pending.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._held = False
        if not self._pending:
            return None

        commands = self._pending
        batch = self._batch
        self._pending = []
        self._batch += 1
        frame = f"{NOIDLE_COMMAND}\n" + "".join(f"{cmd}\n" for cmd in commands) + f"{IDLE_COMMAND}\n"
        if self._on_flush is not None:
            self._on_flush(batch, len(commands))
        logger.debug("Sending batch %d with %d command(s)", batch, len(commands))
        self._write(frame)
        return frame

    def cancel(self) -> int:
        """Drop the pending batch without sending it.

        Returns:
            Number of commands dropped.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._held = False
        dropped = len(self._pending)
        if dropped:
            self._pending = []
            self._batch += 1
        return dropped
