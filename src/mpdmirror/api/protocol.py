"""MPD protocol parsing utilities.

MPD uses a simple line-based text protocol:
- Commands are sent as plain text lines
- Responses are key-value pairs: "key: value"
- Responses end with "OK" or "ACK [error@index] {command} message"
- List responses are a flat stream of key-value pairs; a repeated key
  marks the start of the next record

Reference: https://mpd.readthedocs.io/en/stable/protocol.html
"""

import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from types import MappingProxyType

from mpdmirror.models.record import Record, RecordValue

RESPONSE_OK = "OK"
RESPONSE_ERROR = "ACK"
GREETING_PREFIX = "OK MPD "


class MpdError(Exception):
    """MPD protocol error."""

    def __init__(self, code: int, command: str, message: str) -> None:
        self.code = code
        self.command = command
        self.message = message
        super().__init__(f"MPD error {code} in {command}: {message}")


class MpdConnectionError(Exception):
    """Not connected to an MPD server."""


# Pattern for ACK responses: ACK [error@command_listNum] {current_command} message_text
ACK_PATTERN = re.compile(r"ACK \[(\d+)@\d+\] \{(\w*)\} (.+)")

_NUMBER_PATTERN = re.compile(r"^-?(\d+(\.\d*)?|\.\d+)$")
_TIMESTAMP_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})Z$")
_KEY_SEPARATOR = re.compile(r"[^\w]+")


def parse_ack(line: str) -> MpdError:
    """Decompose an ACK line into an MpdError.

    Args:
        line: Raw response line starting with "ACK".

    Returns:
        MpdError with code, command and message. Lines that do not follow
        the usual layout yield code 0 and the raw line as message.
    """
    match = ACK_PATTERN.match(line)
    if match:
        return MpdError(int(match.group(1)), match.group(2), match.group(3))
    return MpdError(0, "", line)


def normalize_key(key: str) -> str:
    """Lowercase a response key and collapse non-word runs to "_".

    "Last-Modified" becomes "last_modified", "Artist" becomes "artist".
    """
    return _KEY_SEPARATOR.sub("_", key.lower())


def parse_timestamp(value: str) -> datetime | None:
    """Parse an MPD ISO-8601 UTC timestamp ("2024-01-31T12:00:00Z")."""
    match = _TIMESTAMP_PATTERN.match(value)
    if not match:
        return None
    try:
        year, month, day, hour, minute, second = (int(part) for part in match.groups())
        return datetime(year, month, day, hour, minute, second, tzinfo=UTC)
    except ValueError:
        return None


def coerce_value(value: str) -> RecordValue:
    """Infer the type of a response value.

    Numeric strings become int or float, timestamps become aware datetimes,
    everything else is returned unchanged.
    """
    if not value:
        return value
    if _NUMBER_PATTERN.match(value):
        if "." in value:
            return float(value)
        return int(value)
    timestamp = parse_timestamp(value)
    if timestamp is not None:
        return timestamp
    return value


def split_line(line: str) -> tuple[str, str] | None:
    """Split a "key: value" line on the first separator."""
    if ": " not in line:
        return None
    key, value = line.split(": ", 1)
    return key, value


def parse_records(
    lines: list[str],
    boundary: re.Pattern[str] | None = None,
) -> list[Record]:
    """Parse a flat list response into records.

    The key of the first line starts every record unless an explicit
    boundary pattern is given (e.g. ``^(file|directory)$`` for lsinfo).

    Args:
        lines: Response lines without the final OK.
        boundary: Pattern matched against normalized keys.

    Returns:
        Records in response order. An empty input yields an empty list.
    """
    records: list[Record] = []
    current: dict[str, RecordValue] | None = None
    marker = boundary

    for line in lines:
        parts = split_line(line)
        if parts is None:
            continue
        key = normalize_key(parts[0])
        value = coerce_value(parts[1])

        if current is None:
            current = {}
        elif marker is not None and marker.match(key):
            records.append(MappingProxyType(current))
            current = {}
        current[key] = value

        if marker is None:
            marker = re.compile(f"^{re.escape(key)}$")

    if current is not None:
        records.append(MappingProxyType(current))
    return records


def take_reply(
    lines: list[str],
    on_error: Callable[[str], None],
) -> list[str] | None:
    """Remove one complete reply from the pending lines.

    ACK lines met before the terminating OK are removed from ``lines`` and
    handed to ``on_error``; they never complete a reply.

    Args:
        lines: Pending input lines, mutated in place.
        on_error: Called with every raw ACK line.

    Returns:
        The reply lines without the final OK, or None if the reply is not
        complete yet (the remaining lines are left untouched).
    """
    index = 0
    while index < len(lines):
        line = lines[index]
        if line == RESPONSE_OK:
            reply = lines[:index]
            del lines[: index + 1]
            return reply
        if line.startswith(RESPONSE_ERROR):
            del lines[index]
            on_error(line)
            continue
        index += 1
    return None


def take_command_reply(lines: list[str]) -> tuple[list[str], str | None] | None:
    """Remove the reply to one command of a batch.

    A command is answered by either OK or a single ACK line, so inside a
    batch an ACK completes the failing command's reply.

    Args:
        lines: Pending input lines, mutated in place.

    Returns:
        (reply lines, None) for a successful command, (lines, ack line) for
        a failed one, or None if the reply is not complete yet.
    """
    for index, line in enumerate(lines):
        if line == RESPONSE_OK or line.startswith(RESPONSE_ERROR):
            reply = lines[:index]
            del lines[: index + 1]
            return reply, None if line == RESPONSE_OK else line
    return None


def escape_arg(arg: str) -> str:
    """Escape an argument for MPD command.

    MPD requires arguments with spaces or special chars to be quoted.
    Inside quotes, backslash and double-quote must be escaped.

    Args:
        arg: The argument to escape.

    Returns:
        Escaped argument, quoted if necessary.
    """
    if arg and not any(c in arg for c in ' "\t\n\\\''):
        return arg

    escaped = arg.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_command(command: str, *args: object) -> str:
    """Format an MPD command with arguments.

    Args:
        command: The MPD command name.
        *args: Command arguments, converted with str().

    Returns:
        Formatted command string (without newline).
    """
    if not args:
        return command
    escaped_args = [escape_arg(str(arg)) for arg in args]
    return f"{command} {' '.join(escaped_args)}"


def format_filter_command(command: str, *args: object, params: Mapping[str, str]) -> str:
    """Format a search-style command ending in "tag value" pairs."""
    pairs: list[object] = []
    for key, value in params.items():
        pairs.extend((key, value))
    return format_command(command, *args, *pairs)
