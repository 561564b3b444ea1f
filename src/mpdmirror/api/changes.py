"""Classification of MPD idle notifications.

The idle command returns "changed: <subsystem>" lines. Each subsystem maps
to the smallest set of data the mirror has to fetch again.
"""

from collections.abc import Iterable
from enum import Enum

from mpdmirror.api.protocol import split_line

CHANGED_KEY = "changed"


class ReloadAction(Enum):
    """What an idle notification requires."""

    FULL = "full"
    QUEUE = "queue"
    STATUS = "status"
    PLAYLISTS = "playlists"
    DATABASE_CHANGING = "database_changing"


# Highest first; FULL runs the whole load cascade, which covers the rest.
RELOAD_PRECEDENCE: tuple[ReloadAction, ...] = (
    ReloadAction.FULL,
    ReloadAction.QUEUE,
    ReloadAction.STATUS,
    ReloadAction.PLAYLISTS,
)

_SUBSYSTEM_ACTIONS: dict[str, ReloadAction] = {
    "database": ReloadAction.FULL,
    "stored_playlist": ReloadAction.PLAYLISTS,
    "playlist": ReloadAction.QUEUE,  # the queue, not a stored playlist
    "player": ReloadAction.STATUS,
    "mixer": ReloadAction.STATUS,
    "output": ReloadAction.STATUS,
    "options": ReloadAction.STATUS,
    "update": ReloadAction.DATABASE_CHANGING,
}


def classify(tag: str) -> frozenset[ReloadAction]:
    """Map one subsystem tag to its reload actions.

    Args:
        tag: Subsystem name from a "changed:" line.

    Returns:
        Set of actions; empty for subsystems the mirror does not track
        (sticker, subscription, message, ...).
    """
    action = _SUBSYSTEM_ACTIONS.get(tag)
    if action is None:
        return frozenset()
    return frozenset((action,))


def classify_all(tags: Iterable[str]) -> frozenset[ReloadAction]:
    """Union of the actions for a whole notification batch."""
    actions: set[ReloadAction] = set()
    for tag in tags:
        actions |= classify(tag)
    return frozenset(actions)


def resolve(actions: Iterable[ReloadAction]) -> ReloadAction | None:
    """Pick the single reload to run for a set of actions.

    Returns:
        The highest-precedence reload, or None if nothing has to be fetched.
    """
    wanted = set(actions)
    for action in RELOAD_PRECEDENCE:
        if action in wanted:
            return action
    return None


def changed_tags(lines: Iterable[str]) -> list[str]:
    """Extract subsystem names from idle reply lines."""
    tags: list[str] = []
    for line in lines:
        parts = split_line(line)
        if parts is not None and parts[0] == CHANGED_KEY:
            tags.append(parts[1])
    return tags
