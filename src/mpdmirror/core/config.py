"""Configuration manager using QSettings for persistent storage."""

import logging
from dataclasses import dataclass

from PySide6.QtCore import QSettings

from mpdmirror.api.client import CONNECT_TIMEOUT, DEFAULT_PORT, DEFAULT_RECONNECT_INTERVAL
from mpdmirror.api.dispatcher import DEFAULT_BATCH_DELAY

logger = logging.getLogger(__name__)

# MPD
_KEY_MPD_HOST = "mpd/host"
_KEY_MPD_PORT = "mpd/port"
_KEY_MPD_RECONNECT_INTERVAL = "mpd/reconnect_interval"
_KEY_MPD_BATCH_DELAY = "mpd/batch_delay"

# Logging
_KEY_LOGGING_DEBUG = "logging/debug"

DEFAULT_HOST = "localhost"
MAX_RECONNECT_INTERVAL = 300.0
MAX_BATCH_DELAY = 1.0


@dataclass(frozen=True)
class ClientSettings:
    """Everything needed to build an MpdClient.

    Attributes:
        host: MPD server hostname or IP.
        port: MPD server port.
        reconnect_interval: Seconds between reconnect attempts, 0 disables.
        batch_delay: Seconds commands are collected before being sent.
        timeout: Connection timeout in seconds.
        debug: Whether debug logging is enabled.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL
    batch_delay: float = DEFAULT_BATCH_DELAY
    timeout: float = CONNECT_TIMEOUT
    debug: bool = False


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ConfigManager:
    """Wrapper around QSettings for type-safe config access.

    QSettings stores config in platform-specific locations:
    - Windows: HKEY_CURRENT_USER\\Software\\mpdmirror\\mpdmirror
    - macOS: ~/Library/Preferences/com.mpdmirror.mpdmirror.plist
    - Linux: ~/.config/mpdmirror/mpdmirror.conf

    Example:
        config = ConfigManager()
        settings = config.load_client_settings()
        client = MpdClient(settings.host, settings.port)
    """

    def __init__(self, organization: str = "mpdmirror", application: str = "mpdmirror") -> None:
        """Initialize the config manager.

        Args:
            organization: Organization name for QSettings.
            application: Application name for QSettings.
        """
        self._settings = QSettings(organization, application)

    @property
    def settings(self) -> QSettings:
        """Return the underlying QSettings instance."""
        return self._settings

    def _number(self, key: str, default: float) -> float:
        """Read a numeric value, falling back to the default if invalid."""
        raw = self._settings.value(key, default)
        try:
            return float(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning("Invalid value %r for %s, using %s", raw, key, default)
            return default

    # -- MPD settings ----------------------------------------------------------

    def get_mpd_host(self) -> str:
        """Return the MPD host.

        Returns:
            Host string (default "localhost").
        """
        value = self._settings.value(_KEY_MPD_HOST, DEFAULT_HOST, str)
        return str(value) if value else DEFAULT_HOST

    def set_mpd_host(self, host: str) -> None:
        """Set the MPD host.

        Args:
            host: Hostname or IP.
        """
        self._settings.setValue(_KEY_MPD_HOST, host)

    def get_mpd_port(self) -> int:
        """Return the MPD port.

        Returns:
            Port number (default 6600).
        """
        value = self._number(_KEY_MPD_PORT, DEFAULT_PORT)
        return int(_clamp(value, 1, 65535))

    def set_mpd_port(self, port: int) -> None:
        """Set the MPD port.

        Args:
            port: Port number (1-65535).
        """
        self._settings.setValue(_KEY_MPD_PORT, max(1, min(65535, port)))

    def get_reconnect_interval(self) -> float:
        """Return the reconnect interval in seconds (0 disables)."""
        value = self._number(_KEY_MPD_RECONNECT_INTERVAL, DEFAULT_RECONNECT_INTERVAL)
        return _clamp(value, 0.0, MAX_RECONNECT_INTERVAL)

    def set_reconnect_interval(self, seconds: float) -> None:
        self._settings.setValue(_KEY_MPD_RECONNECT_INTERVAL, _clamp(seconds, 0.0, MAX_RECONNECT_INTERVAL))

    def get_batch_delay(self) -> float:
        """Return the command batching delay in seconds."""
        value = self._number(_KEY_MPD_BATCH_DELAY, DEFAULT_BATCH_DELAY)
        return _clamp(value, 0.0, MAX_BATCH_DELAY)

    def set_batch_delay(self, seconds: float) -> None:
        self._settings.setValue(_KEY_MPD_BATCH_DELAY, _clamp(seconds, 0.0, MAX_BATCH_DELAY))

    # -- Logging settings ------------------------------------------------------

    def get_debug_logging(self) -> bool:
        """Return whether debug logging is enabled (default False)."""
        value = self._settings.value(_KEY_LOGGING_DEBUG, False)
        if isinstance(value, str):
            return value.lower() in ("1", "true", "yes")
        return bool(value)

    def set_debug_logging(self, enabled: bool) -> None:
        self._settings.setValue(_KEY_LOGGING_DEBUG, enabled)

    # -- General settings ------------------------------------------------------

    def load_client_settings(self) -> ClientSettings:
        """Collect the stored settings for building a client."""
        return ClientSettings(
            host=self.get_mpd_host(),
            port=self.get_mpd_port(),
            reconnect_interval=self.get_reconnect_interval(),
            batch_delay=self.get_batch_delay(),
            debug=self.get_debug_logging(),
        )

    def clear(self) -> None:
        """Clear all settings (useful for testing or reset)."""
        self._settings.clear()

    def sync(self) -> None:
        """Force settings to be written to disk."""
        self._settings.sync()
