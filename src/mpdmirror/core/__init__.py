"""Qt integration layer.

Classes:
    MpdWorker: QThread worker for the async client.
    ConfigManager: QSettings wrapper for configuration.
"""

from mpdmirror.core.config import ClientSettings, ConfigManager
from mpdmirror.core.worker import MpdWorker

__all__ = ["ClientSettings", "ConfigManager", "MpdWorker"]
