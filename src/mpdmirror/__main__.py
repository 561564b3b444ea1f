"""Command line entry point: connect to MPD and log what happens."""

import argparse
import logging
import signal
import sys
from dataclasses import replace

from PySide6.QtCore import QCoreApplication, QTimer

from mpdmirror.api.events import MpdEvent
from mpdmirror.core.config import ConfigManager
from mpdmirror.core.worker import MpdWorker
from mpdmirror.models.state import StateSnapshot

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="mpdmirror",
        description="Mirror the state of an MPD server and log its events",
    )
    parser.add_argument("host", nargs="?", default=None, help="MPD hostname or IP")
    parser.add_argument("port", nargs="?", type=int, default=None, help="TCP port (default: 6600)")
    parser.add_argument("--host", dest="host_flag", default=None, help="MPD hostname or IP")
    parser.add_argument("--port", dest="port_flag", type=int, default=None, help="TCP port")
    parser.add_argument("--debug", action="store_true", help="log every protocol line")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the mirror until interrupted.

    Returns:
        Exit code (0 for success).
    """
    QCoreApplication.setApplicationName("mpdmirror")
    QCoreApplication.setOrganizationName("mpdmirror")
    app = QCoreApplication(sys.argv)

    parsed = build_parser().parse_args(argv if argv is not None else app.arguments()[1:])
    config = ConfigManager()
    settings = config.load_client_settings()

    host = parsed.host_flag or parsed.host or settings.host
    port = parsed.port_flag if parsed.port_flag is not None else parsed.port
    settings = replace(
        settings,
        host=host,
        port=port if port is not None else settings.port,
        debug=parsed.debug or settings.debug,
    )

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
    )
    logger.info("Mirroring MPD at %s:%d", settings.host, settings.port)

    worker = MpdWorker(settings)

    def on_data_loaded(snapshot: StateSnapshot) -> None:
        song = snapshot.get_current_song()
        logger.info(
            "State loaded: %s, %d queued, %d playlists, now playing %s",
            snapshot.playstate,
            len(snapshot.current_queue) if snapshot.current_queue is not None else 0,
            len(snapshot.playlists),
            song.display_name if song else "nothing",
        )

    def on_event(event: MpdEvent) -> None:
        logger.debug("Event %s", event.type)

    def on_error(err: object) -> None:
        logger.error("Error: %s", err)

    worker.connected.connect(lambda: logger.info("Connected"))
    worker.disconnected.connect(lambda: logger.warning("Disconnected"))
    worker.data_loaded.connect(on_data_loaded)
    worker.state_changed.connect(lambda update: logger.info("State changed: %s", update.get("playstate")))
    worker.queue_changed.connect(lambda queue: logger.info("Queue changed: %d songs", len(queue)))
    worker.playlists_changed.connect(lambda playlists: logger.info("%d stored playlists", len(playlists)))
    worker.database_changing.connect(lambda: logger.info("Database update running"))
    worker.event_received.connect(on_event)
    worker.error_occurred.connect(on_error)

    # Let the Python interpreter see Ctrl+C while Qt runs the event loop
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    tick = QTimer()
    tick.timeout.connect(lambda: None)
    tick.start(200)

    worker.start()
    exit_code = app.exec()

    worker.stop()
    worker.wait()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
