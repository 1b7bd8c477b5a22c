"""Main entry point for the SonosCTRL sync service."""

import argparse
import logging
import signal
import sys
from dataclasses import replace

from PySide6.QtCore import QCoreApplication, QTimer

from sonosctrl.api.soco_service import SocoService
from sonosctrl.core.changes import ChangeEvent
from sonosctrl.core.config import ConfigManager, parse_rooms
from sonosctrl.core.state import StateStore
from sonosctrl.core.worker import SonosWorker
from sonosctrl.models.settings import ListenMode, SyncConfig
from sonosctrl.models.snapshot import GroupSnapshot

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """Return the command line parser."""
    parser = argparse.ArgumentParser(
        prog="sonosctrl",
        description="SonosCTRL: live state sync for Sonos groups",
    )
    parser.add_argument("--host", default=None, help="controller speaker IP (skips mDNS)")
    parser.add_argument(
        "--room",
        action="append",
        dest="rooms",
        default=None,
        help="only track groups containing this room (repeatable or comma-separated)",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ListenMode],
        default=None,
        help="listening strategy (default: hybrid)",
    )
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--save", action="store_true", help="persist the given options")
    return parser


def apply_overrides(config: SyncConfig, args: argparse.Namespace) -> SyncConfig:
    """Apply command line options on top of the stored settings."""
    changes: dict[str, object] = {}
    if args.host is not None:
        changes["host"] = args.host.strip()
    if args.rooms:
        changes["rooms"] = parse_rooms(",".join(args.rooms))
    if args.mode is not None:
        changes["mode"] = ListenMode.parse(args.mode)
    if args.debug:
        changes["debug"] = True
    return replace(config, **changes) if changes else config  # type: ignore[arg-type]


def main() -> int:
    """Run the SonosCTRL sync service.

    Returns:
        Exit code (0 for success).
    """
    QCoreApplication.setApplicationName("SonosCTRL")
    QCoreApplication.setOrganizationName("SonosCTRL")

    app = QCoreApplication(sys.argv)
    args = build_parser().parse_args(app.arguments()[1:])

    config_manager = ConfigManager()
    config = apply_overrides(config_manager.load(), args)
    if args.save:
        config_manager.save(config)
        config_manager.sync()

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format=LOG_FORMAT,
    )
    if not config.debug:
        # SoCo and aiohttp are chatty at INFO
        logging.getLogger("soco").setLevel(logging.WARNING)
        logging.getLogger("aiohttp").setLevel(logging.WARNING)

    state_store = StateStore()
    service = SocoService(host=config.host)
    worker = SonosWorker(service, config)

    # Console stand-in for the display layer
    def on_groups(snapshots: dict[str, GroupSnapshot]) -> None:
        state_store.set_groups(snapshots)
        for snapshot in snapshots.values():
            logger.info(
                "Group %s: %s (%s, volume %d%s)",
                snapshot.group.display_name,
                snapshot.track or "nothing",
                snapshot.state.value,
                snapshot.volume,
                ", muted" if snapshot.muted else "",
            )

    def on_change(event: ChangeEvent) -> None:
        state_store.apply_change(event)

    def on_error(error: object) -> None:
        logger.error("Worker error: %s", error)

    worker.groups_established.connect(on_groups)
    worker.change_published.connect(on_change)
    worker.error_occurred.connect(on_error)

    # Let Ctrl+C quit the Qt loop; the timer gives Python a chance to run the handler
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    interrupt_timer = QTimer()
    interrupt_timer.start(250)
    interrupt_timer.timeout.connect(lambda: None)

    worker.start()
    logger.info("SonosCTRL started (mode: %s)", config.mode.value)
    exit_code = app.exec()

    logger.info("Shutting down...")
    interrupt_timer.stop()
    worker.stop()
    worker.wait()
    service.close()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
