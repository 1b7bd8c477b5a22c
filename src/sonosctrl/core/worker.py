"""QThread worker running the Sonos sync engine in a Qt application.

Qt objects live in the main thread, but the engine uses asyncio. This
worker runs the asyncio event loop in a background thread and bridges the
engine's notifications to the main thread via Qt signals.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from PySide6.QtCore import QThread, Signal

from sonosctrl.api.protocol import SonosService
from sonosctrl.core.changes import ChangeEvent, ChangeField
from sonosctrl.core.engine import SonosSync
from sonosctrl.models.settings import SyncConfig
from sonosctrl.models.snapshot import GroupSnapshot

logger = logging.getLogger(__name__)


class SonosWorker(QThread):
    """Background thread hosting the SonosSync engine.

    Implements the engine's change notifier by emitting Qt signals, so the
    main thread receives every update through queued connections.

    Example:
        worker = SonosWorker(SocoService(), config)
        worker.groups_established.connect(state.set_groups)
        worker.track_changed.connect(lambda gid, track: print(gid, track))
        worker.start()
    """

    # Snapshot signal
    groups_established = Signal(object)  # dict[str, GroupSnapshot]

    # Field change signals: (group_id, value)
    track_changed = Signal(str, object)  # Track
    volume_changed = Signal(str, int)
    mute_changed = Signal(str, bool)
    state_changed = Signal(str, object)  # PlayState

    # Every change as one signal, for consumers that mirror state
    change_published = Signal(object)  # ChangeEvent

    # Command results: (group_id, command, success)
    command_finished = Signal(str, str, bool)

    # Error signal
    error_occurred = Signal(object)  # Exception

    def __init__(
        self,
        service: SonosService,
        config: SyncConfig,
        engine_factory: Callable[..., SonosSync] = SonosSync,
    ) -> None:
        """Initialize the worker.

        Args:
            service: Device service handed to the engine.
            config: Engine settings.
            engine_factory: Builds the engine (tests substitute their own).
        """
        super().__init__()
        self._service = service
        self._config = config
        self._engine_factory = engine_factory
        self._engine: SonosSync | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._should_run = True

    @property
    def config(self) -> SyncConfig:
        """Return the engine settings."""
        return self._config

    @property
    def engine(self) -> SonosSync | None:
        """Return the engine while the worker runs."""
        return self._engine

    # -- ChangeNotifier ---------------------------------------------------------

    def publish_groups(self, snapshots: dict[str, GroupSnapshot]) -> None:
        """Forward a bulk snapshot to the main thread."""
        self.groups_established.emit(snapshots)

    def publish_change(self, event: ChangeEvent) -> None:
        """Forward a single-field change to the main thread."""
        self.change_published.emit(event)
        if event.field is ChangeField.TRACK:
            self.track_changed.emit(event.group_id, event.value)
        elif event.field is ChangeField.VOLUME:
            self.volume_changed.emit(event.group_id, event.value)
        elif event.field is ChangeField.MUTED:
            self.mute_changed.emit(event.group_id, event.value)
        else:
            self.state_changed.emit(event.group_id, event.value)

    # -- Thread-safe commands ---------------------------------------------------

    def stop(self) -> None:
        """Signal the worker to stop (called from main thread)."""
        self._should_run = False
        if self._loop and self._loop.is_running() and self._stop_event is not None:
            self._loop.call_soon_threadsafe(self._stop_event.set)

    def toggle(self, group_id: str) -> None:
        """Toggle play/pause of a group.

        Thread-safe call from main thread.
        """
        self._submit(group_id, "toggle", lambda engine: engine.toggle(group_id))

    def next_track(self, group_id: str) -> None:
        """Skip to the next track of a group.

        Thread-safe call from main thread.
        """
        self._submit(group_id, "next", lambda engine: engine.next(group_id))

    def set_volume(self, group_id: str, volume: object) -> None:
        """Set a group's volume.

        Thread-safe call from main thread.

        Args:
            group_id: ID of the group.
            volume: Volume 0-100 (clamped by the engine).
        """
        self._submit(group_id, "set_volume", lambda engine: engine.set_volume(group_id, volume))

    def report_error(self, reason: str) -> None:
        """Report an external failure so the engine rediscovers.

        Thread-safe call from main thread.
        """
        if self._loop and self._loop.is_running() and self._engine:
            self._loop.call_soon_threadsafe(self._engine.report_error, reason)

    def _submit(
        self,
        group_id: str,
        command: str,
        call: Callable[[SonosSync], Coroutine[Any, Any, bool]],
    ) -> None:
        if self._loop and self._loop.is_running() and self._engine:
            asyncio.run_coroutine_threadsafe(
                self._safe_command(group_id, command, call),
                self._loop,
            )

    async def _safe_command(
        self,
        group_id: str,
        command: str,
        call: Callable[[SonosSync], Coroutine[Any, Any, bool]],
    ) -> None:
        """Run a command with error handling and report its result."""
        if self._engine is None:
            return
        try:
            ok = await call(self._engine)
        except Exception as e:  # noqa: BLE001
            self.error_occurred.emit(e)
            ok = False
        self.command_finished.emit(group_id, command, ok)

    # -- Thread body ------------------------------------------------------------

    def run(self) -> None:
        """Run the worker thread (entry point)."""
        # Create new event loop for this thread
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        try:
            self._loop.run_until_complete(self._main())
        except Exception as e:
            logger.exception("Sonos worker crashed")
            self.error_occurred.emit(e)
        finally:
            self._loop.close()
            self._loop = None
            self._engine = None

    async def _main(self) -> None:
        """Start the engine and keep it running until stop() is called."""
        self._stop_event = asyncio.Event()
        self._engine = self._engine_factory(self._service, self, self._config)
        self._engine.start(self._config)
        try:
            if self._should_run:
                await self._stop_event.wait()
        finally:
            await self._engine.stop()
