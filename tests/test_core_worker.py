"""Tests for SonosWorker (QThread hosting the sync engine)."""

import pytest
from conftest import FakeDevice, FakeService, fast_config, make_group
from pytestqt.qtbot import QtBot

from sonosctrl.core.changes import ChangeEvent, ChangeField
from sonosctrl.core.worker import SonosWorker
from sonosctrl.models.group import Group
from sonosctrl.models.track import PlayState, Track


@pytest.fixture
def kitchen() -> FakeDevice:
    """Return the kitchen coordinator."""
    return FakeDevice("Kitchen", volume=25)


@pytest.fixture
def worker(kitchen: FakeDevice) -> SonosWorker:
    """Return an idle worker with one group behind a fake service."""
    service = FakeService([make_group("g1", "Kitchen", kitchen)])
    return SonosWorker(service, fast_config())


class TestSonosWorkerBasics:
    """Test basic SonosWorker functionality."""

    def test_initialization(self, worker: SonosWorker) -> None:
        """Test worker initialization."""
        assert worker.engine is None
        assert worker.config.polling_interval_playing == 60.0
        assert worker._should_run is True

    def test_stop_sets_flag(self, worker: SonosWorker) -> None:
        """Test that stop sets the should_run flag."""
        worker.stop()
        assert worker._should_run is False

    def test_commands_without_loop(self, worker: SonosWorker) -> None:
        """Test commands are safe when the loop is not running."""
        # Should not crash
        worker.toggle("g1")
        worker.next_track("g1")
        worker.set_volume("g1", 50)
        worker.report_error("no loop")


class TestPublishChange:
    """Test change routing to the per-field signals."""

    @pytest.mark.parametrize(
        ("field", "value", "signal"),
        [
            (ChangeField.TRACK, Track(title="Song"), "track_changed"),
            (ChangeField.VOLUME, 40, "volume_changed"),
            (ChangeField.MUTED, True, "mute_changed"),
            (ChangeField.STATE, PlayState.PAUSED, "state_changed"),
        ],
    )
    def test_routing(
        self, qtbot: QtBot, worker: SonosWorker, field: ChangeField, value: object, signal: str
    ) -> None:
        """Test each field is emitted on its own signal and on change_published."""
        event = ChangeEvent(group_id="g1", group=Group(id="g1"), field=field, value=value)  # type: ignore[arg-type]
        published: list[ChangeEvent] = []
        field_args: list[list[object]] = []
        worker.change_published.connect(published.append)
        getattr(worker, signal).connect(lambda *args: field_args.append(list(args)))

        worker.publish_change(event)

        assert published == [event]
        assert field_args == [["g1", value]]

    def test_routing_skips_other_field_signals(self, qtbot: QtBot, worker: SonosWorker) -> None:
        """Test a volume change is not emitted on the other field signals."""
        emitted: list[str] = []
        worker.track_changed.connect(lambda *_: emitted.append("track"))
        worker.mute_changed.connect(lambda *_: emitted.append("muted"))
        worker.state_changed.connect(lambda *_: emitted.append("state"))
        worker.volume_changed.connect(lambda *_: emitted.append("volume"))

        worker.publish_change(
            ChangeEvent(group_id="g1", group=Group(id="g1"), field=ChangeField.VOLUME, value=40)
        )

        assert emitted == ["volume"]

    def test_publish_groups(self, qtbot: QtBot, worker: SonosWorker) -> None:
        """Test snapshots are forwarded unchanged."""
        with qtbot.waitSignal(worker.groups_established, timeout=1000) as blocker:
            worker.publish_groups({})
        assert blocker.args == [{}]


class TestSonosWorkerThread:
    """Test the worker running its own event loop."""

    def test_runs_engine(self, qtbot: QtBot, worker: SonosWorker, kitchen: FakeDevice) -> None:
        """Test groups are established and commands reach the device."""
        with qtbot.waitSignal(worker.groups_established, timeout=3000) as blocker:
            worker.start()
        assert list(blocker.args[0]) == ["g1"]

        with qtbot.waitSignal(worker.command_finished, timeout=3000) as blocker:
            worker.set_volume("g1", 140)
        assert blocker.args == ["g1", "set_volume", True]
        assert kitchen.called("set_volume") == [("set_volume", 100)]

        worker.stop()
        assert worker.wait(3000)
        assert worker.engine is None

    def test_stop_before_start(self, worker: SonosWorker) -> None:
        """Test a worker stopped before its loop runs exits promptly."""
        worker.stop()
        worker.start()
        assert worker.wait(3000)
