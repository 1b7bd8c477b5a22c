"""Tests for HealthRecord and HealthStore."""

from sonosctrl.core.health import HealthRecord, HealthStore
from sonosctrl.models.group import Group
from sonosctrl.models.track import PlayState


class TestHealthStore:
    """Tests for HealthStore."""

    def test_init_all_creates_fresh_records(self) -> None:
        """Test one empty record is created per group."""
        store = HealthStore()
        store.init_all([Group(id="a"), Group(id="b")])
        assert len(store) == 2
        record = store.get("a")
        assert record is not None
        assert record.consecutive_failures == 0
        assert record.device is None
        assert record.play_state is PlayState.UNKNOWN

    def test_init_all_replaces_previous_records(self) -> None:
        """Test re-initialization drops groups that disappeared."""
        store = HealthStore()
        store.init_all([Group(id="a")])
        store.init_all([Group(id="b")])
        assert "a" not in store
        assert "b" in store

    def test_get_unknown(self) -> None:
        """Test unknown groups return None."""
        assert HealthStore().get("missing") is None

    def test_any_playing(self) -> None:
        """Test any_playing reflects the records' play state."""
        store = HealthStore()
        store.init_all([Group(id="a"), Group(id="b")])
        assert store.any_playing() is False
        record = store.get("b")
        assert record is not None
        record.play_state = PlayState.PLAYING
        assert store.any_playing() is True

    def test_clear_all(self) -> None:
        """Test clear_all empties the store."""
        store = HealthStore()
        store.init_all([Group(id="a")])
        store.clear_all()
        assert len(store) == 0

    def test_iteration_tolerates_clear(self) -> None:
        """Test clearing while iterating does not raise."""
        store = HealthStore()
        store.init_all([Group(id="a"), Group(id="b")])
        seen = []
        for record in store:
            seen.append(record.group_id)
            store.clear_all()
        assert seen == ["a", "b"]


class TestHealthRecord:
    """Tests for HealthRecord."""

    def test_is_playing(self) -> None:
        """Test is_playing follows play_state."""
        record = HealthRecord(group_id="a")
        assert record.is_playing is False
        record.play_state = PlayState.PLAYING
        assert record.is_playing is True
