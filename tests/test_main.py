"""Tests for the command line entry point."""

from sonosctrl.__main__ import apply_overrides, build_parser
from sonosctrl.models.settings import ListenMode, SyncConfig


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self) -> None:
        """Test no options leave everything unset."""
        args = build_parser().parse_args([])
        assert args.host is None
        assert args.rooms is None
        assert args.mode is None
        assert not args.debug
        assert not args.save

    def test_repeated_rooms(self) -> None:
        """Test --room can be given several times."""
        args = build_parser().parse_args(["--room", "Kitchen", "--room", "Den,Office"])
        assert args.rooms == ["Kitchen", "Den,Office"]


class TestOverrides:
    """Tests for applying options on top of stored settings."""

    def test_no_options_keeps_config(self) -> None:
        """Test the stored config is returned unchanged."""
        config = SyncConfig(host="10.0.0.2")
        args = build_parser().parse_args([])
        assert apply_overrides(config, args) is config

    def test_all_options(self) -> None:
        """Test every option replaces its setting."""
        args = build_parser().parse_args(
            ["--host", " 10.0.0.5 ", "--room", "Kitchen", "--room", "Den, Office", "--mode", "events", "--debug"]
        )

        config = apply_overrides(SyncConfig(), args)

        assert config.host == "10.0.0.5"
        assert config.rooms == ("Kitchen", "Den", "Office")
        assert config.mode is ListenMode.EVENTS
        assert config.debug
