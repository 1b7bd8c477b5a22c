"""Tests for with_timeout and gather_settled."""

import asyncio

import pytest

from sonosctrl.api.protocol import OperationTimeoutError, SonosError
from sonosctrl.core.timeouts import Outcome, describe_error, gather_settled, with_timeout


async def _value(value: object, delay: float = 0.0) -> object:
    await asyncio.sleep(delay)
    return value


async def _fail(error: Exception) -> None:
    raise error


class TestWithTimeout:
    """Tests for with_timeout."""

    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        """Test the result is passed through."""
        assert await with_timeout(_value(42), 1.0) == 42

    @pytest.mark.asyncio
    async def test_raises_timeout_error(self) -> None:
        """Test a slow call raises OperationTimeoutError with the message."""
        with pytest.raises(OperationTimeoutError, match="getVolume timed out"):
            await with_timeout(_value(1, delay=1.0), 0.01, "getVolume timed out")

    @pytest.mark.asyncio
    async def test_timeout_error_hierarchy(self) -> None:
        """Test the timeout error is both a SonosError and a TimeoutError."""
        with pytest.raises(OperationTimeoutError) as info:
            await with_timeout(_value(1, delay=1.0), 0.01)
        assert isinstance(info.value, SonosError)
        assert isinstance(info.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_propagates_errors(self) -> None:
        """Test failures of the operation propagate unchanged."""
        with pytest.raises(ConnectionError):
            await with_timeout(_fail(ConnectionError("refused")), 1.0)


class TestGatherSettled:
    """Tests for gather_settled."""

    @pytest.mark.asyncio
    async def test_keeps_order_and_errors(self) -> None:
        """Test every outcome is returned in argument order."""
        results = await gather_settled(
            _value("a", delay=0.02),
            _fail(ConnectionError("boom")),
            _value("c"),
        )
        assert [r.ok for r in results] == [True, False, True]
        assert results[0].value == "a"
        assert isinstance(results[1].error, ConnectionError)
        assert results[2].get() == "c"

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_others(self) -> None:
        """Test a fast failure leaves slower operations running."""
        results = await gather_settled(_fail(ValueError()), _value(1, delay=0.02))
        assert results[1].value == 1

    @pytest.mark.asyncio
    async def test_empty(self) -> None:
        """Test gathering nothing returns an empty list."""
        assert await gather_settled() == []


class TestOutcome:
    """Tests for Outcome and describe_error."""

    def test_get_returns_none_on_error(self) -> None:
        """Test get() hides the value of a failed outcome."""
        assert Outcome(value=1, error=ValueError()).get() is None

    def test_falsy_value_is_ok(self) -> None:
        """Test a successful falsy value is still ok."""
        outcome = Outcome(value=0)
        assert outcome.ok
        assert outcome.get() == 0

    def test_describe_error_uses_type_when_message_empty(self) -> None:
        """Test errors without a message are described by type."""
        assert describe_error(TimeoutError()) == "TimeoutError"
        assert describe_error(ValueError("bad")) == "bad"
        assert describe_error(None) == ""
