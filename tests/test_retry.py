"""Tests for retry policies and backoff."""

import pytest
from fakes import no_sleep

from deployer.retry import RetryExhaustedError, RetryPolicy, retry_with_backoff


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_default_never_retries(self) -> None:
        """Test that the default policy allows no retries."""
        policy = RetryPolicy()

        assert policy.allows_retry(1) is False
        assert str(policy) == "0"

    def test_bounded(self) -> None:
        """Test the budget of a bounded policy."""
        policy = RetryPolicy.bounded(3)

        assert policy.allows_retry(3) is True
        assert policy.allows_retry(4) is False
        assert policy.is_unbounded is False

    def test_unbounded(self) -> None:
        """Test that an unbounded policy always allows another retry."""
        policy = RetryPolicy.unbounded()

        assert policy.allows_retry(10_000) is True
        assert str(policy) == "forever"

    @pytest.mark.parametrize("value", ["forever", "Infinity", " unbounded "])
    def test_parse_unbounded_keywords(self, value: str) -> None:
        """Test the keywords accepted for unbounded retries."""
        assert RetryPolicy.parse(value).is_unbounded

    def test_parse_count(self) -> None:
        """Test parsing an integer budget."""
        assert RetryPolicy.parse("7").max_retries == 7
        assert RetryPolicy.parse(2).max_retries == 2

    @pytest.mark.parametrize("value", ["soon", "-1", "1.5"])
    def test_parse_rejects_garbage(self, value: str) -> None:
        """Test that invalid budgets are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy.parse(value)

    def test_delay_grows_exponentially_with_jitter(self) -> None:
        """Test the backoff shape including the jitter bound."""
        policy = RetryPolicy.bounded(10, 1.0)

        for retry_number, base in [(1, 1.0), (2, 2.0), (3, 4.0)]:
            delay = policy.delay(retry_number)
            assert base <= delay <= base * 1.2

    def test_delay_is_capped(self) -> None:
        """Test that the delay never exceeds the cap plus jitter."""
        policy = RetryPolicy(max_retries=None, base_delay_seconds=1.0, max_delay_seconds=5.0)

        assert policy.delay(20) <= 6.0

    def test_delay_stays_finite_for_unbounded_policies(self) -> None:
        """Test that very late retries still get the capped delay."""
        policy = RetryPolicy.unbounded(1.0)

        for retry_number in (1025, 5000, 1_000_000):
            assert 30.0 <= policy.delay(retry_number) <= 36.0


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_returns_after_transient_failures(self) -> None:
        """Test that the operation's result is returned once it succeeds."""
        attempts: list[int] = []

        async def operation() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("flaky")
            return "ok"

        result = await retry_with_backoff(
            operation, RetryPolicy.bounded(5, 0.0), operation_name="flaky op", sleep=no_sleep
        )

        assert result == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_exhausted_budget(self) -> None:
        """Test that the last error is kept when the budget runs out."""

        async def operation() -> None:
            raise ConnectionError("down")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_with_backoff(operation, RetryPolicy.bounded(2, 0.0), operation_name="down op", sleep=no_sleep)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ConnectionError)

    @pytest.mark.asyncio
    async def test_non_retryable_errors_propagate(self) -> None:
        """Test that should_retry=False errors are raised untouched."""
        attempts: list[int] = []

        async def operation() -> None:
            attempts.append(1)
            raise KeyError("fatal")

        with pytest.raises(KeyError):
            await retry_with_backoff(
                operation,
                RetryPolicy.bounded(5, 0.0),
                operation_name="fatal op",
                should_retry=lambda e: not isinstance(e, KeyError),
                sleep=no_sleep,
            )

        assert len(attempts) == 1
