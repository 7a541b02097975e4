"""
Unit tests for the retry decorator.
"""

import pytest

from shared.errors import NetworkError, ValidationError
from shared.retry import RetryConfig, _calculate_delay, retry_on_exception

FAST = RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)


class Flaky:
    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0
        self.retry_config = FAST

    @retry_on_exception((NetworkError,), config_attr="retry_config")
    async def call(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetry:
    """Test cases for retry_on_exception."""

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        flaky = Flaky(failures=2, error=NetworkError("blip"))

        assert await flaky.call() == "ok"
        assert flaky.calls == 3

    @pytest.mark.asyncio
    async def test_reraises_original_error_when_exhausted(self):
        error = NetworkError("down")
        flaky = Flaky(failures=5, error=error)

        with pytest.raises(NetworkError) as exc_info:
            await flaky.call()

        assert exc_info.value is error
        assert flaky.calls == 3

    @pytest.mark.asyncio
    async def test_other_exceptions_are_not_retried(self):
        flaky = Flaky(failures=5, error=ValidationError("bad"))

        with pytest.raises(ValidationError):
            await flaky.call()

        assert flaky.calls == 1

    @pytest.mark.asyncio
    async def test_config_read_from_instance(self):
        flaky = Flaky(failures=1, error=NetworkError("blip"))
        flaky.retry_config = RetryConfig(max_attempts=1)

        with pytest.raises(NetworkError):
            await flaky.call()

        assert flaky.calls == 1

    @pytest.mark.asyncio
    async def test_plain_function(self):
        calls = []

        @retry_on_exception((NetworkError,), config=FAST)
        async def fetch():
            calls.append(1)
            if len(calls) < 2:
                raise NetworkError("blip")
            return len(calls)

        assert await fetch() == 2
        assert fetch.__name__ == "fetch"

    def test_delay_strategies(self):
        exponential = RetryConfig(base_delay=1.0, jitter=False)
        linear = RetryConfig(base_delay=1.0, jitter=False, backoff_strategy="linear")
        capped = RetryConfig(base_delay=10.0, max_delay=15.0, jitter=False)

        assert _calculate_delay(3, exponential) == 4.0
        assert _calculate_delay(3, linear) == 3.0
        assert _calculate_delay(3, capped) == 15.0

    def test_max_attempts_is_at_least_one(self):
        assert RetryConfig(max_attempts=0).max_attempts == 1
