"""Tests for retry logic with exponential backoff."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from pairbot.utils.retry import calculate_backoff_delay, with_retry


class TestCalculateBackoffDelay:
    """Tests for backoff delay calculation."""

    def test_exponential_growth(self) -> None:
        """Test that delay grows exponentially."""
        delays = [calculate_backoff_delay(n, base_delay=1.0, jitter=0.0) for n in range(3)]

        # 2^0=1, 2^1=2, 2^2=4
        assert delays == [1.0, 2.0, 4.0]

    def test_max_delay_cap(self) -> None:
        delay = calculate_backoff_delay(10, base_delay=1.0, max_delay=10.0, jitter=0.0)
        assert delay == 10.0

    def test_jitter_stays_in_band(self) -> None:
        delays = [calculate_backoff_delay(2, base_delay=1.0, jitter=0.1) for _ in range(100)]

        assert len(set(delays)) > 1
        for delay in delays:
            assert 3.6 <= delay <= 4.4

    def test_negative_delay_prevented(self) -> None:
        delay = calculate_backoff_delay(0, base_delay=0.1, jitter=1.0)
        assert delay >= 0


class TestRetryDecorator:
    """Tests for retry decorator."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self) -> None:
        call_count = 0

        @with_retry(max_attempts=3)
        async def succeeds_immediately() -> str:
            nonlocal call_count
            call_count += 1
            return "success"

        assert await succeeds_immediately() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_http_transport_error(self) -> None:
        """httpx connection failures are retried."""
        call_count = 0

        @with_retry(max_attempts=3, base_delay=0.01)
        async def fails_twice() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise httpx.ConnectError("connection refused")
            return "success"

        assert await fails_twice() == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_retry_on_timeout_error(self) -> None:
        call_count = 0

        @with_retry(max_attempts=3, base_delay=0.01)
        async def fails_with_timeout() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise TimeoutError("Request timeout")
            return "success"

        assert await fails_with_timeout() == "success"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_no_retry_on_cancelled_error(self) -> None:
        """CancelledError propagates immediately."""
        call_count = 0

        @with_retry(max_attempts=3)
        async def raises_cancelled() -> str:
            nonlocal call_count
            call_count += 1
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await raises_cancelled()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_no_retry_on_other_errors(self) -> None:
        call_count = 0

        @with_retry(max_attempts=3, base_delay=0.01)
        async def bad_input() -> str:
            nonlocal call_count
            call_count += 1
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await bad_input()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_failure_after_max_attempts(self) -> None:
        call_count = 0

        @with_retry(max_attempts=2, base_delay=0.01)
        async def always_fails() -> str:
            nonlocal call_count
            call_count += 1
            raise ConnectionError("down")

        with pytest.raises(ConnectionError, match="down"):
            await always_fails()
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_preserves_function_metadata(self) -> None:
        @with_retry()
        async def documented() -> None:
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."
