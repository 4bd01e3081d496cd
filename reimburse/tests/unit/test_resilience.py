from __future__ import annotations

import pytest

from reimburse.services.resilience import RetryPolicy, retry_async
from reimburse.services.telemetry import counters_snapshot


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    result = await retry_async(
        flaky,
        policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1),
        name="test",
    )
    assert result == "ok"
    assert calls["count"] == 2
    assert counters_snapshot()["retries.test"] == 1


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_permanent_errors() -> None:
    calls = {"count": 0}

    async def broken() -> str:
        calls["count"] += 1
        raise ValueError("bad request")

    with pytest.raises(ValueError):
        await retry_async(broken, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_retry_async_gives_up_after_max_attempts() -> None:
    calls = {"count": 0}

    async def down() -> str:
        calls["count"] += 1
        raise ConnectionError("refused")

    with pytest.raises(ConnectionError):
        await retry_async(down, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 3
