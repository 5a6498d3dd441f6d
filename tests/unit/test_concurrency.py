import asyncio

import pytest

from portfolio_engine.utils.concurrency import bounded_gather


async def test_results_keep_input_order():
    async def job(value, delay):
        await asyncio.sleep(delay)
        return value

    factories = [lambda v=v, d=d: job(v, d) for v, d in [(1, 0.03), (2, 0.0), (3, 0.01)]]
    assert await bounded_gather(factories, limit=3) == [1, 2, 3]


async def test_never_exceeds_limit():
    running = 0
    peak = 0

    async def job():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    await bounded_gather([job for _ in range(10)], limit=2)
    assert peak == 2


async def test_first_error_propagates_after_others_finish():
    finished = []

    async def ok(i):
        await asyncio.sleep(0.01)
        finished.append(i)

    async def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await bounded_gather([lambda: ok(1), boom, lambda: ok(2)], limit=3)
    assert sorted(finished) == [1, 2]


async def test_empty_and_invalid_limit():
    assert await bounded_gather([], limit=1) == []
    with pytest.raises(ValueError):
        await bounded_gather([], limit=0)
