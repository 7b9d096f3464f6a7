import asyncio

import pytest

from keepmarks.limiter import ConcurrencyLimiter


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


@pytest.mark.asyncio
async def test_admission_is_fifo_and_bounded():
    limiter = ConcurrencyLimiter(2)
    order = []
    peak = 0

    async def worker(n: int, gate: asyncio.Event):
        nonlocal peak
        async with limiter:
            order.append(n)
            peak = max(peak, limiter.active)
            await gate.wait()

    gates = [asyncio.Event() for _ in range(5)]
    tasks = []
    for n in range(5):
        tasks.append(asyncio.create_task(worker(n, gates[n])))
        await asyncio.sleep(0)

    assert order == [0, 1]
    assert limiter.active == 2
    assert limiter.waiting == 3

    for n in range(5):
        gates[n].set()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    await asyncio.gather(*tasks)
    assert order == [0, 1, 2, 3, 4]
    assert peak == 2
    assert limiter.active == 0
    assert limiter.waiting == 0


@pytest.mark.asyncio
async def test_late_arrival_cannot_overtake_queued_waiter():
    limiter = ConcurrencyLimiter(1)
    await limiter.acquire()

    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0)
    assert limiter.waiting == 1

    limiter.release()
    # The permit went to the queued waiter, not to whoever asks next.
    assert limiter.active == 1
    late = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0)
    assert waiter.done()
    assert not late.done()

    limiter.release()
    await late
    limiter.release()
    assert limiter.active == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_the_queue():
    limiter = ConcurrencyLimiter(1)
    await limiter.acquire()

    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert limiter.waiting == 0
    limiter.release()
    assert limiter.active == 0


@pytest.mark.asyncio
async def test_cancel_after_admission_passes_permit_on():
    limiter = ConcurrencyLimiter(1)
    await limiter.acquire()

    first = asyncio.create_task(limiter.acquire())
    second = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0)

    # Hand the permit to `first`, then cancel it before it gets to run.
    limiter.release()
    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    await asyncio.wait_for(second, timeout=1)
    assert limiter.active == 1
    limiter.release()
    assert limiter.active == 0


@pytest.mark.asyncio
async def test_over_release_is_an_error():
    limiter = ConcurrencyLimiter(1)
    with pytest.raises(RuntimeError):
        limiter.release()
