"""Tests for the queue scheduler: pacing, 429 retries, FIFO order, skipping abandoned entries."""
import asyncio

import pytest

from app.services.gemini_client import GenerationError, RateLimitedError
from app.services.queue_scheduler import QueueScheduler, RetryPolicy, is_rate_limited


class FakeClock:
    """Virtual time: ``sleep`` advances the clock instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def make_scheduler(clock, min_delay=1.0, **policy):
    return QueueScheduler(
        min_delay=min_delay,
        retry_policy=RetryPolicy(**policy),
        sleep=clock.sleep,
        clock=clock,
    )


def flaky(failures, exc_factory=lambda: RateLimitedError("429 Too Many Requests")):
    """Operation that raises *failures* times and then returns 'ok'."""
    attempts = []

    async def op():
        attempts.append(len(attempts) + 1)
        if len(attempts) <= failures:
            raise exc_factory()
        return "ok"

    return op, attempts


# ---------------------------------------------------------------------------
# Rate-limit detection
# ---------------------------------------------------------------------------

def test_is_rate_limited_detects_throttling_signals():
    assert is_rate_limited(RateLimitedError("slow down"))
    assert is_rate_limited(RuntimeError("upstream said 429"))
    assert not is_rate_limited(GenerationError("Gemini returned HTTP 500", status_code=500))
    assert not is_rate_limited(ValueError("bad input"))


def test_linear_and_exponential_backoff():
    linear = RetryPolicy(base_delay=2.0)
    assert [linear.backoff_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 6.0]

    exponential = RetryPolicy(base_delay=1.0, exponential=True)
    assert [exponential.backoff_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_calls_are_spaced_by_min_delay():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=1.0)
    starts = []

    def op_for(i):
        async def op():
            starts.append(clock())
            return i
        return op

    results = await asyncio.gather(*[scheduler.submit(op_for(i)) for i in range(4)])

    assert results == [0, 1, 2, 3]
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= 1.0 for gap in gaps)
    # The first call never waits
    assert starts[0] == 0.0


@pytest.mark.asyncio
async def test_min_delay_also_applies_after_a_failure():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=1.0)
    starts = []

    async def failing():
        starts.append(clock())
        raise ValueError("boom")

    async def succeeding():
        starts.append(clock())
        return "ok"

    with pytest.raises(ValueError):
        await scheduler.submit(failing)
    assert await scheduler.submit(succeeding) == "ok"

    assert starts[1] - starts[0] >= 1.0


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rate_limited_call_is_retried_until_success():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=0.0, max_retries=3, base_delay=2.0)
    op, attempts = flaky(failures=2)

    assert await scheduler.submit(op) == "ok"

    assert len(attempts) == 3
    assert clock.sleeps == [2.0, 4.0]
    assert clock.sleeps == sorted(set(clock.sleeps))  # strictly increasing


@pytest.mark.asyncio
async def test_retries_exhausted_after_max_retries_plus_one_attempts():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=0.0, max_retries=3, base_delay=2.0)
    op, attempts = flaky(failures=10)

    with pytest.raises(RateLimitedError):
        await scheduler.submit(op)

    assert len(attempts) == 4
    assert clock.sleeps == [2.0, 4.0, 6.0]


@pytest.mark.asyncio
async def test_exponential_backoff_schedule():
    clock = FakeClock()
    scheduler = make_scheduler(
        clock, min_delay=0.0, max_retries=3, base_delay=1.0, exponential=True
    )
    op, attempts = flaky(failures=3)

    assert await scheduler.submit(op) == "ok"
    assert clock.sleeps == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_non_rate_limit_error_fails_without_retry():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=0.0, max_retries=3, base_delay=2.0)
    op, attempts = flaky(failures=1, exc_factory=lambda: GenerationError("HTTP 500", 500))

    with pytest.raises(GenerationError):
        await scheduler.submit(op)

    assert attempts == [1]
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_failed_entry_does_not_block_the_queue():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=0.0)

    async def bad():
        raise ValueError("nope")

    async def good():
        return "fine"

    results = await asyncio.gather(
        scheduler.submit(bad), scheduler.submit(good), return_exceptions=True
    )
    assert isinstance(results[0], ValueError)
    assert results[1] == "fine"


# ---------------------------------------------------------------------------
# Ordering and the drain loop
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_entries_run_in_fifo_order_one_at_a_time():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=0.0)
    order = []
    in_flight = 0
    max_in_flight = 0

    def op_for(i):
        async def op():
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            order.append(i)
            for _ in range(3):
                await asyncio.sleep(0)
            in_flight -= 1
            return i
        return op

    await asyncio.gather(*[scheduler.submit(op_for(i)) for i in range(6)])

    assert order == list(range(6))
    assert max_in_flight == 1


@pytest.mark.asyncio
async def test_submit_during_drain_reuses_the_running_loop():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=0.0)
    release = asyncio.Event()

    async def blocker():
        await release.wait()
        return "first"

    async def quick():
        return "second"

    first = asyncio.create_task(scheduler.submit(blocker))
    await asyncio.sleep(0)
    drain_task = scheduler._drain_task
    assert scheduler.is_processing

    second = asyncio.create_task(scheduler.submit(quick))
    await asyncio.sleep(0)
    assert scheduler._drain_task is drain_task
    assert scheduler.queue_depth == 1

    release.set()
    assert await first == "first"
    assert await second == "second"

    await drain_task
    assert not scheduler.is_processing


@pytest.mark.asyncio
async def test_abandoned_entry_is_skipped():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=0.0)
    release = asyncio.Event()
    called = []

    async def blocker():
        await release.wait()
        return "first"

    async def abandoned():
        called.append("abandoned")
        return "never"

    first = asyncio.create_task(scheduler.submit(blocker))
    second = asyncio.create_task(scheduler.submit(abandoned))
    await asyncio.sleep(0)

    second.cancel()
    with pytest.raises(asyncio.CancelledError):
        await second

    release.set()
    assert await first == "first"
    for _ in range(5):
        await asyncio.sleep(0)

    assert called == []
    assert not scheduler.is_processing


@pytest.mark.asyncio
async def test_close_cancels_pending_entries():
    clock = FakeClock()
    scheduler = make_scheduler(clock, min_delay=0.0)
    release = asyncio.Event()

    async def blocker():
        await release.wait()

    async def never():
        return "never"

    first = asyncio.create_task(scheduler.submit(blocker))
    second = asyncio.create_task(scheduler.submit(never))
    await asyncio.sleep(0)

    await scheduler.close()

    results = await asyncio.gather(first, second, return_exceptions=True)
    assert all(isinstance(r, asyncio.CancelledError) for r in results)
    assert not scheduler.is_processing
    assert scheduler.queue_depth == 0
