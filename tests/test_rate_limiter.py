import asyncio

import pytest

from wscli.client.rate_limiter import RateLimit, RateLimiter, TokenBucket


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_bucket_starts_full_and_caps_idle_accrual() -> None:
    clock = FakeClock()
    bucket = TokenBucket(5, 1, clock=clock, sleep=clock.sleep)
    clock.now += 1000

    assert bucket.tokens == 5
    taken = [bucket.try_acquire() for _ in range(6)]
    assert taken == [True] * 5 + [False]


def test_bucket_refills_at_rate() -> None:
    clock = FakeClock()
    bucket = TokenBucket(4, 2, clock=clock, sleep=clock.sleep)
    for _ in range(4):
        assert bucket.try_acquire()
    assert not bucket.try_acquire()

    clock.now += 0.5
    assert bucket.try_acquire()
    assert not bucket.try_acquire()


@pytest.mark.asyncio
async def test_acquire_waits_instead_of_failing() -> None:
    clock = FakeClock()
    bucket = TokenBucket(2, 4, clock=clock, sleep=clock.sleep)

    for _ in range(3):
        await bucket.acquire()

    assert clock.sleeps == [0.25]
    assert clock.now == 0.25


@pytest.mark.asyncio
async def test_burst_after_idle_never_exceeds_capacity() -> None:
    clock = FakeClock()
    bucket = TokenBucket(5, 4, clock=clock, sleep=clock.sleep)
    clock.now += 3600
    start = clock.now

    await asyncio.gather(*(bucket.acquire() for _ in range(25)))

    # Five from the full bucket, the other twenty at four per second.
    assert clock.now - start == pytest.approx(5.0)
    assert all(s > 0 for s in clock.sleeps)


@pytest.mark.asyncio
async def test_limiter_shares_one_bucket_per_service() -> None:
    clock = FakeClock()
    limiter = RateLimiter(
        {"gmail": RateLimit(2, 4), "drive": RateLimit(1, 1)},
        clock=clock,
        sleep=clock.sleep,
    )

    assert limiter.bucket("gmail") is limiter.bucket("gmail")
    assert limiter.bucket("gmail") is not limiter.bucket("drive")

    await limiter.acquire("gmail")
    await limiter.acquire("gmail")
    await limiter.acquire("drive")
    assert clock.sleeps == []

    await limiter.acquire("gmail")
    assert clock.sleeps == [0.25]


def test_unknown_service_uses_default_limit() -> None:
    limiter = RateLimiter({}, default=RateLimit(3, 1))
    bucket = limiter.bucket("tasks")
    assert bucket.capacity == 3
    assert bucket.refill_rate == 1


@pytest.mark.parametrize("capacity, rate", [(0, 1), (1, 0), (5, -1)])
def test_invalid_limits_are_rejected(capacity, rate) -> None:
    with pytest.raises(ValueError):
        RateLimit(capacity, rate)


@pytest.mark.asyncio
async def test_try_acquire_does_not_jump_ahead_of_a_waiter() -> None:
    clock = FakeClock()
    release = asyncio.Event()

    async def sleep(seconds: float) -> None:
        await release.wait()
        clock.now += seconds

    bucket = TokenBucket(1, 1, clock=clock, sleep=sleep)
    assert bucket.try_acquire()

    waiter = asyncio.create_task(bucket.acquire())
    await asyncio.sleep(0)
    # Refilled, but the token belongs to the queued waiter.
    clock.now += 1
    assert not bucket.try_acquire()

    release.set()
    await waiter
    assert not bucket.try_acquire()
