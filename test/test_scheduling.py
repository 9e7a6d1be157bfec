import asyncio

from pytest import mark, raises

from nx_sync import ConvergenceChecker, Countdown, RateLimiter, race


@mark.asyncio
async def test_rate_limiter():
    limiter = RateLimiter(2, poll_interval=0.01)
    finished: list[int] = []

    async def task(i: int):
        async with limiter.admit():
            assert limiter.live <= 2
            await asyncio.sleep(0.02)
        finished.append(i)

    await asyncio.gather(*(task(i) for i in range(5)))

    assert limiter.peak == 2
    assert limiter.live == 0
    assert sorted(finished) == list(range(5))


@mark.asyncio
async def test_rate_limiter_error():
    """
    A permit is returned when the admitted task fails.
    """
    limiter = RateLimiter(1, poll_interval=0.01)

    with raises(RuntimeError):
        async with limiter.admit():
            raise RuntimeError

    assert limiter.live == 0


@mark.asyncio
async def test_convergence():
    results = iter([True, False, True, True, True])

    async def check() -> bool:
        return next(results)

    checker = ConvergenceChecker(check, interval=0.001, required=3)

    assert await checker.wait()
    assert checker.polls == 5


@mark.asyncio
async def test_convergence_error():
    """
    A failing check resets the streak.
    """
    polls = 0

    async def check() -> bool:
        nonlocal polls
        polls += 1
        if polls == 2:
            raise RuntimeError("engine unavailable")
        return True

    checker = ConvergenceChecker(check, interval=0.001, required=2)

    assert await checker.wait()
    assert checker.polls == 4


@mark.asyncio
async def test_race():
    async def never() -> bool:
        await asyncio.sleep(60)
        return True

    assert await race(never(), Countdown(0.01).wait()) is False


@mark.asyncio
async def test_race_cancel():
    """
    Losers are cancelled before race returns.
    """
    cancelled = False

    async def slow():
        nonlocal cancelled
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            cancelled = True
            raise

    async def fast() -> str:
        return "done"

    assert await race(slow(), fast()) == "done"
    assert cancelled
