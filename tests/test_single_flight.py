import asyncio

import pytest

from feedrestore.services.single_flight import SingleFlight


class Computation:
    def __init__(self, result="value", error=None):
        self.calls = 0
        self.cancelled = 0
        self.release = asyncio.Event()
        self.result = result
        self.error = error

    async def __call__(self):
        self.calls += 1
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.error is not None:
            raise self.error
        return self.result


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


async def test_concurrent_callers_share_one_computation():
    flight = SingleFlight("test")
    computation = Computation()

    waiters = [asyncio.create_task(flight.once("foo", computation)) for _ in range(5)]
    await _settle()
    assert flight.in_flight("foo")
    computation.release.set()

    results = await asyncio.gather(*waiters)
    assert results == ["value"] * 5
    assert computation.calls == 1
    assert not flight.in_flight("foo")


async def test_completed_results_are_reused():
    flight = SingleFlight("test")
    computation = Computation()
    computation.release.set()

    assert await flight.once("foo", computation) == "value"
    assert await flight.once("foo", computation) == "value"
    assert computation.calls == 1
    assert "foo" in flight
    assert len(flight) == 1


async def test_keys_are_independent():
    flight = SingleFlight("test")
    first, second = Computation("a"), Computation("b")
    first.release.set()
    second.release.set()

    assert await flight.once("a", first) == "a"
    assert await flight.once("b", second) == "b"
    assert (first.calls, second.calls) == (1, 1)


async def test_failures_are_remembered():
    flight = SingleFlight("test")
    computation = Computation(error=RuntimeError("broken"))
    computation.release.set()

    for _ in range(2):
        with pytest.raises(RuntimeError, match="broken"):
            await flight.once("foo", computation)
    assert computation.calls == 1


async def test_forget_failures_allows_retry():
    flight = SingleFlight("test", forget_failures=True)
    computation = Computation(error=RuntimeError("broken"))
    computation.release.set()

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await flight.once("foo", computation)
    assert computation.calls == 2


async def test_cancelled_waiter_does_not_disturb_others():
    flight = SingleFlight("test")
    computation = Computation()

    cancelled_waiter = asyncio.create_task(flight.once("foo", computation))
    other_waiter = asyncio.create_task(flight.once("foo", computation))
    await _settle()

    cancelled_waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await cancelled_waiter

    computation.release.set()
    assert await other_waiter == "value"
    assert computation.calls == 1
    assert computation.cancelled == 0


async def test_abandoned_computation_restarts():
    flight = SingleFlight("test")
    computation = Computation()

    waiter = asyncio.create_task(flight.once("foo", computation))
    await _settle()
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    await _settle()

    assert computation.cancelled == 1
    assert "foo" not in flight

    computation.release.set()
    assert await flight.once("foo", computation) == "value"
    assert computation.calls == 2
