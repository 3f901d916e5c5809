"""
Tests for the SingleFlight guard.
"""

import asyncio

import pytest

from connection_health.services.single_flight import SingleFlight


class TestSingleFlight:
    """Start-or-join semantics and release on every exit path."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_operation(self):
        flight = SingleFlight()
        calls = []

        async def operation():
            calls.append(1)
            await asyncio.sleep(0.05)
            return "result"

        first, second = await asyncio.gather(
            flight.run("key", operation),
            flight.run("key", operation),
        )

        assert len(calls) == 1
        assert first == ("result", False)
        assert second == ("result", True)
        assert len(flight) == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self):
        flight = SingleFlight()
        calls = []

        async def operation(name):
            calls.append(name)
            await asyncio.sleep(0.01)
            return name

        results = await asyncio.gather(
            flight.run("a", lambda: operation("a")),
            flight.run("b", lambda: operation("b")),
        )

        assert sorted(calls) == ["a", "b"]
        assert results == [("a", False), ("b", False)]

    @pytest.mark.asyncio
    async def test_exception_reaches_every_caller_and_releases_entry(self):
        flight = SingleFlight()

        async def failing():
            await asyncio.sleep(0.01)
            raise RuntimeError("provider down")

        results = await asyncio.gather(
            flight.run("key", failing),
            flight.run("key", failing),
            return_exceptions=True,
        )

        assert all(isinstance(r, RuntimeError) for r in results)
        assert flight.in_flight("key") is False

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_operation(self):
        flight = SingleFlight()
        release = asyncio.Event()

        async def operation():
            await release.wait()
            return "done"

        async def never_called():
            raise AssertionError("second operation must not start")

        waiter = asyncio.ensure_future(flight.run("key", operation))
        await asyncio.sleep(0)
        assert flight.in_flight("key") is True

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert flight.in_flight("key") is True

        joiner = asyncio.ensure_future(flight.run("key", never_called))
        await asyncio.sleep(0)
        release.set()

        assert await joiner == ("done", True)
        await asyncio.sleep(0)
        assert len(flight) == 0

    @pytest.mark.asyncio
    async def test_new_operation_starts_after_release(self):
        flight = SingleFlight()
        calls = []

        async def operation():
            calls.append(1)
            return len(calls)

        assert await flight.run("key", operation) == (1, False)
        await asyncio.sleep(0)
        assert await flight.run("key", operation) == (2, False)
