"""Tests for per-key mutual exclusion."""

import asyncio

import pytest
from prbot.services.coordination import InMemoryKeyedLock


@pytest.mark.unit
class TestInMemoryKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_runs_serially(self):
        guard = InMemoryKeyedLock()
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await asyncio.gather(*(guard.run("pr:1:1", work) for _ in range(5)))
        assert peak == 1

    @pytest.mark.asyncio
    async def test_different_keys_do_not_wait(self):
        guard = InMemoryKeyedLock()
        first_entered = asyncio.Event()
        release_first = asyncio.Event()

        async def slow():
            first_entered.set()
            await release_first.wait()
            return "slow"

        async def fast():
            return "fast"

        slow_task = asyncio.create_task(guard.run("pr:1:1", slow))
        await first_entered.wait()

        # Completes while pr:1:1 is still held
        assert await asyncio.wait_for(guard.run("pr:1:2", fast), timeout=1) == "fast"
        assert guard.is_held("pr:1:1")

        release_first.set()
        assert await slow_task == "slow"
        assert not guard.is_held("pr:1:1")

    @pytest.mark.asyncio
    async def test_lock_released_when_work_raises(self):
        guard = InMemoryKeyedLock()

        async def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await guard.run("pr:1:1", boom)
        assert not guard.is_held("pr:1:1")

        async def ok():
            return 42

        assert await guard.run("pr:1:1", ok) == 42

    @pytest.mark.asyncio
    async def test_hold_context_manager(self):
        guard = InMemoryKeyedLock()
        async with guard.hold("pr:1:1"):
            assert guard.is_held("pr:1:1")
        assert not guard.is_held("pr:1:1")
        assert len(guard) == 1
