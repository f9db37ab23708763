"""Tests for AsyncSemaphore admission control."""

import asyncio
import random

import pytest

from gridrun.core.errors import BookkeepingViolation, ConfigError
from gridrun.execution.semaphore import AsyncSemaphore


class TestAcquireRelease:
    @pytest.mark.asyncio
    async def test_acquire_within_limit_does_not_wait(self):
        semaphore = AsyncSemaphore(2)
        await semaphore.acquire()
        await semaphore.acquire()
        assert semaphore.available == 0
        assert semaphore.outstanding == 2

    @pytest.mark.asyncio
    async def test_acquire_suspends_until_release(self):
        semaphore = AsyncSemaphore(1)
        await semaphore.acquire()

        waiter = asyncio.create_task(semaphore.acquire())
        await asyncio.sleep(0)
        assert not waiter.done()
        assert semaphore.waiting == 1

        await semaphore.release()
        await asyncio.wait_for(waiter, timeout=1)
        assert semaphore.available == 0
        assert semaphore.outstanding == 1

    @pytest.mark.asyncio
    async def test_release_hands_token_to_oldest_waiter(self):
        semaphore = AsyncSemaphore(1)
        await semaphore.acquire()
        order: list[str] = []

        async def take(name: str) -> None:
            await semaphore.acquire()
            order.append(name)

        tasks = [asyncio.create_task(take(name)) for name in ("a", "b", "c")]
        await asyncio.sleep(0)
        for _ in range(3):
            await semaphore.release()
            await asyncio.sleep(0)
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)

        assert order == ["a", "b", "c"]
        assert semaphore.outstanding == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_skipped(self):
        semaphore = AsyncSemaphore(1)
        await semaphore.acquire()
        first = asyncio.create_task(semaphore.acquire())
        second = asyncio.create_task(semaphore.acquire())
        await asyncio.sleep(0)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        await semaphore.release()
        await asyncio.wait_for(second, timeout=1)
        assert semaphore.outstanding == 1
        assert semaphore.waiting == 0

    @pytest.mark.asyncio
    async def test_context_manager_returns_token(self):
        semaphore = AsyncSemaphore(1)
        async with semaphore:
            assert semaphore.available == 0
        assert semaphore.available == 1


class TestInvariants:
    @pytest.mark.asyncio
    async def test_available_stays_within_bounds_for_paired_calls(self):
        limit = 4
        semaphore = AsyncSemaphore(limit)
        rng = random.Random(7)
        held = 0
        for _ in range(500):
            if held < limit and (held == 0 or rng.random() < 0.5):
                await semaphore.acquire()
                held += 1
            else:
                await semaphore.release()
                held -= 1
            assert 0 <= semaphore.available <= limit
            assert semaphore.available + semaphore.outstanding == limit
            assert semaphore.outstanding == held

    @pytest.mark.asyncio
    async def test_no_lost_wakeups_under_contention(self):
        limit = 3
        semaphore = AsyncSemaphore(limit)
        active = 0
        peak = 0

        async def work() -> None:
            nonlocal active, peak
            async with semaphore:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0)
                active -= 1

        await asyncio.wait_for(asyncio.gather(*(work() for _ in range(60))), timeout=5)

        assert peak == limit
        assert semaphore.available == limit
        assert semaphore.waiting == 0


class TestBookkeeping:
    @pytest.mark.asyncio
    async def test_release_without_acquire_raises(self):
        semaphore = AsyncSemaphore(2)
        with pytest.raises(BookkeepingViolation):
            await semaphore.release()
        assert semaphore.available == 2

    @pytest.mark.asyncio
    async def test_extra_release_after_tokens_returned_raises(self):
        semaphore = AsyncSemaphore(1)
        await semaphore.acquire()
        await semaphore.release()
        with pytest.raises(BookkeepingViolation):
            await semaphore.release()

    @pytest.mark.asyncio
    async def test_acquire_with_negative_available_raises(self):
        semaphore = AsyncSemaphore(1)
        semaphore._available = -1
        with pytest.raises(BookkeepingViolation) as exc_info:
            await semaphore.acquire()
        assert exc_info.value.context["available"] == -1

    def test_limit_below_one_is_config_error(self):
        with pytest.raises(ConfigError):
            AsyncSemaphore(0)
