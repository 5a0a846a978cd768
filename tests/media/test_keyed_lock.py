"""Tests for the per-media lock table."""

import asyncio

import pytest

from media_worker.modules.media.locks import KeyedLock


class TestKeyedLock:
    """Holders of one key run one at a time; idle keys are forgotten."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        locks = KeyedLock()
        active = 0
        peak = 0

        async def critical_section() -> None:
            nonlocal active, peak
            async with locks.hold("m1"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*[critical_section() for _ in range(5)])

        assert peak == 1

    @pytest.mark.asyncio
    async def test_distinct_keys_run_together(self) -> None:
        locks = KeyedLock()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def first() -> None:
            async with locks.hold("m1"):
                inside.set()
                await release.wait()

        task = asyncio.create_task(first())
        await inside.wait()

        async with locks.hold("m2"):
            assert "m1" in locks and "m2" in locks

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_entry_dropped_after_last_holder(self) -> None:
        locks = KeyedLock()

        async def hold_briefly() -> None:
            async with locks.hold("m1"):
                await asyncio.sleep(0.01)

        await asyncio.gather(hold_briefly(), hold_briefly())

        assert len(locks) == 0
        assert "m1" not in locks

    @pytest.mark.asyncio
    async def test_entry_dropped_when_body_raises(self) -> None:
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("m1"):
                raise RuntimeError("boom")

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_waiter_keeps_entry_alive(self) -> None:
        locks = KeyedLock()
        release = asyncio.Event()
        entered: list[str] = []

        async def holder() -> None:
            async with locks.hold("m1"):
                entered.append("holder")
                await release.wait()

        async def waiter() -> None:
            async with locks.hold("m1"):
                entered.append("waiter")

        first = asyncio.create_task(holder())
        await asyncio.sleep(0)
        second = asyncio.create_task(waiter())
        await asyncio.sleep(0)

        assert len(locks) == 1
        assert entered == ["holder"]

        release.set()
        await asyncio.gather(first, second)

        assert entered == ["holder", "waiter"]
        assert len(locks) == 0
