import asyncio

import pytest

from common.providers.caching import MemoLoader


@pytest.mark.asyncio
class TestMemoLoader:
    """Test suite for MemoLoader."""

    async def test_get_computes_once_and_caches(self):
        loader = MemoLoader(capacity=2)
        calls = []

        async def compute():
            calls.append(1)
            return "cus_1"

        assert await loader.get("org:a", compute) == "cus_1"
        assert await loader.get("org:a", compute) == "cus_1"
        assert len(calls) == 1
        assert "org:a" in loader

    async def test_concurrent_gets_share_one_computation(self):
        loader = MemoLoader(capacity=10)
        release = asyncio.Event()
        calls = []

        async def compute():
            calls.append(1)
            await release.wait()
            return "cus_1"

        tasks = [asyncio.create_task(loader.get("org:a", compute)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert results == ["cus_1"] * 5
        assert len(calls) == 1

    async def test_errors_reach_every_waiter_and_are_not_cached(self):
        loader = MemoLoader(capacity=10)
        release = asyncio.Event()
        calls = []

        async def failing():
            calls.append(1)
            await release.wait()
            raise LookupError("no such org")

        tasks = [asyncio.create_task(loader.get("org:a", failing)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, LookupError) for r in results)
        assert len(calls) == 1
        assert "org:a" not in loader

        async def succeeding():
            return "cus_2"

        assert await loader.get("org:a", succeeding) == "cus_2"

    async def test_least_recently_used_is_evicted(self):
        loader = MemoLoader(capacity=2)

        async def value(v):
            return v

        await loader.get("a", lambda: value(1))
        await loader.get("b", lambda: value(2))
        # touch a so b becomes least recent
        await loader.get("a", lambda: value(99))
        await loader.get("c", lambda: value(3))

        assert len(loader) == 2
        assert "b" not in loader
        assert loader.peek("a") == 1
        assert loader.peek("c") == 3

    async def test_cancelled_follower_does_not_cancel_leader(self):
        loader = MemoLoader(capacity=10)
        release = asyncio.Event()

        async def compute():
            await release.wait()
            return "cus_1"

        leader = asyncio.create_task(loader.get("org:a", compute))
        await asyncio.sleep(0)
        follower = asyncio.create_task(loader.get("org:a", compute))
        await asyncio.sleep(0)
        follower.cancel()
        release.set()

        assert await leader == "cus_1"
        with pytest.raises(asyncio.CancelledError):
            await follower

    async def test_cancelled_leader_does_not_cancel_follower(self):
        loader = MemoLoader(capacity=10)
        release = asyncio.Event()
        calls = []

        async def compute():
            calls.append(1)
            await release.wait()
            return "cus_1"

        leader = asyncio.create_task(loader.get("org:a", compute))
        await asyncio.sleep(0)
        follower = asyncio.create_task(loader.get("org:a", compute))
        await asyncio.sleep(0)
        leader.cancel()
        await asyncio.sleep(0)
        release.set()

        assert await follower == "cus_1"
        with pytest.raises(asyncio.CancelledError):
            await leader
        assert len(calls) == 1
        assert loader.peek("org:a") == "cus_1"

    async def test_load_finishes_after_every_caller_is_cancelled(self):
        loader = MemoLoader(capacity=10)
        release = asyncio.Event()

        async def compute():
            await release.wait()
            return "cus_1"

        caller = asyncio.create_task(loader.get("org:a", compute))
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        for _ in range(5):
            await asyncio.sleep(0)

        assert loader.peek("org:a") == "cus_1"

    async def test_put_forget_and_clear(self):
        loader = MemoLoader(capacity=2)
        await loader.put("a", 1)
        assert loader.peek("a") == 1

        assert await loader.forget("a") is True
        assert await loader.forget("a") is False

        await loader.put("b", 2)
        await loader.clear()
        assert len(loader) == 0


def test_memo_loader_capacity_must_be_positive():
    with pytest.raises(ValueError):
        MemoLoader(capacity=0)
