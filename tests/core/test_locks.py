import asyncio

from leadify.core.locks import KeyedLock


class TestKeyedLock:

    async def test_same_key_runs_one_at_a_time(self):
        locks = KeyedLock()
        events = []

        async def worker(name: str):
            async with locks.hold("c-1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events == ["a-in", "a-out", "b-in", "b-out"]

    async def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        release = asyncio.Event()
        entered = []

        async def holder():
            async with locks.hold("c-1"):
                await release.wait()

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)
        assert locks.is_locked("c-1")

        async with locks.hold("c-2"):
            entered.append("c-2")

        assert entered == ["c-2"]
        release.set()
        await task

    async def test_entries_are_dropped_when_released(self):
        locks = KeyedLock()

        async with locks.hold("c-1"):
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked("c-1")

    async def test_released_on_error(self):
        locks = KeyedLock()

        try:
            async with locks.hold("c-1"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert len(locks) == 0
