import asyncio

from sandboxer.core.sandbox.locks import KeyedLock


class TestKeyedLock:
    """Tests for per-key asyncio locks."""

    async def test_same_key_serialises(self) -> None:
        """Two holders of one key never overlap."""
        locks = KeyedLock()
        events: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("sb-1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    async def test_different_keys_do_not_contend(self) -> None:
        """Holding one key leaves other keys free."""
        locks = KeyedLock()
        async with locks.hold("sb-1"):
            assert locks.locked("sb-1")
            assert not locks.locked("sb-2")
            async with locks.hold("sb-2"):
                assert locks.locked("sb-2")

    async def test_entries_are_dropped_when_released(self) -> None:
        """No lock object outlives its last holder."""
        locks = KeyedLock()
        async with locks.hold("sb-1"):
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.locked("sb-1")

    async def test_released_on_exception(self) -> None:
        """An exception inside the block releases the lock."""
        locks = KeyedLock()
        try:
            async with locks.hold("sb-1"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert len(locks) == 0
