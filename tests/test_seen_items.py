"""Tests for the seen-items database."""
import asyncio

from goofish_monitor.store.seen_items import SeenItemsDB


def test_filter_new_and_mark_seen(tmp_path):
    async def scenario():
        db = SeenItemsDB(tmp_path / "seen.db")
        await db.initialize()

        assert await db.filter_new(1, ["a", "b", "a"]) == ["a", "b"]
        await db.mark_seen(1, [("a", "camera")])
        assert await db.filter_new(1, ["a", "b"]) == ["b"]
        # Other users are unaffected
        assert await db.filter_new(2, ["a"]) == ["a"]

        await db.mark_seen(1, [("a", "camera"), ("b", "camera")])
        assert await db.filter_new(1, ["a", "b"]) == []
        assert await db.get_stats() == {1: 2}

    asyncio.run(scenario())


def test_forget_user(tmp_path):
    async def scenario():
        db = SeenItemsDB(tmp_path / "seen.db")
        await db.initialize()
        await db.mark_seen(5, [("x", "q"), ("y", "q")])
        assert await db.forget_user(5) == 2
        assert await db.filter_new(5, ["x"]) == ["x"]

    asyncio.run(scenario())


def test_cleanup_keeps_recent_rows(tmp_path):
    async def scenario():
        db = SeenItemsDB(tmp_path / "seen.db")
        await db.initialize()
        await db.mark_seen(5, [("x", "q")])
        assert await db.cleanup(older_than_days=7) == 0
        assert await db.filter_new(5, ["x"]) == []

    asyncio.run(scenario())


def test_empty_inputs(tmp_path):
    async def scenario():
        db = SeenItemsDB(tmp_path / "seen.db")
        await db.initialize()
        assert await db.filter_new(1, []) == []
        await db.mark_seen(1, [])
        assert await db.get_stats() == {}

    asyncio.run(scenario())
