"""Tests for thread checkpoint savers."""

import fnmatch

import pytest
from langgraph.checkpoint.base import empty_checkpoint
from langgraph.checkpoint.memory import InMemorySaver

from conftest import FakeChatProvider

from ragchat.app import build_chat_graph, build_translate_graph
from ragchat.core.exceptions import GenerationError
from ragchat.core.message import Message, TextContent
from ragchat.graph.state import thread_config
from ragchat.state import RedisSaver, SQLiteSaver


class FakeRedis:
    """Minimal in-memory stand-in for the redis.asyncio client."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.expirations: dict[str, int] = {}

    async def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return list(items) if end == -1 else items[start:end + 1]

    async def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def hset(self, key, field=None, value=None, mapping=None):
        fields = dict(mapping or {})
        if field is not None:
            fields[field] = value
        self.hashes.setdefault(key, {}).update(fields)
        return len(fields)

    async def hsetnx(self, key, field, value):
        fields = self.hashes.setdefault(key, {})
        if field in fields:
            return 0
        fields[field] = value
        return 1

    async def expire(self, key, seconds):
        self.expirations[key] = seconds
        return True

    async def delete(self, *keys):
        count = 0
        for key in keys:
            if self.lists.pop(key, None) is not None:
                count += 1
            if self.hashes.pop(key, None) is not None:
                count += 1
        return count

    async def scan_iter(self, match=None):
        for key in sorted({*self.lists, *self.hashes}):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key


def make_redis_saver(**kwargs) -> RedisSaver:
    saver = RedisSaver(**kwargs)
    saver._client = FakeRedis()
    return saver


def base_config(thread_id: str) -> dict:
    return {"configurable": {"thread_id": thread_id, "checkpoint_ns": ""}}


async def thread_ids(saver) -> list[str]:
    return sorted({item.config["configurable"]["thread_id"] async for item in saver.alist(None)})


@pytest.fixture(params=["memory", "sqlite", "redis"])
def saver(request, tmp_path):
    """Every checkpoint saver, run against the same contract."""
    if request.param == "memory":
        return InMemorySaver()
    if request.param == "sqlite":
        return SQLiteSaver(tmp_path / "checkpoints.db")
    return make_redis_saver()


class TestSaverContract:
    """Behavior shared by all checkpoint savers."""

    @pytest.mark.asyncio
    async def test_unknown_thread_is_empty(self, saver):
        assert await saver.aget_tuple(thread_config("missing")) is None
        assert [item async for item in saver.alist(thread_config("missing"))] == []

    @pytest.mark.asyncio
    async def test_turns_accumulate_in_order(self, saver):
        """Test that a thread's history survives across turns."""
        graph = build_chat_graph(FakeChatProvider("ok"), saver)

        await graph.ainvoke("hi", "t1")
        await graph.ainvoke("again", "t1")

        messages = await graph.aget_messages("t1")
        assert [m.text for m in messages] == ["hi", "ok", "again", "ok"]
        assert [m.role.value for m in messages] == ["user", "assistant", "user", "assistant"]

    @pytest.mark.asyncio
    async def test_latest_checkpoint_and_history(self, saver):
        graph = build_chat_graph(FakeChatProvider("ok"), saver)
        await graph.ainvoke("hi", "t1")

        latest = await saver.aget_tuple(thread_config("t1"))
        history = [item async for item in saver.alist(thread_config("t1"))]

        assert latest.config["configurable"]["checkpoint_id"] == history[0].config["configurable"]["checkpoint_id"]
        assert latest.parent_config is not None
        ids = [item.config["configurable"]["checkpoint_id"] for item in history]
        assert ids == sorted(ids, reverse=True)
        assert len(history) >= 2

        [limited] = [item async for item in saver.alist(thread_config("t1"), limit=1)]
        assert limited.config == latest.config

        older = [item async for item in saver.alist(thread_config("t1"), before=latest.config)]
        assert len(older) == len(history) - 1

        by_id = await saver.aget_tuple(history[-1].config)
        assert by_id.config["configurable"]["checkpoint_id"] == ids[-1]

    @pytest.mark.asyncio
    async def test_metadata_filter(self, saver):
        graph = build_chat_graph(FakeChatProvider("ok"), saver)
        await graph.ainvoke("hi", "t1")

        items = [item async for item in saver.alist(thread_config("t1"), filter={"source": "loop"})]

        assert items
        assert all(item.metadata["source"] == "loop" for item in items)

    @pytest.mark.asyncio
    async def test_threads_are_isolated(self, saver):
        graph = build_chat_graph(FakeChatProvider("ok"), saver)

        await graph.ainvoke("for a", "a")
        await graph.ainvoke("for b", "b")

        assert [m.text for m in await graph.aget_messages("a")] == ["for a", "ok"]
        assert [m.text for m in await graph.aget_messages("b")] == ["for b", "ok"]
        assert await thread_ids(saver) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_rich_content_round_trips(self, saver):
        graph = build_chat_graph(FakeChatProvider("ok"), saver)
        message = Message.user([TextContent(text="part one"), TextContent(text=" two")])

        await graph.ainvoke(message, "t1")

        loaded = (await graph.aget_messages("t1"))[0]
        assert loaded.text == "part one two"
        assert isinstance(loaded.content, list)

    @pytest.mark.asyncio
    async def test_language_is_stored(self, saver):
        provider = FakeChatProvider()
        graph = build_translate_graph(provider, saver)

        await graph.aset_language("t1", "French")
        await graph.ainvoke("Hello", "t1")

        assert "into French" in provider.last_prompt[0].text
        assert (await graph.aget_values("t1"))["language"] == "French"

    @pytest.mark.asyncio
    async def test_pending_writes(self, saver):
        """Test that writes are returned with the checkpoint they belong to."""
        saved = await saver.aput(base_config("t1"), empty_checkpoint(), {"source": "input", "step": -1}, {})
        await saver.aput_writes(saved, [("messages", "first"), ("language", "German")], "task-1")

        item = await saver.aget_tuple(saved)

        assert item.pending_writes == [("task-1", "messages", "first"), ("task-1", "language", "German")]

    @pytest.mark.asyncio
    async def test_failed_turn_leaves_no_thread(self, saver):
        graph = build_chat_graph(FakeChatProvider(error=RuntimeError("down")), saver)

        with pytest.raises(GenerationError):
            await graph.ainvoke("hi", "t1")

        assert await saver.aget_tuple(thread_config("t1")) is None
        assert await thread_ids(saver) == []

    @pytest.mark.asyncio
    async def test_delete_thread(self, saver):
        graph = build_chat_graph(FakeChatProvider("ok"), saver)
        await graph.ainvoke("x", "t1")
        await graph.ainvoke("y", "t2")

        await saver.adelete_thread("t1")

        assert await saver.aget_tuple(thread_config("t1")) is None
        assert await graph.aget_messages("t1") == []
        assert [m.text for m in await graph.aget_messages("t2")] == ["y", "ok"]
        assert await thread_ids(saver) == ["t2"]


class TestSQLiteSaver:
    """Tests specific to SQLiteSaver."""

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path):
        """Test that history persists across saver instances."""
        db_path = tmp_path / "threads.db"
        first = build_chat_graph(FakeChatProvider("ok"), SQLiteSaver(db_path))
        await first.ainvoke("remember me", "t1")
        await first.aset_language("t1", "English")

        second = build_chat_graph(FakeChatProvider("ok"), SQLiteSaver(db_path))
        assert [m.text for m in await second.aget_messages("t1")] == ["remember me", "ok"]
        assert (await second.aget_values("t1"))["language"] == "English"

    @pytest.mark.asyncio
    async def test_empty_writes(self, tmp_path):
        saver = SQLiteSaver(tmp_path / "threads.db")
        saved = await saver.aput(base_config("t1"), empty_checkpoint(), {"source": "input", "step": -1}, {})
        await saver.aput_writes(saved, [], "task-1")

        assert (await saver.aget_tuple(saved)).pending_writes == []


class TestRedisSaver:
    """Tests specific to RedisSaver."""

    @pytest.mark.asyncio
    async def test_key_layout(self):
        saver = make_redis_saver(key_prefix="app:")
        saved = await saver.aput(base_config("t1"), empty_checkpoint(), {"source": "input", "step": -1}, {})
        await saver.aput_writes(saved, [("messages", "x")], "task-1")
        checkpoint_id = saved["configurable"]["checkpoint_id"]

        client = saver._client
        assert client.lists["app:t1:index:"] == [checkpoint_id]
        assert set(client.hashes[f"app:t1:checkpoint::{checkpoint_id}"]) == {
            "parent_checkpoint_id", "type", "checkpoint", "metadata_type", "metadata",
        }
        assert list(client.hashes[f"app:t1:writes::{checkpoint_id}"]) == ["task-1:0"]

    @pytest.mark.asyncio
    async def test_writes_refresh_ttl(self):
        """Test that every write refreshes the TTL on the keys it touches."""
        saver = make_redis_saver(ttl=60)
        saved = await saver.aput(base_config("t1"), empty_checkpoint(), {"source": "input", "step": -1}, {})
        await saver.aput_writes(saved, [("messages", "x")], "task-1")
        checkpoint_id = saved["configurable"]["checkpoint_id"]

        assert saver._client.expirations == {
            "ragchat:thread:t1:index:": 60,
            f"ragchat:thread:t1:checkpoint::{checkpoint_id}": 60,
            f"ragchat:thread:t1:writes::{checkpoint_id}": 60,
        }

    @pytest.mark.asyncio
    async def test_zero_ttl_never_expires(self):
        saver = make_redis_saver(ttl=0)
        await build_chat_graph(FakeChatProvider("ok"), saver).ainvoke("x", "t1")

        assert saver._client.expirations == {}

    @pytest.mark.asyncio
    async def test_first_write_wins_for_regular_channels(self):
        saver = make_redis_saver()
        saved = await saver.aput(base_config("t1"), empty_checkpoint(), {"source": "input", "step": -1}, {})
        await saver.aput_writes(saved, [("messages", "first")], "task-1")
        await saver.aput_writes(saved, [("messages", "second")], "task-1")

        item = await saver.aget_tuple(saved)
        assert item.pending_writes == [("task-1", "messages", "first")]

    @pytest.mark.asyncio
    async def test_thread_ids_with_colons(self):
        saver = make_redis_saver()
        graph = build_chat_graph(FakeChatProvider("ok"), saver)
        await graph.ainvoke("x", "user:42")
        await graph.ainvoke("y", "user")

        assert await thread_ids(saver) == ["user", "user:42"]

        await saver.adelete_thread("user")
        assert await thread_ids(saver) == ["user:42"]
