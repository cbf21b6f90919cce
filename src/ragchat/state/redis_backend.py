"""Redis checkpoint saver."""

import base64
import json
from typing import Any, AsyncIterator, Optional, Sequence

from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import CheckpointTuple
from langgraph.checkpoint.serde.base import SerializerProtocol

from .checkpoint import CheckpointRecord, PersistentSaver

_GLOB_SPECIAL = "*?[]\\"


def _escape_glob(value: str) -> str:
    return "".join(f"\\{c}" if c in _GLOB_SPECIAL else c for c in value)


def _encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _decode(data: str) -> bytes:
    return base64.b64decode(data)


class RedisSaver(PersistentSaver):
    """Redis-based checkpoint storage.

    Per thread and namespace, an index list holds the checkpoint ids in
    the order they were saved. Each checkpoint is a hash, and its pending
    writes a second hash keyed by ``task_id:idx``. Every write refreshes
    the TTL of the keys it touches, so idle threads expire.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        ttl: int = 86400,  # 24 hours default
        key_prefix: str = "ragchat:thread:",
        *,
        serde: Optional[SerializerProtocol] = None,
    ):
        """Initialize Redis saver.

        Args:
            redis_url: Redis connection URL
            ttl: Time-to-live in seconds (0 = no expiration)
            key_prefix: Key prefix for all thread keys
            serde: Serializer for checkpoints and writes
        """
        super().__init__(serde=serde)
        self.redis_url = redis_url
        self.ttl = ttl
        self.key_prefix = key_prefix
        self._client = None

    def _get_client(self):
        """Get or create Redis client."""
        if self._client is None:
            import redis.asyncio as redis
            self._client = redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    def _index_key(self, thread_id: str, checkpoint_ns: str) -> str:
        return f"{self.key_prefix}{thread_id}:index:{checkpoint_ns}"

    def _checkpoint_key(self, thread_id: str, checkpoint_ns: str, checkpoint_id: str) -> str:
        return f"{self.key_prefix}{thread_id}:checkpoint:{checkpoint_ns}:{checkpoint_id}"

    def _writes_key(self, thread_id: str, checkpoint_ns: str, checkpoint_id: str) -> str:
        return f"{self.key_prefix}{thread_id}:writes:{checkpoint_ns}:{checkpoint_id}"

    async def _touch(self, client, *keys: str) -> None:
        if self.ttl > 0:
            for key in keys:
                await client.expire(key, self.ttl)

    async def _index_keys(self, client, thread_id: Optional[str]) -> list[tuple[str, str, str]]:
        """(key, thread_id, checkpoint_ns) of every index, or of one thread's."""
        thread_pattern = _escape_glob(thread_id) if thread_id is not None else "*"
        found = []
        async for key in client.scan_iter(match=f"{_escape_glob(self.key_prefix)}{thread_pattern}:index:*"):
            owner, _, checkpoint_ns = key[len(self.key_prefix):].rpartition(":index:")
            if thread_id is None or owner == thread_id:
                found.append((key, owner, checkpoint_ns))
        return found

    async def _load(self, client, thread_id: str, checkpoint_ns: str, checkpoint_id: str) -> Optional[CheckpointTuple]:
        data = await client.hgetall(self._checkpoint_key(thread_id, checkpoint_ns, checkpoint_id))
        if not data:
            return None

        record = CheckpointRecord(
            thread_id=thread_id,
            checkpoint_ns=checkpoint_ns,
            checkpoint_id=checkpoint_id,
            parent_checkpoint_id=data.get("parent_checkpoint_id") or None,
            type=data["type"],
            checkpoint=_decode(data["checkpoint"]),
            metadata_type=data["metadata_type"],
            metadata=_decode(data["metadata"]),
        )

        raw_writes = await client.hgetall(self._writes_key(thread_id, checkpoint_ns, checkpoint_id))
        entries = sorted((json.loads(value) for value in raw_writes.values()), key=lambda w: (w["task_id"], w["idx"]))
        writes = [(w["task_id"], w["channel"], w["type"], _decode(w["value"])) for w in entries]
        return self._to_tuple(record, writes)

    async def _checkpoint_ids(self, client, thread_id: str, checkpoint_ns: str) -> list[str]:
        """Checkpoint ids of a thread, newest first."""
        ids = await client.lrange(self._index_key(thread_id, checkpoint_ns), 0, -1)
        return sorted(set(ids), reverse=True)

    async def aget_tuple(self, config: RunnableConfig) -> Optional[CheckpointTuple]:
        client = self._get_client()
        thread_id, checkpoint_ns, checkpoint_id = self._keys(config)
        if checkpoint_id:
            return await self._load(client, thread_id, checkpoint_ns, checkpoint_id)

        for candidate in await self._checkpoint_ids(client, thread_id, checkpoint_ns):
            item = await self._load(client, thread_id, checkpoint_ns, candidate)
            if item is not None:
                return item
        return None

    async def alist(
        self,
        config: Optional[RunnableConfig],
        *,
        filter: Optional[dict[str, Any]] = None,
        before: Optional[RunnableConfig] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[CheckpointTuple]:
        client = self._get_client()
        configurable = config["configurable"] if config is not None else {}
        before_id = before["configurable"].get("checkpoint_id") if before is not None else None

        candidates = []
        for _, thread_id, checkpoint_ns in await self._index_keys(client, configurable.get("thread_id")):
            if "checkpoint_ns" in configurable and checkpoint_ns != configurable["checkpoint_ns"]:
                continue
            for checkpoint_id in await self._checkpoint_ids(client, thread_id, checkpoint_ns):
                if configurable.get("checkpoint_id") and checkpoint_id != configurable["checkpoint_id"]:
                    continue
                if before_id and checkpoint_id >= before_id:
                    continue
                candidates.append((checkpoint_id, thread_id, checkpoint_ns))

        count = 0
        for checkpoint_id, thread_id, checkpoint_ns in sorted(candidates, reverse=True):
            item = await self._load(client, thread_id, checkpoint_ns, checkpoint_id)
            if item is None or not self._matches(item, filter):
                continue
            yield item
            count += 1
            if limit is not None and count >= limit:
                return

    async def _store_checkpoint(self, record: CheckpointRecord) -> None:
        client = self._get_client()
        thread_id, checkpoint_ns = record["thread_id"], record["checkpoint_ns"]
        key = self._checkpoint_key(thread_id, checkpoint_ns, record["checkpoint_id"])
        index_key = self._index_key(thread_id, checkpoint_ns)

        await client.hset(key, mapping={
            "parent_checkpoint_id": record["parent_checkpoint_id"] or "",
            "type": record["type"],
            "checkpoint": _encode(record["checkpoint"]),
            "metadata_type": record["metadata_type"],
            "metadata": _encode(record["metadata"]),
        })
        await client.rpush(index_key, record["checkpoint_id"])
        await self._touch(client, key, index_key)

    async def aput_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        if not writes:
            return
        client = self._get_client()
        thread_id, checkpoint_ns, checkpoint_id = self._keys(config)
        key = self._writes_key(thread_id, checkpoint_ns, checkpoint_id)
        rows, replace = self._dump_writes(list(writes))

        for idx, channel, type_, value in rows:
            field = f"{task_id}:{idx}"
            entry = json.dumps({
                "task_id": task_id,
                "idx": idx,
                "channel": channel,
                "type": type_,
                "value": _encode(value),
                "task_path": task_path,
            })
            if replace:
                await client.hset(key, field, entry)
            else:
                await client.hsetnx(key, field, entry)
        await self._touch(client, key)

    async def adelete_thread(self, thread_id: str) -> None:
        client = self._get_client()
        for index_key, _, checkpoint_ns in await self._index_keys(client, thread_id):
            keys = [index_key]
            for checkpoint_id in await self._checkpoint_ids(client, thread_id, checkpoint_ns):
                keys.append(self._checkpoint_key(thread_id, checkpoint_ns, checkpoint_id))
                keys.append(self._writes_key(thread_id, checkpoint_ns, checkpoint_id))
            await client.delete(*keys)
