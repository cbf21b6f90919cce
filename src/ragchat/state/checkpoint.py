"""Shared record handling for persistent langgraph checkpoint savers."""

from typing import Any, Optional, TypedDict

from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import (
    WRITES_IDX_MAP,
    BaseCheckpointSaver,
    ChannelVersions,
    Checkpoint,
    CheckpointMetadata,
    CheckpointTuple,
    get_checkpoint_id,
)


class CheckpointRecord(TypedDict):
    """One stored checkpoint; the last four fields hold serialized data."""
    thread_id: str
    checkpoint_ns: str
    checkpoint_id: str
    parent_checkpoint_id: Optional[str]
    type: str
    checkpoint: bytes
    metadata_type: str
    metadata: bytes


class PersistentSaver(BaseCheckpointSaver[int]):
    """Base class for savers that store serialized checkpoint records.

    Subclasses store and fetch rows; this class turns configs into keys and
    rows into ``CheckpointTuple`` values. Only the async interface is
    implemented, since every graph runs through ``ainvoke``/``astream``.
    """

    @staticmethod
    def _keys(config: RunnableConfig) -> tuple[str, str, Optional[str]]:
        """(thread_id, checkpoint_ns, checkpoint_id) of a config."""
        configurable = config["configurable"]
        return (
            configurable["thread_id"],
            configurable.get("checkpoint_ns", ""),
            get_checkpoint_id(config),
        )

    def _dump_checkpoint(
        self,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
    ) -> dict[str, Any]:
        type_, data = self.serde.dumps_typed(checkpoint)
        metadata_type, metadata_data = self.serde.dumps_typed(metadata)
        return {
            "type": type_,
            "checkpoint": data,
            "metadata_type": metadata_type,
            "metadata": metadata_data,
        }

    def _dump_writes(
        self,
        writes: list[tuple[str, Any]],
    ) -> tuple[list[tuple[int, str, str, bytes]], bool]:
        """Serialize writes as (idx, channel, type, value) rows.

        The flag is True when every write targets a special channel, whose
        writes replace earlier ones instead of being kept first-wins.
        """
        rows = []
        for idx, (channel, value) in enumerate(writes):
            type_, data = self.serde.dumps_typed(value)
            rows.append((WRITES_IDX_MAP.get(channel, idx), channel, type_, data))
        replace = all(channel in WRITES_IDX_MAP for channel, _ in writes)
        return rows, replace

    def _to_tuple(
        self,
        record: CheckpointRecord,
        writes: list[tuple[str, str, str, bytes]],
    ) -> CheckpointTuple:
        """Build a tuple from a record and its (task_id, channel, type, value) writes."""
        thread_id = record["thread_id"]
        checkpoint_ns = record["checkpoint_ns"]
        parent_id = record.get("parent_checkpoint_id")

        parent_config = self._saved_config(thread_id, checkpoint_ns, parent_id) if parent_id else None

        return CheckpointTuple(
            config=self._saved_config(thread_id, checkpoint_ns, record["checkpoint_id"]),
            checkpoint=self.serde.loads_typed((record["type"], record["checkpoint"])),
            metadata=self.serde.loads_typed((record["metadata_type"], record["metadata"])),
            parent_config=parent_config,
            pending_writes=[
                (task_id, channel, self.serde.loads_typed((type_, value)))
                for task_id, channel, type_, value in writes
            ],
        )

    @staticmethod
    def _matches(item: CheckpointTuple, filter: Optional[dict[str, Any]]) -> bool:
        if not filter:
            return True
        return all(item.metadata.get(key) == value for key, value in filter.items())

    @staticmethod
    def _saved_config(thread_id: str, checkpoint_ns: str, checkpoint_id: str) -> RunnableConfig:
        return {
            "configurable": {
                "thread_id": thread_id,
                "checkpoint_ns": checkpoint_ns,
                "checkpoint_id": checkpoint_id,
            }
        }

    async def aput(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        thread_id, checkpoint_ns, parent_id = self._keys(config)
        record = CheckpointRecord(
            thread_id=thread_id,
            checkpoint_ns=checkpoint_ns,
            checkpoint_id=checkpoint["id"],
            parent_checkpoint_id=parent_id,
            **self._dump_checkpoint(checkpoint, metadata),
        )
        await self._store_checkpoint(record)
        return self._saved_config(thread_id, checkpoint_ns, checkpoint["id"])

    async def _store_checkpoint(self, record: CheckpointRecord) -> None:
        raise NotImplementedError

