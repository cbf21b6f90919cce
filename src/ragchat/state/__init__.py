"""Thread memory for ragchat.

This module provides langgraph checkpoint savers keyed by thread id:
- PersistentSaver: shared record handling for stored checkpoints
- Savers: SQLite and Redis storage; in-process memory uses langgraph's InMemorySaver
"""

from .checkpoint import CheckpointRecord, PersistentSaver
from .sqlite_backend import SQLiteSaver
from .redis_backend import RedisSaver

__all__ = [
    "CheckpointRecord",
    "PersistentSaver",
    "SQLiteSaver",
    "RedisSaver",
]
