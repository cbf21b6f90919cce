"""
Utility helpers - configuration, logging and timeouts.
"""

from ragchat.utils.config import (
    AppConfig,
    Config,
    EmbeddingConfig,
    LLMConfig,
    MemoryConfig,
    RAGConfig,
    load_config,
)
from ragchat.utils.logging import get_logger, set_log_level
from ragchat.utils.timeout import with_timeout

__all__ = [
    "Config",
    "AppConfig",
    "LLMConfig",
    "EmbeddingConfig",
    "RAGConfig",
    "MemoryConfig",
    "load_config",
    "get_logger",
    "set_log_level",
    "with_timeout",
]
