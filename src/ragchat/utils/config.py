"""
Configuration utilities.
"""

import json
from pathlib import Path
from typing import Literal

import yaml

from pydantic import BaseModel, Field


class Config(BaseModel):
    """Base configuration class."""

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")


class LLMConfig(BaseModel):
    """Chat capability settings."""
    provider: Literal["openai"] = "openai"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = 0.0
    max_tokens: int = 2048
    timeout: float = 60.0


class EmbeddingConfig(BaseModel):
    """Embedding capability settings."""
    provider: Literal["openai", "local", "fake"] = "openai"
    # Provider default when None (text-embedding-3-small for openai)
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    batch_size: int = 100


class RAGConfig(BaseModel):
    """Knowledge base and vector store settings."""
    knowledge_dir: str = "knowledge"
    profile: Literal["default", "large"] = "large"
    chunk_size: int | None = None
    chunk_overlap: int | None = None
    k: int | None = None

    backend: Literal["chroma", "memory"] = "chroma"
    collection_name: str = "langchain-docs"
    vector_store_url: str = "http://localhost:8000"
    batch_size: int = 100
    embed_sub_batch_size: int = 32
    embed_concurrency: int = 1
    pre_embed_filter: bool = True
    reset_collection: bool = True
    timeout: float = 60.0

    # Reuse an existing collection instead of re-indexing on startup
    connect_existing: bool = False


class MemoryConfig(BaseModel):
    """Thread memory settings."""
    backend: Literal["memory", "sqlite", "redis"] = "memory"
    sqlite_path: str = "checkpoints.db"
    redis_url: str = "redis://localhost:6379"
    ttl: int = 86400
    max_tokens: int = 1000
    chars_per_token: float = 3.0
    system_prompt: str | None = None


class AppConfig(Config):
    """Top-level application configuration."""
    llm: LLMConfig = Field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    rag: RAGConfig = Field(default_factory=RAGConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    enable_rag: bool = True
    default_language: str = "Chinese"
    log_level: str = "INFO"


def load_config(path: str | Path = "ragchat.yaml") -> AppConfig:
    """
    Load application configuration from file.

    Args:
        path: Path to config file

    Returns:
        AppConfig instance (defaults when the file does not exist)
    """
    path = Path(path)

    if not path.exists():
        return AppConfig()

    return AppConfig.from_file(path)
