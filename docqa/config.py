"""
Configuration loading.

Settings live in config/config.yaml (path overridable with DOCQA_CONFIG).
DOCQA_DATA_DIR overrides storage.data_dir; OPENAI_API_KEY is read by the
OpenAI SDK from the environment / .env file.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = "config/config.yaml"


class StorageConfig(BaseModel):
    data_dir: str = "data"
    index_file: str = "faiss.index"
    database_file: str = "metadata.db"
    vector_store_file: str = "openai-vs.json"

    @property
    def index_path(self) -> Path:
        return Path(self.data_dir) / self.index_file

    @property
    def database_url(self) -> str:
        return f"sqlite:///{Path(self.data_dir) / self.database_file}"

    @property
    def vector_store_state_path(self) -> Path:
        return Path(self.data_dir) / self.vector_store_file


class ChunkingConfig(BaseModel):
    chunk_size: int = Field(500, ge=1)
    overlap: int = Field(50, ge=0)


class EmbeddingConfig(BaseModel):
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 512


class GenerationConfig(BaseModel):
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1024
    vector_store_id: Optional[str] = None
    vector_store_name: str = "docqa"


class OpenAIConfig(BaseModel):
    timeout_s: Optional[float] = None


class QueryConfig(BaseModel):
    top_k: int = Field(5, ge=1)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = "logs/docqa.log"


class Settings(BaseModel):
    storage: StorageConfig = Field(default_factory=StorageConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _load_config(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_settings(path: Optional[str] = None) -> Settings:
    """Read YAML settings, then apply environment overrides."""
    load_dotenv()
    path = path or os.getenv("DOCQA_CONFIG", DEFAULT_CONFIG_PATH)

    raw: dict = {}
    if Path(path).exists():
        raw = _load_config(path)
    else:
        logger.warning(f"[Config] {path} not found; using defaults")
    raw.pop("project", None)

    settings = Settings(**raw)
    data_dir = os.getenv("DOCQA_DATA_DIR")
    if data_dir:
        settings.storage.data_dir = data_dir
    return settings
