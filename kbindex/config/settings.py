"""Application settings loaded from environment variables via pydantic-settings.

Two sources are read, in priority order:

1. **Environment variables**, e.g. ``EMBEDDING_WORKER_COUNT=4`` (always wins).
2. **.env file** in the working directory (local development).

Field names map to upper-cased env var names automatically
(``embedding_worker_timeout`` → ``EMBEDDING_WORKER_TIMEOUT``).  Defaults
apply when neither source sets a value.
"""

from __future__ import annotations

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

from kbindex.models.embedding import ProviderKind


class Settings(BaseSettings):
    """kbindex application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding providers ===
    # Empty string = "not configured"; the CLI refuses remote providers
    # without a key.
    embedding_provider: ProviderKind = ProviderKind.LOCAL
    embedding_model: str = "Xenova/bge-m3"
    openai_api_key: str = ""
    openai_base_url: str = ""
    dashscope_api_key: str = ""
    dashscope_base_url: str = ""
    ollama_base_url: str = "http://localhost:11434"

    # === Embedding cache ===
    embedding_cache_size: int = 10000
    embedding_cache_ttl: int = 3600

    # === Embedding worker pool ===
    embedding_worker_pool_enabled: bool = True
    embedding_worker_count: int = 0  # 0 = one worker per CPU, minus one
    embedding_max_queue_size: int = 1000
    embedding_worker_timeout: int = 300000  # milliseconds, per task

    # === NER ===
    ner_enabled: bool = False
    ner_model: str = "ckiplab/bert-base-chinese-ner"

    # === Storage ===
    document_db_path: str = "data/kbindex.db"

    # === Job dispatch ===
    max_concurrent_jobs: int = 2
    job_max_attempts: int = 3
    job_retry_backoff: float = 2.0  # seconds, multiplied by the attempt number

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def resolved_worker_count(self) -> int:
        """Return the worker-pool size, deriving it from the CPU count when unset."""
        if self.embedding_worker_count > 0:
            return self.embedding_worker_count
        return max(1, (os.cpu_count() or 2) - 1)

    def api_key_for(self, provider: ProviderKind) -> str:
        """Return the configured API key for a remote *provider* ("" when none)."""
        if provider is ProviderKind.OPENAI:
            return self.openai_api_key
        if provider is ProviderKind.DASHSCOPE:
            return self.dashscope_api_key
        return ""

    def base_url_for(self, provider: ProviderKind) -> str:
        """Return the configured base URL override for *provider* ("" when none)."""
        return {
            ProviderKind.OPENAI: self.openai_base_url,
            ProviderKind.DASHSCOPE: self.dashscope_base_url,
            ProviderKind.OLLAMA: self.ollama_base_url,
        }.get(provider, "")
