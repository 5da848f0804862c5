"""Unit tests for Settings, the YAML config loader and IndexingConfig validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from kbindex.config.loader import load_config
from kbindex.config.settings import Settings
from kbindex.models.config import IndexingConfig, SplitStrategy, max_chunk_size_for
from kbindex.models.embedding import ProviderKind
from kbindex.utils.errors import ConfigurationError

_ENV_VARS = (
    "EMBEDDING_PROVIDER",
    "EMBEDDING_MODEL",
    "EMBEDDING_WORKER_COUNT",
    "EMBEDDING_WORKER_POOL_ENABLED",
    "NER_ENABLED",
    "OPENAI_API_KEY",
    "DASHSCOPE_API_KEY",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# ======================================================================
# Settings
# ======================================================================


class TestSettings:
    def test_defaults(self, clean_env) -> None:
        s = Settings(_env_file=None)
        assert s.embedding_provider is ProviderKind.LOCAL
        assert s.embedding_model == "Xenova/bge-m3"
        assert s.embedding_worker_pool_enabled is True
        assert s.ner_enabled is False
        assert s.document_db_path == "data/kbindex.db"

    def test_environment_overrides(self, clean_env) -> None:
        clean_env.setenv("EMBEDDING_PROVIDER", "ollama")
        clean_env.setenv("EMBEDDING_WORKER_POOL_ENABLED", "false")
        clean_env.setenv("NER_ENABLED", "true")

        s = Settings(_env_file=None)

        assert s.embedding_provider is ProviderKind.OLLAMA
        assert s.embedding_worker_pool_enabled is False
        assert s.ner_enabled is True

    def test_explicit_worker_count_wins(self, clean_env) -> None:
        clean_env.setenv("EMBEDDING_WORKER_COUNT", "3")
        assert Settings(_env_file=None).resolved_worker_count() == 3

    def test_worker_count_derived_from_cpus(self, clean_env) -> None:
        assert Settings(_env_file=None).resolved_worker_count() >= 1

    def test_api_keys_per_provider(self, clean_env) -> None:
        s = Settings(_env_file=None, openai_api_key="sk-test", dashscope_api_key="ds-test")
        assert s.api_key_for(ProviderKind.OPENAI) == "sk-test"
        assert s.api_key_for(ProviderKind.DASHSCOPE) == "ds-test"
        assert s.api_key_for(ProviderKind.OLLAMA) == ""

    def test_base_urls_per_provider(self, clean_env) -> None:
        s = Settings(_env_file=None)
        assert s.base_url_for(ProviderKind.OLLAMA) == "http://localhost:11434"
        assert s.base_url_for(ProviderKind.LOCAL) == ""


# ======================================================================
# YAML loader
# ======================================================================


class TestLoadConfig:
    def test_yaml_values_kept_and_env_merged(self, clean_env, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "chunking:\n  strategy: sentence\n  chunk_size: 600\n"
            "embedding:\n  batch_size: 7\n  provider: openai\n",
            encoding="utf-8",
        )

        config = load_config(str(path), settings=Settings(_env_file=None))

        assert config["chunking"] == {"strategy": "sentence", "chunk_size": 600}
        assert config["embedding"]["batch_size"] == 7
        # settings are layered over the file
        assert config["embedding"]["provider"] == "local"
        assert config["jobs"]["max_attempts"] == 3

    def test_missing_file_yields_settings_only(self, clean_env, tmp_path) -> None:
        config = load_config(str(tmp_path / "absent.yaml"), settings=Settings(_env_file=None))
        assert "chunking" not in config
        assert config["storage"]["document_db_path"] == "data/kbindex.db"

    def test_invalid_yaml_raises(self, clean_env, tmp_path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("chunking: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_config(str(path), settings=Settings(_env_file=None))

    def test_non_mapping_raises(self, clean_env, tmp_path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(str(path), settings=Settings(_env_file=None))

    def test_project_config_loads(self, clean_env, project_root) -> None:
        config = load_config(str(project_root / "config" / "config.yaml"), settings=Settings(_env_file=None))
        assert config["chunking"]["strategy"] == SplitStrategy.RECURSIVE_CHARACTER.value
        assert config["worker_pool"]["restart_backoff_seconds"] == 1.0
        assert config["ner"]["max_entities"] == 8


# ======================================================================
# IndexingConfig
# ======================================================================


class TestIndexingConfig:
    def test_defaults_are_valid(self) -> None:
        config = IndexingConfig()
        assert config.split_config().chunk_size == 1000
        assert config.extraction_config().max_entities == 8

    def test_chunk_size_below_minimum_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Chunk size must be between 100"):
            IndexingConfig(chunk_size=50, chunk_overlap=0)

    def test_local_model_ceiling(self) -> None:
        with pytest.raises(ValidationError, match="between 100 and 2000"):
            IndexingConfig(chunk_size=2500, embedding_model="Xenova/bge-m3")

    def test_large_model_accepts_long_chunks(self) -> None:
        config = IndexingConfig(chunk_size=10000, embedding_model="qwen3-embedding:4b")
        assert config.chunk_size == 10000

    def test_overlap_must_be_smaller_than_size(self) -> None:
        with pytest.raises(ValidationError, match="overlap"):
            IndexingConfig(chunk_size=300, chunk_overlap=300)

    @pytest.mark.parametrize(
        ("model", "ceiling"),
        [(None, 8000), ("Xenova/bge-m3", 2000), ("qwen3-embedding:4b", 12000), ("text-embedding-3-small", 8000)],
    )
    def test_max_chunk_size_for(self, model, ceiling) -> None:
        assert max_chunk_size_for(model) == ceiling
