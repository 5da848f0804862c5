"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers, later layers overriding earlier ones:

    1. config/config.yaml  -- static defaults checked into the repo
    2. .env file           -- local developer overrides (not committed)
    3. Environment vars    -- set at deploy time

:func:`load_config` reads the YAML file first, then deep-merges the values
derived from :class:`~kbindex.config.settings.Settings` on top.  The
``_deep_merge`` helper merges nested dicts key by key::

    base      = {"chunking": {"chunk_size": 1000}}
    overrides = {"chunking": {"strategy": "sentence"}}
    result    = {"chunking": {"chunk_size": 1000, "strategy": "sentence"}}
"""

from __future__ import annotations

from pathlib import Path

import yaml

from kbindex.config.settings import Settings
from kbindex.utils.errors import ConfigurationError


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  A missing file yields
            the env-derived values alone.
        settings: Pre-built settings; a fresh :class:`Settings` is read
            from the environment when omitted.

    Returns:
        Fully resolved configuration dictionary.

    Raises:
        ConfigurationError: If the YAML file exists but is not a mapping
            or cannot be parsed.
    """
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Cannot parse {config_path}: {exc}") from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "env": settings.app_env,
        },
        "embedding": {
            "provider": settings.embedding_provider.value,
            "model": settings.embedding_model,
            "ollama_base_url": settings.ollama_base_url,
            "cache_size": settings.embedding_cache_size,
            "cache_ttl": settings.embedding_cache_ttl,
        },
        "worker_pool": {
            "enabled": settings.embedding_worker_pool_enabled,
            "count": settings.resolved_worker_count(),
            "max_queue_size": settings.embedding_max_queue_size,
            "timeout_ms": settings.embedding_worker_timeout,
        },
        "ner": {
            "enabled": settings.ner_enabled,
            "model": settings.ner_model,
        },
        "jobs": {
            "max_concurrent": settings.max_concurrent_jobs,
            "max_attempts": settings.job_max_attempts,
            "retry_backoff": settings.job_retry_backoff,
        },
        "storage": {
            "document_db_path": settings.document_db_path,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
