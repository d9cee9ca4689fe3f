"""
Configuration loading.

Tunables live in ``config.yaml`` (merged over the defaults below); service
credentials come from the environment and are all required at startup.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel

from lkb.errors import ConfigurationError

logger = logging.getLogger(__name__)


def get_default_config() -> dict[str, Any]:
    """Return default configuration."""
    return {
        "llm": {
            "provider": "azure",
            "api_version": "2024-06-01",
            "temperature": 0,
            "max_tokens": 2000,
            "timeout": 60.0,
            "max_retries": 3,
            "retry_backoff": 1.0,
            "prompts_dir": None,
        },
        "embeddings": {"dimension": 1536},
        "store": {"collection": "knowledge", "overfetch": 4},
        "indexing": {"concurrency": 4, "on_error": "skip", "id_policy": "append"},
        "query": {
            "limit": 1,
            "min_relevance_score": 0.7,
            "concurrency": 2,
            "on_synthesis_error": "skip",
        },
        "data": {"transcripts_dir": "./data/transcripts", "notes_dir": "./data/notes"},
        "server": {"host": "127.0.0.1", "port": 8000},
        "processing": {"progress_bar": True},
    }


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """Load configuration from YAML file."""
    config = get_default_config()

    if config_path is None:
        candidates = [
            Path("config.yaml"),
            Path(__file__).parent.parent / "config.yaml",
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break
        else:
            return config

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {config_path}")

    logger.debug(f"Loaded config from: {config_path}")
    return _merge(config, loaded)


ENV_VARS = {
    "endpoint": "AZURE_OPENAI_ENDPOINT",
    "api_key": "AZURE_OPENAI_API_KEY",
    "embedding_deployment": "AZURE_OPENAI_EMBEDDING_DEPLOYMENT",
    "chat_deployment": "AZURE_OPENAI_CHAT_DEPLOYMENT",
    "store_uri": "KNOWLEDGE_STORE_URI",
}


class Settings(BaseModel):
    """Service credentials and endpoints."""

    endpoint: str
    api_key: str
    embedding_deployment: str
    chat_deployment: str
    store_uri: str
    store_api_key: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """
        Read settings from the environment.

        Raises:
            ConfigurationError: naming every required variable that is unset
        """
        environ = os.environ if environ is None else environ

        values: dict[str, str | None] = {}
        missing = []
        for field, var in ENV_VARS.items():
            value = (environ.get(var) or "").strip()
            if not value:
                missing.append(var)
            values[field] = value

        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        values["store_api_key"] = environ.get("KNOWLEDGE_STORE_API_KEY") or None
        return cls(**values)
