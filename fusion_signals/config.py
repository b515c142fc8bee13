"""Application settings and engine configuration loading.

- ``Settings``: environment variables (prefix ``FUSION_``) and ``.env``
- ``load_engine_config``: EngineConfig from a YAML file, defaults when absent
- ``create_store``: key/value store selected by the settings
- ``create_engine``: FusionEngine wired to that store
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

from fusion_signals.core.engine import FusionEngine
from fusion_signals.core.models.config import EngineConfig
from fusion_signals.storage.kv import InMemoryStore, KeyValueStore
from fusion_signals.storage.model_store import ModelRepository
from fusion_signals.storage.redis_store import KEY_PREFIX, RedisStore

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FUSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Redis (empty = in-memory store)
    redis_url: str = ""
    redis_prefix: str = KEY_PREFIX

    # Engine config file
    engine_config_path: str = "engine.yaml"

    # Slot override for the persisted model (empty = EngineConfig.model_slot)
    model_slot: str = ""


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_engine_config(path: Path | str | None = None) -> EngineConfig:
    """Load engine config from a YAML file.

    Falls back to defaults if the file doesn't exist. A ``.env`` next to the
    file is loaded into the environment first (existing variables win).

    Raises:
        pydantic.ValidationError: If the file contains invalid values
    """
    config_path = Path(path) if path is not None else Path(get_settings().engine_config_path)

    load_dotenv(config_path.parent / ".env", override=False)

    if not config_path.exists():
        logger.info("No engine config found at %s, using defaults", config_path)
        return EngineConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = EngineConfig(**raw)
    logger.info(
        "Loaded engine config: history=%d, model d_model=%d n_layer=%d seq=%d",
        config.history_size,
        config.model.d_model,
        config.model.n_layer,
        config.model.sequence_length,
    )
    return config


def create_store(settings: Settings | None = None) -> KeyValueStore:
    """Redis store when ``redis_url`` is set, otherwise an in-memory store."""
    settings = settings or get_settings()
    if settings.redis_url:
        return RedisStore.from_url(settings.redis_url, prefix=settings.redis_prefix)
    logger.info("No redis_url configured, using in-memory store")
    return InMemoryStore()


def create_engine(
    config: EngineConfig | None = None,
    settings: Settings | None = None,
) -> FusionEngine:
    """Build a FusionEngine wired to the configured store.

    The model slot comes from ``settings.model_slot`` when set, otherwise
    from ``config.model_slot``.
    """
    settings = settings or get_settings()
    config = config or load_engine_config(settings.engine_config_path)
    repository = ModelRepository(create_store(settings), slot=settings.model_slot or config.model_slot)
    return FusionEngine(config, repository=repository)
