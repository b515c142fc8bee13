"""Key/value stores and model persistence."""

from fusion_signals.storage.kv import InMemoryStore, KeyValueStore
from fusion_signals.storage.model_store import ModelRepository
from fusion_signals.storage.redis_store import RedisStore

__all__ = [
    "InMemoryStore",
    "KeyValueStore",
    "ModelRepository",
    "RedisStore",
]
