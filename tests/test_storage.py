"""Tests for key/value stores and the model repository."""

import logging
from unittest.mock import MagicMock

import numpy as np
import orjson
import pytest
import redis

from fusion_signals.core.features import FEATURE_COUNT, FeatureScaler
from fusion_signals.core.ml import SequenceModel
from fusion_signals.core.models import ModelConfig
from fusion_signals.errors import PersistenceError
from fusion_signals.storage import InMemoryStore, KeyValueStore, ModelRepository, RedisStore


class TestInMemoryStore:
    def test_set_get_delete(self):
        store = InMemoryStore()
        store.set("a", b"1")

        assert store.get("a") == b"1"
        assert store.delete("a")
        assert store.get("a") is None
        assert not store.delete("a")

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryStore(), KeyValueStore)


class TestRedisStore:
    def test_prefixes_keys(self):
        client = MagicMock()
        client.get.return_value = b"payload"
        store = RedisStore(client, prefix="test:")

        assert store.get("slot") == b"payload"
        store.set("slot", b"data")

        client.get.assert_called_once_with("test:slot")
        client.set.assert_called_once_with("test:slot", b"data")

    def test_delete_reports_existence(self):
        client = MagicMock()
        client.delete.return_value = 1
        assert RedisStore(client).delete("slot")

        client.delete.return_value = 0
        assert not RedisStore(client).delete("slot")

    def test_errors_become_persistence_errors(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("refused")
        client.set.side_effect = redis.TimeoutError("slow")
        store = RedisStore(client)

        with pytest.raises(PersistenceError, match="GET"):
            store.get("slot")
        with pytest.raises(PersistenceError, match="SET"):
            store.set("slot", b"x")

    def test_ping_false_on_error(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("down")
        assert RedisStore(client).ping() is False

    def test_satisfies_protocol(self):
        assert isinstance(RedisStore(MagicMock()), KeyValueStore)


class TestModelRepository:
    @pytest.fixture
    def fitted_scaler(self):
        data = np.random.default_rng(0).uniform(1, 50, size=(20, FEATURE_COUNT))
        return FeatureScaler().fit(data)

    def test_save_and_load(self, small_model_config, fitted_scaler):
        repo = ModelRepository(InMemoryStore(), slot="m")
        model = SequenceModel(small_model_config)
        model.training_state.epoch = 4

        repo.save(model, fitted_scaler)
        loaded_model, loaded_scaler = repo.load()

        assert loaded_model.training_state.epoch == 4
        assert np.allclose(
            loaded_model.weights["output"]["weight"], model.weights["output"]["weight"]
        )
        assert np.allclose(loaded_scaler.max, fitted_scaler.max)

    def test_document_format(self, small_model_config, fitted_scaler):
        store = InMemoryStore()
        ModelRepository(store, slot="m").save(SequenceModel(small_model_config), fitted_scaler)

        doc = orjson.loads(store.get("m"))
        assert doc["version"] == 1
        assert set(doc["model"]) == {"config", "weights", "training_state"}
        assert doc["scaler"]["fitted"] is True

    def test_load_empty_slot(self):
        assert ModelRepository(InMemoryStore()).load() is None

    def test_load_invalid_document(self):
        store = InMemoryStore()
        store.set("sequence-model", orjson.dumps({"version": 99}))

        with pytest.raises(PersistenceError, match="version"):
            ModelRepository(store).load()

    def test_load_or_create_absent(self, small_model_config, caplog):
        with caplog.at_level(logging.INFO):
            model, scaler = ModelRepository(InMemoryStore()).load_or_create(small_model_config)

        assert model.config == small_model_config
        assert not scaler.fitted
        assert "initializing new model" in caplog.text

    def test_load_or_create_store_failure(self, small_model_config, caplog):
        store = MagicMock()
        store.get.side_effect = PersistenceError("redis down")

        with caplog.at_level(logging.WARNING):
            model, scaler = ModelRepository(store).load_or_create(small_model_config)

        assert model.training_state.epoch == 0
        assert "redis down" in caplog.text

    def test_load_or_create_config_mismatch(self, small_model_config, caplog):
        repo = ModelRepository(InMemoryStore())
        repo.save(SequenceModel(small_model_config))
        other = ModelConfig(d_model=4, n_head=2, n_layer=1, sequence_length=8,
                            prediction_length=2, seed=7)

        with caplog.at_level(logging.WARNING):
            model, _ = repo.load_or_create(other)

        assert model.config == other
        assert "different configuration" in caplog.text

    def test_save_failure_raises(self, small_model_config):
        store = MagicMock()
        store.set.side_effect = PersistenceError("full")

        with pytest.raises(PersistenceError):
            ModelRepository(store).save(SequenceModel(small_model_config))

    def test_delete(self, small_model_config):
        repo = ModelRepository(InMemoryStore())
        repo.save(SequenceModel(small_model_config))

        assert repo.delete()
        assert repo.load() is None
