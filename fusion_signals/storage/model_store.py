"""Persist the sequence model and its feature scaler in a key/value store.

Stored document (orjson):

    {"version": 1, "model": SequenceModel.to_state(), "scaler": FeatureScaler.to_state()}

numpy arrays are serialized natively via ``OPT_SERIALIZE_NUMPY``.
"""

from __future__ import annotations

import logging

import orjson

from fusion_signals.core.features import FeatureScaler
from fusion_signals.core.ml.sequence_model import SequenceModel
from fusion_signals.core.models.config import ModelConfig
from fusion_signals.errors import PersistenceError
from fusion_signals.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
DEFAULT_SLOT = "sequence-model"


def _serialize(model: SequenceModel, scaler: FeatureScaler | None) -> bytes:
    doc = {
        "version": FORMAT_VERSION,
        "model": model.to_state(),
        "scaler": scaler.to_state() if scaler is not None else None,
    }
    return orjson.dumps(doc, option=orjson.OPT_SERIALIZE_NUMPY)


class ModelRepository:
    """Save and load model state under a named slot.

    Args:
        store: Backing key/value store
        slot: Key under which the model document is kept
    """

    def __init__(self, store: KeyValueStore, slot: str = DEFAULT_SLOT):
        self.store = store
        self.slot = slot

    def save(self, model: SequenceModel, scaler: FeatureScaler | None = None) -> None:
        """
        Write the model (and scaler) to the slot.

        Raises:
            PersistenceError: If serialization or the store write fails
        """
        try:
            data = _serialize(model, scaler)
        except (TypeError, orjson.JSONEncodeError) as e:
            raise PersistenceError(f"Failed to serialize model state: {e}") from e

        self.store.set(self.slot, data)
        logger.info(
            f"Saved model to slot '{self.slot}' "
            f"(epoch {model.training_state.epoch}, {len(data)} bytes)"
        )

    def load(self) -> tuple[SequenceModel, FeatureScaler] | None:
        """
        Read the model from the slot.

        Returns:
            (model, scaler), or None if the slot is empty

        Raises:
            PersistenceError: If the store fails or the document is invalid
        """
        data = self.store.get(self.slot)
        if data is None:
            return None

        try:
            doc = orjson.loads(data)
            if doc.get("version") != FORMAT_VERSION:
                raise ValueError(f"unsupported format version {doc.get('version')!r}")
            model = SequenceModel.from_state(doc["model"])
            scaler_state = doc.get("scaler") or {}
            scaler = FeatureScaler.from_state(scaler_state, model.config.feature_count)
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise PersistenceError(f"Invalid model document in slot '{self.slot}': {e}") from e

        logger.info(
            f"Loaded model from slot '{self.slot}' (epoch {model.training_state.epoch})"
        )
        return model, scaler

    def load_or_create(
        self,
        config: ModelConfig | None = None,
    ) -> tuple[SequenceModel, FeatureScaler]:
        """Load the saved model, or build a fresh one when absent or unreadable.

        A stored model whose config differs from ``config`` is discarded.
        """
        config = config or ModelConfig()
        try:
            loaded = self.load()
        except PersistenceError as e:
            logger.warning(f"Could not load model, starting fresh: {e}")
            loaded = None

        if loaded is not None:
            model, scaler = loaded
            if model.config == config:
                return model, scaler
            logger.warning(
                f"Saved model in slot '{self.slot}' has a different configuration, starting fresh"
            )
        else:
            logger.info(f"No saved model in slot '{self.slot}', initializing new model")

        return SequenceModel(config), FeatureScaler(config.feature_count)

    def delete(self) -> bool:
        return self.store.delete(self.slot)
