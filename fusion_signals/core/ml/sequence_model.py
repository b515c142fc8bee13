"""Multi-layer self-attention sequence model implemented with numpy.

Architecture:
    window (L, F) -> linear projection + learned positional table (L, D)
    -> n_layer x [multi-head attention, residual, layer norm,
                  feed-forward D -> 4D -> D with ReLU, residual, layer norm]
    -> last timestep hidden (D,) -> output projection (P,)

Attention is softmax(Q K^T) V per head without the 1/sqrt(d_k) scaling.
All forward functions accept a single window (L, F) or a batch (B, L, F).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from fusion_signals.core.ml.layers import layer_norm, relu, softmax, xavier
from fusion_signals.core.models.config import ModelConfig
from fusion_signals.errors import InvalidConfigurationError

logger = logging.getLogger(__name__)

FFN_EXPANSION = 4

_LAYER_KEYS = ("wq", "wk", "wv", "wo", "ln1_gain", "w1", "b1", "w2", "b2", "ln2_gain")


@dataclass(slots=True)
class TrainingState:
    """Optimizer bookkeeping persisted alongside the weights."""

    epoch: int = 0
    loss: float | None = None
    best_loss: float = math.inf
    learning_rate: float = 0.001

    def to_dict(self) -> dict:
        return {
            "epoch": self.epoch,
            "loss": self.loss,
            # JSON has no infinity
            "best_loss": self.best_loss if math.isfinite(self.best_loss) else None,
            "learning_rate": self.learning_rate,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrainingState":
        best = data.get("best_loss")
        return cls(
            epoch=int(data.get("epoch", 0)),
            loss=data.get("loss"),
            best_loss=math.inf if best is None else float(best),
            learning_rate=float(data.get("learning_rate", 0.001)),
        )


class SequenceModel:
    """Forecast the next ``prediction_length`` scaled closes from a feature window."""

    def __init__(self, config: ModelConfig | None = None):
        self.config = config or ModelConfig()
        self.training_state = TrainingState(learning_rate=self.config.learning_rate)
        self.weights = self._init_weights(np.random.default_rng(self.config.seed))

    # =========================================================================
    # Weights
    # =========================================================================

    def _init_weights(self, rng: np.random.Generator) -> dict:
        cfg = self.config
        d, f, seq, p = cfg.d_model, cfg.feature_count, cfg.sequence_length, cfg.prediction_length
        hidden = d * FFN_EXPANSION

        layers = []
        for _ in range(cfg.n_layer):
            layers.append({
                "wq": xavier(rng, d, d),
                "wk": xavier(rng, d, d),
                "wv": xavier(rng, d, d),
                "wo": xavier(rng, d, d),
                "ln1_gain": np.ones(d),
                "w1": xavier(rng, d, hidden),
                "b1": np.zeros(hidden),
                "w2": xavier(rng, hidden, d),
                "b2": np.zeros(d),
                "ln2_gain": np.ones(d),
            })

        return {
            "embedding": {
                "projection": xavier(rng, f, d),
                "positional": xavier(rng, seq, d),
            },
            "transformer_layers": layers,
            "output": {
                "weight": xavier(rng, d, p),
                "bias": np.zeros(p),
            },
        }

    def _expected_shapes(self) -> dict:
        cfg = self.config
        d, hidden = cfg.d_model, cfg.d_model * FFN_EXPANSION
        return {
            "projection": (cfg.feature_count, d),
            "positional": (cfg.sequence_length, d),
            "layer": {
                "wq": (d, d), "wk": (d, d), "wv": (d, d), "wo": (d, d),
                "ln1_gain": (d,), "w1": (d, hidden), "b1": (hidden,),
                "w2": (hidden, d), "b2": (d,), "ln2_gain": (d,),
            },
            "weight": (d, cfg.prediction_length),
            "bias": (cfg.prediction_length,),
        }

    @property
    def parameter_count(self) -> int:
        total = self.weights["embedding"]["projection"].size
        total += self.weights["embedding"]["positional"].size
        for layer in self.weights["transformer_layers"]:
            total += sum(layer[k].size for k in _LAYER_KEYS)
        total += self.weights["output"]["weight"].size + self.weights["output"]["bias"].size
        return int(total)

    # =========================================================================
    # Forward pass
    # =========================================================================

    def _check_input(self, x) -> tuple[np.ndarray, bool]:
        arr = np.asarray(x, dtype=np.float64)
        single = arr.ndim == 2
        if single:
            arr = arr[np.newaxis]
        expected = (self.config.sequence_length, self.config.feature_count)
        if arr.ndim != 3 or arr.shape[1:] != expected:
            raise InvalidConfigurationError(
                f"expected window shape {expected} or (batch, *{expected}), got {np.shape(x)}"
            )
        return arr, single

    def _attention(self, x: np.ndarray, layer: dict) -> np.ndarray:
        b, seq, d = x.shape
        heads = self.config.n_head
        dh = d // heads

        def split(t: np.ndarray) -> np.ndarray:
            return t.reshape(b, seq, heads, dh).transpose(0, 2, 1, 3)

        q = split(x @ layer["wq"])
        k = split(x @ layer["wk"])
        v = split(x @ layer["wv"])

        weights = softmax(np.matmul(q, k.transpose(0, 1, 3, 2)), axis=-1)
        context = np.matmul(weights, v).transpose(0, 2, 1, 3).reshape(b, seq, d)
        return context @ layer["wo"]

    def _block(self, x: np.ndarray, layer: dict) -> np.ndarray:
        x = layer_norm(x + self._attention(x, layer), layer["ln1_gain"])
        ff = relu(x @ layer["w1"] + layer["b1"]) @ layer["w2"] + layer["b2"]
        return layer_norm(x + ff, layer["ln2_gain"])

    def encode(self, x) -> np.ndarray:
        """Run the backbone and return the last-timestep hidden vector.

        Args:
            x: Scaled window (L, F) or batch (B, L, F)

        Returns:
            Hidden state (D,) or (B, D)
        """
        arr, single = self._check_input(x)
        emb = self.weights["embedding"]
        h = arr @ emb["projection"] + emb["positional"]
        for layer in self.weights["transformer_layers"]:
            h = self._block(h, layer)
        last = h[:, -1, :]
        return last[0] if single else last

    def head(self, hidden: np.ndarray) -> np.ndarray:
        """Project hidden vectors to forecasts."""
        out = self.weights["output"]
        return hidden @ out["weight"] + out["bias"]

    def forward(self, x) -> np.ndarray:
        """Forecast scaled closes for a window (P,) or a batch (B, P)."""
        return self.head(self.encode(x))

    # =========================================================================
    # State
    # =========================================================================

    def to_state(self) -> dict:
        """Export config, weights and training state.

        Arrays are kept as numpy arrays; serializers must handle them.
        """
        return {
            "config": self.config.model_dump(),
            "weights": self.weights,
            "training_state": self.training_state.to_dict(),
        }

    @classmethod
    def from_state(cls, state: dict) -> "SequenceModel":
        """Rebuild a model from ``to_state`` output (arrays may be lists).

        Raises:
            ValueError: If the state is incomplete or shapes do not match the config
        """
        config = ModelConfig.model_validate(state["config"])
        model = cls.__new__(cls)
        model.config = config
        model.training_state = TrainingState.from_dict(state.get("training_state") or {})

        shapes = model._expected_shapes()
        raw = state["weights"]

        def load(value, shape, name):
            arr = np.asarray(value, dtype=np.float64)
            if arr.shape != shape:
                raise ValueError(f"weight {name} has shape {arr.shape}, expected {shape}")
            return arr

        raw_layers = raw["transformer_layers"]
        if len(raw_layers) != config.n_layer:
            raise ValueError(f"state has {len(raw_layers)} layers, config says {config.n_layer}")

        model.weights = {
            "embedding": {
                "projection": load(raw["embedding"]["projection"], shapes["projection"], "projection"),
                "positional": load(raw["embedding"]["positional"], shapes["positional"], "positional"),
            },
            "transformer_layers": [
                {k: load(layer[k], shapes["layer"][k], k) for k in _LAYER_KEYS}
                for layer in raw_layers
            ],
            "output": {
                "weight": load(raw["output"]["weight"], shapes["weight"], "output.weight"),
                "bias": load(raw["output"]["bias"], shapes["bias"], "output.bias"),
            },
        }
        logger.debug(f"Restored sequence model ({model.parameter_count} parameters)")
        return model
