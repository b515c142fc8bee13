"""Training loop for the sequence model.

The backbone (embedding and attention blocks) is frozen after
initialization; training fits the output projection only. Hidden vectors
are therefore computed once per ``train`` call and the head is fitted by
mini-batch SGD on the exact MSE gradient.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from fusion_signals.core.features import CLOSE_INDEX
from fusion_signals.core.ml.sequence_model import SequenceModel
from fusion_signals.errors import InvalidConfigurationError, NoTrainingDataError

logger = logging.getLogger(__name__)

TRAIN_FRACTION = 0.8
ENCODE_CHUNK = 256

CheckpointFn = Callable[[SequenceModel], None]


@dataclass(slots=True)
class EpochStats:
    epoch: int
    train_loss: float
    val_loss: float | None


@dataclass(slots=True)
class TrainingResult:
    """Outcome of one ``SequenceTrainer.train`` call."""

    history: list[EpochStats] = field(default_factory=list)
    checkpoints: list[int] = field(default_factory=list)
    cancelled: bool = False

    @property
    def epochs_run(self) -> int:
        return len(self.history)

    @property
    def final_loss(self) -> float | None:
        return self.history[-1].train_loss if self.history else None


def prepare_training_data(
    scaled: np.ndarray,
    sequence_length: int,
    prediction_length: int,
    target_column: int = CLOSE_INDEX,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Slice a scaled feature matrix into (window, future closes) pairs.

    Args:
        scaled: Scaled feature matrix (n, F), oldest row first
        sequence_length: Rows per input window
        prediction_length: Future values per target
        target_column: Feature column used as target

    Returns:
        (X, y) with shapes (N, sequence_length, F) and (N, prediction_length),
        where N = n - sequence_length - prediction_length + 1 (or 0)
    """
    arr = np.asarray(scaled, dtype=np.float64)
    n = len(arr) - sequence_length - prediction_length + 1
    features = arr.shape[1] if arr.ndim == 2 else 0
    if n <= 0:
        return np.empty((0, sequence_length, features)), np.empty((0, prediction_length))

    X = np.stack([arr[i:i + sequence_length] for i in range(n)])
    y = np.stack([
        arr[i + sequence_length:i + sequence_length + prediction_length, target_column]
        for i in range(n)
    ])
    return X, y


def split_train_validation(
    X: np.ndarray,
    y: np.ndarray,
    train_fraction: float = TRAIN_FRACTION,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Chronological split; the validation part is the most recent samples."""
    cut = int(len(X) * train_fraction)
    if cut == 0:
        cut = len(X)
    return X[:cut], y[:cut], X[cut:], y[cut:]


class SequenceTrainer:
    """Fit a SequenceModel's output head.

    Args:
        model: Model to train in place
        checkpoint: Called with the model after every epoch whose training
            loss improves on the best loss so far. Exceptions propagate.

    A cancel request is never reset; create a new trainer per run.
    """

    def __init__(self, model: SequenceModel, checkpoint: CheckpointFn | None = None):
        self.model = model
        self.checkpoint = checkpoint
        self._cancel = threading.Event()
        self._rng = np.random.default_rng(model.config.seed)

    def cancel(self) -> None:
        """Stop training before the next epoch starts."""
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def _encode_all(self, X: np.ndarray) -> np.ndarray:
        if len(X) == 0:
            return np.empty((0, self.model.config.d_model))
        return np.concatenate([
            self.model.encode(X[i:i + ENCODE_CHUNK]) for i in range(0, len(X), ENCODE_CHUNK)
        ])

    def _dropout(self, hidden: np.ndarray) -> np.ndarray:
        rate = self.model.config.dropout
        if rate <= 0:
            return hidden
        mask = self._rng.random(hidden.shape) >= rate
        return hidden * mask / (1.0 - rate)

    def _step(self, hidden: np.ndarray, target: np.ndarray, lr: float) -> float:
        """One SGD step on the output projection; returns the batch MSE."""
        out = self.model.weights["output"]
        h = self._dropout(hidden)
        err = h @ out["weight"] + out["bias"] - target
        loss = float(np.mean(err ** 2))

        scale = 2.0 / err.size
        out["weight"] -= lr * scale * (h.T @ err)
        out["bias"] -= lr * scale * err.sum(axis=0)
        return loss

    def _mse(self, hidden: np.ndarray, target: np.ndarray) -> float | None:
        if len(hidden) == 0:
            return None
        return float(np.mean((self.model.head(hidden) - target) ** 2))

    def train(
        self,
        X: np.ndarray,
        y: np.ndarray,
        epochs: int = 10,
        batch_size: int = 32,
    ) -> TrainingResult:
        """
        Train for up to ``epochs`` epochs.

        Raises:
            NoTrainingDataError: If X is empty
            InvalidConfigurationError: If epochs or batch_size is not positive
            PersistenceError: If a checkpoint save fails
        """
        if len(X) == 0:
            raise NoTrainingDataError("no training sequences; need more bars than the model window")
        if epochs <= 0 or batch_size <= 0:
            raise InvalidConfigurationError(
                f"epochs and batch_size must be positive, got {epochs} and {batch_size}"
            )

        state = self.model.training_state
        result = TrainingResult()

        X_train, y_train, X_val, y_val = split_train_validation(X, y)
        hidden_train = self._encode_all(X_train)
        hidden_val = self._encode_all(X_val)
        logger.info(
            f"Training on {len(X_train)} sequences ({len(X_val)} validation), "
            f"{epochs} epochs, batch size {batch_size}"
        )

        for _ in range(epochs):
            if self._cancel.is_set():
                logger.info(f"Training cancelled after {result.epochs_run} epochs")
                result.cancelled = True
                break

            order = self._rng.permutation(len(hidden_train))
            total = 0.0
            for start in range(0, len(order), batch_size):
                idx = order[start:start + batch_size]
                total += self._step(hidden_train[idx], y_train[idx], state.learning_rate) * len(idx)

            train_loss = total / len(order)
            val_loss = self._mse(hidden_val, y_val)
            state.epoch += 1
            state.loss = train_loss
            result.history.append(EpochStats(state.epoch, train_loss, val_loss))

            if not math.isfinite(train_loss):
                logger.warning(f"Epoch {state.epoch}: non-finite loss, stopping")
                break

            logger.info(
                "Epoch %d: loss=%.6f val_loss=%s", state.epoch, train_loss,
                "n/a" if val_loss is None else f"{val_loss:.6f}",
            )

            if train_loss < state.best_loss:
                state.best_loss = train_loss
                if self.checkpoint is not None:
                    self.checkpoint(self.model)
                    result.checkpoints.append(state.epoch)

        return result
