"""Sequence model and its training loop."""

from fusion_signals.core.ml.sequence_model import SequenceModel, TrainingState
from fusion_signals.core.ml.trainer import (
    EpochStats,
    SequenceTrainer,
    TrainingResult,
    prepare_training_data,
    split_train_validation,
)

__all__ = [
    "SequenceModel",
    "TrainingState",
    "EpochStats",
    "SequenceTrainer",
    "TrainingResult",
    "prepare_training_data",
    "split_train_validation",
]
