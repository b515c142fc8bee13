"""Streaming engine tying indicators, generators, the combiner and positions together.

Per bar:
    1. Indicator snapshot
    2. Rule-based and model signals (model only once the scaler is fitted)
    3. Combined signal
    4. Exits for positions opened before this bar
    5. Optional auto-open from the combined signal

All mutating calls hold a re-entrant lock, so one engine can be shared
between threads with a single writer at a time.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Sequence

import numpy as np

from fusion_signals.core.features import (
    FEATURE_COUNT,
    FeatureScaler,
    build_feature_matrix,
    build_feature_row,
)
from fusion_signals.core.indicators import (
    BollingerBands,
    IndicatorEngine,
    IndicatorSnapshot,
    InsufficientHistory,
    compute_snapshots,
)
from fusion_signals.core.ml.sequence_model import SequenceModel
from fusion_signals.core.ml.trainer import (
    SequenceTrainer,
    TrainingResult,
    prepare_training_data,
    split_train_validation,
)
from fusion_signals.core.models.bar import PriceBar
from fusion_signals.core.models.config import EngineConfig
from fusion_signals.core.models.position import Position
from fusion_signals.core.models.signal import Signal
from fusion_signals.core.positions import PositionManager, TradingStats
from fusion_signals.core.strategy import (
    MeanReversionSignalGenerator,
    ModelSignalGenerator,
    SignalCombiner,
)
from fusion_signals.errors import InvalidConfigurationError, NoTrainingDataError

if TYPE_CHECKING:
    from fusion_signals.storage.model_store import ModelRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BarResult:
    """Everything that happened while processing one bar."""

    bar: PriceBar
    snapshot: IndicatorSnapshot | InsufficientHistory
    rule_signal: Signal | None = None
    model_signal: Signal | None = None
    signal: Signal | None = None
    opened: Position | None = None
    closed: list[Position] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class MarketState:
    price: float
    rsi: float
    sma: float
    bollinger: BollingerBands
    trend: str  # "bullish" or "bearish"
    volatility_pct: float  # band width as % of the middle band


@dataclass(frozen=True, slots=True)
class ModelStats:
    loaded: bool
    fitted: bool
    config: dict
    training_state: dict
    parameter_count: int
    training_size: int
    validation_size: int
    feature_count: int
    sequence_length: int
    prediction_length: int


class FusionEngine:
    """Process a bar stream into combined signals and managed positions.

    Args:
        config: Engine configuration (defaults when None)
        repository: Model persistence; when given, the saved model is loaded
            at construction and training checkpoints go through it
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        repository: "ModelRepository | None" = None,
    ):
        self.config = config or EngineConfig()
        cfg = self.config
        if cfg.model.feature_count != FEATURE_COUNT:
            raise InvalidConfigurationError(
                f"model.feature_count must be {FEATURE_COUNT}, got {cfg.model.feature_count}"
            )

        self.repository = repository
        self._lock = threading.RLock()

        self.indicators = IndicatorEngine(cfg.indicators, history_size=cfg.history_size)
        self.rule_generator = MeanReversionSignalGenerator(
            cfg.strategy, cfg.indicators, cfg.history_size
        )
        self.combiner = SignalCombiner(cfg.fusion)
        self.positions = PositionManager(cfg.positions, cfg.strategy)

        if repository is not None:
            model, scaler = repository.load_or_create(cfg.model)
            self._model_loaded = scaler.fitted
        else:
            model, scaler = SequenceModel(cfg.model), FeatureScaler(FEATURE_COUNT)
            self._model_loaded = False
        self.model = model
        self.scaler = scaler
        self.model_generator = ModelSignalGenerator(
            model, scaler, cfg.model_signals, cfg.indicators, cfg.history_size
        )

        self._feature_rows: deque[np.ndarray] = deque(maxlen=cfg.model.sequence_length)
        self._signals: deque[Signal] = deque(maxlen=cfg.signal_audit_tail)
        self._trainer: SequenceTrainer | None = None
        self._train_size = 0
        self._val_size = 0

    # =========================================================================
    # Streaming
    # =========================================================================

    @property
    def model_ready(self) -> bool:
        return self.config.model_signals.enabled and self.scaler.fitted

    @property
    def signals(self) -> list[Signal]:
        """Most recent combined signals (bounded by ``signal_audit_tail``)."""
        return list(self._signals)

    def process_bar(self, bar: PriceBar) -> BarResult:
        """
        Process one closed bar.

        Raises:
            InvalidBarError: If the bar is not newer than the previous one
        """
        with self._lock:
            snapshot = self.indicators.add_bar(bar)
            result = BarResult(bar=bar, snapshot=snapshot)

            if isinstance(snapshot, InsufficientHistory):
                result.closed = self.positions.check_exits(bar.close, None, bar.timestamp)
                return result

            self._feature_rows.append(build_feature_row(bar, snapshot))
            result.rule_signal = self.rule_generator.generate_signal(snapshot)
            if self.model_ready and len(self._feature_rows) == self._feature_rows.maxlen:
                result.model_signal = self.model_generator.generate_signal(
                    np.stack(self._feature_rows), bar.timestamp, bar.close
                )
            result.signal = self.combiner.combine_one(result.rule_signal, result.model_signal)

            result.closed = self.positions.check_exits(bar.close, snapshot.rsi, bar.timestamp)

            if result.signal is not None:
                self._signals.append(result.signal)
                self.positions.record_signal(result.signal)
                logger.debug(
                    f"{result.signal.action.value} signal at {bar.timestamp} "
                    f"(confidence {result.signal.confidence:.3f})"
                )
                if self.config.positions.auto_open and self.positions.can_open():
                    result.opened = self.positions.open(result.signal, snapshot=snapshot)

            return result

    def run(self, bars: Iterable[PriceBar]) -> list[BarResult]:
        """Replay a bar series through ``process_bar``."""
        return [self.process_bar(bar) for bar in bars]

    def check_exits(
        self,
        current_price: float,
        current_rsi: float | None = None,
        timestamp: datetime | None = None,
    ) -> list[Position]:
        with self._lock:
            return self.positions.check_exits(current_price, current_rsi, timestamp)

    # =========================================================================
    # Batch
    # =========================================================================

    def generate_signals(self, bars: Sequence[PriceBar]) -> list[Signal]:
        """Rule, model and combined signals for a bar batch.

        Streaming state (history, positions, statistics) is not touched.
        """
        with self._lock:
            rule_signals = self.rule_generator.generate_signals(bars)
            model_signals = self.model_generator.generate_signals(bars) if self.model_ready else []
            return self.combiner.combine(rule_signals, model_signals)

    # =========================================================================
    # Training
    # =========================================================================

    def _checkpoint(self, model: SequenceModel) -> None:
        self.repository.save(model, self.scaler)

    def train(
        self,
        bars: Sequence[PriceBar],
        epochs: int = 10,
        batch_size: int = 32,
    ) -> TrainingResult:
        """
        Fit the scaler on ``bars`` and train the model.

        The scaler is re-fitted on every call. Checkpoints go through the
        repository when one is configured.

        Raises:
            NoTrainingDataError: If ``bars`` yields no training sequences
            PersistenceError: If a checkpoint save fails
        """
        with self._lock:
            cfg = self.config
            snapshots = compute_snapshots(bars, cfg.indicators, cfg.history_size)
            matrix = build_feature_matrix(bars, snapshots)
            needed = cfg.model.sequence_length + cfg.model.prediction_length
            if len(matrix) < needed:
                raise NoTrainingDataError(
                    f"{len(bars)} bars give {len(matrix)} feature rows; need at least {needed}"
                )

            self.scaler.refit(matrix)
            X, y = prepare_training_data(
                self.scaler.transform(matrix),
                cfg.model.sequence_length,
                cfg.model.prediction_length,
            )
            X_train, _, X_val, _ = split_train_validation(X, y)
            self._train_size, self._val_size = len(X_train), len(X_val)

            checkpoint = self._checkpoint if self.repository is not None else None
            self._trainer = SequenceTrainer(self.model, checkpoint=checkpoint)
            try:
                result = self._trainer.train(X, y, epochs=epochs, batch_size=batch_size)
            finally:
                self._trainer = None

            logger.info(
                f"Training finished: {result.epochs_run} epochs, "
                f"final loss {result.final_loss}, {len(result.checkpoints)} checkpoints"
            )
            return result

    def cancel_training(self) -> bool:
        """Ask a running ``train`` call to stop before its next epoch.

        Returns False when no training is in progress.
        """
        trainer = self._trainer
        if trainer is None:
            return False
        trainer.cancel()
        return True

    # =========================================================================
    # Introspection
    # =========================================================================

    def market_state(self) -> MarketState | None:
        snap = self.indicators.last_snapshot
        if snap is None:
            return None
        bands = snap.bollinger
        return MarketState(
            price=snap.close,
            rsi=snap.rsi,
            sma=snap.sma,
            bollinger=bands,
            trend="bullish" if snap.close > snap.sma else "bearish",
            volatility_pct=(bands.upper - bands.lower) / bands.middle * 100.0,
        )

    def model_stats(self) -> ModelStats:
        cfg = self.model.config
        return ModelStats(
            loaded=self._model_loaded,
            fitted=self.scaler.fitted,
            config=cfg.model_dump(),
            training_state=self.model.training_state.to_dict(),
            parameter_count=self.model.parameter_count,
            training_size=self._train_size,
            validation_size=self._val_size,
            feature_count=cfg.feature_count,
            sequence_length=cfg.sequence_length,
            prediction_length=cfg.prediction_length,
        )

    def stats(self) -> TradingStats:
        return self.positions.stats()
