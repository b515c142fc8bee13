"""Model-based signal generator.

Turns the first step of the sequence model's forecast into an action by
comparing the predicted close against the current close.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

import numpy as np

from fusion_signals.core.features import CLOSE_INDEX, FeatureScaler, build_feature_matrix
from fusion_signals.core.indicators import compute_snapshots
from fusion_signals.core.ml.sequence_model import SequenceModel
from fusion_signals.core.models.bar import PriceBar
from fusion_signals.core.models.config import IndicatorConfig, ModelSignalConfig
from fusion_signals.core.models.signal import Action, Signal, SignalSource

logger = logging.getLogger(__name__)


class ModelSignalGenerator:
    """Generate BUY/SELL/HOLD signals from sequence model forecasts."""

    def __init__(
        self,
        model: SequenceModel,
        scaler: FeatureScaler,
        config: ModelSignalConfig | None = None,
        indicator_config: IndicatorConfig | None = None,
        history_size: int = 200,
    ):
        self.model = model
        self.scaler = scaler
        self.config = config or ModelSignalConfig()
        self.indicator_config = indicator_config or IndicatorConfig()
        self.history_size = history_size

    @property
    def window(self) -> int:
        return self.model.config.sequence_length

    def classify(self, predicted: float, current: float) -> tuple[Action, float, float]:
        """Return (action, confidence, price_change) for one forecast."""
        change = (predicted - current) / current
        threshold = self.config.change_threshold
        if change > threshold:
            action = Action.BUY
        elif change < -threshold:
            action = Action.SELL
        else:
            action = Action.HOLD
        return action, min(1.0, abs(change)), change

    def _build(self, timestamp: datetime, current: float, predicted: float) -> Signal:
        action, confidence, change = self.classify(predicted, current)
        return Signal(
            timestamp=timestamp,
            price=current,
            action=action,
            confidence=confidence,
            reasoning=[
                f"Model predicts {predicted:.4f} vs current {current:.4f} ({change:+.2%})"
            ],
            sources=frozenset({SignalSource.MODEL}),
            predicted_price=predicted,
            price_change=change,
        )

    def _predict_closes(self, raw_windows: np.ndarray) -> np.ndarray:
        """Forecast the next close for each raw window in a (B, L, F) batch."""
        b, seq, f = raw_windows.shape
        scaled = self.scaler.transform(raw_windows.reshape(b * seq, f)).reshape(b, seq, f)
        forecast = self.model.forward(scaled)
        return self.scaler.inverse_transform_column(forecast[:, 0], CLOSE_INDEX)

    def generate_signal(
        self,
        raw_window: np.ndarray,
        timestamp: datetime,
        current_price: float,
    ) -> Signal:
        """
        Forecast from one unscaled feature window ending at the current bar.

        Args:
            raw_window: Unscaled feature rows (sequence_length, F), oldest first
            timestamp: Timestamp of the current bar
            current_price: Close of the current bar

        Raises:
            ScalerNotFittedError: If the scaler has not been fitted
        """
        predicted = float(self._predict_closes(np.asarray(raw_window, dtype=np.float64)[np.newaxis])[0])
        return self._build(timestamp, current_price, predicted)

    def generate_signals(self, bars: Sequence[PriceBar]) -> list[Signal]:
        """Forecast for every bar with a full feature window; HOLD included."""
        snapshots = compute_snapshots(bars, self.indicator_config, self.history_size)
        matrix = build_feature_matrix(bars, snapshots)
        seq = self.window
        if len(matrix) < seq:
            return []

        windows = np.stack([matrix[end - seq:end] for end in range(seq, len(matrix) + 1)])
        predicted = self._predict_closes(windows)

        signals = []
        for snapshot, pred in zip(snapshots[seq - 1:], predicted):
            signals.append(self._build(snapshot.timestamp, snapshot.close, float(pred)))
        logger.debug(f"Generated {len(signals)} model signals from {len(bars)} bars")
        return signals
