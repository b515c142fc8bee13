"""Rule-based mean-reversion signal generator.

Entry rules:
- Long: RSI below oversold, close below SMA, close at or within
  ``band_tolerance`` above the lower Bollinger band
- Short: RSI above overbought, close above SMA, close at or within
  ``band_tolerance`` below the upper Bollinger band

Confidence is the mean of three sub-scores, each clamped to [0, 1]:
RSI distance past its threshold, relative distance from the SMA and
proximity to the band.
"""

from __future__ import annotations

import logging
from typing import Sequence

from fusion_signals.core.indicators import IndicatorSnapshot, compute_snapshots
from fusion_signals.core.models.bar import PriceBar
from fusion_signals.core.models.config import IndicatorConfig, StrategyConfig
from fusion_signals.core.models.signal import Action, Signal, SignalSource

logger = logging.getLogger(__name__)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class MeanReversionSignalGenerator:
    """Generate BUY/SELL signals from an indicator snapshot.

    Stateless per bar: the same snapshot always yields the same signal.
    """

    def __init__(
        self,
        config: StrategyConfig | None = None,
        indicator_config: IndicatorConfig | None = None,
        history_size: int = 200,
    ):
        self.config = config or StrategyConfig()
        self.indicator_config = indicator_config or IndicatorConfig()
        self.history_size = history_size

    def _band_proximity(self, distance: float, band: float) -> float:
        """1 at (or through) the band, falling to 0 at the tolerance edge."""
        if distance <= 0:
            return 1.0
        tolerance = band * self.config.band_tolerance
        if tolerance <= 0:
            return 0.0
        return _clamp(1.0 - distance / tolerance)

    def _long_signal(self, snap: IndicatorSnapshot) -> Signal | None:
        cfg = self.config
        price, lower = snap.close, snap.bollinger.lower
        band_limit = lower * (1 + cfg.band_tolerance)

        if not (snap.rsi < cfg.rsi_oversold and price < snap.sma and price <= band_limit):
            return None

        scores = (
            _clamp((cfg.rsi_oversold - snap.rsi) / cfg.rsi_oversold),
            _clamp((snap.sma - price) / snap.sma),
            self._band_proximity(price - lower, lower),
        )
        reasoning = [
            f"RSI oversold ({snap.rsi:.2f} < {cfg.rsi_oversold:g})",
            f"Price below SMA ({price:.4f} < {snap.sma:.4f})",
            f"Price near lower Bollinger band ({price:.4f} <= {band_limit:.4f})",
        ]
        return self._build(snap, Action.BUY, scores, reasoning)

    def _short_signal(self, snap: IndicatorSnapshot) -> Signal | None:
        cfg = self.config
        price, upper = snap.close, snap.bollinger.upper
        band_limit = upper * (1 - cfg.band_tolerance)

        if not (snap.rsi > cfg.rsi_overbought and price > snap.sma and price >= band_limit):
            return None

        scores = (
            _clamp((snap.rsi - cfg.rsi_overbought) / (100.0 - cfg.rsi_overbought)),
            _clamp((price - snap.sma) / snap.sma),
            self._band_proximity(upper - price, upper),
        )
        reasoning = [
            f"RSI overbought ({snap.rsi:.2f} > {cfg.rsi_overbought:g})",
            f"Price above SMA ({price:.4f} > {snap.sma:.4f})",
            f"Price near upper Bollinger band ({price:.4f} >= {band_limit:.4f})",
        ]
        return self._build(snap, Action.SELL, scores, reasoning)

    @staticmethod
    def _build(
        snap: IndicatorSnapshot,
        action: Action,
        scores: tuple[float, float, float],
        reasoning: list[str],
    ) -> Signal:
        return Signal(
            timestamp=snap.timestamp,
            price=snap.close,
            action=action,
            confidence=_clamp(sum(scores) / len(scores)),
            reasoning=reasoning,
            sources=frozenset({SignalSource.RULE_BASED}),
        )

    def generate_signal(self, snapshot: IndicatorSnapshot) -> Signal | None:
        """
        Evaluate the entry rules on one snapshot.

        Args:
            snapshot: Indicator values for the current bar

        Returns:
            BUY or SELL Signal, or None when no rule fires
        """
        # Long and short conditions are mutually exclusive (price < SMA vs > SMA)
        signal = self._long_signal(snapshot) or self._short_signal(snapshot)
        if signal is not None:
            logger.debug(
                f"{signal.action.value} rule signal at {snapshot.timestamp} "
                f"(confidence {signal.confidence:.3f})"
            )
        return signal

    def generate_signals(self, bars: Sequence[PriceBar]) -> list[Signal]:
        """Run the generator over a batch of bars, oldest first."""
        snapshots = compute_snapshots(bars, self.indicator_config, self.history_size)
        signals = []
        for snapshot in snapshots:
            signal = self.generate_signal(snapshot)
            if signal is not None:
                signals.append(signal)
        return signals
