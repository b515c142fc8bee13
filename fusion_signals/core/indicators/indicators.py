"""Technical indicators for signal generation.

Every function computes the latest value from the trailing window of the
series it is given. Nothing is carried between calls: callers pass the
retained history and get back either a value or an ``InsufficientHistory``
sentinel when the window is not yet full.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

import numpy as np

from fusion_signals.core.models.bar import PriceBar, PriceHistory
from fusion_signals.core.models.config import IndicatorConfig

logger = logging.getLogger(__name__)

ArrayLike = Sequence[float] | np.ndarray


@dataclass(frozen=True, slots=True)
class InsufficientHistory:
    """Sentinel returned when a window has fewer values than it needs."""

    required: int
    available: int

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True, slots=True)
class MacdValue:
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True, slots=True)
class StochasticValue:
    k: float
    d: float


@dataclass(frozen=True, slots=True)
class IndicatorSnapshot:
    """All indicator values for one bar."""

    timestamp: datetime
    close: float
    rsi: float
    sma: float
    sma_slope: float
    bollinger: BollingerBands
    macd: MacdValue
    stochastic: StochasticValue
    atr: float


def _as_array(values: ArrayLike) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


# =============================================================================
# Single-value indicators
# =============================================================================

def rsi(closes: ArrayLike, period: int = 14) -> float | InsufficientHistory:
    """
    Calculate the Relative Strength Index of the latest close.

    Uses the simple average of gains and losses over the last ``period``
    price changes.

    Args:
        closes: Close prices, oldest first
        period: Number of changes to average

    Returns:
        RSI in [0, 100], or InsufficientHistory with fewer than period+1 closes
    """
    arr = _as_array(closes)
    if len(arr) < period + 1:
        return InsufficientHistory(required=period + 1, available=len(arr))

    changes = np.diff(arr[-(period + 1):])
    avg_gain = float(np.clip(changes, 0, None).sum()) / period
    avg_loss = float(-np.clip(changes, None, 0).sum()) / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return float(min(100.0, max(0.0, 100.0 - 100.0 / (1.0 + rs))))


def sma(values: ArrayLike, period: int) -> float | InsufficientHistory:
    """Calculate the Simple Moving Average of the last ``period`` values."""
    arr = _as_array(values)
    if len(arr) < period:
        return InsufficientHistory(required=period, available=len(arr))
    window = arr[-period:]
    if window.max() == window.min():
        return float(window[-1])
    return float(np.mean(window))


def bollinger_bands(
    closes: ArrayLike,
    period: int = 20,
    num_std: float = 2.0,
) -> BollingerBands | InsufficientHistory:
    """
    Calculate Bollinger Bands.

    middle = SMA(period), upper/lower = middle +/- num_std * population std.

    Args:
        closes: Close prices, oldest first
        period: Window length
        num_std: Band width in standard deviations

    Returns:
        BollingerBands, or InsufficientHistory
    """
    arr = _as_array(closes)
    if len(arr) < period:
        return InsufficientHistory(required=period, available=len(arr))

    window = arr[-period:]
    if window.max() == window.min():
        # Flat window: bands collapse onto the price
        middle, std = float(window[-1]), 0.0
    else:
        middle = float(np.mean(window))
        std = float(np.std(window))
    return BollingerBands(
        upper=middle + num_std * std,
        middle=middle,
        lower=middle - num_std * std,
    )


def ema_series(values: ArrayLike, period: int) -> np.ndarray:
    """
    Calculate an Exponential Moving Average series.

    The first ``period - 1`` entries are NaN; the seed is the SMA of the first
    ``period`` values.

    Args:
        values: Input series
        period: EMA period

    Returns:
        Array of the same length as ``values``
    """
    arr = _as_array(values)
    result = np.full(len(arr), np.nan)
    if len(arr) < period:
        return result

    multiplier = 2.0 / (period + 1)
    result[period - 1] = np.mean(arr[:period])
    for i in range(period, len(arr)):
        result[i] = arr[i] * multiplier + result[i - 1] * (1 - multiplier)
    return result


def macd(
    closes: ArrayLike,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdValue:
    """
    Calculate MACD, its signal line and histogram.

    MACD = EMA(fast) - EMA(slow). The signal line is EMA(signal) of the MACD
    series; while that series is shorter than ``signal`` its mean is used.
    Fewer than ``slow`` closes gives all zeros.
    """
    arr = _as_array(closes)
    if len(arr) < slow:
        return MacdValue(macd=0.0, signal=0.0, histogram=0.0)

    macd_line = (ema_series(arr, fast) - ema_series(arr, slow))[slow - 1:]
    macd_value = float(macd_line[-1])

    if len(macd_line) < signal:
        signal_value = float(np.mean(macd_line))
    else:
        signal_value = float(ema_series(macd_line, signal)[-1])

    return MacdValue(
        macd=macd_value,
        signal=signal_value,
        histogram=macd_value - signal_value,
    )


def _stochastic_k(highs: np.ndarray, lows: np.ndarray, close: float) -> float:
    highest = float(np.max(highs))
    lowest = float(np.min(lows))
    if highest == lowest:
        return 50.0
    return float(min(100.0, max(0.0, (close - lowest) / (highest - lowest) * 100.0)))


def stochastic(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    period: int = 14,
    d_period: int = 3,
) -> StochasticValue | InsufficientHistory:
    """
    Calculate the Stochastic Oscillator.

    %K = (close - lowest low) / (highest high - lowest low) * 100 over the
    last ``period`` bars (50 when the range is zero). %D is the mean of the
    last ``d_period`` %K values that have a full window.
    """
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    n = len(c)
    if n < period:
        return InsufficientHistory(required=period, available=n)

    k_values = []
    for end in range(n, max(period, n - d_period + 1) - 1, -1):
        start = end - period
        k_values.append(_stochastic_k(h[start:end], l[start:end], float(c[end - 1])))

    return StochasticValue(k=k_values[0], d=float(np.mean(k_values)))


def true_range(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
) -> np.ndarray:
    """
    Calculate True Range for every bar after the first.

    TR = max(high - low, abs(high - prev_close), abs(low - prev_close))

    Returns:
        Array of length len(closes) - 1
    """
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    if len(c) < 2:
        return np.empty(0)

    prev_close = c[:-1]
    hl = h[1:] - l[1:]
    hc = np.abs(h[1:] - prev_close)
    lc = np.abs(l[1:] - prev_close)
    return np.maximum(hl, np.maximum(hc, lc))


def atr(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    period: int = 14,
) -> float | InsufficientHistory:
    """Calculate Average True Range as the mean of the last ``period`` TRs."""
    n = len(closes)
    if n < period + 1:
        return InsufficientHistory(required=period + 1, available=n)

    window = slice(n - period - 1, n)
    tr = true_range(
        _as_array(highs)[window], _as_array(lows)[window], _as_array(closes)[window]
    )
    return float(np.mean(tr))


# =============================================================================
# IndicatorEngine
# =============================================================================

class IndicatorEngine:
    """Append bars and compute an IndicatorSnapshot for each one.

    The engine owns a bounded PriceHistory. Indicators are recomputed from
    the retained window on every bar.
    """

    def __init__(self, config: IndicatorConfig | None = None, history_size: int = 200):
        self.config = config or IndicatorConfig()
        if history_size < self.config.max_lookback:
            raise ValueError(
                f"history_size ({history_size}) must cover the indicator "
                f"lookback ({self.config.max_lookback})"
            )
        self.history = PriceHistory(max_size=history_size)
        self._prev_sma: float | None = None
        self._last_snapshot: IndicatorSnapshot | None = None

    @property
    def last_snapshot(self) -> IndicatorSnapshot | None:
        return self._last_snapshot

    def add_bar(self, bar: PriceBar) -> IndicatorSnapshot | InsufficientHistory:
        """Append a bar and return the snapshot for it.

        Raises:
            InvalidBarError: If the bar is not newer than the previous one
        """
        self.history.add(bar)
        snapshot = self.calculate_latest(self.history)

        if isinstance(snapshot, IndicatorSnapshot):
            self._prev_sma = snapshot.sma
            self._last_snapshot = snapshot
        return snapshot

    def calculate_latest(self, history: PriceHistory) -> IndicatorSnapshot | InsufficientHistory:
        """
        Calculate indicators for the latest bar of ``history``.

        Returns:
            IndicatorSnapshot, or InsufficientHistory before warmup completes
        """
        cfg = self.config
        available = len(history)
        if available < cfg.min_bars:
            return InsufficientHistory(required=cfg.min_bars, available=available)

        closes = history.get_closes()
        highs = history.get_highs()
        lows = history.get_lows()

        rsi_value = rsi(closes, cfg.rsi_period)
        sma_value = sma(closes, cfg.sma_period)
        bands = bollinger_bands(closes, cfg.bollinger_period, cfg.bollinger_std)
        stoch = stochastic(highs, lows, closes, cfg.stochastic_period, cfg.stochastic_d_period)
        atr_value = atr(highs, lows, closes, cfg.atr_period)
        macd_value = macd(closes, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)

        slope = 0.0 if self._prev_sma is None else sma_value - self._prev_sma

        return IndicatorSnapshot(
            timestamp=history.last.timestamp,
            close=float(closes[-1]),
            rsi=rsi_value,
            sma=sma_value,
            sma_slope=slope,
            bollinger=bands,
            macd=macd_value,
            stochastic=stoch,
            atr=atr_value,
        )


def compute_snapshots(
    bars: Sequence[PriceBar],
    config: IndicatorConfig | None = None,
    history_size: int = 200,
) -> list[IndicatorSnapshot]:
    """Run a fresh IndicatorEngine over ``bars`` and keep the full snapshots."""
    engine = IndicatorEngine(config, history_size=history_size)
    snapshots = []
    for bar in bars:
        snapshot = engine.add_bar(bar)
        if isinstance(snapshot, IndicatorSnapshot):
            snapshots.append(snapshot)
    logger.debug(f"Computed {len(snapshots)} snapshots from {len(bars)} bars")
    return snapshots
