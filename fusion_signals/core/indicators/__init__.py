"""Technical indicators (pure math, no I/O)."""

from fusion_signals.core.indicators.indicators import (
    BollingerBands,
    IndicatorEngine,
    IndicatorSnapshot,
    InsufficientHistory,
    MacdValue,
    StochasticValue,
    atr,
    bollinger_bands,
    compute_snapshots,
    ema_series,
    macd,
    rsi,
    sma,
    stochastic,
    true_range,
)

__all__ = [
    "BollingerBands",
    "IndicatorEngine",
    "IndicatorSnapshot",
    "InsufficientHistory",
    "MacdValue",
    "StochasticValue",
    "atr",
    "bollinger_bands",
    "compute_snapshots",
    "ema_series",
    "macd",
    "rsi",
    "sma",
    "stochastic",
    "true_range",
]
