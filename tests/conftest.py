"""Shared fixtures: bar factories and small model configurations."""

from datetime import datetime, timedelta

import numpy as np
import pytest

from fusion_signals.core.models import EngineConfig, ModelConfig, PriceBar

BASE_TIME = datetime(2024, 1, 1)


def _make_bar(close: float, index: int, prev_close: float | None = None,
              spread: float = 0.1, volume: float = 1000.0) -> PriceBar:
    open_ = close if prev_close is None else prev_close
    return PriceBar(
        timestamp=BASE_TIME + timedelta(hours=index),
        open=open_,
        high=max(open_, close) + spread,
        low=min(open_, close) - spread,
        close=close,
        volume=volume,
    )


def _make_bars(closes, spread: float = 0.1, start: int = 0) -> list[PriceBar]:
    bars = []
    prev = None
    for i, close in enumerate(closes):
        bars.append(_make_bar(float(close), start + i, prev, spread))
        prev = float(close)
    return bars


def _wave_closes(n: int, base: float = 100.0, amplitude: float = 5.0,
                 period: int = 24, seed: int = 3) -> list[float]:
    """Sine wave with a little noise; swings through both RSI extremes."""
    rng = np.random.default_rng(seed)
    t = np.arange(n)
    noise = rng.normal(0, 0.2, n)
    return list(base + amplitude * np.sin(2 * np.pi * t / period) + noise)


@pytest.fixture
def make_bar():
    return _make_bar


@pytest.fixture
def make_bars():
    return _make_bars


@pytest.fixture
def wave_closes():
    return _wave_closes


@pytest.fixture
def small_model_config():
    return ModelConfig(
        d_model=8,
        n_head=2,
        n_layer=1,
        dropout=0.0,
        sequence_length=8,
        prediction_length=2,
        learning_rate=0.05,
        seed=7,
    )


@pytest.fixture
def small_engine_config(small_model_config):
    return EngineConfig(model=small_model_config)
