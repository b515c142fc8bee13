"""Price bar (candlestick) data models."""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Iterable, Iterator

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

from fusion_signals.errors import InvalidBarError


class PriceBar(BaseModel):
    """OHLCV price bar. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float = Field(gt=0)
    high: float = Field(gt=0)
    low: float = Field(gt=0)
    close: float = Field(gt=0)
    volume: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _check_range(self):
        if self.high < max(self.open, self.close) or self.low > min(self.open, self.close):
            raise ValueError(
                f"inconsistent bar at {self.timestamp}: "
                f"o={self.open} h={self.high} l={self.low} c={self.close}"
            )
        return self


class PriceHistory:
    """Append-only bar buffer that keeps the most recent ``max_size`` bars.

    Bars must arrive in strictly increasing timestamp order. Older bars are
    trimmed from the front, so indicator windows always read from the tail.
    """

    def __init__(self, max_size: int = 200, bars: Iterable[PriceBar] = ()):
        if max_size < 2:
            raise ValueError(f"max_size must be >= 2, got {max_size}")
        self.max_size = max_size
        self._bars: deque[PriceBar] = deque(maxlen=max_size)
        self._total = 0
        for bar in bars:
            self.add(bar)

    def add(self, bar: PriceBar) -> None:
        """Append a bar, rejecting anything not newer than the last bar."""
        if self._bars and bar.timestamp <= self._bars[-1].timestamp:
            raise InvalidBarError(
                f"bar at {bar.timestamp} is not newer than last bar "
                f"at {self._bars[-1].timestamp}"
            )
        self._bars.append(bar)
        self._total += 1

    @property
    def last(self) -> PriceBar | None:
        return self._bars[-1] if self._bars else None

    @property
    def total_added(self) -> int:
        """Number of bars ever appended, including trimmed ones."""
        return self._total

    def get_closes(self) -> np.ndarray:
        """Get close prices as a float array."""
        return np.fromiter((b.close for b in self._bars), dtype=np.float64, count=len(self._bars))

    def get_highs(self) -> np.ndarray:
        """Get high prices as a float array."""
        return np.fromiter((b.high for b in self._bars), dtype=np.float64, count=len(self._bars))

    def get_lows(self) -> np.ndarray:
        """Get low prices as a float array."""
        return np.fromiter((b.low for b in self._bars), dtype=np.float64, count=len(self._bars))

    def __len__(self) -> int:
        return len(self._bars)

    def __iter__(self) -> Iterator[PriceBar]:
        return iter(self._bars)
