"""Feature matrix construction and min/max scaling for the sequence model."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from fusion_signals.core.indicators import IndicatorSnapshot
from fusion_signals.core.models.bar import PriceBar
from fusion_signals.errors import InvalidConfigurationError, ScalerNotFittedError

logger = logging.getLogger(__name__)

FEATURE_COLUMNS: tuple[str, ...] = (
    "open", "high", "low", "close", "volume",
    "rsi", "bb_high", "bb_low", "ma_20", "ma_20_slope",
    "macd", "macd_signal", "macd_histogram",
    "stoch_k", "stoch_d", "atr",
)
FEATURE_COUNT = len(FEATURE_COLUMNS)
CLOSE_INDEX = FEATURE_COLUMNS.index("close")


def build_feature_row(bar: PriceBar, snapshot: IndicatorSnapshot) -> np.ndarray:
    """Flatten a bar and its indicator snapshot into one feature vector."""
    return np.array(
        [
            bar.open, bar.high, bar.low, bar.close, bar.volume,
            snapshot.rsi,
            snapshot.bollinger.upper,
            snapshot.bollinger.lower,
            snapshot.sma,
            snapshot.sma_slope,
            snapshot.macd.macd,
            snapshot.macd.signal,
            snapshot.macd.histogram,
            snapshot.stochastic.k,
            snapshot.stochastic.d,
            snapshot.atr,
        ],
        dtype=np.float64,
    )


def build_feature_matrix(
    bars: Sequence[PriceBar],
    snapshots: Sequence[IndicatorSnapshot],
) -> np.ndarray:
    """Stack feature rows for every bar that has a snapshot.

    Bars and snapshots are matched by timestamp, so warmup bars without a
    snapshot are skipped.
    """
    by_time = {s.timestamp: s for s in snapshots}
    rows = [build_feature_row(bar, by_time[bar.timestamp]) for bar in bars if bar.timestamp in by_time]
    if not rows:
        return np.empty((0, FEATURE_COUNT))
    return np.vstack(rows)


class FeatureScaler:
    """Per-column min/max scaler.

    The mapping is fixed by the first ``fit``; changing it afterwards requires
    an explicit ``refit`` so a silent re-fit cannot shift a trained model's
    inputs.
    """

    def __init__(self, feature_count: int = FEATURE_COUNT):
        self.feature_count = feature_count
        self.min = np.full(feature_count, np.inf)
        self.max = np.full(feature_count, -np.inf)
        self.fitted = False

    def _check_matrix(self, matrix) -> np.ndarray:
        arr = np.asarray(matrix, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[1] != self.feature_count:
            raise InvalidConfigurationError(
                f"expected a (n, {self.feature_count}) matrix, got shape {arr.shape}"
            )
        return arr

    def _bounds(self, matrix) -> tuple[np.ndarray, np.ndarray]:
        arr = self._check_matrix(matrix)
        if len(arr) == 0:
            raise InvalidConfigurationError("cannot fit scaler on an empty matrix")
        return arr.min(axis=0), arr.max(axis=0)

    def fit(self, matrix) -> "FeatureScaler":
        """Compute per-column min and max.

        Raises:
            InvalidConfigurationError: If already fitted or the matrix is empty
        """
        if self.fitted:
            raise InvalidConfigurationError("scaler is already fitted; use refit() to replace the mapping")
        self.min, self.max = self._bounds(matrix)
        self.fitted = True
        logger.info(f"Fitted feature scaler on {len(matrix)} rows")
        return self

    def refit(self, matrix) -> "FeatureScaler":
        """Replace the current mapping with one fitted on ``matrix``."""
        if self.fitted:
            new_min, new_max = self._bounds(matrix)
            shifted = int(np.sum((new_min != self.min) | (new_max != self.max)))
            self.min, self.max = new_min, new_max
            logger.info(f"Re-fitted feature scaler: {shifted}/{self.feature_count} columns changed")
        else:
            self.fit(matrix)
        return self

    def _range(self) -> np.ndarray:
        if not self.fitted:
            raise ScalerNotFittedError("scaler must be fitted before use")
        return self.max - self.min

    def transform(self, matrix) -> np.ndarray:
        """Scale to [0, 1] per column; constant columns map to 0."""
        rng = self._range()
        arr = self._check_matrix(matrix)
        safe = np.where(rng == 0, 1.0, rng)
        return np.where(rng == 0, 0.0, (arr - self.min) / safe)

    def inverse_transform(self, matrix) -> np.ndarray:
        rng = self._range()
        arr = self._check_matrix(matrix)
        return arr * rng + self.min

    def inverse_transform_column(self, values, column: int) -> np.ndarray:
        """Inverse-scale values that belong to a single feature column."""
        rng = self._range()
        return np.asarray(values, dtype=np.float64) * rng[column] + self.min[column]

    def to_state(self) -> dict:
        return {
            "min": self.min.tolist() if self.fitted else None,
            "max": self.max.tolist() if self.fitted else None,
            "fitted": self.fitted,
        }

    @classmethod
    def from_state(cls, state: dict, feature_count: int = FEATURE_COUNT) -> "FeatureScaler":
        scaler = cls(feature_count)
        if state.get("fitted"):
            mins = np.asarray(state["min"], dtype=np.float64)
            maxs = np.asarray(state["max"], dtype=np.float64)
            if mins.shape != (feature_count,) or maxs.shape != (feature_count,):
                raise ValueError(f"scaler state does not have {feature_count} columns")
            if np.any(mins > maxs):
                raise ValueError("scaler state has min > max")
            scaler.min, scaler.max, scaler.fitted = mins, maxs, True
        return scaler
