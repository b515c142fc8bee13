"""Historical price CSV loading and data statistics.

Supported layouts:
- Dukascopy-style export with a ``Gmt time`` column formatted
  ``dd.mm.YYYY HH:MM:SS.fff``
- Any CSV with an ISO ``timestamp`` column

Price headers are matched case-insensitively.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd
from pydantic import ValidationError

from fusion_signals.core.models.bar import PriceBar

logger = logging.getLogger(__name__)

GMT_TIME_FORMAT = "%d.%m.%Y %H:%M:%S.%f"
DEFAULT_VOLUME = 1000.0
PRICE_COLUMNS = ("open", "high", "low", "close")

# Hourly bars
PERIODS_PER_YEAR = 24 * 365
HIGH_QUALITY_MIN_POINTS = 1000


@dataclass(frozen=True, slots=True)
class DataStats:
    total_points: int
    start: datetime
    end: datetime
    min_price: float
    max_price: float
    mean_price: float
    return_std: float
    volatility: float  # annualized
    quality: str  # "High" or "Low"


def _parse_timestamps(df: pd.DataFrame) -> pd.Series:
    if "gmt time" in df.columns:
        return pd.to_datetime(df["gmt time"], format=GMT_TIME_FORMAT, errors="coerce")
    if "timestamp" in df.columns:
        return pd.to_datetime(df["timestamp"], errors="coerce")
    raise ValueError("CSV needs a 'Gmt time' or 'timestamp' column")


def load_price_csv(path: Path | str) -> list[PriceBar]:
    """
    Load OHLCV bars from a CSV file.

    Rows with unparseable timestamps or NaN prices are dropped, missing or
    zero volume becomes 1000, duplicate timestamps keep the last row, and
    the result is sorted by time.

    Raises:
        ValueError: If a timestamp or price column is missing
    """
    df = pd.read_csv(path)
    df.columns = [str(c).strip().lower() for c in df.columns]

    missing = [c for c in PRICE_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"CSV is missing price columns: {missing}")

    out = pd.DataFrame({"timestamp": _parse_timestamps(df)})
    for col in PRICE_COLUMNS:
        out[col] = pd.to_numeric(df[col], errors="coerce")
    if "volume" in df.columns:
        volume = pd.to_numeric(df["volume"], errors="coerce")
        out["volume"] = volume.where(volume > 0, DEFAULT_VOLUME)
    else:
        out["volume"] = DEFAULT_VOLUME

    raw_count = len(out)
    out = out.dropna(subset=["timestamp", *PRICE_COLUMNS])
    out = out.sort_values("timestamp").drop_duplicates(subset="timestamp", keep="last")

    bars = []
    rejected = 0
    for row in out.itertuples(index=False):
        try:
            bars.append(PriceBar(
                timestamp=row.timestamp.to_pydatetime(),
                open=row.open,
                high=row.high,
                low=row.low,
                close=row.close,
                volume=row.volume,
            ))
        except ValidationError:
            rejected += 1

    if rejected:
        logger.warning(f"Skipped {rejected} bars with inconsistent prices in {path}")
    logger.info(f"Loaded {len(bars)} bars from {path} ({raw_count} rows)")
    return bars


def data_stats(bars: Sequence[PriceBar]) -> DataStats | None:
    """Summary statistics for a bar series; None when empty.

    ``return_std`` is the root mean square of simple close-to-close returns;
    ``volatility`` annualizes it assuming hourly bars.
    """
    if not bars:
        return None

    closes = np.array([b.close for b in bars], dtype=np.float64)
    returns = np.diff(closes) / closes[:-1]
    return_std = float(np.sqrt(np.mean(returns ** 2))) if len(returns) else 0.0

    return DataStats(
        total_points=len(bars),
        start=bars[0].timestamp,
        end=bars[-1].timestamp,
        min_price=float(closes.min()),
        max_price=float(closes.max()),
        mean_price=float(closes.mean()),
        return_std=return_std,
        volatility=return_std * math.sqrt(PERIODS_PER_YEAR),
        quality="High" if len(bars) > HIGH_QUALITY_MIN_POINTS else "Low",
    )
