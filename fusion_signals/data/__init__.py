"""Historical data loading."""

from fusion_signals.data.loader import DataStats, data_stats, load_price_csv

__all__ = ["DataStats", "data_stats", "load_price_csv"]
