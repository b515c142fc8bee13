"""Data models."""

from fusion_signals.core.models.bar import PriceBar, PriceHistory
from fusion_signals.core.models.signal import Action, Signal, SignalSource
from fusion_signals.core.models.position import (
    ExitReason,
    Position,
    PositionStatus,
)
from fusion_signals.core.models.config import (
    EngineConfig,
    FusionConfig,
    IndicatorConfig,
    ModelConfig,
    ModelSignalConfig,
    PositionConfig,
    StrategyConfig,
)

__all__ = [
    "PriceBar",
    "PriceHistory",
    "Action",
    "Signal",
    "SignalSource",
    "ExitReason",
    "Position",
    "PositionStatus",
    "EngineConfig",
    "FusionConfig",
    "IndicatorConfig",
    "ModelConfig",
    "ModelSignalConfig",
    "PositionConfig",
    "StrategyConfig",
]
