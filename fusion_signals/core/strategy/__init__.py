"""Signal generators and the signal combiner."""

from fusion_signals.core.strategy.combiner import SignalCombiner
from fusion_signals.core.strategy.mean_reversion import MeanReversionSignalGenerator
from fusion_signals.core.strategy.model_signals import ModelSignalGenerator

__all__ = [
    "MeanReversionSignalGenerator",
    "ModelSignalGenerator",
    "SignalCombiner",
]
