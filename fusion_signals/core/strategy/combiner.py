"""Fuse rule-based and model signals into one actionable stream."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from fusion_signals.core.models.config import FusionConfig
from fusion_signals.core.models.signal import Signal

logger = logging.getLogger(__name__)


def _actionable(signal: Signal | None) -> Signal | None:
    return signal if signal is not None and signal.is_actionable else None


class SignalCombiner:
    """Merge signals that share a timestamp.

    - Same action from both: weighted confidence (rule_weight, model_weight)
    - Opposite actions: dropped
    - One side only (the other HOLD or absent): discounted confidence
    """

    def __init__(self, config: FusionConfig | None = None):
        self.config = config or FusionConfig()

    def combine_one(self, rule: Signal | None, model: Signal | None) -> Signal | None:
        """Combine the signals of one timestamp; returns None for HOLD."""
        cfg = self.config
        rule, model = _actionable(rule), _actionable(model)

        if rule is not None and model is not None:
            if rule.action != model.action:
                logger.debug(
                    f"Conflicting signals at {rule.timestamp}: "
                    f"rule {rule.action.value} vs model {model.action.value}"
                )
                return None
            confidence = cfg.rule_weight * rule.confidence + cfg.model_weight * model.confidence
            return Signal(
                timestamp=rule.timestamp,
                price=rule.price,
                action=rule.action,
                confidence=min(1.0, max(0.0, confidence)),
                reasoning=rule.reasoning + model.reasoning,
                sources=rule.sources | model.sources,
                predicted_price=model.predicted_price,
                price_change=model.price_change,
            )

        if rule is not None:
            return rule.with_confidence(rule.confidence * cfg.rule_only_discount)
        if model is not None:
            return model.with_confidence(model.confidence * cfg.model_only_discount)
        return None

    def combine(
        self,
        rule_signals: Iterable[Signal],
        model_signals: Iterable[Signal],
    ) -> list[Signal]:
        """
        Merge two signal streams by timestamp.

        Returns:
            Actionable signals sorted by timestamp
        """
        rules: dict[datetime, Signal] = {s.timestamp: s for s in rule_signals}
        models: dict[datetime, Signal] = {s.timestamp: s for s in model_signals}

        combined = []
        for ts in sorted(rules.keys() | models.keys()):
            signal = self.combine_one(rules.get(ts), models.get(ts))
            if signal is not None:
                combined.append(signal)
        return combined
