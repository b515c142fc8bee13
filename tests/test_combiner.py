"""Tests for the signal combiner."""

from datetime import datetime, timedelta

import pytest

from fusion_signals.core.models import Action, FusionConfig, Signal, SignalSource
from fusion_signals.core.strategy import SignalCombiner

T0 = datetime(2024, 1, 1)


def _rule(action: Action, confidence: float, hour: int = 0) -> Signal:
    return Signal(
        timestamp=T0 + timedelta(hours=hour),
        price=100.0,
        action=action,
        confidence=confidence,
        reasoning=["rule"],
        sources=frozenset({SignalSource.RULE_BASED}),
    )


def _model(action: Action, confidence: float, hour: int = 0) -> Signal:
    return Signal(
        timestamp=T0 + timedelta(hours=hour),
        price=100.0,
        action=action,
        confidence=confidence,
        reasoning=["model"],
        sources=frozenset({SignalSource.MODEL}),
        predicted_price=103.0,
        price_change=0.03,
    )


class TestCombineOne:
    def setup_method(self):
        self.combiner = SignalCombiner()

    def test_agreement_is_weighted(self):
        signal = self.combiner.combine_one(_rule(Action.BUY, 0.5), _model(Action.BUY, 0.8))

        assert signal.action == Action.BUY
        assert signal.confidence == pytest.approx(0.6 * 0.5 + 0.4 * 0.8)
        assert signal.sources == frozenset({SignalSource.RULE_BASED, SignalSource.MODEL})
        assert signal.reasoning == ["rule", "model"]
        assert signal.predicted_price == 103.0

    def test_conflict_is_dropped(self):
        assert self.combiner.combine_one(_rule(Action.BUY, 0.9), _model(Action.SELL, 0.9)) is None

    def test_rule_only_discounted(self):
        signal = self.combiner.combine_one(_rule(Action.SELL, 0.5), None)

        assert signal.action == Action.SELL
        assert signal.confidence == pytest.approx(0.35)
        assert signal.sources == frozenset({SignalSource.RULE_BASED})

    def test_model_hold_counts_as_absent(self):
        signal = self.combiner.combine_one(_rule(Action.BUY, 0.5), _model(Action.HOLD, 0.01))
        assert signal.confidence == pytest.approx(0.35)

    def test_model_only_discounted(self):
        signal = self.combiner.combine_one(None, _model(Action.BUY, 0.5))

        assert signal.confidence == pytest.approx(0.4)
        assert signal.sources == frozenset({SignalSource.MODEL})

    def test_nothing_actionable(self):
        assert self.combiner.combine_one(None, _model(Action.HOLD, 0.0)) is None
        assert self.combiner.combine_one(None, None) is None

    def test_confidence_stays_in_unit_interval(self):
        combiner = SignalCombiner(FusionConfig(rule_weight=0.5, model_weight=0.5))
        signal = combiner.combine_one(_rule(Action.BUY, 1.0), _model(Action.BUY, 1.0))
        assert signal.confidence == pytest.approx(1.0)

    def test_custom_weights(self):
        combiner = SignalCombiner(FusionConfig(rule_weight=0.2, model_weight=0.8, rule_only_discount=1.0))
        assert combiner.combine_one(_rule(Action.BUY, 0.5), _model(Action.BUY, 1.0)).confidence == pytest.approx(0.9)
        assert combiner.combine_one(_rule(Action.BUY, 0.5), None).confidence == pytest.approx(0.5)

    def test_weights_over_one_rejected(self):
        with pytest.raises(ValueError, match="must be <= 1"):
            FusionConfig(rule_weight=0.7, model_weight=0.4)


class TestCombineStreams:
    def test_merges_by_timestamp_sorted(self):
        rules = [_rule(Action.BUY, 0.5, hour=3), _rule(Action.SELL, 0.6, hour=1)]
        models = [
            _model(Action.BUY, 0.5, hour=3),
            _model(Action.HOLD, 0.0, hour=2),
            _model(Action.SELL, 0.5, hour=0),
        ]

        combined = SignalCombiner().combine(rules, models)

        assert [s.timestamp.hour for s in combined] == [0, 1, 3]
        assert [s.action for s in combined] == [Action.SELL, Action.SELL, Action.BUY]
        assert all(s.action != Action.HOLD for s in combined)
        assert all(0.0 <= s.confidence <= 1.0 for s in combined)

    def test_conflicts_removed(self):
        combined = SignalCombiner().combine(
            [_rule(Action.BUY, 0.9, hour=1)],
            [_model(Action.SELL, 0.9, hour=1)],
        )
        assert combined == []
