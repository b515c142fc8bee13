"""Tests for the position manager."""

import math
from datetime import datetime, timedelta

import pytest

from fusion_signals.core.indicators import (
    BollingerBands,
    IndicatorSnapshot,
    MacdValue,
    StochasticValue,
)
from fusion_signals.core.models import (
    Action,
    ExitReason,
    Position,
    PositionConfig,
    PositionStatus,
    Signal,
    SignalSource,
)
from fusion_signals.core.positions import PositionManager
from fusion_signals.errors import InvalidConfigurationError

T0 = datetime(2024, 1, 1)


def _signal(action: Action, price: float = 100.0, confidence: float = 0.6) -> Signal:
    return Signal(
        timestamp=T0,
        price=price,
        action=action,
        confidence=confidence,
        reasoning=["test"],
        sources=frozenset({SignalSource.RULE_BASED}),
    )


def _snapshot(upper: float = 105.0, lower: float = 95.0, atr: float = 2.0) -> IndicatorSnapshot:
    return IndicatorSnapshot(
        timestamp=T0,
        close=100.0,
        rsi=50.0,
        sma=100.0,
        sma_slope=0.0,
        bollinger=BollingerBands(upper=upper, middle=(upper + lower) / 2, lower=lower),
        macd=MacdValue(0.0, 0.0, 0.0),
        stochastic=StochasticValue(50.0, 50.0),
        atr=atr,
    )


class TestPositionModel:
    def test_buy_levels_validated(self):
        with pytest.raises(ValueError, match="BUY requires"):
            Position(action=Action.BUY, entry_price=100, size=1, stop_loss=101, take_profit=110)

    def test_sell_levels_validated(self):
        with pytest.raises(ValueError, match="SELL requires"):
            Position(action=Action.SELL, entry_price=100, size=1, stop_loss=95, take_profit=90)

    def test_hold_rejected(self):
        with pytest.raises(ValueError):
            Position(action=Action.HOLD, entry_price=100, size=1, stop_loss=95, take_profit=110)

    def test_close_only_once(self):
        pos = Position(action=Action.BUY, entry_price=100, size=2, stop_loss=95, take_profit=110)

        assert pos.close(111.0, ExitReason.TAKE_PROFIT, T0)
        assert not pos.close(90.0, ExitReason.STOP_LOSS, T0)
        assert pos.pnl == pytest.approx(22.0)
        assert pos.exit_reason == ExitReason.TAKE_PROFIT


class TestOpen:
    def test_buy_uses_lower_band(self):
        pos = PositionManager().open(_signal(Action.BUY, 100.0), size=1, snapshot=_snapshot(lower=96.0))

        assert pos.stop_loss == pytest.approx(96.0)
        assert pos.take_profit == pytest.approx(108.0)
        assert pos.take_profit > pos.entry_price > pos.stop_loss

    def test_sell_uses_upper_band(self):
        pos = PositionManager().open(_signal(Action.SELL, 100.0), snapshot=_snapshot(upper=103.0))

        assert pos.stop_loss == pytest.approx(103.0)
        assert pos.take_profit == pytest.approx(94.0)

    def test_price_through_band_falls_back_to_atr(self):
        pos = PositionManager().open(
            _signal(Action.BUY, 94.0), snapshot=_snapshot(lower=95.0, atr=2.0)
        )

        assert pos.stop_loss == pytest.approx(92.0)
        assert pos.take_profit == pytest.approx(98.0)

    def test_tiny_band_distance_falls_back_to_atr(self):
        lower = math.nextafter(100.0, 0.0)
        pos = PositionManager().open(
            _signal(Action.BUY, 100.0),
            snapshot=_snapshot(lower=lower, atr=2.0),
            risk_reward_ratio=0.1,
        )

        assert pos.stop_loss == pytest.approx(98.0)
        assert pos.take_profit == pytest.approx(100.2)

    def test_tiny_band_distance_for_sell(self):
        upper = math.nextafter(100.0, 200.0)
        pos = PositionManager().open(
            _signal(Action.SELL, 100.0),
            snapshot=_snapshot(upper=upper, atr=0.0),
            risk_reward_ratio=0.1,
        )

        assert pos.stop_loss == pytest.approx(100.5)
        assert pos.take_profit == pytest.approx(99.95)

    def test_no_snapshot_uses_min_risk_fraction(self):
        pos = PositionManager().open(_signal(Action.SELL, 200.0))

        assert pos.stop_loss == pytest.approx(201.0)
        assert pos.take_profit == pytest.approx(198.0)

    def test_zero_band_and_atr_uses_min_risk_fraction(self):
        pos = PositionManager().open(
            _signal(Action.BUY, 100.0), snapshot=_snapshot(upper=100.0, lower=100.0, atr=0.0)
        )
        assert pos.take_profit > pos.entry_price > pos.stop_loss

    def test_default_size_from_config(self):
        manager = PositionManager(PositionConfig(position_size=3.0))
        assert manager.open(_signal(Action.BUY), snapshot=_snapshot()).size == 3.0

    @pytest.mark.parametrize("size", [0, -1])
    def test_invalid_size(self, size):
        with pytest.raises(InvalidConfigurationError, match="size"):
            PositionManager().open(_signal(Action.BUY), size=size)

    def test_invalid_risk_reward(self):
        with pytest.raises(InvalidConfigurationError, match="risk_reward"):
            PositionManager().open(_signal(Action.BUY), risk_reward_ratio=0)

    def test_hold_signal_rejected(self):
        with pytest.raises(InvalidConfigurationError, match="HOLD"):
            PositionManager().open(_signal(Action.HOLD))

    def test_explicit_levels_validated(self):
        with pytest.raises(InvalidConfigurationError):
            PositionManager().open_position(Action.BUY, 100.0, 1.0, stop_loss=105.0, take_profit=110.0)

    def test_max_open_positions(self):
        manager = PositionManager(PositionConfig(max_open_positions=1))
        assert manager.can_open()
        manager.open(_signal(Action.BUY))
        assert not manager.can_open()


class TestCheckExits:
    def test_take_profit(self):
        manager = PositionManager()
        manager.open_position(Action.BUY, 100.0, 1.0, stop_loss=95.0, take_profit=110.0)

        closed = manager.check_exits(111.0, None, T0)

        assert len(closed) == 1
        assert closed[0].exit_reason == ExitReason.TAKE_PROFIT
        assert closed[0].pnl == pytest.approx(11.0)
        assert closed[0].status == PositionStatus.CLOSED
        assert manager.open_positions == []

    def test_stop_loss_for_sell(self):
        manager = PositionManager()
        manager.open_position(Action.SELL, 100.0, 2.0, stop_loss=105.0, take_profit=90.0)

        closed = manager.check_exits(106.0)

        assert closed[0].exit_reason == ExitReason.STOP_LOSS
        assert closed[0].pnl == pytest.approx(-12.0)

    def test_rsi_reversal(self):
        manager = PositionManager()
        manager.open_position(Action.BUY, 100.0, 1.0, stop_loss=95.0, take_profit=110.0)
        manager.open_position(Action.SELL, 100.0, 1.0, stop_loss=105.0, take_profit=90.0)

        closed = manager.check_exits(101.0, current_rsi=75.0)

        assert [p.action for p in closed] == [Action.BUY]
        assert closed[0].exit_reason == ExitReason.INDICATOR_REVERSAL

        closed = manager.check_exits(101.0, current_rsi=25.0)
        assert [p.action for p in closed] == [Action.SELL]

    def test_stop_checked_before_reversal(self):
        manager = PositionManager()
        manager.open_position(Action.BUY, 100.0, 1.0, stop_loss=95.0, take_profit=110.0)

        closed = manager.check_exits(94.0, current_rsi=80.0)
        assert closed[0].exit_reason == ExitReason.STOP_LOSS

    def test_none_rsi_skips_reversal(self):
        manager = PositionManager()
        manager.open_position(Action.BUY, 100.0, 1.0, stop_loss=95.0, take_profit=110.0)

        assert manager.check_exits(101.0, current_rsi=None) == []

    def test_idempotent(self):
        manager = PositionManager()
        manager.open_position(Action.BUY, 100.0, 1.0, stop_loss=95.0, take_profit=110.0)

        first = manager.check_exits(111.0)
        second = manager.check_exits(111.0)

        assert len(first) == 1
        assert second == []
        assert manager.stats().total_trades == 1


class TestStats:
    def test_counts_and_win_rate(self):
        manager = PositionManager()
        manager.open_position(Action.BUY, 100.0, 1.0, stop_loss=95.0, take_profit=110.0)
        manager.open_position(Action.BUY, 100.0, 1.0, stop_loss=98.0, take_profit=120.0)
        manager.open_position(Action.SELL, 100.0, 1.0, stop_loss=130.0, take_profit=50.0)
        manager.check_exits(111.0)

        stats = manager.stats()

        assert stats.total_trades == 1
        assert stats.winning_trades == 1
        assert stats.open_positions == 2
        assert stats.win_rate == 1.0
        assert stats.total_pnl == pytest.approx(11.0)

        manager.check_exits(97.0)
        stats = manager.stats()
        assert stats.total_trades == 2
        assert stats.losing_trades == 1
        assert stats.win_rate == 0.5
        assert stats.total_pnl == pytest.approx(8.0)

    def test_average_confidence_over_signals(self):
        manager = PositionManager()
        manager.record_signal(_signal(Action.BUY, confidence=0.2))
        manager.record_signal(_signal(Action.SELL, confidence=0.6))
        manager.record_signal(_signal(Action.HOLD, confidence=0.9))

        stats = manager.stats()
        assert stats.signals_recorded == 2
        assert stats.average_confidence == pytest.approx(0.4)

    def test_empty_stats(self):
        stats = PositionManager().stats()
        assert stats.win_rate == 0.0
        assert stats.average_confidence == 0.0

    def test_audit_tail_bounded_but_aggregates_exact(self):
        manager = PositionManager(PositionConfig(audit_tail=2))
        start = T0
        for i in range(5):
            manager.open_position(Action.BUY, 100.0, 1.0, stop_loss=95.0, take_profit=110.0)
            manager.check_exits(111.0, None, start + timedelta(hours=i))

        assert len(manager.closed_positions) == 2
        assert manager.stats().total_trades == 5
        assert manager.stats().total_pnl == pytest.approx(55.0)
