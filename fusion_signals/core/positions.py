"""Position lifecycle and trading statistics.

Open positions are kept in insertion order. Closed positions move to a
bounded audit tail; win/loss counts, total PnL and signal confidence are
kept as running aggregates so statistics stay exact after trimming.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError

from fusion_signals.core.indicators import IndicatorSnapshot
from fusion_signals.core.models.config import PositionConfig, StrategyConfig
from fusion_signals.core.models.position import ExitReason, Position
from fusion_signals.core.models.signal import Action, Signal
from fusion_signals.errors import InvalidConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TradingStats:
    """Aggregate trading statistics.

    ``win_rate`` is a fraction in [0, 1]; ``average_confidence`` covers every
    recorded (non-HOLD) signal, whether or not it opened a position.
    """

    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_pnl: float
    open_positions: int
    average_confidence: float
    signals_recorded: int


class PositionManager:
    """Open positions from signals and close them on stop, target or RSI reversal."""

    def __init__(
        self,
        config: PositionConfig | None = None,
        strategy: StrategyConfig | None = None,
    ):
        self.config = config or PositionConfig()
        self.strategy = strategy or StrategyConfig()

        self._open: list[Position] = []
        self._closed: deque[Position] = deque(maxlen=self.config.audit_tail)

        self._total_trades = 0
        self._winning = 0
        self._losing = 0
        self._total_pnl = 0.0
        self._confidence_sum = 0.0
        self._signal_count = 0

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def open_positions(self) -> list[Position]:
        return list(self._open)

    @property
    def closed_positions(self) -> list[Position]:
        """Most recent closed positions (bounded by ``audit_tail``)."""
        return list(self._closed)

    def can_open(self) -> bool:
        limit = self.config.max_open_positions
        return limit is None or len(self._open) < limit

    # =========================================================================
    # Opening
    # =========================================================================

    def _risk_candidates(self, signal: Signal, snapshot: IndicatorSnapshot | None) -> list[float]:
        """Distances from entry to the stop, in order of preference.

        Band distance first; ATR when the price is already through the band;
        a fixed fraction of price as the last resort.
        """
        candidates = []
        if snapshot is not None:
            if signal.action == Action.BUY:
                candidates.append(signal.price - snapshot.bollinger.lower)
            else:
                candidates.append(snapshot.bollinger.upper - signal.price)
            candidates.append(snapshot.atr * self.config.atr_risk_mult)
        candidates.append(signal.price * self.config.min_risk_fraction)
        return candidates

    def _levels(
        self, signal: Signal, snapshot: IndicatorSnapshot | None, rr: float
    ) -> tuple[float, float]:
        """Stop and target for the first risk whose levels stay off the entry."""
        entry = signal.price
        sign = 1.0 if signal.action == Action.BUY else -1.0
        levels = (entry, entry)
        for risk in self._risk_candidates(signal, snapshot):
            if not risk > 0:
                continue
            levels = (entry - sign * risk, entry + sign * risk * rr)
            if levels[0] != entry and levels[1] != entry:
                break
        return levels

    def open(
        self,
        signal: Signal,
        size: float | None = None,
        snapshot: IndicatorSnapshot | None = None,
        risk_reward_ratio: float | None = None,
    ) -> Position:
        """
        Open a position from a BUY or SELL signal.

        stop = entry -/+ risk, target = entry +/- risk * risk_reward_ratio.

        Args:
            signal: Actionable signal; its price is the entry price
            size: Position size (defaults to config.position_size)
            snapshot: Indicator snapshot at signal time, used for the risk
            risk_reward_ratio: Overrides config.risk_reward_ratio

        Raises:
            InvalidConfigurationError: HOLD signal, size <= 0 or ratio <= 0
        """
        size = self.config.position_size if size is None else size
        rr = self.config.risk_reward_ratio if risk_reward_ratio is None else risk_reward_ratio
        if size <= 0:
            raise InvalidConfigurationError(f"position size must be positive, got {size}")
        if rr <= 0:
            raise InvalidConfigurationError(f"risk_reward_ratio must be positive, got {rr}")
        if signal.action == Action.HOLD:
            raise InvalidConfigurationError("cannot open a position from a HOLD signal")

        stop_loss, take_profit = self._levels(signal, snapshot, rr)

        return self.open_position(
            action=signal.action,
            entry_price=signal.price,
            size=size,
            stop_loss=stop_loss,
            take_profit=take_profit,
            confidence=signal.confidence,
            timestamp=signal.timestamp,
            reasoning=signal.reasoning,
        )

    def open_position(
        self,
        action: Action,
        entry_price: float,
        size: float,
        stop_loss: float,
        take_profit: float,
        confidence: float = 0.0,
        timestamp: datetime | None = None,
        reasoning: list[str] | None = None,
    ) -> Position:
        """Open a position with explicit levels.

        Raises:
            InvalidConfigurationError: If the levels, size or action are invalid
        """
        try:
            position = Position(
                action=action,
                entry_price=entry_price,
                size=size,
                stop_loss=stop_loss,
                take_profit=take_profit,
                confidence=confidence,
                opened_at=timestamp,
                reasoning=reasoning or [],
            )
        except ValidationError as e:
            raise InvalidConfigurationError(f"invalid position: {e}") from e

        self._open.append(position)
        logger.info(
            f"Opened {action.value} position {position.id} @ {entry_price:.4f} "
            f"(sl={stop_loss:.4f}, tp={take_profit:.4f}, size={size})"
        )
        return position

    # =========================================================================
    # Exits
    # =========================================================================

    def _exit_reason(
        self,
        position: Position,
        price: float,
        rsi: float | None,
    ) -> ExitReason | None:
        strategy = self.strategy
        if position.action == Action.BUY:
            if price <= position.stop_loss:
                return ExitReason.STOP_LOSS
            if price >= position.take_profit:
                return ExitReason.TAKE_PROFIT
            if rsi is not None and rsi > strategy.rsi_overbought:
                return ExitReason.INDICATOR_REVERSAL
        else:
            if price >= position.stop_loss:
                return ExitReason.STOP_LOSS
            if price <= position.take_profit:
                return ExitReason.TAKE_PROFIT
            if rsi is not None and rsi < strategy.rsi_oversold:
                return ExitReason.INDICATOR_REVERSAL
        return None

    def check_exits(
        self,
        current_price: float,
        current_rsi: float | None = None,
        timestamp: datetime | None = None,
    ) -> list[Position]:
        """
        Close every open position whose exit condition holds at ``current_price``.

        Stop loss is checked first, then take profit, then RSI reversal.
        PnL is realized at ``current_price``.

        Args:
            current_price: Latest price
            current_rsi: Latest RSI, or None to skip the reversal exit
            timestamp: Close time recorded on the position

        Returns:
            Positions closed by this call
        """
        closed = []
        still_open = []
        for position in self._open:
            reason = self._exit_reason(position, current_price, current_rsi)
            if reason is not None and position.close(current_price, reason, timestamp):
                self._record_close(position)
                closed.append(position)
            else:
                still_open.append(position)
        self._open = still_open
        return closed

    def _record_close(self, position: Position) -> None:
        pnl = position.pnl or 0.0
        self._total_trades += 1
        self._total_pnl += pnl
        if pnl > 0:
            self._winning += 1
        elif pnl < 0:
            self._losing += 1
        self._closed.append(position)
        logger.info(
            f"Closed {position.action.value} position {position.id} @ {position.exit_price:.4f} "
            f"({position.exit_reason.value}), pnl={pnl:.4f}"
        )

    # =========================================================================
    # Statistics
    # =========================================================================

    def record_signal(self, signal: Signal) -> None:
        """Count an emitted signal toward the average confidence."""
        if not signal.is_actionable:
            return
        self._confidence_sum += signal.confidence
        self._signal_count += 1

    def stats(self) -> TradingStats:
        total = self._total_trades
        return TradingStats(
            total_trades=total,
            winning_trades=self._winning,
            losing_trades=self._losing,
            win_rate=self._winning / total if total else 0.0,
            total_pnl=self._total_pnl,
            open_positions=len(self._open),
            average_confidence=(
                self._confidence_sum / self._signal_count if self._signal_count else 0.0
            ),
            signals_recorded=self._signal_count,
        )
