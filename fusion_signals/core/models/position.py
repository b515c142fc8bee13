"""Position data models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from fusion_signals.core.models.signal import Action


class PositionStatus(str, Enum):
    """Position lifecycle status."""

    OPEN = "open"
    CLOSED = "closed"


class ExitReason(str, Enum):
    """Why a position was closed."""

    STOP_LOSS = "StopLoss"
    TAKE_PROFIT = "TakeProfit"
    INDICATOR_REVERSAL = "IndicatorReversal"


def _new_position_id() -> str:
    return uuid.uuid4().hex[:16]


class Position(BaseModel):
    """A position opened from a BUY or SELL signal.

    Stop/target ordering is validated at construction, so a Position that
    exists always satisfies it.
    """

    id: str = Field(default_factory=_new_position_id)
    action: Action
    entry_price: float = Field(gt=0)
    size: float = Field(gt=0)
    stop_loss: float
    take_profit: float
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    opened_at: datetime | None = None
    reasoning: list[str] = Field(default_factory=list)

    status: PositionStatus = PositionStatus.OPEN
    exit_price: float | None = None
    exit_reason: ExitReason | None = None
    closed_at: datetime | None = None
    pnl: float | None = None

    @field_validator("action")
    @classmethod
    def _no_hold(cls, v: Action) -> Action:
        if v == Action.HOLD:
            raise ValueError("a position cannot be opened from a HOLD action")
        return v

    @model_validator(mode="after")
    def _check_levels(self):
        if self.action == Action.BUY:
            if not (self.take_profit > self.entry_price > self.stop_loss):
                raise ValueError(
                    "BUY requires take_profit > entry_price > stop_loss, got "
                    f"tp={self.take_profit} entry={self.entry_price} sl={self.stop_loss}"
                )
        elif not (self.stop_loss > self.entry_price > self.take_profit):
            raise ValueError(
                "SELL requires stop_loss > entry_price > take_profit, got "
                f"sl={self.stop_loss} entry={self.entry_price} tp={self.take_profit}"
            )
        return self

    def unrealized_pnl(self, price: float) -> float:
        if self.action == Action.BUY:
            return (price - self.entry_price) * self.size
        return (self.entry_price - price) * self.size

    def close(self, price: float, reason: ExitReason, timestamp: datetime | None = None) -> bool:
        """Close the position at ``price``.

        Returns True if the position transitioned, False if it was already
        closed.
        """
        if self.status != PositionStatus.OPEN:
            return False
        self.status = PositionStatus.CLOSED
        self.exit_price = price
        self.exit_reason = reason
        self.closed_at = timestamp
        self.pnl = self.unrealized_pnl(price)
        return True
