"""Signal data models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Action(str, Enum):
    """Trade decision."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class SignalSource(str, Enum):
    """Generator that contributed to a signal."""

    RULE_BASED = "rule-based"
    MODEL = "model"


class Signal(BaseModel):
    """Trading signal emitted by a generator or by the combiner.

    HOLD signals are produced by the model generator but never reach the
    combined stream.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    price: float = Field(gt=0)
    action: Action
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: list[str] = Field(default_factory=list)
    sources: frozenset[SignalSource] = frozenset()

    # Model forecast details (model and combined signals only)
    predicted_price: float | None = None
    price_change: float | None = None

    @property
    def is_actionable(self) -> bool:
        return self.action != Action.HOLD

    def with_confidence(self, confidence: float) -> "Signal":
        """Return a copy with confidence clamped to [0, 1]."""
        return self.model_copy(update={"confidence": min(1.0, max(0.0, confidence))})
