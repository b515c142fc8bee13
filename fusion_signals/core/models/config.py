"""Engine configuration models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class IndicatorConfig(BaseModel):
    """Indicator periods."""

    rsi_period: int = Field(default=14, ge=1)
    sma_period: int = Field(default=20, ge=1)
    bollinger_period: int = Field(default=20, ge=1)
    bollinger_std: float = Field(default=2.0, gt=0)
    macd_fast: int = Field(default=12, ge=1)
    macd_slow: int = Field(default=26, ge=2)
    macd_signal: int = Field(default=9, ge=1)
    stochastic_period: int = Field(default=14, ge=1)
    stochastic_d_period: int = Field(default=3, ge=1)
    atr_period: int = Field(default=14, ge=1)

    @model_validator(mode="after")
    def _validate(self):
        if self.macd_fast >= self.macd_slow:
            raise ValueError(
                f"macd_fast must be < macd_slow, got {self.macd_fast} >= {self.macd_slow}"
            )
        return self

    @property
    def min_bars(self) -> int:
        """Bars needed before a full snapshot can be produced."""
        return max(
            self.rsi_period + 1,
            self.sma_period,
            self.bollinger_period,
            self.stochastic_period,
            self.atr_period + 1,
        )

    @property
    def max_lookback(self) -> int:
        """Longest window any indicator reads, MACD signal warmup included."""
        return max(self.min_bars, self.macd_slow + self.macd_signal)


class StrategyConfig(BaseModel):
    """Mean-reversion entry rules."""

    rsi_overbought: float = Field(default=70.0, gt=0, lt=100)
    rsi_oversold: float = Field(default=30.0, gt=0, lt=100)

    # Max distance from the band, as a fraction of the band value
    band_tolerance: float = Field(default=0.02, ge=0, lt=1)

    @model_validator(mode="after")
    def _validate(self):
        if self.rsi_oversold >= self.rsi_overbought:
            raise ValueError(
                f"rsi_oversold must be < rsi_overbought, got "
                f"{self.rsi_oversold} >= {self.rsi_overbought}"
            )
        return self


class ModelConfig(BaseModel):
    """Sequence model architecture and optimizer settings."""

    d_model: int = Field(default=128, ge=1)
    n_head: int = Field(default=8, ge=1)
    n_layer: int = Field(default=6, ge=1)
    dropout: float = Field(default=0.1, ge=0, lt=1)
    sequence_length: int = Field(default=60, ge=1)
    feature_count: int = Field(default=16, ge=1)
    prediction_length: int = Field(default=5, ge=1)
    learning_rate: float = Field(default=0.001, gt=0)
    seed: int | None = None

    @model_validator(mode="after")
    def _validate(self):
        if self.d_model % self.n_head != 0:
            raise ValueError(
                f"d_model ({self.d_model}) must be divisible by n_head ({self.n_head})"
            )
        return self


class ModelSignalConfig(BaseModel):
    """Thresholds for turning forecasts into actions."""

    enabled: bool = True
    # Predicted relative move needed for BUY/SELL
    change_threshold: float = Field(default=0.02, gt=0)


class FusionConfig(BaseModel):
    """Weights used when fusing rule-based and model signals."""

    model_config = ConfigDict(protected_namespaces=())

    rule_weight: float = Field(default=0.6, ge=0, le=1)
    model_weight: float = Field(default=0.4, ge=0, le=1)
    rule_only_discount: float = Field(default=0.7, ge=0, le=1)
    model_only_discount: float = Field(default=0.8, ge=0, le=1)

    @model_validator(mode="after")
    def _validate(self):
        if self.rule_weight + self.model_weight > 1.0 + 1e-9:
            raise ValueError(
                f"rule_weight + model_weight must be <= 1, got "
                f"{self.rule_weight} + {self.model_weight}"
            )
        return self


class PositionConfig(BaseModel):
    """Position sizing and exit levels."""

    risk_reward_ratio: float = Field(default=2.0, gt=0)
    position_size: float = Field(default=1.0, gt=0)
    auto_open: bool = True
    max_open_positions: int | None = Field(default=None, ge=1)

    # Fallback risk when the band distance is not positive
    atr_risk_mult: float = Field(default=1.0, gt=0)
    min_risk_fraction: float = Field(default=0.005, gt=0, lt=1)

    # Closed positions kept for inspection; aggregates cover all of them
    audit_tail: int = Field(default=500, ge=0)


class EngineConfig(BaseModel):
    """Top-level engine configuration."""

    model_config = ConfigDict(protected_namespaces=())

    indicators: IndicatorConfig = IndicatorConfig()
    strategy: StrategyConfig = StrategyConfig()
    model: ModelConfig = ModelConfig()
    model_signals: ModelSignalConfig = ModelSignalConfig()
    fusion: FusionConfig = FusionConfig()
    positions: PositionConfig = PositionConfig()

    history_size: int = Field(default=200, ge=2)
    signal_audit_tail: int = Field(default=500, ge=0)

    # Key/value slot for the persisted model
    model_slot: str = "sequence-model"

    @model_validator(mode="after")
    def _validate(self):
        if self.history_size < self.indicators.max_lookback:
            raise ValueError(
                f"history_size ({self.history_size}) must cover the indicator "
                f"lookback ({self.indicators.max_lookback})"
            )
        return self
