"""Declarative inputs of a backtest run: bars, rules, strategies and config."""

import uuid
import datetime as dt
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backtester.core.config import settings


def _rule_id() -> str:
    return uuid.uuid4().hex[:8]


class IndicatorKind(str, Enum):
    RSI = "rsi"
    MACD = "macd"
    MACD_SIGNAL = "macd_signal"
    MACD_HISTOGRAM = "macd_histogram"
    BOLLINGER_UPPER = "bollinger_upper"
    BOLLINGER_MIDDLE = "bollinger_middle"
    BOLLINGER_LOWER = "bollinger_lower"
    SMA = "sma"
    EMA = "ema"
    SUPERTREND = "supertrend"
    ADX = "adx"
    STOCH_RSI_K = "stoch_rsi_k"
    STOCH_RSI_D = "stoch_rsi_d"
    ATR = "atr"
    OBV_TREND = "obv_trend"
    VWAP = "vwap"
    ICHIMOKU_TENKAN = "ichimoku_tenkan"
    ICHIMOKU_KIJUN = "ichimoku_kijun"
    ICHIMOKU_CLOUD = "ichimoku_cloud"
    PRICE = "price"
    VOLUME = "volume"
    VOLUME_SMA = "volume_sma"


class Operator(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    EQUALS = "equals"
    CROSSES_ABOVE = "crosses_above"
    CROSSES_BELOW = "crosses_below"

    @property
    def is_crossover(self) -> bool:
        return self in (Operator.CROSSES_ABOVE, Operator.CROSSES_BELOW)


class StopLossType(str, Enum):
    NONE = "none"
    FIXED_PCT = "fixed_pct"
    TRAILING = "trailing"
    ATR_BASED = "atr_based"


class TakeProfitType(str, Enum):
    NONE = "none"
    FIXED_PCT = "fixed_pct"
    R_MULTIPLE = "r_multiple"


class PositionSizingMode(str, Enum):
    FIXED_AMOUNT = "fixed_amount"
    FIXED_PCT = "fixed_pct"
    KELLY = "kelly"


class TradeSide(str, Enum):
    LONG = "LONG"


class DateRangePreset(str, Enum):
    ONE_YEAR = "1Y"
    TWO_YEARS = "2Y"
    THREE_YEARS = "3Y"
    FIVE_YEARS = "5Y"
    CUSTOM = "custom"


class PriceBar(BaseModel):
    """
    One daily OHLCV record.
    """

    model_config = ConfigDict(frozen=True)

    date: dt.date = Field(..., description="Trading day")
    open: float = Field(..., ge=0.0)
    high: float = Field(..., ge=0.0)
    low: float = Field(..., ge=0.0)
    close: float = Field(..., ge=0.0)
    volume: float = Field(default=0.0, ge=0.0)


class StrategyRule(BaseModel):
    """
    A single condition of the rule DSL.

    Compares `indicator(params)` against either the fixed `value` or, when
    `compare_to` is set, the concurrent value of `compare_to(compare_params)`.
    The `id` is bookkeeping for editors only and never affects evaluation.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=_rule_id)
    indicator: IndicatorKind
    operator: Operator
    value: float = 0.0
    params: Dict[str, float] = Field(default_factory=dict)
    compare_to: Optional[IndicatorKind] = Field(default=None, alias="compareTo")
    compare_params: Dict[str, float] = Field(
        default_factory=dict, alias="compareParams"
    )


class RiskManagement(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    stop_loss_type: StopLossType = Field(default=StopLossType.NONE, alias="stopLossType")
    stop_loss_value: float = Field(default=0.0, ge=0.0, alias="stopLossValue")
    take_profit_type: TakeProfitType = Field(
        default=TakeProfitType.NONE, alias="takeProfitType"
    )
    take_profit_value: float = Field(default=0.0, ge=0.0, alias="takeProfitValue")


class Strategy(BaseModel):
    """
    Immutable strategy definition consumed by one simulation run.

    Entry and exit rule sets are AND-combined. `position_value` is a currency
    amount for `fixed_amount` and a percent of equity for `fixed_pct`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: f"custom-{_rule_id()}")
    name: str
    description: str = ""
    entry_rules: List[StrategyRule] = Field(default_factory=list, alias="entryRules")
    exit_rules: List[StrategyRule] = Field(default_factory=list, alias="exitRules")
    risk_management: RiskManagement = Field(
        default_factory=RiskManagement, alias="riskManagement"
    )
    position_sizing: PositionSizingMode = Field(
        default=PositionSizingMode.FIXED_PCT, alias="positionSizing"
    )
    position_value: float = Field(default=50.0, gt=0.0, alias="positionValue")
    trade_direction: TradeSide = Field(default=TradeSide.LONG, alias="tradeDirection")


class BacktestConfig(BaseModel):
    """
    Per-run economics and simulated window.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbol: str
    stock_name: Optional[str] = None
    date_range: DateRangePreset = DateRangePreset.CUSTOM
    custom_start_date: Optional[dt.date] = None
    custom_end_date: Optional[dt.date] = None
    initial_capital: float = Field(
        default_factory=lambda: settings.INITIAL_CAPITAL, gt=0.0
    )
    commission_pct: float = Field(
        default_factory=lambda: settings.COMMISSION_PCT, ge=0.0
    )
    slippage_pct: float = Field(default_factory=lambda: settings.SLIPPAGE_PCT, ge=0.0)
    risk_free_rate_pct: float = Field(
        default_factory=lambda: settings.RISK_FREE_RATE_PCT
    )
    warmup_bars: Optional[int] = Field(
        default=None, ge=0, description="Override the derived indicator warmup"
    )
    monte_carlo_simulations: int = Field(
        default_factory=lambda: settings.MONTE_CARLO_SIMULATIONS, ge=0
    )
    seed: Optional[int] = Field(
        default_factory=lambda: settings.MONTE_CARLO_SEED, ge=0
    )

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return v.strip().upper()


class SignalDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    WAIT = "WAIT"
