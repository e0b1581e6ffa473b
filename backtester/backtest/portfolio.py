import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from backtester.core.constants import FIXED_AMOUNT_EQUITY_CAP, MAX_POSITION_PCT
from backtester.core.metrics_types import EquityPoint, Trade
from backtester.core.models import (
    PositionSizingMode,
    PriceBar,
    RiskManagement,
    StopLossType,
    TakeProfitType,
    TradeSide,
)

logger = logging.getLogger(__name__)


# ============================================================================
# POSITION STATE
# ============================================================================


@dataclass(frozen=True)
class Flat:
    """No open position."""


@dataclass
class OpenPosition:
    """
    A live long position and its risk levels.

    `highest_close` starts at the entry fill and is raised only after a bar's
    stop check, so the trailing level on a bar never uses that bar's close.
    """

    entry_index: int
    entry_date: dt.date
    entry_price: float
    quantity: float
    entry_commission: float
    entry_reasons: List[str]
    fixed_stop: Optional[float] = None
    trailing_pct: Optional[float] = None
    take_profit: Optional[float] = None
    highest_close: float = 0.0
    max_high: float = 0.0
    min_low: float = 0.0

    def __post_init__(self):
        self.highest_close = self.highest_close or self.entry_price
        self.max_high = self.max_high or self.entry_price
        self.min_low = self.min_low or self.entry_price

    @property
    def notional(self) -> float:
        return self.entry_price * self.quantity

    def stop_level(self) -> Optional[float]:
        if self.trailing_pct is not None:
            return self.highest_close * (1 - self.trailing_pct / 100.0)
        return self.fixed_stop

    def record_excursion(self, bar: PriceBar) -> None:
        self.max_high = max(self.max_high, bar.high)
        self.min_low = min(self.min_low, bar.low)

    def ratchet(self, close: float) -> None:
        self.highest_close = max(self.highest_close, close)

    @property
    def max_favorable_excursion(self) -> float:
        return max(0.0, (self.max_high - self.entry_price) / self.entry_price * 100.0)

    @property
    def max_adverse_excursion(self) -> float:
        return max(0.0, (self.entry_price - self.min_low) / self.entry_price * 100.0)

    def unrealized(self, price: float) -> float:
        return (price - self.entry_price) * self.quantity


PositionState = Union[Flat, OpenPosition]


# ============================================================================
# RISK LEVELS
# ============================================================================


def initial_stop(
    risk: RiskManagement, entry_price: float, atr_at_entry: Optional[float]
) -> Optional[float]:
    """Stop price at entry time (also the risk anchor for R-multiple targets)."""
    if risk.stop_loss_type in (StopLossType.FIXED_PCT, StopLossType.TRAILING):
        return entry_price * (1 - risk.stop_loss_value / 100.0)
    if risk.stop_loss_type == StopLossType.ATR_BASED:
        if atr_at_entry is None:
            return None
        return entry_price - atr_at_entry * risk.stop_loss_value
    return None


def take_profit_level(
    risk: RiskManagement, entry_price: float, stop: Optional[float]
) -> Optional[float]:
    if risk.take_profit_type == TakeProfitType.FIXED_PCT:
        return entry_price * (1 + risk.take_profit_value / 100.0)
    if risk.take_profit_type == TakeProfitType.R_MULTIPLE:
        if stop is None:
            return None
        return entry_price + (entry_price - stop) * risk.take_profit_value
    return None


# ============================================================================
# SIZING
# ============================================================================


def position_size(equity: float, mode: PositionSizingMode, value: float) -> float:
    """Currency amount to commit for a new position."""
    if equity <= 0:
        return 0.0
    if mode == PositionSizingMode.FIXED_AMOUNT:
        return min(value, equity * FIXED_AMOUNT_EQUITY_CAP)
    # kelly is reserved and sized like fixed_pct
    return equity * min(value, MAX_POSITION_PCT) / 100.0


# ============================================================================
# PORTFOLIO
# ============================================================================


@dataclass
class Portfolio:
    """Simulated single-symbol account for backtesting.

    Tracks realized capital, closed trades and the mark-to-market equity
    curve. Commissions are debited from capital when they are paid.

    Attributes:
        capital: Realized cash balance (initial capital + closed P&L - commissions).
        trades: Closed trades in order of exit.
        equity_curve: One point per marked bar.
    """

    initial_capital: float
    capital: float = 0.0
    peak_equity: float = 0.0
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)

    def __post_init__(self):
        self.capital = self.capital or self.initial_capital
        self.peak_equity = self.peak_equity or self.initial_capital

    def equity(self, state: PositionState, price: float) -> float:
        if isinstance(state, OpenPosition):
            return self.capital + state.unrealized(price)
        return self.capital

    def open(
        self,
        index: int,
        bar: PriceBar,
        fill_price: float,
        quantity: float,
        commission: float,
        reasons: List[str],
        fixed_stop: Optional[float] = None,
        trailing_pct: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> OpenPosition:
        self.capital -= commission
        return OpenPosition(
            entry_index=index,
            entry_date=bar.date,
            entry_price=fill_price,
            quantity=quantity,
            entry_commission=commission,
            entry_reasons=list(reasons),
            fixed_stop=fixed_stop,
            trailing_pct=trailing_pct,
            take_profit=take_profit,
        )

    def close(
        self,
        position: OpenPosition,
        bar: PriceBar,
        fill_price: float,
        commission: float,
        reason: str,
    ) -> Trade:
        gross = (fill_price - position.entry_price) * position.quantity
        total_commission = position.entry_commission + commission
        pnl = gross - total_commission

        # entry commission was already debited when the position opened
        self.capital += gross - commission

        trade = Trade(
            id=len(self.trades) + 1,
            entry_date=position.entry_date,
            exit_date=bar.date,
            entry_price=position.entry_price,
            exit_price=fill_price,
            quantity=position.quantity,
            side=TradeSide.LONG,
            pnl=pnl,
            pnl_pct=pnl / position.notional * 100.0 if position.notional > 0 else 0.0,
            holding_days=max(0, (bar.date - position.entry_date).days),
            entry_reasons=list(position.entry_reasons),
            exit_reason=reason,
            max_favorable_excursion=position.max_favorable_excursion,
            max_adverse_excursion=position.max_adverse_excursion,
            commission=total_commission,
        )
        self.trades.append(trade)
        return trade

    def mark_to_market(self, state: PositionState, bar: PriceBar) -> EquityPoint:
        equity = self.equity(state, bar.close)
        self.peak_equity = max(self.peak_equity, equity)
        drawdown = self.peak_equity - equity
        drawdown_pct = (
            min(100.0, drawdown / self.peak_equity * 100.0) if self.peak_equity > 0 else 0.0
        )
        point = EquityPoint(
            date=bar.date, equity=equity, drawdown=drawdown, drawdown_pct=drawdown_pct
        )
        self.equity_curve.append(point)
        return point
