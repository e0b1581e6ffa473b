"""
Backtest Output Type Definitions.

Dataclasses for everything a run produces: closed trades, the equity curve,
the flat performance-metrics record, Monte Carlo results and the assembled
report. Every record exposes `to_dict()` for JSON serialization.
"""

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from backtester.core.models import BacktestConfig, SignalDirection, Strategy, TradeSide


@dataclass
class Trade:
    """One closed round trip. Prices are fill prices (slippage applied)."""

    id: int
    entry_date: dt.date
    exit_date: dt.date
    entry_price: float
    exit_price: float
    quantity: float
    side: TradeSide
    pnl: float  # net of entry and exit commission
    pnl_pct: float  # pnl / entry notional * 100
    holding_days: int  # calendar days
    entry_reasons: List[str]
    exit_reason: str
    max_favorable_excursion: float  # % above entry (>= 0)
    max_adverse_excursion: float  # % below entry (>= 0)
    commission: float  # entry + exit

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "entry_date": self.entry_date.isoformat(),
            "exit_date": self.exit_date.isoformat(),
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "quantity": self.quantity,
            "side": self.side.value,
            "pnl": self.pnl,
            "pnl_pct": self.pnl_pct,
            "holding_days": self.holding_days,
            "entry_reasons": list(self.entry_reasons),
            "exit_reason": self.exit_reason,
            "max_favorable_excursion": self.max_favorable_excursion,
            "max_adverse_excursion": self.max_adverse_excursion,
            "commission": self.commission,
        }


@dataclass
class EquityPoint:
    """Mark-to-market snapshot at one bar close."""

    date: dt.date
    equity: float
    drawdown: float  # currency below running peak
    drawdown_pct: float  # 0..100

    def to_dict(self) -> Dict:
        return {
            "date": self.date.isoformat(),
            "equity": self.equity,
            "drawdown": self.drawdown,
            "drawdown_pct": self.drawdown_pct,
        }


@dataclass
class MonthlyReturn:
    year: int
    month: int
    month_label: str  # "Jan 2024"
    return_pct: float  # sum of pnl_pct of trades exiting in the month
    trades: int

    def to_dict(self) -> Dict:
        return dict(self.__dict__)


@dataclass
class MonthLabel:
    label: str = "-"
    return_pct: float = 0.0

    def to_dict(self) -> Dict:
        return {"label": self.label, "return_pct": self.return_pct}


@dataclass
class PerformanceMetrics:
    """Flat performance record of one run.

    Percent values are in percent units (5.0 = 5%). Currency values are in
    the account currency. Everything is rounded to 2 decimals.
    """

    # === RETURNS ===
    total_return_pct: float = 0.0
    cagr: float = 0.0
    avg_trade_pct: float = 0.0
    best_trade_pct: float = 0.0
    worst_trade_pct: float = 0.0

    # === RISK ===
    max_drawdown_pct: float = 0.0
    max_drawdown_duration: int = 0  # bars
    var_95: float = 0.0
    cvar: float = 0.0

    # === RISK-ADJUSTED ===
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0

    # === TRADE STATS ===
    total_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0  # may be +inf
    expectancy: float = 0.0
    avg_win_loss_ratio: float = 0.0  # may be +inf
    avg_win: float = 0.0
    avg_loss: float = 0.0  # positive magnitude
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    # === TIME ===
    avg_holding_days: float = 0.0
    time_in_market_pct: float = 0.0
    best_month: MonthLabel = field(default_factory=MonthLabel)
    worst_month: MonthLabel = field(default_factory=MonthLabel)

    # === ROBUSTNESS ===
    recovery_factor: float = 0.0
    risk_of_ruin: float = 0.0  # filled from Monte Carlo

    # === DISTRIBUTION ===
    skewness: float = 0.0
    kurtosis: float = 0.0
    tail_ratio: float = 0.0

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        data = dict(self.__dict__)
        data["best_month"] = self.best_month.to_dict()
        data["worst_month"] = self.worst_month.to_dict()
        return data


@dataclass
class EquityBands:
    percentile5: List[float] = field(default_factory=list)
    percentile50: List[float] = field(default_factory=list)
    percentile95: List[float] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)  # "Start", "Trade 1", ...

    def to_dict(self) -> Dict:
        return {
            "percentile5": list(self.percentile5),
            "percentile50": list(self.percentile50),
            "percentile95": list(self.percentile95),
            "labels": list(self.labels),
        }


@dataclass
class MonteCarloResult:
    """Distribution of max drawdowns over reshuffled trade sequences.

    `simulations == 0` marks the empty result (too few trades).
    """

    simulations: int = 0
    drawdown_distribution: List[float] = field(default_factory=list)  # ascending
    median_drawdown: float = 0.0
    percentile95_drawdown: float = 0.0
    worst_case_drawdown: float = 0.0
    risk_of_ruin: float = 0.0
    equity_bands: EquityBands = field(default_factory=EquityBands)

    @property
    def is_empty(self) -> bool:
        return self.simulations == 0

    def to_dict(self) -> Dict:
        return {
            "simulations": self.simulations,
            "drawdown_distribution": list(self.drawdown_distribution),
            "median_drawdown": self.median_drawdown,
            "percentile95_drawdown": self.percentile95_drawdown,
            "worst_case_drawdown": self.worst_case_drawdown,
            "risk_of_ruin": self.risk_of_ruin,
            "equity_bands": self.equity_bands.to_dict(),
        }


@dataclass
class DataRange:
    start_date: Optional[dt.date]
    end_date: Optional[dt.date]
    total_bars: int

    def to_dict(self) -> Dict:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "total_bars": self.total_bars,
        }


@dataclass
class BacktestReport:
    """Everything one backtest run produces."""

    trades: List[Trade]
    equity_curve: List[EquityPoint]
    metrics: PerformanceMetrics
    monthly_returns: List[MonthlyReturn]
    monte_carlo: MonteCarloResult
    config: BacktestConfig
    strategy: Strategy
    data_range: DataRange
    benchmark_equity: Optional[List[EquityPoint]] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "trades": [t.to_dict() for t in self.trades],
            "equity_curve": [p.to_dict() for p in self.equity_curve],
            "metrics": self.metrics.to_dict(),
            "monthly_returns": [m.to_dict() for m in self.monthly_returns],
            "monte_carlo": self.monte_carlo.to_dict(),
            "config": self.config.model_dump(mode="json"),
            "strategy": self.strategy.model_dump(mode="json"),
            "benchmark_equity": (
                [p.to_dict() for p in self.benchmark_equity]
                if self.benchmark_equity is not None
                else None
            ),
            "data_range": self.data_range.to_dict(),
        }


# ============================================================================
# MULTI-STRATEGY COMPARISON
# ============================================================================


@dataclass
class CurrentSignal:
    signal: SignalDirection
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {"signal": self.signal.value, "reasons": list(self.reasons)}


@dataclass
class BacktestTarget:
    """Price target and stop derived from a strategy's historical win/loss sizes."""

    target: float
    stop_loss: float
    avg_holding_days: int
    avg_win_pct: float
    avg_loss_pct: float
    direction: SignalDirection

    def to_dict(self) -> Dict:
        data = dict(self.__dict__)
        data["direction"] = self.direction.value
        return data


@dataclass
class StrategyResult:
    strategy: Strategy
    report: BacktestReport
    current_signal: CurrentSignal
    backtest_target: BacktestTarget
    recent_performance: float  # sum of pnl_pct over the trailing 6 months
    rank: int = 0

    def to_dict(self) -> Dict:
        return {
            "rank": self.rank,
            "strategy": self.strategy.model_dump(mode="json"),
            "report": self.report.to_dict(),
            "current_signal": self.current_signal.to_dict(),
            "backtest_target": self.backtest_target.to_dict(),
            "recent_performance": self.recent_performance,
        }


@dataclass
class AggregateMetrics:
    avg_return: float = 0.0
    avg_sharpe: float = 0.0
    avg_win_rate: float = 0.0
    avg_max_dd: float = 0.0
    agreement_pct: float = 0.0
    profitable_strategies: int = 0

    def to_dict(self) -> Dict:
        return dict(self.__dict__)


@dataclass
class ComparisonResult:
    """All strategies run on one symbol, ranked by total return."""

    symbol: str
    stock_name: Optional[str]
    strategies: List[StrategyResult]
    aggregate: AggregateMetrics
    signal_breakdown: Dict[str, int]
    best_category: str

    @property
    def top(self) -> Optional[StrategyResult]:
        return self.strategies[0] if self.strategies else None

    def to_dict(self) -> Dict:
        return {
            "symbol": self.symbol,
            "stock_name": self.stock_name,
            "strategies": [s.to_dict() for s in self.strategies],
            "aggregate": self.aggregate.to_dict(),
            "signal_breakdown": dict(self.signal_breakdown),
            "best_category": self.best_category,
        }
