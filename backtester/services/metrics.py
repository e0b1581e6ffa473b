"""
Performance Metrics Calculator Service.

Turns the trades and equity curve of one backtest run into the flat
`PerformanceMetrics` record. Trade returns are in percent units
(pnl_pct, 1.0 = 1%). Risk-adjusted ratios are annualized by
sqrt(252 / average holding days).
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np
from opentelemetry import trace
from scipy import stats

from backtester.backtest.reporting import month_label
from backtester.core.config import settings
from backtester.core.constants import (
    CAGR_MIN_YEARS,
    DAYS_PER_YEAR,
    DRAWDOWN_NOISE_FLOOR_PCT,
    SORTINO_DOWNSIDE_FALLBACK,
    TRADING_DAYS,
    VAR_PERCENTILE,
)
from backtester.core.metrics_types import EquityPoint, MonthLabel, PerformanceMetrics, Trade

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _round2(value: float) -> float:
    if not np.isfinite(value):
        return float(value)
    return round(float(value), 2)


def _sample_std(values: np.ndarray) -> float:
    if len(values) <= 1:
        return 0.0
    return float(np.std(values, ddof=1))


class MetricsCalculator:
    """
    Calculate the performance record of a backtest.

    Wins are trades with pnl > 0; everything else (including break-even)
    counts as a loss. Annual risk-free rate is given in percent and
    de-annualized by 252 trading days.
    """

    TRADING_DAYS_PER_YEAR = TRADING_DAYS

    def __init__(self, risk_free_rate_pct: Optional[float] = None):
        """Initialize calculator with optional risk-free rate override."""
        self.risk_free_rate_pct = (
            settings.RISK_FREE_RATE_PCT if risk_free_rate_pct is None else risk_free_rate_pct
        )

    @property
    def daily_risk_free(self) -> float:
        return self.risk_free_rate_pct / self.TRADING_DAYS_PER_YEAR

    # ========================================================================
    # RETURNS
    # ========================================================================

    def total_return_pct(self, final_equity: float, initial_capital: float) -> float:
        return (final_equity - initial_capital) / initial_capital * 100.0

    def cagr(
        self, final_equity: float, initial_capital: float, equity_curve: Sequence[EquityPoint]
    ) -> float:
        """Compound annual growth over the curve's calendar span (>= 0.1 years)."""
        if final_equity <= 0:
            return -100.0
        days = 0
        if equity_curve:
            days = (equity_curve[-1].date - equity_curve[0].date).days
        years = max(CAGR_MIN_YEARS, days / DAYS_PER_YEAR)
        return ((final_equity / initial_capital) ** (1.0 / years) - 1.0) * 100.0

    # ========================================================================
    # RISK
    # ========================================================================

    def max_drawdown_pct(self, equity_curve: Sequence[EquityPoint]) -> float:
        if not equity_curve:
            return 0.0
        return max(p.drawdown_pct for p in equity_curve)

    def _calculate_max_dd_duration(self, equity_curve: Sequence[EquityPoint]) -> int:
        """Longest run of consecutive bars with drawdown above the noise floor."""
        in_dd = np.array([p.drawdown_pct > DRAWDOWN_NOISE_FLOOR_PCT for p in equity_curve])
        if not in_dd.any():
            return 0

        dd_groups = np.split(
            np.arange(len(in_dd)), np.where(np.diff(in_dd.astype(int)) != 0)[0] + 1
        )
        dd_durations = [len(group) for group in dd_groups if in_dd[group[0]]]

        return max(dd_durations) if dd_durations else 0

    def value_at_risk(self, returns: np.ndarray) -> Dict[str, float]:
        """Historical VaR / CVaR at the 5% tail of sorted trade returns."""
        if len(returns) == 0:
            return {"var_95": 0.0, "cvar": 0.0}
        ordered = np.sort(returns)
        idx = int(np.floor(len(ordered) * VAR_PERCENTILE))
        return {
            "var_95": float(ordered[idx]),
            "cvar": float(ordered[: idx + 1].mean()),
        }

    # ========================================================================
    # RISK-ADJUSTED
    # ========================================================================

    def _annualization(self, avg_holding_days: float) -> float:
        return float(np.sqrt(self.TRADING_DAYS_PER_YEAR / max(1.0, avg_holding_days)))

    def sharpe_ratio(self, returns: np.ndarray, avg_holding_days: float) -> float:
        std_dev = _sample_std(returns)
        if std_dev <= 0:
            return 0.0
        excess = returns.mean() - self.daily_risk_free
        return float(excess / std_dev * self._annualization(avg_holding_days))

    def sortino_ratio(self, returns: np.ndarray, avg_holding_days: float) -> float:
        """Like Sharpe, but divides by the deviation of losing trade returns."""
        if len(returns) == 0:
            return 0.0
        downside = returns[returns < 0]
        downside_dev = _sample_std(downside) if len(downside) > 0 else SORTINO_DOWNSIDE_FALLBACK
        if downside_dev <= 0:
            return 0.0
        excess = returns.mean() - self.daily_risk_free
        return float(excess / downside_dev * self._annualization(avg_holding_days))

    # ========================================================================
    # TRADE STATS
    # ========================================================================

    def trade_stats(self, trades: Sequence[Trade]) -> Dict[str, float]:
        pnls = np.array([t.pnl for t in trades], dtype=float)
        wins = pnls[pnls > 0]
        losses = pnls[pnls <= 0]

        gross_profit = float(wins.sum())
        gross_loss = float(abs(losses.sum()))
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = float("inf") if gross_profit > 0 else 0.0

        avg_win = float(wins.mean()) if len(wins) else 0.0
        avg_loss = float(np.abs(losses).mean()) if len(losses) else 0.0
        if avg_loss > 0:
            win_loss_ratio = avg_win / avg_loss
        else:
            win_loss_ratio = float("inf") if avg_win > 0 else 0.0

        return {
            "win_rate": len(wins) / len(pnls) * 100.0 if len(pnls) else 0.0,
            "profit_factor": profit_factor,
            "expectancy": float(pnls.mean()) if len(pnls) else 0.0,
            "avg_win": avg_win,
            "avg_loss": avg_loss,
            "avg_win_loss_ratio": win_loss_ratio,
        }

    def streaks(self, trades: Sequence[Trade]) -> Dict[str, int]:
        max_wins = max_losses = 0
        wins = losses = 0
        for trade in trades:
            if trade.pnl > 0:
                wins += 1
                losses = 0
                max_wins = max(max_wins, wins)
            else:
                losses += 1
                wins = 0
                max_losses = max(max_losses, losses)
        return {"max_consecutive_wins": max_wins, "max_consecutive_losses": max_losses}

    # ========================================================================
    # TIME
    # ========================================================================

    def time_in_market_pct(
        self, trades: Sequence[Trade], equity_curve: Sequence[EquityPoint]
    ) -> float:
        """Calendar days held over the calendar span of the curve, capped at 100."""
        if not equity_curve:
            return 0.0
        span = (equity_curve[-1].date - equity_curve[0].date).days
        held = sum(t.holding_days for t in trades)
        if span <= 0:
            return 100.0 if held > 0 else 0.0
        return min(100.0, held / span * 100.0)

    def best_worst_month(self, trades: Sequence[Trade]) -> Dict[str, MonthLabel]:
        """Exit-month sums of pnl_pct; best must be > 0 and worst < 0 to register."""
        monthly: Dict[str, float] = {}
        for trade in trades:
            key = month_label(trade.exit_date)
            monthly[key] = monthly.get(key, 0.0) + trade.pnl_pct

        best, worst = MonthLabel(), MonthLabel()
        for label, ret in monthly.items():
            if ret > best.return_pct:
                best = MonthLabel(label=label, return_pct=_round2(ret))
            if ret < worst.return_pct:
                worst = MonthLabel(label=label, return_pct=_round2(ret))
        return {"best_month": best, "worst_month": worst}

    # ========================================================================
    # DISTRIBUTION (Fat Tails)
    # ========================================================================

    def distribution(self, returns: np.ndarray) -> Dict[str, float]:
        """Skew, Pearson kurtosis and 95/5 tail ratio of trade returns."""
        if len(returns) < 3 or np.allclose(returns, returns[0]):
            return {"skewness": 0.0, "kurtosis": 0.0, "tail_ratio": 0.0}

        p95 = np.percentile(returns, 95)
        p5 = np.percentile(returns, 5)
        return {
            "skewness": float(stats.skew(returns)),
            "kurtosis": float(stats.kurtosis(returns, fisher=False)),
            "tail_ratio": float(abs(p95 / p5)) if p5 != 0 else 0.0,
        }

    # ========================================================================
    # MASTER CALCULATOR
    # ========================================================================

    @tracer.start_as_current_span("metrics.calculate_all")
    def calculate_all(
        self,
        trades: Sequence[Trade],
        equity_curve: Sequence[EquityPoint],
        initial_capital: float,
    ) -> PerformanceMetrics:
        """
        Calculate the full metrics record.

        Args:
            trades: Closed trades of the run, in exit order
            equity_curve: One point per simulated bar
            initial_capital: Starting capital of the run

        Returns:
            PerformanceMetrics rounded to 2 decimals (zeroed when no trades)
        """
        if not trades:
            return PerformanceMetrics()

        span = trace.get_current_span()

        returns = np.array([t.pnl_pct for t in trades], dtype=float)
        final_equity = equity_curve[-1].equity if equity_curve else initial_capital
        avg_hold = float(np.mean([t.holding_days for t in trades]))

        total_return = self.total_return_pct(final_equity, initial_capital)
        cagr = self.cagr(final_equity, initial_capital, equity_curve)
        max_dd = self.max_drawdown_pct(equity_curve)
        tail = self.value_at_risk(returns)
        trade_stats = self.trade_stats(trades)
        streaks = self.streaks(trades)
        months = self.best_worst_month(trades)
        dist = self.distribution(returns)

        span.set_attribute("metrics.trades", len(trades))
        span.set_attribute("metrics.max_drawdown_pct", max_dd)

        return PerformanceMetrics(
            total_return_pct=_round2(total_return),
            cagr=_round2(cagr),
            avg_trade_pct=_round2(returns.mean()),
            best_trade_pct=_round2(returns.max()),
            worst_trade_pct=_round2(returns.min()),
            max_drawdown_pct=_round2(max_dd),
            max_drawdown_duration=self._calculate_max_dd_duration(equity_curve),
            var_95=_round2(tail["var_95"]),
            cvar=_round2(tail["cvar"]),
            sharpe_ratio=_round2(self.sharpe_ratio(returns, avg_hold)),
            sortino_ratio=_round2(self.sortino_ratio(returns, avg_hold)),
            calmar_ratio=_round2(cagr / max_dd if max_dd > 0 else 0.0),
            total_trades=len(trades),
            win_rate=_round2(trade_stats["win_rate"]),
            profit_factor=_round2(trade_stats["profit_factor"]),
            expectancy=_round2(trade_stats["expectancy"]),
            avg_win_loss_ratio=_round2(trade_stats["avg_win_loss_ratio"]),
            avg_win=_round2(trade_stats["avg_win"]),
            avg_loss=_round2(trade_stats["avg_loss"]),
            max_consecutive_wins=streaks["max_consecutive_wins"],
            max_consecutive_losses=streaks["max_consecutive_losses"],
            avg_holding_days=_round2(avg_hold),
            time_in_market_pct=_round2(self.time_in_market_pct(trades, equity_curve)),
            best_month=months["best_month"],
            worst_month=months["worst_month"],
            recovery_factor=_round2(total_return / max_dd if max_dd > 0 else 0.0),
            skewness=_round2(dist["skewness"]),
            kurtosis=_round2(dist["kurtosis"]),
            tail_ratio=_round2(dist["tail_ratio"]),
        )


def calculate_metrics(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
    risk_free_rate_pct: Optional[float] = None,
) -> PerformanceMetrics:
    return MetricsCalculator(risk_free_rate_pct).calculate_all(
        trades, equity_curve, initial_capital
    )
