"""
Multi-strategy comparison on one symbol.

Runs every strategy through the backtest pipeline, reads each strategy's
signal on the latest bars and ranks the results by total return.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from opentelemetry import trace

from backtester.backtest.feed import BarSeries
from backtester.backtest.indicators import IndicatorCache
from backtester.backtest.rules import evaluate_all_rules
from backtester.core.constants import CURRENT_SIGNAL_MIN_BARS, RECENT_SIGNAL_LOOKBACK
from backtester.core.metrics_types import (
    AggregateMetrics,
    BacktestReport,
    BacktestTarget,
    ComparisonResult,
    CurrentSignal,
    StrategyResult,
)
from backtester.core.models import BacktestConfig, SignalDirection, Strategy
from backtester.services.backtest import BarsLike, as_bar_series, run_backtest

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_AVG_WIN_PCT = 3.0
DEFAULT_AVG_LOSS_PCT = 2.0
DEFAULT_HOLDING_DAYS = 10
RECENT_MONTHS = 6

# first matching keyword group wins
_CATEGORY_KEYWORDS = (
    ("Trend-Following", ("cross", "supertrend", "ichimoku")),
    ("Mean-Reversion", ("rsi", "bollinger", "reversion")),
    ("Momentum", ("macd", "momentum", "breakout")),
    ("Multi-Factor", ("multi", "confluence")),
)


# ============================================================================
# SIGNALS
# ============================================================================


def detect_current_signal(strategy: Strategy, bars: BarSeries) -> CurrentSignal:
    """
    What the strategy says on the latest bar.

    BUY when the entry rules fire on the last bar, SELL when the exit rules
    do, otherwise BUY if the entry rules fired on one of the last three bars
    (reasons prefixed with "Recent: "), else WAIT.
    """
    if len(bars) < CURRENT_SIGNAL_MIN_BARS:
        return CurrentSignal(SignalDirection.WAIT, ["Insufficient data"])

    cache = IndicatorCache(bars)
    last = len(bars) - 1

    entry = evaluate_all_rules(strategy.entry_rules, bars, last, cache)
    if entry.triggered:
        return CurrentSignal(SignalDirection.BUY, entry.reasons)

    exit_ = evaluate_all_rules(strategy.exit_rules, bars, last, cache)
    if exit_.triggered:
        return CurrentSignal(SignalDirection.SELL, exit_.reasons)

    for i in range(max(0, last - RECENT_SIGNAL_LOOKBACK + 1), last + 1):
        recent = evaluate_all_rules(strategy.entry_rules, bars, i, cache)
        if recent.triggered:
            return CurrentSignal(
                SignalDirection.BUY, [f"Recent: {r}" for r in recent.reasons]
            )

    return CurrentSignal(SignalDirection.WAIT, ["No active signal"])


def compute_backtest_target(
    report: BacktestReport, current_price: float, signal: SignalDirection
) -> BacktestTarget:
    """
    Price target and stop from the strategy's average winning/losing trade.

    BUY and WAIT project upward (target above, stop below); SELL projects
    downward. Without wins or losses the averages default to 3% and 2%.
    """
    wins = [t.pnl_pct for t in report.trades if t.pnl > 0]
    losses = [t.pnl_pct for t in report.trades if t.pnl < 0]

    avg_win_pct = float(np.mean(wins)) if wins else DEFAULT_AVG_WIN_PCT
    avg_loss_pct = abs(float(np.mean(losses))) if losses else DEFAULT_AVG_LOSS_PCT
    avg_hold = (
        int(round(np.mean([t.holding_days for t in report.trades])))
        if report.trades
        else DEFAULT_HOLDING_DAYS
    )

    if signal == SignalDirection.SELL:
        target = current_price * (1 - avg_win_pct / 100.0)
        stop = current_price * (1 + avg_loss_pct / 100.0)
    else:
        target = current_price * (1 + avg_win_pct / 100.0)
        stop = current_price * (1 - avg_loss_pct / 100.0)

    return BacktestTarget(
        target=round(target, 2),
        stop_loss=round(stop, 2),
        avg_holding_days=avg_hold,
        avg_win_pct=round(avg_win_pct, 2),
        avg_loss_pct=round(avg_loss_pct, 2),
        direction=signal,
    )


def strategy_category(name: str) -> str:
    lowered = name.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return category
    return "Other"


def _recent_performance(report: BacktestReport, bars: BarSeries) -> float:
    if len(bars) == 0:
        return 0.0
    cutoff = (pd.Timestamp(bars[-1].date) - pd.DateOffset(months=RECENT_MONTHS)).date()
    return round(sum(t.pnl_pct for t in report.trades if t.exit_date >= cutoff), 2)


# ============================================================================
# COMPARISON
# ============================================================================


@tracer.start_as_current_span("compare_strategies")
def compare_strategies(
    bars: BarsLike,
    strategies: Sequence[Strategy],
    config: BacktestConfig,
    benchmark_bars: Optional[BarsLike] = None,
) -> ComparisonResult:
    """
    Run every strategy on the same bars and rank them by total return.

    Raises:
        ValueError: when no strategies are given
    """
    if not strategies:
        raise ValueError("compare_strategies needs at least one strategy")

    span = trace.get_current_span()
    series = as_bar_series(bars)
    benchmark = as_bar_series(benchmark_bars) if benchmark_bars is not None else None
    current_price = float(series.closes[-1]) if len(series) else 0.0

    results: List[StrategyResult] = []
    for strategy in strategies:
        report = run_backtest(series, strategy, config, benchmark)
        signal = detect_current_signal(strategy, series)
        results.append(
            StrategyResult(
                strategy=strategy,
                report=report,
                current_signal=signal,
                backtest_target=compute_backtest_target(report, current_price, signal.signal),
                recent_performance=_recent_performance(report, series),
            )
        )

    results.sort(key=lambda r: r.report.metrics.total_return_pct, reverse=True)
    for rank, result in enumerate(results, start=1):
        result.rank = rank

    breakdown: Dict[str, int] = {d.value: 0 for d in SignalDirection}
    for result in results:
        breakdown[result.current_signal.signal.value] += 1

    n = len(results)
    metrics = [r.report.metrics for r in results]
    aggregate = AggregateMetrics(
        avg_return=round(float(np.mean([m.total_return_pct for m in metrics])), 2),
        avg_sharpe=round(float(np.mean([m.sharpe_ratio for m in metrics])), 2),
        avg_win_rate=round(float(np.mean([m.win_rate for m in metrics])), 2),
        avg_max_dd=round(float(np.mean([m.max_drawdown_pct for m in metrics])), 2),
        agreement_pct=float(round(max(breakdown.values()) / n * 100)),
        profitable_strategies=sum(1 for m in metrics if m.total_return_pct > 0),
    )

    by_category: Dict[str, List[float]] = {}
    for result in results:
        by_category.setdefault(strategy_category(result.strategy.name), []).append(
            result.report.metrics.total_return_pct
        )
    best_category = max(by_category, key=lambda c: np.mean(by_category[c]))

    span.set_attribute("comparison.strategies", n)
    span.set_attribute("comparison.best_category", best_category)
    logger.info(
        f"Compared {n} strategies on {config.symbol}: top={results[0].strategy.name} "
        f"({results[0].report.metrics.total_return_pct:+.2f}%), signals={breakdown}"
    )

    return ComparisonResult(
        symbol=config.symbol,
        stock_name=config.stock_name,
        strategies=results,
        aggregate=aggregate,
        signal_breakdown=breakdown,
        best_category=best_category,
    )
