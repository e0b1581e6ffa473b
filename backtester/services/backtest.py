"""
Backtest pipeline: simulation, metrics, Monte Carlo and report assembly.

`run_backtest` is the single entry point: a pure function of
(bars, strategy, config) apart from logging and tracing. With a fixed seed
two runs on identical inputs produce identical reports.
"""

import dataclasses
import logging
from typing import Optional, Sequence, Union

import pandas as pd
from opentelemetry import trace

from backtester.backtest.engine import SimulationResult, simulate
from backtester.backtest.feed import BarSeries
from backtester.backtest.reporting import build_benchmark_equity, calculate_monthly_returns
from backtester.core.config import settings
from backtester.core.metrics_types import BacktestReport, DataRange
from backtester.core.models import BacktestConfig, PriceBar, Strategy
from backtester.services.metrics import MetricsCalculator
from backtester.services.monte_carlo import run_monte_carlo

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

BarsLike = Union[BarSeries, Sequence[PriceBar], pd.DataFrame]


def as_bar_series(bars: BarsLike) -> BarSeries:
    """Accept a BarSeries, a list of PriceBar or an OHLCV DataFrame."""
    if isinstance(bars, BarSeries):
        return bars
    if isinstance(bars, pd.DataFrame):
        return BarSeries.from_frame(bars)
    return BarSeries.from_bars(bars)


def _data_range(result: SimulationResult) -> DataRange:
    curve = result.equity_curve
    return DataRange(
        start_date=curve[0].date if curve else None,
        end_date=curve[-1].date if curve else None,
        total_bars=len(curve),
    )


@tracer.start_as_current_span("run_backtest")
def run_backtest(
    bars: BarsLike,
    strategy: Strategy,
    config: BacktestConfig,
    benchmark_bars: Optional[BarsLike] = None,
    workers: Optional[int] = None,
) -> BacktestReport:
    """
    Run one strategy over one symbol's bars and assemble the full report.

    Args:
        bars: Daily bars of the traded symbol, ascending by date
        strategy: Strategy definition (entry/exit rules, risk, sizing)
        config: Run economics, simulated window and Monte Carlo settings
        benchmark_bars: Optional index bars for a buy-and-hold comparison curve
        workers: Monte Carlo thread pool size (default from settings)

    Returns:
        BacktestReport with trades, equity curve, metrics, monthly returns
        and the Monte Carlo result (risk_of_ruin copied into metrics)
    """
    span = trace.get_current_span()
    series = as_bar_series(bars)
    span.set_attribute("backtest.symbol", config.symbol)
    span.set_attribute("backtest.strategy_id", strategy.id)

    logger.info(
        f"🚀 Backtesting {strategy.name} on {config.symbol} "
        f"({len(series)} bars, range={config.date_range.value})"
    )

    result = simulate(series, strategy, config)

    metrics = MetricsCalculator(config.risk_free_rate_pct).calculate_all(
        result.trades, result.equity_curve, config.initial_capital
    )
    monte_carlo = run_monte_carlo(
        result.trades,
        config.initial_capital,
        simulations=config.monte_carlo_simulations,
        seed=config.seed,
        ruin_threshold_pct=settings.RUIN_THRESHOLD_PCT,
        workers=workers,
    )
    metrics = dataclasses.replace(metrics, risk_of_ruin=monte_carlo.risk_of_ruin)

    benchmark_equity = None
    if benchmark_bars is not None and result.equity_curve:
        benchmark_equity = build_benchmark_equity(
            as_bar_series(benchmark_bars),
            config.initial_capital,
            result.equity_curve[0].date,
        )

    report = BacktestReport(
        trades=result.trades,
        equity_curve=result.equity_curve,
        metrics=metrics,
        monthly_returns=calculate_monthly_returns(result.trades),
        monte_carlo=monte_carlo,
        config=config,
        strategy=strategy,
        data_range=_data_range(result),
        benchmark_equity=benchmark_equity,
    )

    span.set_attribute("backtest.trades", metrics.total_trades)
    span.set_attribute("backtest.total_return_pct", metrics.total_return_pct)
    span.set_attribute("backtest.max_drawdown_pct", metrics.max_drawdown_pct)
    log_report(report)
    return report


def log_report(report: BacktestReport) -> None:
    m = report.metrics
    logger.info("=" * 40)
    logger.info(f" BACKTEST REPORT: {report.strategy.name} / {report.config.symbol}")
    logger.info("=" * 40)
    logger.info(f"Trades:       {m.total_trades}")
    logger.info(f"Return:       {m.total_return_pct:.2f}%  (CAGR {m.cagr:.2f}%)")
    logger.info(f"Win Rate:     {m.win_rate:.2f}%")
    logger.info(f"Sharpe:       {m.sharpe_ratio:.2f}")
    logger.info(f"Max DD:       {m.max_drawdown_pct:.2f}%")
    logger.info(f"Risk of Ruin: {m.risk_of_ruin:.2f}%")
    logger.info("=" * 40)
