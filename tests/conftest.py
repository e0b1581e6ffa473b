"""
Shared fixtures for backtester tests.

Bar factories build deterministic daily series on business days. Costs are
zeroed in `frictionless_config` so expected P&L can be computed by hand.
"""

import datetime as dt
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import pytest

from backtester.backtest.feed import BarSeries
from backtester.core.models import (
    BacktestConfig,
    IndicatorKind,
    Operator,
    PriceBar,
    Strategy,
    StrategyRule,
)

START = dt.date(2020, 1, 1)


def series_from_closes(
    closes: Sequence[float],
    start: dt.date = START,
    volume: float = 1_000_000.0,
    spread: float = 0.01,
) -> BarSeries:
    """Open at the previous close, high/low `spread` outside the body."""
    dates = pd.bdate_range(start, periods=len(closes))
    bars = []
    prev = float(closes[0])
    for ts, close in zip(dates, closes):
        close = float(close)
        body_hi, body_lo = max(prev, close), min(prev, close)
        bars.append(
            PriceBar(
                date=ts.date(),
                open=prev,
                high=body_hi * (1 + spread),
                low=body_lo * (1 - spread),
                close=close,
                volume=volume,
            )
        )
        prev = close
    return BarSeries(bars)


def series_from_ohlc(rows, start: dt.date = START) -> BarSeries:
    """rows: (open, high, low, close) tuples on consecutive business days."""
    dates = pd.bdate_range(start, periods=len(rows))
    return BarSeries(
        [
            PriceBar(date=ts.date(), open=o, high=h, low=lo, close=c, volume=1000.0)
            for ts, (o, h, lo, c) in zip(dates, rows)
        ]
    )


def golden_cross_closes() -> np.ndarray:
    """Long decline, long rally, then a sell-off: one golden cross."""
    decline = np.linspace(200.0, 100.0, 260)
    rally = np.linspace(100.0, 250.0, 201)[1:]
    selloff = np.linspace(250.0, 150.0, 101)[1:]
    return np.concatenate([decline, rally, selloff])


def random_walk_closes(n: int = 400, seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    returns = rng.normal(0.0005, 0.015, n)
    return 100.0 * np.cumprod(1 + returns)


def rule(
    indicator: IndicatorKind,
    operator: Operator,
    value: float = 0.0,
    params: Optional[dict] = None,
    compare_to: Optional[IndicatorKind] = None,
    compare_params: Optional[dict] = None,
) -> StrategyRule:
    return StrategyRule(
        indicator=indicator,
        operator=operator,
        value=value,
        params=params or {},
        compare_to=compare_to,
        compare_params=compare_params or {},
    )


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def make_series():
    return series_from_closes


@pytest.fixture
def make_ohlc():
    return series_from_ohlc


@pytest.fixture
def make_rule():
    return rule


@pytest.fixture
def frictionless_config():
    return BacktestConfig(
        symbol="test",
        initial_capital=100000.0,
        commission_pct=0.0,
        slippage_pct=0.0,
        warmup_bars=0,
        monte_carlo_simulations=0,
        seed=1,
    )


@pytest.fixture
def always_in_strategy():
    """Enters on every flat bar; never exits on rules."""
    return Strategy(
        name="Always In",
        entry_rules=[rule(IndicatorKind.PRICE, Operator.ABOVE, 0)],
    )


@pytest.fixture
def golden_cross_series():
    return series_from_closes(golden_cross_closes())


@pytest.fixture
def uptrend_series():
    return series_from_closes(np.linspace(100.0, 160.0, 300))


@pytest.fixture
def noisy_series():
    return series_from_closes(random_walk_closes())
