import datetime as dt
import logging
from typing import List, Sequence

import pandas as pd

from backtester.backtest.feed import BarSeries
from backtester.core.metrics_types import EquityPoint, MonthlyReturn, Trade

logger = logging.getLogger(__name__)


def month_label(day: dt.date) -> str:
    """`Jan 2024` style label for a calendar month."""
    return f"{day.strftime('%b')} {day.year}"


def calculate_monthly_returns(trades: Sequence[Trade]) -> List[MonthlyReturn]:
    """
    Aggregate trade returns by exit month.

    A month's return is the sum of pnl_pct of the trades that exited in it.
    Months without exits are omitted. Sorted chronologically.
    """
    if not trades:
        return []

    df = pd.DataFrame(
        {
            "year": [t.exit_date.year for t in trades],
            "month": [t.exit_date.month for t in trades],
            "pnl_pct": [t.pnl_pct for t in trades],
        }
    )
    grouped = (
        df.groupby(["year", "month"])["pnl_pct"].agg(["sum", "count"]).sort_index()
    )

    return [
        MonthlyReturn(
            year=int(year),
            month=int(month),
            month_label=month_label(dt.date(int(year), int(month), 1)),
            return_pct=round(float(row["sum"]), 2),
            trades=int(row["count"]),
        )
        for (year, month), row in grouped.iterrows()
    ]


def build_benchmark_equity(
    benchmark: BarSeries, initial_capital: float, start_date: dt.date
) -> List[EquityPoint]:
    """
    Buy-and-hold equity of a benchmark series from `start_date` on.

    The whole capital is notionally invested at the first benchmark close on
    or after start_date; no costs are applied.
    """
    if len(benchmark) == 0:
        return []

    first = min(benchmark.index_on_or_after(start_date), len(benchmark) - 1)
    closes = pd.Series(benchmark.closes[first:])
    start_price = closes.iloc[0]
    if start_price <= 0:
        logger.warning("Benchmark starts at a non-positive close; skipping benchmark curve")
        return []

    equity = initial_capital * closes / start_price
    peak = equity.cummax().clip(lower=initial_capital)
    drawdown = peak - equity
    drawdown_pct = (drawdown / peak * 100.0).clip(upper=100.0)

    dates = benchmark.dates[first:]
    return [
        EquityPoint(date=d, equity=float(e), drawdown=float(dd), drawdown_pct=float(p))
        for d, e, dd, p in zip(dates, equity, drawdown, drawdown_pct)
    ]
