"""
Unit tests for Performance Metrics Calculator.

Trades are built by hand so each statistic can be checked against known
inputs/outputs.
"""

import datetime as dt
import math

import numpy as np
import pytest

from backtester.core.metrics_types import EquityPoint, PerformanceMetrics, Trade
from backtester.core.models import TradeSide
from backtester.services.metrics import MetricsCalculator, calculate_metrics


def make_trade(
    pnl: float,
    pnl_pct: float = None,
    exit_date: dt.date = dt.date(2024, 1, 15),
    holding_days: int = 5,
    trade_id: int = 1,
) -> Trade:
    return Trade(
        id=trade_id,
        entry_date=exit_date - dt.timedelta(days=holding_days),
        exit_date=exit_date,
        entry_price=100.0,
        exit_price=100.0 + pnl / 100.0,
        quantity=100.0,
        side=TradeSide.LONG,
        pnl=pnl,
        pnl_pct=pnl_pct if pnl_pct is not None else pnl / 100.0,
        holding_days=holding_days,
        entry_reasons=[],
        exit_reason="test",
        max_favorable_excursion=0.0,
        max_adverse_excursion=0.0,
        commission=0.0,
    )


def make_curve(equities, start: dt.date = dt.date(2024, 1, 1)):
    curve = []
    peak = equities[0]
    for i, equity in enumerate(equities):
        peak = max(peak, equity)
        drawdown = peak - equity
        curve.append(
            EquityPoint(
                date=start + dt.timedelta(days=i),
                equity=equity,
                drawdown=drawdown,
                drawdown_pct=drawdown / peak * 100,
            )
        )
    return curve


class TestEmptyRun:
    def test_no_trades_gives_zeroed_record(self):
        metrics = calculate_metrics([], make_curve([100000.0] * 5), 100000.0)

        assert metrics == PerformanceMetrics()
        assert metrics.best_month.label == "-"
        assert metrics.risk_of_ruin == 0.0


class TestReturns:
    def test_total_return(self):
        calc = MetricsCalculator()
        assert calc.total_return_pct(110000, 100000) == pytest.approx(10.0)

    def test_cagr_uses_calendar_span(self):
        calc = MetricsCalculator()
        curve = make_curve([100.0, 100.0])
        curve[-1] = EquityPoint(dt.date(2026, 1, 1), 121.0, 0.0, 0.0)
        # 2 calendar years (731 days) at 21% total
        years = (dt.date(2026, 1, 1) - dt.date(2024, 1, 1)).days / 365.25
        expected = (1.21 ** (1 / years) - 1) * 100
        assert calc.cagr(121.0, 100.0, curve) == pytest.approx(expected)

    def test_cagr_short_span_floors_years(self):
        calc = MetricsCalculator()
        curve = make_curve([100.0, 101.0])
        assert calc.cagr(101.0, 100.0, curve) == pytest.approx((1.01 ** 10 - 1) * 100)

    def test_cagr_wiped_out(self):
        assert MetricsCalculator().cagr(0.0, 100.0, make_curve([100.0, 0.0])) == -100.0


class TestRisk:
    def test_max_drawdown_and_duration(self):
        calc = MetricsCalculator()
        curve = make_curve([100, 99, 98, 100, 100, 99.9, 99, 98, 97, 101])
        assert calc.max_drawdown_pct(curve) == pytest.approx(3.0)
        # 99.9 is a 0.1% dip and does not extend the run
        assert calc._calculate_max_dd_duration(curve) == 3

    def test_no_drawdown(self):
        calc = MetricsCalculator()
        assert calc._calculate_max_dd_duration(make_curve([100, 101, 102])) == 0

    def test_value_at_risk(self):
        calc = MetricsCalculator()
        returns = np.arange(1.0, 21.0) - 10.0  # -9 .. 10
        tail = calc.value_at_risk(returns)
        assert tail["var_95"] == pytest.approx(-8.0)
        assert tail["cvar"] == pytest.approx(-8.5)

    def test_sharpe_zero_without_dispersion(self):
        calc = MetricsCalculator(risk_free_rate_pct=0.0)
        assert calc.sharpe_ratio(np.array([1.0, 1.0, 1.0]), 5.0) == 0.0

    def test_sharpe_annualized_by_holding_period(self):
        calc = MetricsCalculator(risk_free_rate_pct=0.0)
        returns = np.array([1.0, -1.0, 2.0, 0.0])
        expected = returns.mean() / returns.std(ddof=1) * math.sqrt(252 / 4)
        assert calc.sharpe_ratio(returns, 4.0) == pytest.approx(expected)

    def test_sortino_fallback_without_losers(self):
        calc = MetricsCalculator(risk_free_rate_pct=0.0)
        returns = np.array([1.0, 2.0])
        expected = 1.5 / 0.01 * math.sqrt(252)
        assert calc.sortino_ratio(returns, 1.0) == pytest.approx(expected)


class TestTradeStats:
    def test_profit_factor(self):
        calc = MetricsCalculator()
        stats = calc.trade_stats([make_trade(100), make_trade(200), make_trade(-50)])
        assert stats["profit_factor"] == pytest.approx(6.0)
        assert stats["win_rate"] == pytest.approx(200 / 3)
        assert stats["expectancy"] == pytest.approx(250 / 3)
        assert stats["avg_win_loss_ratio"] == pytest.approx(150 / 50)

    def test_all_winners_is_infinite(self):
        metrics = calculate_metrics(
            [make_trade(100), make_trade(50)], make_curve([100000, 100150]), 100000
        )
        assert math.isinf(metrics.profit_factor)
        assert math.isinf(metrics.avg_win_loss_ratio)

    def test_break_even_counts_as_loss(self):
        calc = MetricsCalculator()
        stats = calc.trade_stats([make_trade(100), make_trade(0)])
        assert stats["win_rate"] == pytest.approx(50.0)
        assert stats["profit_factor"] == float("inf")

    def test_streaks(self):
        calc = MetricsCalculator()
        pnls = [10, 20, -5, 0, -1, 30]
        streaks = calc.streaks([make_trade(p) for p in pnls])
        assert streaks["max_consecutive_wins"] == 2
        assert streaks["max_consecutive_losses"] == 3


class TestTime:
    def test_time_in_market(self):
        calc = MetricsCalculator()
        curve = make_curve([100.0] * 21)  # 20 calendar days
        trades = [make_trade(10, holding_days=5), make_trade(10, holding_days=3)]
        assert calc.time_in_market_pct(trades, curve) == pytest.approx(40.0)

    def test_time_in_market_is_capped(self):
        calc = MetricsCalculator()
        curve = make_curve([100.0] * 3)
        assert calc.time_in_market_pct([make_trade(10, holding_days=30)], curve) == 100.0

    def test_time_in_market_single_day_span(self):
        calc = MetricsCalculator()
        curve = make_curve([100.0])
        assert calc.time_in_market_pct([make_trade(1, holding_days=2)], curve) == 100.0
        assert calc.time_in_market_pct([make_trade(1, holding_days=0)], curve) == 0.0

    def test_best_and_worst_month(self):
        calc = MetricsCalculator()
        trades = [
            make_trade(300, pnl_pct=3.0, exit_date=dt.date(2024, 1, 10)),
            make_trade(200, pnl_pct=2.0, exit_date=dt.date(2024, 1, 20)),
            make_trade(-300, pnl_pct=-3.0, exit_date=dt.date(2024, 2, 5)),
        ]
        months = calc.best_worst_month(trades)
        assert months["best_month"].label == "Jan 2024"
        assert months["best_month"].return_pct == pytest.approx(5.0)
        assert months["worst_month"].label == "Feb 2024"
        assert months["worst_month"].return_pct == pytest.approx(-3.0)

    def test_only_losing_months_leave_best_empty(self):
        calc = MetricsCalculator()
        months = calc.best_worst_month([make_trade(-100, pnl_pct=-1.0)])
        assert months["best_month"].label == "-"
        assert months["best_month"].return_pct == 0.0


class TestDistribution:
    def test_too_few_returns(self):
        dist = MetricsCalculator().distribution(np.array([1.0, 2.0]))
        assert dist == {"skewness": 0.0, "kurtosis": 0.0, "tail_ratio": 0.0}

    def test_positive_skew(self):
        returns = np.array([1.0] * 18 + [10.0] * 2)
        dist = MetricsCalculator().distribution(returns)
        assert dist["skewness"] > 0
        assert dist["kurtosis"] > 3.0

    def test_tail_ratio_symmetric(self):
        returns = np.linspace(-10.0, 10.0, 101)
        dist = MetricsCalculator().distribution(returns)
        assert dist["tail_ratio"] == pytest.approx(1.0)


class TestCalculateAll:
    def test_record_is_rounded(self):
        trades = [
            make_trade(p, trade_id=i, exit_date=dt.date(2024, 1, 1) + dt.timedelta(days=7 * i))
            for i, p in enumerate([123.456, -45.678, 78.9, -12.345, 250.0], start=1)
        ]
        curve = make_curve(list(np.linspace(100000, 100394.333, 40)))
        metrics = calculate_metrics(trades, curve, 100000.0)

        assert metrics.total_trades == 5
        for name, value in metrics.to_dict().items():
            if isinstance(value, float) and math.isfinite(value):
                assert value == round(value, 2), name
        assert metrics.recovery_factor == 0.0  # no drawdown on a rising curve
