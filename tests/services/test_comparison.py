"""
Tests for multi-strategy comparison and live signal detection.
"""

import numpy as np
import pytest

from backtester.core.models import IndicatorKind as K, Operator as Op, SignalDirection, Strategy
from backtester.services.backtest import run_backtest
from backtester.services.comparison import (
    compare_strategies,
    compute_backtest_target,
    detect_current_signal,
    strategy_category,
)
from backtester.strategies import get_preset_strategy


class TestCurrentSignal:
    def test_insufficient_history(self, make_series, always_in_strategy):
        signal = detect_current_signal(always_in_strategy, make_series([100] * 50))
        assert signal.signal == SignalDirection.WAIT
        assert signal.reasons == ["Insufficient data"]

    def test_buy_on_last_bar(self, make_series, always_in_strategy):
        signal = detect_current_signal(always_in_strategy, make_series([100] * 120))
        assert signal.signal == SignalDirection.BUY
        assert signal.reasons == ["Price above 0"]

    def test_sell_when_exit_rules_fire(self, make_series, make_rule):
        strategy = Strategy(
            name="Exit Only",
            entry_rules=[make_rule(K.PRICE, Op.BELOW, 0)],
            exit_rules=[make_rule(K.PRICE, Op.ABOVE, 50)],
        )
        signal = detect_current_signal(strategy, make_series([100] * 120))
        assert signal.signal == SignalDirection.SELL
        assert signal.reasons == ["Price above 50"]

    def test_recent_entry(self, make_series, make_rule):
        strategy = Strategy(
            name="Breakout",
            entry_rules=[make_rule(K.PRICE, Op.CROSSES_ABOVE, 150)],
        )
        series = make_series([100] * 117 + [160, 161, 162])
        signal = detect_current_signal(strategy, series)
        assert signal.signal == SignalDirection.BUY
        assert signal.reasons == ["Recent: Price crosses above 150"]

    def test_wait_without_signal(self, make_series, make_rule):
        strategy = Strategy(name="Never", entry_rules=[make_rule(K.PRICE, Op.BELOW, 0)])
        signal = detect_current_signal(strategy, make_series([100] * 120))
        assert signal.signal == SignalDirection.WAIT
        assert signal.reasons == ["No active signal"]


class TestBacktestTarget:
    def test_defaults_without_trades(self, make_series, frictionless_config):
        strategy = Strategy(name="Idle")
        report = run_backtest(make_series([100] * 10), strategy, frictionless_config)

        buy = compute_backtest_target(report, 100.0, SignalDirection.BUY)
        assert buy.target == pytest.approx(103.0)
        assert buy.stop_loss == pytest.approx(98.0)
        assert buy.avg_holding_days == 10

        sell = compute_backtest_target(report, 100.0, SignalDirection.SELL)
        assert sell.target == pytest.approx(97.0)
        assert sell.stop_loss == pytest.approx(102.0)
        assert sell.direction == SignalDirection.SELL


class TestCategory:
    @pytest.mark.parametrize(
        "name,category",
        [
            ("Golden Cross", "Trend-Following"),
            ("Supertrend Follower", "Trend-Following"),
            ("RSI Mean Reversion", "Mean-Reversion"),
            ("Bollinger Bounce", "Mean-Reversion"),
            ("MACD Momentum", "Momentum"),
            ("Volume Breakout", "Momentum"),
            ("Multi-Indicator Confluence", "Multi-Factor"),
            ("Custom Strategy", "Other"),
        ],
    )
    def test_strategy_category(self, name, category):
        assert strategy_category(name) == category


class TestCompareStrategies:
    def test_requires_strategies(self, noisy_series, frictionless_config):
        with pytest.raises(ValueError):
            compare_strategies(noisy_series, [], frictionless_config)

    def test_ranking_and_aggregates(self, noisy_series, frictionless_config):
        strategies = [
            get_preset_strategy("preset-rsi-mean-reversion"),
            get_preset_strategy("preset-macd-momentum"),
            get_preset_strategy("preset-supertrend"),
        ]
        config = frictionless_config.model_copy(update={"warmup_bars": None})

        result = compare_strategies(noisy_series, strategies, config)

        assert [r.rank for r in result.strategies] == [1, 2, 3]
        returns = [r.report.metrics.total_return_pct for r in result.strategies]
        assert returns == sorted(returns, reverse=True)
        assert result.top is result.strategies[0]

        assert set(result.signal_breakdown) == {"BUY", "SELL", "WAIT"}
        assert sum(result.signal_breakdown.values()) == 3
        assert result.aggregate.agreement_pct in (33.0, 67.0, 100.0)
        assert result.aggregate.avg_return == pytest.approx(np.mean(returns), abs=0.01)
        assert result.aggregate.profitable_strategies == sum(1 for r in returns if r > 0)
        assert result.best_category in {"Trend-Following", "Mean-Reversion", "Momentum"}
        assert result.symbol == "TEST"
