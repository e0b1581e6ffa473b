"""
End-to-end backtests through `run_backtest` on synthetic market regimes.
"""

import datetime as dt

import orjson
import pytest

from backtester.core.models import BacktestConfig, DateRangePreset
from backtester.core.serialization import dumps
from backtester.services.backtest import run_backtest
from backtester.strategies import get_preset_strategy, list_presets


@pytest.fixture
def config():
    return BacktestConfig(
        symbol="reliance",
        stock_name="Reliance Industries",
        initial_capital=100000.0,
        commission_pct=0.03,
        slippage_pct=0.05,
        monte_carlo_simulations=200,
        seed=42,
    )


class TestGoldenCross:
    def test_single_trend_trade(self, golden_cross_series, config):
        strategy = get_preset_strategy("preset-golden-cross")

        report = run_backtest(golden_cross_series, strategy, config)

        assert len(report.trades) == 1
        trade = report.trades[0]
        assert trade.entry_reasons == ["SMA(50) crosses above SMA(200)"]
        assert trade.exit_reason == "stop_loss"
        assert trade.pnl > 0
        # simulation starts once SMA(200) is defined
        assert report.data_range.total_bars == len(golden_cross_series) - 199
        assert report.data_range.start_date == golden_cross_series[199].date
        assert report.monte_carlo.is_empty  # a single trade is too few to reshuffle

    def test_final_equity_matches_trade_pnl(self, golden_cross_series, config):
        report = run_backtest(golden_cross_series, get_preset_strategy("Golden Cross"), config)
        final = report.equity_curve[-1].equity
        assert final == pytest.approx(config.initial_capital + report.trades[0].pnl)
        assert report.metrics.total_return_pct == pytest.approx(
            round((final - 100000) / 100000 * 100, 2)
        )


class TestQuietMarkets:
    def test_mean_reversion_sits_out_a_steady_uptrend(self, uptrend_series, config):
        report = run_backtest(uptrend_series, get_preset_strategy("preset-rsi-mean-reversion"), config)

        assert report.trades == []
        assert report.metrics.total_trades == 0
        assert report.metrics.total_return_pct >= 0
        assert report.metrics.max_drawdown_pct == 0.0
        assert all(p.equity == pytest.approx(100000.0) for p in report.equity_curve)
        assert report.monthly_returns == []

    def test_every_preset_runs(self, noisy_series, config):
        for strategy in list_presets():
            report = run_backtest(noisy_series, strategy, config)
            assert report.equity_curve, strategy.id
            assert all(0.0 <= p.drawdown_pct <= 100.0 for p in report.equity_curve)
            assert report.metrics.total_trades == len(report.trades)


class TestReproducibility:
    def test_same_seed_same_report(self, noisy_series, config):
        strategy = get_preset_strategy("preset-macd-momentum")

        first = run_backtest(noisy_series, strategy, config)
        second = run_backtest(noisy_series, strategy, config)

        assert len(first.trades) >= 5
        assert first.to_dict() == second.to_dict()
        assert first.metrics.risk_of_ruin == first.monte_carlo.risk_of_ruin

    def test_date_range_preset(self, noisy_series, config):
        one_year = config.model_copy(update={"date_range": DateRangePreset.ONE_YEAR})
        report = run_backtest(noisy_series, get_preset_strategy("preset-macd-momentum"), one_year)

        cutoff = noisy_series[-1].date - dt.timedelta(days=366)
        assert report.data_range.start_date >= cutoff
        assert report.data_range.end_date == noisy_series[-1].date

    def test_custom_end_date_hides_future_bars(self, noisy_series, config):
        end = noisy_series[250].date
        custom = config.model_copy(update={"custom_end_date": end})
        report = run_backtest(noisy_series, get_preset_strategy("preset-macd-momentum"), custom)

        assert report.data_range.end_date == end
        assert all(t.exit_date <= end for t in report.trades)


    def test_window_past_the_data_gives_empty_report(self, noisy_series, config):
        late = config.model_copy(
            update={"custom_start_date": noisy_series[-1].date + dt.timedelta(days=30)}
        )
        report = run_backtest(
            noisy_series,
            get_preset_strategy("preset-macd-momentum"),
            late,
            benchmark_bars=noisy_series,
        )

        assert report.trades == []
        assert report.equity_curve == []
        assert report.data_range.total_bars == 0
        assert report.data_range.start_date is None
        assert report.metrics.total_trades == 0
        assert report.benchmark_equity is None
        assert report.monte_carlo.is_empty


class TestReportOutput:
    def test_json_round_trip(self, noisy_series, config):
        report = run_backtest(
            noisy_series,
            get_preset_strategy("preset-macd-momentum"),
            config,
            benchmark_bars=noisy_series,
        )

        payload = orjson.loads(dumps(report))

        assert set(payload) >= {
            "trades",
            "equity_curve",
            "metrics",
            "monthly_returns",
            "monte_carlo",
            "config",
            "strategy",
            "benchmark_equity",
            "data_range",
        }
        assert payload["config"]["symbol"] == "RELIANCE"
        assert payload["strategy"]["id"] == "preset-macd-momentum"
        assert payload["benchmark_equity"][0]["equity"] == pytest.approx(100000.0)
        assert len(payload["equity_curve"]) == report.data_range.total_bars
