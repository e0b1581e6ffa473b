"""
Unit tests for the Monte Carlo trade-reshuffle simulator.
"""

import datetime as dt

import pytest

from backtester.core.metrics_types import Trade
from backtester.core.models import TradeSide
from backtester.services.monte_carlo import run_monte_carlo


def _trades(pnls):
    day = dt.date(2024, 1, 1)
    return [
        Trade(
            id=i,
            entry_date=day,
            exit_date=day,
            entry_price=100.0,
            exit_price=100.0,
            quantity=1.0,
            side=TradeSide.LONG,
            pnl=float(p),
            pnl_pct=float(p) / 1000.0,
            holding_days=0,
            entry_reasons=[],
            exit_reason="test",
            max_favorable_excursion=0.0,
            max_adverse_excursion=0.0,
            commission=0.0,
        )
        for i, p in enumerate(pnls, start=1)
    ]


MIXED = [5000, -3000, 2000, -4000, 6000, -1000, 3000, -2500]


class TestSkipped:
    def test_too_few_trades(self):
        result = run_monte_carlo(_trades([100, -50, 20, 10]), 100000, simulations=100, seed=1)
        assert result.is_empty
        assert result.drawdown_distribution == []
        assert result.risk_of_ruin == 0.0

    def test_zero_simulations(self):
        result = run_monte_carlo(_trades(MIXED), 100000, simulations=0, seed=1)
        assert result.is_empty


class TestDistribution:
    def test_same_seed_same_result(self):
        a = run_monte_carlo(_trades(MIXED), 100000, simulations=200, seed=42)
        b = run_monte_carlo(_trades(MIXED), 100000, simulations=200, seed=42)
        assert a.to_dict() == b.to_dict()

    def test_thread_pool_matches_serial_run(self):
        serial = run_monte_carlo(_trades(MIXED), 100000, simulations=300, seed=7, workers=1)
        pooled = run_monte_carlo(_trades(MIXED), 100000, simulations=300, seed=7, workers=4)
        assert serial.to_dict() == pooled.to_dict()

    def test_summary_statistics(self):
        result = run_monte_carlo(_trades(MIXED), 100000, simulations=500, seed=3)

        dist = result.drawdown_distribution
        assert result.simulations == 500
        assert len(dist) == 500
        assert dist == sorted(dist)
        assert result.median_drawdown == pytest.approx(dist[250], abs=0.005)
        assert result.percentile95_drawdown == pytest.approx(dist[475], abs=0.005)
        assert result.worst_case_drawdown == pytest.approx(dist[-1], abs=0.005)
        assert 0.0 <= result.median_drawdown <= result.percentile95_drawdown <= result.worst_case_drawdown

    def test_equity_bands(self):
        result = run_monte_carlo(_trades(MIXED), 100000, simulations=200, seed=5)
        bands = result.equity_bands
        steps = len(MIXED) + 1

        assert bands.labels[0] == "Start"
        assert bands.labels[-1] == f"Trade {len(MIXED)}"
        for band in (bands.percentile5, bands.percentile50, bands.percentile95):
            assert len(band) == steps
            assert band[0] == pytest.approx(100000)
            # every reshuffle ends on the same total
            assert band[-1] == pytest.approx(100000 + sum(MIXED))
        assert all(lo <= mid <= hi for lo, mid, hi in zip(
            bands.percentile5, bands.percentile50, bands.percentile95
        ))


class TestRiskOfRuin:
    def test_winners_only_never_ruin(self):
        result = run_monte_carlo(_trades([1000] * 6), 100000, simulations=100, seed=1)
        assert result.worst_case_drawdown == 0.0
        assert result.risk_of_ruin == 0.0

    def test_heavy_losses_always_ruin(self):
        # three -30k losses always sink equity >= 60% below the running peak
        result = run_monte_carlo(
            _trades([-30000, -30000, -30000, 10000, 10000, 10000]),
            100000,
            simulations=100,
            seed=1,
        )
        assert result.risk_of_ruin == 100.0

    def test_ruin_grows_with_loss_size(self):
        ruin = []
        for loss in range(0, 60001, 5000):
            result = run_monte_carlo(
                _trades([10000] * 6 + [-loss] * 4), 100000, simulations=300, seed=11
            )
            ruin.append(result.risk_of_ruin)

        assert ruin[0] == 0.0
        assert ruin[-1] == 100.0
        assert all(cur >= prev for prev, cur in zip(ruin, ruin[1:]))

    def test_threshold_override(self):
        trades = _trades(MIXED)
        strict = run_monte_carlo(trades, 100000, simulations=300, seed=9, ruin_threshold_pct=1.0)
        loose = run_monte_carlo(trades, 100000, simulations=300, seed=9, ruin_threshold_pct=50.0)
        assert strict.risk_of_ruin >= loose.risk_of_ruin
        assert loose.risk_of_ruin == 0.0
