"""
Monte Carlo trade-reshuffle simulator.

Replays the realized trade P&L sequence in random orders to estimate how
bad the drawdown could have been with the same trades. Each trial draws
from its own generator seeded by (run seed, trial index), so results are
identical whether trials run serially or on a thread pool.

Serial correlation between trades is ignored; that is inherent to a pure
reshuffle.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

import numpy as np
from opentelemetry import trace

from backtester.core.config import settings
from backtester.core.constants import EQUITY_BAND_PERCENTILES, MIN_MONTE_CARLO_TRADES
from backtester.core.metrics_types import EquityBands, MonteCarloResult, Trade

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _trial(
    pnls: np.ndarray, initial_capital: float, seed: int, trial: int
) -> Tuple[float, np.ndarray]:
    """One reshuffled replay: (max drawdown %, equity path incl. start)."""
    rng = np.random.default_rng([seed, trial])
    shuffled = rng.permutation(pnls)

    path = np.empty(len(shuffled) + 1)
    path[0] = initial_capital
    path[1:] = initial_capital + np.cumsum(shuffled)

    peaks = np.maximum.accumulate(path)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - path) / peaks * 100.0, 0.0)
    return float(drawdowns.max()), path


def _percentile_at(sorted_values: np.ndarray, p: float) -> float:
    """Value at index floor(n * p) of an ascending array."""
    idx = min(int(np.floor(len(sorted_values) * p)), len(sorted_values) - 1)
    return float(sorted_values[idx])


@tracer.start_as_current_span("monte_carlo.run")
def run_monte_carlo(
    trades: Sequence[Trade],
    initial_capital: float,
    simulations: int = 1000,
    seed: Optional[int] = None,
    ruin_threshold_pct: Optional[float] = None,
    workers: Optional[int] = None,
) -> MonteCarloResult:
    """
    Reshuffle trade P&Ls `simulations` times and summarize max drawdowns.

    Args:
        trades: Closed trades of a run (only pnl is used)
        initial_capital: Starting capital of each replay
        simulations: Number of trials; <= 0 yields the empty result
        seed: Run seed; None draws a fresh one (non-reproducible run)
        ruin_threshold_pct: Drawdown counted as ruin (default 50%)
        workers: Thread pool size; 1 runs serially

    Returns:
        MonteCarloResult; empty (simulations == 0) for fewer than 5 trades
    """
    span = trace.get_current_span()
    ruin_threshold_pct = (
        settings.RUIN_THRESHOLD_PCT if ruin_threshold_pct is None else ruin_threshold_pct
    )
    workers = workers or settings.MONTE_CARLO_WORKERS

    if simulations <= 0 or len(trades) < MIN_MONTE_CARLO_TRADES:
        logger.warning(
            f"Monte Carlo skipped: {len(trades)} trades, {simulations} simulations "
            f"(need >= {MIN_MONTE_CARLO_TRADES} trades)"
        )
        return MonteCarloResult()

    if seed is None:
        seed = int(np.random.SeedSequence().entropy % (2**32))
        logger.debug(f"Monte Carlo seed drawn: {seed}")

    pnls = np.array([t.pnl for t in trades], dtype=float)

    def run_trial(trial: int) -> Tuple[float, np.ndarray]:
        return _trial(pnls, initial_capital, seed, trial)

    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(run_trial, range(simulations)))
    else:
        outcomes = [run_trial(trial) for trial in range(simulations)]

    drawdowns = np.sort(np.array([dd for dd, _ in outcomes]))
    paths = np.vstack([path for _, path in outcomes])

    ruin = float((drawdowns >= ruin_threshold_pct).sum()) / simulations * 100.0

    # percentile bands per trade step, across trials
    ordered_paths = np.sort(paths, axis=0)
    bands: List[List[float]] = [
        [_percentile_at(ordered_paths[:, step], p) for step in range(paths.shape[1])]
        for p in EQUITY_BAND_PERCENTILES
    ]
    labels = ["Start"] + [f"Trade {i}" for i in range(1, paths.shape[1])]

    result = MonteCarloResult(
        simulations=simulations,
        drawdown_distribution=drawdowns.tolist(),
        median_drawdown=round(_percentile_at(drawdowns, 0.5), 2),
        percentile95_drawdown=round(_percentile_at(drawdowns, 0.95), 2),
        worst_case_drawdown=round(float(drawdowns[-1]), 2),
        risk_of_ruin=round(ruin, 2),
        equity_bands=EquityBands(
            percentile5=bands[0],
            percentile50=bands[1],
            percentile95=bands[2],
            labels=labels,
        ),
    )

    span.set_attribute("monte_carlo.simulations", simulations)
    span.set_attribute("monte_carlo.median_drawdown", result.median_drawdown)
    span.set_attribute("monte_carlo.risk_of_ruin", result.risk_of_ruin)

    logger.info(
        f"Monte Carlo ({simulations} runs, seed={seed}): median DD {result.median_drawdown}%, "
        f"p95 DD {result.percentile95_drawdown}%, ruin {result.risk_of_ruin}%"
    )
    return result
