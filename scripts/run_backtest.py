"""
Strategy Backtest Runner.
CLI entry point for the rule-based backtest engine.

Usage:
    python scripts/run_backtest.py data/RELIANCE.csv --strategy preset-golden-cross --range 3Y
    python scripts/run_backtest.py data/TCS.csv --compare --benchmark data/NIFTY.csv --json
"""

import argparse
import logging
import sys
from datetime import date
from typing import Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402

from backtester.backtest.feed import BarSeries  # noqa: E402
from backtester.core.config import settings  # noqa: E402
from backtester.core.metrics_types import BacktestReport  # noqa: E402
from backtester.core.models import BacktestConfig, DateRangePreset  # noqa: E402
from backtester.core.serialization import dumps  # noqa: E402
from backtester.core.telemetry import setup_telemetry  # noqa: E402
from backtester.services.backtest import run_backtest  # noqa: E402
from backtester.services.comparison import compare_strategies  # noqa: E402
from backtester.strategies import get_preset_strategy, list_presets  # noqa: E402

# Configure Logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("BacktestRunner")


def load_bars(path: str) -> BarSeries:
    """Read a daily OHLCV csv with a `date` column."""
    df = pd.read_csv(path, parse_dates=["date"])
    df = df.sort_values("date").drop_duplicates(subset="date", keep="last")
    return BarSeries.from_frame(df)


def plot_report(report: BacktestReport, filename: str) -> None:
    if not report.equity_curve:
        logger.warning("No equity curve to plot.")
        return

    dates = [p.date for p in report.equity_curve]
    plt.figure(figsize=(12, 6))
    plt.plot(
        dates,
        [p.equity for p in report.equity_curve],
        label=report.strategy.name,
        color="#00aa00",
    )
    if report.benchmark_equity:
        plt.plot(
            [p.date for p in report.benchmark_equity],
            [p.equity for p in report.benchmark_equity],
            label="Benchmark (buy & hold)",
            color="#888888",
        )
    plt.title(f"{report.config.symbol}: {report.strategy.name}")
    plt.xlabel("Date")
    plt.ylabel("Portfolio Value")
    plt.grid(True, alpha=0.3)
    plt.legend()
    plt.savefig(filename)
    plt.close()
    logger.info(f"📈 Equity curve saved to {filename}")


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def build_config(args) -> BacktestConfig:
    """Per-run config from CLI flags; omitted flags keep the settings defaults."""
    config_kwargs = dict(
        symbol=args.symbol,
        date_range=DateRangePreset(args.range),
        custom_start_date=_parse_date(args.start),
        custom_end_date=_parse_date(args.end),
    )
    if args.capital is not None:
        config_kwargs["initial_capital"] = args.capital
    if args.seed is not None:
        config_kwargs["seed"] = args.seed
    if args.simulations is not None:
        config_kwargs["monte_carlo_simulations"] = args.simulations
    return BacktestConfig(**config_kwargs)


def main(args) -> int:
    if args.list:
        for preset in list_presets():
            print(f"{preset.id:30s} {preset.name}")
        return 0

    if not args.csv:
        logger.error("A csv file with daily bars is required.")
        return 2

    setup_telemetry()

    bars = load_bars(args.csv)
    benchmark = load_bars(args.benchmark) if args.benchmark else None

    config = build_config(args)

    logger.info(f"🚀 Loaded {len(bars)} bars for {config.symbol} from {args.csv}")

    if args.compare:
        result = compare_strategies(bars, list_presets(), config, benchmark)
        for entry in result.strategies:
            m = entry.report.metrics
            logger.info(
                f"#{entry.rank} {entry.strategy.name:28s} "
                f"return={m.total_return_pct:+.2f}% sharpe={m.sharpe_ratio:.2f} "
                f"signal={entry.current_signal.signal.value}"
            )
        logger.info(
            f"Best category: {result.best_category} "
            f"(agreement {result.aggregate.agreement_pct:.0f}%)"
        )
    else:
        strategy = get_preset_strategy(args.strategy)
        result = run_backtest(bars, strategy, config, benchmark)
        if args.plot:
            plot_report(result, args.plot)

    if args.json:
        sys.stdout.write(dumps(result, indent=True).decode() + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rule-based Strategy Backtester")
    parser.add_argument("csv", nargs="?", help="Daily OHLCV csv (date,open,high,low,close,volume)")
    parser.add_argument(
        "--strategy",
        default="preset-golden-cross",
        help="Preset id or name (see --list)",
    )
    parser.add_argument("--symbol", default="SYMBOL", help="Ticker label for the report")
    parser.add_argument(
        "--range",
        default=DateRangePreset.CUSTOM.value,
        choices=[p.value for p in DateRangePreset],
        help="Simulated window, counted back from the last bar",
    )
    parser.add_argument("--start", help="Custom start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Custom end date (YYYY-MM-DD)")
    parser.add_argument("--capital", type=float, help="Initial capital")
    parser.add_argument("--seed", type=int, help="Monte Carlo seed")
    parser.add_argument("--simulations", type=int, help="Monte Carlo simulation count")
    parser.add_argument("--benchmark", help="Benchmark index csv for buy & hold comparison")
    parser.add_argument("--compare", action="store_true", help="Rank every preset strategy")
    parser.add_argument("--plot", metavar="PNG", help="Save the equity curve plot")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    parser.add_argument("--list", action="store_true", help="List preset strategies")
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()

    try:
        sys.exit(main(args))
    except KeyboardInterrupt:
        logger.info("🛑 Backtest Aborted by User.")
    except Exception as e:
        logger.error(f"💥 Backtest Failed: {e}")
        sys.exit(1)
