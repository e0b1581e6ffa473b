"""Bar-by-bar trade simulation engine.

Walks the bar series chronologically with an explicit Flat / OpenPosition
state. Indicators are evaluated through a per-run cache that only ever sees
bars[0..i], so no decision at bar i can use later data.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from opentelemetry import trace

from backtester.backtest.execution import ExecutionModel, FrictionExecution
from backtester.backtest.feed import BarSeries
from backtester.backtest.indicators import IndicatorCache, min_history
from backtester.backtest.portfolio import (
    Flat,
    OpenPosition,
    Portfolio,
    PositionState,
    initial_stop,
    position_size,
    take_profit_level,
)
from backtester.backtest.rules import evaluate_all_rules
from backtester.core.constants import ATR_STOP_PERIOD
from backtester.core.metrics_types import EquityPoint, Trade
from backtester.core.models import (
    BacktestConfig,
    IndicatorKind,
    PositionSizingMode,
    PriceBar,
    StopLossType,
    Strategy,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

EXIT_STOP_LOSS = "stop_loss"
EXIT_TAKE_PROFIT = "take_profit"
EXIT_END_OF_DATA = "end_of_data"
REASON_SEPARATOR = " + "


@dataclass
class SimulationResult:
    """Raw output of one simulation pass, before metrics are attached."""

    bars: BarSeries  # series the run saw (truncated at the window end)
    start_index: int  # first simulated bar
    trades: List[Trade]
    equity_curve: List[EquityPoint]
    final_capital: float

    @property
    def simulated_bars(self) -> int:
        return len(self.equity_curve)


def required_warmup(strategy: Strategy) -> int:
    """
    Index of the first bar at which every indicator the strategy reads is
    defined, including the ATR behind an ATR-based stop.
    """
    needed = 1
    for rule in list(strategy.entry_rules) + list(strategy.exit_rules):
        needed = max(needed, min_history(rule.indicator, rule.params))
        if rule.compare_to is not None:
            needed = max(needed, min_history(rule.compare_to, rule.compare_params))
    if strategy.risk_management.stop_loss_type == StopLossType.ATR_BASED:
        needed = max(needed, min_history(IndicatorKind.ATR, {"period": ATR_STOP_PERIOD}))
    return needed - 1


class BacktestEngine:
    """
    Long-only single-position simulator.

    Example:
        engine = BacktestEngine(bars, strategy, config)
        result = engine.run()
    """

    def __init__(
        self,
        bars: BarSeries,
        strategy: Strategy,
        config: BacktestConfig,
        execution: Optional[ExecutionModel] = None,
    ):
        self.strategy = strategy
        self.config = config
        self.execution = execution or FrictionExecution(
            slippage_pct=config.slippage_pct, commission_pct=config.commission_pct
        )

        self.bars, self.window_start = bars.resolve_window(
            config.date_range, config.custom_start_date, config.custom_end_date
        )
        self.cache = IndicatorCache(self.bars)
        self.portfolio = Portfolio(initial_capital=config.initial_capital)
        self._kelly_warned = False

    def start_index(self) -> int:
        warmup = (
            self.config.warmup_bars
            if self.config.warmup_bars is not None
            else required_warmup(self.strategy)
        )
        # len(bars) means nothing to simulate: window starts after the data
        return min(max(warmup, self.window_start), len(self.bars))

    @tracer.start_as_current_span("backtest.simulate")
    def run(self) -> SimulationResult:
        span = trace.get_current_span()
        started = time.time()

        n = len(self.bars)
        start = self.start_index()
        state: PositionState = Flat()

        span.set_attribute("backtest.strategy", self.strategy.name)
        span.set_attribute("backtest.bars", n)
        span.set_attribute("backtest.start_index", start)

        for i in range(start, n):
            bar = self.bars[i]

            if isinstance(state, OpenPosition):
                state = self._step_open(state, i, bar)
            else:
                state = self._step_flat(i, bar)

            if i == n - 1 and isinstance(state, OpenPosition):
                state = self._exit(
                    state, bar, self.execution.sell_price(bar.close), EXIT_END_OF_DATA
                )

            self.portfolio.mark_to_market(state, bar)

        trades = self.portfolio.trades
        span.set_attribute("backtest.trades", len(trades))
        span.set_attribute("backtest.cache_entries", len(self.cache))
        span.set_attribute("backtest.cache_hits", self.cache.hits)
        span.set_attribute("backtest.cache_misses", self.cache.misses)

        logger.info(
            f"Simulated {self.strategy.name} on {self.config.symbol}: "
            f"{n - start} bars, {len(trades)} trades, "
            f"final capital {self.portfolio.capital:,.2f} "
            f"({time.time() - started:.2f}s)"
        )

        return SimulationResult(
            bars=self.bars,
            start_index=start,
            trades=list(trades),
            equity_curve=list(self.portfolio.equity_curve),
            final_capital=self.portfolio.capital,
        )

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _step_flat(self, index: int, bar: PriceBar) -> PositionState:
        entry = evaluate_all_rules(self.strategy.entry_rules, self.bars, index, self.cache)
        if not entry.triggered:
            return Flat()

        fill = self.execution.buy_price(bar.close)
        size = self._position_size()
        quantity = size / fill if fill > 0 else 0.0
        if quantity <= 0:
            logger.debug(f"Entry signal on {bar.date} skipped: nothing to invest")
            return Flat()

        risk = self.strategy.risk_management
        atr = None
        if risk.stop_loss_type == StopLossType.ATR_BASED:
            atr = self.cache.get(IndicatorKind.ATR, index, {"period": ATR_STOP_PERIOD})
        stop = initial_stop(risk, fill, atr)

        position = self.portfolio.open(
            index=index,
            bar=bar,
            fill_price=fill,
            quantity=quantity,
            commission=self.execution.commission(fill, quantity),
            reasons=entry.reasons,
            fixed_stop=stop if risk.stop_loss_type != StopLossType.TRAILING else None,
            trailing_pct=(
                risk.stop_loss_value if risk.stop_loss_type == StopLossType.TRAILING else None
            ),
            take_profit=take_profit_level(risk, fill, stop),
        )
        logger.debug(
            f"ENTRY {bar.date} @ {fill:.2f} x {quantity:.4f} "
            f"(stop={position.stop_level()}, target={position.take_profit})"
        )
        return position

    def _step_open(self, position: OpenPosition, index: int, bar: PriceBar) -> PositionState:
        position.record_excursion(bar)

        # stop-loss first: conservative when both levels sit inside the bar
        stop = position.stop_level()
        if stop is not None and bar.low <= stop:
            return self._exit(position, bar, self.execution.sell_price(stop), EXIT_STOP_LOSS)

        target = position.take_profit
        if target is not None and bar.high >= target:
            return self._exit(
                position, bar, self.execution.sell_price(target), EXIT_TAKE_PROFIT
            )

        exit_rules = evaluate_all_rules(self.strategy.exit_rules, self.bars, index, self.cache)
        if exit_rules.triggered:
            return self._exit(
                position,
                bar,
                self.execution.sell_price(bar.close),
                REASON_SEPARATOR.join(exit_rules.reasons),
            )

        position.ratchet(bar.close)
        return position

    def _exit(
        self, position: OpenPosition, bar: PriceBar, fill: float, reason: str
    ) -> Flat:
        trade = self.portfolio.close(
            position,
            bar,
            fill_price=fill,
            commission=self.execution.commission(fill, position.quantity),
            reason=reason,
        )
        logger.debug(
            f"EXIT {bar.date} @ {fill:.2f} ({reason}) pnl={trade.pnl:,.2f} "
            f"({trade.pnl_pct:+.2f}%)"
        )
        return Flat()

    def _position_size(self) -> float:
        mode = self.strategy.position_sizing
        if mode == PositionSizingMode.KELLY and not self._kelly_warned:
            logger.warning(
                "Kelly sizing is reserved; sizing as fixed_pct "
                f"{self.strategy.position_value}% of equity"
            )
            self._kelly_warned = True
        return position_size(self.portfolio.capital, mode, self.strategy.position_value)


def simulate(
    bars: BarSeries,
    strategy: Strategy,
    config: BacktestConfig,
    execution: Optional[ExecutionModel] = None,
) -> SimulationResult:
    """Convenience wrapper: one engine, one run."""
    return BacktestEngine(bars, strategy, config, execution).run()
