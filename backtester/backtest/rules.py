import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from backtester.backtest.feed import BarSeries
from backtester.backtest.indicators import IndicatorCache, format_indicator_name
from backtester.core.constants import EQUALS_TOLERANCE
from backtester.core.models import Operator, StrategyRule

logger = logging.getLogger(__name__)


@dataclass
class RuleSetResult:
    """Verdict of an AND-combined rule set plus descriptions of passing rules."""

    triggered: bool
    reasons: List[str] = field(default_factory=list)


def _format_value(value: float) -> str:
    return f"{value:g}"


def describe_rule(rule: StrategyRule) -> str:
    """Human-readable rule, e.g. `RSI(14) crosses below 30`."""
    indicator = format_indicator_name(rule.indicator, rule.params)
    operator = rule.operator.value.replace("_", " ")
    if rule.compare_to is not None:
        compare = format_indicator_name(rule.compare_to, rule.compare_params)
        return f"{indicator} {operator} {compare}"
    return f"{indicator} {operator} {_format_value(rule.value)}"


def _reference(
    rule: StrategyRule, cache: IndicatorCache, index: int
) -> Optional[float]:
    """Right-hand side of the comparison at `index`."""
    if rule.compare_to is None:
        return rule.value
    return cache.get(rule.compare_to, index, rule.compare_params)


def evaluate_rule(
    rule: StrategyRule,
    bars: BarSeries,
    index: int,
    cache: Optional[IndicatorCache] = None,
) -> bool:
    """
    Evaluate one rule at bar `index` using only bars[0..index].

    Any undefined indicator value on either side makes the rule false.
    Crossovers additionally need the previous bar and are false at index 0.
    """
    cache = cache if cache is not None else IndicatorCache(bars)

    current = cache.get(rule.indicator, index, rule.params)
    if current is None:
        return False
    reference = _reference(rule, cache, index)
    if reference is None:
        return False

    if rule.operator.is_crossover:
        if index < 1:
            return False
        previous = cache.get(rule.indicator, index - 1, rule.params)
        previous_ref = _reference(rule, cache, index - 1)
        if previous is None or previous_ref is None:
            return False
        if rule.operator == Operator.CROSSES_ABOVE:
            return previous <= previous_ref and current > reference
        return previous >= previous_ref and current < reference

    if rule.operator == Operator.ABOVE:
        return current > reference
    if rule.operator == Operator.BELOW:
        return current < reference
    if rule.operator == Operator.EQUALS:
        return abs(current - reference) < EQUALS_TOLERANCE
    raise ValueError(f"Unsupported operator: {rule.operator}")


def evaluate_all_rules(
    rules: Sequence[StrategyRule],
    bars: BarSeries,
    index: int,
    cache: Optional[IndicatorCache] = None,
) -> RuleSetResult:
    """
    AND-combine `rules` at bar `index`.

    An empty rule set never triggers. Every rule is evaluated even after the
    first failure so that `reasons` lists all passing rules.
    """
    if not rules:
        return RuleSetResult(triggered=False)

    cache = cache if cache is not None else IndicatorCache(bars)
    triggered = True
    reasons: List[str] = []

    for rule in rules:
        if evaluate_rule(rule, bars, index, cache):
            reasons.append(describe_rule(rule))
        else:
            triggered = False

    return RuleSetResult(triggered=triggered, reasons=reasons)
