"""
Preset strategy templates.

Eight ready-made rule sets covering mean reversion, trend following,
momentum and volume breakouts. Presets are immutable module data; callers
get deep copies so editing a copy never leaks into the library.
"""

from typing import Dict, List

from backtester.core.models import (
    IndicatorKind as K,
    Operator as Op,
    PositionSizingMode,
    RiskManagement,
    StopLossType,
    Strategy,
    StrategyRule,
    TakeProfitType,
)

_MACD_PARAMS = {"fast": 12, "slow": 26, "signal": 9}
_BB_PARAMS = {"period": 20, "std_dev": 2}


def _rule(indicator, operator, value=0.0, params=None, compare_to=None, compare_params=None):
    return StrategyRule(
        indicator=indicator,
        operator=operator,
        value=value,
        params=params or {},
        compare_to=compare_to,
        compare_params=compare_params or {},
    )


def _risk(stop_type=StopLossType.NONE, stop=0.0, tp_type=TakeProfitType.NONE, tp=0.0):
    return RiskManagement(
        stop_loss_type=stop_type,
        stop_loss_value=stop,
        take_profit_type=tp_type,
        take_profit_value=tp,
    )


PRESET_STRATEGIES: List[Strategy] = [
    Strategy(
        id="preset-rsi-mean-reversion",
        name="RSI Mean Reversion",
        description=(
            "Buy when RSI drops below 30 (oversold), sell when RSI rises above 70 "
            "(overbought). Classic mean-reversion strategy."
        ),
        entry_rules=[_rule(K.RSI, Op.CROSSES_BELOW, 30, {"period": 14})],
        exit_rules=[_rule(K.RSI, Op.CROSSES_ABOVE, 70, {"period": 14})],
        risk_management=_risk(StopLossType.FIXED_PCT, 5),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=50,
    ),
    Strategy(
        id="preset-golden-cross",
        name="Golden Cross",
        description=(
            "Buy when SMA(50) crosses above SMA(200), sell on the inverse. "
            "Classic trend-following strategy used by institutions."
        ),
        entry_rules=[
            _rule(K.SMA, Op.CROSSES_ABOVE, params={"period": 50},
                  compare_to=K.SMA, compare_params={"period": 200}),
        ],
        exit_rules=[
            _rule(K.SMA, Op.CROSSES_BELOW, params={"period": 50},
                  compare_to=K.SMA, compare_params={"period": 200}),
        ],
        risk_management=_risk(StopLossType.TRAILING, 8),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=60,
    ),
    Strategy(
        id="preset-bollinger-bounce",
        name="Bollinger Bounce",
        description=(
            "Buy when price touches the lower Bollinger Band with RSI confirmation "
            "(< 35). Sell when price reaches the upper band."
        ),
        entry_rules=[
            _rule(K.PRICE, Op.BELOW, compare_to=K.BOLLINGER_LOWER, compare_params=_BB_PARAMS),
            _rule(K.RSI, Op.BELOW, 35, {"period": 14}),
        ],
        exit_rules=[
            _rule(K.PRICE, Op.ABOVE, compare_to=K.BOLLINGER_UPPER, compare_params=_BB_PARAMS),
        ],
        risk_management=_risk(StopLossType.ATR_BASED, 2),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=50,
    ),
    Strategy(
        id="preset-macd-momentum",
        name="MACD Momentum",
        description=(
            "Buy when MACD line crosses above signal line, sell on bearish "
            "crossover. Captures momentum shifts."
        ),
        entry_rules=[
            _rule(K.MACD, Op.CROSSES_ABOVE, params=_MACD_PARAMS,
                  compare_to=K.MACD_SIGNAL, compare_params=_MACD_PARAMS),
        ],
        exit_rules=[
            _rule(K.MACD, Op.CROSSES_BELOW, params=_MACD_PARAMS,
                  compare_to=K.MACD_SIGNAL, compare_params=_MACD_PARAMS),
        ],
        risk_management=_risk(StopLossType.FIXED_PCT, 4),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=50,
    ),
    Strategy(
        id="preset-supertrend",
        name="Supertrend Follower",
        description=(
            "Follow the Supertrend indicator: enter when it flips bullish, exit "
            "when it flips bearish. The indicator acts as a built-in stop-loss."
        ),
        entry_rules=[_rule(K.SUPERTREND, Op.EQUALS, 1, {"period": 10, "multiplier": 3})],
        exit_rules=[_rule(K.SUPERTREND, Op.EQUALS, -1, {"period": 10, "multiplier": 3})],
        risk_management=_risk(),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=50,
    ),
    Strategy(
        id="preset-ichimoku",
        name="Ichimoku Cloud",
        description=(
            "Buy when price is above the Ichimoku Cloud with a bullish TK cross "
            "(Tenkan above Kijun). Exit when price drops below cloud."
        ),
        entry_rules=[
            _rule(K.ICHIMOKU_CLOUD, Op.EQUALS, 1),
            _rule(K.ICHIMOKU_TENKAN, Op.ABOVE, compare_to=K.ICHIMOKU_KIJUN),
        ],
        exit_rules=[_rule(K.ICHIMOKU_CLOUD, Op.EQUALS, -1)],
        risk_management=_risk(StopLossType.TRAILING, 10),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=50,
    ),
    Strategy(
        id="preset-multi-indicator",
        name="Multi-Indicator Confluence",
        description=(
            "Requires 3 indicators to agree: RSI oversold, EMA crossover bullish, "
            "and ADX showing trend strength. High-probability setups."
        ),
        entry_rules=[
            _rule(K.RSI, Op.BELOW, 40, {"period": 14}),
            _rule(K.EMA, Op.ABOVE, params={"period": 9},
                  compare_to=K.EMA, compare_params={"period": 21}),
            _rule(K.ADX, Op.ABOVE, 25, {"period": 14}),
        ],
        exit_rules=[_rule(K.RSI, Op.ABOVE, 65, {"period": 14})],
        risk_management=_risk(
            StopLossType.ATR_BASED, 1.5, TakeProfitType.R_MULTIPLE, 2
        ),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=40,
    ),
    Strategy(
        id="preset-volume-breakout",
        name="Volume Breakout",
        description=(
            "Buy when price breaks above SMA(20) on above-average volume with ADX "
            "confirming trend. Captures breakout moves."
        ),
        entry_rules=[
            _rule(K.PRICE, Op.ABOVE, compare_to=K.SMA, compare_params={"period": 20}),
            _rule(K.VOLUME, Op.ABOVE, compare_to=K.VOLUME_SMA, compare_params={"period": 20}),
            _rule(K.ADX, Op.ABOVE, 20, {"period": 14}),
        ],
        exit_rules=[
            _rule(K.PRICE, Op.BELOW, compare_to=K.SMA, compare_params={"period": 20}),
        ],
        risk_management=_risk(StopLossType.FIXED_PCT, 6),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=50,
    ),
]

_BY_ID: Dict[str, Strategy] = {s.id: s for s in PRESET_STRATEGIES}
_BY_NAME: Dict[str, Strategy] = {s.name.lower(): s for s in PRESET_STRATEGIES}


def list_presets() -> List[Strategy]:
    """Deep copies of every preset, in library order."""
    return [s.model_copy(deep=True) for s in PRESET_STRATEGIES]


def get_preset_strategy(key: str) -> Strategy:
    """
    Deep copy of a preset looked up by id or (case-insensitive) name.

    Raises:
        KeyError: when no preset matches
    """
    preset = _BY_ID.get(key) or _BY_NAME.get(key.strip().lower())
    if preset is None:
        raise KeyError(f"Unknown preset strategy: {key!r}")
    return preset.model_copy(deep=True)


def create_blank_strategy() -> Strategy:
    """Empty custom strategy: no rules, 5% fixed stop, 50% of equity per trade."""
    return Strategy(
        name="Custom Strategy",
        description="Build your own strategy with custom entry and exit rules.",
        risk_management=_risk(StopLossType.FIXED_PCT, 5),
        position_sizing=PositionSizingMode.FIXED_PCT,
        position_value=50,
    )
