"""
Look-ahead-safe technical indicators for the rule engine.

Every indicator is a pure function of bars[0..index]. The value at bar *i*
never depends on bars after *i*, and short history yields `None` instead of
raising. Moving averages follow the usual charting conventions: EMAs and
Wilder averages are seeded with the SMA of their first window.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from backtester.backtest.feed import BarSeries, OHLCVWindow
from backtester.core.constants import (
    ICHIMOKU_KIJUN_PERIOD,
    ICHIMOKU_SENKOU_B_PERIOD,
    ICHIMOKU_TENKAN_PERIOD,
    OBV_DEADBAND,
    OBV_MIN_BARS,
    OBV_SMA_PERIOD,
)
from backtester.core.models import IndicatorKind

logger = logging.getLogger(__name__)

Params = Mapping[str, float]

# ============================================================================
# PARAMETER DEFAULTS
# ============================================================================

DEFAULT_PARAMS: Dict[IndicatorKind, Dict[str, float]] = {
    IndicatorKind.RSI: {"period": 14},
    IndicatorKind.SMA: {"period": 20},
    IndicatorKind.EMA: {"period": 21},
    IndicatorKind.MACD: {"fast": 12, "slow": 26, "signal": 9},
    IndicatorKind.MACD_SIGNAL: {"fast": 12, "slow": 26, "signal": 9},
    IndicatorKind.MACD_HISTOGRAM: {"fast": 12, "slow": 26, "signal": 9},
    IndicatorKind.BOLLINGER_UPPER: {"period": 20, "std_dev": 2},
    IndicatorKind.BOLLINGER_MIDDLE: {"period": 20, "std_dev": 2},
    IndicatorKind.BOLLINGER_LOWER: {"period": 20, "std_dev": 2},
    IndicatorKind.ATR: {"period": 14},
    IndicatorKind.ADX: {"period": 14},
    IndicatorKind.STOCH_RSI_K: {"period": 14, "stoch_period": 14, "k": 3, "d": 3},
    IndicatorKind.STOCH_RSI_D: {"period": 14, "stoch_period": 14, "k": 3, "d": 3},
    IndicatorKind.SUPERTREND: {"period": 10, "multiplier": 3},
    IndicatorKind.VWAP: {"lookback": 20},
    IndicatorKind.VOLUME_SMA: {"period": 20},
}

# camelCase keys accepted from editor payloads
_PARAM_ALIASES = {"std_dev": "stdDev", "stoch_period": "stochPeriod"}


def _param(kind: IndicatorKind, params: Optional[Params], key: str) -> float:
    """Read a parameter; 0 or missing falls back to the kind's default."""
    params = params or {}
    value = params.get(key) or params.get(_PARAM_ALIASES.get(key, key))
    if not value:
        value = DEFAULT_PARAMS[kind][key]
        if key == "stoch_period":
            value = _param(kind, params, "period")
    return float(value)


def _period(kind: IndicatorKind, params: Optional[Params], key: str = "period") -> int:
    return max(1, int(_param(kind, params, key)))


# ============================================================================
# SMOOTHING PRIMITIVES
# ============================================================================


def _seeded_ewm(values: np.ndarray, period: int, alpha: float) -> np.ndarray:
    """
    Exponential smoothing seeded with the SMA of the first `period` values.

    Output is aligned to values[period-1:]; empty when there is not enough
    data for the seed.
    """
    if len(values) < period:
        return np.array([], dtype=float)
    tail = pd.Series(values[period - 1 :], dtype=float)
    tail.iloc[0] = float(np.mean(values[:period]))
    return tail.ewm(alpha=alpha, adjust=False).mean().to_numpy()


def _ema(values: np.ndarray, period: int) -> np.ndarray:
    return _seeded_ewm(values, period, 2.0 / (period + 1))


def _wilder(values: np.ndarray, period: int) -> np.ndarray:
    return _seeded_ewm(values, period, 1.0 / period)


def _true_range(w: OHLCVWindow) -> np.ndarray:
    """True range for bars 1..n-1 (needs a previous close)."""
    prev_close = w.closes[:-1]
    high, low = w.highs[1:], w.lows[1:]
    return np.maximum.reduce(
        [high - low, np.abs(high - prev_close), np.abs(low - prev_close)]
    )


def _atr_series(w: OHLCVWindow, period: int) -> np.ndarray:
    return _wilder(_true_range(w), period)


def _rsi_series(closes: np.ndarray, period: int) -> np.ndarray:
    deltas = np.diff(closes)
    avg_gain = _wilder(np.clip(deltas, 0.0, None), period)
    avg_loss = _wilder(np.clip(-deltas, 0.0, None), period)
    with np.errstate(divide="ignore", invalid="ignore"):
        rs = avg_gain / avg_loss
        rsi = 100.0 - 100.0 / (1.0 + rs)
    return np.where(avg_loss == 0, 100.0, rsi)


def _midline(highs: np.ndarray, lows: np.ndarray, period: int) -> float:
    return float((highs[-period:].max() + lows[-period:].min()) / 2.0)


def _last(values: np.ndarray) -> Optional[float]:
    if len(values) == 0 or not np.isfinite(values[-1]):
        return None
    return float(values[-1])


# ============================================================================
# INDICATOR FUNCTIONS
# ============================================================================


def _rsi(w: OHLCVWindow, params: Params) -> Optional[float]:
    return _last(_rsi_series(w.closes, _period(IndicatorKind.RSI, params)))


def _sma(w: OHLCVWindow, params: Params) -> Optional[float]:
    period = _period(IndicatorKind.SMA, params)
    return float(w.closes[-period:].mean())


def _ema_last(w: OHLCVWindow, params: Params) -> Optional[float]:
    return _last(_ema(w.closes, _period(IndicatorKind.EMA, params)))


def _macd_lines(
    w: OHLCVWindow, kind: IndicatorKind, params: Params
) -> Tuple[np.ndarray, np.ndarray]:
    fast = _period(kind, params, "fast")
    slow = _period(kind, params, "slow")
    signal = _period(kind, params, "signal")
    fast_ema = _ema(w.closes, fast)
    slow_ema = _ema(w.closes, slow)
    # align both EMAs on the bar where the longer one becomes defined
    overlap = min(len(fast_ema), len(slow_ema))
    macd = fast_ema[len(fast_ema) - overlap :] - slow_ema[len(slow_ema) - overlap :]
    return macd, _ema(macd, signal)


def _macd(w: OHLCVWindow, params: Params) -> Optional[float]:
    macd, _ = _macd_lines(w, IndicatorKind.MACD, params)
    return _last(macd)


def _macd_signal(w: OHLCVWindow, params: Params) -> Optional[float]:
    _, signal = _macd_lines(w, IndicatorKind.MACD_SIGNAL, params)
    return _last(signal)


def _macd_histogram(w: OHLCVWindow, params: Params) -> Optional[float]:
    macd, signal = _macd_lines(w, IndicatorKind.MACD_HISTOGRAM, params)
    if len(signal) == 0:
        return None
    return _last(macd[-len(signal) :] - signal)


def _bollinger(w: OHLCVWindow, kind: IndicatorKind, params: Params, side: int) -> float:
    period = _period(kind, params)
    k = _param(kind, params, "std_dev")
    window = w.closes[-period:]
    middle = window.mean()
    sigma = window.std()  # population
    return float(middle + side * k * sigma)


def _bollinger_upper(w: OHLCVWindow, params: Params) -> Optional[float]:
    return _bollinger(w, IndicatorKind.BOLLINGER_UPPER, params, 1)


def _bollinger_middle(w: OHLCVWindow, params: Params) -> Optional[float]:
    return _bollinger(w, IndicatorKind.BOLLINGER_MIDDLE, params, 0)


def _bollinger_lower(w: OHLCVWindow, params: Params) -> Optional[float]:
    return _bollinger(w, IndicatorKind.BOLLINGER_LOWER, params, -1)


def _atr(w: OHLCVWindow, params: Params) -> Optional[float]:
    return _last(_atr_series(w, _period(IndicatorKind.ATR, params)))


def _adx(w: OHLCVWindow, params: Params) -> Optional[float]:
    period = _period(IndicatorKind.ADX, params)

    up_move = np.diff(w.highs)
    down_move = -np.diff(w.lows)
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)

    tr = _wilder(_true_range(w), period)
    plus = _wilder(plus_dm, period)
    minus = _wilder(minus_dm, period)

    with np.errstate(divide="ignore", invalid="ignore"):
        plus_di = np.where(tr > 0, 100.0 * plus / tr, 0.0)
        minus_di = np.where(tr > 0, 100.0 * minus / tr, 0.0)
        di_sum = plus_di + minus_di
        dx = np.where(di_sum > 0, 100.0 * np.abs(plus_di - minus_di) / di_sum, 0.0)

    return _last(_wilder(dx, period))


def _stoch_rsi_frame(w: OHLCVWindow, kind: IndicatorKind, params: Params) -> pd.DataFrame:
    rsi = pd.Series(_rsi_series(w.closes, _period(kind, params)))
    stoch_period = _period(kind, params, "stoch_period")
    lo = rsi.rolling(stoch_period).min()
    hi = rsi.rolling(stoch_period).max()
    span = hi - lo
    # flat RSI window has no defined stochastic position
    stoch = ((rsi - lo) / span.where(span > 0)) * 100.0
    k = stoch.rolling(_period(kind, params, "k")).mean()
    d = k.rolling(_period(kind, params, "d")).mean()
    return pd.DataFrame({"k": k, "d": d})


def _stoch_rsi_k(w: OHLCVWindow, params: Params) -> Optional[float]:
    frame = _stoch_rsi_frame(w, IndicatorKind.STOCH_RSI_K, params)
    return _last(frame["k"].to_numpy())


def _stoch_rsi_d(w: OHLCVWindow, params: Params) -> Optional[float]:
    frame = _stoch_rsi_frame(w, IndicatorKind.STOCH_RSI_D, params)
    return _last(frame["d"].to_numpy())


def _supertrend(w: OHLCVWindow, params: Params) -> Optional[float]:
    """Direction of the Supertrend: +1 bullish, -1 bearish."""
    period = _period(IndicatorKind.SUPERTREND, params)
    multiplier = _param(IndicatorKind.SUPERTREND, params, "multiplier")
    atr = _atr_series(w, period)
    if len(atr) == 0:
        return None

    offset = len(w.closes) - len(atr)
    prev_close = w.closes[0]
    prev_upper, prev_lower = np.inf, -np.inf
    direction = 1

    for i, atr_value in enumerate(atr):
        idx = offset + i
        hl2 = (w.highs[idx] + w.lows[idx]) / 2.0
        upper = hl2 + multiplier * atr_value
        lower = hl2 - multiplier * atr_value

        # bands only ratchet toward price unless the previous close broke them
        if not (lower > prev_lower or prev_close < prev_lower):
            lower = prev_lower
        if not (upper < prev_upper or prev_close > prev_upper):
            upper = prev_upper

        close = w.closes[idx]
        if direction == 1 and close < lower:
            direction = -1
        elif direction == -1 and close > upper:
            direction = 1

        prev_close, prev_upper, prev_lower = close, upper, lower

    return float(direction)


def _obv_trend(w: OHLCVWindow, params: Params) -> Optional[float]:
    """+1 when OBV runs above its SMA, -1 below, 0 inside the deadband."""
    signs = np.sign(np.diff(w.closes))
    obv = np.concatenate([[0.0], np.cumsum(signs * w.volumes[1:])])
    obv_sma = pd.Series(obv).rolling(OBV_SMA_PERIOD).mean().dropna()
    if len(obv_sma) < 2:
        return 0.0

    current = obv[-1]
    baseline = float(obv_sma.iloc[-1])
    band = abs(baseline) * OBV_DEADBAND
    if current > baseline + band:
        return 1.0
    if current < baseline - band:
        return -1.0
    return 0.0


def _vwap(w: OHLCVWindow, params: Params) -> Optional[float]:
    lookback = _period(IndicatorKind.VWAP, params, "lookback")
    typical = (w.highs[-lookback:] + w.lows[-lookback:] + w.closes[-lookback:]) / 3.0
    volume = w.volumes[-lookback:]
    total = volume.sum()
    if total <= 0:
        return float(w.closes[-1])
    return float((typical * volume).sum() / total)


def _ichimoku_tenkan(w: OHLCVWindow, params: Params) -> Optional[float]:
    return _midline(w.highs, w.lows, ICHIMOKU_TENKAN_PERIOD)


def _ichimoku_kijun(w: OHLCVWindow, params: Params) -> Optional[float]:
    return _midline(w.highs, w.lows, ICHIMOKU_KIJUN_PERIOD)


def _ichimoku_cloud(w: OHLCVWindow, params: Params) -> Optional[float]:
    """Close position against the (undisplaced) cloud: +1 above, -1 below, 0 inside."""
    tenkan = _midline(w.highs, w.lows, ICHIMOKU_TENKAN_PERIOD)
    kijun = _midline(w.highs, w.lows, ICHIMOKU_KIJUN_PERIOD)
    span_a = (tenkan + kijun) / 2.0
    span_b = _midline(w.highs, w.lows, ICHIMOKU_SENKOU_B_PERIOD)

    price = w.closes[-1]
    if price > max(span_a, span_b):
        return 1.0
    if price < min(span_a, span_b):
        return -1.0
    return 0.0


def _price(w: OHLCVWindow, params: Params) -> Optional[float]:
    return float(w.closes[-1])


def _volume(w: OHLCVWindow, params: Params) -> Optional[float]:
    return float(w.volumes[-1])


def _volume_sma(w: OHLCVWindow, params: Params) -> Optional[float]:
    period = _period(IndicatorKind.VOLUME_SMA, params)
    return float(w.volumes[-period:].mean())


# ============================================================================
# DISPATCH
# ============================================================================

IndicatorFn = Callable[[OHLCVWindow, Params], Optional[float]]

_INDICATORS: Dict[IndicatorKind, IndicatorFn] = {
    IndicatorKind.RSI: _rsi,
    IndicatorKind.SMA: _sma,
    IndicatorKind.EMA: _ema_last,
    IndicatorKind.MACD: _macd,
    IndicatorKind.MACD_SIGNAL: _macd_signal,
    IndicatorKind.MACD_HISTOGRAM: _macd_histogram,
    IndicatorKind.BOLLINGER_UPPER: _bollinger_upper,
    IndicatorKind.BOLLINGER_MIDDLE: _bollinger_middle,
    IndicatorKind.BOLLINGER_LOWER: _bollinger_lower,
    IndicatorKind.ATR: _atr,
    IndicatorKind.ADX: _adx,
    IndicatorKind.STOCH_RSI_K: _stoch_rsi_k,
    IndicatorKind.STOCH_RSI_D: _stoch_rsi_d,
    IndicatorKind.SUPERTREND: _supertrend,
    IndicatorKind.OBV_TREND: _obv_trend,
    IndicatorKind.VWAP: _vwap,
    IndicatorKind.ICHIMOKU_TENKAN: _ichimoku_tenkan,
    IndicatorKind.ICHIMOKU_KIJUN: _ichimoku_kijun,
    IndicatorKind.ICHIMOKU_CLOUD: _ichimoku_cloud,
    IndicatorKind.PRICE: _price,
    IndicatorKind.VOLUME: _volume,
    IndicatorKind.VOLUME_SMA: _volume_sma,
}

_unmapped = set(IndicatorKind) - set(_INDICATORS)
if _unmapped:
    raise RuntimeError(f"Indicator kinds without an implementation: {sorted(_unmapped)}")


def min_history(kind: IndicatorKind, params: Optional[Params] = None) -> int:
    """Number of bars needed before `kind` is defined (value at index min_history-1)."""
    kind = IndicatorKind(kind)
    if kind in (IndicatorKind.RSI, IndicatorKind.ATR, IndicatorKind.SUPERTREND):
        return _period(kind, params) + 1
    if kind in (
        IndicatorKind.SMA,
        IndicatorKind.EMA,
        IndicatorKind.VOLUME_SMA,
        IndicatorKind.BOLLINGER_UPPER,
        IndicatorKind.BOLLINGER_MIDDLE,
        IndicatorKind.BOLLINGER_LOWER,
    ):
        return _period(kind, params)
    if kind in (IndicatorKind.MACD, IndicatorKind.MACD_SIGNAL, IndicatorKind.MACD_HISTOGRAM):
        return _period(kind, params, "slow") + _period(kind, params, "signal")
    if kind == IndicatorKind.ADX:
        return 2 * _period(kind, params)
    if kind in (IndicatorKind.STOCH_RSI_K, IndicatorKind.STOCH_RSI_D):
        bars = (
            _period(kind, params)
            + _period(kind, params, "stoch_period")
            + _period(kind, params, "k")
            - 1
        )
        if kind == IndicatorKind.STOCH_RSI_D:
            bars += _period(kind, params, "d") - 1
        return bars
    if kind == IndicatorKind.OBV_TREND:
        return OBV_MIN_BARS
    if kind == IndicatorKind.VWAP:
        return _period(kind, params, "lookback")
    if kind == IndicatorKind.ICHIMOKU_TENKAN:
        return ICHIMOKU_TENKAN_PERIOD
    if kind == IndicatorKind.ICHIMOKU_KIJUN:
        return ICHIMOKU_KIJUN_PERIOD
    if kind == IndicatorKind.ICHIMOKU_CLOUD:
        return ICHIMOKU_SENKOU_B_PERIOD
    return 1


def compute_indicator(
    kind: IndicatorKind,
    bars: BarSeries,
    index: int,
    params: Optional[Params] = None,
) -> Optional[float]:
    """
    Value of `kind` at bar `index`, computed from bars[0..index] only.

    Returns None when the index is out of range or the history is shorter
    than `min_history(kind, params)`.
    """
    if index < 0 or index >= len(bars):
        return None
    kind = IndicatorKind(kind)
    if index + 1 < min_history(kind, params):
        return None
    return _INDICATORS[kind](bars.window(index), params or {})


class IndicatorCache:
    """
    Memoises indicator values for one simulation run.

    Keys are (kind, params, index). A value at index i only ever depends on
    bars 0..i, so memoisation never exposes future data. Create one cache per
    run; it must not be shared across different bar series.
    """

    def __init__(self, bars: BarSeries):
        self.bars = bars
        self._values: Dict[Tuple, Optional[float]] = {}
        self.hits = 0
        self.misses = 0

    def get(
        self, kind: IndicatorKind, index: int, params: Optional[Params] = None
    ) -> Optional[float]:
        key = (IndicatorKind(kind), tuple(sorted((params or {}).items())), index)
        if key in self._values:
            self.hits += 1
            return self._values[key]
        self.misses += 1
        value = compute_indicator(kind, self.bars, index, params)
        self._values[key] = value
        return value

    def __len__(self) -> int:
        return len(self._values)


# ============================================================================
# DISPLAY
# ============================================================================

_FIXED_NAMES = {
    IndicatorKind.MACD: "MACD",
    IndicatorKind.MACD_SIGNAL: "MACD Signal",
    IndicatorKind.MACD_HISTOGRAM: "MACD Hist",
    IndicatorKind.OBV_TREND: "OBV Trend",
    IndicatorKind.VWAP: "VWAP",
    IndicatorKind.ICHIMOKU_TENKAN: "Tenkan",
    IndicatorKind.ICHIMOKU_KIJUN: "Kijun",
    IndicatorKind.ICHIMOKU_CLOUD: "Cloud",
    IndicatorKind.PRICE: "Price",
    IndicatorKind.VOLUME: "Volume",
}

_PERIOD_LABELS = {
    IndicatorKind.RSI: "RSI",
    IndicatorKind.SMA: "SMA",
    IndicatorKind.EMA: "EMA",
    IndicatorKind.BOLLINGER_UPPER: "BB Upper",
    IndicatorKind.BOLLINGER_MIDDLE: "BB Mid",
    IndicatorKind.BOLLINGER_LOWER: "BB Lower",
    IndicatorKind.SUPERTREND: "ST",
    IndicatorKind.ADX: "ADX",
    IndicatorKind.STOCH_RSI_K: "StochRSI K",
    IndicatorKind.STOCH_RSI_D: "StochRSI D",
    IndicatorKind.ATR: "ATR",
    IndicatorKind.VOLUME_SMA: "Vol SMA",
}


def format_indicator_name(kind: IndicatorKind, params: Optional[Params] = None) -> str:
    """Short display name, e.g. `RSI(14)`, `SMA(200)`, `MACD Signal`."""
    kind = IndicatorKind(kind)
    if kind in _FIXED_NAMES:
        return _FIXED_NAMES[kind]
    return f"{_PERIOD_LABELS[kind]}({_period(kind, params)})"


@dataclass(frozen=True)
class IndicatorOption:
    value: IndicatorKind
    label: str
    category: str  # momentum | trend | volatility | volume | price
    description: str
    default_params: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "value": self.value.value,
            "label": self.label,
            "category": self.category,
            "default_params": dict(self.default_params),
            "description": self.description,
        }


def _option(kind: IndicatorKind, label: str, category: str, description: str) -> IndicatorOption:
    return IndicatorOption(
        value=kind,
        label=label,
        category=category,
        description=description,
        default_params=dict(DEFAULT_PARAMS.get(kind, {})),
    )


AVAILABLE_INDICATORS: List[IndicatorOption] = [
    # Momentum
    _option(IndicatorKind.RSI, "RSI", "momentum", "Relative Strength Index, overbought/oversold oscillator"),
    _option(IndicatorKind.STOCH_RSI_K, "Stoch RSI %K", "momentum", "Stochastic RSI K line, more sensitive than RSI"),
    _option(IndicatorKind.STOCH_RSI_D, "Stoch RSI %D", "momentum", "Stochastic RSI D line (signal)"),
    _option(IndicatorKind.MACD, "MACD Line", "momentum", "MACD line value"),
    _option(IndicatorKind.MACD_SIGNAL, "MACD Signal", "momentum", "MACD signal line"),
    _option(IndicatorKind.MACD_HISTOGRAM, "MACD Histogram", "momentum", "MACD histogram (momentum)"),
    # Trend
    _option(IndicatorKind.SMA, "SMA", "trend", "Simple Moving Average"),
    _option(IndicatorKind.EMA, "EMA", "trend", "Exponential Moving Average"),
    _option(IndicatorKind.SUPERTREND, "Supertrend", "trend", "Supertrend direction (1=buy, -1=sell)"),
    _option(IndicatorKind.ADX, "ADX", "trend", "Average Directional Index, trend strength"),
    _option(IndicatorKind.ICHIMOKU_TENKAN, "Ichimoku Tenkan", "trend", "Ichimoku Conversion Line (9-period)"),
    _option(IndicatorKind.ICHIMOKU_KIJUN, "Ichimoku Kijun", "trend", "Ichimoku Base Line (26-period)"),
    _option(IndicatorKind.ICHIMOKU_CLOUD, "Ichimoku Cloud", "trend", "Cloud position (1=above, -1=below, 0=inside)"),
    # Volatility
    _option(IndicatorKind.BOLLINGER_UPPER, "BB Upper", "volatility", "Bollinger Band upper"),
    _option(IndicatorKind.BOLLINGER_LOWER, "BB Lower", "volatility", "Bollinger Band lower"),
    _option(IndicatorKind.BOLLINGER_MIDDLE, "BB Middle", "volatility", "Bollinger Band middle (SMA)"),
    _option(IndicatorKind.ATR, "ATR", "volatility", "Average True Range, volatility measure"),
    # Volume
    _option(IndicatorKind.VOLUME, "Volume", "volume", "Current bar volume"),
    _option(IndicatorKind.VOLUME_SMA, "Volume SMA", "volume", "Volume moving average"),
    _option(IndicatorKind.OBV_TREND, "OBV Trend", "volume", "On-Balance Volume trend (1=bull, -1=bear)"),
    _option(IndicatorKind.VWAP, "VWAP", "volume", "Volume Weighted Average Price"),
    # Price
    _option(IndicatorKind.PRICE, "Price", "price", "Current closing price"),
]
