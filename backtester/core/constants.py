"""Engine-wide constants for simulation, statistics and indicator thresholds.

Defines the fixed numeric parameters of the backtest pipeline:
- **Calendar**: TRADING_DAYS (252), DAYS_PER_YEAR (365.25)
- **Rule DSL**: EQUALS_TOLERANCE for the `equals` operator
- **Risk Management**: ATR stop period, fixed-amount equity cap
- **Statistics**: drawdown noise floor, CAGR year floor, Sortino fallback
- **Monte Carlo**: minimum trade count, ruin threshold

Runtime-tunable defaults (capital, costs, seeds) live in `core.config.Settings`.
"""

# ============================================================================
# CALENDAR
# ============================================================================

TRADING_DAYS = 252
DAYS_PER_YEAR = 365.25

# ============================================================================
# RULE EVALUATION
# ============================================================================

# Absolute tolerance for the `equals` operator (Supertrend == 1, Cloud == -1 ...)
EQUALS_TOLERANCE = 0.01

# ============================================================================
# RISK MANAGEMENT / SIZING
# ============================================================================

ATR_STOP_PERIOD = 14  # ATR lookback used for `atr_based` stops
FIXED_AMOUNT_EQUITY_CAP = 0.95  # fixed_amount never commits more than 95% of equity
MAX_POSITION_PCT = 100.0  # fixed_pct sizing is capped at 100% (no leverage)

# ============================================================================
# PERFORMANCE STATISTICS
# ============================================================================

DRAWDOWN_NOISE_FLOOR_PCT = 0.1  # Drawdowns below 0.1% don't count toward duration
CAGR_MIN_YEARS = 0.1  # Floor on the calendar span used for CAGR
VAR_PERCENTILE = 0.05  # Historical VaR / CVaR tail (95% confidence)
SORTINO_DOWNSIDE_FALLBACK = 0.01  # Downside deviation when there are no losers

# ============================================================================
# MONTE CARLO
# ============================================================================

MIN_MONTE_CARLO_TRADES = 5
RUIN_DRAWDOWN_PCT = 50.0  # drawdown beyond which a reshuffled path counts as ruined
EQUITY_BAND_PERCENTILES = (0.05, 0.5, 0.95)

# ============================================================================
# INDICATORS
# ============================================================================

OBV_SMA_PERIOD = 10
OBV_DEADBAND = 0.02  # +/-2% around the OBV moving average is "neutral"
OBV_MIN_BARS = 20

ICHIMOKU_TENKAN_PERIOD = 9
ICHIMOKU_KIJUN_PERIOD = 26
ICHIMOKU_SENKOU_B_PERIOD = 52

# ============================================================================
# SIGNAL DETECTION
# ============================================================================

CURRENT_SIGNAL_MIN_BARS = 100
RECENT_SIGNAL_LOOKBACK = 3
