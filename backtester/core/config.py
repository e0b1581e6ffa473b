"""Application configuration via Pydantic Settings (12-Factor App compliance).

Centralized environment-driven defaults for:
- Backtest economics (starting capital, commission, slippage)
- Statistics (annual risk-free rate used by Sharpe/Sortino)
- Monte Carlo (simulation count, run seed, ruin threshold, worker threads)
- Logging and telemetry endpoints (OpenTelemetry)

All settings can be overridden via environment variables or .env file.
Per-run values on `BacktestConfig` always win over these defaults.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backtester.core.constants import RUIN_DRAWDOWN_PCT


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # --- App Info ---
    PROJECT_NAME: str = "Strategy Backtester"
    VERSION: str = "0.4.0"
    LOG_LEVEL: str = "INFO"

    # --- Backtest Economics ---
    INITIAL_CAPITAL: float = Field(default=100000.0, gt=0)
    COMMISSION_PCT: float = Field(default=0.03, ge=0)  # 0.03% per side
    SLIPPAGE_PCT: float = Field(default=0.05, ge=0)  # 0.05% per fill

    # --- Statistics ---
    # Annual risk-free rate in percent (India 10Y ~6.5%), de-annualized by 252
    RISK_FREE_RATE_PCT: float = 6.5

    # --- Monte Carlo ---
    MONTE_CARLO_SIMULATIONS: int = Field(default=1000, ge=0)
    MONTE_CARLO_SEED: Optional[int] = Field(default=None, ge=0)
    MONTE_CARLO_WORKERS: int = Field(default=1, ge=1)
    RUIN_THRESHOLD_PCT: float = Field(default=RUIN_DRAWDOWN_PCT, gt=0, le=100)

    # --- Telemetry ---
    OTEL_SERVICE_NAME: str = "strategy-backtester"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return str(v).upper() if v else "INFO"


settings = Settings()
