"""
Strategy Backtester -- Settings.

Values come from environment variables, with an optional ``.env`` file
at the repository root loaded first (existing environment variables
win).  Defaults are chosen so a bare checkout runs without any
configuration.

Keys::

    BACKTEST_RISK_FREE_RATE     annual risk-free rate, percent (0.0)
    BACKTEST_DEFAULT_CAPITAL    capital when a request omits it (100000)
    BACKTEST_MAX_PERIOD_DAYS    longest range the HTTP API accepts (730, 0 = no limit)
    BACKTEST_RESULTS_PATH       JSON file for stored results (unset = memory only)
    BACKTEST_FEE_SCHEDULE       "equity_delivery" or "zero"
    BACKTEST_BROKERAGE_FLAT     flat brokerage per order (0.0)
    BACKTEST_EXCHANGE_RATE_PCT  exchange transaction charge, % of turnover (0.00325)
    BACKTEST_SEBI_RATE_PCT      SEBI turnover fee, % of turnover (0.0001)
    BACKTEST_STAMP_DUTY_PCT     stamp duty on buys, % of turnover (0.015)
    BACKTEST_GST_PCT            GST on brokerage + exchange + SEBI, % (18.0)
    BACKTEST_API_PORT           port for the HTTP API (5050)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

# Path to the .env file (repo root)
ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


def _env_float(key: str, default: str) -> float:
    """Read a float from an environment variable with a fallback default."""
    return float(os.environ.get(key, default))


def _env_int(key: str, default: str) -> int:
    return int(os.environ.get(key, default))


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings."""

    risk_free_rate: float = 0.0
    default_initial_capital: float = 100_000.0
    max_period_days: int = 730
    results_path: Optional[str] = None
    fee_schedule: str = "equity_delivery"

    # Fee schedule rates
    brokerage_flat: float = 0.0
    exchange_rate_pct: float = 0.00325
    sebi_rate_pct: float = 0.0001
    stamp_duty_pct: float = 0.015
    gst_pct: float = 18.0

    api_port: int = 5050


def load_settings(env_path: Union[str, Path, None] = ENV_PATH) -> Settings:
    """Build :class:`Settings` from the environment.

    Args:
        env_path: ``.env`` file to load first.  Missing files are ignored;
            pass ``None`` to skip loading entirely.
    """
    if env_path is not None:
        load_dotenv(env_path)

    return Settings(
        risk_free_rate=_env_float("BACKTEST_RISK_FREE_RATE", "0.0"),
        default_initial_capital=_env_float("BACKTEST_DEFAULT_CAPITAL", "100000"),
        max_period_days=_env_int("BACKTEST_MAX_PERIOD_DAYS", "730"),
        results_path=os.environ.get("BACKTEST_RESULTS_PATH") or None,
        fee_schedule=os.environ.get("BACKTEST_FEE_SCHEDULE", "equity_delivery").strip().lower(),
        brokerage_flat=_env_float("BACKTEST_BROKERAGE_FLAT", "0.0"),
        exchange_rate_pct=_env_float("BACKTEST_EXCHANGE_RATE_PCT", "0.00325"),
        sebi_rate_pct=_env_float("BACKTEST_SEBI_RATE_PCT", "0.0001"),
        stamp_duty_pct=_env_float("BACKTEST_STAMP_DUTY_PCT", "0.015"),
        gst_pct=_env_float("BACKTEST_GST_PCT", "18.0"),
        api_port=_env_int("BACKTEST_API_PORT", "5050"),
    )
