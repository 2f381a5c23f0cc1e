"""
Strategy Backtester -- Shared utilities.

Provides:
  - Run ID generation for log correlation
  - Structured logging helpers
  - Price rounding
"""

import uuid
import logging
from typing import Any


def generate_correlation_id() -> str:
    """Generate a short unique ID for tagging one backtest run.

    Returns an 8-character hex string.
    """
    return uuid.uuid4().hex[:8]


def log_structured(
    logger: logging.Logger,
    level: int,
    message: str,
    correlation_id: str,
    **fields: Any,
) -> None:
    """Emit a structured log line with a run ID and key-value fields.

    Example output::

        [abc12345] Backtest completed | symbol=INFY trades=4 final=104250.10
    """
    parts = [f"[{correlation_id}]", message]
    if fields:
        kv = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
        if kv:
            parts.append("|")
            parts.append(kv)
    logger.log(level, " ".join(parts))


def round_price(price: float) -> float:
    """Round a currency amount to 2 decimal places."""
    return round(price, 2)
