"""
Strategy Backtester -- Fee schedules.

A fee schedule is any callable ``(transaction_type, quantity, price) ->
amount`` returning a non-negative charge.  The simulator only ever asks
a schedule for a number; it never computes charges itself.

The default schedule approximates Indian equity-delivery charges:

  - Brokerage: flat per order (zero-brokerage brokers: 0)
  - Exchange transaction charges: 0.00325 % of turnover
  - SEBI turnover fees: 0.0001 % of turnover
  - Stamp duty: 0.015 % of turnover, buy side only
  - GST: 18 % on brokerage + exchange charges + SEBI fees

Extension points:
  - Intraday / F&O schedules
  - Per-broker brokerage caps (e.g. min(20, 0.03 %))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from backtester.config import Settings
from backtester.models import TransactionType
from backtester.utils import round_price


FeeSchedule = Callable[[TransactionType, int, float], float]


@dataclass(frozen=True)
class ChargeBreakdown:
    """Itemised charges for one order."""
    brokerage: float
    exchange_charges: float
    sebi_charges: float
    stamp_duty: float
    gst: float
    total: float


@dataclass(frozen=True)
class EquityDeliverySchedule:
    """Percentage-of-turnover charge schedule.  Rates are in percent."""

    brokerage_flat: float = 0.0
    exchange_rate_pct: float = 0.00325
    sebi_rate_pct: float = 0.0001
    stamp_duty_pct: float = 0.015
    gst_pct: float = 18.0

    def breakdown(
        self,
        transaction_type: TransactionType,
        quantity: int,
        price: float,
    ) -> ChargeBreakdown:
        gross = quantity * price
        brokerage = self.brokerage_flat if quantity > 0 else 0.0
        exchange = gross * self.exchange_rate_pct / 100.0
        sebi = gross * self.sebi_rate_pct / 100.0
        stamp = gross * self.stamp_duty_pct / 100.0 if transaction_type == TransactionType.BUY else 0.0
        gst = (brokerage + exchange + sebi) * self.gst_pct / 100.0
        total = brokerage + exchange + sebi + stamp + gst

        return ChargeBreakdown(
            brokerage=round_price(brokerage),
            exchange_charges=round_price(exchange),
            sebi_charges=round_price(sebi),
            stamp_duty=round_price(stamp),
            gst=round_price(gst),
            total=round_price(total),
        )

    def __call__(
        self,
        transaction_type: TransactionType,
        quantity: int,
        price: float,
    ) -> float:
        return self.breakdown(transaction_type, quantity, price).total


def zero_charges(transaction_type: TransactionType, quantity: int, price: float) -> float:
    """Schedule that never charges anything."""
    return 0.0


def schedule_from_settings(settings: Settings) -> FeeSchedule:
    """Build the fee schedule named by ``settings.fee_schedule``.

    Raises:
        ValueError: If the name is not a known schedule.
    """
    name = settings.fee_schedule
    if name == "zero":
        return zero_charges
    if name == "equity_delivery":
        return EquityDeliverySchedule(
            brokerage_flat=settings.brokerage_flat,
            exchange_rate_pct=settings.exchange_rate_pct,
            sebi_rate_pct=settings.sebi_rate_pct,
            stamp_duty_pct=settings.stamp_duty_pct,
            gst_pct=settings.gst_pct,
        )
    raise ValueError(
        f"Unknown fee schedule '{name}'. Expected one of: equity_delivery, zero"
    )
