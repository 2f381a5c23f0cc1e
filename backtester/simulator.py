"""
Strategy Backtester -- Portfolio simulator.

Walks the bar series once, holding at most one long position, and keeps
cash, the trade log, and the equity curve.

State machine
-------------

  - **FLAT** (no position).  When the entry conditions hold on bar *t*,
    buy as many whole shares as cash allows at ``close[t]``, charges
    included.  If not even one share is affordable the signal is skipped.
  - **LONG** (one position).  From the bar after entry, every bar first
    raises the high-water mark to the close, then checks exit rules in
    this order, first match wins:

      1. ``profit_target``: ``close >= entry * (1 + pct/100)``
      2. ``stop_loss``:     ``close <= entry * (1 - pct/100)``
      3. ``trailing_stop``: ``close <= high_water_mark * (1 - pct/100)``
      4. ``time_based``:    calendar days held ``>= days``

    An exit sells everything at ``close[t]``.  No new entry is taken on
    the bar of an exit.

On the final bar a position that is still open is closed at the close
and tagged ``end_of_data``, so every run finishes FLAT.  One equity
point is recorded per bar after all fills on that bar.
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import List, Optional, Sequence

from backtester.conditions import evaluate_conditions
from backtester.exceptions import ComputationError
from backtester.fees import FeeSchedule, zero_charges
from backtester.models import (
    EquityCurvePoint,
    ExitCondition,
    ExitReason,
    ExitType,
    IndicatorSnapshot,
    Position,
    PriceBar,
    StrategyCondition,
    Trade,
    TradeOutcome,
    TransactionType,
)

logger = logging.getLogger(__name__)

EXIT_CHECK_ORDER = (
    ExitType.PROFIT_TARGET,
    ExitType.STOP_LOSS,
    ExitType.TRAILING_STOP,
    ExitType.TIME_BASED,
)


class PortfolioState(Enum):
    FLAT = "flat"
    LONG = "long"


class PortfolioSimulator:
    """Single-instrument, single-lot portfolio simulator.

    Args:
        initial_capital: Starting cash.
        fee_schedule: Callable returning the charges for an order.
    """

    def __init__(
        self,
        initial_capital: float,
        fee_schedule: FeeSchedule = zero_charges,
    ) -> None:
        self.initial_capital = initial_capital
        self.cash: float = initial_capital
        self.position: Optional[Position] = None
        self.trades: List[Trade] = []
        self.equity_curve: List[EquityCurvePoint] = []
        self.signals_skipped = 0
        self._fee_schedule = fee_schedule

    @property
    def state(self) -> PortfolioState:
        return PortfolioState.FLAT if self.position is None else PortfolioState.LONG

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(
        self,
        bars: Sequence[PriceBar],
        snapshots: Sequence[IndicatorSnapshot],
        entry_conditions: Sequence[StrategyCondition],
        exit_conditions: Sequence[ExitCondition],
    ) -> None:
        """Replay *bars* with their index-aligned *snapshots*."""
        if len(bars) != len(snapshots):
            raise ComputationError(
                f"Indicator snapshots ({len(snapshots)}) do not line up "
                f"with bars ({len(bars)})"
            )

        last = len(bars) - 1
        previous: Optional[IndicatorSnapshot] = None
        for i, (bar, snapshot) in enumerate(zip(bars, snapshots)):
            self.on_bar(
                bar, snapshot, previous,
                entry_conditions, exit_conditions,
                is_last=(i == last),
            )
            previous = snapshot

    def on_bar(
        self,
        bar: PriceBar,
        snapshot: IndicatorSnapshot,
        previous: Optional[IndicatorSnapshot],
        entry_conditions: Sequence[StrategyCondition],
        exit_conditions: Sequence[ExitCondition],
        is_last: bool = False,
    ) -> None:
        """Process one bar: exits, then entries, then record equity.

        A position held coming into the bar can only exit on it; entries
        are only considered when the bar starts FLAT.
        """
        if self.position is not None:
            if bar.close > self.position.high_water_mark:
                self.position.high_water_mark = bar.close
            reason = self._check_exits(bar, exit_conditions)
            if reason is not None:
                self._close_position(bar, reason)

        elif evaluate_conditions(entry_conditions, snapshot, previous):
            self._open_position(bar)

        if is_last and self.position is not None:
            self._close_position(bar, ExitReason.END_OF_DATA)

        self._record_equity(bar)

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def _check_exits(
        self, bar: PriceBar, exit_conditions: Sequence[ExitCondition],
    ) -> Optional[ExitReason]:
        """Return the first exit rule that fires on *bar*, or ``None``."""
        pos = self.position
        close = bar.close

        for exit_type in EXIT_CHECK_ORDER:
            for cond in exit_conditions:
                if cond.type != exit_type:
                    continue
                if exit_type == ExitType.PROFIT_TARGET:
                    hit = close >= pos.entry_price * (1 + cond.value / 100.0)
                elif exit_type == ExitType.STOP_LOSS:
                    hit = close <= pos.entry_price * (1 - cond.value / 100.0)
                elif exit_type == ExitType.TRAILING_STOP:
                    hit = close <= pos.high_water_mark * (1 - cond.value / 100.0)
                else:
                    hit = (bar.date - pos.entry_date).days >= cond.value
                if hit:
                    return ExitReason(exit_type.value)
        return None

    # ------------------------------------------------------------------
    # Fills
    # ------------------------------------------------------------------

    def _charges(self, transaction_type: TransactionType, quantity: int, price: float) -> float:
        amount = float(self._fee_schedule(transaction_type, quantity, price))
        if math.isnan(amount) or amount < 0:
            raise ComputationError(
                f"Fee schedule returned an invalid amount ({amount}) for "
                f"{transaction_type.value} {quantity} @ {price}"
            )
        return amount

    def _open_position(self, bar: PriceBar) -> None:
        """Buy the largest whole quantity that cash covers, charges included."""
        price = bar.close
        if price <= 0:
            self.signals_skipped += 1
            logger.warning("Skipping entry on %s: non-positive close %.4f", bar.date, price)
            return

        qty = math.floor(self.cash / price)
        charges = self._charges(TransactionType.BUY, qty, price) if qty >= 1 else 0.0
        while qty >= 1 and qty * price + charges > self.cash:
            qty -= 1
            charges = self._charges(TransactionType.BUY, qty, price) if qty >= 1 else 0.0

        if qty < 1:
            self.signals_skipped += 1
            logger.debug(
                "Entry signal skipped on %s: cash %.2f below one share @ %.2f",
                bar.date, self.cash, price,
            )
            return

        self.cash -= qty * price + charges
        self.position = Position(
            entry_date=bar.date,
            entry_price=price,
            quantity=qty,
            entry_charges=charges,
        )
        logger.debug(
            "Entry filled: %s qty=%d @ %.2f charges=%.2f (cash=%.2f)",
            bar.date, qty, price, charges, self.cash,
        )

    def _close_position(self, bar: PriceBar, reason: ExitReason) -> None:
        pos = self.position
        price = bar.close
        charges = self._charges(TransactionType.SELL, pos.quantity, price)
        proceeds = pos.quantity * price - charges

        cost = pos.cost_basis
        pnl = proceeds - cost
        pnl_pct = pnl / cost * 100 if cost > 0 else 0.0

        trade = Trade(
            entry_date=pos.entry_date,
            exit_date=bar.date,
            entry_price=pos.entry_price,
            exit_price=price,
            quantity=pos.quantity,
            pnl=pnl,
            pnl_pct=pnl_pct,
            holding_period_days=(bar.date - pos.entry_date).days,
            outcome=TradeOutcome.WIN if pnl > 0 else TradeOutcome.LOSS,
            exit_reason=reason,
            entry_charges=pos.entry_charges,
            exit_charges=charges,
        )
        self.trades.append(trade)
        self.cash += proceeds
        self.position = None

        logger.debug(
            "Exit filled (%s): %s qty=%d @ %.2f (pnl=%.2f, cash=%.2f)",
            reason.value, bar.date, trade.quantity, price, pnl, self.cash,
        )

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def _record_equity(self, bar: PriceBar) -> None:
        if self.position is None:
            point = EquityCurvePoint(date=bar.date, cash=self.cash, position_value=0.0)
        else:
            point = EquityCurvePoint(
                date=bar.date,
                cash=self.cash,
                position_value=self.position.market_value(bar.close),
                quantity=self.position.quantity,
            )
        self.equity_curve.append(point)

    def mark_to_market(self, price: float) -> float:
        """Return total equity with the open position valued at *price*."""
        if self.position is None:
            return self.cash
        return self.cash + self.position.market_value(price)
