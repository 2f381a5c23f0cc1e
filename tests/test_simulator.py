"""
Tests for the portfolio simulator.
"""

import pytest
from datetime import date, timedelta

from backtester.exceptions import ComputationError
from backtester.fees import EquityDeliverySchedule
from backtester.indicators import compute_indicators
from backtester.models import (
    ExitCondition,
    ExitReason,
    ExitType,
    Indicator,
    Operator,
    PriceBar,
    SeriesRef,
    StrategyCondition,
    TradeOutcome,
    TransactionType,
)
from backtester.simulator import PortfolioSimulator, PortfolioState


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_bars(closes, start=date(2024, 1, 1)):
    return [
        PriceBar(
            date=start + timedelta(days=i),
            open=c, high=c + 1.0, low=c - 1.0, close=c,
        )
        for i, c in enumerate(closes)
    ]


def _run(closes, entry, exits, capital=100_000.0, fee_schedule=None):
    bars = _make_bars(closes)
    sim = (
        PortfolioSimulator(capital) if fee_schedule is None
        else PortfolioSimulator(capital, fee_schedule)
    )
    sim.run(bars, compute_indicators(bars), entry, exits)
    return sim


def _rsi_dip_closes():
    """Rise to 114, sell off to 90 (RSI ~29), then recover to 101.5."""
    closes = [100.0 + i for i in range(15)]
    closes += [114.0 - 3 * k for k in range(1, 9)]
    closes += [92.0, 95.0, 97.5, 99.5, 100.8, 101.5]
    return closes


def _sma_cross_closes():
    """Slide from 100 to 88, jump to 95 (crosses SMA20), then fall to 87."""
    closes = [100.0 - 0.5 * i for i in range(25)]
    closes += [95.0, 96.0, 93.0, 90.2, 88.0, 87.0]
    return closes


ALWAYS = [StrategyCondition(Indicator.PRICE, Operator.GT, 0)]
NEVER = [StrategyCondition(Indicator.RSI, Operator.LT, 0)]
RSI_BELOW_30 = [StrategyCondition(Indicator.RSI, Operator.LT, 30)]
PRICE_CROSSES_SMA20 = [
    StrategyCondition(Indicator.PRICE, Operator.CROSSOVER, SeriesRef.SMA20),
]


def _exit(exit_type, value):
    return ExitCondition(type=exit_type, value=value)


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

class TestEntries:
    def test_rsi_dip_entry_and_profit_target(self):
        sim = _run(_rsi_dip_closes(), RSI_BELOW_30, [_exit(ExitType.PROFIT_TARGET, 10)])

        assert len(sim.trades) == 1
        trade = sim.trades[0]
        assert trade.entry_price == 90.0
        assert trade.entry_date == date(2024, 1, 23)
        assert trade.quantity == 1111
        assert trade.exit_price == 99.5
        assert trade.exit_reason == ExitReason.PROFIT_TARGET
        assert trade.outcome == TradeOutcome.WIN
        assert trade.holding_period_days == 4
        assert trade.pnl == pytest.approx(1111 * 9.5)
        assert trade.pnl_pct == pytest.approx(9.5 / 90 * 100)

    def test_never_true_condition_no_trades(self):
        closes = _rsi_dip_closes()
        sim = _run(closes, NEVER, [_exit(ExitType.PROFIT_TARGET, 10)])
        assert sim.trades == []
        assert len(sim.equity_curve) == len(closes)
        assert all(p.portfolio_value == 100_000.0 for p in sim.equity_curve)

    def test_quantity_is_whole_shares(self):
        sim = _run([30.0, 31.0], ALWAYS, [_exit(ExitType.PROFIT_TARGET, 50)], capital=1000.0)
        assert sim.trades[0].quantity == 33
        assert sim.equity_curve[0].cash == pytest.approx(10.0)

    def test_insufficient_capital_skips(self):
        sim = _run([100.0, 101.0, 102.0], ALWAYS, [_exit(ExitType.STOP_LOSS, 5)], capital=50.0)
        assert sim.trades == []
        assert sim.signals_skipped == 3
        assert sim.equity_curve[-1].cash == 50.0

    def test_charges_reduce_quantity(self):
        sim = _run(
            _rsi_dip_closes(), RSI_BELOW_30, [_exit(ExitType.PROFIT_TARGET, 10)],
            fee_schedule=EquityDeliverySchedule(),
        )
        trade = sim.trades[0]
        # 1111 shares @ 90 plus charges would exceed the cash
        assert trade.quantity == 1110
        assert trade.entry_charges > 0
        assert trade.exit_charges > 0
        assert trade.pnl_pct < 9.5 / 90 * 100
        assert trade.pnl == pytest.approx(
            1110 * 9.5 - trade.entry_charges - trade.exit_charges
        )


# ---------------------------------------------------------------------------
# Exits
# ---------------------------------------------------------------------------

class TestExits:
    def test_stop_loss_on_sma_cross(self):
        sim = _run(_sma_cross_closes(), PRICE_CROSSES_SMA20, [_exit(ExitType.STOP_LOSS, 5)])

        assert len(sim.trades) == 1
        trade = sim.trades[0]
        assert trade.entry_price == 95.0
        assert trade.quantity == 1052
        assert trade.exit_price == 90.2
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.outcome == TradeOutcome.LOSS
        assert trade.pnl == pytest.approx(1052 * (90.2 - 95.0))

    def test_trailing_stop(self):
        sim = _run(
            [100.0, 110.0, 120.0, 113.0, 115.0],
            ALWAYS, [_exit(ExitType.TRAILING_STOP, 5)],
        )
        first = sim.trades[0]
        assert first.exit_reason == ExitReason.TRAILING_STOP
        assert first.exit_price == 113.0
        assert first.exit_date == date(2024, 1, 4)

    def test_time_based_and_reentry_next_bar(self):
        sim = _run(
            [100.0] * 9, ALWAYS, [_exit(ExitType.TIME_BASED, 3)],
        )
        assert [t.exit_reason for t in sim.trades[:2]] == [
            ExitReason.TIME_BASED, ExitReason.TIME_BASED,
        ]
        first, second = sim.trades[0], sim.trades[1]
        assert first.entry_date == date(2024, 1, 1)
        assert first.exit_date == date(2024, 1, 4)
        assert first.holding_period_days == 3
        # No re-entry on the exit bar
        assert second.entry_date == date(2024, 1, 5)

    def test_profit_target_wins_tie(self):
        sim = _run(
            [100.0, 106.0, 107.0], ALWAYS,
            [_exit(ExitType.TIME_BASED, 1), _exit(ExitType.PROFIT_TARGET, 5)],
        )
        assert sim.trades[0].exit_reason == ExitReason.PROFIT_TARGET

    def test_stop_loss_before_time_based(self):
        sim = _run(
            [100.0, 90.0, 91.0], ALWAYS,
            [_exit(ExitType.TIME_BASED, 1), _exit(ExitType.STOP_LOSS, 5)],
        )
        assert sim.trades[0].exit_reason == ExitReason.STOP_LOSS

    def test_no_exit_on_entry_bar(self):
        # A 0.0001 % target would fire at once if checked on the entry bar
        sim = _run([100.0, 100.0, 100.5], ALWAYS, [_exit(ExitType.PROFIT_TARGET, 0.0001)])
        trade = sim.trades[0]
        assert trade.entry_date == date(2024, 1, 1)
        assert trade.exit_date == date(2024, 1, 3)

    def test_open_position_closed_at_end(self):
        closes = [100.0, 101.0, 102.0, 103.0]
        sim = _run(closes, ALWAYS, [_exit(ExitType.PROFIT_TARGET, 1000)])
        assert len(sim.trades) == 1
        trade = sim.trades[0]
        assert trade.exit_reason == ExitReason.END_OF_DATA
        assert trade.forced_exit is True
        assert trade.exit_price == 103.0
        assert sim.state == PortfolioState.FLAT
        assert sim.equity_curve[-1].position_value == 0.0
        assert sim.equity_curve[-1].cash == pytest.approx(sim.cash)


# ---------------------------------------------------------------------------
# Equity curve & bookkeeping
# ---------------------------------------------------------------------------

class TestEquityCurve:
    def test_one_point_per_bar(self):
        closes = _sma_cross_closes()
        sim = _run(closes, PRICE_CROSSES_SMA20, [_exit(ExitType.STOP_LOSS, 5)])
        assert len(sim.equity_curve) == len(closes)

    def test_mark_to_market_while_long(self):
        sim = _run([100.0, 110.0, 105.0], ALWAYS, [_exit(ExitType.PROFIT_TARGET, 50)])
        point = sim.equity_curve[1]
        assert point.quantity == 1000
        assert point.position_value == pytest.approx(110_000.0)
        assert point.portfolio_value == pytest.approx(point.cash + point.position_value)

    def test_final_cash_matches_pnl(self):
        sim = _run(
            _rsi_dip_closes(), RSI_BELOW_30, [_exit(ExitType.PROFIT_TARGET, 10)],
            fee_schedule=EquityDeliverySchedule(),
        )
        assert sim.cash == pytest.approx(100_000.0 + sum(t.pnl for t in sim.trades))

    def test_length_mismatch_raises(self):
        bars = _make_bars([100.0, 101.0])
        sim = PortfolioSimulator(1000.0)
        with pytest.raises(ComputationError, match="line up"):
            sim.run(bars, compute_indicators(bars[:1]), ALWAYS, [])

    def test_invalid_fee_raises(self):
        def bad_schedule(transaction_type, quantity, price):
            return -1.0

        with pytest.raises(ComputationError, match="invalid amount"):
            _run([100.0, 101.0], ALWAYS, [_exit(ExitType.STOP_LOSS, 5)], fee_schedule=bad_schedule)

    def test_fee_schedule_called_with_side(self):
        calls = []

        def recording_schedule(transaction_type, quantity, price):
            calls.append(transaction_type)
            return 0.0

        _run([100.0, 101.0], ALWAYS, [_exit(ExitType.STOP_LOSS, 5)], fee_schedule=recording_schedule)
        assert calls[0] == TransactionType.BUY
        assert calls[-1] == TransactionType.SELL
