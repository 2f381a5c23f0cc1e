"""
Tests for fee schedules.
"""

import pytest

from backtester.config import Settings
from backtester.fees import (
    EquityDeliverySchedule,
    schedule_from_settings,
    zero_charges,
)
from backtester.models import TransactionType


class TestEquityDeliverySchedule:
    def test_buy_breakdown(self):
        b = EquityDeliverySchedule().breakdown(TransactionType.BUY, 100, 1000.0)
        assert b.brokerage == 0.0
        assert b.exchange_charges == pytest.approx(3.25)
        assert b.sebi_charges == pytest.approx(0.1)
        assert b.stamp_duty == pytest.approx(15.0)
        assert b.gst == pytest.approx(0.6)
        assert b.total == pytest.approx(18.95)

    def test_sell_has_no_stamp_duty(self):
        b = EquityDeliverySchedule().breakdown(TransactionType.SELL, 100, 1000.0)
        assert b.stamp_duty == 0.0
        assert b.total == pytest.approx(3.95)

    def test_callable_returns_total(self):
        schedule = EquityDeliverySchedule()
        assert schedule(TransactionType.BUY, 100, 1000.0) == pytest.approx(18.95)

    def test_flat_brokerage_attracts_gst(self):
        schedule = EquityDeliverySchedule(brokerage_flat=20.0)
        b = schedule.breakdown(TransactionType.SELL, 100, 1000.0)
        assert b.brokerage == 20.0
        assert b.gst == pytest.approx((20.0 + 3.25 + 0.1) * 0.18, abs=0.01)

    def test_zero_quantity_no_brokerage(self):
        schedule = EquityDeliverySchedule(brokerage_flat=20.0)
        assert schedule(TransactionType.BUY, 0, 1000.0) == 0.0

    def test_never_negative(self):
        schedule = EquityDeliverySchedule()
        for qty in (1, 7, 1234):
            for side in TransactionType:
                assert schedule(side, qty, 12.34) >= 0.0


class TestZeroCharges:
    def test_always_zero(self):
        assert zero_charges(TransactionType.BUY, 1000, 99.0) == 0.0


class TestScheduleFromSettings:
    def test_default_is_equity_delivery(self):
        schedule = schedule_from_settings(Settings())
        assert isinstance(schedule, EquityDeliverySchedule)

    def test_rates_carried_over(self):
        schedule = schedule_from_settings(Settings(stamp_duty_pct=0.0, gst_pct=0.0))
        assert schedule(TransactionType.BUY, 100, 1000.0) == pytest.approx(3.35)

    def test_zero(self):
        assert schedule_from_settings(Settings(fee_schedule="zero")) is zero_charges

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown fee schedule"):
            schedule_from_settings(Settings(fee_schedule="intraday"))
