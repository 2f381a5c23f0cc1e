"""
Tests for the indicator engine.
"""

import math
import statistics
import pytest
from datetime import date, timedelta

from backtester.indicators import (
    SimpleMovingAverage,
    ExponentialMovingAverage,
    WilderRSI,
    MACD,
    BollingerBands,
    WilderATR,
    StochasticOscillator,
    IndicatorEngine,
    compute_indicators,
    _RollingExtreme,
)
from backtester.models import PriceBar


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_bars(closes, spread=1.0, start=date(2024, 1, 1)):
    return [
        PriceBar(
            date=start + timedelta(days=i),
            open=c, high=c + spread, low=c - spread, close=c,
        )
        for i, c in enumerate(closes)
    ]


def _first_defined(values):
    for i, v in enumerate(values):
        if v is not None:
            return i
    return None


# ---------------------------------------------------------------------------
# Moving averages
# ---------------------------------------------------------------------------

class TestSimpleMovingAverage:
    def test_warmup_then_values(self):
        sma = SimpleMovingAverage(3)
        out = [sma.update(v) for v in [1, 2, 3, 4, 5]]
        assert out[:2] == [None, None]
        assert out[2:] == pytest.approx([2.0, 3.0, 4.0])

    def test_matches_naive_mean(self):
        closes = [100 + math.sin(i / 3.0) * 5 for i in range(80)]
        sma = SimpleMovingAverage(20)
        for i, c in enumerate(closes):
            value = sma.update(c)
            if i >= 19:
                assert value == pytest.approx(sum(closes[i - 19:i + 1]) / 20)


class TestExponentialMovingAverage:
    def test_seeded_with_sma(self):
        ema = ExponentialMovingAverage(3)
        out = [ema.update(v) for v in [1, 2, 3, 4, 5]]
        assert out[:2] == [None, None]
        # seed = 2, alpha = 0.5
        assert out[2] == pytest.approx(2.0)
        assert out[3] == pytest.approx(3.0)
        assert out[4] == pytest.approx(4.0)

    def test_constant_series(self):
        ema = ExponentialMovingAverage(20)
        out = [ema.update(50.0) for _ in range(40)]
        assert out[18] is None
        assert out[19] == pytest.approx(50.0)
        assert out[-1] == pytest.approx(50.0)


# ---------------------------------------------------------------------------
# RSI
# ---------------------------------------------------------------------------

class TestWilderRSI:
    def test_first_value_on_index_14(self):
        rsi = WilderRSI()
        out = [rsi.update(100.0 + i) for i in range(16)]
        assert all(v is None for v in out[:14])
        assert out[14] == pytest.approx(100.0)

    def test_known_value(self):
        # 7 gains of 2 and 7 losses of 1: avg_gain 1, avg_loss 0.5, RS 2
        closes = [100.0]
        for i in range(7):
            closes.append(closes[-1] + 2)
            closes.append(closes[-1] - 1)
        rsi = WilderRSI()
        out = [rsi.update(c) for c in closes]
        assert out[14] == pytest.approx(100 - 100 / 3)

        # Wilder smoothing: loss 1.5 -> gain 13/14, loss 8/14
        assert rsi.update(closes[-1] - 1.5) == pytest.approx(100 - 100 / (1 + 13 / 8))

    def test_all_losses_is_zero(self):
        rsi = WilderRSI()
        out = [rsi.update(100.0 - i) for i in range(20)]
        assert out[14] == pytest.approx(0.0)

    def test_no_losses_is_100(self):
        rsi = WilderRSI()
        out = [rsi.update(100.0) for _ in range(20)]
        assert out[19] == 100.0


# ---------------------------------------------------------------------------
# MACD
# ---------------------------------------------------------------------------

class TestMACD:
    def test_warmup_indices(self):
        macd = MACD()
        out = [macd.update(100.0 + i) for i in range(40)]
        assert _first_defined([m.line for m in out]) == 25
        assert _first_defined([m.signal for m in out]) == 33
        assert _first_defined([m.histogram for m in out]) == 33

    def test_constant_series_is_zero(self):
        macd = MACD()
        out = [macd.update(75.0) for _ in range(40)]
        assert out[-1].line == pytest.approx(0.0)
        assert out[-1].signal == pytest.approx(0.0)
        assert out[-1].histogram == pytest.approx(0.0)

    def test_uptrend_line_positive(self):
        macd = MACD()
        out = [macd.update(100.0 + 2 * i) for i in range(40)]
        assert out[-1].line > 0
        assert out[-1].histogram == pytest.approx(out[-1].line - out[-1].signal)


# ---------------------------------------------------------------------------
# Bollinger Bands
# ---------------------------------------------------------------------------

class TestBollingerBands:
    def test_population_std(self):
        bb = BollingerBands()
        out = [bb.update(1.0 if i % 2 == 0 else 3.0) for i in range(20)]
        assert out[18].middle is None
        assert out[19].middle == pytest.approx(2.0)
        assert out[19].upper == pytest.approx(4.0)
        assert out[19].lower == pytest.approx(0.0)

    def test_matches_statistics_pstdev(self):
        closes = [100 + (i * 7 % 11) for i in range(45)]
        bb = BollingerBands()
        for i, c in enumerate(closes):
            value = bb.update(c)
        window = closes[-20:]
        mean = statistics.mean(window)
        assert value.middle == pytest.approx(mean)
        assert value.upper == pytest.approx(mean + 2 * statistics.pstdev(window))

    def test_flat_series_collapses(self):
        bb = BollingerBands()
        out = [bb.update(10.0) for _ in range(25)]
        assert out[-1].upper == pytest.approx(10.0)
        assert out[-1].lower == pytest.approx(10.0)


# ---------------------------------------------------------------------------
# ATR
# ---------------------------------------------------------------------------

class TestWilderATR:
    def test_constant_range(self):
        atr = WilderATR()
        out = [atr.update(101.0, 99.0, 100.0) for _ in range(20)]
        assert out[12] is None
        assert out[13] == pytest.approx(2.0)
        assert out[19] == pytest.approx(2.0)

    def test_gap_uses_previous_close(self):
        atr = WilderATR(period=2)
        atr.update(101.0, 99.0, 100.0)     # TR 2
        value = atr.update(111.0, 109.0, 110.0)  # TR max(2, 11, 9) = 11
        assert value == pytest.approx(6.5)


# ---------------------------------------------------------------------------
# Stochastic
# ---------------------------------------------------------------------------

class TestStochasticOscillator:
    def test_warmup_and_value(self):
        stoch = StochasticOscillator()
        out = [stoch.update(c + 1.0, c - 1.0, c) for c in [float(i) for i in range(1, 18)]]
        assert out[12].k is None
        # Window 1..14: highest 15, lowest 0
        assert out[13].k == pytest.approx(100.0 * 14 / 15)
        assert out[14].d is None
        assert out[15].d is not None

    def test_flat_window_is_zero(self):
        stoch = StochasticOscillator()
        out = [stoch.update(50.0, 50.0, 50.0) for _ in range(16)]
        assert out[13].k == 0.0
        assert out[15].d == 0.0

    def test_close_at_high_is_100(self):
        stoch = StochasticOscillator()
        out = [stoch.update(c, c - 2.0, c) for c in [float(i) for i in range(1, 16)]]
        assert out[14].k == pytest.approx(100.0)


class TestRollingExtreme:
    def test_window_max(self):
        ext = _RollingExtreme(3, highest=True)
        out = [ext.push(v) for v in [5, 1, 2, 0, 0, 7, 1]]
        assert out == [5, 5, 5, 2, 2, 7, 7]

    def test_window_min(self):
        ext = _RollingExtreme(2, highest=False)
        out = [ext.push(v) for v in [3, 1, 4, 5, 2]]
        assert out == [3, 1, 1, 4, 2]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TestIndicatorEngine:
    def test_one_snapshot_per_bar(self):
        bars = _make_bars([100.0 + i for i in range(30)])
        snapshots = compute_indicators(bars)
        assert len(snapshots) == 30
        assert [s.date for s in snapshots] == [b.date for b in bars]
        assert [s.close for s in snapshots] == [b.close for b in bars]

    def test_warmup_indices(self):
        closes = [100 + 10 * math.sin(i / 5.0) for i in range(250)]
        snapshots = compute_indicators(_make_bars(closes))

        assert _first_defined([s.sma20 for s in snapshots]) == 19
        assert _first_defined([s.sma50 for s in snapshots]) == 49
        assert _first_defined([s.sma200 for s in snapshots]) == 199
        assert _first_defined([s.ema20 for s in snapshots]) == 19
        assert _first_defined([s.rsi for s in snapshots]) == 14
        assert _first_defined([s.macd.line for s in snapshots]) == 25
        assert _first_defined([s.macd.signal for s in snapshots]) == 33
        assert _first_defined([s.bollinger.upper for s in snapshots]) == 19
        assert _first_defined([s.atr for s in snapshots]) == 13
        assert _first_defined([s.stochastic.k for s in snapshots]) == 13
        assert _first_defined([s.stochastic.d for s in snapshots]) == 15

    def test_short_series_stays_in_warmup(self):
        snapshots = compute_indicators(_make_bars([100.0] * 10))
        last = snapshots[-1]
        assert last.rsi is None
        assert last.sma20 is None
        assert last.macd.line is None
        assert last.bollinger.middle is None

    def test_empty_input(self):
        assert compute_indicators([]) == []

    def test_engines_are_independent(self):
        bars = _make_bars([100.0 + (i % 7) for i in range(60)])
        first = IndicatorEngine()
        second = IndicatorEngine()
        for bar in bars[:30]:
            first.update(bar)
        a = [first.update(b) for b in bars[30:]]
        b = compute_indicators(bars)[30:]
        for bar in bars[:30]:
            second.update(bar)
        c = [second.update(bar) for bar in bars[30:]]
        assert a == b == c

    def test_bollinger_middle_equals_sma20(self):
        closes = [100 + (i * 13 % 17) for i in range(60)]
        for s in compute_indicators(_make_bars(closes))[19:]:
            assert s.bollinger.middle == pytest.approx(s.sma20)
