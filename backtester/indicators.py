"""
Strategy Backtester -- Indicator engine.

Computes a fixed set of technical indicators bar by bar:

  - **RSI(14)** with Wilder smoothing
  - **MACD(12, 26, 9)** from SMA-seeded EMAs
  - **SMA 20 / 50 / 200** and **EMA 20** of the close
  - **Bollinger Bands(20, 2)** using the population standard deviation
  - **ATR(14)** with Wilder smoothing
  - **Stochastic(14, 3)** %K and its 3-bar SMA %D

Every indicator is an incremental object whose ``update`` costs O(1)
(amortised for the rolling high/low), fed one bar at a time.  Windows
always end at the current bar, so nothing looks ahead.  A value is
``None`` until its lookback has been filled.

Usage::

    from backtester.indicators import compute_indicators

    snapshots = compute_indicators(bars)   # one snapshot per bar
"""

from __future__ import annotations

import math
from collections import deque
from typing import Deque, List, Optional, Sequence, Tuple

from backtester.models import (
    PriceBar,
    IndicatorSnapshot,
    MACDValue,
    BollingerValue,
    StochasticValue,
)


RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
BOLLINGER_PERIOD = 20
BOLLINGER_STD = 2.0
ATR_PERIOD = 14
STOCH_PERIOD = 14
STOCH_SMOOTH = 3

# Bars needed before the slowest indicator (SMA200) is defined.
MAX_WARMUP_BARS = 200


# ---------------------------------------------------------------------------
# Rolling building blocks
# ---------------------------------------------------------------------------

class _RollingWindow:
    """Fixed-size trailing window with a running sum and sum of squares."""

    def __init__(self, size: int) -> None:
        self.size = size
        self._values: Deque[float] = deque()
        self._sum = 0.0
        self._sum_sq = 0.0

    def push(self, value: float) -> None:
        self._values.append(value)
        self._sum += value
        self._sum_sq += value * value
        if len(self._values) > self.size:
            old = self._values.popleft()
            self._sum -= old
            self._sum_sq -= old * old

    @property
    def full(self) -> bool:
        return len(self._values) == self.size

    @property
    def mean(self) -> float:
        return self._sum / len(self._values)

    @property
    def pstdev(self) -> float:
        n = len(self._values)
        mean = self._sum / n
        variance = self._sum_sq / n - mean * mean
        # Running sums can leave a tiny negative residue on flat windows.
        return math.sqrt(variance) if variance > 0 else 0.0


class _RollingExtreme:
    """Trailing-window max or min kept in a monotonic deque."""

    def __init__(self, size: int, highest: bool) -> None:
        self.size = size
        self._highest = highest
        self._items: Deque[Tuple[int, float]] = deque()
        self._index = -1

    def push(self, value: float) -> float:
        """Add *value* and return the extreme of the current window."""
        self._index += 1
        while self._items and self._dominated(self._items[-1][1], value):
            self._items.pop()
        self._items.append((self._index, value))
        while self._items[0][0] <= self._index - self.size:
            self._items.popleft()
        return self._items[0][1]

    def _dominated(self, old: float, new: float) -> bool:
        return old <= new if self._highest else old >= new


# ---------------------------------------------------------------------------
# Indicators
# ---------------------------------------------------------------------------

class SimpleMovingAverage:
    def __init__(self, period: int) -> None:
        self.period = period
        self._window = _RollingWindow(period)

    def update(self, value: float) -> Optional[float]:
        self._window.push(value)
        return self._window.mean if self._window.full else None


class ExponentialMovingAverage:
    """EMA seeded with the SMA of the first *period* values.

    After seeding: ``ema = alpha * value + (1 - alpha) * ema`` with
    ``alpha = 2 / (period + 1)``.
    """

    def __init__(self, period: int) -> None:
        self.period = period
        self.alpha = 2.0 / (period + 1)
        self.value: Optional[float] = None
        self._seed_sum = 0.0
        self._seed_count = 0

    def update(self, value: float) -> Optional[float]:
        if self.value is None:
            self._seed_sum += value
            self._seed_count += 1
            if self._seed_count == self.period:
                self.value = self._seed_sum / self.period
            return self.value
        self.value = self.alpha * value + (1.0 - self.alpha) * self.value
        return self.value


class WilderRSI:
    """Relative Strength Index with Wilder's smoothing.

    The first *period* price changes seed the averages with simple means,
    so the first value appears on bar index *period*.  When the average
    loss is zero the RSI is 100.
    """

    def __init__(self, period: int = RSI_PERIOD) -> None:
        self.period = period
        self.avg_gain: Optional[float] = None
        self.avg_loss: Optional[float] = None
        self._prev_close: Optional[float] = None
        self._gain_sum = 0.0
        self._loss_sum = 0.0
        self._count = 0

    def update(self, close: float) -> Optional[float]:
        if self._prev_close is None:
            self._prev_close = close
            return None

        change = close - self._prev_close
        self._prev_close = close
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0

        if self.avg_gain is None:
            self._gain_sum += gain
            self._loss_sum += loss
            self._count += 1
            if self._count < self.period:
                return None
            self.avg_gain = self._gain_sum / self.period
            self.avg_loss = self._loss_sum / self.period
        else:
            p = self.period
            self.avg_gain = (self.avg_gain * (p - 1) + gain) / p
            self.avg_loss = (self.avg_loss * (p - 1) + loss) / p

        if self.avg_loss == 0:
            return 100.0
        rs = self.avg_gain / self.avg_loss
        rsi = 100.0 - 100.0 / (1.0 + rs)
        return min(100.0, max(0.0, rsi))


class MACD:
    """MACD line, signal line and histogram."""

    def __init__(
        self,
        fast: int = MACD_FAST,
        slow: int = MACD_SLOW,
        signal: int = MACD_SIGNAL,
    ) -> None:
        self._fast = ExponentialMovingAverage(fast)
        self._slow = ExponentialMovingAverage(slow)
        self._signal = ExponentialMovingAverage(signal)

    def update(self, close: float) -> MACDValue:
        fast = self._fast.update(close)
        slow = self._slow.update(close)
        if fast is None or slow is None:
            return MACDValue()

        line = fast - slow
        signal = self._signal.update(line)
        if signal is None:
            return MACDValue(line=line)
        return MACDValue(line=line, signal=signal, histogram=line - signal)


class BollingerBands:
    def __init__(
        self,
        period: int = BOLLINGER_PERIOD,
        num_std: float = BOLLINGER_STD,
    ) -> None:
        self.num_std = num_std
        self._window = _RollingWindow(period)

    def update(self, close: float) -> BollingerValue:
        self._window.push(close)
        if not self._window.full:
            return BollingerValue()
        middle = self._window.mean
        band = self.num_std * self._window.pstdev
        return BollingerValue(upper=middle + band, middle=middle, lower=middle - band)


class WilderATR:
    """Average True Range with Wilder's smoothing.

    The first bar has no previous close, so its true range is
    ``high - low``.  The ATR is seeded with the mean of the first
    *period* true ranges.
    """

    def __init__(self, period: int = ATR_PERIOD) -> None:
        self.period = period
        self.value: Optional[float] = None
        self._prev_close: Optional[float] = None
        self._tr_sum = 0.0
        self._count = 0

    def update(self, high: float, low: float, close: float) -> Optional[float]:
        if self._prev_close is None:
            true_range = high - low
        else:
            true_range = max(
                high - low,
                abs(high - self._prev_close),
                abs(low - self._prev_close),
            )
        self._prev_close = close

        if self.value is None:
            self._tr_sum += true_range
            self._count += 1
            if self._count == self.period:
                self.value = self._tr_sum / self.period
            return self.value

        p = self.period
        self.value = (self.value * (p - 1) + true_range) / p
        return self.value


class StochasticOscillator:
    """Stochastic %K over a *period*-bar high/low range, %D its SMA.

    %K is 0 when the window's high equals its low.
    """

    def __init__(self, period: int = STOCH_PERIOD, smooth: int = STOCH_SMOOTH) -> None:
        self.period = period
        self._highs = _RollingExtreme(period, highest=True)
        self._lows = _RollingExtreme(period, highest=False)
        self._d = SimpleMovingAverage(smooth)
        self._count = 0

    def update(self, high: float, low: float, close: float) -> StochasticValue:
        highest = self._highs.push(high)
        lowest = self._lows.push(low)
        self._count += 1
        if self._count < self.period:
            return StochasticValue()

        span = highest - lowest
        k = 100.0 * (close - lowest) / span if span > 0 else 0.0
        k = min(100.0, max(0.0, k))
        return StochasticValue(k=k, d=self._d.update(k))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class IndicatorEngine:
    """Holds the indicator state for one run.

    Each run builds its own engine, so concurrent runs never share
    buffers.  Feed bars in date order through :meth:`update`.
    """

    def __init__(self) -> None:
        self._rsi = WilderRSI()
        self._macd = MACD()
        self._sma20 = SimpleMovingAverage(20)
        self._sma50 = SimpleMovingAverage(50)
        self._sma200 = SimpleMovingAverage(200)
        self._ema20 = ExponentialMovingAverage(20)
        self._bollinger = BollingerBands()
        self._atr = WilderATR()
        self._stochastic = StochasticOscillator()

    def update(self, bar: PriceBar) -> IndicatorSnapshot:
        close = bar.close
        return IndicatorSnapshot(
            date=bar.date,
            close=close,
            rsi=self._rsi.update(close),
            macd=self._macd.update(close),
            sma20=self._sma20.update(close),
            sma50=self._sma50.update(close),
            sma200=self._sma200.update(close),
            ema20=self._ema20.update(close),
            bollinger=self._bollinger.update(close),
            atr=self._atr.update(bar.high, bar.low, close),
            stochastic=self._stochastic.update(bar.high, bar.low, close),
        )


def compute_indicators(bars: Sequence[PriceBar]) -> List[IndicatorSnapshot]:
    """Return one :class:`IndicatorSnapshot` per bar, index-aligned with *bars*."""
    engine = IndicatorEngine()
    return [engine.update(bar) for bar in bars]
