"""
Strategy Backtester -- Condition evaluation.

Decides, for one bar, whether an ordered list of entry conditions holds.

Semantics
---------

  - ``<``, ``>``, ``=`` compare the indicator's value on the current bar
    with the condition's value.  ``=`` allows a tolerance of 0.01.
  - ``crossover`` fires only on the bar where the indicator moves from
    ``<=`` the value on the previous bar to ``>`` it on this bar.
    ``crossunder`` is the mirror image.
  - The value is a constant, or another per-bar series (``SMA20``,
    ``MACD_SIGNAL``, ...) read from the same bar as the indicator.
  - Conditions chain strictly left to right: each condition's combinator
    joins it to the next one, with no precedence.  A missing combinator
    means ``AND``.
  - Anything still in warm-up makes its condition false.

All functions here are pure.
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

from backtester.models import (
    Combinator,
    Indicator,
    IndicatorSnapshot,
    Operator,
    SeriesRef,
    StrategyCondition,
)


EQUALITY_TOLERANCE = 0.01

DEFAULT_SMA_PERIOD = 50
SMA_PERIODS = (20, 50, 200)
EMA_PERIODS = (20,)


# ---------------------------------------------------------------------------
# Value lookup
# ---------------------------------------------------------------------------

def series_value(snapshot: IndicatorSnapshot, ref: SeriesRef) -> Optional[float]:
    """Read a named series from *snapshot* (``None`` during warm-up)."""
    if ref == SeriesRef.PRICE:
        return snapshot.close
    if ref == SeriesRef.RSI:
        return snapshot.rsi
    if ref == SeriesRef.MACD:
        return snapshot.macd.line
    if ref == SeriesRef.MACD_SIGNAL:
        return snapshot.macd.signal
    if ref == SeriesRef.MACD_HISTOGRAM:
        return snapshot.macd.histogram
    if ref == SeriesRef.SMA20:
        return snapshot.sma20
    if ref == SeriesRef.SMA50:
        return snapshot.sma50
    if ref == SeriesRef.SMA200:
        return snapshot.sma200
    if ref == SeriesRef.EMA20:
        return snapshot.ema20
    if ref == SeriesRef.BB_UPPER:
        return snapshot.bollinger.upper
    if ref == SeriesRef.BB_MIDDLE:
        return snapshot.bollinger.middle
    if ref == SeriesRef.BB_LOWER:
        return snapshot.bollinger.lower
    if ref == SeriesRef.ATR:
        return snapshot.atr
    if ref == SeriesRef.STOCH_K:
        return snapshot.stochastic.k
    if ref == SeriesRef.STOCH_D:
        return snapshot.stochastic.d
    raise ValueError(f"Unsupported series: {ref}")


def indicator_value(
    snapshot: IndicatorSnapshot,
    indicator: Indicator,
    period: Optional[int] = None,
) -> Optional[float]:
    """Resolve the left-hand side of a condition on *snapshot*."""
    if indicator == Indicator.RSI:
        return snapshot.rsi
    if indicator == Indicator.MACD:
        return snapshot.macd.line
    if indicator == Indicator.SMA:
        period = period or DEFAULT_SMA_PERIOD
        if period == 20:
            return snapshot.sma20
        if period == 50:
            return snapshot.sma50
        if period == 200:
            return snapshot.sma200
        raise ValueError(f"Unsupported SMA period: {period}")
    if indicator == Indicator.EMA:
        if period not in (None, 20):
            raise ValueError(f"Unsupported EMA period: {period}")
        return snapshot.ema20
    if indicator == Indicator.PRICE:
        return snapshot.close
    raise ValueError(f"Unsupported indicator: {indicator}")


def _operand(
    snapshot: IndicatorSnapshot,
    value: Union[float, SeriesRef],
) -> Optional[float]:
    if isinstance(value, SeriesRef):
        return series_value(snapshot, value)
    return float(value)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def evaluate_condition(
    condition: StrategyCondition,
    current: IndicatorSnapshot,
    previous: Optional[IndicatorSnapshot] = None,
) -> bool:
    """Evaluate a single condition on the current bar.

    Args:
        condition: The rule to check.
        current: Snapshot of the bar being evaluated.
        previous: Snapshot of the bar before it (``None`` on the first
            bar; crossing operators are then false).
    """
    left = indicator_value(current, condition.indicator, condition.period)
    right = _operand(current, condition.value)
    if left is None or right is None:
        return False

    op = condition.operator
    if op == Operator.LT:
        return left < right
    if op == Operator.GT:
        return left > right
    if op == Operator.EQ:
        return abs(left - right) < EQUALITY_TOLERANCE

    if previous is None:
        return False
    prev_left = indicator_value(previous, condition.indicator, condition.period)
    prev_right = _operand(previous, condition.value)
    if prev_left is None or prev_right is None:
        return False

    if op == Operator.CROSSOVER:
        return prev_left <= prev_right and left > right
    if op == Operator.CROSSUNDER:
        return prev_left >= prev_right and left < right
    raise ValueError(f"Unsupported operator: {op}")


def evaluate_conditions(
    conditions: Sequence[StrategyCondition],
    current: IndicatorSnapshot,
    previous: Optional[IndicatorSnapshot] = None,
) -> bool:
    """Chain *conditions* left to right and return the combined result.

    ``result = c1; result = result OP1 c2; result = result OP2 c3; ...``
    where ``OPi`` is the combinator stored on condition *i*.  An empty
    list never holds.  Every condition is evaluated (no short-circuit),
    which keeps the result independent of evaluation order.
    """
    if not conditions:
        return False

    result = evaluate_condition(conditions[0], current, previous)
    for prev_cond, cond in zip(conditions, conditions[1:]):
        outcome = evaluate_condition(cond, current, previous)
        if prev_cond.combinator == Combinator.OR:
            result = result or outcome
        else:
            result = result and outcome
    return result
