"""
Strategy Backtester -- Performance metrics.

Computes aggregate statistics for a completed run:

  - **Total return** (currency and percent)
  - **Sharpe ratio** from bar-over-bar percentage returns
  - **Sortino ratio** (downside-deviation variant of Sharpe)
  - **Maximum drawdown** (peak-to-trough decline, percent and currency)
  - **Win rate**, profit factor, average win / loss, largest win / loss
  - **Average trade duration** in calendar days
  - **Exposure** (share of bars with a position open)

All metrics are a pure function of the trade log, the equity curve, and
the starting capital.  Divisions by zero yield a defined value (0,
``inf`` or ``None``) rather than raising.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence

from backtester.models import EquityCurvePoint, Trade, TradeOutcome


MONTHS_PER_YEAR = 12


@dataclass
class DrawdownInfo:
    """Maximum drawdown details."""
    max_drawdown_pct: float = 0.0
    max_drawdown_amount: float = 0.0
    peak_value: float = 0.0
    trough_value: float = 0.0
    peak_date: Optional[date] = None
    trough_date: Optional[date] = None


@dataclass
class PerformanceMetrics:
    """Complete performance metrics for a backtest run."""
    # Capital
    initial_capital: float = 0.0
    final_capital: float = 0.0
    total_return: float = 0.0
    total_return_pct: float = 0.0

    # Risk-adjusted (None when undefined)
    sharpe_ratio: Optional[float] = None
    sortino_ratio: Optional[float] = None

    # Drawdown
    drawdown: DrawdownInfo = field(default_factory=DrawdownInfo)

    # Trade statistics
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0

    # P&L
    total_pnl: float = 0.0
    avg_profit_per_trade: float = 0.0
    avg_loss_per_trade: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    avg_trade_duration: Optional[float] = None

    # Exposure
    total_bars: int = 0
    bars_in_market: int = 0
    exposure_pct: float = 0.0

    @property
    def max_drawdown(self) -> float:
        return self.drawdown.max_drawdown_pct

    @property
    def max_drawdown_amount(self) -> float:
        return self.drawdown.max_drawdown_amount


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _periodic_returns(equity_curve: Sequence[EquityCurvePoint]) -> List[float]:
    """Bar-over-bar percentage returns of the portfolio value."""
    if len(equity_curve) < 2:
        return []
    returns = []
    for i in range(1, len(equity_curve)):
        prev = equity_curve[i - 1].portfolio_value
        curr = equity_curve[i].portfolio_value
        if prev > 0:
            returns.append((curr - prev) / prev * 100)
        else:
            returns.append(0.0)
    return returns


def _compute_drawdown(equity_curve: Sequence[EquityCurvePoint]) -> DrawdownInfo:
    """Compute maximum drawdown from the equity curve with a running peak."""
    if not equity_curve:
        return DrawdownInfo()

    first = equity_curve[0]
    peak = first.portfolio_value
    peak_date = first.date
    max_dd_pct = 0.0
    max_dd_amount = 0.0
    trough = peak
    trough_date = peak_date
    best_peak = peak
    best_peak_date = peak_date

    for point in equity_curve:
        value = point.portfolio_value

        if value > peak:
            peak = value
            peak_date = point.date

        dd_amount = peak - value
        dd_pct = dd_amount / peak * 100 if peak > 0 else 0.0

        if dd_pct > max_dd_pct:
            max_dd_pct = dd_pct
            max_dd_amount = dd_amount
            trough = value
            trough_date = point.date
            best_peak = peak
            best_peak_date = peak_date

    return DrawdownInfo(
        max_drawdown_pct=max_dd_pct,
        max_drawdown_amount=max_dd_amount,
        peak_value=best_peak,
        trough_value=trough,
        peak_date=best_peak_date,
        trough_date=trough_date,
    )


def _sample_std(values: Sequence[float], mean: float) -> float:
    variance = sum((v - mean) ** 2 for v in values) / (len(values) - 1)
    return math.sqrt(variance) if variance > 0 else 0.0


def _sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.0) -> Optional[float]:
    """Sharpe ratio of periodic percentage returns.

    ``(mean(returns) - risk_free_rate / 12) / std(returns)``, where
    *risk_free_rate* is an annual percentage.  ``None`` with fewer than
    two returns or zero deviation.
    """
    if len(returns) < 2:
        return None
    mean = sum(returns) / len(returns)
    std = _sample_std(returns, mean)
    if std == 0:
        return None
    return (mean - risk_free_rate / MONTHS_PER_YEAR) / std


def _sortino_ratio(returns: Sequence[float], risk_free_rate: float = 0.0) -> Optional[float]:
    """Sortino ratio (uses downside deviation of excess returns)."""
    if len(returns) < 2:
        return None
    rf = risk_free_rate / MONTHS_PER_YEAR
    excess = [r - rf for r in returns]
    mean = sum(excess) / len(excess)
    downside_var = sum(min(r, 0.0) ** 2 for r in excess) / len(excess)
    downside_std = math.sqrt(downside_var) if downside_var > 0 else 0.0
    if downside_std == 0:
        return None
    return mean / downside_std


def _profit_factor(gross_profit: float, gross_loss: float) -> float:
    if gross_loss > 0:
        return gross_profit / gross_loss
    return float("inf") if gross_profit > 0 else 0.0


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def compute_metrics(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityCurvePoint],
    initial_capital: float,
    risk_free_rate: float = 0.0,
) -> PerformanceMetrics:
    """Compute all performance metrics for a run.

    Args:
        trades: Completed trades in exit order.
        equity_curve: One point per bar.
        initial_capital: Starting cash.
        risk_free_rate: Annual risk-free rate in percent.

    Returns:
        A :class:`PerformanceMetrics` with all computed values.
    """
    final_capital = equity_curve[-1].portfolio_value if equity_curve else initial_capital
    total_return = final_capital - initial_capital
    total_return_pct = total_return / initial_capital * 100 if initial_capital > 0 else 0.0

    returns = _periodic_returns(equity_curve)
    drawdown = _compute_drawdown(equity_curve)

    pnls = [t.pnl for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))

    total_trades = len(trades)
    winning_trades = sum(1 for t in trades if t.outcome == TradeOutcome.WIN)
    losing_trades = total_trades - winning_trades

    bars_in_market = sum(1 for pt in equity_curve if pt.quantity > 0)
    n_bars = len(equity_curve)

    return PerformanceMetrics(
        initial_capital=initial_capital,
        final_capital=final_capital,
        total_return=total_return,
        total_return_pct=total_return_pct,
        sharpe_ratio=_sharpe_ratio(returns, risk_free_rate),
        sortino_ratio=_sortino_ratio(returns, risk_free_rate),
        drawdown=drawdown,
        total_trades=total_trades,
        winning_trades=winning_trades,
        losing_trades=losing_trades,
        win_rate=winning_trades / total_trades * 100 if total_trades > 0 else 0.0,
        profit_factor=_profit_factor(gross_profit, gross_loss),
        total_pnl=sum(pnls),
        avg_profit_per_trade=gross_profit / len(wins) if wins else 0.0,
        avg_loss_per_trade=sum(losses) / len(losses) if losses else 0.0,
        largest_win=max(wins) if wins else 0.0,
        largest_loss=min(losses) if losses else 0.0,
        avg_trade_duration=(
            sum(t.holding_period_days for t in trades) / total_trades
            if total_trades > 0 else None
        ),
        total_bars=n_bars,
        bars_in_market=bars_in_market,
        exposure_pct=bars_in_market / n_bars * 100 if n_bars > 0 else 0.0,
    )
