"""
Strategy Backtester -- Data models.

All immutable or semi-mutable dataclasses used by the backtesting engine.
Everything here is created and owned by a single run; only the returned
:class:`BacktestResult` outlives it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Optional, List, Union

if TYPE_CHECKING:
    from backtester.metrics import PerformanceMetrics


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Indicator(Enum):
    """Indicators a strategy condition can be written against."""
    RSI = "RSI"
    MACD = "MACD"
    SMA = "SMA"
    EMA = "EMA"
    PRICE = "PRICE"


class Operator(Enum):
    """Comparison and crossing operators."""
    LT = "<"
    GT = ">"
    EQ = "="
    CROSSOVER = "crossover"
    CROSSUNDER = "crossunder"


class Combinator(Enum):
    """Joins a condition to the one that follows it."""
    AND = "AND"
    OR = "OR"


class SeriesRef(Enum):
    """Named per-bar series usable as the right-hand side of a condition."""
    PRICE = "PRICE"
    RSI = "RSI"
    MACD = "MACD"
    MACD_SIGNAL = "MACD_SIGNAL"
    MACD_HISTOGRAM = "MACD_HISTOGRAM"
    SMA20 = "SMA20"
    SMA50 = "SMA50"
    SMA200 = "SMA200"
    EMA20 = "EMA20"
    BB_UPPER = "BB_UPPER"
    BB_MIDDLE = "BB_MIDDLE"
    BB_LOWER = "BB_LOWER"
    ATR = "ATR"
    STOCH_K = "STOCH_K"
    STOCH_D = "STOCH_D"


class ExitType(Enum):
    """Exit rules, listed in the order they are checked on each bar."""
    PROFIT_TARGET = "profit_target"
    STOP_LOSS = "stop_loss"
    TRAILING_STOP = "trailing_stop"
    TIME_BASED = "time_based"


class ExitReason(Enum):
    """Why a trade was closed."""
    PROFIT_TARGET = "profit_target"
    STOP_LOSS = "stop_loss"
    TRAILING_STOP = "trailing_stop"
    TIME_BASED = "time_based"
    END_OF_DATA = "end_of_data"


class TransactionType(Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradeOutcome(Enum):
    WIN = "WIN"
    LOSS = "LOSS"


class RunStatus(Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PriceBar:
    """A single daily OHLCV price bar.

    Attributes:
        date: Trading day.
        open: Opening price.
        high: High price.
        low: Low price.
        close: Closing price.
        volume: Traded volume.
    """
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


# ---------------------------------------------------------------------------
# Indicator snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MACDValue:
    line: Optional[float] = None
    signal: Optional[float] = None
    histogram: Optional[float] = None


@dataclass(frozen=True)
class BollingerValue:
    upper: Optional[float] = None
    middle: Optional[float] = None
    lower: Optional[float] = None


@dataclass(frozen=True)
class StochasticValue:
    k: Optional[float] = None
    d: Optional[float] = None


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values at the close of one bar.

    ``None`` marks a value still in warm-up.  Grouped indicators are
    always present; their members are ``None`` until defined.
    """
    date: date
    close: float
    rsi: Optional[float] = None
    macd: MACDValue = field(default_factory=MACDValue)
    sma20: Optional[float] = None
    sma50: Optional[float] = None
    sma200: Optional[float] = None
    ema20: Optional[float] = None
    bollinger: BollingerValue = field(default_factory=BollingerValue)
    atr: Optional[float] = None
    stochastic: StochasticValue = field(default_factory=StochasticValue)


# ---------------------------------------------------------------------------
# Strategy definition
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StrategyCondition:
    """One entry rule, e.g. ``RSI < 30`` or ``PRICE crossover SMA20``.

    Attributes:
        indicator: Left-hand indicator.
        operator: Comparison or crossing operator.
        value: Constant threshold, or a :class:`SeriesRef` naming
            another per-bar series.
        combinator: How this condition joins the *next* one.  Ignored
            on the last condition.
        period: SMA / EMA lookback (SMA: 20, 50 or 200; EMA: 20).
    """
    indicator: Indicator
    operator: Operator
    value: Union[float, SeriesRef]
    combinator: Optional[Combinator] = None
    period: Optional[int] = None


@dataclass(frozen=True)
class ExitCondition:
    """One exit rule.  ``value`` is a percent, or calendar days for
    :attr:`ExitType.TIME_BASED`."""
    type: ExitType
    value: float


# ---------------------------------------------------------------------------
# Positions & trades
# ---------------------------------------------------------------------------

@dataclass
class Position:
    """The single open long position held by the simulator.

    Attributes:
        entry_date: Day the entry filled.
        entry_price: Fill price (bar close).
        quantity: Whole shares held.
        entry_charges: Charges paid on entry.
        high_water_mark: Highest close seen since entry.
    """
    entry_date: date
    entry_price: float
    quantity: int
    entry_charges: float = 0.0
    high_water_mark: float = 0.0

    def __post_init__(self) -> None:
        if self.high_water_mark <= 0:
            self.high_water_mark = self.entry_price

    @property
    def cost_basis(self) -> float:
        """Cash spent to open the position, charges included."""
        return self.quantity * self.entry_price + self.entry_charges

    def market_value(self, price: float) -> float:
        return self.quantity * price


@dataclass(frozen=True)
class Trade:
    """A completed round trip.  ``pnl`` is net of entry and exit charges."""
    entry_date: date
    exit_date: date
    entry_price: float
    exit_price: float
    quantity: int
    pnl: float
    pnl_pct: float
    holding_period_days: int
    outcome: TradeOutcome
    exit_reason: ExitReason
    entry_charges: float = 0.0
    exit_charges: float = 0.0

    @property
    def forced_exit(self) -> bool:
        """True when the position was closed because the data ran out."""
        return self.exit_reason == ExitReason.END_OF_DATA


@dataclass(frozen=True)
class EquityCurvePoint:
    """End-of-bar portfolio valuation."""
    date: date
    cash: float
    position_value: float
    quantity: int = 0

    @property
    def portfolio_value(self) -> float:
        return self.cash + self.position_value


# ---------------------------------------------------------------------------
# Configuration & results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BacktestConfig:
    """Settings for a single backtest run.

    Attributes:
        strategy_name: Free-form label for the strategy.
        stock_symbol: Instrument to replay.
        start_date: First day requested (inclusive).
        end_date: Last day requested (inclusive).
        initial_capital: Starting cash.
        entry_conditions: Ordered entry rules, chained left to right.
        exit_conditions: Exit rules; any one firing closes the position.
    """
    strategy_name: str
    stock_symbol: str
    start_date: date
    end_date: date
    initial_capital: float = 100_000.0
    entry_conditions: List[StrategyCondition] = field(default_factory=list)
    exit_conditions: List[ExitCondition] = field(default_factory=list)


@dataclass
class BacktestResult:
    """Output of a backtest run.

    A FAILED run carries an ``error_message`` and never exposes a partial
    trade log or equity curve.
    """
    config: BacktestConfig
    status: RunStatus = RunStatus.COMPLETED
    error_message: Optional[str] = None
    run_id: str = ""
    initial_capital: float = 0.0
    final_capital: float = 0.0
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityCurvePoint] = field(default_factory=list)
    metrics: Optional["PerformanceMetrics"] = None
    bars_processed: int = 0
    signals_skipped: int = 0
    execution_time_ms: float = 0.0
