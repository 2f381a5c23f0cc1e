"""
Strategy Backtester -- Rule-based strategy backtesting.

Replays daily price history through a rule-based long-only strategy and
reports the trades it would have taken and how they performed.

Supports:
  - Technical indicators (RSI, MACD, SMA 20/50/200, EMA 20, Bollinger
    Bands, ATR, Stochastic) computed incrementally per bar
  - Entry rules chained with AND / OR, including crossover / crossunder
    against another indicator series
  - Profit-target, stop-loss, trailing-stop and time-based exits
  - Equity-delivery transaction charges
  - Performance metrics (return, Sharpe, Sortino, drawdown, win rate, ...)
  - CSV, in-memory and Yahoo Finance price sources
  - Result storage and a Flask HTTP API

Quick start::

    from backtester import Engine, InMemoryPriceProvider, load_bars_csv, parse_config

    provider = InMemoryPriceProvider({"INFY": load_bars_csv("INFY.csv")})
    config = parse_config({
        "strategyName": "RSI dip",
        "stockSymbol": "INFY",
        "startDate": "2023-01-01",
        "endDate": "2023-12-31",
        "entryConditions": [{"indicator": "RSI", "operator": "<", "value": 30}],
        "exitConditions": [{"type": "profit_target", "value": 10}],
    })
    result = Engine(provider).run(config)
    print(result.metrics.total_return_pct)
"""

from backtester.models import (
    Indicator,
    Operator,
    Combinator,
    SeriesRef,
    ExitType,
    ExitReason,
    RunStatus,
    PriceBar,
    IndicatorSnapshot,
    StrategyCondition,
    ExitCondition,
    Position,
    Trade,
    EquityCurvePoint,
    BacktestConfig,
    BacktestResult,
)
from backtester.exceptions import (
    BacktestError,
    ValidationError,
    DataUnavailableError,
    ComputationError,
)
from backtester.data import (
    load_bars_csv,
    bars_from_dicts,
    InMemoryPriceProvider,
    CsvPriceProvider,
)
from backtester.indicators import IndicatorEngine, compute_indicators
from backtester.conditions import evaluate_condition, evaluate_conditions
from backtester.simulator import PortfolioSimulator
from backtester.metrics import compute_metrics, PerformanceMetrics
from backtester.fees import EquityDeliverySchedule, zero_charges
from backtester.parser import parse_config, validate_config
from backtester.engine import Engine, run_backtest

__all__ = [
    "Indicator",
    "Operator",
    "Combinator",
    "SeriesRef",
    "ExitType",
    "ExitReason",
    "RunStatus",
    "PriceBar",
    "IndicatorSnapshot",
    "StrategyCondition",
    "ExitCondition",
    "Position",
    "Trade",
    "EquityCurvePoint",
    "BacktestConfig",
    "BacktestResult",
    "BacktestError",
    "ValidationError",
    "DataUnavailableError",
    "ComputationError",
    "load_bars_csv",
    "bars_from_dicts",
    "InMemoryPriceProvider",
    "CsvPriceProvider",
    "IndicatorEngine",
    "compute_indicators",
    "evaluate_condition",
    "evaluate_conditions",
    "PortfolioSimulator",
    "compute_metrics",
    "PerformanceMetrics",
    "EquityDeliverySchedule",
    "zero_charges",
    "parse_config",
    "validate_config",
    "Engine",
    "run_backtest",
]
