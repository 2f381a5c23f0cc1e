"""
Strategy Backtester -- Backtesting engine.

Orchestrates one run: validate the configuration, fetch bars from the
price provider, compute indicators, replay the bars through the
portfolio simulator, and compute metrics.

Usage::

    from backtester import Engine, InMemoryPriceProvider, load_bars_csv

    provider = InMemoryPriceProvider({"INFY": load_bars_csv("INFY.csv")})
    result = Engine(provider).run(config)

The engine never raises.  Every failure becomes a :class:`BacktestResult`
with ``status=FAILED`` and an ``error_message``; a failed run exposes no
trades and no equity curve.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from backtester.config import Settings
from backtester.data import ensure_ordered, filter_range
from backtester.exceptions import (
    BacktestError,
    ComputationError,
    DataUnavailableError,
    ValidationError,
)
from backtester.fees import FeeSchedule, schedule_from_settings, zero_charges
from backtester.indicators import compute_indicators
from backtester.metrics import compute_metrics
from backtester.models import (
    BacktestConfig,
    BacktestResult,
    PriceBar,
    RunStatus,
)
from backtester.parser import validate_config
from backtester.simulator import PortfolioSimulator
from backtester.utils import generate_correlation_id, log_structured

logger = logging.getLogger(__name__)


class Engine:
    """Main backtesting engine.

    Args:
        price_provider: Object with ``get_bars(symbol, start, end)``.
        fee_schedule: Charges per order (default: no charges).
        risk_free_rate: Annual risk-free rate in percent, used by the
            Sharpe and Sortino ratios.
    """

    def __init__(
        self,
        price_provider,
        fee_schedule: FeeSchedule = zero_charges,
        risk_free_rate: float = 0.0,
    ) -> None:
        self.price_provider = price_provider
        self.fee_schedule = fee_schedule
        self.risk_free_rate = risk_free_rate

    @classmethod
    def from_settings(cls, price_provider, settings: Settings) -> "Engine":
        return cls(
            price_provider,
            fee_schedule=schedule_from_settings(settings),
            risk_free_rate=settings.risk_free_rate,
        )

    def run(self, config: BacktestConfig, run_id: Optional[str] = None) -> BacktestResult:
        """Execute the backtest.

        Args:
            config: The run configuration.
            run_id: Identifier used in logs and on the result.  Generated
                when omitted.

        Returns:
            A COMPLETED :class:`BacktestResult` with trades, equity curve
            and metrics, or a FAILED one with an error message.
        """
        run_id = run_id or generate_correlation_id()
        started = time.perf_counter()

        log_structured(
            logger, logging.INFO, "Backtest started", run_id,
            strategy=config.strategy_name, symbol=config.stock_symbol,
            start=config.start_date, end=config.end_date,
        )

        try:
            validate_config(config)
            bars = self._fetch_bars(config)
            log_structured(logger, logging.INFO, "Bars loaded", run_id, bars=len(bars))
            result = self._simulate(config, bars, run_id)
        except (ValidationError, DataUnavailableError) as e:
            log_structured(
                logger, logging.WARNING, "Backtest failed", run_id,
                error=type(e).__name__, reason=str(e),
            )
            return self._failed(config, run_id, str(e), started)
        except Exception as e:
            err = e if isinstance(e, BacktestError) else ComputationError(
                f"Unexpected error during backtest: {e}"
            )
            logger.exception("[%s] Backtest computation failed", run_id)
            return self._failed(config, run_id, str(err), started)

        result.execution_time_ms = _elapsed_ms(started)
        metrics = result.metrics
        log_structured(
            logger, logging.INFO, "Backtest completed", run_id,
            bars=result.bars_processed,
            trades=metrics.total_trades,
            skipped=result.signals_skipped,
            final=f"{result.final_capital:.2f}",
            return_pct=f"{metrics.total_return_pct:.2f}",
            ms=f"{result.execution_time_ms:.1f}",
        )
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _fetch_bars(self, config: BacktestConfig) -> List[PriceBar]:
        try:
            bars = self.price_provider.get_bars(
                config.stock_symbol, config.start_date, config.end_date,
            )
        except DataUnavailableError:
            raise
        except Exception as e:
            raise DataUnavailableError(
                f"Failed to fetch price data for {config.stock_symbol}: {e}"
            ) from e

        bars = list(bars or [])
        ensure_ordered(bars)
        bars = filter_range(bars, config.start_date, config.end_date)
        if not bars:
            raise DataUnavailableError(
                f"No price data for {config.stock_symbol} between "
                f"{config.start_date} and {config.end_date}"
            )
        return bars

    def _simulate(
        self, config: BacktestConfig, bars: List[PriceBar], run_id: str,
    ) -> BacktestResult:
        snapshots = compute_indicators(bars)

        simulator = PortfolioSimulator(config.initial_capital, self.fee_schedule)
        simulator.run(bars, snapshots, config.entry_conditions, config.exit_conditions)

        metrics = compute_metrics(
            simulator.trades,
            simulator.equity_curve,
            config.initial_capital,
            risk_free_rate=self.risk_free_rate,
        )

        return BacktestResult(
            config=config,
            status=RunStatus.COMPLETED,
            run_id=run_id,
            initial_capital=config.initial_capital,
            final_capital=metrics.final_capital,
            trades=list(simulator.trades),
            equity_curve=list(simulator.equity_curve),
            metrics=metrics,
            bars_processed=len(bars),
            signals_skipped=simulator.signals_skipped,
        )

    def _failed(
        self, config: BacktestConfig, run_id: str, message: str, started: float,
    ) -> BacktestResult:
        initial = config.initial_capital if isinstance(config.initial_capital, (int, float)) else 0.0
        return BacktestResult(
            config=config,
            status=RunStatus.FAILED,
            error_message=message,
            run_id=run_id,
            initial_capital=initial,
            final_capital=initial,
            metrics=compute_metrics([], [], initial),
            execution_time_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def run_backtest(
    config: BacktestConfig,
    price_provider,
    fee_schedule: FeeSchedule = zero_charges,
    risk_free_rate: float = 0.0,
) -> BacktestResult:
    """Convenience wrapper: ``Engine(...).run(config)``."""
    return Engine(price_provider, fee_schedule, risk_free_rate).run(config)
