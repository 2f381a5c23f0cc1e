"""
Strategy Backtester -- Result store.

Keeps finished runs so they can be listed, fetched, compared and
deleted.  Results are held as JSON-ready dicts, in memory, and written
through to a JSON file when a path is given.

For multi-process deployments swap ``_load`` / ``_save`` for a
database table keyed by result id.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from backtester.metrics import PerformanceMetrics
from backtester.models import (
    BacktestResult,
    EquityCurvePoint,
    ExitCondition,
    SeriesRef,
    StrategyCondition,
    Trade,
)

logger = logging.getLogger(__name__)

MAX_COMPARE = 5


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def _number(value: Optional[float]) -> Union[float, str, None]:
    """JSON has no infinity: emit ``"inf"`` / ``"-inf"``, NaN as null."""
    if value is None:
        return None
    if math.isnan(value):
        return None
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return value


def condition_to_dict(cond: StrategyCondition) -> Dict[str, Any]:
    value = cond.value.value if isinstance(cond.value, SeriesRef) else cond.value
    return {
        "indicator": cond.indicator.value,
        "operator": cond.operator.value,
        "value": value,
        "combinator": cond.combinator.value if cond.combinator else None,
        "period": cond.period,
    }


def exit_condition_to_dict(cond: ExitCondition) -> Dict[str, Any]:
    return {"type": cond.type.value, "value": cond.value}


def trade_to_dict(trade: Trade) -> Dict[str, Any]:
    return {
        "entry_date": trade.entry_date.isoformat(),
        "exit_date": trade.exit_date.isoformat(),
        "entry_price": trade.entry_price,
        "exit_price": trade.exit_price,
        "quantity": trade.quantity,
        "pnl": round(trade.pnl, 2),
        "pnl_pct": round(trade.pnl_pct, 4),
        "holding_period_days": trade.holding_period_days,
        "outcome": trade.outcome.value,
        "exit_reason": trade.exit_reason.value,
        "entry_charges": trade.entry_charges,
        "exit_charges": trade.exit_charges,
        "forced_exit": trade.forced_exit,
    }


def equity_point_to_dict(point: EquityCurvePoint) -> Dict[str, Any]:
    return {
        "date": point.date.isoformat(),
        "portfolio_value": round(point.portfolio_value, 2),
        "cash": round(point.cash, 2),
        "position_value": round(point.position_value, 2),
        "quantity": point.quantity,
    }


def metrics_to_dict(metrics: PerformanceMetrics) -> Dict[str, Any]:
    dd = metrics.drawdown
    return {
        "initial_capital": metrics.initial_capital,
        "final_capital": round(metrics.final_capital, 2),
        "total_return": round(metrics.total_return, 2),
        "total_return_pct": round(metrics.total_return_pct, 4),
        "sharpe_ratio": _number(metrics.sharpe_ratio),
        "sortino_ratio": _number(metrics.sortino_ratio),
        "max_drawdown": round(dd.max_drawdown_pct, 4),
        "max_drawdown_amount": round(dd.max_drawdown_amount, 2),
        "drawdown_peak_date": dd.peak_date.isoformat() if dd.peak_date else None,
        "drawdown_trough_date": dd.trough_date.isoformat() if dd.trough_date else None,
        "total_trades": metrics.total_trades,
        "winning_trades": metrics.winning_trades,
        "losing_trades": metrics.losing_trades,
        "win_rate": round(metrics.win_rate, 4),
        "profit_factor": _number(metrics.profit_factor),
        "total_pnl": round(metrics.total_pnl, 2),
        "avg_profit_per_trade": round(metrics.avg_profit_per_trade, 2),
        "avg_loss_per_trade": round(metrics.avg_loss_per_trade, 2),
        "largest_win": round(metrics.largest_win, 2),
        "largest_loss": round(metrics.largest_loss, 2),
        "avg_trade_duration": metrics.avg_trade_duration,
        "bars_in_market": metrics.bars_in_market,
        "exposure_pct": round(metrics.exposure_pct, 4),
    }


def result_to_dict(result: BacktestResult) -> Dict[str, Any]:
    """Full JSON-ready representation of a run."""
    config = result.config
    return {
        "id": result.run_id,
        "strategy_name": config.strategy_name,
        "stock_symbol": config.stock_symbol,
        "start_date": config.start_date.isoformat(),
        "end_date": config.end_date.isoformat(),
        "initial_capital": result.initial_capital,
        "final_capital": round(result.final_capital, 2),
        "status": result.status.value,
        "error_message": result.error_message,
        "entry_conditions": [condition_to_dict(c) for c in config.entry_conditions],
        "exit_conditions": [exit_condition_to_dict(c) for c in config.exit_conditions],
        "metrics": metrics_to_dict(result.metrics) if result.metrics else None,
        "trades": [trade_to_dict(t) for t in result.trades],
        "equity_curve": [equity_point_to_dict(p) for p in result.equity_curve],
        "bars_processed": result.bars_processed,
        "signals_skipped": result.signals_skipped,
        "execution_time_ms": round(result.execution_time_ms, 3),
    }


_SUMMARY_METRICS = (
    "total_return_pct", "sharpe_ratio", "max_drawdown", "win_rate",
    "total_trades", "profit_factor",
)


def summarize(record: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a stored record to the fields shown in listings."""
    metrics = record.get("metrics") or {}
    summary = {
        key: record.get(key)
        for key in (
            "id", "strategy_name", "stock_symbol", "start_date", "end_date",
            "initial_capital", "final_capital", "status", "created_at",
        )
    }
    summary.update({key: metrics.get(key) for key in _SUMMARY_METRICS})
    return summary


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ResultStore:
    """Thread-safe store of finished runs.

    Args:
        path: JSON file to persist to.  ``None`` keeps results in memory
            only.
    """

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._records: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        """Load records from disk.  Returns {result_id: record}."""
        if self.path is None or not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not read result store %s: %s", self.path, e)
            return {}

    def _save(self) -> None:
        """Write records to disk."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self._records, f, indent=2)

    # ------------------------------------------------------------------

    def save(self, result: BacktestResult) -> str:
        """Store *result* and return its id."""
        record = result_to_dict(result)
        with self._lock:
            result_id = record["id"] or uuid.uuid4().hex[:8]
            while result_id in self._records:
                result_id = uuid.uuid4().hex[:8]
            record["id"] = result_id
            record["created_at"] = datetime.now(timezone.utc).isoformat()
            self._records[result_id] = record
            self._save()
        logger.info("Stored backtest %s (%s)", result_id, record["stock_symbol"])
        return result_id

    def get(self, result_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._records.get(result_id)

    def list(
        self,
        symbol: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return ``(summaries, total)`` newest first, optionally for one symbol."""
        with self._lock:
            records = list(reversed(list(self._records.values())))
        if symbol:
            wanted = symbol.strip().upper()
            records = [r for r in records if r.get("stock_symbol") == wanted]
        page = records[offset:offset + limit] if limit > 0 else records[offset:]
        return [summarize(r) for r in page], len(records)

    def delete(self, result_id: str) -> bool:
        """Remove a result.  Returns ``False`` when it does not exist."""
        with self._lock:
            if result_id not in self._records:
                return False
            del self._records[result_id]
            self._save()
        logger.info("Deleted backtest %s", result_id)
        return True

    def compare(self, result_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Summaries for up to :data:`MAX_COMPARE` ids, in request order.

        Unknown ids are left out.

        Raises:
            ValueError: If no ids or more than :data:`MAX_COMPARE` are given.
        """
        if not result_ids or len(result_ids) > MAX_COMPARE:
            raise ValueError(f"Provide between 1 and {MAX_COMPARE} backtest ids to compare")
        with self._lock:
            return [
                summarize(self._records[rid])
                for rid in result_ids if rid in self._records
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
