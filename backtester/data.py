"""
Strategy Backtester -- Historical data loading.

Reads daily OHLCV bars from CSV files or plain dicts, and serves them to
the engine through the price-provider protocol: any object with a
``get_bars(symbol, start, end)`` method returning bars in ascending date
order.

Expected CSV format
-------------------

One row per trading day::

    date,open,high,low,close,volume
    2024-01-02,150.00,151.25,149.80,150.50,1234567

  - ``date`` is parsed flexibly (ISO-8601 or common day-first formats);
    a ``timestamp`` column is accepted in its place.
  - ``volume`` is optional and defaults to 0.

Extension points:
  - Parquet readers
  - Broker historical APIs
"""

import csv
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from backtester.exceptions import DataUnavailableError
from backtester.models import PriceBar

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Date parsing
# ---------------------------------------------------------------------------

_DATE_FORMATS = [
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S%z",
    "%d/%m/%Y",
    "%d-%m-%Y",
]


def _parse_date(value: Union[str, date, datetime]) -> date:
    """Try multiple common date formats and return the first match."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    value = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Cannot parse date: '{value}'")


def _bar_from_record(rec: Dict) -> PriceBar:
    raw_date = rec.get("date") or rec.get("timestamp")
    if raw_date is None:
        raise KeyError("date")
    return PriceBar(
        date=_parse_date(raw_date),
        open=float(rec["open"]),
        high=float(rec["high"]),
        low=float(rec["low"]),
        close=float(rec["close"]),
        volume=float(rec.get("volume") or 0),
    )


# ---------------------------------------------------------------------------
# Bar loading
# ---------------------------------------------------------------------------

def load_bars_csv(path: Union[str, Path]) -> List[PriceBar]:
    """Load daily bars from a CSV file.

    Args:
        path: Path to the CSV file.

    Returns:
        A list of :class:`PriceBar` objects sorted by date (ascending).

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: On malformed rows.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Bars CSV not found: {path}")

    bars: List[PriceBar] = []

    with open(path, "r", newline="") as f:
        reader = csv.DictReader(f)
        for row_num, row in enumerate(reader, start=2):
            try:
                bars.append(_bar_from_record(row))
            except (KeyError, ValueError) as e:
                raise ValueError(f"Error on row {row_num}: {e}") from e

    bars.sort(key=lambda b: b.date)
    return bars


def bars_from_dicts(records: Iterable[Dict]) -> List[PriceBar]:
    """Build :class:`PriceBar` objects from a list of dicts (useful for tests).

    Each dict should have keys ``date``, ``open``, ``high``, ``low``,
    ``close`` and optionally ``volume``.  ``date`` may be a string or a
    :class:`date`.
    """
    bars = [_bar_from_record(rec) for rec in records]
    bars.sort(key=lambda b: b.date)
    return bars


def ensure_ordered(bars: Sequence[PriceBar]) -> None:
    """Check that *bars* have strictly ascending dates.

    Raises:
        DataUnavailableError: On an out-of-order or duplicated date.
    """
    for prev, curr in zip(bars, bars[1:]):
        if curr.date <= prev.date:
            raise DataUnavailableError(
                f"Price data is not in ascending date order "
                f"({prev.date} followed by {curr.date})"
            )


def filter_range(bars: Iterable[PriceBar], start: date, end: date) -> List[PriceBar]:
    """Return the bars dated within ``[start, end]``."""
    return [b for b in bars if start <= b.date <= end]


# ---------------------------------------------------------------------------
# Price providers
# ---------------------------------------------------------------------------

class InMemoryPriceProvider:
    """Serves bars held in memory, keyed by symbol."""

    def __init__(self, bars_by_symbol: Optional[Dict[str, Sequence[PriceBar]]] = None):
        self._bars: Dict[str, List[PriceBar]] = {}
        for symbol, bars in (bars_by_symbol or {}).items():
            self.add(symbol, bars)

    def add(self, symbol: str, bars: Sequence[PriceBar]) -> None:
        self._bars[symbol.strip().upper()] = sorted(bars, key=lambda b: b.date)

    def get_bars(self, symbol: str, start: date, end: date) -> List[PriceBar]:
        bars = self._bars.get(symbol.strip().upper(), [])
        return filter_range(bars, start, end)


class CsvPriceProvider:
    """Serves bars from ``<directory>/<SYMBOL>.csv`` files.

    A missing file yields no bars, which the engine reports as
    unavailable data.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def get_bars(self, symbol: str, start: date, end: date) -> List[PriceBar]:
        path = self.directory / f"{symbol.strip().upper()}.csv"
        if not path.exists():
            logger.warning("No bars file for %s at %s", symbol, path)
            return []
        return filter_range(load_bars_csv(path), start, end)
