"""
Strategy Backtester -- Yahoo Finance historical bar data fetcher.

Downloads daily OHLCV bars from Yahoo Finance's chart API and exposes
them through the price-provider protocol used by the engine.

Usage::

    from backtester.yahoo_fetch import YahooPriceProvider

    engine = Engine(YahooPriceProvider(suffix=".NS"))
    result = engine.run(config)
"""

from __future__ import annotations

import time
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import requests

from backtester.data import filter_range
from backtester.exceptions import DataUnavailableError
from backtester.models import PriceBar

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class YahooFetchError(DataUnavailableError):
    """Raised when historical data cannot be fetched."""


class _ChartClient:
    """Lightweight Yahoo Finance chart API client with cookie/crumb auth."""

    def __init__(self, retry_count: int = 3, backoff_base: int = 2):
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})
        self._crumb: Optional[str] = None
        self._retry_count = retry_count
        self._backoff_base = backoff_base

    def _refresh_credentials(self) -> None:
        """Fetch a fresh cookie + crumb pair."""
        self._session.cookies.clear()
        self._session.get("https://fc.yahoo.com", allow_redirects=True, timeout=15)

        for url in [
            "https://query1.finance.yahoo.com/v1/test/getcrumb",
            "https://query2.finance.yahoo.com/v1/test/getcrumb",
        ]:
            r = self._session.get(url, allow_redirects=True, timeout=15)
            txt = (r.text or "").strip()
            if r.status_code == 200 and txt and "Too Many" not in txt and "Invalid" not in txt:
                self._crumb = txt
                return

        raise YahooFetchError("Could not obtain Yahoo crumb for chart API.")

    def get_chart(self, ticker: str, params: dict) -> dict:
        """Fetch chart data with retries, crumb refresh, and backoff."""
        if not self._crumb:
            self._refresh_credentials()

        params = dict(params)
        params["crumb"] = self._crumb

        url = f"https://query1.finance.yahoo.com/v8/finance/chart/{ticker}"

        last_response = None
        for attempt in range(self._retry_count):
            try:
                r = self._session.get(url, params=params, timeout=20)
            except requests.RequestException as e:
                raise YahooFetchError(f"Yahoo chart request failed: {e}") from e
            last_response = r

            if r.status_code == 401:
                self._refresh_credentials()
                params["crumb"] = self._crumb
                continue

            if r.status_code in (429, 500, 502, 503, 504):
                wait = self._backoff_base ** attempt
                logger.warning(
                    "Yahoo chart API %d, backing off %ds (attempt %d)",
                    r.status_code, wait, attempt,
                )
                time.sleep(wait)
                continue

            if r.status_code == 404:
                raise YahooFetchError(f"Unknown symbol '{ticker}'")

            r.raise_for_status()
            return r.json()

        status = getattr(last_response, "status_code", None)
        raise YahooFetchError(
            f"Yahoo chart request failed after {self._retry_count} retries "
            f"(last status={status})"
        )


# Module-level client, reused across calls
_client: Optional[_ChartClient] = None


def _get_client() -> _ChartClient:
    global _client
    if _client is None:
        _client = _ChartClient()
    return _client


def _epoch(day: date) -> int:
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp())


def fetch_bars(ticker: str, start: date, end: date) -> List[PriceBar]:
    """Fetch daily OHLCV bars from Yahoo Finance.

    Args:
        ticker: Yahoo symbol (e.g. ``"INFY.NS"``).
        start: First day (inclusive).
        end: Last day (inclusive).

    Returns:
        List of :class:`PriceBar` objects sorted by date, one per day.

    Raises:
        ValueError: If *ticker* is empty or the range is inverted.
        YahooFetchError: If the data cannot be fetched from Yahoo.
    """
    ticker = ticker.strip().upper()
    if not ticker:
        raise ValueError("Ticker must not be empty.")
    if start > end:
        raise ValueError(f"Start date ({start}) must not be after end date ({end}).")

    client = _get_client()
    data = client.get_chart(ticker, {
        "period1": _epoch(start),
        # period2 is exclusive
        "period2": _epoch(end + timedelta(days=1)),
        "interval": "1d",
        "includePrePost": "false",
        "events": "",
    })

    # Parse response
    chart = data.get("chart", {})
    error = chart.get("error")
    if error:
        raise YahooFetchError(f"Yahoo chart error: {error}")

    results = chart.get("result")
    if not results:
        raise YahooFetchError(f"No chart data returned for {ticker}.")

    result = results[0]
    timestamps = result.get("timestamp") or []
    indicators = result.get("indicators", {})
    quotes = (indicators.get("quote") or [{}])[0]

    opens = quotes.get("open") or []
    highs = quotes.get("high") or []
    lows = quotes.get("low") or []
    closes = quotes.get("close") or []
    volumes = quotes.get("volume") or []

    if not timestamps:
        raise YahooFetchError(f"No price data returned for {ticker} in the given range.")

    by_day = {}
    for i, ts in enumerate(timestamps):
        # Skip bars with None values (market holidays / gaps)
        o = opens[i] if i < len(opens) else None
        h = highs[i] if i < len(highs) else None
        lo = lows[i] if i < len(lows) else None
        c = closes[i] if i < len(closes) else None
        v = volumes[i] if i < len(volumes) else None

        if any(x is None for x in (o, h, lo, c)):
            continue

        day = datetime.fromtimestamp(ts, tz=timezone.utc).date()
        # Later rows for the same day (live partial bar) replace earlier ones
        by_day[day] = PriceBar(
            date=day,
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=float(v or 0),
        )

    bars = filter_range(sorted(by_day.values(), key=lambda b: b.date), start, end)

    logger.info(
        "Fetched %d bars for %s (%s to %s)",
        len(bars), ticker, start, end,
    )

    return bars


class YahooPriceProvider:
    """Price provider backed by :func:`fetch_bars`.

    Args:
        suffix: Exchange suffix appended to bare symbols (``".NS"`` for
            NSE listings, ``""`` for US tickers).
    """

    def __init__(self, suffix: str = ""):
        self.suffix = suffix

    def get_bars(self, symbol: str, start: date, end: date) -> List[PriceBar]:
        ticker = symbol.strip().upper()
        if self.suffix and "." not in ticker:
            ticker += self.suffix.upper()
        return fetch_bars(ticker, start, end)
