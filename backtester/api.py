"""
Strategy Backtester -- HTTP API.

Flask application exposing backtest runs and stored results.

Routes::

    POST   /api/backtest/run        run a configuration and store the result
    GET    /api/backtest/results    list stored results (limit, offset, symbol)
    GET    /api/backtest/<id>       fetch one stored result
    DELETE /api/backtest/<id>       delete one stored result
    POST   /api/backtest/compare    summary rows for 1-5 result ids

Responses are ``{"success": true, "data": ...}`` or
``{"success": false, "error": {"message": ..., "code": ...}}``.

Usage:
    python -m backtester.api
    -> Serves http://localhost:5050 (BACKTEST_API_PORT)
"""

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from backtester.config import Settings, load_settings
from backtester.engine import Engine
from backtester.exceptions import ValidationError
from backtester.models import RunStatus
from backtester.parser import check_period, parse_config
from backtester.store import MAX_COMPARE, ResultStore

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Collaborators, created lazily from settings unless configure() was called
_state: Dict[str, Any] = {"settings": None, "provider": None, "store": None}


def configure(
    settings: Optional[Settings] = None,
    provider=None,
    store: Optional[ResultStore] = None,
) -> None:
    """Set the settings, price provider and result store used by the routes."""
    _state["settings"] = settings
    _state["provider"] = provider
    _state["store"] = store


def _settings() -> Settings:
    if _state["settings"] is None:
        _state["settings"] = load_settings()
    return _state["settings"]


def _provider():
    if _state["provider"] is None:
        from backtester.yahoo_fetch import YahooPriceProvider
        _state["provider"] = YahooPriceProvider()
    return _state["provider"]


def _store() -> ResultStore:
    if _state["store"] is None:
        _state["store"] = ResultStore(_settings().results_path)
    return _state["store"]


def _ok(data: Any, status: int = 200, **extra: Any):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def _error(message: str, code: str, status: int):
    return jsonify({"success": False, "error": {"message": message, "code": code}}), status


# ======================================================================
# Backtest routes
# ======================================================================

@app.route("/api/backtest/run", methods=["POST"])
def api_backtest_run():
    """Run a backtest and store the result.

    Expected JSON body: see :mod:`backtester.parser`.
    """
    try:
        settings = _settings()
        data = request.get_json(silent=True)

        try:
            config = parse_config(data, settings.default_initial_capital)
            check_period(config, settings.max_period_days)
        except ValidationError as e:
            return _error(str(e), "VALIDATION_ERROR", 400)

        engine = Engine.from_settings(_provider(), settings)
        result = engine.run(config)

        if result.status == RunStatus.FAILED:
            return _error(result.error_message or "Backtest failed", "BACKTEST_FAILED", 500)

        result_id = _store().save(result)
        return _ok(_store().get(result_id))

    except Exception as e:
        logger.exception("Backtest run request failed")
        return _error(str(e), "BACKTEST_FAILED", 500)


@app.route("/api/backtest/results", methods=["GET"])
def api_backtest_results():
    """List stored results, newest first."""
    try:
        try:
            limit = int(request.args.get("limit", 20))
            offset = int(request.args.get("offset", 0))
        except ValueError:
            return _error("limit and offset must be integers", "VALIDATION_ERROR", 400)
        if limit < 1 or offset < 0:
            return _error("limit must be >= 1 and offset >= 0", "VALIDATION_ERROR", 400)

        symbol = (request.args.get("symbol") or "").strip() or None
        rows, total = _store().list(symbol=symbol, limit=limit, offset=offset)
        return _ok(rows, pagination={"total": total, "limit": limit, "offset": offset})

    except Exception as e:
        logger.exception("Listing backtest results failed")
        return _error(str(e), "FETCH_FAILED", 500)


@app.route("/api/backtest/<result_id>", methods=["GET"])
def api_backtest_get(result_id: str):
    """Return one stored result with trades and equity curve."""
    record = _store().get(result_id)
    if record is None:
        return _error(f"Backtest '{result_id}' not found", "NOT_FOUND", 404)
    return _ok(record)


@app.route("/api/backtest/<result_id>", methods=["DELETE"])
def api_backtest_delete(result_id: str):
    """Delete one stored result."""
    if not _store().delete(result_id):
        return _error(f"Backtest '{result_id}' not found", "NOT_FOUND", 404)
    return _ok({"id": result_id, "deleted": True})


@app.route("/api/backtest/compare", methods=["POST"])
def api_backtest_compare():
    """Compare up to five stored results side by side.

    Expected JSON body: ``{"ids": ["ab12cd34", "ef56ab78"]}``.
    """
    data = request.get_json(silent=True) or {}
    ids = data.get("ids", data.get("backtestIds"))

    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids) \
            or not 1 <= len(ids) <= MAX_COMPARE:
        return _error(
            f"Provide between 1 and {MAX_COMPARE} backtest ids to compare",
            "VALIDATION_ERROR", 400,
        )

    rows = _store().compare(ids)
    if not rows:
        return _error("None of the requested backtests were found", "NOT_FOUND", 404)
    return _ok(rows)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    settings = _settings()
    logger.info("Backtest API listening on port %d", settings.api_port)
    app.run(host="127.0.0.1", port=settings.api_port)


if __name__ == "__main__":
    main()
