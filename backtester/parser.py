"""
Strategy Backtester -- Run configuration parsing and validation.

Turns a JSON-style request body into a :class:`BacktestConfig`, mapping
every free-form string (indicator, operator, combinator, exit type) onto
a closed enumeration.  Unknown values are rejected here, so evaluation
never sees them.

Expected body (camelCase or snake_case keys)::

    {
        "strategyName": "RSI dip",
        "stockSymbol": "INFY",
        "startDate": "2023-01-01",
        "endDate": "2023-12-31",
        "initialCapital": 100000,
        "entryConditions": [
            {"indicator": "RSI", "operator": "<", "value": 30, "combinator": "AND"},
            {"indicator": "PRICE", "operator": "crossover", "value": "SMA20"}
        ],
        "exitConditions": [
            {"type": "profit_target", "value": 10},
            {"type": "stop_loss", "value": 5}
        ]
    }

Required fields: strategyName, stockSymbol, startDate, endDate, at least
one entry and one exit condition.  ``initialCapital`` falls back to the
caller's default.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from backtester.exceptions import ValidationError
from backtester.models import (
    BacktestConfig,
    Combinator,
    ExitCondition,
    ExitType,
    Indicator,
    Operator,
    SeriesRef,
    StrategyCondition,
)
from backtester.conditions import EMA_PERIODS, SMA_PERIODS


_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S.%fZ")

_PERCENT_EXITS = (ExitType.PROFIT_TARGET, ExitType.STOP_LOSS, ExitType.TRAILING_STOP)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _get(payload: Dict[str, Any], camel: str, snake: str) -> Any:
    if camel in payload:
        return payload[camel]
    return payload.get(snake)


def _allowed(enum_cls) -> str:
    return ", ".join(m.value for m in enum_cls)


def parse_date(value: Union[str, date, datetime], field_name: str = "date") -> date:
    """Convert a date string or object to a :class:`date`."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required")
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValidationError(f"Cannot parse {field_name}: '{value}'")


def _parse_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number, got '{value}'") from None
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field_name} must be finite")
    return number


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

def parse_condition(raw: Dict[str, Any], index: int = 0) -> StrategyCondition:
    """Parse one entry condition dict.

    Raises:
        ValidationError: On a missing field or an unknown value.
    """
    where = f"entryConditions[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{where} must be an object")

    name = str(raw.get("indicator") or "").strip().upper()
    try:
        indicator = Indicator(name)
    except ValueError:
        raise ValidationError(
            f"{where}: unknown indicator '{raw.get('indicator')}'. "
            f"Expected one of: {_allowed(Indicator)}"
        ) from None

    op_text = str(raw.get("operator") or "").strip()
    try:
        operator = Operator(op_text.lower() if op_text.isalpha() else op_text)
    except ValueError:
        raise ValidationError(
            f"{where}: unknown operator '{raw.get('operator')}'. "
            f"Expected one of: {_allowed(Operator)}"
        ) from None

    raw_value = raw.get("value")
    value: Union[float, SeriesRef]
    if isinstance(raw_value, str) and raw_value.strip().upper() in SeriesRef.__members__:
        value = SeriesRef[raw_value.strip().upper()]
    else:
        value = _parse_number(raw_value, f"{where}.value")

    combinator: Optional[Combinator] = None
    if raw.get("combinator") not in (None, ""):
        try:
            combinator = Combinator(str(raw["combinator"]).strip().upper())
        except ValueError:
            raise ValidationError(
                f"{where}: unknown combinator '{raw['combinator']}'. "
                f"Expected one of: {_allowed(Combinator)}"
            ) from None

    period: Optional[int] = None
    if raw.get("period") not in (None, ""):
        number = _parse_number(raw["period"], f"{where}.period")
        if number != int(number):
            raise ValidationError(f"{where}.period must be a whole number")
        period = int(number)

    condition = StrategyCondition(
        indicator=indicator,
        operator=operator,
        value=value,
        combinator=combinator,
        period=period,
    )
    _check_condition(condition, where)
    return condition


def parse_exit_condition(raw: Dict[str, Any], index: int = 0) -> ExitCondition:
    """Parse one exit condition dict."""
    where = f"exitConditions[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{where} must be an object")

    try:
        exit_type = ExitType(str(raw.get("type") or "").strip().lower())
    except ValueError:
        raise ValidationError(
            f"{where}: unknown exit type '{raw.get('type')}'. "
            f"Expected one of: {_allowed(ExitType)}"
        ) from None

    condition = ExitCondition(type=exit_type, value=_parse_number(raw.get("value"), f"{where}.value"))
    _check_exit_condition(condition, where)
    return condition


def _check_condition(condition: StrategyCondition, where: str) -> None:
    if not isinstance(condition.indicator, Indicator):
        raise ValidationError(f"{where}: indicator must be an Indicator")
    if not isinstance(condition.operator, Operator):
        raise ValidationError(f"{where}: operator must be an Operator")
    if condition.combinator is not None and not isinstance(condition.combinator, Combinator):
        raise ValidationError(f"{where}: combinator must be AND or OR")
    if not isinstance(condition.value, (int, float, SeriesRef)) or isinstance(condition.value, bool):
        raise ValidationError(f"{where}: value must be a number or a series name")

    if condition.period is not None:
        if condition.indicator == Indicator.SMA and condition.period not in SMA_PERIODS:
            raise ValidationError(
                f"{where}: SMA period must be one of {', '.join(map(str, SMA_PERIODS))}"
            )
        if condition.indicator == Indicator.EMA and condition.period not in EMA_PERIODS:
            raise ValidationError(
                f"{where}: EMA period must be one of {', '.join(map(str, EMA_PERIODS))}"
            )
        if condition.indicator not in (Indicator.SMA, Indicator.EMA):
            raise ValidationError(f"{where}: period only applies to SMA and EMA")


def _check_exit_condition(condition: ExitCondition, where: str) -> None:
    if not isinstance(condition.type, ExitType):
        raise ValidationError(f"{where}: type must be an ExitType")
    if condition.value <= 0:
        raise ValidationError(f"{where}.value must be greater than 0")
    if condition.type in _PERCENT_EXITS[1:] and condition.value > 100:
        raise ValidationError(f"{where}.value cannot exceed 100 percent")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_config(
    payload: Dict[str, Any],
    default_initial_capital: float = 100_000.0,
) -> BacktestConfig:
    """Parse a request body into a validated :class:`BacktestConfig`.

    Raises:
        ValidationError: If any field is missing, malformed, or unknown,
            or the result fails :func:`validate_config`.
    """
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("No configuration provided")

    strategy_name = str(_get(payload, "strategyName", "strategy_name") or "").strip()
    stock_symbol = str(_get(payload, "stockSymbol", "stock_symbol") or "").strip().upper()
    if not strategy_name or not stock_symbol:
        raise ValidationError("Missing required fields: strategyName and stockSymbol")

    start = parse_date(_get(payload, "startDate", "start_date"), "startDate")
    end = parse_date(_get(payload, "endDate", "end_date"), "endDate")

    raw_capital = _get(payload, "initialCapital", "initial_capital")
    capital = (
        default_initial_capital if raw_capital is None
        else _parse_number(raw_capital, "initialCapital")
    )

    raw_entries = _get(payload, "entryConditions", "entry_conditions") or []
    raw_exits = _get(payload, "exitConditions", "exit_conditions") or []
    if not isinstance(raw_entries, list) or not isinstance(raw_exits, list):
        raise ValidationError("entryConditions and exitConditions must be lists")

    entries: List[StrategyCondition] = [
        parse_condition(raw, i) for i, raw in enumerate(raw_entries)
    ]
    exits: List[ExitCondition] = [
        parse_exit_condition(raw, i) for i, raw in enumerate(raw_exits)
    ]

    config = BacktestConfig(
        strategy_name=strategy_name,
        stock_symbol=stock_symbol,
        start_date=start,
        end_date=end,
        initial_capital=capital,
        entry_conditions=entries,
        exit_conditions=exits,
    )
    validate_config(config)
    return config


def validate_config(config: BacktestConfig) -> None:
    """Check a configuration before any computation runs.

    Raises:
        ValidationError: With a message describing the first problem.
    """
    if not (config.strategy_name or "").strip():
        raise ValidationError("strategyName must not be empty")
    if not (config.stock_symbol or "").strip():
        raise ValidationError("stockSymbol must not be empty")
    if not isinstance(config.start_date, date) or not isinstance(config.end_date, date):
        raise ValidationError("startDate and endDate must be dates")
    if config.start_date >= config.end_date:
        raise ValidationError("End date must be after start date")

    capital = config.initial_capital
    if isinstance(capital, bool) or not isinstance(capital, (int, float)) \
            or math.isnan(capital) or math.isinf(capital) or capital <= 0:
        raise ValidationError("initialCapital must be greater than 0")

    if not config.entry_conditions:
        raise ValidationError("At least one entry condition is required")
    if not config.exit_conditions:
        raise ValidationError("At least one exit condition is required")

    for i, cond in enumerate(config.entry_conditions):
        _check_condition(cond, f"entryConditions[{i}]")
    for i, cond in enumerate(config.exit_conditions):
        _check_exit_condition(cond, f"exitConditions[{i}]")


def check_period(config: BacktestConfig, max_days: int) -> None:
    """Reject a date range longer than *max_days* (0 disables the check)."""
    if max_days > 0 and (config.end_date - config.start_date).days > max_days:
        raise ValidationError(f"Backtest period cannot exceed {max_days} days")
