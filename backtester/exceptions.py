"""
Strategy Backtester -- Exceptions.

Every failure a run can report maps to one of these.  The orchestrator
catches them at its boundary and turns them into a FAILED result.
"""

from __future__ import annotations


class BacktestError(Exception):
    """Base exception for the backtester."""


class ValidationError(BacktestError):
    """The run configuration is missing, malformed, or inconsistent."""


class DataUnavailableError(BacktestError):
    """The price provider failed or returned no usable bars."""


class ComputationError(BacktestError):
    """An unexpected fault while computing indicators, trades, or metrics."""
