"""Exception types raised by the constraint desk."""

from __future__ import annotations


class ConstraintDeskError(Exception):
    """Base class for all constraint desk errors."""


class ReconciliationError(ConstraintDeskError):
    """A required input fetch failed while building constraint positions."""

    def __init__(self, source: str, user_id: str) -> None:
        self.source = source
        self.user_id = user_id
        super().__init__(f"Failed to fetch {source} for user {user_id}")


class DuplicateConstraintError(ConstraintDeskError):
    """The user already has an individual constraint on this symbol."""

    def __init__(self, user_id: str, stock_symbol: str) -> None:
        self.user_id = user_id
        self.stock_symbol = stock_symbol
        super().__init__(f"Constraint for {stock_symbol} already exists")


class TradeRejectedError(ConstraintDeskError):
    """A trade could not be applied to the portfolio."""


class BacktestError(ConstraintDeskError):
    """A backtest could not be run (unknown constraint, too little history)."""
