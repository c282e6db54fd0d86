"""Performance models: portfolio snapshots and analytics views.

Snapshots are persisted in ``portfolio_history``; the rest are derived.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class PortfolioSnapshot(BaseModel):
    """Portfolio totals for one user at one point in time."""

    id: str
    user_id: str
    total_value: float
    total_gain_loss: float
    total_gain_loss_percent: float
    position_count: int
    timestamp: datetime = Field(default_factory=datetime.now)


class PositionPerformance(BaseModel):
    stock_symbol: str
    quantity: float
    average_cost: float
    current_price: float
    market_value: float
    gain_loss: float
    gain_loss_percent: float


class ConstraintPerformance(BaseModel):
    """Realized results of the trades one constraint fired."""

    constraint_id: str
    stock_symbols: list[str] = Field(default_factory=list)
    total_trades: int = 0
    buy_trades: int = 0
    sell_trades: int = 0
    successful_trades: int = 0
    success_rate: float = 0.0  # percent of sells above cost
    total_invested: float = 0.0
    realized_pnl: float = 0.0
    return_percent: float = 0.0
    last_trade_at: datetime | None = None


class PerformanceReport(BaseModel):
    """Headline numbers, period returns and risk for one user."""

    user_id: str
    total_value: float
    total_cost: float
    total_gain_loss: float
    total_gain_loss_percent: float
    position_count: int

    # Percent change vs the snapshot at the start of each period;
    # None when history doesn't reach back that far
    day_return: float | None = None
    week_return: float | None = None
    month_return: float | None = None
    year_return: float | None = None

    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    volatility: float = 0.0

    best_position: PositionPerformance | None = None
    worst_position: PositionPerformance | None = None
    constraint_trades: int = 0
    generated_at: datetime = Field(default_factory=datetime.now)
