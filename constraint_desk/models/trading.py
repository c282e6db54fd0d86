"""Trading models: Position, TradeHistory, ConstraintPosition and friends.

ConstraintPosition, GroupSummary and DashboardData are derived views and
are never persisted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from constraint_desk.models.constraints import TriggerSet


class Position(BaseModel):
    """A user's current holding in one stock."""

    user_id: str
    stock_symbol: str
    quantity: float
    average_cost: float
    current_price: float | None = None
    last_updated: datetime = Field(default_factory=datetime.now)


class TradeHistory(BaseModel):
    """One executed trade. Append-only."""

    id: str  # UUID
    user_id: str
    constraint_id: str | None = None
    stock_symbol: str
    trade_type: Literal["BUY", "SELL"]
    trigger_type: Literal["PRICE_DROP", "PRICE_RISE", "PROFIT_TARGET", "MANUAL"]
    quantity: float
    price: float
    trigger_price: float | None = None
    executed_at: datetime = Field(default_factory=datetime.now)


class ClosedPosition(BaseModel):
    """A round trip (buys fully sold) reconstructed from trade history."""

    stock_symbol: str
    constraint_id: str | None = None
    quantity: float
    average_cost: float
    exit_price: float
    realized_pnl: float
    realized_pnl_percent: float
    holding_days: int = 0
    opened_at: datetime | None = None
    closed_at: datetime | None = None


class ConstraintPosition(BaseModel):
    """A constraint's resolved triggers joined with the live position."""

    stock_symbol: str
    constraint_type: Literal["individual", "group"]
    constraint_id: str | None = None
    constraint_name: str | None = None
    is_active: bool = True

    buy_trigger_percent: float
    sell_trigger_percent: float
    profit_trigger_percent: float | None = None
    buy_amount: float
    sell_amount: float

    current_price: float = 0.0
    quantity: float = 0.0
    average_cost: float = 0.0
    market_value: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    status: Literal["position", "watching"] = "watching"

    # Group context (None for individual constraints)
    has_custom_triggers: bool = False
    group_id: str | None = None
    group_name: str | None = None
    group_default_triggers: TriggerSet | None = None

    def triggers(self) -> TriggerSet:
        """The effective trigger values carried by this entry."""
        return TriggerSet(
            buy_trigger_percent=self.buy_trigger_percent,
            sell_trigger_percent=self.sell_trigger_percent,
            profit_trigger_percent=self.profit_trigger_percent,
            buy_amount=self.buy_amount,
            sell_amount=self.sell_amount,
        )


class GroupSummary(BaseModel):
    """Per-group totals over the group's expanded stock set."""

    group_id: str
    group_name: str
    is_active: bool = True
    total_stocks: int = 0
    active_positions: int = 0
    total_value: float = 0.0
    total_unrealized_pnl: float = 0.0
    total_unrealized_pnl_percent: float = 0.0
    buy_trigger_percent: float
    sell_trigger_percent: float
    profit_trigger_percent: float | None = None
    buy_amount: float
    sell_amount: float


class DashboardData(BaseModel):
    """Everything the dashboard needs in one payload."""

    constraint_positions: list[ConstraintPosition] = Field(default_factory=list)
    group_summary: list[GroupSummary] = Field(default_factory=list)
    total_positions: int = 0
    total_watching: int = 0
    total_value: float = 0.0
    total_unrealized_pnl: float = 0.0


class TriggerEvent(BaseModel):
    """A trigger condition met by a live price."""

    constraint_id: str | None = None
    constraint_type: Literal["individual", "group"] = "individual"
    stock_symbol: str
    trigger_type: Literal["BUY", "SELL", "PROFIT"]
    current_price: float
    trigger_price: float
    amount: float
    timestamp: datetime = Field(default_factory=datetime.now)
