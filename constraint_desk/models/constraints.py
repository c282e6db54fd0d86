"""Constraint models: TradingConstraint, ConstraintGroup, StockGroup.

A constraint attaches buy/sell/profit triggers to one stock. A constraint
group attaches one set of triggers to many stocks (listed directly or via
stock groups), with optional per-stock overrides.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


def normalize_symbol(symbol: str) -> str:
    """Upper-case and strip a ticker symbol."""
    return symbol.strip().upper()


class TriggerSet(BaseModel):
    """Effective trigger values for one stock."""

    buy_trigger_percent: float
    sell_trigger_percent: float
    profit_trigger_percent: float | None = None  # None = profit trigger disabled
    buy_amount: float
    sell_amount: float


class StockConstraintOverride(BaseModel):
    """Per-stock override inside a constraint group. Unset fields inherit."""

    buy_trigger_percent: float | None = None
    sell_trigger_percent: float | None = None
    profit_trigger_percent: float | None = None
    buy_amount: float | None = None
    sell_amount: float | None = None


class TradingConstraint(BaseModel):
    """Individual constraint on a single stock."""

    id: str
    user_id: str
    stock_symbol: str
    buy_trigger_percent: float  # negative, e.g. -5.0
    sell_trigger_percent: float  # positive, e.g. 10.0
    profit_trigger_percent: float | None = None
    buy_amount: float
    sell_amount: float
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("stock_symbol")
    @classmethod
    def _upper_symbol(cls, v: str) -> str:
        return normalize_symbol(v)


class StockGroup(BaseModel):
    """Reusable named set of ticker symbols. Carries no triggers."""

    id: str
    user_id: str
    name: str
    description: str | None = None
    color: str = "#3B82F6"
    stocks: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("stocks")
    @classmethod
    def _upper_stocks(cls, v: list[str]) -> list[str]:
        return [normalize_symbol(s) for s in v]


class ConstraintGroup(BaseModel):
    """One trigger set applied to many stocks."""

    id: str
    user_id: str
    name: str
    description: str | None = None
    buy_trigger_percent: float
    sell_trigger_percent: float
    profit_trigger_percent: float | None = None
    buy_amount: float
    sell_amount: float
    is_active: bool = True
    stocks: list[str] = Field(default_factory=list)
    stock_groups: list[str] = Field(default_factory=list)  # StockGroup ids
    stock_overrides: dict[str, StockConstraintOverride] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("stocks")
    @classmethod
    def _upper_stocks(cls, v: list[str]) -> list[str]:
        return [normalize_symbol(s) for s in v]

    @field_validator("stock_overrides")
    @classmethod
    def _upper_override_keys(
        cls, v: dict[str, StockConstraintOverride]
    ) -> dict[str, StockConstraintOverride]:
        return {normalize_symbol(k): o for k, o in v.items()}

    def default_triggers(self) -> TriggerSet:
        """The group's own trigger values, ignoring overrides."""
        return TriggerSet(
            buy_trigger_percent=self.buy_trigger_percent,
            sell_trigger_percent=self.sell_trigger_percent,
            profit_trigger_percent=self.profit_trigger_percent,
            buy_amount=self.buy_amount,
            sell_amount=self.sell_amount,
        )
