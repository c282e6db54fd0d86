"""Backtest models: historical closes, simulated trades and results."""

from __future__ import annotations

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field


class PricePoint(BaseModel):
    """One daily close."""

    date: date
    close: float


class BacktestTrade(BaseModel):
    """A trade the simulation executed on one day's close."""

    date: date
    trade_type: Literal["BUY", "SELL"]
    trigger_type: Literal["PRICE_DROP", "PRICE_RISE", "PROFIT_TARGET"]
    quantity: float
    price: float
    trigger_price: float
    average_cost: float  # cost basis per share when the trade ran
    cash_after: float
    shares_after: float


class BacktestResult(BaseModel):
    """Outcome of replaying one constraint's triggers over history."""

    constraint_id: str | None = None
    stock_symbol: str
    start_date: date
    end_date: date
    initial_capital: float
    final_value: float
    final_cash: float
    final_shares: float
    total_return: float
    total_return_percent: float
    total_trades: int = 0
    successful_trades: int = 0
    max_drawdown: float = 0.0  # percent below the running peak
    sharpe_ratio: float = 0.0
    volatility: float = 0.0  # daily, percent
    trades: list[BacktestTrade] = Field(default_factory=list)
    portfolio_values: list[float] = Field(default_factory=list)


class MarketComparison(BaseModel):
    """A backtest measured against buy-and-hold of a benchmark."""

    benchmark: str
    backtest_return: float
    market_return: float
    outperformance: float
    volatility: float
    market_volatility: float
