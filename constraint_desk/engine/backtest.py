"""Backtest engine: replays a constraint's triggers over daily closes.

Each day's close is checked against the previous close with the same
``evaluate`` the live price monitor uses, so a backtest fires exactly
the triggers the monitor would have fired. Fills mirror the monitor:
dollar amounts become fractional shares at the close, sells are capped
at the shares held. Unlike the live portfolio, cash is finite: a buy
needs the full buy amount in cash.

Risk metrics are plain numpy over the daily portfolio values.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from constraint_desk.engine.evaluator import TRADE_TRIGGER_TYPES, evaluate
from constraint_desk.models.backtest import (
    BacktestResult,
    BacktestTrade,
    MarketComparison,
    PricePoint,
)
from constraint_desk.models.constraints import TriggerSet
from constraint_desk.models.trading import ConstraintPosition

TRADING_DAYS_PER_YEAR = 252

# Share counts below this are treated as flat
_QTY_EPSILON = 1e-9


# ------------------------------------------------------------------
# Metrics
# ------------------------------------------------------------------


def daily_returns(values: Sequence[float]) -> np.ndarray:
    """Simple returns between consecutive values (days at 0 are skipped)."""
    arr = np.asarray(values, dtype=float)
    if arr.size < 2:
        return np.array([])
    prev, curr = arr[:-1], arr[1:]
    mask = prev > 0
    return (curr[mask] - prev[mask]) / prev[mask]


def max_drawdown(values: Sequence[float], starting_peak: float = 0.0) -> float:
    """Largest peak-to-trough decline, as a positive percent."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 0.0
    peak = np.maximum(np.maximum.accumulate(arr), starting_peak)
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peak > 0, (peak - arr) / peak, 0.0)
    return float(np.max(dd)) * 100


def sharpe_ratio(returns: np.ndarray, risk_free_rate: float = 0.0) -> float:
    """Annualized Sharpe ratio of daily returns."""
    if len(returns) < 2:
        return 0.0
    excess = returns - risk_free_rate / TRADING_DAYS_PER_YEAR
    std = np.std(excess, ddof=1)
    if std == 0:
        return 0.0
    return float((np.mean(excess) / std) * np.sqrt(TRADING_DAYS_PER_YEAR))


def return_volatility(returns: np.ndarray) -> float:
    """Standard deviation of daily returns, in percent."""
    if len(returns) < 2:
        return 0.0
    return float(np.std(returns, ddof=1)) * 100


def percent_change(first: float, last: float) -> float:
    return ((last - first) / first) * 100 if first > 0 else 0.0


# ------------------------------------------------------------------
# Simulation
# ------------------------------------------------------------------


def simulate(
    stock_symbol: str,
    triggers: TriggerSet,
    closes: Sequence[PricePoint],
    initial_capital: float,
    constraint_id: str | None = None,
    risk_free_rate: float = 0.0,
) -> BacktestResult:
    """Run the trigger rules over ``closes`` (oldest first).

    ``closes`` must hold at least two points.
    """
    if len(closes) < 2:
        raise ValueError("simulate() needs at least two closes")

    cash = initial_capital
    shares = 0.0
    average_cost = 0.0
    trades: list[BacktestTrade] = []
    values = [initial_capital]
    successful = 0

    for prev, point in zip(closes, closes[1:]):
        price = point.close
        cp = ConstraintPosition(
            stock_symbol=stock_symbol,
            constraint_type="individual",
            constraint_id=constraint_id,
            **triggers.model_dump(),
            current_price=prev.close,
            quantity=shares,
            average_cost=average_cost,
        )
        for event in evaluate(cp, prev.close, price):
            if event.trigger_type == "BUY":
                if event.amount <= 0 or cash < event.amount:
                    continue
                qty = event.amount / price
                average_cost = (shares * average_cost + event.amount) / (shares + qty)
                shares += qty
                cash -= event.amount
                trade_type = "BUY"
            else:
                qty = min(event.amount / price, shares)
                if qty <= 0:
                    continue
                if price > average_cost:
                    successful += 1
                shares -= qty
                cash += qty * price
                trade_type = "SELL"

            trades.append(BacktestTrade(
                date=point.date,
                trade_type=trade_type,
                trigger_type=TRADE_TRIGGER_TYPES[event.trigger_type],
                quantity=qty,
                price=price,
                trigger_price=event.trigger_price,
                average_cost=average_cost,
                cash_after=cash,
                shares_after=shares,
            ))
            if shares < _QTY_EPSILON:
                shares, average_cost = 0.0, 0.0

        values.append(cash + shares * price)

    returns = daily_returns(values)
    final_value = values[-1]
    return BacktestResult(
        constraint_id=constraint_id,
        stock_symbol=stock_symbol,
        start_date=closes[0].date,
        end_date=closes[-1].date,
        initial_capital=initial_capital,
        final_value=final_value,
        final_cash=cash,
        final_shares=shares,
        total_return=final_value - initial_capital,
        total_return_percent=percent_change(initial_capital, final_value),
        total_trades=len(trades),
        successful_trades=successful,
        max_drawdown=max_drawdown(values, starting_peak=initial_capital),
        sharpe_ratio=sharpe_ratio(returns, risk_free_rate),
        volatility=return_volatility(returns),
        trades=trades,
        portfolio_values=values,
    )


def compare_to_market(
    result: BacktestResult,
    benchmark_closes: Sequence[PricePoint],
    benchmark: str,
) -> MarketComparison:
    """Measure ``result`` against buying and holding the benchmark."""
    prices = [p.close for p in benchmark_closes]
    market_return = percent_change(prices[0], prices[-1]) if prices else 0.0
    return MarketComparison(
        benchmark=benchmark,
        backtest_return=result.total_return_percent,
        market_return=market_return,
        outperformance=result.total_return_percent - market_return,
        volatility=result.volatility,
        market_volatility=return_volatility(daily_returns(prices)),
    )
