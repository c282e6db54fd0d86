"""Backtest Service: replays individual constraints over yfinance history.

Daily closes come from ``yf.Ticker.history`` on a worker thread; the
simulation itself is the pure ``engine.backtest.simulate``.
"""

from __future__ import annotations

import asyncio
import math
from datetime import date, timedelta

import yfinance as yf

from constraint_desk.config import settings
from constraint_desk.engine.backtest import compare_to_market, simulate
from constraint_desk.engine.triggers import individual_triggers
from constraint_desk.errors import BacktestError
from constraint_desk.models.backtest import BacktestResult, MarketComparison, PricePoint
from constraint_desk.services.store import ConstraintStore
from constraint_desk.utils.logger import logger


def fetch_daily_closes(symbol: str, start: date, end: date) -> list[PricePoint]:
    """Daily closes for ``symbol`` from start to end inclusive, oldest first."""
    # yfinance treats ``end`` as exclusive
    df = yf.Ticker(symbol).history(
        start=start.isoformat(),
        end=(end + timedelta(days=1)).isoformat(),
        interval="1d",
    )
    if df is None or df.empty:
        logger.warning("[Backtest] No price history for %s (%s to %s)", symbol, start, end)
        return []

    points: list[PricePoint] = []
    for idx, row in df.iterrows():
        close = float(row["Close"])
        if math.isnan(close) or close <= 0:
            continue
        day = idx.date() if hasattr(idx, "date") else idx
        points.append(PricePoint(date=day, close=round(close, 4)))
    return points


class BacktestService:
    """Runs constraint backtests for a user."""

    def __init__(self, store: ConstraintStore) -> None:
        self._store = store

    async def run_backtest(
        self,
        constraint_id: str,
        user_id: str,
        start: date,
        end: date,
        initial_capital: float | None = None,
    ) -> BacktestResult:
        """Simulate one constraint's triggers over [start, end]."""
        constraint = self._store.get_constraint(constraint_id, user_id)
        if constraint is None:
            raise BacktestError(f"Constraint {constraint_id} not found")

        closes = await asyncio.to_thread(
            fetch_daily_closes, constraint.stock_symbol, start, end
        )
        if len(closes) < 2:
            raise BacktestError(
                f"Insufficient historical data for {constraint.stock_symbol}: "
                f"{len(closes)} closes between {start} and {end}"
            )

        capital = settings.BACKTEST_INITIAL_CAPITAL if initial_capital is None else initial_capital
        result = simulate(
            constraint.stock_symbol,
            individual_triggers(constraint),
            closes,
            capital,
            constraint_id=constraint.id,
            risk_free_rate=settings.RISK_FREE_RATE,
        )
        logger.info(
            "[Backtest] %s %s..%s: %d trades, return %.2f%%, max drawdown %.2f%%",
            constraint.stock_symbol, result.start_date, result.end_date,
            result.total_trades, result.total_return_percent, result.max_drawdown,
        )
        return result

    async def run_many(
        self,
        constraint_ids: list[str],
        user_id: str,
        start: date,
        end: date,
        initial_capital: float | None = None,
    ) -> list[BacktestResult]:
        """Backtest several constraints; ones that can't run are skipped."""
        results = []
        for constraint_id in constraint_ids:
            try:
                results.append(await self.run_backtest(
                    constraint_id, user_id, start, end, initial_capital,
                ))
            except Exception as e:
                logger.warning("[Backtest] Skipping constraint %s: %s", constraint_id, e)
        return results

    async def compare_to_market(
        self,
        result: BacktestResult,
        benchmark: str | None = None,
    ) -> MarketComparison:
        """Compare a backtest with holding the benchmark over the same days."""
        benchmark = benchmark or settings.BENCHMARK_SYMBOL
        closes = await asyncio.to_thread(
            fetch_daily_closes, benchmark, result.start_date, result.end_date
        )
        if len(closes) < 2:
            raise BacktestError(f"Insufficient historical data for benchmark {benchmark}")
        return compare_to_market(result, closes, benchmark)
