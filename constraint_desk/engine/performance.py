"""Performance analytics over positions, trade history and snapshots.

Pure functions over already-fetched lists; no I/O.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from constraint_desk.engine.positions import compute_pnl, mark_price
from constraint_desk.models.performance import (
    ConstraintPerformance,
    PortfolioSnapshot,
    PositionPerformance,
)
from constraint_desk.models.trading import Position, TradeHistory

# range -> (lookback, bucket width, max points)
HISTORY_RANGES: dict[str, tuple[timedelta, timedelta, int]] = {
    "7d": (timedelta(days=7), timedelta(hours=1), 168),
    "30d": (timedelta(days=30), timedelta(hours=4), 180),
    "90d": (timedelta(days=90), timedelta(hours=12), 180),
    "1y": (timedelta(days=365), timedelta(days=1), 365),
}


def position_performance(positions: Iterable[Position]) -> list[PositionPerformance]:
    """Value and gain for each held position, unpriced ones marked at cost."""
    result = []
    for p in positions:
        if p.quantity <= 0:
            continue
        price = mark_price(p)
        value, gain, gain_pct = compute_pnl(p.quantity, p.average_cost, price)
        result.append(PositionPerformance(
            stock_symbol=p.stock_symbol,
            quantity=p.quantity,
            average_cost=p.average_cost,
            current_price=price,
            market_value=value,
            gain_loss=gain,
            gain_loss_percent=gain_pct,
        ))
    return result


def rank_positions(
    performances: Iterable[PositionPerformance], best_first: bool = True
) -> list[PositionPerformance]:
    """Sort by percent gain; ties broken by symbol."""
    ordered = sorted(performances, key=lambda p: p.stock_symbol)
    return sorted(ordered, key=lambda p: p.gain_loss_percent, reverse=best_first)


def constraint_performance(trades: Iterable[TradeHistory]) -> list[ConstraintPerformance]:
    """Realized results per constraint, replaying its trades oldest first.

    A sell is successful when it fills above the running average cost of
    that constraint's buys. Manual trades (no constraint) are ignored.
    """
    by_constraint: dict[str, list[TradeHistory]] = defaultdict(list)
    for t in trades:
        if t.constraint_id:
            by_constraint[t.constraint_id].append(t)

    results = []
    for constraint_id, items in by_constraint.items():
        items.sort(key=lambda t: t.executed_at)
        shares = 0.0
        average_cost = 0.0
        perf = ConstraintPerformance(constraint_id=constraint_id)
        symbols: list[str] = []

        for t in items:
            if t.stock_symbol not in symbols:
                symbols.append(t.stock_symbol)
            if t.trade_type == "BUY":
                perf.buy_trades += 1
                perf.total_invested += t.quantity * t.price
                average_cost = (shares * average_cost + t.quantity * t.price) / (
                    shares + t.quantity
                )
                shares += t.quantity
            else:
                perf.sell_trades += 1
                perf.realized_pnl += (t.price - average_cost) * t.quantity
                if t.price > average_cost:
                    perf.successful_trades += 1
                shares = max(shares - t.quantity, 0.0)

        perf.stock_symbols = symbols
        perf.total_trades = len(items)
        perf.last_trade_at = items[-1].executed_at
        if perf.sell_trades:
            perf.success_rate = perf.successful_trades / perf.sell_trades * 100
        if perf.total_invested > 0:
            perf.return_percent = perf.realized_pnl / perf.total_invested * 100
        results.append(perf)

    return sorted(results, key=lambda p: p.realized_pnl, reverse=True)


def bucket_snapshots(
    snapshots: Sequence[PortfolioSnapshot],
    time_range: str,
    now: datetime,
) -> list[PortfolioSnapshot]:
    """Downsample snapshots to one per bucket over ``time_range``.

    Each bucket keeps its latest snapshot and empty buckets are skipped,
    so the newest snapshot is always the last point.
    ``snapshots`` must be oldest first.
    """
    if time_range not in HISTORY_RANGES:
        raise ValueError(f"Unknown time range {time_range!r}")
    lookback, width, limit = HISTORY_RANGES[time_range]

    start = now - lookback
    in_range = [s for s in snapshots if start <= s.timestamp <= now]
    if not in_range:
        return []

    picked: list[PortfolioSnapshot] = []
    idx = 0
    boundary = start
    while True:
        boundary = min(boundary, now)
        latest = None
        while idx < len(in_range) and in_range[idx].timestamp <= boundary:
            latest = in_range[idx]
            idx += 1
        if latest is not None:
            picked.append(latest)
        if boundary >= now:
            break
        boundary += width

    return picked[-limit:]


def period_return(
    snapshots: Sequence[PortfolioSnapshot],
    days: int,
    now: datetime,
) -> float | None:
    """Percent change in total value over the last ``days`` days.

    Measured from the latest snapshot at or before the period start to
    the latest snapshot overall. None without a baseline that old.
    """
    if not snapshots:
        return None
    cutoff = now - timedelta(days=days)
    baseline = None
    for s in snapshots:
        if s.timestamp <= cutoff:
            baseline = s
        else:
            break
    if baseline is None or baseline.total_value <= 0:
        return None
    latest = snapshots[-1]
    return (latest.total_value - baseline.total_value) / baseline.total_value * 100
