"""Position joiner: attaches live position data to resolved triggers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from constraint_desk.models.constraints import TriggerSet, normalize_symbol
from constraint_desk.models.trading import ConstraintPosition, Position


def compute_pnl(
    quantity: float, average_cost: float, current_price: float
) -> tuple[float, float, float]:
    """Return (market_value, unrealized_pnl, unrealized_pnl_percent).

    P&L is 0 when nothing is held, and the percentage is 0 whenever the
    cost basis is 0.
    """
    market_value = quantity * current_price
    if quantity <= 0:
        return market_value, 0.0, 0.0

    cost_basis = quantity * average_cost
    unrealized_pnl = market_value - cost_basis
    if cost_basis <= 0:
        return market_value, unrealized_pnl, 0.0
    return market_value, unrealized_pnl, (unrealized_pnl / cost_basis) * 100


def mark_price(position: Position | None) -> float:
    """Price used to value a position.

    A position with no quote yet is marked at its average cost, so it
    shows no gain or loss until the first price arrives.
    """
    if position is None:
        return 0.0
    return position.current_price or position.average_cost


def index_positions(
    positions: Iterable[Position] | Mapping[str, Position],
) -> dict[str, Position]:
    """Map symbol -> Position (accepts a list or a ready mapping)."""
    if isinstance(positions, Mapping):
        return dict(positions)
    return {normalize_symbol(p.stock_symbol): p for p in positions}


def join_position(
    symbol: str,
    triggers: TriggerSet,
    positions: Mapping[str, Position],
    **context: Any,
) -> ConstraintPosition:
    """Build one ConstraintPosition for ``symbol``.

    ``context`` carries the constraint identity (constraint_type,
    constraint_id, constraint_name, is_active, group fields) and is passed
    straight to the model.
    """
    symbol = normalize_symbol(symbol)
    position = positions.get(symbol)

    quantity = position.quantity if position else 0.0
    average_cost = position.average_cost if position else 0.0
    current_price = (position.current_price or 0.0) if position else 0.0

    market_value, unrealized_pnl, unrealized_pnl_pct = compute_pnl(
        quantity, average_cost, mark_price(position)
    )

    return ConstraintPosition(
        stock_symbol=symbol,
        **triggers.model_dump(),
        current_price=current_price,
        quantity=quantity,
        average_cost=average_cost,
        market_value=market_value,
        unrealized_pnl=unrealized_pnl,
        unrealized_pnl_percent=unrealized_pnl_pct,
        status="position" if quantity > 0 else "watching",
        **context,
    )
