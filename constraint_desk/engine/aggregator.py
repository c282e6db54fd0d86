"""Aggregator: merges individual constraints and constraint groups with
live positions into one list of constraint positions.

Pure functions over already-fetched lists; no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable

from constraint_desk.engine.positions import (
    compute_pnl,
    index_positions,
    join_position,
    mark_price,
)
from constraint_desk.engine.triggers import (
    expand_stocks,
    has_custom_triggers,
    index_stock_groups,
    individual_triggers,
    resolve_triggers,
)
from constraint_desk.models.constraints import ConstraintGroup, StockGroup, TradingConstraint
from constraint_desk.models.trading import (
    ConstraintPosition,
    DashboardData,
    GroupSummary,
    Position,
)


def sort_constraint_positions(
    entries: Iterable[ConstraintPosition],
) -> list[ConstraintPosition]:
    """Held positions first, then watch-only; alphabetical within each."""
    return sorted(
        entries,
        key=lambda cp: (0 if cp.status == "position" else 1, cp.stock_symbol),
    )


def aggregate_constraint_positions(
    constraints: Iterable[TradingConstraint],
    groups: Iterable[ConstraintGroup],
    stock_groups: Iterable[StockGroup],
    positions: Iterable[Position],
) -> list[ConstraintPosition]:
    """Build the full, de-duplicated ConstraintPosition list for a user.

    Individual constraints are emitted first and win over any group that
    also covers the same symbol. Among groups, the first one listed wins.
    Inactive constraints and groups are included with ``is_active=False``.
    """
    by_symbol = index_positions(positions)
    sg_index = index_stock_groups(stock_groups)

    result: dict[str, ConstraintPosition] = {}

    for constraint in constraints:
        if constraint.stock_symbol in result:
            continue
        result[constraint.stock_symbol] = join_position(
            constraint.stock_symbol,
            individual_triggers(constraint),
            by_symbol,
            constraint_type="individual",
            constraint_id=constraint.id,
            is_active=constraint.is_active,
        )

    for group in groups:
        defaults = group.default_triggers()
        for symbol in expand_stocks(group, sg_index):
            if symbol in result:
                continue
            result[symbol] = join_position(
                symbol,
                resolve_triggers(group, symbol),
                by_symbol,
                constraint_type="group",
                constraint_id=group.id,
                constraint_name=group.name,
                is_active=group.is_active,
                has_custom_triggers=has_custom_triggers(group, symbol),
                group_id=group.id,
                group_name=group.name,
                group_default_triggers=defaults,
            )

    return sort_constraint_positions(result.values())


def summarize_groups(
    groups: Iterable[ConstraintGroup],
    stock_groups: Iterable[StockGroup],
    positions: Iterable[Position],
) -> list[GroupSummary]:
    """Per-group totals over each group's expanded stock set, by name."""
    by_symbol = index_positions(positions)
    sg_index = index_stock_groups(stock_groups)

    summaries = []
    for group in groups:
        symbols = expand_stocks(group, sg_index)
        total_value = 0.0
        total_pnl = 0.0
        active = 0
        for symbol in symbols:
            pos = by_symbol.get(symbol)
            if pos is None:
                continue
            value, pnl, _ = compute_pnl(pos.quantity, pos.average_cost, mark_price(pos))
            total_value += value
            total_pnl += pnl
            if pos.quantity > 0:
                active += 1

        cost = total_value - total_pnl
        pnl_pct = (total_pnl / cost) * 100 if total_value > 0 and cost > 0 else 0.0

        summaries.append(GroupSummary(
            group_id=group.id,
            group_name=group.name,
            is_active=group.is_active,
            total_stocks=len(symbols),
            active_positions=active,
            total_value=total_value,
            total_unrealized_pnl=total_pnl,
            total_unrealized_pnl_percent=pnl_pct,
            **group.default_triggers().model_dump(),
        ))

    return sorted(summaries, key=lambda s: s.group_name)


def build_dashboard(
    constraints: Iterable[TradingConstraint],
    groups: Iterable[ConstraintGroup],
    stock_groups: Iterable[StockGroup],
    positions: Iterable[Position],
) -> DashboardData:
    """Constraint positions + group summary + headline totals."""
    groups = list(groups)
    stock_groups = list(stock_groups)
    positions = list(positions)

    entries = aggregate_constraint_positions(constraints, groups, stock_groups, positions)
    return DashboardData(
        constraint_positions=entries,
        group_summary=summarize_groups(groups, stock_groups, positions),
        total_positions=sum(1 for cp in entries if cp.status == "position"),
        total_watching=sum(1 for cp in entries if cp.status == "watching"),
        total_value=sum(cp.market_value for cp in entries),
        total_unrealized_pnl=sum(cp.unrealized_pnl for cp in entries),
    )
