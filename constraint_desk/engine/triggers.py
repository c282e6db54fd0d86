"""Trigger resolution and stock-set expansion for constraint groups."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from constraint_desk.models.constraints import (
    ConstraintGroup,
    StockGroup,
    TradingConstraint,
    TriggerSet,
    normalize_symbol,
)
from constraint_desk.utils.logger import logger

_TRIGGER_FIELDS = (
    "buy_trigger_percent",
    "sell_trigger_percent",
    "profit_trigger_percent",
    "buy_amount",
    "sell_amount",
)


def individual_triggers(constraint: TradingConstraint) -> TriggerSet:
    """Triggers of an individual constraint (no override layer)."""
    return TriggerSet(**{f: getattr(constraint, f) for f in _TRIGGER_FIELDS})


def has_custom_triggers(group: ConstraintGroup, symbol: str) -> bool:
    """True if the group carries an override object for this symbol."""
    return normalize_symbol(symbol) in group.stock_overrides


def resolve_triggers(group: ConstraintGroup, symbol: str) -> TriggerSet:
    """Effective triggers for one stock of a constraint group.

    Applied field by field: an override field that is set wins, anything
    unset falls back to the group's value. A stock can override just
    ``buy_amount`` and inherit the rest.
    """
    override = group.stock_overrides.get(normalize_symbol(symbol))
    values = {}
    for field in _TRIGGER_FIELDS:
        value = getattr(override, field) if override is not None else None
        values[field] = value if value is not None else getattr(group, field)
    return TriggerSet(**values)


def index_stock_groups(
    stock_groups: Iterable[StockGroup] | Mapping[str, StockGroup],
) -> dict[str, StockGroup]:
    """Map stock-group id -> StockGroup (accepts a list or a ready mapping)."""
    if isinstance(stock_groups, Mapping):
        return dict(stock_groups)
    return {sg.id: sg for sg in stock_groups}


def expand_stocks(
    group: ConstraintGroup,
    stock_groups: Iterable[StockGroup] | Mapping[str, StockGroup],
) -> list[str]:
    """All symbols a constraint group applies to, de-duplicated and sorted.

    Union of the group's direct stocks and the stocks of each referenced
    stock group. References to stock groups that no longer exist
    contribute nothing.
    """
    by_id = index_stock_groups(stock_groups)
    symbols = {normalize_symbol(s) for s in group.stocks}

    for ref in group.stock_groups:
        stock_group = by_id.get(ref)
        if stock_group is None:
            logger.warning(
                "[Triggers] Group '%s' references missing stock group %s, skipping",
                group.name, ref,
            )
            continue
        symbols.update(normalize_symbol(s) for s in stock_group.stocks)

    return sorted(symbols)
