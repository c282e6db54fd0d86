"""Constraint evaluator: turns a price move into trigger events.

Pure: given a constraint position and two prices, report which of the
buy (price drop), sell (price rise) and profit (gain vs cost) triggers
fire. Executing them is the PriceMonitor's job.
"""

from __future__ import annotations

from constraint_desk.models.trading import ConstraintPosition, TriggerEvent

# Trigger event -> trade history trigger type
TRADE_TRIGGER_TYPES = {
    "BUY": "PRICE_DROP",
    "SELL": "PRICE_RISE",
    "PROFIT": "PROFIT_TARGET",
}


def price_change_percent(previous_price: float, current_price: float) -> float:
    """Percent change from previous to current; 0 without a usable baseline."""
    if previous_price <= 0:
        return 0.0
    return ((current_price - previous_price) / previous_price) * 100


def evaluate(
    cp: ConstraintPosition,
    previous_price: float,
    current_price: float,
) -> list[TriggerEvent]:
    """Return the trigger events fired for one constraint position.

    Inactive constraints never fire. Buy and sell need a previous price
    to measure the move against; sell and profit need shares to sell.
    """
    if not cp.is_active or current_price <= 0:
        return []

    events: list[TriggerEvent] = []
    base = {
        "constraint_id": cp.constraint_id,
        "constraint_type": cp.constraint_type,
        "stock_symbol": cp.stock_symbol,
        "current_price": current_price,
    }

    if previous_price > 0:
        change = price_change_percent(previous_price, current_price)
        buy_pct = abs(cp.buy_trigger_percent)

        if buy_pct > 0 and change <= -buy_pct:
            events.append(TriggerEvent(
                **base,
                trigger_type="BUY",
                trigger_price=round(previous_price * (1 - buy_pct / 100), 4),
                amount=cp.buy_amount,
            ))

        if cp.quantity > 0 and cp.sell_trigger_percent > 0 and change >= cp.sell_trigger_percent:
            events.append(TriggerEvent(
                **base,
                trigger_type="SELL",
                trigger_price=round(previous_price * (1 + cp.sell_trigger_percent / 100), 4),
                amount=cp.sell_amount,
            ))

    profit_pct = cp.profit_trigger_percent
    if profit_pct and cp.quantity > 0 and cp.average_cost > 0:
        gain = ((current_price - cp.average_cost) / cp.average_cost) * 100
        if gain >= profit_pct:
            events.append(TriggerEvent(
                **base,
                trigger_type="PROFIT",
                trigger_price=round(cp.average_cost * (1 + profit_pct / 100), 4),
                amount=cp.sell_amount,
            ))

    return events
