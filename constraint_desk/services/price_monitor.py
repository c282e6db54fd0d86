"""Price Monitor: checks constraint triggers against live prices.

Polls yfinance fast_info for live prices, evaluates every active
constraint position, executes the simulated trades for the triggers that
fire, then stores the new prices as the baseline for the next check.
"""

from __future__ import annotations

import asyncio
import concurrent.futures

import yfinance as yf

from constraint_desk.config import settings
from constraint_desk.engine.evaluator import TRADE_TRIGGER_TYPES, evaluate
from constraint_desk.errors import TradeRejectedError
from constraint_desk.models.trading import ConstraintPosition, TriggerEvent
from constraint_desk.services.constraint_positions import ConstraintPositionService
from constraint_desk.services.portfolio import PortfolioService
from constraint_desk.utils.logger import logger


class PriceMonitor:
    """Fire buy/sell/profit triggers for a user's constraint positions."""

    def __init__(
        self,
        positions_service: ConstraintPositionService,
        portfolio: PortfolioService,
    ) -> None:
        self._positions = positions_service
        self._portfolio = portfolio
        # Last price seen per symbol, for watch-only entries with no stored price
        self._last_prices: dict[str, float] = {}

    async def check_constraints(self, user_id: str) -> list[dict]:
        """Evaluate the user's active constraint positions against live prices.

        Returns one action dict per executed trade.
        """
        active = [
            cp for cp in await self._positions.get_constraint_positions(user_id)
            if cp.is_active
        ]
        if not active:
            return []

        prices = await self._fetch_prices(sorted({cp.stock_symbol for cp in active}))
        if not prices:
            logger.info("[PriceMonitor] %s: no quotes, trigger check skipped", user_id)
            return []

        actions: list[dict] = []
        for cp in active:
            if cp.stock_symbol not in prices:
                continue
            try:
                actions.extend(self._check_entry(user_id, cp, prices[cp.stock_symbol]))
            except Exception as e:
                logger.error("[PriceMonitor] %s: check failed for %s: %s",
                             user_id, cp.stock_symbol, e)

        self._last_prices.update(prices)
        self._portfolio.update_prices(prices, user_id=user_id)

        if actions:
            logger.info(
                "[PriceMonitor] %s: %d trades from triggers on %s",
                user_id, len(actions), sorted({a["stock_symbol"] for a in actions}),
            )
        return actions

    def _check_entry(
        self, user_id: str, cp: ConstraintPosition, current_price: float
    ) -> list[dict]:
        # Stored position price first, else the last quote seen for a watched symbol
        previous_price = cp.current_price or self._last_prices.get(cp.stock_symbol, 0.0)
        executed = []
        for event in evaluate(cp, previous_price, current_price):
            action = self._execute(user_id, event, cp.quantity)
            if action:
                executed.append(action)
        return executed

    async def refresh_prices(self) -> int:
        """Fetch and store prices for every held symbol (all users)."""
        symbols = self._portfolio.get_held_symbols()
        if not symbols:
            return 0
        prices = await self._fetch_prices(symbols)
        self._last_prices.update(prices)
        return self._portfolio.update_prices(prices)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(self, user_id: str, event: TriggerEvent, held_qty: float) -> dict | None:
        """Turn a trigger event into a trade. Dollar amounts become shares."""
        trade_type = "BUY" if event.trigger_type == "BUY" else "SELL"
        quantity = event.amount / event.current_price

        if trade_type == "SELL":
            if held_qty <= 0:
                logger.info(
                    "[PriceMonitor] No position to sell for %s, skipping trigger",
                    event.stock_symbol,
                )
                return None
            quantity = min(quantity, held_qty)

        try:
            trade = self._portfolio.apply_trade(
                user_id,
                event.stock_symbol,
                trade_type,
                quantity,
                event.current_price,
                trigger_type=TRADE_TRIGGER_TYPES[event.trigger_type],
                trigger_price=event.trigger_price,
                constraint_id=event.constraint_id,
            )
        except TradeRejectedError as e:
            logger.warning("[PriceMonitor] Trade rejected for %s: %s", event.stock_symbol, e)
            return None

        logger.info(
            "[PriceMonitor] TRIGGERED %s %s: %.4f shares @ $%.2f (trigger $%.2f)",
            event.stock_symbol, event.trigger_type, trade.quantity,
            event.current_price, event.trigger_price,
        )
        return {
            "trade_id": trade.id,
            "stock_symbol": event.stock_symbol,
            "trigger_type": event.trigger_type,
            "trade_type": trade.trade_type,
            "quantity": trade.quantity,
            "price": trade.price,
            "trigger_price": event.trigger_price,
            "constraint_id": event.constraint_id,
        }

    # ------------------------------------------------------------------
    # Price fetching
    # ------------------------------------------------------------------

    @staticmethod
    async def _fetch_prices(symbols: list[str]) -> dict[str, float]:
        """Quote symbols on a bounded thread pool. Unquotable symbols are left out."""
        if not symbols:
            return {}

        loop = asyncio.get_running_loop()
        workers = max(1, min(len(symbols), settings.PRICE_FETCH_WORKERS))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="quote"
        ) as pool:
            quotes = await asyncio.gather(
                *(loop.run_in_executor(pool, _quote, s) for s in symbols)
            )
        return {s: q for s, q in zip(symbols, quotes) if q is not None}


def _quote(symbol: str) -> float | None:
    """Last traded price from yfinance fast_info; None when unavailable."""
    try:
        price = yf.Ticker(symbol).fast_info.last_price
    except Exception as e:
        logger.warning("[PriceMonitor] No quote for %s: %s", symbol, e)
        return None
    if price is None or price != price or price <= 0:  # missing / NaN
        return None
    return float(price)
