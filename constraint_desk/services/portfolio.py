"""Portfolio Service: positions and trade history in DuckDB.

Every trade updates the position (weighted average cost on buys) and
appends an immutable trade_history row in the same transaction.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from constraint_desk.config import settings
from constraint_desk.database import get_db, query_dicts
from constraint_desk.engine.performance import HISTORY_RANGES, bucket_snapshots
from constraint_desk.errors import TradeRejectedError
from constraint_desk.models.constraints import normalize_symbol
from constraint_desk.models.performance import PortfolioSnapshot
from constraint_desk.models.trading import ClosedPosition, Position, TradeHistory
from constraint_desk.utils.logger import logger

# Quantities below this are treated as a closed position
_QTY_EPSILON = 1e-9


class PortfolioService:
    """Positions, trades and portfolio totals for each user."""

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def apply_trade(
        self,
        user_id: str,
        stock_symbol: str,
        trade_type: str,
        quantity: float,
        price: float,
        trigger_type: str = "MANUAL",
        trigger_price: float | None = None,
        constraint_id: str | None = None,
    ) -> TradeHistory:
        """Execute a BUY or SELL against the user's position.

        BUY creates the position or averages into it. SELL is capped at the
        held quantity and deletes the position once nothing is left.
        Raises TradeRejectedError for bad input or a sell with no shares.
        """
        symbol = normalize_symbol(stock_symbol)
        trade_type = trade_type.upper()

        if trade_type not in ("BUY", "SELL"):
            raise TradeRejectedError(f"Unknown trade type {trade_type!r}")
        if quantity <= 0 or price <= 0:
            raise TradeRejectedError(
                f"Invalid {trade_type} {symbol}: qty={quantity} price={price}"
            )

        existing = self.get_position(user_id, symbol)
        now = datetime.now()

        if trade_type == "SELL":
            if existing is None or existing.quantity <= 0:
                raise TradeRejectedError(f"No position in {symbol} to sell")
            quantity = min(quantity, existing.quantity)

        db = get_db()
        db.begin()
        try:
            if trade_type == "BUY":
                self._apply_buy(user_id, symbol, existing, quantity, price, now)
            else:
                self._apply_sell(user_id, symbol, existing, quantity, price, now)

            trade = TradeHistory(
                id=str(uuid.uuid4()),
                user_id=user_id,
                constraint_id=constraint_id,
                stock_symbol=symbol,
                trade_type=trade_type,
                trigger_type=trigger_type,
                quantity=quantity,
                price=price,
                trigger_price=trigger_price,
                executed_at=now,
            )
            self._store_trade(trade)
            db.commit()
        except Exception:
            db.rollback()
            raise

        return trade

    def buy(self, user_id: str, stock_symbol: str, quantity: float, price: float) -> TradeHistory:
        """Manual buy."""
        return self.apply_trade(user_id, stock_symbol, "BUY", quantity, price)

    def sell(self, user_id: str, stock_symbol: str, quantity: float, price: float) -> TradeHistory:
        """Manual sell."""
        return self.apply_trade(user_id, stock_symbol, "SELL", quantity, price)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def get_positions(self, user_id: str) -> list[Position]:
        """All open positions of a user, by symbol."""
        rows = query_dicts(
            "SELECT user_id, stock_symbol, quantity, average_cost, current_price, "
            "last_updated FROM positions WHERE user_id = ? ORDER BY stock_symbol",
            [user_id],
        )
        return [Position(**r) for r in rows]

    def get_position(self, user_id: str, stock_symbol: str) -> Position | None:
        rows = query_dicts(
            "SELECT user_id, stock_symbol, quantity, average_cost, current_price, "
            "last_updated FROM positions WHERE user_id = ? AND stock_symbol = ?",
            [user_id, normalize_symbol(stock_symbol)],
        )
        return Position(**rows[0]) if rows else None

    def get_held_symbols(self) -> list[str]:
        """Distinct symbols with a positive quantity, across all users."""
        rows = query_dicts(
            "SELECT DISTINCT stock_symbol FROM positions WHERE quantity > 0 "
            "ORDER BY stock_symbol"
        )
        return [r["stock_symbol"] for r in rows]

    def update_prices(self, prices: dict[str, float], user_id: str | None = None) -> int:
        """Store fresh prices on positions.

        Returns how many of the symbols matched at least one position;
        quotes for symbols nobody holds are ignored.
        """
        if not prices:
            return 0

        db = get_db()
        now = datetime.now()
        updated = 0
        db.begin()
        try:
            for symbol, price in prices.items():
                if user_id is None:
                    cur = db.execute(
                        "UPDATE positions SET current_price = ?, last_updated = ? "
                        "WHERE stock_symbol = ?",
                        [price, now, normalize_symbol(symbol)],
                    )
                else:
                    cur = db.execute(
                        "UPDATE positions SET current_price = ?, last_updated = ? "
                        "WHERE stock_symbol = ? AND user_id = ?",
                        [price, now, normalize_symbol(symbol), user_id],
                    )
                row = cur.fetchone()
                if row and row[0]:
                    updated += 1
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("[Portfolio] Updated prices for %d of %d symbols", updated, len(prices))
        return updated

    def get_portfolio(self, user_id: str) -> dict:
        """Totals over all positions. Missing prices fall back to cost."""
        positions = self.get_positions(user_id)

        total_value = 0.0
        total_cost = 0.0
        for p in positions:
            price = p.current_price or p.average_cost
            total_value += p.quantity * price
            total_cost += p.quantity * p.average_cost

        gain_loss = total_value - total_cost
        gain_loss_pct = (gain_loss / total_cost) * 100 if total_cost > 0 else 0.0

        return {
            "user_id": user_id,
            "total_value": round(total_value, 2),
            "total_cost": round(total_cost, 2),
            "total_gain_loss": round(gain_loss, 2),
            "total_gain_loss_percent": round(gain_loss_pct, 2),
            "positions_count": len(positions),
            "positions": [p.model_dump() for p in positions],
        }

    # ------------------------------------------------------------------
    # Trade history
    # ------------------------------------------------------------------

    def get_trades(
        self,
        user_id: str,
        limit: int = 100,
        offset: int = 0,
        stock_symbol: str | None = None,
    ) -> list[TradeHistory]:
        """Trade history, most recent first."""
        if stock_symbol:
            rows = query_dicts(
                "SELECT * FROM trade_history WHERE user_id = ? AND stock_symbol = ? "
                "ORDER BY executed_at DESC LIMIT ? OFFSET ?",
                [user_id, normalize_symbol(stock_symbol), limit, offset],
            )
        else:
            rows = query_dicts(
                "SELECT * FROM trade_history WHERE user_id = ? "
                "ORDER BY executed_at DESC LIMIT ? OFFSET ?",
                [user_id, limit, offset],
            )
        return [TradeHistory(**r) for r in rows]

    def get_closed_positions(self, user_id: str) -> list[ClosedPosition]:
        """Round trips whose buys have been fully sold, latest close first.

        Trades are grouped by (symbol, constraint_id).
        """
        rows = query_dicts(
            "SELECT stock_symbol, constraint_id, trade_type, quantity, price, executed_at "
            "FROM trade_history WHERE user_id = ? ORDER BY executed_at",
            [user_id],
        )

        buckets: dict[tuple, list[dict]] = defaultdict(list)
        for r in rows:
            buckets[(r["stock_symbol"], r["constraint_id"])].append(r)

        closed = []
        for (symbol, constraint_id), trades in buckets.items():
            buys = [t for t in trades if t["trade_type"] == "BUY"]
            sells = [t for t in trades if t["trade_type"] == "SELL"]
            buy_qty = sum(t["quantity"] for t in buys)
            sell_qty = sum(t["quantity"] for t in sells)
            if buy_qty <= 0 or sell_qty <= 0 or buy_qty - sell_qty > _QTY_EPSILON:
                continue

            buy_value = sum(t["quantity"] * t["price"] for t in buys)
            sell_value = sum(t["quantity"] * t["price"] for t in sells)
            realized = sell_value - buy_value
            opened_at = min(t["executed_at"] for t in buys)
            closed_at = max(t["executed_at"] for t in sells)

            closed.append(ClosedPosition(
                stock_symbol=symbol,
                constraint_id=constraint_id,
                quantity=buy_qty,
                average_cost=buy_value / buy_qty,
                exit_price=sell_value / sell_qty,
                realized_pnl=realized,
                realized_pnl_percent=(realized / buy_value) * 100 if buy_value > 0 else 0.0,
                holding_days=max((closed_at - opened_at).days, 0),
                opened_at=opened_at,
                closed_at=closed_at,
            ))

        return sorted(closed, key=lambda c: c.closed_at, reverse=True)

    def get_constraint_trades(self, user_id: str) -> list[TradeHistory]:
        """Every trigger-fired trade for the user, oldest first."""
        rows = query_dicts(
            "SELECT * FROM trade_history WHERE user_id = ? AND constraint_id IS NOT NULL "
            "ORDER BY executed_at",
            [user_id],
        )
        return [TradeHistory(**r) for r in rows]

    # ------------------------------------------------------------------
    # Portfolio history
    # ------------------------------------------------------------------

    def record_snapshot(self, user_id: str, now: datetime | None = None) -> PortfolioSnapshot:
        """Store the user's current portfolio totals as a history point."""
        totals = self.get_portfolio(user_id)
        snapshot = PortfolioSnapshot(
            id=str(uuid.uuid4()),
            user_id=user_id,
            total_value=totals["total_value"],
            total_gain_loss=totals["total_gain_loss"],
            total_gain_loss_percent=totals["total_gain_loss_percent"],
            position_count=totals["positions_count"],
            timestamp=now or datetime.now(),
        )
        get_db().execute(
            """
            INSERT INTO portfolio_history
                (id, user_id, total_value, total_gain_loss, total_gain_loss_percent,
                 position_count, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                snapshot.id, user_id, snapshot.total_value, snapshot.total_gain_loss,
                snapshot.total_gain_loss_percent, snapshot.position_count,
                snapshot.timestamp,
            ],
        )
        logger.debug(
            "[Portfolio] Snapshot for %s: $%.2f across %d positions",
            user_id, snapshot.total_value, snapshot.position_count,
        )
        return snapshot

    def get_latest_snapshot(self, user_id: str) -> PortfolioSnapshot | None:
        rows = query_dicts(
            "SELECT * FROM portfolio_history WHERE user_id = ? "
            "ORDER BY timestamp DESC LIMIT 1",
            [user_id],
        )
        return PortfolioSnapshot(**rows[0]) if rows else None

    def get_snapshots(
        self, user_id: str, since: datetime | None = None
    ) -> list[PortfolioSnapshot]:
        """All snapshots for the user, oldest first."""
        if since is None:
            rows = query_dicts(
                "SELECT * FROM portfolio_history WHERE user_id = ? ORDER BY timestamp",
                [user_id],
            )
        else:
            rows = query_dicts(
                "SELECT * FROM portfolio_history WHERE user_id = ? AND timestamp >= ? "
                "ORDER BY timestamp",
                [user_id, since],
            )
        return [PortfolioSnapshot(**r) for r in rows]

    def get_snapshot_history(
        self,
        user_id: str,
        time_range: str = "30d",
        now: datetime | None = None,
    ) -> list[PortfolioSnapshot]:
        """Snapshots over ``time_range`` (7d, 30d, 90d, 1y), one per bucket."""
        if time_range not in HISTORY_RANGES:
            raise ValueError(f"Unknown time range {time_range!r}")
        now = now or datetime.now()
        lookback = HISTORY_RANGES[time_range][0]
        return bucket_snapshots(self.get_snapshots(user_id, since=now - lookback), time_range, now)

    def cleanup_snapshots(
        self, retention_days: int | None = None, now: datetime | None = None
    ) -> int:
        """Delete snapshots older than the retention window. Returns rows removed."""
        days = settings.PORTFOLIO_HISTORY_RETENTION_DAYS if retention_days is None else retention_days
        cutoff = (now or datetime.now()) - timedelta(days=days)
        row = get_db().execute(
            "DELETE FROM portfolio_history WHERE timestamp < ?", [cutoff],
        ).fetchone()
        removed = row[0] if row else 0
        if removed:
            logger.info("[Portfolio] Removed %d snapshots older than %d days", removed, days)
        return removed

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_buy(
        user_id: str,
        symbol: str,
        existing: Position | None,
        quantity: float,
        price: float,
        now: datetime,
    ) -> None:
        db = get_db()
        if existing:
            new_qty = existing.quantity + quantity
            new_avg = ((existing.average_cost * existing.quantity) + (price * quantity)) / new_qty
            db.execute(
                """
                UPDATE positions
                SET quantity = ?, average_cost = ?, current_price = ?, last_updated = ?
                WHERE user_id = ? AND stock_symbol = ?
                """,
                [new_qty, new_avg, price, now, user_id, symbol],
            )
            logger.info(
                "[Portfolio] BUY %s: %.4f+%.4f=%.4f shares @ avg $%.2f",
                symbol, existing.quantity, quantity, new_qty, new_avg,
            )
        else:
            db.execute(
                """
                INSERT INTO positions
                    (user_id, stock_symbol, quantity, average_cost, current_price, last_updated)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [user_id, symbol, quantity, price, price, now],
            )
            logger.info(
                "[Portfolio] BUY %s: %.4f shares @ $%.2f ($%.2f)",
                symbol, quantity, price, quantity * price,
            )

    @staticmethod
    def _apply_sell(
        user_id: str,
        symbol: str,
        existing: Position,
        quantity: float,
        price: float,
        now: datetime,
    ) -> None:
        db = get_db()
        remaining = existing.quantity - quantity
        realized = (price - existing.average_cost) * quantity

        if remaining <= _QTY_EPSILON:
            db.execute(
                "DELETE FROM positions WHERE user_id = ? AND stock_symbol = ?",
                [user_id, symbol],
            )
            logger.info(
                "[Portfolio] SELL %s: closed %.4f shares @ $%.2f (P&L=$%.2f)",
                symbol, quantity, price, realized,
            )
        else:
            db.execute(
                """
                UPDATE positions SET quantity = ?, current_price = ?, last_updated = ?
                WHERE user_id = ? AND stock_symbol = ?
                """,
                [remaining, price, now, user_id, symbol],
            )
            logger.info(
                "[Portfolio] SELL %s: %.4f/%.4f shares @ $%.2f (P&L=$%.2f, %.4f remaining)",
                symbol, quantity, existing.quantity, price, realized, remaining,
            )

    @staticmethod
    def _store_trade(trade: TradeHistory) -> None:
        get_db().execute(
            """
            INSERT INTO trade_history
                (id, user_id, constraint_id, stock_symbol, trade_type, trigger_type,
                 quantity, price, trigger_price, executed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                trade.id,
                trade.user_id,
                trade.constraint_id,
                trade.stock_symbol,
                trade.trade_type,
                trade.trigger_type,
                trade.quantity,
                trade.price,
                trade.trigger_price,
                trade.executed_at,
            ],
        )
