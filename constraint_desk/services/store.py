"""Constraint Store: DuckDB persistence for constraints, constraint groups
and stock groups.

Also the read side the reconciliation service fans out over:
``list_constraints``, ``list_constraint_groups``, ``list_stock_groups``
and ``get_positions`` (delegated to the PortfolioService).

Usage:
    store = ConstraintStore()
    store.create_constraint("u1", "AAPL", buy_trigger_percent=-5, ...)
    store.list_constraints("u1")
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

from constraint_desk.config import settings
from constraint_desk.database import get_db, query_dicts
from constraint_desk.errors import DuplicateConstraintError
from constraint_desk.models.constraints import (
    ConstraintGroup,
    StockConstraintOverride,
    StockGroup,
    TradingConstraint,
    normalize_symbol,
)
from constraint_desk.models.trading import Position
from constraint_desk.services.portfolio import PortfolioService
from constraint_desk.utils.logger import logger

_CONSTRAINT_FIELDS = {
    "buy_trigger_percent",
    "sell_trigger_percent",
    "profit_trigger_percent",
    "buy_amount",
    "sell_amount",
    "is_active",
}
_GROUP_FIELDS = _CONSTRAINT_FIELDS | {"name", "description"}
_STOCK_GROUP_FIELDS = {"name", "description", "color"}


class ConstraintStore:
    """CRUD over the constraint tables, scoped by user."""

    def __init__(self, portfolio: PortfolioService | None = None) -> None:
        self.portfolio = portfolio or PortfolioService()

    # ── Read collaborators ────────────────────────────────────────

    def list_constraints(self, user_id: str) -> list[TradingConstraint]:
        """All individual constraints of a user, newest first."""
        rows = query_dicts(
            "SELECT * FROM constraints WHERE user_id = ? ORDER BY created_at DESC",
            [user_id],
        )
        return [TradingConstraint(**r) for r in rows]

    def list_constraint_groups(self, user_id: str) -> list[ConstraintGroup]:
        """All constraint groups of a user, newest first."""
        rows = query_dicts(
            "SELECT * FROM constraint_groups WHERE user_id = ? ORDER BY created_at DESC",
            [user_id],
        )
        return [self._row_to_group(r) for r in rows]

    def list_stock_groups(self, user_id: str) -> list[StockGroup]:
        """All stock groups of a user, newest first."""
        rows = query_dicts(
            "SELECT * FROM stock_groups WHERE user_id = ? ORDER BY created_at DESC",
            [user_id],
        )
        return [self._row_to_stock_group(r) for r in rows]

    def get_positions(self, user_id: str) -> list[Position]:
        """Live positions, read through the portfolio service."""
        return self.portfolio.get_positions(user_id)

    # ── Individual constraints ────────────────────────────────────

    def get_constraint(self, constraint_id: str, user_id: str) -> TradingConstraint | None:
        rows = query_dicts(
            "SELECT * FROM constraints WHERE id = ? AND user_id = ?",
            [constraint_id, user_id],
        )
        return TradingConstraint(**rows[0]) if rows else None

    def list_active_constraints(self) -> list[TradingConstraint]:
        """Active constraints across every user."""
        rows = query_dicts("SELECT * FROM constraints WHERE is_active = TRUE")
        return [TradingConstraint(**r) for r in rows]

    def create_constraint(
        self,
        user_id: str,
        stock_symbol: str,
        buy_trigger_percent: float,
        sell_trigger_percent: float,
        buy_amount: float,
        sell_amount: float,
        profit_trigger_percent: float | None = None,
    ) -> TradingConstraint:
        """Create an individual constraint. One per (user, symbol)."""
        symbol = normalize_symbol(stock_symbol)
        existing = query_dicts(
            "SELECT id FROM constraints WHERE user_id = ? AND stock_symbol = ?",
            [user_id, symbol],
        )
        if existing:
            raise DuplicateConstraintError(user_id, symbol)

        now = datetime.now()
        constraint = TradingConstraint(
            id=str(uuid.uuid4()),
            user_id=user_id,
            stock_symbol=symbol,
            buy_trigger_percent=buy_trigger_percent,
            sell_trigger_percent=sell_trigger_percent,
            profit_trigger_percent=profit_trigger_percent,
            buy_amount=buy_amount,
            sell_amount=sell_amount,
            created_at=now,
            updated_at=now,
        )
        get_db().execute(
            """
            INSERT INTO constraints
                (id, user_id, stock_symbol, buy_trigger_percent, sell_trigger_percent,
                 profit_trigger_percent, buy_amount, sell_amount, is_active,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                constraint.id,
                constraint.user_id,
                constraint.stock_symbol,
                constraint.buy_trigger_percent,
                constraint.sell_trigger_percent,
                constraint.profit_trigger_percent,
                constraint.buy_amount,
                constraint.sell_amount,
                constraint.is_active,
                constraint.created_at,
                constraint.updated_at,
            ],
        )
        logger.info("[Store] Created constraint %s for %s", constraint.id, symbol)
        return constraint

    def update_constraint(
        self, constraint_id: str, user_id: str, **updates: Any
    ) -> TradingConstraint | None:
        """Patch trigger fields / is_active. Unknown keys are ignored."""
        self._update_row("constraints", _CONSTRAINT_FIELDS, constraint_id, user_id, updates)
        return self.get_constraint(constraint_id, user_id)

    def toggle_constraint(
        self, constraint_id: str, user_id: str, is_active: bool
    ) -> TradingConstraint | None:
        return self.update_constraint(constraint_id, user_id, is_active=is_active)

    def delete_constraint(self, constraint_id: str, user_id: str) -> bool:
        """Delete a constraint. Positions on the stock are left alone."""
        deleted = self._delete_row("constraints", constraint_id, user_id)
        if deleted:
            logger.info("[Store] Deleted constraint %s", constraint_id)
        return deleted

    # ── Constraint groups ─────────────────────────────────────────

    def get_constraint_group(self, group_id: str, user_id: str) -> ConstraintGroup | None:
        rows = query_dicts(
            "SELECT * FROM constraint_groups WHERE id = ? AND user_id = ?",
            [group_id, user_id],
        )
        return self._row_to_group(rows[0]) if rows else None

    def create_constraint_group(
        self,
        user_id: str,
        name: str,
        buy_trigger_percent: float,
        sell_trigger_percent: float,
        buy_amount: float,
        sell_amount: float,
        profit_trigger_percent: float | None = None,
        description: str | None = None,
        stocks: list[str] | None = None,
        stock_groups: list[str] | None = None,
    ) -> ConstraintGroup:
        """Create a constraint group over stocks and/or stock groups."""
        now = datetime.now()
        group = ConstraintGroup(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            description=description,
            buy_trigger_percent=buy_trigger_percent,
            sell_trigger_percent=sell_trigger_percent,
            profit_trigger_percent=profit_trigger_percent,
            buy_amount=buy_amount,
            sell_amount=sell_amount,
            stocks=_dedupe(stocks or []),
            stock_groups=list(dict.fromkeys(stock_groups or [])),
            created_at=now,
            updated_at=now,
        )
        get_db().execute(
            """
            INSERT INTO constraint_groups
                (id, user_id, name, description, buy_trigger_percent,
                 sell_trigger_percent, profit_trigger_percent, buy_amount,
                 sell_amount, is_active, stocks, stock_groups, stock_overrides,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '{}', ?, ?)
            """,
            [
                group.id,
                group.user_id,
                group.name,
                group.description,
                group.buy_trigger_percent,
                group.sell_trigger_percent,
                group.profit_trigger_percent,
                group.buy_amount,
                group.sell_amount,
                group.is_active,
                json.dumps(group.stocks),
                json.dumps(group.stock_groups),
                group.created_at,
                group.updated_at,
            ],
        )
        logger.info(
            "[Store] Created constraint group '%s' (%d stocks, %d stock groups)",
            name, len(group.stocks), len(group.stock_groups),
        )
        return group

    def update_constraint_group(
        self, group_id: str, user_id: str, **updates: Any
    ) -> ConstraintGroup | None:
        """Patch scalar fields; ``stocks`` / ``stock_groups`` replace the lists."""
        group = self.get_constraint_group(group_id, user_id)
        if group is None:
            return None

        self._update_row("constraint_groups", _GROUP_FIELDS, group_id, user_id, updates)

        if "stocks" in updates or "stock_groups" in updates:
            stocks = _dedupe(updates.get("stocks", group.stocks))
            refs = list(dict.fromkeys(updates.get("stock_groups", group.stock_groups)))
            self._write_group_lists(group_id, stocks=stocks, stock_groups=refs)

        return self.get_constraint_group(group_id, user_id)

    def toggle_constraint_group(
        self, group_id: str, user_id: str, is_active: bool
    ) -> ConstraintGroup | None:
        return self.update_constraint_group(group_id, user_id, is_active=is_active)

    def delete_constraint_group(self, group_id: str, user_id: str) -> bool:
        deleted = self._delete_row("constraint_groups", group_id, user_id)
        if deleted:
            logger.info("[Store] Deleted constraint group %s", group_id)
        return deleted

    def add_stock_to_group(
        self, group_id: str, user_id: str, stock_symbol: str
    ) -> ConstraintGroup | None:
        group = self.get_constraint_group(group_id, user_id)
        if group is None:
            return None
        symbol = normalize_symbol(stock_symbol)
        if symbol not in group.stocks:
            self._write_group_lists(group_id, stocks=[*group.stocks, symbol])
        return self.get_constraint_group(group_id, user_id)

    def remove_stock_from_group(
        self, group_id: str, user_id: str, stock_symbol: str
    ) -> ConstraintGroup | None:
        """Drop a direct stock and any override it had."""
        group = self.get_constraint_group(group_id, user_id)
        if group is None:
            return None
        symbol = normalize_symbol(stock_symbol)
        overrides = {k: v for k, v in group.stock_overrides.items() if k != symbol}
        self._write_group_lists(
            group_id,
            stocks=[s for s in group.stocks if s != symbol],
            stock_overrides=overrides,
        )
        return self.get_constraint_group(group_id, user_id)

    def set_stock_override(
        self,
        group_id: str,
        user_id: str,
        stock_symbol: str,
        override: StockConstraintOverride,
    ) -> ConstraintGroup | None:
        """Set (replace) the per-stock override of one symbol."""
        group = self.get_constraint_group(group_id, user_id)
        if group is None:
            return None
        overrides = dict(group.stock_overrides)
        overrides[normalize_symbol(stock_symbol)] = override
        self._write_group_lists(group_id, stock_overrides=overrides)
        return self.get_constraint_group(group_id, user_id)

    def clear_stock_override(
        self, group_id: str, user_id: str, stock_symbol: str
    ) -> ConstraintGroup | None:
        """Remove the override so the symbol inherits the group defaults."""
        group = self.get_constraint_group(group_id, user_id)
        if group is None:
            return None
        symbol = normalize_symbol(stock_symbol)
        if symbol in group.stock_overrides:
            overrides = {k: v for k, v in group.stock_overrides.items() if k != symbol}
            self._write_group_lists(group_id, stock_overrides=overrides)
        return self.get_constraint_group(group_id, user_id)

    # ── Stock groups ──────────────────────────────────────────────

    def get_stock_group(self, group_id: str, user_id: str) -> StockGroup | None:
        rows = query_dicts(
            "SELECT * FROM stock_groups WHERE id = ? AND user_id = ?",
            [group_id, user_id],
        )
        return self._row_to_stock_group(rows[0]) if rows else None

    def create_stock_group(
        self,
        user_id: str,
        name: str,
        stocks: list[str] | None = None,
        description: str | None = None,
        color: str | None = None,
    ) -> StockGroup:
        now = datetime.now()
        group = StockGroup(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            description=description,
            color=color or settings.DEFAULT_STOCK_GROUP_COLOR,
            stocks=_dedupe(stocks or []),
            created_at=now,
            updated_at=now,
        )
        get_db().execute(
            """
            INSERT INTO stock_groups
                (id, user_id, name, description, color, stocks, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                group.id,
                group.user_id,
                group.name,
                group.description,
                group.color,
                json.dumps(group.stocks),
                group.created_at,
                group.updated_at,
            ],
        )
        logger.info("[Store] Created stock group '%s' (%d stocks)", name, len(group.stocks))
        return group

    def update_stock_group(
        self, group_id: str, user_id: str, **updates: Any
    ) -> StockGroup | None:
        """Patch name/description/color; ``stocks`` replaces the member list."""
        if self.get_stock_group(group_id, user_id) is None:
            return None
        self._update_row("stock_groups", _STOCK_GROUP_FIELDS, group_id, user_id, updates)
        if "stocks" in updates:
            get_db().execute(
                "UPDATE stock_groups SET stocks = ?, updated_at = ? WHERE id = ?",
                [json.dumps(_dedupe(updates["stocks"])), datetime.now(), group_id],
            )
        return self.get_stock_group(group_id, user_id)

    def delete_stock_group(self, group_id: str, user_id: str) -> bool:
        """Delete a stock group.

        Constraint groups that reference it keep the dangling id; the
        expander skips it.
        """
        deleted = self._delete_row("stock_groups", group_id, user_id)
        if deleted:
            logger.info("[Store] Deleted stock group %s", group_id)
        return deleted

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _update_row(
        table: str,
        allowed: set[str],
        row_id: str,
        user_id: str,
        updates: dict[str, Any],
    ) -> bool:
        """UPDATE the allowed columns present in ``updates``. False if none."""
        fields = {k: v for k, v in updates.items() if k in allowed}
        if not fields:
            return False

        set_clause = ", ".join(f"{col} = ?" for col in fields)
        get_db().execute(
            f"UPDATE {table} SET {set_clause}, updated_at = ? WHERE id = ? AND user_id = ?",  # noqa: S608
            [*fields.values(), datetime.now(), row_id, user_id],
        )
        return True

    @staticmethod
    def _delete_row(table: str, row_id: str, user_id: str) -> bool:
        exists = query_dicts(
            f"SELECT id FROM {table} WHERE id = ? AND user_id = ?",  # noqa: S608
            [row_id, user_id],
        )
        if not exists:
            return False
        get_db().execute(
            f"DELETE FROM {table} WHERE id = ? AND user_id = ?",  # noqa: S608
            [row_id, user_id],
        )
        return True

    @staticmethod
    def _write_group_lists(
        group_id: str,
        stocks: list[str] | None = None,
        stock_groups: list[str] | None = None,
        stock_overrides: dict[str, StockConstraintOverride] | None = None,
    ) -> None:
        """Rewrite the JSON list columns of a constraint group."""
        cols: dict[str, str] = {}
        if stocks is not None:
            cols["stocks"] = json.dumps(stocks)
        if stock_groups is not None:
            cols["stock_groups"] = json.dumps(stock_groups)
        if stock_overrides is not None:
            cols["stock_overrides"] = json.dumps({
                symbol: o.model_dump(exclude_none=True)
                for symbol, o in stock_overrides.items()
            })
        if not cols:
            return

        set_clause = ", ".join(f"{col} = ?" for col in cols)
        get_db().execute(
            f"UPDATE constraint_groups SET {set_clause}, updated_at = ? WHERE id = ?",  # noqa: S608
            [*cols.values(), datetime.now(), group_id],
        )

    @staticmethod
    def _row_to_group(row: dict) -> ConstraintGroup:
        row = dict(row)
        row["stocks"] = json.loads(row.get("stocks") or "[]")
        row["stock_groups"] = json.loads(row.get("stock_groups") or "[]")
        row["stock_overrides"] = json.loads(row.get("stock_overrides") or "{}")
        return ConstraintGroup(**row)

    @staticmethod
    def _row_to_stock_group(row: dict) -> StockGroup:
        row = dict(row)
        row["stocks"] = json.loads(row.get("stocks") or "[]")
        if not row.get("color"):
            row["color"] = settings.DEFAULT_STOCK_GROUP_COLOR
        return StockGroup(**row)


def _dedupe(symbols: list[str]) -> list[str]:
    """Normalize symbols and drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(normalize_symbol(s) for s in symbols if s.strip()))
