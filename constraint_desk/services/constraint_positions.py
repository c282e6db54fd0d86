"""Constraint Position Service: fetches a user's constraints, groups,
stock groups and positions concurrently, then hands them to the
aggregator.

The four fetches fan out on worker threads and fan back in. A failed
positions fetch degrades to "no positions" (every entry shows as
watching); any other failed fetch fails the whole call with a single
ReconciliationError.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from constraint_desk.engine.aggregator import (
    aggregate_constraint_positions,
    build_dashboard,
    summarize_groups,
)
from constraint_desk.errors import ReconciliationError
from constraint_desk.models.constraints import ConstraintGroup, StockGroup, TradingConstraint
from constraint_desk.models.trading import (
    ConstraintPosition,
    DashboardData,
    GroupSummary,
    Position,
)
from constraint_desk.utils.logger import logger


class ConstraintSource(Protocol):
    """Read collaborators the reconciliation depends on."""

    def list_constraints(self, user_id: str) -> list[TradingConstraint]: ...

    def list_constraint_groups(self, user_id: str) -> list[ConstraintGroup]: ...

    def list_stock_groups(self, user_id: str) -> list[StockGroup]: ...

    def get_positions(self, user_id: str) -> list[Position]: ...


class ConstraintPositionService:
    """Builds constraint positions for a user from a ConstraintSource."""

    def __init__(self, source: ConstraintSource) -> None:
        self._source = source

    async def get_constraint_positions(self, user_id: str) -> list[ConstraintPosition]:
        """Sorted, de-duplicated constraint positions for the user."""
        constraints, groups, stock_groups, positions = await self._fetch_all(user_id)
        result = aggregate_constraint_positions(constraints, groups, stock_groups, positions)
        logger.debug(
            "[ConstraintPositions] %s: %d entries (%d constraints, %d groups)",
            user_id, len(result), len(constraints), len(groups),
        )
        return result

    async def get_group_summary(self, user_id: str) -> list[GroupSummary]:
        """Per-group totals for the user."""
        _, groups, stock_groups, positions = await self._fetch_all(user_id)
        return summarize_groups(groups, stock_groups, positions)

    async def get_dashboard_data(self, user_id: str) -> DashboardData:
        """Constraint positions, group summary and headline totals in one pass."""
        constraints, groups, stock_groups, positions = await self._fetch_all(user_id)
        return build_dashboard(constraints, groups, stock_groups, positions)

    # ------------------------------------------------------------------
    # Fan-out / fan-in
    # ------------------------------------------------------------------

    async def _fetch_all(self, user_id: str) -> tuple[list, list, list, list]:
        """Run the four fetches concurrently and collect their results."""
        fetches = {
            "constraints": self._source.list_constraints,
            "constraint groups": self._source.list_constraint_groups,
            "stock groups": self._source.list_stock_groups,
            "positions": self._source.get_positions,
        }
        results: list[Any] = await asyncio.gather(
            *(asyncio.to_thread(fn, user_id) for fn in fetches.values()),
            return_exceptions=True,
        )
        for value in results:
            # Cancellation and interpreter exits are not fetch failures
            if isinstance(value, BaseException) and not isinstance(value, Exception):
                raise value
        outcome = dict(zip(fetches, results))

        positions = outcome.pop("positions")
        if isinstance(positions, Exception):
            logger.warning(
                "[ConstraintPositions] Positions fetch failed for %s, "
                "continuing without positions: %s",
                user_id, positions,
            )
            positions = []

        for name, value in outcome.items():
            if isinstance(value, Exception):
                logger.error(
                    "[ConstraintPositions] %s fetch failed for %s: %s",
                    name, user_id, value,
                )
                raise ReconciliationError(name, user_id) from value

        return (
            list(outcome["constraints"]),
            list(outcome["constraint groups"]),
            list(outcome["stock groups"]),
            list(positions),
        )
