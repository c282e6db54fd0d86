"""Process entry point. Wires the services and runs the monitoring jobs.

    python -m constraint_desk.main [user_id ...]

With no user ids the DEFAULT_USER_ID from settings is monitored.
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from constraint_desk.config import settings
from constraint_desk.database import close_db, get_db
from constraint_desk.services.analytics import PerformanceAnalytics
from constraint_desk.services.backtest import BacktestService
from constraint_desk.services.constraint_positions import ConstraintPositionService
from constraint_desk.services.portfolio import PortfolioService
from constraint_desk.services.price_monitor import PriceMonitor
from constraint_desk.services.scheduler import ConstraintScheduler
from constraint_desk.services.store import ConstraintStore
from constraint_desk.utils.logger import logger


@dataclass
class Services:
    """The singleton service graph."""

    portfolio: PortfolioService
    store: ConstraintStore
    positions: ConstraintPositionService
    monitor: PriceMonitor
    scheduler: ConstraintScheduler
    backtest: BacktestService
    analytics: PerformanceAnalytics


def build_services(user_ids: list[str] | None = None) -> Services:
    """Create the service graph over the configured DuckDB file."""
    get_db()
    portfolio = PortfolioService()
    store = ConstraintStore(portfolio=portfolio)
    positions = ConstraintPositionService(store)
    monitor = PriceMonitor(positions, portfolio)
    scheduler = ConstraintScheduler(monitor, user_ids=user_ids, portfolio=portfolio)
    return Services(
        portfolio, store, positions, monitor, scheduler,
        BacktestService(store), PerformanceAnalytics(portfolio),
    )


async def run(user_ids: list[str] | None = None) -> None:
    """Start the scheduler and block until cancelled."""
    services = build_services(user_ids)
    services.scheduler.start()
    logger.info(
        "[Main] Monitoring users %s (config: %s)",
        user_ids or [settings.DEFAULT_USER_ID], settings.as_dict(),
    )
    try:
        await asyncio.Event().wait()
    finally:
        services.scheduler.stop()
        close_db()


def main() -> None:
    try:
        asyncio.run(run(sys.argv[1:] or None))
    except KeyboardInterrupt:
        logger.info("[Main] Shutting down")


if __name__ == "__main__":
    main()
