"""Constraint Scheduler: periodic constraint evaluation and price refresh.

APScheduler interval jobs for constraint evaluation and price refresh,
plus portfolio snapshots when a PortfolioService is given. All are gated
on the NYSE session unless MARKET_HOURS_ONLY is off. Every scheduled run
is recorded in the ``scheduler_runs`` table.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from constraint_desk.config import settings
from constraint_desk.database import get_db, query_dicts
from constraint_desk.services.portfolio import PortfolioService
from constraint_desk.services.price_monitor import PriceMonitor
from constraint_desk.utils.logger import logger
from constraint_desk.utils.market_hours import is_market_open, market_status

EVALUATION_JOB = "constraint_evaluation"
PRICE_REFRESH_JOB = "price_refresh"
SNAPSHOT_JOB = "portfolio_snapshot"


class ConstraintScheduler:
    """Runs the price monitor on a fixed interval for a set of users."""

    def __init__(
        self,
        price_monitor: PriceMonitor,
        user_ids: list[str] | None = None,
        portfolio: PortfolioService | None = None,
    ) -> None:
        self._monitor = price_monitor
        self._portfolio = portfolio
        self._user_ids = list(user_ids or [settings.DEFAULT_USER_ID])
        self._aps: AsyncIOScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._aps is not None

    def _job_specs(self) -> list[tuple[str, str, int, Callable[[], Awaitable[str]]]]:
        """(id, name, interval seconds, runner) for every job."""
        specs = [
            (EVALUATION_JOB, "Constraint Evaluation",
             settings.EVALUATION_INTERVAL_SECONDS, self._evaluation_summary),
            (PRICE_REFRESH_JOB, "Position Price Refresh",
             settings.PRICE_REFRESH_SECONDS, self._price_refresh_summary),
        ]
        if self._portfolio is not None:
            specs.append((SNAPSHOT_JOB, "Portfolio Snapshot",
                          settings.SNAPSHOT_INTERVAL_SECONDS, self._snapshot_summary))
        return specs

    # ── Lifecycle ─────────────────────────────────────────────────

    def start(self) -> dict:
        """Register the jobs and start. Needs a running event loop."""
        if self.is_running:
            return {"status": "already_running"}

        aps = AsyncIOScheduler()
        for job_id, name, seconds, runner in self._job_specs():
            aps.add_job(
                self._tick,
                IntervalTrigger(seconds=seconds),
                args=[job_id, runner],
                id=job_id,
                name=name,
                replace_existing=True,
                max_instances=1,
            )
        aps.start()
        self._aps = aps

        logger.info(
            "[Scheduler] Started for %s: evaluation every %ds, price refresh every %ds",
            self._user_ids,
            settings.EVALUATION_INTERVAL_SECONDS,
            settings.PRICE_REFRESH_SECONDS,
        )
        return {"status": "started", "jobs": len(aps.get_jobs())}

    def stop(self) -> dict:
        if self._aps is None:
            return {"status": "not_running"}
        self._aps.shutdown(wait=False)
        self._aps = None
        logger.info("[Scheduler] Stopped")
        return {"status": "stopped"}

    # ── Status & history ──────────────────────────────────────────

    def get_status(self) -> dict:
        jobs = [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in (self._aps.get_jobs() if self._aps else [])
        ]
        job_ids = {j["id"] for j in jobs}
        return {
            "is_running": self.is_running,
            "constraint_evaluation_running": EVALUATION_JOB in job_ids,
            "price_refresh_running": PRICE_REFRESH_JOB in job_ids,
            "portfolio_snapshot_running": SNAPSHOT_JOB in job_ids,
            "jobs": jobs,
            "users": list(self._user_ids),
            "market": market_status(),
        }

    @staticmethod
    def get_history(limit: int = 20) -> list[dict]:
        """Recorded job runs, newest first."""
        rows = query_dicts(
            "SELECT id, job_name, started_at, completed_at, status, summary, error "
            "FROM scheduler_runs ORDER BY started_at DESC LIMIT ?",
            [limit],
        )
        for row in rows:
            for col in ("started_at", "completed_at"):
                row[col] = str(row[col]) if row[col] else None
        return rows

    # ── Manual runs (ignore market hours, not recorded) ───────────

    async def run_evaluation(self) -> list[dict]:
        logger.info("[Scheduler] Manual constraint evaluation")
        return await self._evaluate_all()

    async def run_price_refresh(self) -> int:
        logger.info("[Scheduler] Manual price refresh")
        return await self._monitor.refresh_prices()

    # ── Jobs ──────────────────────────────────────────────────────

    async def _tick(self, job_id: str, runner: Callable[[], Awaitable[str]]) -> None:
        """One scheduled run: market gate, then run and record the outcome."""
        if settings.MARKET_HOURS_ONLY and not is_market_open():
            logger.debug("[Scheduler] Market closed, skipping %s", job_id)
            return

        run_id = uuid.uuid4().hex[:8]
        get_db().execute(
            "INSERT INTO scheduler_runs (id, job_name, started_at, status) "
            "VALUES (?, ?, ?, 'running')",
            [run_id, job_id, datetime.now()],
        )
        status, summary, error = "success", "", ""
        try:
            summary = await runner()
        except Exception as e:
            status, error = "error", str(e)
            logger.exception("[Scheduler] %s failed", job_id)

        get_db().execute(
            "UPDATE scheduler_runs SET completed_at = ?, status = ?, summary = ?, error = ? "
            "WHERE id = ?",
            [datetime.now(), status, summary, error, run_id],
        )

    async def _evaluation_summary(self) -> str:
        actions = await self._evaluate_all()
        return f"{len(actions)} triggers fired"

    async def _price_refresh_summary(self) -> str:
        updated = await self._monitor.refresh_prices()
        return f"{updated} symbols updated"

    async def _evaluate_all(self) -> list[dict]:
        """Check every configured user; a failing user doesn't stop the rest."""
        actions: list[dict] = []
        for user_id in self._user_ids:
            try:
                actions.extend(await self._monitor.check_constraints(user_id))
            except Exception:
                logger.exception("[Scheduler] Evaluation failed for user %s", user_id)
        if actions:
            logger.info("[Scheduler] %d triggers fired across %d users",
                        len(actions), len(self._user_ids))
        return actions

    async def _snapshot_summary(self) -> str:
        """Record a portfolio snapshot per user, then drop expired ones."""
        recorded = 0
        for user_id in self._user_ids:
            try:
                self._portfolio.record_snapshot(user_id)
                recorded += 1
            except Exception:
                logger.exception("[Scheduler] Snapshot failed for user %s", user_id)
        removed = self._portfolio.cleanup_snapshots()
        return f"{recorded} snapshots recorded, {removed} expired"
