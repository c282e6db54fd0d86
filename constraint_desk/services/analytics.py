"""Performance Analytics: rankings, per-constraint results and period
returns computed from positions, trade history and portfolio snapshots.
"""

from __future__ import annotations

from datetime import datetime

from constraint_desk.config import settings
from constraint_desk.engine.backtest import (
    daily_returns,
    max_drawdown,
    return_volatility,
    sharpe_ratio,
)
from constraint_desk.engine.performance import (
    constraint_performance,
    period_return,
    position_performance,
    rank_positions,
)
from constraint_desk.models.performance import (
    ConstraintPerformance,
    PerformanceReport,
    PortfolioSnapshot,
    PositionPerformance,
)
from constraint_desk.services.portfolio import PortfolioService
from constraint_desk.utils.logger import logger


class PerformanceAnalytics:
    """Read-only analytics over one PortfolioService."""

    def __init__(self, portfolio: PortfolioService) -> None:
        self._portfolio = portfolio

    def top_performers(self, user_id: str, limit: int = 5) -> list[PositionPerformance]:
        perf = position_performance(self._portfolio.get_positions(user_id))
        return rank_positions(perf, best_first=True)[:limit]

    def worst_performers(self, user_id: str, limit: int = 5) -> list[PositionPerformance]:
        perf = position_performance(self._portfolio.get_positions(user_id))
        return rank_positions(perf, best_first=False)[:limit]

    def constraint_performance(self, user_id: str) -> list[ConstraintPerformance]:
        """Realized results per constraint, best first."""
        return constraint_performance(self._portfolio.get_constraint_trades(user_id))

    def performance_history(
        self,
        user_id: str,
        time_range: str = "30d",
        now: datetime | None = None,
    ) -> list[PortfolioSnapshot]:
        return self._portfolio.get_snapshot_history(user_id, time_range, now=now)

    def detailed_performance(
        self, user_id: str, now: datetime | None = None
    ) -> PerformanceReport:
        """Current totals plus returns and risk from the snapshot history.

        Risk figures use the last year of snapshots, one value per day.
        """
        now = now or datetime.now()
        totals = self._portfolio.get_portfolio(user_id)
        snapshots = self._portfolio.get_snapshots(user_id)
        daily = self._portfolio.get_snapshot_history(user_id, "1y", now=now)
        values = [s.total_value for s in daily]
        returns = daily_returns(values)

        ranked = rank_positions(position_performance(self._portfolio.get_positions(user_id)))
        report = PerformanceReport(
            user_id=user_id,
            total_value=totals["total_value"],
            total_cost=totals["total_cost"],
            total_gain_loss=totals["total_gain_loss"],
            total_gain_loss_percent=totals["total_gain_loss_percent"],
            position_count=totals["positions_count"],
            day_return=period_return(snapshots, 1, now),
            week_return=period_return(snapshots, 7, now),
            month_return=period_return(snapshots, 30, now),
            year_return=period_return(snapshots, 365, now),
            sharpe_ratio=sharpe_ratio(returns, settings.RISK_FREE_RATE),
            max_drawdown=max_drawdown(values),
            volatility=return_volatility(returns),
            best_position=ranked[0] if ranked else None,
            worst_position=ranked[-1] if ranked else None,
            constraint_trades=len(self._portfolio.get_constraint_trades(user_id)),
            generated_at=now,
        )
        logger.debug(
            "[Analytics] %s: value $%.2f, %d snapshots, sharpe %.2f",
            user_id, report.total_value, len(snapshots), report.sharpe_ratio,
        )
        return report
