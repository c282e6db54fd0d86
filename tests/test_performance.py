"""Tests for the performance engine: rankings, per-constraint results,
snapshot bucketing and period returns."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from constraint_desk.engine.performance import (
    bucket_snapshots,
    constraint_performance,
    period_return,
    position_performance,
    rank_positions,
)
from constraint_desk.models.performance import PortfolioSnapshot
from constraint_desk.models.trading import Position, TradeHistory

NOW = datetime(2026, 3, 1, 12, 0)


def _pos(symbol: str, qty: float, avg: float, price: float | None) -> Position:
    return Position(
        user_id="u1", stock_symbol=symbol, quantity=qty,
        average_cost=avg, current_price=price,
    )


def _trade(n: int, side: str, qty: float, price: float, constraint_id: str | None = "c1",
           symbol: str = "AAPL") -> TradeHistory:
    return TradeHistory(
        id=f"t{n}",
        user_id="u1",
        constraint_id=constraint_id,
        stock_symbol=symbol,
        trade_type=side,
        trigger_type="PRICE_DROP" if side == "BUY" else "PRICE_RISE",
        quantity=qty,
        price=price,
        executed_at=NOW + timedelta(minutes=n),
    )


def _snap(when: datetime, value: float) -> PortfolioSnapshot:
    return PortfolioSnapshot(
        id=when.isoformat(), user_id="u1", total_value=value,
        total_gain_loss=0.0, total_gain_loss_percent=0.0,
        position_count=1, timestamp=when,
    )


# ══════════════════════════════════════════════════════════════════════
# 1.  Positions
# ══════════════════════════════════════════════════════════════════════


class TestPositionPerformance:

    def test_unpriced_positions_marked_at_cost(self):
        perf = position_performance([
            _pos("AAPL", 10, 100.0, 110.0),
            _pos("MSFT", 5, 200.0, None),
            _pos("GONE", 0, 50.0, 60.0),
        ])
        by_symbol = {p.stock_symbol: p for p in perf}

        assert set(by_symbol) == {"AAPL", "MSFT"}
        assert by_symbol["AAPL"].gain_loss == pytest.approx(100.0)
        assert by_symbol["AAPL"].gain_loss_percent == pytest.approx(10.0)
        assert by_symbol["MSFT"].current_price == 200.0
        assert by_symbol["MSFT"].market_value == 1000.0
        assert by_symbol["MSFT"].gain_loss == 0.0

    def test_ranking(self):
        perf = position_performance([
            _pos("AAPL", 1, 100.0, 110.0),
            _pos("MSFT", 1, 100.0, 90.0),
            _pos("GOOG", 1, 100.0, 100.0),
            _pos("AMZN", 1, 100.0, 100.0),
        ])
        best = [p.stock_symbol for p in rank_positions(perf)]
        worst = [p.stock_symbol for p in rank_positions(perf, best_first=False)]
        assert best == ["AAPL", "AMZN", "GOOG", "MSFT"]
        assert worst == ["MSFT", "AMZN", "GOOG", "AAPL"]


# ══════════════════════════════════════════════════════════════════════
# 2.  Constraint results
# ══════════════════════════════════════════════════════════════════════


class TestConstraintPerformance:

    def test_sells_measured_against_running_average_cost(self):
        trades = [
            _trade(3, "SELL", 5, 85.0),
            _trade(0, "BUY", 10, 100.0),
            _trade(2, "SELL", 5, 99.0),
            _trade(1, "BUY", 10, 80.0),
        ]
        [perf] = constraint_performance(trades)

        assert perf.buy_trades == 2
        assert perf.sell_trades == 2
        assert perf.successful_trades == 1
        assert perf.success_rate == 50.0
        assert perf.total_invested == 1800.0
        # avg 90: +9 x 5 then -5 x 5
        assert perf.realized_pnl == pytest.approx(20.0)
        assert perf.return_percent == pytest.approx(20.0 / 1800.0 * 100)
        assert perf.last_trade_at == NOW + timedelta(minutes=3)

    def test_grouped_by_constraint_best_first(self):
        trades = [
            _trade(0, "BUY", 1, 50.0, constraint_id="c2", symbol="MSFT"),
            _trade(1, "BUY", 2, 10.0, constraint_id="c1"),
            _trade(2, "SELL", 2, 15.0, constraint_id="c1"),
            _trade(3, "BUY", 100, 1.0, constraint_id=None),
        ]
        results = constraint_performance(trades)

        assert [p.constraint_id for p in results] == ["c1", "c2"]
        assert results[0].realized_pnl == pytest.approx(10.0)
        assert results[1].stock_symbols == ["MSFT"]
        assert results[1].success_rate == 0.0

    def test_no_trades(self):
        assert constraint_performance([]) == []


# ══════════════════════════════════════════════════════════════════════
# 3.  Snapshot history
# ══════════════════════════════════════════════════════════════════════


class TestSnapshotHistory:

    def test_one_point_per_bucket(self):
        three_days = NOW - timedelta(days=3)
        snaps = [
            _snap(NOW - timedelta(days=10), 900.0),
            _snap(three_days + timedelta(minutes=5), 1000.0),
            _snap(three_days + timedelta(minutes=10), 1010.0),
            _snap(NOW - timedelta(hours=1), 1100.0),
            _snap(NOW, 1200.0),
        ]
        picked = bucket_snapshots(snaps, "7d", NOW)
        assert [s.total_value for s in picked] == [1010.0, 1100.0, 1200.0]

    def test_point_limit_keeps_newest(self):
        snaps = [_snap(NOW - timedelta(hours=h), float(h)) for h in range(200, -1, -1)]
        picked = bucket_snapshots(snaps, "7d", NOW)
        assert len(picked) == 168
        assert picked[-1].total_value == 0.0

    def test_empty_and_unknown_range(self):
        assert bucket_snapshots([], "30d", NOW) == []
        with pytest.raises(ValueError):
            bucket_snapshots([], "2w", NOW)

    def test_period_returns(self):
        snaps = [
            _snap(NOW - timedelta(days=40), 1000.0),
            _snap(NOW - timedelta(days=8), 1100.0),
            _snap(NOW - timedelta(days=2), 1200.0),
            _snap(NOW, 1320.0),
        ]
        assert period_return(snaps, 1, NOW) == pytest.approx(10.0)
        assert period_return(snaps, 7, NOW) == pytest.approx(20.0)
        assert period_return(snaps, 30, NOW) == pytest.approx(32.0)
        assert period_return(snaps, 365, NOW) is None
        assert period_return([], 1, NOW) is None
