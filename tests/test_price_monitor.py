"""Tests for PriceMonitor: trigger checks, execution and price refresh.

yfinance is never called: ``PriceMonitor._fetch_prices`` is patched.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from constraint_desk.models.constraints import StockConstraintOverride


@pytest.fixture()
def services(fresh_db):
    from constraint_desk.services.constraint_positions import ConstraintPositionService
    from constraint_desk.services.portfolio import PortfolioService
    from constraint_desk.services.price_monitor import PriceMonitor
    from constraint_desk.services.store import ConstraintStore

    portfolio = PortfolioService()
    store = ConstraintStore(portfolio=portfolio)
    monitor = PriceMonitor(ConstraintPositionService(store), portfolio)
    return store, portfolio, monitor


def _patch_prices(prices: dict[str, float]):
    return patch(
        "constraint_desk.services.price_monitor.PriceMonitor._fetch_prices",
        new=AsyncMock(return_value=prices),
    )


class TestCheckConstraints:

    @pytest.mark.asyncio
    async def test_no_constraints(self, services):
        _, _, monitor = services
        with _patch_prices({"AAPL": 100.0}) as fetch:
            assert await monitor.check_constraints("u1") == []
        fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_first_check_sets_baseline_only(self, services):
        store, portfolio, monitor = services
        store.create_constraint("u1", "AAPL", -5.0, 10.0, 1000.0, 500.0)

        with _patch_prices({"AAPL": 100.0}):
            assert await monitor.check_constraints("u1") == []
        assert portfolio.get_trades("u1") == []

    @pytest.mark.asyncio
    async def test_buy_trigger_on_drop_from_last_seen_price(self, services):
        store, portfolio, monitor = services
        c = store.create_constraint("u1", "AAPL", -5.0, 10.0, 1000.0, 500.0)

        with _patch_prices({"AAPL": 100.0}):
            await monitor.check_constraints("u1")
        with _patch_prices({"AAPL": 80.0}):
            [action] = await monitor.check_constraints("u1")

        assert action["trigger_type"] == "BUY"
        assert action["trade_type"] == "BUY"
        assert action["quantity"] == pytest.approx(12.5)
        assert action["trigger_price"] == 95.0
        assert action["constraint_id"] == c.id

        pos = portfolio.get_position("u1", "AAPL")
        assert pos.quantity == pytest.approx(12.5)
        [trade] = portfolio.get_trades("u1")
        assert trade.trigger_type == "PRICE_DROP"

    @pytest.mark.asyncio
    async def test_sell_trigger_uses_stored_price_and_caps_quantity(self, services):
        store, portfolio, monitor = services
        store.create_constraint("u1", "MSFT", -5.0, 10.0, 1000.0, 5000.0)
        portfolio.buy("u1", "MSFT", 2, 100.0)

        with _patch_prices({"MSFT": 120.0}):
            [action] = await monitor.check_constraints("u1")

        assert action["trigger_type"] == "SELL"
        assert action["quantity"] == 2
        assert portfolio.get_position("u1", "MSFT") is None
        assert portfolio.get_trades("u1")[0].trigger_type == "PRICE_RISE"

    @pytest.mark.asyncio
    async def test_group_override_amount_is_used(self, services):
        store, portfolio, monitor = services
        g = store.create_constraint_group(
            "u1", "Tech", -5.0, 10.0, 1000.0, 500.0, stocks=["AAPL", "MSFT"],
        )
        store.set_stock_override(g.id, "u1", "AAPL", StockConstraintOverride(buy_amount=2000.0))

        with _patch_prices({"AAPL": 100.0, "MSFT": 100.0}):
            await monitor.check_constraints("u1")
        with _patch_prices({"AAPL": 90.0, "MSFT": 90.0}):
            actions = await monitor.check_constraints("u1")

        by_symbol = {a["stock_symbol"]: a for a in actions}
        assert by_symbol["AAPL"]["quantity"] == pytest.approx(2000.0 / 90.0)
        assert by_symbol["MSFT"]["quantity"] == pytest.approx(1000.0 / 90.0)
        assert by_symbol["AAPL"]["constraint_id"] == g.id

    @pytest.mark.asyncio
    async def test_inactive_constraint_is_not_checked(self, services):
        store, portfolio, monitor = services
        c = store.create_constraint("u1", "AAPL", -5.0, 10.0, 1000.0, 500.0)
        store.toggle_constraint(c.id, "u1", False)

        with _patch_prices({"AAPL": 1.0}) as fetch:
            assert await monitor.check_constraints("u1") == []
        fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_prices_are_written_back(self, services):
        store, portfolio, monitor = services
        store.create_constraint("u1", "AAPL", -50.0, 50.0, 1.0, 1.0)
        portfolio.buy("u1", "AAPL", 1, 100.0)

        with _patch_prices({"AAPL": 104.0}):
            await monitor.check_constraints("u1")
        assert portfolio.get_position("u1", "AAPL").current_price == 104.0

    @pytest.mark.asyncio
    async def test_rejected_trade_is_skipped(self, services):
        store, portfolio, monitor = services
        store.create_constraint("u1", "AAPL", -5.0, 10.0, 1000.0, 500.0)
        monitor._last_prices["AAPL"] = 100.0

        with _patch_prices({"AAPL": 80.0}):
            with patch.object(portfolio, "apply_trade", side_effect=_reject):
                assert await monitor.check_constraints("u1") == []


def _reject(*args, **kwargs):
    from constraint_desk.errors import TradeRejectedError
    raise TradeRejectedError("nope")


class TestRefreshPrices:

    @pytest.mark.asyncio
    async def test_refresh_held_symbols(self, services):
        _, portfolio, monitor = services
        portfolio.buy("u1", "AAPL", 1, 100.0)
        portfolio.buy("u2", "MSFT", 1, 100.0)

        with _patch_prices({"AAPL": 101.0, "MSFT": 99.0}) as fetch:
            assert await monitor.refresh_prices() == 2
        fetch.assert_awaited_once_with(["AAPL", "MSFT"])
        assert portfolio.get_position("u2", "MSFT").current_price == 99.0

    @pytest.mark.asyncio
    async def test_refresh_nothing_held(self, services):
        _, _, monitor = services
        with _patch_prices({}) as fetch:
            assert await monitor.refresh_prices() == 0
        fetch.assert_not_called()


class TestFetchPrices:

    @pytest.mark.asyncio
    async def test_failed_symbols_are_dropped(self):
        from constraint_desk.services.price_monitor import PriceMonitor

        def _ticker(symbol):
            if symbol == "BAD":
                raise RuntimeError("no data")
            t = MagicMock()
            t.fast_info.last_price = 42.0
            return t

        with patch("yfinance.Ticker", side_effect=_ticker):
            prices = await PriceMonitor._fetch_prices(["AAPL", "BAD"])
        assert prices == {"AAPL": 42.0}
