"""Tests for ConstraintStore (DuckDB persistence)."""

from __future__ import annotations

import pytest

from constraint_desk.errors import DuplicateConstraintError
from constraint_desk.models.constraints import StockConstraintOverride


@pytest.fixture()
def store(fresh_db):
    from constraint_desk.services.store import ConstraintStore
    return ConstraintStore()


def _make_group(store, user_id="u1", **kwargs):
    data = dict(
        name="Tech",
        buy_trigger_percent=-5.0,
        sell_trigger_percent=10.0,
        buy_amount=1000.0,
        sell_amount=500.0,
    )
    data.update(kwargs)
    return store.create_constraint_group(user_id, **data)


# ══════════════════════════════════════════════════════════════════════
# 1.  Individual constraints
# ══════════════════════════════════════════════════════════════════════


class TestConstraints:

    def test_create_and_list(self, store):
        c = store.create_constraint("u1", " aapl ", -5.0, 10.0, 1000.0, 500.0)
        assert c.stock_symbol == "AAPL"
        assert c.is_active is True

        [listed] = store.list_constraints("u1")
        assert listed.id == c.id
        assert listed.profit_trigger_percent is None
        assert store.list_constraints("someone-else") == []

    def test_duplicate_symbol_rejected(self, store):
        store.create_constraint("u1", "AAPL", -5.0, 10.0, 1000.0, 500.0)
        with pytest.raises(DuplicateConstraintError):
            store.create_constraint("u1", "aapl", -3.0, 6.0, 100.0, 100.0)
        # Another user may constrain the same symbol
        store.create_constraint("u2", "AAPL", -3.0, 6.0, 100.0, 100.0)

    def test_update_and_toggle(self, store):
        c = store.create_constraint("u1", "MSFT", -5.0, 10.0, 1000.0, 500.0)
        updated = store.update_constraint(
            c.id, "u1", buy_amount=250.0, profit_trigger_percent=15.0, bogus=1,
        )
        assert updated.buy_amount == 250.0
        assert updated.profit_trigger_percent == 15.0

        toggled = store.toggle_constraint(c.id, "u1", False)
        assert toggled.is_active is False
        assert store.list_active_constraints() == []

    def test_update_other_users_constraint_is_noop(self, store):
        c = store.create_constraint("u1", "MSFT", -5.0, 10.0, 1000.0, 500.0)
        assert store.update_constraint(c.id, "u2", buy_amount=1.0) is None
        assert store.get_constraint(c.id, "u1").buy_amount == 1000.0

    def test_delete(self, store):
        c = store.create_constraint("u1", "NVDA", -5.0, 10.0, 1000.0, 500.0)
        assert store.delete_constraint(c.id, "u1") is True
        assert store.delete_constraint(c.id, "u1") is False
        assert store.get_constraint(c.id, "u1") is None


# ══════════════════════════════════════════════════════════════════════
# 2.  Constraint groups
# ══════════════════════════════════════════════════════════════════════


class TestConstraintGroups:

    def test_create_normalizes_and_dedupes(self, store):
        g = _make_group(store, stocks=["aapl", "MSFT", "AAPL", " "], stock_groups=["sg1", "sg1"])
        assert g.stocks == ["AAPL", "MSFT"]
        assert g.stock_groups == ["sg1"]

        loaded = store.get_constraint_group(g.id, "u1")
        assert loaded.stocks == ["AAPL", "MSFT"]
        assert loaded.stock_overrides == {}

    def test_update_scalar_and_lists(self, store):
        g = _make_group(store, stocks=["AAPL"])
        updated = store.update_constraint_group(
            g.id, "u1", name="Renamed", sell_amount=50.0, stocks=["tsla", "amd"],
        )
        assert updated.name == "Renamed"
        assert updated.sell_amount == 50.0
        assert updated.stocks == ["TSLA", "AMD"]

    def test_update_missing_group(self, store):
        assert store.update_constraint_group("nope", "u1", name="x") is None

    def test_add_and_remove_stock(self, store):
        g = _make_group(store, stocks=["AAPL"])
        g = store.add_stock_to_group(g.id, "u1", "msft")
        g = store.add_stock_to_group(g.id, "u1", "MSFT")
        assert g.stocks == ["AAPL", "MSFT"]

        store.set_stock_override(g.id, "u1", "AAPL", StockConstraintOverride(buy_amount=2000.0))
        g = store.remove_stock_from_group(g.id, "u1", "aapl")
        assert g.stocks == ["MSFT"]
        assert "AAPL" not in g.stock_overrides

    def test_override_roundtrip_keeps_unset_fields_unset(self, store):
        g = _make_group(store, stocks=["AAPL", "MSFT"])
        store.set_stock_override(
            g.id, "u1", "aapl", StockConstraintOverride(buy_amount=2000.0),
        )
        loaded = store.get_constraint_group(g.id, "u1")
        override = loaded.stock_overrides["AAPL"]
        assert override.buy_amount == 2000.0
        assert override.buy_trigger_percent is None

        cleared = store.clear_stock_override(g.id, "u1", "AAPL")
        assert cleared.stock_overrides == {}

    def test_toggle_and_delete(self, store):
        g = _make_group(store)
        assert store.toggle_constraint_group(g.id, "u1", False).is_active is False
        assert store.delete_constraint_group(g.id, "u1") is True
        assert store.list_constraint_groups("u1") == []


# ══════════════════════════════════════════════════════════════════════
# 3.  Stock groups
# ══════════════════════════════════════════════════════════════════════


class TestStockGroups:

    def test_create_with_default_color(self, store):
        sg = store.create_stock_group("u1", "Mega caps", stocks=["aapl", "goog"])
        assert sg.color == "#3B82F6"
        assert sg.stocks == ["AAPL", "GOOG"]
        assert [s.id for s in store.list_stock_groups("u1")] == [sg.id]

    def test_update_members(self, store):
        sg = store.create_stock_group("u1", "Chips", stocks=["NVDA"], color="#FF0000")
        updated = store.update_stock_group(sg.id, "u1", stocks=["nvda", "amd"], name="Semis")
        assert updated.name == "Semis"
        assert updated.stocks == ["NVDA", "AMD"]
        assert updated.color == "#FF0000"

    def test_delete_leaves_dangling_reference(self, store):
        sg = store.create_stock_group("u1", "Chips", stocks=["NVDA"])
        g = _make_group(store, stocks=["MSFT"], stock_groups=[sg.id])

        assert store.delete_stock_group(sg.id, "u1") is True
        assert store.get_constraint_group(g.id, "u1").stock_groups == [sg.id]


# ══════════════════════════════════════════════════════════════════════
# 4.  End to end with the reconciliation service
# ══════════════════════════════════════════════════════════════════════


class TestStoreAsSource:

    @pytest.mark.asyncio
    async def test_constraint_positions_from_duckdb(self, store):
        from constraint_desk.services.constraint_positions import ConstraintPositionService

        sg = store.create_stock_group("u1", "Search", stocks=["GOOG"])
        store.create_constraint("u1", "AAPL", -3.0, 6.0, 300.0, 200.0)
        g = _make_group(store, stocks=["AAPL", "MSFT"], stock_groups=[sg.id, "deleted-id"])
        store.set_stock_override(g.id, "u1", "MSFT", StockConstraintOverride(sell_amount=99.0))
        store.portfolio.buy("u1", "MSFT", 5, 300.0)

        result = await ConstraintPositionService(store).get_constraint_positions("u1")

        assert [cp.stock_symbol for cp in result] == ["MSFT", "AAPL", "GOOG"]
        msft = result[0]
        assert msft.status == "position"
        assert msft.sell_amount == 99.0
        assert msft.has_custom_triggers is True
        assert result[1].constraint_type == "individual"
