"""
Order cart tests.

Verifies:
- effective available stock when editing a saved sale
- add/update/remove rules for tracked, untracked and negative-sale products
- per-line overrides never touch the catalog
- save coalescing policy
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from mesapos.services import sales_service
from mesapos.services.cart import (
    CartProduct,
    OrderCart,
    SaveCoalescer,
    effective_available,
    parse_quantity_input,
)
from mesapos.services.inventory_service import get_stock


LOMO = CartProduct(id=1, name="Lomo Saltado", price=Decimal("25.00"), inventory_activated=True)
CHICHA = CartProduct(id=2, name="Chicha Morada", price=Decimal("8.50"))
PISCO = CartProduct(
    id=3, name="Pisco Sour", price=Decimal("18.00"), inventory_activated=True, allow_negative_sale=True
)


def make_cart(stock, check_inventory=True):
    return OrderCart(1, lambda branch_id, product_id: stock.get(product_id, 0), check_inventory=check_inventory)


# =============================================================================
# EFFECTIVE AVAILABLE
# =============================================================================


class TestEffectiveAvailable:

    @pytest.mark.parametrize(
        "available,current,expected",
        [
            (5, 0, 5),   # new line
            (5, 5, 5),   # not yet saved: ledger still shows everything
            (0, 5, 5),   # saved sale holding all 5 units
            (2, 3, 5),   # saved sale holding 3 of 5
            (0, 0, 0),
        ],
    )
    def test_counts_back_reserved_quantity(self, available, current, expected):
        assert effective_available(available, current) == expected


# =============================================================================
# ADD / UPDATE / REMOVE
# =============================================================================


class TestAddProduct:

    def test_first_add_creates_line(self):
        cart = make_cart({1: 5})
        line = cart.add_product(LOMO)
        assert line.quantity == 1
        assert line.unit_price == Decimal("25.00")

    def test_second_add_increments(self):
        cart = make_cart({1: 5})
        cart.add_product(LOMO)
        line = cart.add_product(LOMO)
        assert line.quantity == 2
        assert len(cart.lines) == 1

    def test_out_of_stock_is_noop(self):
        cart = make_cart({1: 0})
        assert cart.add_product(LOMO) is None
        assert cart.lines == []

    def test_stops_at_available(self):
        cart = make_cart({1: 2})
        cart.add_product(LOMO)
        cart.add_product(LOMO)
        assert cart.add_product(LOMO) is None
        assert cart.find_line(1).quantity == 2

    def test_untracked_ignores_stock(self):
        cart = make_cart({})
        cart.add_product(CHICHA)
        cart.add_product(CHICHA)
        assert cart.find_line(2).quantity == 2

    def test_negative_sale_ignores_stock(self):
        cart = make_cart({3: 0})
        assert cart.add_product(PISCO) is not None

    def test_inventory_check_disabled(self):
        cart = make_cart({1: 0}, check_inventory=False)
        assert cart.add_product(LOMO) is not None


class TestUpdateQuantity:

    def test_zero_removes_line(self):
        cart = make_cart({1: 5})
        cart.add_product(LOMO)
        assert cart.update_quantity(1, 0) is None
        assert cart.lines == []

    def test_clamps_to_available(self):
        cart = make_cart({1: 5})
        cart.add_product(LOMO)
        line = cart.update_quantity(1, 9)
        assert line.quantity == 5

    def test_untracked_accepts_any_quantity(self):
        cart = make_cart({})
        cart.add_product(CHICHA)
        assert cart.update_quantity(2, 40).quantity == 40

    def test_unknown_product_is_noop(self):
        cart = make_cart({})
        assert cart.update_quantity(99, 3) is None

    def test_reserved_quantity_counted_back_when_stock_drops(self):
        stock = {1: 1}
        cart = make_cart(stock)
        cart.add_product(LOMO)
        # Another terminal took the last unit meanwhile
        stock[1] = 0
        # available (0) < current (1): counted back as editing, so 1 is still allowed
        assert cart.update_quantity(1, 3).quantity == 1


class TestLineOverrides:

    def test_name_and_price_stay_on_line(self):
        cart = make_cart({})
        cart.add_product(CHICHA)
        cart.update_item_name(2, "Chicha (jarra)")
        cart.update_item_price(2, "20.456")
        line = cart.find_line(2)
        assert line.product_name == "Chicha (jarra)"
        assert line.unit_price == Decimal("20.46")
        assert CHICHA.price == Decimal("8.50")

    def test_price_floor_is_zero(self):
        cart = make_cart({})
        cart.add_product(CHICHA)
        cart.update_item_price(2, "-4")
        assert cart.find_line(2).unit_price == Decimal("0.00")

    def test_unparseable_price_is_ignored(self):
        cart = make_cart({})
        cart.add_product(CHICHA)
        cart.update_item_price(2, "abc")
        assert cart.find_line(2).unit_price == Decimal("8.50")

    def test_totals(self):
        cart = make_cart({1: 5})
        cart.add_product(LOMO)
        cart.add_product(LOMO)
        cart.add_product(CHICHA)
        assert cart.total == Decimal("58.50")
        assert cart.item_count == 3

    def test_item_inputs_snapshot(self):
        cart = make_cart({})
        cart.add_product(CHICHA)
        cart.update_item_notes(2, "sin hielo")
        assert cart.to_item_inputs() == [{
            "product_id": 2,
            "product_name": "Chicha Morada",
            "quantity": 1,
            "unit_price": "8.50",
            "notes": "sin hielo",
        }]


class TestValidateStock:

    def test_reports_lines_over_stock(self):
        stock = {1: 5}
        cart = make_cart(stock)
        cart.add_product(LOMO)
        cart.update_quantity(1, 5)
        # Oversold elsewhere: the ledger went below zero
        stock[1] = -2
        cart.find_line(1).quantity = 3
        errors = cart.validate_stock()
        assert errors == ["Lomo Saltado: requested 3, available 1"]

    def test_negative_sale_lines_are_not_reported(self):
        cart = make_cart({3: 0})
        cart.add_product(PISCO)
        cart.add_product(PISCO)
        assert cart.validate_stock() == []


# =============================================================================
# SAVED SALE (stock 5 scenarios)
# =============================================================================


class TestEditingSavedSale:

    def test_sold_out_product_cannot_be_added_elsewhere(self, db_session, branch, tracked_product):
        sales_service.create_sale(branch.id, items=[{"product_id": tracked_product.id, "quantity": 5}])
        assert get_stock(branch.id, tracked_product.id) == 0

        cart = OrderCart(branch.id, get_stock)
        assert cart.add_product(CartProduct.from_model(tracked_product)) is None
        assert cart.lines == []

    def test_raising_saved_line_clamps_to_effective_available(self, db_session, branch, tracked_product):
        sale = sales_service.create_sale(branch.id, items=[{"product_id": tracked_product.id, "quantity": 5}])
        products = {tracked_product.id: CartProduct.from_model(tracked_product)}

        cart = OrderCart.from_sale(sale, sale.items, get_stock, products=products)
        line = cart.update_quantity(tracked_product.id, 6)
        assert line.quantity == 5
        assert cart.add_product(products[tracked_product.id]) is None
        assert cart.validate_stock() == []

    def test_lowering_saved_line(self, db_session, branch, tracked_product):
        sale = sales_service.create_sale(branch.id, items=[{"product_id": tracked_product.id, "quantity": 5}])
        products = {tracked_product.id: CartProduct.from_model(tracked_product)}

        cart = OrderCart.from_sale(sale, sale.items, get_stock, products=products)
        cart.update_quantity(tracked_product.id, 2)
        sales_service.set_sale_items(sale.id, cart.to_item_inputs())
        assert get_stock(branch.id, tracked_product.id) == 3


# =============================================================================
# INPUT / SAVE POLICY
# =============================================================================


class TestParseQuantityInput:

    @pytest.mark.parametrize(
        "raw,expected",
        [("3", 3), (" 12 ", 12), ("", None), ("abc", None), ("2.5", None), (None, None), (7, 7), ("-1", -1)],
    )
    def test_parse(self, raw, expected):
        assert parse_quantity_input(raw) == expected


class TestSaveCoalescer:

    def test_first_change_flushes(self):
        saver = SaveCoalescer(min_interval=2.0)
        assert saver.should_flush([{"product_id": 1, "quantity": 1}], now=0.0) is True

    def test_unchanged_snapshot_never_flushes(self):
        saver = SaveCoalescer(min_interval=2.0)
        snap = [{"product_id": 1, "quantity": 1}]
        saver.mark_flushed(snap, now=0.0)
        assert saver.should_flush(snap, now=10.0) is False
        assert saver.has_pending_changes is False

    def test_changes_inside_interval_wait(self):
        saver = SaveCoalescer(min_interval=2.0)
        saver.mark_flushed([{"product_id": 1, "quantity": 1}], now=0.0)
        changed = [{"product_id": 1, "quantity": 2}]
        assert saver.should_flush(changed, now=1.0) is False
        assert saver.has_pending_changes is True
        assert saver.should_flush(changed, now=2.5) is True


def test_from_model_uses_branch_override():
    product = SimpleNamespace(
        id=9, name="Anticucho", price="12.00", inventory_activated=False, allow_negative_sale=False
    )
    assert CartProduct.from_model(product, inventory_activated=True).inventory_activated is True
    assert CartProduct.from_model(product).inventory_activated is False
