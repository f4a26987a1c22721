"""Application tests for product registration, stock adjustment, pricing and reports."""

from decimal import Decimal

import pytest

from inventory.ledger.ledger import ChangeType
from inventory.stock.adjustment import SetStockLevel, set_stock_level
from inventory.stock.availability import available_stock, inventory_report, low_stock_alerts, stock_history
from inventory.stock.initialization import ChangePrice, RegisterProduct, change_price, register_product
from inventory.stock.reservation import ReserveStock, reserve_stock
from shared.exceptions import InsufficientStock, ProductNotFound, ValidationError


def _register_product(**overrides):
    defaults = {
        "name": "Black T-Shirt (M)",
        "price": Decimal("19.99"),
        "initial_stock": 50,
        "low_stock_threshold": 10,
    }
    defaults.update(overrides)
    return register_product(RegisterProduct(**defaults))


class TestRegisterProduct:
    def test_register_with_initial_stock(self):
        product = _register_product(initial_stock=50)

        assert product.stock == 50
        assert product.reserved == 0
        entries = stock_history(product.id).entries
        assert len(entries) == 1
        assert entries[0].change_type == ChangeType.STOCK_IN.value
        assert entries[0].notes == "Initial stock"

    def test_register_without_stock_writes_no_entry(self):
        product = _register_product(initial_stock=0)
        assert stock_history(product.id).entries == []

    def test_register_requires_name(self):
        with pytest.raises(ValidationError) as exc_info:
            _register_product(name="  ")
        assert "name" in exc_info.value.messages

    def test_register_requires_positive_price(self):
        with pytest.raises(ValidationError) as exc_info:
            _register_product(price=Decimal("0"))
        assert "price" in exc_info.value.messages

    def test_register_rejects_negative_stock(self):
        with pytest.raises(ValidationError) as exc_info:
            _register_product(initial_stock=-5)
        assert "initial_stock" in exc_info.value.messages


class TestSetStockLevel:
    def test_increase_logs_stock_in(self):
        product = _register_product(initial_stock=50)
        updated = set_stock_level(SetStockLevel(product_id=product.id, quantity=80, notes="Delivery"))

        assert updated.stock == 80
        entry = stock_history(product.id).entries[-1]
        assert entry.change_type == ChangeType.STOCK_IN.value
        assert entry.quantity_change == 30
        assert (entry.previous_stock, entry.new_stock) == (50, 80)

    def test_decrease_logs_stock_out(self):
        product = _register_product(initial_stock=50)
        set_stock_level(SetStockLevel(product_id=product.id, quantity=45))

        entry = stock_history(product.id).entries[-1]
        assert entry.change_type == ChangeType.STOCK_OUT.value
        assert entry.quantity_change == -5

    def test_unchanged_level_is_not_logged(self):
        product = _register_product(initial_stock=50)
        set_stock_level(SetStockLevel(product_id=product.id, quantity=50))
        assert len(stock_history(product.id).entries) == 1

    def test_cannot_drop_below_reserved(self):
        product = _register_product(initial_stock=50)
        reserve_stock(ReserveStock(product_id=product.id, holder_id="cart-001", quantity=30))

        with pytest.raises(InsufficientStock):
            set_stock_level(SetStockLevel(product_id=product.id, quantity=20))
        assert available_stock(product.id).stock == 50

    def test_unknown_product(self):
        with pytest.raises(ProductNotFound):
            set_stock_level(SetStockLevel(product_id="missing", quantity=1))


class TestChangePrice:
    def test_change_price(self):
        product = _register_product(price=Decimal("19.99"))
        updated = change_price(ChangePrice(product_id=product.id, price=Decimal("24.99")))
        assert updated.price == Decimal("24.99")

    def test_change_price_does_not_touch_stock(self):
        product = _register_product(initial_stock=50)
        change_price(ChangePrice(product_id=product.id, price=Decimal("1.00")))
        assert len(stock_history(product.id).entries) == 1


class TestLowStockAlerts:
    def test_alert_when_available_drops_below_threshold(self):
        product = _register_product(initial_stock=15, low_stock_threshold=10)
        reserve_stock(ReserveStock(product_id=product.id, holder_id="cart-001", quantity=5))
        assert low_stock_alerts() == []

        reserve_stock(ReserveStock(product_id=product.id, holder_id="cart-001", quantity=1))

        alerts = low_stock_alerts()
        assert [alert.product_id for alert in alerts] == [product.id]
        assert alerts[0].available == 9
        assert alerts[0].is_critical is False

    def test_critical_when_nothing_available(self):
        product = _register_product(initial_stock=0, low_stock_threshold=5)
        alert = low_stock_alerts()[0]
        assert alert.product_id == product.id
        assert alert.is_critical is True

    def test_untracked_products_never_alert(self):
        _register_product(initial_stock=0, track_inventory=False)
        assert low_stock_alerts() == []

    def test_least_available_first(self):
        low = _register_product(name="Low", initial_stock=5)
        lower = _register_product(name="Lower", initial_stock=1)
        _register_product(name="Plenty", initial_stock=500)

        assert [alert.product_id for alert in low_stock_alerts()] == [lower.id, low.id]


class TestInventoryReport:
    def test_report_totals(self):
        first = _register_product(name="A", initial_stock=100)
        _register_product(name="B", initial_stock=0)
        _register_product(name="C", initial_stock=0, track_inventory=False)
        reserve_stock(ReserveStock(product_id=first.id, holder_id="cart-001", quantity=40))

        report = inventory_report()

        assert report.total_products == 3
        assert report.total_stock == 100
        assert report.total_reserved == 40
        assert report.total_available == 60
        assert report.out_of_stock_products == 1
        assert report.low_stock_products == 1
        assert report.alerts[0].product_name == "B"
