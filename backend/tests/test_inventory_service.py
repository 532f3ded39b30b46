from decimal import Decimal

import pytest

from stockledger.errors import NegativeStockError, NotFoundError, ValidationError
from stockledger.models import StockMovement
from stockledger.services import inventory_service, ledger_service


def _register(store, product, user, quantity, minimum=5, **extra):
    payload = {
        "store_id": store.id,
        "product_id": product.id,
        "quantity": quantity,
        "minimum_stock": minimum,
    }
    payload.update(extra)
    return inventory_service.create_initial_stock(payload=payload, user_id=user.id)


class TestInitialStock:

    def test_opening_quantity_is_a_movement(self, db_session, store_a, product, user):
        record = _register(store_a, product, user, 25, maximum_stock=100, location="Aisle 3")

        assert record.quantity == 25
        assert record.average_cost == Decimal("10.00")
        assert record.last_cost == Decimal("10.00")
        assert record.location == "Aisle 3"

        movement = db_session.query(StockMovement).one()
        assert movement.type == "adjustment"
        assert movement.quantity_before == 0
        assert movement.quantity_after == 25
        assert movement.notes == "Initial stock - product added to inventory"

    def test_zero_opening_quantity_writes_no_movement(self, db_session, store_a, product, user):
        record = _register(store_a, product, user, 0)

        assert record.quantity == 0
        assert db_session.query(StockMovement).count() == 0

    def test_duplicate_registration(self, db_session, store_a, product, user):
        _register(store_a, product, user, 1)
        with pytest.raises(ValidationError):
            _register(store_a, product, user, 1)

    def test_maximum_below_minimum(self, db_session, store_a, product, user):
        with pytest.raises(ValidationError):
            _register(store_a, product, user, 1, minimum=10, maximum_stock=5)


class TestSettings:

    def test_settings_never_touch_quantity(self, db_session, store_a, product, user):
        record = _register(store_a, product, user, 8)

        record = inventory_service.update_settings(
            record_id=record.id, payload={"minimum_stock": 12, "location": "Back room"}
        )

        assert record.minimum_stock == 12
        assert record.location == "Back room"
        assert record.quantity == 8

    def test_quantity_is_not_writable(self, db_session, store_a, product, user):
        record = _register(store_a, product, user, 8)
        with pytest.raises(ValidationError):
            inventory_service.update_settings(record_id=record.id, payload={"quantity": 100})


class TestQuickAdjust:

    @pytest.mark.parametrize("mode,quantity,expected", [
        ("increase", 5, 15),
        ("decrease", 4, 6),
        ("set", 3, 3),
    ])
    def test_modes(self, db_session, store_a, product, user, mode, quantity, expected):
        record = _register(store_a, product, user, 10)

        record = inventory_service.quick_adjust(
            record_id=record.id, mode=mode, quantity=quantity, reason="Shelf count", user_id=user.id
        )

        assert record.quantity == expected
        assert ledger_service.verify_chain(store_a.id, product.id)["consistent"] is True

    def test_decrease_below_zero(self, db_session, store_a, product, user):
        record = _register(store_a, product, user, 2)
        with pytest.raises(NegativeStockError):
            inventory_service.quick_adjust(
                record_id=record.id, mode="decrease", quantity=3, reason="Breakage", user_id=user.id
            )

    def test_set_to_same_quantity(self, db_session, store_a, product, user):
        record = _register(store_a, product, user, 4)
        with pytest.raises(ValidationError):
            inventory_service.quick_adjust(
                record_id=record.id, mode="set", quantity=4, reason="Recount", user_id=user.id
            )

    def test_reason_required(self, db_session, store_a, product, user):
        record = _register(store_a, product, user, 4)
        with pytest.raises(ValidationError):
            inventory_service.quick_adjust(
                record_id=record.id, mode="increase", quantity=1, reason="  ", user_id=user.id
            )


class TestSalesAndReturns:

    def test_sale_deducts_stock(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 10, "8.00")

        record = inventory_service.record_sale(
            store_id=store_a.id, product_id=product.id, quantity=3, user_id=user.id, sale_id=1001
        )

        assert record.quantity == 7
        movement = (
            db_session.query(StockMovement).filter_by(type="sale").one()
        )
        assert movement.reference_type == "sale"
        assert movement.reference_id == 1001
        assert movement.unit_cost == Decimal("8.00")

    def test_sale_without_record(self, db_session, store_a, product, user):
        with pytest.raises(NotFoundError):
            inventory_service.record_sale(
                store_id=store_a.id, product_id=product.id, quantity=1, user_id=user.id, sale_id=1
            )

    def test_oversell_is_rejected(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 2)
        with pytest.raises(NegativeStockError):
            inventory_service.record_sale(
                store_id=store_a.id, product_id=product.id, quantity=3, user_id=user.id, sale_id=2
            )

    def test_good_return_restocks(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 5)

        record = inventory_service.record_return(
            store_id=store_a.id, product_id=product.id, quantity=2, user_id=user.id, return_id=77
        )

        assert record.quantity == 7
        assert db_session.query(StockMovement).filter_by(type="return").one().reference_type == "sales_return"

    def test_damaged_return_is_not_restocked(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 5)

        result = inventory_service.record_return(
            store_id=store_a.id, product_id=product.id, quantity=2, user_id=user.id,
            return_id=78, condition="damaged",
        )

        assert result is None
        assert ledger_service.get_record(store_a.id, product.id).quantity == 5


class TestInventoryQueries:

    def test_stock_status_filter(self, db_session, store_a, product, product_b, user):
        _register(store_a, product, user, 0)
        _register(store_a, product_b, user, 50, minimum=10)

        out = inventory_service.list_inventory(stock_status="out_of_stock")
        assert [item["product_id"] for item in out["items"]] == [product.id]
        assert inventory_service.list_inventory(stock_status="in_stock")["pagination"]["total"] == 1

    def test_low_stock_list(self, db_session, store_a, store_b, product, user):
        _register(store_a, product, user, 3)
        _register(store_b, product, user, 9)

        low = inventory_service.list_low_stock()
        assert [record.store_id for record in low] == [store_a.id]

    def test_detail_includes_recent_movements(self, db_session, store_a, product, user):
        record = _register(store_a, product, user, 6)

        detail = inventory_service.get_record_detail(record.id)

        assert detail["quantity"] == 6
        assert len(detail["recent_movements"]) == 1
        assert "costing" in detail
