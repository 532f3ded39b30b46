from decimal import Decimal

import pytest
from sqlalchemy import update

from stockledger.errors import NotFoundError, ValidationError
from stockledger.models import InventoryRecord, MovementType, StockMovement
from stockledger.services import costing_service, inventory_service, ledger_service, transfer_service


class TestWeightedAverage:

    def test_first_purchase_sets_quantity_and_average(self, db_session, store_a, product, user):
        record = costing_service.receive_purchase(
            store_id=store_a.id, product_id=product.id, quantity=100, unit_cost="10", user_id=user.id
        )

        assert record.quantity == 100
        assert record.average_cost == Decimal("10.00")
        assert record.last_cost == Decimal("10.00")

        movements = db_session.query(StockMovement).all()
        assert len(movements) == 1
        assert movements[0].type == MovementType.PURCHASE.value
        assert (movements[0].quantity_before, movements[0].quantity_change, movements[0].quantity_after) == (0, 100, 100)

    def test_second_purchase_weights_by_quantity(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 100, "10")
        record = stock(store_a, product, 50, "20")

        assert record.quantity == 150
        # (100 x 10 + 50 x 20) / 150 = 13.333...
        assert record.average_cost == Decimal("13.33")
        assert record.last_cost == Decimal("20.00")

    def test_recompute_is_idempotent(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 100, "10")
        stock(store_a, product, 50, "20")

        first = costing_service.refresh_average_cost(store_a.id, product.id)
        second = costing_service.refresh_average_cost(store_a.id, product.id)

        assert first == second == Decimal("13.33")

    def test_stored_average_matches_computed(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 3, "10")
        stock(store_a, product, 7, "11")
        db_session.execute(
            update(InventoryRecord)
            .where(InventoryRecord.store_id == store_a.id)
            .values(average_cost=Decimal("99.99"))
        )
        db_session.commit()

        stored = costing_service.refresh_average_cost(store_a.id, product.id)

        assert stored == costing_service.compute_average_cost(store_a.id, product.id) == Decimal("10.70")
        db_session.expire_all()
        assert ledger_service.get_record(store_a.id, product.id).average_cost == Decimal("10.70")

    def test_average_rounds_half_up(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 1, "0.01")
        record = stock(store_a, product, 1, "0.02")

        # 0.015 rounds half-up
        assert record.average_cost == Decimal("0.02")

    def test_no_purchases_falls_back_to_purchase_price(self, db_session, store_a, product):
        assert costing_service.compute_average_cost(store_a.id, product.id) == Decimal("10.00")

    def test_sales_do_not_move_average(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 100, "10")
        stock(store_a, product, 50, "20")
        record = inventory_service.record_sale(
            store_id=store_a.id, product_id=product.id, quantity=30, user_id=user.id, sale_id=1
        )

        assert record.quantity == 120
        assert costing_service.refresh_average_cost(store_a.id, product.id) == Decimal("13.33")

    def test_transfers_do_not_move_destination_average(self, db_session, store_a, store_b, product, user, stock):
        stock(store_a, product, 20, "10")
        stock(store_b, product, 10, "30")

        transfer = transfer_service.create_transfer(
            payload={
                "from_store_id": store_a.id,
                "to_store_id": store_b.id,
                "transfer_date": "2024-05-01",
                "items": [{"product_id": product.id, "quantity_requested": 5}],
            },
            user_id=user.id,
        )
        transfer_service.submit_transfer(transfer_id=transfer.id)
        transfer_service.ship_transfer(transfer_id=transfer.id, user_id=user.id)
        transfer_service.receive_transfer(transfer_id=transfer.id, user_id=user.id)

        record = ledger_service.get_record(store_b.id, product.id)
        assert record.quantity == 15
        assert record.average_cost == Decimal("30.00")


class TestReceivePurchaseValidation:

    def test_quantity_must_be_positive(self, db_session, store_a, product, user):
        with pytest.raises(ValidationError):
            costing_service.receive_purchase(
                store_id=store_a.id, product_id=product.id, quantity=0, unit_cost="10", user_id=user.id
            )

    def test_negative_cost_is_rejected(self, db_session, store_a, product, user):
        with pytest.raises(ValidationError):
            costing_service.receive_purchase(
                store_id=store_a.id, product_id=product.id, quantity=1, unit_cost="-1", user_id=user.id
            )
        assert db_session.query(StockMovement).count() == 0

    def test_unknown_product(self, db_session, store_a, user):
        with pytest.raises(NotFoundError):
            costing_service.receive_purchase(
                store_id=store_a.id, product_id=9999, quantity=1, unit_cost="1", user_id=user.id
            )

    def test_refresh_without_record(self, db_session, store_a, product):
        with pytest.raises(NotFoundError):
            costing_service.refresh_average_cost(store_a.id, product.id)


class TestBulkRecompute:

    def test_per_product_across_stores(self, db_session, store_a, store_b, product, user, stock):
        stock(store_a, product, 10, "10")
        stock(store_b, product, 10, "12")

        results = costing_service.recompute_average_cost_all_stores(product.id)

        assert [r["store_id"] for r in results] == [store_a.id, store_b.id]
        assert [r["new_average_cost"] for r in results] == ["10.00", "12.00"]
        assert not any(r["changed"] for r in results)

    def test_per_store_reports_changes(self, db_session, store_a, product, product_b, user, stock):
        stock(store_a, product, 10, "10")
        stock(store_a, product_b, 10, "4")
        db_session.execute(
            update(InventoryRecord)
            .where(InventoryRecord.product_id == product.id)
            .values(average_cost=Decimal("99.00"))
        )
        db_session.commit()

        results = costing_service.recompute_average_cost_for_store(store_a.id)

        changed = [r for r in results if r["changed"]]
        assert len(changed) == 1
        assert changed[0]["old_average_cost"] == "99.00"
        assert changed[0]["new_average_cost"] == "10.00"

    def test_all_records(self, db_session, store_a, store_b, product, product_b, user, stock):
        stock(store_a, product, 1, "10")
        stock(store_b, product_b, 1, "4")

        assert len(costing_service.recompute_all_average_costs()) == 2

    def test_purchase_summary(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 100, "10")
        stock(store_a, product, 50, "20")

        summary = costing_service.purchase_summary(store_a.id, product.id)

        assert summary["purchase_movements"] == 2
        assert summary["purchased_quantity"] == 150
        assert summary["average_cost"] == "13.33"
