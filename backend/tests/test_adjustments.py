from decimal import Decimal

import pytest

from stockledger.errors import (
    ConcurrentModificationError,
    IllegalStateTransitionError,
    NegativeStockError,
    ValidationError,
)
from stockledger.models import StockAdjustment, StockAdjustmentItem, StockMovement
from stockledger.services import adjustment_service, inventory_service, ledger_service


def _payload(store, kind, *lines, reason="stock_opname", **extra):
    payload = {
        "store_id": store.id,
        "type": kind,
        "reason": reason,
        "adjustment_date": "2024-07-01",
        "items": [{"product_id": product.id, "adjusted_quantity": qty} for product, qty in lines],
    }
    payload.update(extra)
    return payload


class TestCreateAdjustment:

    def test_decrease_beyond_stock_is_rejected(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 10)

        with pytest.raises(NegativeStockError) as exc:
            adjustment_service.create_adjustment(
                payload=_payload(store_a, "decrease", (product, 30)), user_id=user.id
            )

        assert exc.value.resulting_quantity == -20
        assert db_session.query(StockAdjustment).count() == 0
        assert db_session.query(StockAdjustmentItem).count() == 0

    def test_duplicate_product_lines(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 10)

        # Two lines of 3 would each pass against the 10-unit snapshot
        with pytest.raises(ValidationError):
            adjustment_service.create_adjustment(
                payload=_payload(store_a, "decrease", (product, 3), (product, 3)), user_id=user.id
            )

        assert db_session.query(StockAdjustment).count() == 0
        assert ledger_service.get_record(store_a.id, product.id).quantity == 10

    def test_sign_follows_document_type(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 10)

        decrease = adjustment_service.create_adjustment(
            payload=_payload(store_a, "decrease", (product, 4)), user_id=user.id
        )
        increase = adjustment_service.create_adjustment(
            payload=_payload(store_a, "increase", (product, -4)), user_id=user.id
        )

        assert decrease.items[0].adjusted_quantity == -4
        assert decrease.items[0].new_quantity == 6
        assert increase.items[0].adjusted_quantity == 4
        assert increase.items[0].new_quantity == 14

    def test_snapshot_uses_average_cost(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 10, "12.00")

        adjustment = adjustment_service.create_adjustment(
            payload=_payload(store_a, "decrease", (product, 2)), user_id=user.id
        )

        assert adjustment.items[0].unit_cost == Decimal("12.00")
        assert adjustment.total_value_impact == Decimal("-24.00")
        assert adjustment.adjustment_number.startswith("ADJ")

    def test_unknown_reason(self, db_session, store_a, product, user):
        with pytest.raises(ValidationError):
            adjustment_service.create_adjustment(
                payload=_payload(store_a, "increase", (product, 1), reason="theft"), user_id=user.id
            )

    def test_zero_quantity_line(self, db_session, store_a, product, user):
        with pytest.raises(ValidationError):
            adjustment_service.create_adjustment(
                payload=_payload(store_a, "increase", (product, 0)), user_id=user.id
            )


class TestDefaultUnitCost:
    """Lines on products without cost history fall back to a catalog price."""

    def test_falls_back_to_selling_price(self, db_session, store_a, product, user):
        adjustment = adjustment_service.create_adjustment(
            payload=_payload(store_a, "increase", (product, 3), reason="found_goods"), user_id=user.id
        )
        assert adjustment.items[0].unit_cost == Decimal("15.00")

    def test_purchase_price_policy(self, app, db_session, store_a, product, user):
        app.config["ADJUSTMENT_COST_FALLBACK"] = "purchase_price"
        try:
            adjustment = adjustment_service.create_adjustment(
                payload=_payload(store_a, "increase", (product, 3), reason="found_goods"), user_id=user.id
            )
        finally:
            app.config["ADJUSTMENT_COST_FALLBACK"] = "selling_price"

        assert adjustment.items[0].unit_cost == Decimal("10.00")


class TestApproveAdjustment:

    def test_approval_applies_movements(self, db_session, store_a, product, product_b, user, stock):
        stock(store_a, product, 10)
        stock(store_a, product_b, 8)
        adjustment = adjustment_service.create_adjustment(
            payload=_payload(
                store_a, "decrease", (product, 3), (product_b, 8),
                reason="damaged_goods", notes="Water damage",
            ),
            user_id=user.id,
        )

        approved = adjustment_service.approve_adjustment(adjustment_id=adjustment.id, user_id=user.id)

        assert approved.status == "approved"
        assert approved.approved_by == user.id
        assert ledger_service.get_record(store_a.id, product.id).quantity == 7
        assert ledger_service.get_record(store_a.id, product_b.id).quantity == 0

        movements = (
            db_session.query(StockMovement)
            .filter_by(reference_type="stock_adjustment", reference_id=adjustment.id)
            .order_by(StockMovement.id)
            .all()
        )
        assert len(movements) == 2
        assert all(m.type == "adjustment" for m in movements)
        assert movements[0].notes == "Damaged Goods: Water damage"

    def test_increase_creates_missing_record(self, app, db_session, store_b, product, user):
        adjustment = adjustment_service.create_adjustment(
            payload=_payload(store_b, "increase", (product, 6), reason="found_goods"), user_id=user.id
        )

        adjustment_service.approve_adjustment(adjustment_id=adjustment.id, user_id=user.id)

        record = ledger_service.get_record(store_b.id, product.id)
        assert record.quantity == 6
        assert record.minimum_stock == 0
        assert record.maximum_stock == app.config["NEW_RECORD_MAXIMUM_STOCK"]
        assert record.average_cost == Decimal("15.00")

    def test_stock_changed_since_draft_fails_whole_approval(self, db_session, store_a, product, product_b, user, stock):
        stock(store_a, product, 10)
        stock(store_a, product_b, 10)
        adjustment = adjustment_service.create_adjustment(
            payload=_payload(store_a, "decrease", (product, 2), (product_b, 5)), user_id=user.id
        )
        inventory_service.record_sale(
            store_id=store_a.id, product_id=product_b.id, quantity=7, user_id=user.id, sale_id=501
        )

        with pytest.raises(ConcurrentModificationError):
            adjustment_service.approve_adjustment(adjustment_id=adjustment.id, user_id=user.id)

        assert ledger_service.get_record(store_a.id, product.id).quantity == 10
        assert ledger_service.get_record(store_a.id, product_b.id).quantity == 3
        assert db_session.get(StockAdjustment, adjustment.id).status == "draft"

    def test_approved_adjustment_is_frozen(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 10)
        adjustment = adjustment_service.create_adjustment(
            payload=_payload(store_a, "decrease", (product, 1)), user_id=user.id
        )
        adjustment_service.approve_adjustment(adjustment_id=adjustment.id, user_id=user.id)

        with pytest.raises(IllegalStateTransitionError):
            adjustment_service.approve_adjustment(adjustment_id=adjustment.id, user_id=user.id)
        with pytest.raises(IllegalStateTransitionError):
            adjustment_service.update_adjustment(
                adjustment_id=adjustment.id, payload=_payload(store_a, "decrease", (product, 2))
            )
        with pytest.raises(IllegalStateTransitionError):
            adjustment_service.delete_adjustment(adjustment_id=adjustment.id)

    def test_reject_leaves_stock_untouched(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 10)
        adjustment = adjustment_service.create_adjustment(
            payload=_payload(store_a, "decrease", (product, 4)), user_id=user.id
        )

        rejected = adjustment_service.reject_adjustment(adjustment_id=adjustment.id, user_id=user.id)

        assert rejected.status == "rejected"
        assert ledger_service.get_record(store_a.id, product.id).quantity == 10


class TestListAdjustments:

    def test_filters(self, db_session, store_a, product, user, stock):
        stock(store_a, product, 10)
        adjustment_service.create_adjustment(
            payload=_payload(store_a, "decrease", (product, 1), reason="expired_goods"), user_id=user.id
        )
        adjustment_service.create_adjustment(
            payload=_payload(store_a, "increase", (product, 1), reason="found_goods"), user_id=user.id
        )

        assert adjustment_service.list_adjustments(reason="expired_goods")["pagination"]["total"] == 1
        assert adjustment_service.list_adjustments(adjustment_type="increase")["pagination"]["total"] == 1
        assert adjustment_service.list_adjustments(status="draft")["pagination"]["total"] == 2

    def test_unknown_status(self, db_session):
        with pytest.raises(ValidationError):
            adjustment_service.list_adjustments(status="applied")
