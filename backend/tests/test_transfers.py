"""
Inter-store transfer tests: availability checks, status guards, and the
ship/receive movements on both sides.
"""

from decimal import Decimal

import pytest

from stockledger.errors import IllegalStateTransitionError, InsufficientStockError, ValidationError
from stockledger.models import StockMovement, StockTransfer
from stockledger.services import inventory_service, ledger_service, transfer_service
from stockledger.time_utils import today


def _payload(source, destination, *lines, **extra):
    payload = {
        "from_store_id": source.id,
        "to_store_id": destination.id,
        "transfer_date": "2024-08-01",
        "items": [{"product_id": product.id, "quantity_requested": qty} for product, qty in lines],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def pending_transfer(db_session, store_a, store_b, product, user, stock):
    """Store A holds 50 units at 10.00; a transfer of 20 to store B is pending."""
    stock(store_a, product, 50, "10.00")
    transfer = transfer_service.create_transfer(
        payload=_payload(store_a, store_b, (product, 20)), user_id=user.id
    )
    return transfer_service.submit_transfer(transfer_id=transfer.id)


class TestCreateTransfer:

    def test_creates_draft_with_source_average_cost(self, db_session, store_a, store_b, product, user, stock):
        stock(store_a, product, 30, "12.00")

        transfer = transfer_service.create_transfer(
            payload=_payload(store_a, store_b, (product, 5)), user_id=user.id
        )

        assert transfer.status == "draft"
        assert transfer.transfer_number == f"TRF{today().strftime('%Y%m%d')}0001"
        assert transfer.items[0].unit_cost == Decimal("12.00")
        assert transfer.total_value == Decimal("60.00")

    def test_explicit_unit_cost_is_kept(self, db_session, store_a, store_b, product, user, stock):
        stock(store_a, product, 30, "12.00")
        payload = _payload(store_a, store_b, (product, 5))
        payload["items"][0]["unit_cost"] = "11.50"

        transfer = transfer_service.create_transfer(payload=payload, user_id=user.id)

        assert transfer.items[0].unit_cost == Decimal("11.50")

    def test_insufficient_source_stock(self, db_session, store_a, store_b, product, user, stock):
        stock(store_a, product, 3)

        with pytest.raises(InsufficientStockError) as exc:
            transfer_service.create_transfer(payload=_payload(store_a, store_b, (product, 4)), user_id=user.id)

        assert exc.value.available == 3
        assert db_session.query(StockTransfer).count() == 0

    def test_same_store_is_rejected(self, db_session, store_a, product, user):
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(payload=_payload(store_a, store_a, (product, 1)), user_id=user.id)

    def test_duplicate_product_lines(self, db_session, store_a, store_b, product, user, stock):
        stock(store_a, product, 10)
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(
                payload=_payload(store_a, store_b, (product, 1), (product, 2)), user_id=user.id
            )


class TestShipAndReceive:

    def test_full_flow_with_shortage(self, db_session, pending_transfer, store_a, store_b, product, user):
        transfer = transfer_service.ship_transfer(transfer_id=pending_transfer.id, user_id=user.id)

        assert transfer.status == "in_transit"
        assert ledger_service.get_record(store_a.id, product.id).quantity == 30
        assert ledger_service.get_record(store_b.id, product.id) is None

        item = transfer.items[0]
        transfer = transfer_service.receive_transfer(
            transfer_id=transfer.id,
            user_id=user.id,
            payload={"items": [{"item_id": item.id, "quantity_received": 18}]},
        )

        assert transfer.status == "completed"
        assert transfer.items[0].quantity_shipped == 20
        assert transfer.items[0].quantity_received == 18
        destination = ledger_service.get_record(store_b.id, product.id)
        assert destination.quantity == 18
        assert destination.average_cost == Decimal("10.00")

    def test_movements_pair_out_and_in(self, db_session, pending_transfer, store_a, store_b, product, user):
        transfer_service.ship_transfer(transfer_id=pending_transfer.id, user_id=user.id)
        transfer_service.receive_transfer(transfer_id=pending_transfer.id, user_id=user.id)

        movements = (
            db_session.query(StockMovement)
            .filter_by(reference_type="stock_transfer", reference_id=pending_transfer.id)
            .order_by(StockMovement.id)
            .all()
        )
        assert [(m.type, m.store_id, m.quantity_change) for m in movements] == [
            ("transfer_out", store_a.id, -20),
            ("transfer_in", store_b.id, 20),
        ]

    def test_units_are_conserved(self, db_session, pending_transfer, store_a, store_b, product, user):
        transfer_service.ship_transfer(transfer_id=pending_transfer.id, user_id=user.id)
        transfer_service.receive_transfer(transfer_id=pending_transfer.id, user_id=user.id)

        total = (
            ledger_service.get_record(store_a.id, product.id).quantity
            + ledger_service.get_record(store_b.id, product.id).quantity
        )
        assert total == 50

    def test_ship_rechecks_source_stock(self, db_session, pending_transfer, store_a, product, user):
        inventory_service.record_sale(
            store_id=store_a.id, product_id=product.id, quantity=40, user_id=user.id, sale_id=9
        )

        with pytest.raises(InsufficientStockError):
            transfer_service.ship_transfer(transfer_id=pending_transfer.id, user_id=user.id)

        assert db_session.get(StockTransfer, pending_transfer.id).status == "pending"
        assert ledger_service.get_record(store_a.id, product.id).quantity == 10

    def test_partial_ship_override(self, db_session, pending_transfer, store_a, product, user):
        item = pending_transfer.items[0]

        transfer = transfer_service.ship_transfer(
            transfer_id=pending_transfer.id,
            user_id=user.id,
            payload={"items": [{"item_id": item.id, "quantity_shipped": 12}]},
        )

        assert transfer.items[0].quantity_shipped == 12
        assert ledger_service.get_record(store_a.id, product.id).quantity == 38

    def test_ship_more_than_requested(self, db_session, pending_transfer, user):
        item = pending_transfer.items[0]
        with pytest.raises(ValidationError):
            transfer_service.ship_transfer(
                transfer_id=pending_transfer.id,
                user_id=user.id,
                payload={"items": [{"item_id": item.id, "quantity_shipped": 21}]},
            )

    def test_receive_more_than_shipped(self, db_session, pending_transfer, user):
        transfer_service.ship_transfer(transfer_id=pending_transfer.id, user_id=user.id)
        item = pending_transfer.items[0]

        with pytest.raises(ValidationError):
            transfer_service.receive_transfer(
                transfer_id=pending_transfer.id,
                user_id=user.id,
                payload={"items": [{"item_id": item.id, "quantity_received": 25}]},
            )


class TestTransferStatusGuards:

    def test_cannot_ship_draft(self, db_session, store_a, store_b, product, user, stock):
        stock(store_a, product, 10)
        transfer = transfer_service.create_transfer(payload=_payload(store_a, store_b, (product, 1)), user_id=user.id)

        with pytest.raises(IllegalStateTransitionError):
            transfer_service.ship_transfer(transfer_id=transfer.id, user_id=user.id)

    def test_cannot_receive_before_shipping(self, db_session, pending_transfer, user):
        with pytest.raises(IllegalStateTransitionError):
            transfer_service.receive_transfer(transfer_id=pending_transfer.id, user_id=user.id)

    def test_double_approval(self, db_session, pending_transfer, user):
        transfer = transfer_service.approve_transfer(transfer_id=pending_transfer.id, user_id=user.id)
        assert transfer.status == "pending"
        assert transfer.approved_by == user.id

        with pytest.raises(IllegalStateTransitionError):
            transfer_service.approve_transfer(transfer_id=pending_transfer.id, user_id=user.id)

    def test_cancel_appends_reason(self, db_session, pending_transfer):
        transfer = transfer_service.cancel_transfer(transfer_id=pending_transfer.id, reason="Store closed")

        assert transfer.status == "cancelled"
        assert transfer.notes.endswith("Cancelled: Store closed")

    def test_cannot_cancel_in_transit(self, db_session, pending_transfer, user):
        transfer_service.ship_transfer(transfer_id=pending_transfer.id, user_id=user.id)
        with pytest.raises(IllegalStateTransitionError):
            transfer_service.cancel_transfer(transfer_id=pending_transfer.id)

    def test_edit_and_delete_only_while_draft(self, db_session, pending_transfer, store_a, store_b, product):
        transfer_id = pending_transfer.id
        with pytest.raises(IllegalStateTransitionError):
            transfer_service.update_transfer(
                transfer_id=transfer_id, payload=_payload(store_a, store_b, (product, 2))
            )
        with pytest.raises(IllegalStateTransitionError):
            transfer_service.delete_transfer(transfer_id=transfer_id)
