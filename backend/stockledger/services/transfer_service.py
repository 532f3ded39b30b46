# backend/stockledger/services/transfer_service.py
"""
Inter-store transfer workflow.

WHY: Moving stock between stores must leave a TRANSFER_OUT movement at the
source and a TRANSFER_IN movement at the destination, with accountability
for who approved, shipped and received.

LIFECYCLE:
1. draft: created, lines editable
2. pending: submitted; may be approved (approved_by/approved_at), status stays pending
3. in_transit: shipped (TRANSFER_OUT movements at the source store)
4. completed: received (TRANSFER_IN movements at the destination store)
5. cancelled: from draft/pending only, so no stock was ever moved

quantity_received may be lower than quantity_shipped (loss in transit);
the difference is reported as the item's shortage.
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import or_

from ..errors import IllegalStateTransitionError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import MovementType, Origin, StockTransfer, StockTransferItem
from ..models.transfers import (
    TRANSFER_STATUS_CANCELLED,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_DRAFT,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_PENDING,
)
from ..money import to_money
from ..time_utils import utcnow
from ..validation import coerce_date, coerce_int, coerce_money, require_items
from . import ledger_service
from .catalog_service import require_product, require_store
from .concurrency import lock_for_update, run_in_transaction
from .document_service import DOCUMENT_STOCK_TRANSFER, next_document_number
from .pagination import paginate

TRANSFER_STATUSES = (
    TRANSFER_STATUS_DRAFT,
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_CANCELLED,
)


def require_transfer(transfer_id: int, *, lock: bool = False) -> StockTransfer:
    query = db.session.query(StockTransfer).filter_by(id=transfer_id)
    if lock:
        query = lock_for_update(query)
    transfer = query.first()
    if transfer is None:
        raise NotFoundError(f"Stock transfer {transfer_id} not found")
    return transfer


def _guard(transfer: StockTransfer, allowed: tuple[str, ...], action: str) -> None:
    if transfer.status not in allowed:
        current_app.logger.warning(
            "Rejected %s of transfer %s in status %s", action, transfer.transfer_number, transfer.status
        )
        raise IllegalStateTransitionError(
            f"Stock transfer {transfer.transfer_number} cannot be {action} in status {transfer.status}",
            current_status=transfer.status,
        )


def _parse_header(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for key in ("from_store_id", "to_store_id", "transfer_date"):
        if payload.get(key) in (None, ""):
            raise ValidationError(f"{key} is required")

    header = {
        "from_store_id": coerce_int("from_store_id", payload["from_store_id"]),
        "to_store_id": coerce_int("to_store_id", payload["to_store_id"]),
        "transfer_date": coerce_date("transfer_date", payload["transfer_date"]),
        "notes": payload.get("notes") or None,
    }
    if header["from_store_id"] == header["to_store_id"]:
        raise ValidationError("Destination store must differ from the source store")
    if header["notes"] and len(header["notes"]) > 1000:
        raise ValidationError("notes exceeds max length 1000")
    return header


def _parse_items(payload: dict) -> list[dict]:
    items = []
    seen = set()
    for raw in require_items(payload):
        if raw.get("product_id") is None:
            raise ValidationError("items.product_id is required")
        if raw.get("quantity_requested") is None:
            raise ValidationError("items.quantity_requested is required")

        product_id = coerce_int("product_id", raw["product_id"])
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears more than once")
        seen.add(product_id)

        quantity = coerce_int("quantity_requested", raw["quantity_requested"])
        if quantity < 1:
            raise ValidationError("items.quantity_requested must be at least 1")

        unit_cost = raw.get("unit_cost")
        items.append({
            "product_id": product_id,
            "quantity_requested": quantity,
            "unit_cost": coerce_money("unit_cost", unit_cost) if unit_cost not in (None, "") else None,
            "notes": raw.get("notes") or None,
        })
    return items


def _build_items(transfer: StockTransfer, header: dict, items: list[dict]) -> None:
    """
    Replace the lines, checking availability at the source.

    The check is advisory: shipping re-validates against a locked read.
    """
    transfer.items.clear()
    db.session.flush()

    total = Decimal("0.00")
    for item in items:
        product = require_product(item["product_id"])
        record = ledger_service.get_record(header["from_store_id"], product.id)
        available = record.quantity if record else 0
        if available < item["quantity_requested"]:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}: available {available}, "
                f"requested {item['quantity_requested']}",
                product_id=product.id,
                available=available,
            )

        unit_cost = item["unit_cost"]
        if unit_cost is None:
            unit_cost = to_money(record.average_cost)

        total_cost = to_money(unit_cost * item["quantity_requested"])
        transfer.items.append(
            StockTransferItem(
                product_id=product.id,
                quantity_requested=item["quantity_requested"],
                quantity_shipped=0,
                quantity_received=0,
                unit_cost=unit_cost,
                total_cost=total_cost,
                notes=item["notes"],
            )
        )
        total += total_cost

    transfer.total_value = to_money(total)


def list_transfers(
    *,
    from_store_id: int | None = None,
    to_store_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(StockTransfer)
    if from_store_id is not None:
        query = query.filter(StockTransfer.from_store_id == from_store_id)
    if to_store_id is not None:
        query = query.filter(StockTransfer.to_store_id == to_store_id)
    if status:
        if status not in TRANSFER_STATUSES:
            raise ValidationError(f"Unknown transfer status: {status}")
        query = query.filter(StockTransfer.status == status)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(StockTransfer.transfer_number.ilike(term), StockTransfer.notes.ilike(term)))
    query = query.order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda t: t.to_dict(include_items=False))


def create_transfer(*, payload: dict, user_id: int) -> StockTransfer:
    header = _parse_header(payload)
    items = _parse_items(payload)

    def _op():
        require_store(header["from_store_id"])
        require_store(header["to_store_id"])

        transfer = StockTransfer(
            transfer_number=next_document_number(
                document_type=DOCUMENT_STOCK_TRANSFER, prefix="TRF", pad=4
            ),
            from_store_id=header["from_store_id"],
            to_store_id=header["to_store_id"],
            transfer_date=header["transfer_date"],
            notes=header["notes"],
            status=TRANSFER_STATUS_DRAFT,
            created_by=user_id,
        )
        db.session.add(transfer)
        _build_items(transfer, header, items)
        db.session.flush()

        current_app.logger.info("Transfer %s created with %s items", transfer.transfer_number, len(items))
        return transfer

    return run_in_transaction(_op)


def update_transfer(*, transfer_id: int, payload: dict) -> StockTransfer:
    header = _parse_header(payload)
    items = _parse_items(payload)

    def _op():
        transfer = require_transfer(transfer_id, lock=True)
        _guard(transfer, (TRANSFER_STATUS_DRAFT,), "edited")
        require_store(header["from_store_id"])
        require_store(header["to_store_id"])

        transfer.from_store_id = header["from_store_id"]
        transfer.to_store_id = header["to_store_id"]
        transfer.transfer_date = header["transfer_date"]
        transfer.notes = header["notes"]
        _build_items(transfer, header, items)
        db.session.flush()
        return transfer

    return run_in_transaction(_op)


def delete_transfer(*, transfer_id: int) -> None:
    def _op():
        transfer = require_transfer(transfer_id, lock=True)
        _guard(transfer, (TRANSFER_STATUS_DRAFT,), "deleted")
        db.session.delete(transfer)
        db.session.flush()

    run_in_transaction(_op)


def submit_transfer(*, transfer_id: int) -> StockTransfer:
    def _op():
        transfer = require_transfer(transfer_id, lock=True)
        _guard(transfer, (TRANSFER_STATUS_DRAFT,), "submitted")
        transfer.status = TRANSFER_STATUS_PENDING
        db.session.flush()
        return transfer

    return run_in_transaction(_op)


def approve_transfer(*, transfer_id: int, user_id: int) -> StockTransfer:
    """Record the approval; the transfer stays pending until shipped."""
    def _op():
        transfer = require_transfer(transfer_id, lock=True)
        _guard(transfer, (TRANSFER_STATUS_PENDING,), "approved")
        if transfer.approved_by is not None:
            raise IllegalStateTransitionError(
                f"Stock transfer {transfer.transfer_number} is already approved",
                current_status=transfer.status,
            )
        transfer.approved_by = user_id
        transfer.approved_at = utcnow()
        db.session.flush()
        current_app.logger.info("Transfer %s approved by user %s", transfer.transfer_number, user_id)
        return transfer

    return run_in_transaction(_op)


def _quantities_by_item(payload: dict | None, key: str) -> dict[int, int]:
    """Optional per-item overrides: {"items": [{"item_id": .., key: ..}]}."""
    if not payload or payload.get("items") in (None, []):
        return {}
    overrides = {}
    for raw in require_items(payload):
        item_id = raw.get("item_id", raw.get("id"))
        if item_id is None or raw.get(key) is None:
            raise ValidationError(f"items.item_id and items.{key} are required")
        value = coerce_int(key, raw[key])
        if value < 0:
            raise ValidationError(f"items.{key} must be >= 0")
        overrides[coerce_int("item_id", item_id)] = value
    return overrides


def ship_transfer(*, transfer_id: int, user_id: int, payload: dict | None = None) -> StockTransfer:
    """
    Deduct shipped quantities from the source store.

    quantity_shipped defaults to quantity_requested and may not exceed it.
    Any line the source cannot cover fails the whole shipment.
    """
    overrides = _quantities_by_item(payload, "quantity_shipped")

    def _op():
        transfer = require_transfer(transfer_id, lock=True)
        _guard(transfer, (TRANSFER_STATUS_PENDING,), "shipped")

        items_by_id = {item.id: item for item in transfer.items}
        unknown = set(overrides) - set(items_by_id)
        if unknown:
            raise ValidationError(f"Items {sorted(unknown)} do not belong to transfer {transfer.transfer_number}")

        now = utcnow()
        shipped_total = 0
        for item in transfer.items:
            shipped = overrides.get(item.id, item.quantity_requested)
            if shipped > item.quantity_requested:
                raise ValidationError(
                    f"quantity_shipped for product {item.product_id} exceeds quantity_requested"
                )
            item.quantity_shipped = shipped
            if shipped == 0:
                continue

            record = ledger_service.get_record(transfer.from_store_id, item.product_id, lock=True)
            available = record.quantity if record else 0
            if available < shipped:
                raise InsufficientStockError(
                    f"Insufficient stock for {item.product.name}: available {available}, shipping {shipped}",
                    product_id=item.product_id,
                    available=available,
                )

            ledger_service.append_movement(
                store_id=transfer.from_store_id,
                product_id=item.product_id,
                user_id=user_id,
                movement_type=MovementType.TRANSFER_OUT,
                quantity_change=-shipped,
                unit_cost=item.unit_cost,
                origin=Origin.stock_transfer(transfer.id),
                notes=f"Transfer {transfer.transfer_number} to {transfer.to_store.name}",
                movement_date=now,
                record=record,
            )
            shipped_total += shipped

        if shipped_total == 0:
            raise ValidationError("Nothing to ship")

        transfer.status = TRANSFER_STATUS_IN_TRANSIT
        transfer.shipped_by = user_id
        transfer.shipped_at = now
        db.session.flush()

        current_app.logger.info("Transfer %s shipped %s units", transfer.transfer_number, shipped_total)
        return transfer

    return run_in_transaction(_op)


def receive_transfer(*, transfer_id: int, user_id: int, payload: dict | None = None) -> StockTransfer:
    """
    Credit received quantities to the destination store and complete the transfer.

    quantity_received defaults to quantity_shipped and may not exceed it.
    Destination records are created on first receipt.
    """
    overrides = _quantities_by_item(payload, "quantity_received")

    def _op():
        transfer = require_transfer(transfer_id, lock=True)
        _guard(transfer, (TRANSFER_STATUS_IN_TRANSIT,), "received")

        items_by_id = {item.id: item for item in transfer.items}
        unknown = set(overrides) - set(items_by_id)
        if unknown:
            raise ValidationError(f"Items {sorted(unknown)} do not belong to transfer {transfer.transfer_number}")

        now = utcnow()
        received_total = 0
        for item in transfer.items:
            received = overrides.get(item.id, item.quantity_shipped)
            if received > item.quantity_shipped:
                raise ValidationError(
                    f"quantity_received for product {item.product_id} exceeds quantity_shipped"
                )
            item.quantity_received = received
            if received == 0:
                continue

            record, _ = ledger_service.get_or_create_record(
                transfer.to_store_id,
                item.product_id,
                defaults={
                    "minimum_stock": item.product.minimum_stock or 0,
                    "average_cost": to_money(item.unit_cost),
                    "last_cost": to_money(item.unit_cost),
                },
            )
            ledger_service.append_movement(
                store_id=transfer.to_store_id,
                product_id=item.product_id,
                user_id=user_id,
                movement_type=MovementType.TRANSFER_IN,
                quantity_change=received,
                unit_cost=item.unit_cost,
                origin=Origin.stock_transfer(transfer.id),
                notes=f"Transfer {transfer.transfer_number} from {transfer.from_store.name}",
                movement_date=now,
                record=record,
            )
            received_total += received

        transfer.status = TRANSFER_STATUS_COMPLETED
        transfer.received_by = user_id
        transfer.received_at = now
        db.session.flush()

        shortage = sum(item.quantity_shortage for item in transfer.items)
        if shortage:
            current_app.logger.warning(
                "Transfer %s received with shortage of %s units", transfer.transfer_number, shortage
            )
        current_app.logger.info("Transfer %s received %s units", transfer.transfer_number, received_total)
        return transfer

    return run_in_transaction(_op)


def cancel_transfer(*, transfer_id: int, reason: str | None = None) -> StockTransfer:
    def _op():
        transfer = require_transfer(transfer_id, lock=True)
        _guard(transfer, (TRANSFER_STATUS_DRAFT, TRANSFER_STATUS_PENDING), "cancelled")
        note = f"Cancelled: {reason.strip()}" if reason and reason.strip() else "Cancelled"
        transfer.notes = f"{transfer.notes}\n{note}" if transfer.notes else note
        transfer.status = TRANSFER_STATUS_CANCELLED
        db.session.flush()
        current_app.logger.info("Transfer %s cancelled", transfer.transfer_number)
        return transfer

    return run_in_transaction(_op)
