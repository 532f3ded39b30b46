# backend/stockledger/services/purchase_order_service.py
"""
Purchase order workflow.

LIFECYCLE:
1. draft: created, items editable
2. pending: submitted for approval, items still editable
3. approved / rejected: approval decision (rejected is terminal)
4. ordered: sent to the supplier
5. partial_received / received: goods arriving; each receive appends
   PURCHASE movements and recomputes the weighted-average cost
6. cancelled: before anything was received

Every command is one unit of work: the status change, item updates,
ledger rows, inventory quantities, costs and receive history commit
together or not at all.
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import or_

from ..errors import IllegalStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Origin, PurchaseOrder, PurchaseOrderItem, PurchaseOrderReceiveHistory, Supplier
from ..models.purchasing import (
    PO_STATUSES,
    PO_STATUS_APPROVED,
    PO_STATUS_CANCELLED,
    PO_STATUS_DRAFT,
    PO_STATUS_ORDERED,
    PO_STATUS_PARTIAL_RECEIVED,
    PO_STATUS_PENDING,
    PO_STATUS_RECEIVED,
    PO_STATUS_REJECTED,
)
from ..money import ZERO, to_money
from ..time_utils import today
from ..validation import coerce_date, coerce_int, coerce_money, require_items
from .catalog_service import require_product, require_store, require_supplier
from .concurrency import lock_for_update, run_in_transaction
from .costing_service import apply_purchase_receipt
from .document_service import DOCUMENT_PURCHASE_ORDER, next_document_number
from .pagination import paginate


def require_purchase_order(po_id: int, *, lock: bool = False) -> PurchaseOrder:
    query = db.session.query(PurchaseOrder).filter_by(id=po_id)
    if lock:
        query = lock_for_update(query)
    po = query.first()
    if po is None:
        raise NotFoundError(f"Purchase order {po_id} not found")
    return po


def _guard(po: PurchaseOrder, allowed: tuple[str, ...], action: str) -> None:
    if po.status not in allowed:
        current_app.logger.warning(
            "Rejected %s of purchase order %s in status %s", action, po.po_number, po.status
        )
        raise IllegalStateTransitionError(
            f"Purchase order {po.po_number} cannot be {action} in status {po.status}",
            current_status=po.status,
        )


def _parse_header(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    for key in ("store_id", "supplier_id", "order_date"):
        if payload.get(key) in (None, ""):
            raise ValidationError(f"{key} is required")

    header = {
        "store_id": coerce_int("store_id", payload["store_id"]),
        "supplier_id": coerce_int("supplier_id", payload["supplier_id"]),
        "order_date": coerce_date("order_date", payload["order_date"]),
        "expected_date": None,
        "notes": (payload.get("notes") or None),
    }
    if payload.get("expected_date") not in (None, ""):
        header["expected_date"] = coerce_date("expected_date", payload["expected_date"])
        if header["expected_date"] < header["order_date"]:
            raise ValidationError("expected_date must be on or after order_date")

    for key in ("tax_amount", "shipping_cost", "discount_amount"):
        raw = payload.get(key)
        header[key] = coerce_money(key, raw) if raw not in (None, "") else ZERO
    return header


def _parse_items(payload: dict) -> list[dict]:
    items = []
    for raw in require_items(payload):
        if raw.get("product_id") is None:
            raise ValidationError("items.product_id is required")
        quantity = raw.get("quantity_ordered", raw.get("quantity"))
        if quantity is None:
            raise ValidationError("items.quantity is required")
        if raw.get("unit_cost") is None:
            raise ValidationError("items.unit_cost is required")

        item = {
            "product_id": coerce_int("product_id", raw["product_id"]),
            "quantity_ordered": coerce_int("quantity", quantity),
            "unit_cost": coerce_money("unit_cost", raw["unit_cost"]),
            "notes": raw.get("notes") or None,
        }
        if item["quantity_ordered"] < 1:
            raise ValidationError("items.quantity must be at least 1")
        items.append(item)
    return items


def _apply_items(po: PurchaseOrder, header: dict, items: list[dict]) -> None:
    """Replace every line and recompute the amounts."""
    for item in items:
        require_product(item["product_id"])

    po.items.clear()
    db.session.flush()

    subtotal = Decimal("0.00")
    for item in items:
        total_cost = to_money(item["unit_cost"] * item["quantity_ordered"])
        po.items.append(
            PurchaseOrderItem(
                product_id=item["product_id"],
                quantity_ordered=item["quantity_ordered"],
                quantity_received=0,
                unit_cost=item["unit_cost"],
                total_cost=total_cost,
                notes=item["notes"],
            )
        )
        subtotal += total_cost

    total = subtotal + header["tax_amount"] + header["shipping_cost"] - header["discount_amount"]
    if total < 0:
        raise ValidationError("discount_amount exceeds the order value")

    po.subtotal = to_money(subtotal)
    po.tax_amount = header["tax_amount"]
    po.shipping_cost = header["shipping_cost"]
    po.discount_amount = header["discount_amount"]
    po.total_amount = to_money(total)


def list_purchase_orders(
    *,
    store_id: int | None = None,
    supplier_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(PurchaseOrder).join(Supplier, Supplier.id == PurchaseOrder.supplier_id)
    if store_id is not None:
        query = query.filter(PurchaseOrder.store_id == store_id)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    if status:
        if status not in PO_STATUSES:
            raise ValidationError(f"Unknown purchase order status: {status}")
        query = query.filter(PurchaseOrder.status == status)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(PurchaseOrder.po_number.ilike(term), Supplier.name.ilike(term)))

    query = query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda po: po.to_dict(include_items=False))


def create_purchase_order(*, payload: dict, user_id: int) -> PurchaseOrder:
    header = _parse_header(payload)
    items = _parse_items(payload)

    def _op():
        require_store(header["store_id"])
        require_supplier(header["supplier_id"])

        po = PurchaseOrder(
            po_number=next_document_number(document_type=DOCUMENT_PURCHASE_ORDER, prefix="PO", pad=3),
            store_id=header["store_id"],
            supplier_id=header["supplier_id"],
            created_by=user_id,
            status=PO_STATUS_DRAFT,
            order_date=header["order_date"],
            expected_date=header["expected_date"],
            notes=header["notes"],
        )
        db.session.add(po)
        _apply_items(po, header, items)
        db.session.flush()

        current_app.logger.info("Purchase order %s created with %s items", po.po_number, len(items))
        return po

    return run_in_transaction(_op)


def update_purchase_order(*, po_id: int, payload: dict) -> PurchaseOrder:
    """Rewrite header and items while the order is still draft/pending."""
    header = _parse_header(payload)
    items = _parse_items(payload)

    def _op():
        po = require_purchase_order(po_id, lock=True)
        _guard(po, (PO_STATUS_DRAFT, PO_STATUS_PENDING), "edited")
        require_store(header["store_id"])
        require_supplier(header["supplier_id"])

        po.store_id = header["store_id"]
        po.supplier_id = header["supplier_id"]
        po.order_date = header["order_date"]
        po.expected_date = header["expected_date"]
        po.notes = header["notes"]
        _apply_items(po, header, items)
        db.session.flush()
        return po

    return run_in_transaction(_op)


def delete_purchase_order(*, po_id: int) -> None:
    def _op():
        po = require_purchase_order(po_id, lock=True)
        _guard(po, (PO_STATUS_DRAFT, PO_STATUS_CANCELLED), "deleted")
        db.session.delete(po)
        db.session.flush()

    run_in_transaction(_op)


def _transition(po_id: int, allowed: tuple[str, ...], target: str, action: str) -> PurchaseOrder:
    def _op():
        po = require_purchase_order(po_id, lock=True)
        _guard(po, allowed, action)
        po.status = target
        db.session.flush()
        current_app.logger.info("Purchase order %s %s", po.po_number, action)
        return po

    return run_in_transaction(_op)


def submit_purchase_order(*, po_id: int) -> PurchaseOrder:
    return _transition(po_id, (PO_STATUS_DRAFT,), PO_STATUS_PENDING, "submitted")


def approve_purchase_order(*, po_id: int) -> PurchaseOrder:
    return _transition(po_id, (PO_STATUS_PENDING,), PO_STATUS_APPROVED, "approved")


def reject_purchase_order(*, po_id: int) -> PurchaseOrder:
    return _transition(po_id, (PO_STATUS_PENDING,), PO_STATUS_REJECTED, "rejected")


def mark_ordered(*, po_id: int) -> PurchaseOrder:
    return _transition(po_id, (PO_STATUS_APPROVED,), PO_STATUS_ORDERED, "ordered")


def cancel_purchase_order(*, po_id: int) -> PurchaseOrder:
    """Cancel before any goods arrived."""
    def _op():
        po = require_purchase_order(po_id, lock=True)
        _guard(
            po,
            (PO_STATUS_DRAFT, PO_STATUS_PENDING, PO_STATUS_APPROVED, PO_STATUS_ORDERED),
            "cancelled",
        )
        if any(item.quantity_received for item in po.items):
            raise IllegalStateTransitionError(
                f"Purchase order {po.po_number} already has received goods",
                current_status=po.status,
            )
        po.status = PO_STATUS_CANCELLED
        db.session.flush()
        current_app.logger.info("Purchase order %s cancelled", po.po_number)
        return po

    return run_in_transaction(_op)


def _parse_receive_lines(payload: dict) -> list[tuple[int, int]]:
    lines = []
    for raw in require_items(payload):
        item_id = raw.get("item_id", raw.get("id"))
        if item_id is None:
            raise ValidationError("items.item_id is required")
        if raw.get("quantity_received") is None:
            raise ValidationError("items.quantity_received is required")
        quantity = coerce_int("quantity_received", raw["quantity_received"])
        if quantity < 0:
            raise ValidationError("items.quantity_received must be >= 0")
        lines.append((coerce_int("item_id", item_id), quantity))
    return lines


def receive_purchase_order(*, po_id: int, payload: dict, user_id: int) -> PurchaseOrder:
    """
    Receive goods against an approved/ordered/partially received order.

    Each line receives min(submitted, remaining); the remainder of an
    over-delivery is ignored. Lines with a positive amount append a PURCHASE
    movement at the item's unit cost and recompute the average. The order
    becomes received when every line is complete, partial_received when
    anything has arrived, otherwise keeps its status. One receive history
    row is always written.
    """
    lines = _parse_receive_lines(payload)
    received_on = today()
    if payload.get("received_date") not in (None, ""):
        received_on = coerce_date("received_date", payload["received_date"])
    notes = payload.get("notes") or None

    def _op():
        po = require_purchase_order(po_id, lock=True)
        _guard(po, (PO_STATUS_APPROVED, PO_STATUS_ORDERED, PO_STATUS_PARTIAL_RECEIVED), "received")

        items_by_id = {item.id: item for item in po.items}
        snapshot = []
        for item_id, submitted in lines:
            item = items_by_id.get(item_id)
            if item is None:
                raise ValidationError(f"Item {item_id} does not belong to purchase order {po.po_number}")

            actual = min(submitted, item.remaining_quantity)
            if actual <= 0:
                continue

            item.quantity_received = (item.quantity_received or 0) + actual
            apply_purchase_receipt(
                store_id=po.store_id,
                product_id=item.product_id,
                quantity=actual,
                unit_cost=item.unit_cost,
                user_id=user_id,
                origin=Origin.purchase_order(po.id),
                notes=f"Received from {po.po_number}",
                received_on=received_on,
            )
            snapshot.append({
                "id": item.id,
                "product": {"id": item.product_id, "name": item.product.name, "sku": item.product.sku},
                "quantity_submitted": submitted,
                "quantity_received": actual,
                "unit_cost": str(to_money(item.unit_cost)),
            })

        if all(item.is_fully_received() for item in po.items):
            po.status = PO_STATUS_RECEIVED
            po.received_date = received_on
        elif any(item.quantity_received for item in po.items):
            po.status = PO_STATUS_PARTIAL_RECEIVED

        po.receive_history.append(
            PurchaseOrderReceiveHistory(
                received_by=user_id,
                received_date=received_on,
                notes=notes,
                items_received=snapshot,
            )
        )
        db.session.flush()

        current_app.logger.info(
            "Purchase order %s received %s units, status %s",
            po.po_number, sum(line["quantity_received"] for line in snapshot), po.status,
        )
        return po

    return run_in_transaction(_op)


def get_tracking(po_id: int) -> dict:
    """Order detail plus receive history, newest first."""
    po = require_purchase_order(po_id)
    data = po.to_dict()
    data["receive_history"] = [entry.to_dict() for entry in po.receive_history]
    return data
