# backend/stockledger/services/adjustment_service.py
"""
Stock adjustment workflow.

WHY: Manual corrections (stock take, damage, loss, found goods) need a
reviewable document before they touch inventory.

LIFECYCLE:
1. draft: lines snapshot the current quantity and the resulting quantity
2. approved: every line is applied as one ADJUSTMENT movement (terminal)
3. rejected: nothing applied (terminal)

The draft snapshot is advisory. Approval re-reads each record under lock and
refuses to apply if the quantity moved since the draft was written.
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import or_

from ..errors import (
    ConcurrentModificationError,
    IllegalStateTransitionError,
    NegativeStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import InventoryRecord, MovementType, Origin, StockAdjustment, StockAdjustmentItem
from ..models.adjustments import (
    ADJUSTMENT_REASONS,
    ADJUSTMENT_STATUS_APPROVED,
    ADJUSTMENT_STATUS_DRAFT,
    ADJUSTMENT_STATUS_REJECTED,
    ADJUSTMENT_TYPE_DECREASE,
    ADJUSTMENT_TYPES,
)
from ..money import ZERO, to_money
from ..time_utils import utcnow
from ..validation import coerce_date, coerce_int, require_items
from . import ledger_service
from .catalog_service import require_product, require_store
from .concurrency import lock_for_update, run_in_transaction
from .document_service import DOCUMENT_STOCK_ADJUSTMENT, next_document_number
from .pagination import paginate

ADJUSTMENT_STATUSES = (ADJUSTMENT_STATUS_DRAFT, ADJUSTMENT_STATUS_APPROVED, ADJUSTMENT_STATUS_REJECTED)


def require_adjustment(adjustment_id: int, *, lock: bool = False) -> StockAdjustment:
    query = db.session.query(StockAdjustment).filter_by(id=adjustment_id)
    if lock:
        query = lock_for_update(query)
    adjustment = query.first()
    if adjustment is None:
        raise NotFoundError(f"Stock adjustment {adjustment_id} not found")
    return adjustment


def _require_draft(adjustment: StockAdjustment, action: str) -> None:
    if adjustment.status != ADJUSTMENT_STATUS_DRAFT:
        current_app.logger.warning(
            "Rejected %s of adjustment %s in status %s",
            action, adjustment.adjustment_number, adjustment.status,
        )
        raise IllegalStateTransitionError(
            f"Stock adjustment {adjustment.adjustment_number} cannot be {action} in status {adjustment.status}",
            current_status=adjustment.status,
        )


def default_unit_cost(record: InventoryRecord | None, product) -> Decimal:
    """
    average_cost, else last_cost, else the configured product price.

    The product fallback is selling_price unless ADJUSTMENT_COST_FALLBACK is
    set to purchase_price.
    """
    if record is not None and to_money(record.average_cost) > ZERO:
        return to_money(record.average_cost)
    if record is not None and to_money(record.last_cost) > ZERO:
        return to_money(record.last_cost)
    if current_app.config.get("ADJUSTMENT_COST_FALLBACK", "selling_price") == "purchase_price":
        return to_money(product.purchase_price)
    return to_money(product.selling_price)


def _parse_header(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for key in ("store_id", "type", "reason", "adjustment_date"):
        if payload.get(key) in (None, ""):
            raise ValidationError(f"{key} is required")
    if payload["type"] not in ADJUSTMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(ADJUSTMENT_TYPES)}")
    if payload["reason"] not in ADJUSTMENT_REASONS:
        raise ValidationError(f"reason must be one of: {', '.join(ADJUSTMENT_REASONS)}")
    return {
        "store_id": coerce_int("store_id", payload["store_id"]),
        "type": payload["type"],
        "reason": payload["reason"],
        "adjustment_date": coerce_date("adjustment_date", payload["adjustment_date"]),
        "notes": payload.get("notes") or None,
    }


def _parse_items(payload: dict) -> list[dict]:
    items = []
    seen = set()
    for raw in require_items(payload):
        if raw.get("product_id") is None:
            raise ValidationError("items.product_id is required")
        if raw.get("adjusted_quantity") is None:
            raise ValidationError("items.adjusted_quantity is required")
        product_id = coerce_int("product_id", raw["product_id"])
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears more than once")
        seen.add(product_id)

        adjusted = coerce_int("adjusted_quantity", raw["adjusted_quantity"])
        if adjusted == 0:
            raise ValidationError("items.adjusted_quantity must not be zero")
        items.append({
            "product_id": product_id,
            "adjusted_quantity": adjusted,
            "notes": raw.get("notes") or None,
        })
    return items


def _build_items(adjustment: StockAdjustment, header: dict, items: list[dict]) -> None:
    """
    Snapshot each line against the current record.

    The sign follows the document type: decrease lines are always negative,
    increase lines always positive.
    """
    adjustment.items.clear()
    db.session.flush()

    total = Decimal("0.00")
    for item in items:
        product = require_product(item["product_id"])
        record = ledger_service.get_record(header["store_id"], product.id)
        current_quantity = record.quantity if record else 0

        adjusted = abs(item["adjusted_quantity"])
        if header["type"] == ADJUSTMENT_TYPE_DECREASE:
            adjusted = -adjusted

        new_quantity = current_quantity + adjusted
        if new_quantity < 0:
            raise NegativeStockError(
                f"Stock for product {product.id} would become {new_quantity}",
                store_id=header["store_id"],
                product_id=product.id,
                resulting_quantity=new_quantity,
            )

        unit_cost = default_unit_cost(record, product)
        impact = to_money(unit_cost * adjusted)
        adjustment.items.append(
            StockAdjustmentItem(
                product_id=product.id,
                current_quantity=current_quantity,
                adjusted_quantity=adjusted,
                new_quantity=new_quantity,
                unit_cost=unit_cost,
                total_value_impact=impact,
                notes=item["notes"],
            )
        )
        total += impact

    adjustment.total_value_impact = to_money(total)


def list_adjustments(
    *,
    store_id: int | None = None,
    status: str | None = None,
    adjustment_type: str | None = None,
    reason: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(StockAdjustment)
    if store_id is not None:
        query = query.filter(StockAdjustment.store_id == store_id)
    if status:
        if status not in ADJUSTMENT_STATUSES:
            raise ValidationError(f"Unknown adjustment status: {status}")
        query = query.filter(StockAdjustment.status == status)
    if adjustment_type:
        query = query.filter(StockAdjustment.type == adjustment_type)
    if reason:
        query = query.filter(StockAdjustment.reason == reason)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(StockAdjustment.adjustment_number.ilike(term), StockAdjustment.notes.ilike(term))
        )
    query = query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda a: a.to_dict(include_items=False))


def create_adjustment(*, payload: dict, user_id: int) -> StockAdjustment:
    header = _parse_header(payload)
    items = _parse_items(payload)

    def _op():
        require_store(header["store_id"])
        adjustment = StockAdjustment(
            adjustment_number=next_document_number(
                document_type=DOCUMENT_STOCK_ADJUSTMENT, prefix="ADJ", pad=3
            ),
            store_id=header["store_id"],
            created_by=user_id,
            type=header["type"],
            reason=header["reason"],
            adjustment_date=header["adjustment_date"],
            notes=header["notes"],
            status=ADJUSTMENT_STATUS_DRAFT,
        )
        db.session.add(adjustment)
        _build_items(adjustment, header, items)
        db.session.flush()
        return adjustment

    return run_in_transaction(_op)


def update_adjustment(*, adjustment_id: int, payload: dict) -> StockAdjustment:
    header = _parse_header(payload)
    items = _parse_items(payload)

    def _op():
        adjustment = require_adjustment(adjustment_id, lock=True)
        _require_draft(adjustment, "edited")
        require_store(header["store_id"])

        adjustment.store_id = header["store_id"]
        adjustment.type = header["type"]
        adjustment.reason = header["reason"]
        adjustment.adjustment_date = header["adjustment_date"]
        adjustment.notes = header["notes"]
        _build_items(adjustment, header, items)
        db.session.flush()
        return adjustment

    return run_in_transaction(_op)


def delete_adjustment(*, adjustment_id: int) -> None:
    def _op():
        adjustment = require_adjustment(adjustment_id, lock=True)
        _require_draft(adjustment, "deleted")
        db.session.delete(adjustment)
        db.session.flush()

    run_in_transaction(_op)


def approve_adjustment(*, adjustment_id: int, user_id: int) -> StockAdjustment:
    """
    Apply every line as one ADJUSTMENT movement.

    Each record is re-read under lock; if its quantity is no longer the
    draft's current_quantity the whole approval fails with
    ConcurrentModificationError and nothing is applied.
    """
    def _op():
        adjustment = require_adjustment(adjustment_id, lock=True)
        _require_draft(adjustment, "approved")
        if not adjustment.items:
            raise ValidationError("Stock adjustment has no items")

        now = utcnow()
        max_stock = current_app.config.get("NEW_RECORD_MAXIMUM_STOCK", 1000)

        for item in adjustment.items:
            record = ledger_service.get_record(adjustment.store_id, item.product_id, lock=True)
            current_quantity = record.quantity if record else 0
            if current_quantity != item.current_quantity:
                raise ConcurrentModificationError(
                    f"Stock for product {item.product_id} changed from {item.current_quantity} "
                    f"to {current_quantity} since the adjustment was drafted"
                )

            if record is None:
                record, _ = ledger_service.get_or_create_record(
                    adjustment.store_id,
                    item.product_id,
                    defaults={
                        "minimum_stock": 0,
                        "maximum_stock": max_stock,
                        "average_cost": item.unit_cost,
                        "last_cost": item.unit_cost,
                    },
                )

            detail = item.notes or adjustment.notes
            ledger_service.append_movement(
                store_id=adjustment.store_id,
                product_id=item.product_id,
                user_id=user_id,
                movement_type=MovementType.ADJUSTMENT,
                quantity_change=item.new_quantity - current_quantity,
                unit_cost=item.unit_cost,
                origin=Origin.stock_adjustment(adjustment.id),
                notes=f"{adjustment.formatted_reason}: {detail}" if detail else adjustment.formatted_reason,
                movement_date=now,
                record=record,
            )

        adjustment.status = ADJUSTMENT_STATUS_APPROVED
        adjustment.approved_by = user_id
        adjustment.approved_at = now
        db.session.flush()

        current_app.logger.info(
            "Adjustment %s approved: %s items, value impact %s",
            adjustment.adjustment_number, len(adjustment.items), adjustment.total_value_impact,
        )
        return adjustment

    return run_in_transaction(_op)


def reject_adjustment(*, adjustment_id: int, user_id: int) -> StockAdjustment:
    def _op():
        adjustment = require_adjustment(adjustment_id, lock=True)
        _require_draft(adjustment, "rejected")
        adjustment.status = ADJUSTMENT_STATUS_REJECTED
        adjustment.approved_by = user_id
        adjustment.approved_at = utcnow()
        db.session.flush()
        current_app.logger.info("Adjustment %s rejected", adjustment.adjustment_number)
        return adjustment

    return run_in_transaction(_op)
