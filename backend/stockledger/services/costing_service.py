# Overview: Weighted-average costing from purchase movements.

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryRecord, MovementType, Origin, Product, StockMovement
from ..money import ZERO, to_money
from ..time_utils import today
from . import ledger_service
from .catalog_service import require_product, require_store
from .concurrency import run_in_transaction
"""
Costing rules (authoritative)

- average_cost = sum(quantity_change * unit_cost) / sum(quantity_change) over
  every PURCHASE movement with quantity_change > 0 for the (store, product),
  rounded half-up to cents.
- A purchase movement without unit_cost counts at the product's purchase_price.
- With no purchase movements the average is the product's purchase_price.
- Always a full recompute; calling it twice without new purchases gives the
  same value.
- Transfers, adjustments, sales and returns never move average_cost.
"""


def _purchase_totals(store_id: int, product_id: int, fallback_cost: Decimal) -> tuple[Decimal, int]:
    rows = (
        db.session.query(StockMovement.quantity_change, StockMovement.unit_cost)
        .filter(
            StockMovement.store_id == store_id,
            StockMovement.product_id == product_id,
            StockMovement.type == MovementType.PURCHASE.value,
            StockMovement.quantity_change > 0,
        )
        .order_by(StockMovement.movement_date.asc(), StockMovement.id.asc())
        .all()
    )
    total_value = Decimal("0")
    total_quantity = 0
    for quantity, unit_cost in rows:
        cost = Decimal(unit_cost) if unit_cost is not None else fallback_cost
        total_value += Decimal(quantity) * cost
        total_quantity += quantity
    return total_value, total_quantity


def compute_average_cost(store_id: int, product_id: int) -> Decimal:
    """Weighted average over the purchase history, without writing it anywhere."""
    product = require_product(product_id)
    purchase_price = to_money(product.purchase_price)

    total_value, total_quantity = _purchase_totals(store_id, product_id, purchase_price)
    if total_quantity <= 0:
        return purchase_price
    return to_money(total_value / Decimal(total_quantity))


def recompute_average_cost(
    store_id: int,
    product_id: int,
    *,
    record: InventoryRecord | None = None,
) -> Decimal:
    """Recompute and store average_cost on the record. Runs inside the caller's transaction."""
    if record is None:
        record = ledger_service.get_record(store_id, product_id, lock=True)
    if record is None:
        raise NotFoundError(f"No inventory record for product {product_id} in store {store_id}")

    average = compute_average_cost(store_id, product_id)
    record.average_cost = average
    db.session.flush()

    current_app.logger.info(
        "Average cost recomputed store=%s product=%s average=%s", store_id, product_id, average
    )
    return average


def apply_purchase_receipt(
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    unit_cost,
    user_id: int,
    origin: Origin | None = None,
    notes: str | None = None,
    movement_date: datetime | None = None,
    received_on: date | None = None,
) -> tuple[StockMovement, InventoryRecord]:
    """
    Core purchase-receipt logic without commit.

    Ensures the record exists, appends a PURCHASE movement, stamps
    last_cost/last_restock_date and recomputes the average. Used by
    receive_purchase() and by purchase order receiving.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    try:
        cost = to_money(unit_cost)
    except ValueError as exc:
        raise ValidationError(str(exc))
    if cost < ZERO:
        raise ValidationError("unit_cost must be zero or greater")

    product = require_product(product_id)
    record, _ = ledger_service.get_or_create_record(
        store_id,
        product_id,
        defaults={"minimum_stock": product.minimum_stock or 0},
    )

    movement = ledger_service.append_movement(
        store_id=store_id,
        product_id=product_id,
        user_id=user_id,
        movement_type=MovementType.PURCHASE,
        quantity_change=quantity,
        unit_cost=cost,
        origin=origin,
        notes=notes,
        movement_date=movement_date,
        record=record,
    )

    record.last_cost = cost
    record.last_restock_date = received_on or today()
    recompute_average_cost(store_id, product_id, record=record)
    return movement, record


def receive_purchase(
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    unit_cost,
    user_id: int,
    notes: str | None = None,
) -> InventoryRecord:
    """Receive goods outside a purchase order, as one committed unit."""
    def _op():
        require_store(store_id)
        _, record = apply_purchase_receipt(
            store_id=store_id,
            product_id=product_id,
            quantity=quantity,
            unit_cost=unit_cost,
            user_id=user_id,
            notes=notes,
        )
        return record

    return run_in_transaction(_op)


def refresh_average_cost(store_id: int, product_id: int) -> Decimal:
    def _op():
        return recompute_average_cost(store_id, product_id)

    return run_in_transaction(_op)


def _recompute_records(records) -> list[dict]:
    results = []
    for record in records:
        before = to_money(record.average_cost)
        after = recompute_average_cost(record.store_id, record.product_id, record=record)
        results.append({
            "store_id": record.store_id,
            "product_id": record.product_id,
            "old_average_cost": str(before),
            "new_average_cost": str(after),
            "changed": before != after,
        })
    return results


def recompute_average_cost_all_stores(product_id: int) -> list[dict]:
    """Recompute the average for every store that holds the product."""
    def _op():
        require_product(product_id)
        records = (
            db.session.query(InventoryRecord)
            .filter_by(product_id=product_id)
            .order_by(InventoryRecord.store_id.asc())
            .with_for_update()
            .all()
        )
        return _recompute_records(records)

    return run_in_transaction(_op)


def recompute_average_cost_for_store(store_id: int) -> list[dict]:
    """Recompute the average for every product held by the store."""
    def _op():
        require_store(store_id, active=False)
        records = (
            db.session.query(InventoryRecord)
            .filter_by(store_id=store_id)
            .order_by(InventoryRecord.product_id.asc())
            .with_for_update()
            .all()
        )
        return _recompute_records(records)

    return run_in_transaction(_op)


def recompute_all_average_costs() -> list[dict]:
    def _op():
        records = (
            db.session.query(InventoryRecord)
            .join(Product, Product.id == InventoryRecord.product_id)
            .filter(Product.is_active.is_(True))
            .order_by(InventoryRecord.store_id.asc(), InventoryRecord.product_id.asc())
            .with_for_update()
            .all()
        )
        return _recompute_records(records)

    return run_in_transaction(_op)


def purchase_summary(store_id: int, product_id: int) -> dict:
    """Purchase quantity/value totals behind the current average."""
    total_quantity, movement_count = (
        db.session.query(
            func.coalesce(func.sum(StockMovement.quantity_change), 0),
            func.count(StockMovement.id),
        )
        .filter(
            StockMovement.store_id == store_id,
            StockMovement.product_id == product_id,
            StockMovement.type == MovementType.PURCHASE.value,
            StockMovement.quantity_change > 0,
        )
        .one()
    )
    return {
        "store_id": store_id,
        "product_id": product_id,
        "purchase_movements": movement_count,
        "purchased_quantity": int(total_quantity or 0),
        "average_cost": str(compute_average_cost(store_id, product_id)),
    }
