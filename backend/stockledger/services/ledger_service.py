# Overview: Append-only stock movement ledger and the inventory record projection it maintains.

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app

from ..errors import NegativeStockError, ValidationError
from ..extensions import db
from ..models import InventoryRecord, MovementType, Origin, StockMovement
from ..money import to_money
from ..time_utils import parse_iso_date, utcnow
from .concurrency import lock_for_update
from .pagination import paginate
"""
Stock Ledger Invariants (authoritative)

- Every quantity change for a (store, product) is one StockMovement row.
- quantity_after = quantity_before + quantity_change, and quantity_before
  equals quantity_after of the previous row (by id) for the same key.
- InventoryRecord.quantity equals quantity_after of the latest row; only
  append_movement() writes InventoryRecord.quantity.
- Rows are never updated or deleted.
- append_movement() never commits. The caller's unit of work
  (run_in_transaction) owns commit/rollback.
"""


def get_record(store_id: int, product_id: int, *, lock: bool = False) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(store_id=store_id, product_id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_or_create_record(
    store_id: int,
    product_id: int,
    *,
    lock: bool = True,
    defaults: dict | None = None,
) -> tuple[InventoryRecord, bool]:
    """
    Locked read of the (store, product) record, creating it at quantity 0 if absent.

    A concurrent creator of the same key fails on uq_inventory_store_product;
    run_in_transaction turns that into ConcurrentModificationError.
    """
    record = get_record(store_id, product_id, lock=lock)
    if record is not None:
        return record, False

    values = {"minimum_stock": 0, "average_cost": Decimal("0.00"), "last_cost": Decimal("0.00")}
    values.update(defaults or {})
    values["quantity"] = 0

    record = InventoryRecord(store_id=store_id, product_id=product_id, **values)
    db.session.add(record)
    db.session.flush()
    return record, True


def append_movement(
    *,
    store_id: int,
    product_id: int,
    user_id: int,
    movement_type: MovementType,
    quantity_change: int,
    unit_cost=None,
    origin: Origin | None = None,
    notes: str | None = None,
    movement_date: datetime | None = None,
    record: InventoryRecord | None = None,
) -> StockMovement:
    """
    Append one ledger entry and move the record's quantity to quantity_after.

    The record is read under lock (or the caller passes the record it already
    locked). Any change that would leave quantity below zero raises
    NegativeStockError, whatever the movement type.
    """
    movement_type = MovementType(movement_type)
    origin = origin or Origin.manual()

    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int):
        raise ValidationError("quantity_change must be an integer")
    if quantity_change == 0:
        raise ValidationError("quantity_change must not be zero")

    if record is None:
        record, _ = get_or_create_record(store_id, product_id, lock=True)
    elif record.store_id != store_id or record.product_id != product_id:
        raise ValidationError("record does not match store/product")

    quantity_before = record.quantity or 0
    quantity_after = quantity_before + quantity_change
    if quantity_after < 0:
        current_app.logger.warning(
            "Rejected %s movement for store=%s product=%s: %s %+d would be negative",
            movement_type.value, store_id, product_id, quantity_before, quantity_change,
        )
        raise NegativeStockError(
            f"Stock for product {product_id} in store {store_id} would become {quantity_after}",
            store_id=store_id,
            product_id=product_id,
            resulting_quantity=quantity_after,
        )

    movement = StockMovement(
        store_id=store_id,
        product_id=product_id,
        user_id=user_id,
        type=movement_type.value,
        quantity_before=quantity_before,
        quantity_change=quantity_change,
        quantity_after=quantity_after,
        unit_cost=to_money(unit_cost) if unit_cost is not None else None,
        reference_type=origin.kind.value,
        reference_id=origin.id,
        notes=notes,
        movement_date=movement_date or utcnow(),
    )
    db.session.add(movement)

    record.quantity = quantity_after
    db.session.flush()
    return movement


def list_movements(
    *,
    store_id: int | None = None,
    product_id: int | None = None,
    movement_type: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    start_date=None,
    end_date=None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Movement history, newest first. Date bounds are inclusive calendar days."""
    query = db.session.query(StockMovement)

    if store_id is not None:
        query = query.filter(StockMovement.store_id == store_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type:
        try:
            movement_type = MovementType(movement_type).value
        except ValueError:
            raise ValidationError(f"Unknown movement type: {movement_type}")
        query = query.filter(StockMovement.type == movement_type)
    if reference_type:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == reference_id)

    try:
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
    except ValueError:
        raise ValidationError("start_date/end_date must be YYYY-MM-DD")
    if start is not None:
        query = query.filter(StockMovement.movement_date >= datetime.combine(start, datetime.min.time()))
    if end is not None:
        query = query.filter(
            StockMovement.movement_date < datetime.combine(end + timedelta(days=1), datetime.min.time())
        )

    query = query.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
    return paginate(query, page=page, per_page=per_page)


def movements_for(store_id: int, product_id: int) -> list[StockMovement]:
    """Insertion-ordered chain for one (store, product)."""
    return (
        db.session.query(StockMovement)
        .filter_by(store_id=store_id, product_id=product_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


def verify_chain(store_id: int, product_id: int) -> dict:
    """
    Walk the ledger for one key and compare it with the inventory record.

    A break is any row whose own arithmetic is wrong or whose quantity_before
    differs from the previous row's quantity_after (the first row must start at 0).
    """
    breaks = []
    expected_before = 0
    movements = movements_for(store_id, product_id)

    for movement in movements:
        if movement.quantity_before != expected_before:
            breaks.append({
                "movement_id": movement.id,
                "problem": "chain",
                "expected_before": expected_before,
                "actual_before": movement.quantity_before,
            })
        if movement.quantity_before + movement.quantity_change != movement.quantity_after:
            breaks.append({
                "movement_id": movement.id,
                "problem": "arithmetic",
                "expected_after": movement.quantity_before + movement.quantity_change,
                "actual_after": movement.quantity_after,
            })
        expected_before = movement.quantity_after

    record = get_record(store_id, product_id)
    ledger_quantity = movements[-1].quantity_after if movements else 0
    record_quantity = record.quantity if record else None
    if record is None:
        matches_record = not movements
    else:
        matches_record = record_quantity == ledger_quantity

    return {
        "store_id": store_id,
        "product_id": product_id,
        "movement_count": len(movements),
        "ledger_quantity": ledger_quantity,
        "record_quantity": record_quantity,
        "matches_record": matches_record,
        "breaks": breaks,
        "consistent": matches_record and not breaks,
    }


def verify_all(*, store_id: int | None = None) -> list[dict]:
    """verify_chain() for every key that has a record or a movement."""
    keys = set()
    records = db.session.query(InventoryRecord.store_id, InventoryRecord.product_id)
    moved = db.session.query(StockMovement.store_id, StockMovement.product_id).distinct()
    if store_id is not None:
        records = records.filter(InventoryRecord.store_id == store_id)
        moved = moved.filter(StockMovement.store_id == store_id)
    keys.update(tuple(row) for row in records.all())
    keys.update(tuple(row) for row in moved.all())
    return [verify_chain(s, p) for s, p in sorted(keys)]
