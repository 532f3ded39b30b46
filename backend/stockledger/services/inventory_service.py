# Overview: Inventory record reads and single-record stock operations.

from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.orm import joinedload

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryRecord, MovementType, Origin, Product, Store
from ..money import to_money
from ..time_utils import today
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_inventory_settings,
    validate_payload,
)
from . import costing_service, ledger_service
from .catalog_service import require_product, require_store
from .concurrency import lock_for_update, run_in_transaction
from .pagination import paginate
"""
Inventory record rules (authoritative)

- One record per (store, product); quantity is only ever changed through
  ledger_service.append_movement(), so every change leaves a movement.
- stock_status: out_of_stock (quantity <= 0), low_stock (0 < quantity <=
  minimum_stock), in_stock (quantity > minimum_stock).
- Settings (minimum/maximum/location) never touch quantity or cost.
"""

STOCK_STATUSES = ("out_of_stock", "low_stock", "in_stock")
QUICK_ADJUST_MODES = ("increase", "decrease", "set")
RETURN_CONDITIONS = ("good", "damaged", "defective")

INVENTORY_SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={"minimum_stock", "maximum_stock", "location"},
)

INITIAL_STOCK_POLICY = ModelValidationPolicy(
    writable_fields={"store_id", "product_id", "quantity", "minimum_stock", "maximum_stock", "location"},
    required_on_create={"store_id", "product_id", "quantity", "minimum_stock"},
)


def require_record(record_id: int, *, lock: bool = False) -> InventoryRecord:
    query = db.session.query(InventoryRecord).filter_by(id=record_id)
    if lock:
        query = lock_for_update(query)
    record = query.first()
    if record is None:
        raise NotFoundError(f"Inventory record {record_id} not found")
    return record


def _apply_stock_status(query, stock_status: str | None):
    if not stock_status:
        return query
    if stock_status not in STOCK_STATUSES:
        raise ValidationError(f"stock_status must be one of: {', '.join(STOCK_STATUSES)}")
    if stock_status == "out_of_stock":
        return query.filter(InventoryRecord.quantity <= 0)
    if stock_status == "low_stock":
        return query.filter(
            InventoryRecord.quantity > 0,
            InventoryRecord.quantity <= InventoryRecord.minimum_stock,
        )
    return query.filter(InventoryRecord.quantity > InventoryRecord.minimum_stock)


def list_inventory(
    *,
    store_id: int | None = None,
    category_id: int | None = None,
    stock_status: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Filtered inventory listing, most recently changed first."""
    query = (
        db.session.query(InventoryRecord)
        .join(Product, Product.id == InventoryRecord.product_id)
        .join(Store, Store.id == InventoryRecord.store_id)
        .options(joinedload(InventoryRecord.product), joinedload(InventoryRecord.store))
    )

    if store_id is not None:
        query = query.filter(InventoryRecord.store_id == store_id)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Product.name.ilike(term),
                Product.sku.ilike(term),
                Product.barcode.ilike(term),
                Store.name.ilike(term),
            )
        )
    query = _apply_stock_status(query, stock_status)
    query = query.order_by(InventoryRecord.updated_at.desc(), InventoryRecord.id.desc())

    return paginate(query, page=page, per_page=per_page)


def list_low_stock(*, store_id: int | None = None) -> list[InventoryRecord]:
    """Records at or below their minimum, emptiest first."""
    query = (
        db.session.query(InventoryRecord)
        .options(joinedload(InventoryRecord.product), joinedload(InventoryRecord.store))
        .filter(InventoryRecord.quantity <= InventoryRecord.minimum_stock)
    )
    if store_id is not None:
        query = query.filter(InventoryRecord.store_id == store_id)
    return query.order_by(InventoryRecord.quantity.asc(), InventoryRecord.id.asc()).all()


def get_record_detail(record_id: int, *, recent: int = 10) -> dict:
    record = require_record(record_id)
    history = ledger_service.list_movements(
        store_id=record.store_id,
        product_id=record.product_id,
        per_page=recent,
    )
    data = record.to_dict()
    data["recent_movements"] = history["items"]
    data["costing"] = costing_service.purchase_summary(record.store_id, record.product_id)
    return data


def create_initial_stock(*, payload: dict, user_id: int) -> InventoryRecord:
    """
    Register a product in a store with an opening quantity.

    Fails if the (store, product) record already exists. A positive opening
    quantity is written as an ADJUSTMENT movement so the chain starts at 0.
    """
    patch = validate_payload(
        model=InventoryRecord, payload=payload, policy=INITIAL_STOCK_POLICY, partial=False
    )
    if patch["quantity"] < 0:
        raise ValidationError("quantity must be >= 0")
    enforce_rules_inventory_settings(patch)

    def _op():
        store = require_store(patch["store_id"])
        product = require_product(patch["product_id"], active=True)

        if ledger_service.get_record(store.id, product.id, lock=True) is not None:
            raise ValidationError(f"Product {product.id} is already registered in store {store.id}")

        purchase_price = to_money(product.purchase_price)
        record, _ = ledger_service.get_or_create_record(
            store.id,
            product.id,
            defaults={
                "minimum_stock": patch["minimum_stock"],
                "maximum_stock": patch.get("maximum_stock"),
                "location": patch.get("location"),
                "average_cost": purchase_price,
                "last_cost": purchase_price,
                "last_restock_date": today(),
            },
        )

        if patch["quantity"] > 0:
            ledger_service.append_movement(
                store_id=store.id,
                product_id=product.id,
                user_id=user_id,
                movement_type=MovementType.ADJUSTMENT,
                quantity_change=patch["quantity"],
                unit_cost=purchase_price,
                notes="Initial stock - product added to inventory",
                record=record,
            )

        current_app.logger.info(
            "Inventory record created store=%s product=%s quantity=%s",
            store.id, product.id, patch["quantity"],
        )
        return record

    return run_in_transaction(_op)


def update_settings(*, record_id: int, payload: dict) -> InventoryRecord:
    """Update minimum_stock, maximum_stock and location."""
    patch = validate_payload(
        model=InventoryRecord, payload=payload, policy=INVENTORY_SETTINGS_POLICY, partial=True
    )

    def _op():
        record = require_record(record_id, lock=True)
        enforce_rules_inventory_settings(
            patch,
            current_minimum=record.minimum_stock,
            current_maximum=record.maximum_stock,
        )
        for key, value in patch.items():
            setattr(record, key, value)
        db.session.flush()
        return record

    return run_in_transaction(_op)


def quick_adjust(*, record_id: int, mode: str, quantity, reason: str | None, user_id: int) -> InventoryRecord:
    """
    Single-record manual correction.

    increase/decrease move by `quantity`; set overwrites with `quantity`.
    A decrease past zero is rejected with NegativeStockError.
    """
    if mode not in QUICK_ADJUST_MODES:
        raise ValidationError(f"adjustment_type must be one of: {', '.join(QUICK_ADJUST_MODES)}")
    quantity = coerce_int("quantity", quantity)
    if quantity < 0:
        raise ValidationError("quantity must be >= 0")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    if len(reason) > 500:
        raise ValidationError("reason exceeds max length 500")

    def _op():
        record = require_record(record_id, lock=True)

        if mode == "increase":
            change = quantity
        elif mode == "decrease":
            change = -quantity
        else:
            change = quantity - record.quantity

        if change == 0:
            raise ValidationError("Adjustment does not change the quantity")

        ledger_service.append_movement(
            store_id=record.store_id,
            product_id=record.product_id,
            user_id=user_id,
            movement_type=MovementType.ADJUSTMENT,
            quantity_change=change,
            notes=reason,
            record=record,
        )
        return record

    return run_in_transaction(_op)


def record_sale(*, store_id: int, product_id: int, quantity, user_id: int, sale_id: int,
                notes: str | None = None) -> InventoryRecord:
    """Deduct sold units with a SALE movement. Selling more than on hand raises NegativeStockError."""
    quantity = coerce_int("quantity", quantity)
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    sale_id = coerce_int("sale_id", sale_id)

    def _op():
        require_store(store_id)
        require_product(product_id)
        record = ledger_service.get_record(store_id, product_id, lock=True)
        if record is None:
            raise NotFoundError(f"Product {product_id} is not stocked in store {store_id}")

        ledger_service.append_movement(
            store_id=store_id,
            product_id=product_id,
            user_id=user_id,
            movement_type=MovementType.SALE,
            quantity_change=-quantity,
            unit_cost=record.average_cost,
            origin=Origin.sale(sale_id),
            notes=notes or f"Sale #{sale_id}",
            record=record,
        )
        return record

    return run_in_transaction(_op)


def record_return(*, store_id: int, product_id: int, quantity, user_id: int, return_id: int,
                  condition: str = "good", notes: str | None = None) -> InventoryRecord | None:
    """
    Put returned units back on hand with a RETURN movement.

    Only items in good condition are restocked; damaged/defective returns
    leave inventory untouched and return None.
    """
    quantity = coerce_int("quantity", quantity)
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    return_id = coerce_int("return_id", return_id)
    if condition not in RETURN_CONDITIONS:
        raise ValidationError(f"condition must be one of: {', '.join(RETURN_CONDITIONS)}")
    if condition != "good":
        return None

    def _op():
        require_store(store_id)
        product = require_product(product_id)
        record, _ = ledger_service.get_or_create_record(
            store_id,
            product_id,
            defaults={
                "minimum_stock": product.minimum_stock or 0,
                "average_cost": to_money(product.purchase_price),
            },
        )
        ledger_service.append_movement(
            store_id=store_id,
            product_id=product_id,
            user_id=user_id,
            movement_type=MovementType.RETURN,
            quantity_change=quantity,
            unit_cost=record.average_cost,
            origin=Origin.sales_return(return_id),
            notes=notes or f"Return #{return_id}",
            record=record,
        )
        return record

    return run_in_transaction(_op)
