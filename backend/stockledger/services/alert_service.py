# Overview: Low-stock alert feed, statistics, CSV export and minimum-stock maintenance.

"""
Alert levels (authoritative)

- critical: minimum_stock > 0 and quantity = 0
- warning:  minimum_stock > 0 and 0 < quantity <= minimum_stock
- low:      minimum_stock > 0 and minimum_stock < quantity <= LOW_STOCK_MULTIPLIER * minimum_stock

The default feed holds critical + warning rows. The low band is only
returned when alert_level=low is requested explicitly.
"""

from __future__ import annotations

import csv
import io
from decimal import Decimal

from flask import current_app
from sqlalchemy import case, func, or_
from sqlalchemy.orm import joinedload

from ..errors import ValidationError
from ..extensions import db
from ..models import InventoryRecord, Product
from ..money import to_money
from ..time_utils import utcnow
from ..validation import coerce_int, enforce_rules_inventory_settings
from .concurrency import lock_for_update, run_in_transaction
from .inventory_service import require_record
from .pagination import paginate

ALERT_LEVELS = ("critical", "warning", "low")

ALERT_LABELS = {
    "critical": "Out of Stock",
    "warning": "Below Minimum",
    "low": "Low Stock",
}

EXPORT_COLUMNS = (
    "Store",
    "Product Name",
    "SKU",
    "Category",
    "Current Stock",
    "Minimum Stock",
    "Shortage",
    "Alert Level",
    "Last Updated",
)


def _multiplier() -> Decimal:
    return Decimal(str(current_app.config.get("LOW_STOCK_MULTIPLIER", "1.5")))


def alert_level_for(quantity: int, minimum_stock: int) -> str | None:
    if minimum_stock <= 0:
        return None
    if quantity <= 0:
        return "critical"
    if quantity <= minimum_stock:
        return "warning"
    if Decimal(quantity) <= _multiplier() * minimum_stock:
        return "low"
    return None


def _base_query():
    return (
        db.session.query(InventoryRecord)
        .join(Product, Product.id == InventoryRecord.product_id)
        .options(
            joinedload(InventoryRecord.product).joinedload(Product.category),
            joinedload(InventoryRecord.store),
        )
        .filter(InventoryRecord.minimum_stock > 0)
    )


def _filtered_query(
    *,
    store_id: int | None = None,
    category_id: int | None = None,
    search: str | None = None,
    alert_level: str | None = None,
):
    query = _base_query()

    if alert_level and alert_level not in ALERT_LEVELS:
        raise ValidationError(f"alert_level must be one of: {', '.join(ALERT_LEVELS)}")

    if alert_level == "critical":
        query = query.filter(InventoryRecord.quantity <= 0)
    elif alert_level == "warning":
        query = query.filter(
            InventoryRecord.quantity > 0,
            InventoryRecord.quantity <= InventoryRecord.minimum_stock,
        )
    elif alert_level == "low":
        query = query.filter(
            InventoryRecord.quantity > InventoryRecord.minimum_stock,
            InventoryRecord.quantity <= InventoryRecord.minimum_stock * float(_multiplier()),
        )
    else:
        query = query.filter(InventoryRecord.quantity <= InventoryRecord.minimum_stock)

    if store_id is not None:
        query = query.filter(InventoryRecord.store_id == store_id)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(term), Product.sku.ilike(term), Product.barcode.ilike(term)))

    severity = case(
        (InventoryRecord.quantity <= 0, 1),
        (InventoryRecord.quantity <= InventoryRecord.minimum_stock, 2),
        else_=3,
    )
    return query.order_by(severity, InventoryRecord.quantity.asc(), InventoryRecord.id.asc())


def serialize_alert(record: InventoryRecord) -> dict:
    shortage = max(0, record.minimum_stock - record.quantity)
    level = alert_level_for(record.quantity, record.minimum_stock)
    purchase_price = to_money(record.product.purchase_price) if record.product else Decimal("0.00")
    return {
        "id": record.id,
        "store_id": record.store_id,
        "store_name": record.store.name if record.store else None,
        "product_id": record.product_id,
        "product_name": record.product.name if record.product else None,
        "sku": record.product.sku if record.product else None,
        "category_name": (
            record.product.category.name if record.product and record.product.category else None
        ),
        "current_stock": record.quantity,
        "minimum_stock": record.minimum_stock,
        "shortage": shortage,
        "alert_level": level,
        "alert_label": ALERT_LABELS.get(level),
        "estimated_value": str(to_money(purchase_price * shortage)),
        "last_updated": record.updated_at.strftime("%Y-%m-%d %H:%M:%S") if record.updated_at else None,
    }


def list_alerts(
    *,
    store_id: int | None = None,
    category_id: int | None = None,
    search: str | None = None,
    alert_level: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Alert feed ordered critical, warning, low, then by quantity ascending."""
    query = _filtered_query(
        store_id=store_id, category_id=category_id, search=search, alert_level=alert_level
    )
    result = paginate(query, page=page, per_page=per_page, serialize=serialize_alert)
    result["stats"] = alert_stats()
    return result


def alert_stats() -> dict:
    below_minimum = (
        db.session.query(InventoryRecord)
        .filter(InventoryRecord.minimum_stock > 0)
        .filter(InventoryRecord.quantity <= InventoryRecord.minimum_stock)
    )
    critical = below_minimum.filter(InventoryRecord.quantity <= 0).count()
    warning = below_minimum.filter(InventoryRecord.quantity > 0).count()
    stores_affected = below_minimum.with_entities(
        func.count(func.distinct(InventoryRecord.store_id))
    ).scalar()
    return {
        "total_alerts": critical + warning,
        "critical_alerts": critical,
        "warning_alerts": warning,
        "stores_affected": stores_affected or 0,
        "total_inventory": db.session.query(func.count(InventoryRecord.id)).scalar() or 0,
    }


def alert_counts() -> dict:
    stats = alert_stats()
    return {
        "total": stats["total_alerts"],
        "critical": stats["critical_alerts"],
        "warning": stats["warning_alerts"],
    }


def export_alerts_csv(
    *,
    store_id: int | None = None,
    category_id: int | None = None,
    search: str | None = None,
    alert_level: str | None = None,
) -> tuple[str, str]:
    """
    Render the filtered feed as CSV.

    Returns (filename, body). The body starts with a UTF-8 BOM so spreadsheet
    tools detect the encoding; the header row is always written.
    """
    query = _filtered_query(
        store_id=store_id, category_id=category_id, search=search, alert_level=alert_level
    )

    buffer = io.StringIO()
    buffer.write("\ufeff")
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for record in query.all():
        row = serialize_alert(record)
        writer.writerow([
            row["store_name"],
            row["product_name"],
            row["sku"],
            row["category_name"] or "",
            row["current_stock"],
            row["minimum_stock"],
            row["shortage"],
            row["alert_label"],
            row["last_updated"],
        ])

    filename = f"minimum_stock_alerts_{utcnow().strftime('%Y_%m_%d_%H_%M_%S')}.csv"
    return filename, buffer.getvalue()


def _coerce_minimum(value) -> int:
    if value is None:
        raise ValidationError("minimum_stock is required")
    minimum = coerce_int("minimum_stock", value)
    if minimum < 0:
        raise ValidationError("minimum_stock must be >= 0")
    return minimum


def update_minimum_stock(*, record_id, minimum_stock) -> InventoryRecord:
    if record_id is None:
        raise ValidationError("inventory_id is required")
    record_id = coerce_int("inventory_id", record_id)
    minimum = _coerce_minimum(minimum_stock)

    def _op():
        record = require_record(record_id, lock=True)
        enforce_rules_inventory_settings({"minimum_stock": minimum}, current_maximum=record.maximum_stock)
        record.minimum_stock = minimum
        db.session.flush()
        return record

    return run_in_transaction(_op)


def bulk_update_minimum_stock(*, updates) -> list[InventoryRecord]:
    """Apply every update or none: one unknown record rolls back the whole batch."""
    if not isinstance(updates, list) or not updates:
        raise ValidationError("updates must be a non-empty list")

    parsed = []
    for entry in updates:
        if not isinstance(entry, dict) or entry.get("inventory_id") is None:
            raise ValidationError("updates.inventory_id is required")
        parsed.append((coerce_int("inventory_id", entry["inventory_id"]), _coerce_minimum(entry.get("minimum_stock"))))

    def _op():
        ids = sorted({record_id for record_id, _ in parsed})
        records = {
            record.id: record
            for record in lock_for_update(
                db.session.query(InventoryRecord).filter(InventoryRecord.id.in_(ids))
            ).all()
        }
        changed = []
        for record_id, minimum in parsed:
            record = records.get(record_id)
            if record is None:
                record = require_record(record_id)
            enforce_rules_inventory_settings({"minimum_stock": minimum}, current_maximum=record.maximum_stock)
            record.minimum_stock = minimum
            changed.append(record)
        db.session.flush()
        current_app.logger.info("Minimum stock updated for %s records", len(changed))
        return changed

    return run_in_transaction(_op)
