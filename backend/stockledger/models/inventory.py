from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import event

from ..errors import PersistenceError
from ..extensions import db
from ..money import money_str, to_money
from ..time_utils import to_iso_date, to_utc_z


class MovementType(str, enum.Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    SALE = "sale"
    PURCHASE = "purchase"
    RETURN = "return"


class OriginKind(str, enum.Enum):
    PURCHASE_ORDER = "purchase_order"
    STOCK_ADJUSTMENT = "stock_adjustment"
    STOCK_TRANSFER = "stock_transfer"
    SALE = "sale"
    SALES_RETURN = "sales_return"
    MANUAL = "manual"


@dataclass(frozen=True)
class Origin:
    """
    The workflow document that produced a movement.

    Stored as (reference_type, reference_id); MANUAL has no document id.
    """
    kind: OriginKind
    id: int | None = None

    @classmethod
    def purchase_order(cls, po_id: int) -> "Origin":
        return cls(OriginKind.PURCHASE_ORDER, po_id)

    @classmethod
    def stock_adjustment(cls, adjustment_id: int) -> "Origin":
        return cls(OriginKind.STOCK_ADJUSTMENT, adjustment_id)

    @classmethod
    def stock_transfer(cls, transfer_id: int) -> "Origin":
        return cls(OriginKind.STOCK_TRANSFER, transfer_id)

    @classmethod
    def sale(cls, sale_id: int) -> "Origin":
        return cls(OriginKind.SALE, sale_id)

    @classmethod
    def sales_return(cls, return_id: int) -> "Origin":
        return cls(OriginKind.SALES_RETURN, return_id)

    @classmethod
    def manual(cls) -> "Origin":
        return cls(OriginKind.MANUAL, None)

    def __post_init__(self):
        if self.kind is OriginKind.MANUAL:
            if self.id is not None:
                raise ValueError("manual origin takes no document id")
        elif self.id is None:
            raise ValueError(f"{self.kind.value} origin requires a document id")


class InventoryRecord(db.Model):
    """
    Current stock per (store, product): a cached projection of the movement ledger.

    INVARIANTS:
    - quantity >= 0
    - quantity == quantity_after of the latest StockMovement for the key
      (only ledger_service.append_movement changes quantity)
    - never deleted once a movement references the key

    version_id is an optimistic lock: a concurrent writer that read the same
    version fails at flush with StaleDataError.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_inventory_store_product"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.Index("ix_inventory_store_quantity", "store_id", "quantity"),
        db.Index("ix_inventory_product_quantity", "product_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=0)
    maximum_stock = db.Column(db.Integer, nullable=True)

    average_cost = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    last_cost = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    location = db.Column(db.String(255), nullable=True)
    last_restock_date = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store")
    product = db.relationship("Product", backref=db.backref("inventory_records", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryRecord store_id={self.store_id} product_id={self.product_id} quantity={self.quantity}>"

    @property
    def stock_status(self) -> str:
        if self.quantity <= 0:
            return "out_of_stock"
        if self.quantity <= self.minimum_stock:
            return "low_stock"
        return "in_stock"

    @property
    def stock_value(self) -> Decimal:
        return to_money(Decimal(self.quantity) * to_money(self.average_cost))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "store_name": self.store.name if self.store else None,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "minimum_stock": self.minimum_stock,
            "maximum_stock": self.maximum_stock,
            "average_cost": money_str(self.average_cost),
            "last_cost": money_str(self.last_cost),
            "location": self.location,
            "last_restock_date": to_iso_date(self.last_restock_date),
            "stock_status": self.stock_status,
            "stock_value": money_str(self.stock_value),
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only ledger entry for one quantity change.

    INVARIANTS:
    - quantity_after == quantity_before + quantity_change
    - quantity_before == quantity_after of the previous entry (by id) for the
      same (store, product); entries form a verifiable chain
    - rows are never updated or deleted (enforced by mapper events below)
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint(
            "quantity_after = quantity_before + quantity_change",
            name="ck_stock_movements_arithmetic",
        ),
        db.Index("ix_stock_movements_store_product", "store_id", "product_id", "id"),
        db.Index("ix_stock_movements_type_date", "type", "movement_date"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    type = db.Column(db.String(16), nullable=False)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    unit_cost = db.Column(db.Numeric(15, 2), nullable=True)

    reference_type = db.Column(db.String(32), nullable=False, default=OriginKind.MANUAL.value)
    reference_id = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    movement_date = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store")
    product = db.relationship("Product")
    user = db.relationship("User")

    @property
    def origin(self) -> Origin:
        return Origin(OriginKind(self.reference_type), self.reference_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "user_id": self.user_id,
            "type": self.type,
            "quantity_before": self.quantity_before,
            "quantity_change": self.quantity_change,
            "quantity_after": self.quantity_after,
            "unit_cost": money_str(self.unit_cost),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "movement_date": to_utc_z(self.movement_date),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise PersistenceError(f"Stock movement {target.id} is immutable")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise PersistenceError(f"Stock movement {target.id} cannot be deleted")


class DocumentSequence(db.Model):
    """
    Day-scoped document counters.

    WHY: "count today's rows + 1" hands out the same number to concurrent
    creators. One row per (document_type, period_key) is incremented in place.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period_key", name="uq_doc_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    period_key = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "period_key": self.period_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
