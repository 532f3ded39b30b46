from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_iso_date, to_utc_z


PO_STATUS_DRAFT = "draft"
PO_STATUS_PENDING = "pending"
PO_STATUS_APPROVED = "approved"
PO_STATUS_ORDERED = "ordered"
PO_STATUS_PARTIAL_RECEIVED = "partial_received"
PO_STATUS_RECEIVED = "received"
PO_STATUS_CANCELLED = "cancelled"
PO_STATUS_REJECTED = "rejected"

PO_STATUSES = (
    PO_STATUS_DRAFT,
    PO_STATUS_PENDING,
    PO_STATUS_APPROVED,
    PO_STATUS_ORDERED,
    PO_STATUS_PARTIAL_RECEIVED,
    PO_STATUS_RECEIVED,
    PO_STATUS_CANCELLED,
    PO_STATUS_REJECTED,
)


class PurchaseOrder(db.Model):
    """
    Purchase order document.

    LIFECYCLE:
    draft -> pending -> approved -> ordered -> partial_received -> received
    pending -> rejected; draft/pending/approved/ordered (nothing received) -> cancelled

    Items are editable only in draft/pending. Receiving is allowed in
    approved/ordered/partial_received and appends purchase movements.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_store_status", "store_id", "status"),
        db.Index("ix_purchase_orders_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(32), nullable=False, unique=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    status = db.Column(db.String(24), nullable=False, default=PO_STATUS_DRAFT)

    order_date = db.Column(db.Date, nullable=False, index=True)
    expected_date = db.Column(db.Date, nullable=True)
    received_date = db.Column(db.Date, nullable=True)

    subtotal = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    shipping_cost = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store")
    supplier = db.relationship("Supplier")
    creator = db.relationship("User", foreign_keys=[created_by])
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
        lazy=True,
    )
    receive_history = db.relationship(
        "PurchaseOrderReceiveHistory",
        backref="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderReceiveHistory.id.desc()",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def can_be_edited(self) -> bool:
        return self.status in (PO_STATUS_DRAFT, PO_STATUS_PENDING)

    def can_be_deleted(self) -> bool:
        return self.status in (PO_STATUS_DRAFT, PO_STATUS_CANCELLED)

    def can_be_received(self) -> bool:
        return self.status in (PO_STATUS_APPROVED, PO_STATUS_ORDERED, PO_STATUS_PARTIAL_RECEIVED)

    @property
    def progress_percentage(self) -> float:
        total_ordered = sum(item.quantity_ordered for item in self.items)
        if total_ordered == 0:
            return 0.0
        total_received = sum(item.quantity_received for item in self.items)
        return round(total_received / total_ordered * 100, 2)

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "po_number": self.po_number,
            "store_id": self.store_id,
            "supplier_id": self.supplier_id,
            "created_by": self.created_by,
            "status": self.status,
            "order_date": to_iso_date(self.order_date),
            "expected_date": to_iso_date(self.expected_date),
            "received_date": to_iso_date(self.received_date),
            "subtotal": money_str(self.subtotal),
            "tax_amount": money_str(self.tax_amount),
            "shipping_cost": money_str(self.shipping_cost),
            "discount_amount": money_str(self.discount_amount),
            "total_amount": money_str(self.total_amount),
            "notes": self.notes,
            "progress_percentage": self.progress_percentage,
            "items_count": len(self.items),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.CheckConstraint("quantity_ordered > 0", name="ck_po_items_quantity_ordered_positive"),
        db.CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity_ordered",
            name="ck_po_items_received_within_ordered",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_ordered = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)

    unit_cost = db.Column(db.Numeric(15, 2), nullable=False)
    total_cost = db.Column(db.Numeric(15, 2), nullable=False)

    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")

    @property
    def remaining_quantity(self) -> int:
        return self.quantity_ordered - (self.quantity_received or 0)

    def is_fully_received(self) -> bool:
        return (self.quantity_received or 0) >= self.quantity_ordered

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sku": self.product.sku if self.product else None,
            "quantity_ordered": self.quantity_ordered,
            "quantity_received": self.quantity_received,
            "remaining_quantity": self.remaining_quantity,
            "unit_cost": money_str(self.unit_cost),
            "total_cost": money_str(self.total_cost),
            "notes": self.notes,
        }


class PurchaseOrderReceiveHistory(db.Model):
    """One receiving event. Append-only; items_received is a JSON snapshot."""
    __tablename__ = "purchase_order_receive_histories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    received_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    items_received = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    receiver = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "received_by": self.received_by,
            "received_by_name": self.receiver.name if self.receiver else None,
            "received_date": to_iso_date(self.received_date),
            "notes": self.notes,
            "items_received": self.items_received,
            "created_at": to_utc_z(self.created_at),
        }
