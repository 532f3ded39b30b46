from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_iso_date, to_utc_z


TRANSFER_STATUS_DRAFT = "draft"
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_IN_TRANSIT = "in_transit"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"


class StockTransfer(db.Model):
    """
    Inter-store transfer document.

    LIFECYCLE:
    1. draft: created, items editable
    2. pending: submitted, awaiting approval/shipping
    3. in_transit: shipped (transfer_out movements at the source store)
    4. completed: received (transfer_in movements at the destination store)
    5. cancelled: only from draft/pending, so stock was never touched
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.CheckConstraint("from_store_id <> to_store_id", name="ck_stock_transfers_distinct_stores"),
        db.Index("ix_stock_transfers_from_status", "from_store_id", "status"),
        db.Index("ix_stock_transfers_to_status", "to_store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_number = db.Column(db.String(32), nullable=False, unique=True)

    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    transfer_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_DRAFT, index=True)
    notes = db.Column(db.Text, nullable=True)
    total_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    shipped_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    from_store = db.relationship("Store", foreign_keys=[from_store_id])
    to_store = db.relationship("Store", foreign_keys=[to_store_id])
    items = db.relationship(
        "StockTransferItem",
        backref="stock_transfer",
        cascade="all, delete-orphan",
        order_by="StockTransferItem.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def can_be_edited(self) -> bool:
        return self.status == TRANSFER_STATUS_DRAFT

    def can_be_cancelled(self) -> bool:
        return self.status in (TRANSFER_STATUS_DRAFT, TRANSFER_STATUS_PENDING)

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transfer_number": self.transfer_number,
            "from_store_id": self.from_store_id,
            "from_store_name": self.from_store.name if self.from_store else None,
            "to_store_id": self.to_store_id,
            "to_store_name": self.to_store.name if self.to_store else None,
            "transfer_date": to_iso_date(self.transfer_date),
            "status": self.status,
            "notes": self.notes,
            "total_value": money_str(self.total_value),
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "shipped_by": self.shipped_by,
            "received_by": self.received_by,
            "approved_at": to_utc_z(self.approved_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "received_at": to_utc_z(self.received_at),
            "items_count": len(self.items),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class StockTransferItem(db.Model):
    __tablename__ = "stock_transfer_items"
    __table_args__ = (
        db.UniqueConstraint("stock_transfer_id", "product_id", name="uq_transfer_items_transfer_product"),
        db.CheckConstraint("quantity_requested > 0", name="ck_transfer_items_requested_positive"),
        db.CheckConstraint(
            "quantity_shipped >= 0 AND quantity_shipped <= quantity_requested",
            name="ck_transfer_items_shipped_within_requested",
        ),
        db.CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity_shipped",
            name="ck_transfer_items_received_within_shipped",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_requested = db.Column(db.Integer, nullable=False)
    quantity_shipped = db.Column(db.Integer, nullable=False, default=0)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)

    unit_cost = db.Column(db.Numeric(15, 2), nullable=False)
    total_cost = db.Column(db.Numeric(15, 2), nullable=False)

    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")

    @property
    def quantity_shortage(self) -> int:
        """Units lost between shipping and receiving."""
        return (self.quantity_shipped or 0) - (self.quantity_received or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_transfer_id": self.stock_transfer_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity_requested": self.quantity_requested,
            "quantity_shipped": self.quantity_shipped,
            "quantity_received": self.quantity_received,
            "quantity_shortage": self.quantity_shortage,
            "unit_cost": money_str(self.unit_cost),
            "total_cost": money_str(self.total_cost),
            "notes": self.notes,
        }
