from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_iso_date, to_utc_z


ADJUSTMENT_STATUS_DRAFT = "draft"
ADJUSTMENT_STATUS_APPROVED = "approved"
ADJUSTMENT_STATUS_REJECTED = "rejected"

ADJUSTMENT_TYPE_INCREASE = "increase"
ADJUSTMENT_TYPE_DECREASE = "decrease"
ADJUSTMENT_TYPES = (ADJUSTMENT_TYPE_INCREASE, ADJUSTMENT_TYPE_DECREASE)

ADJUSTMENT_REASONS = {
    "stock_opname": "Stock Opname",
    "damaged_goods": "Damaged Goods",
    "expired_goods": "Expired Goods",
    "lost_goods": "Lost Goods",
    "found_goods": "Found Goods",
    "correction": "Data Correction",
    "supplier_return": "Supplier Return",
    "customer_return": "Customer Return",
    "other": "Other",
}


class StockAdjustment(db.Model):
    """
    Manual stock correction document (damage, loss, found goods, stock take).

    LIFECYCLE: draft -> approved | rejected (both terminal).
    Nothing touches inventory until approval.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.Index("ix_stock_adjustments_store_date", "store_id", "adjustment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    adjustment_number = db.Column(db.String(32), nullable=False, unique=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    adjustment_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ADJUSTMENT_STATUS_DRAFT, index=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    total_value_impact = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store")
    items = db.relationship(
        "StockAdjustmentItem",
        backref="stock_adjustment",
        cascade="all, delete-orphan",
        order_by="StockAdjustmentItem.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def formatted_reason(self) -> str:
        return ADJUSTMENT_REASONS.get(self.reason, self.reason)

    def can_be_edited(self) -> bool:
        return self.status == ADJUSTMENT_STATUS_DRAFT

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "adjustment_number": self.adjustment_number,
            "store_id": self.store_id,
            "created_by": self.created_by,
            "type": self.type,
            "reason": self.reason,
            "formatted_reason": self.formatted_reason,
            "adjustment_date": to_iso_date(self.adjustment_date),
            "notes": self.notes,
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "total_value_impact": money_str(self.total_value_impact),
            "items_count": len(self.items),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class StockAdjustmentItem(db.Model):
    """
    One adjusted product.

    current_quantity and new_quantity are a snapshot taken when the draft
    was written; approval re-checks them against a locked read.
    """
    __tablename__ = "stock_adjustment_items"
    __table_args__ = (
        db.CheckConstraint("new_quantity >= 0", name="ck_adjustment_items_new_quantity_non_negative"),
        db.CheckConstraint("adjusted_quantity <> 0", name="ck_adjustment_items_non_zero"),
        db.Index("ix_adjustment_items_adjustment_product", "stock_adjustment_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_adjustment_id = db.Column(db.Integer, db.ForeignKey("stock_adjustments.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    current_quantity = db.Column(db.Integer, nullable=False)
    adjusted_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    unit_cost = db.Column(db.Numeric(15, 2), nullable=False)
    total_value_impact = db.Column(db.Numeric(15, 2), nullable=False)

    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_adjustment_id": self.stock_adjustment_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "current_quantity": self.current_quantity,
            "adjusted_quantity": self.adjusted_quantity,
            "new_quantity": self.new_quantity,
            "unit_cost": money_str(self.unit_cost),
            "total_value_impact": money_str(self.total_value_impact),
            "notes": self.notes,
        }
