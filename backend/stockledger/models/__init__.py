from .catalog import Store, Category, Supplier, Product, User
from .inventory import (
    InventoryRecord,
    StockMovement,
    DocumentSequence,
    MovementType,
    Origin,
    OriginKind,
)
from .purchasing import PurchaseOrder, PurchaseOrderItem, PurchaseOrderReceiveHistory
from .adjustments import StockAdjustment, StockAdjustmentItem
from .transfers import StockTransfer, StockTransferItem

__all__ = [
    'Store', 'Category', 'Supplier', 'Product', 'User',
    'InventoryRecord', 'StockMovement', 'DocumentSequence',
    'MovementType', 'Origin', 'OriginKind',
    'PurchaseOrder', 'PurchaseOrderItem', 'PurchaseOrderReceiveHistory',
    'StockAdjustment', 'StockAdjustmentItem',
    'StockTransfer', 'StockTransferItem',
]
