"""ORM models for the inventory kernel."""

from inventory_kernel.models.document import DocumentStatus
from inventory_kernel.models.purchase import PurchaseRecord, PurchaseRecordItem
from inventory_kernel.models.reference import Item, Location, User
from inventory_kernel.models.stock import Stock, StockAdjustment, StockAdjustmentType
from inventory_kernel.models.usage import UsageRecord, UsageRecordItem, UsageRecordType

__all__ = [
    "DocumentStatus",
    "Item",
    "Location",
    "User",
    "Stock",
    "StockAdjustment",
    "StockAdjustmentType",
    "PurchaseRecord",
    "PurchaseRecordItem",
    "UsageRecord",
    "UsageRecordItem",
    "UsageRecordType",
]
