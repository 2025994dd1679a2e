"""Read-only selectors returning frozen DTOs."""

from inventory_kernel.selectors.document_selector import (
    DocumentSelector,
    PurchaseRecordDTO,
    UsageRecordDTO,
)
from inventory_kernel.selectors.stock_selector import LedgerDiscrepancy, StockSelector

__all__ = [
    "DocumentSelector",
    "PurchaseRecordDTO",
    "UsageRecordDTO",
    "StockSelector",
    "LedgerDiscrepancy",
]
