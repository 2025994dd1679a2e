"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.confirmation import (
    ConfirmationWorkflow,
    PurchaseLineApplier,
    UsageLineApplier,
)
from inventory_kernel.services.purchase_records import PurchaseRecordService
from inventory_kernel.services.reference_resolver import (
    ReferenceResolver,
    SqlReferenceResolver,
)
from inventory_kernel.services.stock_ledger import StockLedger
from inventory_kernel.services.stock_locks import StockLockManager
from inventory_kernel.services.usage_records import UsageRecordService, parse_usage_type

__all__ = [
    "ConfirmationWorkflow",
    "PurchaseLineApplier",
    "PurchaseRecordService",
    "ReferenceResolver",
    "SqlReferenceResolver",
    "StockLedger",
    "StockLockManager",
    "UsageLineApplier",
    "UsageRecordService",
    "parse_usage_type",
]
