"""
DTOs -- immutable request and snapshot objects.

Responsibility:
    The data structures that cross the service boundary: stock creation and
    patch requests, document line specs, document create/update requests,
    and the read-only StockSnapshot handed to the low-stock / expiry scanner.

Architecture position:
    Kernel > Domain -- zero I/O.  ``from_model()`` converters are called only
    from the selector layer.

Conventions:
    - Numeric fields accept Decimal, int or str; services round them to two
      decimal places before use.
    - On patch / update requests, None means "leave unchanged".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from inventory_kernel.domain.quantities import round_optional, round_quantity

if TYPE_CHECKING:
    from inventory_kernel.models.stock import Stock as StockModel

Number = Decimal | int | str


# ---------------------------------------------------------------------------
# Stock requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateStockRequest:
    """Open a stock row for an (item, location) pair."""

    item_id: UUID
    location_id: UUID
    quantity: Number = Decimal("0")
    min_quantity: Number = Decimal("0")
    latest_purchase_price: Number | None = None
    latest_purchase_date: date | None = None
    expiry_date: date | None = None
    memo: str | None = None
    actor_id: UUID | None = None


@dataclass(frozen=True)
class StockPatch:
    """Partial update of a stock row.  Quantity changes are audited."""

    quantity: Number | None = None
    min_quantity: Number | None = None
    latest_purchase_price: Number | None = None
    latest_purchase_date: date | None = None
    expiry_date: date | None = None
    memo: str | None = None


@dataclass(frozen=True)
class StockSeed:
    """Attributes for a stock row opened by purchase confirmation."""

    latest_purchase_price: Decimal | None = None
    latest_purchase_date: date | None = None
    expiry_date: date | None = None
    memo: str | None = None


# ---------------------------------------------------------------------------
# Document lines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PurchaseLineSpec:
    item_id: UUID
    location_id: UUID
    quantity: Number
    unit_price: Number | None = None
    total_price: Number | None = None
    expiry_date: date | None = None
    remarks: str | None = None

    def line_total(self) -> Decimal:
        """
        Explicit total_price, else unit_price x quantity, else zero.

        Rounded to two decimal places.
        """
        if self.total_price is not None:
            return round_quantity(self.total_price)
        unit_price = round_optional(self.unit_price)
        if unit_price is not None:
            return round_quantity(unit_price * round_quantity(self.quantity))
        return Decimal("0.00")


@dataclass(frozen=True)
class UsageLineSpec:
    item_id: UUID
    location_id: UUID
    quantity: Number
    remarks: str | None = None


# ---------------------------------------------------------------------------
# Document requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreatePurchaseRecordRequest:
    code: str
    purchase_date: date
    created_by_id: UUID
    items: tuple[PurchaseLineSpec, ...]
    store_name: str | None = None
    store_type: str | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class UpdatePurchaseRecordRequest:
    """Fields left as None keep their value; ``items`` replaces all lines."""

    code: str | None = None
    purchase_date: date | None = None
    store_name: str | None = None
    store_type: str | None = None
    remarks: str | None = None
    items: tuple[PurchaseLineSpec, ...] | None = None


@dataclass(frozen=True)
class CreateUsageRecordRequest:
    code: str
    usage_date: date
    created_by_id: UUID
    items: tuple[UsageLineSpec, ...]
    type: str = "daily"
    remarks: str | None = None


@dataclass(frozen=True)
class UpdateUsageRecordRequest:
    """Fields left as None keep their value; ``items`` replaces all lines."""

    code: str | None = None
    usage_date: date | None = None
    type: str | None = None
    remarks: str | None = None
    items: tuple[UsageLineSpec, ...] | None = None


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockSnapshot:
    """
    Point-in-time view of one stock row.

    Contract:
        Detached from the session; safe to hand to the scanner or any other
        reader outside the transaction.
    """

    stock_id: UUID
    item_id: UUID
    location_id: UUID
    quantity: Decimal
    min_quantity: Decimal
    expiry_date: date | None = None

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_quantity

    def expires_by(self, cutoff: date) -> bool:
        """True when the stock has an expiry date on or before ``cutoff``."""
        return self.expiry_date is not None and self.expiry_date <= cutoff

    @classmethod
    def from_model(cls, stock: StockModel) -> StockSnapshot:
        return cls(
            stock_id=stock.id,
            item_id=stock.item_id,
            location_id=stock.location_id,
            quantity=round_quantity(stock.quantity),
            min_quantity=round_quantity(stock.min_quantity),
            expiry_date=stock.expiry_date,
        )
