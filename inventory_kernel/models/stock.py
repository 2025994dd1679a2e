"""
Module: inventory_kernel.models.stock
Responsibility: ORM persistence for stock rows and the append-only
    adjustment ledger that explains every quantity they ever held.
Architecture position: Kernel > Models.  May import from db/ and domain value
    types.  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - One stock row per (item_id, location_id) (uq_stock_item_location).
    - quantity >= 0 and min_quantity >= 0 (CHECK constraints).
    - quantity == sum(delta) over the stock's adjustments, because every
      quantity change is paired with a new adjustment in the same flush
      (before_flush listener in db/immutability.py).
    - Adjustments are immutable from creation (ORM listeners).
    - Adjustment seq is strictly increasing per stock (uq_adjustment_stock_seq);
      it is allocated from Stock.ledger_seq while the stock is locked.

Failure modes:
    - IntegrityError on a duplicate pair or a negative quantity that bypassed
      the service layer.
    - ImmutabilityViolationError on UPDATE/DELETE of an adjustment, or on an
      unpaired quantity change.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TimestampedBase, UUIDString
from inventory_kernel.domain.adjustment_type import StockAdjustmentType


class Stock(TimestampedBase):
    """
    Quantity on hand for one item at one location.

    Contract:
        quantity is only ever changed by StockLedger, which writes a
        StockAdjustment with matching quantity_after in the same flush.

    Guarantees:
        - Unique per (item_id, location_id).
        - quantity and min_quantity are never negative.

    Non-goals:
        - No relationship to adjustments is mapped on this side.  Removing a
          stock relies on the database ON DELETE CASCADE, so the ORM never
          issues UPDATE or DELETE against adjustment rows.
    """

    __tablename__ = "stock"

    __table_args__ = (
        UniqueConstraint("item_id", "location_id", name="uq_stock_item_location"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
        CheckConstraint("min_quantity >= 0", name="ck_stock_min_quantity_non_negative"),
        Index("idx_stock_location", "location_id"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
    )

    location_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0"),
    )

    # Low-stock threshold
    min_quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0"),
    )

    latest_purchase_price: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2),
        nullable=True,
    )

    latest_purchase_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Last adjustment seq handed out for this stock
    ledger_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def pair(self) -> tuple[str, str]:
        """The (item_id, location_id) lock key as strings."""
        return (str(self.item_id), str(self.location_id))

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_quantity

    def __repr__(self) -> str:
        return f"<Stock {self.item_id}@{self.location_id} qty={self.quantity}>"


class StockAdjustment(Base):
    """
    One immutable entry in a stock's quantity ledger.

    Contract:
        delta == quantity_after - quantity_before.

    Guarantees:
        - Never updated or deleted through the ORM.
        - quantity_after >= 0.
    """

    __tablename__ = "stock_adjustments"

    __table_args__ = (
        UniqueConstraint("stock_id", "seq", name="uq_adjustment_stock_seq"),
        CheckConstraint("quantity_after >= 0", name="ck_adjustment_after_non_negative"),
        Index("idx_adjustment_stock", "stock_id"),
    )

    stock_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Position in the stock's ledger, 1-based
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    type: Mapped[StockAdjustmentType] = mapped_column(String(20), nullable=False)

    quantity_before: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    quantity_after: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    delta: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    stock: Mapped[Stock] = relationship(Stock)

    def __repr__(self) -> str:
        return (
            f"<StockAdjustment {self.type} {self.quantity_before}->"
            f"{self.quantity_after}>"
        )
