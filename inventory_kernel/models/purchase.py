"""
Module: inventory_kernel.models.purchase
Responsibility: ORM persistence for purchase records (stock intake
    documents) and their lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    sibling model modules only.

Invariants enforced:
    - code is unique across purchase records.
    - Line quantity > 0 (CHECK constraint).
    - Once status leaves draft the record and its lines are immutable
      (ORM listeners in db/immutability.py).
    - Lines are owned by the record: removed with it (ORM cascade and
      ON DELETE CASCADE).
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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import TimestampedBase, UUIDString
from inventory_kernel.models.document import DocumentStatus


class PurchaseRecord(TimestampedBase):
    """
    A purchase (stock intake) document.

    Contract:
        Confirming the record credits every line's quantity to the stock
        row of its (item, location) pair, creating the row when absent.

    Guarantees:
        - total_amount is the sum of line total_price values, recomputed by
          the service whenever lines change.
    """

    __tablename__ = "purchase_records"

    __table_args__ = (
        Index("idx_purchase_status", "status"),
        Index("idx_purchase_date", "purchase_date"),
    )

    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    status: Mapped[DocumentStatus] = mapped_column(
        String(16),
        nullable=False,
        default=DocumentStatus.DRAFT,
    )

    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_by_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    store_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    store_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0"),
    )

    confirmed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    items: Mapped[list["PurchaseRecordItem"]] = relationship(
        "PurchaseRecordItem",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="PurchaseRecordItem.line_no",
    )

    @property
    def is_draft(self) -> bool:
        return self.status == DocumentStatus.DRAFT

    def __repr__(self) -> str:
        return f"<PurchaseRecord {self.code} ({self.status})>"


class PurchaseRecordItem(TimestampedBase):
    """One purchased article on a purchase record."""

    __tablename__ = "purchase_record_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_purchase_item_quantity_positive"),
        Index("idx_purchase_item_record", "record_id"),
    )

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_records.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

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

    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    record: Mapped[PurchaseRecord] = relationship(
        PurchaseRecord,
        back_populates="items",
    )

    @property
    def pair(self) -> tuple[str, str]:
        return (str(self.item_id), str(self.location_id))

    def __repr__(self) -> str:
        return f"<PurchaseRecordItem #{self.line_no} {self.item_id} x{self.quantity}>"
