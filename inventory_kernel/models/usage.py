"""
Module: inventory_kernel.models.usage
Responsibility: ORM persistence for usage records (consumption documents)
    and their lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    sibling model modules only.

Invariants enforced:
    - code is unique across usage records.
    - Line quantity > 0 (CHECK constraint).
    - Once status leaves draft the record and its lines are immutable
      (ORM listeners in db/immutability.py).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
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


class UsageRecordType(str, Enum):
    """What the consumed stock was used for."""

    DAILY = "daily"
    EXPIRED = "expired"
    DAMAGED = "damaged"
    GIFT = "gift"
    OTHER = "other"


class UsageRecord(TimestampedBase):
    """
    A usage (consumption) document.

    Contract:
        Confirming the record debits every line's quantity from the existing
        stock row of its (item, location) pair.  All lines succeed or none do.
    """

    __tablename__ = "usage_records"

    __table_args__ = (
        Index("idx_usage_status", "status"),
        Index("idx_usage_date", "usage_date"),
    )

    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    status: Mapped[DocumentStatus] = mapped_column(
        String(16),
        nullable=False,
        default=DocumentStatus.DRAFT,
    )

    usage_date: Mapped[date] = mapped_column(Date, nullable=False)

    type: Mapped[UsageRecordType] = mapped_column(
        String(16),
        nullable=False,
        default=UsageRecordType.DAILY,
    )

    created_by_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    confirmed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    items: Mapped[list["UsageRecordItem"]] = relationship(
        "UsageRecordItem",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="UsageRecordItem.line_no",
    )

    @property
    def is_draft(self) -> bool:
        return self.status == DocumentStatus.DRAFT

    def __repr__(self) -> str:
        return f"<UsageRecord {self.code} ({self.status})>"


class UsageRecordItem(TimestampedBase):
    """One consumed article on a usage record."""

    __tablename__ = "usage_record_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_usage_item_quantity_positive"),
        Index("idx_usage_item_record", "record_id"),
        Index("idx_usage_item_pair", "item_id", "location_id"),
    )

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("usage_records.id", ondelete="CASCADE"),
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

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    record: Mapped[UsageRecord] = relationship(
        UsageRecord,
        back_populates="items",
    )

    @property
    def pair(self) -> tuple[str, str]:
        return (str(self.item_id), str(self.location_id))

    def __repr__(self) -> str:
        return f"<UsageRecordItem #{self.line_no} {self.item_id} x{self.quantity}>"
