"""
Module: inventory_kernel.selectors.document_selector
Responsibility: Read-only access to purchase and usage records and their
    lines, converted to frozen DTOs.  Every query re-reads rows
    (populate_existing) so a reused session never reports a stale status.
Architecture position: Kernel > Selectors.

Ordering:
    Listings are newest document date first, then newest created_at.
    Lines are ordered by line_no.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from inventory_kernel.models.document import DocumentStatus
from inventory_kernel.models.purchase import PurchaseRecord
from inventory_kernel.models.usage import UsageRecord
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PurchaseLineDTO:
    id: UUID
    line_no: int
    item_id: UUID
    location_id: UUID
    quantity: Decimal
    unit_price: Decimal | None
    total_price: Decimal | None
    expiry_date: date | None
    remarks: str | None


@dataclass(frozen=True)
class PurchaseRecordDTO:
    id: UUID
    code: str
    status: DocumentStatus
    purchase_date: date
    created_by_id: UUID
    store_name: str | None
    store_type: str | None
    remarks: str | None
    total_amount: Decimal
    confirmed_by_id: UUID | None
    confirmed_at: datetime | None
    lines: tuple[PurchaseLineDTO, ...]

    @classmethod
    def from_model(cls, record: PurchaseRecord) -> "PurchaseRecordDTO":
        return cls(
            id=record.id,
            code=record.code,
            status=DocumentStatus(record.status),
            purchase_date=record.purchase_date,
            created_by_id=record.created_by_id,
            store_name=record.store_name,
            store_type=record.store_type,
            remarks=record.remarks,
            total_amount=record.total_amount,
            confirmed_by_id=record.confirmed_by_id,
            confirmed_at=record.confirmed_at,
            lines=tuple(
                PurchaseLineDTO(
                    id=line.id,
                    line_no=line.line_no,
                    item_id=line.item_id,
                    location_id=line.location_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                    expiry_date=line.expiry_date,
                    remarks=line.remarks,
                )
                for line in record.items
            ),
        )


@dataclass(frozen=True)
class UsageLineDTO:
    id: UUID
    line_no: int
    item_id: UUID
    location_id: UUID
    quantity: Decimal
    remarks: str | None


@dataclass(frozen=True)
class UsageRecordDTO:
    id: UUID
    code: str
    status: DocumentStatus
    usage_date: date
    type: str
    created_by_id: UUID
    remarks: str | None
    confirmed_by_id: UUID | None
    confirmed_at: datetime | None
    lines: tuple[UsageLineDTO, ...]

    @classmethod
    def from_model(cls, record: UsageRecord) -> "UsageRecordDTO":
        return cls(
            id=record.id,
            code=record.code,
            status=DocumentStatus(record.status),
            usage_date=record.usage_date,
            type=getattr(record.type, "value", record.type),
            created_by_id=record.created_by_id,
            remarks=record.remarks,
            confirmed_by_id=record.confirmed_by_id,
            confirmed_at=record.confirmed_at,
            lines=tuple(
                UsageLineDTO(
                    id=line.id,
                    line_no=line.line_no,
                    item_id=line.item_id,
                    location_id=line.location_id,
                    quantity=line.quantity,
                    remarks=line.remarks,
                )
                for line in record.items
            ),
        )


class DocumentSelector(BaseSelector):
    """Queries over purchase and usage records."""

    def get_purchase_record(self, record_id: UUID) -> PurchaseRecordDTO | None:
        record = self.session.execute(
            select(PurchaseRecord)
            .where(PurchaseRecord.id == record_id)
            .options(selectinload(PurchaseRecord.items))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return PurchaseRecordDTO.from_model(record) if record is not None else None

    def list_purchase_records(
        self,
        status: DocumentStatus | None = None,
    ) -> list[PurchaseRecordDTO]:
        stmt = select(PurchaseRecord).options(selectinload(PurchaseRecord.items))
        if status is not None:
            stmt = stmt.where(PurchaseRecord.status == status)
        stmt = stmt.order_by(
            PurchaseRecord.purchase_date.desc(),
            PurchaseRecord.created_at.desc(),
            PurchaseRecord.code,
        ).execution_options(populate_existing=True)
        return [PurchaseRecordDTO.from_model(r) for r in self.session.execute(stmt).scalars()]

    def get_usage_record(self, record_id: UUID) -> UsageRecordDTO | None:
        record = self.session.execute(
            select(UsageRecord)
            .where(UsageRecord.id == record_id)
            .options(selectinload(UsageRecord.items))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return UsageRecordDTO.from_model(record) if record is not None else None

    def list_usage_records(
        self,
        status: DocumentStatus | None = None,
    ) -> list[UsageRecordDTO]:
        stmt = select(UsageRecord).options(selectinload(UsageRecord.items))
        if status is not None:
            stmt = stmt.where(UsageRecord.status == status)
        stmt = stmt.order_by(
            UsageRecord.usage_date.desc(),
            UsageRecord.created_at.desc(),
            UsageRecord.code,
        ).execution_options(populate_existing=True)
        return [UsageRecordDTO.from_model(r) for r in self.session.execute(stmt).scalars()]
