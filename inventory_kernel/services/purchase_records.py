"""
PurchaseRecordService -- create, edit and confirm purchase records.

Responsibility:
    Draft lifecycle of a purchase record: create with lines, patch header
    fields, replace the line set, remove, cancel, and confirm (which
    credits stock through PurchaseLineApplier).

Architecture position:
    Kernel > Services.  Builds on DocumentService.

Invariants enforced:
    - A record always has at least one line with quantity > 0.
    - total_amount equals the sum of the line totals; it is recomputed
      whenever the line set changes.
    - Only draft records may be edited or removed.

Failure modes:
    - DuplicateCodeError, InvalidLineError, UnknownReferenceError,
      UnknownActorError on create/update.
    - InvalidStateError when the record is no longer draft.
    - DocumentNotFoundError for an unknown id.
"""

from decimal import Decimal
from uuid import UUID

from inventory_kernel.domain.quantities import round_optional
from inventory_kernel.domain.dtos import (
    CreatePurchaseRecordRequest,
    PurchaseLineSpec,
    UpdatePurchaseRecordRequest,
)
from inventory_kernel.exceptions import DocumentNotFoundError
from inventory_kernel.models.document import DocumentStatus
from inventory_kernel.models.purchase import PurchaseRecord, PurchaseRecordItem
from inventory_kernel.selectors.document_selector import PurchaseRecordDTO
from inventory_kernel.services.base import coerce_uuid
from inventory_kernel.services.confirmation import PurchaseLineApplier
from inventory_kernel.services.document_base import DocumentService


class PurchaseRecordService(DocumentService):
    """
    Purchase record operations.

    Contract:
        Records are created as draft.  Confirmation is all-or-nothing:
        either every line is credited to stock or none is.
    """

    model = PurchaseRecord
    applier_class = PurchaseLineApplier

    def create(self, request: CreatePurchaseRecordRequest) -> PurchaseRecord:
        creator = self._resolver.resolve_user(request.created_by_id)
        code = self._validate_code(request.code)
        quantities = self._validate_lines(request.items)

        record = PurchaseRecord(
            code=code,
            status=DocumentStatus.DRAFT,
            purchase_date=request.purchase_date,
            created_by_id=creator.id,
            store_name=request.store_name,
            store_type=request.store_type,
            remarks=request.remarks,
            total_amount=Decimal("0.00"),
        )
        self._set_lines(record, request.items, quantities)
        self._flush_new(record)
        self._log_saved("purchase_record_created", record)
        return record

    def update(
        self,
        document_id: UUID | str,
        request: UpdatePurchaseRecordRequest,
    ) -> PurchaseRecord:
        """
        Patch a draft purchase record.

        A non-None ``items`` replaces every line and recomputes
        total_amount; header fields left as None are unchanged.
        """
        record = self._load_draft(document_id, "update")

        if request.code is not None:
            record.code = self._validate_code(request.code, exclude_id=record.id)
        if request.purchase_date is not None:
            record.purchase_date = request.purchase_date
        if request.store_name is not None:
            record.store_name = request.store_name
        if request.store_type is not None:
            record.store_type = request.store_type
        if request.remarks is not None:
            record.remarks = request.remarks
        if request.items is not None:
            quantities = self._validate_lines(request.items)
            self._set_lines(record, request.items, quantities)

        self.session.flush()
        self._log_saved("purchase_record_updated", record)
        return record

    def get(self, document_id: UUID | str) -> PurchaseRecordDTO:
        try:
            key = coerce_uuid(document_id)
        except ValueError:
            raise DocumentNotFoundError(self.document_type, str(document_id)) from None
        dto = self._selector.get_purchase_record(key)
        if dto is None:
            raise DocumentNotFoundError(self.document_type, str(document_id))
        return dto

    def list_records(self, status: DocumentStatus | None = None) -> list[PurchaseRecordDTO]:
        return self._selector.list_purchase_records(status)

    @staticmethod
    def _set_lines(
        record: PurchaseRecord,
        specs: tuple[PurchaseLineSpec, ...],
        quantities: list[Decimal],
    ) -> None:
        lines = []
        total = Decimal("0.00")
        for line_no, (spec, quantity) in enumerate(zip(specs, quantities), start=1):
            unit_price = round_optional(spec.unit_price)
            total_price = round_optional(spec.total_price)
            if total_price is None and unit_price is not None:
                total_price = spec.line_total()
            lines.append(
                PurchaseRecordItem(
                    line_no=line_no,
                    item_id=coerce_uuid(spec.item_id),
                    location_id=coerce_uuid(spec.location_id),
                    quantity=quantity,
                    unit_price=unit_price,
                    total_price=total_price,
                    expiry_date=spec.expiry_date,
                    remarks=spec.remarks,
                )
            )
            total += spec.line_total()
        record.items = lines
        record.total_amount = total
