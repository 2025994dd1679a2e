"""
UsageRecordService -- create, edit and confirm usage records.

Responsibility:
    Draft lifecycle of a usage (consumption) record.  Confirmation debits
    stock through UsageLineApplier, which refuses to take any pair below
    zero and applies nothing when one line fails.

Architecture position:
    Kernel > Services.  Builds on DocumentService.

Failure modes:
    - ValidationError for an unknown usage type.
    - InsufficientStockError / StockNotFoundError on confirm.
"""

from uuid import UUID

from inventory_kernel.domain.dtos import (
    CreateUsageRecordRequest,
    UpdateUsageRecordRequest,
    UsageLineSpec,
)
from inventory_kernel.exceptions import DocumentNotFoundError, ValidationError
from inventory_kernel.models.document import DocumentStatus
from inventory_kernel.models.usage import UsageRecord, UsageRecordItem, UsageRecordType
from inventory_kernel.selectors.document_selector import UsageRecordDTO
from inventory_kernel.services.base import coerce_uuid
from inventory_kernel.services.confirmation import UsageLineApplier
from inventory_kernel.services.document_base import DocumentService


def parse_usage_type(value: str | UsageRecordType) -> UsageRecordType:
    """
    Map a caller-supplied usage type onto UsageRecordType.

    Raises:
        ValidationError: Unknown type.
    """
    if isinstance(value, UsageRecordType):
        return value
    try:
        return UsageRecordType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in UsageRecordType)
        raise ValidationError(
            f"Unknown usage type {value!r}; expected one of: {allowed}"
        ) from None


class UsageRecordService(DocumentService):
    """Usage record operations.  Records are created as draft."""

    model = UsageRecord
    applier_class = UsageLineApplier

    def create(self, request: CreateUsageRecordRequest) -> UsageRecord:
        creator = self._resolver.resolve_user(request.created_by_id)
        code = self._validate_code(request.code)
        usage_type = parse_usage_type(request.type)
        quantities = self._validate_lines(request.items)

        record = UsageRecord(
            code=code,
            status=DocumentStatus.DRAFT,
            usage_date=request.usage_date,
            type=usage_type,
            created_by_id=creator.id,
            remarks=request.remarks,
        )
        record.items = self._build_lines(request.items, quantities)
        self._flush_new(record)
        self._log_saved("usage_record_created", record)
        return record

    def update(
        self,
        document_id: UUID | str,
        request: UpdateUsageRecordRequest,
    ) -> UsageRecord:
        record = self._load_draft(document_id, "update")

        if request.code is not None:
            record.code = self._validate_code(request.code, exclude_id=record.id)
        if request.usage_date is not None:
            record.usage_date = request.usage_date
        if request.type is not None:
            record.type = parse_usage_type(request.type)
        if request.remarks is not None:
            record.remarks = request.remarks
        if request.items is not None:
            quantities = self._validate_lines(request.items)
            record.items = self._build_lines(request.items, quantities)

        self.session.flush()
        self._log_saved("usage_record_updated", record)
        return record

    def get(self, document_id: UUID | str) -> UsageRecordDTO:
        try:
            key = coerce_uuid(document_id)
        except ValueError:
            raise DocumentNotFoundError(self.document_type, str(document_id)) from None
        dto = self._selector.get_usage_record(key)
        if dto is None:
            raise DocumentNotFoundError(self.document_type, str(document_id))
        return dto

    def list_records(self, status: DocumentStatus | None = None) -> list[UsageRecordDTO]:
        return self._selector.list_usage_records(status)

    @staticmethod
    def _build_lines(specs: tuple[UsageLineSpec, ...], quantities) -> list[UsageRecordItem]:
        return [
            UsageRecordItem(
                line_no=line_no,
                item_id=coerce_uuid(spec.item_id),
                location_id=coerce_uuid(spec.location_id),
                quantity=quantity,
                remarks=spec.remarks,
            )
            for line_no, (spec, quantity) in enumerate(zip(specs, quantities), start=1)
        ]
