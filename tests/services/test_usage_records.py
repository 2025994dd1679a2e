"""
UsageRecordService tests.

Verifies:
- usage type parsing and draft creation
- confirm debits stock per line, aggregated per pair for the check
- insufficient or missing stock fails the whole confirmation
- confirmed records refuse update / remove
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.adjustment_type import StockAdjustmentType
from inventory_kernel.domain.dtos import (
    CreateUsageRecordRequest,
    UpdateUsageRecordRequest,
    UsageLineSpec,
)
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    InsufficientStockError,
    InvalidLineError,
    InvalidStateError,
    StockNotFoundError,
    ValidationError,
)
from inventory_kernel.models.document import DocumentStatus
from inventory_kernel.models.usage import UsageRecordType
from inventory_kernel.services.usage_records import parse_usage_type


class TestParseUsageType:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("daily", UsageRecordType.DAILY),
            ("Expired", UsageRecordType.EXPIRED),
            (" damaged ", UsageRecordType.DAMAGED),
            (UsageRecordType.GIFT, UsageRecordType.GIFT),
        ],
    )
    def test_accepted(self, value, expected):
        assert parse_usage_type(value) is expected

    def test_unknown_rejected(self):
        with pytest.raises(ValidationError):
            parse_usage_type("stolen")


class TestCreateUsageRecord:
    def test_created_as_draft(self, usage_service, session, reference_data):
        record = usage_service.create(
            CreateUsageRecordRequest(
                code="US-001",
                usage_date=date(2024, 3, 2),
                created_by_id=reference_data.user_id,
                items=(
                    UsageLineSpec(reference_data.item_a, reference_data.loc_1, Decimal("2"), remarks="lunch"),
                ),
                type="damaged",
            )
        )
        session.commit()

        dto = usage_service.get(record.id)
        assert dto.status == DocumentStatus.DRAFT
        assert dto.type == "damaged"
        assert dto.lines[0].remarks == "lunch"

    def test_default_type_is_daily(self, make_usage, usage_service, reference_data):
        record = make_usage([(reference_data.item_a, reference_data.loc_1, "1")])
        assert usage_service.get(record.id).type == "daily"

    def test_negative_quantity_rejected(self, usage_service, reference_data):
        with pytest.raises(InvalidLineError):
            usage_service.create(
                CreateUsageRecordRequest(
                    code="US-NEG",
                    usage_date=date(2024, 3, 2),
                    created_by_id=reference_data.user_id,
                    items=(UsageLineSpec(reference_data.item_a, reference_data.loc_1, Decimal("-1")),),
                )
            )

    def test_draft_update_replaces_lines(self, make_usage, usage_service, session, reference_data):
        record = make_usage([(reference_data.item_a, reference_data.loc_1, "1")])
        usage_service.update(
            record.id,
            UpdateUsageRecordRequest(
                type="gift",
                items=(
                    UsageLineSpec(reference_data.item_b, reference_data.loc_1, Decimal("2")),
                    UsageLineSpec(reference_data.item_c, reference_data.loc_1, Decimal("3")),
                ),
            ),
        )
        session.commit()

        dto = usage_service.get(record.id)
        assert dto.type == "gift"
        assert [(line.line_no, line.item_id) for line in dto.lines] == [
            (1, reference_data.item_b),
            (2, reference_data.item_c),
        ]


class TestConfirmUsageRecord:
    def test_confirm_debits_stock(self, create_stock, make_usage, usage_service, ledger, session, reference_data):
        stock = create_stock(quantity="10")
        record = make_usage([(reference_data.item_a, reference_data.loc_1, "3")])

        usage_service.confirm(record.id, confirmer_id=reference_data.user_id)
        session.commit()

        assert ledger.get_stock(stock.id).quantity == Decimal("7.00")
        latest = ledger.list_adjustments(stock.id)[0]
        assert latest.type == StockAdjustmentType.USAGE
        assert latest.delta == Decimal("-3.00")
        assert latest.reason == "usage_confirmed"
        assert usage_service.get(record.id).status == DocumentStatus.CONFIRMED

    def test_insufficient_stock_changes_nothing(self, create_stock, make_usage, usage_service, ledger, session, reference_data):
        """Stock 6, usage asks 10: InsufficientStock, quantity stays 6, record stays draft."""
        stock = create_stock(quantity="6")
        record = make_usage([(reference_data.item_a, reference_data.loc_1, "10")])

        with pytest.raises(InsufficientStockError) as exc_info:
            usage_service.confirm(record.id)
        session.rollback()

        assert exc_info.value.available == "6.00"
        assert exc_info.value.requested == "10.00"
        assert ledger.get_stock(stock.id).quantity == Decimal("6.00")
        assert usage_service.get(record.id).status == DocumentStatus.DRAFT

    def test_partial_failure_applies_no_line(self, create_stock, make_usage, usage_service, ledger, session, reference_data):
        """Line 1 is satisfiable, line 2 is not: neither is applied."""
        first = create_stock(item_id=reference_data.item_a, quantity="5")
        second = create_stock(item_id=reference_data.item_b, quantity="1")
        record = make_usage(
            [
                (reference_data.item_a, reference_data.loc_1, "2"),
                (reference_data.item_b, reference_data.loc_1, "4"),
            ]
        )

        with pytest.raises(InsufficientStockError):
            usage_service.confirm(record.id)
        session.rollback()

        assert ledger.get_stock(first.id).quantity == Decimal("5.00")
        assert ledger.get_stock(second.id).quantity == Decimal("1.00")
        assert len(ledger.list_adjustments(first.id)) == 1
        assert usage_service.get(record.id).status == DocumentStatus.DRAFT

    def test_lines_on_same_pair_checked_together(self, create_stock, make_usage, usage_service, ledger, session, reference_data):
        stock = create_stock(quantity="5")
        record = make_usage(
            [
                (reference_data.item_a, reference_data.loc_1, "3"),
                (reference_data.item_a, reference_data.loc_1, "3"),
            ]
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            usage_service.confirm(record.id)
        session.rollback()

        assert exc_info.value.requested == "6.00"
        assert ledger.get_stock(stock.id).quantity == Decimal("5.00")

    def test_missing_stock_rejected(self, make_usage, usage_service, session, reference_data):
        record = make_usage([(reference_data.item_c, reference_data.loc_2, "1")])

        with pytest.raises(StockNotFoundError):
            usage_service.confirm(record.id)
        session.rollback()

        assert usage_service.get(record.id).status == DocumentStatus.DRAFT

    def test_failure_logged(self, create_stock, make_usage, usage_service, captured_logs, reference_data):
        create_stock(quantity="1")
        record = make_usage([(reference_data.item_a, reference_data.loc_1, "2")])

        with pytest.raises(InsufficientStockError):
            usage_service.confirm(record.id)

        failed = [r for r in captured_logs() if r["message"] == "confirmation_failed"]
        assert failed[0]["error_code"] == "INSUFFICIENT_STOCK"


class TestConfirmedUsageIsFrozen:
    def test_update_and_remove_rejected(self, create_stock, make_usage, usage_service, session, reference_data):
        create_stock(quantity="5")
        record = make_usage([(reference_data.item_a, reference_data.loc_1, "1")])
        usage_service.confirm(record.id)
        session.commit()

        with pytest.raises(InvalidStateError):
            usage_service.update(record.id, UpdateUsageRecordRequest(remarks="edit"))
        session.rollback()
        with pytest.raises(InvalidStateError):
            usage_service.remove(record.id)

    def test_unknown_record_on_confirm(self, usage_service):
        with pytest.raises(DocumentNotFoundError):
            usage_service.confirm(uuid4())

    def test_malformed_id_is_not_found(self, usage_service):
        with pytest.raises(DocumentNotFoundError):
            usage_service.get("not-a-uuid")
