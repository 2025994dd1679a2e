"""
DocumentService -- shared draft-document behaviour.

Responsibility:
    Everything purchase and usage records have in common: line and
    reference validation, code uniqueness, removal, cancellation and
    confirmation (delegated to ConfirmationWorkflow).

Architecture position:
    Kernel > Services.  Subclassed by PurchaseRecordService and
    UsageRecordService, which own the type-specific create/update fields.
"""

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.domain.quantities import round_quantity
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.exceptions import DuplicateCodeError, InvalidLineError, ValidationError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.selectors.document_selector import DocumentSelector
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.confirmation import ConfirmationWorkflow, LineApplier
from inventory_kernel.services.reference_resolver import (
    ReferenceResolver,
    SqlReferenceResolver,
)
from inventory_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.documents")

MAX_CODE_LENGTH = 32


class DocumentService(BaseService):
    """
    Base for draft-document services.

    Contract:
        Subclasses set ``model`` and ``applier_class`` and implement
        ``create()`` / ``update()``.  Every write flushes; none commits.
    """

    model: type
    applier_class: type[LineApplier]

    def __init__(
        self,
        session: Session,
        resolver: ReferenceResolver | None = None,
        ledger: StockLedger | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._resolver = resolver or SqlReferenceResolver(session)
        self._ledger = ledger or StockLedger(session, self._resolver, clock=self._clock)
        self._workflow = ConfirmationWorkflow(
            session,
            self.model,
            self.applier_class(),
            ledger=self._ledger,
            clock=self._clock,
        )
        self._selector = DocumentSelector(session)

    @property
    def document_type(self) -> str:
        return self._workflow.document_type

    # -- lifecycle ------------------------------------------------------------

    def remove(self, document_id: UUID | str) -> None:
        """
        Delete a draft record and its lines.

        Raises:
            DocumentNotFoundError, InvalidStateError.
        """
        record = self._workflow.load(document_id, for_update=True)
        self._workflow.require(record, "delete")
        self.session.delete(record)
        self.session.flush()
        logger.info(
            "document_removed",
            extra={"document_type": self.document_type, "document_id": str(record.id)},
        )

    def cancel(
        self,
        document_id: UUID | str,
        actor_id: UUID | str | None = None,
        remarks: str | None = None,
    ):
        return self._workflow.cancel(document_id, actor_id=actor_id, remarks=remarks)

    def confirm(
        self,
        document_id: UUID | str,
        confirmer_id: UUID | str | None = None,
        remarks: str | None = None,
    ):
        return self._workflow.confirm(document_id, confirmer_id=confirmer_id, remarks=remarks)

    # -- helpers for subclasses -----------------------------------------------

    def _load_draft(self, document_id: UUID | str, action: str):
        record = self._workflow.load(document_id, for_update=True)
        self._workflow.require(record, action)
        return record

    def _validate_code(self, code: str, exclude_id: UUID | None = None) -> str:
        code = (code or "").strip()
        if not code or len(code) > MAX_CODE_LENGTH:
            raise ValidationError(f"Document code must be 1-{MAX_CODE_LENGTH} characters")
        stmt = select(self.model.id).where(self.model.code == code)
        if exclude_id is not None:
            stmt = stmt.where(self.model.id != exclude_id)
        if self.session.execute(stmt).first() is not None:
            raise DuplicateCodeError(self.document_type, code)
        return code

    def _validate_lines(self, lines: Sequence) -> list[Decimal]:
        """
        Check the line set and every line's references.

        Returns:
            The rounded quantity of each line, in order.

        Raises:
            InvalidLineError: No lines, or a quantity that is not positive.
            UnknownReferenceError: Unknown item or location.
        """
        if not lines:
            raise InvalidLineError("at least one line is required")
        quantities = []
        for line_no, line in enumerate(lines, start=1):
            try:
                quantity = round_quantity(line.quantity)
            except ValueError:
                raise InvalidLineError("quantity is not a number", line_no) from None
            if quantity <= 0:
                raise InvalidLineError("quantity must be greater than zero", line_no)
            self._resolver.resolve_item(line.item_id)
            self._resolver.resolve_location(line.location_id)
            quantities.append(quantity)
        return quantities

    def _flush_new(self, record) -> None:
        """Insert a new record; a code taken concurrently becomes DuplicateCodeError."""
        savepoint = self.session.begin_nested()
        try:
            self.session.add(record)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateCodeError(self.document_type, record.code) from exc

    def _log_saved(self, event: str, record) -> None:
        with LogContext.bind(document_id=record.id):
            logger.info(
                event,
                extra={
                    "document_type": self.document_type,
                    "code": record.code,
                    "line_count": len(record.items),
                },
            )