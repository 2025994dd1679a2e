"""
ConfirmationWorkflow -- atomic draft -> confirmed transition for documents.

Responsibility:
    Applies every line of a purchase or usage record to the stock ledger and
    flips the record to confirmed, all inside one savepoint.  The same
    workflow also performs the draft -> cancelled transition.

Architecture position:
    Kernel > Services.  Instantiated by PurchaseRecordService (with
    PurchaseLineApplier) and UsageRecordService (with UsageLineApplier).

Invariants enforced:
    - All or nothing: any failure rolls back the savepoint, so no stock row
      changes and the record stays draft.
    - Lock ordering: every distinct (item, location) pair of the record is
      locked in sorted order before any line is applied.
    - Post-lock status check: the record row is re-read (and locked on
      PostgreSQL) after the pair locks are held, so two concurrent
      confirmations of the same record cannot both apply.
    - Usage sufficiency is checked per pair against the aggregate of all
      lines for that pair.

Failure modes:
    - UnknownActorError (before anything is touched), DocumentNotFoundError,
      InvalidStateError, StockNotFoundError, InsufficientStockError,
      LockTimeoutError.  None are retried.
"""

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from inventory_kernel.domain.quantities import round_quantity
from inventory_kernel.domain.adjustment_type import StockAdjustmentType
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import StockSeed
from inventory_kernel.domain.workflow import DOCUMENT_WORKFLOW, Workflow
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    InsufficientStockError,
    InvalidStateError,
    StockNotFoundError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.document import DocumentStatus
from inventory_kernel.services.base import BaseService, coerce_uuid
from inventory_kernel.services.stock_ledger import StockLedger
from inventory_kernel.services.stock_locks import sorted_pairs

logger = get_logger("services.confirmation")

REASON_PURCHASE_CONFIRMED = "purchase_confirmed"
REASON_USAGE_CONFIRMED = "usage_confirmed"


class LineApplier(ABC):
    """How a confirmed document's lines change the stock ledger."""

    @abstractmethod
    def apply(
        self,
        ledger: StockLedger,
        record,
        confirmer_id: UUID | None,
        remarks: str | None,
    ) -> None:
        """Apply all lines; the caller already holds every pair lock."""


class PurchaseLineApplier(LineApplier):
    """
    Credits each purchased quantity, opening stock rows as needed.

    Missing rows are opened in lock order before any line is applied.  On
    PostgreSQL an absent pair has no row to lock; its unique-key insert is
    the lock, so inserts follow the same canonical order.
    """

    def apply(self, ledger, record, confirmer_id, remarks):
        first_lines = {}
        for line in record.items:
            first_lines.setdefault(line.pair, line)

        stocks = {}
        for pair in sorted_pairs(first_lines):
            line = first_lines[pair]
            stocks[pair] = ledger.ensure_stock(
                pair[0],
                pair[1],
                StockSeed(
                    latest_purchase_price=line.unit_price,
                    latest_purchase_date=record.purchase_date,
                    expiry_date=line.expiry_date,
                    memo=remarks,
                ),
            )

        for line in record.items:
            stock = ledger.adjust_quantity(
                stocks[line.pair].id,
                line.quantity,
                StockAdjustmentType.PURCHASE,
                reason=REASON_PURCHASE_CONFIRMED,
                remarks=remarks,
                actor_id=confirmer_id,
            )
            if line.unit_price is not None:
                stock.latest_purchase_price = line.unit_price
            stock.latest_purchase_date = record.purchase_date
            if line.expiry_date is not None:
                stock.expiry_date = line.expiry_date


class UsageLineApplier(LineApplier):
    """Debits each used quantity from an existing stock row."""

    def apply(self, ledger, record, confirmer_id, remarks):
        requested: OrderedDict[tuple[str, str], Decimal] = OrderedDict()
        for line in record.items:
            requested[line.pair] = requested.get(line.pair, Decimal("0")) + round_quantity(
                line.quantity
            )

        stocks = {}
        for pair, quantity in requested.items():
            stock = ledger.find_stock(*pair)
            if stock is None:
                raise StockNotFoundError(item_id=pair[0], location_id=pair[1])
            available = round_quantity(stock.quantity)
            if available < quantity:
                raise InsufficientStockError(pair[0], pair[1], str(available), str(quantity))
            stocks[pair] = stock

        for line in record.items:
            ledger.adjust_quantity(
                stocks[line.pair].id,
                -round_quantity(line.quantity),
                StockAdjustmentType.USAGE,
                reason=REASON_USAGE_CONFIRMED,
                remarks=remarks,
                actor_id=confirmer_id,
            )


class ConfirmationWorkflow(BaseService):
    """
    Draft-only lifecycle transitions for one document type.

    Contract:
        ``confirm()`` and ``cancel()`` flush inside the caller's transaction
        and release their savepoint on success.  The caller commits.

    Guarantees:
        - Not idempotent: confirming a confirmed record raises
          InvalidStateError and changes nothing.
    """

    def __init__(
        self,
        session: Session,
        model: type,
        applier: LineApplier,
        ledger: StockLedger | None = None,
        clock: Clock | None = None,
        workflow: Workflow = DOCUMENT_WORKFLOW,
    ):
        super().__init__(session)
        self._model = model
        self._applier = applier
        self._clock = clock or SystemClock()
        self._ledger = ledger or StockLedger(session, clock=self._clock)
        self._workflow = workflow

    @property
    def document_type(self) -> str:
        return self._model.__name__

    def load(self, document_id: UUID | str, *, for_update: bool = False):
        """
        Load a record with its lines.

        Raises:
            DocumentNotFoundError: No record has this id.
        """
        try:
            key = coerce_uuid(document_id)
        except ValueError:
            raise DocumentNotFoundError(self.document_type, str(document_id)) from None

        stmt = (
            select(self._model)
            .where(self._model.id == key)
            .options(selectinload(self._model.items))
            .execution_options(populate_existing=True)
        )
        if for_update:
            # Rendered as nothing on SQLite, where BEGIN IMMEDIATE already
            # serialises writers.
            stmt = stmt.with_for_update(of=self._model)
        record = self.session.execute(stmt).scalar_one_or_none()
        if record is None:
            raise DocumentNotFoundError(self.document_type, str(document_id))
        return record

    def require(self, record, action: str) -> None:
        """
        Raises:
            InvalidStateError: ``action`` is not allowed from the record's status.
        """
        if not self._workflow.allows(record.status, action):
            raise InvalidStateError(
                self.document_type,
                str(record.id),
                getattr(record.status, "value", record.status),
                action,
            )

    def confirm(
        self,
        document_id: UUID | str,
        confirmer_id: UUID | str | None = None,
        remarks: str | None = None,
    ):
        """
        Confirm a draft record and apply its lines to stock.

        Returns:
            The confirmed record.
        """
        started = time.monotonic()
        if confirmer_id is not None:
            self._ledger.resolver.resolve_user(confirmer_id)
            confirmer_id = coerce_uuid(confirmer_id)

        with LogContext.bind(document_id=document_id, actor_id=confirmer_id):
            logger.info("confirmation_started", extra={"document_type": self.document_type})
            try:
                with self.session.begin_nested():
                    record = self.load(document_id)
                    self.require(record, "confirm")

                    self._ledger.locks.lock_pairs(line.pair for line in record.items)
                    record = self.load(document_id, for_update=True)
                    self.require(record, "confirm")

                    self._applier.apply(self._ledger, record, confirmer_id, remarks)

                    record.status = DocumentStatus.CONFIRMED
                    if remarks is not None:
                        record.remarks = remarks
                    record.confirmed_by_id = confirmer_id
                    record.confirmed_at = self._clock.now()
                    self.session.flush()
            except Exception as exc:
                logger.warning(
                    "confirmation_failed",
                    extra={
                        "document_type": self.document_type,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                    },
                )
                raise

            logger.info(
                "confirmation_completed",
                extra={
                    "document_type": self.document_type,
                    "line_count": len(record.items),
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                },
            )
        return record

    def cancel(
        self,
        document_id: UUID | str,
        actor_id: UUID | str | None = None,
        remarks: str | None = None,
    ):
        """Move a draft record to cancelled.  Stock is not touched."""
        if actor_id is not None:
            self._ledger.resolver.resolve_user(actor_id)

        with LogContext.bind(document_id=document_id, actor_id=actor_id):
            record = self.load(document_id, for_update=True)
            self.require(record, "cancel")
            record.status = DocumentStatus.CANCELLED
            if remarks is not None:
                record.remarks = remarks
            self.session.flush()
            logger.info("document_cancelled", extra={"document_type": self.document_type})
        return record
