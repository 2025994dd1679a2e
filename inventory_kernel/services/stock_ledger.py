"""
StockLedger -- the only writer of stock quantities.

Responsibility:
    Owns the Stock row per (item, location) pair and its append-only
    StockAdjustment trail.  Every quantity change goes through this service
    and is recorded as an adjustment in the same flush.

Architecture position:
    Kernel > Services.  Called directly by callers for manual stock work and
    by ConfirmationWorkflow for document confirmation.

Invariants enforced:
    - quantity == sum(delta) of the stock's adjustments, starting from 0.
    - No stock quantity and no adjustment quantity_after below zero; the
      check runs against the locked, freshly read quantity.
    - Adjustment seq increases by one per adjustment, allocated from the
      locked stock row (Stock.ledger_seq).
    - update_stock() takes the same pair lock as adjust_quantity().

Failure modes:
    - StockNotFoundError, UnknownReferenceError, UnknownActorError.
    - DuplicateStockPairError when the pair already has a stock row.
    - NegativeQuantityError; stock and ledger are left untouched.
    - InvalidAdjustmentTypeError for an unparseable type.
    - StockReferencedError when removing a stock a draft usage line needs.
    - LockTimeoutError from StockLockManager.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.domain.quantities import round_optional, round_quantity
from inventory_kernel.domain.adjustment_type import StockAdjustmentType, parse_adjustment_type
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import CreateStockRequest, StockPatch, StockSeed
from inventory_kernel.exceptions import (
    DuplicateStockPairError,
    NegativeQuantityError,
    StockNotFoundError,
    StockReferencedError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.document import DocumentStatus
from inventory_kernel.models.stock import Stock, StockAdjustment
from inventory_kernel.models.usage import UsageRecord, UsageRecordItem
from inventory_kernel.services.base import BaseService, coerce_uuid
from inventory_kernel.services.reference_resolver import (
    ReferenceResolver,
    SqlReferenceResolver,
)
from inventory_kernel.services.stock_locks import StockLockManager

logger = get_logger("services.stock_ledger")

REASON_INITIAL_CREATE = "initial_create"
REASON_MANUAL_UPDATE = "manual_update"

MAX_REASON_LENGTH = 64

_ZERO = Decimal("0.00")


class StockLedger(BaseService):
    """
    Stock quantity ledger.

    Contract:
        All writes flush within the caller's transaction; nothing is
        committed here.  Pair locks taken by a call stay held until that
        transaction ends.

    Guarantees:
        - A rejected call (any exception) leaves no stock or adjustment
          change behind in the session.
        - list_adjustments() returns newest first.

    Non-goals:
        - Moving a stock row to a different item or location.
        - Reference-data maintenance (items, locations, users).
    """

    def __init__(
        self,
        session: Session,
        resolver: ReferenceResolver | None = None,
        locks: StockLockManager | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._resolver = resolver or SqlReferenceResolver(session)
        self._locks = locks or StockLockManager(session)
        self._clock = clock or SystemClock()

    @property
    def locks(self) -> StockLockManager:
        return self._locks

    @property
    def resolver(self) -> ReferenceResolver:
        return self._resolver

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_stock(self, stock_id: UUID | str) -> Stock:
        """
        The stock row as the database has it now, re-read even when the
        session already holds it.

        Raises:
            StockNotFoundError: If no stock row has this id.
        """
        try:
            key = coerce_uuid(stock_id)
        except ValueError:
            raise StockNotFoundError(stock_id=str(stock_id)) from None
        stock = self.session.execute(
            select(Stock).where(Stock.id == key).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if stock is None:
            raise StockNotFoundError(stock_id=str(stock_id))
        return stock

    def find_stock(self, item_id: UUID | str, location_id: UUID | str) -> Stock | None:
        return self.session.execute(
            select(Stock)
            .where(
                Stock.item_id == coerce_uuid(item_id),
                Stock.location_id == coerce_uuid(location_id),
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_adjustments(self, stock_id: UUID | str) -> list[StockAdjustment]:
        """
        All adjustments of a stock, newest first.

        Newest is by ledger position (seq), which follows creation order
        even when several adjustments share a timestamp.
        """
        stock = self.get_stock(stock_id)
        return list(
            self.session.execute(
                select(StockAdjustment)
                .where(StockAdjustment.stock_id == stock.id)
                .order_by(StockAdjustment.seq.desc())
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_stock(self, request: CreateStockRequest) -> Stock:
        """
        Open a stock row and record its initial quantity.

        Writes one manual_audit adjustment from 0 to the initial quantity
        with reason "initial_create" and the memo as remarks.

        Raises:
            UnknownReferenceError: Unknown item or location.
            UnknownActorError: Unknown actor_id.
            NegativeQuantityError: Negative quantity or min_quantity.
            DuplicateStockPairError: The pair already has a stock row.
        """
        self._resolver.resolve_item(request.item_id)
        self._resolver.resolve_location(request.location_id)
        if request.actor_id is not None:
            self._resolver.resolve_user(request.actor_id)

        quantity = round_quantity(request.quantity)
        min_quantity = round_quantity(request.min_quantity)
        if quantity < 0:
            raise NegativeQuantityError(None, str(_ZERO), str(quantity))
        if min_quantity < 0:
            raise NegativeQuantityError(None, str(_ZERO), str(min_quantity))

        item_id = coerce_uuid(request.item_id)
        location_id = coerce_uuid(request.location_id)

        if self._locks.lock_pair(item_id, location_id) is not None:
            raise DuplicateStockPairError(str(item_id), str(location_id))

        stock = Stock(
            item_id=item_id,
            location_id=location_id,
            quantity=_ZERO,
            min_quantity=min_quantity,
            latest_purchase_price=round_optional(request.latest_purchase_price),
            latest_purchase_date=request.latest_purchase_date,
            expiry_date=request.expiry_date,
            memo=request.memo,
            ledger_seq=0,
        )

        # A concurrent creator on PostgreSQL is only stopped by the unique
        # constraint, so the insert runs in its own savepoint.
        savepoint = self.session.begin_nested()
        try:
            self.session.add(stock)
            self._append_adjustment(
                stock,
                quantity_after=quantity,
                adjustment_type=StockAdjustmentType.MANUAL_AUDIT,
                reason=REASON_INITIAL_CREATE,
                remarks=request.memo,
                actor_id=request.actor_id,
            )
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            logger.info(
                "stock_create_conflict",
                extra={"item_id": str(item_id), "location_id": str(location_id)},
            )
            raise DuplicateStockPairError(str(item_id), str(location_id)) from exc

        logger.info(
            "stock_created",
            extra={
                "stock_id": str(stock.id),
                "item_id": str(item_id),
                "location_id": str(location_id),
                "quantity": quantity,
            },
        )
        return stock

    def update_stock(
        self,
        stock_id: UUID | str,
        patch: StockPatch,
        actor_id: UUID | str | None = None,
    ) -> Stock:
        """
        Patch a stock row under its pair lock.

        A quantity change is recorded as a manual_audit adjustment with
        reason "manual_update"; other fields change without an adjustment.

        Raises:
            StockNotFoundError, UnknownActorError, NegativeQuantityError.
        """
        if actor_id is not None:
            self._resolver.resolve_user(actor_id)

        target_quantity = round_optional(patch.quantity)
        min_quantity = round_optional(patch.min_quantity)

        stock = self._lock_stock(stock_id)

        if target_quantity is not None and target_quantity < 0:
            raise NegativeQuantityError(
                str(stock.id), str(round_quantity(stock.quantity)), str(target_quantity)
            )
        if min_quantity is not None and min_quantity < 0:
            raise NegativeQuantityError(
                str(stock.id), str(round_quantity(stock.min_quantity)), str(min_quantity)
            )

        with LogContext.bind(stock_id=stock.id, actor_id=actor_id):
            if target_quantity is not None and target_quantity != round_quantity(stock.quantity):
                self._append_adjustment(
                    stock,
                    quantity_after=target_quantity,
                    adjustment_type=StockAdjustmentType.MANUAL_AUDIT,
                    reason=REASON_MANUAL_UPDATE,
                    remarks=patch.memo,
                    actor_id=actor_id,
                )

            if min_quantity is not None:
                stock.min_quantity = min_quantity
            if patch.latest_purchase_price is not None:
                stock.latest_purchase_price = round_quantity(patch.latest_purchase_price)
            if patch.latest_purchase_date is not None:
                stock.latest_purchase_date = patch.latest_purchase_date
            if patch.expiry_date is not None:
                stock.expiry_date = patch.expiry_date
            if patch.memo is not None:
                stock.memo = patch.memo

            self.session.flush()
            logger.info("stock_updated", extra={"quantity": stock.quantity})
        return stock

    def adjust_quantity(
        self,
        stock_id: UUID | str,
        delta: Decimal | int | str,
        type: StockAdjustmentType | str,
        reason: str | None = None,
        remarks: str | None = None,
        actor_id: UUID | str | None = None,
    ) -> Stock:
        """
        Apply a signed delta to a stock quantity.

        The actor is resolved before anything is locked or changed.  The new
        quantity is computed from the locked row; a negative result is
        rejected and nothing is written.

        Raises:
            InvalidAdjustmentTypeError, UnknownActorError, StockNotFoundError,
            NegativeQuantityError, LockTimeoutError.
        """
        adjustment_type = parse_adjustment_type(type)
        delta = round_quantity(delta)
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(
                f"Adjustment reason longer than {MAX_REASON_LENGTH} characters"
            )
        if actor_id is not None:
            self._resolver.resolve_user(actor_id)

        stock = self._lock_stock(stock_id)

        with LogContext.bind(stock_id=stock.id, actor_id=actor_id):
            before = round_quantity(stock.quantity)
            after = round_quantity(before + delta)
            if after < 0:
                logger.warning(
                    "adjustment_rejected",
                    extra={
                        "quantity_before": before,
                        "delta": delta,
                        "adjustment_type": adjustment_type,
                    },
                )
                raise NegativeQuantityError(str(stock.id), str(before), str(after))

            self._append_adjustment(
                stock,
                quantity_after=after,
                adjustment_type=adjustment_type,
                reason=reason,
                remarks=remarks,
                actor_id=actor_id,
            )
            self.session.flush()
            logger.info(
                "stock_adjusted",
                extra={
                    "adjustment_type": adjustment_type,
                    "quantity_before": before,
                    "quantity_after": after,
                    "delta": delta,
                    "reason": reason,
                },
            )
        return stock

    def remove_stock(self, stock_id: UUID | str) -> None:
        """
        Delete a stock row; its adjustments go with it (ON DELETE CASCADE).

        Raises:
            StockNotFoundError: Unknown stock.
            StockReferencedError: A draft usage record still has a line for
                this (item, location) pair.
        """
        stock = self._lock_stock(stock_id)

        referencing = list(
            self.session.execute(
                select(UsageRecord.id)
                .join(UsageRecordItem, UsageRecordItem.record_id == UsageRecord.id)
                .where(
                    UsageRecord.status == DocumentStatus.DRAFT,
                    UsageRecordItem.item_id == stock.item_id,
                    UsageRecordItem.location_id == stock.location_id,
                )
                .distinct()
            ).scalars()
        )
        if referencing:
            raise StockReferencedError(str(stock.id), sorted(str(r) for r in referencing))

        self.session.delete(stock)
        self.session.flush()
        logger.info("stock_removed", extra={"stock_id": str(stock.id)})

    def ensure_stock(
        self,
        item_id: UUID | str,
        location_id: UUID | str,
        seed: StockSeed | None = None,
    ) -> Stock:
        """
        Return the locked stock row for a pair, opening it when absent.

        A new row starts at quantity 0 seeded from ``seed``; no adjustment is
        written for it, so the sum of deltas stays 0.  On PostgreSQL a
        concurrent creator is detected by the unique constraint; the insert
        is rolled back to its savepoint and the winner's row is locked
        instead.
        """
        seed = seed or StockSeed()
        stock = self._locks.lock_pair(item_id, location_id)
        if stock is not None:
            return stock

        savepoint = self.session.begin_nested()
        try:
            stock = Stock(
                item_id=coerce_uuid(item_id),
                location_id=coerce_uuid(location_id),
                quantity=_ZERO,
                min_quantity=_ZERO,
                latest_purchase_price=round_optional(seed.latest_purchase_price),
                latest_purchase_date=seed.latest_purchase_date,
                expiry_date=seed.expiry_date,
                memo=seed.memo,
                ledger_seq=0,
            )
            self.session.add(stock)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "stock_create_race_retry",
                extra={"item_id": str(item_id), "location_id": str(location_id)},
            )
            savepoint.rollback()
            stock = self._locks.lock_pair(item_id, location_id)
            if stock is None:
                raise
            return stock

        logger.info(
            "stock_opened",
            extra={
                "stock_id": str(stock.id),
                "item_id": str(item_id),
                "location_id": str(location_id),
            },
        )
        return stock

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_stock(self, stock_id: UUID | str) -> Stock:
        stock = self.get_stock(stock_id)
        locked = self._locks.lock_pair(stock.item_id, stock.location_id)
        if locked is None:
            # Removed by another transaction while we waited.
            raise StockNotFoundError(stock_id=str(stock_id))
        return locked

    def _append_adjustment(
        self,
        stock: Stock,
        *,
        quantity_after: Decimal,
        adjustment_type: StockAdjustmentType,
        reason: str | None,
        remarks: str | None,
        actor_id: UUID | str | None,
    ) -> StockAdjustment:
        """Record an adjustment and move the stock to quantity_after."""
        before = round_quantity(stock.quantity if stock.quantity is not None else _ZERO)
        stock.ledger_seq = (stock.ledger_seq or 0) + 1
        adjustment = StockAdjustment(
            stock=stock,
            seq=stock.ledger_seq,
            type=adjustment_type,
            quantity_before=before,
            quantity_after=quantity_after,
            delta=quantity_after - before,
            reason=reason,
            remarks=remarks,
            created_by_id=coerce_uuid(actor_id) if actor_id is not None else None,
            created_at=self._now(),
        )
        self.session.add(adjustment)
        stock.quantity = quantity_after
        return adjustment

    def _now(self) -> datetime:
        return self._clock.now()
