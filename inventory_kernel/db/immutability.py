"""
ORM-Level Immutability Enforcement for the stock ledger and documents.

===============================================================================
WHAT IS PROTECTED
===============================================================================

Entity              | When Immutable                       | Raised on
--------------------|--------------------------------------|-------------------
StockAdjustment     | ALWAYS (from creation)               | UPDATE, DELETE
PurchaseRecord      | After status leaves draft            | UPDATE, DELETE
UsageRecord         | After status leaves draft            | UPDATE, DELETE
PurchaseRecordItem  | When parent record is not draft      | UPDATE, DELETE
UsageRecordItem     | When parent record is not draft      | UPDATE, DELETE
Stock.quantity      | Never changes without a new          | flush
                    | StockAdjustment in the same flush    |

Adjustment rows still disappear when their stock row is removed: that is the
database ON DELETE CASCADE, which never passes through these listeners.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_flush]  --> _check_stock_quantity_paired() --> ImmutabilityViolationError
         |
         v
    [before_update] --> _check_*_immutability() -------> ImmutabilityViolationError
    [before_delete] --> _check_*_delete() -------------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The confirm and cancel transitions themselves must be able to change status,
so document checks look at the status the row had BEFORE this flush (from
attribute history), not the status it is being given.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, idempotent

    # TESTS ONLY
    unregister_immutability_listeners()
"""

from decimal import Decimal

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Row metadata, not document content
_IGNORED_FIELDS = frozenset({"updated_at"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Stock quantity pairing
# ---------------------------------------------------------------------------


def _check_stock_quantity_paired(session, flush_context, instances):
    """
    Require a new StockAdjustment for every stock quantity change.

    Runs in SessionEvents.before_flush, where both the dirty Stock and the
    pending StockAdjustment are visible.  The adjustment must belong to the
    same stock (by relationship or by stock_id) and its quantity_after must
    equal the stock's new quantity.
    """
    from inventory_kernel.models.stock import Stock, StockAdjustment

    new_adjustments = [obj for obj in session.new if isinstance(obj, StockAdjustment)]

    for obj in list(session.new) + list(session.dirty):
        if not isinstance(obj, Stock):
            continue

        if obj in session.new:
            if obj.quantity is None or Decimal(obj.quantity) == 0:
                continue
        else:
            hist = get_history(obj, "quantity")
            if not hist.has_changes():
                continue
            if hist.deleted and hist.deleted[0] is not None:
                if Decimal(hist.deleted[0]) == Decimal(obj.quantity):
                    continue

        paired = any(
            (adj.stock is obj or (adj.stock_id is not None and adj.stock_id == obj.id))
            and adj.quantity_after is not None
            and Decimal(adj.quantity_after) == Decimal(obj.quantity)
            for adj in new_adjustments
        )
        if not paired:
            raise _blocked(
                "Stock",
                obj.id,
                "UPDATE",
                "unpaired quantity change",
                quantity=obj.quantity,
            )


# ---------------------------------------------------------------------------
# StockAdjustment (always immutable)
# ---------------------------------------------------------------------------


def _check_adjustment_immutability(mapper, connection, target):
    """Prevent any update to a StockAdjustment."""
    raise _blocked(
        "StockAdjustment",
        target.id,
        "UPDATE",
        "Stock adjustments are append-only and cannot be modified",
    )


def _check_adjustment_delete(mapper, connection, target):
    """Prevent ORM deletion of a StockAdjustment."""
    raise _blocked(
        "StockAdjustment",
        target.id,
        "DELETE",
        "Stock adjustments are append-only and cannot be deleted",
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def _status_before_flush(record) -> str:
    """Status the document held before the pending flush."""
    hist = get_history(record, "status")
    if hist.deleted:
        return hist.deleted[0]
    return record.status


def _status_text(status) -> str:
    return getattr(status, "value", status)


def _is_draft(status) -> bool:
    from inventory_kernel.models.document import DocumentStatus

    return status == DocumentStatus.DRAFT


def _check_document_immutability(mapper, connection, target):
    """
    Prevent updates to a document that already left draft.

    The draft -> confirmed and draft -> cancelled transitions are allowed
    because the status before the flush is still draft.
    """
    if _is_draft(_status_before_flush(target)):
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _IGNORED_FIELDS:
            continue
        if attr.history.has_changes():
            raise _blocked(
                type(target).__name__,
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a {_status_text(target.status)} document",
                field=attr.key,
            )


def _check_document_delete(mapper, connection, target):
    """Prevent deletion of a document that already left draft."""
    status = _status_before_flush(target)
    if not _is_draft(status):
        raise _blocked(
            type(target).__name__,
            target.id,
            "DELETE",
            f"Cannot delete a {_status_text(status)} document",
        )


def _parent_status(connection, target):
    """
    Status of a line's parent record before the pending flush.

    An orphaned line (removed from its record's collection) no longer has
    the relationship set, so the persisted status is read instead.
    """
    record = target.record
    if record is not None:
        return _status_before_flush(record)
    parent_table = type(target).record.property.mapper.local_table
    return connection.execute(
        select(parent_table.c.status).where(parent_table.c.id == str(target.record_id))
    ).scalar()


def _check_line_immutability(mapper, connection, target):
    """Prevent updates to a line whose parent record is not draft."""
    status = _parent_status(connection, target)
    if status is not None and not _is_draft(status):
        raise _blocked(
            type(target).__name__,
            target.id,
            "UPDATE",
            f"Document lines cannot be modified once the record is {_status_text(status)}",
        )


def _check_line_delete(mapper, connection, target):
    """Prevent deletion of a line whose parent record is not draft."""
    status = _parent_status(connection, target)
    if status is not None and not _is_draft(status):
        raise _blocked(
            type(target).__name__,
            target.id,
            "DELETE",
            f"Document lines cannot be deleted once the record is {_status_text(status)}",
        )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _listener_table():
    from inventory_kernel.models.purchase import PurchaseRecord, PurchaseRecordItem
    from inventory_kernel.models.stock import StockAdjustment
    from inventory_kernel.models.usage import UsageRecord, UsageRecordItem

    return [
        (Session, "before_flush", _check_stock_quantity_paired),
        (StockAdjustment, "before_update", _check_adjustment_immutability),
        (StockAdjustment, "before_delete", _check_adjustment_delete),
        (PurchaseRecord, "before_update", _check_document_immutability),
        (PurchaseRecord, "before_delete", _check_document_delete),
        (UsageRecord, "before_update", _check_document_immutability),
        (UsageRecord, "before_delete", _check_document_delete),
        (PurchaseRecordItem, "before_update", _check_line_immutability),
        (PurchaseRecordItem, "before_delete", _check_line_delete),
        (UsageRecordItem, "before_update", _check_line_immutability),
        (UsageRecordItem, "before_delete", _check_line_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; a listener already in place is not added
    again.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate the rules on
    purpose.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
