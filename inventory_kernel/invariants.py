"""
Kernel Invariants Contract.

These invariants are structural law.  They are enforced by the stock
ledger, the confirmation workflow, ORM listeners and database constraints.
No configuration value may switch them off.

This module exists solely to declare these invariants explicitly.  The
enforcement is distributed across StockLedger, StockLockManager,
ConfirmationWorkflow and inventory_kernel.db.immutability.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Configuration may tune how long a writer waits for a lock, but never
    whether these rules apply.
    """

    LEDGER_SUM = "ledger_sum"
    """A stock quantity equals the sum of its adjustment deltas.  Enforced
    by StockLedger and the before_flush pairing check."""

    NON_NEGATIVE_QUANTITY = "non_negative_quantity"
    """No stock and no adjustment ever records a quantity below zero.
    Enforced by StockLedger and CHECK constraints."""

    APPEND_ONLY_ADJUSTMENTS = "append_only_adjustments"
    """Adjustments are never updated or deleted through the ORM.  Enforced
    by listeners in inventory_kernel.db.immutability."""

    DRAFT_ONLY_EDITS = "draft_only_edits"
    """Confirmed and cancelled documents and their lines are frozen.
    Enforced by the document workflow and ORM listeners."""

    ATOMIC_CONFIRMATION = "atomic_confirmation"
    """Confirmation applies every line or none.  Enforced by
    ConfirmationWorkflow with a savepoint."""

    ORDERED_LOCKING = "ordered_locking"
    """Stock pairs are locked in sorted (item_id, location_id) order.
    Enforced by StockLockManager."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = ("inventory_config",)
