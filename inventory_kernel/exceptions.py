"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure a caller can act on has its own class, a machine-readable
``code`` class attribute, and structured attributes.  Callers catch by type
and read attributes; they never parse messages.

    try:
        usage_service.confirm(record_id, confirmer_id=user_id)
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- NotFoundError
    |   +-- StockNotFoundError
    |   +-- DocumentNotFoundError
    |
    +-- UnknownReferenceError
    |   +-- UnknownActorError
    |
    +-- DuplicateError
    |   +-- DuplicateStockPairError
    |   +-- DuplicateCodeError
    |
    +-- InvalidStateError
    |
    +-- QuantityError
    |   +-- NegativeQuantityError
    |   +-- InsufficientStockError
    |
    +-- ValidationError
    |   +-- InvalidAdjustmentTypeError
    |   +-- InvalidLineError
    |
    +-- StockReferencedError
    |
    +-- ConcurrencyError
    |   +-- LockTimeoutError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                     | When Raised
-------------------------|-----------------------------------------------------
STOCK_NOT_FOUND          | Stock id (or item/location pair) has no row
DOCUMENT_NOT_FOUND       | Purchase / usage record id does not exist
UNKNOWN_REFERENCE        | Item or location referenced by a request is unknown
UNKNOWN_ACTOR            | User referenced as actor / creator is unknown
DUPLICATE_STOCK_PAIR     | (item, location) already has a stock row
DUPLICATE_CODE           | Document code already used
INVALID_STATE            | Operation not allowed in the document's status
NEGATIVE_QUANTITY        | Adjustment or update would drive quantity below 0
INSUFFICIENT_STOCK       | Usage line requests more than is available
INVALID_ADJUSTMENT_TYPE  | Adjustment type spelling cannot be parsed
INVALID_LINE             | Document line is malformed (quantity <= 0, no lines)
STOCK_REFERENCED         | Stock removal blocked by a draft usage line
LOCK_TIMEOUT             | Stock lock not acquired within the configured time
IMMUTABILITY_VIOLATION   | Write to an adjustment or to a non-draft document

===============================================================================
PROPAGATION
===============================================================================

All of the above are raised before or during the transaction and the
enclosing savepoint / transaction is rolled back: no partial stock mutation
is ever visible.  Storage-layer errors (sqlalchemy.exc.*) propagate
unchanged.  Nothing is retried automatically; retrying ``confirm`` without
first re-reading the document status is unsafe.
"""


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Lookup failures


class NotFoundError(InventoryKernelError):
    """Base exception for a referenced id that does not exist."""

    code: str = "NOT_FOUND"


class StockNotFoundError(NotFoundError):
    """Stock row was not found by id or by (item, location) pair."""

    code: str = "STOCK_NOT_FOUND"

    def __init__(
        self,
        stock_id: str | None = None,
        item_id: str | None = None,
        location_id: str | None = None,
    ):
        self.stock_id = stock_id
        self.item_id = item_id
        self.location_id = location_id
        if stock_id is not None:
            message = f"Stock not found: {stock_id}"
        else:
            message = f"Stock not found for item {item_id} at location {location_id}"
        super().__init__(message)


class DocumentNotFoundError(NotFoundError):
    """Purchase or usage record was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_id: str):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(f"{document_type} not found: {document_id}")


# Reference failures


class UnknownReferenceError(InventoryKernelError):
    """An item, location or user referenced by a request does not exist."""

    code: str = "UNKNOWN_REFERENCE"

    def __init__(self, reference_type: str, reference_id: str):
        self.reference_type = reference_type
        self.reference_id = reference_id
        super().__init__(f"Unknown {reference_type}: {reference_id}")


class UnknownActorError(UnknownReferenceError):
    """The user supplied as actor, creator or confirmer does not exist."""

    code: str = "UNKNOWN_ACTOR"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__("user", actor_id)


# Uniqueness failures


class DuplicateError(InventoryKernelError):
    """Base exception for uniqueness violations on creation."""

    code: str = "DUPLICATE"


class DuplicateStockPairError(DuplicateError):
    """A stock row already exists for the (item, location) pair."""

    code: str = "DUPLICATE_STOCK_PAIR"

    def __init__(self, item_id: str, location_id: str):
        self.item_id = item_id
        self.location_id = location_id
        super().__init__(
            f"Stock record for item {item_id} at location {location_id} already exists"
        )


class DuplicateCodeError(DuplicateError):
    """A document with the same human-readable code already exists."""

    code: str = "DUPLICATE_CODE"

    def __init__(self, document_type: str, document_code: str):
        self.document_type = document_type
        self.document_code = document_code
        super().__init__(f"{document_type} code {document_code} already exists")


# Lifecycle failures


class InvalidStateError(InventoryKernelError):
    """Operation is not permitted in the document's current status."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        document_type: str,
        document_id: str,
        current_status: str,
        action: str,
    ):
        self.document_type = document_type
        self.document_id = document_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {document_type} {document_id} in status "
            f"'{current_status}': only draft documents allow it"
        )


# Quantity failures


class QuantityError(InventoryKernelError):
    """Base exception for quantity rule violations."""

    code: str = "QUANTITY_ERROR"


class NegativeQuantityError(QuantityError):
    """The requested change would leave a stock quantity below zero."""

    code: str = "NEGATIVE_QUANTITY"

    def __init__(self, stock_id: str | None, quantity_before: str, quantity_after: str):
        self.stock_id = stock_id
        self.quantity_before = quantity_before
        self.quantity_after = quantity_after
        super().__init__(
            f"Resulting quantity cannot be negative for stock {stock_id}: "
            f"{quantity_before} -> {quantity_after}"
        )


class InsufficientStockError(QuantityError):
    """A usage line requests more than the stock currently holds."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item_id: str, location_id: str, available: str, requested: str):
        self.item_id = item_id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for item {item_id} at location {location_id}: "
            f"available {available}, requested {requested}"
        )


# Input validation failures


class ValidationError(InventoryKernelError):
    """Base exception for malformed requests."""

    code: str = "VALIDATION_ERROR"


class InvalidAdjustmentTypeError(ValidationError):
    """The adjustment type spelling does not map to a known type."""

    code: str = "INVALID_ADJUSTMENT_TYPE"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unknown stock adjustment type: {value!r}")


class InvalidLineError(ValidationError):
    """A document line (or the line set as a whole) is malformed."""

    code: str = "INVALID_LINE"

    def __init__(self, reason: str, line_no: int | None = None):
        self.reason = reason
        self.line_no = line_no
        where = f" (line {line_no})" if line_no is not None else ""
        super().__init__(f"Invalid document line{where}: {reason}")


class StockReferencedError(InventoryKernelError):
    """Stock cannot be removed while a draft usage line still needs it."""

    code: str = "STOCK_REFERENCED"

    def __init__(self, stock_id: str, document_ids: list[str]):
        self.stock_id = stock_id
        self.document_ids = document_ids
        super().__init__(
            f"Stock {stock_id} is referenced by draft usage records: "
            f"{', '.join(document_ids)}"
        )


# Concurrency failures


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class LockTimeoutError(ConcurrencyError):
    """A stock pair lock could not be acquired in time."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, item_id: str, location_id: str, timeout_seconds: float):
        self.item_id = item_id
        self.location_id = location_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for stock lock "
            f"on item {item_id} at location {location_id}"
        )


# Immutability failures


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Stock adjustments are immutable from creation; documents and their lines
    are immutable once they leave draft.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
