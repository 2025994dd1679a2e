"""
Adjustment type parsing.

Callers (HTTP layers, CSV imports, scripts) spell adjustment types in many
ways.  ``parse_adjustment_type`` turns any accepted spelling into a
``StockAdjustmentType`` and rejects everything else.

Normalisation, in order:

    1. strip surrounding whitespace
    2. camelCase / PascalCase boundaries become underscores
    3. runs of spaces and hyphens become a single underscore
    4. lowercase

Normalised spelling  | Type
---------------------|---------------
manual               | manual_audit
manual_audit         | manual_audit
purchase             | purchase
usage                | usage
correction           | correction

So ``"ManualAudit"``, ``"manual-audit"``, ``" Manual Audit "`` and
``"MANUAL_AUDIT"`` all parse to ``StockAdjustmentType.MANUAL_AUDIT``.
"""

import re
from enum import Enum

from inventory_kernel.exceptions import InvalidAdjustmentTypeError


class StockAdjustmentType(str, Enum):
    """Why a stock quantity changed.

    Contract: Stored as its lowercase snake_case value.
    """

    MANUAL_AUDIT = "manual_audit"
    PURCHASE = "purchase"
    USAGE = "usage"
    CORRECTION = "correction"


_CAMEL_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")
_SEPARATORS = re.compile(r"[\s-]+")

ADJUSTMENT_TYPE_ALIASES: dict[str, StockAdjustmentType] = {
    "manual": StockAdjustmentType.MANUAL_AUDIT,
    "manual_audit": StockAdjustmentType.MANUAL_AUDIT,
    "purchase": StockAdjustmentType.PURCHASE,
    "usage": StockAdjustmentType.USAGE,
    "correction": StockAdjustmentType.CORRECTION,
}


def normalize_adjustment_spelling(value: str) -> str:
    normalized = value.strip()
    normalized = _CAMEL_BOUNDARY.sub(r"\1_\2", normalized)
    normalized = _SEPARATORS.sub("_", normalized)
    return normalized.lower()


def parse_adjustment_type(value: StockAdjustmentType | str) -> StockAdjustmentType:
    """
    Parse an adjustment type from an enum member or any accepted spelling.

    Raises:
        InvalidAdjustmentTypeError: If the value is not a string or does not
            normalise to a known type.
    """
    if isinstance(value, StockAdjustmentType):
        return value
    if not isinstance(value, str):
        raise InvalidAdjustmentTypeError(repr(value))
    try:
        return ADJUSTMENT_TYPE_ALIASES[normalize_adjustment_spelling(value)]
    except KeyError:
        raise InvalidAdjustmentTypeError(value) from None
