"""Lifecycle status shared by purchase and usage records."""

from enum import Enum


class DocumentStatus(str, Enum):
    """Lifecycle status of a purchase or usage record.

    Contract: Transitions are one-way: DRAFT -> CONFIRMED or DRAFT -> CANCELLED.
    Guarantees: CONFIRMED and CANCELLED are terminal; the record and its lines
        are immutable from then on.
    """

    DRAFT = "draft"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
