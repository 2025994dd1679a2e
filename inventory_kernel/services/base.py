"""
BaseService -- common base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  Services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback it.  Work that must be
      undone as a unit runs inside a savepoint the service opens itself.
"""

from abc import ABC
from uuid import UUID

from sqlalchemy.orm import Session


def coerce_uuid(value: UUID | str) -> UUID:
    """
    Accept a UUID or its string form.

    Raises:
        ValueError: If the string is not a valid UUID.
    """
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide list/report queries -- those belong in
          ``inventory_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
