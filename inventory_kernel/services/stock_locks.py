"""
StockLockManager -- pessimistic, ordered locks on (item, location) pairs.

Responsibility:
    Serialises every writer of a given stock pair for the rest of the
    caller's transaction and hands back the freshly read stock rows.

Architecture position:
    Kernel > Services.  Used by StockLedger and ConfirmationWorkflow.

Invariants enforced:
    - Lock ordering: pairs are always acquired sorted by (item_id,
      location_id) as strings, so two transactions touching overlapping
      pair sets cannot deadlock on each other.
    - Locks are held until the session's outermost transaction ends
      (commit or rollback), never released early by a savepoint.
    - Rows returned are re-read after the lock is taken
      (populate_existing), so the caller never computes from a stale
      quantity.

Strategy by dialect:
    PostgreSQL  ``SELECT ... FOR UPDATE`` on the stock rows, bounded by
                ``SET LOCAL lock_timeout``.  A pair with no stock row yet
                locks nothing; the insert that creates it is arbitrated by
                uq_stock_item_location (see StockLedger.ensure_stock).
    Others      A process-local registry of keyed mutexes (SQLite has no
                row locks).  Held mutexes are recorded in ``session.info``
                and released from the session's ``after_transaction_end``
                event.  An entry lives only while some session holds or
                waits on it.

Failure modes:
    - LockTimeoutError when a pair cannot be locked within timeout_seconds.
"""

import threading
import time
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import and_, event, or_, select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from inventory_kernel.db.engine import is_postgres
from inventory_kernel.exceptions import LockTimeoutError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.stock import Stock
from inventory_kernel.services.base import coerce_uuid

logger = get_logger("services.stock_locks")

PairKey = tuple[str, str]

# PostgreSQL SQLSTATE for lock_not_available
_PG_LOCK_NOT_AVAILABLE = "55P03"

_SESSION_LOCKS_KEY = "inventory_kernel.stock_locks"

DEFAULT_TIMEOUT_SECONDS = 10.0

RegistryKey = tuple[str, str, str]


class _KeyedMutex:
    """A pair mutex plus the number of sessions holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


_registry: dict[RegistryKey, _KeyedMutex] = {}
_registry_guard = threading.Lock()


def set_default_timeout(seconds: float) -> None:
    """Lock wait used by managers built without an explicit timeout."""
    global DEFAULT_TIMEOUT_SECONDS
    if seconds <= 0:
        raise ValueError("lock timeout must be positive")
    DEFAULT_TIMEOUT_SECONDS = float(seconds)


def _checkout(scope: str, key: PairKey) -> _KeyedMutex:
    """Registry entry for a pair, counted as in use until _checkin()."""
    registry_key = (scope, key[0], key[1])
    with _registry_guard:
        entry = _registry.get(registry_key)
        if entry is None:
            entry = _KeyedMutex()
            _registry[registry_key] = entry
        entry.users += 1
        return entry


def _checkin(scope: str, key: PairKey, entry: _KeyedMutex) -> None:
    """Drop one use of an entry; the last user removes it from the registry."""
    registry_key = (scope, key[0], key[1])
    with _registry_guard:
        entry.users -= 1
        if entry.users == 0:
            del _registry[registry_key]


def _release_session_locks(session, transaction):
    if transaction.parent is not None:
        return
    held = session.info.pop(_SESSION_LOCKS_KEY, None)
    if not held:
        return
    for key, (scope, entry) in held.items():
        entry.lock.release()
        _checkin(scope, key, entry)
    logger.debug("stock_locks_released", extra={"lock_count": len(held)})


def sorted_pairs(pairs: Iterable[tuple[UUID | str, UUID | str]]) -> list[PairKey]:
    """Distinct pairs in canonical lock order."""
    return sorted(
        {
            (str(coerce_uuid(item_id)), str(coerce_uuid(location_id)))
            for item_id, location_id in pairs
        }
    )


class StockLockManager:
    """
    Acquires stock pair locks for one session.

    Contract:
        ``lock_pairs()`` may be called any number of times within a
        transaction; pairs already held by this session are not re-acquired.

    Guarantees:
        - All locks taken through this session are released when its
          outermost transaction ends.

    Non-goals:
        - Cross-process locking on SQLite.  Separate processes sharing one
          SQLite file are serialised by BEGIN IMMEDIATE alone.
    """

    def __init__(self, session: Session, timeout_seconds: float | None = None):
        self.session = session
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else DEFAULT_TIMEOUT_SECONDS
        )

    def lock_pairs(
        self,
        pairs: Iterable[tuple[UUID | str, UUID | str]],
    ) -> dict[PairKey, Stock | None]:
        """
        Lock every pair in canonical order and return its stock row.

        Returns:
            Mapping of (item_id, location_id) strings to the freshly read
            Stock, or None when the pair has no stock row.
        """
        keys = sorted_pairs(pairs)
        if not keys:
            return {}

        started = time.monotonic()
        if is_postgres(self.session.get_bind()):
            rows = self._lock_rows_for_update(keys)
        else:
            self._acquire_mutexes(keys)
            rows = self._read_rows(keys)

        logger.debug(
            "stock_locks_acquired",
            extra={
                "lock_count": len(keys),
                "wait_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return rows

    def lock_pair(self, item_id: UUID | str, location_id: UUID | str) -> Stock | None:
        rows = self.lock_pairs([(item_id, location_id)])
        return next(iter(rows.values()))

    def held_pairs(self) -> list[PairKey]:
        """Pairs currently held through the keyed mutex registry."""
        return sorted(self.session.info.get(_SESSION_LOCKS_KEY, {}))

    # -- PostgreSQL -----------------------------------------------------------

    def _lock_rows_for_update(self, keys: list[PairKey]) -> dict[PairKey, Stock | None]:
        timeout_ms = max(int(self.timeout_seconds * 1000), 1)
        self.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

        result: dict[PairKey, Stock | None] = {key: None for key in keys}
        for key in keys:
            try:
                stock = self.session.execute(
                    select(Stock)
                    .where(Stock.item_id == key[0], Stock.location_id == key[1])
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
            except OperationalError as exc:
                if getattr(exc.orig, "pgcode", None) == _PG_LOCK_NOT_AVAILABLE:
                    logger.warning(
                        "stock_lock_timeout",
                        extra={"item_id": key[0], "location_id": key[1]},
                    )
                    raise LockTimeoutError(key[0], key[1], self.timeout_seconds) from exc
                raise
            result[key] = stock
        return result

    # -- Keyed mutex registry -------------------------------------------------

    def _acquire_mutexes(self, keys: list[PairKey]) -> None:
        held: dict[PairKey, tuple[str, _KeyedMutex]] = self.session.info.setdefault(
            _SESSION_LOCKS_KEY, {}
        )
        if not event.contains(self.session, "after_transaction_end", _release_session_locks):
            event.listen(self.session, "after_transaction_end", _release_session_locks)

        # Make sure a transaction is open so its end releases the mutexes.
        self.session.connection()
        scope = str(self.session.get_bind().engine.url)

        for key in keys:
            if key in held:
                continue
            entry = _checkout(scope, key)
            if not entry.lock.acquire(timeout=self.timeout_seconds):
                _checkin(scope, key, entry)
                logger.warning(
                    "stock_lock_timeout",
                    extra={"item_id": key[0], "location_id": key[1]},
                )
                raise LockTimeoutError(key[0], key[1], self.timeout_seconds)
            held[key] = (scope, entry)

    def _read_rows(self, keys: list[PairKey]) -> dict[PairKey, Stock | None]:
        result: dict[PairKey, Stock | None] = {key: None for key in keys}
        condition = or_(
            *(and_(Stock.item_id == key[0], Stock.location_id == key[1]) for key in keys)
        )
        stocks = self.session.execute(
            select(Stock).where(condition).execution_options(populate_existing=True)
        ).scalars()
        for stock in stocks:
            result[stock.pair] = stock
        return result
