"""
Concurrent writers on the stock ledger.

Each worker thread opens its own session from the tracked session factory
and starts together with the others on a Barrier.  Runs against SQLite by
default (keyed mutexes plus BEGIN IMMEDIATE) and against PostgreSQL
(row locks) when DATABASE_URL points there.

Verifies:
- No lost updates: N concurrent +1 adjustments on one pair end at N
- update_stock and adjust_quantity on one stock keep one contiguous chain
- Concurrent usage confirmations on one pair never oversell
- Confirmations on disjoint pairs all succeed
- Purchases opening the same new pairs in reversed line order all succeed
- A lock that cannot be had in time raises LockTimeoutError
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest

from inventory_kernel.domain.adjustment_type import StockAdjustmentType
from inventory_kernel.domain.dtos import StockPatch
from inventory_kernel.exceptions import InsufficientStockError, LockTimeoutError
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services import stock_locks
from inventory_kernel.services.purchase_records import PurchaseRecordService
from inventory_kernel.services.stock_ledger import StockLedger
from inventory_kernel.services.stock_locks import StockLockManager
from inventory_kernel.services.usage_records import UsageRecordService

pytestmark = pytest.mark.slow_locks

THREADS = 8


def _on_postgres() -> bool:
    return os.environ.get("DATABASE_URL", "").startswith("postgresql")


def _run_concurrently(count, work):
    """Run ``work(index)`` on ``count`` threads released together."""
    barrier = Barrier(count)

    def _worker(index):
        barrier.wait(timeout=30)
        return work(index)

    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(_worker, i) for i in range(count)]
        return [f.exception(timeout=60) or f.result() for f in futures]


class TestConcurrentAdjustments:
    def test_no_lost_updates(self, create_stock, session_factory, session):
        stock = create_stock(quantity="0")

        def _adjust(_index):
            thread_session = session_factory()
            try:
                StockLedger(thread_session).adjust_quantity(
                    stock.id, "1", StockAdjustmentType.CORRECTION
                )
                thread_session.commit()
                return "ok"
            except Exception:
                thread_session.rollback()
                raise
            finally:
                thread_session.close()

        outcomes = _run_concurrently(THREADS, _adjust)

        assert outcomes == ["ok"] * THREADS
        ledger = StockLedger(session)
        assert ledger.get_stock(stock.id).quantity == Decimal(THREADS)
        seqs = [adj.seq for adj in ledger.list_adjustments(stock.id)]
        assert sorted(seqs) == list(range(1, THREADS + 2))
        assert StockSelector(session).verify_ledger() == []

    def test_concurrent_debits_never_go_negative(self, create_stock, session_factory, session):
        stock = create_stock(quantity="5")

        def _debit(_index):
            thread_session = session_factory()
            try:
                StockLedger(thread_session).adjust_quantity(
                    stock.id, "-1", StockAdjustmentType.MANUAL_AUDIT
                )
                thread_session.commit()
                return "ok"
            except Exception:
                thread_session.rollback()
                raise
            finally:
                thread_session.close()

        outcomes = _run_concurrently(THREADS, _debit)

        assert outcomes.count("ok") == 5
        assert StockLedger(session).get_stock(stock.id).quantity == Decimal("0.00")

    def test_update_stock_serialised_with_adjustments(self, create_stock, session_factory, session):
        """Even workers set an absolute quantity, odd workers add one."""
        stock = create_stock(quantity="3")

        def _write(index):
            thread_session = session_factory()
            try:
                thread_ledger = StockLedger(thread_session)
                if index % 2 == 0:
                    thread_ledger.update_stock(
                        stock.id, StockPatch(quantity=Decimal(10 * (index + 1)))
                    )
                else:
                    thread_ledger.adjust_quantity(stock.id, "1", StockAdjustmentType.CORRECTION)
                thread_session.commit()
                return "ok"
            except Exception:
                thread_session.rollback()
                raise
            finally:
                thread_session.close()

        outcomes = _run_concurrently(THREADS, _write)

        assert outcomes == ["ok"] * THREADS
        ledger = StockLedger(session)
        chain = sorted(ledger.list_adjustments(stock.id), key=lambda adj: adj.seq)
        assert [adj.seq for adj in chain] == list(range(1, len(chain) + 1))
        assert chain[0].quantity_before == Decimal("0.00")
        for previous, current in zip(chain, chain[1:]):
            assert current.quantity_before == previous.quantity_after
            assert current.delta == current.quantity_after - current.quantity_before
        assert ledger.get_stock(stock.id).quantity == chain[-1].quantity_after
        assert StockSelector(session).verify_ledger() == []


class TestConcurrentConfirmations:
    def test_usage_on_one_pair_never_oversells(
        self, create_stock, make_usage, session_factory, session, reference_data
    ):
        stock = create_stock(quantity="10")
        record_ids = [
            make_usage([(reference_data.item_a, reference_data.loc_1, "2")]).id
            for _ in range(THREADS)
        ]

        def _confirm(index):
            thread_session = session_factory()
            try:
                UsageRecordService(thread_session).confirm(record_ids[index])
                thread_session.commit()
                return "confirmed"
            except InsufficientStockError:
                thread_session.rollback()
                return "insufficient"
            finally:
                thread_session.close()

        outcomes = _run_concurrently(THREADS, _confirm)

        assert outcomes.count("confirmed") == 5
        assert outcomes.count("insufficient") == THREADS - 5
        assert StockLedger(session).get_stock(stock.id).quantity == Decimal("0.00")
        assert StockSelector(session).verify_ledger() == []

    def test_disjoint_pairs_all_succeed(self, make_purchase, session_factory, session, reference_data):
        pairs = [
            (item, loc)
            for item in (reference_data.item_a, reference_data.item_b, reference_data.item_c)
            for loc in (reference_data.loc_1, reference_data.loc_2)
        ]
        record_ids = [make_purchase([(item, loc, "3", "1.00")]).id for item, loc in pairs]

        def _confirm(index):
            thread_session = session_factory()
            try:
                PurchaseRecordService(thread_session).confirm(record_ids[index])
                thread_session.commit()
                return "confirmed"
            finally:
                thread_session.close()

        outcomes = _run_concurrently(len(pairs), _confirm)

        assert outcomes == ["confirmed"] * len(pairs)
        snapshots = StockSelector(session).list_stock()
        assert len(snapshots) == len(pairs)
        assert {s.quantity for s in snapshots} == {Decimal("3.00")}

    def test_reversed_lines_on_new_pairs_all_succeed(
        self, make_purchase, session_factory, session, reference_data
    ):
        first = (reference_data.item_a, reference_data.loc_1)
        second = (reference_data.item_c, reference_data.loc_2)
        record_ids = []
        for i in range(THREADS):
            pairs = (first, second) if i % 2 == 0 else (second, first)
            record_ids.append(make_purchase([(item, loc, "1") for item, loc in pairs]).id)

        def _confirm(index):
            thread_session = session_factory()
            try:
                PurchaseRecordService(thread_session).confirm(record_ids[index])
                thread_session.commit()
                return "confirmed"
            finally:
                thread_session.close()

        outcomes = _run_concurrently(THREADS, _confirm)

        assert outcomes == ["confirmed"] * THREADS
        snapshots = StockSelector(session).list_stock()
        assert len(snapshots) == 2
        assert {s.quantity for s in snapshots} == {Decimal(THREADS)}
        assert StockSelector(session).verify_ledger() == []

    def test_purchases_on_one_pair_open_one_stock(self, make_purchase, session_factory, session, reference_data):
        record_ids = [
            make_purchase(
                [(reference_data.item_b, reference_data.loc_2, "1")],
                purchase_date=date(2024, 3, 1 + i),
            ).id
            for i in range(4)
        ]

        def _confirm(index):
            thread_session = session_factory()
            try:
                PurchaseRecordService(thread_session).confirm(record_ids[index])
                thread_session.commit()
                return "confirmed"
            finally:
                thread_session.close()

        outcomes = _run_concurrently(len(record_ids), _confirm)

        assert outcomes == ["confirmed"] * len(record_ids)
        snapshots = StockSelector(session).list_stock(
            item_id=reference_data.item_b, location_id=reference_data.loc_2
        )
        assert len(snapshots) == 1
        assert snapshots[0].quantity == Decimal("4.00")


class TestLockTimeout:
    @pytest.mark.skipif(_on_postgres(), reason="keyed mutex path is for non-PostgreSQL backends")
    def test_held_mutex_times_out(self, create_stock, session_factory, engine, reference_data):
        create_stock(quantity="1")
        key = (str(reference_data.item_a), str(reference_data.loc_1))
        scope = str(engine.url)
        entry = stock_locks._checkout(scope, key)
        entry.lock.acquire()
        waiter = session_factory()
        try:
            with pytest.raises(LockTimeoutError) as exc_info:
                StockLockManager(waiter, timeout_seconds=0.2).lock_pairs([key])
            assert exc_info.value.timeout_seconds == 0.2
            assert exc_info.value.code == "LOCK_TIMEOUT"
        finally:
            waiter.rollback()
            entry.lock.release()
            stock_locks._checkin(scope, key, entry)
        assert (scope, *key) not in stock_locks._registry

    @pytest.mark.postgres
    @pytest.mark.skipif(not _on_postgres(), reason="requires PostgreSQL row locks")
    def test_held_row_lock_times_out(self, create_stock, session_factory, reference_data):
        create_stock(quantity="1")
        pair = (reference_data.item_a, reference_data.loc_1)
        holder = session_factory()
        waiter = session_factory()
        try:
            StockLockManager(holder).lock_pairs([pair])
            with pytest.raises(LockTimeoutError):
                StockLockManager(waiter, timeout_seconds=0.2).lock_pairs([pair])
        finally:
            waiter.rollback()
            holder.rollback()

    def test_locks_released_at_transaction_end(self, create_stock, session_factory, reference_data):
        create_stock(quantity="1")
        pair = (reference_data.item_a, reference_data.loc_1)
        first = session_factory()
        manager = StockLockManager(first)
        manager.lock_pairs([pair])
        first.commit()
        assert manager.held_pairs() == []

        done = threading.Event()

        def _relock():
            second = session_factory()
            try:
                StockLockManager(second, timeout_seconds=2).lock_pairs([pair])
                done.set()
            finally:
                second.rollback()
                second.close()

        worker = threading.Thread(target=_relock)
        worker.start()
        worker.join(timeout=10)
        assert done.is_set()

    @pytest.mark.skipif(_on_postgres(), reason="keyed mutex path is for non-PostgreSQL backends")
    def test_registry_entries_dropped_after_release(self, create_stock, session_factory, engine, reference_data):
        create_stock(quantity="1")
        scope = str(engine.url)
        pairs = [
            (reference_data.item_a, reference_data.loc_1),
            (reference_data.item_b, reference_data.loc_2),
        ]
        holder = session_factory()
        StockLockManager(holder).lock_pairs(pairs)
        keys = [(scope, str(item), str(loc)) for item, loc in pairs]
        assert all(key in stock_locks._registry for key in keys)

        holder.rollback()

        assert not any(key in stock_locks._registry for key in keys)
