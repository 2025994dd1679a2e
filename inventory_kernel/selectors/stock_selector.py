"""
Module: inventory_kernel.selectors.stock_selector
Responsibility: Read-only views of stock rows: filtered listings, the
    snapshot feed for the low-stock / expiry scanner, and a ledger
    consistency check.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Low stock means quantity <= min_quantity.
    - Near expiry means expiry_date <= cutoff date.
    - verify_ledger() recomputes every quantity from its adjustments; it
      never trusts the stored quantity.
    - Stock rows are re-read on every query (populate_existing), so a
      session reused across commits sees the committed quantity.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.quantities import round_quantity
from inventory_kernel.domain.dtos import StockSnapshot
from inventory_kernel.models.reference import Item
from inventory_kernel.models.stock import Stock, StockAdjustment
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerDiscrepancy:
    """A stock whose quantity does not equal the sum of its deltas."""

    stock_id: UUID
    quantity: Decimal
    ledger_total: Decimal


class StockSelector(BaseSelector):
    """Queries over stock rows."""

    def list_stock(
        self,
        item_id: UUID | None = None,
        location_id: UUID | None = None,
        low_stock_only: bool = False,
    ) -> list[StockSnapshot]:
        """Stock rows ordered by item name, optionally filtered."""
        stmt = select(Stock).join(Item, Item.id == Stock.item_id)
        if item_id is not None:
            stmt = stmt.where(Stock.item_id == item_id)
        if location_id is not None:
            stmt = stmt.where(Stock.location_id == location_id)
        if low_stock_only:
            stmt = stmt.where(Stock.quantity <= Stock.min_quantity)
        stmt = stmt.order_by(Item.name, Stock.id).execution_options(populate_existing=True)
        return [StockSnapshot.from_model(s) for s in self.session.execute(stmt).scalars()]

    def snapshots(
        self,
        low_stock_only: bool = False,
        expiring_before: date | None = None,
    ) -> list[StockSnapshot]:
        """
        Snapshot feed for the scanner.

        With both filters set, a row is returned when it is low OR expiring,
        matching what a scanner alerts on.
        """
        stmt = select(Stock)
        conditions = []
        if low_stock_only:
            conditions.append(Stock.quantity <= Stock.min_quantity)
        if expiring_before is not None:
            conditions.append(
                Stock.expiry_date.is_not(None) & (Stock.expiry_date <= expiring_before)
            )
        if len(conditions) == 1:
            stmt = stmt.where(conditions[0])
        elif conditions:
            stmt = stmt.where(conditions[0] | conditions[1])
        stmt = stmt.order_by(Stock.item_id, Stock.location_id).execution_options(
            populate_existing=True
        )
        return [StockSnapshot.from_model(s) for s in self.session.execute(stmt).scalars()]

    def expiring_within(self, lead_days: int, today: date) -> list[StockSnapshot]:
        """Stock expiring on or before ``today + lead_days``."""
        return self.snapshots(expiring_before=today + timedelta(days=lead_days))

    def ledger_total(self, stock_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(StockAdjustment.delta), 0)).where(
                StockAdjustment.stock_id == stock_id
            )
        ).scalar_one()
        return round_quantity(total)

    def verify_ledger(self) -> list[LedgerDiscrepancy]:
        """Every stock whose quantity differs from the sum of its deltas."""
        totals = (
            select(
                StockAdjustment.stock_id.label("stock_id"),
                func.sum(StockAdjustment.delta).label("total"),
            )
            .group_by(StockAdjustment.stock_id)
            .subquery()
        )
        rows = self.session.execute(
            select(Stock.id, Stock.quantity, totals.c.total).outerjoin(
                totals, totals.c.stock_id == Stock.id
            )
        ).all()

        discrepancies = []
        for stock_id, quantity, total in rows:
            ledger_total = round_quantity(total if total is not None else 0)
            if round_quantity(quantity) != ledger_total:
                discrepancies.append(
                    LedgerDiscrepancy(
                        stock_id=stock_id,
                        quantity=round_quantity(quantity),
                        ledger_total=ledger_total,
                    )
                )
        return discrepancies
