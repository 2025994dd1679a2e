"""
Module: inventory_kernel.models.reference
Responsibility: Minimal reference tables (items, locations, users) that stock
    rows and documents point at.
Architecture position: Kernel > Models.  May import from db/base.py only.

The kernel only needs to know whether a referenced id exists; full CRUD for
these tables (categories, tags, units of measure, user accounts) lives
outside the kernel.  Rows are inserted by the owning application or by tests.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TimestampedBase


class Item(TimestampedBase):
    """A stockable article."""

    __tablename__ = "items"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Display unit, e.g. "pcs", "kg"
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)

    def __repr__(self) -> str:
        return f"<Item {self.name}>"


class Location(TimestampedBase):
    """A place where stock is kept."""

    __tablename__ = "locations"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    def __repr__(self) -> str:
        return f"<Location {self.name}>"


class User(TimestampedBase):
    """An actor that creates, confirms or adjusts records."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.username}>"
