"""
ReferenceResolver -- existence checks for items, locations and users.

Responsibility:
    The one boundary through which the kernel asks "does this item /
    location / user exist".  Reference-data CRUD lives outside the kernel;
    services only need lookups, so they depend on the ``ReferenceResolver``
    protocol and get ``SqlReferenceResolver`` by default.

Failure modes:
    - UnknownReferenceError for an unknown item or location.
    - UnknownActorError for an unknown user.
"""

from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_kernel.exceptions import UnknownActorError, UnknownReferenceError
from inventory_kernel.models.reference import Item, Location, User
from inventory_kernel.services.base import coerce_uuid


class ReferenceResolver(Protocol):
    """Lookup boundary for reference data."""

    def resolve_item(self, item_id: UUID | str) -> Item: ...

    def resolve_location(self, location_id: UUID | str) -> Location: ...

    def resolve_user(self, user_id: UUID | str) -> User: ...


class SqlReferenceResolver:
    """
    Resolves references from the kernel's own reference tables.

    Reads through the caller's session, so rows inserted earlier in the same
    transaction are visible.
    """

    def __init__(self, session: Session):
        self._session = session

    def _get(self, model, raw_id):
        try:
            key = coerce_uuid(raw_id)
        except ValueError:
            return None
        return self._session.get(model, key)

    def resolve_item(self, item_id: UUID | str) -> Item:
        item = self._get(Item, item_id)
        if item is None:
            raise UnknownReferenceError("item", str(item_id))
        return item

    def resolve_location(self, location_id: UUID | str) -> Location:
        location = self._get(Location, location_id)
        if location is None:
            raise UnknownReferenceError("location", str(location_id))
        return location

    def resolve_user(self, user_id: UUID | str) -> User:
        user = self._get(User, user_id)
        if user is None:
            raise UnknownActorError(str(user_id))
        return user
