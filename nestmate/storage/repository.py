"""Typed repositories on top of :class:`~nestmate.storage.gateway.PersistenceGateway`.

Each repository owns one table and translates between gateway rows and the
frozen pydantic models in :mod:`nestmate.core.models`:

* list-valued attributes are JSON arrays in TEXT columns;
* listing coordinates are split into ``lat`` / ``lng`` columns;
* instants are stored as ISO-8601 strings (pydantic's JSON mode).

Writes that must not clobber a concurrent change go through
:meth:`_Repository.compare_and_set`, which turns the difference between the
record the caller read and the record it wants into a conditional update
guarded by the read ``version``.

Typical usage::

    from nestmate.storage.repository import Repositories

    repos = Repositories(gateway)
    listing = await repos.listings.require(listing_id)
    expired = listing.model_copy(update={"manually_expired": True})
    listing = await repos.listings.replace(listing, expired)  # Conflict on a lost race
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel

from nestmate.core.exceptions import (
    ChatNotFound,
    Conflict,
    ListingNotFound,
    NestmateError,
    ProfileNotFound,
    RecordNotFound,
)
from nestmate.core.models import (
    Boost,
    Chat,
    Listing,
    Message,
    PaymentConfirmation,
    Profile,
    Report,
    Subscription,
)
from nestmate.storage.gateway import PersistenceGateway, Row

__all__ = [
    "ListingRepository",
    "BoostRepository",
    "ProfileRepository",
    "SubscriptionRepository",
    "ChatRepository",
    "MessageRepository",
    "ReportRepository",
    "PaymentRepository",
    "Repositories",
]

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class _Repository(Generic[_M]):
    """Shared row ↔ model mapping for one table.

    Subclasses set :attr:`table`, :attr:`model` and :attr:`json_fields`, and
    override :meth:`_to_row` / :meth:`_from_row` when a model's shape differs
    from its columns.
    """

    table: ClassVar[str]
    model: ClassVar[type[BaseModel]]
    json_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _to_row(self, record: _M) -> Row:
        row: Row = record.model_dump(mode="json")
        for name in self.json_fields:
            row[name] = json.dumps(row[name])
        return row

    def _from_row(self, row: Row) -> _M:
        data = dict(row)
        for name in self.json_fields:
            if isinstance(data.get(name), str):
                data[name] = json.loads(data[name])
        return self.model.model_validate(data)  # type: ignore[return-value]

    def _not_found(self, record_id: str) -> RecordNotFound:
        return RecordNotFound(self.table, record_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get(self, record_id: str) -> _M | None:
        row = await self._gateway.get(self.table, record_id)
        return self._from_row(row) if row is not None else None

    async def require(self, record_id: str) -> _M:
        """Like :meth:`get` but raises the table's not-found error."""
        record = await self.get(record_id)
        if record is None:
            raise self._not_found(record_id)
        return record

    async def insert(self, record: _M) -> str:
        return await self._gateway.insert(self.table, self._to_row(record))

    async def delete(self, record_id: str) -> bool:
        return await self._gateway.delete(self.table, record_id)

    @asynccontextmanager
    async def reserved(self, record: _M) -> AsyncIterator[_M]:
        """Insert *record* and delete it again if the block raises.

        The block is where the caller claims its guarding row.  Any
        :class:`~nestmate.core.exceptions.NestmateError` from it (a lost
        race, a timeout, an unavailable store) removes the reservation
        before the error propagates, so a failed write leaves nothing behind.
        """
        await self.insert(record)
        try:
            yield record
        except NestmateError:
            try:
                await self.delete(record.id)  # type: ignore[attr-defined]
            except NestmateError as exc:
                logger.warning(
                    "Could not remove reserved %s row %s: %s",
                    self.table,
                    record.id,  # type: ignore[attr-defined]
                    exc,
                )
            raise

    async def compare_and_set(self, current: _M, updated: _M) -> bool:
        """Persist *updated* only if the row is still at ``current.version``.

        Only columns whose value differs are written; an unchanged record
        still bumps the version, which is how a caller claims a row.

        Returns:
            ``False`` if a concurrent writer changed the row first.
        """
        before = self._to_row(current)
        after = self._to_row(updated)
        patch = {k: v for k, v in after.items() if before.get(k) != v and k != "version"}
        return await self._gateway.conditional_update(
            self.table,
            after["id"],
            current.version,  # type: ignore[attr-defined]
            patch,
        )

    async def replace(self, current: _M, updated: _M) -> _M:
        """:meth:`compare_and_set` that raises on a lost race.

        Returns:
            *updated* at its new stored version.

        Raises:
            Conflict: If a concurrent writer changed the row first.
        """
        if not await self.compare_and_set(current, updated):
            raise Conflict(self.table, current.id)  # type: ignore[attr-defined]
        return updated.model_copy(update={"version": current.version + 1})  # type: ignore[attr-defined]

    async def _select(self, where: dict[str, Any] | None = None, **kwargs: Any) -> list[_M]:
        rows = await self._gateway.query(self.table, where, **kwargs)
        return [self._from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Listings and boosts
# ---------------------------------------------------------------------------


class ListingRepository(_Repository[Listing]):
    table = "listings"
    model = Listing
    json_fields = ("images", "tags", "amenities")

    def _to_row(self, record: Listing) -> Row:
        row = super()._to_row(record)
        coordinates = row.pop("coordinates")
        row["lat"] = coordinates["lat"] if coordinates else None
        row["lng"] = coordinates["lng"] if coordinates else None
        return row

    def _from_row(self, row: Row) -> Listing:
        data = dict(row)
        lat, lng = data.pop("lat", None), data.pop("lng", None)
        data["coordinates"] = {"lat": lat, "lng": lng} if lat is not None and lng is not None else None
        return super()._from_row(data)

    def _not_found(self, record_id: str) -> RecordNotFound:
        return ListingNotFound(record_id)

    async def by_owner(self, owner_id: str) -> list[Listing]:
        return await self._select({"owner_id": owner_id})

    async def all(self) -> list[Listing]:
        return await self._select()


class BoostRepository(_Repository[Boost]):
    table = "boosts"
    model = Boost

    async def by_listing(self, listing_id: str) -> list[Boost]:
        return await self._select({"listing_id": listing_id})

    async def by_user(self, user_id: str) -> list[Boost]:
        return await self._select({"user_id": user_id})

    async def for_listings(self, listing_ids: Iterable[str]) -> list[Boost]:
        wanted = set(listing_ids)
        if not wanted:
            return []
        return await self._select(predicate=lambda row: row["listing_id"] in wanted)


# ---------------------------------------------------------------------------
# Accounts and plans
# ---------------------------------------------------------------------------


class ProfileRepository(_Repository[Profile]):
    table = "profiles"
    model = Profile

    def _not_found(self, record_id: str) -> RecordNotFound:
        return ProfileNotFound(record_id)


class SubscriptionRepository(_Repository[Subscription]):
    table = "subscriptions"
    model = Subscription

    async def by_user(self, user_id: str) -> list[Subscription]:
        return await self._select({"user_id": user_id})


class PaymentRepository(_Repository[PaymentConfirmation]):
    """Payment confirmations, keyed by ``purchase_ref`` (stored as ``id``)."""

    table = "payments"
    model = PaymentConfirmation

    def _to_row(self, record: PaymentConfirmation) -> Row:
        row = super()._to_row(record)
        row["id"] = row.pop("purchase_ref")
        return row

    def _from_row(self, row: Row) -> PaymentConfirmation:
        data = dict(row)
        data["purchase_ref"] = data.pop("id")
        return super()._from_row(data)


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------


class ChatRepository(_Repository[Chat]):
    table = "chats"
    model = Chat

    def _not_found(self, record_id: str) -> RecordNotFound:
        return ChatNotFound(record_id)

    async def by_pair_key(self, key: str) -> Chat | None:
        chats = await self._select({"pair_key": key})
        return chats[0] if chats else None

    async def for_user(self, user_id: str) -> list[Chat]:
        return await self._select(
            predicate=lambda row: user_id in (row["user1"], row["user2"])
        )


class MessageRepository(_Repository[Message]):
    table = "messages"
    model = Message

    async def by_chat(self, chat_id: str) -> list[Message]:
        """Return the chat's messages ordered by ``(created_at, id)``."""
        messages = await self._select({"chat_id": chat_id})
        return sorted(messages, key=lambda m: m.sort_key)


class ReportRepository(_Repository[Report]):
    table = "reports"
    model = Report

    async def by_reporter(self, user_id: str) -> list[Report]:
        return await self._select({"reported_by": user_id})


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


class Repositories:
    """All repositories sharing one gateway."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway
        self.listings = ListingRepository(gateway)
        self.boosts = BoostRepository(gateway)
        self.profiles = ProfileRepository(gateway)
        self.subscriptions = SubscriptionRepository(gateway)
        self.payments = PaymentRepository(gateway)
        self.chats = ChatRepository(gateway)
        self.messages = MessageRepository(gateway)
        self.reports = ReportRepository(gateway)
