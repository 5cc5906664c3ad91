"""Listing lifecycle: creation under quota, manual expiry, views and boosts.

Every check-then-write operation follows the same shape:

1. read the current records;
2. validate the rule (quota, ownership, "no active boost" …);
3. write through a conditional update on a *guarding* row.

Where the write creates a new record (a listing, a boost), the record is
inserted first as a **reservation** and the guarding row is claimed
afterwards by bumping its version.  A caller whose claim fails (a lost race
or a storage error) deletes its reservation; a lost race raises
:class:`~nestmate.core.exceptions.Conflict` and
:func:`~nestmate.storage.retry.retry_on_conflict` then re-runs the whole
operation, whose fresh read now sees the winner.  Two racing
``attach_boost`` calls therefore end as exactly one boost and one
:class:`~nestmate.core.exceptions.BoostAlreadyActive`.

Guarding rows:

* ``create_listing``: the owner's profile (when the quota is bounded);
* ``attach_boost``: the owner's profile.  Only the owner may boost a
  listing, so that one row serialises both the "no active boost" check and
  the boost credit.  Views and edits write the listing row and therefore
  never make a boost lose its claim.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from nestmate.core import events
from nestmate.core.clock import Clock
from nestmate.core.exceptions import (
    BoostAlreadyActive,
    BoostCreditExhausted,
    Conflict,
    ListingExpired,
    NestmateError,
    NotOwner,
    QuotaExceeded,
)
from nestmate.core.ids import new_id
from nestmate.core.models import Boost, Listing, ListingChanges, ListingDraft, PaymentPurpose
from nestmate.core.settings import Settings
from nestmate.entitlements.resolver import EntitlementResolver
from nestmate.payments.ledger import PaymentLedger
from nestmate.storage.repository import Repositories
from nestmate.storage.retry import retry_on_conflict

__all__ = ["ListingStatus", "ListingLifecycleManager"]

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass(frozen=True, slots=True)
class ListingStatus:
    """One row of the owner dashboard, with derived state at one instant."""

    listing: Listing
    is_active: bool
    days_remaining: int
    is_boosted: bool


class ListingLifecycleManager:
    """Owns listing state transitions and boost attachment.

    Args:
        repos: Repository bundle.
        resolver: Quota and boost-credit lookups.
        ledger: Payment confirmations for paid boosts.
        clock: Time source; read once per operation.
        settings: Listing lifetime, boost duration and retry bound.
    """

    def __init__(
        self,
        repos: Repositories,
        resolver: EntitlementResolver,
        ledger: PaymentLedger,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._repos = repos
        self._resolver = resolver
        self._ledger = ledger
        self._clock = clock
        self._settings = settings

    async def _retry(self, fn: Callable[[], Awaitable[_T]], operation: str) -> _T:
        return await retry_on_conflict(
            fn,
            max_attempts=self._settings.conflict_max_attempts,
            operation=operation,
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_listing(self, owner_id: str, draft: ListingDraft) -> Listing:
        """Create an active listing for *owner_id*.

        Raises:
            ProfileNotFound: If the owner has no profile.
            QuotaExceeded: If the owner already holds their plan's maximum
                number of active listings.
        """
        return await self._retry(lambda: self._create_once(owner_id, draft), "create_listing")

    async def _create_once(self, owner_id: str, draft: ListingDraft) -> Listing:
        now = self._clock.now()
        # Profile first: its version must be read no later than the listing count.
        profile = await self._repos.profiles.require(owner_id)
        entitlements = await self._resolver.quota_for(owner_id, now)
        active = [l for l in await self._repos.listings.by_owner(owner_id) if l.is_active(now)]

        if not entitlements.allows_another_listing(len(active)):
            logger.info(
                "User %s hit the active listing quota (%s)",
                owner_id,
                entitlements.max_active_listings,
                extra={"event": events.LISTING_QUOTA_EXCEEDED},
            )
            raise QuotaExceeded(owner_id, entitlements.max_active_listings or 0)

        listing = Listing(
            id=new_id(),
            owner_id=owner_id,
            **draft.model_dump(),
            created_at=now,
            updated_at=now,
            expires_at=now + self._settings.listing_lifetime,
        )
        async with self._repos.listings.reserved(listing):
            if not entitlements.unbounded_listings:
                if not await self._repos.profiles.compare_and_set(profile, profile):
                    raise Conflict("profiles", owner_id)

        logger.info(
            "Listing %s created by %s (expires %s)",
            listing.id,
            owner_id,
            listing.expires_at.isoformat(),
            extra={"event": events.LISTING_CREATED},
        )
        return listing

    # ------------------------------------------------------------------
    # Owner edits
    # ------------------------------------------------------------------

    async def mark_expired(self, listing_id: str, actor_id: str) -> Listing:
        """Expire a listing by hand.  Repeating the call is a no-op success.

        Raises:
            ListingNotFound: If the listing does not exist.
            NotOwner: If *actor_id* does not own the listing.
        """
        return await self._retry(lambda: self._mark_expired_once(listing_id, actor_id), "mark_expired")

    async def _mark_expired_once(self, listing_id: str, actor_id: str) -> Listing:
        now = self._clock.now()
        listing = await self._repos.listings.require(listing_id)
        if listing.owner_id != actor_id:
            raise NotOwner(listing_id, actor_id)
        if listing.manually_expired:
            return listing

        expired = listing.model_copy(
            update={"manually_expired": True, "updated_at": max(now, listing.updated_at)}
        )
        expired = await self._repos.listings.replace(listing, expired)
        logger.info(
            "Listing %s expired by owner",
            listing_id,
            extra={"event": events.LISTING_EXPIRED},
        )
        return expired

    async def update_listing(self, listing_id: str, actor_id: str, changes: ListingChanges) -> Listing:
        """Apply an owner's edit to the descriptive fields of a listing.

        Ownership, lifetime, the expiry flag and the view counter cannot be
        changed this way.
        """
        return await self._retry(
            lambda: self._update_once(listing_id, actor_id, changes), "update_listing"
        )

    async def _update_once(self, listing_id: str, actor_id: str, changes: ListingChanges) -> Listing:
        now = self._clock.now()
        listing = await self._repos.listings.require(listing_id)
        if listing.owner_id != actor_id:
            raise NotOwner(listing_id, actor_id)

        update = changes.as_update()
        if not update:
            return listing
        update["updated_at"] = max(now, listing.updated_at)
        # Validate through the model so an edit cannot break a field constraint.
        edited = Listing.model_validate({**listing.model_dump(), **_plain(update)})
        edited = await self._repos.listings.replace(listing, edited)
        logger.info(
            "Listing %s updated (%s)",
            listing_id,
            ", ".join(sorted(k for k in update if k != "updated_at")),
            extra={"event": events.LISTING_UPDATED},
        )
        return edited

    async def delete_listing(self, listing_id: str, actor_id: str) -> None:
        """Hard-delete a listing.

        Its boosts stay stored: they still count against the owner's boost
        credit for the billing period they were bought in.

        Raises:
            ListingNotFound: If the listing does not exist.
            NotOwner: If *actor_id* does not own the listing.
        """
        listing = await self._repos.listings.require(listing_id)
        if listing.owner_id != actor_id:
            raise NotOwner(listing_id, actor_id)
        await self._repos.listings.delete(listing_id)
        logger.info(
            "Listing %s deleted by owner",
            listing_id,
            extra={"event": events.LISTING_DELETED},
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def record_view(self, listing_id: str) -> None:
        """Count one detail-page view.  Never raises.

        Views are telemetry: a missing listing, a lost race or a storage
        failure is logged and the caller's flow continues.
        """
        try:
            await self._retry(lambda: self._record_view_once(listing_id), "record_view")
        except NestmateError as exc:
            logger.warning(
                "View of listing %s not recorded: %s",
                listing_id,
                exc,
                extra={"event": events.LISTING_VIEW_NOT_RECORDED},
            )

    async def _record_view_once(self, listing_id: str) -> None:
        listing = await self._repos.listings.require(listing_id)
        await self._repos.listings.replace(
            listing, listing.model_copy(update={"view_count": listing.view_count + 1})
        )

    # ------------------------------------------------------------------
    # Boosts
    # ------------------------------------------------------------------

    async def attach_boost(
        self,
        listing_id: str,
        user_id: str,
        amount: int,
        purchase_ref: str | None = None,
    ) -> Boost:
        """Start a boost window on a listing.

        Checks run in this order: ownership, listing active, no boost
        already running, boost credit left in the billing period, and (when
        *purchase_ref* is given) a confirmed ``boost`` payment.  *amount* is
        recorded as given.

        Raises:
            ListingNotFound: If the listing does not exist.
            NotOwner: If *user_id* does not own the listing.
            ListingExpired: If the listing is not active.
            BoostAlreadyActive: If a boost on the listing is still running.
            BoostCreditExhausted: If the user has no boost credit left.
            PaymentNotConfirmed: If *purchase_ref* is not a confirmed boost
                payment by *user_id*.
        """
        return await self._retry(
            lambda: self._attach_boost_once(listing_id, user_id, amount, purchase_ref),
            "attach_boost",
        )

    async def _attach_boost_once(
        self,
        listing_id: str,
        user_id: str,
        amount: int,
        purchase_ref: str | None,
    ) -> Boost:
        now = self._clock.now()
        listing = await self._repos.listings.require(listing_id)
        if listing.owner_id != user_id:
            raise NotOwner(listing_id, user_id)
        # Profile version must be read before the boosts it guards.
        profile = await self._repos.profiles.require(user_id)
        if not listing.is_active(now):
            raise ListingExpired(listing_id)
        if any(b.is_active(now) for b in await self._repos.boosts.by_listing(listing_id)):
            self._log_rejection(listing_id, "a boost is already running")
            raise BoostAlreadyActive(listing_id)

        if await self._resolver.boost_credits_remaining(user_id, now) <= 0:
            self._log_rejection(listing_id, "no boost credit left")
            raise BoostCreditExhausted(user_id)
        if purchase_ref is not None:
            await self._ledger.require_confirmed(
                purchase_ref, user_id, PaymentPurpose.BOOST, min_amount=self._settings.boost_fee
            )

        boost = Boost(
            id=new_id(),
            listing_id=listing_id,
            user_id=user_id,
            amount=amount,
            duration_hours=self._settings.boost_duration_hours,
            start_time=now,
        )
        async with self._repos.boosts.reserved(boost):
            if not await self._repos.profiles.compare_and_set(profile, profile):
                raise Conflict("profiles", user_id)

        logger.info(
            "Boost %s attached to listing %s until %s",
            boost.id,
            listing_id,
            boost.ends_at.isoformat(),
            extra={"event": events.BOOST_ATTACHED},
        )
        return boost

    def _log_rejection(self, listing_id: str, reason: str) -> None:
        logger.info(
            "Boost on listing %s rejected: %s",
            listing_id,
            reason,
            extra={"event": events.BOOST_REJECTED},
        )

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    async def owner_dashboard(self, owner_id: str) -> list[ListingStatus]:
        """Return the owner's listings, newest first, with derived state."""
        now = self._clock.now()
        listings = await self._repos.listings.by_owner(owner_id)
        boosts = await self._repos.boosts.for_listings(l.id for l in listings)
        boosted = {b.listing_id for b in boosts if b.is_active(now)}
        listings.sort(key=lambda l: (l.created_at, l.id), reverse=True)
        return [
            ListingStatus(
                listing=listing,
                is_active=listing.is_active(now),
                days_remaining=listing.days_remaining(now),
                is_boosted=listing.id in boosted and listing.is_active(now),
            )
            for listing in listings
        ]


def _plain(update: dict[str, object]) -> dict[str, object]:
    """Turn nested models in an update mapping into plain dicts."""
    return {k: v.model_dump() if hasattr(v, "model_dump") else v for k, v in update.items()}
