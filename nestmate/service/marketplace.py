"""Caller-facing facade over the Nestmate engines.

:class:`Marketplace` wires the engines to one gateway and one clock and
exposes their public operations.  Each operation:

1. tags its log lines with a fresh request id;
2. runs the engine call;
3. returns an :class:`~nestmate.core.results.OperationResult`, converting any
   :class:`~nestmate.core.exceptions.NestmateError` into a failed result.

Anything that is not a ``NestmateError`` is a bug and propagates.

Typical usage::

    async with await Marketplace.open(Settings()) as market:
        result = await market.create_listing(owner_id, draft)
        if not result.ok:
            print(result.message)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import aiosqlite

from nestmate.accounts.profiles import ProfileService
from nestmate.core import events
from nestmate.core.clock import Clock, SystemClock
from nestmate.core.criteria import FeedCriteria
from nestmate.core.exceptions import NestmateError
from nestmate.core.ids import new_id
from nestmate.core.logging_config import REQUEST_ID_CTX
from nestmate.core.models import (
    BillingCycle,
    Boost,
    Chat,
    Gender,
    Listing,
    ListingChanges,
    ListingDraft,
    Message,
    PaymentConfirmation,
    PaymentPurpose,
    Profile,
    Report,
    ReportReason,
    Subscription,
    Tier,
    UserType,
)
from nestmate.core.results import OperationResult
from nestmate.core.settings import Settings
from nestmate.entitlements.resolver import EntitlementResolver, Entitlements
from nestmate.entitlements.subscriptions import SubscriptionService
from nestmate.lifecycle.manager import ListingLifecycleManager, ListingStatus
from nestmate.messaging.access_control import ContactDetails, MessagingEngine
from nestmate.payments.ledger import PaymentLedger
from nestmate.storage.database import open_db
from nestmate.storage.gateway import PersistenceGateway
from nestmate.storage.repository import Repositories
from nestmate.visibility.ranking import VisibilityEngine

__all__ = ["Marketplace"]

logger = logging.getLogger(__name__)

_V = TypeVar("_V")


class Marketplace:
    """All Nestmate operations behind one result-returning surface.

    Args:
        repos: Repository bundle over an open gateway.
        settings: Policy and retry settings.
        clock: Time source; defaults to :class:`SystemClock`.
        conn: Connection to close in :meth:`close`, when this instance owns it.
    """

    def __init__(
        self,
        repos: Repositories,
        settings: Settings | None = None,
        clock: Clock | None = None,
        *,
        conn: aiosqlite.Connection | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.clock = clock or SystemClock()
        self.repos = repos
        self._conn = conn

        retries = self.settings.conflict_max_attempts
        self.ledger = PaymentLedger(repos.payments, self.clock)
        self.resolver = EntitlementResolver(repos)
        self.profiles = ProfileService(repos, self.clock, conflict_max_attempts=retries)
        self.subscriptions = SubscriptionService(
            repos, self.ledger, self.clock, conflict_max_attempts=retries
        )
        self.lifecycle = ListingLifecycleManager(
            repos, self.resolver, self.ledger, self.clock, self.settings
        )
        self.visibility = VisibilityEngine(repos, self.clock)
        self.messaging = MessagingEngine(repos, self.ledger, self.clock, self.settings)

    @classmethod
    async def open(cls, settings: Settings | None = None, clock: Clock | None = None) -> Marketplace:
        """Open the configured database and return a marketplace that owns it."""
        settings = settings or Settings()
        conn = await open_db(settings.database_path)
        gateway = PersistenceGateway(conn, timeout=settings.gateway_timeout_s)
        return cls(Repositories(gateway), settings, clock, conn=conn)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> Marketplace:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _run(self, operation: str, call: Callable[[], Awaitable[_V]]) -> OperationResult[_V]:
        token = REQUEST_ID_CTX.set(new_id()[:8])
        try:
            value = await call()
        except NestmateError as exc:
            logger.warning(
                "%s failed: %s (%s)",
                operation,
                exc.kind,
                exc,
                extra={"event": events.OPERATION_FAILED},
            )
            return OperationResult.failure(exc)
        finally:
            REQUEST_ID_CTX.reset(token)
        return OperationResult.success(value)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def create_profile(
        self,
        user_id: str,
        display_name: str = "",
        gender: Gender | None = None,
        phone_number: str | None = None,
    ) -> OperationResult[Profile]:
        return await self._run(
            "create_profile",
            lambda: self.profiles.create_profile(user_id, display_name, gender, phone_number),
        )

    async def set_user_type(self, user_id: str, user_type: UserType) -> OperationResult[Profile]:
        return await self._run("set_user_type", lambda: self.profiles.set_user_type(user_id, user_type))

    async def get_profile(self, user_id: str) -> OperationResult[Profile]:
        return await self._run("get_profile", lambda: self.profiles.get_profile(user_id))

    # ------------------------------------------------------------------
    # Payments and plans
    # ------------------------------------------------------------------

    async def record_payment(
        self,
        purchase_ref: str,
        user_id: str,
        purpose: PaymentPurpose,
        amount: int,
    ) -> OperationResult[PaymentConfirmation]:
        """Entry point for the payment collaborator's "payment confirmed" event."""
        return await self._run(
            "record_payment",
            lambda: self.ledger.record_confirmation(purchase_ref, user_id, purpose, amount),
        )

    async def purchase_subscription(
        self,
        user_id: str,
        tier: Tier,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        purchase_ref: str | None = None,
    ) -> OperationResult[Subscription]:
        return await self._run(
            "purchase_subscription",
            lambda: self.subscriptions.purchase_subscription(user_id, tier, billing_cycle, purchase_ref),
        )

    async def quota_for(self, user_id: str) -> OperationResult[Entitlements]:
        return await self._run("quota_for", lambda: self.resolver.quota_for(user_id, self.clock.now()))

    async def boost_credits_remaining(self, user_id: str) -> OperationResult[int]:
        return await self._run(
            "boost_credits_remaining",
            lambda: self.resolver.boost_credits_remaining(user_id, self.clock.now()),
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def create_listing(self, owner_id: str, draft: ListingDraft) -> OperationResult[Listing]:
        return await self._run("create_listing", lambda: self.lifecycle.create_listing(owner_id, draft))

    async def update_listing(
        self, listing_id: str, actor_id: str, changes: ListingChanges
    ) -> OperationResult[Listing]:
        return await self._run(
            "update_listing",
            lambda: self.lifecycle.update_listing(listing_id, actor_id, changes),
        )

    async def mark_expired(self, listing_id: str, actor_id: str) -> OperationResult[Listing]:
        return await self._run("mark_expired", lambda: self.lifecycle.mark_expired(listing_id, actor_id))

    async def delete_listing(self, listing_id: str, actor_id: str) -> OperationResult[None]:
        return await self._run(
            "delete_listing", lambda: self.lifecycle.delete_listing(listing_id, actor_id)
        )

    async def record_view(self, listing_id: str) -> OperationResult[None]:
        return await self._run("record_view", lambda: self.lifecycle.record_view(listing_id))

    async def attach_boost(
        self,
        listing_id: str,
        user_id: str,
        amount: int,
        purchase_ref: str | None = None,
    ) -> OperationResult[Boost]:
        return await self._run(
            "attach_boost",
            lambda: self.lifecycle.attach_boost(listing_id, user_id, amount, purchase_ref),
        )

    async def owner_dashboard(self, owner_id: str) -> OperationResult[list[ListingStatus]]:
        return await self._run("owner_dashboard", lambda: self.lifecycle.owner_dashboard(owner_id))

    async def feed(self, viewer_id: str, criteria: FeedCriteria | None = None) -> OperationResult[list[Listing]]:
        return await self._run("feed", lambda: self.visibility.feed_for(viewer_id, criteria))

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(
        self,
        chat_id: str | None,
        from_user: str,
        to_user: str,
        content: str | None = None,
        image_url: str | None = None,
    ) -> OperationResult[Message]:
        return await self._run(
            "send_message",
            lambda: self.messaging.send_message(chat_id, from_user, to_user, content, image_url),
        )

    async def request_contact_disclosure(self, chat_id: str, requester_id: str) -> OperationResult[Chat]:
        return await self._run(
            "request_contact_disclosure",
            lambda: self.messaging.request_contact_disclosure(chat_id, requester_id),
        )

    async def confirm_disclosure(
        self, chat_id: str, paying_user_id: str, purchase_ref: str | None
    ) -> OperationResult[Chat]:
        return await self._run(
            "confirm_disclosure",
            lambda: self.messaging.confirm_disclosure(chat_id, paying_user_id, purchase_ref),
        )

    async def contact_details(self, chat_id: str, viewer_id: str) -> OperationResult[ContactDetails]:
        return await self._run(
            "contact_details", lambda: self.messaging.contact_details(chat_id, viewer_id)
        )

    async def history(self, chat_id: str, viewer_id: str) -> OperationResult[list[Message]]:
        return await self._run("history", lambda: self.messaging.history(chat_id, viewer_id))

    async def chats_for(self, user_id: str) -> OperationResult[list[Chat]]:
        return await self._run("chats_for", lambda: self.messaging.chats_for(user_id))

    async def block_chat(self, chat_id: str) -> OperationResult[Chat]:
        return await self._run("block_chat", lambda: self.messaging.block_chat(chat_id))

    async def report(
        self,
        reporter_id: str,
        reason: ReportReason | str,
        target_user: str | None = None,
        target_listing: str | None = None,
        details: str = "",
    ) -> OperationResult[Report]:
        return await self._run(
            "report",
            lambda: self.messaging.report(reporter_id, reason, target_user, target_listing, details),
        )
