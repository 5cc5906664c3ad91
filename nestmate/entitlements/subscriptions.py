"""Subscription purchase for business accounts.

A purchase **supersedes** the current plan rather than stacking with it: the
new subscription starts now, and any subscription that was still running is
cut off at the same instant.  Afterwards the subscription with the latest
``expires_at`` is always the one just bought, which is the one
:class:`~nestmate.entitlements.resolver.EntitlementResolver` consults.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Final

from nestmate.core import events
from nestmate.core.clock import Clock
from nestmate.core.exceptions import Conflict, DuplicateRecord, NotBusinessUser, PaymentNotConfirmed
from nestmate.core.ids import new_id
from nestmate.core.models import BillingCycle, PaymentPurpose, Subscription, Tier, UserType
from nestmate.payments.ledger import PaymentLedger
from nestmate.storage.repository import Repositories
from nestmate.storage.retry import retry_on_conflict

__all__ = ["TIER_PRICES", "CYCLE_LENGTH", "price_of", "SubscriptionService"]

logger = logging.getLogger(__name__)

#: Plan prices per billing cycle.
TIER_PRICES: Final[dict[Tier, dict[BillingCycle, int]]] = {
    Tier.BASIC: {BillingCycle.MONTHLY: 0, BillingCycle.YEARLY: 0},
    Tier.STANDARD: {BillingCycle.MONTHLY: 249, BillingCycle.YEARLY: 2499},
    Tier.PREMIUM: {BillingCycle.MONTHLY: 999, BillingCycle.YEARLY: 9999},
}

CYCLE_LENGTH: Final[dict[BillingCycle, timedelta]] = {
    BillingCycle.MONTHLY: timedelta(days=30),
    BillingCycle.YEARLY: timedelta(days=365),
}


def price_of(tier: Tier, cycle: BillingCycle) -> int:
    return TIER_PRICES[tier][cycle]


class SubscriptionService:
    """Buy and inspect business subscriptions.

    Args:
        repos: Repository bundle.
        ledger: Confirmed payments; paid tiers need one.
        clock: Time source.
        conflict_max_attempts: Retry bound for cutting off the previous plan.
    """

    def __init__(
        self,
        repos: Repositories,
        ledger: PaymentLedger,
        clock: Clock,
        *,
        conflict_max_attempts: int = 3,
    ) -> None:
        self._repos = repos
        self._ledger = ledger
        self._clock = clock
        self._conflict_max_attempts = conflict_max_attempts

    async def purchase_subscription(
        self,
        user_id: str,
        tier: Tier,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        purchase_ref: str | None = None,
    ) -> Subscription:
        """Start a new *tier* subscription for *user_id* from now.

        Raises:
            ProfileNotFound: If the user has no profile.
            NotBusinessUser: If the user is not a business account.
            PaymentNotConfirmed: If the tier costs money and *purchase_ref*
                is not a confirmed ``subscription`` payment by this user.
        """
        now = self._clock.now()
        profile = await self._repos.profiles.require(user_id)
        if profile.user_type != UserType.BUSINESS:
            raise NotBusinessUser(user_id)
        price = price_of(tier, billing_cycle)
        if price > 0:
            await self._ledger.require_confirmed(
                purchase_ref, user_id, PaymentPurpose.SUBSCRIPTION, min_amount=price
            )

        previous = [s for s in await self._repos.subscriptions.by_user(user_id) if s.is_current(now)]

        subscription = Subscription(
            id=new_id(),
            user_id=user_id,
            tier=tier,
            start_date=now,
            expires_at=now + CYCLE_LENGTH[billing_cycle],
            purchase_ref=purchase_ref,
        )
        try:
            await self._repos.subscriptions.insert(subscription)
        except DuplicateRecord as exc:
            # One payment buys one subscription.
            raise PaymentNotConfirmed(purchase_ref or "<missing>", str(PaymentPurpose.SUBSCRIPTION)) from exc

        for old in previous:
            await retry_on_conflict(
                lambda old_id=old.id: self._cut_off(old_id, now),
                max_attempts=self._conflict_max_attempts,
                operation="supersede_subscription",
            )

        logger.info(
            "User %s subscribed to %s (%s) until %s, superseding %d plan(s)",
            user_id,
            tier,
            billing_cycle,
            subscription.expires_at.isoformat(),
            len(previous),
            extra={"event": events.SUBSCRIPTION_PURCHASED},
        )
        return subscription

    async def _cut_off(self, subscription_id: str, now: datetime) -> None:
        current = await self._repos.subscriptions.get(subscription_id)
        if current is None or not current.is_current(now):
            return
        ended = current.model_copy(update={"expires_at": now})
        if not await self._repos.subscriptions.compare_and_set(current, ended):
            raise Conflict("subscriptions", subscription_id)
