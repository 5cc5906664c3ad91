"""Entitlement resolution: what a user's plan allows.

The policy table maps each :class:`~nestmate.core.models.Tier` to an
:class:`Entitlements` pair:

+------------+----------------------+---------------------------+
| Tier       | Max active listings  | Boost credits per period  |
+============+======================+===========================+
| basic      | 3                    | 0                         |
+------------+----------------------+---------------------------+
| standard   | 10                   | 1                         |
+------------+----------------------+---------------------------+
| premium    | unbounded            | 5                         |
+------------+----------------------+---------------------------+

Nothing here keeps a running counter.  Remaining boost credit is recomputed
on every call from the boosts the user actually created inside the current
billing period, so it cannot drift.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Final

from nestmate.core.models import Subscription, Tier, UserType
from nestmate.storage.repository import Repositories

__all__ = [
    "Entitlements",
    "POLICY",
    "resolve",
    "EntitlementResolver",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Entitlements:
    """Quota and credit limits of one tier.

    Attributes:
        max_active_listings: Active listings a user may hold at once;
            ``None`` means unbounded.
        boost_credits_per_period: Boosts allowed per billing period.
    """

    max_active_listings: int | None
    boost_credits_per_period: int

    @property
    def unbounded_listings(self) -> bool:
        return self.max_active_listings is None

    def allows_another_listing(self, active_count: int) -> bool:
        return self.max_active_listings is None or active_count < self.max_active_listings


POLICY: Final[dict[Tier, Entitlements]] = {
    Tier.BASIC: Entitlements(max_active_listings=3, boost_credits_per_period=0),
    Tier.STANDARD: Entitlements(max_active_listings=10, boost_credits_per_period=1),
    Tier.PREMIUM: Entitlements(max_active_listings=None, boost_credits_per_period=5),
}


def resolve(tier: Tier | str | None) -> Entitlements:
    """Return the entitlements of *tier*.

    Unknown or malformed tier values resolve as ``basic``.
    """
    try:
        return POLICY[Tier(tier)]
    except ValueError:
        logger.warning("Unknown subscription tier %r; treating as basic", tier)
        return POLICY[Tier.BASIC]


class EntitlementResolver:
    """Look up a user's effective tier and derived limits.

    Business users get the tier of their current subscription, or ``basic``
    without one.  Individual users, and users who have not finished
    onboarding, always get ``basic``.

    Args:
        repos: Repository bundle (profiles, subscriptions, boosts are read).
    """

    def __init__(self, repos: Repositories) -> None:
        self._repos = repos

    async def current_subscription(self, user_id: str, now: datetime) -> Subscription | None:
        """Return the subscription with the latest ``expires_at`` if it is still current."""
        subscriptions = await self._repos.subscriptions.by_user(user_id)
        if not subscriptions:
            return None
        latest = max(subscriptions, key=lambda s: (s.expires_at, s.start_date, s.id))
        return latest if latest.is_current(now) else None

    async def tier_for(self, user_id: str, now: datetime) -> Tier:
        profile = await self._repos.profiles.get(user_id)
        if profile is None or profile.user_type != UserType.BUSINESS:
            return Tier.BASIC
        subscription = await self.current_subscription(user_id, now)
        if subscription is None:
            return Tier.BASIC
        return subscription.tier

    async def quota_for(self, user_id: str, now: datetime) -> Entitlements:
        return resolve(await self.tier_for(user_id, now))

    async def billing_period(self, user_id: str, now: datetime) -> tuple[datetime, datetime] | None:
        """Return ``[start_date, expires_at)`` of the current subscription, if any."""
        subscription = await self.current_subscription(user_id, now)
        if subscription is None:
            return None
        return (subscription.start_date, subscription.expires_at)

    async def boost_credits_remaining(self, user_id: str, now: datetime) -> int:
        """Credits left in the current billing period, floored at zero.

        Without a current billing period the user is on ``basic``, which
        grants no credits, so the answer is zero.
        """
        entitlements = await self.quota_for(user_id, now)
        if entitlements.boost_credits_per_period <= 0:
            return 0
        period = await self.billing_period(user_id, now)
        if period is None:
            return 0
        start, end = period
        boosts = await self._repos.boosts.by_user(user_id)
        used = sum(1 for b in boosts if start <= b.start_time < end)
        return max(0, entitlements.boost_credits_per_period - used)
