"""Tier policy, quota and boost-credit resolution, and subscription purchase."""

from nestmate.entitlements.resolver import POLICY, EntitlementResolver, Entitlements, resolve
from nestmate.entitlements.subscriptions import CYCLE_LENGTH, TIER_PRICES, SubscriptionService, price_of

__all__ = [
    "Entitlements",
    "POLICY",
    "resolve",
    "EntitlementResolver",
    "TIER_PRICES",
    "CYCLE_LENGTH",
    "price_of",
    "SubscriptionService",
]
