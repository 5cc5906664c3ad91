"""Listing creation, expiry, views, edits and boosts."""

from nestmate.lifecycle.manager import ListingLifecycleManager, ListingStatus

__all__ = ["ListingLifecycleManager", "ListingStatus"]
