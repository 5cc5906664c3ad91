"""Feed visibility and ranking.

:func:`feed` is a pure function of its arguments: the viewer, the search
criteria, the candidate listings, their boosts and one instant.  It holds no
state between calls, draws no random numbers and breaks every tie, so the
same inputs always give the same sequence.

Filtering (every step must pass):

1. the listing is active, or the viewer owns it;
2. a same-gender-restricted listing is shown only to viewers of the
   preferred gender;
3. the viewer's :class:`~nestmate.core.criteria.FeedCriteria`.

Ranking, highest first:

1. listings with a running boost, most recently boosted first;
2. everything else;

each group by ``created_at`` descending, then by ``id``.

:class:`VisibilityEngine` is the storage-backed wrapper that loads the
candidates and calls :func:`feed`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from nestmate.core.clock import Clock
from nestmate.core.criteria import FeedCriteria
from nestmate.core.models import Boost, GenderPreference, Listing, Profile
from nestmate.storage.repository import Repositories

__all__ = ["is_visible_to", "ranking_key", "feed", "VisibilityEngine"]

logger = logging.getLogger(__name__)


def is_visible_to(viewer: Profile, listing: Listing, now: datetime) -> bool:
    """Apply the access rules that hold regardless of the viewer's search."""
    is_owner = viewer.id == listing.owner_id
    if not listing.is_active(now) and not is_owner:
        return False
    if listing.restrict_to_same_gender and listing.gender_preference != GenderPreference.ANY:
        if viewer.gender is None or str(viewer.gender) != str(listing.gender_preference):
            return is_owner
    return True


def ranking_key(listing: Listing, boost_start: datetime | None) -> tuple:
    """Sort key for ascending sort that yields the feed order."""
    boosted = boost_start is not None
    return (
        0 if boosted else 1,
        -boost_start.timestamp() if boosted else 0.0,
        -listing.created_at.timestamp(),
        listing.id,
    )


def feed(
    viewer: Profile,
    criteria: FeedCriteria,
    listings: Iterable[Listing],
    boosts: Iterable[Boost],
    *,
    now: datetime,
) -> list[Listing]:
    """Return the listings *viewer* may see that match *criteria*, in feed order."""
    latest_boost: dict[str, datetime] = {}
    for boost in boosts:
        if boost.is_active(now):
            started = latest_boost.get(boost.listing_id)
            if started is None or boost.start_time > started:
                latest_boost[boost.listing_id] = boost.start_time

    visible = [
        listing
        for listing in listings
        if is_visible_to(viewer, listing, now) and criteria.matches_listing(listing)
    ]
    # An expired listing shown to its owner does not rank as boosted.
    visible.sort(
        key=lambda l: ranking_key(l, latest_boost.get(l.id) if l.is_active(now) else None)
    )
    return visible


class VisibilityEngine:
    """Load candidates through the gateway and rank them for a viewer.

    Args:
        repos: Repository bundle.
        clock: Time source; read once per feed.
    """

    def __init__(self, repos: Repositories, clock: Clock) -> None:
        self._repos = repos
        self._clock = clock

    async def feed_for(self, viewer_id: str, criteria: FeedCriteria | None = None) -> list[Listing]:
        """Return the feed of the viewer with id *viewer_id*.

        Raises:
            ProfileNotFound: If the viewer has no profile.
        """
        now = self._clock.now()
        viewer = await self._repos.profiles.require(viewer_id)
        listings = await self._repos.listings.all()
        boosts = await self._repos.boosts.for_listings(l.id for l in listings)
        result = feed(viewer, criteria or FeedCriteria(), listings, boosts, now=now)
        logger.debug(
            "Feed for %s: %d of %d listing(s) shown",
            viewer_id,
            len(result),
            len(listings),
        )
        return result
