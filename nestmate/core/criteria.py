"""Nestmate feed filter criteria.

Defines :class:`FeedCriteria`, the single data structure that describes
*what a viewer is searching for*.  The visibility engine evaluates every
candidate listing against these criteria after the access rules (expiry,
same-gender restriction) have been applied.

All predicates are AND-combined.  An empty ``FeedCriteria()`` matches every
listing.

Typical usage::

    from nestmate.core.criteria import FeedCriteria

    criteria = FeedCriteria(
        price_max=15000,
        location="Indiranagar",
        lifestyle=["vegetarian", "no_smoking"],
    )

    passed, reason = criteria.matches(listing)
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from geopy.distance import geodesic
from pydantic import BaseModel, Field, model_validator

from nestmate.core.models import Coordinates, GenderPreference, ListingKind, RoomType

if TYPE_CHECKING:
    from nestmate.core.models import Listing

__all__ = ["FeedCriteria", "normalise_tag"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_WHITESPACE_RE = re.compile(r"\s+")


def _normalise(text: str) -> str:
    """Lowercase and collapse internal whitespace for case-insensitive matching."""
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def normalise_tag(tag: str) -> str:
    """Fold a tag id or label to a comparable form.

    ``"no_smoking"``, ``"No Smoking"`` and ``"no-smoking"`` all become
    ``"no smoking"``.
    """
    return _normalise(tag.replace("_", " ").replace("-", " "))


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class FeedCriteria(BaseModel):
    """Viewer-supplied search filter.

    All bounds are *inclusive*.  ``None`` / empty means "no constraint on
    this axis."

    Attributes:
        price_min: Minimum monthly price.
        price_max: Maximum monthly price.
        location: Case-insensitive substring of the listing's location text.
        near: Centre point for a radius search.
        radius_km: Radius around ``near``.  Listings without coordinates do
            not pass an active radius search.
        gender: Listing gender preference wanted by the viewer.  Listings
            open to ``any`` gender always match.
        profession: Profession tag (e.g. ``"student"``).  ``"any"`` is the
            same as no constraint.
        lifestyle: Lifestyle tags; a listing must carry all of them.
        kind: Only roommate shares or only hostels.
        room_types: Allowlist of room types.  Empty list = no restriction.
    """

    model_config = {"frozen": True}

    # ------------------------------------------------------------------
    # Price
    # ------------------------------------------------------------------
    price_min: int | None = Field(None, ge=0, description="Minimum price (inclusive).")
    price_max: int | None = Field(None, ge=0, description="Maximum price (inclusive).")

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------
    location: str | None = Field(None, description="Substring of the location text.")
    near: Coordinates | None = Field(None, description="Centre of a radius search.")
    radius_km: float | None = Field(None, gt=0, description="Radius in km around `near`.")

    # ------------------------------------------------------------------
    # People and lifestyle
    # ------------------------------------------------------------------
    gender: GenderPreference | None = None
    profession: str | None = None
    lifestyle: list[str] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Listing shape
    # ------------------------------------------------------------------
    kind: ListingKind | None = None
    room_types: list[RoomType] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Cross-field validation
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_ranges(self) -> FeedCriteria:
        if (
            self.price_min is not None
            and self.price_max is not None
            and self.price_min > self.price_max
        ):
            raise ValueError(f"price_min ({self.price_min}) must be ≤ price_max ({self.price_max})")
        if (self.near is None) != (self.radius_km is None):
            raise ValueError("near and radius_km must be given together")
        return self

    # ------------------------------------------------------------------
    # Matching helpers
    # ------------------------------------------------------------------

    def matches_price(self, price: int) -> bool:
        if self.price_min is not None and price < self.price_min:
            return False
        if self.price_max is not None and price > self.price_max:
            return False
        return True

    def matches_location(self, location: str) -> bool:
        if not self.location or not self.location.strip():
            return True
        return _normalise(self.location) in _normalise(location)

    def matches_radius(self, coordinates: Coordinates | None) -> bool:
        """Return True if *coordinates* lie within ``radius_km`` of ``near``.

        Unlike the other axes, an unknown value does **not** pass: a radius
        search is an explicit request for listings that can be placed on a map.
        """
        if self.near is None or self.radius_km is None:
            return True
        if coordinates is None:
            return False
        distance = geodesic(
            (self.near.lat, self.near.lng),
            (coordinates.lat, coordinates.lng),
        ).kilometers
        return distance <= self.radius_km

    def matches_gender(self, preference: GenderPreference) -> bool:
        if self.gender is None or self.gender is GenderPreference.ANY:
            return True
        return preference in (GenderPreference.ANY, self.gender)

    def matches_tags(self, tags: list[str]) -> bool:
        """Return True if *tags* carry the profession and every lifestyle tag."""
        have = {normalise_tag(t) for t in tags}
        if self.profession and normalise_tag(self.profession) != "any":
            if normalise_tag(self.profession) not in have:
                return False
        wanted = {normalise_tag(t) for t in self.lifestyle}
        return wanted <= have

    def matches(self, listing: Listing) -> tuple[bool, str]:
        """Evaluate all criteria in one call.

        Runs every check in a fixed order and returns on the first failure.

        Returns:
            A ``(passed, reason)`` tuple.  *reason* is ``""`` on pass, or a
            short explanation of the first failed check.
        """
        if not self.matches_price(listing.price):
            return False, f"price {listing.price} outside [{self.price_min}, {self.price_max}]"
        if not self.matches_location(listing.location):
            return False, f"location {listing.location!r} does not contain {self.location!r}"
        if not self.matches_radius(listing.coordinates):
            return False, f"outside {self.radius_km} km radius"
        if not self.matches_gender(listing.gender_preference):
            return False, f"gender preference {listing.gender_preference} != {self.gender}"
        if not self.matches_tags(listing.tags):
            return False, "missing requested profession/lifestyle tags"
        if self.kind is not None and listing.kind != self.kind:
            return False, f"kind {listing.kind} != {self.kind}"
        if self.room_types and listing.room_type not in self.room_types:
            return False, f"room type {listing.room_type} not in {list(map(str, self.room_types))}"
        return True, ""

    def matches_listing(self, listing: Listing) -> bool:
        passed, reason = self.matches(listing)
        if not passed:
            logger.debug("Listing %s filtered out: %s", listing.id, reason)
        return passed
