"""Nestmate core domain models.

This module defines the canonical records shared by every engine and by the
storage layer: :class:`Listing`, :class:`Boost`, :class:`Profile`,
:class:`Subscription`, :class:`Chat`, :class:`Message`, :class:`Report` and
:class:`PaymentConfirmation`, plus the caller-supplied inputs
:class:`ListingDraft` and :class:`ListingChanges`.

All models are **frozen**.  A state change is expressed as
``record.model_copy(update=...)`` and persisted through the gateway, never by
mutating an instance in place.

Time-dependent state (is a listing active? is a boost running?) is *derived*
from stored instants and a caller-supplied ``now``; no model stores a cached
boolean for it.

Typical usage::

    from nestmate.core.models import Listing

    if listing.is_active(clock.now()):
        ...
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = [
    "ListingKind",
    "GenderPreference",
    "Gender",
    "RoomType",
    "UserType",
    "Tier",
    "BillingCycle",
    "ChatState",
    "ReportStatus",
    "ReportReason",
    "PaymentPurpose",
    "Coordinates",
    "ListingDraft",
    "ListingChanges",
    "Listing",
    "Boost",
    "Profile",
    "Subscription",
    "Chat",
    "Message",
    "Report",
    "PaymentConfirmation",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ListingKind(StrEnum):
    ROOMMATE = "roommate"
    HOSTEL = "hostel"


class GenderPreference(StrEnum):
    MALE = "male"
    FEMALE = "female"
    ANY = "any"


class Gender(StrEnum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class RoomType(StrEnum):
    PRIVATE = "private"
    SHARED = "shared"
    DORMITORY = "dormitory"


class UserType(StrEnum):
    INDIVIDUAL = "individual"
    BUSINESS = "business"


class Tier(StrEnum):
    """Subscription tiers, cheapest first."""

    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


class BillingCycle(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ChatState(StrEnum):
    """Contact-disclosure state of a conversation.

    ``ANONYMOUS → CONTACT_REQUESTED → CONTACT_SHARED``; ``ANONYMOUS`` and
    ``CONTACT_REQUESTED`` may also move to ``BLOCKED`` through moderation.
    ``CONTACT_SHARED`` never moves back.
    """

    ANONYMOUS = "anonymous"
    CONTACT_REQUESTED = "contact_requested"
    CONTACT_SHARED = "contact_shared"
    BLOCKED = "blocked"


class ReportStatus(StrEnum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    ACTIONED = "actioned"


class ReportReason(StrEnum):
    """Report categories offered by the reporting dialog."""

    INAPPROPRIATE = "inappropriate"
    SPAM = "spam"
    SCAM = "scam"
    OTHER = "other"


class PaymentPurpose(StrEnum):
    BOOST = "boost"
    SUBSCRIPTION = "subscription"
    DISCLOSURE = "disclosure"


# ---------------------------------------------------------------------------
# Listing inputs
# ---------------------------------------------------------------------------


class Coordinates(BaseModel):
    """Latitude / longitude pair in decimal degrees."""

    model_config = {"frozen": True}

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


def _strip_blank_urls(urls: list[str]) -> list[str]:
    return [u.strip() for u in urls if u and u.strip()]


def _normalise_labels(labels: object) -> object:
    """Strip labels and drop blanks; order is normalised to sorted for sets."""
    if isinstance(labels, (list, tuple, set, frozenset)):
        return sorted({str(v).strip() for v in labels if str(v).strip()})
    return labels


class ListingDraft(BaseModel):
    """Owner-supplied content for a new listing.

    Lifetime, expiry and counters are deliberately absent: they are policy,
    set by :class:`~nestmate.lifecycle.manager.ListingLifecycleManager`.
    """

    model_config = {"frozen": True}

    kind: ListingKind
    title: str = Field(..., min_length=1)
    description: str = ""
    price: int = Field(..., gt=0)
    location: str = Field(..., min_length=1)
    coordinates: Coordinates | None = None
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    amenities: list[str] = Field(default_factory=list)
    gender_preference: GenderPreference = GenderPreference.ANY
    restrict_to_same_gender: bool = False
    room_type: RoomType

    @field_validator("title", "location", mode="before")
    @classmethod
    def _strip_required_text(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("images")
    @classmethod
    def _drop_blank_images(cls, v: list[str]) -> list[str]:
        return _strip_blank_urls(v)

    @field_validator("tags", "amenities", mode="before")
    @classmethod
    def _labels_as_set(cls, v: object) -> object:
        return _normalise_labels(v)


class ListingChanges(BaseModel):
    """Partial edit of a listing's descriptive fields.

    Fields left as ``None`` are unchanged.
    """

    model_config = {"frozen": True}

    title: str | None = Field(None, min_length=1)
    description: str | None = None
    price: int | None = Field(None, gt=0)
    location: str | None = Field(None, min_length=1)
    coordinates: Coordinates | None = None
    images: list[str] | None = None
    tags: list[str] | None = None
    amenities: list[str] | None = None
    gender_preference: GenderPreference | None = None
    restrict_to_same_gender: bool | None = None
    room_type: RoomType | None = None

    @field_validator("images")
    @classmethod
    def _drop_blank_images(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else _strip_blank_urls(v)

    @field_validator("tags", "amenities", mode="before")
    @classmethod
    def _labels_as_set(cls, v: object) -> object:
        return _normalise_labels(v)

    def as_update(self) -> dict[str, object]:
        """Return only the fields the caller actually set."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class Listing(BaseModel):
    """A housing offer posted by an individual or business owner.

    Attributes:
        id: Opaque listing identifier.
        kind: Roommate share or hostel bed.
        price: Monthly price, positive integer.
        location: Free-text location; ``coordinates`` is optional.
        tags: Lifestyle / profession labels (stored sorted, unique).
        amenities: Amenity labels (stored sorted, unique).
        restrict_to_same_gender: Hide the listing from viewers whose gender
            differs from ``gender_preference``.
        expires_at: End of the listing's lifetime.
        manually_expired: Set by the owner; never cleared.
        view_count: Non-decreasing detail-page view counter.
        version: Optimistic-concurrency counter, bumped by every conditional
            update.
    """

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    kind: ListingKind
    title: str = Field(..., min_length=1)
    description: str = ""
    price: int = Field(..., gt=0)
    location: str = Field(..., min_length=1)
    coordinates: Coordinates | None = None
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    amenities: list[str] = Field(default_factory=list)
    owner_id: str = Field(..., min_length=1)
    gender_preference: GenderPreference = GenderPreference.ANY
    restrict_to_same_gender: bool = False
    room_type: RoomType
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    manually_expired: bool = False
    view_count: int = Field(0, ge=0)
    version: int = Field(1, ge=1)

    @field_validator("tags", "amenities", mode="before")
    @classmethod
    def _labels_as_set(cls, v: object) -> object:
        return _normalise_labels(v)

    @model_validator(mode="after")
    def _updated_not_before_created(self) -> Listing:
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not be earlier than created_at")
        return self

    def is_active(self, now: datetime) -> bool:
        """Return ``True`` if the listing is live at instant *now*."""
        return not self.manually_expired and now < self.expires_at

    def days_remaining(self, now: datetime) -> int:
        """Whole days left before expiry, rounded up and floored at zero."""
        if not self.is_active(now):
            return 0
        return math.ceil((self.expires_at - now).total_seconds() / 86400)


class Boost(BaseModel):
    """A paid visibility window attached to a single listing."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    listing_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0)
    duration_hours: int = Field(..., gt=0)
    start_time: datetime

    @property
    def ends_at(self) -> datetime:
        return self.start_time + timedelta(hours=self.duration_hours)

    def is_active(self, now: datetime) -> bool:
        return self.start_time <= now < self.ends_at


class Profile(BaseModel):
    """Identity and preference attributes of a user.

    ``user_type`` is ``None`` until onboarding picks it, and is never changed
    afterwards.
    """

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    display_name: str = ""
    gender: Gender | None = None
    user_type: UserType | None = None
    phone_number: str | None = None
    created_at: datetime
    updated_at: datetime
    version: int = Field(1, ge=1)

    @field_validator("phone_number", mode="before")
    @classmethod
    def _blank_phone_to_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Subscription(BaseModel):
    """A business user's paid tier for ``[start_date, expires_at)``."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    tier: Tier
    start_date: datetime
    expires_at: datetime
    purchase_ref: str | None = None
    version: int = Field(1, ge=1)

    def is_current(self, now: datetime) -> bool:
        return now < self.expires_at


class Chat(BaseModel):
    """A private conversation between two users.

    ``pair_key`` is unique per unordered pair, so the same two users never
    get two chats.  ``state`` is the disclosure state machine.
    """

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    pair_key: str = Field(..., min_length=1)
    user1: str = Field(..., min_length=1)
    user2: str = Field(..., min_length=1)
    state: ChatState = ChatState.ANONYMOUS
    requested_by: str | None = None
    shared_by: str | None = None
    disclosure_ref: str | None = None
    created_at: datetime
    version: int = Field(1, ge=1)

    @property
    def participants(self) -> tuple[str, str]:
        return (self.user1, self.user2)

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.user1, self.user2)

    def counterpart_of(self, user_id: str) -> str:
        return self.user2 if user_id == self.user1 else self.user1

    @property
    def is_contact_shared(self) -> bool:
        return self.state is ChatState.CONTACT_SHARED


class Message(BaseModel):
    """One append-only chat message.  Ordered by ``(created_at, id)``."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    chat_id: str = Field(..., min_length=1)
    from_user: str = Field(..., min_length=1)
    to_user: str = Field(..., min_length=1)
    content: str | None = None
    image_url: str | None = None
    is_contact_shared: bool = False
    created_at: datetime

    @field_validator("content", "image_url", mode="before")
    @classmethod
    def _blank_to_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _has_body(self) -> Message:
        if self.content is None and self.image_url is None:
            raise ValueError("a message needs content or an image_url")
        return self

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)


class Report(BaseModel):
    """A user report against another user and/or a listing."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
    details: str = ""
    reported_by: str = Field(..., min_length=1)
    target_user: str | None = None
    target_listing: str | None = None
    status: ReportStatus = ReportStatus.PENDING
    created_at: datetime

    @model_validator(mode="after")
    def _has_target(self) -> Report:
        if self.target_user is None and self.target_listing is None:
            raise ValueError("a report needs a target_user or a target_listing")
        return self


class PaymentConfirmation(BaseModel):
    """Record of the payment collaborator confirming a purchase."""

    model_config = {"frozen": True}

    purchase_ref: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    purpose: PaymentPurpose
    amount: int = Field(..., ge=0)
    confirmed_at: datetime
