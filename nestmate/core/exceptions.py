"""Nestmate exception taxonomy.

Every custom exception inherits from :class:`NestmateError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    NestmateError
    ├── ConfigError
    ├── StorageError
    │   ├── GatewayUnavailable
    │   ├── GatewayTimeout
    │   ├── Conflict
    │   ├── DuplicateRecord
    │   └── RecordNotFound
    │       ├── ListingNotFound
    │       ├── ChatNotFound
    │       └── ProfileNotFound
    ├── LifecycleError
    │   ├── QuotaExceeded
    │   ├── NotOwner
    │   ├── ListingExpired
    │   ├── BoostAlreadyActive
    │   └── BoostCreditExhausted
    ├── EntitlementError
    │   ├── NotBusinessUser
    │   └── UserTypeAlreadySet
    ├── PaymentNotConfirmed
    └── MessagingError
        ├── ChatBlocked
        ├── NotParticipant
        ├── InvalidMessage
        ├── InvalidChatTransition
        ├── ContactNotShared
        └── InvalidReport

Each class carries a stable ``kind`` (the name callers switch on) and a short
``user_message`` safe to show to an end user.  The technical detail stays in
``str(exc)`` and in the logs.

Usage:

    from nestmate.core.exceptions import BoostAlreadyActive

    raise BoostAlreadyActive(listing_id)
"""

from __future__ import annotations

import logging

__all__ = [
    "NestmateError",
    # Config
    "ConfigError",
    # Storage
    "StorageError",
    "GatewayUnavailable",
    "GatewayTimeout",
    "Conflict",
    "DuplicateRecord",
    "RecordNotFound",
    "ListingNotFound",
    "ChatNotFound",
    "ProfileNotFound",
    # Lifecycle
    "LifecycleError",
    "QuotaExceeded",
    "NotOwner",
    "ListingExpired",
    "BoostAlreadyActive",
    "BoostCreditExhausted",
    # Entitlements
    "EntitlementError",
    "NotBusinessUser",
    "UserTypeAlreadySet",
    # Payments
    "PaymentNotConfirmed",
    # Messaging
    "MessagingError",
    "ChatBlocked",
    "NotParticipant",
    "InvalidMessage",
    "InvalidChatTransition",
    "ContactNotShared",
    "InvalidReport",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class NestmateError(Exception):
    """Root exception for all Nestmate errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible for precise error
    handling.

    Attributes:
        kind: Stable error identifier (e.g. ``"QuotaExceeded"``).
        user_message: Short human-readable text for the UI layer.
    """

    kind: str = "NestmateError"
    user_message: str = "Something went wrong. Please try again."


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(NestmateError):
    """Raised when the application configuration is invalid or incomplete."""

    kind = "ConfigError"
    user_message = "The service is misconfigured."


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(NestmateError):
    """Base class for persistence gateway failures."""

    kind = "StorageError"
    user_message = "We could not reach our storage. Please try again."


class GatewayUnavailable(StorageError):
    """Raised when the underlying store rejects or cannot serve a call.

    Args:
        operation: Gateway operation name (``"get"``, ``"insert"`` …).
        table: Table the operation targeted.
        detail: Technical description of the underlying failure.
    """

    kind = "GatewayUnavailable"
    user_message = "The service is temporarily unavailable."

    def __init__(self, operation: str, table: str, detail: str) -> None:
        self.operation = operation
        self.table = table
        super().__init__(f"Gateway {operation} on {table!r} failed: {detail}")


class GatewayTimeout(StorageError):
    """Raised when a gateway call exceeds its caller-supplied timeout."""

    kind = "GatewayTimeout"
    user_message = "The request took too long. Please try again."

    def __init__(self, operation: str, table: str, timeout: float) -> None:
        self.operation = operation
        self.table = table
        self.timeout = timeout
        super().__init__(f"Gateway {operation} on {table!r} timed out after {timeout}s")


class Conflict(StorageError):
    """Raised when a conditional write loses a race.

    The core retries these internally a small number of times before letting
    one reach the caller.
    """

    kind = "Conflict"
    user_message = "Someone else changed this at the same time. Please retry."

    def __init__(self, table: str, record_id: str) -> None:
        self.table = table
        self.record_id = record_id
        super().__init__(f"Conditional update lost the race on {table}:{record_id}")


class DuplicateRecord(StorageError):
    """Raised when an insert violates a uniqueness constraint."""

    kind = "DuplicateRecord"
    user_message = "This already exists."

    def __init__(self, table: str, detail: str) -> None:
        self.table = table
        super().__init__(f"Duplicate record in {table!r}: {detail}")


class RecordNotFound(StorageError):
    """Raised when a record addressed by id does not exist."""

    kind = "RecordNotFound"
    user_message = "We could not find what you were looking for."

    def __init__(self, table: str, record_id: str) -> None:
        self.table = table
        self.record_id = record_id
        super().__init__(f"No {table} record with id {record_id!r}")


class ListingNotFound(RecordNotFound):
    kind = "ListingNotFound"
    user_message = "This listing no longer exists."

    def __init__(self, listing_id: str) -> None:
        super().__init__("listings", listing_id)


class ChatNotFound(RecordNotFound):
    kind = "ChatNotFound"
    user_message = "This conversation no longer exists."

    def __init__(self, chat_id: str) -> None:
        super().__init__("chats", chat_id)


class ProfileNotFound(RecordNotFound):
    kind = "ProfileNotFound"
    user_message = "We could not find this user."

    def __init__(self, user_id: str) -> None:
        super().__init__("profiles", user_id)


# ---------------------------------------------------------------------------
# Listing lifecycle
# ---------------------------------------------------------------------------


class LifecycleError(NestmateError):
    """Base class for listing and boost rule violations."""

    kind = "LifecycleError"


class QuotaExceeded(LifecycleError):
    """Raised when an owner already holds the maximum number of active listings.

    Args:
        owner_id: The listing owner.
        limit: The active-listing quota that was hit.
    """

    kind = "QuotaExceeded"
    user_message = "You have reached the active listing limit for your plan."

    def __init__(self, owner_id: str, limit: int) -> None:
        self.owner_id = owner_id
        self.limit = limit
        super().__init__(f"User {owner_id!r} already has {limit} active listing(s)")


class NotOwner(LifecycleError):
    kind = "NotOwner"
    user_message = "Only the owner of this listing can do that."

    def __init__(self, listing_id: str, actor_id: str) -> None:
        self.listing_id = listing_id
        self.actor_id = actor_id
        super().__init__(f"User {actor_id!r} does not own listing {listing_id!r}")


class ListingExpired(LifecycleError):
    kind = "ListingExpired"
    user_message = "This listing has expired."

    def __init__(self, listing_id: str) -> None:
        self.listing_id = listing_id
        super().__init__(f"Listing {listing_id!r} is not active")


class BoostAlreadyActive(LifecycleError):
    kind = "BoostAlreadyActive"
    user_message = "This listing is already boosted."

    def __init__(self, listing_id: str) -> None:
        self.listing_id = listing_id
        super().__init__(f"Listing {listing_id!r} already has an active boost")


class BoostCreditExhausted(LifecycleError):
    kind = "BoostCreditExhausted"
    user_message = "You have used all boosts included in your plan for this period."

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id!r} has no boost credit left this period")


# ---------------------------------------------------------------------------
# Entitlements / accounts
# ---------------------------------------------------------------------------


class EntitlementError(NestmateError):
    """Base class for plan and account-type rule violations."""

    kind = "EntitlementError"


class NotBusinessUser(EntitlementError):
    kind = "NotBusinessUser"
    user_message = "Subscriptions are only available to business accounts."

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id!r} is not a business account")


class UserTypeAlreadySet(EntitlementError):
    kind = "UserTypeAlreadySet"
    user_message = "Your account type has already been chosen."

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id!r} already completed onboarding")


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class PaymentNotConfirmed(NestmateError):
    """Raised when an operation needs a confirmed payment that is missing.

    Args:
        purchase_ref: The purchase reference the caller supplied.
        purpose: What the payment should have paid for.
    """

    kind = "PaymentNotConfirmed"
    user_message = "We have not received your payment yet."

    def __init__(self, purchase_ref: str, purpose: str) -> None:
        self.purchase_ref = purchase_ref
        self.purpose = purpose
        super().__init__(f"No confirmed {purpose} payment for {purchase_ref!r}")


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------


class MessagingError(NestmateError):
    """Base class for chat and moderation rule violations."""

    kind = "MessagingError"


class ChatBlocked(MessagingError):
    kind = "ChatBlocked"
    user_message = "This conversation has been blocked."

    def __init__(self, chat_id: str) -> None:
        self.chat_id = chat_id
        super().__init__(f"Chat {chat_id!r} is blocked")


class NotParticipant(MessagingError):
    kind = "NotParticipant"
    user_message = "You are not part of this conversation."

    def __init__(self, chat_id: str, user_id: str) -> None:
        self.chat_id = chat_id
        self.user_id = user_id
        super().__init__(f"User {user_id!r} is not a participant of chat {chat_id!r}")


class InvalidMessage(MessagingError):
    kind = "InvalidMessage"
    user_message = "This message cannot be sent."


class InvalidChatTransition(MessagingError):
    kind = "InvalidChatTransition"
    user_message = "This action is not possible for this conversation."

    def __init__(self, chat_id: str, current: str, target: str) -> None:
        self.chat_id = chat_id
        self.current = current
        self.target = target
        super().__init__(f"Chat {chat_id!r} cannot move from {current} to {target}")


class ContactNotShared(MessagingError):
    kind = "ContactNotShared"
    user_message = "Contact details have not been unlocked for this conversation."

    def __init__(self, chat_id: str) -> None:
        self.chat_id = chat_id
        super().__init__(f"Contact details are not shared in chat {chat_id!r}")


class InvalidReport(MessagingError):
    kind = "InvalidReport"
    user_message = "Please choose what you are reporting and why."
