"""Core domain models, settings, logging configuration, and shared utilities."""

from nestmate.core.clock import Clock, FixedClock, SystemClock
from nestmate.core.criteria import FeedCriteria
from nestmate.core.exceptions import (
    BoostAlreadyActive,
    BoostCreditExhausted,
    ChatBlocked,
    ChatNotFound,
    ConfigError,
    Conflict,
    ContactNotShared,
    DuplicateRecord,
    EntitlementError,
    GatewayTimeout,
    GatewayUnavailable,
    InvalidChatTransition,
    InvalidMessage,
    InvalidReport,
    LifecycleError,
    ListingExpired,
    ListingNotFound,
    MessagingError,
    NestmateError,
    NotBusinessUser,
    NotOwner,
    NotParticipant,
    PaymentNotConfirmed,
    ProfileNotFound,
    QuotaExceeded,
    RecordNotFound,
    StorageError,
    UserTypeAlreadySet,
)
from nestmate.core.logging_config import JsonFormatter, configure_logging
from nestmate.core.models import Boost, Chat, Listing, ListingDraft, Message, Profile
from nestmate.core.results import OperationResult
from nestmate.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Time
    "Clock",
    "SystemClock",
    "FixedClock",
    # Domain models
    "Listing",
    "ListingDraft",
    "Boost",
    "Profile",
    "Chat",
    "Message",
    # Settings
    "Settings",
    # Feed criteria
    "FeedCriteria",
    # Results
    "OperationResult",
    # Exceptions: base
    "NestmateError",
    # Exceptions: config
    "ConfigError",
    # Exceptions: storage
    "StorageError",
    "GatewayUnavailable",
    "GatewayTimeout",
    "Conflict",
    "DuplicateRecord",
    "RecordNotFound",
    "ListingNotFound",
    "ChatNotFound",
    "ProfileNotFound",
    # Exceptions: lifecycle
    "LifecycleError",
    "QuotaExceeded",
    "NotOwner",
    "ListingExpired",
    "BoostAlreadyActive",
    "BoostCreditExhausted",
    # Exceptions: entitlements
    "EntitlementError",
    "NotBusinessUser",
    "UserTypeAlreadySet",
    # Exceptions: payments
    "PaymentNotConfirmed",
    # Exceptions: messaging
    "MessagingError",
    "ChatBlocked",
    "NotParticipant",
    "InvalidMessage",
    "InvalidChatTransition",
    "ContactNotShared",
    "InvalidReport",
]
