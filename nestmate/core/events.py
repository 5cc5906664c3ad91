"""Structured log event name constants for the Nestmate engines.

Every key state transition emits a log record with an ``event`` field
(passed via ``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the
value surfaces as a top-level ``event`` key, which makes it easy to count boosts,
disclosures or quota rejections in a log aggregator.

Usage example::

    import logging
    from nestmate.core import events

    logger = logging.getLogger(__name__)

    logger.info("Boost attached", extra={"event": events.BOOST_ATTACHED})
"""

from __future__ import annotations

__all__ = [
    # Operation envelope
    "OPERATION_FAILED",
    # Listing lifecycle
    "LISTING_CREATED",
    "LISTING_UPDATED",
    "LISTING_EXPIRED",
    "LISTING_DELETED",
    "LISTING_QUOTA_EXCEEDED",
    "LISTING_VIEW_NOT_RECORDED",
    # Boosts and plans
    "BOOST_ATTACHED",
    "BOOST_REJECTED",
    "SUBSCRIPTION_PURCHASED",
    "PAYMENT_CONFIRMED",
    # Messaging
    "CHAT_CREATED",
    "MESSAGE_SENT",
    "CONTACT_REQUESTED",
    "CONTACT_SHARED",
    "CHAT_BLOCKED",
    "REPORT_FILED",
    # Storage
    "WRITE_CONFLICT_RETRY",
    "GATEWAY_TIMEOUT",
]

# ---------------------------------------------------------------------------
# Operation envelope
# ---------------------------------------------------------------------------

#: A facade operation ended with a typed error returned to the caller.
OPERATION_FAILED: str = "OPERATION_FAILED"

# ---------------------------------------------------------------------------
# Listing lifecycle
# ---------------------------------------------------------------------------

LISTING_CREATED: str = "LISTING_CREATED"
LISTING_UPDATED: str = "LISTING_UPDATED"

#: Owner manually expired a listing (first time only; repeats are no-ops).
LISTING_EXPIRED: str = "LISTING_EXPIRED"

LISTING_DELETED: str = "LISTING_DELETED"
LISTING_QUOTA_EXCEEDED: str = "LISTING_QUOTA_EXCEEDED"

#: A view could not be counted; the caller flow continued regardless.
LISTING_VIEW_NOT_RECORDED: str = "LISTING_VIEW_NOT_RECORDED"

# ---------------------------------------------------------------------------
# Boosts and plans
# ---------------------------------------------------------------------------

BOOST_ATTACHED: str = "BOOST_ATTACHED"
BOOST_REJECTED: str = "BOOST_REJECTED"
SUBSCRIPTION_PURCHASED: str = "SUBSCRIPTION_PURCHASED"
PAYMENT_CONFIRMED: str = "PAYMENT_CONFIRMED"

# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------

CHAT_CREATED: str = "CHAT_CREATED"
MESSAGE_SENT: str = "MESSAGE_SENT"
CONTACT_REQUESTED: str = "CONTACT_REQUESTED"
CONTACT_SHARED: str = "CONTACT_SHARED"
CHAT_BLOCKED: str = "CHAT_BLOCKED"
REPORT_FILED: str = "REPORT_FILED"

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

#: A conditional write lost a race and the operation is being retried.
WRITE_CONFLICT_RETRY: str = "WRITE_CONFLICT_RETRY"

GATEWAY_TIMEOUT: str = "GATEWAY_TIMEOUT"
